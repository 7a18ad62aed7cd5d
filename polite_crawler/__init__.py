"""
Polite Image Crawler

A concurrent crawler that collects image URLs from web pages while pacing
itself per host, and optionally downloads the images it finds.
"""

from .crawler.scheduler import CrawlerScheduler, run_crawl
from .storage.aggregator import CrawlResult
from .utils.config import Config, load_config

__version__ = "1.0.0"
__description__ = "A polite, concurrent image crawler with per-host backoff"

__all__ = ['CrawlerScheduler', 'run_crawl', 'CrawlResult', 'Config', 'load_config']
