"""
Result collection and image storage for the crawler.
"""

from .aggregator import CrawlResult, PageReport, ResultAggregator
from .downloader import DownloadError, DownloadResult, ImageDownloader

__all__ = [
    'CrawlResult', 'PageReport', 'ResultAggregator',
    'DownloadError', 'DownloadResult', 'ImageDownloader'
]
