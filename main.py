#!/usr/bin/env python3
"""
Main entry point for the image crawler.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from polite_crawler.crawler.scheduler import CrawlerScheduler
from polite_crawler.storage.aggregator import CrawlResult
from polite_crawler.utils.config import Config, ConfigError, load_config, validate_config
from polite_crawler.utils.logger import log_system_info, setup_logging


class CrawlerApp:
    """Main application class for the image crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)

    def load(self, args: argparse.Namespace) -> Config:
        """Load the configuration file (if present) and apply command line overrides."""
        if Path(args.config).exists():
            config = load_config(args.config)
        else:
            config = Config()

        if args.urls:
            config.crawler.seed_urls = list(args.urls)
        if args.depth is not None:
            config.crawler.max_depth = args.depth
        if args.max_concurrency is not None:
            config.crawler.max_concurrent_requests = args.max_concurrency
        if args.dest:
            config.download.destination = args.dest
        if args.no_download:
            config.download.enabled = False

        validate_config(config)
        return config

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.scheduler:
                self.scheduler.stop_crawling()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(signum, lambda s, frame: signal_handler(s))

    async def run(self, config: Config, verbose: bool = False) -> int:
        """Run the crawler."""
        setup_logging(config.logging, verbose=verbose)
        log_system_info(config.download.destination if config.download.enabled else None)

        if not config.crawler.seed_urls:
            self.logger.error("No seed URLs given (pass them as arguments or set crawler.seed_urls)")
            return 1

        self.logger.info("=== IMAGE CRAWLER STARTING ===")
        self.logger.info(f"Seed URLs: {config.crawler.seed_urls}")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Max concurrent requests: {config.crawler.max_concurrent_requests}")
        self.logger.info(f"Politeness delay: {config.politeness.politeness_delay}s")
        if config.download.enabled:
            self.logger.info(f"Downloading images to: {config.download.destination}")

        try:
            self.scheduler = CrawlerScheduler(config)
            if config.monitoring.metrics_enabled:
                self.scheduler.monitor.start_server(config.monitoring.prometheus_port)

            self.setup_signal_handlers()
            result = await self.scheduler.crawl(config.crawler.seed_urls)
            self.print_summary(result)

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.scheduler:
                await self.scheduler.close()
            self.logger.info("=== IMAGE CRAWLER FINISHED ===")

        return 0

    def print_summary(self, result: CrawlResult):
        summary = result.summary()
        print()
        print("Crawl cancelled, partial results:" if result.cancelled else "Crawl finished:")
        print(f"  Pages visited:     {summary['visited']}")
        print(f"  Unique images:     {summary['images']}")
        print(f"  Images downloaded: {summary['downloaded']}")
        print(f"  Download errors:   {summary['download_errors']}")
        print(f"  Failed targets:    {summary['failed']}")
        for kind, count in sorted(summary['failures_by_kind'].items()):
            print(f"    {kind}: {count}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Polite image crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py https://example.com                 # Crawl with defaults
  python main.py --config my_config.yaml            # Seeds and settings from a file
  python main.py --depth 1 https://example.com      # Only the seed and its direct links
  python main.py --no-download https://example.com  # Collect image URLs only
        """
    )

    parser.add_argument(
        'urls',
        nargs='*',
        help='Seed URLs (override crawler.seed_urls from the config file)'
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml, optional)'
    )

    parser.add_argument(
        '--depth',
        type=int,
        help='Maximum link depth to follow from the seeds'
    )

    parser.add_argument(
        '--max-concurrency',
        type=int,
        help='Maximum number of targets processed at once'
    )

    parser.add_argument(
        '--dest',
        help='Directory downloaded images are written to'
    )

    parser.add_argument(
        '--no-download',
        action='store_true',
        help='Collect image URLs without downloading them'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Log at DEBUG level on the console'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Polite Image Crawler 1.0.0'
    )

    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    app = CrawlerApp()
    try:
        config = app.load(args)
    except (ConfigError, OSError) as e:
        print(f"Error: {e}")
        return 1

    try:
        return asyncio.run(app.run(config, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
