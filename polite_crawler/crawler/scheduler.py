"""
Crawler scheduler that coordinates crawling tasks and manages the overall crawl process.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set

from .fetcher import WebFetcher
from .models import CrawlTarget, FailureKind, FetchSuccess, URLPriority
from .parser import ImageExtractor, normalize_url
from .politeness import PolitenessController
from .transport import AiohttpTransport, Transport
from .url_frontier import URLFrontier
from ..storage.aggregator import CrawlResult, PageReport, ResultAggregator
from ..storage.downloader import ImageDownloader
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor
from ..utils.retry import RetryPolicy


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    urls_crawled: int = 0
    errors: int = 0
    images_found: int = 0
    downloads_started: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.urls_crawled / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlerScheduler:
    """
    Main scheduler that coordinates all crawler components.

    Each target runs as its own task (fetch, extract, record, in that
    order); at most ``max_concurrent_requests`` run at once. Tasks report to
    the aggregator, which hands newly discovered images to the downloader.
    """

    def __init__(self, config: Optional[Config] = None, transport: Optional[Transport] = None,
                 monitor: Optional[CrawlerMonitor] = None, stats_interval: float = 30.0):
        self.config = config or Config()
        self.logger = logging.getLogger(__name__)
        self.stats_interval = stats_interval

        crawler_config = self.config.crawler
        politeness_config = self.config.politeness
        transport_config = self.config.transport

        self._owns_transport = transport is None
        self.transport = transport or AiohttpTransport(
            request_timeout=transport_config.request_timeout,
            max_connections=transport_config.max_connections,
            max_connections_per_host=transport_config.max_connections_per_host,
            max_content_size=transport_config.max_content_size,
            proxy=transport_config.proxy
        )
        self.monitor = monitor or CrawlerMonitor()

        retry_policy = RetryPolicy(
            attempts=crawler_config.retry_attempts,
            base_delay=crawler_config.retry_base_delay,
            max_delay=crawler_config.retry_max_delay
        )

        self.user_agent = crawler_config.choose_user_agent()
        self.logger.debug(f"Using User-Agent: {self.user_agent}")

        # Components
        self.politeness = PolitenessController(
            self.transport,
            user_agent=self.user_agent,
            politeness_delay=politeness_config.politeness_delay,
            min_backoff_delay=politeness_config.min_backoff_delay,
            max_backoff_delay=politeness_config.max_backoff_delay,
            backoff_factor=politeness_config.backoff_factor,
            quarantine_threshold=politeness_config.quarantine_threshold,
            quarantine_cooldown=politeness_config.quarantine_cooldown,
            respect_robots_txt=crawler_config.respect_robots_txt
        )
        self.fetcher = WebFetcher(
            self.transport,
            self.politeness,
            user_agent=self.user_agent,
            max_redirects=crawler_config.max_redirects,
            max_blocked_retries=crawler_config.max_blocked_retries,
            retry_policy=retry_policy,
            max_concurrent_requests=crawler_config.max_concurrent_requests
        )
        self.extractor = ImageExtractor(
            allowed_domains=crawler_config.allowed_domains,
            blocked_domains=crawler_config.blocked_domains
        )
        self.frontier = URLFrontier(
            max_depth=crawler_config.max_depth,
            max_host_visitors=crawler_config.max_host_visitors
        )
        self.aggregator = ResultAggregator(on_new_image=self._on_new_image)
        self.downloader: Optional[ImageDownloader] = None
        if self.config.download.enabled:
            self.downloader = ImageDownloader(
                self.fetcher,
                destination=self.config.download.destination,
                max_concurrent_downloads=self.config.download.max_concurrent_downloads
            )

        # Crawl state
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False
        self._cancelled = False
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_waiter: Optional[asyncio.Future] = None
        self._tasks: Dict[asyncio.Task, CrawlTarget] = {}
        self._downloads: Set[asyncio.Task] = set()

    def add_seed_urls(self, seed_urls: Iterable[str]) -> int:
        """Claim and queue seed URLs. Returns the number queued."""
        added_count = 0
        for url in map(normalize_url, seed_urls):
            if self.aggregator.claim(url):
                self.frontier.add(CrawlTarget(url=url, depth=0, priority=URLPriority.HIGH))
                added_count += 1
        self.logger.info(f"Added {added_count} seed URLs to frontier")
        return added_count

    async def crawl(self, seed_urls: Optional[Iterable[str]] = None) -> CrawlResult:
        """
        Crawl from the given seeds (or the configured ones) until the frontier
        is exhausted or ``stop_crawling`` is called.

        Returns:
            The CrawlResult. After ``stop_crawling`` it is partial and flagged
            ``cancelled``. Per-target failures are in its failure map.
        """
        if self.is_running:
            raise RuntimeError("Crawler is already running")

        seeds = list(seed_urls) if seed_urls is not None else list(self.config.crawler.seed_urls)
        self.is_running = True
        self._cancelled = False
        self._stop_event = asyncio.Event()
        self._stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        self.stats = CrawlStats(start_time=time.time())
        stats_task = asyncio.create_task(self._stats_reporter())

        try:
            await self.transport.start()
            self.add_seed_urls(seeds)
            self.logger.info(
                f"Started crawling with up to {self.config.crawler.max_concurrent_requests} concurrent tasks"
            )
            await self._dispatch_loop()
            await self._drain_downloads()
        except asyncio.CancelledError:
            self._cancelled = True
            await self._cancel_all()
            raise
        finally:
            stats_task.cancel()
            self._stop_waiter.cancel()
            self.is_running = False

        result = self.result()
        self._log_final_stats(result)
        self._check_systemic_failure(seeds, result)
        return result

    def result(self) -> CrawlResult:
        """Current (possibly partial) crawl result."""
        return self.aggregator.result(cancelled=self._cancelled)

    async def _dispatch_loop(self):
        while not self._stop_event.is_set():
            self._fill_slots()
            if not self._tasks:
                break

            done, _ = await asyncio.wait(
                set(self._tasks) | {self._stop_waiter},
                return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task is not self._stop_waiter:
                    self._finish_task(task)

        if self._stop_event.is_set():
            await self._cancel_all()

    def _fill_slots(self):
        max_tasks = self.config.crawler.max_concurrent_requests
        while len(self._tasks) < max_tasks:
            target = self.frontier.next_target()
            if target is None:
                break
            self.aggregator.mark_fetching(target.url)
            task = asyncio.create_task(self._process_target(target))
            self._tasks[task] = target

        self.monitor.update_active_tasks(len(self._tasks))
        self.monitor.update_queue_size(self.frontier.get_stats()['total_queued'])

    def _finish_task(self, task: asyncio.Task):
        target = self._tasks.pop(task)
        self.frontier.release(target)
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            self.logger.error(f"Error processing {target.url}: {error}", exc_info=error,
                              extra={'url': target.url, 'host': target.host, 'depth': target.depth})
            self.stats.errors += 1
            self.aggregator.record_failure(target, FailureKind.ERROR)

    async def _process_target(self, target: CrawlTarget):
        """Fetch, extract and record a single target."""
        outcome = await self.fetcher.fetch(target)
        self.stats.urls_crawled += 1

        images, links = [], []
        if isinstance(outcome, FetchSuccess):
            if outcome.is_html:
                page = self.extractor.parse(outcome.body, outcome.final_url)
                images, links = page.images, page.links
            self.monitor.record_fetch('success', outcome.fetch_time, len(outcome.body))
        else:
            self.stats.errors += 1
            self.monitor.record_fetch(outcome.failure_kind.value)

        self.aggregator.record(PageReport(target=target, outcome=outcome, images=images, links=links))
        self.monitor.update_host_delay(target.host, self.politeness.current_delay(target.url))

        if links and self.config.crawler.follow_links:
            self._queue_new_urls(target, links)

    def _queue_new_urls(self, parent: CrawlTarget, links):
        depth = parent.depth + 1
        if depth > self.config.crawler.max_depth:
            return

        added_count = 0
        for link in links:
            if self.aggregator.claim(link):
                self.frontier.add(CrawlTarget(url=link, depth=depth, parent_url=parent.url))
                added_count += 1

        if added_count:
            self.logger.debug(f"Queued {added_count} new URLs from {parent.url}")

    def _on_new_image(self, url: str):
        self.stats.images_found += 1
        self.monitor.record_image_discovered()
        if self.downloader is None:
            return
        self.stats.downloads_started += 1
        task = asyncio.create_task(self._download(url))
        self._downloads.add(task)

    async def _download(self, url: str):
        result = await self.downloader.download_url(url)
        if result.error is not None:
            self.aggregator.record_download(url, error=result.error.reason)
            self.monitor.record_download('failed')
        else:
            self.aggregator.record_download(url, path=str(result.path))
            self.monitor.record_download('skipped' if result.skipped else 'success')

    async def _drain_downloads(self):
        """Wait for outstanding downloads, unless the crawl is stopped."""
        while self._downloads and not self._stop_event.is_set():
            done, _ = await asyncio.wait(
                set(self._downloads) | {self._stop_waiter},
                return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task is self._stop_waiter:
                    continue
                self._downloads.discard(task)
                if not task.cancelled() and task.exception() is not None:
                    self.logger.error(f"Download task failed: {task.exception()}", exc_info=task.exception())

        if self._stop_event.is_set():
            await self._cancel_all()

    async def _cancel_all(self):
        """Cancel in-flight fetch and download tasks and wait for them to end."""
        tasks = list(self._tasks) + list(self._downloads)
        if not tasks:
            return

        self.logger.info(f"Cancelling {len(tasks)} in-flight tasks")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for task in list(self._tasks):
            self._finish_task(task)
        self._downloads.clear()

    def stop_crawling(self):
        """Ask a running crawl to stop. The crawl returns a partial result."""
        if not self.is_running or self._stop_event is None:
            return
        self.logger.info("Stopping crawler...")
        self._cancelled = True
        self._stop_event.set()

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while True:
            await asyncio.sleep(self.stats_interval)
            frontier_stats = self.frontier.get_stats()
            self.logger.info(
                f"Crawl Progress: "
                f"Crawled={self.stats.urls_crawled}, "
                f"Images={self.stats.images_found}, "
                f"Queued={frontier_stats['total_queued']}, "
                f"InFlight={len(self._tasks)}, "
                f"Downloads={len(self._downloads)}, "
                f"Errors={self.stats.errors}, "
                f"Rate={self.stats.pages_per_minute:.1f} pages/min"
            )

    def _log_final_stats(self, result: CrawlResult):
        """Log final crawl statistics."""
        self.logger.info("=== CRAWL CANCELLED ===" if result.cancelled else "=== CRAWL COMPLETED ===")
        self.logger.info(f"Pages visited: {len(result.visited)}")
        self.logger.info(f"Unique images: {len(result.images)}")
        self.logger.info(f"Images downloaded: {len(result.downloaded)}")
        self.logger.info(f"Download errors: {len(result.download_errors)}")
        self.logger.info(f"Failures: {result.failure_counts()}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        if self.downloader is not None:
            self.logger.info(f"Downloader stats: {self.downloader.get_stats()}")

    def _check_systemic_failure(self, seeds, result: CrawlResult):
        if not seeds or result.visited or result.cancelled:
            return
        if all(result.failed.get(normalize_url(url)) is FailureKind.TRANSPORT for url in seeds):
            self.logger.error("No seed host could be reached; check network connectivity and the seed URLs")

    async def close(self):
        """Stop any running crawl and release the transport if we created it."""
        self.stop_crawling()
        if self._owns_transport:
            await self.transport.close()
        self.logger.info("Crawler scheduler closed")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'urls_crawled': self.stats.urls_crawled,
            'errors': self.stats.errors,
            'images_found': self.stats.images_found,
            'downloads_started': self.stats.downloads_started,
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
            'urls_in_queue': self.frontier.get_stats()['total_queued'],
            'is_running': self.is_running,
            **{f'aggregate_{key}': value for key, value in self.aggregator.get_stats().items()}
        }


async def run_crawl(seed_urls: Iterable[str], config: Optional[Config] = None,
                    transport: Optional[Transport] = None) -> CrawlResult:
    """Crawl from ``seed_urls`` and return the finalized result."""
    scheduler = CrawlerScheduler(config, transport)
    try:
        return await scheduler.crawl(seed_urls)
    finally:
        await scheduler.close()
