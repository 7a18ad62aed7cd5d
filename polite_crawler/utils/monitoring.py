"""
Monitoring and metrics collection for the crawler.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class CrawlerMonitor:
    """
    Prometheus metrics for a crawl run.

    Metrics live in a private registry so several crawlers (or test runs)
    in one process do not collide. The HTTP exporter is only started on
    request.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self.start_time = time.time()

        self.fetch_outcomes = Counter(
            'crawler_fetch_outcomes_total',
            'Fetch outcomes by kind',
            ['outcome'],
            registry=self.registry
        )
        self.response_time = Histogram(
            'crawler_response_time_seconds',
            'Time from first request to final response',
            registry=self.registry
        )
        self.images_discovered = Counter(
            'crawler_images_discovered_total',
            'Unique image URLs discovered',
            registry=self.registry
        )
        self.downloads = Counter(
            'crawler_downloads_total',
            'Image downloads by status',
            ['status'],
            registry=self.registry
        )
        self.bytes_downloaded = Counter(
            'crawler_bytes_downloaded_total',
            'Total bytes of pages fetched',
            registry=self.registry
        )
        self.active_tasks = Gauge(
            'crawler_active_tasks',
            'Fetch tasks in flight',
            registry=self.registry
        )
        self.queue_size = Gauge(
            'crawler_queue_size',
            'Targets waiting in the frontier',
            registry=self.registry
        )
        self.host_delay = Gauge(
            'crawler_host_delay_seconds',
            'Current minimum delay between requests per host',
            ['host'],
            registry=self.registry
        )

    def start_server(self, port: int):
        """Start Prometheus metrics HTTP server."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")

    def record_fetch(self, outcome_kind: str, response_time: Optional[float] = None, size: int = 0):
        self.fetch_outcomes.labels(outcome=outcome_kind).inc()
        if response_time is not None:
            self.response_time.observe(response_time)
        if size:
            self.bytes_downloaded.inc(size)

    def record_image_discovered(self):
        self.images_discovered.inc()

    def record_download(self, status: str):
        self.downloads.labels(status=status).inc()

    def update_active_tasks(self, count: int):
        self.active_tasks.set(count)

    def update_queue_size(self, size: int):
        self.queue_size.set(size)

    def update_host_delay(self, host: str, delay: float):
        self.host_delay.labels(host=host).set(delay)

    def value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of a sample, e.g. ``value('crawler_downloads_total', {'status': 'success'})``."""
        return self.registry.get_sample_value(name, labels or {})

    def get_summary(self) -> Dict[str, Any]:
        runtime = time.time() - self.start_time
        fetched = self.value('crawler_fetch_outcomes_total', {'outcome': 'success'}) or 0
        return {
            'runtime_seconds': runtime,
            'pages_fetched': fetched,
            'images_discovered': self.value('crawler_images_discovered_total') or 0,
            'pages_per_minute': fetched / (runtime / 60) if runtime > 0 else 0,
        }
