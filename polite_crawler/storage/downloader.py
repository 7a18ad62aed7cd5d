"""
Image downloader writing one file per unique image URL.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from ..crawler.fetcher import WebFetcher
from ..crawler.models import (
    CrawlTarget, DownloadJob, FetchBlocked, FetchDenied, FetchNetworkError, FetchOutcome, FetchSuccess,
    ResourceType,
)


class DownloadError(Exception):
    """An image could not be downloaded. Reported, never fatal to a crawl."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


@dataclass(frozen=True)
class DownloadResult:
    job: DownloadJob
    path: Optional[Path] = None
    error: Optional[DownloadError] = None
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


def failure_reason(outcome: FetchOutcome) -> str:
    """Short description of a failed image fetch."""
    if isinstance(outcome, FetchDenied):
        return f"denied: {outcome.reason.value}"
    if isinstance(outcome, FetchBlocked):
        return f"HTTP {outcome.status_code}"
    if isinstance(outcome, FetchNetworkError):
        return outcome.message or outcome.kind.value
    return type(outcome).__name__


class ImageDownloader:
    """
    Downloads images into a destination directory.

    Images are requested through the same fetcher as pages, so robots.txt
    rules, host pacing, redirects and blocked-answer backoff apply to them.
    Concurrency is bounded by its own semaphore, independent of the crawl
    concurrency. A job whose file already exists is a no-op success, which
    makes repeated runs over the same destination cheap.
    """

    def __init__(self, fetcher: WebFetcher, destination: Union[str, Path] = 'archive/res',
                 max_concurrent_downloads: int = 4):
        self.fetcher = fetcher
        self.destination = Path(destination)
        self.semaphore = asyncio.Semaphore(max_concurrent_downloads)
        self.logger = logging.getLogger(__name__)

        self.download_stats = {
            "total": 0,
            "success": 0,
            "failed": 0,
            "skipped": 0,
            "bytes": 0
        }

    def job_for(self, url: str) -> DownloadJob:
        return DownloadJob.for_url(url, self.destination)

    async def download(self, job: DownloadJob) -> DownloadResult:
        """
        Download a single image.

        Args:
            job: image URL and target path

        Returns:
            DownloadResult with the written path, or with a DownloadError
        """
        self.download_stats["total"] += 1

        if job.path.exists():
            self.download_stats["skipped"] += 1
            self.logger.debug(f"Already downloaded: {job.url} -> {job.path}")
            return DownloadResult(job=job, path=job.path, skipped=True)

        async with self.semaphore:
            outcome = await self.fetcher.fetch(CrawlTarget(url=job.url, resource_type=ResourceType.IMAGE))

        if not isinstance(outcome, FetchSuccess):
            return self._failed(job, failure_reason(outcome))

        try:
            self._write(job.path, outcome.body)
        except OSError as e:
            return self._failed(job, f"write failed: {e}")

        self.download_stats["success"] += 1
        self.download_stats["bytes"] += len(outcome.body)
        self.logger.info(f"Downloaded: {job.path.name} ({len(outcome.body)} bytes)")
        return DownloadResult(job=job, path=job.path)

    async def download_url(self, url: str) -> DownloadResult:
        return await self.download(self.job_for(url))

    def _write(self, path: Path, data: bytes):
        """Write through a temporary file so a partial write never looks complete."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.part')
        try:
            with open(tmp_path, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def _failed(self, job: DownloadJob, reason: str) -> DownloadResult:
        self.download_stats["failed"] += 1
        error = DownloadError(job.url, reason)
        self.logger.error(f"Failed to download {job.url}: {reason}")
        return DownloadResult(job=job, error=error)

    def get_stats(self) -> Dict[str, int]:
        return self.download_stats.copy()
