"""
Consolidation point for everything concurrent crawl tasks find.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Set

from ..crawler.models import CrawlTarget, FailureKind, FetchOutcome, FetchSuccess, TargetState


@dataclass(frozen=True)
class PageReport:
    """Message a crawl task sends once its target is finished."""
    target: CrawlTarget
    outcome: FetchOutcome
    images: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, FetchSuccess)


@dataclass(frozen=True)
class CrawlResult:
    """Final (read-only) result of a crawl run."""
    visited: FrozenSet[str]
    images: FrozenSet[str]
    failed: Mapping[str, FailureKind]
    downloaded: Mapping[str, str] = field(default_factory=dict)
    download_errors: Mapping[str, str] = field(default_factory=dict)
    cancelled: bool = False

    def failure_counts(self) -> Dict[str, int]:
        return dict(Counter(kind.value for kind in self.failed.values()))

    def summary(self) -> Dict[str, object]:
        return {
            'visited': len(self.visited),
            'images': len(self.images),
            'failed': len(self.failed),
            'failures_by_kind': self.failure_counts(),
            'downloaded': len(self.downloaded),
            'download_errors': len(self.download_errors),
            'cancelled': self.cancelled,
        }


ImageSink = Callable[[str], None]


class ResultAggregator:
    """
    Merges per-task reports into one consistent crawl state.

    All mutation goes through methods that take a single lock and never
    suspend, so a report is either merged completely or not at all, and
    merges commute: the final state does not depend on report order.

    A URL is in at most one of pending, visited and failed.
    """

    def __init__(self, on_new_image: Optional[ImageSink] = None):
        self.on_new_image = on_new_image
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

        self._pending: Set[str] = set()
        self._fetching: Set[str] = set()
        self._visited: Set[str] = set()
        self._failed: Dict[str, FailureKind] = {}
        self._images: Set[str] = set()
        self._downloaded: Dict[str, str] = {}
        self._download_errors: Dict[str, str] = {}

        self.stats = {
            'reports': 0,
            'duplicate_reports': 0,
            'duplicate_images': 0
        }

    def claim(self, url: str) -> bool:
        """
        Mark a URL as pending.
        Returns False if it is already pending, visited or failed.
        """
        with self._lock:
            if url in self._pending or url in self._visited or url in self._failed:
                return False
            self._pending.add(url)
            return True

    def mark_fetching(self, url: str):
        with self._lock:
            if url in self._pending:
                self._fetching.add(url)

    def state_of(self, url: str) -> Optional[TargetState]:
        with self._lock:
            if url in self._visited or url in self._failed:
                return TargetState.RECORDED
            if url in self._fetching:
                return TargetState.FETCHING
            if url in self._pending:
                return TargetState.PENDING
            return None

    def is_known(self, url: str) -> bool:
        return self.state_of(url) is not None

    def record(self, report: PageReport):
        """Merge one finished target."""
        url = report.target.url
        new_images = []

        with self._lock:
            self.stats['reports'] += 1
            self._pending.discard(url)
            self._fetching.discard(url)

            if report.succeeded:
                if url in self._visited:
                    self.stats['duplicate_reports'] += 1
                else:
                    self._failed.pop(url, None)
                    self._visited.add(url)

                for image in report.images:
                    if image in self._images:
                        self.stats['duplicate_images'] += 1
                    else:
                        self._images.add(image)
                        new_images.append(image)

            elif url in self._visited:
                self.stats['duplicate_reports'] += 1
            else:
                self._failed[url] = report.outcome.failure_kind

        if self.on_new_image is not None:
            for image in new_images:
                self.on_new_image(image)

        if new_images:
            self.logger.debug(f"{url}: {len(new_images)} new images")
        if not report.succeeded:
            self.logger.debug(f"{url}: recorded failure {report.outcome.failure_kind.value}")

    def record_failure(self, target: CrawlTarget, kind: FailureKind):
        """Record a failure that did not come from a fetch outcome."""
        with self._lock:
            self._pending.discard(target.url)
            self._fetching.discard(target.url)
            if target.url not in self._visited:
                self._failed[target.url] = kind

    def record_download(self, url: str, path: Optional[str] = None, error: Optional[str] = None):
        with self._lock:
            if error is None:
                self._download_errors.pop(url, None)
                self._downloaded[url] = path
            elif url not in self._downloaded:
                self._download_errors[url] = error

    def failure_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(kind.value for kind in self._failed.values()))

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def result(self, cancelled: bool = False) -> CrawlResult:
        """Snapshot the current state as an immutable CrawlResult."""
        with self._lock:
            return CrawlResult(
                visited=frozenset(self._visited),
                images=frozenset(self._images),
                failed=MappingProxyType(dict(self._failed)),
                downloaded=MappingProxyType(dict(self._downloaded)),
                download_errors=MappingProxyType(dict(self._download_errors)),
                cancelled=cancelled
            )

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                **self.stats,
                'visited': len(self._visited),
                'images': len(self._images),
                'failed': len(self._failed),
                'pending': len(self._pending)
            }
