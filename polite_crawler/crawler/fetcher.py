"""
Web resource fetcher gated by the politeness controller.
"""

import asyncio
import logging
import time
from typing import Dict, Optional
from urllib.parse import urljoin

from .models import (
    CrawlTarget, DecisionAction, DenyReason, FetchBlocked, FetchDenied, FetchNetworkError, FetchOutcome,
    FetchSuccess, NetworkErrorKind,
)
from .politeness import PolitenessController
from .transport import ResponseTooLarge, Transport, TransportError, TransportResponse
from ..utils.retry import RetryPolicy


BLOCKED_STATUSES = frozenset({408, 429, 502, 503, 504})
NOT_FOUND_STATUSES = frozenset({404, 410})
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class WebFetcher:
    """
    Fetches single resources with robots.txt compliance, per-host pacing,
    redirect following and retry of transient failures.

    Two kinds of retry happen here. Connection failures are retried right
    away under the task-local ``RetryPolicy``. Blocking answers (429, 503,
    ...) are reported to the politeness controller, which then imposes a
    longer wait before the same request is tried again.
    """

    def __init__(self, transport: Transport, politeness: PolitenessController,
                 user_agent: str, max_redirects: int = 5, max_blocked_retries: int = 3,
                 retry_policy: Optional[RetryPolicy] = None,
                 max_concurrent_requests: int = 10):
        self.transport = transport
        self.politeness = politeness
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self.max_blocked_retries = max_blocked_retries
        self.retry_policy = retry_policy or RetryPolicy()

        self.logger = logging.getLogger(__name__)
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'blocked_responses': 0,
            'robots_blocked': 0,
            'redirects_followed': 0,
            'total_bytes_downloaded': 0
        }

    def _headers(self, target: CrawlTarget) -> Dict[str, str]:
        return {
            'User-Agent': self.user_agent,
            'Accept': target.resource_type.accept_header,
        }

    async def fetch(self, target: CrawlTarget) -> FetchOutcome:
        """
        Fetch a single target.

        Args:
            target: The target to fetch

        Returns:
            One of FetchSuccess, FetchBlocked, FetchNetworkError or FetchDenied.
            The outcome has already been reported to the politeness controller.
        """
        start_time = time.time()
        url = target.url
        redirects = 0
        blocked_retries = 0

        while True:
            denied = await self._wait_for_slot(url)
            if denied is not None:
                if denied.reason is DenyReason.ROBOTS_DISALLOWED:
                    self.stats['robots_blocked'] += 1
                await self.politeness.record_outcome(url, denied)
                return denied

            try:
                self.stats['total_requests'] += 1
                async with self.semaphore:
                    response = await self.retry_policy.call(
                        self.transport.get, url, self._headers(target)
                    )
            except TransportError as e:
                self.stats['failed_requests'] += 1
                self.logger.warning(f"Transport failure fetching {url}: {e}", extra={'url': url})
                return await self._report(url, FetchNetworkError(target.url, NetworkErrorKind.TRANSPORT, str(e)))
            except ResponseTooLarge as e:
                self.stats['failed_requests'] += 1
                self.logger.warning(str(e))
                return await self._report(url, FetchNetworkError(target.url, NetworkErrorKind.TOO_LARGE, str(e)))

            status = response.status

            if status in REDIRECT_STATUSES and response.header('location'):
                redirects += 1
                if redirects > self.max_redirects:
                    self.stats['failed_requests'] += 1
                    self.logger.warning(f"Too many redirects starting at {target.url}")
                    return await self._report(url, FetchNetworkError(
                        target.url, NetworkErrorKind.TOO_MANY_REDIRECTS,
                        f"More than {self.max_redirects} redirects"
                    ))
                self.stats['redirects_followed'] += 1
                url = urljoin(url, response.header('location'))
                self.logger.debug(f"Following redirect {redirects} to {url}")
                continue

            outcome = self._classify(target, url, response, time.time() - start_time)

            if isinstance(outcome, FetchBlocked):
                self.stats['blocked_responses'] += 1
                await self.politeness.record_outcome(url, outcome)
                if blocked_retries < self.max_blocked_retries:
                    blocked_retries += 1
                    self.logger.info(
                        f"Blocked with HTTP {status} on {url}, retry {blocked_retries}/{self.max_blocked_retries}"
                    )
                    continue
                self.stats['failed_requests'] += 1
                self.logger.warning(f"Giving up on {url} after {blocked_retries} blocked retries",
                                    extra={'url': url, 'status_code': status})
                return outcome

            if isinstance(outcome, FetchSuccess):
                self.stats['successful_requests'] += 1
                self.stats['total_bytes_downloaded'] += len(outcome.body)
                self.logger.debug(f"Fetched {url}: {status} ({len(outcome.body)} bytes)")
            else:
                self.stats['failed_requests'] += 1
                self.logger.info(f"Fetch of {url} failed with HTTP {status}")
            return await self._report(url, outcome)

    async def _wait_for_slot(self, url: str) -> Optional[FetchDenied]:
        """Ask the politeness controller until it says proceed or deny."""
        while True:
            decision = await self.politeness.may_fetch(url)
            if decision.action is DecisionAction.PROCEED:
                return None
            if decision.action is DecisionAction.DENY:
                return FetchDenied(url, decision.reason)
            delay = decision.wait_until - self.politeness.now()
            if delay > 0:
                await asyncio.sleep(delay)

    async def _report(self, url: str, outcome: FetchOutcome) -> FetchOutcome:
        await self.politeness.record_outcome(url, outcome)
        return outcome

    def _classify(self, target: CrawlTarget, url: str, response: TransportResponse,
                  fetch_time: float) -> FetchOutcome:
        status = response.status
        if 200 <= status < 300:
            return FetchSuccess(
                url=target.url,
                body=response.body,
                content_type=response.content_type,
                final_url=url,
                status_code=status,
                fetch_time=fetch_time
            )
        if status in NOT_FOUND_STATUSES:
            return FetchNetworkError(target.url, NetworkErrorKind.NOT_FOUND, f"HTTP {status}")
        if status in BLOCKED_STATUSES:
            return FetchBlocked(target.url, status, parse_retry_after(response.header('retry-after')))
        if status in REDIRECT_STATUSES:
            return FetchNetworkError(target.url, NetworkErrorKind.HTTP_STATUS, f"HTTP {status} without Location")
        return FetchNetworkError(target.url, NetworkErrorKind.HTTP_STATUS, f"HTTP {status}")

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()

    def reset_stats(self):
        """Reset statistics counters."""
        for key in self.stats:
            self.stats[key] = 0
