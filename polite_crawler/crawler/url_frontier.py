"""
URL Frontier implementation for managing URLs to crawl.
Keeps per-host queues and caps the number of concurrent visitors per host.
"""

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from .models import CrawlTarget


class URLFrontier:
    """
    Holds targets that have been claimed but not yet dispatched.

    Pacing is left to the politeness controller; the frontier only decides
    which host gets the next free task slot, preferring higher priority and
    skipping hosts that already have ``max_host_visitors`` targets in flight.
    """

    def __init__(self, max_depth: int = 4, max_host_visitors: int = 512):
        self.max_depth = max_depth
        self.max_host_visitors = max_host_visitors
        self.logger = logging.getLogger(__name__)

        self.domain_queues: Dict[str, Deque[CrawlTarget]] = defaultdict(deque)
        self.host_visitors: Dict[str, int] = defaultdict(int)

    def add(self, target: CrawlTarget) -> bool:
        """
        Queue a target.
        Returns False if it is deeper than the configured maximum.
        """
        if target.depth > self.max_depth:
            self.logger.debug(f"Skipping URL beyond max depth: {target.url}")
            return False

        self.domain_queues[target.host].append(target)
        self.logger.debug(f"Added URL to frontier: {target.url}")
        return True

    def add_all(self, targets: List[CrawlTarget]) -> int:
        """Add multiple targets. Returns count of added targets."""
        return sum(1 for target in targets if self.add(target))

    def next_target(self) -> Optional[CrawlTarget]:
        """
        Take the next target to dispatch, or None if every non-empty host is
        at its visitor limit (or nothing is queued).
        """
        best_host = None
        best_priority = None
        for host, queue in self.domain_queues.items():
            if not queue or self.host_visitors[host] >= self.max_host_visitors:
                continue
            priority = queue[0].priority.value
            if best_priority is None or priority > best_priority:
                best_host, best_priority = host, priority

        if best_host is None:
            return None

        target = self.domain_queues[best_host].popleft()
        self.host_visitors[best_host] += 1
        self.logger.debug(f"Retrieved URL from frontier: {target.url}")
        return target

    def release(self, target: CrawlTarget):
        """Free the visitor slot taken by a dispatched target."""
        host = target.host
        if self.host_visitors[host] > 0:
            self.host_visitors[host] -= 1

    def is_empty(self) -> bool:
        """Check if nothing is queued."""
        return all(len(queue) == 0 for queue in self.domain_queues.values())

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            'total_queued': sum(len(queue) for queue in self.domain_queues.values()),
            'domains_with_urls': len([d for d, q in self.domain_queues.items() if q]),
            'in_flight': sum(self.host_visitors.values()),
            'total_domains': len(self.domain_queues)
        }
