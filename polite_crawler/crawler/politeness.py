"""
Per-host politeness: robots.txt rules, request pacing and failure backoff.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.robotparser import RobotFileParser

from .models import (
    Decision, DenyReason, FetchBlocked, FetchNetworkError, FetchOutcome, FetchSuccess,
    NetworkErrorKind, host_key,
)
from .transport import ResponseTooLarge, Transport, TransportError


class RobotsChecker:
    """Downloads and parses robots.txt for a host."""

    def __init__(self, transport: Transport, user_agent: str):
        self.transport = transport
        self.user_agent = user_agent
        self.logger = logging.getLogger(__name__)

    async def load(self, host: str) -> RobotFileParser:
        """
        Fetch ``{host}/robots.txt`` and return a parser for it.

        A missing file (or one that cannot be fetched) allows everything;
        401/403 disallows everything, as urllib.robotparser does.
        """
        robots_url = f"{host}/robots.txt"
        rp = RobotFileParser()
        rp.set_url(robots_url)

        try:
            response = await self.transport.get(robots_url, headers={'User-Agent': self.user_agent})
        except (TransportError, ResponseTooLarge) as e:
            self.logger.warning(f"Could not fetch robots.txt for {host}: {e}")
            rp.allow_all = True
            return rp

        if 200 <= response.status < 300:
            text = response.body.decode('utf-8', errors='ignore')
            rp.parse(text.splitlines())
        elif response.status in (401, 403):
            rp.disallow_all = True
        else:
            rp.allow_all = True

        self.logger.debug(f"Loaded robots.txt for {host} (HTTP {response.status})")
        return rp


@dataclass
class HostState:
    """Mutable politeness state of one host. Only touched under its lock."""
    min_delay: float
    floor: float
    last_request: Optional[float] = None
    not_before: float = 0.0
    consecutive_failures: int = 0
    quarantined_until: Optional[float] = None
    robots: Optional[RobotFileParser] = None


@dataclass(frozen=True)
class HostSnapshot:
    """Read-only copy of a host's politeness state."""
    host: str
    min_delay: float
    floor: float
    consecutive_failures: int
    quarantined_until: Optional[float]
    last_request: Optional[float]


class PolitenessController:
    """
    Decides when a request to a host may be issued and adapts pacing to
    the outcomes reported back.

    Each host has its own lock, so decisions for unrelated hosts never wait
    on each other. The controller never sleeps: a ``WaitUntil`` decision
    hands the wait back to the caller.
    """

    def __init__(self, transport: Optional[Transport] = None, user_agent: str = '*',
                 politeness_delay: float = 1.0, min_backoff_delay: float = 1.0,
                 max_backoff_delay: float = 60.0, backoff_factor: float = 2.0,
                 quarantine_threshold: int = 5, quarantine_cooldown: float = 300.0,
                 respect_robots_txt: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        self.user_agent = user_agent
        self.politeness_delay = politeness_delay
        self.min_backoff_delay = min_backoff_delay
        self.max_backoff_delay = max_backoff_delay
        self.backoff_factor = backoff_factor
        self.quarantine_threshold = quarantine_threshold
        self.quarantine_cooldown = quarantine_cooldown
        self.respect_robots_txt = respect_robots_txt and transport is not None
        self.clock = clock

        self.logger = logging.getLogger(__name__)
        self.robots_checker = RobotsChecker(transport, user_agent) if self.respect_robots_txt else None

        self._states: Dict[str, HostState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def now(self) -> float:
        return self.clock()

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = self._locks[host] = asyncio.Lock()
        return lock

    def _state_for(self, host: str) -> HostState:
        state = self._states.get(host)
        if state is None:
            state = self._states[host] = HostState(
                min_delay=self.politeness_delay,
                floor=self.politeness_delay
            )
        return state

    async def may_fetch(self, url: str) -> Decision:
        """
        Decide whether ``url`` may be requested now.

        Robots rules are checked first, then quarantine, then pacing. A
        ``Proceed`` decision reserves the host's next request slot.
        """
        host = host_key(url)
        async with self._lock_for(host):
            state = self._state_for(host)

            if self.robots_checker is not None:
                if state.robots is None:
                    state.robots = await self.robots_checker.load(host)
                    self._apply_crawl_delay(host, state)
                if not state.robots.can_fetch(self.user_agent, url):
                    self.logger.info(f"Robots.txt blocks access to: {url}")
                    return Decision.deny(DenyReason.ROBOTS_DISALLOWED)

            now = self.now()
            if state.quarantined_until is not None:
                if now < state.quarantined_until:
                    return Decision.deny(DenyReason.QUARANTINED, until=state.quarantined_until)
                self.logger.info(f"Quarantine lifted for {host}")
                state.quarantined_until = None
                state.consecutive_failures = 0

            next_allowed = state.not_before
            if state.last_request is not None:
                next_allowed = max(next_allowed, state.last_request + state.min_delay)
            if now < next_allowed:
                return Decision.wait(next_allowed)

            state.last_request = now
            return Decision.proceed()

    def _apply_crawl_delay(self, host: str, state: HostState):
        crawl_delay = state.robots.crawl_delay(self.user_agent)
        if crawl_delay is None:
            return
        crawl_delay = float(crawl_delay)
        if crawl_delay > state.floor:
            self.logger.info(f"Using robots.txt crawl delay of {crawl_delay}s for {host}")
            state.floor = crawl_delay
            state.min_delay = max(state.min_delay, crawl_delay)

    async def record_outcome(self, url: str, outcome: FetchOutcome):
        """Fold a fetch outcome into the host's backoff state."""
        host = host_key(url)
        async with self._lock_for(host):
            state = self._state_for(host)

            if isinstance(outcome, FetchSuccess):
                state.consecutive_failures = 0
                state.min_delay = max(state.floor, state.min_delay / self.backoff_factor)

            elif isinstance(outcome, FetchBlocked):
                state.min_delay = min(
                    max(state.min_delay * self.backoff_factor, self.min_backoff_delay),
                    max(self.max_backoff_delay, state.floor)
                )
                if outcome.retry_after:
                    state.not_before = max(state.not_before, self.now() + outcome.retry_after)
                self.logger.warning(
                    f"{host} answered HTTP {outcome.status_code}, delay raised to {state.min_delay:.2f}s"
                )
                self._count_failure(host, state)

            elif isinstance(outcome, FetchNetworkError) and outcome.kind is NetworkErrorKind.TRANSPORT:
                self._count_failure(host, state)

    def _count_failure(self, host: str, state: HostState):
        state.consecutive_failures += 1
        if state.consecutive_failures >= self.quarantine_threshold and state.quarantined_until is None:
            state.quarantined_until = self.now() + self.quarantine_cooldown
            self.logger.warning(
                f"Quarantining {host} for {self.quarantine_cooldown}s after "
                f"{state.consecutive_failures} consecutive failures"
            )

    def snapshot(self, url: str) -> Optional[HostSnapshot]:
        """Return a frozen copy of the host's state, or None if never seen."""
        host = host_key(url)
        state = self._states.get(host)
        if state is None:
            return None
        return HostSnapshot(
            host=host,
            min_delay=state.min_delay,
            floor=state.floor,
            consecutive_failures=state.consecutive_failures,
            quarantined_until=state.quarantined_until,
            last_request=state.last_request
        )

    def current_delay(self, url: str) -> float:
        snapshot = self.snapshot(url)
        return snapshot.min_delay if snapshot else self.politeness_delay

    def hosts(self):
        return list(self._states)
