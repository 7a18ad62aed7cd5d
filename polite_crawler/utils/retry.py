"""
Task-local retry policy for transport failures.
"""

from dataclasses import dataclass

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..crawler.transport import TransportError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for connection-level failures.

    ``attempts`` counts the first try, so ``attempts=3`` means two retries.
    Waits grow as ``base_delay * 2 ** n`` seconds and never exceed ``max_delay``.
    """
    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(TransportError),
            reraise=True
        )

    async def call(self, func, *args, **kwargs):
        """Run ``await func(*args, **kwargs)`` under this policy."""
        async for attempt in self.retrying():
            with attempt:
                return await func(*args, **kwargs)
