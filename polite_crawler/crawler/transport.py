"""
Network egress for the crawler.

The fetcher, robots checker and image downloader never talk to aiohttp
directly; they go through a ``Transport`` so that proxies, test doubles or a
different HTTP client can be plugged in.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout


class TransportError(Exception):
    """Connection-level failure (refused, reset, DNS, timeout). Retryable."""


class ResponseTooLarge(Exception):
    """The response body exceeded the configured size limit."""


@dataclass
class TransportResponse:
    """Raw HTTP response as seen by the crawler."""
    url: str
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b''

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == 'content-type':
                return value.lower()
        return ''

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class Transport(ABC):
    """Performs single GET requests without following redirects."""

    async def start(self):
        """Acquire network resources."""

    async def close(self):
        """Release network resources."""

    @abstractmethod
    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> TransportResponse:
        """
        Fetch ``url`` once.

        Raises:
            TransportError: connection or timeout failure
            ResponseTooLarge: body larger than the transport's limit
        """

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


ProxySelector = Callable[[str], Optional[str]]


class AiohttpTransport(Transport):
    """
    aiohttp-backed transport.

    ``proxy`` routes every request through one proxy; ``proxy_selector`` is
    called with each URL and may return a proxy for it (or None), which is
    where a rotation strategy would hook in.
    """

    def __init__(self, request_timeout: float = 20, max_connections: int = 20,
                 max_connections_per_host: int = 10,
                 max_content_size: int = 10 * 1024 * 1024,
                 proxy: Optional[str] = None,
                 proxy_selector: Optional[ProxySelector] = None):
        self.request_timeout = request_timeout
        self.max_connections = max_connections
        self.max_connections_per_host = max_connections_per_host
        self.max_content_size = max_content_size
        self.proxy = proxy
        self.proxy_selector = proxy_selector

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

    async def start(self):
        """Initialize the HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    limit_per_host=self.max_connections_per_host,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("HTTP transport session started")

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("HTTP transport session closed")

    def _proxy_for(self, url: str) -> Optional[str]:
        if self.proxy_selector is not None:
            return self.proxy_selector(url)
        return self.proxy

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> TransportResponse:
        if self.session is None:
            await self.start()

        try:
            async with self.session.get(url, headers=headers, allow_redirects=False,
                                        proxy=self._proxy_for(url)) as response:
                body = await self._read_body(response)
                return TransportResponse(
                    url=str(response.url),
                    status=response.status,
                    headers=dict(response.headers),
                    body=body
                )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request timeout: {url}") from e
        except ClientError as e:
            raise TransportError(f"Client error: {e}") from e

    async def _read_body(self, response) -> bytes:
        """Read the body in chunks, refusing anything over the size limit."""
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            raise ResponseTooLarge(f"Content too large ({content_length} bytes): {response.url}")

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_size:
                raise ResponseTooLarge(f"Content exceeded size limit during reading: {response.url}")
            chunks.append(chunk)
        return b''.join(chunks)
