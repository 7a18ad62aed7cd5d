"""
Data model shared by the crawler components.
"""

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import urlparse


class URLPriority(Enum):
    """URL priority levels."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class ResourceType(Enum):
    """Kind of resource a target points at. Drives the Accept header."""
    PAGE = 'page'
    IMAGE = 'image'

    @property
    def accept_header(self) -> str:
        return _ACCEPT_HEADERS[self]


_ACCEPT_HEADERS = {
    ResourceType.PAGE: 'text/html,application/xhtml+xml;q=0.9,*/*;q=0.8',
    ResourceType.IMAGE: 'image/avif,image/webp,image/apng,image/*,*/*;q=0.8',
}


class TargetState(Enum):
    """Lifecycle of a single crawl target."""
    PENDING = 'pending'
    FETCHING = 'fetching'
    EXTRACTED = 'extracted'
    FAILED = 'failed'
    RECORDED = 'recorded'


class FailureKind(Enum):
    """Classification stored in the failure map of a crawl result."""
    ROBOTS_DISALLOWED = 'robots_disallowed'
    QUARANTINED = 'quarantined'
    BLOCKED = 'blocked'
    NOT_FOUND = 'not_found'
    TRANSPORT = 'transport'
    TOO_MANY_REDIRECTS = 'too_many_redirects'
    HTTP_STATUS = 'http_status'
    TOO_LARGE = 'too_large'
    ERROR = 'error'


class NetworkErrorKind(Enum):
    NOT_FOUND = 'not_found'
    TRANSPORT = 'transport'
    TOO_MANY_REDIRECTS = 'too_many_redirects'
    HTTP_STATUS = 'http_status'
    TOO_LARGE = 'too_large'


class DenyReason(Enum):
    ROBOTS_DISALLOWED = 'robots_disallowed'
    QUARANTINED = 'quarantined'


@dataclass(frozen=True)
class CrawlTarget:
    """A URL scheduled for crawling."""
    url: str
    depth: int = 0
    priority: URLPriority = URLPriority.NORMAL
    parent_url: Optional[str] = None
    resource_type: ResourceType = ResourceType.PAGE

    @property
    def host(self) -> str:
        return host_key(self.url)


def host_key(url: str) -> str:
    """Origin used to key per-host state, e.g. ``http://example.test``."""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


# Fetch outcomes. Exactly one of these is produced per fetched target.

@dataclass(frozen=True)
class FetchSuccess:
    url: str
    body: bytes
    content_type: str
    final_url: str
    status_code: int = 200
    fetch_time: float = 0.0

    failure_kind = None

    @property
    def is_html(self) -> bool:
        content_type = self.content_type.lower()
        return 'html' in content_type or content_type == ''


@dataclass(frozen=True)
class FetchBlocked:
    url: str
    status_code: int
    retry_after: Optional[float] = None

    failure_kind = FailureKind.BLOCKED


@dataclass(frozen=True)
class FetchNetworkError:
    url: str
    kind: NetworkErrorKind
    message: str = ''

    @property
    def failure_kind(self) -> FailureKind:
        return FailureKind(self.kind.value)


@dataclass(frozen=True)
class FetchDenied:
    url: str
    reason: DenyReason

    @property
    def failure_kind(self) -> FailureKind:
        return FailureKind(self.reason.value)


FetchOutcome = Union[FetchSuccess, FetchBlocked, FetchNetworkError, FetchDenied]


class DecisionAction(Enum):
    PROCEED = 'proceed'
    WAIT = 'wait'
    DENY = 'deny'


@dataclass(frozen=True)
class Decision:
    """Answer of the politeness controller to a fetch request."""
    action: DecisionAction
    wait_until: Optional[float] = None
    reason: Optional[DenyReason] = None

    @classmethod
    def proceed(cls) -> 'Decision':
        return cls(DecisionAction.PROCEED)

    @classmethod
    def wait(cls, until: float) -> 'Decision':
        return cls(DecisionAction.WAIT, wait_until=until)

    @classmethod
    def deny(cls, reason: DenyReason, until: Optional[float] = None) -> 'Decision':
        return cls(DecisionAction.DENY, wait_until=until, reason=reason)


_IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.avif', '.ico', '.tif', '.tiff'
}
_UNSAFE_CHARS = re.compile(r'[^a-z0-9]')


@dataclass(frozen=True)
class DownloadJob:
    """An image URL and the file it is written to."""
    url: str
    path: Path

    @classmethod
    def for_url(cls, url: str, destination: Union[str, Path]) -> 'DownloadJob':
        """
        Build a job whose file name is derived from the URL alone.

        The name is a SHA-1 prefix of the full URL followed by the image
        extension found in the URL path (``.img`` when there is none), so two
        distinct URLs never map to the same file.
        """
        digest = hashlib.sha1(url.encode('utf-8')).hexdigest()[:20]
        suffix = PurePosixPath(urlparse(url).path).suffix.lower()
        if suffix not in _IMAGE_EXTENSIONS:
            suffix = '.img'
        stem = PurePosixPath(urlparse(url).path).stem.lower()
        stem = _UNSAFE_CHARS.sub('_', stem)[:40].strip('_')
        name = f"{digest}_{stem}{suffix}" if stem else f"{digest}{suffix}"
        return cls(url=url, path=Path(destination) / name)
