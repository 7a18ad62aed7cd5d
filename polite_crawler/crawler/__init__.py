"""
Web crawler core components.
"""

from .models import (
    CrawlTarget, DownloadJob, FailureKind, FetchBlocked, FetchDenied, FetchNetworkError,
    FetchOutcome, FetchSuccess, URLPriority,
)
from .transport import AiohttpTransport, Transport, TransportError, TransportResponse
from .politeness import PolitenessController
from .fetcher import WebFetcher
from .parser import ExtractedPage, ImageExtractor
from .url_frontier import URLFrontier

__all__ = [
    'CrawlTarget', 'DownloadJob', 'FailureKind', 'URLPriority',
    'FetchOutcome', 'FetchSuccess', 'FetchBlocked', 'FetchNetworkError', 'FetchDenied',
    'Transport', 'AiohttpTransport', 'TransportError', 'TransportResponse',
    'PolitenessController', 'WebFetcher',
    'ImageExtractor', 'ExtractedPage',
    'URLFrontier'
]
