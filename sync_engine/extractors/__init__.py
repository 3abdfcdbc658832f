from sync_engine.extractors.api_extractor import (
    Page,
    PageCursor,
    PageStream,
    RetryPolicy,
    UpstreamExtractor,
)
from sync_engine.extractors.pagination import PaginationTracker

__all__ = [
    "Page",
    "PageCursor",
    "PageStream",
    "RetryPolicy",
    "UpstreamExtractor",
    "PaginationTracker",
]
