"""
Upstream order API extractor with retry, backoff and end-of-stream detection.

This module provides:
- Per-page retrieval (``fetch_page``) with failure classification
- Exponential backoff with random jitter, with a separate ceiling per failure class
- A restartable lazy page sequence (``stream``) that survives contradictory
  pagination metadata
- A lightweight upstream health probe
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging
import random
import time

import httpx

from core.config import Settings
from core.exceptions import (
    AuthError,
    ExtractionError,
    MalformedResponseError,
    OtherClientError,
    RateLimitedError,
    RetryableError,
    TransientNetworkError,
    UpstreamServerError,
)
from sync_engine.extractors.pagination import (
    PaginationTracker,
    STOP_PAGE_CAP,
    STOP_TRUNCATED,
)

logger = logging.getLogger(__name__)

# Conventional keys holding the record array, in preference order
RECORD_KEYS = ("data", "records", "items", "results", "rows", "orders")
TOTAL_KEYS = ("total", "totalCount", "count")
MORE_KEYS = ("hasMore", "has_more")
MODIFIED_KEYS = ("updatedAt", "updated_at", "lastModified", "dateUpdated")

CURSOR_OFFSET = "offset"
CURSOR_ID = "id"


# ============================================================================
# Value types
# ============================================================================

@dataclass(frozen=True)
class PageCursor:
    """Position in the upstream collection. A stream can restart from any cursor it yielded."""
    offset: int = 0
    last_id: Optional[str] = None


@dataclass
class Page:
    records: List[Dict[str, Any]]
    cursor: PageCursor
    next_cursor: PageCursor
    has_more: Optional[bool] = None
    total: Optional[int] = None
    max_modified: Optional[datetime] = None
    end_of_stream: bool = False
    malformed: bool = False


@dataclass(frozen=True)
class RetryPolicy:
    """Retry ceiling and backoff shape for one failure class"""
    max_attempts: int
    base_delay: float
    max_delay: float

    def backoff(self, attempt: int, jitter: float = 0.0) -> float:
        """Delay before the attempt after ``attempt`` (1-based)"""
        delay = self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)
        return min(delay, self.max_delay)


RATE_LIMIT_POLICY = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=60.0)
SERVER_ERROR_POLICY = RetryPolicy(max_attempts=4, base_delay=2.0, max_delay=30.0)
NETWORK_ERROR_POLICY = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=30.0)


# ============================================================================
# Payload helpers
# ============================================================================

def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        try:
            moment = datetime.fromtimestamp(value / 1000 if value > 1e11 else value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        try:
            moment = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def record_modified_at(record: Dict[str, Any]) -> Optional[datetime]:
    """First parseable "last modified" timestamp on an upstream record"""
    if not isinstance(record, dict):
        return None
    for key in MODIFIED_KEYS:
        moment = _parse_timestamp(record.get(key))
        if moment is not None:
            return moment
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def extract_records(payload: Any) -> Tuple[List[Dict[str, Any]], Optional[bool], Optional[int]]:
    """
    Pull ``(records, has_more, total)`` out of a decoded response body.

    Raises:
        MalformedResponseError: If no record array can be found
    """
    if isinstance(payload, list):
        return payload, None, None

    if not isinstance(payload, dict):
        raise MalformedResponseError(
            "Response body is neither an array nor an object",
            context={"body_type": type(payload).__name__}
        )

    records = None
    for key in RECORD_KEYS:
        if isinstance(payload.get(key), list):
            records = payload[key]
            break
    if records is None:
        for key, value in payload.items():
            if isinstance(value, list):
                logger.debug(f"Using fallback record key '{key}'")
                records = value
                break
    if records is None:
        raise MalformedResponseError(
            "Response object has no array-valued property",
            context={"keys": sorted(payload.keys())[:20]}
        )

    has_more = None
    for key in MORE_KEYS:
        if isinstance(payload.get(key), bool):
            has_more = payload[key]
            break

    total = None
    nested = payload.get("pagination") if isinstance(payload.get("pagination"), dict) else {}
    for source in (payload, nested):
        for key in TOTAL_KEYS:
            total = _as_int(source.get(key))
            if total is not None:
                break
        if total is not None:
            break

    return records, has_more, total


def _retry_after(response: httpx.Response) -> Optional[float]:
    header = response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        return None


# ============================================================================
# Page stream
# ============================================================================

class PageStream:
    """
    Async iterator over pages, with stream-level outcome attributes:

    - ``pages_fetched`` / ``records_fetched``
    - ``stop_reason``: why the stream ended
    - ``truncated``: a later page failed and the stream ended early
    - ``last_cursor``: cursor of the last page that was delivered
    - ``error``: the absorbed error when truncated
    """

    def __init__(
        self,
        extractor: "UpstreamExtractor",
        cursor: PageCursor,
        updated_since: Optional[str] = None,
    ):
        self.extractor = extractor
        self.start_cursor = cursor
        self.updated_since = updated_since
        self.pages_fetched = 0
        self.records_fetched = 0
        self.stop_reason: Optional[str] = None
        self.truncated = False
        self.last_cursor: Optional[PageCursor] = None
        self.error: Optional[ExtractionError] = None

    def __aiter__(self) -> AsyncIterator[Page]:
        return self._pages()

    async def _pages(self) -> AsyncIterator[Page]:
        extractor = self.extractor
        tracker = PaginationTracker(extractor.page_size)
        cursor = self.start_cursor

        while True:
            if extractor.max_pages and self.pages_fetched >= extractor.max_pages:
                logger.warning(f"Page cap of {extractor.max_pages} reached; ending stream")
                self.stop_reason = STOP_PAGE_CAP
                return

            try:
                page = await extractor.fetch_page(cursor, updated_since=self.updated_since)
            except AuthError:
                raise
            except ExtractionError as e:
                if self.pages_fetched == 0:
                    raise
                logger.error(
                    f"Page at offset {cursor.offset} failed after {self.pages_fetched} good page(s); "
                    f"ending stream with partial data",
                    extra={"error_context": e.to_dict()}
                )
                self.truncated = True
                self.error = e
                self.stop_reason = STOP_TRUNCATED
                return

            self.pages_fetched += 1
            self.records_fetched += len(page.records)
            self.last_cursor = page.cursor

            page.end_of_stream = tracker.observe(len(page.records), page.has_more)
            if page.end_of_stream:
                self.stop_reason = tracker.stop_reason
                logger.info(
                    f"End of stream after {self.pages_fetched} page(s), "
                    f"{self.records_fetched} record(s): {self.stop_reason}"
                )

            yield page

            if page.end_of_stream:
                return

            cursor = page.next_cursor
            if extractor.page_delay:
                await extractor.sleep(extractor.page_delay)


# ============================================================================
# Extractor
# ============================================================================

class UpstreamExtractor:
    """
    Paginated reader for the upstream order collection.

    Failure handling:
    - 401/403: AuthError, never retried
    - 429: RateLimitedError, retried under the rate-limit policy (Retry-After honoured up to the cap)
    - 5xx: UpstreamServerError, retried under the server-error policy
    - timeouts/transport errors: TransientNetworkError, retried under the network policy
    - other 4xx: OtherClientError, not retried
    - undecodable or unrecognised body: MalformedResponseError, page treated as empty

    The HTTP client is injected; the extractor never closes it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        api_token: Optional[str] = None,
        page_size: int = 100,
        sort_by: str = "id",
        sort_order: str = "asc",
        cursor_mode: str = CURSOR_OFFSET,
        updated_since_param: str = "updated_since",
        timeout: float = 60.0,
        max_pages: int = 0,
        page_delay: float = 0.1,
        rate_limit_policy: RetryPolicy = RATE_LIMIT_POLICY,
        server_error_policy: RetryPolicy = SERVER_ERROR_POLICY,
        network_policy: RetryPolicy = NETWORK_ERROR_POLICY,
        jitter: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if cursor_mode not in (CURSOR_OFFSET, CURSOR_ID):
            raise ValueError(f"Unknown cursor mode: {cursor_mode}")
        self.client = client
        self.url = url
        self.api_token = api_token
        self.page_size = page_size
        self.sort_by = sort_by
        self.sort_order = sort_order
        self.cursor_mode = cursor_mode
        self.updated_since_param = updated_since_param
        self.timeout = timeout
        self.max_pages = max_pages
        self.page_delay = page_delay
        self.policies = {
            RateLimitedError: rate_limit_policy,
            UpstreamServerError: server_error_policy,
            TransientNetworkError: network_policy,
        }
        self.jitter = jitter
        self.sleep = sleep

    @property
    def ordered_by_modification(self) -> bool:
        """True when pages arrive oldest change first, so each page end is a resume point"""
        return self.sort_by in MODIFIED_KEYS and self.sort_order.lower() == "asc"

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "UpstreamExtractor":
        return cls(
            client=client,
            url=settings.upstream_url,
            api_token=settings.UPSTREAM_API_TOKEN,
            page_size=settings.UPSTREAM_PAGE_SIZE,
            sort_by=settings.UPSTREAM_SORT_BY,
            sort_order=settings.UPSTREAM_SORT_ORDER,
            cursor_mode=settings.UPSTREAM_CURSOR_MODE,
            updated_since_param=settings.UPSTREAM_UPDATED_SINCE_PARAM,
            timeout=settings.UPSTREAM_TIMEOUT,
            max_pages=settings.UPSTREAM_MAX_PAGES,
            page_delay=settings.UPSTREAM_PAGE_DELAY,
            rate_limit_policy=RetryPolicy(
                settings.RATE_LIMIT_MAX_ATTEMPTS,
                settings.RATE_LIMIT_BASE_DELAY,
                settings.RATE_LIMIT_MAX_DELAY,
            ),
            server_error_policy=RetryPolicy(
                settings.SERVER_ERROR_MAX_ATTEMPTS,
                settings.SERVER_ERROR_BASE_DELAY,
                settings.SERVER_ERROR_MAX_DELAY,
            ),
            network_policy=RetryPolicy(
                settings.NETWORK_ERROR_MAX_ATTEMPTS,
                settings.NETWORK_ERROR_BASE_DELAY,
                settings.NETWORK_ERROR_MAX_DELAY,
            ),
            jitter=settings.RETRY_JITTER,
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _params(self, cursor: PageCursor, limit: int, updated_since: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "limit": limit,
            "sortBy": self.sort_by,
            "sortOrder": self.sort_order,
        }
        if self.cursor_mode == CURSOR_ID:
            if cursor.last_id is not None:
                params["after_id"] = cursor.last_id
        else:
            params["offset"] = cursor.offset
        if updated_since:
            params[self.updated_since_param] = updated_since
        return params

    async def _send(self, params: Dict[str, Any], attempt: int) -> httpx.Response:
        """One HTTP call, classified into the failure taxonomy"""
        try:
            response = await self.client.get(
                self.url,
                params=params,
                headers=self._headers(),
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                "Upstream request timed out",
                context={"url": self.url, "attempt": attempt, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(
                "Upstream transport error",
                context={"url": self.url, "attempt": attempt},
                original_exception=e
            )

        status = response.status_code
        context = {"url": self.url, "status_code": status, "attempt": attempt, "offset": params.get("offset")}

        if status in (401, 403):
            raise AuthError("Upstream rejected credentials", context=context)
        if status == 429:
            raise RateLimitedError(
                "Upstream rate limit hit",
                context=context,
                retry_after=_retry_after(response)
            )
        if status >= 500:
            context["response_body"] = response.text[:500]
            raise UpstreamServerError(f"Upstream server error {status}", context=context)
        if status >= 400:
            context["response_body"] = response.text[:500]
            raise OtherClientError(f"Upstream client error {status}", context=context)
        return response

    async def _request_with_retry(self, params: Dict[str, Any]) -> httpx.Response:
        """
        Execute one page request, retrying retryable failures.

        Each failure class counts its own attempts against its own ceiling.

        Raises:
            AuthError, OtherClientError: Immediately
            RateLimitedError, UpstreamServerError, TransientNetworkError: When the
                class's ceiling is exhausted
        """
        attempts: Dict[type, int] = {}
        total_attempts = 0

        while True:
            total_attempts += 1
            try:
                return await self._send(params, total_attempts)
            except RetryableError as e:
                error_class = type(e)
                policy = self.policies[error_class]
                attempts[error_class] = attempts.get(error_class, 0) + 1
                used = attempts[error_class]

                if used >= policy.max_attempts:
                    e.context["attempts"] = used
                    logger.error(
                        f"{error_class.__name__} persisted after {used} attempt(s); giving up",
                        extra={"error_context": e.to_dict()}
                    )
                    raise

                delay = policy.backoff(used, self.jitter)
                if e.retry_after is not None:
                    delay = min(e.retry_after, policy.max_delay)
                logger.warning(
                    f"{error_class.__name__} on attempt {used}/{policy.max_attempts}; "
                    f"retrying in {delay:.2f}s"
                )
                await self.sleep(delay)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def fetch_page(self, cursor: PageCursor, updated_since: Optional[str] = None) -> Page:
        """
        Fetch the page at ``cursor``.

        A malformed body is logged and returned as an empty page flagged
        ``malformed``; every other failure raises after retries.
        """
        params = self._params(cursor, self.page_size, updated_since)
        response = await self._request_with_retry(params)

        try:
            records, has_more, total = extract_records(response.json())
        except ValueError as e:
            error = MalformedResponseError(
                "Response body is not valid JSON",
                context={"url": self.url, "offset": cursor.offset, "response_body": response.text[:200]},
                original_exception=e
            )
            logger.error(error.message, extra={"error_context": error.to_dict()})
            return self._empty_page(cursor)
        except MalformedResponseError as e:
            e.context.update({"url": self.url, "offset": cursor.offset})
            logger.error(e.message, extra={"error_context": e.to_dict()})
            return self._empty_page(cursor)

        records = [r for r in records if r is not None]
        if has_more is None and total is not None:
            has_more = cursor.offset + len(records) < total

        modified = [m for m in (record_modified_at(r) for r in records) if m is not None]
        last_id = cursor.last_id
        if records and isinstance(records[-1], dict) and records[-1].get("id") is not None:
            last_id = str(records[-1]["id"])

        logger.debug(f"Fetched {len(records)} record(s) at offset {cursor.offset} (has_more={has_more}, total={total})")
        return Page(
            records=records,
            cursor=cursor,
            next_cursor=PageCursor(offset=cursor.offset + self.page_size, last_id=last_id),
            has_more=has_more,
            total=total,
            max_modified=max(modified) if modified else None,
        )

    def _empty_page(self, cursor: PageCursor) -> Page:
        return Page(
            records=[],
            cursor=cursor,
            next_cursor=PageCursor(offset=cursor.offset + self.page_size, last_id=cursor.last_id),
            malformed=True,
        )

    def stream(self, cursor: Optional[PageCursor] = None, updated_since: Optional[str] = None) -> PageStream:
        """Lazy page sequence starting at ``cursor`` (the beginning by default)"""
        return PageStream(self, cursor or PageCursor(), updated_since=updated_since)

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def health_check(self) -> Dict[str, Any]:
        """Single-record probe. Never raises."""
        started = time.monotonic()
        try:
            response = await self._send(self._params(PageCursor(), 1, None), attempt=1)
            _, _, total = extract_records(response.json())
            return {
                "status": "healthy",
                "total": total,
                "latency_ms": round((time.monotonic() - started) * 1000, 1),
            }
        except (ExtractionError, ValueError) as e:
            logger.warning(f"Upstream health probe failed: {e}")
            return {
                "status": "unhealthy",
                "error": getattr(e, "message", str(e)),
                "latency_ms": round((time.monotonic() - started) * 1000, 1),
            }
