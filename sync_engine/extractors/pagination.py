"""
End-of-stream detection for an upstream whose pagination metadata is unreliable.

The upstream's ``hasMore`` flag has been observed to report "no more" on full
pages in the middle of the collection, and to return isolated empty pages.
Record counts are therefore trusted over flags.
"""

from typing import Optional
import logging

logger = logging.getLogger(__name__)

STOP_SHORT_PAGE = "short_page"
STOP_EMPTY_PAGES = "consecutive_empty_pages"
STOP_UPSTREAM_END = "upstream_end"
STOP_PAGE_CAP = "page_cap"
STOP_TRUNCATED = "truncated"

EMPTY_PAGES_TO_STOP = 2
FLAG_CONTRADICTIONS_TO_IGNORE = 3


class PaginationTracker:
    """
    Decide after each page whether the stream has ended.

    Rules, in priority order:
    1. a non-empty page with fewer records than requested ends the stream
    2. two consecutive empty pages end the stream
    3. an explicit "no more" flag ends the stream only on a page that was not full

    A "no more" flag on a full page never ends the stream. After three such
    pages in a row the flag is ignored for the rest of the stream.
    """

    def __init__(self, page_size: int):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.consecutive_empty = 0
        self.consecutive_contradictions = 0
        self.ignore_flag = False
        self.stop_reason: Optional[str] = None

    def observe(self, record_count: int, has_more: Optional[bool]) -> bool:
        """
        Record one page. Returns True when the stream has ended; the reason is
        left in ``stop_reason``.
        """
        says_no_more = has_more is False and not self.ignore_flag

        if 0 < record_count < self.page_size:
            return self._stop(STOP_SHORT_PAGE)

        if record_count == 0:
            self.consecutive_empty += 1
            if self.consecutive_empty >= EMPTY_PAGES_TO_STOP:
                return self._stop(STOP_EMPTY_PAGES)
            if says_no_more:
                return self._stop(STOP_UPSTREAM_END)
            logger.info("Empty page received; continuing until a second consecutive empty page")
            return False

        # Full page
        self.consecutive_empty = 0
        if says_no_more:
            self.consecutive_contradictions += 1
            logger.warning(
                f"Upstream reported no more records on a full page "
                f"({self.consecutive_contradictions} in a row); continuing"
            )
            if self.consecutive_contradictions >= FLAG_CONTRADICTIONS_TO_IGNORE:
                self.ignore_flag = True
                logger.warning("Ignoring the upstream hasMore flag for the rest of this stream")
        else:
            self.consecutive_contradictions = 0
        return False

    def _stop(self, reason: str) -> bool:
        self.stop_reason = reason
        return True
