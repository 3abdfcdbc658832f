"""
Unit tests for end-of-stream detection
"""

import math

import pytest

from sync_engine.extractors.pagination import (
    PaginationTracker,
    STOP_EMPTY_PAGES,
    STOP_SHORT_PAGE,
    STOP_UPSTREAM_END,
)


class TestPaginationTracker:
    """Termination rules applied one page at a time"""

    def test_short_page_stops(self):
        tracker = PaginationTracker(page_size=100)
        assert tracker.observe(100, True) is False
        assert tracker.observe(40, True) is True
        assert tracker.stop_reason == STOP_SHORT_PAGE

    def test_single_empty_page_continues(self):
        tracker = PaginationTracker(page_size=100)
        assert tracker.observe(0, None) is False
        assert tracker.stop_reason is None

    def test_two_consecutive_empty_pages_stop(self):
        tracker = PaginationTracker(page_size=100)
        assert tracker.observe(0, True) is False
        assert tracker.observe(0, True) is True
        assert tracker.stop_reason == STOP_EMPTY_PAGES

    def test_empty_pages_separated_by_full_page_do_not_stop(self):
        tracker = PaginationTracker(page_size=10)
        assert tracker.observe(0, None) is False
        assert tracker.observe(10, None) is False
        assert tracker.observe(0, None) is False

    def test_no_more_flag_on_empty_page_stops(self):
        tracker = PaginationTracker(page_size=100)
        assert tracker.observe(0, False) is True
        assert tracker.stop_reason == STOP_UPSTREAM_END

    def test_no_more_flag_on_full_page_never_stops(self):
        tracker = PaginationTracker(page_size=100)
        assert tracker.observe(100, False) is False
        assert tracker.observe(100, False) is False
        assert tracker.stop_reason is None

    def test_flag_ignored_after_three_contradictions(self):
        tracker = PaginationTracker(page_size=100)
        for _ in range(3):
            assert tracker.observe(100, False) is False
        assert tracker.ignore_flag is True

        # The flag no longer ends the stream even on an empty page
        assert tracker.observe(0, False) is False
        assert tracker.observe(0, False) is True
        assert tracker.stop_reason == STOP_EMPTY_PAGES

    def test_contradiction_streak_resets(self):
        tracker = PaginationTracker(page_size=100)
        tracker.observe(100, False)
        tracker.observe(100, False)
        tracker.observe(100, True)
        tracker.observe(100, False)
        assert tracker.ignore_flag is False

    def test_rejects_non_positive_page_size(self):
        with pytest.raises(ValueError):
            PaginationTracker(page_size=0)


# ============================================================================
# Stream-level termination property
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "total_records,page_size,flags",
    [
        # Flags correct
        (250, 100, {0: True, 1: True, 2: False}),
        # "More data" wrongly true on the last full page, and on the empty page after it
        (300, 100, {0: True, 1: True, 2: True, 3: True}),
        # "No more" wrongly reported on a non-last full page
        (300, 100, {0: False, 1: True, 2: False}),
        # Flag always "no more"
        (500, 100, {i: False for i in range(10)}),
        # No flags at all
        (200, 50, {}),
        (7, 10, {}),
        (0, 10, {}),
    ],
)
async def test_stream_yields_every_record_and_terminates(
    fake_upstream, make_extractor, make_order, total_records, page_size, flags
):
    """N records in pages of P are all delivered over ceil(N/P) non-empty pages"""
    records = [make_order(i) for i in range(total_records)]
    upstream = fake_upstream(records, flags=flags)
    extractor = make_extractor(upstream, page_size=page_size)

    stream = extractor.stream()
    delivered = []
    non_empty_pages = 0
    async for page in stream:
        delivered.extend(page.records)
        if page.records:
            non_empty_pages += 1

    assert [r["id"] for r in delivered] == [r["id"] for r in records]
    assert non_empty_pages == math.ceil(total_records / page_size)
    assert stream.truncated is False
    assert stream.stop_reason is not None
    # Never more than two pages past the data
    assert upstream.pages_requested <= non_empty_pages + 2


@pytest.mark.asyncio
async def test_total_metadata_derives_has_more(fake_upstream, make_extractor, make_order):
    records = [make_order(i) for i in range(300)]
    upstream = fake_upstream(records, total=300)
    extractor = make_extractor(upstream, page_size=100)

    stream = extractor.stream()
    pages = [page async for page in stream]

    assert sum(len(p.records) for p in pages) == 300
    assert pages[0].has_more is True
    assert pages[2].has_more is False  # full page contradicting itself: ignored
    assert stream.stop_reason == STOP_UPSTREAM_END
