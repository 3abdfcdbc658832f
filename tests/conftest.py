"""
Pytest configuration and fixtures
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from models.base import Base
from sync_engine.extractors.api_extractor import RetryPolicy, UpstreamExtractor

UPSTREAM_URL = "https://upstream.test/api/public/customer-orders/v1"
BASE_MODIFIED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Destination
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Temporary-file SQLite database with all tables created"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# ============================================================================
# Upstream records
# ============================================================================

def build_order(i: int, **overrides) -> Dict[str, Any]:
    """A complete, valid upstream order record"""
    record = {
        "id": str(i),
        "orderNumber": f"ORD-{i:05d}",
        "orderType": "purchase",
        "status": "processing",
        "customerName": f"Customer {i}",
        "customerFirstName": "Pat",
        "customerLastName": f"Buyer{i}",
        "customerEmail": f"customer{i}@example.com",
        "customerPhonePrimary": "(555) 123-4567",
        "billingState": "TX",
        "billingZip": "75001",
        "deliveryState": "TX",
        "deliveryZip": "75002",
        "buildingModelName": "Lofted Barn",
        "buildingSize": "10x12",
        "totalAmountDollarAmount": "$4,250.00",
        "subTotalDollarAmount": "3,950.00",
        "stateTaxRate": "0.0625",
        "rto": "no",
        "dateOrdered": "2024-02-01T09:00:00Z",
        "updatedAt": (BASE_MODIFIED + timedelta(minutes=i)).isoformat(),
    }
    record.update(overrides)
    return record


@pytest.fixture
def make_order() -> Callable[..., Dict[str, Any]]:
    return build_order


@pytest.fixture
def order_records() -> List[Dict[str, Any]]:
    return [build_order(i) for i in range(1, 251)]


# ============================================================================
# Fake upstream API
# ============================================================================

class FakeUpstream:
    """
    In-memory paginated upstream served through httpx.MockTransport.

    Args:
        records: The full collection, served by offset/limit
        flags: page index -> value of "hasMore" in the response (omitted when absent)
        failures: page index -> list of HTTP status codes returned on successive
            attempts before the page succeeds
        payload_key: Object key holding the records, or None for a bare array
        total: Value reported as "total" (omitted when None)
    """

    def __init__(
        self,
        records: List[Dict[str, Any]],
        flags: Optional[Dict[int, bool]] = None,
        failures: Optional[Dict[int, List[int]]] = None,
        payload_key: Optional[str] = "data",
        total: Optional[int] = None,
    ):
        self.records = records
        self.flags = flags or {}
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.payload_key = payload_key
        self.total = total
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        limit = int(request.url.params.get("limit", "100"))
        offset = int(request.url.params.get("offset", "0"))
        page_index = offset // limit if limit else 0

        pending = self.failures.get(page_index)
        if pending:
            status = pending.pop(0)
            return httpx.Response(status, json={"error": f"status {status}"})

        records = self.records[offset:offset + limit]
        if self.payload_key is None:
            return httpx.Response(200, json=records)

        body: Dict[str, Any] = {self.payload_key: records}
        if page_index in self.flags:
            body["hasMore"] = self.flags[page_index]
        if self.total is not None:
            body["total"] = self.total
        return httpx.Response(200, json=body)

    @property
    def pages_requested(self) -> int:
        return len(self.requests)


class SleepRecorder:
    """Stand-in for asyncio.sleep that returns immediately"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


FAST_POLICY = RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05)


@pytest.fixture
def fake_upstream() -> Callable[..., FakeUpstream]:
    return FakeUpstream


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def make_extractor(sleep_recorder):
    """Factory building an UpstreamExtractor wired to a FakeUpstream"""
    clients: List[httpx.AsyncClient] = []

    def factory(upstream: FakeUpstream, **kwargs) -> UpstreamExtractor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
        clients.append(client)
        options = {
            "page_size": 100,
            "page_delay": 0,
            "jitter": 0,
            "sleep": sleep_recorder,
            "api_token": "test-token",
        }
        options.update(kwargs)
        return UpstreamExtractor(client, UPSTREAM_URL, **options)

    yield factory

    for client in clients:
        await client.aclose()
