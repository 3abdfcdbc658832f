"""
Load typed order rows into the destination with upsert logic (idempotency)
and reconcile upstream deletions with a tombstone sweep.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence
import asyncio
import logging

from sqlalchemy import delete, func, or_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import LoadError, WriteChunkError
from models.order import Order
from schemas.order import OrderRow

logger = logging.getLogger(__name__)

# Never overwritten on conflict
_IMMUTABLE_COLUMNS = {"id", "created_at"}


@dataclass
class UpsertResult:
    """Outcome of one ``upsert`` call"""
    attempted: int = 0
    written: int = 0
    inserted: int = 0
    updated: int = 0
    written_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    failures: List[WriteChunkError] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)


class OrderWriter:
    """
    Write OrderRows into the ``orders`` table.

    Ensures:
    - No duplicate rows on repeated runs (INSERT ... ON CONFLICT (id) DO UPDATE)
    - Every written row is stamped with the run marker in ``synced_at``
    - A failing chunk is rolled back and reported; later chunks still run

    This is the only component that mutates the destination table.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        batch_size: int = 500,
        chunk_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.session_maker = session_maker
        self.batch_size = batch_size
        self.chunk_delay = chunk_delay
        self.sleep = sleep

    def _insert(self, dialect_name: str):
        if dialect_name == "postgresql":
            return postgresql.insert(Order)
        if dialect_name == "sqlite":
            return sqlite.insert(Order)
        raise LoadError(
            f"Unsupported destination dialect: {dialect_name}",
            context={"dialect": dialect_name}
        )

    def _upsert_statement(self, dialect_name: str, values: List[Dict[str, Any]]):
        stmt = self._insert(dialect_name).values(values)
        update_columns = {
            column.name: stmt.excluded[column.name]
            for column in Order.__table__.columns
            if column.name not in _IMMUTABLE_COLUMNS
        }
        return stmt.on_conflict_do_update(index_elements=["id"], set_=update_columns)

    @staticmethod
    def _collapse(rows: Sequence[OrderRow]) -> List[OrderRow]:
        """Keep the last occurrence of each id, in first-seen order"""
        latest: Dict[str, OrderRow] = {}
        for row in rows:
            latest[row.id] = row
        return list(latest.values())

    async def upsert(self, rows: Sequence[OrderRow], run_marker: datetime) -> UpsertResult:
        """
        Upsert ``rows`` in fixed-size chunks.

        Args:
            rows: Transformed rows; duplicate ids collapse to the last occurrence
            run_marker: Timestamp written to ``synced_at`` on every row

        Returns:
            UpsertResult with attempted vs. written counts and chunk failures
        """
        result = UpsertResult(attempted=len(rows))
        unique_rows = self._collapse(rows)
        if len(unique_rows) < len(rows):
            logger.info(f"Collapsed {len(rows) - len(unique_rows)} repeated id(s) before writing")

        chunks = [
            unique_rows[i:i + self.batch_size]
            for i in range(0, len(unique_rows), self.batch_size)
        ]

        for chunk_index, chunk in enumerate(chunks):
            ids = [row.id for row in chunk]
            values = []
            for row in chunk:
                record = row.model_dump()
                record["synced_at"] = run_marker
                values.append(record)

            async with self.session_maker() as session:
                try:
                    existing = await session.execute(select(Order.id).where(Order.id.in_(ids)))
                    existing_ids = set(existing.scalars().all())

                    dialect_name = session.bind.dialect.name
                    await session.execute(self._upsert_statement(dialect_name, values))
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    error = WriteChunkError(
                        f"Chunk {chunk_index + 1}/{len(chunks)} failed to write",
                        context={
                            "chunk_index": chunk_index,
                            "chunk_size": len(chunk),
                            "record_ids": ids[:50],
                        },
                        original_exception=e
                    )
                    logger.error(error.message, extra={"error_context": error.to_dict()})
                    result.failures.append(error)
                    result.failed_ids.extend(ids)
                    continue

            inserted = len(ids) - len(existing_ids)
            result.written += len(ids)
            result.inserted += inserted
            result.updated += len(existing_ids)
            result.written_ids.extend(ids)
            logger.debug(
                f"Chunk {chunk_index + 1}/{len(chunks)}: {len(ids)} row(s) "
                f"({inserted} inserted, {len(existing_ids)} updated)"
            )

            if self.chunk_delay and chunk_index < len(chunks) - 1:
                await self.sleep(self.chunk_delay)

        logger.info(
            f"Upserted {result.written}/{result.attempted} row(s) "
            f"({result.inserted} inserted, {result.updated} updated, {result.failed} failed)"
        )
        return result

    async def sweep(self, run_marker: datetime) -> int:
        """
        Delete every row not stamped with ``run_marker``.

        Only valid after a complete full pass; the caller decides when.

        Raises:
            LoadError: If the delete fails (nothing is deleted)
        """
        async with self.session_maker() as session:
            try:
                result = await session.execute(
                    delete(Order).where(
                        or_(Order.synced_at.is_(None), Order.synced_at != run_marker)
                    )
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise LoadError(
                    "Tombstone sweep failed",
                    context={"operation": "DELETE", "table_name": "orders", "run_marker": run_marker.isoformat()},
                    original_exception=e
                )

        deleted = result.rowcount or 0
        logger.info(f"Sweep removed {deleted} row(s) not seen in this run")
        return deleted

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Destination connectivity probe. Never raises."""
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Destination ping failed: {e}")
            return False

    async def count(self) -> int:
        async with self.session_maker() as session:
            result = await session.execute(select(func.count()).select_from(Order))
            return result.scalar_one()

    async def iter_rows(self, page_size: int = 1000) -> AsyncIterator[Dict[str, Any]]:
        """Scan the table in id order, yielding plain dicts (used by reporting)"""
        columns = [column.name for column in Order.__table__.columns]
        last_id: Optional[str] = None

        while True:
            async with self.session_maker() as session:
                query = select(Order).order_by(Order.id).limit(page_size)
                if last_id is not None:
                    query = query.where(Order.id > last_id)
                result = await session.execute(query)
                orders = result.scalars().all()

            if not orders:
                return
            for order in orders:
                yield {name: getattr(order, name) for name in columns}
            last_id = orders[-1].id
