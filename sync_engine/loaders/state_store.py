"""
Key/value sync state (watermark and last successful run)
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import StateStoreError
from models.sync_state import SyncState

logger = logging.getLogger(__name__)

WATERMARK_KEY = "orders_watermark"
LAST_SUCCESS_KEY = "orders_last_success"


def _parse(value: str) -> Optional[datetime]:
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class SyncStateStore:
    """
    Simple get/set by string key over the ``sync_state`` table.

    The watermark only ever moves forward: ``advance_watermark`` ignores
    values that are not newer than the stored one.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(select(SyncState.value).where(SyncState.key == key))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StateStoreError(
                f"Failed to read sync state '{key}'",
                context={"key": key, "operation": "SELECT"},
                original_exception=e
            )

    async def set(self, key: str, value: str) -> None:
        try:
            async with self.session_maker() as session:
                state = await session.get(SyncState, key)
                if state is None:
                    session.add(SyncState(key=key, value=value))
                else:
                    state.value = value
                    state.updated_at = datetime.now(timezone.utc)
                await session.commit()
        except SQLAlchemyError as e:
            raise StateStoreError(
                f"Failed to write sync state '{key}'",
                context={"key": key, "operation": "UPSERT"},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Watermark
    # ------------------------------------------------------------------

    async def get_watermark(self) -> Optional[datetime]:
        value = await self.get(WATERMARK_KEY)
        if not value:
            return None
        watermark = _parse(value)
        if watermark is None:
            logger.warning(f"Ignoring unparseable stored watermark: {value!r}")
        return watermark

    async def set_watermark(self, watermark: datetime) -> None:
        await self.set(WATERMARK_KEY, watermark.astimezone(timezone.utc).isoformat())

    async def advance_watermark(self, candidate: Optional[datetime]) -> Optional[datetime]:
        """
        Persist ``candidate`` if it is newer than the stored watermark.

        Returns:
            The watermark in force after the call
        """
        current = await self.get_watermark()
        if candidate is None or (current is not None and candidate <= current):
            return current
        await self.set_watermark(candidate)
        logger.debug(f"Watermark advanced to {candidate.isoformat()}")
        return candidate

    async def clear_watermark(self) -> None:
        await self.set(WATERMARK_KEY, "")

    # ------------------------------------------------------------------
    # Last success
    # ------------------------------------------------------------------

    async def get_last_success(self) -> Optional[datetime]:
        value = await self.get(LAST_SUCCESS_KEY)
        return _parse(value) if value else None

    async def set_last_success(self, moment: datetime) -> None:
        await self.set(LAST_SUCCESS_KEY, moment.astimezone(timezone.utc).isoformat())
