"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (RunStatus, SyncMode)
    order: Mirrored customer orders (the destination table)
    sync_run: One row per synchronization attempt
    sync_state: Key/value sync state (watermark, last success)

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere.

Usage:
    from models import Order, SyncRun, SyncState
    from models.base import RunStatus, SyncMode
"""

from models.base import Base, RunStatus, SyncMode
from models.order import Order
from models.sync_run import SyncRun
from models.sync_state import SyncState

__all__ = [
    "Base",
    "RunStatus",
    "SyncMode",
    "Order",
    "SyncRun",
    "SyncState",
]
