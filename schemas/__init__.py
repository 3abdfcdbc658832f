"""
Pydantic schemas for data validation and serialization.

Schemas:
    order: Typed destination row produced by the transformer
    run: Finalised run record and in-process run statistics
    api: Operator API request/response models

Usage:
    from schemas import OrderRow, RunRecord
    from schemas.api import HealthCheckResponse, SyncStatusResponse
"""

from schemas.order import OrderRow
from schemas.run import RunRecord, RunStatistics

__all__ = [
    "OrderRow",
    "RunRecord",
    "RunStatistics",
]
