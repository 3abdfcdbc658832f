from sync_engine.quality.duplicates import (
    DuplicateGroup,
    DuplicateKey,
    DuplicateReconciler,
    DuplicateReport,
    ReconcileResult,
)
from sync_engine.quality.report import QualityReport
from sync_engine.quality.validator import RecordValidator, ValidationResult

__all__ = [
    "DuplicateGroup",
    "DuplicateKey",
    "DuplicateReconciler",
    "DuplicateReport",
    "ReconcileResult",
    "QualityReport",
    "RecordValidator",
    "ValidationResult",
]
