"""
Field-level validation of destination rows.

Errors make a record invalid; warnings never do. Validation is advisory for
the pipeline as a whole: invalid records are still written and surfaced in
the run's quality summary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging
import re

from core.exceptions import ValidationError
from schemas.order import DATE_FIELDS, MONEY_FIELDS, RATE_FIELDS

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "order_number", "customer_name")
MIN_YEAR = 1990
FUTURE_YEARS = 5

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_DIGITS = re.compile(r"\d")
STATE_PATTERN = re.compile(r"^[A-Za-z]{2}$")
ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")

EMAIL_FIELDS = ("customer_email",)
PHONE_FIELDS = ("customer_phone_primary",)
STATE_FIELDS = ("billing_state", "delivery_state")
ZIP_FIELDS = ("billing_zip", "delivery_zip")

# Issue types
MISSING_REQUIRED = "missing_required_field"
INVALID_NUMBER = "invalid_number"
INVALID_DATE = "invalid_date"
IMPLAUSIBLE_DATE = "implausible_date"
DELIVERY_BEFORE_ORDER = "delivered_before_ordered"
MALFORMED_EMAIL = "malformed_email"
MALFORMED_PHONE = "malformed_phone"
MALFORMED_STATE = "malformed_state"
MALFORMED_ZIP = "malformed_zip"


@dataclass
class ValidationIssue:
    type: str
    field: str
    message: str
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "field": self.field, "message": self.message, "value": self.value}


@dataclass
class ValidationResult:
    record_id: Optional[str]
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_error(self) -> Optional[ValidationError]:
        """The record's errors as one ValidationError, or None when valid"""
        if self.is_valid:
            return None
        return ValidationError(
            f"Record {self.record_id or '<no id>'} failed {len(self.errors)} check(s)",
            context={"record_id": self.record_id, "issues": [issue.to_dict() for issue in self.errors]}
        )


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class RecordValidator:
    """Validate one record (an OrderRow dict view or anything shaped like it)"""

    def __init__(self, today: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.today = today

    def validate(self, record: Mapping[str, Any]) -> ValidationResult:
        record_id = record.get("id")
        result = ValidationResult(record_id=str(record_id) if record_id is not None else None)

        for name in REQUIRED_FIELDS:
            if _blank(record.get(name)):
                result.errors.append(ValidationIssue(MISSING_REQUIRED, name, f"{name} is required"))

        self._check_numbers(record, result)
        dates = self._check_dates(record, result)

        ordered, delivered = dates.get("date_ordered"), dates.get("date_delivered")
        if ordered and delivered and delivered < ordered:
            result.errors.append(ValidationIssue(
                DELIVERY_BEFORE_ORDER,
                "date_delivered",
                "date_delivered precedes date_ordered",
                delivered.isoformat(),
            ))

        self._check_formats(record, result)
        return result

    def validate_batch(self, records: List[Mapping[str, Any]]) -> List[ValidationResult]:
        results = [self.validate(record) for record in records]
        invalid = [result.to_error() for result in results if not result.is_valid]
        if invalid:
            logger.warning(
                f"{len(invalid)}/{len(records)} record(s) failed validation",
                extra={"error_context": [error.to_dict() for error in invalid[:10]]}
            )
        return results

    @staticmethod
    def _check_numbers(record: Mapping[str, Any], result: ValidationResult) -> None:
        for name in MONEY_FIELDS + RATE_FIELDS:
            value = record.get(name)
            if value is None or (isinstance(value, (Decimal, int, float)) and not isinstance(value, bool)):
                continue
            try:
                Decimal(str(value).strip())
            except ArithmeticError:
                result.errors.append(ValidationIssue(INVALID_NUMBER, name, f"{name} is not numeric", str(value)))

    def _check_dates(self, record: Mapping[str, Any], result: ValidationResult) -> Dict[str, datetime]:
        max_year = self.today().year + FUTURE_YEARS
        parsed: Dict[str, datetime] = {}
        for name in DATE_FIELDS:
            value = record.get(name)
            if _blank(value):
                continue
            moment = _as_datetime(value)
            if moment is None:
                result.errors.append(ValidationIssue(INVALID_DATE, name, f"{name} is not a valid date", str(value)))
                continue
            if not MIN_YEAR <= moment.year <= max_year:
                result.errors.append(ValidationIssue(
                    IMPLAUSIBLE_DATE, name, f"{name} year {moment.year} outside {MIN_YEAR}-{max_year}", moment.isoformat()
                ))
                continue
            parsed[name] = moment
        return parsed

    @staticmethod
    def _check_formats(record: Mapping[str, Any], result: ValidationResult) -> None:
        for name in EMAIL_FIELDS:
            value = record.get(name)
            if not _blank(value) and not EMAIL_PATTERN.match(str(value).strip()):
                result.warnings.append(ValidationIssue(MALFORMED_EMAIL, name, "email looks malformed", str(value)))
        for name in PHONE_FIELDS:
            value = record.get(name)
            if not _blank(value) and not 10 <= len(PHONE_DIGITS.findall(str(value))) <= 15:
                result.warnings.append(ValidationIssue(MALFORMED_PHONE, name, "phone should have 10-15 digits", str(value)))
        for name in STATE_FIELDS:
            value = record.get(name)
            if not _blank(value) and not STATE_PATTERN.match(str(value).strip()):
                result.warnings.append(ValidationIssue(MALFORMED_STATE, name, "state should be a 2-letter code", str(value)))
        for name in ZIP_FIELDS:
            value = record.get(name)
            if not _blank(value) and not ZIP_PATTERN.match(str(value).strip()):
                result.warnings.append(ValidationIssue(MALFORMED_ZIP, name, "zip should be 5 or 9 digits", str(value)))
