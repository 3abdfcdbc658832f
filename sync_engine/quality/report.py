"""
Aggregate validation and duplicate findings into an advisory quality report
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sync_engine.quality.duplicates import DuplicateReport
from sync_engine.quality import validator as checks
from sync_engine.quality.validator import ValidationResult

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

_PRIORITY_ORDER = {HIGH: 0, MEDIUM: 1, LOW: 2}

# issue type -> (priority, remediation)
_REMEDIATION = {
    checks.MISSING_REQUIRED: (HIGH, "Backfill required fields upstream; rows without them cannot be reported on"),
    checks.DELIVERY_BEFORE_ORDER: (HIGH, "Review delivery dates entered before the order date"),
    checks.INVALID_NUMBER: (HIGH, "Fix non-numeric amounts in the upstream order form"),
    checks.INVALID_DATE: (MEDIUM, "Correct unparseable dates at the source"),
    checks.IMPLAUSIBLE_DATE: (MEDIUM, "Check dates outside the plausible range for data-entry mistakes"),
    checks.MALFORMED_EMAIL: (LOW, "Clean up customer email addresses"),
    checks.MALFORMED_PHONE: (LOW, "Normalise customer phone numbers"),
    checks.MALFORMED_STATE: (LOW, "Use two-letter state codes in addresses"),
    checks.MALFORMED_ZIP: (LOW, "Use 5 or 9 digit zip codes in addresses"),
}


@dataclass
class Recommendation:
    priority: str
    issue_type: str
    occurrences: int
    action: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "issue_type": self.issue_type,
            "occurrences": self.occurrences,
            "action": self.action,
        }


@dataclass
class QualityReport:
    """
    Issue counts by type, the most frequent issues and prioritised
    recommendations. Never blocks writes.
    """
    records_checked: int = 0
    invalid_records: int = 0
    records_with_warnings: int = 0
    error_counts: Counter = field(default_factory=Counter)
    warning_counts: Counter = field(default_factory=Counter)
    duplicate_groups: Dict[str, int] = field(default_factory=dict)
    duplicate_records: int = 0
    examples: Dict[str, List[str]] = field(default_factory=dict)

    def add_validation(self, results: Sequence[ValidationResult], max_examples: int = 5) -> None:
        for result in results:
            self.records_checked += 1
            if not result.is_valid:
                self.invalid_records += 1
            if result.warnings:
                self.records_with_warnings += 1
            for issue in result.errors:
                self.error_counts[issue.type] += 1
                self._example(issue.type, result.record_id, max_examples)
            for issue in result.warnings:
                self.warning_counts[issue.type] += 1
                self._example(issue.type, result.record_id, max_examples)

    def add_duplicates(self, report: DuplicateReport) -> None:
        for key, count in report.by_key().items():
            self.duplicate_groups[key] = self.duplicate_groups.get(key, 0) + count
        self.duplicate_records += report.duplicates

    def _example(self, issue_type: str, record_id: Optional[str], limit: int) -> None:
        bucket = self.examples.setdefault(issue_type, [])
        if record_id and len(bucket) < limit and record_id not in bucket:
            bucket.append(record_id)

    def top_issues(self, limit: int = 5) -> List[Dict[str, Any]]:
        combined = self.error_counts + self.warning_counts
        return [
            {
                "issue_type": issue_type,
                "count": count,
                "severity": "error" if issue_type in self.error_counts else "warning",
            }
            for issue_type, count in combined.most_common(limit)
        ]

    def recommendations(self) -> List[Recommendation]:
        combined = self.error_counts + self.warning_counts
        recs = []
        for issue_type, count in combined.items():
            priority, action = _REMEDIATION.get(issue_type, (MEDIUM, f"Investigate {issue_type} issues"))
            recs.append(Recommendation(priority, issue_type, count, action))

        if self.duplicate_records:
            recs.append(Recommendation(
                MEDIUM,
                "duplicate_business_key",
                self.duplicate_records,
                "Review orders sharing an order number under different ids",
            ))

        recs.sort(key=lambda r: (_PRIORITY_ORDER[r.priority], -r.occurrences, r.issue_type))
        return recs

    @property
    def valid_rate(self) -> Optional[float]:
        if not self.records_checked:
            return None
        return round(100.0 * (self.records_checked - self.invalid_records) / self.records_checked, 2)

    def summary(self) -> Dict[str, Any]:
        return {
            "records_checked": self.records_checked,
            "invalid_records": self.invalid_records,
            "records_with_warnings": self.records_with_warnings,
            "valid_rate": self.valid_rate,
            "errors_by_type": dict(self.error_counts),
            "warnings_by_type": dict(self.warning_counts),
            "duplicate_groups": dict(self.duplicate_groups),
            "duplicate_records": self.duplicate_records,
            "top_issues": self.top_issues(),
            "recommendations": [r.to_dict() for r in self.recommendations()],
            "examples": {k: list(v) for k, v in self.examples.items()},
        }
