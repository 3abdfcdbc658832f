"""
Duplicate detection and survivor selection.

When the same logical order appears more than once (same id on two pages,
or the same order number under two ids) exactly one copy is kept. The copy
is chosen by a quality score rather than by arrival order:

    score = 100 * completeness          (fraction of populated fields, dominant)
          + 0.1 * field count           (rewards richer record versions)
          + recency bonus               (<= 10, linear decay to 0 over 365 days)
          + 15 if status is terminal    (completed / delivered / finished)

Ties are broken by the latest date field, then by write order (later wins).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from schemas.order import OrderRow, DATE_FIELDS, SOURCE_FIELD_COUNT, SYNC_METADATA_FIELDS

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "delivered", "finished"})
RECENCY_MAX_BONUS = 10.0
RECENCY_WINDOW_DAYS = 365.0
STATUS_BONUS = 15.0
COMPLETENESS_WEIGHT = 100.0
FIELD_COUNT_WEIGHT = 0.1

# Candidate fields for "most recent known date"
RECENCY_FIELDS = DATE_FIELDS + ("last_modified_at", "last_activity_at")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Ranking = Tuple[float, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    if isinstance(value, (list, dict)) and not value:
        return False
    return True


def _as_utc(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def latest_date(record: Mapping[str, Any]) -> Optional[datetime]:
    dates = [d for d in (_as_utc(record.get(name)) for name in RECENCY_FIELDS) if d is not None]
    return max(dates) if dates else None


# ============================================================================
# Keys, groups, reports
# ============================================================================

@dataclass(frozen=True)
class DuplicateKey:
    """A duplicate-defining key: one field, or a composite of several"""
    name: str
    fields: Tuple[str, ...]

    def value(self, record: Mapping[str, Any]) -> Optional[Tuple[str, ...]]:
        """Key value, or None when any part is missing (no grouping on partial keys)"""
        parts = []
        for name in self.fields:
            raw = record.get(name)
            if not _populated(raw):
                return None
            if isinstance(raw, datetime):
                parts.append(_as_utc(raw).isoformat())
            else:
                parts.append(str(raw).strip())
        return tuple(parts)


ID_KEY = DuplicateKey("id", ("id",))
ORDER_NUMBER_KEY = DuplicateKey("order_number", ("order_number",))
ORDER_NUMBER_DATE_KEY = DuplicateKey("order_number+date_ordered", ("order_number", "date_ordered"))

DEFAULT_KEYS = (ID_KEY, ORDER_NUMBER_KEY, ORDER_NUMBER_DATE_KEY)
# Business keys: reported, never used to drop rows
ADVISORY_KEYS = (ORDER_NUMBER_KEY, ORDER_NUMBER_DATE_KEY)


@dataclass
class DuplicateGroup:
    """Records sharing one key value. Positions index into the input sequence."""
    key: str
    value: Tuple[str, ...]
    positions: List[int]
    survivor: int
    scores: Dict[int, float] = field(default_factory=dict)

    @property
    def removed(self) -> List[int]:
        return [p for p in self.positions if p != self.survivor]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": list(self.value),
            "size": len(self.positions),
            "survivor": self.survivor,
            "removed": self.removed,
            "scores": {str(p): round(s, 2) for p, s in self.scores.items()},
        }


@dataclass
class DuplicateReport:
    groups: List[DuplicateGroup]
    unique_count: int
    total_records: int

    @property
    def duplicates(self) -> int:
        return self.total_records - self.unique_count

    def by_key(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for group in self.groups:
            counts[group.key] = counts.get(group.key, 0) + 1
        return counts

    def summary(self, max_groups: int = 10) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "unique_count": self.unique_count,
            "duplicate_records": self.duplicates,
            "groups_by_key": self.by_key(),
            "sample_groups": [g.to_dict() for g in self.groups[:max_groups]],
        }


@dataclass
class ReconcileResult:
    survivors: List[OrderRow] = field(default_factory=list)
    removed: List[OrderRow] = field(default_factory=list)
    groups: List[DuplicateGroup] = field(default_factory=list)


# ============================================================================
# Reconciler
# ============================================================================

class DuplicateReconciler:
    """
    Score records, group them by duplicate-defining keys and pick survivors.

    Never touches the destination: decisions are returned to the caller.
    ``now`` is injectable so recency scoring is deterministic in tests.
    """

    def __init__(self, now: Callable[[], datetime] = _utcnow):
        self.now = now

    def score(self, record: Mapping[str, Any]) -> float:
        fields = [
            name for name in record
            if name not in SYNC_METADATA_FIELDS and name != SOURCE_FIELD_COUNT
        ]
        if not fields:
            return 0.0

        populated = sum(1 for name in fields if _populated(record.get(name)))
        score = COMPLETENESS_WEIGHT * populated / len(fields)
        score += FIELD_COUNT_WEIGHT * self._field_count(record, populated)

        latest = latest_date(record)
        if latest is not None:
            age_days = (self.now() - latest).total_seconds() / 86400
            age_days = max(age_days, 0.0)
            score += max(0.0, RECENCY_MAX_BONUS * (1 - age_days / RECENCY_WINDOW_DAYS))

        status = record.get("status")
        if isinstance(status, str) and status.strip().lower() in TERMINAL_STATUSES:
            score += STATUS_BONUS

        return score

    @staticmethod
    def _field_count(record: Mapping[str, Any], populated: int) -> int:
        """Populated keys on the upstream payload when known, else on the record itself"""
        count = record.get(SOURCE_FIELD_COUNT)
        if isinstance(count, int) and not isinstance(count, bool):
            return count
        return populated

    def rank(self, record: Mapping[str, Any]) -> Ranking:
        """Sort key: score, then latest date. Write order breaks remaining ties."""
        return self.score(record), latest_date(record) or _EPOCH

    def _survivor_position(self, records: Sequence[Mapping[str, Any]], positions: Sequence[int]) -> int:
        best = positions[0]
        best_rank = self.rank(records[best])
        for position in positions[1:]:
            candidate = self.rank(records[position])
            # >= : later write order wins a full tie
            if candidate >= best_rank:
                best, best_rank = position, candidate
        return best

    def choose_survivor(self, group: Sequence[Mapping[str, Any]]) -> Mapping[str, Any]:
        """Pick the canonical record from a group given in write order"""
        if not group:
            raise ValueError("Cannot choose a survivor from an empty group")
        return group[self._survivor_position(group, list(range(len(group))))]

    def detect_duplicates(
        self,
        records: Sequence[Mapping[str, Any]],
        keys: Sequence[DuplicateKey] = DEFAULT_KEYS,
    ) -> DuplicateReport:
        """
        Group ``records`` by each key and select a survivor per group.

        ``unique_count`` is the number of records left once every group's
        removal set is taken out.
        """
        groups: List[DuplicateGroup] = []
        removed: set = set()

        for key in keys:
            index: Dict[Tuple[str, ...], List[int]] = {}
            for position, record in enumerate(records):
                value = key.value(record)
                if value is not None:
                    index.setdefault(value, []).append(position)

            for value, positions in index.items():
                if len(positions) < 2:
                    continue
                survivor = self._survivor_position(records, positions)
                group = DuplicateGroup(
                    key=key.name,
                    value=value,
                    positions=positions,
                    survivor=survivor,
                    scores={p: self.score(records[p]) for p in positions},
                )
                groups.append(group)
                removed.update(group.removed)

        if groups:
            logger.info(
                f"Found {len(groups)} duplicate group(s) across {len(records)} record(s)",
                extra={"groups_by_key": {k.name: sum(1 for g in groups if g.key == k.name) for k in keys}}
            )
        return DuplicateReport(groups=groups, unique_count=len(records) - len(removed), total_records=len(records))

    def reconcile(
        self,
        rows: Sequence[OrderRow],
        written: Optional[Mapping[str, Ranking]] = None,
    ) -> ReconcileResult:
        """
        Resolve identifier duplicates before writing.

        Args:
            rows: One page of transformed rows, in upstream order
            written: Ranking of rows already written earlier in this run, by id

        A row whose id was already written this run survives only if it ranks
        at least as high as the written copy.
        """
        written = written or {}
        records = [row.to_record() for row in rows]
        report = self.detect_duplicates(records, keys=(ID_KEY,))

        drop = set()
        for group in report.groups:
            drop.update(group.removed)

        result = ReconcileResult(groups=report.groups)
        for position, row in enumerate(rows):
            if position in drop:
                result.removed.append(row)
                continue
            previous = written.get(row.id)
            if previous is not None and self.rank(records[position]) < previous:
                logger.info(f"Keeping earlier copy of order {row.id}; later copy ranks lower")
                result.removed.append(row)
                continue
            result.survivors.append(row)

        if result.removed:
            logger.info(f"Reconciled identifier duplicates: {len(result.removed)} row(s) dropped")
        return result
