"""
Unit tests for duplicate reconciliation, validation and the quality report
"""

import pytest
from datetime import datetime, timezone

from core.exceptions import ValidationError
from sync_engine.quality.duplicates import (
    ID_KEY,
    ORDER_NUMBER_DATE_KEY,
    ORDER_NUMBER_KEY,
    DuplicateKey,
    DuplicateReconciler,
)
from sync_engine.quality.report import HIGH, LOW, QualityReport
from sync_engine.quality.validator import (
    DELIVERY_BEFORE_ORDER,
    IMPLAUSIBLE_DATE,
    INVALID_DATE,
    INVALID_NUMBER,
    MALFORMED_EMAIL,
    MALFORMED_PHONE,
    MALFORMED_STATE,
    MALFORMED_ZIP,
    MISSING_REQUIRED,
    RecordValidator,
)
from sync_engine.transformers.order_transformer import OrderTransformer

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def reconciler():
    return DuplicateReconciler(now=lambda: NOW)


def _full(order_id="1", **overrides):
    record = {
        "id": order_id,
        "order_number": "ORD-1",
        "status": "completed",
        "customer_name": "Pat Buyer",
        "customer_email": "pat@example.com",
        "billing_state": "TX",
        "date_ordered": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "date_delivered": datetime(2024, 5, 20, tzinfo=timezone.utc),
    }
    record.update(overrides)
    return record


def _sparse(order_id="1", **overrides):
    record = _full(order_id, status="pending", customer_email=None, billing_state=None, date_delivered=None)
    record.update(overrides)
    return record


class TestScoring:

    def test_completeness_dominates(self, reconciler):
        assert reconciler.score(_full()) > reconciler.score(_sparse())

    def test_terminal_status_bonus(self, reconciler):
        pending = reconciler.score(_full(status="pending"))
        delivered = reconciler.score(_full(status="Delivered"))
        assert delivered - pending == pytest.approx(15.0)

    def test_recency_bonus_decays(self, reconciler):
        fresh = _full(date_ordered=NOW, date_delivered=NOW)
        stale = _full(
            date_ordered=datetime(2020, 1, 1, tzinfo=timezone.utc),
            date_delivered=datetime(2020, 1, 2, tzinfo=timezone.utc),
        )
        assert reconciler.score(fresh) - reconciler.score(stale) == pytest.approx(10.0)

    def test_sync_metadata_is_not_scored(self, reconciler):
        stamped = dict(_full(), synced_at=NOW, created_at=NOW)
        assert reconciler.score(stamped) == pytest.approx(reconciler.score(_full()))

    def test_empty_record(self, reconciler):
        assert reconciler.score({}) == 0.0

    def test_upstream_field_count_rewards_richer_copy(self, reconciler, make_order):
        transformer = OrderTransformer()
        plain = transformer.map(make_order(1)).to_record()
        richer = transformer.map(make_order(1, extraA="a", extraB="b", extraC="c")).to_record()

        assert reconciler.score(richer) - reconciler.score(plain) == pytest.approx(0.3)
        assert reconciler.choose_survivor([richer, plain]) is richer

    def test_field_count_falls_back_to_populated_fields(self, reconciler):
        assert reconciler.score(_full(extra="x")) - reconciler.score(_full(extra=None)) > 0


class TestSurvivorSelection:

    def test_best_record_wins_in_either_order(self, reconciler):
        full, sparse = _full(), _sparse()
        assert reconciler.choose_survivor([sparse, full]) is full
        assert reconciler.choose_survivor([full, sparse]) is full

    def test_latest_date_breaks_score_ties(self, reconciler):
        older = _full(date_ordered=datetime(2020, 1, 1, tzinfo=timezone.utc), date_delivered=None)
        newer = _full(date_ordered=datetime(2020, 6, 1, tzinfo=timezone.utc), date_delivered=None)

        assert reconciler.score(older) == reconciler.score(newer)
        assert reconciler.choose_survivor([newer, older]) is newer
        assert reconciler.choose_survivor([older, newer]) is newer

    def test_full_tie_keeps_later_write(self, reconciler):
        first, second = _full(), _full()
        assert reconciler.choose_survivor([first, second]) is second

    def test_empty_group_rejected(self, reconciler):
        with pytest.raises(ValueError):
            reconciler.choose_survivor([])


class TestDetectDuplicates:

    def test_identifier_groups_and_unique_count(self, reconciler):
        records = [_full("1"), _sparse("1"), _full("2"), _sparse("3"), _sparse("3"), _full("3")]

        report = reconciler.detect_duplicates(records, keys=(ID_KEY,))

        assert report.unique_count == 3
        assert report.duplicates == 3
        assert report.by_key() == {"id": 2}
        group = report.groups[0]
        assert group.positions == [0, 1]
        assert group.survivor == 0
        assert group.removed == [1]

    def test_composite_key_needs_every_part(self, reconciler):
        records = [
            _full("1", order_number="ORD-9"),
            _full("2", order_number="ORD-9", date_ordered=datetime(2024, 5, 2, tzinfo=timezone.utc)),
            _full("3", order_number="ORD-9", date_ordered=None),
        ]

        by_number = reconciler.detect_duplicates(records, keys=(ORDER_NUMBER_KEY,))
        by_number_and_date = reconciler.detect_duplicates(records, keys=(ORDER_NUMBER_DATE_KEY,))

        assert len(by_number.groups) == 1
        assert by_number.groups[0].positions == [0, 1, 2]
        assert by_number_and_date.groups == []

    def test_partial_key_is_never_grouped(self):
        key = DuplicateKey("pair", ("order_number", "dealer_id"))
        assert key.value({"order_number": "ORD-1", "dealer_id": "  "}) is None
        assert key.value({"order_number": "ORD-1", "dealer_id": 7}) == ("ORD-1", "7")

    def test_no_duplicates(self, reconciler):
        report = reconciler.detect_duplicates([_full("1"), _full("2", order_number="ORD-2")])
        assert report.groups == []
        assert report.unique_count == 2

    def test_summary_shape(self, reconciler):
        report = reconciler.detect_duplicates([_full("1"), _sparse("1")], keys=(ID_KEY,))
        summary = report.summary()
        assert summary["duplicate_records"] == 1
        assert summary["sample_groups"][0]["key"] == "id"
        assert summary["sample_groups"][0]["removed"] == [1]


class TestReconcile:
    """Identifier duplicates within a page and against earlier pages"""

    def _rows(self, make_order, *specs):
        transformer = OrderTransformer()
        return [transformer.map(make_order(i, **overrides)) for i, overrides in specs]

    def test_within_page(self, reconciler, make_order):
        rows = self._rows(
            make_order,
            (1, {"status": "pending", "customerEmail": None}),
            (2, {}),
            (1, {"status": "completed"}),
        )

        result = reconciler.reconcile(rows)

        assert [r.id for r in result.survivors] == ["2", "1"]
        assert result.survivors[1].status == "completed"
        assert len(result.removed) == 1

    def test_against_written_copy(self, reconciler, make_order):
        better, worse = self._rows(
            make_order,
            (5, {"status": "completed"}),
            (5, {"status": "pending", "customerEmail": None, "billingZip": None}),
        )
        written = {"5": reconciler.rank(better.to_record())}

        dropped = reconciler.reconcile([worse], written=written)
        kept = reconciler.reconcile([better], written=written)

        assert dropped.survivors == []
        assert [r.id for r in kept.survivors] == ["5"]

    def test_unrelated_rows_pass_through(self, reconciler, make_order):
        rows = self._rows(make_order, (1, {}), (2, {}), (3, {}))
        result = reconciler.reconcile(rows, written={"9": (1.0, NOW)})
        assert len(result.survivors) == 3
        assert result.groups == []


class TestRecordValidator:

    @pytest.fixture
    def validator(self):
        return RecordValidator(today=lambda: NOW)

    def _types(self, issues):
        return {issue.type for issue in issues}

    def test_transformed_record_is_clean(self, validator, make_order):
        record = OrderTransformer().map(make_order(1)).to_record()
        result = validator.validate(record)
        assert result.is_valid
        assert result.warnings == []

    def test_invalid_result_as_validation_error(self, validator, make_order):
        valid = validator.validate(OrderTransformer().map(make_order(1)).to_record())
        invalid = validator.validate({"id": "7", "order_number": None, "customer_name": "Pat"})

        assert valid.to_error() is None
        error = invalid.to_error()
        assert isinstance(error, ValidationError)
        assert error.context["record_id"] == "7"
        assert error.context["issues"][0]["field"] == "order_number"
        assert len(validator.validate_batch([{"id": "8", "order_number": "ORD-8", "customer_name": "Lee"}, {"id": "7"}])) == 2

    def test_missing_required(self, validator):
        result = validator.validate({"id": "1", "order_number": " ", "customer_name": None})
        assert not result.is_valid
        assert [i.field for i in result.errors] == ["order_number", "customer_name"]
        assert self._types(result.errors) == {MISSING_REQUIRED}

    def test_non_numeric_amount(self, validator):
        result = validator.validate(_full(total_amount_dollar_amount="call us"))
        assert self._types(result.errors) == {INVALID_NUMBER}

    def test_dates(self, validator):
        result = validator.validate(_full(
            date_processed="not a date",
            date_finished=datetime(1985, 1, 1, tzinfo=timezone.utc),
            date_cancelled=datetime(2031, 1, 1, tzinfo=timezone.utc),
        ))
        assert self._types(result.errors) == {INVALID_DATE, IMPLAUSIBLE_DATE}
        assert len(result.errors) == 3

    def test_delivered_before_ordered(self, validator):
        result = validator.validate(_full(date_delivered=datetime(2024, 4, 1, tzinfo=timezone.utc)))
        assert self._types(result.errors) == {DELIVERY_BEFORE_ORDER}

    def test_format_problems_are_warnings(self, validator):
        result = validator.validate(_full(
            customer_email="pat@",
            customer_phone_primary="555-1234",
            billing_state="Texas",
            delivery_zip="7500",
            billing_zip="75001-1234",
        ))
        assert result.is_valid
        assert self._types(result.warnings) == {MALFORMED_EMAIL, MALFORMED_PHONE, MALFORMED_STATE, MALFORMED_ZIP}


class TestQualityReport:

    def test_recommendations_ordered_by_priority(self):
        validator = RecordValidator(today=lambda: NOW)
        results = validator.validate_batch([
            _full("1", customer_email="bad"),
            _full("2", customer_email="bad"),
            _full("3", customer_email="bad"),
            _full("4", order_number=None),
        ])

        report = QualityReport()
        report.add_validation(results)
        recs = report.recommendations()

        assert report.records_checked == 4
        assert report.invalid_records == 1
        assert report.valid_rate == 75.0
        assert (recs[0].priority, recs[0].issue_type) == (HIGH, MISSING_REQUIRED)
        assert (recs[-1].priority, recs[-1].issue_type, recs[-1].occurrences) == (LOW, MALFORMED_EMAIL, 3)
        assert report.top_issues()[0] == {"issue_type": MALFORMED_EMAIL, "count": 3, "severity": "warning"}
        assert report.examples[MALFORMED_EMAIL] == ["1", "2", "3"]

    def test_duplicates_add_recommendation(self, reconciler):
        report = QualityReport()
        report.add_duplicates(reconciler.detect_duplicates(
            [_full("1"), _full("2")], keys=(ORDER_NUMBER_KEY,)
        ))

        summary = report.summary()

        assert summary["duplicate_groups"] == {"order_number": 1}
        assert summary["duplicate_records"] == 1
        assert summary["recommendations"][0]["issue_type"] == "duplicate_business_key"

    def test_empty_report(self):
        report = QualityReport()
        assert report.valid_rate is None
        assert report.recommendations() == []
