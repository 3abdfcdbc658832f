"""
Unit tests for record transformation
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from core.exceptions import TransformationError
from sync_engine.transformers.coercion import (
    parse_bool,
    parse_datetime,
    parse_int,
    parse_money,
    parse_rate,
)
from sync_engine.transformers.order_transformer import OrderTransformer


class TestCoercion:
    """Tolerant value coercions"""

    @pytest.mark.parametrize("raw,expected", [
        ("$4,250.00", Decimal("4250.00")),
        ("1,000", Decimal("1000.00")),
        (12.345, Decimal("12.35")),
        (7, Decimal("7.00")),
        ("(12.50)", Decimal("-12.50")),
        ("USD 99.9", Decimal("99.90")),
    ])
    def test_money(self, raw, expected):
        value, problem = parse_money(raw)
        assert value == expected
        assert problem is None

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_money_is_null_without_problem(self, raw):
        assert parse_money(raw) == (None, None)

    @pytest.mark.parametrize("raw", ["TBD", "-", True, float("nan")])
    def test_unusable_money_is_null_with_problem(self, raw):
        value, problem = parse_money(raw)
        assert value is None
        assert problem is not None

    @pytest.mark.parametrize("raw", [1e30, "$" + "9" * 30, "10000000000", 1e10, "-10,000,000,000.00"])
    def test_money_beyond_column_range_is_discarded(self, raw):
        assert parse_money(raw) == (None, "out of range")

    def test_money_at_column_limit(self):
        assert parse_money("9,999,999,999.99") == (Decimal("9999999999.99"), None)

    def test_rate_and_int_ranges(self):
        assert parse_rate("99999") == (None, "out of range")
        assert parse_rate("9999.9999")[0] == Decimal("9999.9999")
        assert parse_int(2 ** 31) == (None, "out of range")
        assert parse_int(2 ** 31 - 1) == (2 ** 31 - 1, None)

    def test_rate_keeps_four_places(self):
        assert parse_rate("0.06255")[0] == Decimal("0.0626")
        assert parse_rate("0.0625")[0] == Decimal("0.0625")

    def test_int(self):
        assert parse_int("36")[0] == 36
        assert parse_int("36 months")[0] == 36
        assert parse_int("n/a")[0] is None

    @pytest.mark.parametrize("raw,expected", [
        ("yes", True), ("Y", True), ("true", True), (1, True),
        ("no", False), ("0", False), (False, False),
    ])
    def test_bool(self, raw, expected):
        assert parse_bool(raw) == (expected, None)

    def test_unrecognised_bool(self):
        value, problem = parse_bool("maybe")
        assert value is None
        assert problem == "unrecognised boolean"

    @pytest.mark.parametrize("raw", [
        "2024-03-15T10:30:00Z",
        "2024-03-15T05:30:00-05:00",
        "2024-03-15 10:30:00",
        "03/15/2024 10:30:00",
    ])
    def test_datetime_formats_normalise_to_utc(self, raw):
        value, problem = parse_datetime(raw)
        assert problem is None
        assert value == datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        value, _ = parse_datetime(1710498600000)
        assert value == datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)

    def test_unparseable_date(self):
        assert parse_datetime("next tuesday") == (None, "unparseable date")


class TestOrderTransformer:
    """Upstream record -> destination row"""

    def test_maps_complete_record(self, make_order):
        row = OrderTransformer().map(make_order(7))

        assert row.id == "7"
        assert row.order_number == "ORD-00007"
        assert row.customer_name == "Customer 7"
        assert row.total_amount_dollar_amount == Decimal("4250.00")
        assert row.sub_total_dollar_amount == Decimal("3950.00")
        assert row.state_tax_rate == Decimal("0.0625")
        assert row.rto is False
        assert row.date_ordered == datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc)
        assert row.last_modified_at == datetime(2024, 3, 1, 12, 7, tzinfo=timezone.utc)

    def test_numeric_id_becomes_text(self, make_order):
        row = OrderTransformer().map(make_order(1, id=1042))
        assert row.id == "1042"

    def test_bad_field_is_nulled_and_reported(self, make_order):
        records = [make_order(1, totalAmountDollarAmount="TBD"), make_order(2)]

        result = OrderTransformer().map_batch(records)

        assert len(result.transformed) == 2
        assert result.transformed[0].total_amount_dollar_amount is None
        assert result.transformed[0].order_number == "ORD-00001"
        assert result.records_with_errors == 1
        issue = result.errors[0]
        assert issue.record_id == "1"
        assert issue.field == "total_amount_dollar_amount"
        assert issue.value == "TBD"

    def test_records_without_identifier_are_excluded(self, make_order):
        no_id = make_order(3)
        del no_id["id"]
        records = [make_order(1), no_id, "not an object", make_order(4)]

        result = OrderTransformer().map_batch(records)

        assert [row.id for row in result.transformed] == ["1", "4"]
        assert {issue.index for issue in result.errors} == {1, 2}
        assert OrderTransformer().map(no_id) is None

    def test_alternative_identifier_key(self, make_order):
        record = make_order(5)
        del record["id"]
        record["orderId"] = "A-5"
        assert OrderTransformer().map(record).id == "A-5"

    def test_customer_name_falls_back_to_first_and_last(self, make_order):
        record = make_order(3, customerName="")
        assert OrderTransformer().map(record).customer_name == "Pat Buyer3"

    def test_last_activity_is_latest_lifecycle_date(self, make_order):
        record = make_order(
            1,
            dateProcessed="2024-02-03",
            dateDelivered="2024-03-10T15:00:00Z",
            dateCancelled=None,
        )
        row = OrderTransformer().map(record)
        assert row.last_activity_at == datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)

    def test_last_activity_null_without_dates(self, make_order):
        row = OrderTransformer().map(make_order(1, dateOrdered=None))
        assert row.last_activity_at is None

    def test_addons_are_summarised_and_detailed(self, make_order):
        record = make_order(
            1,
            buildingAddons=[
                {"name": "Loft", "price": "$250", "quantity": 2},
                {"name": "Shelf", "price": 40},
            ],
            buildingCustomAddons=[{"name": "Ramp", "price": "n/a"}],
        )

        row = OrderTransformer().map(record)

        assert row.building_addons == "Loft: $250.00; Shelf: $40.00"
        assert row.building_custom_addons == "Ramp: $?"
        assert len(row.addons_details) == 3
        assert row.addons_details[0] == {"kind": "standard", "name": "Loft", "price": "250.00", "quantity": 2}
        assert row.addons_details[2]["kind"] == "custom"
        assert row.addons_details[2]["price"] is None

    def test_addons_not_a_list_are_reported(self, make_order):
        result = OrderTransformer().map_batch([make_order(1, buildingAddons="Loft")])

        assert result.transformed[0].building_addons is None
        assert result.errors[0].field == "standard_addons"

    def test_no_addons(self, make_order):
        row = OrderTransformer().map(make_order(1))
        assert row.building_addons is None
        assert row.addons_details is None

    def test_structured_value_in_text_field(self, make_order):
        result = OrderTransformer().map_batch([make_order(1, status={"code": "x"})])
        assert result.transformed[0].status is None
        assert result.errors[0].field == "status"

    def test_out_of_range_amounts_never_abort_a_batch(self, make_order):
        records = [
            make_order(2, totalAmountDollarAmount=1e30),
            make_order(3, subTotalDollarAmount="$" + "9" * 30, stateTaxRate="99999"),
            make_order(4),
        ]

        result = OrderTransformer().map_batch(records)

        assert [row.id for row in result.transformed] == ["2", "3", "4"]
        assert result.transformed[0].total_amount_dollar_amount is None
        assert result.transformed[1].sub_total_dollar_amount is None
        assert result.transformed[1].state_tax_rate is None
        assert result.records_with_errors == 2
        assert {issue.reason for issue in result.errors} == {"out of range"}
        assert {issue.field for issue in result.errors} == {
            "total_amount_dollar_amount", "sub_total_dollar_amount", "state_tax_rate",
        }

    def test_source_field_count_tracks_populated_upstream_keys(self, make_order):
        plain = make_order(1)
        richer = make_order(1, extraA="a", extraB=2, extraC=[1])
        sparse = make_order(1, customerEmail=None, billingZip="", buildingModelName=[])

        transformer = OrderTransformer()

        assert transformer.map(plain).source_field_count == len(plain)
        assert transformer.map(richer).source_field_count == len(plain) + 3
        assert transformer.map(sparse).source_field_count == len(plain) - 3

    def test_source_field_count_is_not_a_column(self, make_order):
        row = OrderTransformer().map(make_order(1))

        assert "source_field_count" not in row.model_dump()
        assert row.to_record()["source_field_count"] == row.source_field_count

    def test_issue_as_transformation_error(self, make_order):
        result = OrderTransformer().map_batch([make_order(6, totalAmountDollarAmount="TBD")])

        error = result.errors[0].to_error()

        assert isinstance(error, TransformationError)
        assert error.message == "non-numeric value"
        assert error.context["record_id"] == "6"
        assert error.context["field_name"] == "total_amount_dollar_amount"
        assert error.to_dict()["error_type"] == "TransformationError"
