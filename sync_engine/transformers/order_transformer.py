"""
Transform upstream order payloads into typed destination rows
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple, Mapping, Sequence
from datetime import datetime
import json
import logging

from core.exceptions import TransformationError
from schemas.order import OrderRow, DATE_FIELDS
from sync_engine.transformers.coercion import (
    clean_text,
    is_blank,
    parse_bool,
    parse_datetime,
    parse_int,
    parse_money,
    parse_rate,
)

logger = logging.getLogger(__name__)

TEXT = "text"
MONEY = "money"
RATE = "rate"
INTEGER = "integer"
BOOLEAN = "boolean"
DATE = "date"

_COERCERS = {
    TEXT: clean_text,
    MONEY: parse_money,
    RATE: parse_rate,
    INTEGER: parse_int,
    BOOLEAN: parse_bool,
    DATE: parse_datetime,
}

# (destination column, upstream keys in preference order, kind)
FIELD_MAP: Tuple[Tuple[str, Tuple[str, ...], str], ...] = (
    ("order_number", ("orderNumber", "order_number"), TEXT),
    ("order_type", ("orderType", "order_type"), TEXT),
    ("status", ("status", "orderStatus"), TEXT),

    ("customer_id", ("customerId", "customer_id"), TEXT),
    ("customer_name", ("customerName", "customer_name"), TEXT),
    ("customer_first_name", ("customerFirstName", "firstName"), TEXT),
    ("customer_last_name", ("customerLastName", "lastName"), TEXT),
    ("customer_email", ("customerEmail", "email"), TEXT),
    ("customer_phone_primary", ("customerPhonePrimary", "phone"), TEXT),
    ("customer_source", ("customerSource",), TEXT),

    ("billing_address_line_one", ("billingAddressLineOne",), TEXT),
    ("billing_address_line_two", ("billingAddressLineTwo",), TEXT),
    ("billing_city", ("billingCity",), TEXT),
    ("billing_state", ("billingState",), TEXT),
    ("billing_zip", ("billingZip",), TEXT),

    ("delivery_address_line_one", ("deliveryAddressLineOne",), TEXT),
    ("delivery_address_line_two", ("deliveryAddressLineTwo",), TEXT),
    ("delivery_city", ("deliveryCity",), TEXT),
    ("delivery_state", ("deliveryState",), TEXT),
    ("delivery_zip", ("deliveryZip",), TEXT),

    ("building_model_name", ("buildingModelName",), TEXT),
    ("building_size", ("buildingSize",), TEXT),
    ("building_length", ("buildingLength",), TEXT),
    ("building_width", ("buildingWidth",), TEXT),
    ("building_condition", ("buildingCondition",), TEXT),
    ("building_roof_color", ("buildingRoofColor",), TEXT),
    ("building_siding_color", ("buildingSidingColor",), TEXT),

    ("company_id", ("companyId",), TEXT),
    ("dealer_id", ("dealerId",), TEXT),
    ("dealer_primary_sales_rep", ("dealerPrimarySalesRep",), TEXT),
    ("sold_by_dealer", ("soldByDealer",), TEXT),
    ("sold_by_dealer_id", ("soldByDealerId",), TEXT),
    ("shop_name", ("shopName",), TEXT),
    ("driver_name", ("driverName",), TEXT),
    ("serial_number", ("serialNumber",), TEXT),
    ("invoice_url", ("invoiceURL", "invoiceUrl"), TEXT),

    ("initial_payment_type", ("initialPaymentType",), TEXT),
    ("rto", ("rto",), BOOLEAN),
    ("rto_company_name", ("rtoCompanyName",), TEXT),
    ("rto_months_of_term", ("rtoMonthsOfTerm",), INTEGER),
    ("promocode_code", ("promocodeCode",), TEXT),

    ("balance_dollar_amount", ("balanceDollarAmount",), MONEY),
    ("initial_payment_dollar_amount", ("initialPaymentDollarAmount",), MONEY),
    ("sub_total_dollar_amount", ("subTotalDollarAmount",), MONEY),
    ("promocode_amount_discounted", ("promocodeAmountDiscounted",), MONEY),
    ("state_tax_dollar_amount", ("stateTaxDollarAmount",), MONEY),
    ("total_tax_dollar_amount", ("totalTaxDollarAmount",), MONEY),
    ("total_amount_dollar_amount", ("totalAmountDollarAmount",), MONEY),
    ("state_tax_rate", ("stateTaxRate",), RATE),
    ("county_tax_rate", ("countyTaxRate",), RATE),

    ("date_ordered", ("dateOrdered",), DATE),
    ("date_processed", ("dateProcessed",), DATE),
    ("date_scheduled_for_delivery", ("dateScheduledForDelivery",), DATE),
    ("date_delivered", ("dateDelivered",), DATE),
    ("date_finished", ("dateFinished",), DATE),
    ("date_cancelled", ("dateCancelled",), DATE),

    ("last_modified_at", ("updatedAt", "updated_at", "lastModified", "dateUpdated"), DATE),
)

ID_KEYS = ("id", "orderId", "order_id")
MAX_ID_LENGTH = 64


@dataclass
class TransformIssue:
    """One field (or whole record) that could not be converted"""
    index: int
    record_id: Optional[str]
    field: str
    value: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "record_id": self.record_id,
            "field": self.field,
            "value": self.value,
            "reason": self.reason,
        }

    def to_error(self) -> TransformationError:
        return TransformationError(
            self.reason,
            context={
                "index": self.index,
                "record_id": self.record_id,
                "field_name": self.field,
                "value": self.value,
            }
        )


@dataclass
class TransformResult:
    transformed: List[OrderRow] = field(default_factory=list)
    errors: List[TransformIssue] = field(default_factory=list)

    @property
    def records_with_errors(self) -> int:
        return len({issue.index for issue in self.errors})


def _first_present(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[:100]


class OrderTransformer:
    """
    Map one upstream order record onto one OrderRow.

    Handles:
    - camelCase -> snake_case renaming
    - currency / rate coercion to fixed-point decimals
    - date coercion to UTC timestamps
    - tolerant boolean coercion
    - derived fields (customer name fallback, latest activity date, add-ons)

    The mapping is total: a field that cannot be converted becomes null and
    is reported, never raised.
    """

    def __init__(self, field_map=FIELD_MAP):
        self.field_map = field_map

    def map(self, record: Any) -> Optional[OrderRow]:
        """
        Convert a single record. Returns None only when the record carries no
        identifier (it cannot be keyed in the destination).
        """
        row, issues = self._convert(record, index=0)
        if issues:
            logger.warning(
                f"Record {issues[0].record_id or '<no id>'}: "
                f"{len(issues)} field(s) nulled ({', '.join(i.field for i in issues)})"
            )
        return row

    def map_batch(self, records: Sequence[Any]) -> TransformResult:
        """Convert a batch; one bad record never aborts the rest"""
        result = TransformResult()

        for index, record in enumerate(records):
            row, issues = self._convert(record, index=index)
            result.errors.extend(issues)
            if row is not None:
                result.transformed.append(row)

        if result.errors:
            logger.warning(
                f"Transformed {len(result.transformed)}/{len(records)} records; "
                f"{result.records_with_errors} record(s) had conversion issues",
                extra={"error_context": [issue.to_error().to_dict() for issue in result.errors[:20]]}
            )
        return result

    def _convert(self, record: Any, index: int) -> Tuple[Optional[OrderRow], List[TransformIssue]]:
        if not isinstance(record, Mapping):
            return None, [TransformIssue(index, None, "*", _preview(record), "record is not an object")]

        record_id, _ = clean_text(_first_present(record, ID_KEYS))
        if record_id is None:
            return None, [TransformIssue(index, None, "id", None, "missing identifier")]
        if len(record_id) > MAX_ID_LENGTH:
            return None, [TransformIssue(index, None, "id", _preview(record_id), "identifier too long")]

        issues: List[TransformIssue] = []
        values: Dict[str, Any] = {"id": record_id}

        for column, keys, kind in self.field_map:
            raw = _first_present(record, keys)
            value, problem = _COERCERS[kind](raw)
            if problem:
                issues.append(TransformIssue(index, record_id, column, _preview(raw), problem))
            values[column] = value

        if values.get("customer_name") is None:
            parts = [values.get("customer_first_name"), values.get("customer_last_name")]
            joined = " ".join(p for p in parts if p)
            values["customer_name"] = joined or None

        values["last_activity_at"] = self._latest_date(values)

        standard = self._addon_entries(record.get("buildingAddons"), "standard", index, record_id, issues)
        custom = self._addon_entries(record.get("buildingCustomAddons"), "custom", index, record_id, issues)
        values["building_addons"] = self._summarise(standard)
        values["building_custom_addons"] = self._summarise(custom)
        values["addons_details"] = (standard + custom) or None
        values["source_field_count"] = sum(
            1 for value in record.values()
            if not is_blank(value) and value != [] and value != {}
        )

        return OrderRow(**values), issues

    @staticmethod
    def _latest_date(values: Dict[str, Any]) -> Optional[datetime]:
        dates = [values[name] for name in DATE_FIELDS if values.get(name) is not None]
        return max(dates) if dates else None

    @staticmethod
    def _addon_entries(
        raw: Any,
        kind: str,
        index: int,
        record_id: str,
        issues: List[TransformIssue],
    ) -> List[Dict[str, Any]]:
        if raw is None or raw == "":
            return []
        if not isinstance(raw, list):
            issues.append(TransformIssue(index, record_id, f"{kind}_addons", _preview(raw), "add-ons not a list"))
            return []

        entries = []
        for addon in raw:
            if not isinstance(addon, Mapping):
                continue
            name, _ = clean_text(addon.get("name"))
            price, _ = parse_money(addon.get("price"))
            entries.append({
                "kind": kind,
                "name": name,
                "price": str(price) if price is not None else None,
                "quantity": addon.get("quantity"),
            })
        return entries

    @staticmethod
    def _summarise(entries: List[Dict[str, Any]]) -> Optional[str]:
        if not entries:
            return None
        return "; ".join(
            f"{entry['name'] or 'unnamed'}: ${entry['price'] if entry['price'] is not None else '?'}"
            for entry in entries
        )
