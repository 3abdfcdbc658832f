"""
Pydantic schema for the typed destination row
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal


# Columns owned by the sync machinery rather than the upstream record
SYNC_METADATA_FIELDS = frozenset({"synced_at", "created_at"})

# Populated keys on the upstream payload; scoring input only, never stored
SOURCE_FIELD_COUNT = "source_field_count"


class OrderRow(BaseModel):
    """
    Fully-typed destination row produced by the transformer.

    Every field except the identifier is optional: the transformer never
    rejects a record because one field failed to convert, it nulls the field
    instead.
    """

    id: str = Field(..., min_length=1, max_length=64)

    # Order
    order_number: Optional[str] = None
    order_type: Optional[str] = None
    status: Optional[str] = None

    # Customer
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone_primary: Optional[str] = None
    customer_source: Optional[str] = None

    # Billing address
    billing_address_line_one: Optional[str] = None
    billing_address_line_two: Optional[str] = None
    billing_city: Optional[str] = None
    billing_state: Optional[str] = None
    billing_zip: Optional[str] = None

    # Delivery address
    delivery_address_line_one: Optional[str] = None
    delivery_address_line_two: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_state: Optional[str] = None
    delivery_zip: Optional[str] = None

    # Building
    building_model_name: Optional[str] = None
    building_size: Optional[str] = None
    building_length: Optional[str] = None
    building_width: Optional[str] = None
    building_condition: Optional[str] = None
    building_roof_color: Optional[str] = None
    building_siding_color: Optional[str] = None
    building_addons: Optional[str] = None
    building_custom_addons: Optional[str] = None
    addons_details: Optional[List[Dict[str, Any]]] = None

    # Dealer / fulfilment
    company_id: Optional[str] = None
    dealer_id: Optional[str] = None
    dealer_primary_sales_rep: Optional[str] = None
    sold_by_dealer: Optional[str] = None
    sold_by_dealer_id: Optional[str] = None
    shop_name: Optional[str] = None
    driver_name: Optional[str] = None
    serial_number: Optional[str] = None
    invoice_url: Optional[str] = None

    # Payment
    initial_payment_type: Optional[str] = None
    rto: Optional[bool] = None
    rto_company_name: Optional[str] = None
    rto_months_of_term: Optional[int] = None
    promocode_code: Optional[str] = None

    # Money
    balance_dollar_amount: Optional[Decimal] = None
    initial_payment_dollar_amount: Optional[Decimal] = None
    sub_total_dollar_amount: Optional[Decimal] = None
    promocode_amount_discounted: Optional[Decimal] = None
    state_tax_dollar_amount: Optional[Decimal] = None
    total_tax_dollar_amount: Optional[Decimal] = None
    total_amount_dollar_amount: Optional[Decimal] = None
    state_tax_rate: Optional[Decimal] = None
    county_tax_rate: Optional[Decimal] = None

    # Dates
    date_ordered: Optional[datetime] = None
    date_processed: Optional[datetime] = None
    date_scheduled_for_delivery: Optional[datetime] = None
    date_delivered: Optional[datetime] = None
    date_finished: Optional[datetime] = None
    date_cancelled: Optional[datetime] = None

    # Derived
    last_modified_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None

    # Set by the writer
    synced_at: Optional[datetime] = None

    source_field_count: Optional[int] = Field(default=None, exclude=True)

    def to_record(self) -> Dict[str, Any]:
        """Dict view used by the quality subsystem, with the upstream key count"""
        record = self.model_dump()
        record[SOURCE_FIELD_COUNT] = self.source_field_count
        return record

    class Config:
        from_attributes = True


MONEY_FIELDS = (
    "balance_dollar_amount",
    "initial_payment_dollar_amount",
    "sub_total_dollar_amount",
    "promocode_amount_discounted",
    "state_tax_dollar_amount",
    "total_tax_dollar_amount",
    "total_amount_dollar_amount",
)

RATE_FIELDS = ("state_tax_rate", "county_tax_rate")

# Order lifecycle dates, oldest stage first
DATE_FIELDS = (
    "date_ordered",
    "date_processed",
    "date_scheduled_for_delivery",
    "date_delivered",
    "date_finished",
    "date_cancelled",
)
