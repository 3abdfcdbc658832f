from sqlalchemy import Column, String, Text, Numeric, Integer, Boolean, DateTime, Index, func
from models.base import Base, JSONType


class Order(Base):
    """
    Mirrored customer order, one row per upstream identifier.

    Field Mapping Strategy (upstream camelCase -> column):
    - id -> id (primary key, upsert conflict target)
    - orderNumber -> order_number (secondary business key)
    - *DollarAmount -> *_dollar_amount (fixed-point, cents)
    - date* -> date_* (UTC timestamps)
    - buildingAddons / buildingCustomAddons -> flattened text + JSON details
    - updatedAt -> last_modified_at (drives the watermark)

    synced_at holds the marker of the run that last wrote the row; a full
    run deletes every row carrying any other marker.
    """
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)

    # Order
    order_number = Column(String(64), nullable=True, index=True)
    order_type = Column(String(100), nullable=True)
    status = Column(String(100), nullable=True, index=True)

    # Customer
    customer_id = Column(String(64), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_first_name = Column(String(120), nullable=True)
    customer_last_name = Column(String(120), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone_primary = Column(String(50), nullable=True)
    customer_source = Column(String(120), nullable=True)

    # Billing address
    billing_address_line_one = Column(String(255), nullable=True)
    billing_address_line_two = Column(String(255), nullable=True)
    billing_city = Column(String(120), nullable=True)
    billing_state = Column(String(50), nullable=True)
    billing_zip = Column(String(20), nullable=True)

    # Delivery address
    delivery_address_line_one = Column(String(255), nullable=True)
    delivery_address_line_two = Column(String(255), nullable=True)
    delivery_city = Column(String(120), nullable=True)
    delivery_state = Column(String(50), nullable=True)
    delivery_zip = Column(String(20), nullable=True)

    # Building
    building_model_name = Column(String(255), nullable=True)
    building_size = Column(String(50), nullable=True)
    building_length = Column(String(50), nullable=True)
    building_width = Column(String(50), nullable=True)
    building_condition = Column(String(50), nullable=True)
    building_roof_color = Column(String(100), nullable=True)
    building_siding_color = Column(String(100), nullable=True)
    building_addons = Column(Text, nullable=True)
    building_custom_addons = Column(Text, nullable=True)
    addons_details = Column(JSONType, nullable=True)

    # Dealer / fulfilment
    company_id = Column(String(64), nullable=True)
    dealer_id = Column(String(64), nullable=True)
    dealer_primary_sales_rep = Column(String(255), nullable=True)
    sold_by_dealer = Column(String(255), nullable=True)
    sold_by_dealer_id = Column(String(64), nullable=True)
    shop_name = Column(String(255), nullable=True)
    driver_name = Column(String(255), nullable=True)
    serial_number = Column(String(120), nullable=True)
    invoice_url = Column(String(2048), nullable=True)

    # Payment
    initial_payment_type = Column(String(100), nullable=True)
    rto = Column(Boolean, nullable=True)
    rto_company_name = Column(String(255), nullable=True)
    rto_months_of_term = Column(Integer, nullable=True)
    promocode_code = Column(String(100), nullable=True)

    # Money
    balance_dollar_amount = Column(Numeric(12, 2), nullable=True)
    initial_payment_dollar_amount = Column(Numeric(12, 2), nullable=True)
    sub_total_dollar_amount = Column(Numeric(12, 2), nullable=True)
    promocode_amount_discounted = Column(Numeric(12, 2), nullable=True)
    state_tax_dollar_amount = Column(Numeric(12, 2), nullable=True)
    total_tax_dollar_amount = Column(Numeric(12, 2), nullable=True)
    total_amount_dollar_amount = Column(Numeric(12, 2), nullable=True)
    state_tax_rate = Column(Numeric(8, 4), nullable=True)
    county_tax_rate = Column(Numeric(8, 4), nullable=True)

    # Dates
    date_ordered = Column(DateTime(timezone=True), nullable=True, index=True)
    date_processed = Column(DateTime(timezone=True), nullable=True)
    date_scheduled_for_delivery = Column(DateTime(timezone=True), nullable=True)
    date_delivered = Column(DateTime(timezone=True), nullable=True)
    date_finished = Column(DateTime(timezone=True), nullable=True)
    date_cancelled = Column(DateTime(timezone=True), nullable=True)

    # Derived
    last_modified_at = Column(DateTime(timezone=True), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    # Sync tracking
    synced_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_orders_number_ordered", "order_number", "date_ordered"),
    )
