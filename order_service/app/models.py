import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text
from .database import Base # Import the Base class from our database setup


def _now():
    return datetime.now(timezone.utc)


# Defines the ORM model for a customer 'Order' stored in the database.
class Order(Base):
    # The name of the database table.
    __tablename__ = "orders"

    # Define the table columns.
    id = Column(Integer, primary_key=True, index=True) # Auto-incrementing primary key, feeds the invoice number.
    order_id = Column(String, unique=True, index=True, default=lambda: str(uuid.uuid4())) # Business-level order identifier.
    invoice_number = Column(String, nullable=True) # Human-facing sequential label.
    status = Column(String, default="pending") # pending, processing, approved, rejected.
    order_items = Column(JSON, default=list) # Line items exactly as the storefront sent them.
    customer_info = Column(JSON, default=dict) # Flat fields or a 'Multiple Accounts' list.
    payment_method_id = Column(String, nullable=True)
    receipt_url = Column(String, nullable=False) # Proof of payment, required.
    total_price = Column(Float) # Computed by the storefront at placement time.
    rejection_reason = Column(Text, nullable=True)
    rejection_message = Column(Text, nullable=True)
    approval_message = Column(Text, nullable=True)
    member_id = Column(String, nullable=True, index=True) # Null for anonymous orders.
    created_at = Column(DateTime(timezone=True), default=_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


# Lookup table the storefront uses to resolve payment_method_id to a name.
class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(String, primary_key=True) # e.g. "gcash"
    name = Column(String, nullable=False)
    account_number = Column(String, default="")
    account_name = Column(String, default="")
    qr_code_url = Column(String, default="")
    icon_url = Column(String, nullable=True)
    active = Column(Boolean, default=True)
    sort_order = Column(Integer, default=0)
