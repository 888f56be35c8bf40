"""Invoices, line items and per-line tax snapshots. All amounts are integer cents."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dojo.core.dates import utcnow
from dojo.db.session import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(30), nullable=False, unique=True)  # INV-YYYY-NNNN
    family_id = Column(UUID(as_uuid=True), ForeignKey("families.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="draft")
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    service_period_start = Column(Date, nullable=True)
    service_period_end = Column(Date, nullable=True)
    subtotal_cents = Column(Integer, nullable=False, default=0)
    discount_amount_cents = Column(Integer, nullable=False, default=0)
    tax_amount_cents = Column(Integer, nullable=False, default=0)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    amount_paid_cents = Column(Integer, nullable=False, default=0)
    amount_due_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    line_items = relationship(
        "InvoiceLineItem",
        order_by="InvoiceLineItem.sort_order",
        cascade="all, delete-orphan",
        back_populates="invoice",
    )


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(Integer, nullable=False)
    discount_rate = Column(Numeric(5, 2), nullable=False, default=0)  # percent, 0-100
    discount_amount_cents = Column(Integer, nullable=False, default=0)
    tax_amount_cents = Column(Integer, nullable=False, default=0)
    line_total_cents = Column(Integer, nullable=False, default=0)  # subtotal - discount + tax
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="line_items")
    taxes = relationship("InvoiceLineItemTax", cascade="all, delete-orphan", back_populates="line_item")


class InvoiceLineItemTax(Base):
    """Tax applied to a line item, frozen at invoice creation so later rate edits never change it."""

    __tablename__ = "invoice_line_item_taxes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_line_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("invoice_line_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tax_rate_id = Column(UUID(as_uuid=True), ForeignKey("tax_rates.id", ondelete="SET NULL"), nullable=True)
    tax_name_snapshot = Column(String(50), nullable=False)
    tax_rate_snapshot = Column(Numeric(6, 4), nullable=False)
    tax_description_snapshot = Column(Text, nullable=True)
    tax_amount_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    line_item = relationship("InvoiceLineItem", back_populates="taxes")
