"""Discount template: reusable discount blueprint, instantiated into discount codes."""

import uuid

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID

from dojo.core.dates import utcnow
from dojo.db.session import Base


class DiscountTemplate(Base):
    """
    Fixed amounts are stored twice: legacy dollars in discount_value and cents in
    discount_value_cents (authoritative). Percentage templates store 0 cents.
    """

    __tablename__ = "discount_templates"
    __table_args__ = (
        CheckConstraint("discount_type IN ('fixed_amount','percentage')", name="chk_discount_template_type"),
        CheckConstraint("scope IN ('per_student','per_family')", name="chk_discount_template_scope"),
        CheckConstraint("discount_value_cents >= 0", name="chk_discount_template_value_cents"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    discount_value_cents = Column(Integer, nullable=False, default=0)
    usage_type = Column(String(20), nullable=False)  # one_time, ongoing
    max_uses = Column(Integer, nullable=True)
    applicable_to = Column(JSON, nullable=False, default=list)  # list of payment types
    scope = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
