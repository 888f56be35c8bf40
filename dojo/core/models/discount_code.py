"""Discount codes (redeemable) and their usage history."""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dojo.core.dates import utcnow
from dojo.db.session import Base


class DiscountCode(Base):
    """Concrete coupon bound to exactly one family or one student, matching its scope."""

    __tablename__ = "discount_codes"
    __table_args__ = (
        CheckConstraint("discount_type IN ('fixed_amount','percentage')", name="chk_discount_code_type"),
        CheckConstraint(
            "(family_id IS NOT NULL AND student_id IS NULL) OR (family_id IS NULL AND student_id IS NOT NULL)",
            name="chk_discount_code_single_association",
        ),
        CheckConstraint("current_uses >= 0", name="chk_discount_code_current_uses"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    discount_value_cents = Column(Integer, nullable=False, default=0)
    usage_type = Column(String(20), nullable=False)
    max_uses = Column(Integer, nullable=True)  # null = unlimited
    current_uses = Column(Integer, nullable=False, default=0)
    applicable_to = Column(JSON, nullable=False, default=list)
    scope = Column(String(20), nullable=False)
    family_id = Column(UUID(as_uuid=True), ForeignKey("families.id", ondelete="CASCADE"), nullable=True, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_automatically = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    family = relationship("Family")
    student = relationship("Student")


class DiscountCodeUsage(Base):
    """Snapshot of a discount applied to a payment."""

    __tablename__ = "discount_code_usage"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    discount_code_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id", ondelete="CASCADE"), nullable=True, index=True)
    family_id = Column(UUID(as_uuid=True), ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    discount_amount_cents = Column(Integer, nullable=False)
    original_amount_cents = Column(Integer, nullable=False, default=0)
    final_amount_cents = Column(Integer, nullable=False, default=0)
    used_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    discount_code = relationship("DiscountCode", backref="usages")
