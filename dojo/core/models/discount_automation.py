"""
Discount automation: append-only events, rules that react to them, and the
assignments that record which rule minted which code for whom.
"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dojo.core.dates import utcnow
from dojo.db.session import Base


class DiscountEvent(Base):
    """Immutable fact about a student/family. Never updated or deleted."""

    __tablename__ = "discount_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(50), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=True, index=True)
    family_id = Column(UUID(as_uuid=True), ForeignKey("families.id", ondelete="CASCADE"), nullable=True, index=True)
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class DiscountAutomationRule(Base):
    """
    discount_template_id is the legacy single-template link. When uses_multiple_templates
    is set, the ordered template list lives in automation_rule_discount_templates.
    """

    __tablename__ = "discount_automation_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    event_type = Column(String(50), nullable=False, index=True)
    discount_template_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_templates.id", ondelete="RESTRICT"),
        nullable=True,
    )
    conditions = Column(JSON, nullable=True)
    applicable_programs = Column(JSON, nullable=True)  # list of program ids; null/empty = all programs
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    uses_multiple_templates = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    discount_template = relationship("DiscountTemplate")
    template_links = relationship(
        "AutomationRuleDiscountTemplate",
        order_by="AutomationRuleDiscountTemplate.sequence_order",
        cascade="all, delete-orphan",
        back_populates="rule",
    )


class AutomationRuleDiscountTemplate(Base):
    __tablename__ = "automation_rule_discount_templates"
    __table_args__ = (
        UniqueConstraint("automation_rule_id", "sequence_order", name="uq_rule_template_sequence"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    automation_rule_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_automation_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    discount_template_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence_order = Column(Integer, nullable=False)

    rule = relationship("DiscountAutomationRule", back_populates="template_links")
    discount_template = relationship("DiscountTemplate")


class DiscountAssignment(Base):
    """
    One row per code minted by a rule. recipient_key ("<student_id>:<family_id>", "-" for
    missing) lets the unique constraint cover rows where one of the ids is NULL; sequence_order
    is the template position within the rule (1 for single-template rules).
    """

    __tablename__ = "discount_assignments"
    __table_args__ = (
        UniqueConstraint(
            "automation_rule_id", "recipient_key", "sequence_order",
            name="uq_discount_assignment_rule_recipient",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    automation_rule_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_automation_rules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    discount_event_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_events.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=True)
    family_id = Column(UUID(as_uuid=True), ForeignKey("families.id", ondelete="CASCADE"), nullable=True)
    discount_code_id = Column(
        UUID(as_uuid=True),
        ForeignKey("discount_codes.id", ondelete="RESTRICT"),
        nullable=False,
    )
    recipient_key = Column(String(80), nullable=False)
    sequence_order = Column(Integer, nullable=False, default=1)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    automation_rule = relationship("DiscountAutomationRule")
    discount_event = relationship("DiscountEvent")
    discount_code = relationship("DiscountCode")
