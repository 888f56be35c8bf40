"""Automatic discount schemas: automation rules, events and assignments."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dojo.core.enums import DiscountEventType


# --- Automation rules ---
class AutomationRuleCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    event_type: DiscountEventType
    discount_template_id: Optional[UUID] = None
    discount_template_ids: Optional[List[UUID]] = None
    conditions: Optional[Dict[str, Any]] = None
    applicable_programs: Optional[List[UUID]] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    uses_multiple_templates: bool = False


class AutomationRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    event_type: Optional[DiscountEventType] = None
    discount_template_ids: Optional[List[UUID]] = None
    conditions: Optional[Dict[str, Any]] = None
    applicable_programs: Optional[List[UUID]] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class AutomationRuleResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    event_type: DiscountEventType
    discount_template_id: Optional[UUID] = None
    discount_template_ids: List[UUID] = Field(default_factory=list)
    conditions: Optional[Dict[str, Any]] = None
    applicable_programs: Optional[List[UUID]] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool
    uses_multiple_templates: bool
    created_at: datetime
    updated_at: datetime


# --- Events ---
class DiscountEventCreate(BaseModel):
    event_type: DiscountEventType
    student_id: Optional[UUID] = None
    family_id: Optional[UUID] = None
    event_data: Optional[Dict[str, Any]] = None


class DiscountEventResponse(BaseModel):
    id: UUID
    event_type: DiscountEventType
    student_id: Optional[UUID] = None
    family_id: Optional[UUID] = None
    event_data: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Assignments ---
class DiscountAssignmentResponse(BaseModel):
    id: UUID
    automation_rule_id: UUID
    discount_event_id: UUID
    student_id: Optional[UUID] = None
    family_id: Optional[UUID] = None
    discount_code_id: UUID
    discount_code: Optional[str] = None
    sequence_order: int
    assigned_at: datetime


class RecordEventResponse(BaseModel):
    event: DiscountEventResponse
    assignments: List[DiscountAssignmentResponse] = Field(default_factory=list)


class BatchProcessResponse(BaseModel):
    enrollment_events: int
    first_payment_events: int
