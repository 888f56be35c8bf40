"""Discount template schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dojo.core.enums import DiscountScope, DiscountType, PaymentType, UsageType


class DiscountTemplateCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0, description="Dollars for fixed_amount, 0-100 for percentage")
    usage_type: UsageType
    max_uses: Optional[int] = Field(None, ge=1)
    applicable_to: List[PaymentType] = Field(..., min_length=1)
    scope: DiscountScope
    is_active: bool = True


class DiscountTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    usage_type: Optional[UsageType] = None
    max_uses: Optional[int] = Field(None, ge=1)
    applicable_to: Optional[List[PaymentType]] = Field(None, min_length=1)
    scope: Optional[DiscountScope] = None
    is_active: Optional[bool] = None


class DiscountTemplateResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    discount_value_cents: int
    usage_type: UsageType
    max_uses: Optional[int] = None
    applicable_to: List[PaymentType]
    scope: DiscountScope
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class CreateCodeFromTemplateRequest(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50, description="Generated when omitted")
    family_id: Optional[UUID] = None
    student_id: Optional[UUID] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
