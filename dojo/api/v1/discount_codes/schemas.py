"""Discount code schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dojo.core.enums import DiscountScope, DiscountType, PaymentType, UsageType


class DiscountCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0, description="Dollars for fixed_amount, 0-100 for percentage")
    usage_type: UsageType
    max_uses: Optional[int] = Field(None, ge=1)
    applicable_to: List[PaymentType] = Field(..., min_length=1)
    scope: DiscountScope
    family_id: Optional[UUID] = None
    student_id: Optional[UUID] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class DiscountCodeUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    usage_type: Optional[UsageType] = None
    max_uses: Optional[int] = Field(None, ge=1)
    applicable_to: Optional[List[PaymentType]] = Field(None, min_length=1)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class DiscountCodeResponse(BaseModel):
    id: UUID
    code: str
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    discount_value_cents: int
    usage_type: UsageType
    max_uses: Optional[int] = None
    current_uses: int
    applicable_to: List[PaymentType]
    scope: DiscountScope
    family_id: Optional[UUID] = None
    student_id: Optional[UUID] = None
    is_active: bool
    valid_from: datetime
    valid_until: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_automatically: bool
    created_at: datetime
    updated_at: datetime


class DiscountCodeUsageResponse(BaseModel):
    id: UUID
    discount_code_id: UUID
    payment_id: Optional[UUID] = None
    family_id: UUID
    student_id: Optional[UUID] = None
    discount_amount_cents: int
    original_amount_cents: int
    final_amount_cents: int
    used_at: datetime

    class Config:
        from_attributes = True


class DiscountCodeWithUsage(DiscountCodeResponse):
    usage_count: int = 0
    recent_usage: List[DiscountCodeUsageResponse] = Field(default_factory=list)


# --- Checkout ---
class ValidateDiscountRequest(BaseModel):
    code: str
    family_id: UUID
    student_id: Optional[UUID] = None
    subtotal_amount_cents: int = Field(..., ge=0)
    applicable_to: PaymentType


class DiscountValidationResponse(BaseModel):
    is_valid: bool
    discount_code_id: Optional[UUID] = None
    code: Optional[str] = None
    discount_amount_cents: int = 0
    error_message: Optional[str] = None


class ApplyDiscountRequest(BaseModel):
    discount_code_id: UUID
    family_id: UUID
    discount_amount_cents: int = Field(..., ge=0)
    payment_id: Optional[UUID] = None
    student_id: Optional[UUID] = None
    original_amount_cents: Optional[int] = Field(None, ge=0)


class ApplyDiscountResponse(BaseModel):
    success: bool
    error: Optional[str] = None
