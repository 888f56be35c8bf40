"""Tax rate schemas."""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dojo.core.enums import PaymentType


class TaxRateResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    rate: Decimal
    region: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class PaymentTaxCalculationRequest(BaseModel):
    subtotal_amount_cents: int = Field(..., ge=0)
    payment_type: PaymentType
    student_ids: List[UUID] = Field(default_factory=list)


class PaymentTaxLine(BaseModel):
    tax_rate_id: UUID
    tax_amount_cents: int
    tax_rate_snapshot: Decimal
    tax_name_snapshot: str


class PaymentTaxCalculationResponse(BaseModel):
    total_tax_amount_cents: int
    payment_taxes: List[PaymentTaxLine]
