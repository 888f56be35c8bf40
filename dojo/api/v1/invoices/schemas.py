"""Invoice schemas. Amounts are integer cents."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from dojo.core.enums import InvoiceItemType, InvoiceStatus


class InvoiceLineItemCreate(BaseModel):
    item_type: InvoiceItemType
    description: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)
    unit_price_cents: int = Field(..., ge=0)
    discount_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Percent, 0-100")
    tax_rate_ids: Optional[List[UUID]] = Field(
        None, description="Explicit tax rates; omitted means the rates applicable to item_type"
    )
    exempt_from_pst: bool = False
    sort_order: Optional[int] = None


class InvoiceCreate(BaseModel):
    family_id: Optional[UUID] = None
    issue_date: date
    due_date: date
    service_period_start: Optional[date] = None
    service_period_end: Optional[date] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    line_items: List[InvoiceLineItemCreate] = Field(..., min_length=1)


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class InvoiceLineItemTaxResponse(BaseModel):
    id: UUID
    tax_rate_id: Optional[UUID] = None
    tax_name_snapshot: str
    tax_rate_snapshot: Decimal
    tax_description_snapshot: Optional[str] = None
    tax_amount_cents: int

    class Config:
        from_attributes = True


class InvoiceLineItemResponse(BaseModel):
    id: UUID
    item_type: InvoiceItemType
    description: str
    quantity: int
    unit_price_cents: int
    discount_rate: Decimal
    discount_amount_cents: int
    tax_amount_cents: int
    line_total_cents: int
    sort_order: int
    taxes: List[InvoiceLineItemTaxResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: UUID
    invoice_number: str
    family_id: Optional[UUID] = None
    status: InvoiceStatus
    issue_date: date
    due_date: date
    service_period_start: Optional[date] = None
    service_period_end: Optional[date] = None
    subtotal_cents: int
    discount_amount_cents: int
    tax_amount_cents: int
    total_amount_cents: int
    amount_paid_cents: int
    amount_due_cents: int
    currency: str
    notes: Optional[str] = None
    terms: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    line_items: List[InvoiceLineItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class InvoiceTotalsResponse(BaseModel):
    subtotal_cents: int
    discount_amount_cents: int
    tax_amount_cents: int
    total_amount_cents: int
