"""Tax rates router: active/applicable rates and payment tax calculation."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.enums import InvoiceItemType
from dojo.core.money import from_cents, to_cents
from dojo.db.session import get_db

from .schemas import (
    PaymentTaxCalculationRequest,
    PaymentTaxCalculationResponse,
    PaymentTaxLine,
    TaxRateResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/tax-rates", tags=["tax-rates"])


@router.get("", response_model=List[TaxRateResponse])
async def list_active_tax_rates(db: AsyncSession = Depends(get_db)) -> List[TaxRateResponse]:
    rates = await service.get_active_tax_rates(db)
    return [TaxRateResponse.model_validate(r) for r in rates]


@router.get("/applicable", response_model=List[TaxRateResponse])
async def list_applicable_tax_rates(
    item_type: InvoiceItemType,
    exempt_from_pst: bool = False,
    db: AsyncSession = Depends(get_db),
) -> List[TaxRateResponse]:
    rates = await service.get_applicable_tax_rates(db, item_type, exempt_from_pst=exempt_from_pst)
    return [TaxRateResponse.model_validate(r) for r in rates]


@router.post("/calculate", response_model=PaymentTaxCalculationResponse)
async def calculate_payment_taxes(
    payload: PaymentTaxCalculationRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentTaxCalculationResponse:
    result = await service.calculate_taxes_for_payment(
        db,
        from_cents(payload.subtotal_amount_cents),
        payload.payment_type,
        student_ids=payload.student_ids,
    )
    return PaymentTaxCalculationResponse(
        total_tax_amount_cents=to_cents(result.total_tax_amount),
        payment_taxes=[
            PaymentTaxLine(
                tax_rate_id=t.tax_rate_id,
                tax_amount_cents=to_cents(t.tax_amount),
                tax_rate_snapshot=t.tax_rate_snapshot,
                tax_name_snapshot=t.tax_name_snapshot,
            )
            for t in result.payment_taxes
        ],
    )
