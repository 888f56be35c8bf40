"""Invoices router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.enums import InvoiceStatus
from dojo.core.exceptions import ServiceError
from dojo.core.money import to_cents
from dojo.db.session import get_db

from .schemas import InvoiceCreate, InvoiceResponse, InvoiceStatusUpdate, InvoiceTotalsResponse
from . import service

router = APIRouter(prefix="/api/v1/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(payload: InvoiceCreate, db: AsyncSession = Depends(get_db)) -> InvoiceResponse:
    try:
        return await service.create_invoice(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[InvoiceResponse])
async def list_invoices(
    family_id: Optional[UUID] = Query(None),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> List[InvoiceResponse]:
    return await service.list_invoices(db, family_id=family_id, status_filter=status_filter)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def read_invoice(invoice_id: UUID, db: AsyncSession = Depends(get_db)) -> InvoiceResponse:
    invoice = await service.get_invoice(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


@router.get("/{invoice_id}/totals", response_model=InvoiceTotalsResponse)
async def read_invoice_totals(invoice_id: UUID, db: AsyncSession = Depends(get_db)) -> InvoiceTotalsResponse:
    totals = await service.get_invoice_totals(db, invoice_id)
    if totals is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return InvoiceTotalsResponse(
        subtotal_cents=to_cents(totals.subtotal),
        discount_amount_cents=to_cents(totals.discount_amount),
        tax_amount_cents=to_cents(totals.tax_amount),
        total_amount_cents=to_cents(totals.total_amount),
    )


@router.patch("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: UUID,
    payload: InvoiceStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    try:
        invoice = await service.update_invoice_status(db, invoice_id, payload.status)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice
