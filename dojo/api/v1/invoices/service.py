"""Invoices service: numbering, creation with frozen tax snapshots, totals and status."""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dojo.api.v1.tax_rates.service import get_active_tax_rates, get_applicable_tax_rates
from dojo.core.config import settings
from dojo.core.dates import utcnow
from dojo.core.enums import InvoiceStatus
from dojo.core.exceptions import ServiceError
from dojo.core.models import Family, Invoice, InvoiceLineItem
from dojo.core.money import from_cents, subtract_money

from .calculations import (
    InvoiceTotals,
    LineItemTotals,
    build_line_item_taxes,
    calculate_invoice_totals,
    calculate_line_item_discount,
    calculate_line_item_subtotal,
    calculate_line_item_tax_with_rates,
    calculate_line_item_totals,
    line_item_totals_from_snapshot,
)
from .schemas import InvoiceCreate, InvoiceResponse

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "INV"


def _invoice_options():
    return (selectinload(Invoice.line_items).selectinload(InvoiceLineItem.taxes),)


async def _load_invoice(db: AsyncSession, invoice_id: UUID) -> Optional[Invoice]:
    result = await db.execute(
        select(Invoice)
        .options(*_invoice_options())
        .where(Invoice.id == invoice_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def generate_invoice_number(db: AsyncSession, today: Optional[date] = None) -> str:
    """Next INV-YYYY-NNNN for the year, sequential from the highest number issued so far."""
    year = (today or utcnow().date()).year
    prefix = f"{INVOICE_NUMBER_PREFIX}-{year}-"
    result = await db.execute(select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{prefix}%")))
    highest = 0
    for number in result.scalars().all():
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:04d}"


async def create_invoice(db: AsyncSession, payload: InvoiceCreate) -> InvoiceResponse:
    if payload.due_date < payload.issue_date:
        raise ServiceError("Due date cannot be before issue date", status.HTTP_400_BAD_REQUEST)
    if payload.family_id and not await db.get(Family, payload.family_id):
        raise ServiceError("Invalid family", status.HTTP_400_BAD_REQUEST)

    currency = settings.currency
    active_rates = await get_active_tax_rates(db)
    active_ids = {r.id for r in active_rates}
    line_items: List[InvoiceLineItem] = []
    line_totals: List[LineItemTotals] = []
    for index, item in enumerate(payload.line_items):
        if item.tax_rate_ids is None:
            applicable = await get_applicable_tax_rates(db, item.item_type, exempt_from_pst=item.exempt_from_pst)
            tax_rate_ids = [r.id for r in applicable]
        else:
            tax_rate_ids = list(item.tax_rate_ids)
            if any(rate_id not in active_ids for rate_id in tax_rate_ids):
                raise ServiceError("Invalid tax rate", status.HTTP_400_BAD_REQUEST)

        unit_price = from_cents(item.unit_price_cents, currency)
        subtotal = calculate_line_item_subtotal(item.quantity, unit_price)
        discount = calculate_line_item_discount(subtotal, item.discount_rate)
        taxes = calculate_line_item_tax_with_rates(subtract_money(subtotal, discount), tax_rate_ids, active_rates)
        totals = calculate_line_item_totals(item.quantity, unit_price, item.discount_rate, [t.tax_amount for t in taxes])
        line_totals.append(totals)
        line_items.append(
            InvoiceLineItem(
                item_type=item.item_type.value,
                description=item.description,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                discount_rate=item.discount_rate,
                discount_amount_cents=totals.discount_amount.cents,
                tax_amount_cents=totals.tax_amount.cents,
                line_total_cents=totals.line_total.cents,
                sort_order=item.sort_order if item.sort_order is not None else index,
                taxes=build_line_item_taxes(taxes),
            )
        )

    invoice_totals = calculate_invoice_totals(line_totals, currency)
    invoice = Invoice(
        invoice_number=await generate_invoice_number(db, payload.issue_date),
        family_id=payload.family_id,
        status=InvoiceStatus.draft.value,
        issue_date=payload.issue_date,
        due_date=payload.due_date,
        service_period_start=payload.service_period_start,
        service_period_end=payload.service_period_end,
        subtotal_cents=invoice_totals.subtotal.cents,
        discount_amount_cents=invoice_totals.discount_amount.cents,
        tax_amount_cents=invoice_totals.tax_amount.cents,
        total_amount_cents=invoice_totals.total_amount.cents,
        amount_paid_cents=0,
        amount_due_cents=invoice_totals.total_amount.cents,
        currency=currency,
        notes=payload.notes,
        terms=payload.terms,
        line_items=line_items,
    )
    try:
        db.add(invoice)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Invoice number already in use, please retry", status.HTTP_409_CONFLICT)
    logger.info("Created invoice %s (%d cents)", invoice.invoice_number, invoice.total_amount_cents)
    return InvoiceResponse.model_validate(await _load_invoice(db, invoice.id))


async def get_invoice(db: AsyncSession, invoice_id: UUID) -> Optional[InvoiceResponse]:
    invoice = await _load_invoice(db, invoice_id)
    return InvoiceResponse.model_validate(invoice) if invoice else None


async def list_invoices(
    db: AsyncSession,
    family_id: Optional[UUID] = None,
    status_filter: Optional[InvoiceStatus] = None,
) -> List[InvoiceResponse]:
    query = select(Invoice).options(*_invoice_options())
    if family_id:
        query = query.where(Invoice.family_id == family_id)
    if status_filter:
        query = query.where(Invoice.status == status_filter.value)
    result = await db.execute(query.order_by(Invoice.issue_date.desc(), Invoice.invoice_number.desc()))
    return [InvoiceResponse.model_validate(i) for i in result.scalars().all()]


async def get_invoice_totals(db: AsyncSession, invoice_id: UUID) -> Optional[InvoiceTotals]:
    """Totals recomputed from the stored line items and tax snapshots."""
    invoice = await _load_invoice(db, invoice_id)
    if not invoice:
        return None
    return calculate_invoice_totals(
        (line_item_totals_from_snapshot(item, invoice.currency) for item in invoice.line_items),
        invoice.currency,
    )


async def update_invoice_status(
    db: AsyncSession,
    invoice_id: UUID,
    new_status: InvoiceStatus,
) -> Optional[InvoiceResponse]:
    invoice = await db.get(Invoice, invoice_id)
    if not invoice:
        return None
    if invoice.status == InvoiceStatus.cancelled and new_status != InvoiceStatus.cancelled:
        raise ServiceError("Cancelled invoices cannot change status", status.HTTP_400_BAD_REQUEST)
    logger.info("Invoice %s status %s -> %s", invoice.invoice_number, invoice.status, new_status.value)
    invoice.status = new_status.value
    invoice.updated_at = utcnow()
    await db.commit()
    return InvoiceResponse.model_validate(await _load_invoice(db, invoice_id))
