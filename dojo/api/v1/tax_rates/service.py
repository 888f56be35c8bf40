"""
Tax rate resolution. BC does not charge PST on memberships (class enrollments) or on
one-off sessions/event registrations; store purchases for students under 15 are exempt too.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, NamedTuple, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.config import settings
from dojo.core.dates import calculate_age
from dojo.core.enums import InvoiceItemType, PaymentType
from dojo.core.models import Student, TaxRate
from dojo.core.money import Money, add_money, multiply_money, zero_money

logger = logging.getLogger(__name__)

PST_EXEMPT_ITEM_TYPES = (InvoiceItemType.CLASS_ENROLLMENT, InvoiceItemType.INDIVIDUAL_SESSION)


class PaymentTax(NamedTuple):
    tax_rate_id: UUID
    tax_amount: Money
    tax_rate_snapshot: Decimal
    tax_name_snapshot: str


class PaymentTaxResult(NamedTuple):
    total_tax_amount: Money
    payment_taxes: List[PaymentTax]


def parse_rate(tax_rate: TaxRate) -> Optional[Decimal]:
    """Decimal rate, or None when the stored value is not a usable number."""
    try:
        rate = tax_rate.rate if isinstance(tax_rate.rate, Decimal) else Decimal(str(tax_rate.rate))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if rate.is_nan() or rate.is_infinite():
        return None
    return rate


async def get_active_tax_rates(db: AsyncSession) -> List[TaxRate]:
    result = await db.execute(
        select(TaxRate).where(TaxRate.is_active.is_(True)).order_by(TaxRate.name)
    )
    return list(result.scalars().all())


async def get_tax_rate_by_id(db: AsyncSession, tax_rate_id: UUID) -> Optional[TaxRate]:
    """Active tax rate by id; None when missing or inactive."""
    result = await db.execute(
        select(TaxRate).where(TaxRate.id == tax_rate_id, TaxRate.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def get_tax_rates_by_ids(db: AsyncSession, ids: Sequence[UUID]) -> List[TaxRate]:
    if not ids:
        return []
    result = await db.execute(
        select(TaxRate)
        .where(TaxRate.id.in_(list(ids)), TaxRate.is_active.is_(True))
        .order_by(TaxRate.name)
    )
    return list(result.scalars().all())


async def get_applicable_tax_rates(
    db: AsyncSession,
    item_type: InvoiceItemType,
    exempt_from_pst: bool = False,
) -> List[TaxRate]:
    """Active rates for an item type, dropping PST for exempt item types or when exempt_from_pst is set."""
    all_rates = await get_active_tax_rates(db)
    if InvoiceItemType(item_type) in PST_EXEMPT_ITEM_TYPES or exempt_from_pst:
        return [r for r in all_rates if r.name != settings.pst_tax_name]
    return all_rates


async def has_students_under_exempt_age(
    db: AsyncSession,
    student_ids: Sequence[UUID],
    today: Optional[date] = None,
) -> bool:
    """True if any student is younger than the PST exemption age. Unknown birth dates never exempt."""
    if not student_ids:
        return False
    result = await db.execute(select(Student.birth_date).where(Student.id.in_(list(student_ids))))
    for birth_date in result.scalars().all():
        if birth_date is None:
            continue
        if calculate_age(birth_date, today) < settings.pst_exempt_age:
            return True
    return False


async def get_applicable_tax_rates_for_store_purchase(
    db: AsyncSession,
    student_id: UUID,
    today: Optional[date] = None,
) -> List[TaxRate]:
    exempt = await has_students_under_exempt_age(db, [student_id], today)
    return await get_applicable_tax_rates(db, InvoiceItemType.PRODUCT, exempt_from_pst=exempt)


def item_type_for_payment(payment_type: str) -> InvoiceItemType:
    if payment_type in (PaymentType.MONTHLY_GROUP, PaymentType.YEARLY_GROUP):
        return InvoiceItemType.CLASS_ENROLLMENT
    if payment_type in (PaymentType.INDIVIDUAL_SESSION, PaymentType.EVENT_REGISTRATION):
        return InvoiceItemType.INDIVIDUAL_SESSION
    return InvoiceItemType.PRODUCT


async def calculate_taxes_for_payment(
    db: AsyncSession,
    subtotal_amount: Money,
    payment_type: str,
    student_ids: Optional[Sequence[UUID]] = None,
    today: Optional[date] = None,
) -> PaymentTaxResult:
    """Per-rate tax on the subtotal plus the running total. No applicable rates means no tax."""
    item_type = item_type_for_payment(payment_type)
    exempt_from_pst = False
    if payment_type == PaymentType.STORE_PURCHASE and student_ids:
        exempt_from_pst = await has_students_under_exempt_age(db, student_ids, today)
        if exempt_from_pst:
            logger.info("%s exemption applied for store purchase: student(s) under %s", settings.pst_tax_name, settings.pst_exempt_age)

    tax_rates = await get_applicable_tax_rates(db, item_type, exempt_from_pst=exempt_from_pst)
    total = zero_money(subtotal_amount.currency)
    if not tax_rates:
        logger.warning("No active tax rates found for item type %s; proceeding without tax", item_type.value)
        return PaymentTaxResult(total, [])

    payment_taxes: List[PaymentTax] = []
    for tax_rate in tax_rates:
        rate = parse_rate(tax_rate)
        if rate is None:
            logger.error("Invalid tax rate found for %s: %r; skipping", tax_rate.name, tax_rate.rate)
            continue
        amount = multiply_money(subtotal_amount, rate)
        total = add_money(total, amount)
        payment_taxes.append(
            PaymentTax(
                tax_rate_id=tax_rate.id,
                tax_amount=amount,
                tax_rate_snapshot=rate,
                tax_name_snapshot=tax_rate.name,
            )
        )
    return PaymentTaxResult(total, payment_taxes)
