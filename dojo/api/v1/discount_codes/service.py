"""Discount codes service: code store, unique code generation, checkout validation and usage."""

import logging
import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union
from uuid import UUID

from fastapi import status
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.config import settings
from dojo.core.dates import ensure_utc, utcnow
from dojo.core.enums import DiscountScope, DiscountType, PaymentStatus, PaymentType, UsageType
from dojo.core.exceptions import CodeGenerationError, ServiceError
from dojo.core.models import DiscountAssignment, DiscountCode, DiscountCodeUsage, Family, Payment, Student
from dojo.core.money import (
    Money,
    from_cents,
    from_dollars,
    min_money,
    percentage_of,
    subtract_money,
    to_cents,
    to_dollars,
    zero_money,
)

from .schemas import (
    DiscountCodeCreate,
    DiscountCodeResponse,
    DiscountCodeUpdate,
    DiscountCodeUsageResponse,
    DiscountCodeWithUsage,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
AUTOMATIC_CODE_LENGTH = 6
RECENT_USAGE_LIMIT = 5
DEFAULT_AUTOMATIC_APPLICABLE_TO = [PaymentType.MONTHLY_GROUP, PaymentType.YEARLY_GROUP]

DiscountValue = Union[Money, Decimal]


class DiscountValidationResult(NamedTuple):
    is_valid: bool
    discount_code_id: Optional[UUID] = None
    code: Optional[str] = None
    discount_amount: Money = zero_money()
    error_message: Optional[str] = None


class ApplyDiscountResult(NamedTuple):
    success: bool
    error: Optional[str] = None


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _normalize_code(code: str) -> str:
    return code.strip().upper()


# --- Discount values ---
def build_discount_value_write(discount_type: DiscountType, value) -> Tuple[Decimal, int]:
    """
    Column values (discount_value, discount_value_cents) for a discount.

    Fixed amounts accept Money or a dollar amount and are stored in both columns;
    percentages (0-100) pass through with 0 cents.
    """
    if discount_type == DiscountType.FIXED_AMOUNT:
        amount = value if isinstance(value, Money) else from_dollars(value)
        if amount.cents < 0:
            raise ServiceError("Discount value cannot be negative", status.HTTP_400_BAD_REQUEST)
        return to_dollars(amount), to_cents(amount)
    percentage = _to_decimal(value)
    if percentage < 0 or percentage > 100:
        raise ServiceError("Percentage discount must be between 0 and 100", status.HTTP_400_BAD_REQUEST)
    return percentage, 0


def get_discount_value(row) -> DiscountValue:
    """Money for fixed-amount templates/codes, the plain percentage otherwise."""
    if row.discount_type == DiscountType.FIXED_AMOUNT:
        if row.discount_value_cents:
            return from_cents(row.discount_value_cents)
        return from_dollars(_to_decimal(row.discount_value))
    return _to_decimal(row.discount_value)


def _response_value(row) -> Tuple[Decimal, int]:
    value = get_discount_value(row)
    if isinstance(value, Money):
        return to_dollars(value), to_cents(value)
    return value, 0


def _code_to_response(code: DiscountCode) -> DiscountCodeResponse:
    discount_value, discount_value_cents = _response_value(code)
    return DiscountCodeResponse(
        id=code.id,
        code=code.code,
        name=code.name,
        description=code.description,
        discount_type=code.discount_type,
        discount_value=discount_value,
        discount_value_cents=discount_value_cents,
        usage_type=code.usage_type,
        max_uses=code.max_uses,
        current_uses=code.current_uses or 0,
        applicable_to=code.applicable_to or [],
        scope=code.scope,
        family_id=code.family_id,
        student_id=code.student_id,
        is_active=code.is_active,
        valid_from=code.valid_from,
        valid_until=code.valid_until,
        created_by=code.created_by,
        created_automatically=code.created_automatically,
        created_at=code.created_at,
        updated_at=code.updated_at,
    )


async def validate_scope_association(
    db: AsyncSession,
    scope: DiscountScope,
    family_id: Optional[UUID],
    student_id: Optional[UUID],
) -> None:
    """A code belongs to exactly one family or one student, matching its scope."""
    if family_id and student_id:
        raise ServiceError(
            "Discount code cannot be associated with both a family and a student",
            status.HTTP_400_BAD_REQUEST,
        )
    if not family_id and not student_id:
        raise ServiceError(
            "Discount code must be associated with either a family or a student",
            status.HTTP_400_BAD_REQUEST,
        )
    if scope == DiscountScope.PER_FAMILY and not family_id:
        raise ServiceError("Per-family discount codes require a family", status.HTTP_400_BAD_REQUEST)
    if scope == DiscountScope.PER_STUDENT and not student_id:
        raise ServiceError("Per-student discount codes require a student", status.HTTP_400_BAD_REQUEST)
    if family_id and not await db.get(Family, family_id):
        raise ServiceError("Invalid family", status.HTTP_400_BAD_REQUEST)
    if student_id and not await db.get(Student, student_id):
        raise ServiceError("Invalid student", status.HTTP_400_BAD_REQUEST)


def _validate_window(valid_from: Optional[datetime], valid_until: Optional[datetime]) -> None:
    if valid_from and valid_until and ensure_utc(valid_until) <= ensure_utc(valid_from):
        raise ServiceError("valid_until must be after valid_from", status.HTTP_400_BAD_REQUEST)


# --- Code generation ---
def _random_code_body(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


async def generate_unique_code(
    db: AsyncSession,
    prefix: str = "",
    length: int = 8,
    max_attempts: Optional[int] = None,
) -> str:
    """Random A-Z0-9 code not present in the store; raises CodeGenerationError when attempts run out."""
    attempts = max_attempts or settings.code_generation_max_attempts
    for attempt in range(1, attempts + 1):
        candidate = f"{prefix}{_random_code_body(length)}"
        existing = await db.execute(select(DiscountCode.id).where(DiscountCode.code == candidate))
        if existing.scalar_one_or_none() is None:
            return candidate
        logger.debug("Discount code collision on attempt %d: %s", attempt, candidate)
    logger.error("Could not generate a unique discount code after %d attempts (prefix=%r)", attempts, prefix)
    raise CodeGenerationError()


# --- Code store ---
async def add_discount_code(
    db: AsyncSession,
    payload: DiscountCodeCreate,
    created_by: Optional[UUID] = None,
) -> DiscountCode:
    """Validate and stage a new code in the current transaction (flushed, not committed)."""
    await validate_scope_association(db, payload.scope, payload.family_id, payload.student_id)
    _validate_window(payload.valid_from, payload.valid_until)
    discount_value, discount_value_cents = build_discount_value_write(
        payload.discount_type, payload.discount_value
    )
    code = DiscountCode(
        code=_normalize_code(payload.code),
        name=payload.name.strip(),
        description=payload.description,
        discount_type=payload.discount_type.value,
        discount_value=discount_value,
        discount_value_cents=discount_value_cents,
        usage_type=payload.usage_type.value,
        max_uses=payload.max_uses,
        current_uses=0,
        applicable_to=[t.value for t in payload.applicable_to],
        scope=payload.scope.value,
        family_id=payload.family_id,
        student_id=payload.student_id,
        is_active=True,
        valid_from=payload.valid_from or utcnow(),
        valid_until=payload.valid_until,
        created_by=created_by,
        created_automatically=created_by is None,
    )
    db.add(code)
    await db.flush()
    return code


async def create_discount_code(
    db: AsyncSession,
    payload: DiscountCodeCreate,
    created_by: Optional[UUID] = None,
) -> DiscountCodeResponse:
    try:
        code = await add_discount_code(db, payload, created_by=created_by)
        await db.commit()
        await db.refresh(code)
        return _code_to_response(code)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Discount code already exists", status.HTTP_409_CONFLICT)


async def create_automatic_discount_code(
    db: AsyncSession,
    family_id: UUID,
    name: str,
    discount_type: DiscountType,
    discount_value,
    applicable_to: Optional[Sequence[PaymentType]] = None,
    valid_until: Optional[datetime] = None,
    description: Optional[str] = None,
) -> DiscountCodeResponse:
    """One-time per-family code with an AUTO prefix, created outside of any rule."""
    if isinstance(discount_value, Money):
        discount_value = to_dollars(discount_value)
    code = await generate_unique_code(db, prefix=settings.auto_code_prefix, length=AUTOMATIC_CODE_LENGTH)
    payload = DiscountCodeCreate(
        code=code,
        name=name,
        description=description,
        discount_type=discount_type,
        discount_value=discount_value,
        usage_type=UsageType.ONE_TIME,
        applicable_to=list(applicable_to or DEFAULT_AUTOMATIC_APPLICABLE_TO),
        scope=DiscountScope.PER_FAMILY,
        family_id=family_id,
        valid_until=valid_until,
    )
    return await create_discount_code(db, payload)


async def get_discount_code(db: AsyncSession, code_id: UUID) -> Optional[DiscountCodeResponse]:
    code = await db.get(DiscountCode, code_id)
    return _code_to_response(code) if code else None


async def get_discount_code_by_code(db: AsyncSession, code: str) -> Optional[DiscountCodeResponse]:
    result = await db.execute(select(DiscountCode).where(DiscountCode.code == _normalize_code(code)))
    row = result.scalar_one_or_none()
    return _code_to_response(row) if row else None


async def list_active_codes(db: AsyncSession) -> List[DiscountCodeResponse]:
    """Active codes whose validity window contains now."""
    now = utcnow()
    result = await db.execute(
        select(DiscountCode)
        .where(
            DiscountCode.is_active.is_(True),
            DiscountCode.valid_from <= now,
            (DiscountCode.valid_until.is_(None)) | (DiscountCode.valid_until >= now),
        )
        .order_by(DiscountCode.created_at.desc())
    )
    return [_code_to_response(c) for c in result.scalars().all()]


async def list_codes(db: AsyncSession) -> List[DiscountCodeWithUsage]:
    """All codes with their usage count and most recent usages."""
    result = await db.execute(select(DiscountCode).order_by(DiscountCode.created_at.desc()))
    codes = list(result.scalars().all())
    if not codes:
        return []
    usage_result = await db.execute(
        select(DiscountCodeUsage)
        .where(DiscountCodeUsage.discount_code_id.in_([c.id for c in codes]))
        .order_by(DiscountCodeUsage.used_at.desc())
    )
    usages_by_code: Dict[UUID, List[DiscountCodeUsage]] = {}
    for usage in usage_result.scalars().all():
        usages_by_code.setdefault(usage.discount_code_id, []).append(usage)
    out = []
    for code in codes:
        usages = usages_by_code.get(code.id, [])
        out.append(
            DiscountCodeWithUsage(
                **_code_to_response(code).model_dump(),
                usage_count=len(usages),
                recent_usage=[
                    DiscountCodeUsageResponse.model_validate(u) for u in usages[:RECENT_USAGE_LIMIT]
                ],
            )
        )
    return out


async def update_discount_code(
    db: AsyncSession,
    code_id: UUID,
    payload: DiscountCodeUpdate,
) -> Optional[DiscountCodeResponse]:
    code = await db.get(DiscountCode, code_id)
    if not code:
        return None
    data = payload.model_dump(exclude_unset=True)
    if "discount_value" in data or "discount_type" in data:
        discount_type = data.get("discount_type") or DiscountType(code.discount_type)
        value = data.get("discount_value")
        if value is None:
            current = get_discount_value(code)
            value = to_dollars(current) if isinstance(current, Money) else current
        code.discount_type = DiscountType(discount_type).value
        code.discount_value, code.discount_value_cents = build_discount_value_write(discount_type, value)
    if data.get("code") is not None:
        code.code = _normalize_code(data["code"])
    if data.get("name") is not None:
        code.name = data["name"].strip()
    if "description" in data:
        code.description = data["description"]
    if data.get("usage_type") is not None:
        code.usage_type = data["usage_type"].value
    if "max_uses" in data:
        code.max_uses = data["max_uses"]
    if data.get("applicable_to") is not None:
        code.applicable_to = [t.value for t in data["applicable_to"]]
    if data.get("is_active") is not None:
        code.is_active = data["is_active"]
    if data.get("valid_from") is not None:
        code.valid_from = data["valid_from"]
    if "valid_until" in data:
        code.valid_until = data["valid_until"]
    _validate_window(code.valid_from, code.valid_until)
    code.updated_at = utcnow()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Discount code already exists", status.HTTP_409_CONFLICT)
    await db.refresh(code)
    return _code_to_response(code)


async def set_discount_code_active(
    db: AsyncSession,
    code_id: UUID,
    is_active: bool,
) -> Optional[DiscountCodeResponse]:
    return await update_discount_code(db, code_id, DiscountCodeUpdate(is_active=is_active))


async def activate_discount_code(db: AsyncSession, code_id: UUID) -> Optional[DiscountCodeResponse]:
    return await set_discount_code_active(db, code_id, True)


async def deactivate_discount_code(db: AsyncSession, code_id: UUID) -> Optional[DiscountCodeResponse]:
    return await set_discount_code_active(db, code_id, False)


async def delete_discount_code(db: AsyncSession, code_id: UUID) -> bool:
    """Codes minted by an automation rule stay; deactivate them instead."""
    assigned = await db.execute(
        select(DiscountAssignment.id).where(DiscountAssignment.discount_code_id == code_id).limit(1)
    )
    if assigned.first():
        raise ServiceError(
            "Discount code was assigned by an automation rule; deactivate it instead",
            status.HTTP_409_CONFLICT,
        )
    result = await db.execute(delete(DiscountCode).where(DiscountCode.id == code_id))
    await db.commit()
    return result.rowcount > 0


# --- Checkout ---
def _invalid(message: str) -> DiscountValidationResult:
    return DiscountValidationResult(is_valid=False, error_message=message)


async def _has_prior_usage(db: AsyncSession, code: DiscountCode, family_id: UUID, student_id: Optional[UUID]) -> bool:
    query = select(func.count(DiscountCodeUsage.id)).where(DiscountCodeUsage.discount_code_id == code.id)
    if code.scope == DiscountScope.PER_STUDENT and student_id:
        query = query.where(DiscountCodeUsage.student_id == student_id)
    else:
        query = query.where(DiscountCodeUsage.family_id == family_id)
    return ((await db.execute(query)).scalar() or 0) > 0


def calculate_discount_amount(code: DiscountCode, subtotal: Money) -> Money:
    """Percentage of the subtotal, or the fixed amount capped at the subtotal."""
    value = get_discount_value(code)
    if isinstance(value, Money):
        return min_money(from_cents(value.cents, subtotal.currency), subtotal)
    return min_money(percentage_of(subtotal, value), subtotal)


async def validate_discount_code(
    db: AsyncSession,
    code: str,
    family_id: UUID,
    subtotal_amount: Money,
    applicable_to: PaymentType,
    student_id: Optional[UUID] = None,
) -> DiscountValidationResult:
    """Check a code at checkout. Invalid input yields is_valid=False with a message, never an exception."""
    result = await db.execute(select(DiscountCode).where(DiscountCode.code == _normalize_code(code)))
    row = result.scalar_one_or_none()
    if not row or not row.is_active:
        return _invalid("Invalid discount code")

    now = utcnow()
    if row.valid_from and ensure_utc(row.valid_from) > now:
        return _invalid("Discount code is not yet valid")
    if row.valid_until and ensure_utc(row.valid_until) < now:
        return _invalid("Discount code has expired")
    if row.max_uses is not None and (row.current_uses or 0) >= row.max_uses:
        return _invalid("Discount code usage limit reached")

    if row.family_id and row.family_id != family_id:
        return _invalid("Discount code is not valid for this family")
    if row.student_id and row.student_id != student_id:
        return _invalid("Discount code is not valid for this student")

    if PaymentType(applicable_to).value not in (row.applicable_to or []):
        return _invalid("Discount code does not apply to this payment type")

    if row.usage_type == UsageType.ONE_TIME and await _has_prior_usage(db, row, family_id, student_id):
        return _invalid("Discount code has already been used")

    return DiscountValidationResult(
        is_valid=True,
        discount_code_id=row.id,
        code=row.code,
        discount_amount=calculate_discount_amount(row, subtotal_amount),
    )


async def apply_discount_code(
    db: AsyncSession,
    discount_code_id: UUID,
    family_id: UUID,
    discount_amount: Money,
    payment_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
    original_amount: Optional[Money] = None,
) -> ApplyDiscountResult:
    """Record a usage row and bump current_uses."""
    code = await db.get(DiscountCode, discount_code_id)
    if not code:
        return ApplyDiscountResult(success=False, error="Discount code not found")
    if original_amount is not None:
        final_amount = subtract_money(original_amount, min_money(discount_amount, original_amount))
        original_cents, final_cents = to_cents(original_amount), to_cents(final_amount)
    else:
        original_cents, final_cents = 0, 0
    try:
        db.add(
            DiscountCodeUsage(
                discount_code_id=discount_code_id,
                payment_id=payment_id,
                family_id=family_id,
                student_id=student_id,
                discount_amount_cents=to_cents(discount_amount),
                original_amount_cents=original_cents,
                final_amount_cents=final_cents,
            )
        )
        await db.execute(
            update(DiscountCode)
            .where(DiscountCode.id == discount_code_id)
            .values(current_uses=DiscountCode.current_uses + 1, updated_at=utcnow())
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to record usage of discount code %s", discount_code_id)
        return ApplyDiscountResult(success=False, error="Failed to record discount usage")
    logger.info("Discount code %s applied for family %s (%d cents)", code.code, family_id, to_cents(discount_amount))
    return ApplyDiscountResult(success=True)


async def get_family_discount_usage(db: AsyncSession, family_id: UUID) -> List[DiscountCodeUsageResponse]:
    result = await db.execute(
        select(DiscountCodeUsage)
        .where(DiscountCodeUsage.family_id == family_id)
        .order_by(DiscountCodeUsage.used_at.desc())
    )
    return [DiscountCodeUsageResponse.model_validate(u) for u in result.scalars().all()]


async def get_student_discount_usage(db: AsyncSession, student_id: UUID) -> List[DiscountCodeUsageResponse]:
    result = await db.execute(
        select(DiscountCodeUsage)
        .where(DiscountCodeUsage.student_id == student_id)
        .order_by(DiscountCodeUsage.used_at.desc())
    )
    return [DiscountCodeUsageResponse.model_validate(u) for u in result.scalars().all()]


async def restore_discount_for_failed_payment(db: AsyncSession, payment_id: UUID) -> bool:
    """
    Give back the use consumed by a failed payment: delete its usage rows and decrement
    current_uses (never below zero). Returns False when there was nothing to restore.
    """
    payment = await db.get(Payment, payment_id)
    if not payment or payment.status != PaymentStatus.failed or not payment.discount_code_id:
        return False
    deleted = await db.execute(delete(DiscountCodeUsage).where(DiscountCodeUsage.payment_id == payment_id))
    if not deleted.rowcount:
        return False
    await db.execute(
        update(DiscountCode)
        .where(DiscountCode.id == payment.discount_code_id)
        .values(
            current_uses=case((DiscountCode.current_uses > 0, DiscountCode.current_uses - 1), else_=0),
            updated_at=utcnow(),
        )
    )
    await db.commit()
    logger.info("Restored discount code %s after failed payment %s", payment.discount_code_id, payment_id)
    return True
