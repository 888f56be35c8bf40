"""
Discount event hooks for other business flows (registration, payments, belt awards,
attendance). Failures are logged and swallowed so the calling flow never breaks
because discount automation did.
"""

import logging
from typing import NamedTuple, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.config import settings
from dojo.core.dates import utcnow
from dojo.core.enums import DiscountEventType, PaymentStatus
from dojo.core.models import Family, Payment, Student
from dojo.core.money import Money

from . import service

logger = logging.getLogger(__name__)


class BatchProcessResult(NamedTuple):
    enrollment_events: int
    first_payment_events: int


async def _recover(db: AsyncSession, message: str, *args) -> None:
    logger.exception(message, *args)
    await db.rollback()


async def is_first_payment(db: AsyncSession, family_id: UUID) -> bool:
    """True when the family has exactly one succeeded payment."""
    result = await db.execute(
        select(func.count(Payment.id)).where(
            Payment.family_id == family_id, Payment.status == PaymentStatus.succeeded.value
        )
    )
    return (result.scalar() or 0) == 1


async def record_student_enrollment_event(
    db: AsyncSession, student_id: UUID, family_id: UUID
) -> Optional[service.RecordedEvent]:
    try:
        return await service.record_student_enrollment(db, student_id, family_id)
    except Exception:
        await _recover(db, "Failed to record student enrollment event for student %s", student_id)
        return None


async def record_first_payment_event(
    db: AsyncSession, family_id: UUID, payment_amount: Money
) -> Optional[service.RecordedEvent]:
    """Only records when this is the family's first succeeded payment."""
    try:
        if not await is_first_payment(db, family_id):
            return None
        return await service.record_first_payment(db, family_id, payment_amount)
    except Exception:
        await _recover(db, "Failed to record first payment event for family %s", family_id)
        return None


async def record_belt_promotion_event(
    db: AsyncSession, student_id: UUID, family_id: UUID, new_belt_rank: str
) -> Optional[service.RecordedEvent]:
    try:
        return await service.record_belt_promotion(db, student_id, family_id, new_belt_rank)
    except Exception:
        await _recover(db, "Failed to record belt promotion event for student %s", student_id)
        return None


async def record_attendance_milestone_event(
    db: AsyncSession, student_id: UUID, family_id: UUID, attendance_count: int
) -> Optional[service.RecordedEvent]:
    """Only records on milestone counts (multiples of the configured interval)."""
    interval = settings.attendance_milestone_interval
    if attendance_count <= 0 or attendance_count % interval != 0:
        return None
    try:
        return await service.record_attendance_milestone(db, student_id, family_id, attendance_count)
    except Exception:
        await _recover(db, "Failed to record attendance milestone event for student %s", student_id)
        return None


async def record_birthday_event(
    db: AsyncSession, student_id: UUID, family_id: UUID
) -> Optional[service.RecordedEvent]:
    try:
        return await service.record_event(
            db,
            DiscountEventType.BIRTHDAY,
            student_id=student_id,
            family_id=family_id,
            event_data={"birthday_date": utcnow().date().isoformat()},
        )
    except Exception:
        await _recover(db, "Failed to record birthday event for student %s", student_id)
        return None


async def record_family_referral_event(
    db: AsyncSession, referring_family_id: UUID, new_family_id: UUID
) -> Optional[service.RecordedEvent]:
    """The referring family receives the event."""
    try:
        return await service.record_event(
            db,
            DiscountEventType.FAMILY_REFERRAL,
            family_id=referring_family_id,
            event_data={"referred_family_id": str(new_family_id), "referral_date": utcnow().isoformat()},
        )
    except Exception:
        await _recover(db, "Failed to record family referral event for family %s", referring_family_id)
        return None


async def record_seasonal_promotion_event(
    db: AsyncSession,
    family_id: UUID,
    student_id: Optional[UUID] = None,
    promotion_name: Optional[str] = None,
) -> Optional[service.RecordedEvent]:
    try:
        return await service.record_event(
            db,
            DiscountEventType.SEASONAL_PROMOTION,
            student_id=student_id,
            family_id=family_id,
            event_data={"promotion_name": promotion_name, "promotion_date": utcnow().isoformat()},
        )
    except Exception:
        await _recover(db, "Failed to record seasonal promotion event for family %s", family_id)
        return None


async def batch_process_existing_data(db: AsyncSession) -> BatchProcessResult:
    """
    Retroactively record enrollment events for every student and a first-payment event
    for every family with a succeeded payment. Rules still only assign once per recipient.
    """
    logger.info("Starting batch processing of existing data")
    students = (await db.execute(select(Student.id, Student.family_id).order_by(Student.created_at))).all()
    enrollment_events = 0
    for student_id, family_id in students:
        try:
            await service.record_event(
                db,
                DiscountEventType.STUDENT_ENROLLMENT,
                student_id=student_id,
                family_id=family_id,
                event_data={"enrollment_date": utcnow().isoformat(), "retroactive": True},
            )
            enrollment_events += 1
        except Exception:
            await _recover(db, "Failed to create enrollment event for student %s", student_id)
    logger.info("Processed %d student enrollment events", enrollment_events)

    family_ids = (await db.execute(select(Family.id).order_by(Family.created_at))).scalars().all()
    first_payment_events = 0
    for family_id in family_ids:
        first_payment = (
            await db.execute(
                select(Payment)
                .where(Payment.family_id == family_id, Payment.status == PaymentStatus.succeeded.value)
                .order_by(Payment.created_at)
                .limit(1)
            )
        ).scalar_one_or_none()
        if not first_payment:
            continue
        try:
            await service.record_event(
                db,
                DiscountEventType.FIRST_PAYMENT,
                family_id=family_id,
                event_data={
                    "payment_amount_cents": first_payment.total_amount_cents,
                    "payment_date": first_payment.created_at.isoformat(),
                    "retroactive": True,
                },
            )
            first_payment_events += 1
        except Exception:
            await _recover(db, "Failed to create first payment event for family %s", family_id)
    logger.info("Processed %d first payment events", first_payment_events)
    return BatchProcessResult(enrollment_events, first_payment_events)
