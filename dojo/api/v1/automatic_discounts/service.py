"""
Automatic discounts: records discount events and runs them through the automation rules.

Each matching rule is evaluated in isolation (its own SAVEPOINT): a failing rule is
logged and skipped, and a rule's codes and assignment rows are committed together or
not at all. The unique constraint on discount_assignments backs the duplicate check.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dojo.api.v1.discount_codes.schemas import DiscountCodeCreate
from dojo.api.v1.discount_codes.service import add_discount_code, generate_unique_code, get_discount_value
from dojo.core.config import settings
from dojo.core.dates import ensure_utc, utcnow
from dojo.core.enums import DiscountEventType, DiscountScope
from dojo.core.exceptions import ServiceError
from dojo.core.models import (
    Attendance,
    AutomationRuleDiscountTemplate,
    BeltAward,
    DiscountAssignment,
    DiscountAutomationRule,
    DiscountEvent,
    DiscountTemplate,
    DojoClass,
    Enrollment,
    Student,
)
from dojo.core.money import Money, to_dollars

from .conditions import (
    AttendanceCountCondition,
    BeltRankCondition,
    MinFamilySizeCondition,
    conditions_to_json,
    parse_conditions,
)
from .schemas import (
    AutomationRuleCreate,
    AutomationRuleResponse,
    AutomationRuleUpdate,
    DiscountAssignmentResponse,
)

logger = logging.getLogger(__name__)


class RecordedEvent(NamedTuple):
    event: DiscountEvent
    assignments: List[DiscountAssignment]


def recipient_key(student_id: Optional[UUID], family_id: Optional[UUID]) -> str:
    return f"{student_id or '-'}:{family_id or '-'}"


def _rule_options():
    return (
        selectinload(DiscountAutomationRule.discount_template),
        selectinload(DiscountAutomationRule.template_links).selectinload(
            AutomationRuleDiscountTemplate.discount_template
        ),
    )


# --- Lookups used by conditions ---
async def get_student_programs(db: AsyncSession, student_id: UUID) -> List[UUID]:
    """Distinct program ids of the student's active enrollments."""
    result = await db.execute(
        select(DojoClass.program_id)
        .join(Enrollment, Enrollment.class_id == DojoClass.id)
        .where(Enrollment.student_id == student_id, Enrollment.status == "active")
        .distinct()
    )
    return list(result.scalars().all())


async def get_student_belt_rank(db: AsyncSession, student_id: UUID) -> Optional[str]:
    result = await db.execute(
        select(BeltAward.type)
        .where(BeltAward.student_id == student_id)
        .order_by(BeltAward.awarded_date.desc(), BeltAward.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_family_size(db: AsyncSession, family_id: UUID) -> int:
    result = await db.execute(
        select(func.count(Student.id)).where(Student.family_id == family_id, Student.is_active.is_(True))
    )
    return result.scalar() or 0


async def get_student_attendance_count(db: AsyncSession, student_id: UUID) -> int:
    result = await db.execute(select(func.count(Attendance.id)).where(Attendance.student_id == student_id))
    return result.scalar() or 0


# --- Rule engine ---
async def get_matching_rules(
    db: AsyncSession,
    event_type: str,
    now: Optional[datetime] = None,
) -> List[DiscountAutomationRule]:
    """Active rules for the event type whose validity window contains now."""
    now = now or utcnow()
    result = await db.execute(
        select(DiscountAutomationRule)
        .options(*_rule_options())
        .where(
            DiscountAutomationRule.event_type == event_type,
            DiscountAutomationRule.is_active.is_(True),
            (DiscountAutomationRule.valid_from.is_(None)) | (DiscountAutomationRule.valid_from <= now),
            (DiscountAutomationRule.valid_until.is_(None)) | (DiscountAutomationRule.valid_until >= now),
        )
        .order_by(DiscountAutomationRule.created_at)
    )
    return list(result.scalars().all())


async def evaluate_rule_conditions(db: AsyncSession, rule: DiscountAutomationRule, event: DiscountEvent) -> bool:
    """Program filter, then every stored condition. Conditions without their subject id on the event are skipped."""
    if rule.applicable_programs and event.student_id:
        allowed = {str(p) for p in rule.applicable_programs}
        enrolled = {str(p) for p in await get_student_programs(db, event.student_id)}
        if not allowed & enrolled:
            logger.debug("Rule %s skipped: student %s not enrolled in an applicable program", rule.id, event.student_id)
            return False

    for condition in parse_conditions(rule.conditions):
        if isinstance(condition, BeltRankCondition) and event.student_id:
            if await get_student_belt_rank(db, event.student_id) != condition.belt_rank:
                return False
        elif isinstance(condition, MinFamilySizeCondition) and event.family_id:
            if await get_family_size(db, event.family_id) < condition.min_family_size:
                return False
        elif isinstance(condition, AttendanceCountCondition) and event.student_id:
            if await get_student_attendance_count(db, event.student_id) < condition.attendance_count:
                return False
    return True


async def check_existing_assignment(
    db: AsyncSession,
    rule_id: UUID,
    student_id: Optional[UUID],
    family_id: Optional[UUID],
) -> bool:
    result = await db.execute(
        select(DiscountAssignment.id)
        .where(
            DiscountAssignment.automation_rule_id == rule_id,
            DiscountAssignment.recipient_key == recipient_key(student_id, family_id),
        )
        .limit(1)
    )
    return result.first() is not None


def resolve_rule_templates(rule: DiscountAutomationRule) -> List[DiscountTemplate]:
    """Templates a rule mints, in sequence order. Inactive templates are left out."""
    if rule.uses_multiple_templates:
        templates = [link.discount_template for link in sorted(rule.template_links, key=lambda l: l.sequence_order)]
    else:
        templates = [rule.discount_template] if rule.discount_template else []
    return [t for t in templates if t is not None and t.is_active]


async def assign_discounts(
    db: AsyncSession,
    rule: DiscountAutomationRule,
    event: DiscountEvent,
) -> List[DiscountAssignment]:
    """Mint one code per template and record the assignments. Runs inside the caller's transaction."""
    templates = resolve_rule_templates(rule)
    if not templates:
        logger.warning("Automation rule %s has no active discount templates", rule.id)
        return []

    key = recipient_key(event.student_id, event.family_id)
    assignments = []
    for sequence_order, template in enumerate(templates, start=1):
        if template.scope == DiscountScope.PER_STUDENT and event.student_id:
            scope, family_id, student_id = DiscountScope.PER_STUDENT, None, event.student_id
        else:
            scope, family_id, student_id = DiscountScope.PER_FAMILY, event.family_id, None
        if not family_id and not student_id:
            raise ServiceError(f"Event {event.id} has no recipient for template {template.id}")

        value = get_discount_value(template)
        code = await generate_unique_code(db, prefix=settings.auto_code_prefix, length=settings.auto_code_length)
        discount_code = await add_discount_code(
            db,
            DiscountCodeCreate(
                code=code,
                name=template.name,
                description=f"Automatically assigned by rule: {rule.name}",
                discount_type=template.discount_type,
                discount_value=to_dollars(value) if isinstance(value, Money) else value,
                usage_type=template.usage_type,
                max_uses=template.max_uses,
                applicable_to=template.applicable_to or [],
                scope=scope,
                family_id=family_id,
                student_id=student_id,
                valid_until=rule.valid_until,
            ),
        )
        assignment = DiscountAssignment(
            automation_rule_id=rule.id,
            discount_event_id=event.id,
            student_id=event.student_id,
            family_id=event.family_id,
            discount_code_id=discount_code.id,
            discount_code=discount_code,
            recipient_key=key,
            sequence_order=sequence_order,
        )
        db.add(assignment)
        assignments.append(assignment)
    await db.flush()
    for assignment in assignments:
        logger.info(
            "Rule %s assigned discount code %s (event %s, recipient %s)",
            rule.id, assignment.discount_code_id, event.id, key,
        )
    return assignments


async def process_event_for_automation(db: AsyncSession, event: DiscountEvent) -> List[DiscountAssignment]:
    rules = await get_matching_rules(db, event.event_type)
    created: List[DiscountAssignment] = []
    for rule in rules:
        try:
            async with db.begin_nested():
                if not await evaluate_rule_conditions(db, rule, event):
                    continue
                if await check_existing_assignment(db, rule.id, event.student_id, event.family_id):
                    logger.info("Rule %s already assigned to %s", rule.id, recipient_key(event.student_id, event.family_id))
                    continue
                assignments = await assign_discounts(db, rule, event)
            created.extend(assignments)
        except IntegrityError:
            logger.info("Rule %s was assigned concurrently for event %s", rule.id, event.id)
        except Exception:
            logger.exception("Failed to process automation rule %s for event %s", rule.id, event.id)
    await db.commit()
    return created


async def record_event(
    db: AsyncSession,
    event_type: DiscountEventType,
    student_id: Optional[UUID] = None,
    family_id: Optional[UUID] = None,
    event_data: Optional[Dict[str, Any]] = None,
) -> RecordedEvent:
    """Persist an event and run it through the automation rules before returning."""
    if not student_id and not family_id:
        raise ServiceError("A discount event needs a student or a family", status.HTTP_400_BAD_REQUEST)
    if student_id and not family_id:
        student = await db.get(Student, student_id)
        if not student:
            raise ServiceError("Invalid student", status.HTTP_400_BAD_REQUEST)
        family_id = student.family_id

    event = DiscountEvent(
        event_type=DiscountEventType(event_type).value,
        student_id=student_id,
        family_id=family_id,
        event_data=event_data,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)
    logger.info("Recorded %s event %s (student=%s, family=%s)", event.event_type, event.id, student_id, family_id)

    assignments = await process_event_for_automation(db, event)
    return RecordedEvent(event, assignments)


async def record_student_enrollment(db: AsyncSession, student_id: UUID, family_id: UUID) -> RecordedEvent:
    return await record_event(
        db,
        DiscountEventType.STUDENT_ENROLLMENT,
        student_id=student_id,
        family_id=family_id,
        event_data={"enrollment_date": utcnow().isoformat()},
    )


async def record_first_payment(db: AsyncSession, family_id: UUID, payment_amount: Money) -> RecordedEvent:
    return await record_event(
        db,
        DiscountEventType.FIRST_PAYMENT,
        family_id=family_id,
        event_data={"payment_amount_cents": payment_amount.cents, "payment_date": utcnow().isoformat()},
    )


async def record_belt_promotion(
    db: AsyncSession,
    student_id: UUID,
    family_id: UUID,
    new_belt_rank: str,
) -> RecordedEvent:
    return await record_event(
        db,
        DiscountEventType.BELT_PROMOTION,
        student_id=student_id,
        family_id=family_id,
        event_data={"new_belt_rank": new_belt_rank, "promotion_date": utcnow().isoformat()},
    )


async def record_attendance_milestone(
    db: AsyncSession,
    student_id: UUID,
    family_id: UUID,
    attendance_count: int,
) -> RecordedEvent:
    return await record_event(
        db,
        DiscountEventType.ATTENDANCE_MILESTONE,
        student_id=student_id,
        family_id=family_id,
        event_data={"attendance_count": attendance_count, "milestone_date": utcnow().isoformat()},
    )


# --- Rule admin ---
def _rule_template_ids(rule: DiscountAutomationRule) -> List[UUID]:
    if rule.uses_multiple_templates:
        return [link.discount_template_id for link in sorted(rule.template_links, key=lambda l: l.sequence_order)]
    return [rule.discount_template_id] if rule.discount_template_id else []


def _rule_to_response(rule: DiscountAutomationRule) -> AutomationRuleResponse:
    return AutomationRuleResponse(
        id=rule.id,
        name=rule.name,
        description=rule.description,
        event_type=rule.event_type,
        discount_template_id=rule.discount_template_id,
        discount_template_ids=_rule_template_ids(rule),
        conditions=rule.conditions,
        applicable_programs=rule.applicable_programs,
        valid_from=rule.valid_from,
        valid_until=rule.valid_until,
        is_active=rule.is_active,
        uses_multiple_templates=rule.uses_multiple_templates,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


async def _load_rule(db: AsyncSession, rule_id: UUID) -> Optional[DiscountAutomationRule]:
    result = await db.execute(
        select(DiscountAutomationRule)
        .options(*_rule_options())
        .where(DiscountAutomationRule.id == rule_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _validate_template_ids(db: AsyncSession, template_ids: Sequence[UUID]) -> None:
    if not template_ids:
        raise ServiceError("At least one discount template is required", status.HTTP_400_BAD_REQUEST)
    if len(set(template_ids)) != len(template_ids):
        raise ServiceError("Discount templates must not repeat", status.HTTP_400_BAD_REQUEST)
    result = await db.execute(select(DiscountTemplate.id).where(DiscountTemplate.id.in_(list(template_ids))))
    if len(set(result.scalars().all())) != len(template_ids):
        raise ServiceError("Invalid discount template", status.HTTP_400_BAD_REQUEST)


def _validate_rule_window(valid_from: Optional[datetime], valid_until: Optional[datetime]) -> None:
    if valid_from and valid_until and ensure_utc(valid_until) <= ensure_utc(valid_from):
        raise ServiceError("valid_until must be after valid_from", status.HTTP_400_BAD_REQUEST)


def _set_rule_templates(rule: DiscountAutomationRule, template_ids: Sequence[UUID], multiple: bool) -> None:
    rule.uses_multiple_templates = multiple
    if multiple:
        rule.discount_template_id = None
        rule.template_links.extend(
            AutomationRuleDiscountTemplate(discount_template_id=template_id, sequence_order=index + 1)
            for index, template_id in enumerate(template_ids)
        )
    else:
        rule.discount_template_id = template_ids[0]


async def create_automation_rule(db: AsyncSession, payload: AutomationRuleCreate) -> AutomationRuleResponse:
    template_ids = payload.discount_template_ids or (
        [payload.discount_template_id] if payload.discount_template_id else []
    )
    await _validate_template_ids(db, template_ids)
    conditions = conditions_to_json(parse_conditions(payload.conditions))
    _validate_rule_window(payload.valid_from, payload.valid_until)

    rule = DiscountAutomationRule(
        name=payload.name.strip(),
        description=payload.description,
        event_type=payload.event_type.value,
        conditions=conditions,
        applicable_programs=[str(p) for p in payload.applicable_programs] if payload.applicable_programs else None,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
        is_active=payload.is_active,
        template_links=[],
    )
    _set_rule_templates(rule, template_ids, payload.uses_multiple_templates or len(template_ids) > 1)
    db.add(rule)
    await db.commit()
    return _rule_to_response(await _load_rule(db, rule.id))


async def list_automation_rules(db: AsyncSession) -> List[AutomationRuleResponse]:
    result = await db.execute(
        select(DiscountAutomationRule)
        .options(*_rule_options())
        .order_by(DiscountAutomationRule.created_at.desc())
    )
    return [_rule_to_response(r) for r in result.scalars().all()]


async def get_automation_rule(db: AsyncSession, rule_id: UUID) -> Optional[AutomationRuleResponse]:
    rule = await _load_rule(db, rule_id)
    return _rule_to_response(rule) if rule else None


async def update_automation_rule(
    db: AsyncSession,
    rule_id: UUID,
    payload: AutomationRuleUpdate,
) -> Optional[AutomationRuleResponse]:
    rule = await _load_rule(db, rule_id)
    if not rule:
        return None
    data = payload.model_dump(exclude_unset=True)
    if "conditions" in data:
        rule.conditions = conditions_to_json(parse_conditions(data["conditions"]))
    if data.get("discount_template_ids") is not None:
        template_ids = data["discount_template_ids"]
        await _validate_template_ids(db, template_ids)
        rule.template_links.clear()
        await db.flush()
        _set_rule_templates(rule, template_ids, rule.uses_multiple_templates or len(template_ids) > 1)
    if data.get("name") is not None:
        rule.name = data["name"].strip()
    if "description" in data:
        rule.description = data["description"]
    if data.get("event_type") is not None:
        rule.event_type = data["event_type"].value
    if "applicable_programs" in data:
        programs = data["applicable_programs"]
        rule.applicable_programs = [str(p) for p in programs] if programs else None
    if "valid_from" in data:
        rule.valid_from = data["valid_from"]
    if "valid_until" in data:
        rule.valid_until = data["valid_until"]
    if data.get("is_active") is not None:
        rule.is_active = data["is_active"]
    _validate_rule_window(rule.valid_from, rule.valid_until)
    rule.updated_at = utcnow()
    await db.commit()
    return _rule_to_response(await _load_rule(db, rule_id))


async def delete_automation_rule(db: AsyncSession, rule_id: UUID) -> bool:
    rule = await _load_rule(db, rule_id)
    if not rule:
        return False
    await db.delete(rule)
    await db.commit()
    return True


# --- Assignments ---
def assignment_to_response(assignment: DiscountAssignment, code: Optional[str] = None) -> DiscountAssignmentResponse:
    return DiscountAssignmentResponse(
        id=assignment.id,
        automation_rule_id=assignment.automation_rule_id,
        discount_event_id=assignment.discount_event_id,
        student_id=assignment.student_id,
        family_id=assignment.family_id,
        discount_code_id=assignment.discount_code_id,
        discount_code=code,
        sequence_order=assignment.sequence_order,
        assigned_at=assignment.assigned_at,
    )


async def list_discount_assignments(
    db: AsyncSession,
    rule_id: Optional[UUID] = None,
    family_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> List[DiscountAssignmentResponse]:
    query = select(DiscountAssignment).options(selectinload(DiscountAssignment.discount_code))
    if rule_id:
        query = query.where(DiscountAssignment.automation_rule_id == rule_id)
    if family_id:
        query = query.where(DiscountAssignment.family_id == family_id)
    if student_id:
        query = query.where(DiscountAssignment.student_id == student_id)
    result = await db.execute(query.order_by(DiscountAssignment.assigned_at.desc()))
    return [
        assignment_to_response(a, a.discount_code.code if a.discount_code else None)
        for a in result.scalars().all()
    ]
