"""Discount templates service: reusable discount definitions and code minting from them."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.api.v1.discount_codes.schemas import DiscountCodeCreate, DiscountCodeResponse
from dojo.api.v1.discount_codes.service import (
    build_discount_value_write,
    create_discount_code,
    generate_unique_code,
    get_discount_value,
    validate_scope_association,
)
from dojo.core.config import settings
from dojo.core.enums import DiscountScope, DiscountType, UsageType
from dojo.core.exceptions import ServiceError
from dojo.core.models import AutomationRuleDiscountTemplate, DiscountAutomationRule, DiscountTemplate
from dojo.core.money import Money, to_cents, to_dollars

from .schemas import (
    CreateCodeFromTemplateRequest,
    DiscountTemplateCreate,
    DiscountTemplateResponse,
    DiscountTemplateUpdate,
)

logger = logging.getLogger(__name__)

TEMPLATE_CODE_LENGTH = 6


def _template_to_response(template: DiscountTemplate) -> DiscountTemplateResponse:
    value = get_discount_value(template)
    if isinstance(value, Money):
        discount_value, discount_value_cents = to_dollars(value), to_cents(value)
    else:
        discount_value, discount_value_cents = value, 0
    return DiscountTemplateResponse(
        id=template.id,
        name=template.name,
        description=template.description,
        discount_type=template.discount_type,
        discount_value=discount_value,
        discount_value_cents=discount_value_cents,
        usage_type=template.usage_type,
        max_uses=template.max_uses,
        applicable_to=template.applicable_to or [],
        scope=template.scope,
        is_active=template.is_active,
        created_by=template.created_by,
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


async def list_templates(db: AsyncSession) -> List[DiscountTemplateResponse]:
    result = await db.execute(select(DiscountTemplate).order_by(DiscountTemplate.name))
    return [_template_to_response(t) for t in result.scalars().all()]


async def list_active_templates(db: AsyncSession) -> List[DiscountTemplateResponse]:
    result = await db.execute(
        select(DiscountTemplate).where(DiscountTemplate.is_active.is_(True)).order_by(DiscountTemplate.name)
    )
    return [_template_to_response(t) for t in result.scalars().all()]


async def get_template(db: AsyncSession, template_id: UUID) -> Optional[DiscountTemplateResponse]:
    template = await db.get(DiscountTemplate, template_id)
    return _template_to_response(template) if template else None


async def create_template(
    db: AsyncSession,
    payload: DiscountTemplateCreate,
    created_by: Optional[UUID] = None,
) -> DiscountTemplateResponse:
    discount_value, discount_value_cents = build_discount_value_write(
        payload.discount_type, payload.discount_value
    )
    template = DiscountTemplate(
        name=payload.name.strip(),
        description=payload.description,
        discount_type=payload.discount_type.value,
        discount_value=discount_value,
        discount_value_cents=discount_value_cents,
        usage_type=payload.usage_type.value,
        max_uses=payload.max_uses,
        applicable_to=[t.value for t in payload.applicable_to],
        scope=payload.scope.value,
        is_active=payload.is_active,
        created_by=created_by,
    )
    db.add(template)
    await db.commit()
    await db.refresh(template)
    return _template_to_response(template)


async def update_template(
    db: AsyncSession,
    template_id: UUID,
    payload: DiscountTemplateUpdate,
) -> Optional[DiscountTemplateResponse]:
    """Partial update; a new discount_value is normalised against the stored type unless a type is given."""
    template = await db.get(DiscountTemplate, template_id)
    if not template:
        return None
    data = payload.model_dump(exclude_unset=True)
    if data.get("discount_value") is not None or data.get("discount_type") is not None:
        discount_type = data.get("discount_type") or DiscountType(template.discount_type)
        value = data.get("discount_value")
        if value is None:
            current = get_discount_value(template)
            value = to_dollars(current) if isinstance(current, Money) else current
        template.discount_type = DiscountType(discount_type).value
        template.discount_value, template.discount_value_cents = build_discount_value_write(discount_type, value)
    if data.get("name") is not None:
        template.name = data["name"].strip()
    if "description" in data:
        template.description = data["description"]
    if data.get("usage_type") is not None:
        template.usage_type = data["usage_type"].value
    if "max_uses" in data:
        template.max_uses = data["max_uses"]
    if data.get("applicable_to") is not None:
        template.applicable_to = [t.value for t in data["applicable_to"]]
    if data.get("scope") is not None:
        template.scope = data["scope"].value
    if data.get("is_active") is not None:
        template.is_active = data["is_active"]
    await db.commit()
    await db.refresh(template)
    return _template_to_response(template)


async def delete_template(db: AsyncSession, template_id: UUID) -> bool:
    template = await db.get(DiscountTemplate, template_id)
    if not template:
        return False
    in_use = await db.execute(
        select(DiscountAutomationRule.id).where(DiscountAutomationRule.discount_template_id == template_id).limit(1)
    )
    linked = await db.execute(
        select(AutomationRuleDiscountTemplate.id)
        .where(AutomationRuleDiscountTemplate.discount_template_id == template_id)
        .limit(1)
    )
    if in_use.first() or linked.first():
        raise ServiceError("Discount template is used by an automation rule", status.HTTP_409_CONFLICT)
    try:
        await db.delete(template)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Discount template is in use", status.HTTP_409_CONFLICT)
    return True


async def create_discount_from_template(
    db: AsyncSession,
    template_id: UUID,
    payload: CreateCodeFromTemplateRequest,
    created_by: Optional[UUID] = None,
) -> DiscountCodeResponse:
    """Mint a code carrying the template's terms for one family or student."""
    template = await db.get(DiscountTemplate, template_id)
    if not template:
        raise ServiceError("Discount template not found", status.HTTP_404_NOT_FOUND)
    if not template.is_active:
        raise ServiceError("Discount template is not active", status.HTTP_400_BAD_REQUEST)
    await validate_scope_association(db, DiscountScope(template.scope), payload.family_id, payload.student_id)

    code = payload.code or await generate_unique_code(
        db, prefix=settings.template_code_prefix, length=TEMPLATE_CODE_LENGTH
    )
    value = get_discount_value(template)
    code_payload = DiscountCodeCreate(
        code=code,
        name=template.name,
        description=template.description,
        discount_type=template.discount_type,
        discount_value=to_dollars(value) if isinstance(value, Money) else value,
        usage_type=UsageType(template.usage_type),
        max_uses=template.max_uses,
        applicable_to=template.applicable_to or [],
        scope=template.scope,
        family_id=payload.family_id,
        student_id=payload.student_id,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
    )
    logger.info("Creating discount code %s from template %s", code, template.id)
    return await create_discount_code(db, code_payload, created_by=created_by)
