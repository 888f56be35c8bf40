from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.api.v1.discount_codes.service import get_discount_value
from dojo.api.v1.discount_templates import service
from dojo.api.v1.discount_templates.schemas import (
    CreateCodeFromTemplateRequest,
    DiscountTemplateCreate,
    DiscountTemplateUpdate,
)
from dojo.core.enums import DiscountScope, DiscountType, PaymentType, UsageType
from dojo.core.exceptions import ServiceError
from dojo.core.models import DiscountAutomationRule, DiscountTemplate
from dojo.core.money import from_cents


def _template_payload(**overrides) -> DiscountTemplateCreate:
    data = {
        "name": "Welcome $25 off",
        "discount_type": DiscountType.FIXED_AMOUNT,
        "discount_value": Decimal("25.00"),
        "usage_type": UsageType.ONE_TIME,
        "applicable_to": [PaymentType.MONTHLY_GROUP, PaymentType.YEARLY_GROUP],
        "scope": DiscountScope.PER_FAMILY,
    }
    data.update(overrides)
    return DiscountTemplateCreate(**data)


@pytest.mark.asyncio
async def test_fixed_amount_template_stores_cents(db_session: AsyncSession) -> None:
    created = await service.create_template(db_session, _template_payload())

    assert created.discount_value_cents == 2500
    assert created.discount_value == Decimal("25.00")
    row = await db_session.get(DiscountTemplate, created.id)
    assert get_discount_value(row) == from_cents(2500)


@pytest.mark.asyncio
async def test_percentage_template_keeps_plain_percentage(db_session: AsyncSession) -> None:
    created = await service.create_template(
        db_session,
        _template_payload(name="Sibling 15%", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("15")),
    )

    assert created.discount_value == Decimal("15")
    assert created.discount_value_cents == 0


@pytest.mark.asyncio
async def test_update_value_keeps_stored_type(db_session: AsyncSession) -> None:
    created = await service.create_template(db_session, _template_payload())

    updated = await service.update_template(
        db_session, created.id, DiscountTemplateUpdate(discount_value=Decimal("40"))
    )

    assert updated.discount_type == DiscountType.FIXED_AMOUNT
    assert updated.discount_value_cents == 4000


def test_update_rejects_empty_applicability() -> None:
    with pytest.raises(ValidationError):
        DiscountTemplateUpdate(applicable_to=[])


@pytest.mark.asyncio
async def test_update_missing_template_returns_none(db_session: AsyncSession) -> None:
    assert await service.update_template(db_session, uuid4(), DiscountTemplateUpdate(name="x")) is None


@pytest.mark.asyncio
async def test_list_active_templates(db_session: AsyncSession, make_template) -> None:
    await make_template(name="A active")
    await make_template(name="B retired", is_active=False)

    assert [t.name for t in await service.list_templates(db_session)] == ["A active", "B retired"]
    assert [t.name for t in await service.list_active_templates(db_session)] == ["A active"]


@pytest.mark.asyncio
async def test_delete_template_used_by_rule_is_rejected(db_session: AsyncSession, make_template) -> None:
    template = await make_template()
    db_session.add(
        DiscountAutomationRule(name="Welcome", event_type="student_enrollment", discount_template_id=template.id)
    )
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await service.delete_template(db_session, template.id)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_create_code_from_template(db_session: AsyncSession, make_family, make_template) -> None:
    family = await make_family()
    template = await make_template()

    code = await service.create_discount_from_template(
        db_session, template.id, CreateCodeFromTemplateRequest(family_id=family.id)
    )

    assert code.code.startswith("TMPL")
    assert len(code.code) == 4 + service.TEMPLATE_CODE_LENGTH
    assert code.discount_value_cents == 2500
    assert code.usage_type == UsageType.ONE_TIME
    assert code.family_id == family.id
    assert code.applicable_to == [PaymentType.MONTHLY_GROUP, PaymentType.YEARLY_GROUP]


@pytest.mark.asyncio
async def test_create_code_from_template_with_explicit_code(
    db_session: AsyncSession, make_family, make_template
) -> None:
    family = await make_family()
    template = await make_template()

    code = await service.create_discount_from_template(
        db_session, template.id, CreateCodeFromTemplateRequest(code="smith25", family_id=family.id)
    )

    assert code.code == "SMITH25"


@pytest.mark.asyncio
async def test_create_code_from_template_scope_mismatch(
    db_session: AsyncSession, make_family, make_student, make_template
) -> None:
    family = await make_family()
    student = await make_student(family)
    template = await make_template()

    with pytest.raises(ServiceError) as exc:
        await service.create_discount_from_template(
            db_session, template.id, CreateCodeFromTemplateRequest(student_id=student.id)
        )
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_create_code_from_inactive_template(db_session: AsyncSession, make_family, make_template) -> None:
    family = await make_family()
    template = await make_template(is_active=False)

    with pytest.raises(ServiceError) as exc:
        await service.create_discount_from_template(
            db_session, template.id, CreateCodeFromTemplateRequest(family_id=family.id)
        )
    assert exc.value.message == "Discount template is not active"


# --- HTTP ---
@pytest.mark.asyncio
async def test_template_routes(client: AsyncClient, make_family) -> None:
    family = await make_family()
    family_id = str(family.id)

    created = await client.post(
        "/api/v1/discount-templates",
        json={
            "name": "Sibling 10%",
            "discount_type": "percentage",
            "discount_value": "10",
            "usage_type": "ongoing",
            "applicable_to": ["monthly_group"],
            "scope": "per_family",
        },
    )
    assert created.status_code == 201
    template_id = created.json()["id"]

    listed = await client.get("/api/v1/discount-templates", params={"active_only": True})
    assert [t["id"] for t in listed.json()] == [template_id]

    code = await client.post(f"/api/v1/discount-templates/{template_id}/codes", json={"family_id": family_id})
    assert code.status_code == 201
    assert code.json()["code"].startswith("TMPL")

    missing = await client.get(f"/api/v1/discount-templates/{uuid4()}")
    assert missing.status_code == 404
    missing_codes = await client.post(f"/api/v1/discount-templates/{uuid4()}/codes", json={"family_id": family_id})
    assert missing_codes.status_code == 404


@pytest.mark.asyncio
async def test_template_patch_with_empty_applicability_is_rejected(client: AsyncClient, make_template) -> None:
    template = await make_template()
    template_id = str(template.id)

    response = await client.patch(f"/api/v1/discount-templates/{template_id}", json={"applicable_to": []})
    current = await client.get(f"/api/v1/discount-templates/{template_id}")

    assert response.status_code == 422
    assert current.json()["applicable_to"] == ["monthly_group", "yearly_group"]
