from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.api.v1.discount_codes import service
from dojo.api.v1.discount_codes.schemas import DiscountCodeCreate, DiscountCodeUpdate
from dojo.core.dates import utcnow
from dojo.core.enums import DiscountScope, DiscountType, PaymentType, UsageType
from dojo.core.exceptions import CodeGenerationError, ServiceError
from dojo.core.models import DiscountCode, DiscountCodeUsage
from dojo.core.money import from_cents, from_dollars


def _code_payload(**overrides) -> DiscountCodeCreate:
    data = {
        "code": "SPRING10",
        "name": "Spring 10%",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "usage_type": UsageType.ONGOING,
        "applicable_to": [PaymentType.MONTHLY_GROUP],
        "scope": DiscountScope.PER_FAMILY,
    }
    data.update(overrides)
    return DiscountCodeCreate(**data)


async def _current_uses(db: AsyncSession, code_id) -> int:
    return (await db.execute(select(DiscountCode.current_uses).where(DiscountCode.id == code_id))).scalar_one()


# --- Scope / association ---
@pytest.mark.asyncio
async def test_per_family_code_without_family_is_rejected(db_session: AsyncSession, make_family, make_student) -> None:
    family = await make_family()
    student = await make_student(family)

    with pytest.raises(ServiceError) as exc:
        await service.create_discount_code(db_session, _code_payload(student_id=student.id))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_per_student_code_without_student_is_rejected(db_session: AsyncSession, make_family) -> None:
    family = await make_family()

    with pytest.raises(ServiceError) as exc:
        await service.create_discount_code(
            db_session, _code_payload(scope=DiscountScope.PER_STUDENT, family_id=family.id)
        )
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_code_with_both_family_and_student_is_rejected(
    db_session: AsyncSession, make_family, make_student
) -> None:
    family = await make_family()
    student = await make_student(family)

    with pytest.raises(ServiceError) as exc:
        await service.create_discount_code(db_session, _code_payload(family_id=family.id, student_id=student.id))
    assert exc.value.message == "Discount code cannot be associated with both a family and a student"


@pytest.mark.asyncio
async def test_code_with_neither_family_nor_student_is_rejected(db_session: AsyncSession) -> None:
    with pytest.raises(ServiceError) as exc:
        await service.create_discount_code(db_session, _code_payload())
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_create_code_defaults(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    before = utcnow()

    created = await service.create_discount_code(
        db_session,
        _code_payload(
            code="  welcome25 ",
            discount_type=DiscountType.FIXED_AMOUNT,
            discount_value=Decimal("25.00"),
            family_id=family.id,
        ),
    )

    assert created.code == "WELCOME25"
    assert created.discount_value_cents == 2500
    assert created.discount_value == Decimal("25.00")
    assert created.created_automatically is True
    assert created.current_uses == 0
    assert created.valid_from.replace(tzinfo=None) >= before.replace(tzinfo=None)

    by_code = await service.get_discount_code_by_code(db_session, "welcome25")
    assert by_code is not None and by_code.id == created.id


@pytest.mark.asyncio
async def test_percentage_over_100_is_rejected(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    with pytest.raises(ServiceError):
        await service.create_discount_code(
            db_session, _code_payload(discount_value=Decimal("150"), family_id=family.id)
        )


# --- Code generation ---
@pytest.mark.asyncio
async def test_generate_unique_code_format(db_session: AsyncSession) -> None:
    code = await service.generate_unique_code(db_session, prefix="AUTO", length=8)
    assert code.startswith("AUTO")
    assert len(code) == 12
    assert all(c in service.CODE_ALPHABET for c in code[4:])


@pytest.mark.asyncio
async def test_generate_unique_code_retries_past_collisions(
    db_session: AsyncSession, make_family, monkeypatch
) -> None:
    family = await make_family()
    for taken in ("AAAA", "BBBB"):
        await service.create_discount_code(db_session, _code_payload(code=taken, family_id=family.id))
    candidates = iter(["AAAA", "BBBB", "CCCC"])
    monkeypatch.setattr(service, "_random_code_body", lambda length: next(candidates))

    assert await service.generate_unique_code(db_session, length=4) == "CCCC"


@pytest.mark.asyncio
async def test_generate_unique_code_gives_up_after_max_attempts(
    db_session: AsyncSession, make_family, monkeypatch
) -> None:
    family = await make_family()
    await service.create_discount_code(db_session, _code_payload(code="DUPE", family_id=family.id))
    calls = []

    def always_taken(length: int) -> str:
        calls.append(length)
        return "DUPE"

    monkeypatch.setattr(service, "_random_code_body", always_taken)

    with pytest.raises(CodeGenerationError):
        await service.generate_unique_code(db_session, length=4, max_attempts=3)
    assert len(calls) == 3


# --- Validation at checkout ---
@pytest.mark.asyncio
async def test_validate_percentage_code(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    await service.create_discount_code(db_session, _code_payload(family_id=family.id))

    result = await service.validate_discount_code(
        db_session, "spring10", family.id, from_cents(12000), PaymentType.MONTHLY_GROUP
    )

    assert result.is_valid
    assert result.code == "SPRING10"
    assert result.discount_amount == from_cents(1200)


@pytest.mark.asyncio
async def test_validate_fixed_code_is_capped_at_subtotal(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    await service.create_discount_code(
        db_session,
        _code_payload(discount_type=DiscountType.FIXED_AMOUNT, discount_value=Decimal("50"), family_id=family.id),
    )

    result = await service.validate_discount_code(
        db_session, "SPRING10", family.id, from_dollars("30"), PaymentType.MONTHLY_GROUP
    )

    assert result.is_valid
    assert result.discount_amount == from_dollars("30")


@pytest.mark.asyncio
async def test_validate_rejections(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    other = await make_family("Jones Family")
    await service.create_discount_code(db_session, _code_payload(family_id=family.id))
    await service.create_discount_code(
        db_session,
        _code_payload(
            code="OLD",
            family_id=family.id,
            valid_from=utcnow() - timedelta(days=30),
            valid_until=utcnow() - timedelta(days=1),
        ),
    )
    subtotal = from_cents(10000)

    unknown = await service.validate_discount_code(db_session, "NOPE", family.id, subtotal, PaymentType.MONTHLY_GROUP)
    wrong_family = await service.validate_discount_code(db_session, "SPRING10", other.id, subtotal, PaymentType.MONTHLY_GROUP)
    wrong_type = await service.validate_discount_code(db_session, "SPRING10", family.id, subtotal, PaymentType.STORE_PURCHASE)
    expired = await service.validate_discount_code(db_session, "OLD", family.id, subtotal, PaymentType.MONTHLY_GROUP)

    assert unknown.error_message == "Invalid discount code"
    assert wrong_family.error_message == "Discount code is not valid for this family"
    assert wrong_type.error_message == "Discount code does not apply to this payment type"
    assert expired.error_message == "Discount code has expired"
    assert not any(r.is_valid for r in (unknown, wrong_family, wrong_type, expired))
    assert unknown.discount_amount.cents == 0


@pytest.mark.asyncio
async def test_deactivated_code_is_invalid(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    created = await service.create_discount_code(db_session, _code_payload(family_id=family.id))
    await service.deactivate_discount_code(db_session, created.id)

    result = await service.validate_discount_code(
        db_session, "SPRING10", family.id, from_cents(10000), PaymentType.MONTHLY_GROUP
    )
    assert not result.is_valid
    assert await service.list_active_codes(db_session) == []


@pytest.mark.asyncio
async def test_one_time_code_cannot_be_reused(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    created = await service.create_discount_code(
        db_session, _code_payload(usage_type=UsageType.ONE_TIME, family_id=family.id)
    )

    applied = await service.apply_discount_code(
        db_session, created.id, family.id, from_cents(1000), original_amount=from_cents(10000)
    )
    assert applied.success

    again = await service.validate_discount_code(
        db_session, "SPRING10", family.id, from_cents(10000), PaymentType.MONTHLY_GROUP
    )
    assert again.error_message == "Discount code has already been used"

    usage = (await service.get_family_discount_usage(db_session, family.id))[0]
    assert usage.discount_amount_cents == 1000
    assert usage.original_amount_cents == 10000
    assert usage.final_amount_cents == 9000


@pytest.mark.asyncio
async def test_max_uses_is_enforced(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    created = await service.create_discount_code(db_session, _code_payload(max_uses=2, family_id=family.id))
    for _ in range(2):
        assert (await service.apply_discount_code(db_session, created.id, family.id, from_cents(500))).success

    assert await _current_uses(db_session, created.id) == 2
    result = await service.validate_discount_code(
        db_session, "SPRING10", family.id, from_cents(10000), PaymentType.MONTHLY_GROUP
    )
    assert result.error_message == "Discount code usage limit reached"


@pytest.mark.asyncio
async def test_apply_unknown_code_reports_failure(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    result = await service.apply_discount_code(db_session, family.id, family.id, from_cents(100))
    assert not result.success
    assert result.error == "Discount code not found"


@pytest.mark.asyncio
async def test_failed_payment_restores_the_use(db_session: AsyncSession, make_family, make_payment) -> None:
    family = await make_family()
    created = await service.create_discount_code(db_session, _code_payload(family_id=family.id))
    payment = await make_payment(family, status="pending", discount_code_id=created.id)
    await service.apply_discount_code(db_session, created.id, family.id, from_cents(1000), payment_id=payment.id)

    # Still pending: nothing to restore
    assert await service.restore_discount_for_failed_payment(db_session, payment.id) is False

    payment.status = "failed"
    await db_session.commit()

    assert await service.restore_discount_for_failed_payment(db_session, payment.id) is True
    assert await _current_uses(db_session, created.id) == 0
    usage_count = await db_session.execute(
        select(func.count(DiscountCodeUsage.id)).where(DiscountCodeUsage.payment_id == payment.id)
    )
    assert usage_count.scalar() == 0
    # Second call finds no usage rows left
    assert await service.restore_discount_for_failed_payment(db_session, payment.id) is False


@pytest.mark.asyncio
async def test_update_code_renormalizes_value(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    created = await service.create_discount_code(
        db_session,
        _code_payload(discount_type=DiscountType.FIXED_AMOUNT, discount_value=Decimal("10"), family_id=family.id),
    )

    updated = await service.update_discount_code(db_session, created.id, DiscountCodeUpdate(discount_value=Decimal("12.34")))

    assert updated.discount_type == DiscountType.FIXED_AMOUNT
    assert updated.discount_value_cents == 1234


@pytest.mark.asyncio
async def test_automatic_discount_code(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    created = await service.create_automatic_discount_code(
        db_session, family.id, "Loyalty thanks", DiscountType.FIXED_AMOUNT, from_dollars("15")
    )

    assert created.code.startswith("AUTO")
    assert len(created.code) == len("AUTO") + 6
    assert created.usage_type == UsageType.ONE_TIME
    assert created.scope == DiscountScope.PER_FAMILY
    assert created.discount_value_cents == 1500
    assert created.applicable_to == [PaymentType.MONTHLY_GROUP, PaymentType.YEARLY_GROUP]


@pytest.mark.asyncio
async def test_list_codes_includes_usage(db_session: AsyncSession, make_family) -> None:
    family = await make_family()
    created = await service.create_discount_code(db_session, _code_payload(family_id=family.id))
    for _ in range(6):
        await service.apply_discount_code(db_session, created.id, family.id, from_cents(100))

    [listed] = await service.list_codes(db_session)
    assert listed.usage_count == 6
    assert len(listed.recent_usage) == 5


# --- HTTP ---
@pytest.mark.asyncio
async def test_create_and_validate_over_http(client: AsyncClient, make_family) -> None:
    family = await make_family()
    family_id = str(family.id)
    payload = {
        "code": "FALL20",
        "name": "Fall 20%",
        "discount_type": "percentage",
        "discount_value": "20",
        "usage_type": "ongoing",
        "applicable_to": ["monthly_group"],
        "scope": "per_family",
        "family_id": family_id,
    }

    created = await client.post("/api/v1/discount-codes", json=payload)
    assert created.status_code == 201

    duplicate = await client.post("/api/v1/discount-codes", json=payload)
    assert duplicate.status_code == 409

    validated = await client.post(
        "/api/v1/discount-codes/validate",
        json={
            "code": "FALL20",
            "family_id": family_id,
            "subtotal_amount_cents": 15000,
            "applicable_to": "monthly_group",
        },
    )
    assert validated.status_code == 200
    assert validated.json()["is_valid"] is True
    assert validated.json()["discount_amount_cents"] == 3000


@pytest.mark.asyncio
async def test_per_family_without_family_over_http(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/discount-codes",
        json={
            "code": "NOFAM",
            "name": "Broken",
            "discount_type": "percentage",
            "discount_value": "5",
            "usage_type": "ongoing",
            "applicable_to": ["monthly_group"],
            "scope": "per_family",
        },
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_missing_code_is_404(client: AsyncClient) -> None:
    response = await client.get("/api/v1/discount-codes/by-code/DOESNOTEXIST")
    assert response.status_code == 404
