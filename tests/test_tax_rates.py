from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.api.v1.tax_rates import service
from dojo.core.dates import calculate_age
from dojo.core.enums import InvoiceItemType, PaymentType
from dojo.core.models import TaxRate
from dojo.core.money import from_cents
from dojo.db.seed_tax_rates import seed_tax_rates


def test_calculate_age_counts_birthday_not_yet_reached() -> None:
    assert calculate_age(date(2010, 6, 15), today=date(2025, 6, 14)) == 14
    assert calculate_age(date(2010, 6, 15), today=date(2025, 6, 15)) == 15
    assert calculate_age(date(2010, 6, 15), today=date(2025, 12, 31)) == 15


@pytest.mark.asyncio
async def test_active_tax_rates_exclude_inactive(db_session: AsyncSession, bc_tax_rates) -> None:
    db_session.add(TaxRate(name="HST_OLD", rate=Decimal("0.1200"), is_active=False))
    await db_session.commit()

    names = [r.name for r in await service.get_active_tax_rates(db_session)]
    assert names == ["GST", "PST_BC"]


@pytest.mark.asyncio
async def test_get_tax_rate_by_id_ignores_inactive(db_session: AsyncSession, bc_tax_rates) -> None:
    gst, pst = bc_tax_rates
    pst.is_active = False
    await db_session.commit()

    assert (await service.get_tax_rate_by_id(db_session, gst.id)).name == "GST"
    assert await service.get_tax_rate_by_id(db_session, pst.id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "item_type,expected",
    [
        (InvoiceItemType.CLASS_ENROLLMENT, ["GST"]),
        (InvoiceItemType.INDIVIDUAL_SESSION, ["GST"]),
        (InvoiceItemType.PRODUCT, ["GST", "PST_BC"]),
        (InvoiceItemType.FEE, ["GST", "PST_BC"]),
    ],
)
async def test_pst_is_dropped_for_enrollments_and_sessions(
    db_session: AsyncSession, bc_tax_rates, item_type, expected
) -> None:
    rates = await service.get_applicable_tax_rates(db_session, item_type)
    assert [r.name for r in rates] == expected


@pytest.mark.asyncio
async def test_explicit_exemption_drops_pst(db_session: AsyncSession, bc_tax_rates) -> None:
    rates = await service.get_applicable_tax_rates(db_session, InvoiceItemType.PRODUCT, exempt_from_pst=True)
    assert [r.name for r in rates] == ["GST"]


@pytest.mark.asyncio
async def test_store_purchase_exemption_at_age_boundary(
    db_session: AsyncSession, bc_tax_rates, make_family, make_student
) -> None:
    family = await make_family()
    student = await make_student(family, birth_date=date(2010, 6, 15))

    day_before = await service.get_applicable_tax_rates_for_store_purchase(db_session, student.id, today=date(2025, 6, 14))
    on_birthday = await service.get_applicable_tax_rates_for_store_purchase(db_session, student.id, today=date(2025, 6, 15))

    assert [r.name for r in day_before] == ["GST"]
    assert [r.name for r in on_birthday] == ["GST", "PST_BC"]


@pytest.mark.asyncio
async def test_unknown_birth_date_is_not_exempt(
    db_session: AsyncSession, bc_tax_rates, make_family, make_student
) -> None:
    family = await make_family()
    student = await make_student(family, birth_date=None)

    rates = await service.get_applicable_tax_rates_for_store_purchase(db_session, student.id)
    assert [r.name for r in rates] == ["GST", "PST_BC"]


@pytest.mark.asyncio
async def test_payment_taxes_for_monthly_membership(db_session: AsyncSession, bc_tax_rates) -> None:
    result = await service.calculate_taxes_for_payment(db_session, from_cents(10000), PaymentType.MONTHLY_GROUP)

    assert result.total_tax_amount.cents == 500
    assert [(t.tax_name_snapshot, t.tax_amount.cents) for t in result.payment_taxes] == [("GST", 500)]
    assert result.payment_taxes[0].tax_rate_snapshot == Decimal("0.05")


@pytest.mark.asyncio
async def test_payment_taxes_for_store_purchase(
    db_session: AsyncSession, bc_tax_rates, make_family, make_student
) -> None:
    family = await make_family()
    adult = await make_student(family, first_name="Sam", birth_date=date(1990, 1, 1))
    child = await make_student(family, first_name="Kid", birth_date=date(2015, 1, 1))
    today = date(2025, 3, 1)

    adult_only = await service.calculate_taxes_for_payment(
        db_session, from_cents(10000), PaymentType.STORE_PURCHASE, [adult.id], today=today
    )
    with_child = await service.calculate_taxes_for_payment(
        db_session, from_cents(10000), PaymentType.STORE_PURCHASE, [adult.id, child.id], today=today
    )

    assert adult_only.total_tax_amount.cents == 1200
    assert with_child.total_tax_amount.cents == 500


@pytest.mark.asyncio
async def test_no_active_rates_means_no_tax(db_session: AsyncSession) -> None:
    result = await service.calculate_taxes_for_payment(db_session, from_cents(10000), PaymentType.OTHER)
    assert result.total_tax_amount.cents == 0
    assert result.payment_taxes == []


@pytest.mark.asyncio
async def test_calculate_endpoint(client: AsyncClient, bc_tax_rates) -> None:
    response = await client.post(
        "/api/v1/tax-rates/calculate",
        json={"subtotal_amount_cents": 2000, "payment_type": "event_registration"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_tax_amount_cents"] == 100
    assert [t["tax_name_snapshot"] for t in data["payment_taxes"]] == ["GST"]


@pytest.mark.asyncio
async def test_applicable_endpoint(client: AsyncClient, bc_tax_rates) -> None:
    response = await client.get("/api/v1/tax-rates/applicable", params={"item_type": "product"})
    assert response.status_code == 200
    assert [r["name"] for r in response.json()] == ["GST", "PST_BC"]


@pytest.mark.asyncio
async def test_get_tax_rates_by_ids(db_session: AsyncSession, bc_tax_rates) -> None:
    gst, pst = bc_tax_rates
    pst.is_active = False
    await db_session.commit()

    rates = await service.get_tax_rates_by_ids(db_session, [pst.id, gst.id])

    assert [r.name for r in rates] == ["GST"]
    assert await service.get_tax_rates_by_ids(db_session, []) == []


@pytest.mark.asyncio
async def test_seed_tax_rates_is_repeatable(db_session: AsyncSession) -> None:
    assert await seed_tax_rates(db_session) == (2, 0)
    assert await seed_tax_rates(db_session) == (0, 2)

    rates = {r.name: r.rate for r in await service.get_active_tax_rates(db_session)}
    assert rates == {"GST": Decimal("0.0500"), "PST_BC": Decimal("0.0700")}


@pytest.mark.asyncio
async def test_payment_taxes_skip_unusable_rates(db_session: AsyncSession, bc_tax_rates, monkeypatch, caplog) -> None:
    gst, _ = bc_tax_rates
    broken = TaxRate(id=uuid4(), name="BROKEN", rate=Decimal("NaN"))

    async def rates_with_broken(db, item_type, exempt_from_pst=False):
        return [broken, gst]

    monkeypatch.setattr(service, "get_applicable_tax_rates", rates_with_broken)

    result = await service.calculate_taxes_for_payment(db_session, from_cents(10000), PaymentType.STORE_PURCHASE)

    assert result.total_tax_amount == from_cents(500)
    assert [t.tax_name_snapshot for t in result.payment_taxes] == ["GST"]
    assert "Invalid tax rate found for BROKEN" in caplog.text
