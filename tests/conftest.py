import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dojo.core.models import (
    Attendance,
    BeltAward,
    DiscountTemplate,
    DojoClass,
    Enrollment,
    Family,
    Payment,
    Program,
    Student,
    TaxRate,
)
from dojo.db.session import Base, get_db
from dojo.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def engine():
    """Fresh in-memory database per test, with SAVEPOINT support enabled for SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# --- Factories ---
@pytest.fixture()
def make_family(db_session: AsyncSession):
    async def _make(name: str = "Smith Family") -> Family:
        family = Family(name=name, email=f"{name.split()[0].lower()}@example.com")
        db_session.add(family)
        await db_session.commit()
        return family

    return _make


@pytest.fixture()
def make_student(db_session: AsyncSession):
    async def _make(
        family: Family,
        first_name: str = "Alex",
        birth_date: Optional[date] = None,
        is_active: bool = True,
    ) -> Student:
        student = Student(
            family_id=family.id,
            first_name=first_name,
            last_name="Smith",
            birth_date=birth_date,
            is_active=is_active,
        )
        db_session.add(student)
        await db_session.commit()
        return student

    return _make


@pytest.fixture()
def make_template(db_session: AsyncSession):
    async def _make(
        name: str = "Welcome $25 off",
        discount_type: str = "fixed_amount",
        discount_value: Decimal = Decimal("25.00"),
        scope: str = "per_family",
        usage_type: str = "one_time",
        applicable_to=("monthly_group", "yearly_group"),
        is_active: bool = True,
    ) -> DiscountTemplate:
        template = DiscountTemplate(
            name=name,
            discount_type=discount_type,
            discount_value=discount_value,
            discount_value_cents=int(discount_value * 100) if discount_type == "fixed_amount" else 0,
            usage_type=usage_type,
            applicable_to=list(applicable_to),
            scope=scope,
            is_active=is_active,
        )
        db_session.add(template)
        await db_session.commit()
        return template

    return _make


@pytest.fixture()
async def bc_tax_rates(db_session: AsyncSession):
    """GST 5% and PST_BC 7%."""
    gst = TaxRate(name="GST", rate=Decimal("0.0500"), region="CA", description="Goods and Services Tax")
    pst = TaxRate(name="PST_BC", rate=Decimal("0.0700"), region="BC", description="Provincial Sales Tax (British Columbia)")
    db_session.add_all([gst, pst])
    await db_session.commit()
    return gst, pst


@pytest.fixture()
def enroll_student(db_session: AsyncSession):
    async def _enroll(student: Student, program: Optional[Program] = None, status: str = "active") -> Program:
        if program is None:
            program = Program(name="Kids Karate")
            db_session.add(program)
            await db_session.flush()
        dojo_class = DojoClass(program_id=program.id, name=f"{program.name} - Mon/Wed")
        db_session.add(dojo_class)
        await db_session.flush()
        db_session.add(Enrollment(student_id=student.id, class_id=dojo_class.id, status=status))
        await db_session.commit()
        return program

    return _enroll


@pytest.fixture()
def award_belt(db_session: AsyncSession):
    async def _award(student: Student, belt: str, awarded_date: date) -> BeltAward:
        award = BeltAward(student_id=student.id, type=belt, awarded_date=awarded_date)
        db_session.add(award)
        await db_session.commit()
        return award

    return _award


@pytest.fixture()
def record_attendance(db_session: AsyncSession):
    async def _record(student: Student, count: int) -> None:
        db_session.add_all(
            Attendance(student_id=student.id, class_date=date(2024, 1, 1) + timedelta(days=day)) for day in range(count)
        )
        await db_session.commit()

    return _record


@pytest.fixture()
def make_payment(db_session: AsyncSession):
    async def _make(
        family: Family,
        status: str = "succeeded",
        total_amount_cents: int = 10000,
        discount_code_id=None,
        payment_type: str = "monthly_group",
    ) -> Payment:
        payment = Payment(
            family_id=family.id,
            payment_type=payment_type,
            status=status,
            subtotal_amount_cents=total_amount_cents,
            total_amount_cents=total_amount_cents,
            discount_code_id=discount_code_id,
        )
        db_session.add(payment)
        await db_session.commit()
        return payment

    return _make
