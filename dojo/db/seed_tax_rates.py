"""
Seed script for the tax_rates reference table (British Columbia).

Inserts GST and PST_BC if missing and refreshes rate/description on existing rows.
Usage: python -m dojo.db.seed_tax_rates
"""
import asyncio
import logging
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.logging import setup_logging
from dojo.core.models import TaxRate
from dojo.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)

# (name, rate, region, description)
BC_TAX_RATES: List[Tuple[str, Decimal, str, str]] = [
    ("GST", Decimal("0.0500"), "CA", "Goods and Services Tax"),
    ("PST_BC", Decimal("0.0700"), "BC", "Provincial Sales Tax (British Columbia)"),
]


async def seed_tax_rates(db: AsyncSession) -> Tuple[int, int]:
    """Returns (created, updated)."""
    created = 0
    updated = 0
    for name, rate, region, description in BC_TAX_RATES:
        result = await db.execute(select(TaxRate).where(TaxRate.name == name))
        existing = result.scalar_one_or_none()
        if existing:
            existing.rate = rate
            existing.region = region
            existing.description = description
            existing.is_active = True
            updated += 1
        else:
            db.add(TaxRate(name=name, rate=rate, region=region, description=description, is_active=True))
            created += 1
    await db.commit()
    return created, updated


async def main() -> None:
    setup_logging()
    async with AsyncSessionLocal() as db:
        created, updated = await seed_tax_rates(db)
    logger.info("Tax rates seeded: %d created, %d updated", created, updated)


if __name__ == "__main__":
    asyncio.run(main())
