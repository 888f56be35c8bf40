"""
Retroactively record discount events for existing data: an enrollment event per student
and a first-payment event per family with a succeeded payment. Automation rules still
assign at most once per recipient, so re-running only records events.

Usage: python -m dojo.scripts.batch_process_discount_events
"""

import asyncio
import logging

from dojo.api.v1.automatic_discounts.events import batch_process_existing_data
from dojo.core.logging import setup_logging
from dojo.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def run() -> None:
    async with AsyncSessionLocal() as session:
        result = await batch_process_existing_data(session)
    logger.info(
        "Done. %d enrollment event(s), %d first payment event(s).",
        result.enrollment_events,
        result.first_payment_events,
    )


def main() -> None:
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
