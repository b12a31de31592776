"""Timer job: mark past CONFIRMED appointments as MISSED.

Run once a day after the clinic closes, e.g. from cron:

    python -m scripts.mark_missed
    python -m scripts.mark_missed --before 2026-10-01
"""

import argparse
import asyncio
from datetime import date

import structlog

from clinicflow.core.events import get_broadcaster
from clinicflow.core.redis_client import close_redis_connection, get_redis_client
from clinicflow.database import AsyncSessionLocal, engine
from clinicflow.middleware.logging import configure_logging
from clinicflow.services.appointment_service import AppointmentService
from clinicflow.services.event_publisher import EventPublisher
from clinicflow.services.notification_service import NotificationService

logger = structlog.get_logger()


async def mark_missed(before: date | None) -> int:
    """Run the sweep and return how many appointments were marked."""
    # No live sessions in this process; events only reach the dispatcher stream
    publisher = EventPublisher(get_broadcaster(), NotificationService(get_redis_client()))

    async with AsyncSessionLocal() as session:
        result = await AppointmentService(session, publisher).mark_missed(before)

    await engine.dispose()
    close_redis_connection()
    return len(result.marked)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--before",
        type=date.fromisoformat,
        default=None,
        help="Cut-off day (YYYY-MM-DD); defaults to today in the clinic timezone",
    )
    args = parser.parse_args()

    configure_logging()
    marked = asyncio.run(mark_missed(args.before))
    logger.info("mark_missed_finished", marked=marked)


if __name__ == "__main__":
    main()
