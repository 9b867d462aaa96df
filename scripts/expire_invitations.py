"""
Mark pending invitations past their expiry date as expired.

Validation and acceptance already reject past-due invitations on their own;
this sweep keeps the status column honest for listings and reports. Suitable
for a cron job.

Usage:
    uv run python -m scripts.expire_invitations
"""
import asyncio

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.invitations.service import expire_stale_invitations
from app.utils import get_logger, setup_logging


log = get_logger(__name__)


async def main():
    await init_db()

    async for db in get_db():
        try:
            expired = await expire_stale_invitations(db)
            await db.commit()
            log.info("Expired %d invitation(s)", expired)
        except Exception as e:
            log.error("Error expiring invitations: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    setup_logging(config.LOG_LEVEL)
    asyncio.run(main())
