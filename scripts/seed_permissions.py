"""
Seed script to populate the default permission catalog and roles.

Run this script after database initialization to create:
- The default permissions (org.*, members.*, ownership.*, billing.*, plans.*)
- The Owner, Admin and Member roles
- Their default role-permission mappings

Roles that already have permissions keep them, so running it again is safe.
The API also seeds on startup.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.permissions.constants import DEFAULT_ROLES
from app.features.permissions.service import seed_rbac
from app.utils import get_logger, setup_logging


log = get_logger(__name__)


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            created = await seed_rbac(db)

            log.info("Permission seeding completed successfully!")
            log.info(
                "Created %d permissions, %d roles, %d role-permission mappings",
                created["permissions"], created["roles"], created["mappings"]
            )
            log.info("Default roles:")
            for role_name, role_config in DEFAULT_ROLES.items():
                log.info("  - %s: %s", role_name.value, role_config["description"])

        except Exception as e:
            log.error("Error seeding permissions: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    setup_logging(config.LOG_LEVEL)
    asyncio.run(main())
