#!/usr/bin/env python3
"""Setup script for the travel CRM booking API: migrations and sample data."""

import asyncio
import logging
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from travel_crm.core.config import settings  # noqa: E402
from travel_crm.core.database import Database, utcnow  # noqa: E402
from travel_crm.core.security import TOKEN_TYPE_CUSTOMER, create_access_token  # noqa: E402
from travel_crm.models import Customer, TravelPackage, User, UserRole  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Bring the schema up to the latest Alembic revision."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data(database: Database) -> None:
    """Create staff accounts, customers and packages for local testing."""
    logger.info("Creating sample data...")

    async with database.session() as db:
        existing = (await db.execute(select(func.count(User.id)))).scalar_one()
        if existing > 0:
            logger.info("Sample data already exists, skipping...")
            return

        staff = [
            User(name="Admin", email="admin@travel.local", role=UserRole.ADMIN),
            User(name="Sales", email="sales@travel.local", role=UserRole.SALES),
            User(name="Customer Service", email="cs@travel.local", role=UserRole.CS),
            User(name="Manager", email="manager@travel.local", role=UserRole.MANAGER),
        ]
        customers = [
            Customer(name="Budi Santoso", email="budi@example.com", phone="081234567890"),
            Customer(name="Siti Rahma", email="siti@example.com", phone="081298765432"),
        ]

        start = utcnow()
        packages = [
            TravelPackage(
                name="Bali Paradise 4D3N",
                destination="Bali",
                description="Beaches, temples and rice terraces",
                price=Decimal("3500000"),
                quota=20,
                start_date=start,
                end_date=start + timedelta(days=180),
            ),
            TravelPackage(
                name="Raja Ampat Diving 5D4N",
                destination="Raja Ampat",
                description="Liveaboard diving in West Papua",
                price=Decimal("12500000"),
                quota=8,
                start_date=start,
                end_date=start + timedelta(days=120),
            ),
        ]

        db.add_all([*staff, *customers, *packages])
        await db.commit()

        for user in staff:
            logger.info("Staff token for %s (%s): %s", user.email, user.role.value, create_access_token(user.id))
        for customer in customers:
            logger.info(
                "Customer token for %s: %s",
                customer.email,
                create_access_token(customer.id, token_type=TOKEN_TYPE_CUSTOMER),
            )

    logger.info("Sample data created successfully!")


async def seed() -> None:
    database = Database(settings.database_url)
    try:
        await create_sample_data(database)
    finally:
        await database.dispose()


def main() -> None:
    """Main setup function."""
    logger.info("Starting travel CRM setup...")

    run_migrations()
    asyncio.run(seed())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn travel_crm.main:app --reload")


if __name__ == "__main__":
    main()
