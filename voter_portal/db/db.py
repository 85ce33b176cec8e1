import asyncio
from typing import Optional

from sqlalchemy import func, select

from voter_portal.config.settings import settings
from voter_portal.db.database import Database
from voter_portal.db.models import Base, User, UserRole
from voter_portal.utils.auth import AuthUtils
from voter_portal.utils.logging import get_logger

logger = get_logger()

# PostgreSQL-only objects; other dialects skip them.
SEARCH_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS idx_submissions_search ON submissions USING gin(
    to_tsvector('english',
        surname || ' ' || first_name || ' ' || mobile_number || ' ' || aadhaar_number
    )
)
"""

UPDATED_AT_FUNCTION_DDL = """
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    IF NEW.updated_at IS NULL OR NEW.updated_at <= OLD.updated_at THEN
        NEW.updated_at = (NOW() AT TIME ZONE 'UTC');
    END IF;
    RETURN NEW;
END;
$$ language 'plpgsql'
"""

UPDATED_AT_TRIGGER_TABLES = ("users", "submissions")

DIGIT_CHECKS = {
    "ck_submissions_pin_code_digits": "pin_code ~ '^[0-9]{6}$'",
    "ck_submissions_mobile_number_digits": "mobile_number ~ '^[0-9]{10}$'",
    "ck_submissions_aadhaar_number_digits": "aadhaar_number ~ '^[0-9]{12}$'",
}


async def create_tables(database: Database):
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created all tables.")


async def drop_tables(database: Database):
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Dropped all tables.")


async def create_indexes(database: Database):
    """Full-text search index and regex CHECKs that only PostgreSQL understands"""
    if database.dialect_name != "postgresql":
        logger.info(f"Skipping PostgreSQL indexes on {database.dialect_name}.")
        return

    await database.query(SEARCH_INDEX_DDL)
    for name, condition in DIGIT_CHECKS.items():
        exists = await database.query(
            "SELECT 1 FROM pg_constraint WHERE conname = :name", {"name": name}
        )
        if not exists:
            await database.query(
                f"ALTER TABLE submissions ADD CONSTRAINT {name} CHECK ({condition})"
            )
    logger.info("Created database indexes.")


async def create_triggers(database: Database):
    if database.dialect_name != "postgresql":
        logger.info(f"Skipping triggers on {database.dialect_name}.")
        return

    await database.query(UPDATED_AT_FUNCTION_DDL)
    for table in UPDATED_AT_TRIGGER_TABLES:
        await database.query(f"DROP TRIGGER IF EXISTS update_{table}_updated_at ON {table}")
        await database.query(
            f"CREATE TRIGGER update_{table}_updated_at BEFORE UPDATE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION update_updated_at_column()"
        )
    logger.info("Created database triggers.")


async def seed_db(database: Database, admin_password: Optional[str] = None):
    """Create the default admin account when no admin exists yet"""

    async def _seed(session):
        admin_count = await session.scalar(
            select(func.count(User.id)).where(User.role == UserRole.ADMIN)
        )
        if admin_count:
            logger.info("Admin user already present, skipping seed.")
            return False

        session.add(
            User(
                email=settings.ADMIN_EMAIL,
                password=AuthUtils.hash_password(
                    admin_password or settings.ADMIN_PASSWORD
                ),
                role=UserRole.ADMIN,
                first_name="Admin",
                last_name="User",
                is_active=True,
            )
        )
        logger.info(f"Seeded admin user {settings.ADMIN_EMAIL}.")
        return True

    return await database.transaction(_seed)


async def initialize_database(database: Database):
    """Idempotent schema setup: tables, indexes, triggers, admin user"""
    logger.info("Initializing database schema...")
    await create_tables(database)
    await create_indexes(database)
    await create_triggers(database)
    await seed_db(database)
    logger.info("Database initialization complete.")


async def reset_db(database: Database):
    logger.info("Resetting database...")
    await drop_tables(database)
    await initialize_database(database)
    logger.info("Database reset complete.")


async def _main():
    database = Database()
    try:
        await initialize_database(database)
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(_main())
