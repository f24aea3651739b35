"""
Seed script to create the initial superAdmin account.

Reads SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD and SUPER_ADMIN_NAME from the
environment (or .env). Running it again is a no-op once the account exists.

Usage:
    uv run python -m scripts.seed_super_admin
"""
import asyncio

from app.core import config
from app.core.database.engine import get_db, init_db
from app.core.database.store import RecordStore
from app.features.permissions.roles import GlobalRole
from app.features.users.credentials import hash_password, verify_password
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def seed_super_admin(store: RecordStore, email: str, password: str, name: str) -> User:
    """
    Create the superAdmin, or return the existing account with that email.

    An existing account keeps its password; a mismatch with `password` is
    logged so a rotated SUPER_ADMIN_PASSWORD is not silently ignored.

    Raises:
        ValueError: if the email belongs to an account with another role
    """
    existing = await store.find_principal_by_email(email)
    if existing is not None:
        if existing.role != GlobalRole.SUPER_ADMIN:
            raise ValueError(f"{email} already exists with role {existing.role.value}")
        if existing.password_hash and not verify_password(password, existing.password_hash):
            log.warning(f"SuperAdmin {email} already exists with a different password; it was left unchanged")
        log.info(f"SuperAdmin {email} already exists, skipping")
        return existing

    user = await store.create_principal(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=GlobalRole.SUPER_ADMIN,
        is_verified=True,
    )
    await store.commit()
    log.info(f"Created superAdmin {user.email} ({user.id})")
    return user


async def main():
    """Main function to seed the superAdmin account."""
    if not config.SUPER_ADMIN_EMAIL or not config.SUPER_ADMIN_PASSWORD:
        log.error("SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD must be set")
        raise SystemExit(1)

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            await seed_super_admin(
                RecordStore(db),
                config.SUPER_ADMIN_EMAIL,
                config.SUPER_ADMIN_PASSWORD,
                config.SUPER_ADMIN_NAME,
            )
        except Exception as e:
            log.error(f"Error seeding superAdmin: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
