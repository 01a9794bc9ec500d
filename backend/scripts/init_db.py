import asyncio
import os
import secrets
import sys
from pathlib import Path

"""
Create the tables and, on first run, an admin account.

The generated admin password is printed once; change it after logging in.

This script can be run from either:
- backend/: `python scripts/init_db.py`
- repo root: `python backend/scripts/init_db.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fastapi_users.password import PasswordHelper

from core.logging_config import configure_logging, get_logger
from crud.users import count_users
from db.database import async_session_maker, create_db_and_tables
from db.users import ROLE_ADMIN, User

logger = get_logger("scripts.init_db")

password_helper = PasswordHelper()

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")


async def bootstrap_admin(session_maker=async_session_maker):
    """Create the first admin when the users table is empty. Returns the password, or None."""
    async with session_maker() as session:
        if await count_users(session) > 0:
            return None

        password = secrets.token_urlsafe(12)
        session.add(
            User(
                email=ADMIN_EMAIL,
                username=ADMIN_USERNAME,
                role=ROLE_ADMIN,
                hashed_password=password_helper.hash(password),
                is_active=True,
                is_superuser=True,
                is_verified=True,
            )
        )
        await session.commit()
    logger.info("admin_bootstrapped", extra={"username": ADMIN_USERNAME})
    return password


async def main():
    configure_logging()
    await create_db_and_tables()
    password = await bootstrap_admin()
    if password is None:
        print("Users already exist; nothing to do.")
        return
    print(f"Created admin user '{ADMIN_USERNAME}' with password: {password}")
    print("Change this password after the first login.")


if __name__ == "__main__":
    asyncio.run(main())
