from fastapi_users.db import SQLAlchemyBaseUserTableUUID, SQLAlchemyUserDatabase
from sqlalchemy import CheckConstraint, Column, DateTime, Index, String, Text, select, text
from sqlalchemy.sql import func

from .database import Base, utcnow

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_USER)

_ROLE_LEVELS = {ROLE_ADMIN: 3, ROLE_MANAGER: 2, ROLE_USER: 1}


def role_at_least(role: str, minimum: str) -> bool:
    """True when ``role`` meets or exceeds ``minimum``; unknown roles never pass."""
    level = _ROLE_LEVELS.get(role)
    required = _ROLE_LEVELS.get(minimum)
    if level is None or required is None:
        return False
    return level >= required


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"
    __table_args__ = (
        # Usernames are unique among active users only, so a deleted name can be reissued
        Index(
            "ux_users_username_active",
            "username",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        CheckConstraint("role IN ('admin', 'manager', 'user')", name="ck_users_role"),
    )

    username = Column(String(150), nullable=False)
    role = Column(Text, nullable=False, default=ROLE_USER, server_default=ROLE_USER)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class UserDatabase(SQLAlchemyUserDatabase):
    """fastapi-users adapter that can also look users up by username."""

    async def get_by_username(self, username: str):
        statement = select(self.user_table).where(
            self.user_table.username == username,
            self.user_table.deleted_at.is_(None),
        )
        result = await self.session.execute(statement)
        return result.unique().scalar_one_or_none()
