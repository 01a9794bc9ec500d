# Pydantic schemas for user-related requests/responses
# fastapi-users provides the base schemas; username and role are added here

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, field_validator

Role = Literal["admin", "manager", "user"]


def _clean_username(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("username is required")
    if len(v) > 150:
        raise ValueError("username must be at most 150 characters")
    return v


class UserRead(schemas.BaseUser[UUID]):
    username: str
    role: Role
    created_at: Optional[datetime] = None


class UserCreate(schemas.BaseUserCreate):
    username: str
    role: Role = "user"

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        return _clean_username(v)


class UserUpdate(schemas.BaseUserUpdate):
    pass


class RoleUpdate(BaseModel):
    role: Role


class PasswordChange(BaseModel):
    password: str


class OwnPasswordChange(PasswordChange):
    current_password: str
