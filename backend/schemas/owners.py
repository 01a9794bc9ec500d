from typing import Literal

from pydantic import BaseModel, field_validator

OwnerType = Literal["person", "location"]


class OwnerCreate(BaseModel):
    name: str
    type: OwnerType

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name is required")
        return v


class OwnerUpdate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name is required")
        return v
