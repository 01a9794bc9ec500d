from typing import Optional

from pydantic import BaseModel, field_validator


class AddStockRequest(BaseModel):
    item_id: int
    owner_id: int
    quantity: int


class AdjustStockRequest(BaseModel):
    item_id: int
    owner_id: int
    delta: int
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None
