from typing import Optional

from pydantic import BaseModel, field_validator


class TransferCreate(BaseModel):
    # Quantity and owner checks belong to the transfer engine so they map to typed errors
    item_id: int
    from_owner_id: int
    to_owner_id: int
    quantity: int
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None
