from sqlalchemy import CheckConstraint, Column, DateTime, Integer, LargeBinary, String, Text
from sqlalchemy.orm import deferred
from sqlalchemy.sql import func

from .database import Base, utcnow

ITEM_STATUS_ACTIVE = "active"
ITEM_STATUSES = (ITEM_STATUS_ACTIVE, "damaged", "lost", "removed")


class Item(Base):
    """An item type tracked by quantity; units of one item are interchangeable.

    ``status`` is informational only and never blocks a movement.
    """
    __tablename__ = "items"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'damaged', 'lost', 'removed')", name="ck_items_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # Never loaded with the row; read through crud.items.get_item_image
    image = deferred(Column(LargeBinary, nullable=True))
    image_mime = Column(String(255), nullable=True)
    status = Column(Text, nullable=False, default=ITEM_STATUS_ACTIVE, server_default=ITEM_STATUS_ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_mime": self.image_mime,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }
