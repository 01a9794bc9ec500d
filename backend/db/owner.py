from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base, utcnow

OWNER_TYPE_PERSON = "person"
OWNER_TYPE_LOCATION = "location"
OWNER_TYPES = (OWNER_TYPE_PERSON, OWNER_TYPE_LOCATION)


class Owner(Base):
    """A person or a location that can hold inventory."""
    __tablename__ = "owners"
    __table_args__ = (
        CheckConstraint("type IN ('person', 'location')", name="ck_owners_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(Text, nullable=False, index=True)  # 'person' | 'location'
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_location(self) -> bool:
        return self.type == OWNER_TYPE_LOCATION

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "created_at": self.created_at,
            "deleted_at": self.deleted_at,
        }
