from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer, Text, event
from sqlalchemy.sql import func

from core.exceptions import ImmutabilityViolationError
from core.logging_config import get_logger

from ..database import Base, utcnow

logger = get_logger("db.transfer")


class Transfer(Base):
    """One movement of an item between two owners. Never updated or deleted."""
    __tablename__ = "transfers"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        CheckConstraint("from_owner_id <> to_owner_id", name="ck_transfers_distinct_owners"),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    from_owner_id = Column(Integer, ForeignKey("owners.id"), nullable=False, index=True)
    to_owner_id = Column(Integer, ForeignKey("owners.id"), nullable=False, index=True)
    quantity = Column(BigInteger, nullable=False)
    notes = Column(Text, nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)
    # Same column type as users.id
    transferred_by = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "from_owner_id": self.from_owner_id,
            "to_owner_id": self.to_owner_id,
            "quantity": int(self.quantity),
            "notes": self.notes,
            "transferred_at": self.transferred_at,
            "transferred_by": self.transferred_by,
        }


def _reject(operation: str, target: Transfer):
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": "Transfer", "entity_id": target.id, "operation": operation},
    )
    raise ImmutabilityViolationError(
        entity_type="Transfer",
        entity_id=target.id,
        reason="transfers are append-only",
    )


@event.listens_for(Transfer, "before_update")
def _block_transfer_update(mapper, connection, target):
    _reject("UPDATE", target)


@event.listens_for(Transfer, "before_delete")
def _block_transfer_delete(mapper, connection, target):
    _reject("DELETE", target)
