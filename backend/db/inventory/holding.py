from sqlalchemy import BigInteger, CheckConstraint, Column, ForeignKey, Integer

from ..database import Base


class Holding(Base):
    __tablename__ = "inventory"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_inventory_quantity_positive"),
    )

    item_id = Column(Integer, ForeignKey("items.id"), primary_key=True)
    owner_id = Column(Integer, ForeignKey("owners.id"), primary_key=True, index=True)

    # Deleted when it would reach zero, never stored as 0
    quantity = Column(BigInteger, nullable=False)
