from sqlalchemy import Column, Text

from .database import Base


class Setting(Base):
    """Key/value pairs owned by the application (e.g. the generated JWT secret)."""
    __tablename__ = "settings"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
