"""
SQLAlchemy model for the static item catalog.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from rpg_persistence.src.core.database import utc_now
from .base import Base


class Item(Base):
    """
    Static definition of an item.

    Seeded from core/items.py on first boot; read-only afterwards.
    """

    __tablename__ = "rpg_items"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # ItemCategory value
    tier = Column(String, nullable=True)  # bronze, steel, mithril
    stackable = Column(Boolean, default=False, nullable=False)

    # Requirements
    attack_level = Column(Integer, nullable=True)
    strength_level = Column(Integer, nullable=True)
    defense_level = Column(Integer, nullable=True)
    ranged_level = Column(Integer, nullable=True)

    # Combat bonuses
    attack_bonus = Column(Integer, default=0, nullable=False)
    strength_bonus = Column(Integer, default=0, nullable=False)
    defense_bonus = Column(Integer, default=0, nullable=False)
    ranged_bonus = Column(Integer, default=0, nullable=False)

    heals = Column(Integer, nullable=True)  # For food items
    item_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self):
        return f"<Item(id={self.id}, name='{self.name}')>"

    __table_args__ = {"extend_existing": True}
