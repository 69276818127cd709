"""
SQLAlchemy models for players, their inventory slots and equipment slots.
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from rpg_persistence.src.core.database import utc_now
from .base import Base


class Player(Base):
    """
    One row per persistent player identity.

    ``external_id`` is the identity the network layer knows the player by;
    ``id`` is internal and only used for foreign keys.
    """

    __tablename__ = "rpg_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)

    # Skills: one (level, xp) pair each
    attack_level = Column(Integer, default=1, nullable=False)
    attack_xp = Column(BigInteger, default=0, nullable=False)
    strength_level = Column(Integer, default=1, nullable=False)
    strength_xp = Column(BigInteger, default=0, nullable=False)
    defense_level = Column(Integer, default=1, nullable=False)
    defense_xp = Column(BigInteger, default=0, nullable=False)
    ranged_level = Column(Integer, default=1, nullable=False)
    ranged_xp = Column(BigInteger, default=0, nullable=False)
    woodcutting_level = Column(Integer, default=1, nullable=False)
    woodcutting_xp = Column(BigInteger, default=0, nullable=False)
    fishing_level = Column(Integer, default=1, nullable=False)
    fishing_xp = Column(BigInteger, default=0, nullable=False)
    firemaking_level = Column(Integer, default=1, nullable=False)
    firemaking_xp = Column(BigInteger, default=0, nullable=False)
    cooking_level = Column(Integer, default=1, nullable=False)
    cooking_xp = Column(BigInteger, default=0, nullable=False)
    constitution_level = Column(Integer, default=10, nullable=False)
    constitution_xp = Column(BigInteger, default=1154, nullable=False)

    # Health
    current_hitpoints = Column(Integer, default=100, nullable=False)
    max_hitpoints = Column(Integer, default=100, nullable=False)

    # Position
    position_x = Column(Float, default=0.0, nullable=False)
    position_y = Column(Float, default=0.0, nullable=False)
    position_z = Column(Float, default=0.0, nullable=False)

    alive = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    inventory = relationship(
        "PlayerInventory", back_populates="player", cascade="all, delete-orphan"
    )
    equipment = relationship(
        "PlayerEquipment", back_populates="player", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Player(id={self.id}, external_id='{self.external_id}')>"

    __table_args__ = (
        CheckConstraint("current_hitpoints <= max_hitpoints", name="ck_rpg_players_hp"),
        {"extend_existing": True},
    )


class PlayerInventory(Base):
    """
    Player's inventory slots.

    The whole set of rows for a player is replaced on every save.
    """

    __tablename__ = "rpg_inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(
        Integer, ForeignKey("rpg_players.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slot_index = Column(Integer, nullable=False)  # 0-27 for 28-slot inventory
    item_id = Column(Integer, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    item_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    player = relationship("Player", back_populates="inventory")

    __table_args__ = (
        UniqueConstraint("player_id", "slot_index", name="uq_rpg_inventory_player_slot"),
        CheckConstraint("quantity > 0", name="ck_rpg_inventory_quantity"),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<PlayerInventory(player_id={self.player_id}, slot={self.slot_index}, item_id={self.item_id})>"


class PlayerEquipment(Base):
    """
    Player's equipped items, at most one per named slot.
    """

    __tablename__ = "rpg_equipment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(
        Integer, ForeignKey("rpg_players.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slot_name = Column(String, nullable=False)  # EquipmentSlot value
    item_id = Column(Integer, nullable=True)
    quantity = Column(Integer, default=1, nullable=False)
    item_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    player = relationship("Player", back_populates="equipment")

    __table_args__ = (
        UniqueConstraint("player_id", "slot_name", name="uq_rpg_equipment_player_slot"),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<PlayerEquipment(player_id={self.player_id}, slot='{self.slot_name}', item_id={self.item_id})>"
