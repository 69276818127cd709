"""
SQLAlchemy models for world chunks and the chunk activity log.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)

from rpg_persistence.src.core.database import utc_now
from .base import Base


class WorldChunk(Base):
    """
    Persisted state of one world tile.

    The height map and the resource/mob/modification blobs are serialized by
    the terrain layer and stored untouched.
    """

    __tablename__ = "rpg_world_chunks"

    chunk_x = Column(Integer, primary_key=True, autoincrement=False)
    chunk_z = Column(Integer, primary_key=True, autoincrement=False)
    biome = Column(String, nullable=False)
    height_data = Column(Text, nullable=False)
    resource_states = Column(Text, nullable=True)
    mob_spawn_states = Column(Text, nullable=True)
    player_modifications = Column(Text, nullable=True)
    chunk_seed = Column(Integer, nullable=True)
    last_active_time = Column(DateTime(timezone=True), nullable=True)
    player_count = Column(Integer, default=0, nullable=False)
    needs_reset = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("player_count >= 0", name="ck_rpg_world_chunks_player_count"),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<WorldChunk(x={self.chunk_x}, z={self.chunk_z}, players={self.player_count})>"


class ChunkActivity(Base):
    """
    Append-only log of players entering and leaving chunks.

    Open rows (``left_at`` NULL) are the live occupants of a chunk.
    """

    __tablename__ = "rpg_chunk_activity"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chunk_x = Column(Integer, nullable=False)
    chunk_z = Column(Integer, nullable=False)
    player_id = Column(String, nullable=False, index=True)  # player external id
    entered_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    left_at = Column(DateTime(timezone=True), nullable=True)
    session_duration = Column(Integer, default=0, nullable=False)  # seconds

    __table_args__ = (
        Index("ix_rpg_chunk_activity_chunk", "chunk_x", "chunk_z"),
        Index("ix_rpg_chunk_activity_open", "chunk_x", "chunk_z", "left_at"),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<ChunkActivity(id={self.id}, chunk=({self.chunk_x}, {self.chunk_z}), player='{self.player_id}')>"
