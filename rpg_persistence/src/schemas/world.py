"""
Pydantic models for world chunks, chunk activity and store diagnostics.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChunkRecord(BaseModel):
    """
    Persisted state of one world chunk.

    Blob fields are opaque serialized text owned by the terrain layer.
    """

    model_config = ConfigDict(from_attributes=True)

    chunk_x: int
    chunk_z: int
    biome: str
    height_data: str
    resource_states: Optional[str] = None
    mob_spawn_states: Optional[str] = None
    player_modifications: Optional[str] = None
    chunk_seed: Optional[int] = None
    last_active_time: Optional[datetime] = None
    player_count: int = Field(0, ge=0)
    needs_reset: bool = False


class ChunkActivityRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    chunk_x: int
    chunk_z: int
    player_id: str
    entered_at: datetime
    left_at: Optional[datetime] = None
    session_duration: int = 0


class DatabaseStats(BaseModel):
    """Row counts reported by the store."""

    player_count: int = 0
    active_session_count: int = 0
    chunk_count: int = 0
    active_chunk_count: int = 0
    activity_record_count: int = 0
