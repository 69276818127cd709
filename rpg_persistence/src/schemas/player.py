"""
Pydantic models (schemas) for player records.

PlayerRecord is what the store hands out; PlayerUpdate is the partial write
accepted by save_player. Every field of PlayerUpdate is optional so callers
only send what changed.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Position(BaseModel):
    """World position."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


class SkillProgress(BaseModel):
    """Level and total experience for one skill."""

    model_config = ConfigDict(from_attributes=True)

    level: int = Field(1, ge=1, description="Current skill level")
    xp: int = Field(0, ge=0, description="Total experience points")


class HealthUpdate(BaseModel):
    """Partial health write. Either side may be omitted."""

    current: Optional[int] = Field(None, ge=0)
    max: Optional[int] = Field(None, ge=1)


class PlayerRecord(BaseModel):
    """
    A persisted player as read from the store.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    name: str
    skills: Dict[str, SkillProgress]
    current_hitpoints: int
    max_hitpoints: int
    position: Position
    alive: bool
    created_at: datetime
    updated_at: datetime


class PlayerUpdate(BaseModel):
    """
    Field-level merge for save_player.

    ``skills`` may carry any subset of skill names.
    """

    name: Optional[str] = Field(None, min_length=1)
    skills: Optional[Dict[str, SkillProgress]] = None
    health: Optional[HealthUpdate] = None
    position: Optional[Position] = None
    alive: Optional[bool] = None

    @model_validator(mode="after")
    def validate_health(self) -> "PlayerUpdate":
        health = self.health
        if (
            health is not None
            and health.current is not None
            and health.max is not None
            and health.current > health.max
        ):
            raise ValueError("current hitpoints cannot exceed max hitpoints")
        return self
