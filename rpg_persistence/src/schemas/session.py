"""
Pydantic models for player sessions.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionCreate(BaseModel):
    """
    Schema for opening a session.

    ``session_id`` is generated by the store when omitted.
    """

    player_id: str = Field(..., min_length=1)
    player_token: str = "unknown"
    session_id: Optional[str] = None
    auto_save_interval: int = Field(30, gt=0)


class SessionUpdate(BaseModel):
    """Timestamps a live session may refresh."""

    last_activity: Optional[datetime] = None
    last_save_time: Optional[datetime] = None


class SessionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    player_id: str
    player_token: str
    start_time: datetime
    end_time: Optional[datetime] = None
    last_activity: datetime
    last_save_time: datetime
    auto_save_interval: int
    is_active: bool
    disconnect_reason: Optional[str] = None
