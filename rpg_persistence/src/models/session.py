"""
SQLAlchemy models for player sessions and the migration ledger.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from rpg_persistence.src.core.database import utc_now
from .base import Base


class PlayerSession(Base):
    """
    One connected-player lifetime.

    ``player_id`` holds the external id and is deliberately not a foreign key:
    a session is opened as soon as the player connects, which can happen
    before the lifecycle manager has created the player row.
    """

    __tablename__ = "rpg_player_sessions"

    session_id = Column(String, primary_key=True)
    player_id = Column(String, nullable=False, index=True)
    player_token = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    last_activity = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    last_save_time = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    auto_save_interval = Column(Integer, default=30, nullable=False)  # seconds
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    disconnect_reason = Column(String, nullable=True)

    __table_args__ = (
        Index("ix_rpg_player_sessions_player_active", "player_id", "is_active"),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<PlayerSession(session_id='{self.session_id}', player_id='{self.player_id}', active={self.is_active})>"


class MigrationRecord(Base):
    """Ledger of applied schema migrations."""

    __tablename__ = "rpg_migrations"

    name = Column(String, primary_key=True)
    executed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = {"extend_existing": True}
