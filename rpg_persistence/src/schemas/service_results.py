"""
Structured results returned by the coordinator's jobs and admin operations.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class SaveSweepResult:
    """Outcome of one periodic save pass."""

    sessions_saved: int = 0
    chunks_saved: int = 0
    failures: int = 0
    duration_seconds: float = 0.0

    @property
    def items_saved(self) -> int:
        return self.sessions_saved + self.chunks_saved

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["items_saved"] = self.items_saved
        return data


@dataclass
class ChunkCleanupResult:
    """Chunks marked on this pass and chunks reset because they were marked on an earlier one."""

    chunks_marked: int = 0
    chunks_reset: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionCleanupResult:
    sessions_ended: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MaintenanceResult:
    sessions_purged: int = 0
    activity_purged: int = 0
    database_stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CoordinatorStats:
    """Running totals kept by the coordinator since start."""

    total_saves: int = 0
    last_save_time: Optional[datetime] = None
    last_save_duration: float = 0.0
    chunks_reset: int = 0
    sessions_ended: int = 0
    last_maintenance_time: Optional[datetime] = None
    last_maintenance_result: Optional[MaintenanceResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_saves": self.total_saves,
            "last_save_time": self.last_save_time.isoformat() if self.last_save_time else None,
            "last_save_duration": self.last_save_duration,
            "chunks_reset": self.chunks_reset,
            "sessions_ended": self.sessions_ended,
            "last_maintenance_time": (
                self.last_maintenance_time.isoformat() if self.last_maintenance_time else None
            ),
            "last_maintenance_result": (
                self.last_maintenance_result.to_dict()
                if self.last_maintenance_result
                else None
            ),
        }
