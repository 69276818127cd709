import os
import yaml
from pathlib import Path
from typing import Dict, Any
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_persistence_config() -> Dict[str, Any]:
    """Load persistence tuning from config.yml"""
    config_path = Path(os.getenv("RPG_CONFIG_PATH", "/app/rpg_persistence/config.yml"))
    if not config_path.exists():
        # Fallback to the copy shipped next to the package
        config_path = Path(__file__).resolve().parents[2] / "config.yml"

    if config_path.exists():
        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}
    return {}


# Load persistence config from YAML
persistence_config = load_persistence_config()

_players = persistence_config.get("players", {})
_coordinator = persistence_config.get("coordinator", {})
_retention = persistence_config.get("retention", {})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database settings
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", "postgresql+asyncpg://rpg:rpgpassword@db:5432/rpg"
    )
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "").lower() in ("true", "1", "yes")

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Player lifecycle settings from config.yml with fallbacks
    AUTO_SAVE_INTERVAL: float = float(
        os.getenv("AUTO_SAVE_INTERVAL", str(_players.get("auto_save_interval", 30.0)))
    )
    RESPAWN_DELAY: float = float(
        os.getenv("RESPAWN_DELAY", str(_players.get("respawn_delay", 30.0)))
    )
    INVENTORY_CAPACITY: int = int(
        os.getenv("INVENTORY_CAPACITY", str(_players.get("inventory_capacity", 28)))
    )
    SKILL_MAX_LEVEL: int = int(
        os.getenv("SKILL_MAX_LEVEL", str(_players.get("skill_max_level", 99)))
    )

    # Coordinator job intervals (seconds)
    PERIODIC_SAVE_INTERVAL: float = float(
        os.getenv(
            "PERIODIC_SAVE_INTERVAL", str(_coordinator.get("periodic_save_interval", 30.0))
        )
    )
    CHUNK_CLEANUP_INTERVAL: float = float(
        os.getenv(
            "CHUNK_CLEANUP_INTERVAL", str(_coordinator.get("chunk_cleanup_interval", 300.0))
        )
    )
    SESSION_CLEANUP_INTERVAL: float = float(
        os.getenv(
            "SESSION_CLEANUP_INTERVAL",
            str(_coordinator.get("session_cleanup_interval", 600.0)),
        )
    )
    MAINTENANCE_INTERVAL: float = float(
        os.getenv(
            "MAINTENANCE_INTERVAL", str(_coordinator.get("maintenance_interval", 3600.0))
        )
    )

    # Cleanup thresholds
    CHUNK_INACTIVE_MINUTES: float = float(
        os.getenv(
            "CHUNK_INACTIVE_MINUTES", str(_coordinator.get("chunk_inactive_minutes", 15))
        )
    )
    SESSION_STALE_SECONDS: float = float(
        os.getenv(
            "SESSION_STALE_SECONDS", str(_coordinator.get("session_stale_seconds", 300))
        )
    )
    SESSION_RETENTION_DAYS: int = int(
        os.getenv("SESSION_RETENTION_DAYS", str(_retention.get("sessions_days", 7)))
    )
    ACTIVITY_RETENTION_DAYS: int = int(
        os.getenv("ACTIVITY_RETENTION_DAYS", str(_retention.get("activity_days", 30)))
    )

    @model_validator(mode="after")
    def validate_intervals(self) -> "Settings":
        """Reject non-positive timer intervals, which would spin the event loop."""
        intervals = {
            "AUTO_SAVE_INTERVAL": self.AUTO_SAVE_INTERVAL,
            "PERIODIC_SAVE_INTERVAL": self.PERIODIC_SAVE_INTERVAL,
            "CHUNK_CLEANUP_INTERVAL": self.CHUNK_CLEANUP_INTERVAL,
            "SESSION_CLEANUP_INTERVAL": self.SESSION_CLEANUP_INTERVAL,
            "MAINTENANCE_INTERVAL": self.MAINTENANCE_INTERVAL,
        }
        for name, value in intervals.items():
            if value <= 0:
                raise ValueError(f"{name} must be greater than zero, got {value}")
        if self.INVENTORY_CAPACITY < 1:
            raise ValueError("INVENTORY_CAPACITY must be at least 1")
        return self


settings = Settings()
