"""
Prometheus metrics for the persistence engine.

Covers store operations, player saves, and the coordinator's recurring jobs.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from typing import Dict, Optional
import time
import functools
from rpg_persistence.src.core.config import settings
from rpg_persistence.src.core.logging_config import get_logger

logger = get_logger(__name__)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# =============================================================================
# APPLICATION INFO METRICS
# =============================================================================

app_info = Info(
    "rpg_persistence_info", "Persistence engine application information", registry=REGISTRY
)

# =============================================================================
# PLAYER METRICS
# =============================================================================

players_online = Gauge(
    "rpg_players_online", "Current number of players held in memory", registry=REGISTRY
)

player_saves_total = Counter(
    "rpg_player_saves_total",
    "Total number of player state saves",
    ["trigger", "status"],
    registry=REGISTRY,
)

player_deaths_total = Counter(
    "rpg_player_deaths_total", "Total number of player deaths", registry=REGISTRY
)

player_respawns_total = Counter(
    "rpg_player_respawns_total", "Total number of player respawns", registry=REGISTRY
)

# =============================================================================
# COORDINATOR METRICS
# =============================================================================

coordinator_job_runs_total = Counter(
    "rpg_coordinator_job_runs_total",
    "Total number of coordinator job runs",
    ["job", "status"],
    registry=REGISTRY,
)

coordinator_job_duration_seconds = Histogram(
    "rpg_coordinator_job_duration_seconds",
    "Coordinator job duration in seconds",
    ["job"],
    registry=REGISTRY,
)

coordinator_items_saved_total = Counter(
    "rpg_coordinator_items_saved_total",
    "Sessions and chunks written by the periodic save job",
    ["kind"],
    registry=REGISTRY,
)

chunks_marked_total = Counter(
    "rpg_chunks_marked_total", "Chunks marked for reset", registry=REGISTRY
)

chunks_reset_total = Counter(
    "rpg_chunks_reset_total", "Chunks hard-reset after inactivity", registry=REGISTRY
)

sessions_opened_total = Counter(
    "rpg_sessions_opened_total", "Player sessions opened", registry=REGISTRY
)

sessions_ended_total = Counter(
    "rpg_sessions_ended_total",
    "Player sessions closed",
    ["reason"],
    registry=REGISTRY,
)

# =============================================================================
# DATABASE METRICS
# =============================================================================

database_operations_total = Counter(
    "rpg_database_operations_total",
    "Total number of database operations",
    ["operation", "table"],
    registry=REGISTRY,
)

database_operation_duration_seconds = Histogram(
    "rpg_database_operation_duration_seconds",
    "Database operation duration in seconds",
    ["operation", "table"],
    registry=REGISTRY,
)

# =============================================================================
# ERROR METRICS
# =============================================================================

errors_total = Counter(
    "rpg_errors_total",
    "Total number of errors",
    ["component", "error_type"],
    registry=REGISTRY,
)

# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def init_metrics():
    """Initialize metrics with application information."""
    app_info.info(
        {
            "version": "0.1.0",
            "service": "rpg-persistence",
            "environment": settings.ENVIRONMENT,
        }
    )
    logger.info("Prometheus metrics initialized")


def get_metrics() -> bytes:
    """Get current metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


# =============================================================================
# DECORATORS FOR AUTOMATIC METRICS
# =============================================================================


def track_time(metric: Histogram, labels: Optional[Dict[str, str]] = None):
    """Decorator to track execution time of coroutine functions."""

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.perf_counter() - start_time
                if labels:
                    metric.labels(**labels).observe(duration)
                else:
                    metric.observe(duration)

        return async_wrapper

    return decorator


# =============================================================================
# HELPER FUNCTIONS FOR MANUAL METRICS
# =============================================================================


class MetricsHelper:
    """Helper class for manual metrics tracking."""

    @staticmethod
    def set_players_online(count: int):
        """Set the number of players held by the lifecycle manager."""
        players_online.set(count)

    @staticmethod
    def track_player_save(trigger: str, status: str):
        """Track a single player save by what triggered it."""
        player_saves_total.labels(trigger=trigger, status=status).inc()

    @staticmethod
    def track_job_run(job: str, status: str, duration: float):
        """Track a coordinator job run."""
        coordinator_job_runs_total.labels(job=job, status=status).inc()
        coordinator_job_duration_seconds.labels(job=job).observe(duration)

    @staticmethod
    def track_items_saved(kind: str, count: int):
        """Track sessions/chunks written by the periodic save."""
        if count:
            coordinator_items_saved_total.labels(kind=kind).inc(count)

    @staticmethod
    def track_session_ended(reason: str):
        """Track a closed session."""
        sessions_ended_total.labels(reason=reason).inc()

    @staticmethod
    def track_database_operation(operation: str, table: str, duration: float):
        """Track database operations."""
        database_operations_total.labels(operation=operation, table=table).inc()
        database_operation_duration_seconds.labels(
            operation=operation, table=table
        ).observe(duration)

    @staticmethod
    def track_error(component: str, error_type: str):
        """Track application errors."""
        errors_total.labels(component=component, error_type=error_type).inc()


# Global metrics helper instance
metrics = MetricsHelper()
