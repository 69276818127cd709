"""
Background persistence coordination.

Runs four recurring jobs against the store (periodic save, chunk cleanup,
stale-session cleanup, maintenance) and keeps session and chunk-activity
bookkeeping in step with world events. It holds no player state of its own:
the store is the only record of which sessions and chunks are active.
"""

import time
import traceback
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from rpg_persistence.src.core.config import settings
from rpg_persistence.src.core.database import utc_now
from rpg_persistence.src.core.events import Event, EventBus, EventType
from rpg_persistence.src.core.exceptions import ChunkOccupiedError, SessionClosedError
from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.core.metrics import (
    chunks_marked_total,
    chunks_reset_total,
    metrics,
    sessions_opened_total,
)
from rpg_persistence.src.core.scheduler import RecurringJob
from rpg_persistence.src.schemas.service_results import (
    ChunkCleanupResult,
    CoordinatorStats,
    MaintenanceResult,
    SaveSweepResult,
    SessionCleanupResult,
)
from rpg_persistence.src.schemas.session import SessionCreate, SessionUpdate
from rpg_persistence.src.services.persistence_store import PersistenceStore
from rpg_persistence.src.services.world_providers import ActiveChunkProvider

logger = get_logger(__name__)

T = TypeVar("T")


class PersistenceCoordinator:
    """Supervises when state is saved, reset and purged."""

    def __init__(
        self,
        store: PersistenceStore,
        event_bus: EventBus,
        terrain: Optional[ActiveChunkProvider] = None,
        clock: Callable[[], datetime] = utc_now,
        periodic_save_interval: Optional[float] = None,
        chunk_cleanup_interval: Optional[float] = None,
        session_cleanup_interval: Optional[float] = None,
        maintenance_interval: Optional[float] = None,
        chunk_inactive_minutes: Optional[float] = None,
        session_stale_seconds: Optional[float] = None,
        session_retention_days: Optional[float] = None,
        activity_retention_days: Optional[float] = None,
    ):
        self._store = store
        self._bus = event_bus
        self._terrain = terrain
        self._clock = clock

        self.chunk_inactive_minutes = _or_default(
            chunk_inactive_minutes, settings.CHUNK_INACTIVE_MINUTES
        )
        self.session_stale_seconds = _or_default(
            session_stale_seconds, settings.SESSION_STALE_SECONDS
        )
        self.session_retention_days = _or_default(
            session_retention_days, settings.SESSION_RETENTION_DAYS
        )
        self.activity_retention_days = _or_default(
            activity_retention_days, settings.ACTIVITY_RETENTION_DAYS
        )

        self._jobs: Dict[str, RecurringJob] = {
            job.name: job
            for job in (
                RecurringJob(
                    "periodic_save",
                    _or_default(periodic_save_interval, settings.PERIODIC_SAVE_INTERVAL),
                    self.force_save,
                ),
                RecurringJob(
                    "chunk_cleanup",
                    _or_default(chunk_cleanup_interval, settings.CHUNK_CLEANUP_INTERVAL),
                    self.force_chunk_cleanup,
                ),
                RecurringJob(
                    "session_cleanup",
                    _or_default(session_cleanup_interval, settings.SESSION_CLEANUP_INTERVAL),
                    self.force_session_cleanup,
                ),
                RecurringJob(
                    "maintenance",
                    _or_default(maintenance_interval, settings.MAINTENANCE_INTERVAL),
                    self.force_maintenance,
                ),
            )
        }
        self._stats = CoordinatorStats()
        self._subscribed = False

        if terrain is None:
            logger.warning("No terrain provider - chunk persistence will be limited")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _subscriptions(self) -> List[Tuple[EventType, Callable[[Event], Awaitable[None]]]]:
        return [
            (EventType.PLAYER_ENTERED, self._on_player_entered),
            (EventType.PLAYER_LEFT, self._on_player_left),
            (EventType.CHUNK_LOADED, self._on_chunk_loaded),
            (EventType.CHUNK_UNLOADED, self._on_chunk_unloaded),
            (EventType.CHUNK_PLAYER_ENTERED, self._on_chunk_player_entered),
            (EventType.CHUNK_PLAYER_LEFT, self._on_chunk_player_left),
        ]

    @property
    def jobs(self) -> Dict[str, RecurringJob]:
        return dict(self._jobs)

    def start(self) -> None:
        """Subscribe to world events and (re)start every job."""
        if not self._subscribed:
            for event_type, handler in self._subscriptions():
                self._bus.subscribe(event_type, handler)
            self._subscribed = True

        for job in self._jobs.values():
            job.start()
        logger.info("Persistence coordinator started", extra={"jobs": list(self._jobs)})

    async def stop(self) -> None:
        if self._subscribed:
            for event_type, handler in self._subscriptions():
                self._bus.unsubscribe(event_type, handler)
            self._subscribed = False

        for job in self._jobs.values():
            await job.stop()
        logger.info("Persistence coordinator stopped")

    async def _run_job(self, name: str, action: Callable[[], Awaitable[T]]) -> T:
        start_time = time.perf_counter()
        try:
            result = await action()
        except Exception as e:
            metrics.track_job_run(name, "failure", time.perf_counter() - start_time)
            metrics.track_error("coordinator", type(e).__name__)
            logger.error(
                "Coordinator job failed",
                extra={"job": name, "error": str(e), "traceback": traceback.format_exc()},
            )
            raise

        metrics.track_job_run(name, "success", time.perf_counter() - start_time)
        return result

    # =========================================================================
    # JOBS
    # =========================================================================

    async def force_save(self) -> SaveSweepResult:
        """Refresh every active session and persist every chunk the terrain reports active."""
        return await self._run_job("periodic_save", self._perform_periodic_save)

    async def _perform_periodic_save(self) -> SaveSweepResult:
        start_time = time.perf_counter()
        now = self._clock()
        result = SaveSweepResult()

        for session in await self._store.get_active_sessions():
            try:
                updated = await self._store.update_session(
                    session.session_id, SessionUpdate(last_activity=now, last_save_time=now)
                )
            except SessionClosedError:
                # Closed since the active list was read
                continue
            except Exception as e:
                result.failures += 1
                logger.error(
                    "Failed to refresh session",
                    extra={
                        "session_id": session.session_id,
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )
                continue
            if updated:
                result.sessions_saved += 1

        for chunk in self._active_chunks():
            try:
                await self._store.save_chunk(chunk)
                result.chunks_saved += 1
            except Exception as e:
                result.failures += 1
                logger.error(
                    "Failed to save chunk",
                    extra={
                        "chunk_x": chunk.chunk_x,
                        "chunk_z": chunk.chunk_z,
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )

        result.duration_seconds = time.perf_counter() - start_time
        self._stats.total_saves += result.items_saved
        self._stats.last_save_time = now
        self._stats.last_save_duration = result.duration_seconds
        metrics.track_items_saved("sessions", result.sessions_saved)
        metrics.track_items_saved("chunks", result.chunks_saved)

        if result.items_saved > 0 or result.failures > 0:
            logger.info("Periodic save completed", extra=result.to_dict())
        return result

    def _active_chunks(self):
        if self._terrain is None:
            return []
        try:
            return list(self._terrain.get_active_chunks())
        except Exception as e:
            logger.error(
                "Terrain provider failed to list active chunks",
                extra={"error": str(e), "traceback": traceback.format_exc()},
            )
            return []

    async def force_chunk_cleanup(self) -> ChunkCleanupResult:
        """
        Mark empty, inactive chunks for reset; reset the ones marked on an
        earlier pass that are still empty and inactive.
        """
        return await self._run_job("chunk_cleanup", self._perform_chunk_cleanup)

    async def _perform_chunk_cleanup(self) -> ChunkCleanupResult:
        result = ChunkCleanupResult()

        for chunk in await self._store.get_inactive_chunks(self.chunk_inactive_minutes):
            try:
                if chunk.needs_reset:
                    if await self._store.reset_chunk(chunk.chunk_x, chunk.chunk_z):
                        result.chunks_reset += 1
                        chunks_reset_total.inc()
                elif await self._store.mark_chunk_for_reset(chunk.chunk_x, chunk.chunk_z):
                    result.chunks_marked += 1
                    chunks_marked_total.inc()
            except ChunkOccupiedError as e:
                logger.info(
                    "Skipping occupied chunk",
                    extra={"chunk_x": e.chunk_x, "chunk_z": e.chunk_z, "occupants": e.occupants},
                )
            except Exception as e:
                result.failures += 1
                logger.error(
                    "Chunk cleanup failed for chunk",
                    extra={
                        "chunk_x": chunk.chunk_x,
                        "chunk_z": chunk.chunk_z,
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )

        self._stats.chunks_reset += result.chunks_reset
        if result.chunks_marked or result.chunks_reset:
            logger.info("Chunk cleanup completed", extra=result.to_dict())
        return result

    async def force_session_cleanup(self) -> SessionCleanupResult:
        """End sessions without activity for longer than the stale threshold."""
        return await self._run_job("session_cleanup", self._perform_session_cleanup)

    async def _perform_session_cleanup(self) -> SessionCleanupResult:
        result = SessionCleanupResult()
        cutoff = self._clock() - timedelta(seconds=self.session_stale_seconds)

        for session in await self._store.get_active_sessions():
            if session.last_activity >= cutoff:
                continue
            try:
                if await self._store.end_session(session.session_id, "timeout"):
                    result.sessions_ended += 1
                    metrics.track_session_ended("timeout")
                    logger.info(
                        "Ended stale session",
                        extra={"session_id": session.session_id, "player_id": session.player_id},
                    )
            except Exception as e:
                result.failures += 1
                logger.error(
                    "Failed to end stale session",
                    extra={
                        "session_id": session.session_id,
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )

        self._stats.sessions_ended += result.sessions_ended
        return result

    async def force_maintenance(self) -> MaintenanceResult:
        """Purge old closed sessions and old activity, then snapshot store diagnostics."""
        return await self._run_job("maintenance", self._perform_maintenance)

    async def _perform_maintenance(self) -> MaintenanceResult:
        logger.info("Starting maintenance")

        sessions_purged = await self._store.purge_sessions_older_than(self.session_retention_days)
        activity_purged = await self._store.purge_activity_older_than(self.activity_retention_days)
        database_stats = await self._store.get_stats()

        result = MaintenanceResult(
            sessions_purged=sessions_purged,
            activity_purged=activity_purged,
            database_stats=database_stats.model_dump(),
        )
        self._stats.last_maintenance_time = self._clock()
        self._stats.last_maintenance_result = result

        logger.info("Maintenance completed", extra=result.to_dict())
        return result

    def get_stats(self) -> CoordinatorStats:
        stats = self._stats
        return CoordinatorStats(
            total_saves=stats.total_saves,
            last_save_time=stats.last_save_time,
            last_save_duration=stats.last_save_duration,
            chunks_reset=stats.chunks_reset,
            sessions_ended=stats.sessions_ended,
            last_maintenance_time=stats.last_maintenance_time,
            last_maintenance_result=stats.last_maintenance_result,
        )

    # =========================================================================
    # SESSION BRIDGING
    # =========================================================================

    async def open_session(self, player_id: str, player_token: Optional[str] = None) -> str:
        """Close any session the player still has open, then start a new one."""
        for session in await self._store.get_active_sessions_for_player(player_id):
            if await self._store.end_session(session.session_id, "superseded"):
                self._stats.sessions_ended += 1
                metrics.track_session_ended("superseded")

        session_id = await self._store.create_session(
            SessionCreate(
                player_id=player_id,
                player_token=player_token or "unknown",
                auto_save_interval=int(settings.AUTO_SAVE_INTERVAL),
            )
        )
        sessions_opened_total.inc()
        logger.info("Created session", extra={"player_id": player_id, "session_id": session_id})
        return session_id

    async def close_sessions(
        self, player_id: str, reason: str = "disconnect", session_id: Optional[str] = None
    ) -> int:
        """End the given session, or every open session of the player. Returns how many closed."""
        if session_id is not None:
            session_ids = [session_id]
        else:
            session_ids = [
                s.session_id for s in await self._store.get_active_sessions_for_player(player_id)
            ]

        closed = 0
        for sid in session_ids:
            if await self._store.end_session(sid, reason):
                closed += 1
                metrics.track_session_ended(reason)

        self._stats.sessions_ended += closed
        if closed:
            logger.info(
                "Ended player sessions",
                extra={"player_id": player_id, "sessions": closed, "reason": reason},
            )
        return closed

    async def _handle(self, description: str, context: Dict[str, Any], action: Callable[[], Awaitable[Any]]) -> None:
        try:
            await action()
        except Exception as e:
            metrics.track_error("coordinator", type(e).__name__)
            logger.error(
                f"Failed to {description}",
                extra={**context, "error": str(e), "traceback": traceback.format_exc()},
            )

    async def _on_player_entered(self, event: Event) -> None:
        player_id = event.data["player_id"]
        token = event.data.get("player_token")
        await self._handle(
            "create session",
            {"player_id": player_id},
            lambda: self.open_session(player_id, token),
        )

    async def _on_player_left(self, event: Event) -> None:
        player_id = event.data["player_id"]
        reason = event.data.get("reason") or "disconnect"
        session_id = event.data.get("session_id")
        await self._handle(
            "end session",
            {"player_id": player_id, "reason": reason},
            lambda: self.close_sessions(player_id, reason, session_id),
        )
        await self._handle(
            "close chunk activity",
            {"player_id": player_id},
            lambda: self._store.close_player_chunk_activity(player_id),
        )

    async def _on_chunk_loaded(self, event: Event) -> None:
        chunk_x, chunk_z = event.data["chunk_x"], event.data["chunk_z"]
        await self._handle(
            "refresh chunk occupancy",
            {"chunk_x": chunk_x, "chunk_z": chunk_z},
            lambda: self._store.refresh_chunk_occupancy(chunk_x, chunk_z),
        )
        logger.debug("Chunk loaded", extra={"chunk_x": chunk_x, "chunk_z": chunk_z})

    async def _on_chunk_unloaded(self, event: Event) -> None:
        chunk_x, chunk_z = event.data["chunk_x"], event.data["chunk_z"]
        await self._handle(
            "refresh chunk occupancy",
            {"chunk_x": chunk_x, "chunk_z": chunk_z},
            lambda: self._store.refresh_chunk_occupancy(chunk_x, chunk_z),
        )
        logger.debug("Chunk unloaded", extra={"chunk_x": chunk_x, "chunk_z": chunk_z})

    async def _on_chunk_player_entered(self, event: Event) -> None:
        player_id = event.data["player_id"]
        chunk_x, chunk_z = event.data["chunk_x"], event.data["chunk_z"]
        await self._handle(
            "record chunk entry",
            {"player_id": player_id, "chunk_x": chunk_x, "chunk_z": chunk_z},
            lambda: self._store.record_chunk_entry(chunk_x, chunk_z, player_id),
        )

    async def _on_chunk_player_left(self, event: Event) -> None:
        activity_id = event.data.get("activity_id")
        if activity_id is not None:
            await self._handle(
                "record chunk exit",
                {"activity_id": activity_id},
                lambda: self._store.record_chunk_exit(activity_id),
            )
            return

        player_id = event.data["player_id"]
        chunk_x, chunk_z = event.data["chunk_x"], event.data["chunk_z"]
        await self._handle(
            "record chunk exit",
            {"player_id": player_id, "chunk_x": chunk_x, "chunk_z": chunk_z},
            lambda: self._store.close_player_chunk_activity(player_id, chunk_x, chunk_z),
        )


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else value
