"""
Wiring for the persistence engine's components.

One PersistenceEngine owns the store, the event bus, the lifecycle manager and
the coordinator, and starts and stops them in dependency order.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from rpg_persistence.src.core.database import utc_now
from rpg_persistence.src.core.events import EventBus
from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.services.persistence_coordinator import PersistenceCoordinator
from rpg_persistence.src.services.persistence_store import PersistenceStore
from rpg_persistence.src.services.player_lifecycle_manager import PlayerLifecycleManager
from rpg_persistence.src.services.world_providers import (
    ActiveChunkProvider,
    StarterTownProvider,
)

logger = get_logger(__name__)


class PersistenceEngine:
    """Container for the store, lifecycle manager and coordinator."""

    def __init__(
        self,
        store: Optional[PersistenceStore] = None,
        event_bus: Optional[EventBus] = None,
        starter_towns: Optional[StarterTownProvider] = None,
        terrain: Optional[ActiveChunkProvider] = None,
        clock: Callable[[], datetime] = utc_now,
        lifecycle_options: Optional[Dict[str, Any]] = None,
        coordinator_options: Optional[Dict[str, Any]] = None,
    ):
        self.event_bus = event_bus or EventBus()
        self.store = store or PersistenceStore(clock=clock)
        self.lifecycle = PlayerLifecycleManager(
            self.store,
            self.event_bus,
            starter_towns=starter_towns,
            **(lifecycle_options or {}),
        )
        self.coordinator = PersistenceCoordinator(
            self.store,
            self.event_bus,
            terrain=terrain,
            clock=clock,
            **(coordinator_options or {}),
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Initialize the store, then start the lifecycle manager and coordinator.

        Raises:
            MigrationError: The schema could not be brought up to date
        """
        if self._running:
            return
        await self.store.initialize()
        await self.lifecycle.start()
        self.coordinator.start()
        self._running = True
        logger.info("Persistence engine started")

    async def stop(self) -> None:
        """Stop in reverse order; connected players are saved before the store closes."""
        if not self._running:
            return
        self._running = False
        await self.coordinator.stop()
        await self.lifecycle.shutdown()
        await self.event_bus.drain()
        await self.store.close()
        logger.info("Persistence engine stopped")
