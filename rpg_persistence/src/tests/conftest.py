import random
from typing import Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from rpg_persistence.src.core.events import Event, EventBus, EventType
from rpg_persistence.src.schemas.player import PlayerUpdate
from rpg_persistence.src.services.persistence_coordinator import PersistenceCoordinator
from rpg_persistence.src.services.persistence_store import PersistenceStore
from rpg_persistence.src.services.player_lifecycle_manager import PlayerLifecycleManager
from rpg_persistence.src.tests.utils.time_mock import FrozenClock

# Use SQLite in memory; StaticPool keeps every session on the one connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Long enough that recurring jobs never fire during a test
IDLE_INTERVAL = 3600.0

EMITTED_EVENTS = (
    EventType.PLAYER_REGISTER,
    EventType.PLAYER_UNREGISTER,
    EventType.PLAYER_UPDATED,
    EventType.PLAYER_EQUIPMENT_CHANGED,
    EventType.INVENTORY_INITIALIZE,
    EventType.SKILLS_INITIALIZE,
    EventType.DEATH_CREATE_HEADSTONE,
    EventType.INVENTORY_DROP_ALL,
    EventType.PLAYER_DIED,
    EventType.PLAYER_RESPAWNED,
    EventType.PLAYER_TELEPORT,
    EventType.PLAYER_HEALED,
    EventType.CHAT_BROADCAST,
)


class EventRecorder:
    """Collects every event the engine emits."""

    def __init__(self, bus: EventBus):
        self.events: List[Event] = []
        for event_type in EMITTED_EVENTS:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: EventType) -> List[Dict[str, Any]]:
        return [event.data for event in self.events if event.type == event_type]

    def types(self) -> List[EventType]:
        return [event.type for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def store(engine: AsyncEngine, clock: FrozenClock) -> AsyncGenerator[PersistenceStore, None]:
    persistence_store = PersistenceStore(engine=engine, clock=clock)
    await persistence_store.initialize()
    yield persistence_store
    await persistence_store.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest_asyncio.fixture
async def lifecycle(
    store: PersistenceStore, event_bus: EventBus
) -> AsyncGenerator[PlayerLifecycleManager, None]:
    manager = PlayerLifecycleManager(
        store,
        event_bus,
        respawn_delay=0.05,
        auto_save_interval=IDLE_INTERVAL,
        rng=random.Random(7),
    )
    await manager.start()
    yield manager
    await manager.shutdown()


@pytest_asyncio.fixture
async def coordinator(
    store: PersistenceStore, event_bus: EventBus, clock: FrozenClock
) -> AsyncGenerator[PersistenceCoordinator, None]:
    persistence_coordinator = PersistenceCoordinator(
        store,
        event_bus,
        clock=clock,
        periodic_save_interval=IDLE_INTERVAL,
        chunk_cleanup_interval=IDLE_INTERVAL,
        session_cleanup_interval=IDLE_INTERVAL,
        maintenance_interval=IDLE_INTERVAL,
    )
    persistence_coordinator.start()
    yield persistence_coordinator
    await persistence_coordinator.stop()


@pytest.fixture
def create_test_player(store: PersistenceStore):
    """Fixture factory that persists a player directly through the store."""

    async def _create_player(external_id: str, **fields: Any):
        return await store.save_player(external_id, PlayerUpdate(**fields))

    return _create_player
