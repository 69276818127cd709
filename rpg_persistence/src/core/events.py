"""
Event bus connecting the persistence engine to the rest of the game server.

Lifecycle events flow in (player entered/left, chunk loaded/unloaded) and side
effects flow out (register player, headstones, teleports, chat).
"""

from typing import Awaitable, Callable, Dict, List, Any, Optional, Union
from enum import Enum
import asyncio
import traceback
from dataclasses import dataclass, field

from rpg_persistence.src.core.logging_config import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Events consumed and emitted by the persistence engine."""

    # Consumed: player lifecycle
    PLAYER_ENTERED = "player:entered"
    PLAYER_LEFT = "player:left"
    PLAYER_STATS_CHANGED = "player:stats:changed"
    PLAYER_EQUIPMENT_CHANGE_REQUESTED = "player:equipment:changed:request"
    PLAYER_HEALTH_CHANGED = "player:health:changed"

    # Consumed: world
    CHUNK_LOADED = "chunk:loaded"
    CHUNK_UNLOADED = "chunk:unloaded"
    CHUNK_PLAYER_ENTERED = "chunk:player:entered"
    CHUNK_PLAYER_LEFT = "chunk:player:left"

    # Emitted
    PLAYER_REGISTER = "player:register"
    PLAYER_UNREGISTER = "player:unregister"
    PLAYER_UPDATED = "player:updated"
    PLAYER_EQUIPMENT_CHANGED = "player:equipment:changed"
    INVENTORY_INITIALIZE = "inventory:initialize"
    SKILLS_INITIALIZE = "skills:initialize"
    DEATH_CREATE_HEADSTONE = "death:create_headstone"
    INVENTORY_DROP_ALL = "inventory:drop_all"
    PLAYER_DIED = "player:died"
    PLAYER_RESPAWNED = "player:respawned"
    PLAYER_TELEPORT = "player:teleport"
    PLAYER_HEALED = "player:healed"
    CHAT_BROADCAST = "chat:broadcast"


@dataclass
class Event:
    """Event data structure."""
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None


Handler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """In-process pub/sub bus. Handler failures are logged and isolated."""

    def __init__(self):
        self._handlers: Dict[EventType, List[Handler]] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """Subscribe a handler to an event type."""
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        """Unsubscribe a handler from an event type."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(
        self,
        event_type: EventType,
        data: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> None:
        """
        Emit an event without waiting for async handlers.

        Sync handlers run inline; async handlers are scheduled as tasks on the
        running loop. Use emit_async() when the caller must wait for them.
        """
        event = Event(type=event_type, data=data or {}, source=source)

        for handler in list(self._handlers.get(event_type, [])):
            try:
                if asyncio.iscoroutinefunction(handler):
                    task = asyncio.get_running_loop().create_task(
                        self._run_async_handler(handler, event)
                    )
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
                else:
                    handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    extra={
                        "event_type": event_type.value,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )

    async def emit_async(
        self,
        event_type: EventType,
        data: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> None:
        """Emit an event and await every handler in subscription order."""
        event = Event(type=event_type, data=data or {}, source=source)

        for handler in list(self._handlers.get(event_type, [])):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    "Async event handler failed",
                    extra={
                        "event_type": event_type.value,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )

    async def drain(self) -> None:
        """Wait for async handlers scheduled by emit() to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _run_async_handler(self, handler: Handler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "Async event handler failed",
                extra={
                    "event_type": event.type.value,
                    "handler": getattr(handler, "__qualname__", repr(handler)),
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                },
            )

    def clear(self, event_type: Optional[EventType] = None) -> None:
        """Clear all handlers for an event type, or all handlers if None."""
        if event_type:
            self._handlers.pop(event_type, None)
        else:
            self._handlers.clear()


class EventOutbox:
    """Events queued while a lock is held and published after it is released."""

    def __init__(self):
        self._queued: List[tuple[EventType, Dict[str, Any]]] = []

    def emit(self, event_type: EventType, data: Optional[Dict[str, Any]] = None) -> None:
        self._queued.append((event_type, data or {}))

    def __len__(self) -> int:
        return len(self._queued)

    async def flush(self, bus: EventBus) -> None:
        """Publish queued events in order, awaiting each event's handlers."""
        queued, self._queued = self._queued, []
        for event_type, data in queued:
            await bus.emit_async(event_type, data)
