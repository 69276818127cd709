"""
Player lifecycle: connect, play, die, respawn, disconnect.

The manager holds the authoritative in-memory state of every connected player
and writes it through to the store. Stat, equipment and health changes are
persisted immediately; position, damage and healing ride on the periodic
auto-save. Every write for a player runs under that player's lock so the
store sees them in the order they were issued.
"""

import asyncio
import copy
import random
import traceback
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple, Union

from rpg_persistence.src.core.concurrency import PlayerLockManager
from rpg_persistence.src.core.config import settings
from rpg_persistence.src.core.events import Event, EventBus, EventOutbox, EventType
from rpg_persistence.src.core.items import STARTING_ITEMS, STARTING_WEAPON_ID, EquipmentSlot
from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.core.metrics import metrics, player_deaths_total, player_respawns_total
from rpg_persistence.src.core.scheduler import RecurringJob
from rpg_persistence.src.core.skills import (
    MAX_LEVEL,
    SKILL_NAMES,
    STARTING_HITPOINTS,
    SkillType,
    combat_level,
    max_hitpoints_for,
    xp_for_level,
)
from rpg_persistence.src.schemas.item import EquipmentSlotData, ItemRecord
from rpg_persistence.src.schemas.player import (
    HealthUpdate,
    PlayerRecord,
    PlayerUpdate,
    Position,
    SkillProgress,
)
from rpg_persistence.src.services.persistence_store import PersistenceStore
from rpg_persistence.src.services.world_providers import (
    DEFAULT_SPAWN_POSITION,
    FALLBACK_SPAWN_POSITIONS,
    StarterTown,
    StarterTownProvider,
)

logger = get_logger(__name__)

SkillInput = Union[int, Mapping[str, int], SkillProgress]
EquipmentInput = Union[EquipmentSlotData, Mapping[str, Any], None]


class PlayerStatus(str, Enum):
    ACTIVE = "active"
    DEAD = "dead"


@dataclass
class PlayerState:
    """In-memory state of one connected player."""

    player_id: str
    name: str
    skills: Dict[str, SkillProgress]
    health: int
    max_health: int
    position: Position
    alive: bool = True
    equipment: Dict[str, EquipmentSlotData] = field(default_factory=dict)
    death_position: Optional[Position] = None

    @classmethod
    def new(cls, player_id: str, name: str, position: Position) -> "PlayerState":
        """Starting state: level 1 skills, constitution 10, full health, bronze sword."""
        skills = {
            skill.name.lower(): SkillProgress(
                level=skill.value.start_level, xp=xp_for_level(skill.value.start_level)
            )
            for skill in SkillType
        }
        return cls(
            player_id=player_id,
            name=name,
            skills=skills,
            health=STARTING_HITPOINTS,
            max_health=STARTING_HITPOINTS,
            position=position,
            equipment={
                EquipmentSlot.WEAPON.value: EquipmentSlotData(
                    item_id=STARTING_WEAPON_ID, quantity=1
                )
            },
        )

    @classmethod
    def from_record(
        cls, record: PlayerRecord, equipment: Dict[str, EquipmentSlotData]
    ) -> "PlayerState":
        return cls(
            player_id=record.external_id,
            name=record.name,
            skills={name: progress.model_copy() for name, progress in record.skills.items()},
            health=record.current_hitpoints,
            max_health=record.max_hitpoints,
            position=record.position.model_copy(),
            alive=record.alive,
            equipment=dict(equipment),
        )

    @property
    def status(self) -> PlayerStatus:
        return PlayerStatus.ACTIVE if self.alive else PlayerStatus.DEAD

    @property
    def levels(self) -> Dict[str, int]:
        return {name: progress.level for name, progress in self.skills.items()}

    @property
    def combat_level(self) -> int:
        return combat_level(self.levels)

    def to_update(self) -> PlayerUpdate:
        return PlayerUpdate(
            name=self.name,
            skills={name: progress.model_copy() for name, progress in self.skills.items()},
            health=HealthUpdate(current=self.health, max=self.max_health),
            position=self.position.model_copy(),
            alive=self.alive,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "health": self.health,
            "max_health": self.max_health,
            "position": self.position.as_dict(),
            "alive": self.alive,
            "combat_level": self.combat_level,
            "stats": self.levels,
            "equipment": {
                slot: data.model_dump() for slot, data in self.equipment.items()
            },
        }


class PlayerLifecycleManager:
    """
    Translates player lifecycle events into store operations.

    Collaborators are injected: the store, the event bus and, optionally, the
    world generation system that knows where starter towns are.
    """

    def __init__(
        self,
        store: PersistenceStore,
        event_bus: EventBus,
        starter_towns: Optional[StarterTownProvider] = None,
        respawn_delay: Optional[float] = None,
        auto_save_interval: Optional[float] = None,
        lock_timeout: float = 30.0,
        rng: Optional[random.Random] = None,
    ):
        self._store = store
        self._bus = event_bus
        self._starter_towns = starter_towns
        self.respawn_delay = settings.RESPAWN_DELAY if respawn_delay is None else respawn_delay
        self._rng = rng or random.Random()

        self._players: Dict[str, PlayerState] = {}
        self._respawn_tasks: Dict[str, asyncio.Task] = {}
        self._connect_generation: Dict[str, int] = {}
        self._locks = PlayerLockManager(timeout=lock_timeout)
        self._items: Dict[int, ItemRecord] = {}
        self._subscribed = False

        self._auto_save = RecurringJob(
            "player_auto_save",
            settings.AUTO_SAVE_INTERVAL if auto_save_interval is None else auto_save_interval,
            self._auto_save_tick,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _subscriptions(self) -> List[Tuple[EventType, Any]]:
        return [
            (EventType.PLAYER_ENTERED, self._on_player_entered),
            (EventType.PLAYER_LEFT, self._on_player_left),
            (EventType.PLAYER_STATS_CHANGED, self._on_stats_changed),
            (EventType.PLAYER_EQUIPMENT_CHANGE_REQUESTED, self._on_equipment_change_requested),
            (EventType.PLAYER_HEALTH_CHANGED, self._on_health_changed),
        ]

    async def start(self) -> None:
        """Load the item catalog, subscribe to player events and start auto-save."""
        self._items = {item.id: item for item in await self._store.get_all_items()}

        if not self._subscribed:
            for event_type, handler in self._subscriptions():
                self._bus.subscribe(event_type, handler)
            self._subscribed = True

        self._auto_save.start()
        logger.info(
            "Player lifecycle manager started",
            extra={
                "auto_save_interval": self._auto_save.interval,
                "respawn_delay": self.respawn_delay,
                "world_generation_available": self._starter_towns is not None,
            },
        )

    async def shutdown(self) -> None:
        """Stop auto-save, cancel respawn timers and persist every connected player."""
        if self._subscribed:
            for event_type, handler in self._subscriptions():
                self._bus.unsubscribe(event_type, handler)
            self._subscribed = False

        await self._auto_save.stop()

        tasks = list(self._respawn_tasks.values())
        self._respawn_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        saved = await self.save_all_players(trigger="shutdown")
        count = len(self._players)
        self._players.clear()
        metrics.set_players_online(0)

        logger.info(
            "Player lifecycle manager shut down",
            extra={"players_saved": saved, "players": count},
        )

    # =========================================================================
    # EVENT HANDLERS
    # =========================================================================

    async def _on_player_entered(self, event: Event) -> None:
        await self.handle_player_enter(event.data["player_id"], event.data.get("name"))

    async def _on_player_left(self, event: Event) -> None:
        await self.handle_player_leave(event.data["player_id"])

    async def _on_stats_changed(self, event: Event) -> None:
        await self.update_stats(event.data["player_id"], event.data.get("stats", {}))

    async def _on_equipment_change_requested(self, event: Event) -> None:
        await self.update_equipment(event.data["player_id"], event.data.get("equipment", {}))

    async def _on_health_changed(self, event: Event) -> None:
        await self.update_health(event.data["player_id"], int(event.data["health"]))

    # =========================================================================
    # ENTER / LEAVE
    # =========================================================================

    async def handle_player_enter(
        self, player_id: str, name: Optional[str] = None
    ) -> Optional[PlayerState]:
        """
        Load or create the player and register them with the game.

        A newer enter for the same identity, or a leave, supersedes this one
        while it is still loading; the superseded call returns None.
        """
        generation = self._connect_generation.get(player_id, 0) + 1
        self._connect_generation[player_id] = generation

        async with self._player_write(player_id, "player_enter") as outbox:
            if self._connect_generation.get(player_id) != generation:
                logger.info("Superseded player enter abandoned", extra={"player_id": player_id})
                return None

            created = False
            state = self._players.get(player_id)
            if state is not None:
                # Still connected: memory holds changes the store may not have yet
                logger.info(
                    "Player already connected, re-registering in-memory state",
                    extra={"player_id": player_id},
                )
            else:
                record = await self._store.get_player(player_id)
                if record is not None:
                    equipment = await self._store.get_equipment(player_id)
                    state = PlayerState.from_record(record, equipment)
                else:
                    state = PlayerState.new(
                        player_id,
                        name or f"Player_{player_id}",
                        self._choose_spawn(new_player=True),
                    )
                    await self._store.save_player(player_id, state.to_update())
                    created = True

                if self._connect_generation.get(player_id) != generation:
                    logger.info(
                        "Superseded player enter abandoned", extra={"player_id": player_id}
                    )
                    return None

                self._cancel_respawn(player_id)
                self._players[player_id] = state
                metrics.set_players_online(len(self._players))

                if not state.alive:
                    # Dead on disk: stay dead and wait out a fresh respawn delay
                    state.health = 0
                    state.death_position = state.position.model_copy()
                    self._schedule_respawn(player_id)

            outbox.emit(EventType.PLAYER_REGISTER, state.to_payload())
            outbox.emit(
                EventType.INVENTORY_INITIALIZE,
                {"player_id": player_id, "starting_items": [dict(item) for item in STARTING_ITEMS]},
            )
            outbox.emit(
                EventType.SKILLS_INITIALIZE,
                {
                    "player_id": player_id,
                    "skills": {n: p.model_dump() for n, p in state.skills.items()},
                },
            )
            self._queue_broadcast(
                outbox,
                f"Welcome to the RPG world, {state.name}! "
                "You start with a bronze sword equipped."
            )

        logger.info(
            "Player entered",
            extra={
                "player_id": player_id,
                "new_player": created,
                "status": state.status.value,
                "position": state.position.as_dict(),
            },
        )
        return state

    async def handle_player_leave(self, player_id: str) -> bool:
        """
        Persist and unregister a player.

        Returns:
            True if the final save succeeded. The player is removed either way.
        """
        # Abandons any enter still loading for this identity
        self._connect_generation[player_id] = self._connect_generation.get(player_id, 0) + 1

        async with self._player_write(player_id, "player_leave") as outbox:
            self._cancel_respawn(player_id)
            state = self._players.get(player_id)
            if state is None:
                return False

            saved = await self._save_player(state, trigger="leave")

            outbox.emit(EventType.PLAYER_UNREGISTER, {"player_id": player_id})
            self._players.pop(player_id, None)
            metrics.set_players_online(len(self._players))

        self._locks.discard(player_id)
        logger.info("Player left", extra={"player_id": player_id, "saved": saved})
        return saved

    # =========================================================================
    # MUTATORS
    # =========================================================================

    async def update_stats(self, player_id: str, stats: Mapping[str, SkillInput]) -> bool:
        """
        Apply skill changes and persist immediately.

        Values are either a level or a mapping with ``level`` and/or ``xp``.
        Experience never drops and is raised to at least the level's floor.
        Levels may go down (a level drain or an admin correction); experience
        is a lifetime total and keeps its value, so it can sit above the
        lowered level's floor.
        A constitution change recomputes max health and keeps the absolute
        deficit: 80/100 becoming max 110 gives 90/110.
        """
        async with self._player_write(player_id, "update_stats") as outbox:
            state = self._players.get(player_id)
            if state is None:
                return False

            old_max = state.max_health
            constitution_changed = False

            for name, value in stats.items():
                skill = name.lower()
                if skill not in SKILL_NAMES:
                    logger.warning(
                        "Ignoring unknown skill", extra={"player_id": player_id, "skill": name}
                    )
                    continue

                current = state.skills[skill]
                level, xp = self._parse_skill_input(value, current)
                level = max(1, min(level, MAX_LEVEL))
                xp = max(current.xp, xp, xp_for_level(level))
                state.skills[skill] = SkillProgress(level=level, xp=xp)

                if skill == "constitution" and level != current.level:
                    constitution_changed = True

            if constitution_changed:
                new_max = max_hitpoints_for(state.skills["constitution"].level)
                if state.alive:
                    # A constitution drop never kills; health bottoms out at 1
                    state.health = max(1, min(new_max, state.health + (new_max - old_max)))
                state.max_health = new_max
                logger.info(
                    "Constitution changed",
                    extra={"player_id": player_id, "max_health": new_max, "health": state.health},
                )

            await self._save_player(state, trigger="stats")
            self._queue_updated(outbox, state)
            return True

    @staticmethod
    def _parse_skill_input(value: SkillInput, current: SkillProgress) -> Tuple[int, int]:
        if isinstance(value, SkillProgress):
            return value.level, value.xp
        if isinstance(value, Mapping):
            return int(value.get("level", current.level)), int(value.get("xp", 0))
        return int(value), 0

    async def update_equipment(
        self, player_id: str, equipment: Mapping[str, EquipmentInput]
    ) -> bool:
        """
        Change equipped items and persist immediately, including equipment rows.

        A slot mapped to None is emptied; slots not mentioned keep their item.
        """
        valid_slots = set(EquipmentSlot.names())
        for slot in equipment:
            if slot not in valid_slots:
                raise ValueError(f"Unknown equipment slot: {slot}")

        async with self._player_write(player_id, "update_equipment") as outbox:
            state = self._players.get(player_id)
            if state is None:
                return False

            changes: Dict[str, Optional[EquipmentSlotData]] = {}
            for slot, value in equipment.items():
                if value is None:
                    state.equipment.pop(slot, None)
                    changes[slot] = None
                else:
                    data = (
                        value
                        if isinstance(value, EquipmentSlotData)
                        else EquipmentSlotData.model_validate(value)
                    )
                    state.equipment[slot] = data
                    changes[slot] = data

            await self._save_player(state, trigger="equipment", equipment=changes)

            outbox.emit(
                EventType.PLAYER_EQUIPMENT_CHANGED,
                {
                    "player_id": player_id,
                    "equipment": {s: d.model_dump() for s, d in state.equipment.items()},
                },
            )
            self._queue_updated(outbox, state)
            return True

    async def update_position(self, player_id: str, position: Union[Position, Mapping[str, float]]) -> bool:
        """Move a player. Persisted by the next auto-save."""
        async with self._player_write(player_id, "update_position") as outbox:
            state = self._players.get(player_id)
            if state is None:
                return False

            state.position = (
                position.model_copy()
                if isinstance(position, Position)
                else Position.model_validate(position)
            )
            self._queue_updated(outbox, state)
            return True

    async def update_health(self, player_id: str, health: int) -> bool:
        """Set health (clamped to max) and persist. Zero kills the player."""
        async with self._player_write(player_id, "update_health") as outbox:
            state = self._players.get(player_id)
            if state is None or not state.alive:
                return False

            state.health = max(0, min(health, state.max_health))
            if state.health == 0:
                await self._handle_death(state, outbox)
            else:
                await self._save_player(state, trigger="health")
            self._queue_updated(outbox, state)
            return True

    async def damage(self, player_id: str, amount: int, source: Optional[str] = None) -> bool:
        """
        Deal damage.

        Returns:
            True if this hit killed the player. Dead or unknown players take no damage.
        """
        if amount < 0:
            raise ValueError("Damage must be non-negative")

        async with self._player_write(player_id, "damage") as outbox:
            state = self._players.get(player_id)
            if state is None or not state.alive:
                return False

            old_health = state.health
            state.health = max(0, state.health - amount)

            logger.debug(
                "Player damaged",
                extra={
                    "player_id": player_id,
                    "amount": amount,
                    "source": source or "unknown",
                    "old_health": old_health,
                    "new_health": state.health,
                },
            )

            if state.health == 0:
                await self._handle_death(state, outbox)
                self._queue_updated(outbox, state)
                return True

            self._queue_updated(outbox, state)
            return False

    async def heal(self, player_id: str, amount: int) -> bool:
        """
        Restore health up to max.

        Returns:
            False if the player is dead, unknown or already at full health
        """
        if amount < 0:
            raise ValueError("Heal amount must be non-negative")

        async with self._player_write(player_id, "heal") as outbox:
            state = self._players.get(player_id)
            if state is None or not state.alive:
                return False

            old_health = state.health
            state.health = min(state.max_health, state.health + amount)
            if state.health == old_health:
                return False

            outbox.emit(
                EventType.PLAYER_HEALED,
                {
                    "player_id": player_id,
                    "amount": state.health - old_health,
                    "new_health": state.health,
                },
            )
            self._queue_updated(outbox, state)
            return True

    # =========================================================================
    # DEATH AND RESPAWN
    # =========================================================================

    async def _handle_death(self, state: PlayerState, outbox: EventOutbox) -> None:
        """Runs with the player's lock held; events go out once it is released."""
        player_id = state.player_id
        state.alive = False
        state.health = 0
        state.death_position = state.position.model_copy()
        death_position = state.death_position.as_dict()
        player_deaths_total.inc()

        try:
            items = [slot.model_dump() for slot in await self._store.get_inventory(player_id)]
        except Exception as e:
            logger.error(
                "Could not load inventory for headstone",
                extra={
                    "player_id": player_id,
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                },
            )
            items = []

        outbox.emit(
            EventType.DEATH_CREATE_HEADSTONE,
            {
                "player_id": player_id,
                "position": death_position,
                "items": items,
                "player_name": state.name,
            },
        )
        outbox.emit(
            EventType.INVENTORY_DROP_ALL, {"player_id": player_id, "position": death_position}
        )
        outbox.emit(
            EventType.PLAYER_DIED, {"player_id": player_id, "death_position": death_position}
        )
        self._queue_broadcast(
            outbox,
            f"{state.name} has died! Items dropped at death location. "
            f"Respawning in {int(self.respawn_delay)} seconds..."
        )

        self._schedule_respawn(player_id)
        await self._save_player(state, trigger="death")

        logger.info(
            "Player died",
            extra={"player_id": player_id, "death_position": death_position, "items": len(items)},
        )

    def _schedule_respawn(self, player_id: str) -> None:
        self._cancel_respawn(player_id)
        self._respawn_tasks[player_id] = asyncio.get_running_loop().create_task(
            self._respawn_after_delay(player_id), name=f"respawn:{player_id}"
        )

    def _cancel_respawn(self, player_id: str) -> None:
        task = self._respawn_tasks.pop(player_id, None)
        if task is not None:
            task.cancel()

    def has_pending_respawn(self, player_id: str) -> bool:
        task = self._respawn_tasks.get(player_id)
        return task is not None and not task.done()

    async def _respawn_after_delay(self, player_id: str) -> None:
        try:
            await asyncio.sleep(self.respawn_delay)
            await self.respawn_player(player_id)
        finally:
            if self._respawn_tasks.get(player_id) is asyncio.current_task():
                del self._respawn_tasks[player_id]

    async def respawn_player(self, player_id: str) -> bool:
        """
        Bring a dead player back at a starter town with full health.

        Normally driven by the respawn timer.
        """
        async with self._player_write(player_id, "respawn") as outbox:
            state = self._players.get(player_id)
            if state is None or state.alive:
                return False

            position = self._choose_spawn(new_player=False)
            state.alive = True
            state.health = state.max_health
            state.position = position
            state.death_position = None
            player_respawns_total.inc()

            outbox.emit(
                EventType.PLAYER_RESPAWNED,
                {
                    "player_id": player_id,
                    "position": position.as_dict(),
                    "starter_town": position.as_dict(),
                },
            )
            outbox.emit(
                EventType.PLAYER_TELEPORT,
                {"player_id": player_id, "position": position.as_dict()},
            )
            self._queue_broadcast(
                outbox,
                f"{state.name} has respawned at a starter town! "
                "You must retrieve your items from your death location."
            )

            await self._save_player(state, trigger="respawn")
            self._queue_updated(outbox, state)

        logger.info(
            "Player respawned", extra={"player_id": player_id, "position": position.as_dict()}
        )
        return True

    def _choose_spawn(self, new_player: bool) -> Position:
        towns: List[StarterTown] = []
        if self._starter_towns is not None:
            try:
                towns = list(self._starter_towns.get_starter_towns())
            except Exception as e:
                logger.warning(
                    "Starter town lookup failed, using fallback spawn",
                    extra={"error": str(e)},
                )

        if towns:
            return self._rng.choice(towns).position.model_copy()
        if self._starter_towns is None and new_player:
            return self._rng.choice(FALLBACK_SPAWN_POSITIONS).model_copy()
        return DEFAULT_SPAWN_POSITION.model_copy()

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _save_player(
        self,
        state: PlayerState,
        trigger: str,
        equipment: Optional[Mapping[str, Optional[EquipmentSlotData]]] = None,
    ) -> bool:
        """Write the player through to the store. Failures are logged, never raised."""
        try:
            await self._store.save_player(state.player_id, state.to_update())
            if equipment:
                await self._store.save_equipment(state.player_id, equipment)
        except Exception as e:
            metrics.track_player_save(trigger, "failure")
            metrics.track_error("lifecycle", type(e).__name__)
            logger.error(
                "Failed to save player",
                extra={
                    "player_id": state.player_id,
                    "trigger": trigger,
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                },
            )
            return False

        metrics.track_player_save(trigger, "success")
        return True

    async def save_all_players(self, trigger: str = "auto_save") -> int:
        """
        Persist every connected player, each under its own lock.

        Returns:
            Number of players saved successfully
        """
        saved = 0
        for player_id in list(self._players.keys()):
            async with self._locks.acquire_player_lock(player_id, trigger):
                state = self._players.get(player_id)
                if state is None:
                    continue
                if await self._save_player(state, trigger=trigger):
                    saved += 1
        return saved

    async def _auto_save_tick(self) -> None:
        if not self._players:
            return
        total = len(self._players)
        saved = await self.save_all_players(trigger="auto_save")
        logger.debug("Auto-save completed", extra={"players": total, "saved": saved})

    # =========================================================================
    # EVENTS
    # =========================================================================

    @asynccontextmanager
    async def _player_write(
        self, player_id: str, operation: str
    ) -> AsyncIterator[EventOutbox]:
        """
        Run a write under the player's lock.

        Events queued on the outbox are published after the lock is released,
        so handlers may call back into the manager for the same player.
        """
        outbox = EventOutbox()
        async with self._locks.acquire_player_lock(player_id, operation):
            yield outbox
        await outbox.flush(self._bus)

    @staticmethod
    def _queue_updated(outbox: EventOutbox, state: PlayerState) -> None:
        outbox.emit(
            EventType.PLAYER_UPDATED,
            {"player_id": state.player_id, "player": state.to_payload()},
        )

    @staticmethod
    def _queue_broadcast(outbox: EventOutbox, message: str) -> None:
        outbox.emit(EventType.CHAT_BROADCAST, {"message": message, "source": "system"})

    # =========================================================================
    # READS
    # =========================================================================

    def get_player(self, player_id: str) -> Optional[PlayerState]:
        """Snapshot of a connected player's state."""
        state = self._players.get(player_id)
        return copy.deepcopy(state) if state is not None else None

    def get_all_players(self) -> List[PlayerState]:
        return [copy.deepcopy(state) for state in self._players.values()]

    def get_player_stats(self, player_id: str) -> Optional[Dict[str, int]]:
        state = self._players.get(player_id)
        return state.levels if state is not None else None

    def get_player_equipment(self, player_id: str) -> Optional[Dict[str, EquipmentSlotData]]:
        state = self._players.get(player_id)
        if state is None:
            return None
        return {slot: data.model_copy() for slot, data in state.equipment.items()}

    def get_player_health(self, player_id: str) -> Optional[Dict[str, int]]:
        state = self._players.get(player_id)
        if state is None:
            return None
        return {"health": state.health, "max_health": state.max_health}

    def is_player_alive(self, player_id: str) -> bool:
        state = self._players.get(player_id)
        return state.alive if state is not None else False

    def has_weapon_equipped(self, player_id: str) -> bool:
        state = self._players.get(player_id)
        return state is not None and EquipmentSlot.WEAPON.value in state.equipment

    def can_use_ranged(self, player_id: str) -> bool:
        """A ranged weapon in the weapon slot and at least one arrow."""
        state = self._players.get(player_id)
        if state is None:
            return False

        weapon = state.equipment.get(EquipmentSlot.WEAPON.value)
        arrows = state.equipment.get(EquipmentSlot.ARROWS.value)
        if weapon is None or arrows is None or arrows.quantity <= 0:
            return False

        return self._weapon_type(weapon) == "ranged"

    def _weapon_type(self, weapon: EquipmentSlotData) -> Optional[str]:
        if weapon.item_data and "weapon_type" in weapon.item_data:
            return weapon.item_data["weapon_type"]
        item = self._items.get(weapon.item_id)
        if item is not None and item.item_metadata:
            return item.item_metadata.get("weapon_type")
        return None

    def combat_level(self, player_id: str) -> Optional[int]:
        state = self._players.get(player_id)
        return state.combat_level if state is not None else None

    @property
    def player_count(self) -> int:
        return len(self._players)
