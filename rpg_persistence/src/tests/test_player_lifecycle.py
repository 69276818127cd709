"""
Tests for the player lifecycle manager: enter, mutate, die, respawn, leave.
"""

import asyncio
import random
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.exc import SQLAlchemyError

from rpg_persistence.src.core.events import EventType
from rpg_persistence.src.core.skills import xp_for_level
from rpg_persistence.src.schemas.item import EquipmentSlotData, InventorySlot
from rpg_persistence.src.schemas.player import Position
from rpg_persistence.src.services.player_lifecycle_manager import (
    PlayerLifecycleManager,
    PlayerStatus,
)
from rpg_persistence.src.services.world_providers import (
    DEFAULT_SPAWN_POSITION,
    FALLBACK_SPAWN_POSITIONS,
    StarterTown,
)

TOWN = StarterTown("Brookhaven", Position(x=250, y=3, z=-40))


class FixedTowns:
    def __init__(self, towns):
        self.towns = list(towns)

    def get_starter_towns(self):
        return self.towns


async def wait_for_respawn(manager: PlayerLifecycleManager, player_id: str, timeout: float = 2.0):
    """Poll until the player's respawn timer has fired."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while manager.has_pending_respawn(player_id):
        if loop.time() > deadline:
            raise AssertionError(f"{player_id} did not respawn within {timeout}s")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def slow_lifecycle(store, event_bus):
    """Manager whose respawn timer is long enough to race against."""
    manager = PlayerLifecycleManager(
        store, event_bus, respawn_delay=0.5, auto_save_interval=3600, rng=random.Random(3)
    )
    await manager.start()
    yield manager
    await manager.shutdown()


class TestPlayerEnter:
    """Connecting players, new and returning."""

    @pytest.mark.asyncio
    async def test_new_player_created_and_registered(self, lifecycle, store, recorder):
        state = await lifecycle.handle_player_enter("player_1", "Alice")

        assert state.name == "Alice"
        assert state.health == 100
        assert state.max_health == 100
        assert state.status == PlayerStatus.ACTIVE
        assert state.position in FALLBACK_SPAWN_POSITIONS
        assert state.equipment["weapon"].item_id == 1
        assert lifecycle.player_count == 1

        record = await store.get_player("player_1")
        assert record is not None
        assert record.name == "Alice"
        assert (await store.get_equipment("player_1"))["weapon"].item_id == 1

        assert recorder.types()[:3] == [
            EventType.PLAYER_REGISTER,
            EventType.INVENTORY_INITIALIZE,
            EventType.SKILLS_INITIALIZE,
        ]
        register = recorder.of_type(EventType.PLAYER_REGISTER)[0]
        assert register["player_id"] == "player_1"
        assert register["combat_level"] == 3
        starting_items = recorder.of_type(EventType.INVENTORY_INITIALIZE)[0]["starting_items"]
        assert starting_items[0]["name"] == "Bronze Sword"
        welcome = recorder.of_type(EventType.CHAT_BROADCAST)[0]["message"]
        assert welcome == "Welcome to the RPG world, Alice! You start with a bronze sword equipped."

    @pytest.mark.asyncio
    async def test_default_name(self, lifecycle):
        state = await lifecycle.handle_player_enter("player_1")

        assert state.name == "Player_player_1"

    @pytest.mark.asyncio
    async def test_enter_via_event_bus(self, lifecycle, event_bus):
        await event_bus.emit_async(
            EventType.PLAYER_ENTERED, {"player_id": "player_1", "name": "Alice"}
        )

        assert lifecycle.get_player("player_1").name == "Alice"

    @pytest.mark.asyncio
    async def test_reconnect_restores_persisted_state(self, lifecycle, store):
        """Progress, equipment and position survive a leave and re-enter."""
        await lifecycle.handle_player_enter("player_1", "Alice")
        await lifecycle.update_stats("player_1", {"attack": {"level": 5, "xp": 400}})
        await lifecycle.update_equipment("player_1", {"shield": {"item_id": 21}})
        await lifecycle.update_position("player_1", Position(x=12, y=2, z=-8))
        await lifecycle.handle_player_leave("player_1")

        assert lifecycle.get_player("player_1") is None

        state = await lifecycle.handle_player_enter("player_1", "Renamed")

        assert state.name == "Alice"
        assert state.skills["attack"].level == 5
        assert state.skills["attack"].xp == 400
        assert state.position == Position(x=12, y=2, z=-8)
        assert set(state.equipment) == {"weapon", "shield"}
        assert state.equipment["shield"].item_name == "Bronze Shield"

    @pytest.mark.asyncio
    async def test_enter_while_connected_keeps_memory_state(self, lifecycle, store, recorder):
        """A second enter re-registers the live state instead of reloading the row."""
        await lifecycle.handle_player_enter("player_1", "Alice")
        await lifecycle.update_position("player_1", Position(x=50, y=2, z=50))

        state = await lifecycle.handle_player_enter("player_1", "Alice")

        assert state.position == Position(x=50, y=2, z=50)
        assert lifecycle.get_player("player_1").position == Position(x=50, y=2, z=50)
        assert (await store.get_player("player_1")).position != Position(x=50, y=2, z=50)
        assert len(recorder.of_type(EventType.PLAYER_REGISTER)) == 2
        assert lifecycle.player_count == 1

    @pytest.mark.asyncio
    async def test_starter_town_spawn(self, store, event_bus):
        manager = PlayerLifecycleManager(
            store, event_bus, starter_towns=FixedTowns([TOWN]), auto_save_interval=3600
        )
        await manager.start()
        try:
            state = await manager.handle_player_enter("player_1")
        finally:
            await manager.shutdown()

        assert state.position == TOWN.position

    @pytest.mark.asyncio
    async def test_world_without_towns_uses_default_spawn(self, store, event_bus):
        manager = PlayerLifecycleManager(
            store, event_bus, starter_towns=FixedTowns([]), auto_save_interval=3600
        )
        await manager.start()
        try:
            state = await manager.handle_player_enter("player_1")
        finally:
            await manager.shutdown()

        assert state.position == DEFAULT_SPAWN_POSITION

    @pytest.mark.asyncio
    async def test_newer_enter_supersedes_loading_one(self, lifecycle):
        first, second = await asyncio.gather(
            lifecycle.handle_player_enter("player_1", "Alice"),
            lifecycle.handle_player_enter("player_1", "Alice"),
        )

        assert first is None
        assert second is not None
        assert lifecycle.player_count == 1

    @pytest.mark.asyncio
    async def test_leave_abandons_loading_enter(self, lifecycle, recorder):
        entered, left = await asyncio.gather(
            lifecycle.handle_player_enter("player_1", "Alice"),
            lifecycle.handle_player_leave("player_1"),
        )

        assert entered is None
        assert left is False
        assert lifecycle.player_count == 0
        assert recorder.of_type(EventType.PLAYER_REGISTER) == []


class TestPlayerLeave:
    @pytest.mark.asyncio
    async def test_leave_saves_and_unregisters(self, lifecycle, store, recorder):
        await lifecycle.handle_player_enter("player_1", "Alice")
        await lifecycle.update_position("player_1", {"x": 3, "y": 2, "z": 4})

        assert await lifecycle.handle_player_leave("player_1") is True

        record = await store.get_player("player_1")
        assert record.position == Position(x=3, y=2, z=4)
        assert recorder.of_type(EventType.PLAYER_UNREGISTER) == [{"player_id": "player_1"}]
        assert lifecycle.player_count == 0

    @pytest.mark.asyncio
    async def test_leave_unknown_player(self, lifecycle):
        assert await lifecycle.handle_player_leave("nobody") is False

    @pytest.mark.asyncio
    async def test_shutdown_saves_connected_players(self, store, event_bus):
        manager = PlayerLifecycleManager(store, event_bus, auto_save_interval=3600)
        await manager.start()
        await manager.handle_player_enter("player_1")
        await manager.update_position("player_1", Position(x=9, y=2, z=9))

        await manager.shutdown()

        assert manager.player_count == 0
        assert (await store.get_player("player_1")).position == Position(x=9, y=2, z=9)

    @pytest.mark.asyncio
    async def test_auto_save_persists_positions(self, store, event_bus):
        manager = PlayerLifecycleManager(store, event_bus, auto_save_interval=0.05)
        await manager.start()
        try:
            await manager.handle_player_enter("player_1")
            await manager.update_position("player_1", Position(x=-4, y=2, z=6))
            await asyncio.sleep(0.3)
            record = await store.get_player("player_1")
        finally:
            await manager.shutdown()

        assert record.position == Position(x=-4, y=2, z=6)


class TestStats:
    """Skill updates, experience monotonicity and constitution."""

    @pytest.mark.asyncio
    async def test_stats_persist_immediately(self, lifecycle, store, recorder):
        await lifecycle.handle_player_enter("player_1")

        assert await lifecycle.update_stats("player_1", {"woodcutting": {"level": 3, "xp": 200}})

        record = await store.get_player("player_1")
        assert record.skills["woodcutting"].level == 3
        assert record.skills["woodcutting"].xp == 200
        assert recorder.of_type(EventType.PLAYER_UPDATED)[-1]["player"]["stats"]["woodcutting"] == 3

    @pytest.mark.asyncio
    async def test_level_only_raises_xp_to_floor(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_stats("player_1", {"attack": 10})

        assert lifecycle.get_player("player_1").skills["attack"].xp == xp_for_level(10)

    @pytest.mark.asyncio
    async def test_experience_never_drops(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")
        await lifecycle.update_stats("player_1", {"fishing": {"level": 5, "xp": 500}})

        await lifecycle.update_stats("player_1", {"fishing": {"level": 5, "xp": 10}})

        assert lifecycle.get_player("player_1").skills["fishing"].xp == 500

    @pytest.mark.asyncio
    async def test_level_clamped_to_bounds(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_stats("player_1", {"cooking": 500, "ranged": 0})

        stats = lifecycle.get_player_stats("player_1")
        assert stats["cooking"] == 99
        assert stats["ranged"] == 1

    @pytest.mark.asyncio
    async def test_unknown_skill_ignored(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        assert await lifecycle.update_stats("player_1", {"necromancy": 5}) is True
        assert "necromancy" not in lifecycle.get_player_stats("player_1")

    @pytest.mark.asyncio
    async def test_constitution_change_keeps_deficit(self, lifecycle, store):
        """80/100 becomes 90/110 when constitution goes from 10 to 11."""
        await lifecycle.handle_player_enter("player_1")
        await lifecycle.damage("player_1", 20)

        await lifecycle.update_stats("player_1", {"constitution": 11})

        assert lifecycle.get_player_health("player_1") == {"health": 90, "max_health": 110}
        record = await store.get_player("player_1")
        assert record.max_hitpoints == 110
        assert record.current_hitpoints == 90

    @pytest.mark.asyncio
    async def test_constitution_drop_keeps_player_alive(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")
        await lifecycle.update_stats("player_1", {"constitution": 20})
        await lifecycle.damage("player_1", 150)

        await lifecycle.update_stats("player_1", {"constitution": 5})

        assert lifecycle.get_player_health("player_1") == {"health": 1, "max_health": 50}
        assert lifecycle.is_player_alive("player_1")

    @pytest.mark.asyncio
    async def test_level_can_drop_while_xp_kept(self, lifecycle, store):
        await lifecycle.handle_player_enter("player_1")
        await lifecycle.update_stats("player_1", {"cooking": 10})

        await lifecycle.update_stats("player_1", {"cooking": 4})

        assert lifecycle.get_player_stats("player_1")["cooking"] == 4
        record = await store.get_player("player_1")
        assert record.skills["cooking"].level == 4
        assert record.skills["cooking"].xp == xp_for_level(10)

    @pytest.mark.asyncio
    async def test_unknown_player(self, lifecycle):
        assert await lifecycle.update_stats("nobody", {"attack": 2}) is False


class TestEquipment:
    @pytest.mark.asyncio
    async def test_equipment_persisted_and_announced(self, lifecycle, store, recorder):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_equipment(
            "player_1",
            {
                "weapon": EquipmentSlotData(item_id=11),
                "arrows": {"item_id": 71, "quantity": 25},
            },
        )

        stored = await store.get_equipment("player_1")
        assert stored["weapon"].item_id == 11
        assert stored["arrows"].quantity == 25
        changed = recorder.of_type(EventType.PLAYER_EQUIPMENT_CHANGED)[-1]
        assert set(changed["equipment"]) == {"weapon", "arrows"}

    @pytest.mark.asyncio
    async def test_clearing_slot(self, lifecycle, store):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_equipment("player_1", {"weapon": None})

        assert not lifecycle.has_weapon_equipped("player_1")
        assert await store.get_equipment("player_1") == {}

    @pytest.mark.asyncio
    async def test_unknown_slot_rejected(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        with pytest.raises(ValueError):
            await lifecycle.update_equipment("player_1", {"cape": {"item_id": 1}})

    @pytest.mark.asyncio
    async def test_ranged_needs_bow_and_arrows(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")
        assert lifecycle.has_weapon_equipped("player_1")
        assert not lifecycle.can_use_ranged("player_1")

        await lifecycle.update_equipment("player_1", {"weapon": {"item_id": 11}})
        assert not lifecycle.can_use_ranged("player_1")

        await lifecycle.update_equipment("player_1", {"arrows": {"item_id": 71, "quantity": 10}})
        assert lifecycle.can_use_ranged("player_1")

    @pytest.mark.asyncio
    async def test_weapon_type_from_item_data(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_equipment(
            "player_1",
            {
                "weapon": {"item_id": 1, "item_data": {"weapon_type": "ranged"}},
                "arrows": {"item_id": 71, "quantity": 1},
            },
        )

        assert lifecycle.can_use_ranged("player_1")


class TestHealth:
    @pytest.mark.asyncio
    async def test_damage_and_heal(self, lifecycle, recorder):
        await lifecycle.handle_player_enter("player_1")

        assert await lifecycle.damage("player_1", 30, source="goblin") is False
        assert lifecycle.get_player_health("player_1")["health"] == 70

        assert await lifecycle.heal("player_1", 50) is True
        assert lifecycle.get_player_health("player_1")["health"] == 100
        assert recorder.of_type(EventType.PLAYER_HEALED)[-1] == {
            "player_id": "player_1",
            "amount": 30,
            "new_health": 100,
        }

        assert await lifecycle.heal("player_1", 10) is False

    @pytest.mark.asyncio
    async def test_negative_amounts_rejected(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        with pytest.raises(ValueError):
            await lifecycle.damage("player_1", -1)
        with pytest.raises(ValueError):
            await lifecycle.heal("player_1", -1)

    @pytest.mark.asyncio
    async def test_update_health_clamps_and_persists(self, lifecycle, store):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_health("player_1", 45)
        assert (await store.get_player("player_1")).current_hitpoints == 45

        await lifecycle.update_health("player_1", 500)
        assert lifecycle.get_player_health("player_1")["health"] == 100


class TestEventCallbacks:
    """Handlers may call back into the manager for the player being changed."""

    @pytest.mark.asyncio
    async def test_updated_handler_can_heal(self, store, event_bus):
        manager = PlayerLifecycleManager(
            store, event_bus, lock_timeout=0.5, auto_save_interval=3600
        )
        await manager.start()
        seen = []
        healed = []

        async def heal_once(event):
            if seen:
                return
            seen.append(event.data["player_id"])
            healed.append(await manager.heal(event.data["player_id"], 1))

        try:
            await manager.handle_player_enter("player_1")
            event_bus.subscribe(EventType.PLAYER_UPDATED, heal_once)
            await asyncio.wait_for(manager.damage("player_1", 10), timeout=0.4)
            health = manager.get_player_health("player_1")
        finally:
            await manager.shutdown()

        assert healed == [True]
        assert health == {"health": 91, "max_health": 100}

    @pytest.mark.asyncio
    async def test_died_handler_does_not_wait_on_lock(self, store, event_bus):
        manager = PlayerLifecycleManager(
            store, event_bus, respawn_delay=0.5, lock_timeout=0.5, auto_save_interval=3600
        )
        await manager.start()
        results = []

        async def set_health(event):
            results.append(await manager.update_health(event.data["player_id"], 50))

        try:
            await manager.handle_player_enter("player_1")
            event_bus.subscribe(EventType.PLAYER_DIED, set_health)
            assert await asyncio.wait_for(manager.damage("player_1", 500), timeout=0.4)
        finally:
            await manager.shutdown()

        # The player is already dead when the handler runs
        assert results == [False]


class TestDeathAndRespawn:
    """Death drops items at a headstone; the timer brings the player back."""

    @pytest.mark.asyncio
    async def test_lethal_damage_kills_and_respawns(self, slow_lifecycle, store, recorder):
        await slow_lifecycle.handle_player_enter("player_1", "Alice")
        await store.save_inventory(
            "player_1", [InventorySlot(slot_index=0, item_id=91, quantity=25)]
        )
        await slow_lifecycle.update_position("player_1", Position(x=40, y=2, z=40))

        assert await slow_lifecycle.damage("player_1", 500) is True

        assert not slow_lifecycle.is_player_alive("player_1")
        assert slow_lifecycle.get_player("player_1").death_position == Position(x=40, y=2, z=40)
        assert (await store.get_player("player_1")).alive is False
        headstone = recorder.of_type(EventType.DEATH_CREATE_HEADSTONE)[0]
        assert headstone["position"] == {"x": 40, "y": 2, "z": 40}
        assert headstone["player_name"] == "Alice"
        assert [item["item_id"] for item in headstone["items"]] == [91]
        assert recorder.of_type(EventType.INVENTORY_DROP_ALL)[0]["player_id"] == "player_1"
        assert recorder.of_type(EventType.PLAYER_DIED)[0]["death_position"] == {
            "x": 40,
            "y": 2,
            "z": 40,
        }
        assert any(
            m["message"].startswith("Alice has died!")
            for m in recorder.of_type(EventType.CHAT_BROADCAST)
        )

        # Dead players ignore further damage and healing
        assert await slow_lifecycle.damage("player_1", 10) is False
        assert await slow_lifecycle.heal("player_1", 10) is False

        await wait_for_respawn(slow_lifecycle, "player_1")

        state = slow_lifecycle.get_player("player_1")
        assert state.alive is True
        assert state.health == state.max_health
        assert state.position == DEFAULT_SPAWN_POSITION
        assert state.death_position is None
        teleport = recorder.of_type(EventType.PLAYER_TELEPORT)[-1]
        assert teleport["position"] == DEFAULT_SPAWN_POSITION.as_dict()
        assert len(recorder.of_type(EventType.PLAYER_RESPAWNED)) == 1
        record = await store.get_player("player_1")
        assert record.alive is True
        assert record.current_hitpoints == record.max_hitpoints

    @pytest.mark.asyncio
    async def test_zero_health_update_kills(self, lifecycle, recorder):
        await lifecycle.handle_player_enter("player_1")

        await lifecycle.update_health("player_1", 0)

        assert lifecycle.has_pending_respawn("player_1")
        assert len(recorder.of_type(EventType.PLAYER_DIED)) == 1
        await wait_for_respawn(lifecycle, "player_1")

    @pytest.mark.asyncio
    async def test_leave_cancels_respawn(self, slow_lifecycle, store, recorder):
        await slow_lifecycle.handle_player_enter("player_1")
        await slow_lifecycle.damage("player_1", 500)
        assert slow_lifecycle.has_pending_respawn("player_1")

        await slow_lifecycle.handle_player_leave("player_1")

        assert not slow_lifecycle.has_pending_respawn("player_1")
        await asyncio.sleep(0.7)
        assert recorder.of_type(EventType.PLAYER_RESPAWNED) == []
        assert (await store.get_player("player_1")).alive is False

    @pytest.mark.asyncio
    async def test_dead_player_reenters_dead(self, slow_lifecycle, recorder):
        """Logging out while dead does not skip the respawn wait."""
        await slow_lifecycle.handle_player_enter("player_1")
        await slow_lifecycle.update_position("player_1", Position(x=7, y=2, z=7))
        await slow_lifecycle.damage("player_1", 500)
        await slow_lifecycle.handle_player_leave("player_1")

        state = await slow_lifecycle.handle_player_enter("player_1")

        assert state.alive is False
        assert state.health == 0
        assert state.death_position == Position(x=7, y=2, z=7)
        assert slow_lifecycle.has_pending_respawn("player_1")

        await wait_for_respawn(slow_lifecycle, "player_1")
        assert slow_lifecycle.is_player_alive("player_1")

    @pytest.mark.asyncio
    async def test_respawn_at_starter_town(self, store, event_bus):
        manager = PlayerLifecycleManager(
            store,
            event_bus,
            starter_towns=FixedTowns([TOWN]),
            respawn_delay=0.05,
            auto_save_interval=3600,
        )
        await manager.start()
        try:
            await manager.handle_player_enter("player_1")
            await manager.update_position("player_1", Position(x=500, y=2, z=500))
            await manager.damage("player_1", 500)
            await wait_for_respawn(manager, "player_1")
            state = manager.get_player("player_1")
        finally:
            await manager.shutdown()

        assert state.position == TOWN.position

    @pytest.mark.asyncio
    async def test_respawn_living_player_is_no_op(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        assert await lifecycle.respawn_player("player_1") is False


class TestReads:
    @pytest.mark.asyncio
    async def test_snapshots_are_copies(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")

        snapshot = lifecycle.get_player("player_1")
        snapshot.health = 1
        snapshot.equipment.clear()

        assert lifecycle.get_player_health("player_1")["health"] == 100
        assert lifecycle.has_weapon_equipped("player_1")

    @pytest.mark.asyncio
    async def test_combat_level(self, lifecycle):
        await lifecycle.handle_player_enter("player_1")
        assert lifecycle.combat_level("player_1") == 3

        await lifecycle.update_stats("player_1", {"attack": 20, "strength": 20, "defense": 20})

        # (20 + 10 + floor(40 * 1.5)) // 4
        assert lifecycle.combat_level("player_1") == 22

    @pytest.mark.asyncio
    async def test_unknown_player_reads(self, lifecycle):
        assert lifecycle.get_player("nobody") is None
        assert lifecycle.get_player_stats("nobody") is None
        assert lifecycle.get_player_equipment("nobody") is None
        assert lifecycle.get_player_health("nobody") is None
        assert lifecycle.combat_level("nobody") is None
        assert lifecycle.is_player_alive("nobody") is False
        assert lifecycle.can_use_ranged("nobody") is False
        assert lifecycle.get_all_players() == []


class TestSaveFailures:
    """A failed write never disconnects the player; the next save retries."""

    @pytest.mark.asyncio
    async def test_failed_stat_save_retried_by_next_sweep(self, lifecycle, store):
        await lifecycle.handle_player_enter("player_1")

        with patch.object(
            store, "save_player", AsyncMock(side_effect=SQLAlchemyError("database down"))
        ):
            assert await lifecycle.update_stats("player_1", {"attack": 5}) is True

        assert lifecycle.get_player_stats("player_1")["attack"] == 5
        assert (await store.get_player("player_1")).skills["attack"].level == 1

        assert await lifecycle.save_all_players() == 1
        assert (await store.get_player("player_1")).skills["attack"].level == 5

    @pytest.mark.asyncio
    async def test_enter_after_failed_save_keeps_memory_state(self, lifecycle, store):
        await lifecycle.handle_player_enter("player_1")
        with patch.object(
            store, "save_player", AsyncMock(side_effect=SQLAlchemyError("database down"))
        ):
            await lifecycle.update_stats("player_1", {"attack": 5})

        await lifecycle.handle_player_enter("player_1")

        assert lifecycle.get_player_stats("player_1")["attack"] == 5
        assert (await store.get_player("player_1")).skills["attack"].level == 1

    @pytest.mark.asyncio
    async def test_failed_leave_save_reported(self, lifecycle, store):
        await lifecycle.handle_player_enter("player_1")

        with patch.object(
            store, "save_player", AsyncMock(side_effect=SQLAlchemyError("database down"))
        ):
            assert await lifecycle.handle_player_leave("player_1") is False

        assert lifecycle.player_count == 0
