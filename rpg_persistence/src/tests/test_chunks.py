"""
Tests for world chunk persistence, occupancy and the activity log.
"""

import pytest

from rpg_persistence.src.core.exceptions import ChunkOccupiedError
from rpg_persistence.src.schemas.world import ChunkRecord


def make_chunk(chunk_x: int = 0, chunk_z: int = 0, **fields) -> ChunkRecord:
    values = {
        "chunk_x": chunk_x,
        "chunk_z": chunk_z,
        "biome": "grassland",
        "height_data": "[0, 1, 2, 3]",
        "resource_states": '{"trees": 4}',
        "chunk_seed": 1234,
    }
    values.update(fields)
    return ChunkRecord(**values)


class TestChunkStorage:
    @pytest.mark.asyncio
    async def test_save_and_get(self, store, clock):
        await store.save_chunk(make_chunk(2, -3))

        chunk = await store.get_chunk(2, -3)

        assert chunk is not None
        assert chunk.biome == "grassland"
        assert chunk.resource_states == '{"trees": 4}'
        assert chunk.chunk_seed == 1234
        assert chunk.player_count == 0
        assert chunk.needs_reset is False
        assert chunk.last_active_time == clock()

    @pytest.mark.asyncio
    async def test_missing_chunk_is_none(self, store):
        assert await store.get_chunk(99, 99) is None

    @pytest.mark.asyncio
    async def test_save_upserts_by_coordinates(self, store):
        await store.save_chunk(make_chunk(1, 1))
        await store.save_chunk(make_chunk(1, 1, biome="desert", player_modifications="[]"))

        chunk = await store.get_chunk(1, 1)
        stats = await store.get_stats()

        assert chunk.biome == "desert"
        assert chunk.player_modifications == "[]"
        assert stats.chunk_count == 1

    @pytest.mark.asyncio
    async def test_save_never_overwrites_occupancy(self, store):
        """The occupant count belongs to the activity log, not the caller."""
        await store.save_chunk(make_chunk(0, 0))
        await store.record_chunk_entry(0, 0, "player_1")

        await store.save_chunk(make_chunk(0, 0, player_count=0))

        assert (await store.get_chunk(0, 0)).player_count == 1

    @pytest.mark.asyncio
    async def test_new_chunk_starts_with_open_entries(self, store):
        await store.record_chunk_entry(4, 4, "player_1")
        await store.record_chunk_entry(4, 4, "player_2")

        await store.save_chunk(make_chunk(4, 4, player_count=7))

        assert (await store.get_chunk(4, 4)).player_count == 2


class TestChunkActivity:
    """Entries, exits and derived occupancy."""

    @pytest.mark.asyncio
    async def test_entry_and_exit_update_occupancy(self, store, clock):
        await store.save_chunk(make_chunk(0, 0))

        activity_id = await store.record_chunk_entry(0, 0, "player_1")
        assert await store.get_chunk_occupancy(0, 0) == 1
        assert (await store.get_chunk(0, 0)).player_count == 1

        clock.advance(seconds=42.7)
        assert await store.record_chunk_exit(activity_id) is True

        assert await store.get_chunk_occupancy(0, 0) == 0
        chunk = await store.get_chunk(0, 0)
        assert chunk.player_count == 0
        assert chunk.last_active_time == clock()

        activity = await store.get_chunk_activity(0, 0)
        assert len(activity) == 1
        assert activity[0].player_id == "player_1"
        assert activity[0].left_at == clock()
        assert activity[0].session_duration == 42

    @pytest.mark.asyncio
    async def test_exit_is_not_repeatable(self, store):
        activity_id = await store.record_chunk_entry(0, 0, "player_1")

        assert await store.record_chunk_exit(activity_id) is True
        assert await store.record_chunk_exit(activity_id) is False
        assert await store.record_chunk_exit(123456) is False

    @pytest.mark.asyncio
    async def test_close_player_activity_in_one_chunk(self, store):
        await store.record_chunk_entry(0, 0, "player_1")
        await store.record_chunk_entry(1, 0, "player_1")
        await store.record_chunk_entry(0, 0, "player_2")

        closed = await store.close_player_chunk_activity("player_1", 0, 0)

        assert closed == 1
        assert await store.get_chunk_occupancy(0, 0) == 1
        assert await store.get_chunk_occupancy(1, 0) == 1

    @pytest.mark.asyncio
    async def test_close_player_activity_everywhere(self, store):
        await store.save_chunk(make_chunk(0, 0))
        await store.save_chunk(make_chunk(1, 0))
        await store.record_chunk_entry(0, 0, "player_1")
        await store.record_chunk_entry(1, 0, "player_1")

        closed = await store.close_player_chunk_activity("player_1")

        assert closed == 2
        assert (await store.get_chunk(0, 0)).player_count == 0
        assert (await store.get_chunk(1, 0)).player_count == 0
        assert await store.close_player_chunk_activity("player_1") == 0

    @pytest.mark.asyncio
    async def test_refresh_repairs_drifted_count(self, store):
        await store.save_chunk(make_chunk(0, 0))
        await store.record_chunk_entry(0, 0, "player_1")
        await store.update_chunk_occupancy(0, 0, 5)

        count = await store.refresh_chunk_occupancy(0, 0)

        assert count == 1
        assert (await store.get_chunk(0, 0)).player_count == 1

    @pytest.mark.asyncio
    async def test_update_occupancy_validation(self, store):
        with pytest.raises(ValueError):
            await store.update_chunk_occupancy(0, 0, -1)
        assert await store.update_chunk_occupancy(50, 50, 1) is False


class TestChunkReset:
    """Two-pass cleanup: mark on one pass, reset on the next."""

    @pytest.mark.asyncio
    async def test_recently_active_chunk_not_inactive(self, store, clock):
        await store.save_chunk(make_chunk(0, 0))
        clock.advance(minutes=5)

        assert await store.get_inactive_chunks(15) == []

    @pytest.mark.asyncio
    async def test_mark_then_reset(self, store, clock):
        await store.save_chunk(make_chunk(0, 0))
        activity_id = await store.record_chunk_entry(0, 0, "player_1")
        await store.record_chunk_exit(activity_id)
        clock.advance(minutes=20)

        inactive = await store.get_inactive_chunks(15)
        assert [(c.chunk_x, c.chunk_z) for c in inactive] == [(0, 0)]
        assert await store.mark_chunk_for_reset(0, 0) is True

        # Marked chunks are still reported so the next pass can reset them
        inactive = await store.get_inactive_chunks(15)
        assert inactive[0].needs_reset is True

        assert await store.reset_chunk(0, 0) is True
        assert await store.get_chunk(0, 0) is None
        assert await store.get_chunk_activity(0, 0) == []

    @pytest.mark.asyncio
    async def test_occupied_chunk_not_inactive(self, store, clock):
        await store.save_chunk(make_chunk(0, 0))
        await store.record_chunk_entry(0, 0, "player_1")
        clock.advance(minutes=30)

        assert await store.get_inactive_chunks(15) == []

    @pytest.mark.asyncio
    async def test_reset_refused_while_occupied(self, store):
        await store.save_chunk(make_chunk(0, 0))
        await store.record_chunk_entry(0, 0, "player_1")
        await store.mark_chunk_for_reset(0, 0)

        with pytest.raises(ChunkOccupiedError) as exc_info:
            await store.reset_chunk(0, 0)

        assert exc_info.value.occupants == 1
        assert await store.get_chunk(0, 0) is not None

    @pytest.mark.asyncio
    async def test_reentry_clears_reset_mark(self, store, clock):
        await store.save_chunk(make_chunk(0, 0))
        clock.advance(minutes=20)
        await store.mark_chunk_for_reset(0, 0)

        activity_id = await store.record_chunk_entry(0, 0, "player_1")
        assert (await store.get_chunk(0, 0)).needs_reset is False

        await store.record_chunk_exit(activity_id)
        assert (await store.get_chunk(0, 0)).needs_reset is False

    @pytest.mark.asyncio
    async def test_mark_and_reset_unknown_chunk(self, store):
        assert await store.mark_chunk_for_reset(7, 7) is False
        assert await store.reset_chunk(7, 7) is False


class TestActivityRetention:
    @pytest.mark.asyncio
    async def test_purge_recounts_occupancy(self, store, clock):
        await store.save_chunk(make_chunk(0, 0))
        await store.record_chunk_entry(0, 0, "player_1")
        closed_id = await store.record_chunk_entry(0, 0, "player_2")
        await store.record_chunk_exit(closed_id)

        clock.advance(days=31)
        await store.record_chunk_entry(0, 0, "player_3")

        purged = await store.purge_activity_older_than(30)

        assert purged == 2
        assert [a.player_id for a in await store.get_chunk_activity(0, 0)] == ["player_3"]
        assert (await store.get_chunk(0, 0)).player_count == 1
