"""
Relational store for players, inventory, equipment, items, world chunks,
sessions and chunk activity.

The store owns the schema and exposes typed CRUD operations. It holds no game
rules beyond the invariants the schema itself promises (experience never goes
down through save_player, current hit points never exceed max, inventory
bounds, occupancy derived from the activity log).

Every operation opens its own short transaction. Database failures are logged
with the entity involved and re-raised; reads for missing entities return None.
"""

import time
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rpg_persistence.src.core.config import settings
from rpg_persistence.src.core.database import (
    as_utc,
    create_engine,
    create_session_factory,
    utc_now,
)
from rpg_persistence.src.core.exceptions import (
    ChunkOccupiedError,
    InventoryCapacityError,
    PlayerNotFoundError,
    SessionClosedError,
    StoreNotInitializedError,
)
from rpg_persistence.src.core.items import ITEM_SEEDS, STARTING_WEAPON_ID, EquipmentSlot
from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.core.metrics import metrics
from rpg_persistence.src.core.skills import (
    CONSTITUTION_START_LEVEL,
    SKILL_NAMES,
    STARTING_HITPOINTS,
    SkillType,
    max_hitpoints_for,
    xp_for_level,
)
from rpg_persistence.src.db.migrations import MIGRATIONS, Migration, run_migrations
from rpg_persistence.src.models.item import Item
from rpg_persistence.src.models.player import Player, PlayerEquipment, PlayerInventory
from rpg_persistence.src.models.session import PlayerSession
from rpg_persistence.src.models.world import ChunkActivity, WorldChunk
from rpg_persistence.src.schemas.item import EquipmentSlotData, InventorySlot, ItemRecord
from rpg_persistence.src.schemas.player import (
    PlayerRecord,
    PlayerUpdate,
    Position,
    SkillProgress,
)
from rpg_persistence.src.schemas.session import SessionCreate, SessionRecord, SessionUpdate
from rpg_persistence.src.schemas.world import ChunkActivityRecord, ChunkRecord, DatabaseStats

logger = get_logger(__name__)

Clock = Callable[[], datetime]
EquipmentInput = Union[EquipmentSlotData, Mapping[str, Any], None]


class PersistenceStore:
    """Async store over a SQLAlchemy engine. Call initialize() before use."""

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        database_url: Optional[str] = None,
        clock: Clock = utc_now,
        inventory_capacity: Optional[int] = None,
        migrations: Sequence[Migration] = MIGRATIONS,
    ):
        self._engine = engine
        self._owns_engine = engine is None
        self._database_url = database_url
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._clock = clock
        self._migrations = migrations
        self._initialized = False
        self.inventory_capacity = inventory_capacity or settings.INVENTORY_CAPACITY

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """
        Create the engine if none was supplied, apply pending migrations and
        seed the item catalog.

        Raises:
            MigrationError: If a migration fails. The store stays uninitialized.
        """
        if self._initialized:
            return

        if self._engine is None:
            self._engine = create_engine(self._database_url)

        applied = await run_migrations(self._engine, self._migrations, clock=self._clock)

        self._session_factory = create_session_factory(self._engine)
        self._initialized = True

        seeded = await self.seed_items()
        logger.info(
            "Persistence store initialized",
            extra={
                "dialect": self._engine.dialect.name,
                "migrations_applied": applied,
                "items_seeded": seeded,
            },
        )

    async def close(self) -> None:
        """Release the engine. Engines passed in by the caller are left to the caller."""
        self._initialized = False
        self._session_factory = None
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        logger.info("Persistence store closed")

    # =========================================================================
    # INFRASTRUCTURE
    # =========================================================================

    @asynccontextmanager
    async def _db_session(
        self, operation: str, table: str, **context: Any
    ) -> AsyncIterator[AsyncSession]:
        if not self._initialized or self._session_factory is None:
            raise StoreNotInitializedError(operation)

        start_time = time.perf_counter()
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                metrics.track_error("store", type(e).__name__)
                logger.error(
                    "Database operation failed",
                    extra={
                        "operation": operation,
                        "table": table,
                        **context,
                        "error": str(e),
                        "traceback": traceback.format_exc(),
                    },
                )
                raise
            except Exception:
                await session.rollback()
                raise
            finally:
                metrics.track_database_operation(
                    operation, table, time.perf_counter() - start_time
                )

    def _insert(self, model):
        """INSERT construct supporting ON CONFLICT for the engine's dialect."""
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")

    async def _get_player_row(self, db: AsyncSession, external_id: str) -> Optional[Player]:
        result = await db.execute(select(Player).where(Player.external_id == external_id))
        return result.scalar_one_or_none()

    async def _require_player_id(self, db: AsyncSession, external_id: str) -> int:
        result = await db.execute(select(Player.id).where(Player.external_id == external_id))
        player_id = result.scalar_one_or_none()
        if player_id is None:
            raise PlayerNotFoundError(external_id)
        return player_id

    # =========================================================================
    # CONVERSION
    # =========================================================================

    @staticmethod
    def _player_to_record(player: Player) -> PlayerRecord:
        return PlayerRecord(
            id=player.id,
            external_id=player.external_id,
            name=player.name,
            skills={
                skill: SkillProgress(
                    level=getattr(player, f"{skill}_level"),
                    xp=getattr(player, f"{skill}_xp"),
                )
                for skill in SKILL_NAMES
            },
            current_hitpoints=player.current_hitpoints,
            max_hitpoints=player.max_hitpoints,
            position=Position(x=player.position_x, y=player.position_y, z=player.position_z),
            alive=player.alive,
            created_at=as_utc(player.created_at),
            updated_at=as_utc(player.updated_at),
        )

    @staticmethod
    def _chunk_to_record(chunk: WorldChunk) -> ChunkRecord:
        return ChunkRecord(
            chunk_x=chunk.chunk_x,
            chunk_z=chunk.chunk_z,
            biome=chunk.biome,
            height_data=chunk.height_data,
            resource_states=chunk.resource_states,
            mob_spawn_states=chunk.mob_spawn_states,
            player_modifications=chunk.player_modifications,
            chunk_seed=chunk.chunk_seed,
            last_active_time=as_utc(chunk.last_active_time),
            player_count=chunk.player_count,
            needs_reset=chunk.needs_reset,
        )

    @staticmethod
    def _session_to_record(row: PlayerSession) -> SessionRecord:
        return SessionRecord(
            session_id=row.session_id,
            player_id=row.player_id,
            player_token=row.player_token,
            start_time=as_utc(row.start_time),
            end_time=as_utc(row.end_time),
            last_activity=as_utc(row.last_activity),
            last_save_time=as_utc(row.last_save_time),
            auto_save_interval=row.auto_save_interval,
            is_active=row.is_active,
            disconnect_reason=row.disconnect_reason,
        )

    @staticmethod
    def _activity_to_record(row: ChunkActivity) -> ChunkActivityRecord:
        return ChunkActivityRecord(
            id=row.id,
            chunk_x=row.chunk_x,
            chunk_z=row.chunk_z,
            player_id=row.player_id,
            entered_at=as_utc(row.entered_at),
            left_at=as_utc(row.left_at),
            session_duration=row.session_duration,
        )

    # =========================================================================
    # ITEMS
    # =========================================================================

    async def seed_items(self) -> int:
        """
        Insert the starter item catalog if the item table is empty.

        Returns:
            Number of items inserted (0 when the catalog already exists)
        """
        async with self._db_session("seed_items", "rpg_items") as db:
            existing = await db.scalar(select(func.count()).select_from(Item))
            if existing:
                return 0

            now = self._clock()
            db.add_all(Item(**seed.to_row(), created_at=now) for seed in ITEM_SEEDS)
            await db.commit()

        logger.info("Seeded item catalog", extra={"items": len(ITEM_SEEDS)})
        return len(ITEM_SEEDS)

    async def get_item(self, item_id: int) -> Optional[ItemRecord]:
        async with self._db_session("get_item", "rpg_items", item_id=item_id) as db:
            item = await db.get(Item, item_id)
            return ItemRecord.model_validate(item) if item is not None else None

    async def get_all_items(self) -> List[ItemRecord]:
        async with self._db_session("get_all_items", "rpg_items") as db:
            result = await db.execute(select(Item).order_by(Item.id))
            return [ItemRecord.model_validate(item) for item in result.scalars()]

    # =========================================================================
    # PLAYERS
    # =========================================================================

    async def get_player(self, external_id: str) -> Optional[PlayerRecord]:
        async with self._db_session("get_player", "rpg_players", player_id=external_id) as db:
            player = await self._get_player_row(db, external_id)
            return self._player_to_record(player) if player is not None else None

    async def save_player(self, external_id: str, update: PlayerUpdate) -> PlayerRecord:
        """
        Insert or merge a player.

        A new player gets default skills, full health and a bronze sword in the
        weapon slot, overlaid with whatever ``update`` supplies. An existing
        player only has the supplied fields changed; experience is never
        lowered and current hit points are clamped to max.

        Returns:
            The player as persisted
        """
        async with self._db_session("save_player", "rpg_players", player_id=external_id) as db:
            now = self._clock()
            player = await self._get_player_row(db, external_id)
            created = player is None

            if created:
                player = Player(
                    external_id=external_id,
                    name=update.name or external_id,
                    created_at=now,
                )
                self._apply_default_stats(player)
                db.add(player)

            self._merge_update(player, update)
            player.updated_at = now

            if created:
                await db.flush()
                db.add(
                    PlayerEquipment(
                        player_id=player.id,
                        slot_name=EquipmentSlot.WEAPON.value,
                        item_id=STARTING_WEAPON_ID,
                        quantity=1,
                        created_at=now,
                        updated_at=now,
                    )
                )

            await db.commit()
            record = self._player_to_record(player)

        if created:
            logger.info(
                "Created player record",
                extra={"player_id": external_id, "internal_id": record.id},
            )
        return record

    @staticmethod
    def _apply_default_stats(player: Player) -> None:
        for skill in SkillType:
            name = skill.name.lower()
            start_level = skill.value.start_level
            setattr(player, f"{name}_level", start_level)
            setattr(player, f"{name}_xp", xp_for_level(start_level))
        player.current_hitpoints = STARTING_HITPOINTS
        player.max_hitpoints = STARTING_HITPOINTS
        player.position_x = 0.0
        player.position_y = 0.0
        player.position_z = 0.0
        player.alive = True

    @staticmethod
    def _merge_update(player: Player, update: PlayerUpdate) -> None:
        if update.name is not None:
            player.name = update.name

        constitution_changed = False
        if update.skills:
            for name, progress in update.skills.items():
                skill = name.lower()
                if skill not in SKILL_NAMES:
                    raise ValueError(f"Unknown skill: {name}")
                if skill == "constitution" and progress.level != player.constitution_level:
                    constitution_changed = True
                setattr(player, f"{skill}_level", progress.level)
                current_xp = getattr(player, f"{skill}_xp") or 0
                setattr(player, f"{skill}_xp", max(current_xp, progress.xp))

        health = update.health
        if health is not None and health.max is not None:
            player.max_hitpoints = health.max
        elif constitution_changed:
            player.max_hitpoints = max_hitpoints_for(player.constitution_level)

        if health is not None and health.current is not None:
            player.current_hitpoints = health.current
        player.current_hitpoints = min(player.current_hitpoints, player.max_hitpoints)

        if update.position is not None:
            player.position_x = update.position.x
            player.position_y = update.position.y
            player.position_z = update.position.z

        if update.alive is not None:
            player.alive = update.alive

    async def reset_player_skills(self, external_id: str) -> PlayerRecord:
        """
        Administrative reset of every skill to its starting level and experience.

        The only path through which experience may decrease.

        Raises:
            PlayerNotFoundError: If the player does not exist
        """
        async with self._db_session(
            "reset_player_skills", "rpg_players", player_id=external_id
        ) as db:
            player = await self._get_player_row(db, external_id)
            if player is None:
                raise PlayerNotFoundError(external_id)

            for skill in SkillType:
                name = skill.name.lower()
                setattr(player, f"{name}_level", skill.value.start_level)
                setattr(player, f"{name}_xp", xp_for_level(skill.value.start_level))
            player.max_hitpoints = max_hitpoints_for(CONSTITUTION_START_LEVEL)
            player.current_hitpoints = min(player.current_hitpoints, player.max_hitpoints)
            player.updated_at = self._clock()

            await db.commit()
            record = self._player_to_record(player)

        logger.warning("Player skills reset", extra={"player_id": external_id})
        return record

    async def delete_player(self, external_id: str) -> bool:
        """Remove a player with their inventory and equipment. Returns False if absent."""
        async with self._db_session("delete_player", "rpg_players", player_id=external_id) as db:
            player_id = await db.scalar(
                select(Player.id).where(Player.external_id == external_id)
            )
            if player_id is None:
                return False

            await db.execute(delete(PlayerInventory).where(PlayerInventory.player_id == player_id))
            await db.execute(delete(PlayerEquipment).where(PlayerEquipment.player_id == player_id))
            await db.execute(delete(Player).where(Player.id == player_id))
            await db.commit()

        logger.info("Deleted player", extra={"player_id": external_id})
        return True

    # =========================================================================
    # INVENTORY
    # =========================================================================

    async def get_inventory(self, external_id: str) -> List[InventorySlot]:
        """Occupied slots ordered by slot index, each with the item's name."""
        async with self._db_session("get_inventory", "rpg_inventory", player_id=external_id) as db:
            result = await db.execute(
                select(PlayerInventory, Item.name)
                .join(Player, Player.id == PlayerInventory.player_id)
                .outerjoin(Item, Item.id == PlayerInventory.item_id)
                .where(Player.external_id == external_id)
                .order_by(PlayerInventory.slot_index)
            )
            return [
                InventorySlot(
                    slot_index=row.slot_index,
                    item_id=row.item_id,
                    quantity=row.quantity,
                    item_data=row.item_data,
                    item_name=item_name,
                )
                for row, item_name in result.all()
            ]

    def _validate_inventory(
        self, items: Iterable[Union[InventorySlot, Mapping[str, Any]]]
    ) -> List[InventorySlot]:
        slots = [
            item if isinstance(item, InventorySlot) else InventorySlot.model_validate(item)
            for item in items
        ]
        occupied = [slot for slot in slots if slot.quantity > 0]

        seen = set()
        for slot in occupied:
            if slot.slot_index >= self.inventory_capacity:
                raise InventoryCapacityError(
                    f"Slot {slot.slot_index} is outside inventory capacity "
                    f"{self.inventory_capacity}"
                )
            if slot.slot_index in seen:
                raise InventoryCapacityError(f"Slot {slot.slot_index} is listed twice")
            seen.add(slot.slot_index)

        return occupied

    async def save_inventory(
        self,
        external_id: str,
        items: Iterable[Union[InventorySlot, Mapping[str, Any]]],
    ) -> int:
        """
        Replace the player's whole inventory with ``items``.

        Zero-quantity slots are dropped. Delete and insert share one
        transaction, so readers see either the old or the new inventory.

        Returns:
            Number of slots stored

        Raises:
            InventoryCapacityError: Slot index out of bounds or duplicated
            PlayerNotFoundError: The player does not exist
        """
        slots = self._validate_inventory(items)

        async with self._db_session("save_inventory", "rpg_inventory", player_id=external_id) as db:
            player_id = await self._require_player_id(db, external_id)
            now = self._clock()

            await db.execute(delete(PlayerInventory).where(PlayerInventory.player_id == player_id))
            db.add_all(
                PlayerInventory(
                    player_id=player_id,
                    slot_index=slot.slot_index,
                    item_id=slot.item_id,
                    quantity=slot.quantity,
                    item_data=slot.item_data,
                    created_at=now,
                    updated_at=now,
                )
                for slot in slots
            )
            await db.commit()

        logger.debug(
            "Saved inventory", extra={"player_id": external_id, "slots": len(slots)}
        )
        return len(slots)

    # =========================================================================
    # EQUIPMENT
    # =========================================================================

    async def get_equipment(self, external_id: str) -> Dict[str, EquipmentSlotData]:
        """Equipped items keyed by slot name. Empty slots are omitted."""
        async with self._db_session("get_equipment", "rpg_equipment", player_id=external_id) as db:
            result = await db.execute(
                select(PlayerEquipment, Item.name)
                .join(Player, Player.id == PlayerEquipment.player_id)
                .outerjoin(Item, Item.id == PlayerEquipment.item_id)
                .where(
                    Player.external_id == external_id,
                    PlayerEquipment.item_id.is_not(None),
                )
                .order_by(PlayerEquipment.slot_name)
            )
            return {
                row.slot_name: EquipmentSlotData(
                    item_id=row.item_id,
                    quantity=row.quantity,
                    item_data=row.item_data,
                    item_name=item_name,
                )
                for row, item_name in result.all()
            }

    async def save_equipment(
        self, external_id: str, slots: Mapping[str, EquipmentInput]
    ) -> None:
        """
        Upsert the given slots.

        A slot mapped to None is cleared. Slots not mentioned are untouched.

        Raises:
            ValueError: Unknown slot name
            PlayerNotFoundError: The player does not exist
        """
        valid_slots = set(EquipmentSlot.names())
        for slot_name in slots:
            if slot_name not in valid_slots:
                raise ValueError(f"Unknown equipment slot: {slot_name}")

        async with self._db_session("save_equipment", "rpg_equipment", player_id=external_id) as db:
            player_id = await self._require_player_id(db, external_id)
            now = self._clock()

            for slot_name, value in slots.items():
                if value is None:
                    await db.execute(
                        delete(PlayerEquipment).where(
                            PlayerEquipment.player_id == player_id,
                            PlayerEquipment.slot_name == slot_name,
                        )
                    )
                    continue

                data = (
                    value
                    if isinstance(value, EquipmentSlotData)
                    else EquipmentSlotData.model_validate(value)
                )
                stmt = self._insert(PlayerEquipment).values(
                    player_id=player_id,
                    slot_name=slot_name,
                    item_id=data.item_id,
                    quantity=data.quantity,
                    item_data=data.item_data,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["player_id", "slot_name"],
                    set_={
                        "item_id": stmt.excluded.item_id,
                        "quantity": stmt.excluded.quantity,
                        "item_data": stmt.excluded.item_data,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await db.execute(stmt)

            await db.commit()

        logger.debug(
            "Saved equipment",
            extra={"player_id": external_id, "slots": sorted(slots.keys())},
        )

    # =========================================================================
    # WORLD CHUNKS
    # =========================================================================

    @staticmethod
    async def _count_open_activity(db: AsyncSession, chunk_x: int, chunk_z: int) -> int:
        count = await db.scalar(
            select(func.count())
            .select_from(ChunkActivity)
            .where(
                ChunkActivity.chunk_x == chunk_x,
                ChunkActivity.chunk_z == chunk_z,
                ChunkActivity.left_at.is_(None),
            )
        )
        return count or 0

    async def _recount_occupancy(
        self, db: AsyncSession, chunk_x: int, chunk_z: int, now: datetime
    ) -> int:
        count = await self._count_open_activity(db, chunk_x, chunk_z)
        await db.execute(
            update(WorldChunk)
            .where(WorldChunk.chunk_x == chunk_x, WorldChunk.chunk_z == chunk_z)
            .values(**self._occupancy_values(count, now))
        )
        return count

    @staticmethod
    def _occupancy_values(count: int, now: datetime) -> Dict[str, Any]:
        values: Dict[str, Any] = {
            "player_count": count,
            "last_active_time": now,
            "updated_at": now,
        }
        if count > 0:
            # An occupied chunk is live again; a later reset needs a fresh mark
            values["needs_reset"] = False
        return values

    async def get_chunk(self, chunk_x: int, chunk_z: int) -> Optional[ChunkRecord]:
        async with self._db_session(
            "get_chunk", "rpg_world_chunks", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            chunk = await db.get(WorldChunk, (chunk_x, chunk_z))
            return self._chunk_to_record(chunk) if chunk is not None else None

    async def save_chunk(self, record: ChunkRecord) -> None:
        """
        Upsert a chunk by coordinates.

        Occupancy belongs to the activity log: a new row starts with the count
        of open activity entries, and an existing row keeps its count.
        """
        async with self._db_session(
            "save_chunk", "rpg_world_chunks", chunk_x=record.chunk_x, chunk_z=record.chunk_z
        ) as db:
            now = self._clock()
            occupants = await self._count_open_activity(db, record.chunk_x, record.chunk_z)

            stmt = self._insert(WorldChunk).values(
                chunk_x=record.chunk_x,
                chunk_z=record.chunk_z,
                biome=record.biome,
                height_data=record.height_data,
                resource_states=record.resource_states,
                mob_spawn_states=record.mob_spawn_states,
                player_modifications=record.player_modifications,
                chunk_seed=record.chunk_seed,
                last_active_time=record.last_active_time or now,
                player_count=occupants,
                needs_reset=record.needs_reset,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["chunk_x", "chunk_z"],
                set_={
                    "biome": stmt.excluded.biome,
                    "height_data": stmt.excluded.height_data,
                    "resource_states": stmt.excluded.resource_states,
                    "mob_spawn_states": stmt.excluded.mob_spawn_states,
                    "player_modifications": stmt.excluded.player_modifications,
                    "chunk_seed": stmt.excluded.chunk_seed,
                    "last_active_time": stmt.excluded.last_active_time,
                    "needs_reset": stmt.excluded.needs_reset,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)
            await db.commit()

    async def get_inactive_chunks(self, threshold_minutes: float) -> List[ChunkRecord]:
        """
        Empty chunks not active within the threshold, including ones already
        marked for reset.
        """
        cutoff = self._clock() - timedelta(minutes=threshold_minutes)
        async with self._db_session("get_inactive_chunks", "rpg_world_chunks") as db:
            result = await db.execute(
                select(WorldChunk)
                .where(
                    or_(
                        WorldChunk.last_active_time.is_(None),
                        WorldChunk.last_active_time < cutoff,
                    ),
                    WorldChunk.player_count == 0,
                )
                .order_by(WorldChunk.chunk_x, WorldChunk.chunk_z)
            )
            return [self._chunk_to_record(chunk) for chunk in result.scalars()]

    async def mark_chunk_for_reset(self, chunk_x: int, chunk_z: int) -> bool:
        async with self._db_session(
            "mark_chunk_for_reset", "rpg_world_chunks", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            result = await db.execute(
                update(WorldChunk)
                .where(WorldChunk.chunk_x == chunk_x, WorldChunk.chunk_z == chunk_z)
                .values(needs_reset=True, updated_at=self._clock())
            )
            await db.commit()
            return result.rowcount > 0

    async def reset_chunk(self, chunk_x: int, chunk_z: int) -> bool:
        """
        Hard-delete a chunk row and its activity log.

        Returns:
            True if a chunk row was deleted

        Raises:
            ChunkOccupiedError: Players are still inside the chunk
        """
        async with self._db_session(
            "reset_chunk", "rpg_world_chunks", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            chunk = await db.get(WorldChunk, (chunk_x, chunk_z))
            occupants = await self._count_open_activity(db, chunk_x, chunk_z)
            if chunk is not None:
                occupants = max(occupants, chunk.player_count)
            if occupants > 0:
                raise ChunkOccupiedError(chunk_x, chunk_z, occupants)

            await db.execute(
                delete(ChunkActivity).where(
                    ChunkActivity.chunk_x == chunk_x, ChunkActivity.chunk_z == chunk_z
                )
            )
            result = await db.execute(
                delete(WorldChunk).where(
                    WorldChunk.chunk_x == chunk_x, WorldChunk.chunk_z == chunk_z
                )
            )
            await db.commit()
            deleted = result.rowcount > 0

        if deleted:
            logger.info("Chunk reset", extra={"chunk_x": chunk_x, "chunk_z": chunk_z})
        return deleted

    async def update_chunk_occupancy(self, chunk_x: int, chunk_z: int, count: int) -> bool:
        """Set the occupant count and bump last-active. Returns False if the chunk is unknown."""
        if count < 0:
            raise ValueError(f"Occupant count cannot be negative: {count}")

        async with self._db_session(
            "update_chunk_occupancy", "rpg_world_chunks", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            now = self._clock()
            result = await db.execute(
                update(WorldChunk)
                .where(WorldChunk.chunk_x == chunk_x, WorldChunk.chunk_z == chunk_z)
                .values(**self._occupancy_values(count, now))
            )
            await db.commit()
            return result.rowcount > 0

    async def get_chunk_occupancy(self, chunk_x: int, chunk_z: int) -> int:
        """Number of open activity entries for the chunk."""
        async with self._db_session(
            "get_chunk_occupancy", "rpg_chunk_activity", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            return await self._count_open_activity(db, chunk_x, chunk_z)

    async def refresh_chunk_occupancy(self, chunk_x: int, chunk_z: int) -> int:
        """Write the activity-derived occupant count to the chunk row and return it."""
        async with self._db_session(
            "refresh_chunk_occupancy", "rpg_world_chunks", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            count = await self._recount_occupancy(db, chunk_x, chunk_z, self._clock())
            await db.commit()
            return count

    # =========================================================================
    # CHUNK ACTIVITY
    # =========================================================================

    async def record_chunk_entry(self, chunk_x: int, chunk_z: int, external_id: str) -> int:
        """
        Append an open activity entry and recompute the chunk's occupancy.

        Returns:
            The activity id, needed to close the entry later
        """
        async with self._db_session(
            "record_chunk_entry",
            "rpg_chunk_activity",
            chunk_x=chunk_x,
            chunk_z=chunk_z,
            player_id=external_id,
        ) as db:
            now = self._clock()
            activity = ChunkActivity(
                chunk_x=chunk_x,
                chunk_z=chunk_z,
                player_id=external_id,
                entered_at=now,
                session_duration=0,
            )
            db.add(activity)
            await db.flush()
            await self._recount_occupancy(db, chunk_x, chunk_z, now)
            await db.commit()
            return activity.id

    @staticmethod
    def _close_activity(activity: ChunkActivity, now: datetime) -> None:
        activity.left_at = now
        dwell = now - as_utc(activity.entered_at)
        activity.session_duration = max(0, int(dwell.total_seconds()))

    async def record_chunk_exit(self, activity_id: int) -> bool:
        """
        Close an activity entry with its whole-second dwell time.

        Returns:
            False for unknown or already-closed entries (no change is made)
        """
        async with self._db_session(
            "record_chunk_exit", "rpg_chunk_activity", activity_id=activity_id
        ) as db:
            activity = await db.get(ChunkActivity, activity_id)
            if activity is None or activity.left_at is not None:
                return False

            now = self._clock()
            self._close_activity(activity, now)
            await db.flush()
            await self._recount_occupancy(db, activity.chunk_x, activity.chunk_z, now)
            await db.commit()
            return True

    async def close_player_chunk_activity(
        self,
        external_id: str,
        chunk_x: Optional[int] = None,
        chunk_z: Optional[int] = None,
    ) -> int:
        """
        Close the player's open activity entries, in one chunk or everywhere.

        Returns:
            Number of entries closed
        """
        async with self._db_session(
            "close_player_chunk_activity", "rpg_chunk_activity", player_id=external_id
        ) as db:
            query = select(ChunkActivity).where(
                ChunkActivity.player_id == external_id,
                ChunkActivity.left_at.is_(None),
            )
            if chunk_x is not None and chunk_z is not None:
                query = query.where(
                    ChunkActivity.chunk_x == chunk_x, ChunkActivity.chunk_z == chunk_z
                )
            open_entries = list((await db.execute(query)).scalars())
            if not open_entries:
                return 0

            now = self._clock()
            for activity in open_entries:
                self._close_activity(activity, now)
            await db.flush()

            for coords in {(a.chunk_x, a.chunk_z) for a in open_entries}:
                await self._recount_occupancy(db, coords[0], coords[1], now)
            await db.commit()
            return len(open_entries)

    async def get_chunk_activity(self, chunk_x: int, chunk_z: int) -> List[ChunkActivityRecord]:
        """Activity entries for a chunk, oldest first."""
        async with self._db_session(
            "get_chunk_activity", "rpg_chunk_activity", chunk_x=chunk_x, chunk_z=chunk_z
        ) as db:
            result = await db.execute(
                select(ChunkActivity)
                .where(ChunkActivity.chunk_x == chunk_x, ChunkActivity.chunk_z == chunk_z)
                .order_by(ChunkActivity.id)
            )
            return [self._activity_to_record(row) for row in result.scalars()]

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def create_session(self, data: SessionCreate) -> str:
        """Open a session. Returns its id."""
        now = self._clock()
        session_id = data.session_id or (
            f"session_{data.player_id}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"
        )

        async with self._db_session(
            "create_session", "rpg_player_sessions", player_id=data.player_id
        ) as db:
            db.add(
                PlayerSession(
                    session_id=session_id,
                    player_id=data.player_id,
                    player_token=data.player_token,
                    start_time=now,
                    end_time=None,
                    last_activity=now,
                    last_save_time=now,
                    auto_save_interval=data.auto_save_interval,
                    is_active=True,
                    disconnect_reason=None,
                )
            )
            await db.commit()

        logger.debug(
            "Session created", extra={"session_id": session_id, "player_id": data.player_id}
        )
        return session_id

    async def update_session(self, session_id: str, data: SessionUpdate) -> bool:
        """
        Refresh a live session's timestamps. With no fields set, touches last_activity.

        Returns:
            False if the session does not exist

        Raises:
            SessionClosedError: The session has ended
        """
        async with self._db_session(
            "update_session", "rpg_player_sessions", session_id=session_id
        ) as db:
            row = await db.get(PlayerSession, session_id)
            if row is None:
                return False
            if not row.is_active:
                raise SessionClosedError(session_id)

            if data.last_activity is None and data.last_save_time is None:
                row.last_activity = self._clock()
            if data.last_activity is not None:
                row.last_activity = data.last_activity
            if data.last_save_time is not None:
                row.last_save_time = data.last_save_time

            await db.commit()
            return True

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        async with self._db_session(
            "get_session", "rpg_player_sessions", session_id=session_id
        ) as db:
            row = await db.get(PlayerSession, session_id)
            return self._session_to_record(row) if row is not None else None

    async def get_active_sessions(self) -> List[SessionRecord]:
        async with self._db_session("get_active_sessions", "rpg_player_sessions") as db:
            result = await db.execute(
                select(PlayerSession)
                .where(PlayerSession.is_active.is_(True))
                .order_by(PlayerSession.start_time)
            )
            return [self._session_to_record(row) for row in result.scalars()]

    async def get_active_sessions_for_player(self, external_id: str) -> List[SessionRecord]:
        async with self._db_session(
            "get_active_sessions_for_player", "rpg_player_sessions", player_id=external_id
        ) as db:
            result = await db.execute(
                select(PlayerSession)
                .where(
                    PlayerSession.player_id == external_id,
                    PlayerSession.is_active.is_(True),
                )
                .order_by(PlayerSession.start_time)
            )
            return [self._session_to_record(row) for row in result.scalars()]

    async def end_session(self, session_id: str, reason: str = "normal") -> bool:
        """
        Close a session.

        Returns:
            True if this call closed it; False if it was unknown or already closed
        """
        async with self._db_session(
            "end_session", "rpg_player_sessions", session_id=session_id
        ) as db:
            result = await db.execute(
                update(PlayerSession)
                .where(
                    PlayerSession.session_id == session_id,
                    PlayerSession.is_active.is_(True),
                )
                .values(is_active=False, end_time=self._clock(), disconnect_reason=reason)
            )
            await db.commit()
            closed = result.rowcount > 0

        if closed:
            logger.debug("Session ended", extra={"session_id": session_id, "reason": reason})
        return closed

    # =========================================================================
    # RETENTION
    # =========================================================================

    async def purge_sessions_older_than(self, days: float) -> int:
        """Delete closed sessions that ended, or started, before the cutoff."""
        cutoff = self._clock() - timedelta(days=days)
        async with self._db_session("purge_sessions", "rpg_player_sessions") as db:
            result = await db.execute(
                delete(PlayerSession).where(
                    PlayerSession.is_active.is_(False),
                    or_(
                        PlayerSession.end_time < cutoff,
                        PlayerSession.start_time < cutoff,
                    ),
                )
            )
            await db.commit()
            return result.rowcount

    async def purge_activity_older_than(self, days: float) -> int:
        """
        Delete activity entries that started before the cutoff.

        Chunks that lose open entries this way get their occupancy recomputed.
        """
        cutoff = self._clock() - timedelta(days=days)
        async with self._db_session("purge_activity", "rpg_chunk_activity") as db:
            stale_open = await db.execute(
                select(ChunkActivity.chunk_x, ChunkActivity.chunk_z)
                .where(ChunkActivity.entered_at < cutoff, ChunkActivity.left_at.is_(None))
                .distinct()
            )
            affected = [(row.chunk_x, row.chunk_z) for row in stale_open]

            result = await db.execute(
                delete(ChunkActivity).where(ChunkActivity.entered_at < cutoff)
            )

            now = self._clock()
            for chunk_x, chunk_z in affected:
                await self._recount_occupancy(db, chunk_x, chunk_z, now)
            await db.commit()
            return result.rowcount

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    async def get_stats(self) -> DatabaseStats:
        async with self._db_session("get_stats", "all") as db:
            player_count = await db.scalar(select(func.count()).select_from(Player))
            active_sessions = await db.scalar(
                select(func.count())
                .select_from(PlayerSession)
                .where(PlayerSession.is_active.is_(True))
            )
            chunk_count = await db.scalar(select(func.count()).select_from(WorldChunk))
            active_chunks = await db.scalar(
                select(func.count()).select_from(WorldChunk).where(WorldChunk.player_count > 0)
            )
            activity_count = await db.scalar(select(func.count()).select_from(ChunkActivity))

        return DatabaseStats(
            player_count=player_count or 0,
            active_session_count=active_sessions or 0,
            chunk_count=chunk_count or 0,
            active_chunk_count=active_chunks or 0,
            activity_record_count=activity_count or 0,
        )
