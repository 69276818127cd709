"""
Versioned schema migrations.

Each migration is a named unit that receives an Alembic ``Operations`` bound
to a live connection. Every step checks the current schema before creating
anything, so a migration re-run against a database that already has its
tables (for example after the ledger was lost) is harmless.

The ``rpg_migrations`` ledger records which names have been applied. Each
migration and its ledger row commit in a single transaction.
"""

import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Sequence

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.ext.asyncio import AsyncEngine

from rpg_persistence.src.core.database import utc_now
from rpg_persistence.src.core.exceptions import MigrationError
from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.models.session import MigrationRecord

logger = get_logger(__name__)

migration_ledger = MigrationRecord.__table__


@dataclass(frozen=True)
class Migration:
    name: str
    upgrade: Callable[[Operations], None]


def _has_table(op: Operations, table_name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table_name)


def _has_index(op: Operations, table_name: str, index_name: str) -> bool:
    indexes = sa.inspect(op.get_bind()).get_indexes(table_name)
    return any(index["name"] == index_name for index in indexes)


def _create_index(
    op: Operations, index_name: str, table_name: str, columns: List[str], unique: bool = False
) -> None:
    if not _has_index(op, table_name, index_name):
        op.create_index(index_name, table_name, columns, unique=unique)


def _timestamps() -> List[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


# =============================================================================
# MIGRATIONS
# =============================================================================


def create_players(op: Operations) -> None:
    if not _has_table(op, "rpg_players"):
        skill_columns = []
        for skill, start_level, start_xp in (
            ("attack", 1, 0),
            ("strength", 1, 0),
            ("defense", 1, 0),
            ("ranged", 1, 0),
            ("woodcutting", 1, 0),
            ("fishing", 1, 0),
            ("firemaking", 1, 0),
            ("cooking", 1, 0),
            ("constitution", 10, 1154),
        ):
            skill_columns.append(
                sa.Column(
                    f"{skill}_level", sa.Integer(), nullable=False, server_default=str(start_level)
                )
            )
            skill_columns.append(
                sa.Column(f"{skill}_xp", sa.BigInteger(), nullable=False, server_default=str(start_xp))
            )

        op.create_table(
            "rpg_players",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("external_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            *skill_columns,
            sa.Column("current_hitpoints", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("max_hitpoints", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("position_x", sa.Float(), nullable=False, server_default="0"),
            sa.Column("position_y", sa.Float(), nullable=False, server_default="0"),
            sa.Column("position_z", sa.Float(), nullable=False, server_default="0"),
            sa.Column("alive", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.CheckConstraint("current_hitpoints <= max_hitpoints", name="ck_rpg_players_hp"),
        )
    _create_index(op, "ix_rpg_players_external_id", "rpg_players", ["external_id"], unique=True)


def create_items(op: Operations) -> None:
    if _has_table(op, "rpg_items"):
        return
    op.create_table(
        "rpg_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("tier", sa.String(), nullable=True),
        sa.Column("stackable", sa.Boolean(), nullable=False, server_default=sa.false()),
        # Requirements
        sa.Column("attack_level", sa.Integer(), nullable=True),
        sa.Column("strength_level", sa.Integer(), nullable=True),
        sa.Column("defense_level", sa.Integer(), nullable=True),
        sa.Column("ranged_level", sa.Integer(), nullable=True),
        # Bonuses
        sa.Column("attack_bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("strength_bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("defense_bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ranged_bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("heals", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def create_inventory_and_equipment(op: Operations) -> None:
    if not _has_table(op, "rpg_inventory"):
        op.create_table(
            "rpg_inventory",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "player_id",
                sa.Integer(),
                sa.ForeignKey("rpg_players.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("slot_index", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("item_data", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("player_id", "slot_index", name="uq_rpg_inventory_player_slot"),
            sa.CheckConstraint("quantity > 0", name="ck_rpg_inventory_quantity"),
        )
    _create_index(op, "ix_rpg_inventory_player_id", "rpg_inventory", ["player_id"])

    if not _has_table(op, "rpg_equipment"):
        op.create_table(
            "rpg_equipment",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "player_id",
                sa.Integer(),
                sa.ForeignKey("rpg_players.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("slot_name", sa.String(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("item_data", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("player_id", "slot_name", name="uq_rpg_equipment_player_slot"),
        )
    _create_index(op, "ix_rpg_equipment_player_id", "rpg_equipment", ["player_id"])


def create_world_chunks(op: Operations) -> None:
    if _has_table(op, "rpg_world_chunks"):
        return
    op.create_table(
        "rpg_world_chunks",
        sa.Column("chunk_x", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("chunk_z", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("biome", sa.String(), nullable=False),
        sa.Column("height_data", sa.Text(), nullable=False),
        sa.Column("resource_states", sa.Text(), nullable=True),
        sa.Column("mob_spawn_states", sa.Text(), nullable=True),
        sa.Column("player_modifications", sa.Text(), nullable=True),
        sa.Column("chunk_seed", sa.Integer(), nullable=True),
        sa.Column("last_active_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("player_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("needs_reset", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("player_count >= 0", name="ck_rpg_world_chunks_player_count"),
    )


def create_sessions(op: Operations) -> None:
    if not _has_table(op, "rpg_player_sessions"):
        op.create_table(
            "rpg_player_sessions",
            sa.Column("session_id", sa.String(), primary_key=True),
            sa.Column("player_id", sa.String(), nullable=False),
            sa.Column("player_token", sa.String(), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_save_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("auto_save_interval", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("disconnect_reason", sa.String(), nullable=True),
        )
    _create_index(op, "ix_rpg_player_sessions_player_id", "rpg_player_sessions", ["player_id"])
    _create_index(op, "ix_rpg_player_sessions_is_active", "rpg_player_sessions", ["is_active"])


def create_chunk_activity(op: Operations) -> None:
    if not _has_table(op, "rpg_chunk_activity"):
        op.create_table(
            "rpg_chunk_activity",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("chunk_x", sa.Integer(), nullable=False),
            sa.Column("chunk_z", sa.Integer(), nullable=False),
            sa.Column("player_id", sa.String(), nullable=False),
            sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("session_duration", sa.Integer(), nullable=False, server_default="0"),
        )
    _create_index(op, "ix_rpg_chunk_activity_chunk", "rpg_chunk_activity", ["chunk_x", "chunk_z"])
    _create_index(op, "ix_rpg_chunk_activity_player_id", "rpg_chunk_activity", ["player_id"])


def add_lookup_indexes(op: Operations) -> None:
    """Indexes for the open-occupancy count and per-player active session lookups."""
    _create_index(
        op,
        "ix_rpg_chunk_activity_open",
        "rpg_chunk_activity",
        ["chunk_x", "chunk_z", "left_at"],
    )
    _create_index(
        op,
        "ix_rpg_player_sessions_player_active",
        "rpg_player_sessions",
        ["player_id", "is_active"],
    )


MIGRATIONS: Sequence[Migration] = (
    Migration("001_create_players", create_players),
    Migration("002_create_items", create_items),
    Migration("003_create_inventory_and_equipment", create_inventory_and_equipment),
    Migration("004_create_world_chunks", create_world_chunks),
    Migration("005_create_sessions", create_sessions),
    Migration("006_create_chunk_activity", create_chunk_activity),
    Migration("007_add_lookup_indexes", add_lookup_indexes),
)


# =============================================================================
# RUNNER
# =============================================================================


def _apply(sync_connection: sa.Connection, migration: Migration) -> None:
    context = MigrationContext.configure(sync_connection)
    migration.upgrade(Operations(context))


async def get_applied_migrations(engine: AsyncEngine) -> List[str]:
    """Names recorded in the ledger, oldest first."""
    async with engine.begin() as conn:
        await conn.run_sync(migration_ledger.create, checkfirst=True)
        result = await conn.execute(
            sa.select(migration_ledger.c.name).order_by(
                migration_ledger.c.executed_at, migration_ledger.c.name
            )
        )
        return [row[0] for row in result]


async def run_migrations(
    engine: AsyncEngine,
    migrations: Sequence[Migration] = MIGRATIONS,
    clock: Callable[[], datetime] = utc_now,
) -> List[str]:
    """
    Apply, in order, every migration not yet in the ledger.

    Returns:
        Names of the migrations applied by this call

    Raises:
        MigrationError: If any migration fails; later migrations are not attempted
    """
    names = [migration.name for migration in migrations]
    if len(names) != len(set(names)):
        raise ValueError("Migration names must be unique")

    applied = set(await get_applied_migrations(engine))
    newly_applied: List[str] = []

    for migration in migrations:
        if migration.name in applied:
            continue

        try:
            async with engine.begin() as conn:
                await conn.run_sync(_apply, migration)
                await conn.execute(
                    sa.insert(migration_ledger).values(
                        name=migration.name, executed_at=clock()
                    )
                )
        except Exception as e:
            logger.error(
                "Migration failed",
                extra={
                    "migration": migration.name,
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                },
            )
            raise MigrationError(migration.name, e) from e

        logger.info("Applied migration", extra={"migration": migration.name})
        newly_applied.append(migration.name)

    if not newly_applied:
        logger.debug("Schema up to date", extra={"migrations": len(names)})

    return newly_applied
