"""
Interfaces of the world systems the persistence engine can consult.

Both collaborators are optional. Without a starter-town provider players spawn
at fixed fallback coordinates; without a terrain provider the periodic save
persists no chunks.
"""

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

from rpg_persistence.src.schemas.player import Position
from rpg_persistence.src.schemas.world import ChunkRecord


@dataclass(frozen=True)
class StarterTown:
    name: str
    position: Position


@runtime_checkable
class StarterTownProvider(Protocol):
    """World generation: where new and respawning players may appear."""

    def get_starter_towns(self) -> Sequence[StarterTown]: ...


@runtime_checkable
class ActiveChunkProvider(Protocol):
    """Terrain: serialized state of every chunk currently loaded."""

    def get_active_chunks(self) -> Sequence[ChunkRecord]: ...


# Used for new players when no world generation is available
FALLBACK_SPAWN_POSITIONS: tuple[Position, ...] = (
    Position(x=0, y=2, z=0),
    Position(x=100, y=2, z=0),
    Position(x=-100, y=2, z=0),
    Position(x=0, y=2, z=100),
    Position(x=0, y=2, z=-100),
)

# Used for respawns, and for new players when world generation has no towns yet
DEFAULT_SPAWN_POSITION = Position(x=0, y=2, z=0)
