"""
Exception types raised by the persistence engine.

Missing entities on reads are not errors: getters return None. These types
cover misuse, invariant violations and startup failures.
"""


class PersistenceError(Exception):
    """Base class for all persistence engine errors."""


class StoreNotInitializedError(PersistenceError, RuntimeError):
    """A store operation was invoked before initialize() completed."""

    def __init__(self, operation: str):
        super().__init__(f"Persistence store not initialized (operation: {operation})")
        self.operation = operation


class MigrationError(PersistenceError):
    """A schema migration failed. Fatal at startup."""

    def __init__(self, migration_name: str, cause: Exception):
        super().__init__(f"Migration '{migration_name}' failed: {cause}")
        self.migration_name = migration_name
        self.cause = cause


class PlayerNotFoundError(PersistenceError, LookupError):
    """A write referenced a player that has no persisted record."""

    def __init__(self, external_id: str):
        super().__init__(f"Player not found: {external_id}")
        self.external_id = external_id


class InventoryCapacityError(PersistenceError, ValueError):
    """An inventory snapshot violates slot bounds or capacity."""


class SessionClosedError(PersistenceError):
    """Closed sessions are immutable."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is closed")
        self.session_id = session_id


class ChunkOccupiedError(PersistenceError):
    """A chunk cannot be reset while players occupy it."""

    def __init__(self, chunk_x: int, chunk_z: int, occupants: int):
        super().__init__(
            f"Chunk ({chunk_x}, {chunk_z}) has {occupants} occupant(s) and cannot be reset"
        )
        self.chunk_x = chunk_x
        self.chunk_z = chunk_z
        self.occupants = occupants
