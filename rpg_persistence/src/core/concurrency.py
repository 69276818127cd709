"""
Per-player write ordering.

Every write the lifecycle manager issues for a player runs under that
player's lock, so a stat update followed by a leave-save reaches the store in
the order it was issued.
"""

import asyncio
import time
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from prometheus_client import Histogram

from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.core.metrics import REGISTRY

logger = get_logger(__name__)

PLAYER_LOCK_WAIT_TIME = Histogram(
    "rpg_player_lock_wait_seconds",
    "Time spent waiting to acquire player locks",
    registry=REGISTRY,
)


class PlayerLockManager:
    """Lazily creates one asyncio.Lock per player identity."""

    def __init__(self, timeout: float = 30.0):
        self._player_locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per player; a lock is only dropped at zero
        self._lock_users: Dict[str, int] = {}
        self._lock_timeout = timeout

    def _get_or_create_player_lock(self, player_id: str) -> asyncio.Lock:
        lock = self._player_locks.get(player_id)
        if lock is None:
            lock = self._player_locks[player_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def acquire_player_lock(
        self,
        player_id: str,
        operation_name: str,
        timeout: Optional[float] = None,
    ) -> AsyncGenerator[None, None]:
        """
        Hold the player's lock for the duration of the block.

        Raises:
            asyncio.TimeoutError: If lock cannot be acquired within timeout
        """
        lock = self._get_or_create_player_lock(player_id)
        self._lock_users[player_id] = self._lock_users.get(player_id, 0) + 1
        try:
            start_time = time.perf_counter()
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout or self._lock_timeout)
            except asyncio.TimeoutError:
                logger.error(
                    "Failed to acquire player lock within timeout",
                    extra={
                        "player_id": player_id,
                        "operation": operation_name,
                        "traceback": traceback.format_exc(),
                    },
                )
                raise

            PLAYER_LOCK_WAIT_TIME.observe(time.perf_counter() - start_time)
            try:
                yield
            finally:
                lock.release()
        finally:
            remaining = self._lock_users[player_id] - 1
            if remaining:
                self._lock_users[player_id] = remaining
            else:
                del self._lock_users[player_id]

    def is_idle(self, player_id: str) -> bool:
        """True when nobody holds or waits for the player's lock."""
        return player_id not in self._lock_users

    def discard(self, player_id: str) -> None:
        """Forget a player's lock once nobody holds or waits for it."""
        if self.is_idle(player_id):
            self._player_locks.pop(player_id, None)

    def __contains__(self, player_id: str) -> bool:
        return player_id in self._player_locks
