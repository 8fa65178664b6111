"""Per-game turn locks shared by the orchestrator and the sequencer.

Locks are try-acquire only: a held lock means a turn is resolving and the
caller gets ``TurnInProgress`` instead of queueing behind it.  An entry
exists only while its lock is held, so the registry never outgrows the
number of turns currently in flight.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from warlynx.errors import TurnInProgress


class GameLocks:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_held(self, game_id: str) -> bool:
        lock = self._locks.get(game_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, game_id: str) -> AsyncIterator[None]:
        """Hold *game_id*'s lock for the body; raise if someone else has it."""
        if self.is_held(game_id):
            raise TurnInProgress(f"A turn is already being resolved for game {game_id}")
        lock = self._locks.setdefault(game_id, asyncio.Lock())
        # uncontended, so acquire returns without suspending
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if self._locks.get(game_id) is lock:
                del self._locks[game_id]
