"""Real-time notification channel.

The engine only *emits* events; delivery guarantees belong to the channel.
``BroadcastHub`` fans events out to in-process subscribers (one
``asyncio.Queue`` per subscriber), which the SSE endpoint drains.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List

log = logging.getLogger(__name__)


class Notifier(ABC):
    """Abstract sink for game events."""

    @abstractmethod
    async def publish(self, game_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Emit *event* with *payload* to everyone watching *game_id*."""


class LogNotifier(Notifier):
    """Writes events to the log only."""

    async def publish(self, game_id: str, event: str, payload: Dict[str, Any]) -> None:
        log.info("[%s] %s %s", game_id, event, payload)


class BroadcastHub(Notifier):
    """In-process fan-out of game events to subscriber queues."""

    def __init__(self, max_queue: int = 100):
        self._max_queue = max_queue
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscribe(self, game_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.setdefault(game_id, []).append(queue)
        return queue

    def unsubscribe(self, game_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(game_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(game_id, None)

    def subscriber_count(self, game_id: str) -> int:
        return len(self._subscribers.get(game_id, []))

    async def publish(self, game_id: str, event: str, payload: Dict[str, Any]) -> None:
        message = {
            "event": event,
            "gameId": game_id,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        log.info("Broadcast %s to %d subscribers of %s",
                 event, self.subscriber_count(game_id), game_id)
        for queue in list(self._subscribers.get(game_id, [])):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                log.warning("Dropping %s for a slow subscriber of %s", event, game_id)
