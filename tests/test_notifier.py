from __future__ import annotations

import asyncio
import logging

from warlynx.services.notifier import BroadcastHub, LogNotifier


class TestBroadcastHub:
    async def test_fan_out_to_game_subscribers(self) -> None:
        hub = BroadcastHub()
        first = hub.subscribe("g1")
        second = hub.subscribe("g1")
        other = hub.subscribe("g2")

        await hub.publish("g1", "turn:changed", {"turnIndex": 1})

        for queue in (first, second):
            message = queue.get_nowait()
            assert message["event"] == "turn:changed"
            assert message["gameId"] == "g1"
            assert message["payload"] == {"turnIndex": 1}
        assert other.empty()

    async def test_unsubscribe(self) -> None:
        hub = BroadcastHub()
        queue = hub.subscribe("g1")
        hub.unsubscribe("g1", queue)
        assert hub.subscriber_count("g1") == 0
        await hub.publish("g1", "turn:changed", {})
        assert queue.empty()

    async def test_slow_subscriber_drops_events(self) -> None:
        hub = BroadcastHub(max_queue=1)
        queue = hub.subscribe("g1")
        await hub.publish("g1", "a", {})
        await hub.publish("g1", "b", {})
        assert queue.qsize() == 1
        assert queue.get_nowait()["event"] == "a"

    async def test_publish_without_subscribers(self) -> None:
        await asyncio.wait_for(BroadcastHub().publish("g1", "x", {}), 1)


class TestLogNotifier:
    async def test_writes_event_to_log(self, caplog) -> None:
        with caplog.at_level(logging.INFO):
            await LogNotifier().publish("g1", "game:ended", {"reason": "NO_ALIVE_PLAYERS"})
        assert "game:ended" in caplog.text
        assert "NO_ALIVE_PLAYERS" in caplog.text
