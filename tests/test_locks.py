from __future__ import annotations

import pytest

from warlynx.errors import TurnInProgress
from warlynx.services.locks import GameLocks


class TestGameLocks:
    async def test_second_holder_is_refused(self) -> None:
        locks = GameLocks()
        async with locks.hold("g1"):
            assert locks.is_held("g1")
            with pytest.raises(TurnInProgress):
                async with locks.hold("g1"):
                    pass
            async with locks.hold("g2"):
                assert len(locks) == 2
        assert not locks.is_held("g1")
        assert len(locks) == 0

    async def test_entry_is_evicted_after_an_error(self) -> None:
        locks = GameLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("g1"):
                raise RuntimeError("boom")
        assert len(locks) == 0
        async with locks.hold("g1"):
            assert locks.is_held("g1")
