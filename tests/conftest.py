from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

import pytest

from warlynx.db.database import init_db, make_engine, make_sessionmaker
from warlynx.db.store import GameStore
from warlynx.llm.base import LLMProvider
from warlynx.models.game import GameSession
from warlynx.models.power_sheet import Ability, Attributes, PowerSheet
from warlynx.services.narrator import NarrativeClient
from warlynx.services.notifier import Notifier
from warlynx.services.orchestrator import RetryPolicy, TurnOrchestrator


def make_sheet(**overrides: Any) -> PowerSheet:
    fields: Dict[str, Any] = {
        "level": 1,
        "hp": 100,
        "max_hp": 100,
        "attributes": Attributes(strength=50, agility=40, intelligence=30,
                                 charisma=20, endurance=45),
        "abilities": [Ability(name="Flame Burst", description="A cone of fire",
                              power_level=5)],
        "weakness": "Water",
    }
    fields.update(overrides)
    return PowerSheet(**fields)


def turn_payload(
    stat_updates: Optional[List[Dict[str, Any]]] = None,
    narrative: str = "The ground shakes as the battle begins.",
) -> Dict[str, Any]:
    """A well-formed collaborator response."""
    return {
        "valid": True,
        "narrative": narrative,
        "choices": [
            {"label": "A", "description": "Charge in", "riskLevel": "high"},
            {"label": "B", "description": "Hold the line", "riskLevel": "medium"},
            {"label": "C", "description": "Scout ahead", "riskLevel": "low"},
            {"label": "D", "description": "Call the storm", "riskLevel": "extreme"},
        ],
        "statUpdates": stat_updates or [],
        "validationError": None,
    }


class ScriptedLLM(LLMProvider):
    """Replays queued responses; an ``Exception`` in the queue is raised."""

    def __init__(self, turns: Sequence[Any] = (), perks: Sequence[Any] = ()):
        super().__init__(model="scripted")
        self.turns: List[Any] = list(turns)
        self.perks: List[Any] = list(perks)
        self.prompts: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def _next(self, queue: List[Any]) -> Any:
        if self.gate is not None:
            await self.gate.wait()
        if not queue:
            raise RuntimeError("ScriptedLLM ran out of responses")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, system_prompt, user_prompt, *, temperature=None,
                       max_tokens=2000, json_mode=False) -> str:
        self.prompts.append(user_prompt)
        return json.dumps(await self._next(self.turns))

    async def complete_json(self, system_prompt, user_prompt, *, temperature=None,
                            max_tokens=2000) -> Any:
        self.prompts.append(user_prompt)
        return await self._next(self.turns)

    async def complete_structured(self, system_prompt, user_prompt, response_model, *,
                                  temperature=None, max_tokens=500):
        self.prompts.append(user_prompt)
        return response_model.model_validate(await self._next(self.perks))


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events: List[tuple] = []

    async def publish(self, game_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((game_id, event, payload))

    def names(self) -> List[str]:
        return [e[1] for e in self.events]


class FakeSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
async def engine():
    eng = make_engine("sqlite+aiosqlite:///:memory:")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def store(engine) -> GameStore:
    return GameStore(make_sessionmaker(engine))


@pytest.fixture
def seed_game(store: GameStore):
    """Factory: an active game with one character per player, in join order."""

    async def _seed(
        players: Sequence[str] = ("alice", "bob", "carol"),
        sheets: Optional[Dict[str, PowerSheet]] = None,
        names: Optional[Dict[str, str]] = None,
    ) -> GameSession:
        sheets = sheets or {}
        names = names or {}
        game = await store.create_game(
            players[0], name="Test Game", host_display_name=players[0].title()
        )
        for user_id in players[1:]:
            await store.add_player(game.id, user_id, user_id.title())
        for user_id in players:
            await store.create_character(
                game.id,
                user_id,
                names.get(user_id, f"{user_id.title()}'s Hero"),
                sheets.get(user_id, make_sheet()),
            )
        return await store.start_game(game.id)

    return _seed


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def orchestrator(store, llm, notifier, fake_sleep) -> TurnOrchestrator:
    narrator = NarrativeClient(llm, timeout=1.0)
    return TurnOrchestrator(
        store, narrator, notifier, retry=RetryPolicy(sleep=fake_sleep)
    )
