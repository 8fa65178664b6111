from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from tests.conftest import RecordingNotifier, make_sheet
from warlynx.db.tables import DBTurn
from warlynx.errors import GameNotActive, NoAlivePlayers, TurnInProgress
from warlynx.models.game import Character, GameSession, Player
from warlynx.services import sequencer as seq
from warlynx.services.locks import GameLocks
from warlynx.services.sequencer import TurnSequencer


def _session(alive: dict, index: int = 0, status: str = "active") -> GameSession:
    players = [
        Player(
            user_id=uid,
            display_name=uid.title(),
            character=Character(
                id=f"c-{uid}", name=uid.title(), user_id=uid,
                power_sheet=make_sheet(hp=100 if ok else 0),
            ),
        )
        for uid, ok in alive.items()
    ]
    return GameSession(
        id="g1", host_id=players[0].user_id, status=status,
        turn_order=list(alive), current_turn_index=index, players=players,
    )


class TestPureQueries:
    def test_active_player(self) -> None:
        session = _session({"a": True, "b": True}, index=1)
        assert seq.active_player(session) == "b"

    def test_no_active_player_outside_active_state(self) -> None:
        assert seq.active_player(_session({"a": True}, status="lobby")) is None

    def test_alive_players_excludes_dead_and_characterless(self) -> None:
        session = _session({"a": True, "b": False})
        session.players.append(Player(user_id="c"))
        assert seq.alive_players(session) == {"a"}

    def test_skips_dead_player(self) -> None:
        session = _session({"A": True, "B": False, "C": True}, index=0)
        assert seq.next_active_index(session) == 2

    def test_wraps_around(self) -> None:
        session = _session({"A": True, "B": True, "C": True}, index=2)
        assert seq.next_active_index(session) == 0

    def test_sole_survivor_keeps_turn(self) -> None:
        session = _session({"A": False, "B": True, "C": False}, index=1)
        assert seq.next_active_index(session) == 1

    def test_all_dead(self) -> None:
        with pytest.raises(NoAlivePlayers):
            seq.next_active_index(_session({"A": False, "B": False}))

    def test_not_active(self) -> None:
        with pytest.raises(GameNotActive):
            seq.next_active_index(_session({"A": True}, status="ended"))

    def test_validate_reports_every_problem(self) -> None:
        session = _session({"a": True, "b": True}, index=5)
        session.turn_order = ["a", "ghost"]
        report = seq.validate(session)
        assert not report.valid
        assert report.errors == [
            "Player ghost in turn order does not exist in game",
            "Player b is not in turn order",
            "Current turn index 5 is out of bounds",
        ]

    def test_validate_ok(self) -> None:
        assert seq.validate(_session({"a": True, "b": True})).valid

    def test_turn_order_details(self) -> None:
        slots = seq.turn_order_details(_session({"a": True, "b": False}, index=0))
        assert [(s.user_id, s.is_alive, s.is_active) for s in slots] == [
            ("a", True, True), ("b", False, False)
        ]
        assert slots[1].character_id == "c-b"


class TestTurnSequencer:
    async def test_advance_persists_and_notifies(self, store, seed_game) -> None:
        game = await seed_game(sheets={"bob": make_sheet(hp=0)})
        notifier = RecordingNotifier()

        index, player = await TurnSequencer(store, notifier).advance(game.id)

        assert (index, player) == (2, "carol")
        assert (await store.load_game(game.id)).current_turn_index == 2
        assert notifier.events == [
            (game.id, "turn:changed", {"currentPlayerId": "carol", "turnIndex": 2})
        ]

    async def test_advance_all_dead(self, store, seed_game) -> None:
        dead = make_sheet(hp=0)
        game = await seed_game(sheets={"alice": dead, "bob": dead, "carol": dead})
        with pytest.raises(NoAlivePlayers):
            await TurnSequencer(store, RecordingNotifier()).advance(game.id)

    async def test_discard_in_flight_turn(self, store, seed_game) -> None:
        game = await seed_game()
        turn = await store.create_turn(game.id, "alice")

        discarded = await TurnSequencer(store, RecordingNotifier()).discard_in_flight_turn(game.id)

        assert [t.id for t in discarded] == [turn.id]
        assert await store.get_turn(turn.id) is None

    async def test_cleanup_only_removes_old_resolving_turns(self, store, seed_game, engine) -> None:
        game = await seed_game()
        other = await seed_game(players=("dave", "erin"))
        stuck = await store.create_turn(game.id, "alice")
        fresh = await store.create_turn(other.id, "dave")
        await store.set_turn_phase(stuck.id, "resolving")
        await store.set_turn_phase(fresh.id, "resolving")
        async with engine.begin() as conn:
            await conn.execute(
                update(DBTurn)
                .where(DBTurn.id == stuck.id)
                .values(started_at=datetime.now(timezone.utc) - timedelta(minutes=5))
            )

        removed = await TurnSequencer(store, RecordingNotifier()).cleanup_stuck_turns(30)

        assert [t.id for t in removed] == [stuck.id]
        assert await store.get_turn(fresh.id) is not None

    async def test_discard_refused_while_resolving(self, store, seed_game) -> None:
        game = await seed_game()
        turn = await store.create_turn(game.id, "alice")
        locks = GameLocks()
        sequencer = TurnSequencer(store, RecordingNotifier(), locks)

        async with locks.hold(game.id):
            with pytest.raises(TurnInProgress):
                await sequencer.discard_in_flight_turn(game.id)

        assert await store.get_turn(turn.id) is not None

    async def test_cleanup_skips_games_being_resolved(self, store, seed_game, engine) -> None:
        game = await seed_game()
        turn = await store.create_turn(game.id, "alice")
        await store.set_turn_phase(turn.id, "resolving")
        async with engine.begin() as conn:
            await conn.execute(
                update(DBTurn)
                .where(DBTurn.id == turn.id)
                .values(started_at=datetime.now(timezone.utc) - timedelta(minutes=5))
            )
        locks = GameLocks()
        sequencer = TurnSequencer(store, RecordingNotifier(), locks)

        async with locks.hold(game.id):
            assert await sequencer.cleanup_stuck_turns(30) == []
        assert await store.get_turn(turn.id) is not None

        removed = await sequencer.cleanup_stuck_turns(30)
        assert [t.id for t in removed] == [turn.id]
