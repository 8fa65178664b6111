"""Turn sequencing: whose turn it is, who is alive, and advancement.

The pure functions operate on a loaded ``GameSession``; ``TurnSequencer``
adds persistence (compare-and-swap on the turn pointer), the
``turn:changed`` notification, and recovery of stuck turns.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from pydantic import Field

from warlynx.config import settings
from warlynx.db.store import GameStore
from warlynx.errors import GameNotActive, GameNotFound, NoAlivePlayers, TurnInProgress
from warlynx.models.game import GameSession, Turn
from warlynx.models.power_sheet import WireModel
from warlynx.services.locks import GameLocks
from warlynx.services.notifier import Notifier

log = logging.getLogger(__name__)

_CAS_ATTEMPTS = 3


class TurnOrderReport(WireModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class TurnSlot(WireModel):
    index: int
    user_id: str
    display_name: str = ""
    character_id: Optional[str] = None
    character_name: Optional[str] = None
    is_alive: bool = False
    is_active: bool = False


# ── Pure session queries ────────────────────────────────────────────────


def active_player(session: GameSession) -> Optional[str]:
    """User id at the turn pointer, or None if the game isn't running."""
    if session.status != "active" or not session.turn_order:
        return None
    if not 0 <= session.current_turn_index < len(session.turn_order):
        return None
    return session.turn_order[session.current_turn_index]


def alive_players(session: GameSession) -> set[str]:
    """Players whose character exists and has hp > 0."""
    return {
        p.user_id
        for p in session.players
        if p.character is not None and not p.character.power_sheet.is_dead
    }


def next_active_index(session: GameSession) -> int:
    """Index of the next alive player, scanning forward with wrap-around.

    The scan starts one past the current index; the current index is only
    reached again when it belongs to the sole surviving player.
    """
    if session.status != "active":
        raise GameNotActive(f"Game {session.id} is {session.status}")
    n = len(session.turn_order)
    if n == 0:
        raise GameNotActive(f"Game {session.id} has an empty turn order")
    alive = alive_players(session)
    for step in range(1, n + 1):
        index = (session.current_turn_index + step) % n
        if session.turn_order[index] in alive:
            return index
    raise NoAlivePlayers(f"No alive players in game {session.id}")


def validate(session: GameSession) -> TurnOrderReport:
    """Structural sanity check for operational tooling."""
    errors: List[str] = []
    player_ids = [p.user_id for p in session.players]
    if not session.turn_order:
        errors.append("Turn order is empty")
    for user_id in session.turn_order:
        if user_id not in player_ids:
            errors.append(f"Player {user_id} in turn order does not exist in game")
    for user_id in player_ids:
        if user_id not in session.turn_order:
            errors.append(f"Player {user_id} is not in turn order")
    if not 0 <= session.current_turn_index < len(session.turn_order):
        errors.append(
            f"Current turn index {session.current_turn_index} is out of bounds"
        )
    return TurnOrderReport(valid=not errors, errors=errors)


def turn_order_details(session: GameSession) -> List[TurnSlot]:
    alive = alive_players(session)
    current = active_player(session)
    slots = []
    for index, user_id in enumerate(session.turn_order):
        player = session.player(user_id)
        character = player.character if player else None
        slots.append(
            TurnSlot(
                index=index,
                user_id=user_id,
                display_name=player.display_name if player else "",
                character_id=character.id if character else None,
                character_name=character.name if character else None,
                is_alive=user_id in alive,
                is_active=current is not None and index == session.current_turn_index,
            )
        )
    return slots


# ── Stateful sequencer ──────────────────────────────────────────────────


class TurnSequencer:
    """Persists turn advancement and recovers stuck turns."""

    def __init__(
        self, store: GameStore, notifier: Notifier, locks: GameLocks | None = None
    ):
        self._store = store
        self._notifier = notifier
        self._locks = GameLocks() if locks is None else locks

    async def advance(self, game_id: str) -> Tuple[int, str]:
        """Move the turn pointer to the next alive player.

        Returns ``(new_index, new_active_player_id)`` and emits
        ``turn:changed``.  Raises ``GameNotActive`` / ``NoAlivePlayers``.
        """
        for _ in range(_CAS_ATTEMPTS):
            session = await self._store.load_game(game_id)
            if session is None:
                raise GameNotFound(f"No game with id '{game_id}'")
            index = next_active_index(session)
            if await self._store.compare_and_set_turn_index(
                game_id, session.current_turn_index, index
            ):
                player_id = session.turn_order[index]
                log.info(
                    "Advanced game %s: index %d → %d (player %s)",
                    game_id, session.current_turn_index, index, player_id,
                )
                await self._notifier.publish(
                    game_id,
                    "turn:changed",
                    {"currentPlayerId": player_id, "turnIndex": index},
                )
                return index, player_id
            log.warning("Turn pointer for game %s moved underneath us, retrying", game_id)
        raise TurnInProgress(f"Turn pointer for game {game_id} kept changing")

    async def discard_in_flight_turn(self, game_id: str) -> List[Turn]:
        """Drop any pending/resolving turn so the active player can resubmit.

        Raises ``TurnInProgress`` while this process is still resolving a
        turn for the game; only orphaned turns are discarded.
        """
        if self._locks.is_held(game_id):
            raise TurnInProgress(f"A turn for game {game_id} is still being resolved")
        turns = await self._store.in_flight_turns(game_id)
        await self._store.delete_turns(t.id for t in turns)
        for t in turns:
            log.warning("Discarded in-flight turn %s (%s) for game %s", t.id, t.phase, game_id)
        return turns

    async def cleanup_stuck_turns(
        self, older_than_seconds: float | None = None
    ) -> List[Turn]:
        """Discard turns stuck in ``resolving`` longer than the timeout.

        Games this process is still resolving are skipped.
        """
        timeout = (
            older_than_seconds
            if older_than_seconds is not None
            else settings.stuck_turn_timeout_seconds
        )
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=timeout)
        stuck = []
        for turn in await self._store.stale_turns(cutoff):
            if self._locks.is_held(turn.game_id):
                log.info("Keeping slow turn %s: game %s is still resolving",
                         turn.id, turn.game_id)
                continue
            stuck.append(turn)
        log.info("Found %d stuck turns older than %.0fs", len(stuck), timeout)
        await self._store.delete_turns(t.id for t in stuck)
        return stuck
