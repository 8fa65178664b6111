"""Turn orchestration: one submitted action → one resolved turn.

    submission → permission check → pending turn → collaborator call
    (timeout + retry) → validation → stat batch → events → advance → notify

Every step for a given game runs under that game's entry in ``GameLocks``.
A submission arriving while the lock is held, or while the store still has an
in-flight turn for the game, is rejected with ``TurnInProgress`` rather
than queued.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar, Union

from warlynx.config import settings
from warlynx.db.store import GameStore
from warlynx.errors import (
    CharacterDead,
    CharacterNotFound,
    InvalidGameState,
    NarrativeError,
    NarrativeGenerationFailed,
    NoAlivePlayers,
)
from warlynx.models.game import Character, GameEvent, GameSession, Turn
from warlynx.models.power_sheet import PowerSheet
from warlynx.models.turn import (
    CharacterContext,
    NextPlayer,
    RejectedAction,
    ResolvedTurn,
    TurnContext,
    TurnReport,
)
from warlynx.services.locks import GameLocks
from warlynx.services.narrator import NarrativeClient
from warlynx.services.notifier import Notifier
from warlynx.services.permissions import can_submit_action, enforce
from warlynx.services.sanitize import sanitize_action
from warlynx.services.sequencer import TurnSequencer
from warlynx.services.stats import StatResolutionEngine
from warlynx.services.validator import NarrativeResponseValidator

log = logging.getLogger(__name__)

T = TypeVar("T")

_CHOICE = re.compile(r"^\s*([A-Da-d])\s*$")


@dataclass
class RetryPolicy:
    """Exponential backoff for retryable collaborator failures.

    With the defaults the schedule is: try, wait 1s, try, wait 2s, try.
    ``sleep`` is injectable so tests never wait on real timers.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_backoff_multiplier,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return self.base_delay * self.multiplier ** (attempt - 1)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Await *operation* until it succeeds or attempts run out.

        Only ``NarrativeError`` is retried; anything else propagates at once.
        Exhaustion raises ``NarrativeGenerationFailed`` chained to the last
        failure.
        """
        last: Optional[NarrativeError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except NarrativeError as exc:
                last = exc
                log.warning("Narrative attempt %d/%d failed: %s",
                            attempt, self.max_attempts, exc)
                if attempt < self.max_attempts:
                    await self.sleep(self.delay(attempt))
        raise NarrativeGenerationFailed(
            f"Failed to generate turn narrative after {self.max_attempts} attempts: {last}",
            attempts=self.max_attempts,
        ) from last


TurnOutcome = Union[TurnReport, RejectedAction]


def _parse_action(action: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split a submission into ``(chosen_option, free_form_text)``."""
    if action is None or not action.strip():
        return None, None
    match = _CHOICE.match(action)
    if match:
        return match.group(1).upper(), None
    text = sanitize_action(action).text
    return None, text or None


def _contexts(session: GameSession) -> Dict[str, CharacterContext]:
    contexts = {}
    for player in session.players:
        c = player.character
        if c is None:
            continue
        contexts[c.id] = CharacterContext(
            id=c.id,
            name=c.name,
            user_id=c.user_id,
            display_name=player.display_name,
            description=c.description,
            power_sheet=c.power_sheet,
        )
    return contexts


class TurnOrchestrator:
    """Runs the turn pipeline with per-game mutual exclusion."""

    def __init__(
        self,
        store: GameStore,
        narrator: NarrativeClient,
        notifier: Notifier,
        *,
        stats: StatResolutionEngine | None = None,
        sequencer: TurnSequencer | None = None,
        validator: NarrativeResponseValidator | None = None,
        retry: RetryPolicy | None = None,
        recent_events_limit: int | None = None,
        locks: GameLocks | None = None,
    ):
        self._store = store
        self._narrator = narrator
        self._notifier = notifier
        self.locks = GameLocks() if locks is None else locks
        self._stats = stats or StatResolutionEngine(store)
        self._sequencer = sequencer or TurnSequencer(store, notifier, self.locks)
        self._validator = validator or NarrativeResponseValidator()
        self._retry = retry or RetryPolicy.from_settings()
        self._recent_limit = recent_events_limit or settings.recent_events_limit

    def is_resolving(self, game_id: str) -> bool:
        return self.locks.is_held(game_id)

    async def submit_action(
        self, game_id: str, user_id: str, action: Optional[str] = None
    ) -> TurnOutcome:
        """Resolve one turn for *user_id*, who must be the active player.

        *action* is either a choice letter ``A``-``D`` from the previous
        turn, free-form text, or ``None`` to simply continue the story.
        """
        async with self.locks.hold(game_id):
            return await self._resolve(game_id, user_id, action)

    # ── pipeline ────────────────────────────────────────────────────────

    async def _resolve(
        self, game_id: str, user_id: str, action: Optional[str]
    ) -> TurnOutcome:
        session = await self._store.load_game(game_id)
        enforce(can_submit_action(session, user_id))
        player = session.player(user_id)
        if player is None:
            raise InvalidGameState(
                f"Turn order of game {game_id} names {user_id}, who is not a player"
            )
        character = player.character
        if character is None:
            raise CharacterNotFound(f"Player {user_id} has no character in game {game_id}")
        if character.power_sheet.is_dead:
            raise CharacterDead(f"{character.name} is dead and cannot act")

        turn = await self._store.create_turn(game_id, user_id)
        log.info("Opened turn %s (#%d) for game %s, player %s",
                 turn.id, turn.turn_index, game_id, user_id)
        try:
            return await self._run_turn(session, character, turn, action)
        except Exception:
            await self._discard(turn, "pipeline failure")
            raise

    async def _run_turn(
        self,
        session: GameSession,
        character: Character,
        turn: Turn,
        action: Optional[str],
    ) -> TurnOutcome:
        game_id = session.id
        chosen_option, text = _parse_action(action)
        await self._store.set_turn_phase(turn.id, "resolving")

        characters = _contexts(session)
        context = TurnContext(
            game_id=game_id,
            turn_number=turn.turn_index,
            active_player_id=turn.active_player_id,
            active_character=characters[character.id],
            all_characters=list(characters.values()),
            recent_events=await self._store.recent_events(game_id, self._recent_limit),
            action=text,
            chosen_option=chosen_option,
        )

        try:
            result = await self._retry.run(lambda: self._narrate(context))
        except NarrativeGenerationFailed as exc:
            log.error("Turn %s for game %s failed terminally: %s", turn.id, game_id, exc)
            raise

        if isinstance(result, RejectedAction):
            log.info("Action rejected for game %s: %s", game_id, result.validation_error)
            await self._discard(turn, "action rejected")
            return result

        sheets = await self._apply(session, character, turn, result, chosen_option or text)
        next_player, game_over = await self._advance(game_id, turn)

        await self._store.set_turn_phase(turn.id, "completed")
        report = TurnReport(
            turn_id=turn.id,
            turn_index=turn.turn_index,
            narrative=result.narrative,
            choices=result.choices,
            stat_updates=[u for u in result.stat_updates if u.character_id in sheets],
            power_sheets=sheets,
            next_active_player=next_player,
            game_over=game_over,
        )
        await self._notifier.publish(
            game_id, "turn:resolved", report.model_dump(by_alias=True, mode="json")
        )
        log.info("Resolved turn %s for game %s (%d sheets updated, game_over=%s)",
                 turn.id, game_id, len(sheets), game_over)
        return report

    async def _narrate(self, context: TurnContext) -> Union[RejectedAction, ResolvedTurn]:
        raw = await self._narrator.request_turn(context)
        return self._validator.validate(raw, context)

    async def _apply(
        self,
        session: GameSession,
        character: Character,
        turn: Turn,
        result: ResolvedTurn,
        action_text: Optional[str],
    ) -> Dict[str, PowerSheet]:
        game_id = session.id
        by_id = {c.id: c for c in session.characters()}

        if action_text:
            await self._event(game_id, turn, "action",
                              f"{character.name} chose: {action_text}",
                              character.id, {"userId": turn.active_player_id})
        await self._event(
            game_id, turn, "narrative", result.narrative, character.id,
            {"choices": [c.model_dump(by_alias=True) for c in result.choices]},
        )

        sheets = await self._stats.process_batch(
            result.stat_updates, game_id, turn.id, known_character_ids=by_id
        )
        for cid, sheet in sheets.items():
            await self._record_sheet_change(game_id, turn, by_id[cid], sheet)

        explicit = self._stats.explicit_level_ids(result.stat_updates)
        for cid, sheet in list(sheets.items()):
            if cid in explicit or sheet.is_dead:
                continue
            if not await self._stats.should_level_up(cid, game_id):
                continue
            leveled = await self._level_up(game_id, turn, by_id[cid], sheet)
            if leveled is not None:
                sheets[cid] = leveled
        return sheets

    async def _record_sheet_change(
        self, game_id: str, turn: Turn, before: Character, sheet: PowerSheet
    ) -> None:
        name = before.name
        await self._event(
            game_id, turn, "stat_change", f"{name}'s stats updated", before.id,
            {"hp": sheet.hp, "maxHp": sheet.max_hp, "level": sheet.level},
        )
        await self._notifier.publish(
            game_id,
            "stats:updated",
            {"characterId": before.id, "powerSheet": sheet.model_dump(by_alias=True, mode="json")},
        )
        if sheet.is_dead and not before.power_sheet.is_dead:
            await self._event(game_id, turn, "death", f"{name} has died!", before.id)
            log.info("Character %s (%s) died in game %s", name, before.id, game_id)
        if sheet.level > before.power_sheet.level:
            await self._event(game_id, turn, "level_up",
                              f"{name} leveled up to level {sheet.level}!", before.id,
                              {"level": sheet.level})

    async def _level_up(
        self, game_id: str, turn: Turn, character: Character, sheet: PowerSheet
    ) -> Optional[PowerSheet]:
        new_level = sheet.level + 1
        try:
            perk = await self._narrator.request_perk(character.name, sheet, new_level)
        except NarrativeError as exc:
            log.warning("Skipping level-up for %s: perk generation failed: %s",
                        character.id, exc)
            return None
        leveled = await self._stats.apply_level_up(
            character.id, new_level, perk, game_id, turn.id
        )
        await self._event(
            game_id, turn, "level_up",
            f"{character.name} leveled up to level {new_level}!", character.id,
            {"level": new_level, "perk": perk.model_dump(by_alias=True)},
        )
        await self._notifier.publish(
            game_id,
            "stats:updated",
            {"characterId": character.id, "powerSheet": leveled.model_dump(by_alias=True, mode="json")},
        )
        return leveled

    async def _advance(self, game_id: str, turn: Turn) -> Tuple[Optional[NextPlayer], bool]:
        try:
            _, player_id = await self._sequencer.advance(game_id)
        except NoAlivePlayers:
            await self._store.set_status(game_id, "ended")
            await self._event(game_id, turn, "game_over",
                              "All characters have fallen. The game is over.")
            await self._notifier.publish(
                game_id, "game:ended", {"reason": NoAlivePlayers.code, "turnId": turn.id}
            )
            log.info("Game %s ended: no alive players", game_id)
            return None, True

        session = await self._store.require_game(game_id)
        player = session.player(player_id)
        character = player.character if player else None
        return NextPlayer(
            user_id=player_id,
            display_name=player.display_name if player else "",
            character_id=character.id if character else None,
            character_name=character.name if character else None,
        ), False

    # ── helpers ─────────────────────────────────────────────────────────

    async def _event(
        self,
        game_id: str,
        turn: Turn,
        type_: str,
        content: str,
        character_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        await self._store.add_event(
            GameEvent(
                game_id=game_id,
                type=type_,
                content=content,
                character_id=character_id,
                turn_id=turn.id,
                metadata=metadata or {},
            )
        )

    async def _discard(self, turn: Turn, reason: str) -> None:
        await self._store.delete_turns([turn.id])
        log.info("Discarded turn %s for game %s (%s)", turn.id, turn.game_id, reason)
