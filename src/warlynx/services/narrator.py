"""Client for the narrative collaborator (the LLM "dungeon master").

Renders prompts from a ``TurnContext`` and returns the collaborator's raw
JSON value.  Validation of that value is the validator's job; this module
only turns transport failures into typed ``NarrativeError``s.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from warlynx.config import settings
from warlynx.errors import NarrativeTimeout, NarrativeUnavailable
from warlynx.llm.base import LLMProvider
from warlynx.models.power_sheet import Perk, PowerSheet
from warlynx.models.turn import CharacterContext, TurnContext
from warlynx.prompts.loader import PromptLoader

log = logging.getLogger(__name__)

_CATEGORY = "dungeon_master"
_RULE = "━" * 40


def difficulty_for_turn(turn_number: int) -> str:
    if turn_number <= 10:
        return ("- EARLY GAME: Easier encounters, focus on learning and "
                "exploration. Enemies should be manageable.")
    if turn_number <= 30:
        return ("- MID GAME: Moderate challenge, strategic depth required. "
                "Enemies are competent and dangerous.")
    return ("- LATE GAME: DEADLY encounters, high stakes. One mistake can "
            "be fatal.")


def _character_block(character: CharacterContext) -> str:
    dead = " [DEAD]" if character.power_sheet.is_dead else ""
    return "\n".join([
        _RULE,
        f"CHARACTER: {character.name} ({character.display_name}){dead}",
        f'USE THIS ID IN statUpdates: "{character.id}"',
        _RULE,
        character.power_sheet.to_prompt_text(),
    ])


class NarrativeClient:
    """Asks an ``LLMProvider`` for turn narration and level-up perks."""

    def __init__(
        self,
        llm: LLMProvider,
        prompts: PromptLoader | None = None,
        timeout: float | None = None,
        perk_llm: LLMProvider | None = None,
    ):
        self._llm = llm
        self._perk_llm = perk_llm or llm
        self._prompts = prompts or PromptLoader()
        self._timeout = timeout if timeout is not None else settings.narrative_timeout_seconds

    # ── prompt rendering ────────────────────────────────────────────────

    def render_turn_prompt(self, context: TurnContext) -> str:
        active = context.active_character
        if context.chosen_option:
            action_block = self._prompts.render(
                _CATEGORY, "CHOSEN_OPTION", label=context.chosen_option
            )
        elif context.action:
            action_block = self._prompts.render(
                _CATEGORY, "CUSTOM_ACTION", action=context.action
            )
        else:
            action_block = self._prompts.load(_CATEGORY, "NEXT_TURN")

        if context.recent_events:
            recent = "\n".join(f"[{e.type}] {e.content}" for e in context.recent_events)
        else:
            recent = "No previous events - this is the beginning of the adventure."

        return self._prompts.render(
            _CATEGORY,
            "TURN_NARRATOR",
            turn_number=context.turn_number,
            difficulty=difficulty_for_turn(context.turn_number),
            active_display_name=active.display_name or context.active_player_id,
            active_character_name=active.name,
            active_character_description=active.description or "(none)",
            active_power_sheet=active.power_sheet.to_prompt_text(),
            all_characters="\n\n".join(_character_block(c) for c in context.all_characters),
            recent_events=recent,
            action_block=action_block,
        )

    def render_perk_prompt(self, character_name: str, sheet: PowerSheet, new_level: int) -> str:
        abilities = "\n".join(f"- {a.name}: {a.description}" for a in sheet.abilities)
        perks = "\n".join(f"- {p.name}: {p.description}" for p in sheet.perks)
        return self._prompts.render(
            _CATEGORY,
            "PERK_GENERATOR",
            character_name=character_name,
            new_level=new_level,
            abilities=abilities or "None",
            perks=perks or "None yet",
            weakness=sheet.weakness,
        )

    # ── collaborator calls ──────────────────────────────────────────────

    async def _bounded(self, call, what: str):
        try:
            return await asyncio.wait_for(call, self._timeout)
        except asyncio.TimeoutError as exc:
            raise NarrativeTimeout(
                f"{what} timed out after {self._timeout:.0f}s"
            ) from exc
        except Exception as exc:
            log.error("%s failed: %s", what, exc)
            raise NarrativeUnavailable(f"{what} failed: {exc}") from exc

    async def request_turn(self, context: TurnContext) -> Any:
        """Return the collaborator's raw (unvalidated) JSON for this turn."""
        system = self._prompts.load(_CATEGORY, "NARRATOR_SYSTEM")
        user = self.render_turn_prompt(context)
        log.info("Requesting narration for game %s turn %d (prompt_len=%d)",
                 context.game_id, context.turn_number, len(user))
        return await self._bounded(
            self._llm.complete_json(system, user, max_tokens=3000),
            "Turn narration",
        )

    async def request_perk(
        self, character_name: str, sheet: PowerSheet, new_level: int
    ) -> Perk:
        """Ask for a level-up perk; ``unlocked_at`` is pinned to *new_level*."""
        system = self._prompts.load(_CATEGORY, "PERK_SYSTEM")
        user = self.render_perk_prompt(character_name, sheet, new_level)
        perk = await self._bounded(
            self._perk_llm.complete_structured(
                system,
                user,
                Perk,
                temperature=settings.default_fast_temperature,
                max_tokens=300,
            ),
            "Perk generation",
        )
        if perk.unlocked_at not in (None, new_level):
            log.warning("Perk %r claimed unlockedAt=%s, pinning to %d",
                        perk.name, perk.unlocked_at, new_level)
        return perk.model_copy(update={"unlocked_at": new_level})
