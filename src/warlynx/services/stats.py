"""Stat resolution: applies validated stat deltas to Power Sheets.

Resolution order for a single update:

    hp delta → level (scales max_hp by 10/level) → attributes (shallow
    merge) → statuses (merge, then tick every status once) → perks

Each successful apply persists the sheet and writes one StatsSnapshot in
the same transaction.  Batches tolerate per-character failures: one bad
reference from the collaborator never aborts the rest of the turn.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from warlynx.config import settings
from warlynx.db.store import GameStore
from warlynx.errors import GameNotFound
from warlynx.models.power_sheet import (
    ATTRIBUTE_MAX,
    ATTRIBUTE_MIN,
    ATTRIBUTE_NAMES,
    Attributes,
    Perk,
    PowerSheet,
)
from warlynx.models.turn import StatChanges, StatUpdate
from warlynx.services.statuses import append_perks, merge_statuses, tick_statuses

log = logging.getLogger(__name__)

HP_PER_LEVEL = 10
LEVEL_EVENT_TYPES = ("action", "stat_change")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def resolve_changes(
    sheet: PowerSheet, changes: StatChanges, *, tick: bool = True
) -> PowerSheet:
    """Return a new sheet with *changes* applied.  Does not touch storage."""
    hp = sheet.hp
    max_hp = sheet.max_hp
    level = sheet.level

    if changes.hp is not None:
        hp = _clamp(hp + changes.hp, 0, max_hp)

    if changes.level is not None:
        level = max(1, changes.level)
        increase = HP_PER_LEVEL * (level - sheet.level)
        max_hp = max(1, sheet.max_hp + increase)
        # the dead stay dead; a level change never restores hp from 0
        hp = _clamp(hp + increase, 0, max_hp) if hp > 0 else 0

    attributes = sheet.attributes
    if changes.attributes:
        merged = attributes.model_dump()
        for name, value in changes.attributes.items():
            if name in ATTRIBUTE_NAMES:
                merged[name] = _clamp(int(value), ATTRIBUTE_MIN, ATTRIBUTE_MAX)
        attributes = Attributes(**merged)

    statuses = sheet.statuses
    if changes.statuses:
        statuses = merge_statuses(statuses, changes.statuses)
    if tick:
        statuses = tick_statuses(statuses)
    else:
        statuses = [s for s in statuses if s.duration > 0]

    perks = sheet.perks
    if changes.new_perks:
        perks = append_perks(perks, changes.new_perks, level=level)

    return sheet.model_copy(
        update={
            "hp": hp,
            "max_hp": max_hp,
            "level": level,
            "attributes": attributes,
            "statuses": statuses,
            "perks": perks,
        }
    )


class StatResolutionEngine:
    """Applies stat updates, writes snapshots, and advises on level-ups."""

    def __init__(self, store: GameStore, level_up_frequency: int | None = None):
        self._store = store
        self._frequency = level_up_frequency or settings.level_up_frequency

    async def apply_stat_update(
        self,
        character_id: str,
        update: StatUpdate,
        game_id: str,
        turn_id: str,
        *,
        tick: bool = True,
    ) -> PowerSheet:
        """Apply one update to one character.

        Raises ``CharacterNotFound`` when the character does not exist;
        callers are expected to have filtered against the session first.
        """
        sheet = await self._store.update_power_sheet(
            character_id,
            lambda current: resolve_changes(current, update.changes, tick=tick),
            game_id=game_id,
            turn_id=turn_id,
        )
        log.info(
            "Applied stat update: character=%s, hp=%d/%d, level=%d, statuses=%d",
            character_id, sheet.hp, sheet.max_hp, sheet.level, len(sheet.statuses),
        )
        return sheet

    async def apply_level_up(
        self,
        character_id: str,
        new_level: int,
        perk: Perk,
        game_id: str,
        turn_id: str,
    ) -> PowerSheet:
        """Raise a character's level and grant *perk*.

        Statuses are not ticked: the turn's batch already did that.
        """
        update = StatUpdate(
            character_id=character_id,
            changes=StatChanges(level=new_level, new_perks=[perk]),
        )
        return await self.apply_stat_update(
            character_id, update, game_id, turn_id, tick=False
        )

    async def should_level_up(self, character_id: str, game_id: str) -> bool:
        """Advisory check: has the character earned a level from activity?

        Expected level is ``event_count // frequency + 1`` counting the
        character's action and stat_change events in this session.
        """
        character = await self._store.get_character(character_id)
        if character is None:
            return False
        count = await self._store.count_events(game_id, character_id, LEVEL_EVENT_TYPES)
        expected = count // self._frequency + 1
        return expected > character.power_sheet.level

    async def process_batch(
        self,
        updates: Iterable[StatUpdate],
        game_id: str,
        turn_id: str,
        known_character_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, PowerSheet]:
        """Apply every update independently; failures are logged and skipped.

        Updates naming characters outside the session are skipped with a
        warning.  When one character receives several updates in a batch,
        only the first one ticks its statuses.
        """
        if known_character_ids is None:
            game = await self._store.load_game(game_id)
            if game is None:
                raise GameNotFound(f"No game with id '{game_id}'")
            known = game.character_ids()
        else:
            known = set(known_character_ids)

        results: Dict[str, PowerSheet] = {}
        ticked: set[str] = set()
        for update in updates:
            cid = update.character_id
            if cid not in known:
                log.warning(
                    "Skipping stat update for character %r not in game %s", cid, game_id
                )
                continue
            try:
                results[cid] = await self.apply_stat_update(
                    cid, update, game_id, turn_id, tick=cid not in ticked
                )
                ticked.add(cid)
            except Exception as exc:
                log.error("Failed to apply stat update for character %s: %s", cid, exc)
        return results

    @staticmethod
    def explicit_level_ids(updates: List[StatUpdate]) -> set[str]:
        """Characters whose update already carries an explicit level."""
        return {u.character_id for u in updates if u.changes.level is not None}
