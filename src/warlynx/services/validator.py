"""Boundary validation for the narrative collaborator's turn payload.

The collaborator is unreliable rather than hostile, so validation is
strict about *structure* and narrow about *repair*:

- structure (types, exactly four A-D choices, risk levels) is enforced
  and any violation raises ``NarrativeValidationError``;
- the one repair performed is mapping a character *name* used where an id
  was expected back to that character's id (exact, case-insensitive);
- semantic problems such as an unknown character id are left for the
  stat engine to skip.

Expected payload (camelCase, as the collaborator is instructed)::

    {"valid": true, "narrative": "...",
     "choices": [{"label": "A", "description": "...", "riskLevel": "low"}, ...],
     "statUpdates": [{"characterId": "c...", "changes": {"hp": -10}}],
     "validationError": null}
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from warlynx.errors import NarrativeValidationError
from warlynx.models.power_sheet import ATTRIBUTE_NAMES, Perk, Status
from warlynx.models.turn import (
    CHOICE_LABELS,
    RISK_LEVELS,
    CharacterContext,
    Choice,
    NarrativeResult,
    RejectedAction,
    ResolvedTurn,
    StatChanges,
    StatUpdate,
    TurnContext,
)

log = logging.getLogger(__name__)

CHARACTER_ID_PATTERN = re.compile(r"^c[a-z0-9]{20,}$", re.IGNORECASE)


def _fail(message: str) -> NarrativeValidationError:
    return NarrativeValidationError(f"Invalid response: {message}")


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _number(value: Any, where: str) -> int:
    # bool is an int subclass; JSON true/false is never a valid number here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _fail(f"{where} must be a number, got {type(value).__name__}")
    if isinstance(value, float) and not math.isfinite(value):
        raise _fail(f"{where} must be finite")
    return int(value)


def _optional_str(entry: Mapping[str, Any], key: str, where: str) -> str:
    value = entry.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _fail(f"{where}.{key} must be a string")
    return value


class NarrativeResponseValidator:
    """Decode an untrusted collaborator payload into a ``NarrativeResult``."""

    def validate(
        self, raw: Any, context: Optional[TurnContext] = None
    ) -> NarrativeResult:
        if not isinstance(raw, Mapping):
            raise _fail("payload must be a JSON object")

        if raw.get("valid") is False:
            reason = raw.get("validationError")
            if not _non_empty_str(reason):
                raise _fail("missing validationError for invalid action")
            return RejectedAction(validation_error=reason)

        narrative = raw.get("narrative")
        if not _non_empty_str(narrative):
            raise _fail("missing or invalid narrative")

        choices = self._choices(raw.get("choices"))

        raw_updates = raw.get("statUpdates")
        if not isinstance(raw_updates, list):
            raise _fail("statUpdates must be an array")
        updates = [self._stat_update(u, i) for i, u in enumerate(raw_updates)]

        if context is not None:
            updates = repair_character_ids(updates, context.all_characters)

        return ResolvedTurn(narrative=narrative, choices=choices, stat_updates=updates)

    # ── choices ─────────────────────────────────────────────────────────

    def _choices(self, raw: Any) -> List[Choice]:
        if not isinstance(raw, list):
            raise _fail("choices must be an array")
        if len(raw) != len(CHOICE_LABELS):
            raise _fail(
                f"must have exactly {len(CHOICE_LABELS)} choices, got {len(raw)}"
            )
        choices = []
        for index, (entry, expected) in enumerate(zip(raw, CHOICE_LABELS)):
            if not isinstance(entry, Mapping):
                raise _fail(f"choice at index {index} must be an object")
            label = entry.get("label")
            if label != expected:
                raise _fail(
                    f"invalid choice label at index {index}: "
                    f"expected {expected}, got {label!r}"
                )
            if not _non_empty_str(entry.get("description")):
                raise _fail(f"invalid choice description at index {index}")
            risk = entry.get("riskLevel")
            if risk not in RISK_LEVELS:
                raise _fail(
                    f"invalid risk level at index {index}: "
                    f"must be one of {', '.join(RISK_LEVELS)}"
                )
            choices.append(
                Choice(label=label, description=entry["description"], risk_level=risk)
            )
        return choices

    # ── stat updates ────────────────────────────────────────────────────

    def _stat_update(self, raw: Any, index: int) -> StatUpdate:
        where = f"statUpdates[{index}]"
        if not isinstance(raw, Mapping):
            raise _fail(f"{where} must be an object")
        character_id = raw.get("characterId")
        if not _non_empty_str(character_id):
            raise _fail(f"invalid characterId in stat update at index {index}")
        changes = raw.get("changes")
        if not isinstance(changes, Mapping):
            raise _fail(f"invalid changes object in stat update at index {index}")

        decoded: Dict[str, Any] = {}
        if changes.get("hp") is not None:
            decoded["hp"] = _number(changes["hp"], f"{where}.changes.hp")
        if changes.get("level") is not None:
            decoded["level"] = _number(changes["level"], f"{where}.changes.level")
        if changes.get("attributes") is not None:
            decoded["attributes"] = self._attributes(
                changes["attributes"], f"{where}.changes.attributes"
            )
        if changes.get("statuses") is not None:
            decoded["statuses"] = self._statuses(
                changes["statuses"], f"{where}.changes.statuses"
            )
        if changes.get("newPerks") is not None:
            decoded["new_perks"] = self._perks(
                changes["newPerks"], f"{where}.changes.newPerks"
            )
        return StatUpdate(character_id=character_id, changes=StatChanges(**decoded))

    def _attributes(self, raw: Any, where: str) -> Dict[str, int]:
        if not isinstance(raw, Mapping):
            raise _fail(f"{where} must be an object")
        result = {}
        for name, value in raw.items():
            amount = _number(value, f"{where}.{name}")
            if name not in ATTRIBUTE_NAMES:
                log.warning("Dropping unknown attribute %r in %s", name, where)
                continue
            result[name] = amount
        return result

    def _statuses(self, raw: Any, where: str) -> List[Status]:
        if not isinstance(raw, list):
            raise _fail(f"{where} must be an array")
        statuses = []
        for i, entry in enumerate(raw):
            item = f"{where}[{i}]"
            if not isinstance(entry, Mapping) or not _non_empty_str(entry.get("name")):
                raise _fail(f"{item} must be an object with a name")
            duration = entry.get("duration")
            statuses.append(
                Status(
                    name=entry["name"],
                    description=_optional_str(entry, "description", item),
                    effect=_optional_str(entry, "effect", item),
                    duration=1 if duration is None else _number(duration, f"{item}.duration"),
                )
            )
        return statuses

    def _perks(self, raw: Any, where: str) -> List[Perk]:
        if not isinstance(raw, list):
            raise _fail(f"{where} must be an array")
        perks = []
        for i, entry in enumerate(raw):
            item = f"{where}[{i}]"
            if not isinstance(entry, Mapping) or not _non_empty_str(entry.get("name")):
                raise _fail(f"{item} must be an object with a name")
            unlocked = entry.get("unlockedAt")
            perks.append(
                Perk(
                    name=entry["name"],
                    description=_optional_str(entry, "description", item),
                    unlocked_at=None if unlocked is None else _number(unlocked, f"{item}.unlockedAt"),
                )
            )
        return perks


def repair_character_ids(
    updates: List[StatUpdate], characters: Sequence[CharacterContext]
) -> List[StatUpdate]:
    """Rewrite updates that name a character instead of giving its id.

    Only ids that neither look like an id nor match a known one are
    considered, and only an exact case-insensitive name match (unique among
    the session's characters) is accepted.  Everything else passes through
    untouched; the stat engine drops references it cannot resolve.
    """
    known_ids = {c.id for c in characters}
    by_name: Dict[str, List[str]] = {}
    for c in characters:
        by_name.setdefault(c.name.lower(), []).append(c.id)

    repaired = []
    for update in updates:
        cid = update.character_id
        if cid in known_ids or CHARACTER_ID_PATTERN.match(cid):
            repaired.append(update)
            continue
        matches = by_name.get(cid.lower(), [])
        if len(matches) == 1:
            log.warning(
                "Collaborator used character name %r instead of id; "
                "auto-correcting to %r", cid, matches[0],
            )
            repaired.append(update.model_copy(update={"character_id": matches[0]}))
        else:
            log.warning(
                "Could not resolve character reference %r (matches=%d). "
                "Available characters: %s",
                cid, len(matches), ", ".join(c.name for c in characters),
            )
            repaired.append(update)
    return repaired
