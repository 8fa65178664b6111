"""Turn resolution models, the typed side of the collaborator boundary.

The narrative collaborator returns loosely shaped JSON.  The validator
decodes it into exactly one of two closed variants:

    RejectedAction  : the collaborator judged a free-form action illegal
    ResolvedTurn    : narrative + four choices + stat updates

Nothing downstream of the validator ever looks at raw payload data.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional, Union

from pydantic import Field

from warlynx.models.game import GameEvent
from warlynx.models.power_sheet import Perk, PowerSheet, Status, WireModel

RiskLevel = Literal["low", "medium", "high", "extreme"]
ChoiceLabel = Literal["A", "B", "C", "D"]

CHOICE_LABELS: tuple[str, ...] = ("A", "B", "C", "D")
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high", "extreme")


class Choice(WireModel):
    label: ChoiceLabel
    description: str
    risk_level: RiskLevel


class StatChanges(WireModel):
    """Optional per-field deltas.  ``None`` means "leave untouched"."""

    hp: Optional[int] = Field(default=None, description="Signed HP delta")
    level: Optional[int] = Field(default=None, description="Absolute new level")
    attributes: Optional[Dict[str, int]] = None
    statuses: Optional[List[Status]] = None
    new_perks: Optional[List[Perk]] = None


class StatUpdate(WireModel):
    character_id: str
    changes: StatChanges = Field(default_factory=StatChanges)


class RejectedAction(WireModel):
    kind: Literal["rejected"] = "rejected"
    validation_error: str


class ResolvedTurn(WireModel):
    kind: Literal["resolved"] = "resolved"
    narrative: str
    choices: List[Choice]
    stat_updates: List[StatUpdate] = Field(default_factory=list)


NarrativeResult = Union[RejectedAction, ResolvedTurn]


# ─── Collaborator context ───────────────────────────────────────────────


class CharacterContext(WireModel):
    id: str
    name: str
    user_id: str
    display_name: str = ""
    description: str = ""
    power_sheet: PowerSheet


class TurnContext(WireModel):
    """Everything the narrative collaborator is told about the turn."""

    game_id: str
    turn_number: int
    active_player_id: str
    active_character: CharacterContext
    all_characters: List[CharacterContext] = Field(default_factory=list)
    recent_events: List[GameEvent] = Field(default_factory=list)
    action: Optional[str] = Field(
        default=None, description="Sanitized free-form action text"
    )
    chosen_option: Optional[ChoiceLabel] = None


# ─── Orchestrator output ────────────────────────────────────────────────


class NextPlayer(WireModel):
    user_id: str
    display_name: str = ""
    character_id: Optional[str] = None
    character_name: Optional[str] = None


class TurnReport(WireModel):
    """Result of a successfully resolved turn."""

    kind: Literal["resolved"] = "resolved"
    turn_id: str
    turn_index: int
    narrative: str
    choices: List[Choice]
    stat_updates: List[StatUpdate] = Field(default_factory=list)
    power_sheets: Dict[str, PowerSheet] = Field(default_factory=dict)
    next_active_player: Optional[NextPlayer] = None
    game_over: bool = False
