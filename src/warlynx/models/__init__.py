from warlynx.models.power_sheet import (
    ATTRIBUTE_NAMES,
    Ability,
    Attributes,
    Perk,
    PowerSheet,
    Status,
)
from warlynx.models.game import Character, GameEvent, GameSession, Player, Turn
from warlynx.models.turn import (
    CharacterContext,
    Choice,
    NarrativeResult,
    NextPlayer,
    RejectedAction,
    ResolvedTurn,
    StatChanges,
    StatUpdate,
    TurnContext,
    TurnReport,
)
from warlynx.models.snapshot import ProgressionSummary, StatsDiff, StatsSnapshot

__all__ = [
    "ATTRIBUTE_NAMES",
    "Ability",
    "Attributes",
    "Perk",
    "PowerSheet",
    "Status",
    "Character",
    "GameEvent",
    "GameSession",
    "Player",
    "Turn",
    "CharacterContext",
    "Choice",
    "NarrativeResult",
    "NextPlayer",
    "RejectedAction",
    "ResolvedTurn",
    "StatChanges",
    "StatUpdate",
    "TurnContext",
    "TurnReport",
    "ProgressionSummary",
    "StatsDiff",
    "StatsSnapshot",
]
