from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from warlynx.models.power_sheet import PowerSheet, WireModel

GameStatus = Literal["lobby", "active", "ended"]
PlayerRole = Literal["host", "member"]
TurnPhase = Literal["pending", "resolving", "completed"]
EventType = Literal[
    "action", "narrative", "stat_change", "death", "level_up", "game_over"
]

IN_FLIGHT_PHASES = ("pending", "resolving")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Character(WireModel):
    id: str
    name: str
    user_id: str
    game_id: Optional[str] = None
    description: str = ""
    power_sheet: PowerSheet


class Player(WireModel):
    user_id: str
    display_name: str = ""
    role: PlayerRole = "member"
    character: Optional[Character] = None


class GameSession(WireModel):
    """The session aggregate handed to sequencer and permission checks."""

    id: str
    name: str = ""
    host_id: str
    status: GameStatus = "lobby"
    max_players: int = 6
    turn_order: List[str] = Field(default_factory=list)
    current_turn_index: int = 0
    players: List[Player] = Field(default_factory=list)

    def player(self, user_id: str) -> Optional[Player]:
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def characters(self) -> List[Character]:
        return [p.character for p in self.players if p.character is not None]

    def character_ids(self) -> set[str]:
        return {c.id for c in self.characters()}


class Turn(WireModel):
    id: str
    game_id: str
    turn_index: int
    active_player_id: str
    phase: TurnPhase = "pending"
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class GameEvent(WireModel):
    """Append-only log entry for a session."""

    id: Optional[int] = None
    game_id: str
    type: EventType
    content: str
    character_id: Optional[str] = None
    turn_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
