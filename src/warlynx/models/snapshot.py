from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from warlynx.models.power_sheet import Attributes, Perk, Status, WireModel


class StatsSnapshot(WireModel):
    """Immutable point-in-time copy of a character's progression stats."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    game_id: str
    character_id: str
    turn_id: str
    level: int
    hp: int
    max_hp: int
    attributes: Attributes
    statuses: List[Status] = Field(default_factory=list)
    perks: List[Perk] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StatsDiff(WireModel):
    level: int
    hp: int
    max_hp: int
    attributes: Dict[str, int]
    statuses_added: List[str] = Field(default_factory=list)
    statuses_removed: List[str] = Field(default_factory=list)
    perks_added: List[str] = Field(default_factory=list)


class ProgressionSummary(WireModel):
    total_snapshots: int = 0
    first_snapshot: Optional[StatsSnapshot] = None
    latest_snapshot: Optional[StatsSnapshot] = None
    total_levels_gained: int = 0
    total_perks_unlocked: int = 0
