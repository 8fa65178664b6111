"""Read-side queries over StatsSnapshots: history, diffs, progression."""

from __future__ import annotations

from typing import Dict, List, Optional

from warlynx.db.store import GameStore
from warlynx.models.power_sheet import ATTRIBUTE_NAMES
from warlynx.models.snapshot import ProgressionSummary, StatsDiff, StatsSnapshot

DEFAULT_HISTORY_LIMIT = 50


def compare_snapshots(old: StatsSnapshot, new: StatsSnapshot) -> StatsDiff:
    """Field-by-field difference ``new - old``; statuses and perks by name."""
    old_attrs = old.attributes.model_dump()
    new_attrs = new.attributes.model_dump()
    old_statuses = {s.name for s in old.statuses}
    new_statuses = {s.name for s in new.statuses}
    old_perks = {p.name for p in old.perks}
    return StatsDiff(
        level=new.level - old.level,
        hp=new.hp - old.hp,
        max_hp=new.max_hp - old.max_hp,
        attributes={name: new_attrs[name] - old_attrs[name] for name in ATTRIBUTE_NAMES},
        statuses_added=[s.name for s in new.statuses if s.name not in old_statuses],
        statuses_removed=[s.name for s in old.statuses if s.name not in new_statuses],
        perks_added=[p.name for p in new.perks if p.name not in old_perks],
    )


class StatsTracker:
    def __init__(self, store: GameStore):
        self._store = store

    async def character_history(
        self, character_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[StatsSnapshot]:
        """Most recent snapshots first."""
        return await self._store.list_snapshots(
            character_id=character_id, newest_first=True, limit=limit
        )

    async def snapshot_for_turn(
        self, character_id: str, turn_id: str
    ) -> Optional[StatsSnapshot]:
        """The last snapshot a turn wrote for a character (a turn may write several)."""
        snapshots = await self._store.list_snapshots(
            character_id=character_id, turn_id=turn_id, newest_first=True, limit=1
        )
        return snapshots[0] if snapshots else None

    async def latest_snapshot(self, character_id: str) -> Optional[StatsSnapshot]:
        snapshots = await self.character_history(character_id, limit=1)
        return snapshots[0] if snapshots else None

    async def diff_for_turn(self, character_id: str, turn_id: str) -> Optional[StatsDiff]:
        """What a turn changed: its last snapshot against the one before the turn."""
        snapshots = await self._store.list_snapshots(character_id=character_id)
        positions = [i for i, s in enumerate(snapshots) if s.turn_id == turn_id]
        if not positions or positions[0] == 0:
            return None
        return compare_snapshots(snapshots[positions[0] - 1], snapshots[positions[-1]])

    async def progression_summary(self, character_id: str) -> ProgressionSummary:
        snapshots = await self._store.list_snapshots(character_id=character_id)
        if not snapshots:
            return ProgressionSummary()
        first, latest = snapshots[0], snapshots[-1]
        return ProgressionSummary(
            total_snapshots=len(snapshots),
            first_snapshot=first,
            latest_snapshot=latest,
            total_levels_gained=latest.level - first.level,
            total_perks_unlocked=len(latest.perks) - len(first.perks),
        )

    async def game_history(self, game_id: str) -> Dict[str, List[StatsSnapshot]]:
        """Every snapshot in a game, oldest first, grouped by character."""
        grouped: Dict[str, List[StatsSnapshot]] = {}
        for snapshot in await self._store.list_snapshots(game_id=game_id):
            grouped.setdefault(snapshot.character_id, []).append(snapshot)
        return grouped
