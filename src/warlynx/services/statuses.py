"""Status effect merging/decay and perk accumulation.

Pure functions: no storage, no logging.  The stat resolution engine calls
``merge_statuses`` then ``tick_statuses`` exactly once per applied update.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from warlynx.models.power_sheet import Perk, Status


def merge_statuses(current: List[Status], incoming: Iterable[Status]) -> List[Status]:
    """Merge *incoming* into *current*, keyed by status name.

    A status already present keeps its description/effect and takes the
    longer of the two durations (refresh, never stack).  New names are
    appended in arrival order.  Existing order is preserved.
    """
    merged: dict[str, Status] = {s.name: s for s in current}
    for status in incoming:
        existing = merged.get(status.name)
        if existing is None:
            merged[status.name] = status
        else:
            merged[status.name] = existing.model_copy(
                update={"duration": max(existing.duration, status.duration)}
            )
    return list(merged.values())


def tick_statuses(statuses: List[Status]) -> List[Status]:
    """Decrement every duration by one turn and drop expired statuses."""
    ticked = [s.model_copy(update={"duration": s.duration - 1}) for s in statuses]
    return [s for s in ticked if s.duration > 0]


def append_perks(
    current: List[Perk], new: Iterable[Perk], level: Optional[int] = None
) -> List[Perk]:
    """Append *new* perks verbatim.

    Perks arriving without ``unlocked_at`` are stamped with *level*.
    No de-duplication: perk names are unique by construction upstream.
    """
    added = [
        p if p.unlocked_at is not None or level is None
        else p.model_copy(update={"unlocked_at": level})
        for p in new
    ]
    return [*current, *added]
