from __future__ import annotations

from warlynx.models.power_sheet import Perk, Status
from warlynx.services.statuses import append_perks, merge_statuses, tick_statuses


def _status(name: str, duration: int) -> Status:
    return Status(name=name, description=f"{name} effect", duration=duration)


class TestMergeStatuses:
    def test_empty_incoming_is_identity(self) -> None:
        current = [_status("Burning", 2), _status("Hasted", 1)]
        assert merge_statuses(current, []) == current

    def test_same_name_takes_longer_duration(self) -> None:
        merged = merge_statuses([_status("Burning", 2)], [_status("Burning", 5)])
        assert [(s.name, s.duration) for s in merged] == [("Burning", 5)]

        merged = merge_statuses([_status("Burning", 4)], [_status("Burning", 1)])
        assert merged[0].duration == 4

    def test_refresh_keeps_existing_description(self) -> None:
        existing = Status(name="Poisoned", description="old", duration=1)
        incoming = Status(name="Poisoned", description="new", duration=3)
        assert merge_statuses([existing], [incoming])[0].description == "old"

    def test_new_names_appended_in_order(self) -> None:
        merged = merge_statuses(
            [_status("A", 1), _status("B", 1)], [_status("C", 2), _status("A", 3)]
        )
        assert [s.name for s in merged] == ["A", "B", "C"]


class TestTickStatuses:
    def test_decrements_and_expires(self) -> None:
        ticked = tick_statuses([_status("Short", 1), _status("Long", 3)])
        assert [(s.name, s.duration) for s in ticked] == [("Long", 2)]

    def test_merge_then_tick_removes_one_turn_status(self) -> None:
        merged = merge_statuses([], [_status("Stunned", 1)])
        assert [s.name for s in merged] == ["Stunned"]
        assert tick_statuses(merged) == []


class TestAppendPerks:
    def test_appends_verbatim(self) -> None:
        old = [Perk(name="Iron Skin", unlocked_at=2)]
        new = [Perk(name="Quick Step", unlocked_at=3)]
        assert append_perks(old, new) == old + new

    def test_stamps_missing_unlock_level(self) -> None:
        result = append_perks([], [Perk(name="Keen Eye")], level=4)
        assert result[0].unlocked_at == 4
