from __future__ import annotations

import copy
import logging

import pytest

from tests.conftest import make_sheet, turn_payload
from warlynx.errors import NarrativeValidationError
from warlynx.models.turn import (
    CharacterContext,
    RejectedAction,
    ResolvedTurn,
    TurnContext,
)
from warlynx.services.validator import NarrativeResponseValidator


def _context(*characters: tuple) -> TurnContext:
    contexts = [
        CharacterContext(id=cid, name=name, user_id=f"u-{cid}", power_sheet=make_sheet())
        for cid, name in characters
    ]
    return TurnContext(
        game_id="g1", turn_number=1, active_player_id=contexts[0].user_id,
        active_character=contexts[0], all_characters=contexts,
    )


@pytest.fixture
def validator() -> NarrativeResponseValidator:
    return NarrativeResponseValidator()


class TestStructure:
    def test_valid_payload(self, validator) -> None:
        payload = turn_payload([{"characterId": "c123", "changes": {"hp": -10}}])
        result = validator.validate(payload)
        assert isinstance(result, ResolvedTurn)
        assert [c.label for c in result.choices] == ["A", "B", "C", "D"]
        assert result.choices[3].risk_level == "extreme"
        assert result.stat_updates[0].changes.hp == -10

    def test_rejected_action(self, validator) -> None:
        result = validator.validate(
            {"valid": False, "validationError": "You cannot fly", "choices": []}
        )
        assert result == RejectedAction(validation_error="You cannot fly")

    def test_rejection_needs_reason(self, validator) -> None:
        with pytest.raises(NarrativeValidationError):
            validator.validate({"valid": False, "validationError": ""})

    def test_three_choices_fail(self, validator) -> None:
        payload = turn_payload()
        payload["choices"] = payload["choices"][:3]
        with pytest.raises(NarrativeValidationError, match="exactly 4 choices, got 3"):
            validator.validate(payload)

    def test_labels_must_be_in_order(self, validator) -> None:
        payload = turn_payload()
        payload["choices"][0], payload["choices"][1] = payload["choices"][1], payload["choices"][0]
        with pytest.raises(NarrativeValidationError, match="expected A"):
            validator.validate(payload)

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda p: p.update(narrative=""),
            lambda p: p.update(narrative=None),
            lambda p: p["choices"][2].update(riskLevel="deadly"),
            lambda p: p["choices"][1].update(description="  "),
            lambda p: p.update(statUpdates=None),
            lambda p: p.update(statUpdates=[{"characterId": "", "changes": {}}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": []}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": {"hp": "ten"}}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": {"hp": True}}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": {"statuses": {}}}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": {"statuses": [{"duration": 2}]}}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": {"newPerks": ["x"]}}]),
            lambda p: p.update(statUpdates=[{"characterId": "c1", "changes": {"attributes": [1]}}]),
        ],
    )
    def test_structural_violations(self, validator, mutate) -> None:
        payload = copy.deepcopy(turn_payload())
        mutate(payload)
        with pytest.raises(NarrativeValidationError):
            validator.validate(payload)

    def test_non_object_payload(self, validator) -> None:
        with pytest.raises(NarrativeValidationError):
            validator.validate(["not", "an", "object"])


class TestDecoding:
    def test_float_deltas_truncate(self, validator) -> None:
        payload = turn_payload([{"characterId": "c1", "changes": {"hp": -12.7, "level": 2.0}}])
        changes = validator.validate(payload).stat_updates[0].changes
        assert (changes.hp, changes.level) == (-12, 2)

    def test_unknown_attribute_dropped(self, validator, caplog) -> None:
        payload = turn_payload(
            [{"characterId": "c1", "changes": {"attributes": {"strength": 60, "luck": 99}}}]
        )
        with caplog.at_level(logging.WARNING):
            changes = validator.validate(payload).stat_updates[0].changes
        assert changes.attributes == {"strength": 60}
        assert "luck" in caplog.text

    def test_status_and_perk_defaults(self, validator) -> None:
        payload = turn_payload([{
            "characterId": "c1",
            "changes": {
                "statuses": [{"name": "Burning"}],
                "newPerks": [{"name": "Iron Skin", "description": "Tough"}],
            },
        }])
        changes = validator.validate(payload).stat_updates[0].changes
        assert changes.statuses[0].duration == 1
        assert changes.statuses[0].effect == ""
        assert changes.new_perks[0].unlocked_at is None

    def test_absent_fields_stay_none(self, validator) -> None:
        payload = turn_payload([{"characterId": "c1", "changes": {}}])
        changes = validator.validate(payload).stat_updates[0].changes
        assert changes.hp is None and changes.level is None and changes.statuses is None


class TestIdentifierRepair:
    def test_name_rewritten_to_id(self, validator, caplog) -> None:
        context = _context(("c123", "Blazekin"), ("c456", "Tidecaller"))
        payload = turn_payload([{"characterId": "Blazekin", "changes": {"hp": -5}}])
        with caplog.at_level(logging.WARNING):
            result = validator.validate(payload, context)
        assert result.stat_updates[0].character_id == "c123"
        assert "Blazekin" in caplog.text

    def test_name_match_is_case_insensitive(self, validator) -> None:
        context = _context(("c123", "Blazekin"))
        payload = turn_payload([{"characterId": "BLAZEKIN", "changes": {}}])
        assert validator.validate(payload, context).stat_updates[0].character_id == "c123"

    def test_id_shaped_values_are_kept(self, validator) -> None:
        context = _context(("c123", "Blazekin"))
        shaped = "cm" + "a1" * 12
        payload = turn_payload([{"characterId": shaped, "changes": {}}])
        assert validator.validate(payload, context).stat_updates[0].character_id == shaped

    def test_unmatched_reference_left_as_is(self, validator) -> None:
        context = _context(("c123", "Blazekin"))
        payload = turn_payload([{"characterId": "The Goblin King", "changes": {}}])
        result = validator.validate(payload, context)
        assert result.stat_updates[0].character_id == "The Goblin King"

    def test_ambiguous_name_not_rewritten(self, validator) -> None:
        context = _context(("c1", "Twin"), ("c2", "twin"))
        payload = turn_payload([{"characterId": "Twin", "changes": {}}])
        assert validator.validate(payload, context).stat_updates[0].character_id == "Twin"
