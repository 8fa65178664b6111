from __future__ import annotations

import pytest

from warlynx.models.power_sheet import Perk
from warlynx.parsing.output_parser import OutputParser


class TestExtractJson:
    def test_plain_json(self) -> None:
        assert OutputParser.extract_json('{"valid": true}') == {"valid": True}

    def test_fenced_block(self) -> None:
        text = 'Here you go:\n```json\n{"narrative": "x"}\n```\nEnjoy.'
        assert OutputParser.extract_json(text) == {"narrative": "x"}

    def test_object_inside_prose_with_braces_in_strings(self) -> None:
        text = 'Sure! {"narrative": "a } tricky { string", "n": 1} Thanks.'
        assert OutputParser.extract_json(text) == {"narrative": "a } tricky { string", "n": 1}

    def test_nothing_parses(self) -> None:
        with pytest.raises(ValueError, match="Could not find JSON"):
            OutputParser.extract_json("no json here")


class TestParse:
    def test_validates_against_model(self) -> None:
        perk = OutputParser.parse(
            '{"name": "Iron Skin", "description": "Tough", "unlockedAt": 3}', Perk
        )
        assert perk == Perk(name="Iron Skin", description="Tough", unlocked_at=3)

    def test_model_mismatch_is_value_error(self) -> None:
        with pytest.raises(ValueError, match="Perk"):
            OutputParser.parse('{"description": "no name"}', Perk)
