"""Power Sheet: the full mutable stat block of a character.

Wire payloads (collaborator output, HTTP bodies, realtime events) use
camelCase keys (``maxHp``, ``unlockedAt``, ``powerLevel``).  Every model
here accepts both camelCase and snake_case on input and dumps camelCase
with ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ATTRIBUTE_NAMES = ("strength", "agility", "intelligence", "charisma", "endurance")
ATTRIBUTE_MIN = 1
ATTRIBUTE_MAX = 100


class WireModel(BaseModel):
    """Base for models exchanged with the outside world."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attributes(WireModel):
    strength: int = Field(default=10, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)
    agility: int = Field(default=10, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)
    intelligence: int = Field(default=10, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)
    charisma: int = Field(default=10, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)
    endurance: int = Field(default=10, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)


class Ability(WireModel):
    name: str
    description: str = ""
    power_level: int = Field(default=1, ge=1, le=10)
    cooldown: Optional[int] = Field(
        default=None, description="Cooldown in turns, None when always usable"
    )


class Status(WireModel):
    """A timed buff or debuff.  ``duration`` counts remaining turns."""

    name: str
    description: str = ""
    duration: int = 1
    effect: str = ""


class Perk(WireModel):
    """A permanent, level-gated enhancement."""

    name: str
    description: str = ""
    unlocked_at: Optional[int] = Field(
        default=None, description="Level at which the perk was unlocked"
    )


class PowerSheet(WireModel):
    level: int = Field(default=1, ge=1)
    hp: int = Field(ge=0)
    max_hp: int = Field(gt=0)
    attributes: Attributes = Field(default_factory=Attributes)
    abilities: List[Ability] = Field(default_factory=list)
    weakness: str = Field(min_length=1)
    statuses: List[Status] = Field(default_factory=list)
    perks: List[Perk] = Field(default_factory=list)

    @model_validator(mode="after")
    def _hp_within_max(self) -> "PowerSheet":
        if self.hp > self.max_hp:
            raise ValueError(f"hp {self.hp} exceeds max_hp {self.max_hp}")
        return self

    @property
    def is_dead(self) -> bool:
        return self.hp <= 0

    def to_prompt_text(self) -> str:
        """Render as plain text for prompt injection."""
        attrs = self.attributes
        lines = [
            f"Level: {self.level}",
            f"HP: {self.hp}/{self.max_hp}",
            "Attributes:",
            f"  - Strength: {attrs.strength}",
            f"  - Agility: {attrs.agility}",
            f"  - Intelligence: {attrs.intelligence}",
            f"  - Charisma: {attrs.charisma}",
            f"  - Endurance: {attrs.endurance}",
            "Abilities:",
        ]
        for a in self.abilities:
            cooldown = f" [Cooldown: {a.cooldown} turns]" if a.cooldown else ""
            lines.append(
                f"  - {a.name} (Power Level: {a.power_level}): {a.description}{cooldown}"
            )
        lines.append(f"Weakness: {self.weakness}")
        if self.statuses:
            lines.append("Active Statuses:")
            lines.extend(
                f"  - {s.name}: {s.description} ({s.duration} turns remaining)"
                for s in self.statuses
            )
        if self.perks:
            lines.append("Perks:")
            lines.extend(f"  - {p.name}: {p.description}" for p in self.perks)
        return "\n".join(lines)
