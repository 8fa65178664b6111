from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class LLMProvider(ABC):
    """A chat model behind one of three call shapes.

    ``complete`` returns text, ``complete_json`` returns whatever JSON value
    the model produced (turn narration, validated later), and
    ``complete_structured`` returns a pydantic model (level-up perks).
    Transport errors propagate unchanged; callers decide how to wrap them.
    """

    def __init__(self, model: str, temperature: float = 0.8):
        self.model = model
        self.temperature = temperature

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        ...

    @abstractmethod
    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 2000,
    ) -> Any:
        """Raises ``ValueError`` when the output carries no JSON."""

    @abstractmethod
    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        *,
        temperature: float | None = None,
        max_tokens: int = 500,
    ) -> T:
        """Raises ``ValueError`` when the output does not fit *response_model*."""
