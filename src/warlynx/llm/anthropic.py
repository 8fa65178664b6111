from __future__ import annotations

import logging
from typing import Any, TypeVar

from anthropic import AsyncAnthropic
from pydantic import BaseModel

from warlynx.llm.base import LLMProvider
from warlynx.parsing.output_parser import OutputParser

T = TypeVar("T", bound=BaseModel)
log = logging.getLogger(__name__)

_JSON_ONLY = "Respond with a single JSON object and nothing else."
_TOOL = "record_result"


class AnthropicProvider(LLMProvider):
    """Messages-API backend.  Structured output goes through a forced tool call."""

    STRONG_MODEL = "claude-sonnet-4-5-20250929"
    FAST_MODEL = "claude-haiku-4-5-20251001"

    def __init__(self, api_key: str, model: str | None = None, temperature: float = 0.8):
        super().__init__(model=model or self.STRONG_MODEL, temperature=temperature)
        self._client = AsyncAnthropic(api_key=api_key)

    async def _message(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None,
        max_tokens: int,
        **extra: Any,
    ):
        temp = self.temperature if temperature is None else temperature
        try:
            response = await self._client.messages.create(
                model=self.model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                # the Messages API caps temperature at 1.0
                temperature=min(temp, 1.0),
                max_tokens=max_tokens,
                **extra,
            )
        except Exception as exc:
            log.error("Anthropic request failed (model=%s): %s", self.model, exc)
            raise
        if response.stop_reason == "max_tokens":
            log.warning("Anthropic output hit max_tokens=%d (model=%s)", max_tokens, self.model)
        log.info("Anthropic %s: %d input + %d output tokens", self.model,
                 response.usage.input_tokens, response.usage.output_tokens)
        return response

    @staticmethod
    def _text(response) -> str:
        return "".join(b.text for b in response.content if b.type == "text")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        if json_mode:
            system_prompt = f"{system_prompt}\n\n{_JSON_ONLY}"
        response = await self._message(system_prompt, user_prompt, temperature, max_tokens)
        return self._text(response)

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 2000,
    ) -> Any:
        raw = await self.complete(system_prompt, user_prompt, temperature=temperature,
                                  max_tokens=max_tokens, json_mode=True)
        return OutputParser.extract_json(raw)

    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        *,
        temperature: float | None = None,
        max_tokens: int = 500,
    ) -> T:
        tool = {
            "name": _TOOL,
            "description": f"Record the {response_model.__name__}.",
            "input_schema": response_model.model_json_schema(by_alias=True),
        }
        response = await self._message(
            system_prompt, user_prompt, temperature, max_tokens,
            tools=[tool], tool_choice={"type": "tool", "name": _TOOL},
        )
        for block in response.content:
            if block.type == "tool_use" and block.name == _TOOL:
                return response_model.model_validate(block.input)

        log.warning("%s answered without calling %s; parsing its text instead",
                    self.model, _TOOL)
        return OutputParser.parse(self._text(response), response_model)
