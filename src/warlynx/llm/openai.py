from __future__ import annotations

import json
import logging
from typing import Any, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel

from warlynx.llm.base import LLMProvider
from warlynx.parsing.output_parser import OutputParser

T = TypeVar("T", bound=BaseModel)
log = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Chat-completions backend.  JSON calls use ``response_format=json_object``."""

    STRONG_MODEL = "gpt-4o"
    FAST_MODEL = "gpt-4o-mini"

    def __init__(self, api_key: str, model: str | None = None, temperature: float = 0.8):
        super().__init__(model=model or self.STRONG_MODEL, temperature=temperature)
        self._client = AsyncOpenAI(api_key=api_key)

    async def _chat(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        request: dict = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(**request)
        except Exception as exc:
            log.error("OpenAI request failed (model=%s): %s", self.model, exc)
            raise

        choice = response.choices[0]
        if choice.finish_reason == "length":
            # a cut-off JSON object will not parse; the caller retries
            log.warning("OpenAI output hit max_tokens=%d (model=%s)", max_tokens, self.model)
        if response.usage is not None:
            log.info("OpenAI %s: %d prompt + %d completion tokens", self.model,
                     response.usage.prompt_tokens, response.usage.completion_tokens)
        return choice.message.content or ""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        return await self._chat(system_prompt, user_prompt, temperature, max_tokens, json_mode)

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 2000,
    ) -> Any:
        raw = await self._chat(system_prompt, user_prompt, temperature, max_tokens, True)
        if not raw.strip():
            raise ValueError(f"{self.model} returned an empty response")
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
        schema = json.dumps(response_model.model_json_schema(by_alias=True), indent=2)
        system = (
            f"{system_prompt}\n\nReply with one JSON object that validates against "
            f"this schema:\n{schema}"
        )
        raw = await self._chat(system, user_prompt, temperature, max_tokens, True)
        try:
            return OutputParser.parse(raw, response_model)
        except ValueError:
            log.error("%s output did not match %s: %.300s",
                      self.model, response_model.__name__, raw)
            raise
