from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)

_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)


def _balanced_object(text: str) -> str | None:
    """Return the first brace-balanced ``{...}`` span in *text*, if any.

    Braces inside JSON string literals are skipped.
    """
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


class OutputParser:
    """Pull JSON out of LLM text output."""

    @staticmethod
    def extract_json(text: str) -> Any:
        """Return the JSON value carried by *text*.

        Handles common LLM patterns:
        - Raw JSON
        - JSON wrapped in ```json ... ``` fences
        - A JSON object embedded in surrounding prose

        Raises ``ValueError`` when nothing parses.
        """
        candidates = []
        fenced = _FENCE.search(text)
        if fenced:
            candidates.append(fenced.group(1).strip())
        candidates.append(text.strip())
        embedded = _balanced_object(text)
        if embedded:
            candidates.append(embedded)

        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue
        raise ValueError(
            "Could not find JSON in LLM output.\n"
            f"Raw text (first 500 chars): {text[:500]}"
        )

    @staticmethod
    def parse(text: str, model: type[T]) -> T:
        """Extract JSON from *text* and validate it against *model*."""
        data = OutputParser.extract_json(text)
        try:
            return model.model_validate(data)
        except Exception as exc:
            raise ValueError(
                f"Could not parse LLM output into {model.__name__}: {exc}"
            ) from exc
