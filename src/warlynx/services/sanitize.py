"""Neutralize player-supplied action text before it reaches a prompt."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List

from warlynx.config import settings

log = logging.getLogger(__name__)

_ZWSP = "\u200b"

INJECTION_PATTERNS = [
    # role manipulation
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"\[system\]", re.IGNORECASE),
    re.compile(r"<system>", re.IGNORECASE),
    re.compile(
        r"\b(?:ignore|disregard|forget)\s+(?:all\s+)?(?:previous|all|above)\s+"
        r"(?:instructions?|prompts?|commands?)",
        re.IGNORECASE,
    ),
    # instruction injection
    re.compile(r"\byou\s+are\s+now\b", re.IGNORECASE),
    re.compile(r"\bnew\s+instructions?\b", re.IGNORECASE),
    re.compile(r"\boverride\s+instructions?\b", re.IGNORECASE),
    re.compile(r"\bact\s+as\s+if\b", re.IGNORECASE),
    # prompt leaking
    re.compile(
        r"\b(?:show\s+(?:me\s+)?|reveal\s+|what\s+(?:is|are)\s+)(?:your|the)\s+"
        r"(?:prompt|instructions?|system)",
        re.IGNORECASE,
    ),
    # structured payloads
    re.compile(r'\{\s*"role"\s*:\s*"system"', re.IGNORECASE),
    re.compile(r"<role>system</role>", re.IGNORECASE),
    re.compile(r"(?:---|\*\*\*)\s*end\s+of\s+(?:prompt|instructions?)", re.IGNORECASE),
]

# C0 controls except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass
class SanitizedText:
    text: str
    modified: bool = False
    warnings: List[str] = field(default_factory=list)


def _defang(match: re.Match) -> str:
    return _ZWSP.join(match.group(0))


def sanitize_action(text: str, max_length: int | None = None) -> SanitizedText:
    """Clean a free-form action for inclusion in a narrative prompt.

    Truncates to ``max_length`` (default ``settings.max_action_length``),
    strips control characters, breaks up known injection phrases with
    zero-width spaces, and collapses whitespace onto a single line.
    """
    limit = max_length or settings.max_action_length
    result = SanitizedText(text=text)

    if len(result.text) > limit:
        result.text = result.text[:limit]
        result.warnings.append(f"Input was truncated to {limit} characters")

    stripped = _CONTROL_CHARS.sub("", result.text)
    if stripped != result.text:
        result.text = stripped
        result.warnings.append("Control characters were removed")

    for pattern in INJECTION_PATTERNS:
        found = pattern.search(result.text)
        if found:
            result.warnings.append(
                f"Potential prompt injection detected: {found.group(0)[:50]!r}"
            )
            result.text = pattern.sub(_defang, result.text)

    result.text = re.sub(r"\s+", " ", result.text).strip()
    result.modified = result.text != text

    if result.warnings:
        log.warning("Sanitized player action: %s", "; ".join(result.warnings))
    return result
