"""Exception hierarchy for the turn resolution engine.

Every error carries a stable ``code`` so the HTTP layer (and any other
caller) can map failures to user-facing messages without string matching.
Permission *denials* are normally returned as ``PermissionResult`` values;
``PermissionDenied`` only exists for call sites that opt into fail-fast
semantics via ``permissions.enforce``.
"""

from __future__ import annotations


class WarlynxError(Exception):
    """Base class for all engine errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class GameNotFound(WarlynxError):
    code = "GAME_NOT_FOUND"


class GameNotActive(WarlynxError):
    code = "GAME_NOT_ACTIVE"


class NoAlivePlayers(WarlynxError):
    code = "NO_ALIVE_PLAYERS"


class CharacterNotFound(WarlynxError):
    code = "CHARACTER_NOT_FOUND"


class CharacterDead(WarlynxError):
    code = "CHARACTER_DEAD"


class InvalidGameState(WarlynxError):
    """Stored session data is inconsistent, e.g. the turn order names a
    user who is not a player."""

    code = "INVALID_GAME_STATE"


class TurnInProgress(WarlynxError):
    code = "TURN_IN_PROGRESS"


class PermissionDenied(WarlynxError):
    """Raised by ``enforce`` when a permission check denies access."""

    def __init__(self, code: str, reason: str = ""):
        super().__init__(reason or code)
        self.code = code
        self.reason = reason


# ── Narrative collaborator failures (retryable) ─────────────────────────


class NarrativeError(WarlynxError):
    code = "NARRATIVE_ERROR"


class NarrativeValidationError(NarrativeError):
    """The collaborator's payload violated the structural contract."""

    code = "NARRATIVE_INVALID"


class NarrativeTimeout(NarrativeError):
    code = "NARRATIVE_TIMEOUT"


class NarrativeUnavailable(NarrativeError):
    """The provider call itself failed (network, API error, bad JSON)."""

    code = "NARRATIVE_UNAVAILABLE"


class NarrativeGenerationFailed(WarlynxError):
    """Terminal failure after the retry policy was exhausted."""

    code = "DM_GENERATION_FAILED"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
