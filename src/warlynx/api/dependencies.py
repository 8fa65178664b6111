"""Shared FastAPI dependencies: service singletons and error mapping."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException

from warlynx.config import settings
from warlynx.db.store import GameStore
from warlynx.errors import (
    CharacterDead,
    CharacterNotFound,
    GameNotActive,
    GameNotFound,
    InvalidGameState,
    NarrativeError,
    NarrativeGenerationFailed,
    NoAlivePlayers,
    PermissionDenied,
    TurnInProgress,
    WarlynxError,
)
from warlynx.llm.registry import get_provider
from warlynx.prompts.loader import PromptLoader
from warlynx.services.locks import GameLocks
from warlynx.services.narrator import NarrativeClient
from warlynx.services.notifier import BroadcastHub
from warlynx.services.orchestrator import TurnOrchestrator
from warlynx.services.permissions import PermissionCode, PermissionResult
from warlynx.services.sequencer import TurnSequencer
from warlynx.services.tracker import StatsTracker

log = logging.getLogger(__name__)

# --- Singletons ---

_prompts = PromptLoader()
_hub = BroadcastHub()
_locks = GameLocks()
_store: Optional[GameStore] = None
_orchestrator: Optional[TurnOrchestrator] = None


def get_store() -> GameStore:
    global _store
    if _store is None:
        _store = GameStore()
    return _store


def get_hub() -> BroadcastHub:
    return _hub


def get_sequencer() -> TurnSequencer:
    return TurnSequencer(get_store(), _hub, _locks)


def get_tracker() -> StatsTracker:
    return StatsTracker(get_store())


def get_orchestrator() -> TurnOrchestrator:
    """Built once, on first use, around the process-wide turn locks."""
    global _orchestrator
    if _orchestrator is None:
        try:
            narrator = NarrativeClient(
                llm=get_provider(settings.default_provider, tier="strong"),
                perk_llm=get_provider(settings.default_provider, tier="fast"),
                prompts=_prompts,
            )
        except ValueError as exc:
            log.error("Narrative provider unavailable: %s", exc)
            raise HTTPException(503, detail={
                "code": "NARRATIVE_UNAVAILABLE", "message": str(exc), "retryable": False,
            }) from exc
        _orchestrator = TurnOrchestrator(get_store(), narrator, _hub, locks=_locks)
        log.info("Turn orchestrator ready (provider=%s)", settings.default_provider)
    return _orchestrator


# --- Error mapping ---

_PERMISSION_STATUS = {
    PermissionCode.GAME_NOT_FOUND.value: 404,
    PermissionCode.PLAYER_NOT_IN_GAME.value: 403,
    PermissionCode.UNAUTHORIZED_NOT_HOST.value: 403,
    PermissionCode.UNAUTHORIZED_NOT_ACTIVE_PLAYER.value: 403,
    PermissionCode.INVALID_GAME_STATE.value: 400,
}

_ERROR_STATUS = [
    (TurnInProgress, 409),
    ((GameNotFound, CharacterNotFound), 404),
    ((GameNotActive, NoAlivePlayers, CharacterDead, InvalidGameState), 400),
    ((NarrativeGenerationFailed, NarrativeError), 502),
]


def to_http(exc: WarlynxError) -> HTTPException:
    """Translate an engine error into an ``HTTPException``."""
    if isinstance(exc, PermissionDenied):
        status = _PERMISSION_STATUS.get(exc.code, 403)
    else:
        status = next((s for kinds, s in _ERROR_STATUS if isinstance(exc, kinds)), 500)
    retryable = isinstance(exc, (TurnInProgress, NarrativeGenerationFailed, NarrativeError))
    if status >= 500:
        log.error("Request failed with %s: %s", exc.code, exc.message)
    return HTTPException(
        status,
        detail={"code": exc.code, "message": exc.message, "retryable": retryable},
    )


def require(result: PermissionResult) -> None:
    """Raise the HTTP form of a permission denial."""
    if not result.allowed:
        code = result.error_code.value if result.error_code else "PERMISSION_DENIED"
        raise to_http(PermissionDenied(code, result.reason or ""))
