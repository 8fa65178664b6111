"""Permission guard: may user U do action A on session S right now?

Every check is a pure function of a loaded ``GameSession`` (``None`` when
the session does not exist).  Expected denials come back as a
``PermissionResult`` carrying a stable code; nothing here raises except
``enforce``, which callers use when they want fail-fast semantics.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Iterable, Optional

from warlynx.errors import PermissionDenied
from warlynx.models.game import GameSession
from warlynx.models.power_sheet import WireModel
from warlynx.services.sequencer import active_player


class PermissionCode(str, Enum):
    UNAUTHORIZED_NOT_HOST = "UNAUTHORIZED_NOT_HOST"
    UNAUTHORIZED_NOT_ACTIVE_PLAYER = "UNAUTHORIZED_NOT_ACTIVE_PLAYER"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    PLAYER_NOT_IN_GAME = "PLAYER_NOT_IN_GAME"
    INVALID_GAME_STATE = "INVALID_GAME_STATE"


class PermissionResult(WireModel):
    allowed: bool
    error_code: Optional[PermissionCode] = None
    reason: Optional[str] = None


ALLOWED = PermissionResult(allowed=True)

Check = Callable[[], PermissionResult]


def _deny(code: PermissionCode, reason: str) -> PermissionResult:
    return PermissionResult(allowed=False, error_code=code, reason=reason)


def _not_found() -> PermissionResult:
    return _deny(PermissionCode.GAME_NOT_FOUND, "Game not found")


def _in_status(session: GameSession, status: str, reason: str) -> PermissionResult:
    if session.status != status:
        return _deny(PermissionCode.INVALID_GAME_STATE, reason)
    return ALLOWED


# ── Composition ─────────────────────────────────────────────────────────


def check_all(checks: Iterable[Check]) -> PermissionResult:
    """Run *checks* in order and return the first denial, else success."""
    for check in checks:
        result = check()
        if not result.allowed:
            return result
    return ALLOWED


def enforce(result: PermissionResult) -> None:
    """Raise ``PermissionDenied`` if *result* is a denial."""
    if not result.allowed:
        code = result.error_code.value if result.error_code else "PERMISSION_DENIED"
        raise PermissionDenied(code, result.reason or "")


# ── Primitive checks ────────────────────────────────────────────────────


def is_host(session: GameSession | None, user_id: str) -> PermissionResult:
    if session is None:
        return _not_found()
    if session.host_id != user_id:
        return _deny(
            PermissionCode.UNAUTHORIZED_NOT_HOST,
            "Only the game host can perform this action",
        )
    return ALLOWED


def is_active_player(session: GameSession | None, user_id: str) -> PermissionResult:
    if session is None:
        return _not_found()
    if session.status != "active":
        return _deny(PermissionCode.INVALID_GAME_STATE, "Game is not active")
    if not session.turn_order:
        return _deny(PermissionCode.INVALID_GAME_STATE, "Turn order is empty")
    if active_player(session) != user_id:
        return _deny(
            PermissionCode.UNAUTHORIZED_NOT_ACTIVE_PLAYER,
            "Only the active player can perform this action",
        )
    return ALLOWED


def is_player_in_game(session: GameSession | None, user_id: str) -> PermissionResult:
    if session is None:
        return _not_found()
    if session.player(user_id) is None:
        return _deny(
            PermissionCode.PLAYER_NOT_IN_GAME, "User is not a player in this game"
        )
    return ALLOWED


# ── Actions ─────────────────────────────────────────────────────────────


def can_submit_action(session: GameSession | None, user_id: str) -> PermissionResult:
    return is_active_player(session, user_id)


def can_start_game(session: GameSession | None, user_id: str) -> PermissionResult:
    """Host only, lobby phase, and every player has a character."""

    def everyone_ready() -> PermissionResult:
        missing = [p for p in session.players if p.character is None]
        if missing:
            return _deny(
                PermissionCode.INVALID_GAME_STATE,
                f"{len(missing)} player(s) have not created characters",
            )
        return ALLOWED

    return check_all([
        lambda: is_host(session, user_id),
        lambda: _in_status(session, "lobby", "Game has already started"),
        everyone_ready,
    ])


def can_end_game(session: GameSession | None, user_id: str) -> PermissionResult:
    return is_host(session, user_id)


def can_discard_turn(session: GameSession | None, user_id: str) -> PermissionResult:
    """Host only, while the game is running."""
    return check_all([
        lambda: is_host(session, user_id),
        lambda: _in_status(session, "active", "Game is not active"),
    ])


def can_modify_settings(session: GameSession | None, user_id: str) -> PermissionResult:
    return check_all([
        lambda: is_host(session, user_id),
        lambda: _in_status(
            session, "lobby", "Cannot modify settings after game has started"
        ),
    ])


def can_join_game(session: GameSession | None, user_id: str) -> PermissionResult:
    """Lobby phase and not full.  Already-joined users are allowed again."""
    if session is None:
        return _not_found()
    if session.player(user_id) is not None:
        return ALLOWED
    if session.status != "lobby":
        return _deny(
            PermissionCode.INVALID_GAME_STATE,
            "Cannot join game that has already started",
        )
    if len(session.players) >= session.max_players:
        return _deny(PermissionCode.INVALID_GAME_STATE, "Game is full")
    return ALLOWED


def can_leave_game(session: GameSession | None, user_id: str) -> PermissionResult:
    return check_all([
        lambda: is_player_in_game(session, user_id),
        lambda: _in_status(session, "lobby", "Cannot leave game after it has started"),
    ])


def can_create_character(session: GameSession | None, user_id: str) -> PermissionResult:
    def no_character_yet() -> PermissionResult:
        if session.player(user_id).character is not None:
            return _deny(
                PermissionCode.INVALID_GAME_STATE,
                "Player already has a character for this game",
            )
        return ALLOWED

    return check_all([
        lambda: is_player_in_game(session, user_id),
        lambda: _in_status(
            session, "lobby", "Cannot create character after game has started"
        ),
        no_character_yet,
    ])


def can_view_game(session: GameSession | None, user_id: str) -> PermissionResult:
    return is_player_in_game(session, user_id)
