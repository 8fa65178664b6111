from __future__ import annotations

import pytest

from tests.conftest import make_sheet
from warlynx.errors import PermissionDenied
from warlynx.models.game import Character, GameSession, Player
from warlynx.services.permissions import (
    ALLOWED,
    PermissionCode,
    can_create_character,
    can_discard_turn,
    can_end_game,
    can_join_game,
    can_leave_game,
    can_modify_settings,
    can_start_game,
    can_submit_action,
    can_view_game,
    check_all,
    enforce,
    is_host,
)


def _character(uid: str) -> Character:
    return Character(id=f"c-{uid}", name=uid, user_id=uid, power_sheet=make_sheet())


@pytest.fixture
def lobby() -> GameSession:
    return GameSession(
        id="g1", host_id="host", status="lobby", max_players=3,
        players=[
            Player(user_id="host", role="host", character=_character("host")),
            Player(user_id="guest"),
        ],
    )


@pytest.fixture
def active() -> GameSession:
    return GameSession(
        id="g1", host_id="host", status="active",
        turn_order=["host", "guest"], current_turn_index=1,
        players=[
            Player(user_id="host", role="host", character=_character("host")),
            Player(user_id="guest", character=_character("guest")),
        ],
    )


class TestPermissions:
    def test_missing_game(self) -> None:
        result = can_view_game(None, "host")
        assert not result.allowed
        assert result.error_code == PermissionCode.GAME_NOT_FOUND

    def test_is_host(self, lobby) -> None:
        assert is_host(lobby, "host").allowed
        assert is_host(lobby, "guest").error_code == PermissionCode.UNAUTHORIZED_NOT_HOST

    def test_submit_requires_active_player(self, active) -> None:
        assert can_submit_action(active, "guest").allowed
        denied = can_submit_action(active, "host")
        assert denied.error_code == PermissionCode.UNAUTHORIZED_NOT_ACTIVE_PLAYER

    def test_submit_requires_active_game(self, lobby) -> None:
        assert can_submit_action(lobby, "host").error_code == PermissionCode.INVALID_GAME_STATE

    def test_start_requires_every_character(self, lobby) -> None:
        result = can_start_game(lobby, "host")
        assert result.error_code == PermissionCode.INVALID_GAME_STATE
        assert "1 player(s)" in result.reason

        lobby.players[1].character = _character("guest")
        assert can_start_game(lobby, "host").allowed
        assert can_start_game(lobby, "guest").error_code == PermissionCode.UNAUTHORIZED_NOT_HOST

    def test_end_and_settings(self, lobby, active) -> None:
        assert can_end_game(active, "host").allowed
        assert can_modify_settings(lobby, "host").allowed
        assert not can_modify_settings(active, "host").allowed

    def test_join(self, lobby, active) -> None:
        assert can_join_game(lobby, "newcomer").allowed
        assert can_join_game(lobby, "guest").allowed
        assert not can_join_game(active, "newcomer").allowed
        lobby.players.append(Player(user_id="third"))
        assert can_join_game(lobby, "newcomer").reason == "Game is full"

    def test_leave_and_create_character(self, lobby, active) -> None:
        assert can_leave_game(lobby, "guest").allowed
        assert can_leave_game(lobby, "stranger").error_code == PermissionCode.PLAYER_NOT_IN_GAME
        assert not can_leave_game(active, "guest").allowed
        assert can_create_character(lobby, "guest").allowed
        assert not can_create_character(lobby, "host").allowed

    def test_check_all_short_circuits(self) -> None:
        calls = []

        def deny():
            calls.append("deny")
            return can_view_game(None, "x")

        def never():
            calls.append("never")
            return ALLOWED

        assert not check_all([deny, never]).allowed
        assert calls == ["deny"]

    def test_enforce(self, active) -> None:
        enforce(can_view_game(active, "host"))
        with pytest.raises(PermissionDenied) as exc_info:
            enforce(can_view_game(active, "stranger"))
        assert exc_info.value.code == "PLAYER_NOT_IN_GAME"

    def test_discard_turn_is_host_only(self, lobby, active) -> None:
        assert can_discard_turn(active, "host").allowed
        assert can_discard_turn(active, "guest").error_code == PermissionCode.UNAUTHORIZED_NOT_HOST
        assert can_discard_turn(active, "stranger").error_code == PermissionCode.UNAUTHORIZED_NOT_HOST
        assert not can_discard_turn(lobby, "host").allowed
        assert can_discard_turn(None, "host").error_code == PermissionCode.GAME_NOT_FOUND
