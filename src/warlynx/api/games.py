from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import Field

from warlynx.api.dependencies import (
    get_hub,
    get_orchestrator,
    get_sequencer,
    get_store,
    get_tracker,
    require,
    to_http,
)
from warlynx.db.store import GameStore
from warlynx.errors import WarlynxError
from warlynx.models.power_sheet import WireModel
from warlynx.models.turn import RejectedAction
from warlynx.services import sequencer as seq
from warlynx.services.notifier import BroadcastHub
from warlynx.services.orchestrator import TurnOrchestrator
from warlynx.services.permissions import can_discard_turn, can_view_game
from warlynx.services.sequencer import TurnSequencer
from warlynx.services.tracker import StatsTracker

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/games", tags=["games"])

_KEEPALIVE_SECONDS = 15.0


class TurnRequest(WireModel):
    user_id: str = Field(min_length=1)
    # over-long text is truncated by sanitize_action, not rejected here
    action: Optional[str] = None


async def _viewable(store: GameStore, game_id: str, user_id: str):
    session = await store.load_game(game_id)
    require(can_view_game(session, user_id))
    return session


@router.post("/{game_id}/turn")
async def submit_turn(
    game_id: str,
    body: TurnRequest,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """Submit the active player's action and resolve the turn."""
    try:
        outcome = await orchestrator.submit_action(game_id, body.user_id, body.action)
    except WarlynxError as exc:
        raise to_http(exc) from exc
    if isinstance(outcome, RejectedAction):
        raise HTTPException(
            400,
            detail={
                "code": "INVALID_ACTION",
                "message": outcome.validation_error,
                "retryable": True,
            },
        )
    return outcome.model_dump(by_alias=True, mode="json")


@router.get("/{game_id}/current-turn")
async def current_turn(
    game_id: str,
    user_id: str = Query(alias="userId"),
    store: GameStore = Depends(get_store),
):
    """Whose turn it is, and whether a turn is being resolved right now."""
    session = await _viewable(store, game_id, user_id)
    active_id = seq.active_player(session)
    active = session.player(active_id) if active_id else None
    character = active.character if active else None
    in_flight = await store.in_flight_turns(game_id)
    return {
        "gameId": session.id,
        "status": session.status,
        "currentTurnIndex": session.current_turn_index,
        "activePlayer": None if active is None else {
            "userId": active.user_id,
            "displayName": active.display_name,
            "characterId": character.id if character else None,
            "characterName": character.name if character else None,
        },
        "isYourTurn": active_id == user_id,
        "resolving": bool(in_flight),
    }


@router.get("/{game_id}/turn-order")
async def turn_order(
    game_id: str,
    user_id: str = Query(alias="userId"),
    store: GameStore = Depends(get_store),
):
    session = await _viewable(store, game_id, user_id)
    return {
        "gameId": session.id,
        "currentTurnIndex": session.current_turn_index,
        "slots": [s.model_dump(by_alias=True) for s in seq.turn_order_details(session)],
    }


@router.get("/{game_id}/validate")
async def validate_turn_order(
    game_id: str,
    user_id: str = Query(alias="userId"),
    store: GameStore = Depends(get_store),
):
    """Structural check of the turn order, for operational tooling."""
    session = await _viewable(store, game_id, user_id)
    return seq.validate(session).model_dump(by_alias=True)


@router.post("/{game_id}/discard-turn")
async def discard_turn(
    game_id: str,
    user_id: str = Query(alias="userId"),
    store: GameStore = Depends(get_store),
    sequencer: TurnSequencer = Depends(get_sequencer),
):
    """Host only: drop a stuck in-flight turn so the active player can resubmit.

    Answers 409 while the turn is still being resolved.
    """
    require(can_discard_turn(await store.load_game(game_id), user_id))
    try:
        discarded = await sequencer.discard_in_flight_turn(game_id)
    except WarlynxError as exc:
        raise to_http(exc) from exc
    return {"discarded": [t.model_dump(by_alias=True, mode="json") for t in discarded]}


@router.get("/{game_id}/events")
async def game_events(
    game_id: str,
    request: Request,
    user_id: str = Query(alias="userId"),
    store: GameStore = Depends(get_store),
    hub: BroadcastHub = Depends(get_hub),
):
    """Server-sent events stream of turn, stats and game notifications."""
    await _viewable(store, game_id, user_id)
    queue = hub.subscribe(game_id)

    async def generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    msg = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {msg['event']}\ndata: {json.dumps(msg)}\n\n"
        finally:
            hub.unsubscribe(game_id, queue)
            log.info("SSE subscriber left game %s", game_id)

    return StreamingResponse(
        generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.get("/{game_id}/stats-history")
async def stats_history(
    game_id: str,
    user_id: str = Query(alias="userId"),
    store: GameStore = Depends(get_store),
    tracker: StatsTracker = Depends(get_tracker),
):
    """Every stats snapshot in the game, grouped by character."""
    await _viewable(store, game_id, user_id)
    history = await tracker.game_history(game_id)
    return {
        cid: [s.model_dump(by_alias=True, mode="json") for s in snapshots]
        for cid, snapshots in history.items()
    }
