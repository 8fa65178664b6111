from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from warlynx.api.dependencies import get_store, get_tracker, require
from warlynx.db.store import GameStore
from warlynx.services.permissions import can_view_game
from warlynx.services.tracker import DEFAULT_HISTORY_LIMIT, StatsTracker

router = APIRouter(prefix="/api/characters", tags=["characters"])


@router.get("/{character_id}/stats")
async def character_stats(
    character_id: str,
    user_id: str = Query(alias="userId"),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=500),
    turn_id: Optional[str] = Query(None, alias="turnId"),
    store: GameStore = Depends(get_store),
    tracker: StatsTracker = Depends(get_tracker),
):
    """Current Power Sheet, snapshot history and progression summary.

    With ``turnId`` the response also carries that turn's snapshot and its
    difference from the snapshot before it.
    """
    character = await store.get_character(character_id)
    if character is None:
        raise HTTPException(404, detail={"code": "CHARACTER_NOT_FOUND",
                                         "message": "Character not found",
                                         "retryable": False})
    require(can_view_game(await store.load_game(character.game_id), user_id))

    history = await tracker.character_history(character_id, limit=limit)
    summary = await tracker.progression_summary(character_id)
    body = {
        "characterId": character.id,
        "name": character.name,
        "powerSheet": character.power_sheet.model_dump(by_alias=True),
        "history": [s.model_dump(by_alias=True, mode="json") for s in history],
        "progression": summary.model_dump(by_alias=True, mode="json"),
    }

    if turn_id is not None:
        snapshot = await tracker.snapshot_for_turn(character_id, turn_id)
        body["turnSnapshot"] = snapshot.model_dump(by_alias=True, mode="json") if snapshot else None
        diff = await tracker.diff_for_turn(character_id, turn_id)
        body["turnDiff"] = diff.model_dump(by_alias=True) if diff else None
    return body
