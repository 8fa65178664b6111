from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from warlynx.api.dependencies import get_sequencer
from warlynx.services.sequencer import TurnSequencer

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/cleanup-turns")
async def cleanup_turns(
    older_than_seconds: Optional[float] = Query(None, alias="olderThanSeconds", gt=0),
    sequencer: TurnSequencer = Depends(get_sequencer),
):
    """Discard turns stuck in ``resolving`` across all games."""
    removed = await sequencer.cleanup_stuck_turns(older_than_seconds)
    if removed:
        log.warning("Cleaned up %d stuck turns", len(removed))
    return {
        "cleaned": len(removed),
        "turns": [t.model_dump(by_alias=True, mode="json") for t in removed],
    }
