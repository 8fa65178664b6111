"""Warlynx: turn resolution engine for a multiplayer narrative game.

Run with:  uvicorn warlynx.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

# Configure logging for all warlynx modules
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

from fastapi import FastAPI

from warlynx.api.admin import router as admin_router
from warlynx.api.characters import router as characters_router
from warlynx.api.dependencies import get_sequencer
from warlynx.api.games import router as games_router
from warlynx.db.database import init_db

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then drop turns a previous process left ``resolving``."""
    await init_db()
    orphaned = await get_sequencer().cleanup_stuck_turns()
    if orphaned:
        log.warning("Discarded %d turns left resolving by a previous run", len(orphaned))
    yield


app = FastAPI(
    title="Warlynx",
    description=(
        "Turn-based multiplayer narrative game: turn sequencing, permission "
        "checks and validated stat resolution around an LLM dungeon master."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(games_router)
app.include_router(characters_router)
app.include_router(admin_router)
