"""Record store over SQLAlchemy async sessions.

Every public method runs in its own transaction and hands back pydantic
models; ORM rows never leave this module.  Two operations carry the
atomicity the engine relies on:

- ``compare_and_set_turn_index``: CAS on ``games.current_turn_index``
- ``update_power_sheet``: row-locked read/modify/write of one character,
  with its stats snapshot written in the same transaction
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from warlynx.db.tables import (
    DBCharacter,
    DBGame,
    DBGameEvent,
    DBPlayer,
    DBStatsSnapshot,
    DBTurn,
)
from warlynx.errors import CharacterNotFound, GameNotFound, TurnInProgress
from warlynx.models.game import (
    IN_FLIGHT_PHASES,
    Character,
    GameEvent,
    GameSession,
    Player,
    Turn,
)
from warlynx.models.power_sheet import Attributes, Perk, PowerSheet, Status
from warlynx.models.snapshot import StatsSnapshot

log = logging.getLogger(__name__)


def new_id() -> str:
    """Identifier shaped like a cuid: ``c`` followed by 32 hex digits."""
    return "c" + uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump(model_or_list) -> str:
    if isinstance(model_or_list, list):
        return json.dumps([m.model_dump(by_alias=True, mode="json") for m in model_or_list])
    return json.dumps(model_or_list.model_dump(by_alias=True, mode="json"))


# ── row → model ─────────────────────────────────────────────────────────


def _to_character(row: DBCharacter) -> Character:
    return Character(
        id=row.id,
        name=row.name,
        user_id=row.user_id,
        game_id=row.game_id,
        description=row.description,
        power_sheet=PowerSheet.model_validate(row.get_power_sheet()),
    )


def _to_game(row: DBGame) -> GameSession:
    return GameSession(
        id=row.id,
        name=row.name,
        host_id=row.host_id,
        status=row.status,
        max_players=row.max_players,
        turn_order=row.get_turn_order(),
        current_turn_index=row.current_turn_index,
        players=[
            Player(
                user_id=p.user_id,
                display_name=p.display_name,
                role=p.role,
                character=_to_character(p.character) if p.character else None,
            )
            for p in row.players
        ],
    )


def _to_turn(row: DBTurn) -> Turn:
    return Turn(
        id=row.id,
        game_id=row.game_id,
        turn_index=row.turn_index,
        active_player_id=row.active_player_id,
        phase=row.phase,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def _to_snapshot(row: DBStatsSnapshot) -> StatsSnapshot:
    return StatsSnapshot(
        id=row.id,
        game_id=row.game_id,
        character_id=row.character_id,
        turn_id=row.turn_id,
        level=row.level,
        hp=row.hp,
        max_hp=row.max_hp,
        attributes=Attributes.model_validate(json.loads(row.attributes_json)),
        statuses=[Status.model_validate(s) for s in json.loads(row.statuses_json)],
        perks=[Perk.model_validate(p) for p in json.loads(row.perks_json)],
        created_at=row.created_at,
    )


def _to_event(row: DBGameEvent) -> GameEvent:
    return GameEvent(
        id=row.id,
        game_id=row.game_id,
        type=row.type,
        content=row.content,
        character_id=row.character_id,
        turn_id=row.turn_id,
        metadata=json.loads(row.metadata_json),
        created_at=row.created_at,
    )


class GameStore:
    """Persistent store for sessions, players, characters, turns,
    snapshots and events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from warlynx.db.database import async_session

            session_factory = async_session
        self._sessions = session_factory

    # ------------------------------------------------------------------
    # Sessions & players
    # ------------------------------------------------------------------

    async def create_game(
        self,
        host_id: str,
        *,
        name: str = "",
        max_players: int = 6,
        host_display_name: str = "",
    ) -> GameSession:
        """Create a lobby-phase session with the host as its first player."""
        game_id = new_id()
        async with self._sessions() as db, db.begin():
            db.add(
                DBGame(
                    id=game_id,
                    name=name,
                    host_id=host_id,
                    status="lobby",
                    max_players=max_players,
                )
            )
            db.add(
                DBPlayer(
                    game_id=game_id,
                    user_id=host_id,
                    display_name=host_display_name,
                    role="host",
                )
            )
        log.info("Created game %s hosted by %s", game_id, host_id)
        return await self.require_game(game_id)

    async def add_player(
        self, game_id: str, user_id: str, display_name: str = ""
    ) -> GameSession:
        async with self._sessions() as db, db.begin():
            db.add(
                DBPlayer(
                    game_id=game_id,
                    user_id=user_id,
                    display_name=display_name,
                    role="member",
                )
            )
        return await self.require_game(game_id)

    async def create_character(
        self,
        game_id: str,
        user_id: str,
        name: str,
        power_sheet: PowerSheet,
        *,
        description: str = "",
        character_id: str | None = None,
    ) -> Character:
        """Persist a character and attach it to the owning player."""
        character_id = character_id or new_id()
        async with self._sessions() as db, db.begin():
            player = await db.scalar(
                select(DBPlayer).where(
                    DBPlayer.game_id == game_id, DBPlayer.user_id == user_id
                )
            )
            if player is None:
                raise GameNotFound(f"No player {user_id} in game {game_id}")
            row = DBCharacter(
                id=character_id,
                game_id=game_id,
                user_id=user_id,
                name=name,
                description=description,
                power_sheet_json=_dump(power_sheet),
            )
            db.add(row)
            await db.flush()
            player.character_id = character_id
        return _to_character(row)

    async def start_game(
        self, game_id: str, turn_order: Optional[List[str]] = None
    ) -> GameSession:
        """Activate a session.  Turn order defaults to join order."""
        async with self._sessions() as db, db.begin():
            row = await self._load_game_row(db, game_id)
            if row is None:
                raise GameNotFound(f"No game with id '{game_id}'")
            order = turn_order or [p.user_id for p in row.players]
            row.turn_order_json = json.dumps(order)
            row.current_turn_index = 0
            row.status = "active"
            row.started_at = _utcnow()
        return await self.require_game(game_id)

    async def load_game(self, game_id: str) -> GameSession | None:
        async with self._sessions() as db:
            row = await self._load_game_row(db, game_id)
            return _to_game(row) if row else None

    async def require_game(self, game_id: str) -> GameSession:
        game = await self.load_game(game_id)
        if game is None:
            raise GameNotFound(f"No game with id '{game_id}'")
        return game

    async def set_status(self, game_id: str, status: str) -> None:
        values: dict = {"status": status}
        if status == "ended":
            values["completed_at"] = _utcnow()
        async with self._sessions() as db, db.begin():
            await db.execute(update(DBGame).where(DBGame.id == game_id).values(**values))

    async def compare_and_set_turn_index(
        self, game_id: str, expected: int, new: int
    ) -> bool:
        """Move the turn pointer iff it still equals *expected*."""
        async with self._sessions() as db, db.begin():
            result = await db.execute(
                update(DBGame)
                .where(
                    DBGame.id == game_id,
                    DBGame.status == "active",
                    DBGame.current_turn_index == expected,
                )
                .values(current_turn_index=new)
            )
        return result.rowcount == 1

    async def _load_game_row(self, db: AsyncSession, game_id: str) -> DBGame | None:
        return await db.scalar(
            select(DBGame)
            .where(DBGame.id == game_id)
            .options(selectinload(DBGame.players).selectinload(DBPlayer.character))
        )

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    async def get_character(self, character_id: str) -> Character | None:
        async with self._sessions() as db:
            row = await db.get(DBCharacter, character_id)
            return _to_character(row) if row else None

    async def update_power_sheet(
        self,
        character_id: str,
        mutate: Callable[[PowerSheet], PowerSheet],
        *,
        game_id: str,
        turn_id: str,
    ) -> PowerSheet:
        """Row-locked read → *mutate* → write, plus one stats snapshot."""
        async with self._sessions() as db, db.begin():
            row = await db.scalar(
                select(DBCharacter)
                .where(DBCharacter.id == character_id)
                .with_for_update()
            )
            if row is None:
                raise CharacterNotFound(f"No character with id '{character_id}'")
            updated = mutate(PowerSheet.model_validate(row.get_power_sheet()))
            row.power_sheet_json = _dump(updated)
            db.add(
                DBStatsSnapshot(
                    game_id=game_id,
                    character_id=character_id,
                    turn_id=turn_id,
                    level=updated.level,
                    hp=updated.hp,
                    max_hp=updated.max_hp,
                    attributes_json=_dump(updated.attributes),
                    statuses_json=_dump(updated.statuses),
                    perks_json=_dump(updated.perks),
                    created_at=_utcnow(),
                )
            )
        return updated

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def list_snapshots(
        self,
        *,
        character_id: str | None = None,
        game_id: str | None = None,
        turn_id: str | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> List[StatsSnapshot]:
        stmt = select(DBStatsSnapshot)
        if character_id is not None:
            stmt = stmt.where(DBStatsSnapshot.character_id == character_id)
        if game_id is not None:
            stmt = stmt.where(DBStatsSnapshot.game_id == game_id)
        if turn_id is not None:
            stmt = stmt.where(DBStatsSnapshot.turn_id == turn_id)
        if newest_first:
            stmt = stmt.order_by(DBStatsSnapshot.created_at.desc(), DBStatsSnapshot.id.desc())
        else:
            stmt = stmt.order_by(DBStatsSnapshot.created_at, DBStatsSnapshot.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._sessions() as db:
            rows = (await db.scalars(stmt)).all()
            return [_to_snapshot(r) for r in rows]

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def create_turn(self, game_id: str, active_player_id: str) -> Turn:
        """Open a ``pending`` turn; refuses while another is in flight."""
        async with self._sessions() as db, db.begin():
            in_flight = await db.scalar(
                select(DBTurn)
                .where(DBTurn.game_id == game_id, DBTurn.phase.in_(IN_FLIGHT_PHASES))
                .limit(1)
            )
            if in_flight is not None:
                raise TurnInProgress(
                    f"Turn {in_flight.id} for game {game_id} is still {in_flight.phase}"
                )
            last = await db.scalar(
                select(func.max(DBTurn.turn_index)).where(DBTurn.game_id == game_id)
            )
            row = DBTurn(
                id=new_id(),
                game_id=game_id,
                turn_index=(last or 0) + 1,
                active_player_id=active_player_id,
                phase="pending",
                started_at=_utcnow(),
            )
            db.add(row)
        return _to_turn(row)

    async def get_turn(self, turn_id: str) -> Turn | None:
        async with self._sessions() as db:
            row = await db.get(DBTurn, turn_id)
            return _to_turn(row) if row else None

    async def set_turn_phase(self, turn_id: str, phase: str) -> None:
        values: dict = {"phase": phase}
        if phase == "completed":
            values["completed_at"] = _utcnow()
        async with self._sessions() as db, db.begin():
            await db.execute(update(DBTurn).where(DBTurn.id == turn_id).values(**values))

    async def delete_turns(self, turn_ids: Iterable[str]) -> None:
        ids = list(turn_ids)
        if not ids:
            return
        async with self._sessions() as db, db.begin():
            await db.execute(delete(DBTurn).where(DBTurn.id.in_(ids)))

    async def in_flight_turns(self, game_id: str | None = None) -> List[Turn]:
        stmt = select(DBTurn).where(DBTurn.phase.in_(IN_FLIGHT_PHASES))
        if game_id is not None:
            stmt = stmt.where(DBTurn.game_id == game_id)
        async with self._sessions() as db:
            return [_to_turn(r) for r in (await db.scalars(stmt.order_by(DBTurn.started_at))).all()]

    async def stale_turns(self, started_before: datetime) -> List[Turn]:
        """Turns still ``resolving`` that started before *started_before*."""
        stmt = select(DBTurn).where(
            DBTurn.phase == "resolving", DBTurn.started_at < started_before
        )
        async with self._sessions() as db:
            return [_to_turn(r) for r in (await db.scalars(stmt)).all()]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def add_event(self, event: GameEvent) -> GameEvent:
        row = DBGameEvent(
            game_id=event.game_id,
            turn_id=event.turn_id,
            character_id=event.character_id,
            type=event.type,
            content=event.content,
            metadata_json=json.dumps(event.metadata, default=str),
            created_at=event.created_at,
        )
        async with self._sessions() as db, db.begin():
            db.add(row)
        return _to_event(row)

    async def count_events(
        self, game_id: str, character_id: str, types: Iterable[str]
    ) -> int:
        async with self._sessions() as db:
            count = await db.scalar(
                select(func.count(DBGameEvent.id)).where(
                    DBGameEvent.game_id == game_id,
                    DBGameEvent.character_id == character_id,
                    DBGameEvent.type.in_(list(types)),
                )
            )
        return count or 0

    async def recent_events(self, game_id: str, limit: int = 20) -> List[GameEvent]:
        """The last *limit* events, oldest first."""
        async with self._sessions() as db:
            rows = (
                await db.scalars(
                    select(DBGameEvent)
                    .where(DBGameEvent.game_id == game_id)
                    .order_by(DBGameEvent.id.desc())
                    .limit(limit)
                )
            ).all()
        return [_to_event(r) for r in reversed(rows)]
