import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request

from . import config
from .auth import get_current_user
from .drag import DragPhase, MoveResult
from .errors import FetchError, PersistenceError, ValidationError
from .feed import LocalChangeFeed
from .models import (
    BoardView,
    CardCreate,
    CardOut,
    DragEvent,
    DragOut,
    ListCreate,
    ListOut,
    MoveOut,
    card_out,
    list_out,
)
from .session import BoardSession
from .storage import BoardStorage, MemoryStorage

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionRegistry:
    """Open board sessions, one per board, shared by every request.

    At most ``max_open`` sessions are kept; beyond that the least recently
    used idle ones are closed.
    """

    def __init__(
        self, storage: BoardStorage, feed: LocalChangeFeed, max_open: Optional[int] = None
    ) -> None:
        self.storage = storage
        self.feed = feed
        self.max_open = max_open or config.MAX_OPEN_BOARDS
        self.sessions: OrderedDict[str, BoardSession] = OrderedDict()

    async def get(self, board_id: str) -> BoardSession:
        session = self.sessions.get(board_id)
        if session is not None:
            self.sessions.move_to_end(board_id)
            return session
        session = BoardSession(board_id, self.storage, self.feed)
        try:
            await session.open(strict=True)
        except FetchError as exc:
            if isinstance(exc.__cause__, KeyError):
                raise HTTPException(status_code=404, detail="board_not_found")
            logger.warning("%s", exc)
            raise HTTPException(status_code=502, detail="fetch_failed")
        if board_id in self.sessions:
            # another request opened it while this one was loading
            await session.close()
            return self.sessions[board_id]
        self.sessions[board_id] = session
        await self.evict()
        return session

    async def evict(self) -> None:
        for board_id in list(self.sessions)[:-1]:
            if len(self.sessions) <= self.max_open:
                return
            session = self.sessions[board_id]
            if session.drag_phase is not DragPhase.IDLE:
                continue
            del self.sessions[board_id]
            logger.info("closing idle board %s", board_id)
            await session.close()

    async def close_all(self) -> None:
        for session in list(self.sessions.values()):
            await session.close()
        self.sessions.clear()


def default_storage(feed: LocalChangeFeed) -> BoardStorage:
    if config.STORAGE == "sql":
        from .db import SqlStorage

        storage = SqlStorage(config.DATABASE_URL, feed=feed)
        storage.init_db()
        return storage
    return MemoryStorage(feed=feed)


def create_app(storage: Optional[BoardStorage] = None, feed: Optional[LocalChangeFeed] = None) -> FastAPI:
    feed = feed or LocalChangeFeed()
    registry = SessionRegistry(storage or default_storage(feed), feed)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.close_all()

    app = FastAPI(title="Cardflow API", version=config.VERSION, lifespan=lifespan)
    app.state.registry = registry
    app.include_router(router)
    return app


# === Helpers ===


def registry_of(request: Request) -> SessionRegistry:
    return request.app.state.registry


def move_out(result: Optional[MoveResult]) -> Optional[MoveOut]:
    if result is None:
        return None
    return MoveOut(
        cardId=result.card_id,
        fromListId=result.from_list_id,
        toListId=result.to_list_id,
        position=result.position,
        persisted=result.persisted,
    )


def check_drag_owner(session: BoardSession, user_id: str) -> None:
    current = session.drag.session
    if current is not None and current.user_id != user_id:
        raise HTTPException(status_code=409, detail="drag_in_progress")


def drag_out(session: BoardSession, accepted: bool, result: Optional[MoveResult] = None) -> DragOut:
    return DragOut(
        accepted=accepted,
        phase=session.drag_phase.value,
        move=move_out(result),
        board=session.view(),
    )


# === Health & metadata ===


@router.get("/v1/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/v1/version")
def version() -> dict:
    return {"version": config.VERSION}


# === Board view ===


@router.get("/v1/boards/{board_id}", response_model=BoardView)
async def get_board(
    board_id: str,
    q: Optional[str] = None,
    user: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(registry_of),
):
    session = await registry.get(board_id)
    return session.view(q)


# === Creation ===


@router.post("/v1/boards/{board_id}/lists", response_model=ListOut, status_code=201)
async def create_list(
    board_id: str,
    payload: ListCreate,
    user: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(registry_of),
):
    session = await registry.get(board_id)
    try:
        board_list = await session.add_list(payload.title)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except PersistenceError:
        raise HTTPException(status_code=502, detail="persistence_failed")
    return list_out(board_list)


@router.post("/v1/boards/{board_id}/lists/{list_id}/cards", response_model=CardOut, status_code=201)
async def create_card(
    board_id: str,
    list_id: str,
    payload: CardCreate,
    user: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(registry_of),
):
    session = await registry.get(board_id)
    if not session.state.has_list(list_id):
        raise HTTPException(status_code=404, detail="list_not_found")
    try:
        card = await session.add_card(list_id, payload.title, created_by=user)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except PersistenceError:
        raise HTTPException(status_code=502, detail="persistence_failed")
    return card_out(card)


# === Drag events ===


@router.post("/v1/boards/{board_id}/drag:start", response_model=DragOut)
async def drag_start(
    board_id: str,
    payload: DragEvent,
    user: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(registry_of),
):
    session = await registry.get(board_id)
    accepted = session.drag_start(payload.activeId, user_id=user)
    return drag_out(session, accepted)


@router.post("/v1/boards/{board_id}/drag:over", response_model=DragOut)
async def drag_over(
    board_id: str,
    payload: DragEvent,
    user: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(registry_of),
):
    session = await registry.get(board_id)
    check_drag_owner(session, user)
    session.drag_over(payload.activeId, payload.overId)
    return drag_out(session, True)


@router.post("/v1/boards/{board_id}/drag:end", response_model=DragOut)
async def drag_end(
    board_id: str,
    payload: DragEvent,
    user: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(registry_of),
):
    session = await registry.get(board_id)
    check_drag_owner(session, user)
    result = await session.drag_end(payload.activeId, payload.overId)
    return drag_out(session, result is not None, result)


app = create_app()
