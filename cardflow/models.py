from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# === Domain objects held by BoardState ===


@dataclass(frozen=True)
class Label:
    name: str
    color: str


@dataclass(frozen=True)
class BoardList:
    id: str
    board_id: str
    title: str
    position: float
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Card:
    id: str
    list_id: str
    title: str
    position: float
    description: Optional[str] = None
    due_date: Optional[str] = None
    created_by: Optional[str] = None
    labels: tuple[Label, ...] = ()
    assignees: tuple[str, ...] = ()  # assignee display names
    comment_count: int = 0
    created_at: Optional[datetime] = None


@dataclass
class BoardSnapshot:
    """Authoritative lists and cards of one board, as fetched from storage."""

    board_id: str
    lists: List[BoardList] = field(default_factory=list)
    cards: List[Card] = field(default_factory=list)


@dataclass
class ActivityEntry:
    board_id: str
    user_id: Optional[str]
    action: str
    entity_type: str
    entity_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)


# === Input schemas ===


class _TitledIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class ListCreate(_TitledIn):
    title: str = Field(min_length=1, max_length=140)


class CardCreate(_TitledIn):
    title: str = Field(min_length=1, max_length=200)


class DragEvent(BaseModel):
    activeId: str
    overId: Optional[str] = None


# === Output schemas ===


class LabelOut(BaseModel):
    name: str
    color: str


class ListOut(BaseModel):
    id: str
    boardId: str
    title: str
    position: float


class CardOut(BaseModel):
    id: str
    listId: str
    title: str
    description: Optional[str]
    position: float
    dueDate: Optional[str]
    labels: list[LabelOut]
    assignees: list[str]
    commentCount: int


class ListView(ListOut):
    cards: list[CardOut]


class BoardView(BaseModel):
    boardId: str
    lists: list[ListView]
    pendingCardId: Optional[str] = None


class MoveOut(BaseModel):
    cardId: str
    fromListId: str
    toListId: str
    position: float
    persisted: bool


class DragOut(BaseModel):
    accepted: bool
    phase: str
    move: Optional[MoveOut] = None
    board: BoardView


def list_out(board_list: BoardList) -> ListOut:
    return ListOut(
        id=board_list.id,
        boardId=board_list.board_id,
        title=board_list.title,
        position=board_list.position,
    )


def card_out(card: Card) -> CardOut:
    return CardOut(
        id=card.id,
        listId=card.list_id,
        title=card.title,
        description=card.description,
        position=card.position,
        dueDate=card.due_date,
        labels=[LabelOut(name=l.name, color=l.color) for l in card.labels],
        assignees=list(card.assignees),
        commentCount=card.comment_count,
    )
