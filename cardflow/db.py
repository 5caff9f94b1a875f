from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import anyio
from sqlalchemy import JSON, DateTime, Float, ForeignKey, String, Text, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker

from . import config
from .feed import LocalChangeFeed
from .models import BoardList, BoardSnapshot, Card, Label, now_utc


class Base(DeclarativeBase):
    pass


class BoardModel(Base):
    __tablename__ = "boards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(140), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    lists: Mapped[list[ListModel]] = relationship(back_populates="board", cascade="all, delete-orphan")


class ListModel(Base):
    __tablename__ = "lists"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    board_id: Mapped[str] = mapped_column(String(36), ForeignKey("boards.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(140))
    position: Mapped[float] = mapped_column(Float, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    board: Mapped[BoardModel] = relationship(back_populates="lists")
    cards: Mapped[list[CardModel]] = relationship(back_populates="board_list", cascade="all, delete-orphan")


class Profile(Base):
    __tablename__ = "profiles"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)


class CardModel(Base):
    __tablename__ = "cards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    list_id: Mapped[str] = mapped_column(String(36), ForeignKey("lists.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[float] = mapped_column(Float, index=True)
    due_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    board_list: Mapped[ListModel] = relationship(back_populates="cards")
    labels: Mapped[list[CardLabel]] = relationship(cascade="all, delete-orphan")
    assignees: Mapped[list[CardAssignee]] = relationship(cascade="all, delete-orphan")


class CardLabel(Base):
    __tablename__ = "card_labels"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    card_id: Mapped[str] = mapped_column(String(36), ForeignKey("cards.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(64))
    color: Mapped[str] = mapped_column(String(16))


class CardAssignee(Base):
    __tablename__ = "card_assignees"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    card_id: Mapped[str] = mapped_column(String(36), ForeignKey("cards.id", ondelete="CASCADE"))
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey("profiles.id"))

    profile: Mapped[Profile] = relationship()


class Comment(Base):
    __tablename__ = "comments"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    card_id: Mapped[str] = mapped_column(String(36), ForeignKey("cards.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(128))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    board_id: Mapped[str] = mapped_column(String(36), ForeignKey("boards.id", ondelete="CASCADE"))
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    action: Mapped[str] = mapped_column(String(64))
    entity_type: Mapped[str] = mapped_column(String(32))
    entity_id: Mapped[str] = mapped_column(String(36))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


def _to_list(row: ListModel) -> BoardList:
    return BoardList(
        id=row.id,
        board_id=row.board_id,
        title=row.title,
        position=row.position,
        created_at=row.created_at,
    )


def _to_card(row: CardModel, comment_count: int = 0) -> Card:
    return Card(
        id=row.id,
        list_id=row.list_id,
        title=row.title,
        position=row.position,
        description=row.description,
        due_date=row.due_date,
        created_by=row.created_by,
        labels=tuple(Label(name=l.name, color=l.color) for l in row.labels),
        assignees=tuple(a.profile.full_name or a.user_id for a in row.assignees),
        comment_count=comment_count,
        created_at=row.created_at,
    )


class SqlStorage:
    """SQLAlchemy-backed board storage.

    Queries are blocking, so each call runs in a worker thread; change
    notifications are published back on the caller's event loop.
    """

    def __init__(self, url: Optional[str] = None, feed: Optional[LocalChangeFeed] = None) -> None:
        url = url or config.DATABASE_URL
        self.feed = feed
        self.engine = create_engine(
            url,
            connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def create_board(self, board_id: Optional[str] = None, title: str = "") -> str:
        with self.SessionLocal() as db:
            board = BoardModel(id=board_id or str(uuid.uuid4()), title=title)
            db.add(board)
            db.commit()
            return board.id

    def _publish(self, table: str) -> None:
        if self.feed is not None:
            self.feed.publish(table)

    # === Blocking implementations ===

    def _fetch_board(self, board_id: str) -> BoardSnapshot:
        with self.SessionLocal() as db:
            if db.get(BoardModel, board_id) is None:
                raise KeyError(board_id)
            lists = db.scalars(
                select(ListModel).where(ListModel.board_id == board_id).order_by(ListModel.position, ListModel.id)
            ).all()
            list_ids = [l.id for l in lists]
            cards = db.scalars(
                select(CardModel)
                .where(CardModel.list_id.in_(list_ids))
                .options(
                    selectinload(CardModel.labels),
                    selectinload(CardModel.assignees).selectinload(CardAssignee.profile),
                )
                .order_by(CardModel.position, CardModel.id)
            ).all()
            counts = dict(
                db.execute(
                    select(Comment.card_id, func.count(Comment.id))
                    .where(Comment.card_id.in_([c.id for c in cards]))
                    .group_by(Comment.card_id)
                ).all()
            )
            return BoardSnapshot(
                board_id=board_id,
                lists=[_to_list(l) for l in lists],
                cards=[_to_card(c, counts.get(c.id, 0)) for c in cards],
            )

    def _insert_list(self, board_id: str, title: str, position: float) -> BoardList:
        with self.SessionLocal() as db:
            if db.get(BoardModel, board_id) is None:
                raise KeyError(board_id)
            row = ListModel(id=str(uuid.uuid4()), board_id=board_id, title=title, position=position)
            db.add(row)
            db.commit()
            return _to_list(row)

    def _insert_card(self, list_id: str, title: str, position: float, created_by: Optional[str]) -> Card:
        with self.SessionLocal() as db:
            if db.get(ListModel, list_id) is None:
                raise KeyError(list_id)
            row = CardModel(
                id=str(uuid.uuid4()),
                list_id=list_id,
                title=title,
                position=position,
                created_by=created_by,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_card(row)

    def _update_card(self, card_id: str, list_id: Optional[str], position: Optional[float]) -> Card:
        with self.SessionLocal() as db:
            row = db.get(CardModel, card_id)
            if row is None:
                raise KeyError(card_id)
            if list_id is not None:
                if db.get(ListModel, list_id) is None:
                    raise KeyError(list_id)
                row.list_id = list_id
            if position is not None:
                row.position = position
            db.commit()
            db.refresh(row)
            count = db.scalar(select(func.count(Comment.id)).where(Comment.card_id == card_id)) or 0
            return _to_card(row, count)

    def _insert_activity_log(self, entry: Dict[str, Any]) -> None:
        with self.SessionLocal() as db:
            db.add(ActivityLog(**entry))
            db.commit()

    # === BoardStorage ===

    async def fetch_board(self, board_id: str) -> BoardSnapshot:
        return await anyio.to_thread.run_sync(self._fetch_board, board_id)

    async def insert_list(self, board_id: str, title: str, position: float) -> BoardList:
        board_list = await anyio.to_thread.run_sync(self._insert_list, board_id, title, position)
        self._publish("lists")
        return board_list

    async def insert_card(
        self, list_id: str, title: str, position: float, created_by: Optional[str]
    ) -> Card:
        card = await anyio.to_thread.run_sync(self._insert_card, list_id, title, position, created_by)
        self._publish("cards")
        return card

    async def update_card(
        self, card_id: str, *, list_id: Optional[str] = None, position: Optional[float] = None
    ) -> Card:
        card = await anyio.to_thread.run_sync(self._update_card, card_id, list_id, position)
        self._publish("cards")
        return card

    async def insert_activity_log(
        self,
        board_id: str,
        user_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = {
            "board_id": board_id,
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata_": dict(metadata or {}),
        }
        await anyio.to_thread.run_sync(self._insert_activity_log, entry)
        self._publish("activity_logs")
