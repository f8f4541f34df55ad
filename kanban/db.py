from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, create_engine, insert, select, update
from sqlalchemy import delete as sql_delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import NotFoundError, StoreUnavailableError, VersionConflictError
from .models import ActivityEntry, Board, BoardList, Card, ChecklistItem, Member, User, now_utc
from .storage import A, resource_name

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    email: Mapped[str] = mapped_column(String(320), index=True)
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)
    boards: Mapped[list] = mapped_column(JSON, default=list)
    version: Mapped[int] = mapped_column(Integer, default=0)


class BoardRow(Base):
    __tablename__ = "boards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(140))
    background: Mapped[str | None] = mapped_column(Text, nullable=True)
    lists: Mapped[list] = mapped_column(JSON, default=list)
    members: Mapped[list] = mapped_column(JSON, default=list)
    activity: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    version: Mapped[int] = mapped_column(Integer, default=0)


class ListRow(Base):
    __tablename__ = "lists"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(140))
    cards: Mapped[list] = mapped_column(JSON, default=list)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=0)


class CardRow(Base):
    __tablename__ = "cards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    tags: Mapped[list] = mapped_column(JSON, default=list)
    members: Mapped[list] = mapped_column(JSON, default=list)
    checklist: Mapped[list] = mapped_column(JSON, default=list)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=0)


ROWS: Dict[type, Type[Base]] = {
    User: UserRow,
    Board: BoardRow,
    BoardList: ListRow,
    Card: CardRow,
}


# === Row <-> aggregate conversion ===


def _members_out(members: List[Member]) -> list:
    return [{"user": m.user, "name": m.name, "role": m.role} for m in members]


def _members_in(raw: list) -> List[Member]:
    return [Member(user=m["user"], name=m["name"], role=m.get("role", "normal")) for m in raw or []]


def to_values(aggregate: Any) -> Dict[str, Any]:
    """Column values for ``aggregate``, excluding ``id`` and ``version``."""
    if isinstance(aggregate, User):
        return {
            "name": aggregate.name,
            "email": aggregate.email,
            "avatar": aggregate.avatar,
            "boards": list(aggregate.boards),
        }
    if isinstance(aggregate, Board):
        return {
            "title": aggregate.title,
            "background": aggregate.background,
            "lists": list(aggregate.lists),
            "members": _members_out(aggregate.members),
            "activity": [{"text": e.text, "date": e.date.isoformat()} for e in aggregate.activity],
            "created_at": aggregate.created_at,
        }
    if isinstance(aggregate, BoardList):
        return {
            "title": aggregate.title,
            "cards": list(aggregate.cards),
            "archived": aggregate.archived,
        }
    if isinstance(aggregate, Card):
        return {
            "title": aggregate.title,
            "description": aggregate.description,
            "tags": list(aggregate.tags),
            "members": _members_out(aggregate.members),
            "checklist": [
                {"id": i.id, "text": i.text, "complete": i.complete} for i in aggregate.checklist
            ],
            "archived": aggregate.archived,
        }
    raise TypeError(f"not an aggregate: {type(aggregate).__name__}")


def from_row(row: Base) -> Any:
    if isinstance(row, UserRow):
        return User(
            id=row.id,
            name=row.name,
            email=row.email,
            avatar=row.avatar,
            boards=list(row.boards or []),
            version=row.version,
        )
    if isinstance(row, BoardRow):
        return Board(
            id=row.id,
            title=row.title,
            background=row.background,
            lists=list(row.lists or []),
            members=_members_in(row.members),
            activity=[
                ActivityEntry(text=e["text"], date=datetime.fromisoformat(e["date"]))
                for e in row.activity or []
            ],
            created_at=row.created_at,
            version=row.version,
        )
    if isinstance(row, ListRow):
        return BoardList(
            id=row.id,
            title=row.title,
            cards=list(row.cards or []),
            archived=row.archived,
            version=row.version,
        )
    if isinstance(row, CardRow):
        return Card(
            id=row.id,
            title=row.title,
            description=row.description or "",
            tags=list(row.tags or []),
            members=_members_in(row.members),
            checklist=[
                ChecklistItem(id=i["id"], text=i["text"], complete=i["complete"])
                for i in row.checklist or []
            ],
            archived=row.archived,
            version=row.version,
        )
    raise TypeError(f"not a row: {type(row).__name__}")


class SqlStore:
    """Store backed by SQLAlchemy.

    Every ``save`` runs in one transaction. Updates are conditional on the
    version the aggregate was loaded with, so conflicting writers from other
    processes are detected as well.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        kwargs: Dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        self.session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # === Facade ===
    def load(self, kind: Type[A], aggregate_id: str) -> A:
        if not aggregate_id:
            raise NotFoundError(resource_name(kind), aggregate_id)
        try:
            with self.session_factory() as session:
                row = session.get(ROWS[kind], aggregate_id)
                if row is None:
                    raise NotFoundError(resource_name(kind), aggregate_id)
                return from_row(row)
        except SQLAlchemyError as exc:
            logger.error("load %s %s failed: %s", resource_name(kind), aggregate_id, exc)
            raise StoreUnavailableError("load", str(exc)) from exc

    def load_many(self, kind: Type[A], aggregate_ids: Sequence[str]) -> List[A]:
        """Load ``aggregate_ids`` in order with a single SELECT."""
        table = ROWS[kind]
        try:
            with self.session_factory() as session:
                rows = session.scalars(select(table).where(table.id.in_(list(aggregate_ids))))
                found = {row.id: from_row(row) for row in rows}
        except SQLAlchemyError as exc:
            logger.error("load_many %s failed: %s", resource_name(kind), exc)
            raise StoreUnavailableError("load", str(exc)) from exc
        missing = [i for i in aggregate_ids if i not in found]
        if missing:
            raise NotFoundError(resource_name(kind), missing[0])
        return [found[i] for i in aggregate_ids]

    def save(self, *aggregates: Any, deleted: Sequence[Tuple[type, str]] = ()) -> None:
        try:
            with self.session_factory.begin() as session:
                for aggregate in aggregates:
                    self._write(session, aggregate)
                for kind, aggregate_id in deleted:
                    self._remove(session, kind, aggregate_id)
        except SQLAlchemyError as exc:
            logger.error("save failed: %s", exc)
            raise StoreUnavailableError("save", str(exc)) from exc
        for aggregate in aggregates:
            aggregate.version += 1

    def delete(self, kind: type, aggregate_id: str) -> None:
        self.save(deleted=[(kind, aggregate_id)])

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        try:
            with self.session_factory() as session:
                for row in session.scalars(select(UserRow)):
                    if row.email.lower() == wanted:
                        return from_row(row)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("query", str(exc)) from exc
        return None

    def list_users(self) -> List[User]:
        try:
            with self.session_factory() as session:
                return [from_row(row) for row in session.scalars(select(UserRow))]
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("query", str(exc)) from exc

    # === Helpers ===
    def _write(self, session, aggregate: Any) -> None:
        kind = type(aggregate)
        if kind not in ROWS:
            raise TypeError(f"not an aggregate: {kind.__name__}")
        table = ROWS[kind]
        values = to_values(aggregate)
        if aggregate.version == 0:
            try:
                session.execute(insert(table).values(id=aggregate.id, version=1, **values))
            except IntegrityError as exc:
                raise VersionConflictError(resource_name(kind), aggregate.id) from exc
            return
        result = session.execute(
            update(table)
            .where(table.id == aggregate.id, table.version == aggregate.version)
            .values(version=aggregate.version + 1, **values)
        )
        if result.rowcount != 1:
            raise VersionConflictError(resource_name(kind), aggregate.id)

    def _remove(self, session, kind: type, aggregate_id: str) -> None:
        table = ROWS[kind]
        result = session.execute(sql_delete(table).where(table.id == aggregate_id))
        if result.rowcount != 1:
            raise NotFoundError(resource_name(kind), aggregate_id)
