from __future__ import annotations

import time

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import settings


def now_ts() -> int:
    return int(time.time())


class Base(DeclarativeBase):
    pass


class BoardModel(Base):
    __tablename__ = "boards"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(64))
    closed: Mapped[bool] = mapped_column(Boolean, default=False)
    label_names: Mapped[str] = mapped_column(Text, default="")
    label_colors: Mapped[str] = mapped_column(Text, default="")
    last_modified_time: Mapped[int] = mapped_column(Integer, default=now_ts)


class CardListModel(Base):
    __tablename__ = "cardlists"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(64))
    # 0 is the "no neighbour" sentinel, so these are not foreign keys
    prev_list_id: Mapped[int] = mapped_column(Integer, default=0)
    next_list_id: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("ix_cardlists_chain", "board_id", "prev_list_id"),
    )


class CardModel(Base):
    __tablename__ = "cards"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), index=True)
    cardlist_id: Mapped[int] = mapped_column(Integer, ForeignKey("cardlists.id"), index=True)
    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text, default="")
    prev_card_id: Mapped[int] = mapped_column(Integer, default=0)
    next_card_id: Mapped[int] = mapped_column(Integer, default=0)
    cover_attachment_id: Mapped[int] = mapped_column(Integer, default=0)
    label_mask: Mapped[int] = mapped_column(Integer, default=0)
    flags: Mapped[int] = mapped_column(Integer, default=0)
    last_moved_time: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("ix_cards_chain", "cardlist_id", "prev_card_id"),
    )


class PermissionModel(Base):
    __tablename__ = "permissions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(Integer, ForeignKey("boards.id", ondelete="CASCADE"))
    # negative ids are templates, not accounts
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    user_type: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("board_id", "user_id", name="uq_permission"),
    )


class AttachmentModel(Base):
    __tablename__ = "attachments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), index=True)
    card_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(100))
    extension: Mapped[str | None] = mapped_column(String(10), nullable=True)
    guid: Mapped[str] = mapped_column(String(36))


boards = BoardModel.__table__
cardlists = CardListModel.__table__
cards = CardModel.__table__
permissions = PermissionModel.__table__
attachments = AttachmentModel.__table__


def make_engine(url: str, **kwargs) -> Engine:
    """Create an engine whose transactions support nested savepoints.

    pysqlite defers BEGIN until the first DML statement, which would turn the
    first SAVEPOINT into the outermost transaction. SQLite connections are
    switched to driver autocommit and emit BEGIN themselves.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    connect_args = dict(kwargs.pop("connect_args", {}))
    connect_args.setdefault("check_same_thread", False)
    engine = create_engine(url, connect_args=connect_args, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # pragma: no cover - driver callback
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # pragma: no cover - driver callback
        conn.exec_driver_sql("BEGIN")

    return engine


engine = make_engine(settings.DATABASE_URL)


def init_db(bind: Engine = engine) -> None:
    Base.metadata.create_all(bind=bind)
