"""Doubly-linked chain maintenance over relational rows.

Each row of a chained table carries ``prev``/``next`` pointer columns and a
scope column; rows sharing a scope value form one chain, ``0`` marks its
ends. Every mutation here re-links at most three rows and runs inside a
single unit-of-work level, so a failure never leaves a half-linked chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import Table, func, select, update

from . import db
from .errors import NotFound, ValidationError
from .models import SENTINEL
from .uow import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainLayout:
    """Where a table keeps its chain: scope and pointer column names."""

    table: Table
    scope: str
    prev: str
    next: str
    label: str

    def col(self, name: str):
        return self.table.c[name]

    @property
    def id(self):
        return self.table.c.id


CARD_CHAIN = ChainLayout(db.cards, scope="cardlist_id", prev="prev_card_id", next="next_card_id", label="card")
LIST_CHAIN = ChainLayout(db.cardlists, scope="board_id", prev="prev_list_id", next="next_list_id", label="list")


class ChainStore:
    def __init__(self, uow: UnitOfWork, layout: ChainLayout) -> None:
        self.uow = uow
        self.layout = layout

    # === Queries ===

    def get(self, node_id: int, lock: bool = False) -> Optional[Mapping[str, Any]]:
        stmt = select(self.layout.table).where(self.layout.id == node_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.uow.execute(stmt).mappings().first()

    def count(self, scope: int, exclude: int = SENTINEL) -> int:
        L = self.layout
        stmt = select(func.count()).select_from(L.table).where(L.col(L.scope) == scope)
        if exclude != SENTINEL:
            stmt = stmt.where(L.id != exclude)
        return int(self.uow.execute(stmt).scalar_one())

    def successor_of(self, scope: int, after_id: int, exclude: int = SENTINEL) -> int:
        """Id of the node whose ``prev`` is ``after_id`` (the head when 0), or 0."""
        L = self.layout
        stmt = (
            select(L.id)
            .where(L.col(L.scope) == scope, L.col(L.prev) == after_id)
            .order_by(L.id)
            .limit(1)
            .with_for_update()
        )
        if exclude != SENTINEL:
            stmt = stmt.where(L.id != exclude)
        found = self.uow.execute(stmt).scalar()
        return int(found) if found is not None else SENTINEL

    def chain_head(self, scope: int) -> int:
        return self.successor_of(scope, SENTINEL)

    def rows(self, scope: int) -> list[Mapping[str, Any]]:
        L = self.layout
        return list(self.uow.execute(select(L.table).where(L.col(L.scope) == scope)).mappings())

    # === Mutations ===

    def resolve_anchor(self, scope: int, after_id: int, node_id: int = SENTINEL) -> int:
        """Validate ``after_id`` as an insertion point and return the node that will follow.

        Raises ValidationError before anything is written.
        """
        L = self.layout
        if after_id < 0:
            raise ValidationError(f"Invalid previous {L.label} id {after_id}")
        if node_id != SENTINEL and after_id == node_id:
            raise ValidationError(f"A {L.label} cannot be placed after itself")
        if after_id != SENTINEL:
            if self.count(scope, exclude=node_id) == 0:
                raise ValidationError(f"Previous {L.label} {after_id} is not in the empty destination")
            anchor = self.get(after_id, lock=True)
            if anchor is None or anchor[L.scope] != scope:
                raise ValidationError(f"Previous {L.label} {after_id} is not in the destination")
        return self.successor_of(scope, after_id, exclude=node_id)

    def insert_after(self, scope: int, after_id: int, node_id: int) -> int:
        """Link an existing row into ``scope`` right after ``after_id`` (0 = head).

        The row's own scope column is set as well. Returns the id of the node
        now following it.
        """
        L = self.layout
        with self.uow.transaction():
            next_id = self.resolve_anchor(scope, after_id, node_id)
            self.uow.execute(
                update(L.table)
                .where(L.id == node_id)
                .values({L.scope: scope, L.prev: after_id, L.next: next_id})
            )
            if next_id != SENTINEL:
                self.uow.execute(update(L.table).where(L.id == next_id).values({L.prev: node_id}))
            if after_id != SENTINEL:
                self.uow.execute(update(L.table).where(L.id == after_id).values({L.next: node_id}))
        logger.debug("Linked %s %d in scope %d between %d and %d", L.label, node_id, scope, after_id, next_id)
        return next_id

    def remove(self, node: Mapping[str, Any]) -> None:
        """Re-link the neighbours of ``node`` around it.

        ``node`` is the row as read before the call; its own pointers are
        left untouched so the caller can delete or re-insert it.
        """
        L = self.layout
        prev_id = int(node[L.prev] or SENTINEL)
        next_id = int(node[L.next] or SENTINEL)
        with self.uow.transaction():
            if prev_id != SENTINEL:
                self.uow.execute(update(L.table).where(L.id == prev_id).values({L.next: next_id}))
            if next_id != SENTINEL:
                self.uow.execute(update(L.table).where(L.id == next_id).values({L.prev: prev_id}))
        logger.debug("Unlinked %s %d (prev=%d, next=%d)", L.label, node["id"], prev_id, next_id)

    def reassign_scope(self, node_id: int, new_scope: int, new_after_id: int) -> Mapping[str, Any]:
        """Move a row to ``new_scope`` after ``new_after_id``; returns the row as it was."""
        L = self.layout
        with self.uow.transaction():
            node = self.get(node_id, lock=True)
            if node is None:
                raise NotFound(f"The specified {L.label} does not exist")
            self.resolve_anchor(new_scope, new_after_id, node_id)
            self.remove(node)
            self.insert_after(new_scope, new_after_id, node_id)
        return node
