"""Card and card-list ordering policies built on the chain store.

These services validate scope membership and application rules, then hand
pointer maintenance to ``ChainStore``. They do not check roles; callers go
through ``BoardService`` for that.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from sqlalchemy import delete, insert, select, update

from . import db
from .chain import CARD_CHAIN, LIST_CHAIN, ChainStore
from .errors import NotFound, ValidationError
from .iterator import ChainIterator
from .models import (
    LABEL_SLOTS,
    SENTINEL,
    Attachment,
    Card,
    CardFlag,
    CardList,
)
from .uow import UnitOfWork

logger = logging.getLogger(__name__)

LIST_NAME_MAX = 64
CARD_TITLE_MAX = 255
ATTACHMENT_NAME_MAX = 100
DEFAULT_CARD_CONTENT = ""

AttachmentSink = Callable[[List[Attachment]], None]


def clean_text(value: Optional[str], field: str, max_length: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} cannot be empty")
    if len(text) > max_length:
        raise ValidationError(f"{field} is longer than {max_length} characters")
    return text


class ListOrderingService:
    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow
        self.chain = ChainStore(uow, LIST_CHAIN)

    def get(self, board_id: int, list_id: int) -> CardList:
        row = self.chain.get(list_id)
        if row is None:
            raise NotFound("The specified list does not exist")
        if row["board_id"] != board_id:
            raise NotFound("The specified list is not part of the specified board")
        return CardList.from_row(row)

    def ordered(self, board_id: int) -> List[CardList]:
        lists = [CardList.from_row(row) for row in self.chain.rows(board_id)]
        return list(ChainIterator(lists, "prev_list_id", "next_list_id", scope=("board", board_id)))

    def card_count(self, list_id: int) -> int:
        return ChainStore(self.uow, CARD_CHAIN).count(list_id)

    def add_new(self, board_id: int, after_id: int, name: str) -> CardList:
        name = clean_text(name, "Card list name", LIST_NAME_MAX)
        with self.uow.transaction():
            # validate before the row exists so a bad anchor writes nothing
            self.chain.resolve_anchor(board_id, after_id)
            new_id = self.uow.execute(
                insert(db.cardlists).values(board_id=board_id, name=name, prev_list_id=SENTINEL, next_list_id=SENTINEL)
            ).inserted_primary_key[0]
            self.chain.insert_after(board_id, after_id, new_id)
            created = self.get(board_id, new_id)
        logger.info("Board %d: added list %d after %d", board_id, new_id, after_id)
        return created

    def rename(self, board_id: int, list_id: int, name: str) -> CardList:
        name = clean_text(name, "Card list name", LIST_NAME_MAX)
        with self.uow.transaction():
            self.get(board_id, list_id)
            self.uow.execute(update(db.cardlists).where(db.cardlists.c.id == list_id).values(name=name))
            renamed = self.get(board_id, list_id)
        return renamed

    def delete(self, board_id: int, list_id: int) -> CardList:
        """Delete an empty list and return its last state."""
        with self.uow.transaction():
            old = self.get(board_id, list_id)
            cards = self.card_count(list_id)
            if cards > 0:
                raise ValidationError(f"List {list_id} still contains {cards} cards and cannot be deleted")
            self.chain.remove(self.chain.get(list_id))
            self.uow.execute(delete(db.cardlists).where(db.cardlists.c.id == list_id))
        logger.info("Board %d: deleted list %d", board_id, list_id)
        return old

    def move(self, board_id: int, list_id: int, after_id: int) -> CardList:
        """Reorder a list within its board so it follows ``after_id`` (0 = first)."""
        with self.uow.transaction():
            self.get(board_id, list_id)
            self.chain.reassign_scope(list_id, board_id, after_id)
            moved = self.get(board_id, list_id)
        logger.info("Board %d: moved list %d after %d", board_id, list_id, after_id)
        return moved


class CardOrderingService:
    def __init__(
        self,
        uow: UnitOfWork,
        on_attachments_deleted: Optional[AttachmentSink] = None,
        clock: Callable[[], int] = db.now_ts,
    ) -> None:
        self.uow = uow
        self.chain = ChainStore(uow, CARD_CHAIN)
        self.lists = ListOrderingService(uow)
        self.on_attachments_deleted = on_attachments_deleted
        self.clock = clock

    # === Reads ===

    def get(self, board_id: int, card_id: int) -> Card:
        row = self.chain.get(card_id)
        if row is None:
            raise NotFound("The specified card does not exist")
        if row["board_id"] != board_id:
            raise NotFound("The card is not part of the specified board")
        return Card.from_row(row)

    def ordered(self, list_id: int) -> List[Card]:
        cards = [Card.from_row(row) for row in self.chain.rows(list_id)]
        return list(ChainIterator(cards, "prev_card_id", "next_card_id", scope=("list", list_id)))

    def board_cards(self, board_id: int) -> List[Card]:
        """Every card of a board, unordered."""
        rows = self.uow.execute(select(db.cards).where(db.cards.c.board_id == board_id)).mappings()
        return [Card.from_row(row) for row in rows]

    def attachments(self, card_id: int) -> List[Attachment]:
        a = db.attachments
        rows = self.uow.execute(select(a).where(a.c.card_id == card_id).order_by(a.c.id)).mappings()
        return [Attachment.from_row(row) for row in rows]

    def open(self, board_id: int, card_id: int) -> Card:
        return self.get(board_id, card_id).with_attachments(self.attachments(card_id))

    # === Chain operations ===

    def add_new(
        self,
        board_id: int,
        list_id: int,
        after_id: int,
        title: str,
        content: str = DEFAULT_CARD_CONTENT,
        cover_attachment_id: int = 0,
        label_mask: int = 0,
        flags: int = 0,
        last_moved_time: Optional[int] = None,
    ) -> Card:
        title = clean_text(title, "Card title", CARD_TITLE_MAX)
        with self.uow.transaction():
            self.lists.get(board_id, list_id)
            self.chain.resolve_anchor(list_id, after_id)
            new_id = self.uow.execute(
                insert(db.cards).values(
                    board_id=board_id,
                    cardlist_id=list_id,
                    title=title,
                    content=content or "",
                    prev_card_id=SENTINEL,
                    next_card_id=SENTINEL,
                    cover_attachment_id=cover_attachment_id,
                    label_mask=label_mask,
                    flags=int(flags),
                    last_moved_time=self.clock() if last_moved_time is None else last_moved_time,
                )
            ).inserted_primary_key[0]
            self.chain.insert_after(list_id, after_id, new_id)
            created = self.get(board_id, new_id)
        logger.info("Board %d: added card %d to list %d after %d", board_id, new_id, list_id, after_id)
        return created

    def delete(self, board_id: int, card_id: int, delete_attachments: bool = True) -> Card:
        """Delete a card and return its last state.

        With ``delete_attachments`` the card's attachment rows go too, and
        the deleted records are passed to the attachment sink once the
        transaction has committed.
        """
        with self.uow.transaction():
            old = self.get(board_id, card_id)
            self.chain.remove(self.chain.get(card_id))
            self.uow.execute(delete(db.cards).where(db.cards.c.id == card_id))
            if delete_attachments:
                removed = self.attachments(card_id)
                self.uow.execute(delete(db.attachments).where(db.attachments.c.card_id == card_id))
                if removed and self.on_attachments_deleted is not None:
                    sink = self.on_attachments_deleted
                    self.uow.after_commit(lambda: sink(removed))
        logger.info("Board %d: deleted card %d", board_id, card_id)
        return old

    def move(self, board_id: int, card_id: int, dest_list_id: int, after_id: int) -> Card:
        """Place a card after ``after_id`` in ``dest_list_id``.

        ``last_moved_time`` changes only when the card changes list.
        """
        with self.uow.transaction():
            card = self.get(board_id, card_id)
            self.lists.get(board_id, dest_list_id)
            self.chain.reassign_scope(card_id, dest_list_id, after_id)
            if card.cardlist_id != dest_list_id:
                self.uow.execute(
                    update(db.cards).where(db.cards.c.id == card_id).values(last_moved_time=self.clock())
                )
            moved = self.get(board_id, card_id)
        logger.info(
            "Board %d: moved card %d from list %d to list %d after %d",
            board_id, card_id, card.cardlist_id, dest_list_id, after_id,
        )
        return moved

    # === Field updates ===

    def _update(self, board_id: int, card_id: int, **values) -> Card:
        with self.uow.transaction():
            self.get(board_id, card_id)
            self.uow.execute(update(db.cards).where(db.cards.c.id == card_id).values(**values))
            updated = self.get(board_id, card_id)
        return updated

    def update_title(self, board_id: int, card_id: int, title: str) -> Card:
        return self._update(board_id, card_id, title=clean_text(title, "Card title", CARD_TITLE_MAX))

    def update_content(self, board_id: int, card_id: int, content: str) -> Card:
        return self._update(board_id, card_id, content=content or "")

    def update_flags(self, board_id: int, card_id: int, locked: Optional[bool] = None) -> Card:
        with self.uow.transaction():
            flags = self.get(board_id, card_id).flags
            if locked is not None:
                flags = flags | CardFlag.LOCKED if locked else flags & ~CardFlag.LOCKED
            updated = self._update(board_id, card_id, flags=int(flags))
        return updated

    def set_label(self, board_id: int, card_id: int, index: int, active: bool) -> Card:
        if not 0 <= index < LABEL_SLOTS:
            raise ValidationError(f"Invalid label index {index}")
        with self.uow.transaction():
            mask = self.get(board_id, card_id).label_mask
            mask = mask | (1 << index) if active else mask & ~(1 << index)
            updated = self._update(board_id, card_id, label_mask=mask)
        return updated

    def set_cover(self, board_id: int, card_id: int, attachment_id: int) -> Card:
        """Use one of the card's attachments as its cover; 0 clears it."""
        with self.uow.transaction():
            self.get(board_id, card_id)
            if attachment_id != 0 and attachment_id not in {a.id for a in self.attachments(card_id)}:
                raise ValidationError(f"Attachment {attachment_id} does not belong to card {card_id}")
            updated = self._update(board_id, card_id, cover_attachment_id=attachment_id)
        return updated

    # === Attachments ===

    def get_attachment(self, board_id: int, attachment_id: int) -> Attachment:
        a = db.attachments
        row = self.uow.execute(select(a).where(a.c.id == attachment_id)).mappings().first()
        if row is None:
            raise NotFound("Attachment not found")
        if row["board_id"] != board_id:
            raise NotFound("The attachment is not part of the specified board")
        return Attachment.from_row(row)

    def rename_attachment(self, board_id: int, attachment_id: int, name: str) -> Attachment:
        name = clean_text(name, "Attachment name", ATTACHMENT_NAME_MAX)
        with self.uow.transaction():
            self.get_attachment(board_id, attachment_id)
            self.uow.execute(update(db.attachments).where(db.attachments.c.id == attachment_id).values(name=name))
            renamed = self.get_attachment(board_id, attachment_id)
        return renamed

    def delete_attachment(self, board_id: int, attachment_id: int) -> Attachment:
        """Delete an attachment row, dropping it as its card's cover."""
        with self.uow.transaction():
            old = self.get_attachment(board_id, attachment_id)
            self.uow.execute(delete(db.attachments).where(db.attachments.c.id == attachment_id))
            self.uow.execute(
                update(db.cards)
                .where(db.cards.c.id == old.card_id, db.cards.c.cover_attachment_id == attachment_id)
                .values(cover_attachment_id=0)
            )
            if self.on_attachments_deleted is not None:
                sink = self.on_attachments_deleted
                self.uow.after_commit(lambda: sink([old]))
        logger.info("Board %d: deleted attachment %d of card %d", board_id, attachment_id, old.card_id)
        return old

    def add_attachment(self, board_id: int, card_id: int, name: str, extension: Optional[str], guid: str) -> Attachment:
        """Register an attachment row; the file itself is stored elsewhere."""
        name = clean_text(name, "Attachment name", ATTACHMENT_NAME_MAX)
        with self.uow.transaction():
            self.get(board_id, card_id)
            new_id = self.uow.execute(
                insert(db.attachments).values(
                    board_id=board_id,
                    card_id=card_id,
                    name=name,
                    extension=extension,
                    guid=guid,
                )
            ).inserted_primary_key[0]
        return Attachment(id=int(new_id), board_id=board_id, card_id=card_id, name=name, extension=extension, guid=guid)
