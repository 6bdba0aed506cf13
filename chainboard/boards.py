"""Permission-gated entry points used by the HTTP layer.

Every operation resolves the caller's role on the board, runs the ordering
services inside a single transaction and bumps the board's modified time on
writes.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from sqlalchemy import delete, insert, select, update

from . import db
from .errors import NotFound, PermissionDenied, ValidationError
from .iterator import ChainIterator
from .models import (
    DEFAULT_LABEL_COLORS,
    MAX_LABEL_COUNT,
    Attachment,
    Board,
    BoardView,
    Card,
    CardList,
    Label,
    Permission,
    RequestContext,
    UserType,
)
from .ordering import AttachmentSink, CardOrderingService, ListOrderingService, clean_text
from .permissions import PermissionGate
from .uow import UnitOfWork

logger = logging.getLogger(__name__)

BOARD_TITLE_MAX = 64
LABEL_NAME_MAX = 32


class BoardService:
    def __init__(
        self,
        uow: UnitOfWork,
        on_attachments_deleted: Optional[AttachmentSink] = None,
        clock: Callable[[], int] = db.now_ts,
    ) -> None:
        self.uow = uow
        self.clock = clock
        self.gate = PermissionGate(uow)
        self.lists = ListOrderingService(uow)
        self.cards = CardOrderingService(uow, on_attachments_deleted=on_attachments_deleted, clock=clock)
        self.on_attachments_deleted = on_attachments_deleted

    # === Helpers ===

    def _board_row(self, board_id: int):
        row = self.uow.execute(select(db.boards).where(db.boards.c.id == board_id)).mappings().first()
        if row is None:
            raise NotFound("Board not found")
        return row

    def touch(self, board_id: int) -> None:
        self.uow.execute(
            update(db.boards).where(db.boards.c.id == board_id).values(last_modified_time=self.clock())
        )

    @contextmanager
    def _gated(
        self,
        ctx: RequestContext,
        board_id: int,
        required: UserType,
        operation: str,
        write: bool = True,
    ) -> Iterator[UserType]:
        with self.uow.transaction():
            self._board_row(board_id)
            role = self.gate.require(ctx, board_id, required, operation)
            yield role
            if write:
                self.touch(board_id)

    # === Boards ===

    def create_board(self, ctx: RequestContext, title: str) -> Board:
        if ctx.user_id <= 0:
            raise PermissionDenied("Cannot create a new board without being logged in", "create_board")
        title = clean_text(title, "Board title", BOARD_TITLE_MAX)
        with self.uow.transaction():
            board_id = self.uow.execute(
                insert(db.boards).values(title=title, closed=False, last_modified_time=self.clock())
            ).inserted_primary_key[0]
            self.gate.grant(board_id, ctx.user_id, UserType.OWNER)
            board = self.get_board(ctx, board_id)
        logger.info("User %d created board %d", ctx.user_id, board_id)
        return board

    def get_board(self, ctx: RequestContext, board_id: int, required: UserType = UserType.OBSERVER) -> Board:
        with self._gated(ctx, board_id, required, "get_board", write=False) as role:
            board = Board.from_row(self._board_row(board_id), user_type=role)
        return board

    def view(self, ctx: RequestContext, board_id: int) -> BoardView:
        """The board with its lists and cards in display order."""
        with self._gated(ctx, board_id, UserType.OBSERVER, "view", write=False) as role:
            board = Board.from_row(self._board_row(board_id), user_type=role)
            lists = self.lists.ordered(board_id)
            all_cards = self.cards.board_cards(board_id)
        result = BoardView(board=board, lists=lists)
        for card_list in lists:
            result.cards[card_list.id] = list(
                ChainIterator(
                    all_cards,
                    "prev_card_id",
                    "next_card_id",
                    predicate=lambda card, list_id=card_list.id: card.cardlist_id == list_id,
                    scope=("list", card_list.id),
                )
            )
        return result

    def list_boards(self, ctx: RequestContext) -> List[Board]:
        """Boards the caller can at least observe, most recently modified first."""
        b, p = db.boards, db.permissions
        stmt = (
            select(b, p.c.user_type)
            .join(p, p.c.board_id == b.c.id)
            .where(p.c.user_id == ctx.user_id, p.c.user_type <= int(UserType.OBSERVER))
            .order_by(b.c.last_modified_time.desc(), b.c.id.desc())
        )
        with self.uow.transaction():
            rows = self.uow.execute(stmt).mappings().all()
        return [Board.from_row(row, user_type=UserType(row["user_type"])) for row in rows]

    def update_board(
        self,
        ctx: RequestContext,
        board_id: int,
        title: Optional[str] = None,
        closed: Optional[bool] = None,
    ) -> Board:
        values = {}
        if title is not None:
            values["title"] = clean_text(title, "Board title", BOARD_TITLE_MAX)
        if closed is not None:
            values["closed"] = closed
        with self._gated(ctx, board_id, UserType.MODERATOR, "update_board", write=bool(values)):
            if values:
                self.uow.execute(update(db.boards).where(db.boards.c.id == board_id).values(**values))
        return self.get_board(ctx, board_id)

    def rename_board(self, ctx: RequestContext, board_id: int, title: str) -> Board:
        return self.update_board(ctx, board_id, title=title)

    def set_closed(self, ctx: RequestContext, board_id: int, closed: bool) -> Board:
        return self.update_board(ctx, board_id, closed=closed)

    # === Labels ===

    def _write_labels(self, board_id: int, names: List[str], colors: List[str]) -> None:
        self.uow.execute(
            update(db.boards)
            .where(db.boards.c.id == board_id)
            .values(label_names=",".join(names), label_colors=",".join(colors))
        )

    def _label_slots(self, board_id: int, index: Optional[int] = None):
        board = Board.from_row(self._board_row(board_id))
        names, colors = board.label_slots, board.label_color_slots
        if index is not None and not 0 <= index < len(names):
            raise ValidationError(f"Label index {index} is out of range for {len(names)} label(s)")
        return names, colors

    def create_label(self, ctx: RequestContext, board_id: int) -> Label:
        """Add a label in the first free slot, named after its default color."""
        with self._gated(ctx, board_id, UserType.MODERATOR, "create_label"):
            names, colors = self._label_slots(board_id)
            if "" in names:
                index = names.index("")
            elif len(names) >= MAX_LABEL_COUNT:
                raise ValidationError("Cannot create any more labels")
            else:
                index = len(names)
                names.append("")
                colors.append("")
            color = DEFAULT_LABEL_COLORS[index % len(DEFAULT_LABEL_COLORS)]
            names[index] = colors[index] = color
            self._write_labels(board_id, names, colors)
        return Label(index, color, color)

    def update_label(self, ctx: RequestContext, board_id: int, index: int, name: str, color: str) -> Label:
        name = clean_text(name.replace(",", " "), "Label name", LABEL_NAME_MAX)
        if color not in DEFAULT_LABEL_COLORS:
            raise ValidationError(f"Unknown label color {color!r}")
        with self._gated(ctx, board_id, UserType.MODERATOR, "update_label"):
            names, colors = self._label_slots(board_id, index)
            if not names[index]:
                raise ValidationError(f"Label {index} does not exist")
            names[index], colors[index] = name, color
            self._write_labels(board_id, names, colors)
        return Label(index, name, color)

    def delete_label(self, ctx: RequestContext, board_id: int, index: int) -> int:
        """Free a label slot and clear its bit on every card of the board."""
        with self._gated(ctx, board_id, UserType.MODERATOR, "delete_label"):
            names, colors = self._label_slots(board_id, index)
            names[index] = colors[index] = ""
            while names and not names[-1]:
                names.pop()
                colors.pop()
            self._write_labels(board_id, names, colors)
            self.uow.execute(
                update(db.cards)
                .where(db.cards.c.board_id == board_id)
                .values(label_mask=db.cards.c.label_mask.op("&")(~(1 << index)))
            )
        logger.info("Board %d: deleted label %d", board_id, index)
        return index

    def delete_board(self, ctx: RequestContext, board_id: int) -> Board:
        """Delete a closed board with everything on it."""
        with self.uow.transaction():
            board = self.get_board(ctx, board_id, UserType.OWNER)
            if not board.closed:
                raise ValidationError("Cannot delete an open board")
            removed = [
                Attachment.from_row(row)
                for row in self.uow.execute(
                    select(db.attachments).where(db.attachments.c.board_id == board_id)
                ).mappings()
            ]
            for table in (db.attachments, db.cards, db.cardlists):
                self.uow.execute(delete(table).where(table.c.board_id == board_id))
            self.gate.revoke_board(board_id)
            self.uow.execute(delete(db.boards).where(db.boards.c.id == board_id))
            if removed and self.on_attachments_deleted is not None:
                sink = self.on_attachments_deleted
                self.uow.after_commit(lambda: sink(removed))
        logger.info("User %d deleted board %d", ctx.user_id, board_id)
        return board

    # === Lists ===

    def add_list(self, ctx: RequestContext, board_id: int, after_id: int, name: str) -> CardList:
        with self._gated(ctx, board_id, UserType.MODERATOR, "add_list"):
            card_list = self.lists.add_new(board_id, after_id, name)
        return card_list

    def rename_list(self, ctx: RequestContext, board_id: int, list_id: int, name: str) -> CardList:
        with self._gated(ctx, board_id, UserType.MODERATOR, "rename_list"):
            card_list = self.lists.rename(board_id, list_id, name)
        return card_list

    def move_list(self, ctx: RequestContext, board_id: int, list_id: int, after_id: int) -> CardList:
        with self._gated(ctx, board_id, UserType.MODERATOR, "move_list"):
            card_list = self.lists.move(board_id, list_id, after_id)
        return card_list

    def delete_list(self, ctx: RequestContext, board_id: int, list_id: int) -> CardList:
        with self._gated(ctx, board_id, UserType.MODERATOR, "delete_list"):
            card_list = self.lists.delete(board_id, list_id)
        return card_list

    # === Cards ===

    def open_card(self, ctx: RequestContext, board_id: int, card_id: int) -> Card:
        with self._gated(ctx, board_id, UserType.OBSERVER, "open_card", write=False):
            card = self.cards.open(board_id, card_id)
        return card

    def add_card(
        self,
        ctx: RequestContext,
        board_id: int,
        list_id: int,
        title: str,
        after_id: int = 0,
        content: str = "",
    ) -> Card:
        with self._gated(ctx, board_id, UserType.MEMBER, "add_card"):
            card = self.cards.add_new(board_id, list_id, after_id, title, content=content)
        return card

    def move_card(self, ctx: RequestContext, board_id: int, card_id: int, dest_list_id: int, after_id: int) -> Card:
        with self._gated(ctx, board_id, UserType.MEMBER, "move_card"):
            card = self.cards.move(board_id, card_id, dest_list_id, after_id)
        return card

    def delete_card(self, ctx: RequestContext, board_id: int, card_id: int) -> Card:
        with self._gated(ctx, board_id, UserType.MEMBER, "delete_card"):
            card = self.cards.delete(board_id, card_id, delete_attachments=True)
        return card

    def update_card(
        self,
        ctx: RequestContext,
        board_id: int,
        card_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        locked: Optional[bool] = None,
    ) -> Card:
        with self._gated(ctx, board_id, UserType.MEMBER, "update_card"):
            card = self.cards.get(board_id, card_id)
            if title is not None:
                card = self.cards.update_title(board_id, card_id, title)
            if content is not None:
                card = self.cards.update_content(board_id, card_id, content)
            if locked is not None:
                card = self.cards.update_flags(board_id, card_id, locked=locked)
        return card

    def set_card_label(self, ctx: RequestContext, board_id: int, card_id: int, index: int, active: bool) -> Card:
        with self._gated(ctx, board_id, UserType.MEMBER, "set_card_label"):
            self._label_slots(board_id, index)
            card = self.cards.set_label(board_id, card_id, index, active)
        return card

    def set_card_cover(self, ctx: RequestContext, board_id: int, card_id: int, attachment_id: int) -> Card:
        with self._gated(ctx, board_id, UserType.MEMBER, "set_card_cover"):
            card = self.cards.set_cover(board_id, card_id, attachment_id)
        return card

    # === Attachments ===

    def add_attachment(
        self,
        ctx: RequestContext,
        board_id: int,
        card_id: int,
        name: str,
        extension: Optional[str] = None,
        guid: Optional[str] = None,
    ) -> Attachment:
        with self._gated(ctx, board_id, UserType.MEMBER, "add_attachment"):
            attachment = self.cards.add_attachment(board_id, card_id, name, extension, guid or str(uuid.uuid4()))
        return attachment

    def rename_attachment(self, ctx: RequestContext, board_id: int, attachment_id: int, name: str) -> Attachment:
        with self._gated(ctx, board_id, UserType.MEMBER, "rename_attachment"):
            attachment = self.cards.rename_attachment(board_id, attachment_id, name)
        return attachment

    def delete_attachment(self, ctx: RequestContext, board_id: int, attachment_id: int) -> Attachment:
        with self._gated(ctx, board_id, UserType.MEMBER, "delete_attachment"):
            attachment = self.cards.delete_attachment(board_id, attachment_id)
        return attachment

    # === Permissions ===

    def board_permissions(self, ctx: RequestContext, board_id: int) -> List[Permission]:
        with self._gated(ctx, board_id, UserType.MODERATOR, "board_permissions", write=False):
            permissions = self.gate.board_permissions(board_id)
        return permissions

    def set_user_permission(self, ctx: RequestContext, board_id: int, user_id: int, user_type: UserType) -> Permission:
        with self.uow.transaction():
            self._board_row(board_id)
            permission = self.gate.set_user_permission(ctx, board_id, user_id, user_type)
            self.touch(board_id)
        return permission

    def request_access(self, ctx: RequestContext, board_id: int) -> Permission:
        with self.uow.transaction():
            self._board_row(board_id)
            permission = self.gate.request_access(ctx, board_id)
        return permission

    def register_user(self, ctx: RequestContext, user_id: int) -> List[Permission]:
        """Give a newly created account the on-register template roles."""
        if not ctx.is_admin:
            raise PermissionDenied("Only site admins can apply registration templates", "register_user")
        with self.uow.transaction():
            granted = self.gate.apply_registration_templates(user_id)
        logger.info("Applied %d registration template(s) to user %d", len(granted), user_id)
        return granted
