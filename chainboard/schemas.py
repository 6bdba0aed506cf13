from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .models import Attachment, Board, Card, CardList, Label, Permission, UserType


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str = "1.0.0"


# === Boards ===


class BoardIn(BaseModel):
    title: str = Field(min_length=1, max_length=64)


class BoardPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=64)
    closed: Optional[bool] = None


class LabelPatch(BaseModel):
    name: str = Field(min_length=1, max_length=32)
    color: str


class LabelOut(BaseModel):
    index: int
    name: str
    color: str

    @classmethod
    def of(cls, label: Label) -> "LabelOut":
        return cls(index=label.index, name=label.name, color=label.color)


class BoardOut(BaseModel):
    id: int
    title: str
    closed: bool
    labels: list[LabelOut]
    updatedAt: datetime
    myRole: str

    @classmethod
    def of(cls, board: Board) -> "BoardOut":
        return cls(
            id=board.id,
            title=board.title,
            closed=board.closed,
            labels=[LabelOut.of(label) for label in board.labels],
            updatedAt=board.last_modified,
            myRole=board.user_type.name.lower(),
        )


class BoardsPage(BaseModel):
    boards: list[BoardOut]
    nextCursor: Optional[str] = None


# === Lists ===


class CardListIn(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    afterListId: int = 0


class CardListPatch(BaseModel):
    name: str = Field(min_length=1, max_length=64)


class CardListMove(BaseModel):
    afterListId: int = 0


class CardListOut(BaseModel):
    id: int
    boardId: int
    name: str
    prevListId: int
    nextListId: int

    @classmethod
    def of(cls, card_list: CardList) -> "CardListOut":
        return cls(
            id=card_list.id,
            boardId=card_list.board_id,
            name=card_list.name,
            prevListId=card_list.prev_list_id,
            nextListId=card_list.next_list_id,
        )


# === Cards ===


class CardIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = ""
    afterCardId: int = 0


class CardPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = None
    locked: Optional[bool] = None


class CardMove(BaseModel):
    toListId: int
    afterCardId: int = 0


class CardLabel(BaseModel):
    active: bool = True


class CardCover(BaseModel):
    attachmentId: int = 0


class AttachmentIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    extension: Optional[str] = Field(default=None, max_length=10)
    guid: Optional[str] = Field(default=None, max_length=36)


class AttachmentPatch(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class AttachmentOut(BaseModel):
    id: int
    cardId: int
    name: str
    extension: Optional[str]
    guid: str

    @classmethod
    def of(cls, attachment: Attachment) -> "AttachmentOut":
        return cls(
            id=attachment.id,
            cardId=attachment.card_id,
            name=attachment.name,
            extension=attachment.extension,
            guid=attachment.guid,
        )


class CardOut(BaseModel):
    id: int
    boardId: int
    listId: int
    title: str
    content: str
    prevCardId: int
    nextCardId: int
    coverAttachmentId: int
    labels: list[int]
    locked: bool
    lastMovedTime: int
    attachments: list[AttachmentOut] = []

    @classmethod
    def of(cls, card: Card) -> "CardOut":
        return cls(
            id=card.id,
            boardId=card.board_id,
            listId=card.cardlist_id,
            title=card.title,
            content=card.content,
            prevCardId=card.prev_card_id,
            nextCardId=card.next_card_id,
            coverAttachmentId=card.cover_attachment_id,
            labels=card.labels,
            locked=card.locked,
            lastMovedTime=card.last_moved_time,
            attachments=[AttachmentOut.of(a) for a in card.attachments],
        )


class CardListView(CardListOut):
    cards: list[CardOut]


class BoardView(BaseModel):
    board: BoardOut
    lists: list[CardListView]


# === Permissions ===


class PermissionIn(BaseModel):
    userType: UserType


class PermissionOut(BaseModel):
    boardId: int
    userId: int
    userType: int
    role: str

    @classmethod
    def of(cls, permission: Permission) -> "PermissionOut":
        return cls(
            boardId=permission.board_id,
            userId=permission.user_id,
            userType=int(permission.user_type),
            role=permission.user_type.name.lower(),
        )
