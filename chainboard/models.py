from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, NewType, Optional

BoardId = NewType("BoardId", int)
CardListId = NewType("CardListId", int)
CardId = NewType("CardId", int)
UserId = NewType("UserId", int)

# "no neighbour" marker in prev/next columns
SENTINEL = 0

# Permission records with this user id are copied to every new account
USER_ID_ON_REGISTER = UserId(-1)
USER_ID_MIN = USER_ID_ON_REGISTER


class UserType(enum.IntEnum):
    """Board roles. A smaller value grants more privilege."""

    OWNER = 0  # full control
    MODERATOR = 2  # full control except permanent board deletion
    MEMBER = 6  # full control of cards, no access to layout or permissions
    OBSERVER = 8  # read-only
    GUEST = 9  # no access, asked to join
    BLOCKED = 10  # no access, blocked by a moderator
    NONE = 11  # no access, no record


class CardFlag(enum.IntFlag):
    LOCKED = 0x001


LABEL_SLOTS = 32
MAX_LABEL_COUNT = 24
DEFAULT_LABEL_COLORS = ("red", "orange", "yellow", "green", "cyan", "azure", "blue", "purple", "pink", "grey")


@dataclass(frozen=True)
class RequestContext:
    """The resolved identity of whoever triggered an operation."""

    user_id: UserId
    is_admin: bool = False


# === Domain records ===


@dataclass(frozen=True)
class Board:
    id: BoardId
    title: str
    closed: bool
    label_names: str
    label_colors: str
    last_modified_time: int
    user_type: UserType = UserType.NONE

    @classmethod
    def from_row(cls, row: Mapping[str, Any], user_type: UserType = UserType.NONE) -> "Board":
        return cls(
            id=BoardId(row["id"]),
            title=row["title"],
            closed=bool(row["closed"]),
            label_names=row["label_names"] or "",
            label_colors=row["label_colors"] or "",
            last_modified_time=int(row["last_modified_time"] or 0),
            user_type=user_type,
        )

    @property
    def label_slots(self) -> List[str]:
        """Label names by bit index; an empty string is a free slot."""
        return self.label_names.split(",") if self.label_names else []

    @property
    def label_color_slots(self) -> List[str]:
        colors = self.label_colors.split(",") if self.label_colors else []
        return colors + [""] * (len(self.label_slots) - len(colors))

    @property
    def labels(self) -> List["Label"]:
        return [
            Label(index, name, color)
            for index, (name, color) in enumerate(zip(self.label_slots, self.label_color_slots))
            if name
        ]

    @property
    def last_modified(self) -> datetime:
        return datetime.fromtimestamp(self.last_modified_time, tz=timezone.utc)


@dataclass(frozen=True)
class Label:
    index: int
    name: str
    color: str


@dataclass(frozen=True)
class CardList:
    id: CardListId
    board_id: BoardId
    name: str
    prev_list_id: int = SENTINEL
    next_list_id: int = SENTINEL

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CardList":
        return cls(
            id=CardListId(row["id"]),
            board_id=BoardId(row["board_id"]),
            name=row["name"],
            prev_list_id=int(row["prev_list_id"] or SENTINEL),
            next_list_id=int(row["next_list_id"] or SENTINEL),
        )


@dataclass(frozen=True)
class Attachment:
    id: int
    board_id: BoardId
    card_id: CardId
    name: str
    extension: Optional[str]
    guid: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Attachment":
        return cls(
            id=int(row["id"]),
            board_id=BoardId(row["board_id"]),
            card_id=CardId(row["card_id"]),
            name=row["name"],
            extension=row["extension"],
            guid=row["guid"],
        )


@dataclass(frozen=True)
class Card:
    id: CardId
    board_id: BoardId
    cardlist_id: CardListId
    title: str
    content: str = ""
    prev_card_id: int = SENTINEL
    next_card_id: int = SENTINEL
    cover_attachment_id: int = 0
    label_mask: int = 0
    flags: CardFlag = CardFlag(0)
    last_moved_time: int = 0
    attachments: List[Attachment] = field(default_factory=list, compare=False)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Card":
        return cls(
            id=CardId(row["id"]),
            board_id=BoardId(row["board_id"]),
            cardlist_id=CardListId(row["cardlist_id"]),
            title=row["title"],
            content=row["content"] or "",
            prev_card_id=int(row["prev_card_id"] or SENTINEL),
            next_card_id=int(row["next_card_id"] or SENTINEL),
            cover_attachment_id=int(row["cover_attachment_id"] or 0),
            label_mask=int(row["label_mask"] or 0),
            flags=CardFlag(int(row["flags"] or 0)),
            last_moved_time=int(row["last_moved_time"] or 0),
        )

    @property
    def locked(self) -> bool:
        return CardFlag.LOCKED in self.flags

    @property
    def labels(self) -> List[int]:
        return [slot for slot in range(LABEL_SLOTS) if self.label_mask & (1 << slot)]

    def with_attachments(self, attachments: List[Attachment]) -> "Card":
        return replace(self, attachments=list(attachments))


@dataclass(frozen=True)
class Permission:
    board_id: BoardId
    user_id: UserId
    user_type: UserType

    @property
    def is_template(self) -> bool:
        return self.user_id < 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Permission":
        return cls(
            board_id=BoardId(row["board_id"]),
            user_id=UserId(row["user_id"]),
            user_type=UserType(int(row["user_type"])),
        )


@dataclass
class BoardView:
    """A board with its lists and cards in display order."""

    board: Board
    lists: List[CardList] = field(default_factory=list)
    cards: Dict[CardListId, List[Card]] = field(default_factory=dict)
