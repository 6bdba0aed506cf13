import itertools

import pytest

from chainboard.boards import BoardService
from chainboard.errors import NotFound, PermissionDenied, ValidationError
from chainboard.models import MAX_LABEL_COUNT, RequestContext, UserId, UserType

OWNER = RequestContext(UserId(1))
MOD = RequestContext(UserId(2))
MEMBER = RequestContext(UserId(3))
OBSERVER = RequestContext(UserId(4))


@pytest.fixture
def staffed(service, board):
    service.gate.grant(board.id, MOD.user_id, UserType.MODERATOR)
    service.gate.grant(board.id, MEMBER.user_id, UserType.MEMBER)
    service.gate.grant(board.id, OBSERVER.user_id, UserType.OBSERVER)
    return board


def test_view_orders_lists_and_cards(service, staffed):
    todo = service.add_list(OWNER, staffed.id, 0, "Todo")
    done = service.add_list(OWNER, staffed.id, todo.id, "Done")
    first = service.add_card(MEMBER, staffed.id, todo.id, "first")
    service.add_card(MEMBER, staffed.id, todo.id, "third", after_id=first.id)
    service.add_card(MEMBER, staffed.id, todo.id, "second", after_id=first.id)
    service.add_card(MEMBER, staffed.id, done.id, "shipped")

    view = service.view(OBSERVER, staffed.id)

    assert view.board.user_type == UserType.OBSERVER
    assert [l.name for l in view.lists] == ["Todo", "Done"]
    assert [c.title for c in view.cards[todo.id]] == ["first", "second", "third"]
    assert [c.title for c in view.cards[done.id]] == ["shipped"]


def test_roles_are_enforced(service, staffed):
    with pytest.raises(PermissionDenied):
        service.add_list(MEMBER, staffed.id, 0, "Todo")
    todo = service.add_list(MOD, staffed.id, 0, "Todo")
    with pytest.raises(PermissionDenied):
        service.add_card(OBSERVER, staffed.id, todo.id, "nope")
    with pytest.raises(PermissionDenied):
        service.view(RequestContext(UserId(50)), staffed.id)
    with pytest.raises(PermissionDenied):
        service.rename_board(MEMBER, staffed.id, "Mine")


def test_missing_board(service):
    with pytest.raises(NotFound):
        service.view(OWNER, 77)


def test_anonymous_cannot_create_board(service):
    with pytest.raises(PermissionDenied):
        service.create_board(RequestContext(UserId(0)), "x")


def test_blank_titles_are_rejected(service, board):
    with pytest.raises(ValidationError):
        service.create_board(OWNER, "   ")
    with pytest.raises(ValidationError):
        service.add_list(OWNER, board.id, 0, "")


def test_writes_touch_board(uow, board):
    clock = itertools.count(2000)
    service = BoardService(uow, clock=lambda: next(clock))
    before = service.get_board(OWNER, board.id).last_modified_time
    service.add_list(OWNER, board.id, 0, "Todo")
    assert service.get_board(OWNER, board.id).last_modified_time > before


def test_delete_list_requires_empty(service, board):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "c")
    with pytest.raises(ValidationError):
        service.delete_list(OWNER, board.id, todo.id)
    service.delete_card(OWNER, board.id, card.id)
    service.delete_list(OWNER, board.id, todo.id)
    assert service.view(OWNER, board.id).lists == []


def test_list_from_other_board(service, board):
    other = service.create_board(OWNER, "Other")
    foreign = service.add_list(OWNER, other.id, 0, "Foreign")
    with pytest.raises(NotFound):
        service.rename_list(OWNER, board.id, foreign.id, "Mine")
    with pytest.raises(NotFound):
        service.add_card(OWNER, board.id, foreign.id, "c")


def test_last_moved_time_changes_only_across_lists(uow, board):
    clock = itertools.count(5000)
    service = BoardService(uow, clock=lambda: next(clock))
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    done = service.add_list(OWNER, board.id, todo.id, "Done")
    a = service.add_card(OWNER, board.id, todo.id, "a")
    b = service.add_card(OWNER, board.id, todo.id, "b", after_id=a.id)

    reordered = service.move_card(OWNER, board.id, b.id, todo.id, 0)
    assert reordered.last_moved_time == b.last_moved_time

    moved = service.move_card(OWNER, board.id, b.id, done.id, 0)
    assert moved.last_moved_time > b.last_moved_time
    assert moved.id == b.id


def test_card_updates(service, board):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "draft")
    card = service.update_card(OWNER, board.id, card.id, title="final", content="body", locked=True)
    assert (card.title, card.content, card.locked) == ("final", "body", True)
    card = service.update_card(OWNER, board.id, card.id, locked=False)
    assert not card.locked
    for _ in range(4):
        service.create_label(OWNER, board.id)
    card = service.set_card_label(OWNER, board.id, card.id, 3, True)
    card = service.set_card_label(OWNER, board.id, card.id, 0, True)
    assert card.labels == [0, 3]
    card = service.set_card_label(OWNER, board.id, card.id, 3, False)
    assert card.labels == [0]
    with pytest.raises(ValidationError):
        service.set_card_label(OWNER, board.id, card.id, 4, True)


def test_card_label_must_exist_on_board(service, board):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "c")
    with pytest.raises(ValidationError):
        service.set_card_label(OWNER, board.id, card.id, 5, True)
    assert service.open_card(OWNER, board.id, card.id).labels == []


def test_labels_fill_first_free_slot(service, board):
    created = [service.create_label(OWNER, board.id) for _ in range(3)]
    assert [(l.index, l.name) for l in created] == [(0, "red"), (1, "orange"), (2, "yellow")]

    service.delete_label(OWNER, board.id, 1)
    reused = service.create_label(OWNER, board.id)

    assert reused.index == 1
    assert [l.index for l in service.get_board(OWNER, board.id).labels] == [0, 1, 2]


def test_label_count_is_capped(service, board):
    for _ in range(MAX_LABEL_COUNT):
        service.create_label(OWNER, board.id)
    with pytest.raises(ValidationError):
        service.create_label(OWNER, board.id)


def test_update_label(service, board):
    service.create_label(OWNER, board.id)
    label = service.update_label(OWNER, board.id, 0, "urgent, now", "blue")
    assert (label.name, label.color) == ("urgent  now", "blue")
    assert service.get_board(OWNER, board.id).labels == [label]
    with pytest.raises(ValidationError):
        service.update_label(OWNER, board.id, 0, "x", "magenta")
    with pytest.raises(ValidationError):
        service.update_label(OWNER, board.id, 1, "x", "blue")


def test_delete_label_trims_slots_and_clears_cards(service, staffed):
    for _ in range(3):
        service.create_label(OWNER, staffed.id)
    todo = service.add_list(OWNER, staffed.id, 0, "Todo")
    card = service.add_card(OWNER, staffed.id, todo.id, "c")
    service.set_card_label(OWNER, staffed.id, card.id, 1, True)
    service.set_card_label(OWNER, staffed.id, card.id, 2, True)

    with pytest.raises(PermissionDenied):
        service.delete_label(MEMBER, staffed.id, 2)
    service.delete_label(OWNER, staffed.id, 1)
    assert service.open_card(OWNER, staffed.id, card.id).labels == [2]

    service.delete_label(OWNER, staffed.id, 2)
    board = service.get_board(OWNER, staffed.id)
    assert board.label_slots == ["red"]
    assert board.label_color_slots == ["red"]
    assert service.open_card(OWNER, staffed.id, card.id).labels == []


def test_list_boards_newest_first(uow, service):
    clock = itertools.count(3000)
    timed = BoardService(uow, clock=lambda: next(clock))
    older = timed.create_board(OWNER, "Older")
    newer = timed.create_board(OWNER, "Newer")
    hidden = timed.create_board(MOD, "Hidden")
    timed.gate.grant(hidden.id, OWNER.user_id, UserType.GUEST)
    shared = timed.create_board(MOD, "Shared")
    timed.gate.grant(shared.id, OWNER.user_id, UserType.OBSERVER)

    boards = service.list_boards(OWNER)

    assert [b.id for b in boards] == [shared.id, newer.id, older.id]
    assert boards[0].user_type == UserType.OBSERVER
    assert service.list_boards(RequestContext(UserId(60))) == []


def test_update_board_is_one_transaction(service, board, monkeypatch):
    def fail(board_id):
        raise RuntimeError("store went away")

    monkeypatch.setattr(service, "touch", fail)
    with pytest.raises(RuntimeError):
        service.update_board(OWNER, board.id, title="Renamed", closed=True)
    monkeypatch.undo()

    unchanged = service.get_board(OWNER, board.id)
    assert (unchanged.title, unchanged.closed) == ("Roadmap", False)
    updated = service.update_board(OWNER, board.id, title="Renamed", closed=True)
    assert (updated.title, updated.closed) == ("Renamed", True)


def test_attachment_operations_are_gated(service, staffed):
    todo = service.add_list(OWNER, staffed.id, 0, "Todo")
    card = service.add_card(OWNER, staffed.id, todo.id, "c")
    with pytest.raises(PermissionDenied):
        service.add_attachment(OBSERVER, staffed.id, card.id, "notes", "txt")
    attachment = service.add_attachment(MEMBER, staffed.id, card.id, "notes", "txt")
    assert attachment.guid
    with pytest.raises(PermissionDenied):
        service.rename_attachment(OBSERVER, staffed.id, attachment.id, "renamed")
    with pytest.raises(PermissionDenied):
        service.delete_attachment(OBSERVER, staffed.id, attachment.id)


def test_rename_attachment(service, board):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "c")
    attachment = service.add_attachment(OWNER, board.id, card.id, "draft", "md", "guid-3")
    renamed = service.rename_attachment(OWNER, board.id, attachment.id, "final")
    assert (renamed.id, renamed.name) == (attachment.id, "final")
    other = service.create_board(OWNER, "Other")
    with pytest.raises(NotFound):
        service.rename_attachment(OWNER, other.id, attachment.id, "stolen")


def test_delete_cover_attachment_clears_cover(service, board, deleted_attachments):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "c")
    cover = service.add_attachment(OWNER, board.id, card.id, "photo", "jpg", "guid-4")
    keep = service.add_attachment(OWNER, board.id, card.id, "notes", "txt", "guid-5")
    service.set_card_cover(OWNER, board.id, card.id, cover.id)

    service.delete_attachment(OWNER, board.id, cover.id)

    opened = service.open_card(OWNER, board.id, card.id)
    assert opened.cover_attachment_id == 0
    assert [a.id for a in opened.attachments] == [keep.id]
    assert [a.guid for a in deleted_attachments] == ["guid-4"]
    with pytest.raises(NotFound):
        service.delete_attachment(OWNER, board.id, cover.id)


def test_cover_must_be_own_attachment(service, board):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    a = service.add_card(OWNER, board.id, todo.id, "a")
    b = service.add_card(OWNER, board.id, todo.id, "b")
    attachment = service.add_attachment(OWNER, board.id, a.id, "design.pdf", "pdf", "guid-a")
    with pytest.raises(ValidationError):
        service.set_card_cover(OWNER, board.id, b.id, attachment.id)
    covered = service.set_card_cover(OWNER, board.id, a.id, attachment.id)
    assert covered.cover_attachment_id == attachment.id
    opened = service.open_card(OWNER, board.id, a.id)
    assert [att.guid for att in opened.attachments] == ["guid-a"]


def test_deleted_card_attachments_reach_sink_after_commit(service, board, deleted_attachments):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "a")
    service.add_attachment(OWNER, board.id, card.id, "notes", "txt", "guid-1")
    service.delete_card(OWNER, board.id, card.id)
    assert [a.guid for a in deleted_attachments] == ["guid-1"]
    assert service.cards.attachments(card.id) == []


def test_failed_delete_does_not_reach_sink(service, board, deleted_attachments):
    todo = service.add_list(OWNER, board.id, 0, "Todo")
    card = service.add_card(OWNER, board.id, todo.id, "a")
    service.add_attachment(OWNER, board.id, card.id, "notes", "txt", "guid-1")
    with pytest.raises(PermissionDenied):
        service.delete_card(RequestContext(UserId(50)), board.id, card.id)
    assert deleted_attachments == []


def test_delete_board_requires_closed_and_owner(service, staffed, deleted_attachments):
    todo = service.add_list(OWNER, staffed.id, 0, "Todo")
    card = service.add_card(OWNER, staffed.id, todo.id, "a")
    service.add_attachment(OWNER, staffed.id, card.id, "logo", "png", "guid-2")

    with pytest.raises(ValidationError):
        service.delete_board(OWNER, staffed.id)
    service.set_closed(MOD, staffed.id, True)
    with pytest.raises(PermissionDenied):
        service.delete_board(MOD, staffed.id)

    deleted = service.delete_board(OWNER, staffed.id)

    assert deleted.closed
    assert [a.guid for a in deleted_attachments] == ["guid-2"]
    assert service.gate.board_permissions(staffed.id) == []
    with pytest.raises(NotFound):
        service.view(OWNER, staffed.id)


def test_reopen_board(service, board):
    assert service.set_closed(OWNER, board.id, True).closed
    assert not service.set_closed(OWNER, board.id, False).closed
