import pytest

from chainboard.errors import NotFound, PermissionDenied, ValidationError
from chainboard.models import USER_ID_ON_REGISTER, RequestContext, UserId, UserType
from chainboard.permissions import check_permissions

OWNER = RequestContext(UserId(1))

ADMIN = RequestContext(UserId(1), is_admin=True)
MOD = RequestContext(UserId(2))
MEMBER = RequestContext(UserId(3))
STRANGER = RequestContext(UserId(4))


@pytest.mark.parametrize(
    "actual, required, allowed",
    [
        (UserType.OWNER, UserType.MEMBER, True),
        (UserType.MODERATOR, UserType.MODERATOR, True),
        (UserType.OBSERVER, UserType.OBSERVER, True),
        (UserType.GUEST, UserType.MEMBER, False),
        (UserType.BLOCKED, UserType.OBSERVER, False),
        (UserType.MEMBER, UserType.MODERATOR, False),
        (UserType.NONE, UserType.NONE, True),
    ],
)
def test_check_permissions(actual, required, allowed):
    assert check_permissions(actual, required, raise_on_failure=False) is allowed


def test_check_permissions_raises():
    with pytest.raises(PermissionDenied) as exc:
        check_permissions(UserType.GUEST, UserType.MEMBER, operation="add_card")
    assert exc.value.operation == "add_card"


@pytest.fixture
def staffed(service, board):
    service.gate.grant(board.id, MOD.user_id, UserType.MODERATOR)
    service.gate.grant(board.id, MEMBER.user_id, UserType.MEMBER)
    return board


def test_creator_is_owner(service, board):
    assert board.user_type == UserType.OWNER
    assert service.gate.role_of(board.id, OWNER.user_id) == UserType.OWNER


def test_unknown_user_has_no_role(service, board):
    assert service.gate.role_of(board.id, STRANGER.user_id) == UserType.NONE


def test_moderator_can_demote_member(service, staffed):
    updated = service.set_user_permission(MOD, staffed.id, MEMBER.user_id, UserType.OBSERVER)
    assert updated.user_type == UserType.OBSERVER
    assert service.gate.role_of(staffed.id, MEMBER.user_id) == UserType.OBSERVER


def test_member_cannot_set_permissions(service, staffed):
    with pytest.raises(PermissionDenied):
        service.set_user_permission(MEMBER, staffed.id, MOD.user_id, UserType.OBSERVER)


def test_cannot_edit_own_permissions(service, staffed):
    with pytest.raises(ValidationError):
        service.set_user_permission(MOD, staffed.id, MOD.user_id, UserType.MEMBER)


def test_cannot_assign_own_level(service, staffed):
    with pytest.raises(PermissionDenied):
        service.set_user_permission(MOD, staffed.id, MEMBER.user_id, UserType.MODERATOR)


def test_cannot_edit_equal_or_higher_user(service, staffed):
    with pytest.raises(PermissionDenied):
        service.set_user_permission(MOD, staffed.id, OWNER.user_id, UserType.MEMBER)


def test_target_without_record(service, staffed):
    with pytest.raises(NotFound):
        service.set_user_permission(MOD, staffed.id, STRANGER.user_id, UserType.MEMBER)


def test_templates_require_admin(service, staffed):
    with pytest.raises(PermissionDenied):
        service.set_user_permission(MOD, staffed.id, USER_ID_ON_REGISTER, UserType.OBSERVER)


def test_admin_creates_template_and_new_user_gets_it(service, staffed):
    service.set_user_permission(ADMIN, staffed.id, USER_ID_ON_REGISTER, UserType.OBSERVER)
    granted = service.register_user(ADMIN, 99)
    assert [(p.board_id, p.user_type) for p in granted] == [(staffed.id, UserType.OBSERVER)]
    assert service.gate.role_of(staffed.id, 99) == UserType.OBSERVER


def test_blocked_template_is_not_copied(service, staffed):
    service.set_user_permission(ADMIN, staffed.id, USER_ID_ON_REGISTER, UserType.BLOCKED)
    assert service.register_user(ADMIN, 99) == []
    assert service.gate.role_of(staffed.id, 99) == UserType.NONE


def test_invalid_template_id(service, staffed):
    with pytest.raises(ValidationError):
        service.set_user_permission(ADMIN, staffed.id, -5, UserType.OBSERVER)


def test_request_access_makes_guest(service, board):
    permission = service.request_access(STRANGER, board.id)
    assert permission.user_type == UserType.GUEST
    with pytest.raises(ValidationError):
        service.request_access(STRANGER, board.id)


def test_blocked_user_cannot_request_again(service, board):
    service.gate.grant(board.id, STRANGER.user_id, UserType.BLOCKED)
    with pytest.raises(ValidationError):
        service.request_access(STRANGER, board.id)


def test_request_access_to_missing_board(service):
    with pytest.raises(NotFound):
        service.request_access(STRANGER, 404)


def test_board_permissions_listing(service, staffed):
    listed = service.board_permissions(MOD, staffed.id)
    assert [(p.user_id, p.user_type) for p in listed] == [
        (OWNER.user_id, UserType.OWNER),
        (MOD.user_id, UserType.MODERATOR),
        (MEMBER.user_id, UserType.MEMBER),
    ]
    with pytest.raises(PermissionDenied):
        service.board_permissions(MEMBER, staffed.id)
