"""Role checks and permission record management.

Roles are ordered numerically, lower meaning more privilege, so a role
satisfies a requirement when its value is less than or equal to it.
"""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy import delete, insert, select, update

from . import db
from .errors import NotFound, PermissionDenied, ValidationError
from .models import (
    USER_ID_MIN,
    USER_ID_ON_REGISTER,
    BoardId,
    Permission,
    RequestContext,
    UserId,
    UserType,
)
from .uow import UnitOfWork

logger = logging.getLogger(__name__)


def check_permissions(
    user_type: UserType,
    required: UserType,
    raise_on_failure: bool = True,
    operation: str = "",
) -> bool:
    """True when ``user_type`` is at least as privileged as ``required``."""
    if user_type <= required:
        return True
    if raise_on_failure:
        raise PermissionDenied("Missing permissions to perform the requested operation.", operation or None)
    return False


class PermissionGate:
    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    def _record(self, board_id: int, user_id: int) -> Permission | None:
        p = db.permissions
        row = self.uow.execute(
            select(p).where(p.c.board_id == board_id, p.c.user_id == user_id)
        ).mappings().first()
        return Permission.from_row(row) if row is not None else None

    def role_of(self, board_id: int, user_id: int) -> UserType:
        record = self._record(board_id, user_id)
        return record.user_type if record is not None else UserType.NONE

    def require(self, ctx: RequestContext, board_id: int, required: UserType, operation: str) -> UserType:
        """Return the caller's role on the board, or raise PermissionDenied."""
        role = self.role_of(board_id, ctx.user_id)
        if not check_permissions(role, required, raise_on_failure=False):
            logger.warning(
                "%s: user %d (%s) lacks %s on board %d",
                operation, ctx.user_id, role.name, required.name, board_id,
            )
            raise PermissionDenied(
                "Missing permissions to perform the requested operation.", operation
            )
        return role

    # === Records ===

    def grant(self, board_id: int, user_id: int, user_type: UserType) -> Permission:
        """Insert or overwrite a record without any policy checks."""
        with self.uow.transaction():
            p = db.permissions
            if self._record(board_id, user_id) is None:
                self.uow.execute(insert(p).values(board_id=board_id, user_id=user_id, user_type=int(user_type)))
            else:
                self.uow.execute(
                    update(p)
                    .where(p.c.board_id == board_id, p.c.user_id == user_id)
                    .values(user_type=int(user_type))
                )
        return Permission(BoardId(board_id), UserId(user_id), user_type)

    def board_permissions(self, board_id: int) -> List[Permission]:
        p = db.permissions
        rows = self.uow.execute(select(p).where(p.c.board_id == board_id).order_by(p.c.user_id)).mappings()
        return [Permission.from_row(row) for row in rows]

    def revoke_board(self, board_id: int) -> int:
        p = db.permissions
        return self.uow.execute(delete(p).where(p.c.board_id == board_id)).rowcount

    def set_user_permission(
        self,
        ctx: RequestContext,
        board_id: int,
        target_user_id: int,
        user_type: UserType,
    ) -> Permission:
        """Change another user's role on a board.

        The caller must be at least Moderator and can only hand out roles
        strictly below their own, to users strictly below their own.
        Template records (negative user ids) are reserved to administrators
        and may be created here; regular users must already have a record.
        """
        operation = "set_user_permission"
        with self.uow.transaction():
            own_role = self.require(ctx, board_id, UserType.MODERATOR, operation)
            is_template = target_user_id < 0

            if is_template:
                if not ctx.is_admin:
                    raise PermissionDenied("Special permissions are only available to site admins", operation)
                if target_user_id < USER_ID_MIN:
                    raise ValidationError(f"Invalid special permission user id {target_user_id}")

            if target_user_id == ctx.user_id:
                raise ValidationError("Cannot edit your own permissions")

            if user_type <= own_role:
                raise PermissionDenied("Cannot assign this level of permission", operation)

            current = self._record(board_id, target_user_id)
            if not is_template:
                if current is None:
                    raise NotFound("No permission record found for the specified user")
                if current.user_type <= own_role:
                    raise PermissionDenied("Cannot edit permissions for this user", operation)

            updated = self.grant(board_id, target_user_id, user_type)
        logger.info("Board %d: user %d set user %d to %s", board_id, ctx.user_id, target_user_id, user_type.name)
        return updated

    def request_access(self, ctx: RequestContext, board_id: int) -> Permission:
        """Record a join request: a user with no record becomes Guest."""
        with self.uow.transaction():
            role = self.role_of(board_id, ctx.user_id)
            if role != UserType.NONE:
                raise ValidationError("User already has blocked or higher access to this board")
            permission = self.grant(board_id, ctx.user_id, UserType.GUEST)
        logger.info("Board %d: user %d requested access", board_id, ctx.user_id)
        return permission

    def apply_registration_templates(self, user_id: int) -> List[Permission]:
        """Copy every on-register template, except Blocked ones, to a new account."""
        if user_id <= 0:
            raise ValidationError(f"Invalid user id {user_id}")
        p = db.permissions
        granted: List[Permission] = []
        with self.uow.transaction():
            templates = self.uow.execute(select(p).where(p.c.user_id == USER_ID_ON_REGISTER)).mappings().all()
            for row in templates:
                template = Permission.from_row(row)
                if template.user_type == UserType.BLOCKED:
                    continue
                granted.append(self.grant(template.board_id, user_id, template.user_type))
        return granted
