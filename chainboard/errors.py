"""Error kinds raised by the core.

None of these carry a transport status code; the HTTP layer maps kinds to
responses in ``chainboard.main``.
"""

from __future__ import annotations

from typing import Optional


class ChainboardError(Exception):
    """Base class for every error the core raises on purpose."""


class ValidationError(ChainboardError):
    """Malformed or missing parameters, or an id outside the claimed scope."""


class NotFound(ChainboardError):
    """The entity does not exist or is not part of the claimed scope."""


class PermissionDenied(ChainboardError):
    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class ChainIntegrityError(ChainboardError):
    """A chain has a cycle, a dangling pointer or no usable head.

    Raised only as a value: traversals log it and keep their partial result.
    """

    def __init__(self, message: str, scope: object = None, node_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.scope = scope
        self.node_id = node_id


class StoreConnectionError(ChainboardError):
    """The relational store stayed unreachable after every retry."""


class TransactionError(ChainboardError):
    """BEGIN, COMMIT, RELEASE or ROLLBACK failed at the driver level."""
