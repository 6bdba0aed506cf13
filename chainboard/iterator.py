"""Rebuild display order from an unordered set of chain rows.

SQL gives no ordering guarantee, so readers fetch every row of a scope and
walk the ``prev``/``next`` pointers here. The walk never repairs anything:
on a cycle or a dangling pointer it logs the problem and stops, and the
caller gets the rows visited so far.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Optional, TypeVar

from .errors import ChainIntegrityError
from .models import SENTINEL

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChainIterator(Generic[T]):
    """Lazy, single-pass traversal of one chain.

    ``rows`` may contain rows from other scopes; ``predicate`` selects the
    ones that belong to the chain being walked. Iterating a second time
    yields nothing.
    """

    def __init__(
        self,
        rows: Iterable[T],
        prev_attr: str,
        next_attr: str,
        id_attr: str = "id",
        predicate: Optional[Callable[[T], bool]] = None,
        scope: Any = None,
    ) -> None:
        self._prev = prev_attr
        self._next = next_attr
        self._id = id_attr
        self.scope = scope
        self.error: Optional[ChainIntegrityError] = None
        self._nodes: Dict[int, T] = {}
        for row in rows:
            if predicate is not None and not predicate(row):
                continue
            self._nodes[getattr(row, id_attr)] = row
        self._visited: set[int] = set()
        self._cursor: Optional[int] = self._find_head()
        self._done = self._cursor is None

    def __len__(self) -> int:
        """Number of rows in the scope, not the number that will be yielded."""
        return len(self._nodes)

    @property
    def visited(self) -> int:
        return len(self._visited)

    def _find_head(self) -> Optional[int]:
        if not self._nodes:
            return None
        heads = [node_id for node_id, row in self._nodes.items() if getattr(row, self._prev) == SENTINEL]
        if not heads:
            self._fail("no head node (prev = 0) found", None)
            return None
        if len(heads) > 1:
            logger.warning("Chain %r has %d head nodes %s; walking from %d", self.scope, len(heads), heads, heads[0])
        return heads[0]

    def _fail(self, message: str, node_id: Optional[int]) -> None:
        self.error = ChainIntegrityError(f"Chain {self.scope!r}: {message}", scope=self.scope, node_id=node_id)
        logger.error("Chain integrity error: %s", self.error)

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        if self._done:
            raise StopIteration
        node_id = self._cursor
        if node_id not in self._nodes:
            self._finish()
            self._fail(f"dangling pointer to missing node {node_id}", node_id)
            raise StopIteration
        if node_id in self._visited or len(self._visited) >= len(self._nodes):
            self._finish()
            self._fail(f"cycle detected at node {node_id}", node_id)
            raise StopIteration

        row = self._nodes[node_id]
        self._visited.add(node_id)
        next_id = getattr(row, self._next)
        if next_id == SENTINEL:
            self._finish()
            orphans = len(self._nodes) - len(self._visited)
            if orphans:
                logger.warning("Chain %r: %d row(s) not reachable from the head", self.scope, orphans)
        else:
            self._cursor = next_id
        return row

    def _finish(self) -> None:
        self._done = True
        self._cursor = None


def ordered(rows: Iterable[T], prev_attr: str, next_attr: str, **kwargs) -> List[T]:
    """Buffer a full traversal into a list."""
    return list(ChainIterator(rows, prev_attr, next_attr, **kwargs))
