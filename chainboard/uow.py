"""Transactional unit of work with savepoint nesting.

Usage::

    uow = UnitOfWork(engine)
    with uow.transaction() as conn:
        conn.execute(...)
        with uow.transaction():  # SAVEPOINT
            ...

The outermost ``begin`` opens a real transaction, inner levels use
savepoints. A rollback at any level poisons the outer transaction: its final
``commit`` turns into a ROLLBACK.
"""

from __future__ import annotations

import logging
import os
import random
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional

from sqlalchemy.engine import Connection, Engine, RootTransaction
from sqlalchemy.exc import DBAPIError

from .config import settings
from .errors import StoreConnectionError, TransactionError

logger = logging.getLogger(__name__)

JITTER_MS = 250


class UnitOfWork:
    def __init__(
        self,
        engine: Engine,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.max_retries = settings.DB_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay_ms = settings.DB_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
        self._sleep = sleep
        self._conn: Optional[Connection] = None
        self._root: Optional[RootTransaction] = None
        self.depth = 0
        self.failed = False
        self._after_commit: List[Callable[[], None]] = []

    # === Connection ===

    @property
    def connection(self) -> Connection:
        if self._conn is None:
            self._conn = self._connect()
        return self._conn

    def _connect(self) -> Connection:
        attempt = 0
        delay = self.retry_delay_ms
        while True:
            try:
                return self.engine.connect()
            except DBAPIError as exc:
                logger.error("Connection failed: %s", exc.orig if exc.orig is not None else exc)
                logger.debug("Database URL used: %s", settings.safe_database_url)
                attempt += 1
                if attempt > self.max_retries:
                    message = (
                        f"Connection failed: {exc}"
                        if settings.APP_ENV == "development"
                        else "Connection error. Please try again later."
                    )
                    raise StoreConnectionError(message) from exc
                self._sleep((delay + random.randint(0, JITTER_MS)) / 1000)
                delay *= 2

    def execute(self, statement: Any, parameters: Any = None):
        return self.connection.execute(statement, parameters)

    def close(self) -> None:
        if self._root is not None:
            logger.warning("Closing unit of work with %d open transaction level(s)", self.depth)
            self._root.rollback()
            self._root = None
        self.depth = 0
        self.failed = False
        self._after_commit.clear()
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # === Transactions ===

    @property
    def active(self) -> bool:
        return self.depth > 0

    def savepoint_name(self) -> str:
        return f"sp_{os.getpid()}_{self.depth}"

    def begin(self) -> None:
        conn = self.connection
        try:
            if self.depth == 0:
                # adopt a transaction the connection autobegan for a bare read
                self._root = conn.get_transaction() if conn.in_transaction() else conn.begin()
                self.failed = False
            else:
                conn.exec_driver_sql(f"SAVEPOINT {self.savepoint_name()}")
        except DBAPIError as exc:
            logger.error("begin failed: %s", exc)
            self.failed = True
            raise TransactionError("Could not start database transaction.") from exc
        self.depth += 1
        logger.debug("Transaction nesting now: %d", self.depth)

    def commit(self) -> bool:
        """Close the current level.

        Returns False when the outermost level had to roll back because an
        inner level failed.
        """
        if self.depth <= 0:
            logger.warning("commit() called with no active transaction.")
            return False
        self.depth -= 1
        committed = True
        try:
            if self.depth == 0:
                root, self._root = self._root, None
                if self.failed:
                    root.rollback()
                    committed = False
                    logger.info("Outer transaction rolled back due to inner error.")
                else:
                    root.commit()
                    logger.info("Outer transaction committed successfully.")
                self.failed = False
            else:
                self.connection.exec_driver_sql(f"RELEASE SAVEPOINT {self.savepoint_name()}")
                logger.debug("Released savepoint %s", self.savepoint_name())
        except DBAPIError as exc:
            self._after_commit.clear()
            logger.error("Commit/Rollback failed: %s", exc)
            raise TransactionError("Transaction finalisation failed.") from exc
        if self.depth == 0:
            callbacks, self._after_commit = self._after_commit, []
            if committed:
                for callback in callbacks:
                    callback()
        return committed

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost transaction commits.

        Dropped if it rolls back. Without an open transaction it runs now.
        """
        if self.depth == 0:
            callback()
        else:
            self._after_commit.append(callback)

    def rollback(self) -> None:
        if self.depth <= 0:
            logger.warning("rollback() called with no active transaction.")
            return
        self.depth -= 1
        self.failed = True
        try:
            if self.depth == 0:
                root, self._root = self._root, None
                self._after_commit.clear()
                root.rollback()
                self.failed = False
                logger.info("Outer transaction rolled back.")
            else:
                self.connection.exec_driver_sql(f"ROLLBACK TO SAVEPOINT {self.savepoint_name()}")
                logger.debug("Rolled back to savepoint %s", self.savepoint_name())
        except DBAPIError as exc:
            logger.error("rollback() failed: %s", exc)
            raise TransactionError("Transaction rollback failed.") from exc

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Run the block as one level: commit on success, roll back on error."""
        self.begin()
        try:
            yield self.connection
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
