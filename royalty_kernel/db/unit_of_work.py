"""
Module: royalty_kernel.db.unit_of_work
Responsibility: Explicit unit-of-work abstraction over SQLAlchemy sessions.
    Services that own a transaction boundary call ``uow.begin()`` and receive
    an ``UnitOfWorkTransaction`` exposing the session plus explicit
    ``commit()`` / ``rollback()``.
Architecture position: Kernel > DB.  May import from db/engine.py and
    logging_config only.

Invariants enforced:
    - Atomicity: a transaction either commits every write made through its
      session or none of them.  Leaving the ``with`` block by exception
      always rolls back.
    - Single use: a transaction cannot be committed after rollback (or
      vice versa); the session is closed when the transaction finishes.
    - Timeout ceiling: ``begin(timeout_ms=...)`` applies
      ``SET LOCAL statement_timeout`` on PostgreSQL so the database itself
      aborts a runaway calculation.  The caller additionally checks
      ``elapsed_ms()`` between steps.

Failure modes:
    - RuntimeError on commit/rollback of a finished transaction.
    - Any database error raised from commit propagates after rollback.

Audit relevance:
    Every royalty calculation runs in exactly one of these transactions,
    which is what guarantees that a FAILED run leaves no partial
    statements behind.
"""

import time
from types import TracebackType

from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from royalty_kernel.logging_config import get_logger

logger = get_logger("db.unit_of_work")


class UnitOfWorkTransaction:
    """
    One open database transaction.

    Contract:
        Usable as a context manager.  On a clean exit the transaction
        commits unless ``commit()`` or ``rollback()`` was already called;
        on an exception it rolls back and the exception propagates.

    Guarantees:
        - ``session`` stays usable until the transaction finishes.
        - ``elapsed_ms()`` measures wall time since ``begin()`` using a
          monotonic clock.
    """

    def __init__(self, session: Session, name: str, timeout_ms: int | None = None):
        self._session = session
        self._name = name
        self._timeout_ms = timeout_ms
        self._started = time.monotonic()
        self._finished = False

    @property
    def session(self) -> Session:
        if self._finished:
            raise RuntimeError(f"Transaction {self._name} is already finished")
        return self._session

    @property
    def name(self) -> str:
        return self._name

    @property
    def timeout_ms(self) -> int | None:
        return self._timeout_ms

    @property
    def is_finished(self) -> bool:
        return self._finished

    def elapsed_ms(self) -> float:
        """Milliseconds since the transaction began."""
        return (time.monotonic() - self._started) * 1000

    def commit(self) -> None:
        """Commit all writes and close the session."""
        if self._finished:
            raise RuntimeError(f"Transaction {self._name} is already finished")
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            self._finish()
            logger.warning(
                "uow_commit_failed",
                extra={"transaction": self._name},
                exc_info=True,
            )
            raise
        self._finish()
        logger.debug(
            "uow_committed",
            extra={"transaction": self._name, "elapsed_ms": round(self.elapsed_ms(), 2)},
        )

    def rollback(self) -> None:
        """Discard all writes and close the session."""
        if self._finished:
            raise RuntimeError(f"Transaction {self._name} is already finished")
        self._session.rollback()
        self._finish()
        logger.debug("uow_rolled_back", extra={"transaction": self._name})

    def _finish(self) -> None:
        self._finished = True
        self._session.close()

    def __enter__(self) -> "UnitOfWorkTransaction":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._finished:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


class RoyaltyUnitOfWork:
    """
    Factory for royalty transactions.

    Contract:
        Wraps a ``sessionmaker``; every ``begin()`` opens a fresh session
        so that a failed transaction can never leak state into the next.

    Non-goals:
        - Does NOT retry; callers decide whether a failure is retryable.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def begin(
        self,
        name: str = "royalty",
        timeout_ms: int | None = None,
    ) -> UnitOfWorkTransaction:
        """
        Open a new transaction.

        Args:
            name: Label used in log records.
            timeout_ms: Optional statement timeout applied on PostgreSQL.
        """
        session = self._session_factory()
        if timeout_ms is not None:
            bind = session.get_bind()
            if bind.dialect.name == "postgresql":
                session.execute(
                    text(f"SET LOCAL statement_timeout = {int(timeout_ms)}")
                )
        logger.debug(
            "uow_started",
            extra={"transaction": name, "timeout_ms": timeout_ms},
        )
        return UnitOfWorkTransaction(session, name, timeout_ms)

    def begin_royalty_calculation_txn(self, timeout_ms: int) -> UnitOfWorkTransaction:
        """Open the single atomic transaction used by one run calculation."""
        return self.begin(name="royalty_calculation", timeout_ms=timeout_ms)
