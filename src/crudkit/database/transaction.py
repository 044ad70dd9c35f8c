"""Composable transaction guard for multi-statement index maintenance."""

from typing import Optional

from sqlalchemy.orm import Session, SessionTransaction, SessionTransactionOrigin

from crudkit.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionScope:
    """
    Wraps either a transaction this scope started (owned) or one the caller
    already opened (borrowed).

    Owned scopes commit on ``commit()`` and roll back on exit when
    uncommitted. Borrowed scopes leave the ambient transaction to its owner:
    ``commit()`` only marks the scope committed and exit never touches it.
    This lets a multi-phase move run inside a caller's open transaction
    without committing or closing it early.

    Usage:
        with TransactionScope.begin(session) as scope:
            ...
            scope.commit()
    """

    def __init__(self, session: Session, transaction: SessionTransaction, owned: bool):
        self.session = session
        self.transaction = transaction
        self.owned = owned
        self.committed = False
        self.disposed = False

    @classmethod
    def begin(cls, session: Session) -> "TransactionScope":
        """
        Borrow the session's explicit transaction, or own a new one.

        A transaction SQLAlchemy started implicitly (autobegin on first use)
        is not ambient: nobody else has promised to commit it, so the scope
        takes ownership of it.
        """
        nested = session.get_nested_transaction()
        if nested is not None:
            logger.debug("Borrowing ambient savepoint")
            return cls(session, nested, owned=False)

        current = session.get_transaction()
        if current is not None and current.origin is not SessionTransactionOrigin.AUTOBEGIN:
            logger.debug("Borrowing ambient transaction")
            return cls(session, current, owned=False)

        if current is None:
            current = session.begin()
        logger.debug("Starting owned transaction")
        return cls(session, current, owned=True)

    @property
    def borrowed(self) -> bool:
        return not self.owned

    def commit(self) -> None:
        if self.owned:
            self.session.commit()
        self.committed = True

    def force_commit(self) -> None:
        """Commit the underlying transaction even when it is borrowed."""
        self.transaction.commit()
        self.committed = True

    def rollback(self) -> None:
        if self.owned:
            self.session.rollback()
        else:
            self.transaction.rollback()

    def dispose(self) -> None:
        """Roll back an owned, uncommitted transaction. Borrowed transactions are left alone."""
        if self.disposed:
            return
        self.disposed = True
        if self.owned and not self.committed:
            logger.debug("Rolling back uncommitted owned transaction")
            self.session.rollback()

    def __enter__(self) -> "TransactionScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.dispose()
        return None
