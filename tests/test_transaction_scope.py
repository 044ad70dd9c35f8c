"""Tests for owned and borrowed transaction scopes."""

import pytest
from sqlalchemy import func, select

from crudkit.database.transaction import TransactionScope
from sample_models import Owner


def _owner_count(session) -> int:
    return session.scalar(select(func.count(Owner.id)))


def test_scope_owns_fresh_session(session):
    with TransactionScope.begin(session) as scope:
        assert scope.owned is True
        session.add(Owner(name="Ann"))
        scope.commit()

    assert scope.committed is True
    assert _owner_count(session) == 1


def test_scope_owns_autobegun_transaction(session):
    _owner_count(session)  # autobegins

    with TransactionScope.begin(session) as scope:
        assert scope.owned is True


def test_owned_scope_rolls_back_without_commit(session):
    with TransactionScope.begin(session):
        session.add(Owner(name="Ann"))
        session.flush()

    assert _owner_count(session) == 0


def test_owned_scope_rolls_back_on_error(session):
    with pytest.raises(RuntimeError):
        with TransactionScope.begin(session):
            session.add(Owner(name="Ann"))
            session.flush()
            raise RuntimeError("interrupted")

    assert _owner_count(session) == 0


def test_borrowed_scope_leaves_commit_to_owner(session):
    session.begin()
    with TransactionScope.begin(session) as scope:
        assert scope.borrowed is True
        session.add(Owner(name="Ann"))
        session.flush()
        scope.commit()

    # Still inside the caller's transaction
    assert session.in_transaction()
    session.rollback()
    assert _owner_count(session) == 0


def test_borrowed_scope_does_not_roll_back_on_exit(session):
    with session.begin():
        session.add(Owner(name="Ann"))
        with TransactionScope.begin(session):
            pass
        assert session.in_transaction()

    assert _owner_count(session) == 1


def test_savepoint_is_borrowed(session):
    session.begin_nested()
    scope = TransactionScope.begin(session)

    assert scope.borrowed is True
    assert scope.transaction is session.get_nested_transaction()
    session.rollback()


def test_force_commit_commits_borrowed_transaction(session):
    session.begin()
    scope = TransactionScope.begin(session)
    session.add(Owner(name="Ann"))

    scope.force_commit()

    assert scope.committed is True
    assert not session.in_transaction()
    assert _owner_count(session) == 1


def test_dispose_runs_once(session):
    scope = TransactionScope.begin(session)
    session.add(Owner(name="Ann"))
    session.flush()

    scope.dispose()
    scope.dispose()

    assert scope.disposed is True
    assert _owner_count(session) == 0
