"""Pytest configuration and fixtures."""

import pytest

from crudkit.database.sorted_repo import create_sorted
from crudkit.database.sqlite_client import get_engine, get_session
from sample_models import Base, Dog, Owner, same_owner


@pytest.fixture
def engine(tmp_path):
    """Create an on-disk SQLite database with the sample tables."""
    engine = get_engine(f"sqlite:///{tmp_path / 'crud.db'}", metadata=Base.metadata)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session(engine):
    session = get_session(engine)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def owners(session):
    """Two committed owners: Ann and Bob."""
    ann = Owner(name="Ann", age=34)
    bob = Owner(name="Bob", age=51)
    session.add_all([ann, bob])
    session.commit()
    return ann, bob


@pytest.fixture
def make_dogs(session):
    """Factory creating sorted dogs for an owner, in order."""

    def _make(owner, *names, **kwargs):
        return [
            create_sorted(session, Dog, {"name": name, "owner_id": owner.id}, subset=same_owner, **kwargs)
            for name in names
        ]

    return _make
