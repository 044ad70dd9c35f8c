"""Tests for engine and session helpers."""

import pytest
from sqlalchemy import func, select, text

from crudkit.config.loader import CrudSettings, DatabaseSettings
from crudkit.database.sqlite_client import engine_from_settings, session_context
from sample_models import Base, Owner


def test_foreign_keys_enabled(session):
    assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_engine_from_settings_creates_tables(tmp_path):
    settings = CrudSettings(database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'settings.db'}"))
    engine = engine_from_settings(settings, metadata=Base.metadata)

    with session_context(engine) as session:
        session.add(Owner(name="Ann"))
        session.commit()

    with session_context(engine) as session:
        assert session.scalar(select(func.count(Owner.id))) == 1
    engine.dispose()


def test_session_context_rolls_back_on_error(engine):
    with pytest.raises(RuntimeError):
        with session_context(engine) as session:
            session.add(Owner(name="Ann"))
            session.flush()
            raise RuntimeError("boom")

    with session_context(engine) as session:
        assert session.scalar(select(func.count(Owner.id))) == 0
