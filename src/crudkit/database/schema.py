"""Declarative mixins for sorted and archivable rows."""

from typing import Any

from sqlalchemy import Column, DateTime, Integer, inspect

# Index value of a row that is not part of any ordered subset
SENTINEL_INDEX = -1


class SortedMixin:
    """A row that holds a dense, zero-based position within its subset."""

    index = Column(Integer, nullable=False, default=SENTINEL_INDEX)


class ArchivableMixin:
    """A row that can be archived instead of deleted."""

    archived_at = Column(DateTime(timezone=True), nullable=True)


def _has_column(obj: Any, key: str) -> bool:
    cls = obj if isinstance(obj, type) else type(obj)
    mapper = inspect(cls, raiseerr=False)
    return mapper is not None and key in mapper.column_attrs


def is_sorted(obj: Any) -> bool:
    return _has_column(obj, "index")


def is_archivable(obj: Any) -> bool:
    return _has_column(obj, "archived_at")
