"""Immutable before/after captures used to detect changes during an update."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import Mapper
from sqlalchemy.orm.attributes import set_committed_value


def _mapper_for(value: Any) -> Optional[Mapper]:
    if value is None or isinstance(value, type):
        return None
    state = inspect(value, raiseerr=False)
    return getattr(state, "mapper", None)


class StateSnapshot(ABC):
    """A captured value plus a kind-aware comparison."""

    @abstractmethod
    def get_value(self) -> Any:
        ...

    @abstractmethod
    def compare(self, other: "StateSnapshot") -> bool:
        """True when this snapshot and ``other`` hold the same state."""


class ValueSnapshot(StateSnapshot):
    """A scalar. Lists, dicts and sets are copied one level deep."""

    def __init__(self, value: Any):
        if isinstance(value, list):
            value = list(value)
        elif isinstance(value, dict):
            value = dict(value)
        elif isinstance(value, set):
            value = set(value)
        self._value = value

    def get_value(self) -> Any:
        return self._value

    def compare(self, other: StateSnapshot) -> bool:
        other_value = other.get_value()
        if self._value is None:
            return other_value is None
        return self._value == other_value


class EntitySnapshot(StateSnapshot):
    """
    A shallow, column-only copy of a mapped instance.

    Relationship attributes are never copied, so capturing a row does not
    drag its object graph along. The copy is a detached instance of the
    same class carrying the column values present at capture time.
    """

    def __init__(self, model: Any, mapper: Optional[Mapper] = None):
        self.source = model
        self._mapper = mapper or _mapper_for(model)
        if self._mapper is None:
            raise TypeError(f"{type(model).__name__} is not a mapped class")
        self._fields: Dict[str, Any] = {
            attr.key: getattr(model, attr.key) for attr in self._mapper.column_attrs
        }
        self._value = self._shallow_copy()

    def _shallow_copy(self) -> Any:
        copy = self._mapper.class_manager.new_instance()
        for key, value in self._fields.items():
            set_committed_value(copy, key, value)
        return copy

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def get_value(self) -> Any:
        return self._value

    def compare(self, other: StateSnapshot) -> bool:
        if not isinstance(other, EntitySnapshot):
            return other.get_value() is not None and self._value == other.get_value()
        if other._mapper is not self._mapper:
            return False
        for key, value in self._fields.items():
            other_value = other._fields.get(key)
            if value is None:
                if other_value is None:
                    continue
                return False
            if other_value is None or value != other_value:
                return False
        return True


def take_snapshot(value: Any) -> StateSnapshot:
    """Snapshot a single value, as an entity when it is a mapped instance."""
    mapper = _mapper_for(value)
    if mapper is not None:
        return EntitySnapshot(value, mapper)
    return ValueSnapshot(value)


class ListSnapshot(StateSnapshot):
    """Every element snapshotted at construction; compared by length and position."""

    def __init__(self, items: Optional[Iterable[Any]]):
        if items is None:
            self._snapshots: Optional[List[StateSnapshot]] = None
            self._value: List[Any] = []
            return
        self._snapshots = [take_snapshot(item) for item in items]
        self._value = [snapshot.get_value() for snapshot in self._snapshots]

    def get_value(self) -> List[Any]:
        return self._value

    def compare(self, other: StateSnapshot) -> bool:
        if not isinstance(other, ListSnapshot):
            other_value = other.get_value()
            return other_value is not None and self._value == other_value

        if self._snapshots is None:
            return other._snapshots is None
        if other._snapshots is None:
            return False

        if len(self._snapshots) != len(other._snapshots):
            return False
        return all(mine.compare(theirs) for mine, theirs in zip(self._snapshots, other._snapshots))
