"""Monitors that report whether a field changed during an update."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from sqlalchemy.orm import QueryableAttribute
from sqlalchemy.sql.elements import ColumnElement

from crudkit.errors import ProgrammerError
from crudkit.monitoring.snapshots import EntitySnapshot, ListSnapshot, StateSnapshot, take_snapshot

TModel = TypeVar("TModel")

Selector = Union[QueryableAttribute, Callable[[Any], Any]]


def _compile_selector(selector: Selector) -> Callable[[Any], Any]:
    if isinstance(selector, QueryableAttribute):
        key = selector.key
        return lambda model: getattr(model, key)
    if callable(selector):
        return selector
    raise ProgrammerError(f"Monitor selector must be a mapped attribute or a callable, got {selector!r}")


class UpdateMonitor(ABC, Generic[TModel]):
    """
    Reports changes to a value during one update.

    Call ``update_old`` before the mutation and ``update_new`` after it;
    ``changed`` is only meaningful once both have run.
    """

    def __init__(self, selector: Selector):
        self.selector = selector
        self.getter = _compile_selector(selector)
        self.changed = False
        self._old_snapshot: Optional[StateSnapshot] = None
        self._new_snapshot: Optional[StateSnapshot] = None

    @abstractmethod
    def _snapshot(self, value: Any) -> StateSnapshot:
        ...

    @property
    def old_value(self) -> Any:
        if self._old_snapshot is None:
            raise ProgrammerError("Tried to access unset old value")
        return self._old_snapshot.get_value()

    @property
    def new_value(self) -> Any:
        if self._new_snapshot is None:
            raise ProgrammerError("Tried to access unset new value")
        return self._new_snapshot.get_value()

    def update_old(self, model: TModel) -> None:
        """Save the old state."""
        self._old_snapshot = self._snapshot(self.getter(model))
        self._new_snapshot = None
        self.changed = False

    def update_new(self, model: TModel) -> None:
        """Save the new state and compute ``changed``."""
        if self._old_snapshot is None:
            raise ProgrammerError("You cannot set the update monitor 'new state' before the 'old state'")
        self._new_snapshot = self._snapshot(self.getter(model))
        self.changed = not self._new_snapshot.compare(self._old_snapshot)


class PropertyMonitor(UpdateMonitor[TModel]):
    """
    Monitor a single field.

    Mapped entities are captured column by column, anything else by value.
    When the selector is a mapped attribute the monitor can also build
    clauses matching rows that hold the captured old or new value.

    Example:
        owner = PropertyMonitor(Dog.owner_id)
        update_item(session, dog, {"owner_id": other.id}, monitors=[owner])
        if owner.changed:
            logger.info(f"{dog.name} moved from {owner.old_value} to {owner.new_value}")
    """

    def _snapshot(self, value: Any) -> StateSnapshot:
        return take_snapshot(value)

    def _comparison(self, snapshot: StateSnapshot) -> ColumnElement[bool]:
        if not isinstance(self.selector, QueryableAttribute):
            raise ProgrammerError("Value expressions require a mapped attribute selector, not a callable")
        value = snapshot.source if isinstance(snapshot, EntitySnapshot) else snapshot.get_value()
        return self.selector == value

    def has_old_value_expression(self) -> ColumnElement[bool]:
        """A clause matching rows whose field equals the captured old value."""
        if self._old_snapshot is None:
            raise ProgrammerError("Tried to access unset old value")
        return self._comparison(self._old_snapshot)

    def has_new_value_expression(self) -> ColumnElement[bool]:
        """A clause matching rows whose field equals the captured new value."""
        if self._new_snapshot is None:
            raise ProgrammerError("Tried to access unset new value")
        return self._comparison(self._new_snapshot)


class ListMonitor(UpdateMonitor[TModel]):
    """Monitor a collection field; any length or positional difference counts as a change."""

    def _snapshot(self, value: Any) -> StateSnapshot:
        return ListSnapshot(value)
