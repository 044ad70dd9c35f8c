"""Repository functions for sorted and archivable rows.

Each function takes the session first. With ``save=True`` the work runs in a
``TransactionScope`` and is committed (or left to the caller's open
transaction); with ``save=False`` it is only flushed.
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Type, Union

from sqlalchemy import select
from sqlalchemy.orm import QueryableAttribute, Session
from sqlalchemy.sql.elements import ColumnElement

from crudkit.config.loader import OrderingSettings
from crudkit.database.errors import ExceptionLookup, store_phase
from crudkit.database.schema import is_archivable, is_sorted
from crudkit.database.transaction import TransactionScope
from crudkit.errors import NotFoundError, ProgrammerError
from crudkit.monitoring.monitors import PropertyMonitor, UpdateMonitor
from crudkit.ordering.maintainer import IndexMaintainer
from crudkit.ordering.subsets import SubsetSpec
from crudkit.utils.logging import get_logger
from crudkit.utils.naming import entity_name
from crudkit.utils.time import utc_now

logger = get_logger(__name__)

Modifier = Callable[[Any], None]
ParentSpec = Union[PropertyMonitor, QueryableAttribute]


@contextmanager
def _unit_of_work(
    session: Session,
    name: str,
    action: str,
    save: bool,
    messages: Optional[ExceptionLookup] = None,
) -> Iterator[None]:
    """Run the block, then flush and (when saving) commit."""
    if not save:
        yield
        with store_phase(name, action, "flush", messages):
            session.flush()
        return

    with TransactionScope.begin(session) as scope:
        yield
        with store_phase(name, action, "flush", messages):
            session.flush()
        with store_phase(name, action, "commit", messages):
            scope.commit()


def _guard_bulk(action: str, save: bool) -> None:
    if not save:
        raise ProgrammerError(f"You cannot mass {action} sorted models without saving")


def _maintainer(
    session: Session,
    model: Type[Any],
    settings: Optional[OrderingSettings],
    messages: Optional[ExceptionLookup],
) -> Optional[IndexMaintainer]:
    if not is_sorted(model):
        return None
    return IndexMaintainer(session, model, settings=settings, messages=messages)


def _require_archivable(model: Type[Any]) -> None:
    if not is_archivable(model):
        raise ProgrammerError(f"{model.__name__} has no 'archived_at' column and cannot be archived")


def _apply_changes(item: Any, values: Optional[Dict[str, Any]], modify: Optional[Modifier]) -> None:
    for key, value in (values or {}).items():
        if not hasattr(type(item), key):
            raise ProgrammerError(f"{type(item).__name__} has no attribute '{key}'")
        setattr(item, key, value)
    if modify is not None:
        modify(item)


def _as_monitor(parent: ParentSpec) -> PropertyMonitor:
    if isinstance(parent, PropertyMonitor):
        return parent
    if isinstance(parent, UpdateMonitor):
        raise ProgrammerError("Subset-defining fields must be watched by a PropertyMonitor")
    return PropertyMonitor(parent)


def find_target(
    session: Session,
    model: Type[Any],
    *criteria: ColumnElement[bool],
    message: Optional[str] = None,
    messages: Optional[ExceptionLookup] = None,
) -> Any:
    """
    Load the first row matching ``criteria``.

    Raises:
        NotFoundError: If no row matches
    """
    name = entity_name(model)
    stmt = select(model).where(*criteria).limit(1)
    with store_phase(name, "read", "find", messages):
        item = session.execute(stmt).scalars().first()

    if item is None:
        override = messages.resolve("not_found") if messages else None
        text = message or override or f"{name.capitalize()} not found"
        logger.debug(f"No {name} matched {len(criteria)} criteria")
        raise NotFoundError(text)
    return item


def create_sorted(
    session: Session,
    model: Type[Any],
    values: Optional[Dict[str, Any]] = None,
    *,
    modify: Optional[Modifier] = None,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> Any:
    """
    Create a row at the tail of its subset.

    Args:
        session: SQLAlchemy session
        model: Sorted model class
        values: Column values for the new row
        modify: Optional callback run on the new row before it is placed
        subset: Clauses, or an identifier evaluated on the new row
        save: Commit (True) or only flush (False)
        settings: Ordering settings
        messages: Optional error message overrides

    Returns:
        The new row, with its index assigned
    """
    maintainer = IndexMaintainer(session, model, settings=settings, messages=messages)
    item = model()
    _apply_changes(item, values, modify)

    with _unit_of_work(session, maintainer.entity_name, "create", save, messages):
        # Flush first so keys set through relationships are populated for the subset.
        session.add(item)
        maintainer.adapter.flush("create", "insert")
        maintainer.assign_on_create(item, subset)

    logger.debug(f"Created {maintainer.entity_name} at index {item.index}")
    return item


def delete_sorted(
    session: Session,
    item: Any,
    *,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> None:
    """Delete a row and close the gap it leaves in its subset."""
    maintainer = IndexMaintainer(session, type(item), settings=settings, messages=messages)
    with _unit_of_work(session, maintainer.entity_name, "delete", save, messages):
        maintainer.remove(item, subset, action="delete")
        session.delete(item)
    logger.debug(f"Deleted {maintainer.entity_name}")


def delete_sorted_range(
    session: Session,
    items: Iterable[Any],
    *,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> int:
    """
    Delete several rows in one transaction, keeping every subset dense.

    Returns:
        Number of deleted rows

    Raises:
        ProgrammerError: If ``save`` is False
    """
    _guard_bulk("delete", save)
    items = list(items)
    if not items:
        return 0

    maintainer = IndexMaintainer(session, type(items[0]), settings=settings, messages=messages)
    with _unit_of_work(session, maintainer.entity_name, "delete", save, messages):
        for item in items:
            maintainer.remove(item, subset, action="delete")
            session.delete(item)

    logger.info(f"Deleted {len(items)} {maintainer.entity_name} rows")
    return len(items)


def archive_item(
    session: Session,
    item: Any,
    *,
    update_index: bool = True,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> Any:
    """
    Archive a row. With ``update_index`` a sorted row also leaves its ordering.

    Already archived rows are returned untouched.
    """
    model = type(item)
    _require_archivable(model)
    name = entity_name(model)
    if item.archived_at is not None:
        logger.debug(f"{name.capitalize()} already archived, skipping")
        return item

    maintainer = _maintainer(session, model, settings, messages) if update_index else None
    with _unit_of_work(session, name, "archive", save, messages):
        if maintainer is not None:
            maintainer.remove(item, subset, action="archive")
        item.archived_at = utc_now()
    return item


def restore_item(
    session: Session,
    item: Any,
    *,
    update_index: bool = True,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> Any:
    """Restore an archived row, appending it to the tail of its subset when sorted."""
    model = type(item)
    _require_archivable(model)
    name = entity_name(model)
    if item.archived_at is None:
        logger.debug(f"{name.capitalize()} is not archived, skipping")
        return item

    maintainer = _maintainer(session, model, settings, messages) if update_index else None
    with _unit_of_work(session, name, "restore", save, messages):
        item.archived_at = None
        if maintainer is not None:
            maintainer.restore(item, subset, action="restore")
    return item


def archive_range(
    session: Session,
    items: Iterable[Any],
    *,
    update_index: bool = True,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> List[Any]:
    """
    Archive several rows in one transaction.

    Returns:
        The rows that were archived (already archived rows are skipped)

    Raises:
        ProgrammerError: If the index is maintained and ``save`` is False
    """
    items = list(items)
    if not items:
        return []
    model = type(items[0])
    _require_archivable(model)
    if update_index and is_sorted(model):
        _guard_bulk("archive", save)

    name = entity_name(model)
    maintainer = _maintainer(session, model, settings, messages) if update_index else None
    archived = [item for item in items if item.archived_at is None]
    now = utc_now()

    with _unit_of_work(session, name, "archive", save, messages):
        for item in archived:
            if maintainer is not None:
                maintainer.remove(item, subset, action="archive")
            item.archived_at = now

    logger.info(f"Archived {len(archived)} of {len(items)} {name} rows")
    return archived


def restore_range(
    session: Session,
    items: Iterable[Any],
    *,
    update_index: bool = True,
    subset: SubsetSpec = None,
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> List[Any]:
    """
    Restore several archived rows in one transaction, appending them in the given order.

    Raises:
        ProgrammerError: If the index is maintained and ``save`` is False
    """
    items = list(items)
    if not items:
        return []
    model = type(items[0])
    _require_archivable(model)
    if update_index and is_sorted(model):
        _guard_bulk("restore", save)

    name = entity_name(model)
    maintainer = _maintainer(session, model, settings, messages) if update_index else None
    restored = [item for item in items if item.archived_at is not None]

    with _unit_of_work(session, name, "restore", save, messages):
        for item in restored:
            item.archived_at = None
            if maintainer is not None:
                maintainer.restore(item, subset, action="restore")
                # Later tail reads must see this row.
                maintainer.adapter.flush("restore", "append")

    logger.info(f"Restored {len(restored)} of {len(items)} {name} rows")
    return restored


def move_item(
    session: Session,
    item: Any,
    target: int,
    *,
    subset: SubsetSpec = None,
    safe: Optional[bool] = None,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> Any:
    """Move a sorted row to insertion slot ``target`` in its subset. Always saved."""
    maintainer = IndexMaintainer(session, type(item), settings=settings, messages=messages)
    return maintainer.move(item, target, subset, safe=safe)


def update_item(
    session: Session,
    item: Any,
    values: Optional[Dict[str, Any]] = None,
    *,
    modify: Optional[Modifier] = None,
    monitors: Sequence[UpdateMonitor] = (),
    parents: Sequence[ParentSpec] = (),
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> Any:
    """
    Update a row under change monitoring.

    ``parents`` are the fields that define the row's subset, given as mapped
    attributes or property monitors. When any of them changed, a sorted row is
    moved to the tail of its new subset and its old subset is closed up.

    Args:
        session: SQLAlchemy session
        item: Row to update
        values: Attribute values to set
        modify: Optional callback applied after ``values``
        monitors: Caller monitors, captured around the mutation
        parents: Subset-defining fields
        save: Commit (True) or only flush (False)
        settings: Ordering settings
        messages: Optional error message overrides

    Returns:
        The updated row
    """
    model = type(item)
    name = entity_name(model)
    parent_monitors = [_as_monitor(parent) for parent in parents]
    watched = list(monitors) + parent_monitors

    for monitor in watched:
        monitor.update_old(item)
    _apply_changes(item, values, modify)
    for monitor in watched:
        monitor.update_new(item)

    maintainer = _maintainer(session, model, settings, messages) if parent_monitors else None
    with _unit_of_work(session, name, "update", save, messages):
        if maintainer is not None:
            _transfer_if_moved(maintainer, item, parent_monitors)
    return item


def update_range(
    session: Session,
    items: Iterable[Any],
    values: Optional[Dict[str, Any]] = None,
    *,
    modify: Optional[Modifier] = None,
    parents: Sequence[ParentSpec] = (),
    save: bool = True,
    settings: Optional[OrderingSettings] = None,
    messages: Optional[ExceptionLookup] = None,
) -> List[Any]:
    """
    Apply the same update to several rows in one transaction.

    Parent monitors are evaluated per row, so each row whose subset changed
    is transferred on its own.

    Raises:
        ProgrammerError: If subsets are maintained and ``save`` is False
    """
    items = list(items)
    if not items:
        return []
    model = type(items[0])
    maintainer = _maintainer(session, model, settings, messages) if parents else None
    if maintainer is not None:
        _guard_bulk("update", save)

    parent_monitors = [_as_monitor(parent) for parent in parents]
    name = entity_name(model)

    with _unit_of_work(session, name, "update", save, messages):
        for item in items:
            for monitor in parent_monitors:
                monitor.update_old(item)
            _apply_changes(item, values, modify)
            for monitor in parent_monitors:
                monitor.update_new(item)
            if maintainer is not None:
                _transfer_if_moved(maintainer, item, parent_monitors)

    logger.info(f"Updated {len(items)} {name} rows")
    return items


def _transfer_if_moved(maintainer: IndexMaintainer, item: Any, parent_monitors: List[PropertyMonitor]) -> None:
    if not any(monitor.changed for monitor in parent_monitors):
        return
    old_subset = [monitor.has_old_value_expression() for monitor in parent_monitors]
    new_subset = [monitor.has_new_value_expression() for monitor in parent_monitors]
    maintainer.transfer(item, old_subset, new_subset)
