"""Translate SQLAlchemy failures into crudkit error categories."""

import re
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from crudkit.errors import ConflictError, StoreError, StoreLoadError
from crudkit.utils.logging import get_logger

logger = get_logger(__name__)

# SQLSTATE codes (PostgreSQL / ANSI)
UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
LOCK_NOT_AVAILABLE = "55P03"

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (?P<columns>.+)$", re.MULTILINE)
_SQLITE_NOT_NULL = re.compile(r"NOT NULL constraint failed: (?P<column>\S+)")


class ExceptionLookup(BaseModel):
    """Optional message overrides for the errors raised by one operation."""

    default: Optional[str] = Field(default=None, description="Used for every category without its own override")
    unique_conflict: Optional[str] = Field(default=None, description="Broken unique constraints")
    null_insert: Optional[str] = Field(default=None, description="Null written to a non-nullable column")
    concurrency: Optional[str] = Field(default=None, description="Stale rows and serialization failures")
    not_found: Optional[str] = Field(default=None, description="Targeted row does not exist")

    def resolve(self, category: str) -> Optional[str]:
        """Get the override for a category, falling back to ``default``."""
        return getattr(self, category, None) or self.default


# (concurrency, unique_conflict, null_insert, default) per action
_DEFAULT_MESSAGES: Dict[str, Tuple[str, str, str, str]] = {
    "read": (
        "Someone else has edited this {entity}",
        "This {entity} already exists",
        "Cannot read {entity}",
        "Failed to load {entity}",
    ),
    "create": (
        "Someone else has edited this {entity}",
        "This {entity} already exists",
        "Cannot create {entity} with null value{column}",
        "Failed to create {entity}",
    ),
    "update": (
        "Someone else has edited this {entity}",
        "This version of {entity} already exists",
        "Cannot update {entity} with null value{column}",
        "Failed to update {entity}",
    ),
    "move": (
        "Someone else has edited this {entity}",
        "Someone else has reordered this {entity}",
        "Cannot move {entity}",
        "Failed to move {entity}",
    ),
    "archive": (
        "Someone else has archived this {entity}",
        "This {entity} has dependencies that need to be archived first",
        "Cannot archive {entity}",
        "Failed to archive {entity}",
    ),
    "restore": (
        "Someone else has restored this {entity}",
        "This {entity} conflicts with an active {entity}",
        "Cannot restore {entity}",
        "Failed to restore {entity}",
    ),
    "delete": (
        "Someone else has deleted this {entity}",
        "This {entity} has dependencies that need to be deleted first",
        "Cannot delete {entity}",
        "Failed to delete {entity}",
    ),
}


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _diag(exc: BaseException, attr: str) -> Optional[str]:
    diag = getattr(getattr(exc, "orig", None), "diag", None)
    return getattr(diag, attr, None) if diag is not None else None


def _is_unique_violation(exc: BaseException) -> bool:
    if _sqlstate(exc) == UNIQUE_VIOLATION:
        return True
    text = str(getattr(exc, "orig", exc))
    return "UNIQUE constraint failed" in text or "Duplicate entry" in text


def _is_not_null_violation(exc: BaseException) -> bool:
    if _sqlstate(exc) == NOT_NULL_VIOLATION:
        return True
    return "NOT NULL constraint failed" in str(getattr(exc, "orig", exc))


def _is_lock_failure(exc: BaseException) -> bool:
    if _sqlstate(exc) == LOCK_NOT_AVAILABLE:
        return True
    text = str(getattr(exc, "orig", exc)).lower()
    return "database is locked" in text or "lock wait timeout" in text


def _unique_constraint_details(exc: BaseException) -> Tuple[Optional[str], Optional[str]]:
    """Return (constraint_name, property_name) for a unique violation."""
    constraint = _diag(exc, "constraint_name")
    if constraint:
        return constraint, constraint.split("_")[-1]
    match = _SQLITE_UNIQUE.search(str(getattr(exc, "orig", exc)))
    if not match:
        return None, None
    columns = [c.strip() for c in match.group("columns").split(",")]
    return ", ".join(columns), columns[-1].split(".")[-1]


def _null_column(exc: BaseException) -> Optional[str]:
    column = _diag(exc, "column_name")
    if column:
        return column
    match = _SQLITE_NOT_NULL.search(str(getattr(exc, "orig", exc)))
    if not match:
        return None
    return match.group("column").split(".")[-1]


def process_db_error(
    exc: SQLAlchemyError,
    entity_name: str,
    action: str,
    phase: Optional[str] = None,
    lookup: Optional[ExceptionLookup] = None,
) -> StoreError:
    """
    Map a SQLAlchemy exception to a crudkit error.

    Args:
        exc: The exception raised by flush/execute/commit
        entity_name: Readable entity name for messages
        action: create, update, move, archive, restore or delete
        phase: Which step of a multi-phase sequence failed
        lookup: Optional message overrides

    Returns:
        ConflictError, StoreLoadError or StoreError (caller raises it)
    """
    concurrency_msg, unique_msg, null_msg, default_msg = _DEFAULT_MESSAGES.get(action, _DEFAULT_MESSAGES["update"])
    inner = str(getattr(exc, "orig", None) or exc)
    where = f" during {phase}" if phase else ""

    def message(category: str, fallback: str, column: str = "") -> str:
        override = lookup.resolve(category) if lookup else None
        return override or fallback.format(entity=entity_name, column=column)

    if isinstance(exc, StaleDataError) or _sqlstate(exc) in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
        logger.error(f"Concurrency error while running {action} on {entity_name}{where}: {inner}")
        return ConflictError(
            message("concurrency", concurrency_msg),
            entity_name=entity_name,
            action=action,
            phase=phase,
        )

    if isinstance(exc, IntegrityError) and _is_unique_violation(exc):
        constraint_name, property_name = _unique_constraint_details(exc)
        logger.error(f"{action.capitalize()} of {entity_name} violates unique constraint {constraint_name or 'N/A'}{where}")
        return ConflictError(
            message("unique_conflict", unique_msg),
            entity_name=entity_name,
            action=action,
            phase=phase,
            constraint_name=constraint_name,
            property_name=property_name,
        )

    if isinstance(exc, IntegrityError) and _is_not_null_violation(exc):
        column = _null_column(exc)
        logger.error(
            f"Tried to write null in non-nullable field ({column or 'N/A'}) while running {action} on {entity_name}{where}"
        )
        return StoreError(
            message("null_insert", null_msg, f" - {column}" if column else ""),
            entity_name=entity_name,
            action=action,
            phase=phase,
        )

    if isinstance(exc, OperationalError) and _is_lock_failure(exc):
        logger.error(f"Store busy while running {action} on {entity_name}{where}: {inner}")
        return StoreLoadError(
            "We are experiencing high traffic right now, try again later",
            entity_name=entity_name,
            action=action,
            phase=phase,
        )

    detail = inner if isinstance(exc, DBAPIError) else "No Details"
    logger.error(f"Database error while running {action} on {entity_name}{where}: {detail}")
    return StoreError(
        message("default", default_msg),
        entity_name=entity_name,
        action=action,
        phase=phase,
    )


@contextmanager
def store_phase(
    entity_name: str,
    action: str,
    phase: str,
    lookup: Optional[ExceptionLookup] = None,
) -> Iterator[None]:
    """
    Translate any SQLAlchemy failure raised inside the block.

    Usage:
        with store_phase("dog", "move", "open-slot"):
            session.flush()
    """
    try:
        yield
    except SQLAlchemyError as exc:
        raise process_db_error(exc, entity_name, action, phase=phase, lookup=lookup) from exc
