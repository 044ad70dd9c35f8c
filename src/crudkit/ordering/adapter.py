"""
Persistence adapters the index maintainer issues its reads and shifts through.

Two execution paths produce the same outcome:

- ``BatchShiftAdapter`` shifts with one set-based ``UPDATE`` per phase and keeps
  the identity map in sync.
- ``InMemoryShiftAdapter`` loads the candidate rows, applies the arithmetic
  per row and flushes them one by one, for stores without efficient batch
  updates.
"""

from typing import Any, List, Optional, Sequence, Type

from sqlalchemy import and_, func, inspect, not_, select, update
from sqlalchemy.orm import InstrumentedAttribute, Session
from sqlalchemy.sql.elements import ColumnElement

from crudkit.database.errors import ExceptionLookup, store_phase
from crudkit.database.schema import SENTINEL_INDEX
from crudkit.utils.logging import get_logger

logger = get_logger(__name__)


class ShiftAdapter:
    """Shared reads, locking and flushing over one sorted model."""

    mode = "base"

    def __init__(
        self,
        session: Session,
        model: Type[Any],
        entity_name: str,
        lookup: Optional[ExceptionLookup] = None,
        index_key: str = "index",
    ):
        self.session = session
        self.model = model
        self.entity_name = entity_name
        self.lookup = lookup
        self.index_key = index_key
        self.mapper = inspect(model)

    @property
    def index_column(self) -> InstrumentedAttribute:
        return getattr(self.model, self.index_key)

    def _exclude(self, item: Optional[Any]) -> List[ColumnElement[bool]]:
        """Clauses that leave ``item`` out of a read, when it already has a row."""
        if item is None:
            return []
        state = inspect(item)
        if not state.has_identity:
            return []
        return [
            not_(and_(*[
                getattr(self.model, self.mapper.get_property_by_column(column).key) == value
                for column, value in zip(self.mapper.primary_key, state.identity)
            ]))
        ]

    def max_index(
        self,
        subset: Sequence[ColumnElement[bool]],
        action: str,
        exclude: Optional[Any] = None,
    ) -> int:
        """Highest index in the subset, or -1 when it holds no rows."""
        stmt = select(func.max(self.index_column)).where(*subset, *self._exclude(exclude))
        with store_phase(self.entity_name, action, "read-max", self.lookup):
            value = self.session.execute(stmt).scalar()
        return SENTINEL_INDEX if value is None else int(value)

    def lock(self, subset: Sequence[ColumnElement[bool]], action: str) -> None:
        """Lock the subset's rows for the rest of the transaction (no-op on SQLite)."""
        stmt = select(*self.mapper.primary_key).where(*subset).with_for_update()
        with store_phase(self.entity_name, action, "lock", self.lookup):
            self.session.execute(stmt).all()

    def flush(self, action: str, phase: str) -> None:
        with store_phase(self.entity_name, action, phase, self.lookup):
            self.session.flush()

    def place(self, item: Any, index: int, action: str, phase: str) -> None:
        """Set the item's index and persist it."""
        setattr(item, self.index_key, index)
        logger.debug(f"Placing {self.entity_name} at index {index} ({phase})")
        self.flush(action, phase)

    def shift(
        self,
        subset: Sequence[ColumnElement[bool]],
        delta: int,
        conditions: Sequence[ColumnElement[bool]],
        action: str,
        phase: str,
    ) -> int:
        """Add ``delta`` to the index of every subset row matching ``conditions``."""
        raise NotImplementedError


class BatchShiftAdapter(ShiftAdapter):
    mode = "batch"

    def shift(self, subset, delta, conditions, action, phase) -> int:
        self.flush(action, phase)
        column = self.index_column
        stmt = (
            update(self.model)
            .where(*subset, *conditions)
            .values({column: column + delta})
            .execution_options(synchronize_session="fetch")
        )
        with store_phase(self.entity_name, action, phase, self.lookup):
            result = self.session.execute(stmt)
        logger.debug(f"Shifted {result.rowcount} {self.entity_name} rows by {delta:+d} ({phase})")
        return result.rowcount


class InMemoryShiftAdapter(ShiftAdapter):
    mode = "in_memory"

    def shift(self, subset, delta, conditions, action, phase) -> int:
        self.flush(action, phase)
        stmt = select(self.model).where(*subset, *conditions)
        with store_phase(self.entity_name, action, phase, self.lookup):
            rows = self.session.execute(stmt).scalars().all()

        for row in rows:
            setattr(row, self.index_key, getattr(row, self.index_key) + delta)

        self.flush(action, phase)
        logger.debug(f"Shifted {len(rows)} {self.entity_name} rows by {delta:+d} in memory ({phase})")
        return len(rows)


ADAPTERS = {
    BatchShiftAdapter.mode: BatchShiftAdapter,
    InMemoryShiftAdapter.mode: InMemoryShiftAdapter,
}


def create_adapter(mode: str, session: Session, model: Type[Any], entity_name: str, **kwargs: Any) -> ShiftAdapter:
    try:
        adapter_cls = ADAPTERS[mode]
    except KeyError:
        raise ValueError(f"Unknown execution mode '{mode}', expected one of: {', '.join(ADAPTERS)}") from None
    return adapter_cls(session, model, entity_name, **kwargs)
