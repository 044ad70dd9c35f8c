"""
Dense index maintenance for ordered subsets.

Every subset of sorted rows keeps its active indices at exactly
``{0, ..., n-1}``; ``-1`` marks a row outside any ordering. The maintainer
implements the structural operations that preserve this: assign on create,
remove, restore, move and cross-subset transfer.
"""

from typing import Any, Optional, Type

from sqlalchemy.orm import Session

from crudkit.config.loader import OrderingSettings
from crudkit.database.errors import ExceptionLookup, store_phase
from crudkit.database.schema import SENTINEL_INDEX, is_sorted
from crudkit.database.transaction import TransactionScope
from crudkit.errors import ProgrammerError
from crudkit.ordering.adapter import ShiftAdapter, create_adapter
from crudkit.ordering.subsets import SubsetSpec, resolve_subset
from crudkit.utils.logging import get_logger
from crudkit.utils.naming import entity_name

logger = get_logger(__name__)


class IndexMaintainer:
    """
    Structural index operations for one sorted model.

    Args:
        session: SQLAlchemy session the operations run in
        model: Mapped class with an integer ``index`` column
        settings: Ordering settings (safe move default, execution mode, locking)
        messages: Optional error message overrides
    """

    def __init__(
        self,
        session: Session,
        model: Type[Any],
        settings: Optional[OrderingSettings] = None,
        messages: Optional[ExceptionLookup] = None,
    ):
        if not is_sorted(model):
            raise ProgrammerError(f"{model.__name__} has no 'index' column and cannot be kept in order")
        self.session = session
        self.model = model
        self.settings = settings or OrderingSettings()
        self.messages = messages
        self.entity_name = entity_name(model)
        self.adapter: ShiftAdapter = create_adapter(
            self.settings.execution,
            session,
            model,
            self.entity_name,
            lookup=messages,
        )

    @property
    def index_column(self):
        return self.adapter.index_column

    def _lock(self, subset, action: str) -> None:
        if self.settings.lock_subsets:
            self.adapter.lock(subset, action)

    def max_index(self, subset: SubsetSpec = None, item: Optional[Any] = None, action: str = "update") -> int:
        """Highest index in the subset (-1 when empty), ignoring ``item``'s own row."""
        return self.adapter.max_index(resolve_subset(subset, item), action, exclude=item)

    def assign_on_create(self, item: Any, subset: SubsetSpec = None) -> int:
        """
        Give a new item the tail position of its subset.

        Returns:
            The assigned index (0 for an empty subset)
        """
        clauses = resolve_subset(subset, item)
        self._lock(clauses, "create")
        index = self.adapter.max_index(clauses, "create", exclude=item) + 1
        item.index = index
        logger.debug(f"Assigned index {index} to new {self.entity_name}")
        return index

    def remove(self, item: Any, subset: SubsetSpec = None, action: str = "archive") -> None:
        """
        Take an item out of its ordering and close the gap it leaves.

        The item ends at the sentinel index; callers deleting the row can
        discard it afterwards.
        """
        old_index = item.index
        if old_index is None or old_index < 0:
            return
        clauses = resolve_subset(subset, item)
        self._lock(clauses, action)
        # Vacate the slot before closing the gap so no two rows share an index.
        item.index = SENTINEL_INDEX
        self.adapter.shift(clauses, -1, [self.index_column > old_index], action, "close-gap")
        logger.debug(f"Removed {self.entity_name} from index {old_index}")

    def restore(self, item: Any, subset: SubsetSpec = None, action: str = "restore") -> None:
        """Append a detached item at the tail of its subset. No-op for active items."""
        if item.index is not None and item.index >= 0:
            return
        clauses = resolve_subset(subset, item)
        self._lock(clauses, action)
        item.index = self.adapter.max_index(clauses, action, exclude=item) + 1
        logger.debug(f"Restored {self.entity_name} at index {item.index}")

    def move(self, item: Any, target: int, subset: SubsetSpec = None, safe: Optional[bool] = None) -> Any:
        """
        Move an item to ``target`` within its subset.

        ``target`` is an insertion slot: moving up to ``target`` leaves the
        item at ``target - 1``. A negative target removes the item from the
        ordering and a target past the tail appends it. The whole move runs
        in one transaction scope and is always saved.

        Args:
            item: The sorted item to move
            target: New insertion slot
            subset: Subset filter, clauses or identifier callable
            safe: Three-phase move; defaults to ``settings.safe_move``

        Returns:
            The moved item
        """
        safe = self.settings.safe_move if safe is None else safe
        old_index = SENTINEL_INDEX if item.index is None else item.index
        if target < 0:
            target = SENTINEL_INDEX

        if self._is_noop(old_index, target):
            return item

        clauses = resolve_subset(subset, item)

        with TransactionScope.begin(self.session) as scope:
            self._lock(clauses, "move")

            if target > 0:
                tail = self.adapter.max_index(clauses, "move") + 1
                target = min(target, tail)

            if not self._is_noop(old_index, target):
                self._apply_move(item, old_index, target, clauses, safe)

            with store_phase(self.entity_name, "move", "commit", self.messages):
                scope.commit()

        logger.debug(f"Moved {self.entity_name} from index {old_index} to {item.index}")
        return item

    def _apply_move(self, item: Any, old_index: int, target: int, clauses, safe: bool) -> None:
        column = self.index_column

        if target == SENTINEL_INDEX:
            self.adapter.place(item, SENTINEL_INDEX, "move", "detach")
            self.adapter.shift(clauses, -1, [column > old_index], "move", "close-gap")
        elif old_index == SENTINEL_INDEX:
            self.adapter.shift(clauses, 1, [column >= target], "move", "open-slot")
            self.adapter.place(item, target, "move", "place")
        elif safe:
            self._move_safe(item, old_index, target, clauses)
        else:
            self._move_compact(item, old_index, target, clauses)

    @staticmethod
    def _is_noop(old_index: int, target: int) -> bool:
        # Slot old + 1 is directly after the item, so it stays put. For a detached item that is slot 0.
        return target == old_index or target == old_index + 1

    def _move_compact(self, item: Any, old_index: int, target: int, clauses) -> None:
        column = self.index_column
        if target > old_index:
            self.adapter.shift(clauses, -1, [column > old_index, column < target], "move", "shift-range")
            self.adapter.place(item, target - 1, "move", "place")
            return

        self.adapter.shift(clauses, 1, [column >= target, column < old_index], "move", "shift-range")
        self.adapter.place(item, target, "move", "place")

    def _move_safe(self, item: Any, old_index: int, target: int, clauses) -> None:
        column = self.index_column
        self.adapter.shift(clauses, 1, [column >= target], "move", "open-slot")
        self.adapter.place(item, target, "move", "place")

        # The open-slot phase already pushed the old position up by one when moving down.
        threshold = old_index + 1 if old_index >= target else old_index
        self.adapter.shift(clauses, -1, [column > threshold], "move", "close-gap")

    def transfer(self, item: Any, old_subset: SubsetSpec, new_subset: SubsetSpec) -> None:
        """
        Append an item to the tail of its new subset and close the gap it left in the old one.

        Called after an update changed the fields that define the item's
        subset; ``old_subset`` and ``new_subset`` are usually built from the
        parent monitors' old/new value expressions. A detached item stays
        detached.
        """
        old_index = item.index
        if old_index is None or old_index < 0:
            logger.debug(f"Skipping transfer of detached {self.entity_name}")
            return

        old_clauses = resolve_subset(old_subset, item)
        new_clauses = resolve_subset(new_subset, item)

        # Reads must see the stored rows, not the item's pending new subset key.
        with self.session.no_autoflush:
            self._lock(old_clauses, "update")
            self._lock(new_clauses, "update")
            item.index = self.adapter.max_index(new_clauses, "update", exclude=item) + 1

        # The shift flushes the item at its new tail first, vacating its old slot.
        self.adapter.shift(old_clauses, -1, [self.index_column > old_index], "update", "close-gap")

        logger.debug(f"Transferred {self.entity_name} from index {old_index} to tail index {item.index}")
