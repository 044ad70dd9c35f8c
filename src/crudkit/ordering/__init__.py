"""Dense index maintenance over ordered subsets of rows."""

from .adapter import BatchShiftAdapter, InMemoryShiftAdapter, ShiftAdapter, create_adapter
from .maintainer import IndexMaintainer
from .subsets import combine, identifier, resolve_subset, value_identifier

__all__ = [
    "BatchShiftAdapter",
    "IndexMaintainer",
    "InMemoryShiftAdapter",
    "ShiftAdapter",
    "combine",
    "create_adapter",
    "identifier",
    "resolve_subset",
    "value_identifier",
]
