from .monitors import ListMonitor, PropertyMonitor, UpdateMonitor
from .snapshots import EntitySnapshot, ListSnapshot, StateSnapshot, ValueSnapshot, take_snapshot

__all__ = [
    "EntitySnapshot",
    "ListMonitor",
    "ListSnapshot",
    "PropertyMonitor",
    "StateSnapshot",
    "UpdateMonitor",
    "ValueSnapshot",
    "take_snapshot",
]
