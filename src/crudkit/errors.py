"""Exception types raised by crudkit."""

from typing import Optional


class CrudError(Exception):
    """Base class for every error raised by crudkit."""


class ProgrammerError(CrudError):
    """
    Invalid call sequencing by the caller.

    Raised before any I/O where possible (reading a monitor value before it
    was captured, asking for an unsaved bulk reindex, ...). Never retried.
    """


class NotFoundError(CrudError):
    """The targeted row does not exist."""


class StoreError(CrudError):
    """
    A persistence failure surfaced by the store.

    Carries which entity, action and phase failed so a partially executed
    multi-phase sequence can be diagnosed from the message alone.
    """

    def __init__(
        self,
        message: str,
        entity_name: Optional[str] = None,
        action: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_name = entity_name
        self.action = action
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"{self.message} (phase: {self.phase})"
        return self.message


class ConflictError(StoreError):
    """Uniqueness or concurrency violation. Surfaced to the caller, never retried internally."""

    def __init__(
        self,
        message: str,
        entity_name: Optional[str] = None,
        action: Optional[str] = None,
        phase: Optional[str] = None,
        constraint_name: Optional[str] = None,
        property_name: Optional[str] = None,
    ):
        super().__init__(message, entity_name=entity_name, action=action, phase=phase)
        self.constraint_name = constraint_name
        self.property_name = property_name


class StoreLoadError(StoreError):
    """The store is too busy to serve the request (lock timeouts and the like)."""
