"""
Subset filters: the predicates that partition sorted rows into ordering groups.

A subset filter is a plain list of SQLAlchemy boolean clauses combined with
AND. The empty list means the whole table shares one ordering.
"""

from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from sqlalchemy.orm import QueryableAttribute
from sqlalchemy.sql.elements import ColumnElement

SubsetFilter = List[ColumnElement[bool]]
Identifier = Callable[[Any], SubsetFilter]
SubsetSpec = Union[None, ColumnElement[bool], Sequence[ColumnElement[bool]], Identifier]


def identifier(*attributes: QueryableAttribute) -> Identifier:
    """
    Build an identifier matching rows that share the given attributes' values.

    The values are captured from the item at call time, so the returned
    clauses keep describing the item's subset even if the item changes later.

    Example:
        same_owner = identifier(Dog.owner_id)
        same_owner(dog)  # [Dog.owner_id == dog.owner_id]
    """
    if not attributes:
        return lambda item: []

    def _identify(item: Any) -> SubsetFilter:
        return [attribute == getattr(item, attribute.key) for attribute in attributes]

    return _identify


def value_identifier(attribute: QueryableAttribute) -> Callable[[Any], SubsetFilter]:
    """Build clauses matching rows whose ``attribute`` equals a given value."""

    def _identify(value: Any) -> SubsetFilter:
        return [attribute == value]

    return _identify


def resolve_subset(subset: SubsetSpec, item: Optional[Any] = None) -> SubsetFilter:
    """
    Normalize any accepted subset argument to a list of clauses.

    Accepts None (whole table), a single clause, a sequence of clauses, or an
    identifier callable evaluated against ``item``.
    """
    if subset is None:
        return []
    if isinstance(subset, ColumnElement):
        return [subset]
    if callable(subset):
        return list(subset(item))
    return list(subset)


def combine(*filters: Iterable[ColumnElement[bool]]) -> SubsetFilter:
    """Conjunction of several subset filters."""
    combined: SubsetFilter = []
    for clauses in filters:
        combined.extend(clauses)
    return combined
