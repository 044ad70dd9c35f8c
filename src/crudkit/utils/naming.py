"""Human readable names for mapped models, used in error messages."""

import re
from typing import Any

_SUFFIXES = ("Entity", "Model")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def entity_name(model: Any) -> str:
    """
    Derive a readable entity name from a model class or instance.

    Example:
        >>> entity_name(DogEntity)
        'dog'
        >>> entity_name(OwnerProfile)
        'owner profile'
    """
    cls = model if isinstance(model, type) else type(model)
    name = cls.__name__
    for suffix in _SUFFIXES:
        if name.endswith(suffix) and name != suffix:
            name = name[: -len(suffix)]
            break
    return " ".join(part.lower() for part in _CAMEL_BOUNDARY.split(name) if part)
