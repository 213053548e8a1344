"""Utility methods."""

import re
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any


def slugify(name: str) -> str:
    """Turn a display name into a topic-safe id (e.g. "Living Room" -> "living_room")."""
    slug = re.sub(r"[^a-z0-9_]+", "_", name.strip().lower())
    return slug.strip("_") or "default"


def to_jsonable(value: Any) -> Any:
    """Convert command results (dataclasses, enums, containers) to JSON-ready values."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, Enum):
        return value.value

    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))

    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]

    return str(value)
