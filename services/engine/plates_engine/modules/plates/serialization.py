from __future__ import annotations

from enum import Enum
from typing import Any

import numpy as np

# (serialized key, attribute name) pairs.
PropSpec = tuple[tuple[str, str], ...]


def serialize_props(obj: Any, props: PropSpec) -> dict[str, Any]:
    """Writes the allow-listed attributes of `obj`, omitting absent (None) values."""
    result: dict[str, Any] = {}
    for key, attr in props:
        value = getattr(obj, attr)
        if value is None:
            continue
        if isinstance(value, np.ndarray):
            value = [float(item) for item in value]
        elif isinstance(value, Enum):
            value = value.value
        elif isinstance(value, np.generic):
            value = value.item()
        result[key] = value
    return result


def deserialize_props(obj: Any, props: PropSpec, payload: dict[str, Any]) -> Any:
    for key, attr in props:
        if key in payload:
            setattr(obj, attr, payload[key])
    return obj
