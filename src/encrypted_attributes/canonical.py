from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

import rfc8785
from pydantic import BaseModel

from .models import AttributePath

# Values rfc8785 accepts without conversion.
_SCALAR_TYPES = (bool, int, float, str, type(None))


def _to_json_tree(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Convert an attribute value into plain JSON types.

    Node attributes hold JSON-compatible data, but callers may hand in
    pydantic models (ciphertext envelopes), tuples, enums or attribute paths.

    Raises:
        TypeError: If the value (or a nested value) has no JSON form.
    """
    if isinstance(value, _SCALAR_TYPES):
        return value

    if isinstance(value, BaseModel):
        return _to_json_tree(value.model_dump(mode="json"))

    if isinstance(value, Mapping):
        converted: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Node attribute keys must be strings, got {type(key).__name__}: {key!r}")
            converted[key] = _to_json_tree(item)
        return converted

    if isinstance(value, (list, tuple)):
        return [_to_json_tree(item) for item in value]

    if isinstance(value, Enum):
        return _to_json_tree(value.value)

    if isinstance(value, AttributePath):
        return list(value.segments)

    if isinstance(value, bytes):
        raise TypeError(f"Cannot store raw bytes as a node attribute; encode them first: {value!r:.64}")

    raise TypeError(f"Cannot serialize type {type(value).__name__} as a node attribute.")


def to_canonical_json(value: Any) -> str:
    """Serialize a value to RFC 8785 canonical JSON.

    Raises:
        TypeError: If value contains an unsupported type.
        rfc8785.CanonicalizationError: If rfc8785 rejects the converted value.
    """
    return rfc8785.dumps(_to_json_tree(value)).decode("utf-8")


def from_canonical_json(text: str) -> Any:
    return json.loads(text)
