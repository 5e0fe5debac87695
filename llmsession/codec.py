"""
JSON codec used for the wire protocol and for session persistence.

Values are converted through their own ``to_dict`` / ``from_dict`` methods,
so every persisted or transmitted shape is spelled out explicitly next to
the type that owns it.  The module is the only place that touches
``json`` for those types; swapping the encoding means swapping this file.
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

T = TypeVar("T")


class DecodeError(ValueError):
    """Raised when input is not valid JSON or does not fit the target shape."""


def _to_plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    return value


def serialize(value: Any) -> str:
    """Serialize *value* (a ``to_dict`` object, list, dict or scalar) to JSON text."""
    return json.dumps(_to_plain(value), ensure_ascii=False, separators=(",", ":"))


def deserialize(text: str, cls: type[T]) -> T:
    """
    Parse *text* and build an instance of *cls* via ``cls.from_dict``.

    Raises ``DecodeError`` on malformed JSON, a non-object top level, or a
    payload that ``from_dict`` rejects.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise DecodeError(f"Malformed JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError(
            f"Expected a JSON object for {cls.__name__}, got {type(data).__name__}"
        )
    try:
        return cls.from_dict(data)  # type: ignore[attr-defined]
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise DecodeError(f"Invalid {cls.__name__} payload: {exc}") from exc


def encode(value: Any) -> bytes:
    return serialize(value).encode("utf-8")


def decode(data: bytes, cls: type[T]) -> T:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Invalid UTF-8: {exc}") from exc
    return deserialize(text, cls)
