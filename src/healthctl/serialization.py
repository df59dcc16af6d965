"""JSON-safe conversion shared by the operations log and response writers."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path


def sanitize_payload(value: object) -> object:
    """Return a JSON-safe copy of *value*, stringifying anything unusual."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [sanitize_payload(item) for item in value]
    return str(value)


__all__ = ["sanitize_payload"]
