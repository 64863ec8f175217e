"""
Shared model helpers.

DESIGN PRINCIPLE:
- Models reflect data structure; the lifecycle rules live in services
- Persisted documents hold plain values only (no Enum instances) so the
  Firestore encoder and the in-memory store see identical shapes
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def to_document(model: BaseModel) -> dict:
    """Dump a model to a store document, keeping datetimes as datetime objects."""
    return _plain(model.model_dump())
