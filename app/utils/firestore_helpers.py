"""
Firestore query and document-path helpers.

Update dictionaries across the stores use Firestore's dotted field paths
("votes.upvotes", "sla.escalation_level"), so the in-memory store needs
the same path semantics to stay interchangeable with Firestore.
"""

from typing import Any, Dict

_MISSING = object()


def where_filter(query, field_path: str, op_string: str, value):
    """
    Helper function for Firestore queries.

    Uses positional arguments (which work reliably with firebase_admin).

    Usage:
        query = where_filter(collection, "category", "==", "roads_transport")
        query = where_filter(query, "status", "==", "submitted")
    """
    return query.where(field_path, op_string, value)


def get_path(doc: Dict[str, Any], field_path: str, default: Any = None) -> Any:
    """Read a dotted field path from a nested dict."""
    current: Any = doc
    for part in field_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def has_path(doc: Dict[str, Any], field_path: str) -> bool:
    return get_path(doc, field_path, _MISSING) is not _MISSING


def set_path(doc: Dict[str, Any], field_path: str, value: Any) -> None:
    """Write a dotted field path, creating intermediate maps like Firestore does."""
    parts = field_path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value
