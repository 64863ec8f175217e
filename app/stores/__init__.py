"""
Report store backends.

Use get_report_store() everywhere; it picks the in-memory store when
USE_MOCK_DB is set and Firestore otherwise.
"""

import logging
from typing import Optional

from app.core.settings import settings
from app.stores.base import ReportStore
from app.stores.memory_store import InMemoryReportStore

logger = logging.getLogger(__name__)

_store_instance: Optional[ReportStore] = None


def get_report_store() -> ReportStore:
    """Get or create the configured ReportStore singleton."""
    global _store_instance
    if _store_instance is not None:
        return _store_instance

    if settings.USE_MOCK_DB:
        _store_instance = InMemoryReportStore()
        logger.warning("[STORE] USING IN-MEMORY MOCK DATABASE (data is lost on restart)")
    else:
        from app.stores.firestore_store import FirestoreReportStore
        _store_instance = FirestoreReportStore()
        logger.info("[STORE] USING FIRESTORE DATABASE")
    return _store_instance


def set_report_store(store: Optional[ReportStore]) -> None:
    """Replace the global store (tests, scripts)."""
    global _store_instance
    _store_instance = store


__all__ = ["ReportStore", "InMemoryReportStore", "get_report_store", "set_report_store"]
