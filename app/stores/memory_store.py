"""
In-memory report store used when USE_MOCK_DB is enabled and by the tests.

Documents are copy-on-write: a writer takes the per-key lock, mutates a
deep copy and publishes it with a single dict assignment. Readers never
take a lock and always see either the old or the new document, never a
half-applied update.
"""

from collections import defaultdict
from contextlib import ExitStack
from copy import deepcopy
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import logging
import threading
import uuid

from app.core.errors import ConflictError, DuplicateKeyError, NotFoundError
from app.stores.base import Filter, ReportStore, apply_changes, vote_key
from app.utils.firestore_helpers import get_path, has_path

logger = logging.getLogger(__name__)


def _matches(doc: Dict[str, Any], field_filter: Filter) -> bool:
    field_path, op, value = field_filter
    # Firestore never matches a document that lacks the filtered field
    if not has_path(doc, field_path):
        return False
    current = get_path(doc, field_path)
    if op == "in":
        return current in value
    if op == "not-in":
        return current not in value
    if op == "array-contains":
        return isinstance(current, list) and value in current
    if op == "==":
        return current == value
    if op == "!=":
        return current != value
    if current is None:
        return False
    try:
        if op == "<":
            return current < value
        if op == "<=":
            return current <= value
        if op == ">":
            return current > value
        if op == ">=":
            return current >= value
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


class InMemoryReportStore(ReportStore):
    """Thread-safe dict-backed store with per-document locks."""

    backend_name = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._insert_lock = threading.Lock()

    def _lock(self, collection: str, doc_id: str) -> threading.Lock:
        key = (collection, doc_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collections[collection].get(doc_id)
        return deepcopy(doc) if doc is not None else None

    def _update(self, collection, doc_id, expected, updates, increments, appends) -> Dict[str, Any]:
        with self._lock(collection, doc_id):
            current = self._collections[collection].get(doc_id)
            if current is None:
                raise NotFoundError(f"{collection[:-1].capitalize()} {doc_id} not found")
            new_doc = apply_changes(current, expected, updates, increments, appends)
            self._collections[collection][doc_id] = new_doc
            return deepcopy(new_doc)

    # Reports

    def new_report_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def insert_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        report_id = report["id"]
        report_number = report["report_number"]
        with self._insert_lock:
            if report_id in self._collections["reports"]:
                raise DuplicateKeyError(f"Report id {report_id} already exists")
            if report_number in self._collections["report_numbers"]:
                raise DuplicateKeyError(
                    f"Report number {report_number} already exists",
                    details={"field": "report_number"},
                )
            self._collections["report_numbers"][report_number] = {"report_id": report_id}
            self._collections["reports"][report_id] = deepcopy(report)
        return deepcopy(report)

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        return self._read("reports", report_id)

    def stream_reports(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Any = None,
    ) -> Iterator[Dict[str, Any]]:
        snapshot = list(self._collections["reports"].values())
        docs = [doc for doc in snapshot if all(_matches(doc, f) for f in filters)]
        if order_by:
            docs = [doc for doc in docs if get_path(doc, order_by) is not None]
            docs.sort(key=lambda d: (get_path(d, order_by), d["id"]), reverse=descending)
            if start_after is not None:
                if descending:
                    docs = [d for d in docs if get_path(d, order_by) < start_after]
                else:
                    docs = [d for d in docs if get_path(d, order_by) > start_after]
        if limit is not None:
            docs = docs[:limit]
        for doc in docs:
            yield deepcopy(doc)

    def update_report(self, report_id, *, expected=None, updates=None, increments=None, appends=None):
        return self._update("reports", report_id, expected, updates, increments, appends)

    def link_reports(
        self,
        child_id,
        canonical_id,
        *,
        child_expected,
        canonical_expected,
        child_updates,
        child_appends=None,
        canonical_appends=None,
        canonical_updates=None,
    ):
        reports = self._collections["reports"]
        with ExitStack() as stack:
            for report_id in sorted({child_id, canonical_id}):
                stack.enter_context(self._lock("reports", report_id))
            child = reports.get(child_id)
            canonical = reports.get(canonical_id)
            if child is None:
                raise NotFoundError(f"Report {child_id} not found")
            if canonical is None:
                raise NotFoundError(f"Report {canonical_id} not found")
            new_child = apply_changes(child, child_expected, child_updates, None, child_appends)
            new_canonical = apply_changes(
                canonical, canonical_expected, canonical_updates, None, canonical_appends
            )
            reports[child_id] = new_child
            reports[canonical_id] = new_canonical
            return deepcopy(new_child), deepcopy(new_canonical)

    # Vote ledger

    def get_vote(self, user_id: str, report_id: str) -> Optional[Dict[str, Any]]:
        return self._read("votes", vote_key(user_id, report_id))

    def apply_vote(self, user_id, report_id, *, expected_type, new_type, counter_deltas, now):
        key = vote_key(user_id, report_id)
        votes = self._collections["votes"]
        reports = self._collections["reports"]
        # Ledger writes for a report are serialized under that report's key
        with self._lock("reports", report_id):
            report = reports.get(report_id)
            if report is None:
                raise NotFoundError(f"Report {report_id} not found")
            current = votes.get(key)
            current_type = current["vote_type"] if current else None
            if current_type != expected_type:
                raise ConflictError(
                    f"Vote by {user_id} on {report_id} changed concurrently",
                    details={"expected": expected_type, "found": current_type},
                )
            increments = {f"votes.{name}": delta for name, delta in counter_deltas.items() if delta}
            new_report = apply_changes(report, None, {"updated_at": now}, increments, None)

            if new_type is None:
                new_vote = None
            elif current is None:
                new_vote = {
                    "user_id": user_id,
                    "report_id": report_id,
                    "vote_type": new_type,
                    "created_at": now,
                    "updated_at": now,
                }
            else:
                new_vote = dict(current, vote_type=new_type, updated_at=now)

            if new_vote is None:
                votes.pop(key, None)
            else:
                votes[key] = new_vote
            reports[report_id] = new_report
            return deepcopy(new_report)

    def stream_votes(self, report_id: str) -> Iterator[Dict[str, Any]]:
        for vote in list(self._collections["votes"].values()):
            if vote["report_id"] == report_id:
                yield deepcopy(vote)

    # Users

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._read("users", user_id)

    def ensure_user(self, user_id: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock("users", user_id):
            users = self._collections["users"]
            if user_id not in users:
                users[user_id] = dict(deepcopy(defaults), id=user_id)
            return deepcopy(users[user_id])

    def update_user(self, user_id, *, expected=None, updates=None, increments=None, appends=None):
        return self._update("users", user_id, expected, updates, increments, appends)

    # Departments

    def save_department(self, department: Dict[str, Any]) -> Dict[str, Any]:
        code = department["code"]
        with self._lock("departments", code):
            self._collections["departments"][code] = deepcopy(department)
        return deepcopy(department)

    def get_department(self, code: str) -> Optional[Dict[str, Any]]:
        return self._read("departments", code)

    def list_departments(self) -> List[Dict[str, Any]]:
        return [deepcopy(d) for d in list(self._collections["departments"].values())]

    # Meta

    def get_meta(self, key: str) -> Optional[Dict[str, Any]]:
        return self._read("meta", key)

    def set_meta(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock("meta", key):
            self._collections["meta"][key] = deepcopy(value)
