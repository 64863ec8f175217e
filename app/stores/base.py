from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import logging

from app.core.errors import ConflictError
from app.utils.firestore_helpers import get_path, set_path

logger = logging.getLogger(__name__)

# (field_path, op, value) with Firestore operator strings
Filter = Tuple[str, str, Any]

REPORTS = "reports"
VOTES = "votes"
USERS = "users"
DEPARTMENTS = "departments"
REPORT_NUMBERS = "report_numbers"
META = "meta"


def vote_key(user_id: str, report_id: str) -> str:
    """Deterministic ledger document id; one document per (user, report)."""
    return f"{report_id}__{user_id}".replace("/", "_")


def check_expected(doc: Dict[str, Any], expected: Optional[Dict[str, Any]]) -> None:
    for field_path, value in (expected or {}).items():
        if get_path(doc, field_path) != value:
            raise ConflictError(
                f"Document changed concurrently ({field_path} no longer matches)",
                details={"field": field_path},
            )


def apply_changes(
    doc: Dict[str, Any],
    expected: Optional[Dict[str, Any]] = None,
    updates: Optional[Dict[str, Any]] = None,
    increments: Optional[Dict[str, float]] = None,
    appends: Optional[Dict[str, List[Any]]] = None,
) -> Dict[str, Any]:
    """Return a new document with the changes applied; the input is not touched."""
    check_expected(doc, expected)
    new_doc = deepcopy(doc)
    for field_path, value in (updates or {}).items():
        set_path(new_doc, field_path, deepcopy(value))
    for field_path, delta in (increments or {}).items():
        set_path(new_doc, field_path, (get_path(new_doc, field_path) or 0) + delta)
    for field_path, items in (appends or {}).items():
        current = get_path(new_doc, field_path)
        current = list(current) if isinstance(current, list) else []
        for item in items:
            if item not in current:
                current.append(deepcopy(item))
        set_path(new_doc, field_path, current)
    return new_doc


class ReportStore(ABC):
    """
    Persistence contract for report aggregates, the vote ledger, user trust
    records, departments and small bits of sweep state.

    Contract:
    - Reads return plain dicts and never block writers; they may be stale.
    - Update arguments use dotted field paths:
        expected   {path: value}  compare-and-set guard, ConflictError on mismatch
        updates    {path: value}  field writes
        increments {path: delta}  atomic numeric increments
        appends    {path: [items]} array-union appends
      All four are applied as a single atomic unit or not at all.
    - Missing documents raise NotFoundError on update.
    - Infrastructure failures raise InternalError.
    """

    backend_name: str = "abstract"

    # Reports

    @abstractmethod
    def new_report_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def insert_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new report. DuplicateKeyError if its id or report_number is taken."""
        raise NotImplementedError

    @abstractmethod
    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def stream_reports(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Any = None,
    ) -> Iterator[Dict[str, Any]]:
        """Stream reports matching all filters. start_after is an exclusive order_by value."""
        raise NotImplementedError

    @abstractmethod
    def update_report(
        self,
        report_id: str,
        *,
        expected: Optional[Dict[str, Any]] = None,
        updates: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, float]] = None,
        appends: Optional[Dict[str, List[Any]]] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def link_reports(
        self,
        child_id: str,
        canonical_id: str,
        *,
        child_expected: Dict[str, Any],
        canonical_expected: Dict[str, Any],
        child_updates: Dict[str, Any],
        child_appends: Optional[Dict[str, List[Any]]] = None,
        canonical_appends: Optional[Dict[str, List[Any]]] = None,
        canonical_updates: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Guarded update of two reports as one unit, locking lower id first."""
        raise NotImplementedError

    # Vote ledger

    @abstractmethod
    def get_vote(self, user_id: str, report_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def apply_vote(
        self,
        user_id: str,
        report_id: str,
        *,
        expected_type: Optional[str],
        new_type: Optional[str],
        counter_deltas: Dict[str, int],
        now,
    ) -> Dict[str, Any]:
        """
        Atomically move the ledger entry from expected_type to new_type
        (None means absent) and apply counter_deltas to the report.

        Returns the updated report. ConflictError if the ledger entry no
        longer matches expected_type, NotFoundError if the report is gone.
        """
        raise NotImplementedError

    @abstractmethod
    def stream_votes(self, report_id: str) -> Iterator[Dict[str, Any]]:
        raise NotImplementedError

    # Users

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def ensure_user(self, user_id: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Return the user, creating it from defaults if absent."""
        raise NotImplementedError

    @abstractmethod
    def update_user(
        self,
        user_id: str,
        *,
        expected: Optional[Dict[str, Any]] = None,
        updates: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, float]] = None,
        appends: Optional[Dict[str, List[Any]]] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    # Departments

    @abstractmethod
    def save_department(self, department: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_department(self, code: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_departments(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    # Meta (sweep cursors)

    @abstractmethod
    def get_meta(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def set_meta(self, key: str, value: Dict[str, Any]) -> None:
        raise NotImplementedError

    def ping(self) -> Dict[str, Any]:
        return {"backend": self.backend_name, "connected": True}
