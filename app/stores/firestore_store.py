"""
Firestore-backed report store.

Every multi-field write runs inside a Firestore transaction so the guard
read, the ledger document and the counter transforms commit together or
not at all. Counters use server-side Increment transforms, never a
read-modify-write of the whole report.

Firestore retries aborted transactions internally; that budget is kept at
one attempt here because the services own the bounded retry loop.
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence
import logging

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from app.core.errors import CivicError, ConflictError, DuplicateKeyError, InternalError, NotFoundError
from app.stores.base import (
    DEPARTMENTS,
    META,
    REPORT_NUMBERS,
    REPORTS,
    USERS,
    VOTES,
    Filter,
    ReportStore,
    apply_changes,
    vote_key,
)
from app.utils.firestore_helpers import where_filter

logger = logging.getLogger(__name__)

_EXCEEDED_ATTEMPTS_PREFIX = "Failed to commit transaction"


def _to_firestore_changes(
    updates: Optional[Dict[str, Any]],
    increments: Optional[Dict[str, float]],
    appends: Optional[Dict[str, List[Any]]],
) -> Dict[str, Any]:
    changes: Dict[str, Any] = dict(updates or {})
    for field_path, delta in (increments or {}).items():
        changes[field_path] = firestore.Increment(delta)
    for field_path, items in (appends or {}).items():
        changes[field_path] = firestore.ArrayUnion(list(items))
    return changes


class FirestoreReportStore(ReportStore):
    """Report store on top of the firebase_admin Firestore client."""

    backend_name = "firestore"

    def __init__(self, db=None):
        if db is None:
            from app.config.firebase import get_db
            db = get_db()
        self.db = db

    def _run(self, operation: str, func, *args):
        """Run a transactional callable and translate Firestore failures."""
        transaction = self.db.transaction(max_attempts=1)
        try:
            return func(transaction, *args)
        except CivicError:
            raise
        except (google_exceptions.Aborted, google_exceptions.Conflict) as e:
            raise ConflictError(f"{operation} lost a concurrent write: {e}")
        except ValueError as e:
            if str(e).startswith(_EXCEEDED_ATTEMPTS_PREFIX):
                raise ConflictError(f"{operation} lost a concurrent write: {e}")
            raise
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore {operation} failed: {e}", exc_info=True)
            raise InternalError(f"Storage failure during {operation}")

    def _guarded_update(self, collection: str, doc_id: str, expected, updates, increments, appends):
        doc_ref = self.db.collection(collection).document(doc_id)

        @firestore.transactional
        def _txn(transaction):
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"{collection[:-1].capitalize()} {doc_id} not found")
            current = snapshot.to_dict()
            new_doc = apply_changes(current, expected, updates, increments, appends)
            changes = _to_firestore_changes(updates, increments, appends)
            if changes:
                transaction.update(doc_ref, changes)
            return new_doc

        return self._run(f"update {collection}/{doc_id}", _txn)

    # Reports

    def new_report_id(self) -> str:
        return self.db.collection(REPORTS).document().id

    def insert_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        report_ref = self.db.collection(REPORTS).document(report["id"])
        number_ref = self.db.collection(REPORT_NUMBERS).document(report["report_number"])
        batch = self.db.batch()
        # create() fails on an existing document, which is the uniqueness check
        batch.create(number_ref, {"report_id": report["id"]})
        batch.create(report_ref, report)
        try:
            batch.commit()
        except google_exceptions.AlreadyExists:
            raise DuplicateKeyError(
                f"Report number {report['report_number']} already exists",
                details={"field": "report_number"},
            )
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Failed to save report to Firestore: {e}", exc_info=True)
            raise InternalError("Storage failure while creating report")
        logger.info(f"Report saved to Firestore: {report['id']}")
        return report

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(REPORTS).document(report_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        data["id"] = doc.id
        return data

    def stream_reports(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Any = None,
    ) -> Iterator[Dict[str, Any]]:
        query = self.db.collection(REPORTS)
        for field_path, op, value in filters:
            query = where_filter(query, field_path, op, value)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
            if start_after is not None:
                query = query.start_after({order_by: start_after})
        if limit is not None:
            query = query.limit(limit)
        try:
            for doc in query.stream():
                data = doc.to_dict()
                data["id"] = doc.id
                yield data
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore report query failed: {e}", exc_info=True)
            raise InternalError("Storage failure while querying reports")

    def update_report(self, report_id, *, expected=None, updates=None, increments=None, appends=None):
        return self._guarded_update(REPORTS, report_id, expected, updates, increments, appends)

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
        reports = self.db.collection(REPORTS)
        child_ref = reports.document(child_id)
        canonical_ref = reports.document(canonical_id)

        @firestore.transactional
        def _txn(transaction):
            # Read in ascending id order, matching the in-memory lock order
            snapshots = {}
            for report_id, ref in sorted([(child_id, child_ref), (canonical_id, canonical_ref)], key=lambda pair: pair[0]):
                snapshots[report_id] = ref.get(transaction=transaction)
            for report_id, snapshot in snapshots.items():
                if not snapshot.exists:
                    raise NotFoundError(f"Report {report_id} not found")
            child = snapshots[child_id].to_dict()
            canonical = snapshots[canonical_id].to_dict()
            new_child = apply_changes(child, child_expected, child_updates, None, child_appends)
            new_canonical = apply_changes(
                canonical, canonical_expected, canonical_updates, None, canonical_appends
            )
            transaction.update(child_ref, _to_firestore_changes(child_updates, None, child_appends))
            canonical_changes = _to_firestore_changes(canonical_updates, None, canonical_appends)
            if canonical_changes:
                transaction.update(canonical_ref, canonical_changes)
            return new_child, new_canonical

        return self._run(f"link {child_id} -> {canonical_id}", _txn)

    # Vote ledger

    def get_vote(self, user_id: str, report_id: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(VOTES).document(vote_key(user_id, report_id)).get()
        return doc.to_dict() if doc.exists else None

    def apply_vote(self, user_id, report_id, *, expected_type, new_type, counter_deltas, now):
        report_ref = self.db.collection(REPORTS).document(report_id)
        vote_ref = self.db.collection(VOTES).document(vote_key(user_id, report_id))
        increments = {f"votes.{name}": delta for name, delta in counter_deltas.items() if delta}

        @firestore.transactional
        def _txn(transaction):
            report_snapshot = report_ref.get(transaction=transaction)
            if not report_snapshot.exists:
                raise NotFoundError(f"Report {report_id} not found")
            vote_snapshot = vote_ref.get(transaction=transaction)
            current = vote_snapshot.to_dict() if vote_snapshot.exists else None
            current_type = current.get("vote_type") if current else None
            if current_type != expected_type:
                raise ConflictError(
                    f"Vote by {user_id} on {report_id} changed concurrently",
                    details={"expected": expected_type, "found": current_type},
                )

            if new_type is None:
                transaction.delete(vote_ref)
            elif current is None:
                transaction.create(vote_ref, {
                    "user_id": user_id,
                    "report_id": report_id,
                    "vote_type": new_type,
                    "created_at": now,
                    "updated_at": now,
                })
            else:
                transaction.update(vote_ref, {"vote_type": new_type, "updated_at": now})

            transaction.update(report_ref, _to_firestore_changes({"updated_at": now}, increments, None))
            report = report_snapshot.to_dict()
            report["id"] = report_snapshot.id
            return apply_changes(report, None, {"updated_at": now}, increments, None)

        return self._run(f"vote {user_id} on {report_id}", _txn)

    def stream_votes(self, report_id: str) -> Iterator[Dict[str, Any]]:
        query = where_filter(self.db.collection(VOTES), "report_id", "==", report_id)
        for doc in query.stream():
            yield doc.to_dict()

    # Users

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(USERS).document(user_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        data["id"] = doc.id
        return data

    def ensure_user(self, user_id: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        user_ref = self.db.collection(USERS).document(user_id)

        @firestore.transactional
        def _txn(transaction):
            snapshot = user_ref.get(transaction=transaction)
            if snapshot.exists:
                data = snapshot.to_dict()
            else:
                data = dict(defaults, id=user_id)
                transaction.create(user_ref, data)
            data["id"] = user_id
            return data

        return self._run(f"ensure user {user_id}", _txn)

    def update_user(self, user_id, *, expected=None, updates=None, increments=None, appends=None):
        if not expected:
            # Blind increments need no transaction; Firestore applies transforms atomically
            user_ref = self.db.collection(USERS).document(user_id)
            try:
                user_ref.update(_to_firestore_changes(updates, increments, appends))
            except google_exceptions.NotFound:
                raise NotFoundError(f"User {user_id} not found")
            except google_exceptions.GoogleAPICallError as e:
                logger.error(f"Failed to update user {user_id}: {e}", exc_info=True)
                raise InternalError("Storage failure while updating user")
            return self.get_user(user_id)
        return self._guarded_update(USERS, user_id, expected, updates, increments, appends)

    # Departments

    def save_department(self, department: Dict[str, Any]) -> Dict[str, Any]:
        self.db.collection(DEPARTMENTS).document(department["code"]).set(department)
        return department

    def get_department(self, code: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(DEPARTMENTS).document(code).get()
        return doc.to_dict() if doc.exists else None

    def list_departments(self) -> List[Dict[str, Any]]:
        return [doc.to_dict() for doc in self.db.collection(DEPARTMENTS).stream()]

    # Meta

    def get_meta(self, key: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(META).document(key).get()
        return doc.to_dict() if doc.exists else None

    def set_meta(self, key: str, value: Dict[str, Any]) -> None:
        self.db.collection(META).document(key).set(value)

    def ping(self) -> Dict[str, Any]:
        collections = list(self.db.collections())
        return {"backend": self.backend_name, "connected": True, "collections_count": len(collections)}
