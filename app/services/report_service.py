"""
Report service - Business logic for citizen report handling.

DESIGN NOTE:
- The report store is the only writer of report documents
- Report numbers are unique; collisions are regenerated, never overwritten
- Trust/gamification and address enrichment are best effort: if they fail
  the report is still stored and returned
- Reports are never hard-deleted, only hidden
"""

from datetime import datetime
from typing import Iterator, List, Optional, Tuple
import heapq
import logging
import random

from app.core.errors import (
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.settings import settings
from app.models.base import to_document
from app.models.report import (
    Report,
    ReportCategory,
    ReportCreate,
    ReportStatus,
    status_update_entry,
)
from app.models.user import Identity
from app.services.department_service import DepartmentService, get_department_service
from app.services.event_bus import EventDispatcher, EventType, get_event_dispatcher
from app.services.geocoding.base import GeocodingProvider
from app.services.geocoding.resolver import get_geocoding_provider
from app.services.trust_score import TrustScoreEngine, get_trust_engine
from app.stores import ReportStore, get_report_store
from app.utils.geocoding import haversine_meters, latitude_band, parse_coordinates
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_NEARBY_RADIUS_METERS = 5000
MAX_NEARBY_RADIUS_METERS = 50000
SEARCH_FIELDS = ("title", "description", "landmark")
SEARCH_ADDRESS_FIELDS = ("street", "city", "state", "zip_code")


def generate_report_number(now: Optional[datetime] = None) -> str:
    """REP-<unix millis>-<3 random digits>."""
    now = now or utcnow()
    return f"REP-{int(now.timestamp() * 1000)}-{random.randint(0, 999):03d}"


def _matches_text(data: dict, needle: str) -> bool:
    values = [data.get(field) for field in SEARCH_FIELDS]
    address = data.get("address") or {}
    values.extend(address.get(field) for field in SEARCH_ADDRESS_FIELDS)
    return any(needle in str(value).lower() for value in values if value)


class ReportService:
    """Service for creating, reading and querying reports."""

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        departments: Optional[DepartmentService] = None,
        trust_engine: Optional[TrustScoreEngine] = None,
        events: Optional[EventDispatcher] = None,
        geocoder: Optional[GeocodingProvider] = None,
        clock=utcnow,
    ):
        self.store = store or get_report_store()
        self.departments = departments or get_department_service()
        self.trust_engine = trust_engine or get_trust_engine()
        self.events = events or get_event_dispatcher()
        self.geocoder = geocoder
        self.clock = clock

    def _enrich_address(self, address: dict, longitude: float, latitude: float) -> dict:
        """Fill address.formatted (and blanks) from reverse geocoding when no street was given."""
        if address.get("street"):
            return address
        geocoder = self.geocoder or get_geocoding_provider()
        result = geocoder.reverse_geocode(longitude, latitude)
        enriched = dict(address)
        if result.get("formatted"):
            enriched["formatted"] = result["formatted"]
        for field in ("street", "state", "zip_code"):
            if not enriched.get(field) and result.get(field):
                enriched[field] = result[field]
        return enriched

    def _build_document(self, data: ReportCreate, reporter_id: str, report_id: str, report_number: str) -> dict:
        now = self.clock()
        address = to_document(data.address)
        try:
            address = self._enrich_address(address, data.longitude, data.latitude)
        except Exception as e:
            logger.warning(f"Address enrichment failed for {report_id}: {str(e)}")

        department = self.departments.department_for_category(data.category)
        resolution_hours = department.sla.resolution_time if department else settings.DEFAULT_RESOLUTION_HOURS

        report = Report(
            id=report_id,
            report_number=report_number,
            title=data.title,
            description=data.description,
            category=data.category,
            subcategory=data.subcategory,
            priority=data.priority,
            ai_priority_score=data.ai_priority_score,
            location={"type": "Point", "coordinates": [data.longitude, data.latitude]},
            address=address,
            landmark=data.landmark,
            media=data.media,
            reporter_id=reporter_id,
            is_anonymous=data.is_anonymous,
            is_public=data.is_public,
            tags=data.tags,
            status=ReportStatus.SUBMITTED,
            status_updates=[status_update_entry(ReportStatus.SUBMITTED, reporter_id, now, "Report submitted")],
            sla={"expected_resolution_time": resolution_hours},
            created_at=now,
            updated_at=now,
        )
        document = to_document(report)
        # Flat copies for range queries; location.coordinates stays the source of truth
        document["longitude"] = data.longitude
        document["latitude"] = data.latitude
        return document

    def create_report(self, data: ReportCreate, reporter_id: str) -> Report:
        """
        Store a new report.

        Flow:
        1. Build the aggregate (status submitted, zeroed counters, first status entry)
        2. Insert with a unique report number, regenerating on collision
        3. Apply the reporter's submission effect (best effort)
        4. Publish ReportCreated

        Raises:
            ValidationError: invalid input
            ConflictError: caller-supplied report number is taken, or no free number was found
        """
        if not reporter_id:
            raise ValidationError("reporter_id is required")

        report_id = self.store.new_report_id()
        supplied_number = data.report_number

        for attempt in range(1, settings.REPORT_NUMBER_MAX_ATTEMPTS + 1):
            report_number = supplied_number or generate_report_number(self.clock())
            document = self._build_document(data, reporter_id, report_id, report_number)
            try:
                stored = self.store.insert_report(document)
            except DuplicateKeyError as e:
                if supplied_number:
                    raise ConflictError(f"Report number {supplied_number} is already in use")
                logger.warning(f"Report number collision on {report_number} (attempt {attempt}): {e}")
                continue
            break
        else:
            raise ConflictError("Could not allocate a unique report number; please retry")

        report = Report.model_validate(stored)
        logger.info(f"Report saved: {report.id} ({report.report_number}) by {reporter_id}")

        try:
            self.trust_engine.apply_report_submission_effect(reporter_id, report)
        except Exception as e:
            logger.error(f"Submission effect failed for {reporter_id} on {report.id}: {str(e)}", exc_info=True)

        self.events.publish(
            EventType.REPORT_CREATED,
            report.id,
            report_number=report.report_number,
            category=report.category.value,
            reporter_id=None if report.is_anonymous else reporter_id,
        )
        return report

    def get_report(self, report_id: str, include_hidden: bool = False) -> Report:
        data = self.store.get_report(report_id)
        if data is None:
            raise NotFoundError(f"Report {report_id} not found")
        report = Report.model_validate(data)
        if not include_hidden and not (report.is_public and report.is_active):
            raise NotFoundError(f"Report {report_id} not found")
        return report

    def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_meters: float = DEFAULT_NEARBY_RADIUS_METERS,
    ) -> Iterator[Tuple[Report, float]]:
        """
        Public, non-rejected reports within radius_meters, nearest first.

        Lazily yields (report, distance_meters). Candidates come from a
        latitude band query and are filtered by exact haversine distance.
        Bad coordinates or radius fail here, before iteration starts.
        """
        if parse_coordinates([longitude, latitude]) is None:
            raise ValidationError("coordinates must be a valid [longitude, latitude] pair")
        if not 0 < radius_meters <= MAX_NEARBY_RADIUS_METERS:
            raise ValidationError(f"radius must be within (0, {MAX_NEARBY_RADIUS_METERS}] meters")
        return self._iter_nearby(longitude, latitude, radius_meters)

    def _iter_nearby(self, longitude: float, latitude: float, radius_meters: float) -> Iterator[Tuple[Report, float]]:
        low, high = latitude_band(latitude, radius_meters)
        candidates = self.store.stream_reports(
            filters=[("latitude", ">=", low), ("latitude", "<=", high)],
        )

        heap = []
        for data in candidates:
            if not data.get("is_public", True) or data.get("status") == ReportStatus.REJECTED.value:
                continue
            if not data.get("is_active", True):
                continue
            report_lon, report_lat = data["location"]["coordinates"]
            distance = haversine_meters(longitude, latitude, report_lon, report_lat)
            if distance <= radius_meters:
                heapq.heappush(heap, (distance, data["id"], data))

        while heap:
            distance, _, data = heapq.heappop(heap)
            yield Report.model_validate(data), round(distance, 2)

    def list_reports(
        self,
        category: Optional[ReportCategory] = None,
        status: Optional[ReportStatus] = None,
        limit: int = 50,
    ) -> List[Report]:
        """Public reports, most recent first, optionally by category and status."""
        filters = [("is_public", "==", True), ("is_active", "==", True)]
        if category is not None:
            filters.append(("category", "==", ReportCategory(category).value))
        if status is not None:
            filters.append(("status", "==", ReportStatus(status).value))
        docs = self.store.stream_reports(filters=filters, order_by="created_at", descending=True, limit=limit)
        return [Report.model_validate(d) for d in docs]

    def list_by_category(self, category, status=None, limit: int = 50) -> List[Report]:
        return self.list_reports(category=category, status=status, limit=limit)

    def search(self, text: str, limit: int = 50) -> List[Report]:
        """Case-insensitive substring match over title, description, landmark and address."""
        needle = (text or "").strip().lower()
        if not needle:
            raise ValidationError("Search text must not be empty")

        results = []
        docs = self.store.stream_reports(
            filters=[("is_public", "==", True), ("is_active", "==", True)], order_by="created_at", descending=True,
        )
        for data in docs:
            if _matches_text(data, needle):
                results.append(Report.model_validate(data))
                if len(results) >= limit:
                    break
        return results

    def hide(self, report_id: str, actor: Identity) -> Report:
        """Soft-hide a report. Allowed for the reporter and for staff."""
        report = self.get_report(report_id, include_hidden=True)
        if not actor.is_staff and actor.user_id != report.reporter_id:
            raise PermissionDeniedError("Only the reporter or staff can hide a report")
        updated = self.store.update_report(
            report_id,
            updates={"is_public": False, "updated_at": self.clock()},
        )
        logger.info(f"Report {report_id} hidden by {actor.user_id}")
        return Report.model_validate(updated)

    def add_comment(self, report_id: str, user_id: str, message: str, is_public: bool = True) -> Report:
        message = (message or "").strip()
        if not 1 <= len(message) <= 1000:
            raise ValidationError("Comment must be between 1 and 1000 characters")
        self.get_report(report_id)
        comment = {"user_id": user_id, "message": message, "is_public": is_public, "created_at": self.clock()}
        updated = self.store.update_report(
            report_id,
            updates={"updated_at": comment["created_at"]},
            appends={"comments": [comment]},
        )
        logger.info(f"Comment added to {report_id} by {user_id}")
        return Report.model_validate(updated)

    def rate_resolution(self, report_id: str, user_id: str, rating: int) -> Report:
        """Reporter's 1-5 satisfaction rating, only on a resolved report."""
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")
        report = self.get_report(report_id, include_hidden=True)
        if report.reporter_id != user_id:
            raise PermissionDeniedError("Only the reporter can rate the resolution")
        if report.status != ReportStatus.RESOLVED:
            raise ValidationError(f"Report {report_id} is {report.status.value}; only resolved reports can be rated")

        updated = self.store.update_report(
            report_id,
            expected={"status": ReportStatus.RESOLVED.value},
            updates={"resolution.satisfaction_rating": rating, "updated_at": self.clock()},
        )
        logger.info(f"Report {report_id} rated {rating} by {user_id}")
        return Report.model_validate(updated)


# Global service instance
_report_service = None


def get_report_service() -> ReportService:
    """Get or create ReportService singleton."""
    global _report_service
    if _report_service is None:
        _report_service = ReportService()
    return _report_service
