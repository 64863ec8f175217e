"""
Pydantic models for civic reports.
These models handle validation for report submission and the typed
Report aggregate that every service reads back from the store.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import Any, Optional, List, Dict
from enum import Enum

from app.utils.geocoding import parse_coordinates


class ReportCategory(str, Enum):
    """Closed set of report categories."""
    ROADS_TRANSPORT = "roads_transport"
    WATER_SEWAGE = "water_sewage"
    ELECTRICITY = "electricity"
    WASTE_MANAGEMENT = "waste_management"
    PUBLIC_SAFETY = "public_safety"
    PARKS_RECREATION = "parks_recreation"
    STREET_LIGHTING = "street_lighting"
    NOISE_POLLUTION = "noise_pollution"
    AIR_POLLUTION = "air_pollution"
    BUILDING_VIOLATIONS = "building_violations"
    OTHER = "other"


class ReportPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportStatus(str, Enum):
    """
    Report lifecycle states.

    submitted → validated → in_progress → resolved
    Any non-terminal state may end in rejected or duplicate.
    """
    SUBMITTED = "submitted"
    VALIDATED = "validated"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


TERMINAL_STATUSES = frozenset({ReportStatus.RESOLVED, ReportStatus.REJECTED, ReportStatus.DUPLICATE})


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class GeoPoint(BaseModel):
    """GeoJSON point. Coordinates are always [longitude, latitude]."""
    type: str = Field(default="Point")
    coordinates: List[float] = Field(..., min_length=2, max_length=2)

    @field_validator("coordinates")
    @classmethod
    def _check_range(cls, value: List[float]) -> List[float]:
        longitude, latitude = value
        if not -180 <= longitude <= 180:
            raise ValueError("longitude must be within [-180, 180]")
        if not -90 <= latitude <= 90:
            raise ValueError("latitude must be within [-90, 90]")
        return [float(longitude), float(latitude)]

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class Address(BaseModel):
    street: Optional[str] = None
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "USA"
    formatted: Optional[str] = Field(None, description="Reverse-geocoded address, when resolved")


class MediaAttachment(BaseModel):
    """Opaque reference returned by the media storage collaborator."""
    type: MediaType
    url: str = Field(..., min_length=1)
    filename: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = None
    thumbnail_url: Optional[str] = None


class VoteCounters(BaseModel):
    upvotes: int = 0
    downvotes: int = 0
    total_votes: int = 0


class StatusUpdate(BaseModel):
    """Immutable audit entry appended on every status change."""
    status: ReportStatus
    message: str = ""
    updated_by: str
    updated_at: datetime
    is_public: bool = True


class Comment(BaseModel):
    user_id: str
    message: str
    is_public: bool = True
    created_at: datetime


class AssignedDepartment(BaseModel):
    code: str
    name: str


class StaffAssignment(BaseModel):
    staff_id: str
    assigned_at: datetime
    assigned_by: str


class Validation(BaseModel):
    is_validated: bool = False
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    validation_notes: Optional[str] = None


class SLA(BaseModel):
    expected_resolution_time: Optional[float] = Field(None, description="Hours")
    actual_resolution_time: Optional[float] = Field(None, description="Hours")
    is_overdue: bool = False
    escalation_level: int = 0
    last_escalated_at: Optional[datetime] = None


class Resolution(BaseModel):
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolution_images: List[str] = Field(default_factory=list)
    satisfaction_rating: Optional[int] = Field(None, ge=1, le=5)


class ReportCreate(BaseModel):
    """
    Model for creating a new report (incoming POST request).
    These are the fields citizens provide when submitting a report.
    """
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    category: ReportCategory
    subcategory: Optional[str] = Field(None, max_length=100)
    priority: ReportPriority = ReportPriority.MEDIUM
    ai_priority_score: float = Field(50, ge=0, le=100)
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    address: Address
    landmark: Optional[str] = Field(None, max_length=200)
    media: List[MediaAttachment] = Field(default_factory=list)
    is_anonymous: bool = False
    is_public: bool = True
    tags: List[str] = Field(default_factory=list)
    report_number: Optional[str] = Field(None, description="Generated when omitted")

    @model_validator(mode="before")
    @classmethod
    def _accept_geojson(cls, data: Any) -> Any:
        """Accept {"location": {"coordinates": [lon, lat]}} or {"coordinates": [lon, lat]}."""
        if not isinstance(data, dict) or ("longitude" in data and "latitude" in data):
            return data
        raw = data.get("coordinates")
        if raw is None and isinstance(data.get("location"), dict):
            raw = data["location"].get("coordinates")
        if raw is None:
            return data
        parsed = parse_coordinates(raw)
        if parsed is None:
            raise ValueError("coordinates must be a [longitude, latitude] pair within valid ranges")
        data = dict(data)
        data["longitude"], data["latitude"] = parsed
        return data

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Pothole on Main St",
                "description": "Deep pothole in the right lane near the school crossing.",
                "category": "roads_transport",
                "longitude": -122.4,
                "latitude": 37.8,
                "address": {"street": "Main St", "city": "Springfield", "state": "IL"},
                "media": [{"type": "image", "url": "https://cdn.example.com/p1.jpg"}],
            }
        }
        extra = "ignore"


class Report(BaseModel):
    """The Report aggregate as persisted by the report store."""
    id: str
    report_number: str
    title: str
    description: str
    category: ReportCategory
    subcategory: Optional[str] = None
    priority: ReportPriority = ReportPriority.MEDIUM
    ai_priority_score: float = 50
    location: GeoPoint
    address: Address
    landmark: Optional[str] = None
    media: List[MediaAttachment] = Field(default_factory=list)
    reporter_id: str
    is_anonymous: bool = False
    is_public: bool = True
    is_featured: bool = False
    is_active: bool = True
    tags: List[str] = Field(default_factory=list)
    status: ReportStatus = ReportStatus.SUBMITTED
    assigned_department: Optional[AssignedDepartment] = None
    assigned_staff: List[StaffAssignment] = Field(default_factory=list)
    validation: Validation = Field(default_factory=Validation)
    votes: VoteCounters = Field(default_factory=VoteCounters)
    status_updates: List[StatusUpdate] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    sla: SLA = Field(default_factory=SLA)
    resolution: Resolution = Field(default_factory=Resolution)
    duplicate_of: Optional[str] = None
    duplicates: List[str] = Field(default_factory=list)
    views: int = 0
    shares: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        extra = "ignore"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_status_change_at(self) -> datetime:
        if self.status_updates:
            return self.status_updates[-1].updated_at
        return self.created_at

    def check_vote_invariant(self) -> bool:
        return self.votes.total_votes == self.votes.upvotes + self.votes.downvotes


class StatusChangeRequest(BaseModel):
    status: ReportStatus
    message: str = Field("", max_length=1000)
    is_public: bool = True


class AssignmentRequest(BaseModel):
    department_code: str = Field(..., min_length=1, max_length=20)
    staff_ids: List[str] = Field(default_factory=list)


class CommentCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)
    is_public: bool = True


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)


class AnalyticsRow(BaseModel):
    category: ReportCategory
    status: ReportStatus
    count: int
    avg_resolution_time: Optional[float] = None
    avg_priority: Optional[float] = None


class ReportSummary(BaseModel):
    """Lightweight listing view with distance when the query was geospatial."""
    id: str
    report_number: str
    title: str
    category: ReportCategory
    status: ReportStatus
    priority: ReportPriority
    location: GeoPoint
    votes: VoteCounters
    created_at: datetime
    distance_meters: Optional[float] = None

    @classmethod
    def from_report(cls, report: Report, distance_meters: Optional[float] = None) -> "ReportSummary":
        return cls(
            id=report.id,
            report_number=report.report_number,
            title=report.title,
            category=report.category,
            status=report.status,
            priority=report.priority,
            location=report.location,
            votes=report.votes,
            created_at=report.created_at,
            distance_meters=distance_meters,
        )


def status_update_entry(
    status: ReportStatus,
    updated_by: str,
    updated_at: datetime,
    message: Optional[str] = None,
    is_public: bool = True,
) -> Dict:
    """Build a status audit entry in its persisted (dict) form."""
    return {
        "status": ReportStatus(status).value,
        "message": message or "",
        "updated_by": updated_by,
        "updated_at": updated_at,
        "is_public": is_public,
    }
