"""
User models for trust score and gamification.

Identity itself is owned by the external identity provider; the core only
keeps the reputation subset of a user keyed by the trusted user id.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from enum import Enum


class UserRole(str, Enum):
    CITIZEN = "citizen"
    DEPARTMENT_STAFF = "department_staff"
    ADMIN = "admin"


class Badge(str, Enum):
    REPORTER = "reporter"
    VALIDATOR = "validator"
    COMMUNITY_HERO = "community_hero"
    FREQUENT_REPORTER = "frequent_reporter"
    PHOTO_EXPERT = "photo_expert"


class Gamification(BaseModel):
    points: int = 0
    level: int = 1
    badges: List[Badge] = Field(default_factory=list)
    streak: int = 0
    last_report_date: Optional[datetime] = None


class UserTrust(BaseModel):
    """Model for trust responses."""
    id: str = Field(..., description="Trusted user id from the identity provider")
    trust_score: int = 100
    reports_submitted: int = 0
    reports_with_media: int = 0
    votes_given: int = 0
    gamification: Gamification = Field(default_factory=Gamification)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        extra = "ignore"


class Identity(BaseModel):
    """Authenticated caller as supplied by the identity provider."""
    user_id: str
    role: UserRole = UserRole.CITIZEN

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.DEPARTMENT_STAFF, UserRole.ADMIN)
