"""
Vote models for the community vote ledger.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from enum import Enum

from app.models.report import VoteCounters


class VoteType(str, Enum):
    """Vote types."""
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class VoteAction(str, Enum):
    CREATED = "created"
    SWITCHED = "switched"
    RETRACTED = "retracted"


class VoteRecord(BaseModel):
    """Ledger entry, unique per (user_id, report_id)."""
    user_id: str
    report_id: str
    vote_type: VoteType
    created_at: datetime
    updated_at: Optional[datetime] = None


class VoteRequest(BaseModel):
    vote_type: VoteType


class VoteResult(BaseModel):
    report_id: str
    action: VoteAction
    previous_type: Optional[VoteType] = None
    vote_type: Optional[VoteType] = None
    votes: VoteCounters
    trust_delta: int = 0
