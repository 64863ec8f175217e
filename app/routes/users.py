"""
User endpoints - trust score and gamification.
"""

from fastapi import APIRouter, Depends

from app.models.user import UserTrust
from app.services.trust_score import TrustScoreEngine, get_trust_engine

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/{user_id}/trust", response_model=UserTrust)
async def get_user_trust(user_id: str, engine: TrustScoreEngine = Depends(get_trust_engine)):
    """Trust score, points, level, streak and badges for a user."""
    return engine.get_trust(user_id)
