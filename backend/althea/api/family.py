"""
Family API endpoints - relatives and hereditary condition patterns, plus
per-member health trends.
"""

import logging
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from ..container import AppServices
from ..core.exceptions import PatternDetectionError
from ..core.family_manager import FamilyManager
from ..models import (
    FamilyHealthTrend, FamilyHealthTrendCreate, FamilyMember, FamilyMemberCreate,
    FamilyMemberUpdate, FamilyPattern, StoredFamilyPattern,
)
from ..utils.auth import get_current_user_id
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/family", tags=["family"])


async def _refresh_patterns(services: AppServices, user_id: str) -> None:
    """Re-run pattern detection after a member change."""
    try:
        await services.detector.analyze(user_id)
    except PatternDetectionError as e:
        logger.warning(f"Pattern refresh skipped: {e}")


@router.post("/members", response_model=FamilyMember, status_code=status.HTTP_201_CREATED)
async def create_member(
    member: FamilyMemberCreate,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Add a relative and refresh the user's patterns."""
    created = await FamilyManager(services.record_store, user_id).create(member)
    await _refresh_patterns(services, user_id)
    return created


@router.get("/members", response_model=List[FamilyMember])
async def list_members(
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """List relatives, newest first."""
    return await FamilyManager(services.record_store, user_id).list()


@router.get("/members/{member_id}", response_model=FamilyMember)
async def get_member(
    member_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    return await FamilyManager(services.record_store, user_id).get(member_id)


@router.put("/members/{member_id}", response_model=FamilyMember)
async def update_member(
    member_id: str,
    changes: FamilyMemberUpdate,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Partially update a relative and refresh the user's patterns."""
    updated = await FamilyManager(services.record_store, user_id).update(member_id, changes)
    await _refresh_patterns(services, user_id)
    return updated


@router.delete("/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_member(
    member_id: str,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Hard-delete a relative and refresh the user's patterns."""
    await FamilyManager(services.record_store, user_id).delete(member_id)
    await _refresh_patterns(services, user_id)


@router.get("/patterns", response_model=List[FamilyPattern])
async def analyze_patterns(
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Recompute shared-condition patterns across all relatives."""
    return await services.detector.analyze(user_id)


@router.get("/patterns/stored", response_model=List[StoredFamilyPattern])
async def stored_patterns(
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Patterns as last saved, without recomputing."""
    return await services.detector.stored_patterns(user_id)


@router.post("/trends", response_model=FamilyHealthTrend, status_code=status.HTTP_201_CREATED)
async def record_trend(
    trend: FamilyHealthTrendCreate,
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Record one dated measurement for the user or a relative."""
    return await FamilyManager(services.record_store, user_id).record_trend(trend)


@router.get("/trends", response_model=List[FamilyHealthTrend])
async def list_trends(
    member_id: Optional[str] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    services: AppServices = Depends(get_services),
):
    """Measurements, newest first, optionally for one relative."""
    return await FamilyManager(services.record_store, user_id).trends(member_id)
