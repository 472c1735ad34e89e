"""Impounded and released registers, plus the dashboard counters."""

from fastapi import APIRouter, Depends, Query

from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.dependencies import get_inspection_service, require_staff
from drugwatch.models.inspection import InspectionRecord
from drugwatch.schemas.inspection import DashboardCounts
from drugwatch.services.inspections import InspectionService

router = APIRouter(tags=["registers"])


@router.get("/impounded", response_model=list[InspectionRecord])
async def impounded_register(
    q: str = Query("", description="Search serial, facility, officer, location or note"),
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    """Records still holding boxes, newest first."""
    return await service.list_impounded(q)


@router.get("/released", response_model=list[InspectionRecord])
async def released_register(
    q: str = Query("", description="Search serial, facility, officer, location or note"),
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    """Released records, most recent release first."""
    return await service.list_released(q)


@router.get("/dashboard", response_model=DashboardCounts)
async def dashboard(
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    return await service.dashboard_counts()
