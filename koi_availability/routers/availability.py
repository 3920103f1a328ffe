# koi_availability/routers/availability.py

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from koi_availability.base.models import (
    AvailabilityResult,
    ComputeAvailabilityRequest,
    DayAvailabilityResponse,
    MonthAvailability,
    SlotsResponse,
)
from koi_availability.services.availability_service import AvailabilityService, compute_availability
from koi_availability.services.schedule_fetch_service import ScheduleFetchService
from koi_availability.services.schedule_refresh_service import ScheduleRefreshService

router = APIRouter(prefix="/availability", tags=["Availability"])
logger = logging.getLogger("availability_router")

availability_service = AvailabilityService()
refresh_service = ScheduleRefreshService(
    fetch_service=ScheduleFetchService(),
    availability_service=availability_service,
)

SUPERSEDED_DETAIL = "Request superseded by a newer one from the same client for the same date and master"
CLIENT_ID_DESCRIPTION = "Caller session id; a newer request with the same id supersedes an older one"


def _caller_scope(client_id: Optional[str]) -> str:
    # Without a client id every request stands alone and is never superseded
    return client_id or f"anon-{uuid.uuid4().hex}"


# === Endpoints ===

@router.get("/slots", response_model=SlotsResponse, summary="Fixed slots with availability for one date")
async def get_slots(
    date: date = Query(..., description="Calendar date, YYYY-MM-DD"),
    master_id: Optional[str] = Query(None, description="Selected master; omit for any master"),
    client_id: Optional[str] = Query(None, description=CLIENT_ID_DESCRIPTION),
):
    try:
        logger.info(f"[Slots] date={date} master_id={master_id}")
        result = await refresh_service.refresh(date, master_id, client_id=_caller_scope(client_id))
    except Exception:
        logger.exception(f"[SlotsError] date={date} master_id={master_id}")
        raise HTTPException(status_code=500, detail="Failed to compute slot availability")

    if result is None:
        raise HTTPException(status_code=409, detail=SUPERSEDED_DETAIL)
    if result.stale:
        logger.warning(f"[Slots] Serving {result.source} data: {result.advisory}")
    return result


@router.get("/day", response_model=DayAvailabilityResponse, summary="Whether any slot is open on a date")
async def get_day(
    date: date = Query(..., description="Calendar date, YYYY-MM-DD"),
    master_id: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None, description=CLIENT_ID_DESCRIPTION),
):
    try:
        result = await refresh_service.refresh(date, master_id, client_id=_caller_scope(client_id))
    except Exception:
        logger.exception(f"[DayError] date={date} master_id={master_id}")
        raise HTTPException(status_code=500, detail="Failed to compute day availability")

    if result is None:
        raise HTTPException(status_code=409, detail=SUPERSEDED_DETAIL)
    return DayAvailabilityResponse(date=date, master_id=master_id, is_available=result.is_available)


@router.get("/month", response_model=MonthAvailability, summary="Day flags for a whole month")
async def get_month(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    master_id: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None, description=CLIENT_ID_DESCRIPTION),
):
    try:
        result = await refresh_service.refresh_month(year, month, master_id, client_id=_caller_scope(client_id))
    except Exception:
        logger.exception(f"[MonthError] {year}-{month:02d} master_id={master_id}")
        raise HTTPException(status_code=500, detail="Failed to compute month availability")

    if result is None:
        raise HTTPException(status_code=409, detail=SUPERSEDED_DETAIL)
    logger.info(f"[Month] {year}-{month:02d} master_id={master_id} unavailable={len(result.unavailable_dates)}")
    return result


@router.post("/compute", response_model=AvailabilityResult, summary="Availability from caller-supplied records")
def compute(request: ComputeAvailabilityRequest):
    """
    Pure computation over the given records and roster; no backend call.
    Malformed records are skipped, not rejected.
    """
    try:
        logger.info(
            f"[Compute] date={request.date} master_id={request.master_id} "
            f"records={len(request.records)} roster={len(request.roster)}"
        )
        return compute_availability(
            request.records,
            request.roster,
            request.date,
            master_id=request.master_id,
            today=request.today,
        )
    except ValueError as ve:
        logger.warning(f"[ValidationError] {ve}")
        raise HTTPException(status_code=422, detail=str(ve))
    except Exception:
        logger.exception(f"[ComputeError] date={request.date}")
        raise HTTPException(status_code=500, detail="Failed to compute availability")
