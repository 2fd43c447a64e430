from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
import logging
import uuid

from app.api.deps import to_http_exception
from app.core.auth import get_current_user
from app.core.clock import format_time_of_day, parse_time_of_day
from app.core.database import get_db
from app.core.exceptions import MarketplaceException
from app.models.user import User, UserRole
from app.schemas.availability import (
    AvailabilityWindow,
    TutorAvailabilityResponse,
    WeeklyAvailabilityRequest,
    WeeklyAvailabilityResponse
)
from app.services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter()


def _weekly_response(tutor_id: uuid.UUID, windows) -> WeeklyAvailabilityResponse:
    return WeeklyAvailabilityResponse(
        tutor_id=tutor_id,
        windows=[
            AvailabilityWindow(
                weekday=window.weekday,
                start_time=format_time_of_day(window.start_minute),
                end_time=format_time_of_day(window.end_minute)
            )
            for window in windows
        ]
    )


def _require_tutor(current_user: User) -> None:
    if current_user.role != UserRole.TUTOR:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only tutors can manage availability"
        )


@router.get("/tutors/{tutor_id}", response_model=TutorAvailabilityResponse)
async def get_tutor_availability(
    tutor_id: uuid.UUID,
    date: date = Query(..., description="Date to list free slots for (YYYY-MM-DD)"),
    db: AsyncSession = Depends(get_db)
):
    """Free bookable slots of a tutor on one date"""
    try:
        availability_service = AvailabilityService(db)
        return await availability_service.get_availability(tutor_id, date)
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Failed to load availability for tutor {tutor_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load availability"
        )


@router.get("/me", response_model=WeeklyAvailabilityResponse)
async def get_my_availability(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get the current tutor's weekly schedule"""
    _require_tutor(current_user)
    try:
        windows = await AvailabilityService(db).get_weekly_availability(current_user.id)
        return _weekly_response(current_user.id, windows)
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Failed to load weekly availability for tutor {current_user.id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load availability"
        )


@router.put("/me", response_model=WeeklyAvailabilityResponse)
async def set_my_availability(
    request: WeeklyAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Replace the current tutor's weekly schedule"""
    _require_tutor(current_user)
    try:
        windows = [
            (
                window.weekday,
                parse_time_of_day(window.start_time),
                parse_time_of_day(window.end_time, allow_end_of_day=True)
            )
            for window in request.windows
        ]
        saved = await AvailabilityService(db).set_weekly_availability(current_user.id, windows)
        return _weekly_response(current_user.id, saved)
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Failed to save weekly availability for tutor {current_user.id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save availability"
        )
