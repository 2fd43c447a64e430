from fastapi import APIRouter, Depends, HTTPException, status, Query, Body
from typing import Callable, Optional
from datetime import datetime
import logging
import uuid

from app.api.deps import get_actor, get_booking_service, get_clock, throttle_booking_requests, to_http_exception
from app.core.clock import parse_time_of_day
from app.core.exceptions import MarketplaceException
from app.models.booking import BookingStatus
from app.schemas.booking import (
    BookingCreateRequest,
    BookingCancelRequest,
    BookingCancelResponse,
    BookingRescheduleRequest,
    BookingFeedbackRequest,
    BookingListResponse,
    BookingResponse
)
from app.services.booking_lifecycle import Actor
from app.services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter()


def _unexpected(action: str) -> HTTPException:
    logger.exception(f"Failed to {action}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(throttle_booking_requests)]
)
async def create_booking(
    request: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Request a session with a tutor; the booking starts out pending"""
    try:
        booking = await booking_service.create_booking(
            student=actor,
            tutor_id=request.tutor_id,
            course_id=request.course_id,
            session_date=request.session_date,
            start_minute=parse_time_of_day(request.start_time),
            end_minute=parse_time_of_day(request.end_time, allow_end_of_day=True),
            duration_minutes=request.duration,
            payment_method=request.payment_method,
            notes=request.notes,
            session_objectives=request.session_objectives
        )
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("create booking")


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Bookings where the current user is the student or the tutor"""
    try:
        bookings, total = await booking_service.list_bookings(actor, status=status_filter, limit=limit, offset=offset)
        now = clock()
        return {
            "bookings": [BookingResponse.from_booking(booking, now) for booking in bookings],
            "total_bookings": total,
            "has_more": offset + len(bookings) < total
        }
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("list bookings")


@router.get("/upcoming", response_model=BookingListResponse)
async def upcoming_bookings(
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Confirmed and running sessions from today on"""
    try:
        bookings = await booking_service.upcoming_bookings(actor)
        now = clock()
        return {
            "bookings": [BookingResponse.from_booking(booking, now) for booking in bookings],
            "total_bookings": len(bookings),
            "has_more": False
        }
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("load upcoming bookings")


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    try:
        booking = await booking_service.get_booking(booking_id, actor)
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("load booking")


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Tutor accepts a pending booking"""
    try:
        booking = await booking_service.confirm_booking(booking_id, actor)
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("confirm booking")


@router.post("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: uuid.UUID,
    request: Optional[BookingCancelRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Cancel a booking; the refund depends on how much notice is given"""
    try:
        booking, decision = await booking_service.cancel_booking(
            booking_id, actor, request.reason if request else None
        )
        return {
            "message": "Booking cancelled successfully",
            "refund_amount": decision.refund_amount,
            "booking": BookingResponse.from_booking(booking, clock())
        }
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("cancel booking")


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Tutor marks a confirmed or running session as completed"""
    try:
        booking = await booking_service.complete_booking(booking_id, actor)
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("complete booking")


@router.post("/{booking_id}/attendance", response_model=BookingResponse)
async def record_attendance(
    booking_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Record that the current participant joined the session"""
    try:
        booking = await booking_service.record_attendance(booking_id, actor)
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("record attendance")


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: uuid.UUID,
    request: BookingRescheduleRequest,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Move a pending or confirmed booking to a new free interval"""
    try:
        booking = await booking_service.reschedule_booking(
            booking_id,
            actor,
            new_date=request.new_date,
            new_start_minute=parse_time_of_day(request.new_start_time),
            new_end_minute=parse_time_of_day(request.new_end_time, allow_end_of_day=True),
            reason=request.reason
        )
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("reschedule booking")


@router.post("/{booking_id}/feedback", response_model=BookingResponse)
async def add_feedback(
    booking_id: uuid.UUID,
    request: BookingFeedbackRequest,
    actor: Actor = Depends(get_actor),
    booking_service: BookingService = Depends(get_booking_service),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Rate a completed session from the caller's side"""
    try:
        booking = await booking_service.add_feedback(booking_id, actor, request.rating, request.comment)
        return BookingResponse.from_booking(booking, clock())
    except MarketplaceException as e:
        raise to_http_exception(e)
    except Exception:
        raise _unexpected("add feedback")
