from typing import Callable, Optional
from datetime import datetime

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.clock import utc_now
from app.core.database import get_db
from app.core.exceptions import MarketplaceException, RateLimitError
from app.core.locks import KeyedLockRegistry
from app.core.throttle import BookingThrottle
from app.models.user import User
from app.services.booking_lifecycle import Actor
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService


def get_locks(request: Request) -> KeyedLockRegistry:
    return request.app.state.locks


def get_notifier(request: Request) -> Optional[NotificationService]:
    return getattr(request.app.state, "notifier", None)


def get_clock(request: Request) -> Callable[[], datetime]:
    return getattr(request.app.state, "clock", utc_now)


def get_actor(current_user: User = Depends(get_current_user)) -> Actor:
    """Identity context for the engine: who is acting and in which role"""
    return Actor(user_id=current_user.id, role=current_user.role)


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    locks: KeyedLockRegistry = Depends(get_locks),
    notifier: Optional[NotificationService] = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingService:
    return BookingService(db, locks, notifier=notifier, clock=clock)


async def throttle_booking_requests(request: Request, actor: Actor = Depends(get_actor)) -> None:
    throttle: Optional[BookingThrottle] = getattr(request.app.state, "booking_throttle", None)
    if throttle is None:
        return
    try:
        await throttle.check(str(actor.user_id))
    except RateLimitError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e),
            headers={"Retry-After": str(e.retry_after)},
        )


def to_http_exception(exc: MarketplaceException) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))
