from typing import Awaitable, Dict, Any, List, Optional, Set
import asyncio
import logging
import uuid

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.clock import format_time_of_day
from app.models.booking import Booking
from app.models.notification import Notification, NotificationType, NotificationDelivery, NotificationStatus

logger = logging.getLogger(__name__)


class NotificationService:
    """In-app notifications for booking lifecycle events.

    Emission is fire-and-forget: each ``send_*`` call snapshots its payload
    immediately and returns the write, which ``dispatch`` runs as a tracked
    background task in its own session. A failure is logged without touching
    the booking.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._background: Set[asyncio.Task] = set()

    def dispatch(self, notification: Awaitable[None]) -> asyncio.Task:
        """Run a notification write without making the caller wait for it"""
        task = asyncio.ensure_future(notification)
        self._background.add(task)
        task.add_done_callback(self._finished)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched notification, e.g. on shutdown"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _finished(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background notification failed: {exc}")

    async def notify(self, user_id: uuid.UUID, notification_type: NotificationType, payload: Dict[str, Any]) -> None:
        try:
            async with self.session_factory() as db:
                db.add(Notification(
                    user_id=user_id,
                    type=notification_type,
                    payload=payload,
                    delivery=NotificationDelivery.INAPP,
                    status=NotificationStatus.PENDING
                ))
                await db.commit()
        except Exception as e:
            logger.warning(f"Error sending {notification_type.value} notification to {user_id}: {e}")

    def send_booking_requested(self, booking: Booking) -> Awaitable[None]:
        return self._notify_counterpart(booking, booking.tutor_id, NotificationType.BOOKING_REQUESTED)

    def send_booking_confirmed(self, booking: Booking) -> Awaitable[None]:
        return self._notify_counterpart(booking, booking.student_id, NotificationType.BOOKING_CONFIRMED)

    def send_booking_cancelled(self, booking: Booking, cancelled_by: uuid.UUID) -> Awaitable[None]:
        recipient = booking.tutor_id if cancelled_by == booking.student_id else booking.student_id
        return self._notify_counterpart(booking, recipient, NotificationType.BOOKING_CANCELLED, {
            "reason": booking.cancellation_reason,
            "refund_amount": str(booking.refund_amount),
        })

    def send_booking_completed(self, booking: Booking) -> Awaitable[None]:
        return self._notify_counterpart(booking, booking.student_id, NotificationType.BOOKING_COMPLETED)

    def send_booking_rescheduled(self, booking: Booking, requested_by: uuid.UUID) -> Awaitable[None]:
        recipient = booking.tutor_id if requested_by == booking.student_id else booking.student_id
        return self._notify_counterpart(booking, recipient, NotificationType.BOOKING_RESCHEDULED)

    def send_feedback_received(self, booking: Booking, submitted_by: uuid.UUID) -> Awaitable[None]:
        recipient = booking.tutor_id if submitted_by == booking.student_id else booking.student_id
        return self._notify_counterpart(booking, recipient, NotificationType.FEEDBACK_RECEIVED)

    def send_no_show(self, booking: Booking) -> Awaitable[None]:
        return self._notify_each([
            self._notify_counterpart(booking, recipient, NotificationType.BOOKING_NO_SHOW)
            for recipient in (booking.student_id, booking.tutor_id)
        ])

    @staticmethod
    async def _notify_each(writes: List[Awaitable[None]]) -> None:
        for write in writes:
            await write

    def _notify_counterpart(
        self,
        booking: Booking,
        recipient_id: uuid.UUID,
        notification_type: NotificationType,
        extra: Optional[Dict[str, Any]] = None
    ) -> Awaitable[None]:
        payload = {
            "booking_id": str(booking.id),
            "session_date": booking.session_date.isoformat(),
            "start_time": format_time_of_day(booking.start_minute),
            "end_time": format_time_of_day(booking.end_minute),
            "status": booking.status.value,
        }
        if extra:
            payload.update(extra)
        return self.notify(recipient_id, notification_type, payload)
