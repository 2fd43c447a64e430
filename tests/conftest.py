"""Shared fixtures: a file-backed SQLite database per test, seeded users and a fixed clock."""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.auth import create_access_token
from app.core.clock import session_datetime
from app.core.database import create_engine, create_session_factory, get_db, init_db
from app.core.locks import KeyedLockRegistry
from app.core.throttle import BookingThrottle, MemoryThrottleStore
from app.models.availability import TutorAvailability, Weekday
from app.models.course import Course
from app.models.tutor_profile import TutorProfile
from app.models.user import User, UserRole
from app.services.booking_lifecycle import Actor
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService

# 2030-01-01 is a Tuesday; the next Monday is 2030-01-07
NOW = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


class FixedClock:
    """Injectable server clock that only moves when a test moves it"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def hours_before(self, session_date: date, minute: int, hours: float) -> None:
        self.now = session_datetime(session_date, minute) - timedelta(hours=hours)


class RecordingNotifier(NotificationService):
    """Stands in for NotificationService and remembers every emitted event"""

    def __init__(self):
        super().__init__(session_factory=None)
        self.events = []

    async def send_booking_requested(self, booking):
        self.events.append(("requested", booking.id))

    async def send_booking_confirmed(self, booking):
        self.events.append(("confirmed", booking.id))

    async def send_booking_cancelled(self, booking, cancelled_by):
        self.events.append(("cancelled", booking.id))

    async def send_booking_completed(self, booking):
        self.events.append(("completed", booking.id))

    async def send_booking_rescheduled(self, booking, requested_by):
        self.events.append(("rescheduled", booking.id))

    async def send_feedback_received(self, booking, submitted_by):
        self.events.append(("feedback", booking.id))

    async def send_no_show(self, booking):
        self.events.append(("no_show", booking.id))

    def names(self):
        return [name for name, _ in self.events]


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role)


def auth_headers(user: User) -> dict:
    token = create_access_token(str(user.id), user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def locks():
    return KeyedLockRegistry(timeout=5)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'tutoring_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def create_user(db, role: UserRole, name: str, **kwargs) -> User:
    user = User(
        role=role,
        name=name,
        email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@example.com",
        **kwargs
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def tutor(db):
    tutor = await create_user(db, UserRole.TUTOR, "Nadia Rahman")
    db.add(TutorProfile(user_id=tutor.id, bio="Mathematics tutor", hourly_rate=Decimal("500.00")))
    db.add(TutorAvailability(tutor_id=tutor.id, weekday=Weekday.MONDAY, start_minute=9 * 60, end_minute=17 * 60))
    await db.commit()
    return tutor


@pytest_asyncio.fixture
async def course(db, tutor):
    course = Course(tutor_id=tutor.id, title="Calculus I", description="Limits and derivatives")
    db.add(course)
    await db.commit()
    return course


@pytest_asyncio.fixture
async def student(db):
    return await create_user(db, UserRole.STUDENT, "Arif Hossain")


@pytest_asyncio.fixture
async def other_student(db):
    return await create_user(db, UserRole.STUDENT, "Sadia Karim")


@pytest_asyncio.fixture
async def admin(db):
    return await create_user(db, UserRole.ADMIN, "Ops Admin")


@pytest_asyncio.fixture
async def service_db(session_factory):
    """Session used by the service under test, kept apart from the seeding session"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def booking_service(service_db, locks, notifier, clock):
    return BookingService(service_db, locks, notifier=notifier, clock=clock)


@pytest.fixture
def create_booking(booking_service, student, tutor, course):
    """Book ``MONDAY`` start-end (minutes) as ``student`` unless told otherwise"""

    async def _create(start=10 * 60, end=11 * 60, session_date=MONDAY, as_student=None):
        return await booking_service.create_booking(
            student=actor_for(as_student or student),
            tutor_id=tutor.id,
            course_id=course.id,
            session_date=session_date,
            start_minute=start,
            end_minute=end,
            duration_minutes=end - start,
        )

    return _create


@pytest.fixture
def api_app(session_factory, locks, notifier, clock):
    from app.main import create_app

    app = create_app()
    app.state.locks = locks
    app.state.notifier = notifier
    app.state.clock = clock
    app.state.booking_throttle = BookingThrottle(MemoryThrottleStore(), limit=100, window_seconds=60)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def client(api_app):
    async with AsyncClient(transport=ASGITransport(app=api_app), base_url="http://test") as ac:
        yield ac
