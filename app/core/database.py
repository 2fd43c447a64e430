from datetime import datetime, timezone
from typing import AsyncGenerator
import logging
import uuid

from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, declared_attr

from app.core.config import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel:
    """Columns shared by every table"""

    @declared_attr
    def id(cls):
        return Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    @declared_attr
    def created_at(cls):
        return Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    @declared_attr
    def updated_at(cls):
        return Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    @declared_attr
    def deleted_at(cls):
        return Column(DateTime(timezone=True), nullable=True)  # Soft delete


Base = declarative_base(cls=BaseModel)


def create_engine(database_url: str = None):
    return create_async_engine(database_url or settings.DATABASE_URL, echo=settings.DEBUG, future=True)


def create_session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = create_engine()
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind=None) -> None:
    """Create all tables that do not exist yet"""
    # Register every model on the metadata
    import app.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session per request"""
    async with AsyncSessionLocal() as session:
        yield session
