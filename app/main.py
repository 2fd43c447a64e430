from contextlib import asynccontextmanager
from typing import AsyncGenerator
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import AsyncSessionLocal, init_db
from app.core.locks import KeyedLockRegistry
from app.core.throttle import BookingThrottle, create_throttle_store
from app.services.notification_service import NotificationService
from app.tasks.session_tasks import run_missed_session_sweep

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()

    app.state.locks = KeyedLockRegistry()
    app.state.booking_throttle = BookingThrottle(create_throttle_store())
    app.state.notifier = NotificationService(AsyncSessionLocal)

    sweep = None
    if settings.NO_SHOW_SWEEP_INTERVAL_SECONDS > 0:
        sweep = asyncio.create_task(run_missed_session_sweep(settings.NO_SHOW_SWEEP_INTERVAL_SECONDS))

    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield

    if sweep is not None:
        sweep.cancel()
        try:
            await sweep
        except asyncio.CancelledError:
            pass
    await app.state.notifier.drain()
    await app.state.booking_throttle.store.close()
    logger.info(f"{settings.APP_NAME} stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=app_lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": settings.APP_VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
