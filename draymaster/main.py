import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from draymaster.api.router import api_router
from draymaster.background.scheduler import shutdown_scheduler, start_scheduler
from draymaster.core.config import get_settings
from draymaster.routers import health
from draymaster.services.event_dispatcher import Event, get_dispatcher, subscribe_all

settings = get_settings()
logger = logging.getLogger(__name__)


def log_event(event: Event) -> None:
    logger.info(
        "automation_event",
        extra={"event_type": event.type.value, "payload": event.payload()},
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    subscribe_all(log_event)

    if settings.enable_scheduler:
        try:
            start_scheduler()
        except Exception as exc:
            logger.warning("Error starting scheduler", extra={"error": str(exc)})

    yield

    shutdown_scheduler()
    get_dispatcher().unsubscribe_all(log_event)


app = FastAPI(
    title=settings.project_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(api_router, prefix="/api")
