import logging.config
import time
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.database import init_db
from digitalroom.realtime.managers import get_room_manager, shutdown_realtime, startup_realtime


def build_logging_config(debug: bool) -> dict[str, object]:
    """Single stream handler; room internals go to DEBUG when the app runs in debug mode."""

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "root": {
            "handlers": ["default"],
            "level": "INFO",
        },
        "loggers": {
            "digitalroom": {"level": "DEBUG" if debug else "INFO"},
            # One line per frame is too chatty even for debugging.
            "digitalroom.realtime.ratelimit": {"level": "INFO"},
        },
    }


settings = get_settings()

logging.config.dictConfig(build_logging_config(settings.debug))

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=settings.cors_allow_origin_regex,
)

_started_at = time.monotonic()


@app.get("/health", tags=["system"])
def health_check() -> dict[str, object]:
    """Liveness check with a glimpse of the room."""

    room = get_room_manager()
    return {
        "status": "ok",
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
        "users": len(room.store),
        "djActive": room.state.dj_id is not None,
    }


@app.on_event("startup")
async def _startup() -> None:
    init_db()
    await startup_realtime()
    if not settings.admin_names:
        logger.warning("No administrator configured; admin events will be refused")


@app.on_event("shutdown")
async def _shutdown() -> None:
    await shutdown_realtime()


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
app.include_router(metrics_router)
