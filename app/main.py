import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import appointments, availability, reminders, slots
from app.core.config import settings, _ENV_FILE
from app.core.db import async_session_maker
from app.core.errors import SchedulingError
from app.services.notification_service import NotificationDispatcher
from app.services.rate_limiter import close_redis_client
from app.services.reminder_service import dispatch_due_reminders

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


async def _run_reminder_dispatch(dispatcher: NotificationDispatcher) -> None:
    """Send reminders that are due. Failures are logged, never raised into the loop."""
    try:
        async with async_session_maker() as session:
            try:
                n = await dispatch_due_reminders(session, dispatcher)
                await session.commit()
                if n:
                    logger.info("Reminder dispatch: processed %d event(s)", n)
            except Exception:
                await session.rollback()
                raise
    except Exception as e:
        logger.exception("Reminder dispatch failed: %s", e)


async def _reminder_loop(dispatcher: NotificationDispatcher) -> None:
    while True:
        await _run_reminder_dispatch(dispatcher)
        await asyncio.sleep(settings.reminder_poll_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    if not settings.email_enabled:
        logger.warning("Email reminders: NOT configured (SMTP settings missing)")
    if not settings.twilio_enabled:
        logger.warning("SMS/WhatsApp reminders: NOT configured (Twilio settings missing)")
    app.state.dispatcher = NotificationDispatcher()
    task = None
    if settings.reminder_poller_enabled:
        logger.info("Reminder poller: every %ds", settings.reminder_poll_interval_seconds)
        task = asyncio.create_task(_reminder_loop(app.state.dispatcher))
    yield
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await close_redis_client()


app = FastAPI(
    title="Afya Care Scheduling API",
    description="Doctor availability, bookable slots, appointments and reminders",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(availability.router, prefix="/api/v1")
app.include_router(slots.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(reminders.router, prefix="/api/v1")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Domain errors carry their own status and a machine-readable code."""
    if exc.status_code >= 500:
        logger.error("Scheduling error: %s", exc.message)
    else:
        logger.info("Rejected %s %s: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return actual error in JSON; include CORS so 500 responses are not blocked by browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception: %s", exc)
    detail = f"{type(exc).__name__}: {str(exc)}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
        headers=headers,
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
