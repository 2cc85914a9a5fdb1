"""FastAPI server for the dental booking assistant.

Run with:
    uvicorn dental_agent.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from dental_agent.agent import create_dental_agent
from dental_agent.api.routes import router
from dental_agent.config import CORS_ORIGINS, REMINDERS_ENABLED, SERVER_HOST, SERVER_PORT
from dental_agent.db import build_engine, build_session_factory, init_db, session_scope
from dental_agent.engine import ChatEngine
from dental_agent.services.booking import BookingService
from dental_agent.services.calendar_client import GoogleCalendarClient
from dental_agent.services.metrics import metrics
from dental_agent.services.notifications import EmailNotifier
from dental_agent.services.quick_replies import QuickReplyClassifier
from dental_agent.services.reminders import ReminderScheduler
from dental_agent.services.side_effects import BookingSideEffects, SideEffectDispatcher
from dental_agent.storage import Storage

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the database, booking service, agent graph and reminder poller once.

    Everything hangs off ``app.state``; routes only ever touch
    ``app.state.engine``.
    """
    db_engine = build_engine()
    init_db(db_engine)
    session_factory = build_session_factory(db_engine)
    with session_scope(session_factory) as session:
        settings = Storage(session).get_settings()
        logger.info("Clinic: %s (%s)", settings.clinic_name, settings.timezone)

    notifier = EmailNotifier()
    dispatcher = SideEffectDispatcher()
    booking = BookingService(
        session_factory,
        dispatcher=dispatcher,
        side_effects=BookingSideEffects(session_factory, GoogleCalendarClient(), notifier),
    )

    logger.info("Compiling LangGraph agent…")
    application.state.engine = ChatEngine(
        session_factory,
        create_dental_agent(),
        booking,
        classifier=QuickReplyClassifier(),
    )
    logger.info("Agent ready.")

    scheduler = ReminderScheduler(session_factory, notifier)
    if REMINDERS_ENABLED:
        scheduler.start()

    yield

    scheduler.stop()
    dispatcher.shutdown(wait=True)
    metrics.flush()
    db_engine.dispose()
    application.state.engine = None


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Dental Booking Assistant",
    description="Chat assistant that books, reschedules and cancels dental appointments.",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (chat widget runs on another origin) ────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Dental Booking Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting dental assistant API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "dental_agent.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
