"""FastAPI Application Entry Point.

Configures the app, lifespan, CORS, error mapping and includes all route modules.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from onboarding.catalog import DEFAULT_TEMPLATES
from onboarding.errors import (
    DependencyBlockedError,
    InvalidTemplateError,
    InvalidTransitionError,
    NotFoundError,
    OnboardingError,
)
from onboarding.logging_config import configure_engine_logging, get_api_logger
from onboarding.settings import AUTOMATION_ENABLED, SEED_DEFAULT_TEMPLATES

from .database import close_db, get_session_ctx, init_db
from .dependencies import start_scheduler, stop_scheduler
from .repositories.template import TemplateRepository
from .temporal_adapter import close_temporal_client, init_temporal_client

configure_engine_logging()
logger = get_api_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database, Temporal client and automation scheduler lifecycle."""
    await init_db()

    if SEED_DEFAULT_TEMPLATES:
        async with get_session_ctx() as session:
            seeded = await TemplateRepository(session).seed_defaults(DEFAULT_TEMPLATES)
        if seeded:
            logger.info(f"Seeded {seeded} built-in workflow templates")

    await init_temporal_client()

    if AUTOMATION_ENABLED:
        start_scheduler()
    else:
        logger.warning("AUTOMATION_ENABLED is off: overdue marking and reminders only run via POST /scan")

    yield
    await stop_scheduler()
    await close_temporal_client()
    await close_db()


app = FastAPI(title="Onboarding Workflow API", version="2.0.0", lifespan=lifespan)

# CORS configuration, configurable via CORS_ORIGINS env var (comma-separated)
_default_origins = "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", _default_origins).split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (InvalidTemplateError, 422),
    (DependencyBlockedError, 409),
    (InvalidTransitionError, 409),
)


@app.exception_handler(OnboardingError)
async def handle_onboarding_error(_: Request, exc: OnboardingError):
    """Translate engine errors into HTTP responses."""
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    content = {"detail": str(exc), "code": type(exc).__name__}
    if isinstance(exc, DependencyBlockedError):
        content["blocking"] = exc.blocking
    elif isinstance(exc, InvalidTemplateError):
        content["problems"] = exc.problems
    return JSONResponse(status_code=status_code, content=content)


# Include routers
from .event_bus import router as events_router  # noqa: E402
from .routes.automation import router as automation_router  # noqa: E402
from .routes.bulk import router as bulk_router  # noqa: E402
from .routes.hires import router as hires_router  # noqa: E402
from .routes.notifications import router as notifications_router  # noqa: E402
from .routes.onboarding import router as onboarding_router  # noqa: E402
from .routes.templates import router as templates_router  # noqa: E402

app.include_router(events_router)
app.include_router(hires_router)
app.include_router(templates_router)
app.include_router(onboarding_router)
app.include_router(automation_router)
app.include_router(bulk_router)
app.include_router(notifications_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    from onboarding.config import API_HOST, API_PORT

    uvicorn.run("app.main:app", host=API_HOST, port=API_PORT)
