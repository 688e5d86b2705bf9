"""
Main FastAPI application for Hermes backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.routers import assignments, disciplines, health, resources, schedules
from app.routers import summaries, syllabi, syllabus
from app.services.prefetch_manager import prefetch_manager

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


def _check_providers() -> dict:
    """
    Report which AI providers have credentials.
    Never raises; missing keys are logged as warnings.
    """
    providers = {
        "Perplexity": (settings.PERPLEXITY_API_KEY, "resource search and syllabus discovery"),
        "AI gateway": (settings.AI_GATEWAY_API_KEY, "syllabus design, summaries and assignments"),
        "Anthropic": (settings.ANTHROPIC_API_KEY, "AI discipline matching"),
        "Firecrawl": (settings.FIRECRAWL_API_KEY, "embedded article content (optional)"),
    }
    result = {}
    for name, (key, feature) in providers.items():
        result[name] = bool(key)
        if key:
            logger.info("  ✓ %s key configured", name)
        else:
            logger.warning("  ⚠ %s key missing: %s will be unavailable", name, feature)
    return result


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Hermes backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. AI providers (optional; logs warnings but continues)
    _check_providers()

    # 3. Discipline catalog CSV directory
    csv_dir = os.path.abspath(settings.DISCIPLINE_CSV_DIR)
    if os.path.isdir(csv_dir):
        logger.info("✓ Discipline CSV directory: %s", csv_dir)
    else:
        logger.warning("⚠ Discipline CSV directory not found: %s", csv_dir)

    logger.info("=" * 60)
    logger.info("  Hermes backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # server is running

    logger.info("Shutting down Hermes backend …")
    stopped = prefetch_manager.stop_all()
    if stopped:
        logger.info("Stopped %d running prefetch task(s)", stopped)
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Hermes API",
    description=(
        "**Hermes**: AI-assisted curriculum generation.\n\n"
        "Pick a discipline from the academic catalog, generate a syllabus "
        "from real university courses (or a designed one), choose the steps "
        "you want in Mission Control, and study them with curated resources, "
        "course notes, capstone assignments and a weekly schedule.\n\n"
        "Key endpoints:\n"
        "- `GET  /api/disciplines/search` - find a discipline\n"
        "- `POST /api/syllabus/generate` - generate a syllabus\n"
        "- `POST /api/syllabi` - save a syllabus\n"
        "- `POST /api/syllabi/{id}/mission/confirm` - confirm a learning path\n"
        "- `POST /api/resources/step` - resources for a step\n"
        "- `POST /api/summaries` - course notes for a step\n"
        "- `POST /api/schedules` - map steps onto a calendar\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy polling from the frontend
    path = request.url.path
    if path not in ("/api/health", "/") and not path.endswith("/prefetch"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,      prefix="/api/health",      tags=["Health"])
app.include_router(disciplines.router, prefix="/api/disciplines", tags=["Disciplines"])
app.include_router(syllabus.router,    prefix="/api/syllabus",    tags=["Syllabus"])
app.include_router(syllabi.router,     prefix="/api/syllabi",     tags=["Saved Syllabi"])
app.include_router(resources.router,   prefix="/api/resources",   tags=["Resources"])
app.include_router(summaries.router,   prefix="/api/summaries",   tags=["Summaries"])
app.include_router(assignments.router, prefix="/api/assignments", tags=["Assignments"])
app.include_router(schedules.router,   prefix="/api/schedules",   tags=["Schedules"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: returns basic service info."""
    return {
        "name": "Hermes API",
        "version": "0.1.0",
        "description": "AI Curriculum Generation Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "disciplines": "/api/disciplines",
            "syllabus": "/api/syllabus",
            "syllabi": "/api/syllabi",
            "resources": "/api/resources",
            "summaries": "/api/summaries",
            "assignments": "/api/assignments",
            "schedules": "/api/schedules",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
