"""
Main FastAPI application entry point.

Responsibilities:
- Initialize FastAPI app
- Configure CORS
- Include routers
- Setup startup/shutdown events (database, report orchestrator, artifact resolver)
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import reports
from config import log_missing_env_vars, settings
from connectors.registry import discover_connectors
from connectors.retry import RetryPolicy
from models.database import close_db, get_pool_status, get_session_factory, init_db
from services.artifact_resolver import ArtifactResolver, default_storage_roots
from services.artifact_store import LocalArtifactStore
from services.events import create_event_publisher
from services.job_store import ReportJobStore
from services.renderers import build_default_registry
from services.report_jobs import ReportJobOrchestrator

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
)
# Upstream fetch attempts are logged at debug
logging.getLogger("connectors").setLevel(logging.DEBUG if settings.ENVIRONMENT == "development" else logging.INFO)

app = FastAPI(title="Prism Reports API", version="1.0.0")

# CORS configuration - allow frontend origins
def _normalize_origin(origin: str) -> str:
    """Normalize origin values for robust CORS checks."""
    return origin.strip().rstrip("/")


cors_origins: list[str] = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",
]

# Add production frontend URL from environment (if different)
frontend_url = os.environ.get("FRONTEND_URL") or settings.FRONTEND_URL
if frontend_url:
    cors_origins.append(frontend_url)

allowed_origins = {_normalize_origin(origin) for origin in cors_origins}


def get_cors_headers(origin: str | None) -> dict[str, str]:
    """Return CORS headers if origin is allowed."""
    normalized_origin = _normalize_origin(origin) if origin else None
    if normalized_origin and normalized_origin in allowed_origins:
        return {
            "Access-Control-Allow-Origin": normalized_origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "*",
        }
    return {}


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Report-Size"],
)


# Global exception handler to ensure CORS headers on all errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions with CORS headers."""
    origin = request.headers.get("origin")
    cors_headers = get_cors_headers(origin)
    logging.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers=cors_headers,
    )


# Routes
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])


def build_orchestrator(storage_dir: Path) -> ReportJobOrchestrator:
    """Wire the report pipeline from settings."""
    return ReportJobOrchestrator(
        store=ReportJobStore(get_session_factory()),
        renderers=build_default_registry(storage_dir / "renders"),
        artifacts=LocalArtifactStore(storage_dir),
        connectors=discover_connectors(),
        events=create_event_publisher(settings.REDIS_URL),
        retry_policy=RetryPolicy.from_settings(),
        stage_timeout=settings.REPORT_STAGE_TIMEOUT_SECONDS,
    )


@app.on_event("startup")
async def startup() -> None:
    """Create tables and wire the report pipeline."""
    log_missing_env_vars(logging.getLogger("config"))
    await init_db()

    storage_dir = Path(settings.STORAGE_DIR).resolve()
    storage_dir.mkdir(parents=True, exist_ok=True)
    orchestrator = build_orchestrator(storage_dir)
    app.state.report_orchestrator = orchestrator
    app.state.artifact_resolver = ArtifactResolver(
        default_storage_roots(storage_dir),
        extension=settings.ARTIFACT_EXTENSION,
        recency_minutes=settings.ARTIFACT_RECENCY_MINUTES,
        store=LocalArtifactStore(storage_dir),
    )
    logging.info(
        "Report pipeline ready",
        extra={"platforms": orchestrator.platforms, "storage_dir": str(storage_dir)},
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    """Stop running jobs and clean up database connections on shutdown."""
    orchestrator: ReportJobOrchestrator | None = getattr(app.state, "report_orchestrator", None)
    if orchestrator is not None:
        logging.info("Shutting down, cancelling running report jobs...")
        await orchestrator.shutdown()
    await close_db()
    logging.info("Database connections closed")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    logging.info("Health check requested")
    return {"status": "ok"}


@app.get("/api/health")
async def api_health_check() -> dict[str, object]:
    """Health check with database pool status."""
    try:
        pool_status = get_pool_status()
        return {
            "status": "ok",
            "pool": pool_status,
        }
    except Exception as e:
        return {
            "status": "error",
            "error": str(e),
        }
