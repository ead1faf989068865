"""
raidquota.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn raidquota.api.main:app --reload --port 8000

or ``python -m raidquota``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

load_dotenv()

from raidquota.api.deps import get_engine  # noqa: E402
from raidquota.api.routes.adjustments import router as adjustments_router  # noqa: E402
from raidquota.api.routes.config import router as config_router  # noqa: E402
from raidquota.api.routes.events import router as events_router  # noqa: E402
from raidquota.api.routes.runs import router as runs_router  # noqa: E402
from raidquota.api.routes.stats import router as stats_router  # noqa: E402
from raidquota.engine.subjects import MalformedSubjectError  # noqa: E402

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "NOT_AUTHORIZED",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
}


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def error_body(code: str, message: str) -> dict:
    """Uniform error payload the bot switches on: ``{"error": {code, message}}``."""
    return {"error": {"code": code, "message": message}}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("RaidQuota API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("RaidQuota API shutting down")


app = FastAPI(
    title="RaidQuota API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------
@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException):
    code = _STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()))
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else "request validation failed"
    return JSONResponse(status_code=422, content=error_body("VALIDATION_ERROR", message))


@app.exception_handler(MalformedSubjectError)
async def _malformed_subject(request: Request, exc: MalformedSubjectError):
    return JSONResponse(status_code=400, content=error_body("VALIDATION_ERROR", str(exc)))


@app.exception_handler(SQLAlchemyError)
async def _storage_error(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content=error_body("STORAGE_FAILURE", "The points database is unavailable"),
    )


# Mount routers
app.include_router(events_router, prefix="/api")
app.include_router(config_router, prefix="/api")
app.include_router(runs_router, prefix="/api")
app.include_router(stats_router, prefix="/api")
app.include_router(adjustments_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
