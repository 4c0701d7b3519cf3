"""
GrantMatch FastAPI Application
Main entry point for the grant matching API.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backend.api import debug, matching
from backend.core.config import settings
from backend.core.rate_limit import close_rate_limiter
from backend.database import check_db_connection, close_db, init_db

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables in debug mode.
    Shutdown: close the rate limiter and database connections.
    """
    logger.info("Starting GrantMatch API...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Version: {settings.app_version}")

    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set; discovery will use deterministic scores only")

    if settings.debug:
        try:
            await init_db()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")

    yield

    logger.info("Shutting down GrantMatch API...")
    await close_rate_limiter()
    await close_db()
    logger.info("Database connections closed")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="GrantMatch API",
    description="""
    Grant Matching API

    Matches organizations with open grant opportunities using rule-based
    eligibility, weighted scoring, and optional AI analysis.
    """,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "message": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": True,
            "message": str(exc) if settings.debug else "Internal server error",
            "status_code": 500,
        },
    )


# =============================================================================
# API Routers
# =============================================================================

app.include_router(matching.router)
app.include_router(debug.router)


@app.get("/health", tags=["Health"])
async def health() -> dict[str, Any]:
    db_status = await check_db_connection()
    return {
        "status": db_status["status"],
        "version": settings.app_version,
        "components": {"database": db_status},
    }


# For running with uvicorn directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
