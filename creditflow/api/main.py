"""
FastAPI application for creditflow.

Provides REST API for:
- Review submission with credit propagation
- Status updates cascading through the prerequisite graph
- Ordered due reviews, progress and history
- Study sessions and prerequisite edges
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from creditflow import __version__
from creditflow.core.clock import utcnow
from creditflow.core.logging import configure_logging
from creditflow.db.database import get_engine, init_db

settings = get_settings()


def _check_database_health() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_file)
    logger.info("Starting creditflow service...")
    init_db()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info("Shutting down creditflow service...")


app = FastAPI(
    title="creditflow",
    description="""
    Spaced-repetition scheduling over a weighted prerequisite graph.

    ## Features

    - **Reviews**: SM-2 scheduling for the reviewed item
    - **Credit propagation**: Partial credit to prerequisites on success, debit to dependents on failure
    - **Status cascade**: grasped/tackling/fresh transitions follow the graph
    - **Due reviews**: Ordered by impact on other due items, then by depth
    """,
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": "creditflow",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Health check with an actual database round trip."""
    db_status, db_error = _check_database_health()

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": utcnow().isoformat(),
        "components": {"database": db_status},
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Import and mount routers
# ========================================

from creditflow.api.routers import srs_router  # noqa: E402

app.include_router(srs_router.router, prefix="/api/srs", tags=["SRS"])
