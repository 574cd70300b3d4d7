"""
Session Insights Backend - Unified Application Entry Point
Mounts the analysis services under a single FastAPI application
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.auto_analyze.app import (
    build_auto_analyze_service,
    router as auto_analyze_router,
    shutdown_auto_analyze_service,
)
from shared.config import config
from shared.logging_utils import setup_logging

logger = setup_logging("session-insights-backend")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the job queue and orchestrator registry for the life of the process."""
    app.state.auto_analyze_service = build_auto_analyze_service()
    logger.info("Session Insights Backend started")
    try:
        yield
    finally:
        await shutdown_auto_analyze_service(app.state.auto_analyze_service)
        app.state.auto_analyze_service = None
        logger.info("Session Insights Backend stopped")


app = FastAPI(
    title="Session Insights Backend API",
    description="""
    Unified API for automated analysis of conversational bot sessions.

    All endpoints are documented below. Service routes are organized by tag.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and status endpoints",
        },
        {
            "name": "Auto Analyze",
            "description": "Background session analysis - mounted at /api/v1/auto-analyze",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auto_analyze_router, prefix="/api/v1/auto-analyze", tags=["Auto Analyze"])


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Overall backend health."""
    return {
        "status": "healthy",
        "service": "session-insights-backend",
        "version": "1.0.0",
    }
