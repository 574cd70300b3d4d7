"""Auto-analyze service API endpoints for background session analysis."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import SecretStr

from shared.config import config
from shared.enums import ResultsState
from shared.errors import InvalidAnalysisRequestError
from shared.logging_utils import setup_logging
from shared.models import AnalysisConfig, AnalysisReport, Credentials, Progress, StartedAnalysis

from .job_queue import JobQueue
from .orchestrator import OrchestratorRegistry
from .service import AutoAnalyzeService
from .settings import AnalysisSettings

logger = setup_logging("auto-analyze-api")

router = APIRouter()


def build_auto_analyze_service(settings: AnalysisSettings | None = None) -> AutoAnalyzeService:
    """Create the queue, orchestrator registry and control service."""
    settings = settings or AnalysisSettings.from_config(config)
    queue = JobQueue(retention_seconds=settings.retention_seconds)
    queue.init()
    return AutoAnalyzeService(queue, OrchestratorRegistry(settings), settings)


async def shutdown_auto_analyze_service(service: AutoAnalyzeService) -> None:
    await service.queue.shutdown()
    service.registry.clear()
    logger.info("Auto-analyze service shut down")


def get_auto_analyze_service(request: Request) -> AutoAnalyzeService:
    service = getattr(request.app.state, "auto_analyze_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Auto-analyze service is not running")
    return service


def get_credentials(
    x_bot_id: str = Header(default=""),
    x_client_id: str = Header(default=""),
    x_client_secret: str = Header(default=""),
    x_base_url: str | None = Header(default=None),
) -> Credentials:
    """Read bot credentials from request headers."""
    return Credentials(
        bot_id=x_bot_id.strip(),
        client_id=x_client_id.strip(),
        client_secret=SecretStr(x_client_secret),
        base_url=x_base_url or None,
    )


@router.get("/health")
async def health_check(service: AutoAnalyzeService = Depends(get_auto_analyze_service)) -> dict:
    """Health check endpoint for the auto-analyze service."""
    return {
        "status": "healthy",
        "service": "auto-analyze",
        "jobs": len(service.queue.list_jobs()),
    }


@router.post("/start", response_model=StartedAnalysis)
async def start_analysis(
    analysis_config: AnalysisConfig,
    credentials: Credentials = Depends(get_credentials),
    service: AutoAnalyzeService = Depends(get_auto_analyze_service),
) -> StartedAnalysis:
    """Start a background analysis. Returns job and analysis ids for polling."""
    try:
        return await service.start(analysis_config, credentials)
    except InvalidAnalysisRequestError as e:
        logger.warning(f"Rejected analysis request for bot {credentials.bot_id or '<missing>'}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/progress/{job_id}", response_model=Progress)
async def get_progress(
    job_id: str, service: AutoAnalyzeService = Depends(get_auto_analyze_service)
) -> Progress:
    """Current progress of an analysis."""
    progress = service.get_progress(job_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Analysis {job_id} not found")
    return progress


@router.get("/results/{job_id}", response_model=AnalysisReport)
async def get_results(
    job_id: str, service: AutoAnalyzeService = Depends(get_auto_analyze_service)
) -> AnalysisReport:
    """Report of a finished analysis (complete, or cancelled with partial results)."""
    lookup = service.get_results(job_id)
    if lookup.state == ResultsState.NOT_FOUND:
        raise HTTPException(status_code=404, detail=lookup.message)
    if lookup.state == ResultsState.NOT_READY:
        raise HTTPException(status_code=409, detail=lookup.message)
    return lookup.report


@router.delete("/{job_id}")
async def cancel_analysis(
    job_id: str, service: AutoAnalyzeService = Depends(get_auto_analyze_service)
) -> dict:
    """Request cooperative cancellation of an analysis."""
    cancelled = service.cancel(job_id)
    return {
        "job_id": job_id,
        "cancelled": cancelled,
        "message": "Cancellation requested" if cancelled else "Analysis not found or already finished",
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.auto_analyze_service = build_auto_analyze_service()
    try:
        yield
    finally:
        await shutdown_auto_analyze_service(app.state.auto_analyze_service)
        app.state.auto_analyze_service = None


app = FastAPI(
    title="Auto-Analyze Service",
    description="Background sampling and batch analysis of bot sessions",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
