"""
ExamGuard Proctoring Service - FastAPI Application
"""
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import settings
from .proctor.api import router as proctor_router, shutdown_sessions
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Integrity engine for proctored online assessments",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


# ============================================================================
# Request Logging Middleware
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    method = request.method
    path = request.url.path

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Request {method} {path} failed: {e}")
        raise

    # Frames arrive several times a second; keep them out of the info log
    if path not in ["/health", "/favicon.ico", "/api/proctor/stream"]:
        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"{method} {path} -> {response.status_code} in {duration_ms}ms")

    return response


# CORS middleware - the exam page is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(proctor_router)  # /api/proctor


@app.on_event("startup")
async def startup_event():
    """Configure logging and report the proctoring configuration."""
    setup_logging(
        service_name="examguard",
        level=settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE,
        log_dir=settings.LOG_DIR
    )
    logger.info(
        f"Sampling every {settings.ACTIVE_SAMPLE_INTERVAL_MS}ms "
        f"(preview {settings.PREVIEW_SAMPLE_INTERVAL_MS}ms), "
        f"no-face timeout after {settings.NO_FACE_TIMEOUT_TICKS} ticks"
    )
    if not settings.RESULTS_API_URL:
        logger.warning(f"RESULTS_API_URL not set, results go to {settings.RESULTS_FALLBACK_PATH}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop all running sessions."""
    await shutdown_sessions()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "docs": "/docs" if settings.DEBUG else "Disabled in production"
    }
