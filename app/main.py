"""
NoteDrop - scheduled webhook delivery

FastAPI application entry point for the administrative API.
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

# Import observability modules
from app.config import settings
from app.errors import StorageUnavailable
from app.logging_config import configure_logging, get_logger
from app.sentry_config import configure_sentry
from app.middleware.logging import LoggingMiddleware
from app.routes.metrics import router as metrics_router

# Import route modules
from app.routes.notes import router as notes_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

log = get_logger(component="api")

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Schedules notes for delayed, retried delivery to webhooks",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include note routes
app.include_router(notes_router)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    """Report storage outages as 503 instead of an opaque 500."""
    log.error("storage_unavailable", route=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"message": "Storage unavailable"}
    )


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy"
    }
