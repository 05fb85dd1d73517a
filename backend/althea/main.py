"""
Althea Health - Main FastAPI Application
"""

import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from .config import settings
from .api import family_router, sessions_router, storage_router
from .container import build_services
from .core.exceptions import AltheaError
from .core.logging_config import setup_logging
from .middleware import RequestLoggingMiddleware

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    setup_logging(settings)

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Blob storage path: {settings.blob_storage_path}")
    logger.info(f"Record storage path: {settings.record_storage_path}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    logger.info(f"Debug mode: {settings.debug}")
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.app_name}")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Medical document interpretation with family health pattern tracking",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Report-Cached", "X-Report-Fallback"],
)

# Add request logging middleware (after CORS)
if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(AltheaError)
async def althea_error_handler(request: Request, exc: AltheaError):
    """Render every domain error with its own status code."""
    if exc.status_code >= 500:
        logger.error(
            f"{type(exc).__name__}: {exc.message}",
            extra={"extra_fields": {"path": request.url.path, **exc.details}}
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(family_router)
app.include_router(sessions_router)
app.include_router(storage_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "message": "Welcome to Althea - Your Personal Health Interpreter"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "storage": settings.storage_type,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "althea.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
