"""
Folder Watch - Main FastAPI Application

Runs the transfer pipeline in-process and exposes:
- Health and worker state
- History of completed transfers
- Manual submission of files for upload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.api import health, transfers
from app.utils.config import get_settings
from app.utils.log_config import configure_logging
from domains.transfer.pipeline import TransferPipeline
from domains.transfer.watcher import FolderWatcher


def create_app(pipeline: Optional[TransferPipeline] = None, watch: bool = True) -> FastAPI:
    """
    Build the API around a transfer pipeline.

    Args:
        pipeline: Pipeline to serve; built from settings when omitted
        watch: Also start a folder watcher on the configured directory
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {settings.api_title} v{settings.api_version}")

        app.state.pipeline = pipeline or TransferPipeline.from_settings(settings)
        app.state.pipeline.start()

        watcher = None
        if watch:
            watcher = FolderWatcher(
                settings.watch_directory,
                app.state.pipeline.submit,
                include_subdirectories=settings.include_subdirectories,
                file_filter=settings.file_filter,
            )
            watcher.start()

        yield

        # Cleanup
        logger.info("Shutting down application...")
        if watcher is not None:
            watcher.stop()
        app.state.pipeline.stop(settings.shutdown_timeout)
        app.state.pipeline.storage.close()
        logger.success("Application shut down complete")

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Uploads files from a watched folder to blob storage",
        lifespan=lifespan
    )

    # Exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
            }
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(transfers.router, prefix="/transfers", tags=["Transfers"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Folder Watch",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
            "health": "/health",
            "transfers": "/transfers"
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(),
        host="0.0.0.0",
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
