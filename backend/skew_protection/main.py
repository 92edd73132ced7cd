"""FastAPI application entry point"""

import logging
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from skew_protection.api import assets, realtime, status
from skew_protection.api.middleware import SkewProtectionMiddleware
from skew_protection.core.config import Settings, get_settings
from skew_protection.core.service import SkewProtectionService
from skew_protection.core.storage import Storage
from skew_protection.models.errors import ApplicationError
from skew_protection.models.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        force=True,
    )


def create_app(settings: Optional[Settings] = None, storage: Optional[Storage] = None) -> FastAPI:
    """
    Build the app around a single SkewProtectionService.

    The service is created once here and shared through `app.state`; routes
    and the middleware read it from there instead of module globals.
    """
    settings = settings or get_settings()
    service = SkewProtectionService(settings, storage=storage)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.service = service

    app.add_middleware(SkewProtectionMiddleware)

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request: Request, exc: ApplicationError):
        logger.error(f"{exc.code.value}: {exc.message} (error_id={exc.error_id})")
        return JSONResponse(status_code=exc.http_status, content=ErrorResponse(**exc.model_dump()).model_dump())

    @app.on_event("startup")
    async def startup():
        await service.start()
        logger.info(f"Skew protection started (current version: {await service.current_version() or 'none'})")

    @app.on_event("shutdown")
    async def shutdown():
        await service.stop()
        logger.info("Skew protection stopped")

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {"status": "healthy", "version": settings.api_version}

    @app.get("/health")
    async def health():
        """Health check for monitoring"""
        return {"status": "healthy", "platform": settings.platform}

    # Register API routes
    app.include_router(assets.router, prefix="/_skew", tags=["assets"])
    app.include_router(status.router, prefix="/_skew", tags=["status"])
    app.include_router(realtime.router, prefix="/_skew", tags=["realtime"])

    # Static build output; misses fall through to the middleware's resolver
    assets_root = Path(settings.public_dir) / settings.assets_dir_name
    if assets_root.is_dir():
        app.mount(settings.assets_prefix, StaticFiles(directory=assets_root), name="assets")
    else:
        logger.debug(f"Assets directory {assets_root} not found, serving assets from storage only")

    return app
