"""
==============================================================================
Barcode Capture & Resolution Engine - Application Entry Point
==============================================================================

FastAPI application with:
- RESTful API endpoints (health, cameras, scanner)
- WebSocket camera scanning
- One process-wide camera owner, released on shutdown

Usage:
------
    # Development
    uvicorn scan_engine.main:app --reload

    # Production
    uvicorn scan_engine.main:app --host 0.0.0.0 --port 8000

==============================================================================
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scan_engine import __version__
from scan_engine.config import get_settings
from scan_engine.core.dependencies import ScannerResources
from scan_engine.core.exceptions import register_exception_handlers
from scan_engine.api.router import api_router
from scan_engine.capability import detect
from scan_engine.websockets import scanner_router


# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

logger = logging.getLogger(__name__)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

class Application:
    """
    Builds the scanner service around one ScannerResources holder.

    Tests pass their own resources (fake capture hardware); the module
    level instance below uses the OpenCV driver.
    """

    def __init__(self, resources: Optional[ScannerResources] = None):
        """Initialize the application."""
        self._settings = get_settings()
        self._resources = resources or ScannerResources()
        self._app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""
        app = FastAPI(
            title=self._settings.app_name,
            version=__version__,
            description="Camera barcode capture, decoding and code resolution",
            lifespan=self._lifespan,
            docs_url=None if self._settings.is_production else "/docs",
            redoc_url=None if self._settings.is_production else "/redoc",
        )

        app.state.scanner_resources = self._resources

        self._configure_middleware(app)
        register_exception_handlers(app)
        self._register_routers(app)
        self._register_root(app)

        return app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Probe capture on startup, release every camera on shutdown."""
        self._startup()
        try:
            yield
        finally:
            self._shutdown()

    def _startup(self) -> None:
        logger.info(f"🚀 Starting {self._settings.app_name} ({self._settings.app_env})")
        self._log_capture_environment()
        logger.info(f"✅ Scanner service on {self._settings.host}:{self._settings.port}, WebSocket at /ws/scan")

    def _shutdown(self) -> None:
        logger.info("🛑 Releasing cameras...")
        self._resources.close()
        logger.info("✅ Shutdown complete")

    def _log_capture_environment(self) -> None:
        """Log what the local capture side looks like."""
        profile = detect()
        if not profile.has_capture_api:
            logger.warning("⚠️ No capture backend available, only manual entry will work")
            return

        devices = self._resources.camera_source.list_devices()
        if devices:
            logger.info(f"📷 Found {len(devices)} camera(s): {', '.join(d.label for d in devices)}")
        else:
            logger.warning("⚠️ No cameras found")
        logger.info(f"🔎 Default backend: {self._settings.default_backend}")

    def _configure_middleware(self, app: FastAPI) -> None:
        """Configure application middleware."""
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _register_routers(self, app: FastAPI) -> None:
        """REST under /api/v1, scanning over /ws/scan."""
        app.include_router(api_router)
        app.include_router(scanner_router)

    def _register_root(self, app: FastAPI) -> None:
        """Register root endpoint."""

        @app.get("/")
        async def root():
            """Service summary."""
            return {
                "name": self._settings.app_name,
                "docs": None if self._settings.is_production else "/docs",
                "health": "/api/v1/health",
                "websocket": "/ws/scan"
            }

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application instance."""
        return self._app


# ============================================================================
# APPLICATION INSTANCE
# ============================================================================

application = Application()
app = application.app


# ============================================================================
# ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "scan_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
