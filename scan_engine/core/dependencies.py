"""
==============================================================================
FastAPI Dependencies Module
==============================================================================

Dependency injection for the scanning endpoints.

Dependency Hierarchy:
--------------------
                    ┌─────────────────────┐
                    │  app.state holder   │
                    └──────────┬──────────┘
                               │
          ┌────────────────────┼────────────────────┐
          │                    │                    │
┌─────────▼─────────┐ ┌────────▼────────┐ ┌─────────▼─────────┐
│ get_camera_source │ │ get_normalizer  │ │get_client_profile │
└───────────────────┘ └─────────────────┘ └───────────────────┘

The application keeps exactly one CameraSource for the process so that one
physical camera is never opened by two owners. Handlers reach it through
``get_camera_source``; tests swap it with ``app.dependency_overrides``.

Usage Examples:
--------------
    @router.get("/cameras")
    async def list_cameras(source: CameraSource = Depends(get_camera_source)):
        ...

    @router.get("/profile")
    async def profile(profile: DeviceCapabilityProfile = Depends(get_client_profile)):
        ...

==============================================================================
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi.requests import HTTPConnection

from scan_engine.camera import CameraSource
from scan_engine.capability import DeviceCapabilityProfile, detect, signals_from_headers
from scan_engine.scanning import ResultNormalizer


# Module logger
logger = logging.getLogger(__name__)


class ScannerResources:
    """
    Process-wide holder of the scanning hardware.

    Attributes:
        camera_source: The only CameraSource of the application
    """

    def __init__(self, camera_source: CameraSource | None = None) -> None:
        self.camera_source = camera_source or CameraSource()

    def close(self) -> None:
        """Release any stream still open."""
        self.camera_source.release_all()


def get_resources(connection: HTTPConnection) -> ScannerResources:
    """Resources registered on the application at startup."""
    return connection.app.state.scanner_resources


def get_camera_source(connection: HTTPConnection) -> CameraSource:
    """Shared CameraSource for HTTP and WebSocket handlers."""
    return get_resources(connection).camera_source


@lru_cache
def get_normalizer() -> ResultNormalizer:
    """Normalizer configured from settings, shared by every handler."""
    return ResultNormalizer()


def get_client_profile(connection: HTTPConnection) -> DeviceCapabilityProfile:
    """
    Capability profile of the calling client.

    Built from the request headers; never raises.
    """
    signals = signals_from_headers(
        connection.headers,
        scheme=connection.url.scheme,
        hostname=connection.url.hostname,
    )
    profile = detect(signals)
    logger.debug(
        f"Client profile: mobile={profile.is_mobile} os={profile.os_family} "
        f"browser={profile.browser_family} secure={profile.is_secure_context}"
    )
    return profile
