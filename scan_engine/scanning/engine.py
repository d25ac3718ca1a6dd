"""
==============================================================================
Scan Engine Module
==============================================================================

Host-facing surface of the scanning engine and the single holder of the
camera. One engine owns one CameraSource and at most one live ScanSession;
starting a camera scan stops any previous session and builds a fresh one.

Operations:
-----------
- start_camera_scan(render_target, on_scan, on_error, preferred_device_id)
- stop_camera_scan()
- submit_manual_code(text)
- list_cameras()
- force_scan(), switch_camera(device_id)

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from scan_engine.capability.config_builder import ScanConfiguration, build_config
from scan_engine.capability.profile import DeviceCapabilityProfile, detect
from scan_engine.camera.source import CameraDescriptor, CameraSource
from scan_engine.config import Settings, get_settings
from scan_engine.decoders import BackendKind, RenderTarget

from .manual import ManualEntryPath, ManualEntryResult
from .normalizer import ResultNormalizer
from .session import ScanSession, SessionState


# Module logger
logger = logging.getLogger(__name__)


class ScanEngine:
    """
    Scanning entry point for one host.

    Args:
        camera_source: Shared camera owner (OpenCV-backed by default)
        profile: Device profile of the client being served
        settings: Application settings
        backend_kind: Default decode backend
        normalizer: Normalizer shared by the camera and manual paths
        session_factory: Builds sessions; overridable for hosts and tests
    """

    def __init__(
        self,
        camera_source: Optional[CameraSource] = None,
        profile: Optional[DeviceCapabilityProfile] = None,
        settings: Optional[Settings] = None,
        backend_kind: Optional[BackendKind] = None,
        normalizer: Optional[ResultNormalizer] = None,
        session_factory: Callable[..., ScanSession] = ScanSession
    ) -> None:
        self.settings = settings or get_settings()
        self.camera_source = camera_source or CameraSource()
        self.profile = profile or detect()
        self.backend_kind = BackendKind(backend_kind or self.settings.default_backend)
        self.normalizer = normalizer or ResultNormalizer()
        self.manual_entry = ManualEntryPath(self.normalizer)
        self._session_factory = session_factory
        self._session: Optional[ScanSession] = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Optional[ScanSession]:
        return self._session

    @property
    def configuration(self) -> ScanConfiguration:
        return build_config(self.profile)

    @property
    def is_scanning(self) -> bool:
        return self._session is not None and self._session.state is SessionState.STREAMING

    # =========================================================================
    # CAMERA SCANNING
    # =========================================================================

    async def start_camera_scan(
        self,
        render_target: Optional[RenderTarget],
        on_scan: Callable[[str], Any],
        on_error: Callable[[str], Any],
        preferred_device_id: Optional[str] = None,
        backend: Optional[BackendKind] = None,
        continuous: Optional[bool] = None
    ) -> ScanSession:
        """
        Start scanning with a fresh session.

        Args:
            render_target: Where frames are presented; element-bound
                decoding requires an element id
            on_scan: Receives each canonical code
            on_error: Receives a user-facing message on failure
            preferred_device_id: Device to use instead of the default selection
            backend: Decode backend for this session
            continuous: Keep scanning after a match

        Returns:
            The new session. Capture failures are reported via ``on_error``
            and leave the session STOPPED.
        """
        async with self._lock:
            await self._stop_session()

            session = self._session_factory(
                self.camera_source,
                render_target,
                on_scan,
                on_error,
                backend_kind=backend or self.backend_kind,
                descriptor=self._resolve_device(preferred_device_id),
                profile=self.profile,
                configuration=build_config(self.profile),
                normalizer=self.normalizer,
                continuous=continuous,
                settings=self.settings,
            )
            self._session = session
            logger.info(f"🚀 Starting camera scan ({session.backend_kind.value})")
            await session.start()
            return session

    async def stop_camera_scan(self) -> None:
        """
        Stop the live session and release its camera. Idempotent.

        Only this engine's own stream is released; other engines sharing
        the CameraSource keep theirs.
        """
        async with self._lock:
            await self._stop_session()

    async def force_scan(self, timeout: Optional[float] = None) -> Optional[str]:
        session = self._session
        if session is None:
            return None
        return await session.force_scan(timeout)

    async def switch_camera(self, device_id: str, grace: Optional[float] = None) -> None:
        """Move the live session to another device."""
        session = self._session
        descriptor = self._resolve_device(device_id)
        if session is None or descriptor is None:
            return
        await session.switch_camera(descriptor, grace)

    def list_cameras(self) -> List[CameraDescriptor]:
        return self.camera_source.list_devices()

    def default_camera(self) -> Optional[CameraDescriptor]:
        return CameraSource.select_default(self.list_cameras(), self.configuration.facing_mode)

    # =========================================================================
    # MANUAL ENTRY
    # =========================================================================

    def submit_manual_code(self, text: Optional[str]) -> ManualEntryResult:
        return self.manual_entry.submit(text)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def info(self) -> dict:
        return {
            "backend": self.backend_kind.value,
            "current_device_id": self.camera_source.current_device_id(),
            "session": self._session.info() if self._session else None,
        }

    async def _stop_session(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            await session.stop()

    def _resolve_device(self, device_id: Optional[str]) -> Optional[CameraDescriptor]:
        if not device_id:
            return None
        for device in self.list_cameras():
            if device.device_id == device_id:
                return device
        logger.warning(f"Device {device_id} not enumerated, trying it directly")
        return CameraDescriptor(device_id=device_id, label=f"Camera {device_id}")
