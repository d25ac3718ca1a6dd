"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides fake capture hardware, scripted decode backends, a controllable
clock and an HTTP/WebSocket test client.

==============================================================================
"""

import threading
from typing import Callable, Dict, Generator, List, Optional

import numpy as np
import pytest
from fastapi.testclient import TestClient

from scan_engine.camera import CameraDescriptor, CameraSource, CaptureDriver, CaptureTrack
from scan_engine.capability import DeviceCapabilityProfile, ScanConfiguration, build_config
from scan_engine.config import Settings
from scan_engine.core.dependencies import ScannerResources
from scan_engine.core.exceptions import ScanError
from scan_engine.decoders import BackendKind, DecodeBackend, RenderTarget
from scan_engine.main import Application


# ============================================================================
# FAKE HARDWARE
# ============================================================================

class FakeTrack(CaptureTrack):
    """Track that serves numbered frames, or nothing once ``lost`` is set."""

    def __init__(self, device_id: str, width: int = 640, height: int = 480):
        super().__init__(device_id)
        self.width = width
        self.height = height
        self.frames_served = 0
        self.close_calls = 0
        self.lost = False

    def read(self) -> Optional[np.ndarray]:
        if self._ended or self.lost:
            return None
        self.frames_served += 1
        frame = np.zeros((8, 8, 3), dtype=np.uint8)
        frame[0, 0, 0] = self.frames_served % 256
        return frame

    def _close(self) -> None:
        self.close_calls += 1

    def settings(self) -> Dict[str, object]:
        return {"device_id": self.device_id, "width": self.width, "height": self.height}


class FakeDriver(CaptureDriver):
    """
    Capture driver with scripted devices and failures.

    Attributes:
        errors: device_id -> ScanError raised on every open
        max_width: Opens above this width raise ConstraintUnsatisfiable
        gate: When set, opens block until the event is set
        opened: Every track handed out, in order
    """

    def __init__(self, devices: Optional[List[CameraDescriptor]] = None):
        self.devices = list(devices) if devices is not None else [
            CameraDescriptor("0", "Front Camera", "user"),
            CameraDescriptor("1", "Back Camera", "environment"),
        ]
        self.errors: Dict[str, ScanError] = {}
        self.max_width: Optional[int] = None
        self.enumerate_error: Optional[Exception] = None
        self.opened: List[FakeTrack] = []
        self.open_calls: List[tuple] = []
        self.gate: Optional[threading.Event] = None

    def enumerate(self) -> List[CameraDescriptor]:
        if self.enumerate_error is not None:
            raise self.enumerate_error
        return list(self.devices)

    def open(self, device_id, width, height, frame_rate, min_width=0, min_height=0) -> FakeTrack:
        from scan_engine.core import exceptions

        self.open_calls.append((device_id, width, height))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if device_id in self.errors:
            raise self.errors[device_id]
        if self.max_width is not None and width > self.max_width:
            raise exceptions.constraint_unsatisfiable(f"{width}x{height}")

        track = FakeTrack(device_id, width, height)
        self.opened.append(track)
        return track

    @property
    def live_tracks(self) -> List[FakeTrack]:
        return [track for track in self.opened if track.ready_state == "live"]


# ============================================================================
# SCRIPTED BACKEND
# ============================================================================

class FakeBackend(DecodeBackend):
    """
    Backend driven by the test instead of by frames.

    ``emit`` keeps working after ``stop()`` to imitate decode work that
    was already in flight.
    """

    kind = BackendKind.CONTINUOUS

    def __init__(
        self,
        configuration: ScanConfiguration,
        camera_source: Optional[CameraSource] = None,
        owns_stream: bool = False,
        start_error: Optional[Exception] = None
    ):
        super().__init__(configuration)
        self._camera_source = camera_source
        self._owns = owns_stream
        self.start_error = start_error
        self.start_calls = 0
        self.stop_calls = 0
        self.source = None
        self._raw_callback = None
        self._error_callback = None

    @property
    def owns_stream(self) -> bool:
        return self._owns

    async def start(self, source, on_raw_result, on_backend_error) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.source = source
        self._raw_callback = on_raw_result
        self._error_callback = on_backend_error
        if self._owns:
            self._stream = self._camera_source.acquire(None, self._configuration)
        else:
            self._stream = source

    def stop(self) -> None:
        self.stop_calls += 1
        if self._owns and self._stream is not None:
            self._camera_source.release(self._stream)
        self._stream = None

    def emit(self, text: str) -> None:
        self._raw_callback(text)

    def fail(self, error: ScanError) -> None:
        self._error_callback(error)

    def decode_frame(self, frame):
        return []

    async def _prepare(self, source):
        return source


# ============================================================================
# FIXTURES
# ============================================================================

class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the process environment."""
    return Settings(_env_file=None, require_secure_context=True, continuous_scanning=False)


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def camera_source(driver: FakeDriver) -> CameraSource:
    return CameraSource(driver)


@pytest.fixture
def desktop_profile() -> DeviceCapabilityProfile:
    return DeviceCapabilityProfile(
        is_mobile=False,
        os_family="linux",
        browser_family="chrome",
        is_secure_context=True,
        has_capture_api=True,
        hardware_concurrency_hint=4,
        screen_size_class="large",
        orientation="landscape",
    )


@pytest.fixture
def mobile_profile() -> DeviceCapabilityProfile:
    return DeviceCapabilityProfile(
        is_mobile=True,
        os_family="android",
        browser_family="chrome",
        is_secure_context=True,
        has_capture_api=True,
        hardware_concurrency_hint=8,
        screen_size_class="small",
        orientation="portrait",
    )


@pytest.fixture
def configuration(desktop_profile: DeviceCapabilityProfile) -> ScanConfiguration:
    return build_config(desktop_profile)


@pytest.fixture
def backends() -> List[FakeBackend]:
    """Every FakeBackend built by ``backend_factory``."""
    return []


@pytest.fixture
def backend_options() -> Dict[str, object]:
    """Knobs applied to the next FakeBackend, e.g. ``start_error``."""
    return {"start_error": None}


@pytest.fixture
def backend_factory(backends: List[FakeBackend], backend_options: Dict[str, object]) -> Callable[..., FakeBackend]:
    def factory(kind, configuration, camera_source, render_target=None, descriptor=None):
        backend = FakeBackend(
            configuration,
            camera_source,
            owns_stream=BackendKind(kind) is BackendKind.ELEMENT_BOUND,
            start_error=backend_options["start_error"],
        )
        backends.append(backend)
        return backend

    return factory


@pytest.fixture
def render_target() -> RenderTarget:
    return RenderTarget("reader")


@pytest.fixture(scope="function")
def client(camera_source: CameraSource) -> Generator[TestClient, None, None]:
    """Test client for an application wired to fake capture hardware."""
    application = Application(resources=ScannerResources(camera_source))

    with TestClient(application.app) as test_client:
        yield test_client
