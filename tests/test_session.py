"""
==============================================================================
Scan Session Tests
==============================================================================

Tests for the session state machine: single-shot delivery, debouncing,
stale-result suppression, error reporting and resource release.

==============================================================================
"""

import asyncio
import threading
from typing import List

import pytest

from scan_engine.camera import CameraDescriptor
from scan_engine.capability import DeviceCapabilityProfile
from scan_engine.core import exceptions
from scan_engine.core.exceptions import ErrorKind, ScanError
from scan_engine.decoders import BackendKind
from scan_engine.scanning import ScanSession, SessionState


@pytest.fixture
def scans() -> List[str]:
    return []


@pytest.fixture
def errors() -> List[str]:
    return []


@pytest.fixture
def make_session(camera_source, render_target, scans, errors, desktop_profile, backend_factory, settings, clock):
    def factory(**overrides) -> ScanSession:
        options = dict(
            backend_kind=BackendKind.CONTINUOUS,
            profile=desktop_profile,
            settings=settings,
            backend_factory=backend_factory,
            clock=clock,
        )
        options.update(overrides)
        return ScanSession(camera_source, render_target, scans.append, errors.append, **options)

    return factory


class TestSingleShot:
    """A validated code is delivered once and the session stops itself."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, make_session, backends, driver, scans, errors):
        session = make_session()

        await session.start()
        assert session.state is SessionState.STREAMING
        assert session.active_camera.label == "Back Camera"
        assert len(driver.live_tracks) == 1

        backends[0].emit("wh967843eu2zmm")

        assert scans == ["WH967843EU2ZMM"]
        assert errors == []
        assert session.state is SessionState.STOPPED
        assert driver.live_tracks == []
        assert session.stream is None
        assert backends[0].stop_calls >= 1

    @pytest.mark.asyncio
    async def test_no_second_delivery(self, make_session, backends, scans):
        session = make_session()
        await session.start()

        backends[0].emit("WH967843EU2ZMM")
        backends[0].emit("WH111111ABCDEF")

        assert scans == ["WH967843EU2ZMM"]

    @pytest.mark.asyncio
    async def test_invalid_result_keeps_streaming(self, make_session, backends, scans, errors):
        session = make_session()
        await session.start()

        backends[0].emit("AB")

        assert scans == []
        assert errors == []
        assert session.state is SessionState.STREAMING

        backends[0].emit("12345678")
        assert scans == ["12345678"]

    @pytest.mark.asyncio
    async def test_records_last_scan(self, make_session, backends, clock):
        session = make_session()
        await session.start()

        backends[0].emit("12345678")

        assert session.last_scan_timestamp == clock.now
        assert session.last_result.canonical_code == "12345678"
        assert session.scan_count == 1


class TestContinuous:
    """Continuous sessions keep running and rely on the debouncer."""

    @pytest.mark.asyncio
    async def test_repeats_debounced(self, make_session, backends, scans, clock):
        session = make_session(continuous=True)
        await session.start()

        backends[0].emit("WH967843EU2ZMM")
        clock.advance(0.1)
        backends[0].emit("WH967843EU2ZMM")
        clock.advance(0.5)
        backends[0].emit("WH967843EU2ZMM")

        assert scans == ["WH967843EU2ZMM", "WH967843EU2ZMM"]
        assert session.state is SessionState.STREAMING

        await session.stop()

    @pytest.mark.asyncio
    async def test_different_codes_pass(self, make_session, backends, scans):
        session = make_session(continuous=True)
        await session.start()

        backends[0].emit("12345678")
        backends[0].emit("87654321")

        assert scans == ["12345678", "87654321"]
        await session.stop()


class TestNormalizationPolicy:
    """Confusion correction follows the backend kind."""

    @pytest.mark.asyncio
    async def test_patch_locator_corrects(self, make_session, backends, scans):
        session = make_session(backend_kind=BackendKind.PATCH_LOCATOR)
        await session.start()

        backends[0].emit("WH9678O3EU2ZMM")

        assert scans == ["WH967803EU2ZMM"]

    @pytest.mark.asyncio
    async def test_continuous_does_not_correct(self, make_session, backends, scans):
        session = make_session()
        await session.start()

        backends[0].emit("WH9678O3EU2ZMM")

        assert scans == ["WH9678O3EU2ZMM"]


class TestStop:
    """Stop releases everything and silences callbacks."""

    @pytest.mark.asyncio
    async def test_in_flight_result_dropped(self, make_session, backends, driver, scans):
        session = make_session()
        await session.start()

        await session.stop()
        backends[0].emit("WH967843EU2ZMM")

        assert scans == []
        assert session.state is SessionState.STOPPED
        assert driver.live_tracks == []

    @pytest.mark.asyncio
    async def test_in_flight_error_dropped(self, make_session, backends, errors):
        session = make_session()
        await session.start()

        await session.stop()
        backends[0].fail(exceptions.device_not_found("1"))

        assert errors == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_session, driver):
        session = make_session()

        await session.stop()
        await session.start()
        await session.stop()
        await session.stop()

        assert session.state is SessionState.STOPPED
        assert driver.opened[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, make_session, backends, driver, scans):
        session = make_session()
        await session.start()
        await session.stop()

        await session.start()
        assert session.state is SessionState.STREAMING
        assert len(backends) == 2
        assert len(driver.live_tracks) == 1

        backends[0].emit("WH967843EU2ZMM")
        backends[1].emit("12345678")
        assert scans == ["12345678"]

    @pytest.mark.asyncio
    async def test_start_while_streaming_rejected(self, make_session):
        session = make_session()
        await session.start()

        with pytest.raises(ScanError) as exc_info:
            await session.start()

        assert exc_info.value.kind is ErrorKind.SCANNER_BUSY
        await session.stop()


class TestErrors:
    """Failures end in STOPPED with one plain-message callback."""

    @pytest.mark.asyncio
    async def test_permission_denied(self, make_session, driver, scans, errors):
        driver.errors["1"] = exceptions.permission_denied("1")
        session = make_session()

        await session.start()

        assert len(errors) == 1
        assert "permission" in errors[0].lower()
        assert scans == []
        assert session.state is SessionState.STOPPED
        assert session.last_error.kind is ErrorKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_ios_permission_message(self, make_session, driver, errors):
        driver.errors["1"] = exceptions.permission_denied("1")
        profile = DeviceCapabilityProfile(is_mobile=True, os_family="ios", browser_family="safari", is_secure_context=True)
        session = make_session(profile=profile)

        await session.start()

        assert "Safari settings" in errors[0]

    @pytest.mark.asyncio
    async def test_insecure_context(self, make_session, driver, errors, desktop_profile):
        session = make_session(profile=desktop_profile.model_copy(update={"is_secure_context": False}))

        await session.start()

        assert session.last_error.kind is ErrorKind.INSECURE_CONTEXT
        assert driver.open_calls == []
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_no_capture_api(self, make_session, driver, desktop_profile):
        session = make_session(profile=desktop_profile.model_copy(update={"has_capture_api": False}))

        await session.start()

        assert session.last_error.kind is ErrorKind.INSECURE_CONTEXT
        assert driver.open_calls == []

    @pytest.mark.asyncio
    async def test_backend_init_failure_releases_stream(self, make_session, driver, errors, backend_options):
        backend_options["start_error"] = exceptions.backend_init_failure("continuous", "no decoder")
        session = make_session()

        await session.start()

        assert session.last_error.kind is ErrorKind.BACKEND_INIT_FAILURE
        assert driver.live_tracks == []
        assert len(errors) == 1
        assert session.state is SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_stream_lost_while_streaming(self, make_session, backends, driver, errors, scans):
        session = make_session()
        await session.start()

        backends[0].fail(exceptions.device_not_found("1"))

        assert session.last_error.kind is ErrorKind.DEVICE_NOT_FOUND
        assert session.state is SessionState.STOPPED
        assert driver.live_tracks == []
        assert len(errors) == 1

        backends[0].emit("WH967843EU2ZMM")
        assert scans == []


class TestElementBound:
    """Backends that own their capture."""

    @pytest.mark.asyncio
    async def test_backend_stream_released_on_match(self, make_session, backends, driver, scans):
        session = make_session(backend_kind=BackendKind.ELEMENT_BOUND)

        await session.start()
        assert session.state is SessionState.STREAMING
        assert session.stream is backends[0].stream
        assert len(driver.live_tracks) == 1

        backends[0].emit("WH967843EU2ZMM")

        assert scans == ["WH967843EU2ZMM"]
        assert driver.live_tracks == []


class TestForceScan:
    """Waiting for the next code with a timeout."""

    @pytest.mark.asyncio
    async def test_returns_next_code(self, make_session, backends, scans):
        session = make_session()
        await session.start()

        waiter = asyncio.create_task(session.force_scan(timeout=1.0))
        await asyncio.sleep(0)
        backends[0].emit("12345678")

        assert await waiter == "12345678"
        assert scans == []
        assert session.state is SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_times_out(self, make_session):
        session = make_session()
        await session.start()

        assert await session.force_scan(timeout=0.05) is None
        assert session.state is SessionState.STREAMING
        await session.stop()

    @pytest.mark.asyncio
    async def test_not_streaming(self, make_session):
        session = make_session()
        assert await session.force_scan(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_stop_resolves_waiter(self, make_session):
        session = make_session()
        await session.start()

        waiter = asyncio.create_task(session.force_scan(timeout=5.0))
        await asyncio.sleep(0)
        await session.stop()

        assert await waiter is None


class TestSwitchCamera:
    """Switching devices is stop then start."""

    @pytest.mark.asyncio
    async def test_switch(self, make_session, driver, backends):
        session = make_session()
        await session.start()

        await session.switch_camera(CameraDescriptor("0", "Front Camera"), grace=0)

        assert session.state is SessionState.STREAMING
        assert session.active_camera.device_id == "0"
        assert [track.device_id for track in driver.live_tracks] == ["0"]
        assert len(backends) == 2
        await session.stop()


class TestCallbacks:
    """Hosts may pass coroutine callbacks."""

    @pytest.mark.asyncio
    async def test_async_on_scan(self, camera_source, render_target, desktop_profile, backend_factory, backends, settings):
        received: List[str] = []

        async def on_scan(code: str) -> None:
            received.append(code)

        session = ScanSession(
            camera_source,
            render_target,
            on_scan,
            lambda message: None,
            backend_kind=BackendKind.CONTINUOUS,
            profile=desktop_profile,
            settings=settings,
            backend_factory=backend_factory,
        )
        await session.start()

        backends[0].emit("12345678")
        await asyncio.sleep(0)

        assert received == ["12345678"]

    @pytest.mark.asyncio
    async def test_raising_on_scan_still_releases(
        self, camera_source, render_target, desktop_profile, backend_factory, backends, settings, driver, caplog
    ):
        def on_scan(code: str) -> None:
            raise ValueError("host rejected code")

        session = ScanSession(
            camera_source,
            render_target,
            on_scan,
            lambda message: None,
            backend_kind=BackendKind.CONTINUOUS,
            profile=desktop_profile,
            settings=settings,
            backend_factory=backend_factory,
        )
        await session.start()

        backends[0].emit("WH967843EU2ZMM")

        assert session.state is SessionState.STOPPED
        assert session.stream is None
        assert driver.live_tracks == []
        assert "host rejected code" in caplog.text

    @pytest.mark.asyncio
    async def test_raising_on_error_still_releases(
        self, camera_source, render_target, desktop_profile, backend_factory, backends, settings, driver
    ):
        def on_error(message: str) -> None:
            raise RuntimeError("host crashed")

        session = ScanSession(
            camera_source,
            render_target,
            lambda code: None,
            on_error,
            backend_kind=BackendKind.CONTINUOUS,
            profile=desktop_profile,
            settings=settings,
            backend_factory=backend_factory,
        )
        await session.start()

        backends[0].fail(exceptions.device_not_found("1"))

        assert session.state is SessionState.STOPPED
        assert session.last_error.kind is ErrorKind.DEVICE_NOT_FOUND
        assert driver.live_tracks == []

    @pytest.mark.asyncio
    async def test_async_callback_failure_logged(
        self, camera_source, render_target, desktop_profile, backend_factory, backends, settings, caplog
    ):
        async def on_scan(code: str) -> None:
            raise ConnectionError("host socket closed")

        session = ScanSession(
            camera_source,
            render_target,
            on_scan,
            lambda message: None,
            backend_kind=BackendKind.CONTINUOUS,
            profile=desktop_profile,
            settings=settings,
            backend_factory=backend_factory,
        )
        await session.start()

        backends[0].emit("12345678")
        assert session.info()["pending_callbacks"] == 1
        for _ in range(3):
            await asyncio.sleep(0)

        assert session.info()["pending_callbacks"] == 0
        assert "host socket closed" in caplog.text
        assert session.state is SessionState.STOPPED


class TestStartRace:
    """A start overtaken by stop() never touches the stream of the next run."""

    @pytest.mark.asyncio
    async def test_stale_start_releases_only_its_own_stream(self, make_session, driver, backends):
        driver.gate = threading.Event()
        session = make_session()

        first = asyncio.create_task(session.start())
        for _ in range(200):
            if driver.open_calls:
                break
            await asyncio.sleep(0.01)
        assert driver.open_calls

        await session.stop()
        second = asyncio.create_task(session.start())
        await asyncio.sleep(0)

        driver.gate.set()
        await asyncio.gather(first, second)

        assert session.state is SessionState.STREAMING
        assert session.stream is not None
        assert session.stream.active
        assert len(driver.live_tracks) == 1
        assert len(driver.opened) == 2
        assert driver.opened[0].ready_state == "ended"

        await session.stop()
        assert driver.live_tracks == []


@pytest.mark.asyncio
async def test_info_snapshot(make_session):
    session = make_session()
    await session.start()

    info = session.info()

    assert info["state"] == "streaming"
    assert info["backend"] == "continuous"
    assert info["stream_active"] is True
    assert info["active_camera"]["device_id"] == "1"
    assert info["debounce_interval"] == 0.5
    await session.stop()
