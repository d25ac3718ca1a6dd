"""
==============================================================================
Scan Session Module
==============================================================================

Orchestrates a CameraSource and one DecodeBackend behind a single
lifecycle state machine. This is the only object a host talks to for
camera-based scanning.

States:
-------
    IDLE -> REQUESTING_PERMISSION -> STREAMING -> (MATCHED | ERROR) -> STOPPED

- ``start()`` is valid from IDLE or STOPPED
- ``stop()`` is valid from any state and may be called repeatedly
- A validated result moves to MATCHED, calls ``on_scan`` and stops the
  session unless it was created for continuous scanning
- Capture and backend failures move to ERROR, release everything, call
  ``on_error`` with a plain message and end in STOPPED
- Invalid results keep the session STREAMING

Stale Callback Suppression:
---------------------------
Every run of the session has a generation number. Backend callbacks are
bound to the generation they were started with; ``stop()`` advances the
generation, so results from decode work still in flight are dropped.

==============================================================================
"""

from __future__ import annotations

import asyncio
import enum
import functools
import inspect
import logging
import time
from typing import Any, Callable, List, Optional, Set

from scan_engine.capability.config_builder import ScanConfiguration, build_config
from scan_engine.capability.profile import DeviceCapabilityProfile, detect, enhance_error_message
from scan_engine.camera.source import CameraDescriptor, CameraSource, StreamHandle
from scan_engine.config import Settings, get_settings
from scan_engine.core import exceptions
from scan_engine.core.exceptions import ScanError
from scan_engine.decoders import (
    BackendKind,
    DecodeBackend,
    RenderTarget,
    backend_profile,
    create_backend,
)

from .debouncer import ScanDebouncer
from .normalizer import NormalizerOptions, ResultNormalizer, ScanResult


# Module logger
logger = logging.getLogger(__name__)


ScanCallback = Callable[[str], Any]
ErrorCallback = Callable[[str], Any]
BackendFactory = Callable[..., DecodeBackend]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    STREAMING = "streaming"
    MATCHED = "matched"
    ERROR = "error"
    STOPPED = "stopped"


class ScanSession:
    """
    One scanning UI's camera session.

    Attributes:
        state: Current lifecycle state
        active_camera: Device being scanned with, while streaming
        active_backend: Decode backend of the current run
        last_scan_timestamp: Monotonic time of the last validated result
        last_error: Error that ended the last run, if any

    Example:
        >>> session = ScanSession(CameraSource(), RenderTarget("reader"), print, print)
        >>> await session.start()
        >>> await session.stop()
    """

    def __init__(
        self,
        camera_source: CameraSource,
        render_target: Optional[RenderTarget],
        on_scan: ScanCallback,
        on_error: ErrorCallback,
        *,
        backend_kind: Optional[BackendKind] = None,
        descriptor: Optional[CameraDescriptor] = None,
        profile: Optional[DeviceCapabilityProfile] = None,
        configuration: Optional[ScanConfiguration] = None,
        normalizer: Optional[ResultNormalizer] = None,
        continuous: Optional[bool] = None,
        settings: Optional[Settings] = None,
        backend_factory: BackendFactory = create_backend,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._settings = settings or get_settings()
        self._camera_source = camera_source
        self._render_target = render_target or RenderTarget()
        self._on_scan = on_scan
        self._on_error = on_error

        self._backend_kind = BackendKind(backend_kind or self._settings.default_backend)
        self._descriptor = descriptor
        self._profile = profile or detect()
        self._configuration = configuration or build_config(self._profile)
        self._normalizer = normalizer or ResultNormalizer()
        self._continuous = self._settings.continuous_scanning if continuous is None else continuous
        self._backend_factory = backend_factory
        self._clock = clock

        policy = backend_profile(self._backend_kind, self._settings)
        self._normalizer_options = NormalizerOptions(
            apply_confusion_correction=policy.apply_confusion_correction,
            enforce_length_bounds=policy.enforce_length_bounds,
        )
        self._debouncer = ScanDebouncer(policy.debounce_seconds, clock=clock)

        self._state = SessionState.IDLE
        self._generation = 0
        self._backend: Optional[DecodeBackend] = None
        self._stream: Optional[StreamHandle] = None
        self._active_camera: Optional[CameraDescriptor] = None
        self._force_waiters: List[asyncio.Future] = []
        self._callback_tasks: Set[asyncio.Task] = set()
        self._acquire_lock = asyncio.Lock()
        self.last_scan_timestamp: Optional[float] = None
        self.last_result: Optional[ScanResult] = None
        self.last_error: Optional[ScanError] = None
        self.scan_count = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active_camera(self) -> Optional[CameraDescriptor]:
        return self._active_camera

    @property
    def active_backend(self) -> Optional[DecodeBackend]:
        return self._backend

    @property
    def stream(self) -> Optional[StreamHandle]:
        return self._stream

    @property
    def backend_kind(self) -> BackendKind:
        return self._backend_kind

    @property
    def profile(self) -> DeviceCapabilityProfile:
        return self._profile

    @property
    def configuration(self) -> ScanConfiguration:
        return self._configuration

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """
        Acquire the camera and start the backend.

        Failures are reported through ``on_error``; this coroutine only
        raises for an illegal transition.

        Raises:
            ScanError: ScannerBusy when not IDLE or STOPPED
        """
        if self._state not in (SessionState.IDLE, SessionState.STOPPED):
            raise exceptions.scanner_busy(self._state.value)

        generation = self._advance_generation()
        self._debouncer.reset()
        self.last_error = None
        self._set_state(SessionState.REQUESTING_PERMISSION)

        try:
            self._check_context()
            backend = self._backend_factory(
                self._backend_kind,
                self._configuration,
                self._camera_source,
                self._render_target,
                self._descriptor,
            )
            self._backend = backend
            on_raw = functools.partial(self._handle_raw_result, generation)
            on_backend_error = functools.partial(self._handle_backend_error, generation)

            if backend.owns_stream:
                await backend.start(self._render_target, on_raw, on_backend_error)
                stream = backend.stream
            else:
                # One acquisition at a time, so a run that was stopped while
                # waiting cannot release the stream of the run that replaced it
                async with self._acquire_lock:
                    # No timeout: permission prompts wait on the user
                    stream = await asyncio.to_thread(
                        self._camera_source.acquire,
                        self._descriptor,
                        self._configuration,
                    )
                    if not self._is_current(generation):
                        self._camera_source.release(stream)
                        return
                self._stream = stream
                await backend.start(stream, on_raw, on_backend_error)

        except ScanError as e:
            self._fail(generation, e)
            return
        except Exception as e:
            logger.exception("Unexpected error starting scan session")
            self._fail(generation, exceptions.backend_init_failure(self._backend_kind.value, str(e)))
            return

        if not self._is_current(generation):
            # stop() was called while starting; only this run's resources
            backend.stop()
            if not backend.owns_stream:
                self._camera_source.release(stream)
            return

        self._stream = stream
        self._active_camera = self._descriptor_for(stream)
        self._set_state(SessionState.STREAMING)

    async def stop(self) -> None:
        """Release the backend and camera. Safe from any state, re-entrant."""
        self._stop_now()

    async def switch_camera(self, descriptor: CameraDescriptor, grace: Optional[float] = None) -> None:
        """Stop, wait for the hardware to settle, then start on another device."""
        if grace is None:
            grace = self._settings.camera_switch_grace_seconds

        logger.info(f"🔄 Switching camera to {descriptor.label} ({descriptor.device_id})")
        await self.stop()
        if grace > 0:
            await asyncio.sleep(grace)
        self._descriptor = descriptor
        await self.start()

    async def force_scan(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Wait for the next validated result.

        Returns:
            The canonical code, or None when nothing was found in time or
            the session stopped
        """
        if self._state is not SessionState.STREAMING:
            logger.debug("Force scan requested while not streaming")
            return None

        if timeout is None:
            timeout = self._settings.force_scan_timeout_seconds

        waiter = asyncio.get_running_loop().create_future()
        self._force_waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            logger.info("Force scan timed out without a code")
            return None
        finally:
            if waiter in self._force_waiters:
                self._force_waiters.remove(waiter)

    def info(self) -> dict:
        """Diagnostic snapshot of the session."""
        return {
            "state": self._state.value,
            "backend": self._backend_kind.value,
            "continuous": self._continuous,
            "active_camera": self._active_camera.to_dict() if self._active_camera else None,
            "stream_active": bool(self._stream and self._stream.active),
            "scan_count": self.scan_count,
            "last_scan_timestamp": self.last_scan_timestamp,
            "debounce_interval": self._debouncer.interval,
            "last_error": self.last_error.code if self.last_error else None,
            "decoder": self._backend.info() if self._backend else None,
            "pending_callbacks": len(self._callback_tasks),
        }

    # =========================================================================
    # BACKEND CALLBACKS
    # =========================================================================

    def _handle_raw_result(self, generation: int, raw_text: str) -> None:
        if not self._is_current(generation) or self._state is not SessionState.STREAMING:
            return

        if not self._debouncer.accept(raw_text):
            logger.debug(f"Debounced repeat: {raw_text!r}")
            return

        result = self._normalizer.normalize(raw_text, self._normalizer_options)
        if not result.is_valid:
            logger.debug(f"Rejected {raw_text!r}: {result.rejection_reason.value}")
            return

        code = result.canonical_code
        self.last_result = result
        self.last_scan_timestamp = self._clock()
        self.scan_count += 1
        logger.info(f"✅ Scanned {code} ({result.format.value})")

        waiters = [waiter for waiter in self._force_waiters if not waiter.done()]
        if waiters:
            for waiter in waiters:
                waiter.set_result(code)
        elif self._continuous:
            self._emit(self._on_scan, code)
            return
        else:
            self._set_state(SessionState.MATCHED)
            self._emit(self._on_scan, code)

        if not self._continuous:
            self._stop_now()

    def _handle_backend_error(self, generation: int, error: ScanError) -> None:
        self._fail(generation, error)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _check_context(self) -> None:
        if not self._profile.has_capture_api:
            raise exceptions.insecure_context()
        if self._settings.require_secure_context and not self._profile.is_secure_context:
            raise exceptions.insecure_context()

    def _fail(self, generation: int, error: ScanError) -> None:
        if not self._is_current(generation):
            return

        self.last_error = error
        self._set_state(SessionState.ERROR)
        logger.error(f"❌ Scan session failed ({error.code}): {error.message}")
        self._teardown()
        self._emit(self._on_error, enhance_error_message(error, self._profile))
        self._stop_now()

    def _stop_now(self) -> None:
        self._advance_generation()
        self._teardown()

        for waiter in self._force_waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._force_waiters.clear()
        self._debouncer.reset()

        if self._state is not SessionState.STOPPED:
            self._set_state(SessionState.STOPPED)

    def _teardown(self) -> None:
        backend = self._backend
        if backend is not None:
            backend.stop()

        stream = self._stream
        self._stream = None
        self._active_camera = None
        self._camera_source.release(stream)

    def _descriptor_for(self, stream: Optional[StreamHandle]) -> Optional[CameraDescriptor]:
        if stream is None:
            return self._descriptor
        if self._descriptor is not None and self._descriptor.device_id == stream.device_id:
            return self._descriptor
        for device in self._camera_source.list_devices():
            if device.device_id == stream.device_id:
                return device
        return CameraDescriptor(device_id=stream.device_id, label=f"Camera {stream.device_id}")

    def _advance_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(f"Session {self._state.value} -> {state.value}")
            self._state = state

    def _emit(self, callback: Callable[[str], Any], value: str) -> None:
        """Call a host callback; its failures are logged and never stop cleanup."""
        try:
            outcome = callback(value)
        except Exception as e:
            logger.exception(f"Host callback failed: {e}")
            return

        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_finished)

    def _callback_finished(self, task: asyncio.Future) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Host callback failed: {error}", exc_info=error)
