"""
==============================================================================
Decode Backend Base Module
==============================================================================

Common contract for the interchangeable decode strategies.

Contract:
---------
- ``await start(source, on_raw_result, on_backend_error)`` begins sampling
- ``stop()`` is idempotent and safe from any state
- Raw text is delivered unmodified; normalization happens downstream
- Nothing is delivered after ``stop()``, including results of decode work
  that was already running when ``stop()`` was called

Frame reads and decodes run on a thread pool sized by the configuration's
worker count. Results are delivered on the event loop in the order frames
were read, and every delivery is checked against the backend's generation
counter, which ``stop()`` advances.

==============================================================================
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional

import numpy as np

from scan_engine.capability.config_builder import ScanConfiguration
from scan_engine.camera.source import StreamHandle
from scan_engine.config import Settings, get_settings
from scan_engine.core import exceptions
from scan_engine.core.exceptions import ScanError

from .render import RenderTarget


# Module logger
logger = logging.getLogger(__name__)


RawResultCallback = Callable[[str], None]
BackendErrorCallback = Callable[[ScanError], None]

# Consecutive empty reads before the stream is considered lost
MAX_MISSED_READS = 30
MISSED_READ_BACKOFF = 0.05


class BackendKind(str, enum.Enum):
    CONTINUOUS = "continuous"
    PATCH_LOCATOR = "patch_locator"
    ELEMENT_BOUND = "element_bound"


@dataclass(frozen=True)
class BackendProfile:
    """Per-backend policy applied by the session around raw results."""

    debounce_seconds: float
    apply_confusion_correction: bool
    enforce_length_bounds: bool


def backend_profile(kind: BackendKind, settings: Optional[Settings] = None) -> BackendProfile:
    """
    Debounce and normalization policy for a backend kind.

    Patch-locator decoding is the noisiest and scans most aggressively, so it
    gets the longest debounce, confusion correction and length bounding.
    """
    settings = settings or get_settings()

    if kind is BackendKind.PATCH_LOCATOR:
        return BackendProfile(
            debounce_seconds=settings.debounce_patch_ms / 1000.0,
            apply_confusion_correction=True,
            enforce_length_bounds=True,
        )

    if kind is BackendKind.ELEMENT_BOUND:
        return BackendProfile(
            debounce_seconds=settings.debounce_element_ms / 1000.0,
            apply_confusion_correction=False,
            enforce_length_bounds=False,
        )

    return BackendProfile(
        debounce_seconds=settings.debounce_continuous_ms / 1000.0,
        apply_confusion_correction=False,
        enforce_length_bounds=False,
    )


class DecodeBackend(ABC):
    """
    Base class for decode strategies.

    Subclasses implement ``decode_frame`` and ``_prepare``; the sampling
    loop, stale-result suppression and shutdown live here.
    """

    kind: BackendKind

    def __init__(
        self,
        configuration: ScanConfiguration,
        render_target: Optional[RenderTarget] = None
    ) -> None:
        self._configuration = configuration
        self._render_target = render_target or RenderTarget()
        self._generation = 0
        self._generation_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stream: Optional[StreamHandle] = None
        self._on_raw: Optional[RawResultCallback] = None
        self._on_error: Optional[BackendErrorCallback] = None
        self._frames_read = 0
        self._frames_decoded = 0

    # =========================================================================
    # PUBLIC CONTRACT
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stream(self) -> Optional[StreamHandle]:
        """Stream the backend is reading from, if any."""
        return self._stream

    @property
    def owns_stream(self) -> bool:
        """True when the backend acquired its stream itself."""
        return False

    @property
    def configuration(self) -> ScanConfiguration:
        return self._configuration

    async def start(
        self,
        source: Any,
        on_raw_result: RawResultCallback,
        on_backend_error: BackendErrorCallback
    ) -> None:
        """
        Bind to a stream (or render target) and begin sampling.

        Raises:
            ScanError: If the backend cannot initialize against the source
        """
        if self.is_running:
            self.stop()

        generation = self._next_generation()
        self._on_raw = on_raw_result
        self._on_error = on_backend_error
        self._executor = ThreadPoolExecutor(
            max_workers=self._configuration.worker_count + 1,
            thread_name_prefix=self.kind.value,
        )

        try:
            self._stream = await self._prepare(source)
        except ScanError:
            self._shutdown_executor()
            raise
        except Exception as e:
            self._shutdown_executor()
            raise exceptions.backend_init_failure(self.kind.value, str(e)) from e

        if generation != self._generation:
            # stop() raced with initialization
            self._release_owned_stream()
            self._shutdown_executor()
            return

        self._task = asyncio.create_task(self._run(generation))
        logger.info(f"▶️ {self.kind.value} decoder started (workers={self._configuration.worker_count})")

    def stop(self) -> None:
        """Stop sampling. Idempotent; in-flight results are dropped."""
        self._next_generation()

        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

        self._release_owned_stream()
        self._shutdown_executor()
        self._render_target.clear()

        if task is not None:
            logger.info(f"⏹️ {self.kind.value} decoder stopped")

    @abstractmethod
    def decode_frame(self, frame: np.ndarray) -> List[str]:
        """Decode one frame into raw texts. Runs on a worker thread."""

    def info(self) -> dict:
        return {
            "kind": self.kind.value,
            "running": self.is_running,
            "frames_read": self._frames_read,
            "frames_decoded": self._frames_decoded,
            "stream_active": bool(self._stream and self._stream.active),
        }

    # =========================================================================
    # SUBCLASS HOOKS
    # =========================================================================

    @abstractmethod
    async def _prepare(self, source: Any) -> StreamHandle:
        """Validate the source and return the stream to read from."""

    def _frame_interval(self) -> float:
        """Minimum seconds between sampled frames; 0 for camera rate."""
        return 0.0

    def _release_owned_stream(self) -> None:
        pass

    # =========================================================================
    # SAMPLING LOOP
    # =========================================================================

    def _next_generation(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _run(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        executor = self._executor
        stream = self._stream
        pending: Deque[asyncio.Future] = deque()
        missed = 0

        try:
            while self._is_current(generation):
                started = time.monotonic()
                frame = await loop.run_in_executor(executor, stream.read)
                if not self._is_current(generation):
                    break

                if frame is None:
                    missed += 1
                    if missed >= MAX_MISSED_READS:
                        self._report_error(
                            generation,
                            exceptions.device_not_found(stream.device_id),
                        )
                        break
                    await asyncio.sleep(MISSED_READ_BACKOFF)
                    continue

                missed = 0
                self._frames_read += 1
                self._render_target.present(frame)
                pending.append(loop.run_in_executor(executor, self._safe_decode, frame))

                while pending and (len(pending) >= self._configuration.worker_count or pending[0].done()):
                    texts = await pending.popleft()
                    if texts is None:
                        continue
                    self._frames_decoded += 1
                    self._deliver(generation, texts)

                await self._pace(started)

        except asyncio.CancelledError:
            pass
        except RuntimeError as e:
            # Executor shut down underneath us by stop()
            if self._is_current(generation):
                self._report_error(generation, exceptions.backend_init_failure(self.kind.value, str(e)))
        finally:
            for future in pending:
                future.cancel()

    async def _pace(self, started: float) -> None:
        interval = self._frame_interval()
        remaining = interval - (time.monotonic() - started)
        await asyncio.sleep(max(remaining, 0.0))

    def _safe_decode(self, frame: np.ndarray) -> Optional[List[str]]:
        """Worker-thread decode; None when the decoder raised."""
        try:
            texts = self.decode_frame(frame)
        except Exception as e:
            logger.error(f"Decode error: {e}")
            return None
        if not texts:
            logger.debug("No code in frame")
        return texts

    def _deliver(self, generation: int, texts: List[str]) -> None:
        for text in texts:
            if not self._is_current(generation):
                logger.debug("Dropping stale decode result")
                return
            if self._on_raw is not None:
                self._on_raw(text)

    def _report_error(self, generation: int, error: ScanError) -> None:
        if not self._is_current(generation):
            return
        logger.error(f"{self.kind.value} decoder error: {error.message}")
        if self._on_error is not None:
            self._on_error(error)

    def _shutdown_executor(self) -> None:
        executor = self._executor
        self._executor = None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
