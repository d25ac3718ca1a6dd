"""
==============================================================================
Camera Source Module
==============================================================================

Enumerates capture devices and owns the lifecycle of at most one active
capture stream.

Classes:
--------
- CameraDescriptor: One enumerated device
- CaptureTrack / OpenCVCaptureTrack: A single opened capture
- StreamHandle: The tracks of one acquired stream
- CaptureDriver / OpenCVCaptureDriver: Hardware seam
- CameraSource: Selection policy, acquisition and release

Failure Mapping:
----------------
- Device index not present          -> DeviceNotFound
- Device node not readable          -> PermissionDenied
- Device present but will not open  -> DeviceBusy
- Resolution below the minimum      -> ConstraintUnsatisfiable

==============================================================================
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np

from scan_engine.capability.config_builder import ScanConfiguration
from scan_engine.config import get_settings
from scan_engine.core import exceptions
from scan_engine.core.exceptions import ErrorKind, ScanError

from .discovery import device_node, discover_devices


# Module logger
logger = logging.getLogger(__name__)


# Label keywords of cameras pointing away from the user
REAR_KEYWORDS = (
    "back",
    "rear",
    "environment",
    "world",
    "arka",      # Turkish
    "arkada",
    "trás",      # Portuguese
    "traseira",
    "rück",      # German
    "arrière",   # French
    "trasera",   # Spanish
)

FRONT_KEYWORDS = ("front", "user", "facetime", "selfie", "ön")


@dataclass(frozen=True)
class CameraDescriptor:
    """Enumerated capture device."""

    device_id: str
    label: str
    facing_hint: str = "unknown"

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "label": self.label,
            "facing_hint": self.facing_hint,
        }


def facing_hint_for(label: str) -> str:
    """Guess where a camera points from its label."""
    lowered = label.lower()
    if any(keyword in lowered for keyword in REAR_KEYWORDS):
        return "environment"
    if any(keyword in lowered for keyword in FRONT_KEYWORDS):
        return "user"
    return "unknown"


# =============================================================================
# TRACKS AND STREAMS
# =============================================================================

class CaptureTrack(ABC):
    """One opened capture. ``stop()`` is idempotent."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        self._ended = False

    @property
    def ready_state(self) -> str:
        return "ended" if self._ended else "live"

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """Grab the next frame, or None when no frame is available."""

    def stop(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._close()

    @abstractmethod
    def _close(self) -> None:
        """Release the underlying hardware handle."""

    def settings(self) -> Dict[str, object]:
        return {"device_id": self.device_id}


class OpenCVCaptureTrack(CaptureTrack):
    """Track backed by ``cv2.VideoCapture``."""

    def __init__(self, device_id: str, capture: cv2.VideoCapture) -> None:
        super().__init__(device_id)
        self._capture = capture
        self._lock = threading.Lock()

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._ended:
                return None
            ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        return frame

    def _close(self) -> None:
        with self._lock:
            self._capture.release()

    def settings(self) -> Dict[str, object]:
        if self._ended:
            return {"device_id": self.device_id}
        return {
            "device_id": self.device_id,
            "width": int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            "height": int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
            "frame_rate": float(self._capture.get(cv2.CAP_PROP_FPS) or 0.0),
        }


class StreamHandle:
    """
    The tracks of one acquired capture stream.

    Attributes:
        device_id: Device the stream was opened on
        configuration: Configuration the stream was requested with
        tracks: Every track opened for the stream
    """

    def __init__(
        self,
        device_id: str,
        tracks: Sequence[CaptureTrack],
        configuration: Optional[ScanConfiguration] = None
    ) -> None:
        self.device_id = device_id
        self.tracks = list(tracks)
        self.configuration = configuration

    @property
    def active_tracks(self) -> List[CaptureTrack]:
        return [track for track in self.tracks if track.ready_state == "live"]

    @property
    def active(self) -> bool:
        return bool(self.active_tracks)

    def read(self) -> Optional[np.ndarray]:
        """Read a frame from the first live track."""
        for track in self.active_tracks:
            return track.read()
        return None

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()

    def __repr__(self) -> str:
        return f"StreamHandle(device_id={self.device_id!r}, active_tracks={len(self.active_tracks)})"


# =============================================================================
# DRIVERS
# =============================================================================

class CaptureDriver(ABC):
    """Hardware access used by CameraSource."""

    @abstractmethod
    def enumerate(self) -> List[CameraDescriptor]:
        """List devices. May raise; CameraSource fails soft."""

    @abstractmethod
    def open(
        self,
        device_id: str,
        width: int,
        height: int,
        frame_rate: int,
        min_width: int = 0,
        min_height: int = 0
    ) -> CaptureTrack:
        """
        Open one capture.

        Raises:
            ScanError: With a capture error kind
        """


class OpenCVCaptureDriver(CaptureDriver):
    """Capture driver using OpenCV, preferring V4L2 on Linux."""

    def __init__(self, max_devices: Optional[int] = None) -> None:
        self._max_devices = max_devices or get_settings().max_probe_devices

    def enumerate(self) -> List[CameraDescriptor]:
        return [
            CameraDescriptor(device_id=device_id, label=label, facing_hint=facing_hint_for(label))
            for device_id, label in discover_devices(self._max_devices)
        ]

    def open(
        self,
        device_id: str,
        width: int,
        height: int,
        frame_rate: int,
        min_width: int = 0,
        min_height: int = 0
    ) -> CaptureTrack:
        node = device_node(device_id)
        if node is not None:
            if not node.exists():
                raise exceptions.device_not_found(device_id)
            if not os.access(node, os.R_OK | os.W_OK):
                raise exceptions.permission_denied(device_id)

        capture = self._open_capture(device_id)
        if capture is None:
            if node is None and not device_id.isdigit():
                raise exceptions.device_not_found(device_id)
            raise exceptions.device_busy(device_id)

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        capture.set(cv2.CAP_PROP_FPS, frame_rate)

        actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if actual_width and actual_height and (actual_width < min_width or actual_height < min_height):
            capture.release()
            raise exceptions.constraint_unsatisfiable(
                f"{actual_width}x{actual_height} below {min_width}x{min_height}"
            )

        ok, _ = capture.read()
        if not ok:
            capture.release()
            raise exceptions.device_busy(device_id)

        logger.debug(f"Opened device {device_id} at {actual_width}x{actual_height}")
        return OpenCVCaptureTrack(device_id, capture)

    @staticmethod
    def _open_capture(device_id: str) -> Optional[cv2.VideoCapture]:
        source = int(device_id) if device_id.isdigit() else device_id

        backends = []
        v4l2 = getattr(cv2, "CAP_V4L2", None)
        if v4l2 is not None and os.name == "posix" and isinstance(source, int):
            backends.append(v4l2)
        backends.append(None)

        for backend in backends:
            capture = cv2.VideoCapture(source, backend) if backend is not None else cv2.VideoCapture(source)
            if capture.isOpened():
                return capture
            capture.release()

        return None


# =============================================================================
# CAMERA SOURCE
# =============================================================================

class CameraSource:
    """
    Device enumeration, selection and single-stream ownership.

    Example:
        >>> source = CameraSource()
        >>> devices = source.list_devices()
        >>> handle = source.acquire(source.select_default(devices), config)
        >>> source.release(handle)
    """

    def __init__(self, driver: Optional[CaptureDriver] = None) -> None:
        self._driver = driver or OpenCVCaptureDriver()
        self._active: Optional[StreamHandle] = None
        self._lock = threading.RLock()

    @property
    def active_stream(self) -> Optional[StreamHandle]:
        with self._lock:
            if self._active is not None and not self._active.active:
                self._active = None
            return self._active

    def current_device_id(self) -> Optional[str]:
        stream = self.active_stream
        return stream.device_id if stream else None

    def list_devices(self) -> List[CameraDescriptor]:
        """Enumerate capture devices. Returns an empty list on any failure."""
        try:
            devices = self._driver.enumerate()
        except Exception as e:
            logger.warning(f"Device enumeration unavailable: {e}")
            return []

        for index, device in enumerate(devices):
            logger.debug(f"Camera {index}: {device.label} ({device.device_id})")
        return devices

    @staticmethod
    def select_default(
        devices: Sequence[CameraDescriptor],
        facing_mode: str = "environment"
    ) -> Optional[CameraDescriptor]:
        """
        Pick the device to scan with.

        First rear-facing label match, else the last device (mobile platforms
        list the front camera first), else None for an empty list. With
        ``facing_mode="user"`` the first front-facing device wins instead,
        falling back to the first device.
        """
        if not devices:
            return None

        if facing_mode == "user":
            for device in devices:
                if device.facing_hint == "user":
                    return device
            return devices[0]

        for device in devices:
            lowered = device.label.lower()
            if any(keyword in lowered for keyword in REAR_KEYWORDS):
                return device

        return devices[-1]

    def acquire(
        self,
        descriptor: Optional[CameraDescriptor],
        configuration: ScanConfiguration
    ) -> StreamHandle:
        """
        Open a capture stream constrained by the configuration.

        Without a descriptor the environment-facing device is preferred.
        Any stream this source already holds is released first.

        Raises:
            ScanError: PermissionDenied, DeviceNotFound, DeviceBusy or
                ConstraintUnsatisfiable
        """
        with self._lock:
            if self._active is not None:
                logger.info("Releasing previous stream before acquiring a new one")
                self.release(self._active)

            if descriptor is None:
                descriptor = self.select_default(self.list_devices(), configuration.facing_mode)
            if descriptor is None:
                # Nothing enumerated; the platform default index may still open
                descriptor = CameraDescriptor(device_id="0", label="Default camera")

            track = self._open_with_fallback(descriptor.device_id, configuration)
            handle = StreamHandle(descriptor.device_id, [track], configuration)
            self._active = handle

        logger.info(f"📷 Stream acquired on {descriptor.label} ({descriptor.device_id})")
        return handle

    def _open_with_fallback(self, device_id: str, configuration: ScanConfiguration) -> CaptureTrack:
        width = configuration.resolution.width
        height = configuration.resolution.height
        rungs = [
            (rung_width, rung_height)
            for rung_width, rung_height in ((width.ideal, height.ideal), (width.min, height.min))
            if configuration.aspect_ratio_min <= rung_width / rung_height <= configuration.aspect_ratio_max
        ]
        if not rungs:
            raise exceptions.constraint_unsatisfiable(
                f"no resolution within aspect ratio {configuration.aspect_ratio_min}-{configuration.aspect_ratio_max}"
            )

        last_error: Optional[ScanError] = None
        for rung_width, rung_height in rungs:
            try:
                return self._driver.open(
                    device_id,
                    rung_width,
                    rung_height,
                    configuration.frame_rate.ideal,
                    min_width=width.min,
                    min_height=height.min,
                )
            except ScanError as e:
                if e.kind is not ErrorKind.CONSTRAINT_UNSATISFIABLE:
                    raise
                logger.debug(f"Capture at {rung_width}x{rung_height} rejected, trying next")
                last_error = e

        raise last_error or exceptions.constraint_unsatisfiable()

    def release(self, handle: Optional[StreamHandle]) -> None:
        """Stop every track of the handle. Safe on None or released handles."""
        if handle is None:
            return

        with self._lock:
            was_active = handle.active
            handle.stop()
            if self._active is handle:
                self._active = None

        if was_active:
            logger.info(f"Stream released on device {handle.device_id}")

    def release_all(self) -> None:
        with self._lock:
            self.release(self._active)
