"""
Render targets: the opaque surfaces a host hands to the engine.

The engine only ever calls ``present(frame)`` on a target and reads its
``element_id``; what the host does with frames (preview, MJPEG stream,
nothing) is its own business.
"""

from __future__ import annotations

import threading
from typing import Optional

import cv2
import numpy as np


class RenderTarget:
    """Host-provided surface. The base class discards frames."""

    def __init__(self, element_id: Optional[str] = None) -> None:
        self.element_id = element_id

    def present(self, frame: np.ndarray) -> None:
        pass

    def clear(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(element_id={self.element_id!r})"


class FrameBufferTarget(RenderTarget):
    """Keeps the most recent frame so a host can serve a preview."""

    def __init__(self, element_id: Optional[str] = None, jpeg_quality: int = 70) -> None:
        super().__init__(element_id)
        self._jpeg_quality = jpeg_quality
        self._frame: Optional[np.ndarray] = None
        self._frames_presented = 0
        self._lock = threading.Lock()

    @property
    def frames_presented(self) -> int:
        return self._frames_presented

    def present(self, frame: np.ndarray) -> None:
        with self._lock:
            self._frame = frame
            self._frames_presented += 1

    def clear(self) -> None:
        with self._lock:
            self._frame = None

    def latest_jpeg(self) -> Optional[bytes]:
        """Encode the latest frame as JPEG, or None before the first frame."""
        with self._lock:
            frame = self._frame
        if frame is None:
            return None

        ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self._jpeg_quality])
        if not ok:
            return None
        return buffer.tobytes()
