"""
==============================================================================
Patch Locator Decoder
==============================================================================

Localizes likely barcode regions before decoding, trading CPU for
tolerance to partially framed or skewed codes.

Pipeline (per sampled frame):
-----------------------------
1. Grayscale, optionally half-sampled
2. Scharr gradient (x minus y) to highlight vertical bar edges
3. Blur + Otsu threshold
4. Morphological close with a kernel sized by locator granularity
5. External contours -> candidate patches, largest first
6. Each patch decoded as-is, then deskewed; the full frame last

Sampling runs at ``frequency`` frames per second, independent of the
camera frame rate, to bound CPU cost on constrained devices.

==============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import cv2
import numpy as np

from scan_engine.capability.config_builder import ScanConfiguration
from scan_engine.camera.source import StreamHandle
from scan_engine.core import exceptions

from .base import BackendKind, DecodeBackend
from .render import RenderTarget
from .symbology import decode_pyzbar, pyzbar_symbols, to_gray


logger = logging.getLogger(__name__)


Box = Tuple[int, int, int, int]


@dataclass(frozen=True)
class LocatorParams:
    """Morphology kernel, minimum patch area and patch count limit."""

    kernel: Tuple[int, int]
    min_area: int
    max_patches: int


GRANULARITY = {
    "small": LocatorParams(kernel=(15, 5), min_area=400, max_patches=2),
    "medium": LocatorParams(kernel=(21, 7), min_area=900, max_patches=4),
    "large": LocatorParams(kernel=(27, 9), min_area=1600, max_patches=6),
}

PATCH_PADDING = 0.1
MIN_FREQUENCY = 1
MAX_FREQUENCY = 60


def locate_patches(gray: np.ndarray, granularity: str = "medium", half_sample: bool = True) -> List[Tuple[Box, float]]:
    """
    Find candidate barcode regions.

    Args:
        gray: Single-channel image
        granularity: small, medium or large
        half_sample: Work on a half-resolution copy

    Returns:
        ``((x, y, w, h), angle)`` pairs in full-resolution coordinates,
        largest region first
    """
    params = GRANULARITY.get(granularity, GRANULARITY["medium"])
    scale = 1
    work = gray
    if half_sample and min(gray.shape[:2]) >= 64:
        work = cv2.pyrDown(gray)
        scale = 2

    grad_x = cv2.Sobel(work, ddepth=cv2.CV_32F, dx=1, dy=0, ksize=-1)
    grad_y = cv2.Sobel(work, ddepth=cv2.CV_32F, dx=0, dy=1, ksize=-1)
    gradient = cv2.convertScaleAbs(cv2.subtract(grad_x, grad_y))

    blurred = cv2.blur(gradient, (9, 9))
    _, thresh = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, params.kernel)
    closed = cv2.morphologyEx(thresh, cv2.MORPH_CLOSE, kernel)
    closed = cv2.erode(closed, None, iterations=4)
    closed = cv2.dilate(closed, None, iterations=4)

    contours, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    contours = sorted(contours, key=cv2.contourArea, reverse=True)

    height, width = gray.shape[:2]
    patches = []
    for contour in contours[:params.max_patches]:
        if cv2.contourArea(contour) * scale * scale < params.min_area:
            break
        (_, _), (rect_w, rect_h), angle = cv2.minAreaRect(contour)
        if rect_w < rect_h:
            angle -= 90
        x, y, w, h = cv2.boundingRect(contour)
        patches.append((_pad_box(x * scale, y * scale, w * scale, h * scale, width, height), angle))

    return patches


def _pad_box(x: int, y: int, w: int, h: int, max_w: int, max_h: int) -> Box:
    pad_x = int(w * PATCH_PADDING)
    pad_y = int(h * PATCH_PADDING)
    left = max(0, x - pad_x)
    top = max(0, y - pad_y)
    right = min(max_w, x + w + pad_x)
    bottom = min(max_h, y + h + pad_y)
    return left, top, right - left, bottom - top


def deskew(patch: np.ndarray, angle: float) -> np.ndarray:
    """Rotate a patch so its bars are vertical."""
    if abs(angle) < 2 or patch.size == 0:
        return patch
    h, w = patch.shape[:2]
    matrix = cv2.getRotationMatrix2D((w / 2, h / 2), angle, 1.0)
    return cv2.warpAffine(patch, matrix, (w, h), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE)


class PatchLocatorDecoder(DecodeBackend):
    """
    Locate-then-decode strategy with a tunable sampling frequency.

    Attributes:
        frequency: Frames processed per second
    """

    kind = BackendKind.PATCH_LOCATOR

    def __init__(
        self,
        configuration: ScanConfiguration,
        render_target: Optional[RenderTarget] = None,
        frequency: Optional[int] = None
    ) -> None:
        super().__init__(configuration, render_target)
        self._symbols = pyzbar_symbols(configuration.reader_set)
        self._frequency = configuration.scan_frequency_hz
        if frequency is not None:
            self.frequency = frequency

    @property
    def frequency(self) -> int:
        return self._frequency

    @frequency.setter
    def frequency(self, value: int) -> None:
        self._frequency = max(MIN_FREQUENCY, min(int(value), MAX_FREQUENCY))

    async def _prepare(self, source: Any) -> StreamHandle:
        if not isinstance(source, StreamHandle):
            raise exceptions.backend_init_failure(self.kind.value, "a live stream handle is required")
        if not source.active:
            raise exceptions.backend_init_failure(self.kind.value, "stream has no live tracks")
        return source

    def _frame_interval(self) -> float:
        return 1.0 / self._frequency

    def decode_frame(self, frame: np.ndarray) -> List[str]:
        gray = to_gray(frame)

        for (x, y, w, h), angle in locate_patches(
            gray,
            self._configuration.locator_granularity,
            self._configuration.half_sample,
        ):
            patch = gray[y:y + h, x:x + w]
            texts = decode_pyzbar(patch, self._symbols)
            if not texts:
                texts = decode_pyzbar(deskew(patch, angle), self._symbols)
            if texts:
                return texts[:1]

        return decode_pyzbar(gray, self._symbols)[:1]

    def info(self) -> dict:
        info = super().info()
        info["frequency"] = self._frequency
        return info
