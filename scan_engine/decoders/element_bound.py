"""
Element-bound decoder.

Attaches to a host render container identified by ``element_id`` and
manages its own capture: it acquires the stream from the CameraSource when
started and releases it when stopped. Decoding uses zxing-cpp, which reads
QR and linear codes in one pass, with OpenCV's QR detector as a fallback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import cv2
import numpy as np
import zxingcpp

from scan_engine.capability.config_builder import ScanConfiguration
from scan_engine.camera.source import CameraDescriptor, CameraSource, StreamHandle
from scan_engine.core import exceptions

from .base import BackendKind, DecodeBackend
from .render import RenderTarget
from .symbology import to_gray, zxing_formats


logger = logging.getLogger(__name__)


class ElementBoundDecoder(DecodeBackend):
    """QR-first decoder that owns its capture lifecycle."""

    kind = BackendKind.ELEMENT_BOUND

    def __init__(
        self,
        configuration: ScanConfiguration,
        camera_source: CameraSource,
        descriptor: Optional[CameraDescriptor] = None
    ) -> None:
        super().__init__(configuration)
        self._camera_source = camera_source
        self._descriptor = descriptor
        self._formats = zxing_formats(set(configuration.reader_set) | {"qrcode"})
        self._qr_detector = cv2.QRCodeDetector()

    @property
    def owns_stream(self) -> bool:
        return True

    async def _prepare(self, source: Any) -> StreamHandle:
        if not isinstance(source, RenderTarget) or not source.element_id:
            raise exceptions.backend_init_failure(self.kind.value, "an element id is required")

        self._render_target = source
        logger.info(f"Binding decoder to element '{source.element_id}'")

        # Capture errors propagate with their own kinds
        return await asyncio.to_thread(
            self._camera_source.acquire,
            self._descriptor,
            self._configuration,
        )

    def _release_owned_stream(self) -> None:
        stream = self._stream
        self._stream = None
        self._camera_source.release(stream)

    def decode_frame(self, frame: np.ndarray) -> List[str]:
        gray = to_gray(frame)

        if self._formats is not None:
            results = zxingcpp.read_barcodes(gray, formats=self._formats)
        else:
            results = zxingcpp.read_barcodes(gray)
        texts = [result.text for result in results if result.text]
        if texts:
            return texts[:1]

        try:
            text, _, _ = self._qr_detector.detectAndDecode(gray)
        except cv2.error as e:
            logger.debug(f"QR detector error: {e}")
            return []
        return [text] if text else []
