"""
Continuous stream decoder.

Binds directly to a live stream and a render target, presents every frame
and decodes it whole with pyzbar at camera rate. A frame without a code is
a silent miss; only decode hits and stream failures reach the callbacks.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import numpy as np

from scan_engine.capability.config_builder import ScanConfiguration
from scan_engine.camera.source import StreamHandle
from scan_engine.core import exceptions

from .base import BackendKind, DecodeBackend
from .render import RenderTarget
from .symbology import decode_pyzbar, pyzbar_symbols, to_gray


logger = logging.getLogger(__name__)


class ContinuousStreamDecoder(DecodeBackend):
    """Whole-frame pyzbar decoding of every captured frame."""

    kind = BackendKind.CONTINUOUS

    def __init__(
        self,
        configuration: ScanConfiguration,
        render_target: Optional[RenderTarget] = None
    ) -> None:
        super().__init__(configuration, render_target)
        self._symbols = pyzbar_symbols(configuration.reader_set)

    async def _prepare(self, source: Any) -> StreamHandle:
        if not isinstance(source, StreamHandle):
            raise exceptions.backend_init_failure(self.kind.value, "a live stream handle is required")
        if not source.active:
            raise exceptions.backend_init_failure(self.kind.value, "stream has no live tracks")
        return source

    def decode_frame(self, frame: np.ndarray) -> List[str]:
        return decode_pyzbar(to_gray(frame), self._symbols)
