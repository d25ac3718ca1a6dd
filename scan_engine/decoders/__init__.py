"""
==============================================================================
Decoders Package
==============================================================================

Interchangeable decode strategies behind one start/stop/on-result contract.

Classes:
--------
- ContinuousStreamDecoder: Whole-frame decoding at camera rate
- PatchLocatorDecoder: Region localization, then decoding, at a set frequency
- ElementBoundDecoder: Owns its capture, bound to a host element id

==============================================================================
"""

from typing import Optional

from scan_engine.capability.config_builder import ScanConfiguration
from scan_engine.camera.source import CameraDescriptor, CameraSource

from .base import BackendKind, BackendProfile, DecodeBackend, backend_profile
from .continuous import ContinuousStreamDecoder
from .element_bound import ElementBoundDecoder
from .patch_locator import PatchLocatorDecoder
from .render import FrameBufferTarget, RenderTarget


def create_backend(
    kind: BackendKind,
    configuration: ScanConfiguration,
    camera_source: CameraSource,
    render_target: Optional[RenderTarget] = None,
    descriptor: Optional[CameraDescriptor] = None
) -> DecodeBackend:
    """Construct the decode backend for a session."""
    kind = BackendKind(kind)

    if kind is BackendKind.CONTINUOUS:
        return ContinuousStreamDecoder(configuration, render_target)
    if kind is BackendKind.PATCH_LOCATOR:
        return PatchLocatorDecoder(configuration, render_target)
    return ElementBoundDecoder(configuration, camera_source, descriptor)


__all__ = [
    "BackendKind",
    "BackendProfile",
    "ContinuousStreamDecoder",
    "DecodeBackend",
    "ElementBoundDecoder",
    "FrameBufferTarget",
    "PatchLocatorDecoder",
    "RenderTarget",
    "backend_profile",
    "create_backend",
]
