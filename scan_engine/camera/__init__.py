"""
==============================================================================
Camera Package
==============================================================================

Capture device enumeration and single-stream lifecycle.

Classes:
--------
- CameraSource: Selection policy, acquire and idempotent release
- CameraDescriptor: Enumerated device
- StreamHandle: Tracks of one acquired stream

==============================================================================
"""

from .source import (
    CameraDescriptor,
    CameraSource,
    CaptureDriver,
    CaptureTrack,
    OpenCVCaptureDriver,
    StreamHandle,
)

__all__ = [
    "CameraDescriptor",
    "CameraSource",
    "CaptureDriver",
    "CaptureTrack",
    "OpenCVCaptureDriver",
    "StreamHandle",
]
