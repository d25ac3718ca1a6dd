"""
==============================================================================
Core Package
==============================================================================

Error taxonomy shared by the capture, decoding and session layers.

Usage:
------
    from scan_engine.core import ScanError, ErrorKind
    from scan_engine.core import exceptions

    raise exceptions.device_busy("0")

==============================================================================
"""

from .exceptions import (
    ErrorKind,
    ScanError,
    register_exception_handlers,
)

__all__ = [
    "ErrorKind",
    "ScanError",
    "register_exception_handlers",
]
