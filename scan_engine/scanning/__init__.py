"""
==============================================================================
Scanning Package
==============================================================================

From raw decoder text to a canonical code delivered to the host.

Modules:
--------
- normalizer: ResultNormalizer and ScanResult
- debouncer: ScanDebouncer
- session: ScanSession state machine
- manual: ManualEntryPath
- engine: ScanEngine, the single holder of the camera

==============================================================================
"""

from .debouncer import ScanDebouncer
from .engine import ScanEngine
from .manual import ManualEntryPath, ManualEntryResult
from .normalizer import (
    CodeFormat,
    NormalizerOptions,
    RejectionReason,
    ResultNormalizer,
    ScanResult,
)
from .session import ScanSession, SessionState

__all__ = [
    "CodeFormat",
    "ManualEntryPath",
    "ManualEntryResult",
    "NormalizerOptions",
    "RejectionReason",
    "ResultNormalizer",
    "ScanDebouncer",
    "ScanEngine",
    "ScanResult",
    "ScanSession",
    "SessionState",
]
