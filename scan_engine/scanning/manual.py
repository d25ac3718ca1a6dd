"""Typed-code input path that bypasses the camera."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .normalizer import NormalizerOptions, ResultNormalizer


logger = logging.getLogger(__name__)

# Typed input is never confusion-corrected or length-bounded
MANUAL_OPTIONS = NormalizerOptions(apply_confusion_correction=False, enforce_length_bounds=False)


@dataclass(frozen=True)
class ManualEntryResult:
    """Outcome of one manual submission."""

    valid: bool
    code: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {"valid": self.valid, "code": self.code, "message": self.message}


class ManualEntryPath:
    """
    Validates typed codes with the same normalizer as the camera path.

    Args:
        normalizer: Shared ResultNormalizer
        on_scan: Called with the canonical code when accepted
        on_rejected: Called with the user-facing message when rejected
    """

    def __init__(
        self,
        normalizer: Optional[ResultNormalizer] = None,
        on_scan: Optional[Callable[[str], Any]] = None,
        on_rejected: Optional[Callable[[str], Any]] = None
    ) -> None:
        self.normalizer = normalizer or ResultNormalizer()
        self.on_scan = on_scan
        self.on_rejected = on_rejected

    def submit(self, text: Optional[str]) -> ManualEntryResult:
        result = self.normalizer.normalize(text, MANUAL_OPTIONS)

        if not result.is_valid:
            logger.info(f"⚠️ Manual entry rejected: {result.rejection_reason.value}")
            if self.on_rejected is not None:
                self.on_rejected(result.message)
            return ManualEntryResult(valid=False, message=result.message)

        logger.info(f"⌨️ Manual entry accepted: {result.canonical_code}")
        if self.on_scan is not None:
            self.on_scan(result.canonical_code)
        return ManualEntryResult(valid=True, code=result.canonical_code)
