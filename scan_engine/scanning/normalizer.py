"""
==============================================================================
Result Normalizer Module
==============================================================================

Turns a raw decode string or a typed string into a canonical code, or
rejects it.

Algorithm:
----------
1. Trim and upper-case
2. Strip everything outside A-Z and 0-9
3. Optional confusion correction (noisy optical backends only)
4. Minimum length check; optional maximum length check
5. First matching format, in priority order:
   a. Domain prefix code: two fixed letters + alphanumerics, length >= 8
   b. EAN-8, UPC-A, EAN-13 (8, 12, 13 digits)
   c. Generic alphanumeric

Confusion Correction Scope:
---------------------------
Substituting O->0, S->5 etc. across a whole code would corrupt letters that
legitimately appear in warehouse codes. Correction is therefore applied only
where the result is known to be numeric:
- The six-digit segment of a domain code (``WH`` + 6 digits + 6 alphanumerics)
- The whole text, when the corrected text is an 8, 12 or 13 digit code

Normalizing a canonical code returns it unchanged.

==============================================================================
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Pattern, Tuple

from scan_engine.config import get_settings


class CodeFormat(str, enum.Enum):
    DOMAIN = "domain"
    EAN8 = "ean8"
    UPCA = "upca"
    EAN13 = "ean13"
    ALPHANUMERIC = "alphanumeric"


class RejectionReason(str, enum.Enum):
    EMPTY = "empty"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    INVALID_FORMAT = "invalid_format"


REJECTION_MESSAGES = {
    RejectionReason.EMPTY: "Barcode is required",
    RejectionReason.TOO_SHORT: "Barcode is too short",
    RejectionReason.TOO_LONG: "Barcode is too long",
    RejectionReason.INVALID_FORMAT: "Invalid barcode format",
}

# Visually similar characters misread by optical decoders
CONFUSION_MAP = {
    "O": "0",
    "I": "1",
    "S": "5",
    "Z": "2",
    "B": "8",
    "G": "6",
    "Q": "0",
    "D": "0",
}

DISALLOWED = re.compile(r"[^A-Z0-9]")

# Length of the numeric segment that follows the domain prefix
DOMAIN_NUMERIC_SEGMENT = 6
DOMAIN_PAYLOAD_SEGMENT = 6


@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of normalizing one raw string.

    Attributes:
        raw_text: Input as received
        canonical_code: Validated code, None when rejected
        format: Matched code format
        rejection_reason: Why the input was rejected
    """

    raw_text: str
    canonical_code: Optional[str] = None
    format: Optional[CodeFormat] = None
    rejection_reason: Optional[RejectionReason] = None

    @property
    def is_valid(self) -> bool:
        return self.canonical_code is not None

    @property
    def message(self) -> Optional[str]:
        if self.rejection_reason is None:
            return None
        return REJECTION_MESSAGES[self.rejection_reason]


@dataclass(frozen=True)
class NormalizerOptions:
    """Per-backend switches for the lossy normalization steps."""

    apply_confusion_correction: bool = False
    enforce_length_bounds: bool = False


@dataclass(frozen=True)
class NormalizationRuleSet:
    """
    Confusion table and ordered format patterns.

    The domain pattern comes first so a domain code is never classified
    as a generic alphanumeric.
    """

    domain_prefix: str
    confusion_map: Mapping[str, str] = field(default_factory=lambda: dict(CONFUSION_MAP))
    patterns: Tuple[Tuple[CodeFormat, Pattern], ...] = ()

    @classmethod
    def for_prefix(cls, domain_prefix: str = "WH") -> NormalizationRuleSet:
        prefix = re.escape(domain_prefix.upper())
        return cls(
            domain_prefix=domain_prefix.upper(),
            patterns=(
                (CodeFormat.DOMAIN, re.compile(rf"^{prefix}[A-Z0-9]{{6,}}$")),
                (CodeFormat.EAN8, re.compile(r"^\d{8}$")),
                (CodeFormat.UPCA, re.compile(r"^\d{12}$")),
                (CodeFormat.EAN13, re.compile(r"^\d{13}$")),
                (CodeFormat.ALPHANUMERIC, re.compile(r"^[A-Z0-9]+$")),
            ),
        )

    def classify(self, code: str) -> Optional[CodeFormat]:
        for code_format, pattern in self.patterns:
            if pattern.match(code):
                return code_format
        return None


class ResultNormalizer:
    """
    Canonicalizer shared by every input path.

    Example:
        >>> normalizer = ResultNormalizer()
        >>> normalizer.normalize("wh967843eu2zmm").canonical_code
        'WH967843EU2ZMM'
        >>> normalizer.normalize("AB").rejection_reason
        <RejectionReason.TOO_SHORT: 'too_short'>
    """

    def __init__(
        self,
        rules: Optional[NormalizationRuleSet] = None,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None
    ) -> None:
        settings = get_settings()
        self.rules = rules or NormalizationRuleSet.for_prefix(settings.domain_prefix)
        self.min_length = min_length if min_length is not None else settings.min_code_length
        self.max_length = max_length if max_length is not None else settings.max_code_length
        self._translation = str.maketrans(dict(self.rules.confusion_map))

    def normalize(self, raw_text: Optional[str], options: Optional[NormalizerOptions] = None) -> ScanResult:
        """
        Normalize and validate a raw string.

        Args:
            raw_text: Decoded or typed text
            options: Backend-specific switches (defaults: no correction, no bounds)

        Returns:
            ScanResult with either a canonical code or a rejection reason
        """
        options = options or NormalizerOptions()
        raw = raw_text or ""

        cleaned = DISALLOWED.sub("", raw.strip().upper())
        if not cleaned:
            return self._reject(raw, RejectionReason.EMPTY)

        if options.apply_confusion_correction:
            cleaned = self.correct(cleaned)

        if len(cleaned) < self.min_length:
            return self._reject(raw, RejectionReason.TOO_SHORT)

        if options.enforce_length_bounds and len(cleaned) > self.max_length:
            return self._reject(raw, RejectionReason.TOO_LONG)

        code_format = self.rules.classify(cleaned)
        if code_format is None:
            return self._reject(raw, RejectionReason.INVALID_FORMAT)

        return ScanResult(raw_text=raw, canonical_code=cleaned, format=code_format)

    def correct(self, code: str) -> str:
        """Apply confusion correction to the regions known to be numeric."""
        prefix = self.rules.domain_prefix
        domain_length = len(prefix) + DOMAIN_NUMERIC_SEGMENT + DOMAIN_PAYLOAD_SEGMENT

        if code.startswith(prefix) and len(code) == domain_length:
            start = len(prefix)
            end = start + DOMAIN_NUMERIC_SEGMENT
            segment = code[start:end].translate(self._translation)
            if segment.isdigit():
                return code[:start] + segment + code[end:]
            return code

        corrected = code.translate(self._translation)
        if corrected.isdigit() and len(corrected) in (8, 12, 13):
            return corrected
        return code

    def is_valid(self, raw_text: Optional[str], options: Optional[NormalizerOptions] = None) -> bool:
        """Quick validation check."""
        return self.normalize(raw_text, options).is_valid

    @staticmethod
    def _reject(raw: str, reason: RejectionReason) -> ScanResult:
        return ScanResult(raw_text=raw, rejection_reason=reason)
