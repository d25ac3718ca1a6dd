"""
==============================================================================
Scan Configuration Builder
==============================================================================

Deterministic derivation of a ScanConfiguration from a capability profile.

Heuristics:
-----------
- Mobile: lower frame rate (battery), smaller resolution envelope,
  at most two decode workers, coarse "small" locator patches, 5 Hz sampling,
  and only the code families actually printed on warehouse labels
- Desktop: full HD envelope, one worker per CPU, "medium" patches,
  10 Hz sampling and the extended reader set
- iOS and Android get their own frame rate ceilings

==============================================================================
"""

from __future__ import annotations

from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict

from .profile import DeviceCapabilityProfile


# Warehouse labels use these; ordered by how often they are seen
BASE_READERS = ("code128", "code39", "ean13", "ean8")

# Secondary families enabled where CPU is not a concern
EXTENDED_READERS = ("code39_vin", "codabar", "i25", "upca", "qrcode")

DEFAULT_CONCURRENCY = 2
MOBILE_MAX_WORKERS = 2


class Range(BaseModel):
    """Minimum/ideal/maximum constraint for one dimension."""

    model_config = ConfigDict(frozen=True)

    min: int
    ideal: int
    max: int


class FrameRate(BaseModel):
    model_config = ConfigDict(frozen=True)

    ideal: int
    max: int


class Resolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: Range
    height: Range


class ScanConfiguration(BaseModel):
    """
    Capture and decode parameters for one scanning session.

    Never mutated after creation; build a new one when the profile changes.
    """

    model_config = ConfigDict(frozen=True)

    resolution: Resolution
    frame_rate: FrameRate
    worker_count: int
    reader_set: FrozenSet[str]
    locator_granularity: str
    scan_frequency_hz: int
    aspect_ratio_min: float = 1.0
    aspect_ratio_max: float = 2.0
    half_sample: bool = True
    facing_mode: str = "environment"


def build_config(profile: DeviceCapabilityProfile) -> ScanConfiguration:
    """
    Derive the scan configuration for a device.

    Args:
        profile: Detected capability profile

    Returns:
        Frozen ScanConfiguration
    """
    resolution = _resolution_for(profile)
    frame_rate = _frame_rate_for(profile)

    readers = list(BASE_READERS)
    if not profile.is_mobile:
        readers.extend(EXTENDED_READERS)

    return ScanConfiguration(
        resolution=resolution,
        frame_rate=frame_rate,
        worker_count=worker_count_for(profile),
        reader_set=frozenset(readers),
        locator_granularity="small" if profile.is_mobile else "medium",
        scan_frequency_hz=5 if profile.is_mobile else 10,
    )


def _resolution_for(profile: DeviceCapabilityProfile) -> Resolution:
    if not profile.is_mobile:
        return Resolution(
            width=Range(min=640, ideal=1280, max=1920),
            height=Range(min=480, ideal=720, max=1080),
        )

    if profile.screen_size_class == "small":
        return Resolution(
            width=Range(min=320, ideal=640, max=1280),
            height=Range(min=240, ideal=480, max=720),
        )

    return Resolution(
        width=Range(min=480, ideal=720, max=1280),
        height=Range(min=320, ideal=480, max=720),
    )


def _frame_rate_for(profile: DeviceCapabilityProfile) -> FrameRate:
    if profile.is_ios:
        return FrameRate(ideal=15, max=25)
    if profile.is_android:
        return FrameRate(ideal=20, max=30)
    if profile.is_mobile:
        return FrameRate(ideal=15, max=30)
    return FrameRate(ideal=30, max=60)


def worker_count_for(profile: DeviceCapabilityProfile, hint: Optional[int] = None) -> int:
    """Decode worker count: capped on mobile, one per CPU on desktop."""
    concurrency = hint or profile.hardware_concurrency_hint or DEFAULT_CONCURRENCY

    if profile.is_mobile:
        return max(1, min(concurrency, MOBILE_MAX_WORKERS))

    return max(1, concurrency)
