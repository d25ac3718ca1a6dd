"""
==============================================================================
Device Capability Profile Module
==============================================================================

Inspects the runtime environment once per session and exposes it read-only.

Signals come from one of two places:
- An HTTP request (user agent, scheme, host, client hints) when a browser
  client drives the scanner through the service
- The local process (OS, CPU count, OpenCV availability) otherwise

Detection never raises. Unknown environments resolve to conservative
desktop-like values.

==============================================================================
"""

from __future__ import annotations

import logging
import os
import platform
import re
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from scan_engine.core.exceptions import ErrorKind, ScanError


# Module logger
logger = logging.getLogger(__name__)


MOBILE_PATTERN = re.compile(r"android|iphone|ipad|ipod|blackberry|iemobile|opera mini", re.IGNORECASE)
IOS_PATTERN = re.compile(r"iphone|ipad|ipod", re.IGNORECASE)
ANDROID_PATTERN = re.compile(r"android", re.IGNORECASE)

SECURE_HOSTS = {"localhost", "127.0.0.1", "::1", "[::1]"}


class EnvironmentSignals(BaseModel):
    """
    Raw ambient signals a profile is computed from.

    Every field is optional; missing signals fall back to defaults.
    """

    user_agent: Optional[str] = None
    scheme: Optional[str] = None
    hostname: Optional[str] = None
    viewport_width: Optional[int] = Field(default=None, ge=0)
    viewport_height: Optional[int] = Field(default=None, ge=0)
    hardware_concurrency: Optional[int] = Field(default=None, ge=1)
    has_media_devices: Optional[bool] = None
    has_vibration: Optional[bool] = None
    mobile_hint: Optional[bool] = None


class DeviceCapabilityProfile(BaseModel):
    """
    Immutable description of the scanning device.

    Attributes:
        is_mobile: Phone or tablet class device
        os_family: ios, android, windows, macos, linux or unknown
        browser_family: edge, chrome, safari, firefox, unknown or none
        is_secure_context: Capture is allowed by the transport
        has_capture_api: A capture API is reachable at all
        has_vibration: Haptic feedback is available
        hardware_concurrency_hint: Logical CPU count, if known
        screen_size_class: small, medium or large
        orientation: portrait or landscape
    """

    model_config = ConfigDict(frozen=True)

    is_mobile: bool = False
    os_family: str = "unknown"
    browser_family: str = "unknown"
    is_secure_context: bool = False
    has_capture_api: bool = True
    has_vibration: bool = False
    hardware_concurrency_hint: Optional[int] = None
    screen_size_class: str = "medium"
    orientation: str = "portrait"

    @property
    def is_ios(self) -> bool:
        return self.os_family == "ios"

    @property
    def is_android(self) -> bool:
        return self.os_family == "android"

    def with_orientation(self, orientation: str) -> DeviceCapabilityProfile:
        """Return a copy reflecting a device rotation."""
        if orientation not in ("portrait", "landscape"):
            orientation = "portrait"
        return self.model_copy(update={"orientation": orientation})


# =============================================================================
# DETECTION
# =============================================================================

def detect(signals: Optional[EnvironmentSignals] = None) -> DeviceCapabilityProfile:
    """
    Compute a capability profile from ambient signals.

    Args:
        signals: Request-derived signals, or None to profile the local host

    Returns:
        DeviceCapabilityProfile (never raises)
    """
    try:
        if signals is None:
            return _detect_local()
        return _detect_from_signals(signals)
    except Exception as e:
        logger.warning(f"Capability detection failed, using defaults: {e}")
        return DeviceCapabilityProfile()


def _detect_from_signals(signals: EnvironmentSignals) -> DeviceCapabilityProfile:
    user_agent = (signals.user_agent or "").lower()

    is_mobile = bool(MOBILE_PATTERN.search(user_agent))
    if signals.mobile_hint is not None:
        is_mobile = is_mobile or signals.mobile_hint

    return DeviceCapabilityProfile(
        is_mobile=is_mobile,
        os_family=_os_from_user_agent(user_agent),
        browser_family=_browser_from_user_agent(user_agent),
        is_secure_context=_is_secure(signals.scheme, signals.hostname),
        has_capture_api=bool(signals.has_media_devices) if signals.has_media_devices is not None else True,
        has_vibration=bool(signals.has_vibration),
        hardware_concurrency_hint=signals.hardware_concurrency,
        screen_size_class=screen_size_class(signals.viewport_width),
        orientation=orientation_for(signals.viewport_width, signals.viewport_height),
    )


def _detect_local() -> DeviceCapabilityProfile:
    system = platform.system().lower()
    os_family = {
        "linux": "linux",
        "windows": "windows",
        "darwin": "macos",
    }.get(system, "unknown")

    # Android Python builds report linux
    is_android = "ANDROID_ROOT" in os.environ
    if is_android:
        os_family = "android"

    return DeviceCapabilityProfile(
        is_mobile=is_android,
        os_family=os_family,
        browser_family="none",
        is_secure_context=True,
        has_capture_api=_opencv_available(),
        has_vibration=False,
        hardware_concurrency_hint=os.cpu_count(),
        screen_size_class="large",
        orientation="landscape",
    )


def _opencv_available() -> bool:
    try:
        import cv2
    except ImportError:
        return False
    return hasattr(cv2, "VideoCapture")


def _os_from_user_agent(user_agent: str) -> str:
    if IOS_PATTERN.search(user_agent):
        return "ios"
    if ANDROID_PATTERN.search(user_agent):
        return "android"
    if "windows" in user_agent:
        return "windows"
    if "mac os" in user_agent or "macintosh" in user_agent:
        return "macos"
    if "linux" in user_agent or "x11" in user_agent:
        return "linux"
    return "unknown"


def _browser_from_user_agent(user_agent: str) -> str:
    if not user_agent:
        return "unknown"

    is_edge = "edge" in user_agent or "edg/" in user_agent
    is_chrome = "chrome" in user_agent and not is_edge

    if is_edge:
        return "edge"
    if is_chrome:
        return "chrome"
    if "firefox" in user_agent or "fxios" in user_agent:
        return "firefox"
    if "safari" in user_agent:
        return "safari"
    return "unknown"


def _is_secure(scheme: Optional[str], hostname: Optional[str]) -> bool:
    if scheme and scheme.lower() in ("https", "wss"):
        return True
    if hostname and hostname.lower() in SECURE_HOSTS:
        return True
    return False


def screen_size_class(width: Optional[int]) -> str:
    """Classify a viewport width."""
    if not width:
        return "medium"
    if width < 480:
        return "small"
    if width < 768:
        return "medium"
    return "large"


def orientation_for(width: Optional[int], height: Optional[int]) -> str:
    """Portrait unless the viewport is known to be wider than tall."""
    if not width or not height:
        return "portrait"
    return "portrait" if height > width else "landscape"


def signals_from_headers(
    headers: Mapping[str, str],
    scheme: Optional[str] = None,
    hostname: Optional[str] = None
) -> EnvironmentSignals:
    """
    Build signals from HTTP request headers.

    Understands the ``Sec-CH-UA-Mobile`` client hint, the ``X-Forwarded-Proto``
    header set by TLS-terminating proxies and the optional ``X-Viewport-*`` /
    ``X-Hardware-Concurrency`` headers sent by the scanning page.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    forwarded = lowered.get("x-forwarded-proto")
    if forwarded:
        scheme = forwarded.split(",")[0].strip()

    mobile_hint = None
    if "sec-ch-ua-mobile" in lowered:
        mobile_hint = lowered["sec-ch-ua-mobile"].strip() == "?1"

    return EnvironmentSignals(
        user_agent=lowered.get("user-agent"),
        scheme=scheme,
        hostname=hostname,
        viewport_width=_int_header(lowered.get("x-viewport-width")),
        viewport_height=_int_header(lowered.get("x-viewport-height")),
        hardware_concurrency=_int_header(lowered.get("x-hardware-concurrency")),
        mobile_hint=mobile_hint,
    )


def _int_header(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


# =============================================================================
# HOST GUIDANCE
# =============================================================================

def recommend_manual_entry(profile: DeviceCapabilityProfile) -> bool:
    """Browser/device combinations where manual entry should be shown first."""
    return (
        (profile.browser_family == "edge" and profile.is_mobile)
        or (not profile.is_secure_context and profile.is_mobile)
    )


def recommended_browser(profile: DeviceCapabilityProfile) -> str:
    if profile.is_ios:
        return "Safari"
    if profile.is_android:
        return "Chrome"
    return "Chrome or Firefox"


def scanning_tips(profile: DeviceCapabilityProfile) -> List[str]:
    """Operator tips for the current device class."""
    tips = [
        "Hold the barcode flat and in focus",
        "Make sure there is enough light",
        "Keep the whole barcode visible",
    ]

    if profile.is_mobile:
        tips.extend([
            "Hold the device steady",
            "Align the barcode inside the frame",
            "Use manual entry if scanning keeps failing",
        ])
        if profile.is_ios:
            tips.append("Safari gives the best results")
        elif profile.is_android:
            tips.append("Chrome gives the best results")
    else:
        tips.extend([
            "A distance of 10-20 cm works best",
            "Avoid reflections and shadows",
        ])

    return tips


def enhance_error_message(error: ScanError, profile: DeviceCapabilityProfile) -> str:
    """
    Rewrite a capture error into device-specific guidance.

    Args:
        error: Error raised while starting a scan
        profile: Profile of the scanning device

    Returns:
        Message to hand to the host's error callback
    """
    if error.kind is ErrorKind.PERMISSION_DENIED:
        if profile.is_mobile:
            if profile.is_ios:
                return "Camera permission was denied. Enable camera access in Safari settings and reload the page."
            if profile.is_android:
                return "Camera permission was denied. Enable camera access in Chrome settings and reload the page."
            return "Camera permission was denied. Enable camera access in the mobile browser settings."
        return "Camera permission was denied. Enable camera access in the browser settings."

    if error.kind is ErrorKind.DEVICE_NOT_FOUND:
        return "No camera was found. Make sure the device has a camera and no other application is using it."

    if error.kind is ErrorKind.DEVICE_BUSY:
        if profile.is_mobile:
            return "The camera is being used by another application. Close other camera apps and restart the device."
        return "The camera is being used by another application. Close other camera apps and try again."

    if error.kind is ErrorKind.CONSTRAINT_UNSATISFIABLE:
        return "The selected camera settings are not supported. Try a different camera or use manual entry."

    if error.kind is ErrorKind.INSECURE_CONTEXT:
        return "Security error. Open the application over a secure (HTTPS) connection."

    if profile.browser_family == "edge" and profile.is_mobile:
        return f"{error.message} - If Edge on mobile keeps failing, try Chrome."

    if profile.is_ios and profile.browser_family == "safari":
        return f"{error.message} - On iOS Safari, reload the page or use manual entry."

    return error.message
