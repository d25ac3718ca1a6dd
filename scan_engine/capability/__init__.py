"""
==============================================================================
Capability Package
==============================================================================

Device detection and the configuration derived from it.

Modules:
--------
- profile: DeviceCapabilityProfile and detect()
- config_builder: ScanConfiguration and build_config()

==============================================================================
"""

from .profile import (
    DeviceCapabilityProfile,
    EnvironmentSignals,
    detect,
    enhance_error_message,
    recommend_manual_entry,
    scanning_tips,
    signals_from_headers,
)
from .config_builder import ScanConfiguration, build_config

__all__ = [
    "DeviceCapabilityProfile",
    "EnvironmentSignals",
    "ScanConfiguration",
    "build_config",
    "detect",
    "enhance_error_message",
    "recommend_manual_entry",
    "scanning_tips",
    "signals_from_headers",
]
