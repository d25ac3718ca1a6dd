"""
==============================================================================
API v1 Endpoints
==============================================================================

Version 1 of the REST API.

Routers:
--------
- health: Health check endpoints
- cameras: Capture device listing
- scanner: Profile, manual entry and single-image decode

==============================================================================
"""

from . import health, cameras, scanner

__all__ = ["health", "cameras", "scanner"]
