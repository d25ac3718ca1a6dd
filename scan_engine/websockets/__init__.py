"""
==============================================================================
WebSocket Package
==============================================================================

Real-time WebSocket handlers for barcode scanning.

Handlers:
---------
- scanner: Camera scan sessions driven over /ws/scan

==============================================================================
"""

from .scanner import router as scanner_router

__all__ = ["scanner_router"]
