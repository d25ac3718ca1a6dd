"""
==============================================================================
Schemas Package - Pydantic Models
==============================================================================

Request and response schemas using Pydantic for validation.

This package provides:
- Scanner: Camera, profile, manual entry, decode and WebSocket schemas

==============================================================================
"""

from .scanner import (
    CameraInfo,
    CameraListResponse,
    DecodeRequest,
    DecodeResponse,
    ManualEntryRequest,
    ManualEntryResponse,
    ScanCommand,
    ScannerProfileResponse,
)

__all__ = [
    "CameraInfo",
    "CameraListResponse",
    "DecodeRequest",
    "DecodeResponse",
    "ManualEntryRequest",
    "ManualEntryResponse",
    "ScanCommand",
    "ScannerProfileResponse",
]
