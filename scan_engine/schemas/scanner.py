"""
==============================================================================
Scanner Schemas Module
==============================================================================

Request and response schemas for the scanner endpoints and the scanning
WebSocket protocol.

==============================================================================
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from scan_engine.capability import DeviceCapabilityProfile, ScanConfiguration
from scan_engine.decoders import BackendKind


# =============================================================================
# CAMERA SCHEMAS
# =============================================================================

class CameraInfo(BaseModel):
    """Enumerated capture device."""
    device_id: str
    label: str
    facing_hint: str = "unknown"


class CameraListResponse(BaseModel):
    """Available cameras and the one scanning would default to."""
    success: bool = Field(default=True)
    total: int = Field(ge=0)
    cameras: List[CameraInfo]
    default_device_id: Optional[str] = None
    current_device_id: Optional[str] = None


# =============================================================================
# PROFILE SCHEMAS
# =============================================================================

class ScannerProfileResponse(BaseModel):
    """Capability profile and derived configuration for the calling client."""
    success: bool = Field(default=True)
    profile: DeviceCapabilityProfile
    configuration: ScanConfiguration
    default_backend: BackendKind
    manual_entry_recommended: bool
    recommended_browser: str
    tips: List[str]


# =============================================================================
# MANUAL ENTRY SCHEMAS
# =============================================================================

class ManualEntryRequest(BaseModel):
    """Typed barcode."""
    text: str = Field(default="", max_length=256)


class ManualEntryResponse(BaseModel):
    """Outcome of a manual submission."""
    valid: bool
    code: Optional[str] = None
    message: Optional[str] = None


# =============================================================================
# SINGLE IMAGE DECODE SCHEMAS
# =============================================================================

class DecodeRequest(BaseModel):
    """Still image to decode, base64 encoded (data URLs accepted)."""
    image: str = Field(..., min_length=1)
    backend: BackendKind = Field(default=BackendKind.PATCH_LOCATOR)

    @field_validator("image")
    @classmethod
    def strip_data_url(cls, v: str) -> str:
        if v.startswith("data:") and "," in v:
            v = v.split(",", 1)[1]
        return v.strip()


class DecodeResponse(BaseModel):
    """Decode outcome for a still image."""
    success: bool = Field(default=True)
    found: bool
    code: Optional[str] = None
    format: Optional[str] = None
    raw_texts: List[str] = Field(default_factory=list)
    message: Optional[str] = None


# =============================================================================
# WEBSOCKET PROTOCOL
# =============================================================================

class ScanCommand(BaseModel):
    """Client message on the scanning WebSocket."""
    type: Literal["start", "stop", "force", "manual", "switch"]
    device_id: Optional[str] = None
    backend: Optional[BackendKind] = None
    continuous: Optional[bool] = None
    element_id: Optional[str] = None
    text: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0, le=30)
