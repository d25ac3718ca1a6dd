"""
==============================================================================
Camera Endpoints
==============================================================================

Capture device listing for camera pickers.

==============================================================================
"""

from fastapi import APIRouter, Depends

from scan_engine.camera import CameraSource
from scan_engine.core.dependencies import get_camera_source
from scan_engine.schemas import CameraInfo, CameraListResponse


router = APIRouter(prefix="/cameras", tags=["Cameras"])


class CameraController:
    """Controller for camera enumeration."""
    
    def __init__(self, camera_source: CameraSource):
        self._camera_source = camera_source
    
    def list_cameras(self) -> CameraListResponse:
        """List devices with the default selection."""
        devices = self._camera_source.list_devices()
        default = CameraSource.select_default(devices)
        
        return CameraListResponse(
            total=len(devices),
            cameras=[CameraInfo(**device.to_dict()) for device in devices],
            default_device_id=default.device_id if default else None,
            current_device_id=self._camera_source.current_device_id(),
        )


@router.get("", response_model=CameraListResponse)
async def list_cameras(camera_source: CameraSource = Depends(get_camera_source)):
    """
    List capture devices.
    
    Never fails: an empty list is returned when enumeration is unavailable.
    """
    return CameraController(camera_source).list_cameras()
