"""
==============================================================================
Health Check Endpoints
==============================================================================

System health status endpoints for monitoring and orchestration.

==============================================================================
"""

from fastapi import APIRouter, Depends

from scan_engine.camera import CameraSource
from scan_engine.capability import detect
from scan_engine.core.dependencies import get_camera_source


router = APIRouter(prefix="/health", tags=["Health"])


class HealthController:
    """Controller for health check operations."""
    
    def __init__(self, camera_source: CameraSource):
        self._camera_source = camera_source
    
    def check_capture(self) -> str:
        """Check that a capture backend is importable."""
        return "healthy" if detect().has_capture_api else "unavailable"
    
    def check_cameras(self) -> dict:
        """Check camera enumeration."""
        devices = self._camera_source.list_devices()
        return {
            "status": "healthy" if devices else "no_devices",
            "devices": len(devices),
            "streaming": self._camera_source.active_stream is not None,
        }
    
    def get_health(self) -> dict:
        """Get full health status."""
        capture_status = self.check_capture()
        camera_info = self.check_cameras()
        
        overall = "healthy" if capture_status == "healthy" and camera_info["devices"] else "degraded"
        
        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "capture": capture_status,
                "cameras": camera_info["status"]
            },
            "details": {
                "devices_found": camera_info["devices"],
                "streaming": camera_info["streaming"]
            }
        }


@router.get("")
async def health_check(camera_source: CameraSource = Depends(get_camera_source)):
    """
    Health check endpoint.
    
    Returns API, capture backend and camera status.
    """
    controller = HealthController(camera_source)
    return controller.get_health()


@router.get("/ready")
async def readiness_check():
    """Readiness probe for container orchestration."""
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """Liveness probe for container orchestration."""
    return {"alive": True}
