"""
Scan Engine Exception Handling

Single ScanError class for every failure of a scanning attempt, with
FastAPI integration for the HTTP surface.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ErrorKind(str, enum.Enum):
    """Machine-readable category of a scanning failure."""

    PERMISSION_DENIED = "PermissionDenied"
    DEVICE_NOT_FOUND = "DeviceNotFound"
    DEVICE_BUSY = "DeviceBusy"
    CONSTRAINT_UNSATISFIABLE = "ConstraintUnsatisfiable"
    INSECURE_CONTEXT = "InsecureContext"
    BACKEND_INIT_FAILURE = "BackendInitFailure"
    VALIDATION_FAILURE = "ValidationFailure"
    SCANNER_BUSY = "ScannerBusy"

    @property
    def recoverable(self) -> bool:
        """Only validation failures leave the session running."""
        return self is ErrorKind.VALIDATION_FAILURE


class ScanError(Exception):
    """
    Unified exception for all scanning failures.

    The message is the plain string handed to ``on_error``; ``kind`` is
    exposed alongside it for hosts that want to branch on the category.

    Usage:
        raise ScanError("Camera permission was denied", ErrorKind.PERMISSION_DENIED, 403)

    Error Kinds:
        Capture:
            - PermissionDenied (403)
            - DeviceNotFound (404)
            - DeviceBusy (409)
            - ConstraintUnsatisfiable (422)
            - InsecureContext (403)

        Decoding:
            - BackendInitFailure (500)
            - ValidationFailure (422)

        Session:
            - ScannerBusy (409)
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize scan error.

        Args:
            message: Human-readable error message
            kind: Error category
            status_code: HTTP status code used by the service layer
            details: Additional error context (optional)
        """
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    @property
    def code(self) -> str:
        """Error kind as a plain string."""
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


async def scan_error_handler(request: Request, exc: ScanError) -> JSONResponse:
    """Convert ScanError to a consistent JSON error response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(ScanError, scan_error_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def permission_denied(device_id: Optional[str] = None) -> ScanError:
    """Create camera permission denied error."""
    details = {"device_id": device_id} if device_id else {}
    return ScanError(
        "Camera permission was denied. Allow camera access and try again.",
        ErrorKind.PERMISSION_DENIED,
        403,
        details
    )


def device_not_found(device_id: Optional[str] = None) -> ScanError:
    """Create no capture device error."""
    details = {"device_id": device_id} if device_id else {}
    return ScanError(
        "No camera was found. Make sure the device has a camera.",
        ErrorKind.DEVICE_NOT_FOUND,
        404,
        details
    )


def device_busy(device_id: Optional[str] = None) -> ScanError:
    """Create camera in use error."""
    details = {"device_id": device_id} if device_id else {}
    return ScanError(
        "The camera is being used by another application. Close it and try again.",
        ErrorKind.DEVICE_BUSY,
        409,
        details
    )


def constraint_unsatisfiable(detail: str = "") -> ScanError:
    """Create unsupported camera settings error."""
    return ScanError(
        "The selected camera settings are not supported. Try a different camera.",
        ErrorKind.CONSTRAINT_UNSATISFIABLE,
        422,
        {"constraint": detail} if detail else {}
    )


def insecure_context() -> ScanError:
    """Create insecure context error."""
    return ScanError(
        "Security error. Camera access requires a secure (HTTPS) connection.",
        ErrorKind.INSECURE_CONTEXT,
        403
    )


def backend_init_failure(backend: str, reason: str = "") -> ScanError:
    """Create decode backend initialization error."""
    message = f"The {backend} decoder could not be started"
    if reason:
        message = f"{message}: {reason}"
    return ScanError(
        message,
        ErrorKind.BACKEND_INIT_FAILURE,
        500,
        {"backend": backend}
    )


def validation_failure(reason: str, message: str) -> ScanError:
    """Create code validation error."""
    return ScanError(
        message,
        ErrorKind.VALIDATION_FAILURE,
        422,
        {"reason": reason}
    )


def scanner_busy(state: str) -> ScanError:
    """Create illegal session transition error."""
    return ScanError(
        f"Scanner cannot start from state '{state}'",
        ErrorKind.SCANNER_BUSY,
        409,
        {"state": state}
    )
