"""
==============================================================================
Scanner Endpoints
==============================================================================

Client profiling, manual entry and single-image decoding.

Endpoints:
----------
- GET  /scanner/profile: Capability profile, configuration and tips
- POST /scanner/manual: Validate a typed code
- POST /scanner/decode: Decode one uploaded image

==============================================================================
"""

import asyncio
import base64
import binascii
import logging

import cv2
import numpy as np
from fastapi import APIRouter, Depends

from scan_engine.camera import CameraSource
from scan_engine.capability import (
    DeviceCapabilityProfile,
    build_config,
    recommend_manual_entry,
    scanning_tips,
)
from scan_engine.capability.profile import recommended_browser
from scan_engine.config import get_settings
from scan_engine.core import exceptions
from scan_engine.core.dependencies import get_camera_source, get_client_profile, get_normalizer
from scan_engine.decoders import BackendKind, backend_profile, create_backend
from scan_engine.scanning import ManualEntryPath, NormalizerOptions, ResultNormalizer
from scan_engine.schemas import (
    DecodeRequest,
    DecodeResponse,
    ManualEntryRequest,
    ManualEntryResponse,
    ScannerProfileResponse,
)


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scanner", tags=["Scanner"])


class ScannerController:
    """Controller for stateless scanner operations."""

    def __init__(self, normalizer: ResultNormalizer, profile: DeviceCapabilityProfile):
        self._normalizer = normalizer
        self._profile = profile

    def get_profile(self) -> ScannerProfileResponse:
        """Profile of the caller with the configuration it would scan with."""
        return ScannerProfileResponse(
            profile=self._profile,
            configuration=build_config(self._profile),
            default_backend=BackendKind(get_settings().default_backend),
            manual_entry_recommended=recommend_manual_entry(self._profile),
            recommended_browser=recommended_browser(self._profile),
            tips=scanning_tips(self._profile),
        )

    def submit_manual(self, text: str) -> ManualEntryResponse:
        """Validate a typed code."""
        result = ManualEntryPath(self._normalizer).submit(text)
        return ManualEntryResponse(**result.to_dict())

    async def decode_image(self, request: DecodeRequest, camera_source: CameraSource) -> DecodeResponse:
        """Run one image through a backend's decoder and the normalizer."""
        frame = self._read_image(request.image)

        backend = create_backend(request.backend, build_config(self._profile), camera_source)
        raw_texts = await asyncio.to_thread(backend.decode_frame, frame)

        policy = backend_profile(request.backend)
        options = NormalizerOptions(
            apply_confusion_correction=policy.apply_confusion_correction,
            enforce_length_bounds=policy.enforce_length_bounds,
        )

        message = "No barcode found"
        for raw in raw_texts:
            result = self._normalizer.normalize(raw, options)
            if result.is_valid:
                logger.info(f"✅ Decoded {result.canonical_code} from upload")
                return DecodeResponse(
                    found=True,
                    code=result.canonical_code,
                    format=result.format.value,
                    raw_texts=raw_texts,
                )
            message = result.message

        return DecodeResponse(found=False, raw_texts=raw_texts, message=message)

    @staticmethod
    def _read_image(encoded: str) -> np.ndarray:
        try:
            img_data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise exceptions.validation_failure("invalid_image", "Image is not valid base64")

        nparr = np.frombuffer(img_data, np.uint8)
        frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
        if frame is None:
            raise exceptions.validation_failure("invalid_image", "Image could not be decoded")
        return frame


@router.get("/profile", response_model=ScannerProfileResponse)
async def get_profile(profile: DeviceCapabilityProfile = Depends(get_client_profile)):
    """
    Capability profile of the calling client.

    Send ``X-Viewport-Width``/``X-Viewport-Height`` and
    ``X-Hardware-Concurrency`` for a more precise configuration.
    """
    return ScannerController(get_normalizer(), profile).get_profile()


@router.post("/manual", response_model=ManualEntryResponse)
async def submit_manual(
    payload: ManualEntryRequest,
    normalizer: ResultNormalizer = Depends(get_normalizer),
    profile: DeviceCapabilityProfile = Depends(get_client_profile)
):
    """Validate a typed barcode with the camera path's rules, uncorrected."""
    return ScannerController(normalizer, profile).submit_manual(payload.text)


@router.post("/decode", response_model=DecodeResponse)
async def decode_image(
    payload: DecodeRequest,
    normalizer: ResultNormalizer = Depends(get_normalizer),
    profile: DeviceCapabilityProfile = Depends(get_client_profile),
    camera_source: CameraSource = Depends(get_camera_source)
):
    """Decode a single base64 image."""
    controller = ScannerController(normalizer, profile)
    return await controller.decode_image(payload, camera_source)
