"""
==============================================================================
API Integration Tests
==============================================================================

Tests for REST API endpoints and the scanning WebSocket.

==============================================================================
"""

import base64

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from scan_engine.core import exceptions


IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def _encoded_blank_image() -> str:
    ok, buffer = cv2.imencode(".png", np.full((120, 160, 3), 255, dtype=np.uint8))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


def test_root_lists_entry_points(client: TestClient):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["health"] == "/api/v1/health"
    assert data["websocket"] == "/ws/scan"


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client: TestClient):
        """Test health check returns status."""
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] in ["healthy", "degraded"]
        assert data["components"]["cameras"] == "healthy"
        assert data["details"]["devices_found"] == 2

    def test_readiness_probe(self, client: TestClient):
        """Test readiness probe."""
        response = client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["ready"] is True

    def test_liveness_probe(self, client: TestClient):
        """Test liveness probe."""
        response = client.get("/api/v1/health/live")
        assert response.status_code == 200
        assert response.json()["alive"] is True


class TestCameraEndpoints:
    """Tests for camera listing."""

    def test_list_cameras(self, client: TestClient):
        """Test devices and default selection."""
        response = client.get("/api/v1/cameras")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["default_device_id"] == "1"
        assert data["current_device_id"] is None
        assert data["cameras"][1]["facing_hint"] == "environment"

    def test_enumeration_failure_is_empty(self, client: TestClient, driver):
        """Test listing fails soft."""
        driver.enumerate_error = OSError("no video devices")
        response = client.get("/api/v1/cameras")
        assert response.status_code == 200
        assert response.json()["cameras"] == []
        assert response.json()["default_device_id"] is None


class TestScannerEndpoints:
    """Tests for profile, manual entry and decode."""

    def test_profile_for_iphone(self, client: TestClient):
        """Test profile derived from request headers."""
        response = client.get(
            "/api/v1/scanner/profile",
            headers={"User-Agent": IPHONE_UA, "X-Forwarded-Proto": "https", "X-Viewport-Width": "390"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["profile"]["is_mobile"] is True
        assert data["profile"]["os_family"] == "ios"
        assert data["profile"]["screen_size_class"] == "small"
        assert data["configuration"]["worker_count"] <= 2
        assert data["configuration"]["frame_rate"] == {"ideal": 15, "max": 25}
        assert data["manual_entry_recommended"] is False
        assert data["recommended_browser"] == "Safari"
        assert data["tips"]

    def test_profile_insecure_mobile_recommends_manual(self, client: TestClient):
        """Test manual entry recommendation over plain HTTP."""
        response = client.get("/api/v1/scanner/profile", headers={"User-Agent": IPHONE_UA})
        assert response.json()["manual_entry_recommended"] is True

    def test_manual_valid(self, client: TestClient):
        """Test manual entry of a domain code."""
        response = client.post("/api/v1/scanner/manual", json={"text": "wh967843eu2zmm"})
        assert response.status_code == 200
        assert response.json() == {"valid": True, "code": "WH967843EU2ZMM", "message": None}

    @pytest.mark.parametrize("text, message", [
        ("", "Barcode is required"),
        ("AB", "Barcode is too short"),
    ])
    def test_manual_rejected(self, client: TestClient, text: str, message: str):
        """Test manual entry rejection messages."""
        response = client.post("/api/v1/scanner/manual", json={"text": text})
        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is False
        assert data["code"] is None
        assert data["message"] == message

    def test_decode_blank_image(self, client: TestClient):
        """Test decode of an image without a barcode."""
        response = client.post(
            "/api/v1/scanner/decode",
            json={"image": "data:image/png;base64," + _encoded_blank_image(), "backend": "continuous"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["found"] is False
        assert data["code"] is None
        assert data["raw_texts"] == []

    def test_decode_invalid_base64(self, client: TestClient):
        """Test invalid upload uses the error envelope."""
        response = client.post("/api/v1/scanner/decode", json={"image": "not base64!!"})
        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == "ValidationFailure"

    def test_decode_unreadable_image(self, client: TestClient):
        """Test bytes that are not an image."""
        payload = base64.b64encode(b"definitely not a png").decode("ascii")
        response = client.post("/api/v1/scanner/decode", json={"image": payload})
        assert response.status_code == 422
        assert response.json()["error"]["details"]["reason"] == "invalid_image"


class TestScanWebSocket:
    """Tests for the /ws/scan protocol."""

    def test_manual_entry(self, client: TestClient):
        """Test manual message round trip."""
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "manual", "text": "wh967843eu2zmm"})
            data = websocket.receive_json()

        assert data == {"type": "manual", "valid": True, "code": "WH967843EU2ZMM", "message": None}

    def test_invalid_message(self, client: TestClient):
        """Test unknown message type."""
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "dance"})
            data = websocket.receive_json()

        assert data["type"] == "error"
        assert data["kind"] == "ValidationFailure"

    def test_start_and_stop(self, client: TestClient, driver):
        """Test session start on the rear camera and explicit stop."""
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "start", "backend": "continuous"})
            started = websocket.receive_json()

            websocket.send_json({"type": "stop"})
            stopped = websocket.receive_json()

        assert started["type"] == "started"
        assert started["device_id"] == "1"
        assert started["backend"] == "continuous"
        assert stopped == {"type": "stopped"}
        assert driver.live_tracks == []

    def test_start_permission_denied(self, client: TestClient, driver):
        """Test capture errors are reported with their kind."""
        driver.errors["1"] = exceptions.permission_denied("1")

        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "start"})
            error = websocket.receive_json()
            stopped = websocket.receive_json()

        assert error["type"] == "error"
        assert error["kind"] == "PermissionDenied"
        assert "permission" in error["message"].lower()
        assert stopped == {"type": "stopped"}

    def test_force_without_session(self, client: TestClient):
        """Test force scan when nothing is streaming."""
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "force", "timeout": 0.05})
            data = websocket.receive_json()

        assert data == {"type": "force", "code": None}

    def test_disconnect_releases_camera(self, client: TestClient, driver):
        """Test camera release when the client goes away."""
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "start", "backend": "continuous"})
            assert websocket.receive_json()["type"] == "started"

        assert driver.live_tracks == []
