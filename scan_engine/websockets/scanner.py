"""
==============================================================================
Scanner WebSocket Module
==============================================================================

Remote control of a camera scan running on the server's capture device.

Protocol:
---------
1. Client connects to /ws/scan
2. Client sends {"type": "start", "device_id"?, "backend"?, "continuous"?}
3. Server replies "started", then "scan" for each validated code
4. Single-shot sessions stop after the first code and report "stopped"
5. Client may send "force", "manual", "switch" or "stop" at any time

Server Events:
--------------
- {"type": "started", "device_id", "label", "backend"}
- {"type": "scan", "code"}
- {"type": "force", "code"}            (code is null on timeout)
- {"type": "manual", "valid", "code", "message"}
- {"type": "error", "kind", "message"}
- {"type": "stopped"}

==============================================================================
"""

import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from scan_engine.camera import CameraSource
from scan_engine.capability import DeviceCapabilityProfile, detect, enhance_error_message
from scan_engine.core.dependencies import get_camera_source, get_client_profile
from scan_engine.core.exceptions import ScanError
from scan_engine.decoders import RenderTarget
from scan_engine.scanning import ScanEngine, SessionState
from scan_engine.schemas import ScanCommand


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_ELEMENT_ID = "ws-scan"


class ScannerWebSocketHandler:
    """
    Handler for one scanning WebSocket connection.

    Manages the lifecycle of a scanning session including:
    - Session start, stop and camera switching
    - Forwarding codes and errors to the client
    - Manual entry

    The capture device is local to the server, so sessions are configured
    from the server's own profile; the client profile only shapes the
    error messages it receives.
    """

    def __init__(
        self,
        websocket: WebSocket,
        camera_source: CameraSource,
        client_profile: DeviceCapabilityProfile,
        engine: Optional[ScanEngine] = None
    ):
        self._websocket = websocket
        self._client_profile = client_profile
        self._engine = engine or ScanEngine(camera_source=camera_source, profile=detect())
        self._send_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def engine(self) -> ScanEngine:
        return self._engine

    async def send(self, payload: dict) -> None:
        """Send one event; events from concurrent tasks are serialized."""
        async with self._send_lock:
            await self._websocket.send_json(payload)

    async def send_error(self, message: str, kind: str = "ERROR") -> None:
        """Send error message to client."""
        await self.send({
            "type": "error",
            "kind": kind,
            "message": message
        })

    # =========================================================================
    # ENGINE CALLBACKS
    # =========================================================================

    async def on_scan(self, code: str) -> None:
        await self.send({"type": "scan", "code": code})
        await self._report_if_stopped()

    async def on_error(self, message: str) -> None:
        session = self._engine.session
        error = session.last_error if session else None
        kind = error.code if error else "ERROR"
        if error is not None:
            message = enhance_error_message(error, self._client_profile)
        await self.send_error(message, kind)
        await self._report_if_stopped()

    async def _report_if_stopped(self) -> None:
        session = self._engine.session
        if session is not None and session.state is SessionState.STOPPED:
            await self.send({"type": "stopped"})

    # =========================================================================
    # COMMAND HANDLERS
    # =========================================================================

    async def handle_start(self, command: ScanCommand) -> None:
        """Start a fresh session."""
        logger.info(f"Start: device={command.device_id}, backend={command.backend}")

        session = await self._engine.start_camera_scan(
            RenderTarget(command.element_id or DEFAULT_ELEMENT_ID),
            self.on_scan,
            self.on_error,
            preferred_device_id=command.device_id,
            backend=command.backend,
            continuous=command.continuous,
        )

        if session.state is SessionState.STREAMING:
            camera = session.active_camera
            await self.send({
                "type": "started",
                "device_id": camera.device_id if camera else None,
                "label": camera.label if camera else None,
                "backend": session.backend_kind.value
            })

    async def handle_stop(self) -> None:
        await self._engine.stop_camera_scan()
        await self.send({"type": "stopped"})

    async def handle_force(self, command: ScanCommand) -> None:
        code = await self._engine.force_scan(command.timeout)
        await self.send({"type": "force", "code": code})
        await self._report_if_stopped()

    async def handle_manual(self, command: ScanCommand) -> None:
        result = self._engine.submit_manual_code(command.text)
        await self.send({"type": "manual", **result.to_dict()})

    async def handle_switch(self, command: ScanCommand) -> None:
        if not command.device_id:
            await self.send_error("device_id is required to switch cameras", "ValidationFailure")
            return
        await self._engine.switch_camera(command.device_id)
        session = self._engine.session
        if session is not None and session.state is SessionState.STREAMING:
            await self.send({
                "type": "started",
                "device_id": command.device_id,
                "label": session.active_camera.label if session.active_camera else None,
                "backend": session.backend_kind.value
            })

    async def dispatch(self, data: dict) -> None:
        """Handle one client message."""
        try:
            command = ScanCommand.model_validate(data)
        except ValidationError as e:
            await self.send_error(f"Invalid message: {e.errors()[0]['msg']}", "ValidationFailure")
            return

        try:
            if command.type == "start":
                await self.handle_start(command)
            elif command.type == "stop":
                logger.info("🛑 Client requested stop")
                await self.handle_stop()
            elif command.type == "force":
                # Runs alongside the receive loop so "stop" is not blocked
                self._spawn(self.handle_force(command))
            elif command.type == "manual":
                await self.handle_manual(command)
            elif command.type == "switch":
                await self.handle_switch(command)
        except ScanError as e:
            await self.send_error(e.message, e.code)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run(self) -> None:
        """Main handler loop."""
        await self._websocket.accept()
        logger.info("📱 Scanner WebSocket connected")

        try:
            while True:
                data = await self._websocket.receive_json()
                await self.dispatch(data)

        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
        finally:
            for task in list(self._tasks):
                task.cancel()
            await self._engine.stop_camera_scan()
            logger.info("✅ Scanner WebSocket closed")


@router.websocket("/ws/scan")
async def websocket_scan(
    websocket: WebSocket,
    camera_source: CameraSource = Depends(get_camera_source),
    client_profile: DeviceCapabilityProfile = Depends(get_client_profile)
):
    """Camera scanning controlled over a WebSocket."""
    handler = ScannerWebSocketHandler(websocket, camera_source, client_profile)
    await handler.run()
