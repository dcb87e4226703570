"""
FastAPI server for simulator-controller communication.
Receives telemetry over a WebSocket and replies with steer commands.
"""

import itertools
import logging
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, Response
import uvicorn

from bridge.protocol import TransportError
from bridge.session import (
    DEFAULT_REFERENCE_POINTS,
    DEFAULT_REFERENCE_SPACING,
    SessionGateway,
)
from control.mpc_controller import MPCController, build_actuation_latency, build_mpc_controller
from trajectory.inference import ReferencePathInference

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 4567
ROOT_PAGE = "<h1>Hello world!</h1>"


def _get_bridge_logger() -> logging.Logger:
    log_path = Path(__file__).resolve().parents[1] / "tmp" / "logs" / "mpc_bridge.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    bridge_logger = logging.getLogger("mpc_bridge")
    bridge_logger.setLevel(logging.INFO)

    if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path)
               for h in bridge_logger.handlers):
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        bridge_logger.addHandler(handler)

    bridge_logger.propagate = False
    return bridge_logger


logger = _get_bridge_logger()


class GatewayFactory:
    """
    Builds one SessionGateway per connection.

    With optimizer_scope "session" every connection gets its own optimizer
    (and warm start). With "shared" all connections use one controller,
    whose lock serializes the solves.
    """

    def __init__(self, config: dict, optimizer_factory=None):
        self.config = config
        self.optimizer_factory = optimizer_factory
        mpc_cfg = config.get("mpc", {}) or {}
        self.optimizer_scope = str(mpc_cfg.get("optimizer_scope", "session")).lower()
        if self.optimizer_scope not in ("session", "shared"):
            raise ValueError(f"mpc.optimizer_scope must be 'session' or 'shared', got {self.optimizer_scope!r}")
        self._shared_controller: Optional[MPCController] = None
        self._ids = itertools.count(1)

        ref_cfg = config.get("reference_line", {}) or {}
        self.reference_points = int(ref_cfg.get("num_points", DEFAULT_REFERENCE_POINTS))
        self.reference_spacing = float(ref_cfg.get("spacing", DEFAULT_REFERENCE_SPACING))
        fit_cfg = config.get("path_fit", {}) or {}
        self.fit_order = int(fit_cfg.get("order", 3))

    def _new_controller(self) -> MPCController:
        optimizer = self.optimizer_factory() if self.optimizer_factory is not None else None
        return build_mpc_controller(self.config, optimizer)

    def controller_for_session(self) -> MPCController:
        if self.optimizer_scope == "shared":
            if self._shared_controller is None:
                self._shared_controller = self._new_controller()
            return self._shared_controller
        return self._new_controller()

    def __call__(self) -> SessionGateway:
        return SessionGateway(
            controller=self.controller_for_session(),
            latency=build_actuation_latency(self.config),
            inference=ReferencePathInference(order=self.fit_order),
            reference_points=self.reference_points,
            reference_spacing=self.reference_spacing,
            session_id=f"session-{next(self._ids)}",
        )


async def _send(websocket: WebSocket, frame: str) -> None:
    try:
        await websocket.send_text(frame)
    except (RuntimeError, OSError, WebSocketDisconnect) as e:
        raise TransportError(f"send failed: {e}") from e


def _message_text(message: dict) -> Optional[str]:
    """Text of a websocket.receive message; binary frames are read as UTF-8."""
    text = message.get("text")
    if text is not None:
        return text
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def create_app(config: Optional[dict] = None, optimizer_factory=None) -> FastAPI:
    """
    Build the bridge app.

    Args:
        config: Full config dictionary (see config/mpc_stack_config.yaml)
        optimizer_factory: Optional zero-argument callable returning an
            optimizer; defaults to the bundled KinematicMPCSolver
    """
    config = config or {}
    app = FastAPI(title="MPC Bridge Server")
    app.state.gateway_factory = GatewayFactory(config, optimizer_factory)
    app.state.active_sessions = 0

    @app.get("/", response_class=HTMLResponse)
    async def root_page():
        """Static page for health checks."""
        return ROOT_PAGE

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "HEAD", "OPTIONS", "PATCH"])
    async def empty_response(path: str):
        return Response(content=b"")

    @app.websocket("/{path:path}")
    async def simulator_session(websocket: WebSocket, path: str):
        await websocket.accept()
        gateway: SessionGateway = app.state.gateway_factory()
        app.state.active_sessions += 1
        logger.info("Connected!!! %s path=/%s active=%d", gateway.session_id, path, app.state.active_sessions)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                received_at = time.monotonic()
                frame = _message_text(message)
                if frame is None:
                    logger.warning("[%s] ignoring binary frame that is not UTF-8 text", gateway.session_id)
                    continue
                try:
                    reply = await gateway.handle_frame(frame, received_at)
                except Exception:
                    # Unexpected fault; drop this event, keep the session
                    logger.exception("[%s] failed to handle frame", gateway.session_id)
                    continue
                if reply is not None:
                    await _send(websocket, reply)
        except TransportError as e:
            logger.warning("[%s] transport error: %s", gateway.session_id, e)
        finally:
            app.state.active_sessions -= 1
            logger.info(
                "Disconnected %s frames=%d dropped=%d",
                gateway.session_id,
                gateway.frames_handled,
                gateway.events_dropped,
            )

    return app


app = create_app()


def run_server(config: Optional[dict] = None, host: Optional[str] = None, port: Optional[int] = None):
    """Run the bridge server."""
    config = config or {}
    server_cfg = config.get("server", {}) or {}
    host = host or server_cfg.get("host", DEFAULT_HOST)
    port = int(port or server_cfg.get("port", DEFAULT_PORT))

    print(f"Starting MPC Bridge Server on {host}:{port}")
    print("Endpoints:")
    print("  GET / - Health check page")
    print("  WS  /* - Simulator telemetry in, steer commands out")
    logger.info("Listening to port %d", port)

    uvicorn.run(create_app(config), host=host, port=port)


if __name__ == "__main__":
    run_server()
