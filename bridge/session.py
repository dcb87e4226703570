"""
Per-connection session gateway: frame in, pipeline, frame out.
"""

import asyncio
import logging
import time
from typing import Optional

from bridge.protocol import (
    MANUAL_FRAME,
    TELEMETRY_EVENT,
    ProtocolError,
    decode_frame,
    encode_steer,
    parse_telemetry,
)
from control.mpc_controller import ActuationLatency, MPCController, OptimizerContractError
from data.formats.data_format import CommandEnvelope, TelemetrySnapshot
from trajectory.inference import ReferencePathInference
from trajectory.path_fitter import DegenerateFitError, sample_reference_line

logger = logging.getLogger("mpc_bridge")

DEFAULT_REFERENCE_POINTS = 25
DEFAULT_REFERENCE_SPACING = 2.5


class SessionGateway:
    """
    Drives one simulator session.

    handle_frame() is awaited once per inbound frame, in arrival order, so
    replies for a session leave in the order its telemetry arrived.
    """

    def __init__(
        self,
        controller: MPCController,
        latency: Optional[ActuationLatency] = None,
        inference: Optional[ReferencePathInference] = None,
        reference_points: int = DEFAULT_REFERENCE_POINTS,
        reference_spacing: float = DEFAULT_REFERENCE_SPACING,
        session_id: str = "session",
    ):
        self.controller = controller
        self.latency = latency or ActuationLatency()
        self.inference = inference or ReferencePathInference()
        self.reference_points = int(reference_points)
        self.reference_spacing = float(reference_spacing)
        self.session_id = session_id
        self.frames_handled = 0
        self.events_dropped = 0

    def build_command(self, snapshot: TelemetrySnapshot) -> CommandEnvelope:
        """
        Run transform, fit, state assembly and the optimizer for one snapshot.

        Raises:
            DegenerateFitError: Too few waypoints
            OptimizerContractError: Bad optimizer result
        """
        path = self.inference.process(snapshot)
        solution = self.controller.compute_control(path.state, path.model)
        next_x, next_y = sample_reference_line(
            path.model, self.reference_points, self.reference_spacing
        )
        return CommandEnvelope(solution=solution, next_x=next_x, next_y=next_y)

    async def handle_frame(self, frame: str, received_at: Optional[float] = None) -> Optional[str]:
        """
        Handle one inbound text frame.

        Args:
            frame: Raw text frame
            received_at: time.monotonic() at arrival (defaults to now)

        Returns:
            Reply frame, or None when nothing should be sent
        """
        if received_at is None:
            received_at = time.monotonic()
        self.frames_handled += 1

        try:
            event = decode_frame(frame)
            if event is None:
                return None
            if not event.has_payload:
                # Manual driving
                return MANUAL_FRAME
            if event.name != TELEMETRY_EVENT:
                logger.debug("[%s] ignoring event %r", self.session_id, event.name)
                return None

            snapshot = parse_telemetry(event.payload)
            envelope = await asyncio.to_thread(self.build_command, snapshot)
        except (ProtocolError, DegenerateFitError, OptimizerContractError) as e:
            self.events_dropped += 1
            logger.warning("[%s] dropped event: %s: %s", self.session_id, type(e).__name__, e)
            return None

        await self.latency.hold(received_at)
        return encode_steer(envelope)
