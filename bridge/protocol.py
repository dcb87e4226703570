"""
Simulator message framing.

Payload-bearing frames are the socket.io event prefix "42" followed by a
JSON array [eventName, payload].
"""

import json
from dataclasses import dataclass
from typing import Any, List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from data.formats.data_format import CommandEnvelope, TelemetrySnapshot

EVENT_PREFIX = "42"
TELEMETRY_EVENT = "telemetry"
STEER_EVENT = "steer"
MANUAL_EVENT = "manual"


class ProtocolError(ValueError):
    """Inbound frame is malformed or missing required fields."""


class TransportError(ConnectionError):
    """Sending or receiving on the session channel failed."""


class TelemetryPayload(BaseModel):
    """Telemetry payload from the simulator."""
    # Numbers only: no numeric strings, booleans, NaN or infinity
    model_config = ConfigDict(strict=True, allow_inf_nan=False)

    x: float
    y: float
    psi: float  # Heading (radians)
    speed: float
    steering_angle: float
    throttle: float
    ptsx: List[float]
    ptsy: List[float]

    @model_validator(mode="after")
    def _check_waypoint_lengths(self):
        if len(self.ptsx) != len(self.ptsy):
            raise ValueError(
                f"ptsx and ptsy length mismatch: {len(self.ptsx)} vs {len(self.ptsy)}"
            )
        return self

    def to_snapshot(self) -> TelemetrySnapshot:
        return TelemetrySnapshot(
            x=self.x,
            y=self.y,
            psi=self.psi,
            speed=self.speed,
            steering_angle=self.steering_angle,
            throttle=self.throttle,
            ptsx=np.asarray(self.ptsx, dtype=float),
            ptsy=np.asarray(self.ptsy, dtype=float),
        )


@dataclass
class InboundEvent:
    name: str
    payload: Optional[dict]  # None when the frame carries no payload

    @property
    def has_payload(self) -> bool:
        return self.payload is not None


def _reject_constant(name: str):
    # json.loads accepts NaN/Infinity/-Infinity, which are not JSON
    raise ProtocolError(f"non-finite constant {name} is not valid JSON")


def decode_frame(frame: str) -> Optional[InboundEvent]:
    """
    Decode one text frame.

    Returns:
        InboundEvent, or None if the frame is not an event frame (no "42"
        prefix); such frames are not protocol messages and are ignored

    Raises:
        ProtocolError: Prefixed frame whose body is not [eventName, payload]
    """
    if len(frame) <= len(EVENT_PREFIX) or not frame.startswith(EVENT_PREFIX):
        return None

    try:
        body = json.loads(frame[len(EVENT_PREFIX):], parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"event body is not valid JSON: {e}") from e

    if not isinstance(body, list) or not body or len(body) > 2:
        raise ProtocolError("event body must be a JSON array [eventName, payload]")
    name = body[0]
    if not isinstance(name, str):
        raise ProtocolError(f"event name must be a string, got {type(name).__name__}")

    payload = body[1] if len(body) == 2 else None
    if payload is not None and not isinstance(payload, dict):
        raise ProtocolError(f"event payload must be an object or null, got {type(payload).__name__}")
    return InboundEvent(name=name, payload=payload)


def parse_telemetry(payload: dict) -> TelemetrySnapshot:
    """
    Validate a telemetry payload.

    Raises:
        ProtocolError: Missing or non-numeric fields, mismatched waypoints
    """
    try:
        return TelemetryPayload.model_validate(payload).to_snapshot()
    except ValidationError as e:
        raise ProtocolError(f"invalid telemetry payload: {e.error_count()} error(s): {e}") from e


def encode_event(name: str, payload: Any) -> str:
    """Encode an outbound event frame with compact JSON."""
    return EVENT_PREFIX + json.dumps([name, payload], separators=(",", ":"), allow_nan=False)


def encode_steer(envelope: CommandEnvelope) -> str:
    return encode_event(STEER_EVENT, envelope.to_payload())


MANUAL_FRAME = encode_event(MANUAL_EVENT, {})
