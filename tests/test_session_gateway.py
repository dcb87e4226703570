"""
Tests for bridge/session.py: the per-connection telemetry pipeline.
"""

import asyncio
import json
import math
import time

import numpy as np
import pytest

from bridge.protocol import MANUAL_FRAME
from bridge.session import SessionGateway
from control.mpc_controller import ActuationLatency, MPCController


class RecordingOptimizer:
    def __init__(self, result=None):
        self.result = result if result is not None else [0.1, 0.5, 10, 1, 20, 2]
        self.calls = []

    def solve(self, state, coeffs):
        self.calls.append((np.array(state), np.array(coeffs)))
        return self.result


def _gateway(optimizer=None, latency_s=0.0, **kwargs):
    optimizer = optimizer or RecordingOptimizer()
    return SessionGateway(MPCController(optimizer), ActuationLatency(latency_s), **kwargs)


def _telemetry_frame(**overrides):
    payload = {
        "x": 0.0,
        "y": 0.0,
        "psi": 0.0,
        "speed": 10.0,
        "steering_angle": 0.0,
        "throttle": 0.0,
        "ptsx": [0.0, 1.0, 2.0, 3.0],
        "ptsy": [0.0, 1.0, 2.0, 3.0],
    }
    payload.update(overrides)
    return "42" + json.dumps(["telemetry", payload])


def _decode(reply):
    assert reply.startswith("42")
    return json.loads(reply[2:])


class TestManualDriving:

    def test_null_payload_replies_manual(self):
        optimizer = RecordingOptimizer()
        reply = asyncio.run(_gateway(optimizer).handle_frame('42["telemetry",null]'))
        assert reply == '42["manual",{}]'
        assert reply == MANUAL_FRAME
        assert optimizer.calls == []

    def test_manual_reply_is_not_delayed(self):
        gateway = _gateway(latency_s=0.5)
        start = time.monotonic()
        asyncio.run(gateway.handle_frame('42["telemetry",null]'))
        assert time.monotonic() - start < 0.5


class TestTelemetry:

    def test_steer_reply(self):
        optimizer = RecordingOptimizer([0.1, 0.5, 10, 1, 20, 2])
        reply = asyncio.run(_gateway(optimizer).handle_frame(_telemetry_frame()))
        name, payload = _decode(reply)
        assert name == "steer"
        assert payload["steering_angle"] == 0.1
        assert payload["throttle"] == 0.5
        assert payload["mpc_x"] == [10.0, 20.0]
        assert payload["mpc_y"] == [1.0, 2.0]
        assert payload["next_x"] == [2.5 * i for i in range(25)]
        assert len(payload["next_y"]) == 25
        # Reference line follows y = x
        for x, y in zip(payload["next_x"], payload["next_y"]):
            assert y == pytest.approx(x, abs=1e-6)

    def test_optimizer_receives_vehicle_frame_state(self):
        optimizer = RecordingOptimizer()
        asyncio.run(_gateway(optimizer).handle_frame(_telemetry_frame(speed=17.0)))
        state, coeffs = optimizer.calls[0]
        assert state.shape == (6,)
        np.testing.assert_array_equal(state[:3], [0.0, 0.0, 0.0])
        assert state[3] == 17.0
        assert state[4] == coeffs[0]
        assert state[5] == -math.atan(coeffs[1])
        assert coeffs.shape == (4,)

    def test_reference_line_is_independent_of_prediction(self):
        optimizer = RecordingOptimizer([0.0, 0.0, 99.0, -99.0])
        reply = asyncio.run(_gateway(optimizer).handle_frame(_telemetry_frame(
            ptsx=[0.0, 10.0, 20.0, 30.0], ptsy=[1.0, 1.0, 1.0, 1.0],
        )))
        _, payload = _decode(reply)
        assert payload["mpc_x"] == [99.0]
        assert payload["next_y"] == pytest.approx([1.0] * 25, abs=1e-6)

    def test_reply_waits_for_actuation_latency(self):
        gateway = _gateway(latency_s=0.1)
        received_at = time.monotonic()
        reply = asyncio.run(gateway.handle_frame(_telemetry_frame(), received_at))
        assert reply is not None
        assert time.monotonic() - received_at >= 0.1

    def test_sessions_do_not_stall_each_other(self):
        gateways = [_gateway(latency_s=0.2) for _ in range(4)]

        async def run():
            start = time.monotonic()
            replies = await asyncio.gather(*(g.handle_frame(_telemetry_frame()) for g in gateways))
            return replies, time.monotonic() - start

        replies, elapsed = asyncio.run(run())
        assert all(r is not None for r in replies)
        assert elapsed < 0.6

    def test_replies_keep_arrival_order(self):
        results = iter([[0.1, 0.0], [0.2, 0.0], [0.3, 0.0]])

        class SequenceOptimizer:
            def solve(self, state, coeffs):
                return next(results)

        gateway = _gateway(SequenceOptimizer(), latency_s=0.01)

        async def run():
            replies = []
            for _ in range(3):
                replies.append(await gateway.handle_frame(_telemetry_frame()))
            return replies

        steering = [_decode(r)[1]["steering_angle"] for r in asyncio.run(run())]
        assert steering == [0.1, 0.2, 0.3]


class TestDroppedEvents:

    def test_unknown_event_is_ignored(self):
        optimizer = RecordingOptimizer()
        reply = asyncio.run(_gateway(optimizer).handle_frame('42["hello",{"a":1}]'))
        assert reply is None
        assert optimizer.calls == []

    def test_non_event_frame_is_ignored(self):
        assert asyncio.run(_gateway().handle_frame("2")) is None

    def test_malformed_frame_is_dropped(self):
        gateway = _gateway()
        assert asyncio.run(gateway.handle_frame("42[not json")) is None
        assert gateway.events_dropped == 1

    def test_missing_field_is_dropped(self):
        frame = '42["telemetry",{"x":0,"y":0}]'
        gateway = _gateway()
        assert asyncio.run(gateway.handle_frame(frame)) is None
        assert gateway.events_dropped == 1

    def test_too_few_waypoints_skips_optimizer(self):
        optimizer = RecordingOptimizer()
        gateway = _gateway(optimizer)
        frame = _telemetry_frame(ptsx=[0.0, 1.0, 2.0], ptsy=[0.0, 1.0, 2.0])
        assert asyncio.run(gateway.handle_frame(frame)) is None
        assert optimizer.calls == []
        assert gateway.events_dropped == 1

    def test_odd_optimizer_result_sends_nothing(self):
        gateway = _gateway(RecordingOptimizer([0.1, 0.5, 10, 1, 20]))
        assert asyncio.run(gateway.handle_frame(_telemetry_frame())) is None
        assert gateway.events_dropped == 1

    def test_non_finite_telemetry_is_dropped(self):
        optimizer = RecordingOptimizer()
        gateway = _gateway(optimizer)
        frame = ('42["telemetry",{"x":NaN,"y":0,"psi":0,"speed":1,"steering_angle":0,'
                 '"throttle":0,"ptsx":[0,1,2,3],"ptsy":[0,1,2,3]}]')
        assert asyncio.run(gateway.handle_frame(frame)) is None
        assert optimizer.calls == []
        assert gateway.events_dropped == 1

    def test_string_speed_is_dropped(self):
        optimizer = RecordingOptimizer()
        gateway = _gateway(optimizer)
        assert asyncio.run(gateway.handle_frame(_telemetry_frame(speed="10"))) is None
        assert optimizer.calls == []
        assert gateway.events_dropped == 1

    def test_non_finite_optimizer_result_sends_nothing(self):
        gateway = _gateway(RecordingOptimizer([float("nan"), 0.5, 10, 1]))
        assert asyncio.run(gateway.handle_frame(_telemetry_frame())) is None
        assert gateway.events_dropped == 1

    def test_session_recovers_after_bad_event(self):
        gateway = _gateway()

        async def run():
            bad = await gateway.handle_frame("42[not json")
            good = await gateway.handle_frame(_telemetry_frame())
            return bad, good

        bad, good = asyncio.run(run())
        assert bad is None
        assert _decode(good)[0] == "steer"
