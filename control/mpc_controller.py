"""
MPC (Model Predictive Control) controller invocation.

Wraps an optimizer behind a lock, validates its result against the
steering/throttle/trajectory contract, and models actuation latency.
"""

import asyncio
import logging
import math
import threading
import time
from typing import Optional, Protocol, Sequence

import numpy as np

from control.mpc_solver import KinematicMPCSolver, build_mpc_config
from data.formats.data_format import ControlSolution, PolynomialModel, VehicleState

logger = logging.getLogger(__name__)

# Log solves slower than this to spot optimizer stalls.
SLOW_SOLVE_SECONDS = 0.05
DEFAULT_ACTUATION_LATENCY_S = 0.1


class Optimizer(Protocol):
    """Anything with a solve(state, coeffs) -> sequence method."""

    def solve(self, state: Sequence[float], coeffs: Sequence[float]) -> Sequence[float]:
        ...


class OptimizerContractError(RuntimeError):
    """The optimizer returned a result that does not follow the contract."""


def decode_solution(result: Sequence[float]) -> ControlSolution:
    """
    Split an optimizer result into command and predicted trajectory.

    result[0] is steering, result[1] is throttle, and result[2:] is the
    predicted trajectory interleaved as x, y, x, y, ...

    Raises:
        OptimizerContractError: Result too short, odd trajectory length,
            or non-numeric or non-finite entries
    """
    try:
        values = [float(v) for v in result]
    except (TypeError, ValueError) as e:
        raise OptimizerContractError(f"optimizer result is not a numeric sequence: {e}") from e
    if not all(math.isfinite(v) for v in values):
        raise OptimizerContractError("optimizer result contains NaN or infinite values")

    if len(values) < 2:
        raise OptimizerContractError(
            f"optimizer result must hold at least steering and throttle, got {len(values)} values"
        )
    trajectory = values[2:]
    if len(trajectory) % 2 != 0:
        raise OptimizerContractError(
            f"optimizer trajectory has odd length {len(trajectory)}; expected x, y pairs"
        )
    return ControlSolution(
        steering=values[0],
        throttle=values[1],
        mpc_x=trajectory[0::2],
        mpc_y=trajectory[1::2],
    )


class MPCController:
    """
    Model Predictive Control invocation.

    One controller owns one optimizer. Solves are serialized with a lock, so
    sharing a controller across sessions never runs two solves against the
    same warm-start state at once.
    """

    def __init__(self, optimizer: Optimizer):
        """
        Initialize MPC controller.

        Args:
            optimizer: Object implementing solve(state, coeffs)
        """
        self.optimizer = optimizer
        self._lock = threading.Lock()
        self.solve_count = 0

    def compute_control(self, state: VehicleState, model: PolynomialModel) -> ControlSolution:
        """
        Compute control using MPC.

        Args:
            state: Vehicle state in the vehicle frame
            model: Fitted reference path

        Returns:
            Decoded ControlSolution

        Raises:
            OptimizerContractError: Optimizer result violates the contract
        """
        start_time = time.perf_counter()
        with self._lock:
            result = self.optimizer.solve(
                state.as_vector(), np.asarray(model.coefficients, dtype=float)
            )
            self.solve_count += 1
        duration = time.perf_counter() - start_time
        if duration > SLOW_SOLVE_SECONDS:
            logger.warning("[SLOW] MPC solve duration=%.3fs", duration)

        solution = decode_solution(result)
        logger.info("Angle: %.5f Acc: %.5f", solution.steering, solution.throttle)
        return solution


class ActuationLatency:
    """
    Artificial delay between receiving telemetry and releasing its command.

    The hold is an asyncio sleep until a per-event deadline, so it only
    delays the command it belongs to.
    """

    def __init__(self, latency_s: float = DEFAULT_ACTUATION_LATENCY_S):
        if latency_s < 0.0:
            raise ValueError(f"actuation latency must be >= 0, got {latency_s}")
        self.latency_s = float(latency_s)

    def deadline(self, received_at: float) -> float:
        """Earliest monotonic time a command for this telemetry may leave."""
        return received_at + self.latency_s

    async def hold(self, received_at: float) -> float:
        """
        Sleep until the deadline for telemetry received at `received_at`.

        Args:
            received_at: time.monotonic() when the telemetry arrived

        Returns:
            Seconds actually slept
        """
        remaining = self.deadline(received_at) - time.monotonic()
        if remaining <= 0.0:
            return 0.0
        await asyncio.sleep(remaining)
        # asyncio.sleep may wake a hair early on coarse clocks
        while time.monotonic() < self.deadline(received_at):
            await asyncio.sleep(0.001)
        return remaining


def build_mpc_controller(config: dict, optimizer: Optional[Optimizer] = None) -> MPCController:
    """Build an MPCController from the full config dictionary."""
    if optimizer is None:
        optimizer = KinematicMPCSolver(build_mpc_config(config.get("mpc", {}) or {}))
    return MPCController(optimizer)


def build_actuation_latency(config: dict) -> ActuationLatency:
    latency_cfg = config.get("latency", {}) or {}
    latency_ms = float(latency_cfg.get("actuation_latency_ms", DEFAULT_ACTUATION_LATENCY_S * 1000.0))
    return ActuationLatency(latency_ms / 1000.0)
