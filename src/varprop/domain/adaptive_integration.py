# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Dormand-Prince RK5(4) adaptive step-size integrator with events.

Embedded Runge-Kutta pair with local error estimation, PI step-size
controller, FSAL optimization and cubic Hermite dense output over the
last accepted step. Switching functions are monitored on every step;
known event times are landed on exactly, other sign changes are located
on the dense interpolant and the step is redone up to the event.

Event handlers answer with an EventAction consumed by the stepping loop:
continue, stop, or restart from a (possibly reset) state.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Sequence

import numpy as np

logger = logging.getLogger(__name__)

DerivativeFunction = Callable[[float, np.ndarray], np.ndarray]


# --- Dormand-Prince Butcher tableau (7 stages, FSAL) ---

DORMAND_PRINCE_C: tuple[float, ...] = (
    0.0,
    1.0 / 5.0,
    3.0 / 10.0,
    4.0 / 5.0,
    8.0 / 9.0,
    1.0,
    1.0,
)

DORMAND_PRINCE_A: tuple[tuple[float, ...], ...] = (
    (),
    (1.0 / 5.0,),
    (3.0 / 40.0, 9.0 / 40.0),
    (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0),
    (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0),
    (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0),
    (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0),
)

# Propagated solution weights (same as last row of A for FSAL)
DORMAND_PRINCE_B: tuple[float, ...] = (
    35.0 / 384.0,
    0.0,
    500.0 / 1113.0,
    125.0 / 192.0,
    -2187.0 / 6784.0,
    11.0 / 84.0,
    0.0,
)

# Embedded solution weights (for error estimation)
DORMAND_PRINCE_B_HAT: tuple[float, ...] = (
    5179.0 / 57600.0,
    0.0,
    7571.0 / 16695.0,
    393.0 / 640.0,
    -92097.0 / 339200.0,
    187.0 / 2100.0,
    1.0 / 40.0,
)

_DORMAND_PRINCE_E = np.array([
    b - b_hat for b, b_hat in zip(DORMAND_PRINCE_B, DORMAND_PRINCE_B_HAT)
])


# --- Types ---

@dataclass(frozen=True)
class AdaptiveStepConfig:
    """Configuration for adaptive step-size integration.

    rtol / atol may be scalars (error control over the whole vector) or
    sequences, in which case only the leading len(rtol) components take
    part in error control.
    """
    rtol: float | tuple[float, ...] = 1e-10
    atol: float | tuple[float, ...] = 1e-12
    h_init: float = 60.0
    h_min: float = 0.1
    h_max: float = 600.0
    safety_factor: float = 0.9
    max_steps: int = 1_000_000

    def __post_init__(self) -> None:
        if not 0.0 < self.h_min <= self.h_max:
            raise ValueError(f"need 0 < h_min <= h_max, got {self.h_min}, {self.h_max}")
        if isinstance(self.rtol, (tuple, list)) or isinstance(self.atol, (tuple, list)):
            if np.ndim(self.rtol) != np.ndim(self.atol) or np.size(self.rtol) != np.size(self.atol):
                raise ValueError("vector rtol and atol must have the same length")


class EventAction(Enum):
    """What the stepping loop does once an event has been located."""
    CONTINUE = "continue"
    STOP = "stop"
    RESET_STATE = "reset_state"
    RESET_DERIVATIVES = "reset_derivatives"


class IntegratorEvent(Protocol):
    """Switching function monitored by the integrator on raw (t, y)."""

    max_check: float
    threshold: float
    max_iterations: int

    def g(self, t: float, y: np.ndarray) -> float: ...

    def event_times(self) -> Sequence[float]: ...

    def handle(self, t: float, y: np.ndarray, increasing: bool) -> tuple[EventAction, np.ndarray]: ...


StepHandler = Callable[["StepInterpolator", bool], None]


@dataclass(frozen=True)
class IntegrationResult:
    """Final point of an integration run."""
    t: float
    y: np.ndarray
    stopped: bool
    total_steps: int
    rejected_steps: int


# --- Dormand-Prince core computational kernel ---

def _dp_full_step(
    t: float,
    y: np.ndarray,
    h: float,
    deriv_fn: DerivativeFunction,
    k1_in: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Compute all 7 DP stages and the propagated solution.

    Returns:
        (k_stages, y_new, k7) where k_stages is a (7, n) array of derivative
        evaluations, y_new is the propagated solution and k7 the FSAL
        derivative at y_new.
    """
    k = np.empty((7, y.shape[0]))
    k[0] = k1_in if k1_in is not None else deriv_fn(t, y)
    for stage in range(1, 6):
        increment = np.dot(DORMAND_PRINCE_A[stage], k[:stage])
        k[stage] = deriv_fn(t + DORMAND_PRINCE_C[stage] * h, y + h * increment)
    y_new = y + h * np.dot(DORMAND_PRINCE_B[:6], k[:6])
    k[6] = deriv_fn(t + h, y_new)
    return k, y_new, k[6]


def dormand_prince_step(
    t: float,
    y: np.ndarray,
    h: float,
    deriv_fn: DerivativeFunction,
    k1_in: np.ndarray | None = None,
) -> tuple[float, np.ndarray, np.ndarray]:
    """Single Dormand-Prince step with FSAL.

    Args:
        t: Current time (seconds).
        y: Current state vector.
        h: Step size (seconds, negative for backward integration).
        deriv_fn: Derivative function f(t, y) -> dy/dt.
        k1_in: Reused first stage from previous step (FSAL). If None, computed.

    Returns:
        (t_new, y_new, k7) where k7 is reusable as k1 of the next step.
    """
    _, y_new, k7 = _dp_full_step(t, np.asarray(y, dtype=float), h, deriv_fn, k1_in)
    return (t + h, y_new, k7)


# --- Error estimation ---

def _error_norm(
    y: np.ndarray,
    y_new: np.ndarray,
    k_stages: np.ndarray,
    h: float,
    atol: float | tuple[float, ...],
    rtol: float | tuple[float, ...],
) -> float:
    """Compute weighted RMS error norm for step-size control.

    err = sqrt(1/n * sum_j ((e_j / sc_j)^2))
    where e_j = h * sum_i(e_i * k_i_j) and sc_j = atol_j + rtol_j * max(|y_j|, |y_new_j|).
    With vector tolerances only the leading components are controlled.
    """
    n = np.size(rtol) if np.ndim(rtol) else y.shape[0]
    e_vec = h * (_DORMAND_PRINCE_E @ k_stages[:, :n])
    sc_vec = np.asarray(atol) + np.asarray(rtol) * np.maximum(np.abs(y[:n]), np.abs(y_new[:n]))
    return float(np.sqrt(np.sum((e_vec / sc_vec) ** 2) / n))


# --- Step-size control ---

def _new_step_size(
    h_try: float, err: float, safety: float, h_min: float, h_max: float,
) -> float:
    """Compute new step size magnitude from the error estimate."""
    if err < 1e-30:
        return h_max
    h_new = h_try * min(5.0, max(0.2, safety * err ** (-0.2)))
    return max(h_min, min(h_new, h_max))


# --- Dense output interpolation ---

def _hermite_interpolate(
    t0: float,
    y0: np.ndarray,
    f0: np.ndarray,
    t1: float,
    y1: np.ndarray,
    f1: np.ndarray,
    t_eval: float,
) -> np.ndarray:
    """Cubic Hermite interpolation between two integration points."""
    h = t1 - t0
    if abs(h) < 1e-30:
        return y0.copy()
    theta = (t_eval - t0) / h
    theta2 = theta * theta
    theta3 = theta2 * theta

    h00 = 2.0 * theta3 - 3.0 * theta2 + 1.0
    h10 = theta3 - 2.0 * theta2 + theta
    h01 = -2.0 * theta3 + 3.0 * theta2
    h11 = theta3 - theta2

    return h00 * y0 + h10 * h * f0 + h01 * y1 + h11 * h * f1


@dataclass(frozen=True)
class StepInterpolator:
    """Dense output over one accepted step.

    Endpoints are returned exactly; interior points use cubic Hermite
    interpolation on the step's end states and derivatives.
    """
    t_previous: float
    y_previous: np.ndarray
    f_previous: np.ndarray
    t_current: float
    y_current: np.ndarray
    f_current: np.ndarray

    @property
    def forward(self) -> bool:
        return self.t_current >= self.t_previous

    def interpolate(self, t: float) -> np.ndarray:
        if t == self.t_current:
            return self.y_current.copy()
        if t == self.t_previous:
            return self.y_previous.copy()
        return _hermite_interpolate(
            self.t_previous, self.y_previous, self.f_previous,
            self.t_current, self.y_current, self.f_current, t,
        )


@dataclass(frozen=True)
class ResetStepInterpolator(StepInterpolator):
    """Step ending on a RESET_STATE or RESET_DERIVATIVES event.

    y_current and f_current hold the state after the event handlers ran;
    interior points follow the integrated step, which ends at y_step_end.
    """
    y_step_end: np.ndarray | None = None
    f_step_end: np.ndarray | None = None

    def interpolate(self, t: float) -> np.ndarray:
        if t == self.t_current:
            return self.y_current.copy()
        if t == self.t_previous:
            return self.y_previous.copy()
        return _hermite_interpolate(
            self.t_previous, self.y_previous, self.f_previous,
            self.t_current, self.y_step_end, self.f_step_end, t,
        )


# --- Event bookkeeping ---

def _sign(value: float) -> int:
    return 1 if value > 0.0 else -1 if value < 0.0 else 0


def _ahead(t: float, reference: float, forward: bool) -> bool:
    return t > reference if forward else t < reference


@dataclass
class _Occurrence:
    time: float
    increasing: bool


class _EventState:
    """Sign tracking and root location for one monitored event."""

    def __init__(self, event: IntegratorEvent, t0: float, y0: np.ndarray, forward: bool) -> None:
        self.event = event
        self.forward = forward
        self.reset(t0, y0)

    def reset(self, t: float, y: np.ndarray) -> None:
        self.t_previous = t
        self.sign = _sign(self.event.g(t, y))

    def force_sign_after(self, t: float, increasing: bool) -> None:
        self.t_previous = t
        self.sign = 1 if increasing == self.forward else -1

    def times_ahead(self, t: float) -> list[float]:
        return [te for te in self.event.event_times() if _ahead(te, t, self.forward)]

    def evaluate_step(self, interpolator: StepInterpolator) -> tuple[_Occurrence | None, int]:
        """Earliest event in (t_previous, t_current] and the sign at the step end."""
        t_a, t_b = interpolator.t_previous, interpolator.t_current

        for te in self.event.event_times():
            if _ahead(te, t_a, self.forward) and not _ahead(te, t_b, self.forward):
                g_mid = self.event.g(0.5 * (t_a + te), interpolator.interpolate(0.5 * (t_a + te)))
                increasing = (g_mid < 0.0) == self.forward
                return _Occurrence(te, increasing), 1 if increasing == self.forward else -1

        n = max(1, int(math.ceil(abs(t_b - t_a) / self.event.max_check)))
        sign = self.sign
        t_left = t_a
        g_left = math.nan
        for i in range(1, n + 1):
            t_right = t_b if i == n else t_a + (t_b - t_a) * i / n
            g_right = self.event.g(t_right, interpolator.interpolate(t_right))
            s_right = _sign(g_right)
            if sign == 0:
                sign = s_right
            elif s_right != sign:
                increasing = (sign < 0) == self.forward
                if s_right == 0:
                    root = t_right
                else:
                    root = self._locate(interpolator, t_left, t_right, g_left, g_right)
                return _Occurrence(root, increasing), -sign
            t_left, g_left = t_right, g_right
        return None, sign

    def _locate(
        self, interpolator: StepInterpolator,
        t_a: float, t_b: float, g_a: float, g_b: float,
    ) -> float:
        """Illinois root finding; returns the bracket end past the sign change."""
        if math.isnan(g_a):
            g_a = self.event.g(t_a, interpolator.interpolate(t_a))
        for _ in range(self.event.max_iterations):
            if abs(t_b - t_a) <= self.event.threshold:
                return t_b
            t_c = t_b - g_b * (t_b - t_a) / (g_b - g_a)
            if not (min(t_a, t_b) < t_c < max(t_a, t_b)):
                t_c = 0.5 * (t_a + t_b)
            g_c = self.event.g(t_c, interpolator.interpolate(t_c))
            if g_c == 0.0:
                return t_c
            if _sign(g_c) == _sign(g_b):
                t_b, g_b = t_c, g_c
                g_a *= 0.5
            else:
                t_a, g_a = t_b, g_b
                t_b, g_b = t_c, g_c
        logger.warning(
            "event root finding stopped after %d iterations, bracket [%r, %r]",
            self.event.max_iterations, t_a, t_b,
        )
        return t_b


# --- Integrator ---

class DormandPrinceIntegrator:
    """Adaptive Dormand-Prince integrator with events and step handlers."""

    def __init__(self, config: AdaptiveStepConfig | None = None) -> None:
        self._config = config if config is not None else AdaptiveStepConfig()

    @property
    def config(self) -> AdaptiveStepConfig:
        return self._config

    def _initial_step(self) -> float:
        return max(self._config.h_min, min(self._config.h_init, self._config.h_max))

    def integrate(
        self,
        deriv_fn: DerivativeFunction,
        t0: float,
        y0: np.ndarray,
        t_end: float,
        events: Sequence[IntegratorEvent] = (),
        step_handlers: Sequence[StepHandler] = (),
    ) -> IntegrationResult:
        """Integrate dy/dt = deriv_fn(t, y) from t0 to t_end.

        Args:
            deriv_fn: Derivative function; may be evaluated at any trial point.
            t0: Initial time (seconds).
            y0: Initial state vector.
            t_end: Target time (seconds, before t0 for backward integration).
            events: Switching functions to monitor.
            step_handlers: Called as handler(interpolator, is_last) after every
                accepted step.

        Returns:
            IntegrationResult at t_end, or at the event that stopped the run.
        """
        config = self._config
        forward = t_end >= t0
        sign = 1.0 if forward else -1.0
        t = float(t0)
        y = np.array(y0, dtype=float)
        if t == t_end:
            return IntegrationResult(t, y, False, 0, 0)

        states = [_EventState(event, t, y, forward) for event in events]
        f = deriv_fn(t, y)
        h = self._initial_step()
        total_steps = 0
        rejected_steps = 0
        pending: tuple[_EventState, _Occurrence] | None = None

        while total_steps < config.max_steps:
            # Land exactly on the target, known event times and located roots.
            t_limit = t_end
            for state in states:
                for te in state.times_ahead(t):
                    if _ahead(t_limit, te, forward):
                        t_limit = te
            if pending is not None and _ahead(t_limit, pending[1].time, forward):
                t_limit = pending[1].time
            remaining = abs(t_limit - t)
            landing = h >= remaining
            h_try = remaining if landing else h

            k_stages, y_new, f_new = _dp_full_step(t, y, sign * h_try, deriv_fn, f)
            err = _error_norm(y, y_new, k_stages, sign * h_try, config.atol, config.rtol)
            if err > 1.0 and h_try > config.h_min:
                rejected_steps += 1
                h = _new_step_size(h_try, err, config.safety_factor, config.h_min, config.h_max)
                continue
            if err > 1.0:
                logger.warning(
                    "step of %.3g s at t=%.6f accepted at minimum step size with error %.3g",
                    h_try, t, err,
                )

            t_new = t_limit if landing else t + sign * h_try
            interpolator = StepInterpolator(t, y, f, t_new, y_new, f_new)

            # Locate the events of the step; a located root being landed on is kept.
            found: list[tuple[_EventState, _Occurrence]] = []
            end_signs = []
            for state in states:
                if pending is not None and state is pending[0] and t_new == pending[1].time:
                    occurrence = pending[1]
                    end_sign = 1 if occurrence.increasing == forward else -1
                else:
                    occurrence, end_sign = state.evaluate_step(interpolator)
                end_signs.append(end_sign)
                if occurrence is not None:
                    found.append((state, occurrence))
            earliest = None
            for item in found:
                if earliest is None or _ahead(earliest[1].time, item[1].time, forward):
                    earliest = item
            if earliest is not None and _ahead(t_new, earliest[1].time, forward):
                # Redo the step so that it ends on the event.
                pending = earliest
                continue

            total_steps += 1
            t, y, f = t_new, y_new, f_new
            pending = None
            for state, end_sign in zip(states, end_signs):
                state.t_previous = t
                state.sign = end_sign

            stop = False
            restart = False
            for state, occurrence in found:
                action, y = state.event.handle(t, y, occurrence.increasing)
                state.force_sign_after(t, occurrence.increasing)
                logger.debug("event at t=%.6f: %s", t, action.name)
                if action == EventAction.STOP:
                    stop = True
                elif action in (EventAction.RESET_STATE, EventAction.RESET_DERIVATIVES):
                    restart = True
            if restart:
                handled = {id(state) for state, _ in found}
                for state in states:
                    if id(state) not in handled:
                        state.reset(t, y)
                f = deriv_fn(t, y)
                interpolator = ResetStepInterpolator(
                    interpolator.t_previous, interpolator.y_previous, interpolator.f_previous,
                    t, y, f, interpolator.y_current, interpolator.f_current,
                )

            is_last = stop or t == t_end
            for handler in step_handlers:
                handler(interpolator, is_last)
            if is_last:
                return IntegrationResult(t, y, stop, total_steps, rejected_steps)

            if restart:
                h = self._initial_step()
            elif not landing:
                h = _new_step_size(h_try, err, config.safety_factor, config.h_min, config.h_max)

        logger.warning("integration stopped after max_steps=%d at t=%.6f", config.max_steps, t)
        return IntegrationResult(t, y, False, total_steps, rejected_steps)
