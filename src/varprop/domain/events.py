# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Event detectors.

An event is a sign change of a scalar switching function g(state).
When the propagator locates one it asks the detector which action to
take: keep going, stop, replace the state, or only re-evaluate the
derivatives because the dynamics changed (maneuver ignition/cutoff).

Switching detectors owned by force models additionally report the
partials of g with respect to the Cartesian state, time and parameters
so the propagator can keep the STM and Jacobian columns consistent
across the discontinuity.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Protocol, Sequence, runtime_checkable

import numpy as np

from varprop.domain.adaptive_integration import EventAction
from varprop.domain.state import SpacecraftState

__all__ = [
    "AbstractDetector",
    "DateDetector",
    "EventAction",
    "EventDetector",
    "FunctionalDetector",
    "SwitchPartials",
    "continue_on_event",
    "state_gradient",
    "stop_on_event",
]

DEFAULT_MAX_CHECK_S = 600.0
DEFAULT_THRESHOLD_S = 1e-6
DEFAULT_MAX_ITERATIONS = 100


@dataclass(frozen=True)
class SwitchPartials:
    """Partials of a switching function at the switch.

    dg_dy: ∂g/∂(position, velocity, mass), Cartesian, length 7
    dg_dt: explicit ∂g/∂t
    dg_dp: ∂g/∂p keyed by parameter span name
    """
    dg_dy: np.ndarray
    dg_dt: float
    dg_dp: Mapping[str, float]


EventHandler = Callable[[SpacecraftState, "EventDetector", bool], EventAction]


def stop_on_event(state: SpacecraftState, detector: "EventDetector", increasing: bool) -> EventAction:
    return EventAction.STOP


def continue_on_event(state: SpacecraftState, detector: "EventDetector", increasing: bool) -> EventAction:
    return EventAction.CONTINUE


@runtime_checkable
class EventDetector(Protocol):
    """Structural typing port for event detectors."""

    max_check: float
    threshold: float
    max_iterations: int

    def init(self, initial_state: SpacecraftState, target: datetime) -> None: ...

    def g(self, state: SpacecraftState) -> float: ...

    def event_occurred(self, state: SpacecraftState, increasing: bool) -> EventAction: ...

    def reset_state(self, old_state: SpacecraftState) -> SpacecraftState: ...


class AbstractDetector:
    """Common detector settings and defaults.

    Subclasses provide g(). The handler decides the action; the default
    handler stops propagation.
    """

    def __init__(
        self,
        handler: EventHandler = stop_on_event,
        max_check: float = DEFAULT_MAX_CHECK_S,
        threshold: float = DEFAULT_THRESHOLD_S,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_check <= 0.0:
            raise ValueError(f"max_check must be positive, got {max_check}")
        if threshold <= 0.0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.handler = handler
        self.max_check = max_check
        self.threshold = threshold
        self.max_iterations = max_iterations

    def init(self, initial_state: SpacecraftState, target: datetime) -> None:
        pass

    def g(self, state: SpacecraftState) -> float:
        raise NotImplementedError

    def event_occurred(self, state: SpacecraftState, increasing: bool) -> EventAction:
        return self.handler(state, self, increasing)

    def reset_state(self, old_state: SpacecraftState) -> SpacecraftState:
        return old_state


class DateDetector(AbstractDetector):
    """Events at fixed dates.

    g is piecewise linear in time and changes sign at every date, so the
    propagator can land integration steps exactly on the dates.
    """

    def __init__(self, *dates: datetime, handler: EventHandler = stop_on_event,
                 max_check: float = DEFAULT_MAX_CHECK_S,
                 threshold: float = DEFAULT_THRESHOLD_S) -> None:
        super().__init__(handler, max_check, threshold)
        self._dates = sorted(dates)

    @property
    def dates(self) -> tuple[datetime, ...]:
        return tuple(self._dates)

    def add_event_date(self, date: datetime) -> None:
        self._dates.append(date)
        self._dates.sort()

    def event_times(self, reference_epoch: datetime) -> list[float]:
        """Event dates as exact elapsed seconds from reference_epoch."""
        return [(date - reference_epoch).total_seconds() for date in self._dates]

    def g(self, state: SpacecraftState) -> float:
        return _alternating_distance(
            state.elapsed_s, self.event_times(state.reference_epoch),
        )


def _alternating_distance(t: float, times: Sequence[float]) -> float:
    """Continuous function of t vanishing at each time, with alternating slopes."""
    if not times:
        return -1.0
    index = min(range(len(times)), key=lambda k: abs(t - times[k]))
    return (t - times[index]) if index % 2 == 0 else (times[index] - t)


class FunctionalDetector(AbstractDetector):
    """Detector built from a plain switching function g(state)."""

    def __init__(
        self,
        function: Callable[[SpacecraftState], float],
        handler: EventHandler = stop_on_event,
        max_check: float = DEFAULT_MAX_CHECK_S,
        threshold: float = DEFAULT_THRESHOLD_S,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        super().__init__(handler, max_check, threshold, max_iterations)
        self._function = function

    def g(self, state: SpacecraftState) -> float:
        return float(self._function(state))


def state_gradient(
    function: Callable[[SpacecraftState], float],
    state: SpacecraftState,
    position_step: float = 1e-3,
    velocity_step: float = 1e-6,
    mass_step: float = 1e-6,
) -> np.ndarray:
    """Central-difference gradient of function with respect to (r, v, m)."""
    gradient = np.zeros(7)
    for k in range(7):
        step = position_step if k < 3 else velocity_step if k < 6 else mass_step
        values = []
        for sign in (1.0, -1.0):
            y = np.concatenate((state.position, state.velocity, [state.mass]))
            y[k] += sign * step
            shifted = state.with_orbit(state.elapsed_s, y[0:3], y[3:6], y[6])
            values.append(function(shifted))
        gradient[k] = (values[0] - values[1]) / (2.0 * step)
    return gradient
