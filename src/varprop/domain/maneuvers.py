# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Continuous-thrust maneuvers and their triggers.

A ConstantThrustManeuver accelerates the spacecraft with a fixed thrust
while its triggers report the engine as firing, and depletes mass at
F / (g0 · Isp). Triggers decide ignition and cutoff:

- DateBasedManeuverTriggers fire between a start and a stop date. The
  dates are parameter drivers (start, stop, median, duration) that stay
  mutually consistent when any of them is changed.
- EventBasedManeuverTriggers fire while a user switching function of the
  state is positive, so the switch times depend on the state.

Maneuvers and triggers are configuration and are never written to by a
propagation. Each run gets its own TriggerStatus from init(), and the
run's detectors switch that status only.

No external dependencies — only stdlib math/datetime + numpy.
"""
import math
from datetime import datetime, timedelta
from typing import Callable, Sequence

import numpy as np

from varprop.domain import dual as d
from varprop.domain.events import (
    AbstractDetector,
    EventAction,
    SwitchPartials,
    state_gradient,
)
from varprop.domain.force_models import ForceModelBase
from varprop.domain.orbital_mechanics import OrbitalConstants
from varprop.domain.parameters import DateDriver, ParameterDriver
from varprop.domain.state import SpacecraftState


class TriggerStatus:
    """Engine status of one set of triggers during one propagation run."""

    def __init__(self, firing: bool, forward: bool) -> None:
        self.firing = firing
        self.forward = forward

    def __repr__(self) -> str:
        return f"TriggerStatus(firing={self.firing}, forward={self.forward})"


# --- Date-based triggers ---

class DateBasedManeuverTriggers:
    """Engine on between a start date and a stop date.

    Drivers: <name>_START, <name>_STOP (date shifts in seconds),
    <name>_MEDIAN (date shift of the mid-burn date) and <name>_DURATION
    (burn length in seconds).
    """

    START = "_START"
    STOP = "_STOP"
    MEDIAN = "_MEDIAN"
    DURATION = "_DURATION"

    def __init__(self, name: str, start_date: datetime, duration_s: float) -> None:
        if duration_s < 0.0:
            raise ValueError(f"duration_s must be non-negative, got {duration_s}")
        self._name = name
        stop_date = start_date + timedelta(seconds=duration_s)
        median_date = start_date + timedelta(seconds=0.5 * duration_s)
        self._start = DateDriver(name + self.START, start_date, start=True)
        self._stop = DateDriver(name + self.STOP, stop_date, start=False)
        self._median = DateDriver(name + self.MEDIAN, median_date, start=True)
        self._duration = ParameterDriver(name + self.DURATION, duration_s, min_value=0.0)
        self._reference = start_date
        self._synchronizing = False
        self._start.add_observer(self._on_boundary_change)
        self._stop.add_observer(self._on_boundary_change)
        self._median.add_observer(self._on_median_or_duration_change)
        self._duration.add_observer(self._on_median_or_duration_change)

    @property
    def name(self) -> str:
        return self._name

    @property
    def start_driver(self) -> DateDriver:
        return self._start

    @property
    def stop_driver(self) -> DateDriver:
        return self._stop

    @property
    def median_driver(self) -> DateDriver:
        return self._median

    @property
    def duration_driver(self) -> ParameterDriver:
        return self._duration

    @property
    def start_date(self) -> datetime:
        return self._start.date

    @property
    def stop_date(self) -> datetime:
        return self._stop.date

    def parameter_drivers(self) -> list[ParameterDriver]:
        return [self._start, self._stop, self._median, self._duration]

    def init(self, initial_state: SpacecraftState, target: datetime) -> TriggerStatus:
        """Status at the start of a run; a boundary at t0 counts as crossed."""
        t = initial_state.elapsed_s
        t_start = self._start.offset_from(initial_state.reference_epoch)
        t_stop = self._stop.offset_from(initial_state.reference_epoch)
        forward = initial_state.seconds_to(target) >= t
        if forward:
            return TriggerStatus(t_start <= t < t_stop, True)
        return TriggerStatus(t_start < t <= t_stop, False)

    def event_detectors(self, status: TriggerStatus) -> list["TriggerDateDetector"]:
        return [TriggerDateDetector(status, self._start), TriggerDateDetector(status, self._stop)]

    # --- driver consistency ---

    def _base_offset(self, driver: DateDriver) -> float:
        return (driver.base_date - self._reference).total_seconds()

    def _on_boundary_change(self, driver: ParameterDriver, previous: float, value: float) -> None:
        if self._synchronizing:
            return
        self._synchronizing = True
        try:
            t_start = self._start.offset_from(self._reference)
            t_stop = self._stop.offset_from(self._reference)
            self._median.set_value(0.5 * (t_start + t_stop) - self._base_offset(self._median))
            self._duration.set_value(t_stop - t_start)
        finally:
            self._synchronizing = False

    def _on_median_or_duration_change(self, driver: ParameterDriver, previous: float,
                                      value: float) -> None:
        if self._synchronizing:
            return
        self._synchronizing = True
        try:
            t_median = self._median.offset_from(self._reference)
            half = 0.5 * self._duration.value()
            self._start.set_value(t_median - half - self._base_offset(self._start))
            self._stop.set_value(t_median + half - self._base_offset(self._stop))
        finally:
            self._synchronizing = False


class TriggerDateDetector(AbstractDetector):
    """Switching detector at one boundary date of DateBasedManeuverTriggers."""

    def __init__(self, status: TriggerStatus, driver: DateDriver) -> None:
        super().__init__(threshold=1e-9)
        self._status = status
        self._driver = driver

    @property
    def driver(self) -> DateDriver:
        return self._driver

    def event_times(self, reference_epoch: datetime) -> list[float]:
        return [self._driver.offset_from(reference_epoch)]

    def g(self, state: SpacecraftState) -> float:
        return state.elapsed_s - self._driver.offset_from(state.reference_epoch)

    def event_occurred(self, state: SpacecraftState, increasing: bool) -> EventAction:
        self._status.firing = self._driver.is_start == self._status.forward
        return EventAction.RESET_DERIVATIVES

    def switch_partials(self, state: SpacecraftState) -> SwitchPartials:
        # g = t - (base + shift): ∂g/∂t = 1, ∂g/∂shift = -1
        return SwitchPartials(
            dg_dy=np.zeros(7),
            dg_dt=1.0,
            dg_dp={self._driver.name_at(state.date): -1.0},
        )


# --- Event-based triggers ---

class EventBasedManeuverTriggers:
    """Engine on while switching_function(state) > 0."""

    def __init__(
        self,
        name: str,
        switching_function: Callable[[SpacecraftState], float],
        max_check: float = 60.0,
        threshold: float = 1e-10,
    ) -> None:
        self._name = name
        self._function = switching_function
        self._max_check = max_check
        self._threshold = threshold

    @property
    def name(self) -> str:
        return self._name

    def parameter_drivers(self) -> list[ParameterDriver]:
        return []

    def init(self, initial_state: SpacecraftState, target: datetime) -> TriggerStatus:
        return TriggerStatus(
            self._function(initial_state) > 0.0,
            initial_state.seconds_to(target) >= initial_state.elapsed_s,
        )

    def event_detectors(self, status: TriggerStatus) -> list["SwitchingFunctionDetector"]:
        return [SwitchingFunctionDetector(status, self._function, self._max_check, self._threshold)]


class SwitchingFunctionDetector(AbstractDetector):
    """Switching detector for EventBasedManeuverTriggers."""

    def __init__(self, status: TriggerStatus,
                 function: Callable[[SpacecraftState], float],
                 max_check: float, threshold: float) -> None:
        super().__init__(max_check=max_check, threshold=threshold)
        self._status = status
        self._function = function

    def g(self, state: SpacecraftState) -> float:
        return float(self._function(state))

    def event_occurred(self, state: SpacecraftState, increasing: bool) -> EventAction:
        self._status.firing = increasing == self._status.forward
        return EventAction.RESET_DERIVATIVES

    def switch_partials(self, state: SpacecraftState) -> SwitchPartials:
        return SwitchPartials(
            dg_dy=state_gradient(self._function, state),
            dg_dt=0.0,
            dg_dp={},
        )


# --- Maneuver force model ---

class ConstantThrustManeuver(ForceModelBase):
    """Constant thrust along a fixed inertial direction or along velocity.

    acceleration() and mass_rate() give the engine-on dynamics. A
    propagation uses the model returned by init(), which switches them
    off while the run's trigger status says the engine is off.

    Drivers: <name>_THRUST (N) and <name>_ISP (s), followed by the
    trigger drivers.
    """

    THRUST = "_THRUST"
    ISP = "_ISP"

    def __init__(
        self,
        triggers: "DateBasedManeuverTriggers | EventBasedManeuverTriggers",
        thrust_n: float,
        isp_s: float,
        direction: Sequence[float] | None = None,
        name: str | None = None,
    ) -> None:
        if isp_s <= 0.0:
            raise ValueError(f"isp_s must be positive, got {isp_s}")
        self._triggers = triggers
        self._name = triggers.name if name is None else name
        if direction is None:
            self._direction = None
        else:
            norm = math.sqrt(sum(c * c for c in direction))
            if norm == 0.0:
                raise ValueError("thrust direction must be non-zero")
            self._direction = tuple(float(c) / norm for c in direction)
        self._thrust = ParameterDriver(self._name + self.THRUST, thrust_n, min_value=0.0)
        self._isp = ParameterDriver(self._name + self.ISP, isp_s, min_value=0.0)

    @property
    def name(self) -> str:
        return self._name

    @property
    def triggers(self) -> "DateBasedManeuverTriggers | EventBasedManeuverTriggers":
        return self._triggers

    def parameter_drivers(self) -> list[ParameterDriver]:
        return [self._thrust, self._isp] + self._triggers.parameter_drivers()

    def init(self, initial_state: SpacecraftState, target: datetime) -> "TriggeredManeuver":
        return TriggeredManeuver(self, self._triggers.init(initial_state, target))

    def acceleration(self, epoch, position, velocity, mass, parameters):
        factor = parameters[0] / mass
        if self._direction is None:
            vx, vy, vz = velocity
            factor = factor / d.sqrt(vx * vx + vy * vy + vz * vz)
            return (factor * vx, factor * vy, factor * vz)
        ux, uy, uz = self._direction
        return (factor * ux, factor * uy, factor * uz)

    def mass_rate(self, epoch, position, velocity, mass, parameters):
        return -parameters[0] / (OrbitalConstants.G0 * parameters[1])


class TriggeredManeuver(ForceModelBase):
    """A ConstantThrustManeuver bound to the trigger status of one run."""

    def __init__(self, maneuver: ConstantThrustManeuver, status: TriggerStatus) -> None:
        self._maneuver = maneuver
        self._status = status
        self._detectors = maneuver.triggers.event_detectors(status)

    @property
    def name(self) -> str:
        return self._maneuver.name

    @property
    def maneuver(self) -> ConstantThrustManeuver:
        return self._maneuver

    @property
    def status(self) -> TriggerStatus:
        return self._status

    def is_firing(self) -> bool:
        return self._status.firing

    def parameter_drivers(self) -> list[ParameterDriver]:
        return self._maneuver.parameter_drivers()

    def event_detectors(self) -> list:
        return list(self._detectors)

    def init(self, initial_state: SpacecraftState, target: datetime) -> "TriggeredManeuver":
        return self._maneuver.init(initial_state, target)

    def acceleration(self, epoch, position, velocity, mass, parameters):
        if not self._status.firing:
            return (0.0, 0.0, 0.0)
        return self._maneuver.acceleration(epoch, position, velocity, mass, parameters)

    def mass_rate(self, epoch, position, velocity, mass, parameters):
        if not self._status.firing:
            return 0.0
        return self._maneuver.mass_rate(epoch, position, velocity, mass, parameters)
