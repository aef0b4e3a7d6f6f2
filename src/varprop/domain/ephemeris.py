# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Bounded ephemerides generated during propagation.

An EphemerisGenerator attached to a propagator records the dense output
of every accepted step. Once a propagation finishes it freezes them into
a BoundedEphemeris: an immutable, re-queryable trajectory valid over
[min_date, max_date] that later propagations never modify.
"""
import bisect
from datetime import datetime, timedelta
from typing import Callable, Sequence

import numpy as np

from varprop.domain.adaptive_integration import StepInterpolator
from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.state import SpacecraftState

StateBuilder = Callable[[float, np.ndarray], SpacecraftState]

# Dates have microsecond resolution: closer than this to a bound is the bound.
_DATE_RESOLUTION_S = 5e-7


class BoundedEphemeris:
    """Interpolated trajectory over a closed time interval."""

    def __init__(
        self,
        reference_epoch: datetime,
        steps: Sequence[StepInterpolator],
        build_state: StateBuilder,
        initial_state: SpacecraftState,
    ) -> None:
        ordered = sorted(
            steps, key=lambda s: (min(s.t_previous, s.t_current), max(s.t_previous, s.t_current)),
        )
        self._reference_epoch = reference_epoch
        self._steps = tuple(ordered)
        self._starts = [min(s.t_previous, s.t_current) for s in ordered]
        self._build_state = build_state
        self._initial_state = initial_state
        if ordered:
            self._t_min = self._starts[0]
            self._t_max = max(max(s.t_previous, s.t_current) for s in ordered)
        else:
            self._t_min = self._t_max = initial_state.elapsed_s

    @property
    def min_date(self) -> datetime:
        return self._reference_epoch + timedelta(seconds=self._t_min)

    @property
    def max_date(self) -> datetime:
        return self._reference_epoch + timedelta(seconds=self._t_max)

    @property
    def initial_state(self) -> SpacecraftState:
        return self._initial_state

    def reset_initial_state(self, state: SpacecraftState) -> None:
        raise PropagationError(ErrorSpecifier.NON_RESETABLE_STATE, type(self).__name__)

    def propagate(self, date: datetime) -> SpacecraftState:
        """State at date, boundaries included.

        Raises:
            PropagationError: OUT_OF_RANGE_EPHEMERIDES_DATE_BEFORE / _AFTER
                for dates outside [min_date, max_date].
        """
        return self.state_at_elapsed((date - self._reference_epoch).total_seconds(), date)

    def state_at_elapsed(self, elapsed_s: float, date: datetime | None = None) -> SpacecraftState:
        if elapsed_s < self._t_min:
            if self._t_min - elapsed_s > _DATE_RESOLUTION_S:
                raise PropagationError(
                    ErrorSpecifier.OUT_OF_RANGE_EPHEMERIDES_DATE_BEFORE,
                    date or elapsed_s, self._t_min - elapsed_s, self.min_date, self.max_date,
                )
            elapsed_s = self._t_min
        if elapsed_s > self._t_max:
            if elapsed_s - self._t_max > _DATE_RESOLUTION_S:
                raise PropagationError(
                    ErrorSpecifier.OUT_OF_RANGE_EPHEMERIDES_DATE_AFTER,
                    date or elapsed_s, elapsed_s - self._t_max, self.min_date, self.max_date,
                )
            elapsed_s = self._t_max

        if not self._steps:
            return self._initial_state
        index = max(0, bisect.bisect_right(self._starts, elapsed_s) - 1)
        step = self._steps[index]
        return self._build_state(elapsed_s, step.interpolate(elapsed_s))


class EphemerisGenerator:
    """Collects the steps of the next propagations of a propagator."""

    def __init__(self) -> None:
        self._steps: list[StepInterpolator] = []
        self._ephemeris: BoundedEphemeris | None = None

    def start(self) -> None:
        self._steps = []

    def handle_step(self, interpolator: StepInterpolator, is_last: bool) -> None:
        self._steps.append(interpolator)

    def finish(
        self, reference_epoch: datetime, build_state: StateBuilder, initial_state: SpacecraftState,
    ) -> None:
        self._ephemeris = BoundedEphemeris(reference_epoch, self._steps, build_state, initial_state)
        self._steps = []

    def get_generated_ephemeris(self) -> BoundedEphemeris:
        if self._ephemeris is None:
            raise ValueError("no ephemeris has been generated yet, propagate first")
        return self._ephemeris
