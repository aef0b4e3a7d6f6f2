# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Equations of motion of the primary state.

The dynamics are evaluated in Cartesian coordinates (velocity,
acceleration sum, mass rate) and mapped to the run's orbit type by the
chain rule through the Cartesian-to-orbit Jacobian.

Derivatives are a pure function of (t, y) and of the driver values
frozen at the start of the run; the integrator may evaluate them any
number of times per step.
"""
from datetime import datetime, timedelta
from typing import Sequence

import numpy as np

from varprop.domain.force_models import ForceModel, acceleration_sum, mass_rate_sum
from varprop.domain.orbital_mechanics import OrbitType
from varprop.domain.parameters import ParameterTimeline
from varprop.domain.state_mapper import StateMapper


class MainStateEquations:
    """Primary state derivative for one propagation run."""

    def __init__(
        self,
        force_models: Sequence[ForceModel],
        mapper: StateMapper,
        timeline: ParameterTimeline,
    ) -> None:
        self._force_models = list(force_models)
        self._mapper = mapper
        self._timeline = timeline

    @property
    def mapper(self) -> StateMapper:
        return self._mapper

    @property
    def timeline(self) -> ParameterTimeline:
        return self._timeline

    def epoch_at(self, elapsed_s: float) -> datetime:
        return self._mapper.reference_epoch + timedelta(seconds=elapsed_s)

    def cartesian_derivatives(
        self, elapsed_s: float, position: np.ndarray, velocity: np.ndarray, mass: float,
    ) -> np.ndarray:
        """[velocity, acceleration, mass rate] in Cartesian coordinates."""
        epoch = self.epoch_at(elapsed_s)
        values = self._timeline.values_at(elapsed_s)
        derivatives = np.empty(7)
        derivatives[0:3] = velocity
        derivatives[3:6] = acceleration_sum(
            self._force_models, epoch, position, velocity, mass, values,
        )
        derivatives[6] = mass_rate_sum(self._force_models, epoch, position, velocity, mass, values)
        return derivatives

    def derivatives(self, elapsed_s: float, primary: np.ndarray) -> np.ndarray:
        """Time derivative of the primary array (orbit parameters + mass)."""
        position, velocity = self._mapper.cartesian(primary)
        cartesian = self.cartesian_derivatives(elapsed_s, position, velocity, float(primary[6]))
        if self._mapper.orbit_type == OrbitType.CARTESIAN:
            return cartesian
        jacobian = self._mapper.cartesian_to_orbit_jacobian(position, velocity)
        return jacobian @ cartesian
