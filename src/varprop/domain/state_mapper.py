# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Mapping between SpacecraftState and the primary integrated array.

The primary array holds the six orbit parameters of the run's orbit type
followed by the mass. Conversions go through the element-set functions
of orbital_mechanics; their Jacobians are exact (forward-mode AD).

No external dependencies — only stdlib datetime + numpy + domain imports.
"""
from datetime import datetime
from typing import Mapping, Sequence

import numpy as np

from varprop.domain import dual as d
from varprop.domain.dual import Dual
from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.orbital_mechanics import (
    OrbitType,
    PositionAngleType,
    cartesian_to_elements,
    elements_to_cartesian,
    orbit_to_cartesian_jacobian,
)
from varprop.domain.state import SpacecraftState

MASS_ABSOLUTE_TOLERANCE = 1e-6

# Columns of the orbit-to-Cartesian Jacobian closer to collinear than this
# make the element set unusable for the orbit.
_MAX_CONDITION = 1e12


def _padded(jacobian: np.ndarray) -> np.ndarray:
    full = np.eye(7)
    full[:6, :6] = jacobian
    return full


def cartesian_to_orbit_jacobian(
    position: Sequence[float],
    velocity: Sequence[float],
    orbit_type: OrbitType,
    angle_type: PositionAngleType,
    mu: float,
) -> np.ndarray:
    """6×6 Jacobian ∂(elements)/∂(position, velocity), by forward-mode AD."""
    if orbit_type == OrbitType.CARTESIAN:
        return np.eye(6)
    seeded = [Dual.variable(float(v), k, 6) for k, v in enumerate(list(position) + list(velocity))]
    elements = cartesian_to_elements(seeded[0:3], seeded[3:6], orbit_type, angle_type, mu)
    return d.jacobian_of(elements, 6)


def check_jacobian(jacobian: np.ndarray, orbit_type: OrbitType) -> None:
    """Raise SINGULAR_JACOBIAN_FOR_ORBIT_TYPE if the element set degenerates."""
    if not np.all(np.isfinite(jacobian)):
        raise PropagationError(ErrorSpecifier.SINGULAR_JACOBIAN_FOR_ORBIT_TYPE, orbit_type.value)
    norms = np.linalg.norm(jacobian, axis=0)
    if np.any(norms == 0.0):
        raise PropagationError(ErrorSpecifier.SINGULAR_JACOBIAN_FOR_ORBIT_TYPE, orbit_type.value)
    if np.linalg.cond(jacobian / norms) > _MAX_CONDITION:
        raise PropagationError(ErrorSpecifier.SINGULAR_JACOBIAN_FOR_ORBIT_TYPE, orbit_type.value)


class StateMapper:
    """Converts states to primary arrays for one propagation run."""

    def __init__(
        self,
        reference_epoch: datetime,
        mu: float,
        orbit_type: OrbitType,
        angle_type: PositionAngleType,
        frame: str = "GCRF",
        attitude: tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0),
    ) -> None:
        self.reference_epoch = reference_epoch
        self.mu = mu
        self.orbit_type = orbit_type
        self.angle_type = angle_type
        self.frame = frame
        self.attitude = attitude

    @classmethod
    def for_state(
        cls, state: SpacecraftState, orbit_type: OrbitType, angle_type: PositionAngleType,
    ) -> "StateMapper":
        return cls(state.reference_epoch, state.mu, orbit_type, angle_type, state.frame, state.attitude)

    def to_array(self, state: SpacecraftState) -> np.ndarray:
        elements = cartesian_to_elements(
            state.position, state.velocity, self.orbit_type, self.angle_type, self.mu,
        )
        return np.array([float(e) for e in elements] + [state.mass])

    def cartesian(self, array: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
        position, velocity = elements_to_cartesian(
            array[0:6], self.orbit_type, self.angle_type, self.mu,
        )
        return np.array(position, dtype=float), np.array(velocity, dtype=float)

    def from_array(
        self,
        array: Sequence[float],
        elapsed_s: float,
        additional_states: Mapping[str, Sequence[float]] | None = None,
        additional_derivatives: Mapping[str, Sequence[float]] | None = None,
    ) -> SpacecraftState:
        position, velocity = self.cartesian(array)
        return SpacecraftState(
            reference_epoch=self.reference_epoch,
            elapsed_s=elapsed_s,
            position=position,
            velocity=velocity,
            mass=float(array[6]),
            mu=self.mu,
            frame=self.frame,
            attitude=self.attitude,
            additional_states=additional_states or {},
            additional_derivatives=additional_derivatives or {},
        )

    def orbit_to_cartesian_jacobian(self, array: Sequence[float]) -> np.ndarray:
        """7×7 ∂(position, velocity, mass)/∂(primary array)."""
        return _padded(orbit_to_cartesian_jacobian(
            [float(v) for v in array[0:6]], self.orbit_type, self.angle_type, self.mu,
        ))

    def cartesian_to_orbit_jacobian(
        self, position: Sequence[float], velocity: Sequence[float],
    ) -> np.ndarray:
        """7×7 ∂(primary array)/∂(position, velocity, mass)."""
        return _padded(cartesian_to_orbit_jacobian(
            position, velocity, self.orbit_type, self.angle_type, self.mu,
        ))


def tolerances(
    dp: float,
    state: SpacecraftState,
    orbit_type: OrbitType,
    angle_type: PositionAngleType = PositionAngleType.TRUE,
) -> tuple[np.ndarray, np.ndarray]:
    """Integration tolerances equivalent to a position error dp (m).

    The Cartesian velocity error follows from energy conservation,
    dV = mu·dP / (r²·V); other element sets map the Cartesian errors
    through the absolute Cartesian-to-orbit Jacobian.

    Returns:
        (absolute, relative) tolerance arrays of length 7 (mass last).

    Raises:
        PropagationError: SINGULAR_JACOBIAN_FOR_ORBIT_TYPE when the element
            set is singular for this orbit (e.g. Keplerian on a circular orbit).
    """
    r = float(np.linalg.norm(state.position))
    v = float(np.linalg.norm(state.velocity))
    dv = state.mu * dp / (r * r * v)
    absolute_cartesian = np.array([dp, dp, dp, dv, dv, dv])

    if orbit_type == OrbitType.CARTESIAN:
        absolute = absolute_cartesian
    else:
        elements = cartesian_to_elements(
            state.position, state.velocity, orbit_type, angle_type, state.mu,
        )
        check_jacobian(
            orbit_to_cartesian_jacobian([float(e) for e in elements], orbit_type, angle_type, state.mu),
            orbit_type,
        )
        jacobian = cartesian_to_orbit_jacobian(
            state.position, state.velocity, orbit_type, angle_type, state.mu,
        )
        absolute = np.abs(jacobian) @ absolute_cartesian

    relative = np.full(7, dp / r)
    return np.append(absolute, MASS_ABSOLUTE_TOLERANCE), relative
