# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Immutable spacecraft state.

A SpacecraftState is a snapshot of the Cartesian orbit, mass, attitude
and named additional states at one date. Dates are held as a reference
epoch plus elapsed seconds so integration times round-trip exactly;
the `date` property gives the wall-clock datetime.

Additional states live in read-only mappings; every update returns a
new state that shares the untouched arrays.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping, Sequence

import numpy as np

from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.orbital_mechanics import OrbitalConstants


def _frozen_array(values: Sequence[float]) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


def _frozen_mapping(entries: Mapping[str, Sequence[float]]) -> Mapping[str, np.ndarray]:
    return MappingProxyType({
        name: (values if isinstance(values, np.ndarray) and not values.flags.writeable
               else _frozen_array(values))
        for name, values in entries.items()
    })


@dataclass(frozen=True, eq=False)
class SpacecraftState:
    """Snapshot of a spacecraft at one date.

    reference_epoch: epoch the elapsed time is counted from (UTC datetime)
    elapsed_s: seconds since reference_epoch
    position: ECI position (m), read-only array
    velocity: ECI velocity (m/s), read-only array
    mass: spacecraft mass (kg)
    mu: central body gravitational parameter (m³/s²)
    frame: name of the inertial frame the vectors are expressed in
    attitude: unit quaternion (w, x, y, z) from inertial to body frame
    additional_states: named arrays carried along with the orbit
    additional_derivatives: time derivatives of integrated additional states
    """
    reference_epoch: datetime
    elapsed_s: float
    position: np.ndarray
    velocity: np.ndarray
    mass: float = 1000.0
    mu: float = OrbitalConstants.MU_EARTH
    frame: str = "GCRF"
    attitude: tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0)
    additional_states: Mapping[str, np.ndarray] = field(default_factory=dict)
    additional_derivatives: Mapping[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.mass <= 0.0:
            raise ValueError(f"mass must be positive, got {self.mass}")
        object.__setattr__(self, "elapsed_s", float(self.elapsed_s))
        object.__setattr__(self, "position", _frozen_array(self.position))
        object.__setattr__(self, "velocity", _frozen_array(self.velocity))
        object.__setattr__(self, "additional_states", _frozen_mapping(self.additional_states))
        object.__setattr__(
            self, "additional_derivatives", _frozen_mapping(self.additional_derivatives),
        )

    @property
    def date(self) -> datetime:
        return self.reference_epoch + timedelta(seconds=self.elapsed_s)

    def time_from(self, date: datetime) -> float:
        """Seconds from date to this state (positive if the state is later)."""
        return (self.reference_epoch - date).total_seconds() + self.elapsed_s

    def seconds_to(self, date: datetime) -> float:
        """Elapsed-time coordinate of date in this state's time scale."""
        return (date - self.reference_epoch).total_seconds()

    # --- Functional updates ---

    def add_additional_state(self, name: str, values: Sequence[float]) -> "SpacecraftState":
        entries = dict(self.additional_states)
        entries[name] = values
        return replace(self, additional_states=entries)

    def add_additional_derivative(self, name: str, values: Sequence[float]) -> "SpacecraftState":
        entries = dict(self.additional_derivatives)
        entries[name] = values
        return replace(self, additional_derivatives=entries)

    def with_orbit(
        self,
        elapsed_s: float,
        position: Sequence[float],
        velocity: Sequence[float],
        mass: float | None = None,
    ) -> "SpacecraftState":
        """New state at another time / orbit, keeping additional states."""
        return replace(
            self,
            elapsed_s=elapsed_s,
            position=position,
            velocity=velocity,
            mass=self.mass if mass is None else mass,
        )

    def rebased(self, reference_epoch: datetime) -> "SpacecraftState":
        """Same physical state counted from another reference epoch."""
        return replace(
            self,
            reference_epoch=reference_epoch,
            elapsed_s=self.time_from(reference_epoch),
        )

    # --- Queries ---

    def has_additional_state(self, name: str) -> bool:
        return name in self.additional_states

    def get_additional_state(self, name: str) -> np.ndarray:
        try:
            return self.additional_states[name]
        except KeyError:
            raise PropagationError(ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE, name) from None

    def get_additional_derivative(self, name: str) -> np.ndarray:
        try:
            return self.additional_derivatives[name]
        except KeyError:
            raise PropagationError(ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE, name) from None
