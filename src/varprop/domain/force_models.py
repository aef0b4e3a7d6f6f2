# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Pluggable force models and their aggregation.

Each force model contributes an acceleration (and optionally a mass
rate) for a given state and parameter values, exposes the parameter
drivers it reads, and may own event detectors marking discontinuities
in its dynamics. Models are written with scalar arithmetic and the
dual module's elementary functions, so the variational equations can
differentiate any of them with forward-mode AD; a model may also supply
closed-form partials.

init() is called once per propagation and returns the model that serves
that run: the model itself when it keeps no run state.
"""
from datetime import datetime
from typing import Callable, Protocol, Sequence, runtime_checkable

import numpy as np

from varprop.domain import dual as d
from varprop.domain.atmosphere import AtmosphereModel, DragConfig, atmospheric_density
from varprop.domain.dual import Number
from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.orbital_mechanics import OrbitalConstants
from varprop.domain.parameters import ParameterDriver
from varprop.domain.solar import AU_METERS, SunPosition, sun_position_eci
from varprop.domain.state import SpacecraftState

Vector = Sequence[Number]


# --- Types ---

@runtime_checkable
class ForceModel(Protocol):
    """Structural typing port for pluggable force models."""

    def acceleration(
        self,
        epoch: datetime,
        position: Vector,
        velocity: Vector,
        mass: Number,
        parameters: Sequence[Number],
    ) -> tuple[Number, Number, Number]: ...

    def mass_rate(
        self,
        epoch: datetime,
        position: Vector,
        velocity: Vector,
        mass: Number,
        parameters: Sequence[Number],
    ) -> Number: ...

    def parameter_drivers(self) -> list[ParameterDriver]: ...

    def event_detectors(self) -> list: ...

    def depends_on_position_only(self) -> bool: ...

    def init(self, initial_state: SpacecraftState, target: datetime) -> "ForceModel": ...


class ForceModelBase:
    """Defaults for force models without drivers, events or mass flow."""

    def mass_rate(self, epoch, position, velocity, mass, parameters) -> Number:
        return 0.0

    def parameter_drivers(self) -> list[ParameterDriver]:
        return []

    def event_detectors(self) -> list:
        return []

    def depends_on_position_only(self) -> bool:
        return False

    def init(self, initial_state: SpacecraftState, target: datetime) -> "ForceModelBase":
        return self


# --- Aggregation ---

def check_parameters(model: ForceModel, parameters: Sequence[Number]) -> None:
    expected = len(model.parameter_drivers())
    if len(parameters) < expected:
        raise PropagationError(
            ErrorSpecifier.MISSING_PARAMETER, type(model).__name__, expected, len(parameters),
        )


def acceleration_sum(
    force_models: Sequence[ForceModel],
    epoch: datetime,
    position: Vector,
    velocity: Vector,
    mass: float,
    parameter_values: Sequence[Sequence[float]],
) -> np.ndarray:
    """Sum of all model accelerations (m/s²) for plain float inputs."""
    total = np.zeros(3)
    for model, values in zip(force_models, parameter_values):
        check_parameters(model, values)
        ax, ay, az = model.acceleration(epoch, position, velocity, mass, values)
        total[0] += ax
        total[1] += ay
        total[2] += az
    return total


def mass_rate_sum(
    force_models: Sequence[ForceModel],
    epoch: datetime,
    position: Vector,
    velocity: Vector,
    mass: float,
    parameter_values: Sequence[Sequence[float]],
) -> float:
    """Sum of all model mass rates (kg/s)."""
    return float(sum(
        model.mass_rate(epoch, position, velocity, mass, values)
        for model, values in zip(force_models, parameter_values)
    ))


# --- Force models ---

class NewtonianAttraction(ForceModelBase):
    """Central body gravitational acceleration: a = -mu * r / |r|^3.

    The gravitational parameter is driven by the
    "central attraction coefficient" parameter.
    """

    CENTRAL_ATTRACTION_COEFFICIENT = "central attraction coefficient"

    def __init__(self, mu: float = OrbitalConstants.MU_EARTH) -> None:
        self._mu_driver = ParameterDriver(
            self.CENTRAL_ATTRACTION_COEFFICIENT, mu, scale=2.0 ** 32, min_value=0.0,
        )

    @property
    def mu(self) -> float:
        return self._mu_driver.value()

    def parameter_drivers(self) -> list[ParameterDriver]:
        return [self._mu_driver]

    def depends_on_position_only(self) -> bool:
        return True

    def acceleration(self, epoch, position, velocity, mass, parameters):
        mu = parameters[0]
        x, y, z = position
        r2 = x * x + y * y + z * z
        coeff = -mu / (r2 * d.sqrt(r2))
        return (coeff * x, coeff * y, coeff * z)

    def acceleration_partials(
        self, epoch, position, velocity, mass, parameters,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Closed-form (∂a/∂(r, v, m) as 3×7, ∂a/∂mu as 3×1)."""
        mu = float(parameters[0])
        r_vec = np.array([float(p) for p in position])
        r2 = float(r_vec @ r_vec)
        r = float(np.sqrt(r2))
        r3 = r2 * r
        d_state = np.zeros((3, 7))
        d_state[:, 0:3] = mu / r3 * (3.0 * np.outer(r_vec, r_vec) / r2 - np.eye(3))
        d_param = (-r_vec / r3).reshape(3, 1)
        return d_state, d_param


class J2Perturbation(ForceModelBase):
    """J2 zonal harmonic perturbation acceleration."""

    def __init__(
        self,
        mu: float = OrbitalConstants.MU_EARTH,
        j2: float = OrbitalConstants.J2_EARTH,
        equatorial_radius: float = OrbitalConstants.R_EARTH_EQUATORIAL,
    ) -> None:
        self._factor = -1.5 * j2 * mu * equatorial_radius * equatorial_radius

    def depends_on_position_only(self) -> bool:
        return True

    def acceleration(self, epoch, position, velocity, mass, parameters):
        x, y, z = position
        r2 = x * x + y * y + z * z
        r5 = r2 * r2 * d.sqrt(r2)
        coeff = self._factor / r5
        z2_r2 = z * z / r2
        ax = coeff * x * (1.0 - 5.0 * z2_r2)
        ay = coeff * y * (1.0 - 5.0 * z2_r2)
        az = coeff * z * (3.0 - 5.0 * z2_r2)
        return (ax, ay, az)


class AtmosphericDragForce(ForceModelBase):
    """Atmospheric drag acceleration with co-rotating atmosphere.

    a = -0.5 * rho * Cd * (A/m) * |v_rel| * v_rel
    where v_rel accounts for atmosphere co-rotation. Cd is driven by the
    "drag coefficient" parameter.
    """

    DRAG_COEFFICIENT = "drag coefficient"

    def __init__(
        self,
        drag_config: DragConfig,
        model: AtmosphereModel = AtmosphereModel.VALLADO_4TH,
    ) -> None:
        self._config = drag_config
        self._model = model
        self._cd_driver = ParameterDriver(self.DRAG_COEFFICIENT, drag_config.cd, min_value=0.0)

    def parameter_drivers(self) -> list[ParameterDriver]:
        return [self._cd_driver]

    def acceleration(self, epoch, position, velocity, mass, parameters):
        x, y, z = position
        vx, vy, vz = velocity

        r = d.sqrt(x * x + y * y + z * z)
        alt_km = (r - OrbitalConstants.R_EARTH_EQUATORIAL) / 1000.0

        # Outside the density table the drag contribution is zero.
        try:
            rho = atmospheric_density(alt_km, self._model)
        except ValueError:
            return (0.0, 0.0, 0.0)

        omega_e = OrbitalConstants.EARTH_ROTATION_RATE
        vr = (vx + omega_e * y, vy - omega_e * x, vz)
        v_rel = d.sqrt(vr[0] * vr[0] + vr[1] * vr[1] + vr[2] * vr[2])
        if v_rel < 1e-10:
            return (0.0, 0.0, 0.0)

        coeff = -0.5 * rho * parameters[0] * self._config.area_m2 / mass * v_rel
        return (coeff * vr[0], coeff * vr[1], coeff * vr[2])


class SolarRadiationPressureForce(ForceModelBase):
    """Solar radiation pressure (cannonball model, no shadow).

    a = P_sr * Cr * (A/m) * (AU/|d|)^2 * d_hat
    where d = r_sat - r_sun. Cr is driven by the "reflection coefficient"
    parameter.
    """

    REFLECTION_COEFFICIENT = "reflection coefficient"

    _P_SR: float = 4.56e-6  # N/m² — solar radiation pressure at 1 AU

    def __init__(
        self,
        cr: float,
        area_m2: float,
        sun: Callable[[datetime], SunPosition] = sun_position_eci,
    ) -> None:
        if area_m2 <= 0:
            raise ValueError(f"area_m2 must be positive, got {area_m2}")
        self._area_m2 = area_m2
        self._sun = sun
        self._cr_driver = ParameterDriver(self.REFLECTION_COEFFICIENT, cr, min_value=0.0)

    def parameter_drivers(self) -> list[ParameterDriver]:
        return [self._cr_driver]

    def acceleration(self, epoch, position, velocity, mass, parameters):
        sx, sy, sz = self._sun(epoch).position_eci_m
        dx, dy, dz = position[0] - sx, position[1] - sy, position[2] - sz
        d2 = dx * dx + dy * dy + dz * dz
        d_mag = d.sqrt(d2)
        coeff = self._P_SR * parameters[0] * self._area_m2 / mass * (AU_METERS * AU_METERS / d2) / d_mag
        return (coeff * dx, coeff * dy, coeff * dz)
