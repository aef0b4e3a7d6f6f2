# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Orbital mechanics functions.

Element-set conversions between Cartesian position/velocity and the
Keplerian, circular and equinoctial parameterisations, each with a
choice of position angle (true, mean or eccentric). All conversions go
through equinoctial elements and are written with the elementary
functions of the dual module, so they evaluate plain floats or Duals
alike (the latter yields exact conversion Jacobians).

No external dependencies — only stdlib math/dataclasses/enum + numpy.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from varprop.domain import dual as d
from varprop.domain.dual import Dual, Number, value_of


@dataclass(frozen=True)
class _OrbitalConstants:
    """Standard orbital constants (IAU/WGS84 values)."""
    MU_EARTH: float = 3.986004418e14   # m³/s² — gravitational parameter
    J2_EARTH: float = 1.08263e-3        # J2 perturbation coefficient
    EARTH_ROTATION_RATE: float = 7.2921159e-5  # rad/s — sidereal rotation rate
    R_EARTH_EQUATORIAL: float = 6_378_137.0       # m — semi-major axis
    G0: float = 9.80665                 # m/s² — standard gravity


OrbitalConstants: _OrbitalConstants = _OrbitalConstants()


class OrbitType(Enum):
    """Element set used for the primary integrated state."""
    CARTESIAN = "cartesian"      # x, y, z, vx, vy, vz
    KEPLERIAN = "keplerian"      # a, e, i, ω, Ω, anomaly
    CIRCULAR = "circular"        # a, ex, ey, i, Ω, argument of latitude
    EQUINOCTIAL = "equinoctial"  # a, ex, ey, hx, hy, longitude


class PositionAngleType(Enum):
    """Which anomaly / longitude the sixth element holds."""
    TRUE = "true"
    MEAN = "mean"
    ECCENTRIC = "eccentric"


_KEPLER_MAX_ITERATIONS = 50


def solve_kepler_equation(mean_anomaly: float, e: float) -> float:
    """Eccentric anomaly E solving M = E - e·sin(E) for elliptic orbits.

    Newton iteration bounded to a fixed number of iterations. Returns nan
    for nan input, hyperbolic eccentricity or non-convergence; never loops
    indefinitely.
    """
    if math.isnan(mean_anomaly) or math.isnan(e) or math.isinf(mean_anomaly):
        return math.nan
    if e < 0.0 or e >= 1.0:
        return math.nan
    m_reduced = math.remainder(mean_anomaly, 2.0 * math.pi)
    shift = mean_anomaly - m_reduced
    if e < 0.8:
        ecc = m_reduced + e * math.sin(m_reduced)
    else:
        ecc = math.copysign(math.pi, m_reduced) if m_reduced != 0.0 else 0.0
    for _ in range(_KEPLER_MAX_ITERATIONS):
        f = ecc - e * math.sin(ecc) - m_reduced
        fp = 1.0 - e * math.cos(ecc)
        delta = f / fp
        ecc -= delta
        if abs(delta) <= 1e-14:
            return ecc + shift
    return math.nan


# --- Longitude / anomaly conversions (equinoctial form) ---

def _true_to_eccentric(lv: Number, ex: Number, ey: Number) -> Number:
    epsilon = d.sqrt(1.0 - ex * ex - ey * ey)
    cos_lv, sin_lv = d.cos(lv), d.sin(lv)
    num = ey * cos_lv - ex * sin_lv
    den = epsilon + 1.0 + ex * cos_lv + ey * sin_lv
    return lv + 2.0 * d.atan(num / den)


def _eccentric_to_true(le: Number, ex: Number, ey: Number) -> Number:
    epsilon = d.sqrt(1.0 - ex * ex - ey * ey)
    cos_le, sin_le = d.cos(le), d.sin(le)
    num = ex * sin_le - ey * cos_le
    den = epsilon + 1.0 - ex * cos_le - ey * sin_le
    return le + 2.0 * d.atan(num / den)


def _eccentric_to_mean(le: Number, ex: Number, ey: Number) -> Number:
    return le - ex * d.sin(le) + ey * d.cos(le)


def _mean_to_eccentric(lm: Number, ex: Number, ey: Number) -> Number:
    """Solve the equinoctial Kepler equation lM = lE - ex·sin lE + ey·cos lE."""
    exv, eyv = value_of(ex), value_of(ey)
    e = math.hypot(exv, eyv)
    pomega = math.atan2(eyv, exv)
    le_value = solve_kepler_equation(value_of(lm) - pomega, e) + pomega
    if not any(isinstance(x, Dual) for x in (lm, ex, ey)):
        return le_value
    # Implicit derivative of the Kepler equation around the solved root.
    size = next(x.gradient.shape[0] for x in (lm, ex, ey) if isinstance(x, Dual))
    cos_le, sin_le = math.cos(le_value), math.sin(le_value)
    denominator = 1.0 - exv * cos_le - eyv * sin_le
    gradient = (
        d.gradient_of(lm, size)
        + sin_le * d.gradient_of(ex, size)
        - cos_le * d.gradient_of(ey, size)
    ) / denominator
    return Dual(le_value, gradient)


def _longitude_from(l_in: Number, ex: Number, ey: Number,
                    source: PositionAngleType, target: PositionAngleType) -> Number:
    """Convert a longitude between position angle types."""
    if source == target:
        return l_in
    if source == PositionAngleType.TRUE:
        le = _true_to_eccentric(l_in, ex, ey)
    elif source == PositionAngleType.MEAN:
        le = _mean_to_eccentric(l_in, ex, ey)
    else:
        le = l_in
    if target == PositionAngleType.ECCENTRIC:
        return le
    if target == PositionAngleType.TRUE:
        return _eccentric_to_true(le, ex, ey)
    return _eccentric_to_mean(le, ex, ey)


# --- Equinoctial core ---

def _equinoctial_to_cartesian(
    a: Number, ex: Number, ey: Number, hx: Number, hy: Number, le: Number, mu: float,
) -> tuple[list[Number], list[Number]]:
    hx2, hy2 = hx * hx, hy * hy
    fact_h = 1.0 / (1.0 + hx2 + hy2)
    f = [(1.0 + hx2 - hy2) * fact_h, 2.0 * hx * hy * fact_h, -2.0 * hy * fact_h]
    g = [2.0 * hx * hy * fact_h, (1.0 - hx2 + hy2) * fact_h, 2.0 * hx * fact_h]

    ex2, ey2, exey = ex * ex, ey * ey, ex * ey
    beta = 1.0 / (1.0 + d.sqrt(1.0 - ex2 - ey2))
    cos_le, sin_le = d.cos(le), d.sin(le)
    ex_c_ey_s = ex * cos_le + ey * sin_le

    x = a * ((1.0 - beta * ey2) * cos_le + beta * exey * sin_le - ex)
    y = a * ((1.0 - beta * ex2) * sin_le + beta * exey * cos_le - ey)
    factor = d.sqrt(mu / a) / (1.0 - ex_c_ey_s)
    x_dot = factor * (-sin_le + beta * ey * ex_c_ey_s)
    y_dot = factor * (cos_le - beta * ex * ex_c_ey_s)

    position = [x * f[k] + y * g[k] for k in range(3)]
    velocity = [x_dot * f[k] + y_dot * g[k] for k in range(3)]
    return position, velocity


def _cartesian_to_equinoctial(
    position: Sequence[Number], velocity: Sequence[Number], mu: float,
) -> tuple[Number, Number, Number, Number, Number, Number]:
    """Returns (a, ex, ey, hx, hy, true longitude)."""
    x, y, z = position
    vx, vy, vz = velocity
    r = d.sqrt(x * x + y * y + z * z)
    v2 = vx * vx + vy * vy + vz * vz
    a = r / (2.0 - r * v2 / mu)

    wx = y * vz - z * vy
    wy = z * vx - x * vz
    wz = x * vy - y * vx
    w_norm = d.sqrt(wx * wx + wy * wy + wz * wz)
    hx = -wy / (w_norm + wz)
    hy = wx / (w_norm + wz)

    hx2, hy2 = hx * hx, hy * hy
    fact_h = 1.0 / (1.0 + hx2 + hy2)
    f = [(1.0 + hx2 - hy2) * fact_h, 2.0 * hx * hy * fact_h, -2.0 * hy * fact_h]
    g = [2.0 * hx * hy * fact_h, (1.0 - hx2 + hy2) * fact_h, 2.0 * hx * fact_h]

    # Eccentricity vector: (v × w) / mu - r / |r|
    e_vec = [
        (vy * wz - vz * wy) / mu - x / r,
        (vz * wx - vx * wz) / mu - y / r,
        (vx * wy - vy * wx) / mu - z / r,
    ]
    ex = e_vec[0] * f[0] + e_vec[1] * f[1] + e_vec[2] * f[2]
    ey = e_vec[0] * g[0] + e_vec[1] * g[1] + e_vec[2] * g[2]

    px = x * f[0] + y * f[1] + z * f[2]
    py = x * g[0] + y * g[1] + z * g[2]
    lv = d.atan2(py, px)
    return a, ex, ey, hx, hy, lv


# --- Public conversions ---

def elements_to_cartesian(
    elements: Sequence[Number],
    orbit_type: OrbitType,
    angle_type: PositionAngleType,
    mu: float,
) -> tuple[list[Number], list[Number]]:
    """Convert six orbital elements to Cartesian position (m) and velocity (m/s).

    Args:
        elements: Six elements in the layout of orbit_type (angles in radians).
        orbit_type: Element set of the input.
        angle_type: Position angle type of the sixth element (ignored for
            Cartesian input).
        mu: Central body gravitational parameter (m³/s²).

    Returns:
        (position [x, y, z], velocity [vx, vy, vz]) as lists of floats or
        Duals, matching the input type.
    """
    if orbit_type == OrbitType.CARTESIAN:
        return list(elements[0:3]), list(elements[3:6])

    if orbit_type == OrbitType.KEPLERIAN:
        a, e, i, omega, raan, anomaly = elements
        pomega = omega + raan
        ex, ey = e * d.cos(pomega), e * d.sin(pomega)
        tan_half_i = d.sin(i / 2.0) / d.cos(i / 2.0)
        hx, hy = tan_half_i * d.cos(raan), tan_half_i * d.sin(raan)
        longitude = anomaly + pomega
    elif orbit_type == OrbitType.CIRCULAR:
        a, exc, eyc, i, raan, alpha = elements
        cos_raan, sin_raan = d.cos(raan), d.sin(raan)
        ex = exc * cos_raan - eyc * sin_raan
        ey = eyc * cos_raan + exc * sin_raan
        tan_half_i = d.sin(i / 2.0) / d.cos(i / 2.0)
        hx, hy = tan_half_i * cos_raan, tan_half_i * sin_raan
        longitude = alpha + raan
    else:
        a, ex, ey, hx, hy, longitude = elements

    le = _longitude_from(longitude, ex, ey, angle_type, PositionAngleType.ECCENTRIC)
    return _equinoctial_to_cartesian(a, ex, ey, hx, hy, le, mu)


def cartesian_to_elements(
    position: Sequence[Number],
    velocity: Sequence[Number],
    orbit_type: OrbitType,
    angle_type: PositionAngleType,
    mu: float,
) -> list[Number]:
    """Convert Cartesian position/velocity to six orbital elements."""
    if orbit_type == OrbitType.CARTESIAN:
        return list(position) + list(velocity)

    a, ex, ey, hx, hy, lv = _cartesian_to_equinoctial(position, velocity, mu)
    longitude = _longitude_from(lv, ex, ey, PositionAngleType.TRUE, angle_type)
    if orbit_type == OrbitType.EQUINOCTIAL:
        return [a, ex, ey, hx, hy, longitude]

    raan = d.atan2(hy, hx)
    i = 2.0 * d.atan(d.sqrt(hx * hx + hy * hy))
    if orbit_type == OrbitType.CIRCULAR:
        cos_raan, sin_raan = d.cos(raan), d.sin(raan)
        exc = ex * cos_raan + ey * sin_raan
        eyc = ey * cos_raan - ex * sin_raan
        return [a, exc, eyc, i, raan, longitude - raan]

    e = d.sqrt(ex * ex + ey * ey)
    pomega = d.atan2(ey, ex)
    return [a, e, i, pomega - raan, raan, longitude - pomega]


def kepler_to_cartesian(
    a: float,
    e: float,
    i_rad: float,
    omega_big_rad: float,
    omega_small_rad: float,
    nu_rad: float,
    mu: float = OrbitalConstants.MU_EARTH,
) -> tuple[list[float], list[float]]:
    """
    Convert Keplerian orbital elements to ECI Cartesian position/velocity.

    Args:
        a: Semi-major axis (m)
        e: Eccentricity (0 for circular)
        i_rad: Inclination (radians)
        omega_big_rad: RAAN / longitude of ascending node (radians)
        omega_small_rad: Argument of perigee (radians)
        nu_rad: True anomaly (radians)
        mu: Gravitational parameter (m³/s²)

    Returns:
        (position_eci [x,y,z] in m, velocity_eci [vx,vy,vz] in m/s)
    """
    position, velocity = elements_to_cartesian(
        (a, e, i_rad, omega_small_rad, omega_big_rad, nu_rad),
        OrbitType.KEPLERIAN, PositionAngleType.TRUE, mu,
    )
    return [float(p) for p in position], [float(v) for v in velocity]


def orbit_to_cartesian_jacobian(
    elements: Sequence[float],
    orbit_type: OrbitType,
    angle_type: PositionAngleType,
    mu: float,
) -> np.ndarray:
    """6×6 Jacobian ∂(position, velocity)/∂(elements), by forward-mode AD."""
    if orbit_type == OrbitType.CARTESIAN:
        return np.eye(6)
    seeded = [Dual.variable(float(v), k, 6) for k, v in enumerate(elements)]
    position, velocity = elements_to_cartesian(seeded, orbit_type, angle_type, mu)
    return d.jacobian_of(position + velocity, 6)
