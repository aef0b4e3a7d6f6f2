# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Atmospheric density model.

Exponential atmospheric density with altitude-dependent scale height
(Vallado Table 8-4 / CIRA reference values). Covers 100-1000 km.
Density is generic over floats and Duals so drag partials with respect
to position come out of the same evaluation.

No external dependencies — only stdlib math/dataclasses.
"""
from dataclasses import dataclass
from enum import Enum

from varprop.domain import dual as d
from varprop.domain.dual import Number, value_of


class AtmosphereModel(Enum):
    """Exponential atmosphere density table selection."""
    VALLADO_4TH = "vallado_4th"      # Vallado 4th ed. Table 8-4 (moderate solar activity)


@dataclass(frozen=True)
class DragConfig:
    """Drag configuration for a satellite.

    cd: reference drag coefficient (dimensionless, typically 2.0-2.5)
    area_m2: cross-sectional area (m²)
    """
    cd: float
    area_m2: float

    def __post_init__(self) -> None:
        if self.area_m2 <= 0.0:
            raise ValueError(f"area_m2 must be positive, got {self.area_m2}")


# (base altitude km, base density kg/m³, scale height km)
_ATMOSPHERE_TABLE_VALLADO: tuple[tuple[float, float, float], ...] = (
    (100, 5.297e-07, 5.877),
    (110, 9.661e-08, 7.263),
    (120, 2.438e-08, 9.473),
    (130, 8.484e-09, 12.636),
    (140, 3.845e-09, 16.149),
    (150, 2.070e-09, 22.523),
    (180, 5.464e-10, 29.740),
    (200, 2.789e-10, 37.105),
    (250, 7.248e-11, 45.546),
    (300, 2.418e-11, 53.628),
    (350, 9.518e-12, 53.298),
    (400, 3.725e-12, 58.515),
    (450, 1.585e-12, 60.828),
    (500, 6.967e-13, 63.822),
    (600, 1.454e-13, 71.835),
    (700, 3.614e-14, 88.667),
    (800, 1.170e-14, 124.64),
    (900, 5.245e-15, 181.05),
    (1000, 3.019e-15, 268.00),
)

_MODEL_TABLES = {
    AtmosphereModel.VALLADO_4TH: _ATMOSPHERE_TABLE_VALLADO,
}


def atmospheric_density(
    altitude_km: Number,
    model: AtmosphereModel = AtmosphereModel.VALLADO_4TH,
) -> Number:
    """Atmospheric density at given altitude using piecewise exponential model.

    Binary-searches the lookup table for the altitude bracket, then
    interpolates: rho = rho_base * exp(-(h - h_base) / H)

    Args:
        altitude_km: Altitude above Earth surface in km (float or Dual).
        model: Atmosphere model table to use.

    Returns:
        Atmospheric density in kg/m³, same numeric type as the altitude.

    Raises:
        ValueError: If altitude is outside table range.
    """
    table = _MODEL_TABLES[model]
    h = value_of(altitude_km)

    if h < table[0][0] or h > table[-1][0]:
        raise ValueError(
            f"Altitude {h} km outside valid range "
            f"[{table[0][0]}, {table[-1][0]}] km"
        )

    lo, hi = 0, len(table) - 1
    while lo < hi - 1:
        mid = (lo + hi) // 2
        if table[mid][0] <= h:
            lo = mid
        else:
            hi = mid

    h_base, rho_base, scale_height = table[lo]
    return rho_base * d.exp(-(altitude_km - h_base) / scale_height)
