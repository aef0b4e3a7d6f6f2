# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Analytical solar ephemeris for radiation pressure.

Low-precision Sun position (Meeus "Astronomical Algorithms" Ch. 25,
about one arcminute), good enough for the Sun direction seen from a
near-Earth spacecraft.

No external dependencies — only stdlib math/dataclasses/datetime.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone

AU_METERS: float = 1.495978707e11  # Astronomical unit in meters

_J2000 = datetime(2000, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass(frozen=True)
class SunPosition:
    """Sun position at a given epoch."""
    position_eci_m: tuple[float, float, float]
    distance_m: float


def julian_centuries_j2000(epoch: datetime) -> float:
    """Julian centuries since J2000.0 (2000-01-01 12:00:00 UTC)."""
    return (epoch - _J2000).total_seconds() / (36525.0 * 86400.0)


def sun_position_eci(epoch: datetime) -> SunPosition:
    """Geocentric inertial Sun position at epoch (UTC datetime)."""
    t = julian_centuries_j2000(epoch)

    mean_anomaly = math.radians((357.5291 + 35999.0503 * t) % 360.0)
    ecliptic_longitude = math.radians(
        (280.4665 + 36000.7698 * t
         + 1.9146 * math.sin(mean_anomaly)
         + 0.0200 * math.sin(2.0 * mean_anomaly)) % 360.0
    )
    obliquity = math.radians(23.4393 - 0.01300 * t)

    distance_m = AU_METERS * (
        1.00014 - 0.01671 * math.cos(mean_anomaly) - 0.00014 * math.cos(2.0 * mean_anomaly)
    )
    cos_l, sin_l = math.cos(ecliptic_longitude), math.sin(ecliptic_longitude)
    position = (
        distance_m * cos_l,
        distance_m * math.cos(obliquity) * sin_l,
        distance_m * math.sin(obliquity) * sin_l,
    )
    return SunPosition(position_eci_m=position, distance_m=distance_m)
