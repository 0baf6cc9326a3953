"""Approximate conversion from Dutch RD coordinates to WGS84 latitude/longitude."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class WGS84Pos:
    """A WGS84 position in degrees."""

    lat: float
    lon: float


_X0 = 155000.000
_Y0 = 463000.000
_PHI0 = 52.156160556
_LAM0 = 5.387638889

# (power of dx, power of dy, coefficient)
_LAT_TERMS = (
    (0, 1, 3236.0331637),
    (2, 0, -32.5915821),
    (0, 2, -0.2472814),
    (2, 1, -0.8501341),
    (0, 3, -0.0655238),
    (4, 0, 0.0052771),
    (2, 2, -0.0171137),
    (0, 4, 0.0000371),
    (4, 1, 0.0003314),
    (2, 3, -0.0003859),
    (4, 2, 0.0000143),
    (2, 4, -0.0000090),
)

_LON_TERMS = (
    (1, 0, 5261.3028966),
    (1, 1, 105.9780241),
    (3, 0, -0.8192156),
    (1, 2, 2.4576469),
    (3, 1, -0.0560092),
    (1, 3, 0.0560089),
    (5, 0, 0.0002574),
    (3, 2, -0.0025614),
    (1, 4, 0.0012770),
    (5, 1, 0.0000293),
    (3, 3, -0.0000973),
    (1, 5, 0.0000291),
)


def _series(terms, dx: float, dy: float) -> float:
    return sum(coef * dx**p * dy**q for p, q, coef in terms)


def rd2wgs84(x, y):
    """Convert RD (EPSG:28992) x/y in metres to a WGS84 position."""
    dx = (x - _X0) * 1e-5
    dy = (y - _Y0) * 1e-5

    f = _PHI0 + _series(_LAT_TERMS, dx, dy) / 3600
    l = _LAM0 + _series(_LON_TERMS, dx, dy) / 3600

    lat = f + (-96.862 - 11.714 * (f - 52) - 0.125 * (l - 5)) / 100000
    lon = l + (-37.902 + 0.329 * (f - 52) - 14.667 * (l - 5)) / 100000
    return WGS84Pos(lat=lat, lon=lon)