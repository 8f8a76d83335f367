"""Great-circle distance and a uniform lat/lon grid over stops."""

from __future__ import annotations

import math
from collections import defaultdict
from typing import TYPE_CHECKING

from transit_planner.constants import EARTH_RADIUS_M

if TYPE_CHECKING:
    from collections.abc import Iterable

    from transit_planner.models.schedule import Stop

# ~1.1 km of latitude per cell
DEFAULT_CELL_DEG = 0.01


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def haversine_bounding_box(
    lat: float, lon: float, radius_m: float
) -> tuple[float, float, float, float]:
    """Return (lat_min, lat_max, lon_min, lon_max) enclosing a radius.

    Used to pick candidate grid cells before applying the exact formula.
    """
    radius_km = radius_m / 1000.0
    lat_delta = radius_km / 111.0
    lon_delta = radius_km / max(0.001, 111.0 * math.cos(math.radians(lat)))
    return (
        lat - lat_delta,
        lat + lat_delta,
        lon - lon_delta,
        lon + lon_delta,
    )


class StopGrid:
    """Buckets stops into fixed-size lat/lon cells for radius queries."""

    def __init__(self, stops: Iterable[Stop], cell_deg: float = DEFAULT_CELL_DEG) -> None:
        self._cell_deg = cell_deg
        self._cells: dict[tuple[int, int], list[Stop]] = defaultdict(list)
        for stop in stops:
            self._cells[self._cell(stop.lat, stop.lon)].append(stop)

    def _cell(self, lat: float, lon: float) -> tuple[int, int]:
        return (math.floor(lat / self._cell_deg), math.floor(lon / self._cell_deg))

    def within(self, lat: float, lon: float, radius_m: float) -> list[tuple[Stop, float]]:
        """Stops within ``radius_m``, nearest first (ties by stop id)."""
        if radius_m < 0:
            return []
        lat_min, lat_max, lon_min, lon_max = haversine_bounding_box(lat, lon, radius_m)
        row_lo, col_lo = self._cell(lat_min, lon_min)
        row_hi, col_hi = self._cell(lat_max, lon_max)

        found: list[tuple[Stop, float]] = []
        for row in range(row_lo, row_hi + 1):
            for col in range(col_lo, col_hi + 1):
                for stop in self._cells.get((row, col), ()):
                    distance = haversine_m(lat, lon, stop.lat, stop.lon)
                    if distance <= radius_m:
                        found.append((stop, distance))
        found.sort(key=lambda item: (item[1], item[0].stop_id))
        return found
