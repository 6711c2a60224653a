"""
Spatial utilities.

Coordinate validation, GeoJSON point helpers and great-circle distances.
Coordinates are GeoJSON ordered ([lon, lat]) unless a function says
otherwise.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from core.constants import EARTH_RADIUS_M, METERS_PER_MILE

if TYPE_CHECKING:
    from collections.abc import Sequence


class GeometryService:
    """Authoritative geometry operations for the application."""

    EARTH_RADIUS_M = EARTH_RADIUS_M

    @staticmethod
    def validate_coordinate_pair(
        coord: Sequence[Any],
    ) -> tuple[bool, list[float] | None]:
        """Validate a [lon, lat] coordinate pair."""
        if not isinstance(coord, (list, tuple)) or len(coord) < 2:
            return False, None
        try:
            lon = float(coord[0])
            lat = float(coord[1])
        except (TypeError, ValueError, IndexError):
            return False, None
        if math.isnan(lon) or math.isnan(lat):
            return False, None
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            return False, None
        return True, [lon, lat]

    @staticmethod
    def haversine_distance(
        lon1: float,
        lat1: float,
        lon2: float,
        lat2: float,
        unit: str = "meters",
    ) -> float:
        """Calculate the great-circle distance using the Haversine formula."""
        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        dphi = math.radians(lat2 - lat1)
        dlmb = math.radians(lon2 - lon1)
        a = (
            math.sin(dphi / 2) ** 2
            + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
        )
        distance_m = 2 * GeometryService.EARTH_RADIUS_M * math.asin(
            min(1.0, math.sqrt(a)),
        )
        if unit == "meters":
            return distance_m
        if unit == "miles":
            return distance_m / METERS_PER_MILE
        if unit == "km":
            return distance_m / 1000.0
        msg = "Invalid unit. Use 'meters', 'miles', or 'km'."
        raise ValueError(msg)

    @staticmethod
    def point_geojson(lon: float, lat: float) -> dict[str, Any]:
        return {"type": "Point", "coordinates": [float(lon), float(lat)]}

    @staticmethod
    def point_coordinates(point: Any) -> tuple[float, float] | None:
        """Extract (lon, lat) from a GeoJSON Point dict, if it is valid."""
        if not isinstance(point, dict):
            return None
        valid, pair = GeometryService.validate_coordinate_pair(
            point.get("coordinates") or [],
        )
        if not valid or pair is None:
            return None
        return pair[0], pair[1]
