"""Per-day grouping, dominant location and place-name voting.

These functions are deterministic and never touch the database.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date

from core.geocoding import extract_place_name
from core.spatial import GeometryService
from date_utils import ensure_utc
from trip_detection.models import TrackPoint

UNKNOWN_CITY = "Unknown City"


def group_points_by_day(points: Iterable[TrackPoint]) -> dict[date, list[TrackPoint]]:
    """Bucket points by the UTC calendar date of ``recorded_at``, dates ascending."""
    groups: dict[date, list[TrackPoint]] = defaultdict(list)
    for point in points:
        groups[ensure_utc(point.recorded_at).date()].append(point)
    return {day: groups[day] for day in sorted(groups)}


def find_mode_location(
    points: Sequence[TrackPoint],
    radius_meters: float,
) -> tuple[TrackPoint, int] | None:
    """Point with the most same-day neighbours (itself included) within the radius.

    Quadratic in the number of points. Ties keep the earliest point.
    """
    best: TrackPoint | None = None
    best_count = 0
    for point in points:
        count = sum(
            1
            for other in points
            if GeometryService.haversine_distance(
                point.lon,
                point.lat,
                other.lon,
                other.lat,
            )
            <= radius_meters
        )
        if count > best_count:
            best, best_count = point, count
    if best is None:
        return None
    return best, best_count


def most_common(values: Iterable[str]) -> str | None:
    """Majority value; the first value to reach the top count wins ties."""
    counts: dict[str, int] = {}
    winner: str | None = None
    top = 0
    for value in values:
        counts[value] = counts.get(value, 0) + 1
        if counts[value] > top:
            top = counts[value]
            winner = value
    return winner


def resolve_city_name(points: Iterable[TrackPoint]) -> str:
    names = (extract_place_name(point.geocode) for point in points)
    return most_common(name for name in names if name) or UNKNOWN_CITY
