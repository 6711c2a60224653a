"""Home/away classification of a single day."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date

from date_utils import end_of_day, start_of_day
from db.models import TripExclusion
from trip_detection.clustering import UNKNOWN_CITY, find_mode_location, resolve_city_name
from trip_detection.models import (
    DayClassification,
    DetectionConfig,
    HomeReference,
    OvernightStay,
    TrackPoint,
)
from trip_detection.patterns import calculate_confidence

logger = logging.getLogger(__name__)


def matches_exclusion(city_name: str, exclusions: Iterable[TripExclusion]) -> bool:
    city = city_name.lower()
    return any(
        exclusion.type == "city" and exclusion.value and exclusion.value.lower() in city
        for exclusion in exclusions
    )


def textual_home_match(city_name: str | None, home: HomeReference | None) -> bool | None:
    """Substring match in either direction against the first home place field.

    Returns None when either side has no usable text.
    """
    if not city_name or city_name == UNKNOWN_CITY or home is None:
        return None
    home_name = home.place_name()
    if not home_name:
        return None
    city = city_name.lower()
    home_text = home_name.lower()
    return home_text in city or city in home_text


def classify_day(
    day: date,
    points: Sequence[TrackPoint],
    home: HomeReference | None,
    exclusions: Sequence[TripExclusion],
    config: DetectionConfig,
) -> DayClassification | None:
    """Classify one day's overnight points, or None when the day is too sparse."""
    if len(points) < config.min_data_points_per_day:
        return None
    mode = find_mode_location(points, config.clustering_radius_meters)
    if mode is None:
        return None
    anchor, _ = mode
    city_name = resolve_city_name(points)

    if matches_exclusion(city_name, exclusions):
        at_home, reason = True, "excluded"
    else:
        textual = textual_home_match(city_name, home)
        if textual is not None:
            at_home, reason = textual, "city_match" if textual else "city_mismatch"
        else:
            distance = home.distance_km(anchor.lat, anchor.lon) if home else None
            if distance is None:
                at_home, reason = False, "no_home_reference"
            else:
                at_home = distance <= config.home_radius_km
                reason = "within_home_radius" if at_home else "outside_home_radius"

    result = DayClassification(
        date=day,
        at_home=at_home,
        reason=reason,
        city_name=city_name,
        data_point_count=len(points),
    )
    if not at_home:
        result.stay = OvernightStay(
            date=day,
            lat=anchor.lat,
            lon=anchor.lon,
            city_name=city_name,
            start=start_of_day(day),
            end=end_of_day(day),
            data_point_count=len(points),
            confidence=calculate_confidence(len(points), 24.0),
        )
    logger.debug("%s classified %s (%s, %s)", day, "home" if at_home else "away", reason, city_name)
    return result
