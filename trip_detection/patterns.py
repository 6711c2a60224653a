"""Assemble away-from-home runs and turn them into trip candidates."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import TYPE_CHECKING

from trip_detection.models import TripCandidate

if TYPE_CHECKING:
    from trip_detection.models import (
        DayClassification,
        DetectionConfig,
        HomeReference,
        OvernightStay,
    )


def calculate_confidence(data_points: int, duration_hours: float) -> float:
    data_quality = min(data_points / 10, 1.0)
    duration_score = min(duration_hours / 8, 1.0)
    return (data_quality + duration_score) / 2


def assemble_trip_runs(
    days: Sequence[DayClassification],
    range_start: date,
    max_gap_days: int,
) -> list[list[OvernightStay]]:
    """Group consecutive away stays between home boundaries.

    The start of the range counts as a home boundary. An away day opens a
    run only within ``max_gap_days`` of the last home boundary; a gap wider
    than that between two stays closes the run and opens a new one.
    """
    runs: list[list[OvernightStay]] = []
    current: list[OvernightStay] = []
    last_home: date = range_start

    for day in sorted(days, key=lambda d: d.date):
        if day.at_home or day.stay is None:
            if current:
                runs.append(current)
                current = []
            last_home = day.date
            continue

        stay = day.stay
        if not current:
            if (stay.date - last_home).days <= max_gap_days:
                current = [stay]
        elif (stay.date - current[-1].date).days <= max_gap_days:
            current.append(stay)
        else:
            runs.append(current)
            current = [stay]

    if current:
        runs.append(current)
    return runs


def _unique_cities(stays: Sequence[OvernightStay]) -> list[str]:
    seen: list[str] = []
    for stay in stays:
        if stay.city_name not in seen:
            seen.append(stay.city_name)
    return seen


def trip_title(cities: Sequence[str]) -> str:
    if len(cities) == 1:
        return f"Trip to {cities[0]}"
    suffix = "..." if len(cities) > 2 else ""
    return f"Multi-city trip: {' → '.join(cities[:2])}{suffix}"


def build_trip_candidate(
    stays: Sequence[OvernightStay],
    home: HomeReference | None,
    config: DetectionConfig,
) -> TripCandidate | None:
    """Candidate for a run, or None when it is too short or too uncertain."""
    if not stays:
        return None
    ordered = sorted(stays, key=lambda stay: stay.date)
    first, last = ordered[0], ordered[-1]

    total_hours = (last.end - first.start).total_seconds() / 3600
    if total_hours < config.min_trip_duration_hours:
        return None
    average_confidence = sum(stay.confidence for stay in ordered) / len(ordered)
    if average_confidence < config.min_confidence_score:
        return None

    cities = _unique_cities(ordered)
    distance = home.distance_km(first.lat, first.lon) if home else None
    plural = "" if len(cities) == 1 else "s"
    return TripCandidate(
        start_date=first.date,
        end_date=last.date,
        title=trip_title(cities),
        description=f"Trip detected from sleep patterns: {len(cities)} location{plural} visited",
        location=first.location,
        city_name=cities[0],
        confidence=average_confidence,
        data_points=sum(stay.data_point_count for stay in ordered),
        overnight_stays=len(ordered),
        distance_from_home=distance or 0.0,
        metadata={
            "total_duration_hours": total_hours,
            "average_confidence": average_confidence,
            "visited_cities": cities,
            "sleep_details": [
                {
                    "date": stay.date.isoformat(),
                    "city_name": stay.city_name,
                    "duration_hours": stay.duration_hours,
                    "confidence": stay.confidence,
                    "data_points": stay.data_point_count,
                }
                for stay in ordered
            ],
            "is_sleep_based_trip": True,
        },
    )
