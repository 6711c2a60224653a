"""
Sleep-pattern trip detection.

Only overnight points are considered: where someone sleeps is a much better
signal of being away than where they drive during the day. Each day's
overnight points are reduced to one dominant location and place name, the
day is classified home or away, and runs of away days between home
boundaries become trip candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from date_utils import end_of_day, ensure_utc, start_of_day
from db.models import LocationPoint, TripExclusion
from trip_detection.classification import classify_day
from trip_detection.clustering import group_points_by_day
from trip_detection.models import (
    DayClassification,
    DetectionConfig,
    HomeReference,
    TrackPoint,
    TripCandidate,
)
from trip_detection.patterns import assemble_trip_runs, build_trip_candidate

logger = logging.getLogger(__name__)


def is_overnight(recorded_at: datetime, config: DetectionConfig) -> bool:
    """UTC hour inside the overnight window, which may wrap midnight."""
    hour = ensure_utc(recorded_at).hour
    start, end = config.overnight_hours_start, config.overnight_hours_end
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


def to_track_point(point: LocationPoint) -> TrackPoint:
    return TrackPoint(
        lat=point.lat,
        lon=point.lon,
        recorded_at=ensure_utc(point.recorded_at),
        geocode=point.geocode,
    )


class TripDetectionEngine:
    def __init__(self, config: DetectionConfig | None = None) -> None:
        self.config = config or DetectionConfig()

    async def load_overnight_points(
        self,
        owner_id: str,
        start: date,
        end: date,
    ) -> list[TrackPoint]:
        query = {
            "owner_id": owner_id,
            "recorded_at": {"$gte": start_of_day(start), "$lte": end_of_day(end)},
        }
        points: list[TrackPoint] = []
        async for point in LocationPoint.find(query).sort("recorded_at"):
            if is_overnight(point.recorded_at, self.config):
                points.append(to_track_point(point))
        return points

    def classify_days(
        self,
        points: Iterable[TrackPoint],
        home: HomeReference | None,
        exclusions: Sequence[TripExclusion],
    ) -> list[DayClassification]:
        days: list[DayClassification] = []
        for day, day_points in group_points_by_day(points).items():
            result = classify_day(day, day_points, home, exclusions, self.config)
            if result is None:
                logger.debug(
                    "Skipping %s: %d points < %d",
                    day,
                    len(day_points),
                    self.config.min_data_points_per_day,
                )
                continue
            days.append(result)
        return days

    def detect_from_points(
        self,
        points: Iterable[TrackPoint],
        range_start: date,
        home: HomeReference | None,
        exclusions: Sequence[TripExclusion] = (),
    ) -> list[TripCandidate]:
        overnight = [p for p in points if is_overnight(p.recorded_at, self.config)]
        days = self.classify_days(overnight, home, exclusions)
        runs = assemble_trip_runs(days, range_start, self.config.max_gap_days)

        candidates = []
        for run in runs:
            candidate = build_trip_candidate(run, home, self.config)
            if candidate is not None:
                candidates.append(candidate)
        candidates.sort(key=lambda c: c.confidence, reverse=True)

        logger.info(
            "Classified %d days (%d away), %d runs, %d candidates",
            len(days),
            sum(1 for d in days if not d.at_home),
            len(runs),
            len(candidates),
        )
        return candidates

    async def detect_trips(
        self,
        owner_id: str,
        start: date,
        end: date,
        home: HomeReference | None,
        exclusions: Sequence[TripExclusion] = (),
    ) -> list[TripCandidate]:
        """Candidates for ``start..end``, highest confidence first."""
        points = await self.load_overnight_points(owner_id, start, end)
        logger.info(
            "Detecting trips for %s between %s and %s (%d overnight points)",
            owner_id,
            start,
            end,
            len(points),
        )
        return self.detect_from_points(points, start, home, exclusions)
