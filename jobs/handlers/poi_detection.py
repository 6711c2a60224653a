"""Detect dwell periods at an owner's points of interest."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import DuplicateKeyError

from core.exceptions import ValidationError
from core.spatial import GeometryService
from db.models import LocationPoint, PointOfInterest, PoiVisit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from jobs.context import JobContext

logger = logging.getLogger(__name__)


class VisitDetectionConfig(BaseModel):
    min_dwell_minutes: float = Field(default=15, ge=0)
    max_distance_meters: float = Field(default=100, gt=0)
    min_consecutive_points: int = Field(default=3, ge=1)
    lookback_days: int = Field(default=7, ge=1)

    model_config = ConfigDict(extra="ignore")


@dataclass
class DwellPeriod:
    start: datetime
    end: datetime
    point_count: int

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def visit_confidence(point_count: int, duration_minutes: float) -> float:
    score = (
        min(point_count / 10, 0.7)
        + 0.3
        + min(duration_minutes / 60, 0.3)
        + 0.2
    )
    return min(score, 1.0)


def find_dwell_periods(
    points: Sequence[LocationPoint],
    poi_lon: float,
    poi_lat: float,
    config: VisitDetectionConfig,
) -> list[DwellPeriod]:
    """Runs of consecutive points near the POI.

    A run ends at the first point outside the radius (whose time closes the
    visit) or at the last point of the data.
    """
    periods: list[DwellPeriod] = []
    run_start: datetime | None = None
    count = 0

    def close(end: datetime) -> None:
        if run_start is None or count < config.min_consecutive_points:
            return
        period = DwellPeriod(start=run_start, end=end, point_count=count)
        if period.duration_minutes >= config.min_dwell_minutes:
            periods.append(period)

    for point in points:
        distance = GeometryService.haversine_distance(point.lon, point.lat, poi_lon, poi_lat)
        if distance <= config.max_distance_meters:
            count += 1
            if run_start is None:
                run_start = point.recorded_at
        else:
            close(point.recorded_at)
            run_start, count = None, 0

    if points:
        close(points[-1].recorded_at)
    return periods


async def _store_visit(owner_id: str, poi: PointOfInterest, period: DwellPeriod) -> bool:
    key = {"owner_id": owner_id, "poi_id": str(poi.id), "visit_start": period.start}
    if await PoiVisit.find_one(key) is not None:
        return False
    try:
        await PoiVisit(
            **key,
            visit_end=period.end,
            duration_minutes=period.duration_minutes,
            location=poi.location,
            address=poi.address,
            confidence_score=visit_confidence(period.point_count, period.duration_minutes),
            visit_type="detected",
            notes=f"Detected automatically with {period.point_count} consecutive points",
        ).insert()
    except DuplicateKeyError:
        return False
    return True


async def owners_with_pois() -> list[str]:
    owners = await PointOfInterest.distinct("owner_id")
    return sorted(str(owner) for owner in owners if owner)


async def process_poi_detection(ctx: JobContext) -> dict[str, Any]:
    owner_id = ctx.owner_id
    if not owner_id:
        msg = "POI detection job requires an owner"
        raise ValidationError(msg, {"job_id": ctx.job_id})
    config = VisitDetectionConfig(**(ctx.payload.get("config") or {}))

    pois = await PointOfInterest.find({"owner_id": owner_id}).to_list()
    if not pois:
        await ctx.progress.update(100, "No points of interest", force=True)
        return {"message": "No points of interest", "pois": 0, "detected": 0, "stored": 0}

    since = datetime.now(UTC) - timedelta(days=config.lookback_days)
    points = (
        await LocationPoint.find(
            {"owner_id": owner_id, "recorded_at": {"$gte": since}},
        )
        .sort("recorded_at")
        .to_list()
    )
    await ctx.progress.update(
        10,
        f"Scanning {len(points):,} points against {len(pois)} places",
        force=True,
    )

    detected = stored = 0
    for index, poi in enumerate(pois, start=1):
        await ctx.token.raise_if_cancelled()
        coords = GeometryService.point_coordinates(poi.location)
        if coords is None:
            logger.debug("POI %s has no usable location", poi.id)
            continue
        periods = find_dwell_periods(points, coords[0], coords[1], config)
        detected += len(periods)
        for period in periods:
            if await _store_visit(owner_id, poi, period):
                stored += 1
        await ctx.progress.update(
            10 + index / len(pois) * 90,
            f"Checked {index}/{len(pois)} places",
            detected=detected,
            stored=stored,
        )

    logger.info("POI detection for %s: %d visits (%d new)", owner_id, detected, stored)
    return {
        "message": f"Detected {detected} visits ({stored} new)",
        "pois": len(pois),
        "detected": detected,
        "stored": stored,
    }
