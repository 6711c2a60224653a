"""Detect trip suggestions over the date ranges not yet covered by trips."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import aiohttp

from core.exceptions import ExternalServiceError, ValidationError
from date_utils import parse_date
from db.models import UserPreferences, UserProfile
from trip_detection.date_ranges import (
    find_available_date_ranges,
    load_data_bounds,
    load_excluded_dates,
)
from trip_detection.engine import TripDetectionEngine
from trip_detection.models import DetectionConfig, HomeReference
from trip_detection.suggestions import save_suggestions

if TYPE_CHECKING:
    from db.models import TripExclusion
    from jobs.context import JobContext

logger = logging.getLogger(__name__)

NO_RANGES_MESSAGE = "No available date ranges to analyze"

# Handler-level defaults, stricter than the engine's own
HANDLER_DEFAULTS: dict[str, Any] = {
    "min_trip_duration_hours": 24,
    "min_data_points_per_day": 3,
    "clustering_radius_meters": 1000,
}


def build_detection_config(payload: dict[str, Any]) -> DetectionConfig:
    overrides = dict(payload.get("config") or {})
    for name in DetectionConfig.model_fields:
        if payload.get(name) is not None:
            overrides[name] = payload[name]
    return DetectionConfig.build(**{**HANDLER_DEFAULTS, **overrides})


async def resolve_home(ctx: JobContext) -> HomeReference | None:
    payload = ctx.payload
    custom = (payload.get("custom_home_address") or "").strip()
    if payload.get("use_custom_home_address") and custom:
        await ctx.progress.update(8, f"Geocoding custom home address: {custom}...")
        try:
            result = await ctx.services.geocoder.geocode_address(custom)
        except (ExternalServiceError, aiohttp.ClientError, TimeoutError):
            logger.warning("Could not geocode custom home address %r", custom, exc_info=True)
            result = None
        if not result:
            return HomeReference(display_name=custom)
        return HomeReference(
            display_name=result.get("display_name") or custom,
            lat=result.get("lat"),
            lon=result.get("lon"),
            address=result.get("address") or {},
        )

    profile = await UserProfile.find_one({"owner_id": ctx.owner_id})
    return HomeReference.from_home_address(profile.home_address if profile else None)


async def load_exclusions(owner_id: str) -> list[TripExclusion]:
    preferences = await UserPreferences.find_one({"owner_id": owner_id})
    return list(preferences.trip_exclusions) if preferences else []


async def process_trip_generation(ctx: JobContext) -> dict[str, Any]:
    started = time.monotonic()
    owner_id = ctx.owner_id
    if not owner_id:
        msg = "Trip generation job requires an owner"
        raise ValidationError(msg, {"job_id": ctx.job_id})
    payload = ctx.payload
    config = build_detection_config(payload)

    await ctx.progress.update(5, "Determining date ranges to analyze...", force=True)
    bounds = await load_data_bounds(owner_id)
    ranges = []
    if bounds is not None:
        start = parse_date(payload.get("start_date")) or bounds[0]
        end = parse_date(payload.get("end_date")) or bounds[1]
        start, end = max(start, bounds[0]), min(end, bounds[1])
        if start <= end:
            excluded = await load_excluded_dates(owner_id)
            ranges = find_available_date_ranges(start, end, excluded)

    if not ranges:
        await ctx.progress.update(100, NO_RANGES_MESSAGE, force=True)
        return {
            "message": NO_RANGES_MESSAGE,
            "trips_generated": 0,
            "suggested_trips_count": 0,
        }

    home = await resolve_home(ctx)
    exclusions = await load_exclusions(owner_id)
    engine = TripDetectionEngine(config)

    await ctx.progress.update(
        10,
        f"Analyzing {len(ranges)} date range(s)...",
        total_ranges=len(ranges),
    )
    saved_count = 0
    for index, (range_start, range_end) in enumerate(ranges, start=1):
        await ctx.token.raise_if_cancelled()
        candidates = await engine.detect_trips(
            owner_id,
            range_start,
            range_end,
            home,
            exclusions,
        )
        saved = await save_suggestions(owner_id, candidates)
        saved_count += len(saved)
        await ctx.progress.update(
            10 + index / len(ranges) * 85,
            f"Analyzed range {index}/{len(ranges)}: {range_start} to {range_end}",
            current_range=index,
            total_ranges=len(ranges),
            suggested_trips_count=saved_count,
        )

    total_time = f"{round(time.monotonic() - started)}s"
    message = f"Successfully detected {saved_count} trips"
    await ctx.progress.update(100, message, force=True)
    logger.info("Trip generation for %s: %d suggestions in %s", owner_id, saved_count, total_time)
    return {
        "message": message,
        "trips_generated": saved_count,
        "suggested_trips_count": saved_count,
        "total_ranges": len(ranges),
        "total_time": total_time,
    }
