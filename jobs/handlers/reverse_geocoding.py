"""Bulk reverse geocoding of location points that lack address data.

Points are read in pages of ``BATCH_SIZE`` and geocoded in windows of
``CONCURRENT_REQUESTS`` parallel lookups with a short pause between
windows. Each point's result (or a structured error entry) is written as
soon as it is known, so a restarted job resumes where the last one left
off.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from core.exceptions import ValidationError
from core.geocoding import build_error_geocode, is_error_geocode, needs_geocoding
from core.http.circuit_breaker import CircuitOpen
from core.http.retry import is_transient_error
from core.spatial import GeometryService
from db.models import LocationPoint
from jobs.progress import RateTracker, format_eta

if TYPE_CHECKING:
    from jobs.context import Geocoder, JobContext

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000
CONCURRENT_REQUESTS = 20
CHUNK_DELAY_SECONDS = 0.05


def _candidate_query(owner_id: str) -> dict[str, Any]:
    return {
        "owner_id": owner_id,
        "$or": [
            {"geocode": None},
            {"geocode": {}},
            {"geocode.error": True},
        ],
    }


async def _resolve_geocode(point: LocationPoint, geocoder: Geocoder) -> dict[str, Any]:
    imported = (point.raw_data or {}).get("geocode")
    if isinstance(imported, dict) and imported and not is_error_geocode(imported):
        return imported

    valid, pair = GeometryService.validate_coordinate_pair(
        (point.location or {}).get("coordinates") or [],
    )
    if not valid or pair is None:
        return build_error_geocode("Invalid coordinates", retryable=False)

    lon, lat = pair
    try:
        result = await geocoder.reverse(lat, lon)
    except CircuitOpen as exc:
        return build_error_geocode(str(exc), retryable=True)
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        if is_transient_error(exc):
            return build_error_geocode(message, retryable=True)
        return build_error_geocode(message)

    if not result:
        return build_error_geocode("No results found", retryable=False)
    return result


async def _geocode_point(point: LocationPoint, geocoder: Geocoder) -> bool:
    """Geocode and persist one point; returns True on success."""
    geocode = await _resolve_geocode(point, geocoder)
    try:
        await LocationPoint.find_one({"_id": point.id}).update(
            {"$set": {"geocode": geocode, "updated_at": datetime.now(UTC)}},
        )
    except Exception:
        logger.exception("Failed to store geocode for point %s", point.id)
        return False
    return not is_error_geocode(geocode)


async def process_reverse_geocoding(ctx: JobContext) -> dict[str, Any]:
    owner_id = ctx.owner_id
    if not owner_id:
        msg = "Reverse geocoding job requires an owner"
        raise ValidationError(msg, {"job_id": ctx.job_id})

    query = _candidate_query(owner_id)
    total = await LocationPoint.find(query).count()
    if total == 0:
        await ctx.progress.update(100, "No points need geocoding", force=True)
        return {
            "message": "No points need geocoding",
            "total": 0,
            "processed": 0,
            "success": 0,
            "errors": 0,
            "skipped": 0,
        }

    await ctx.progress.update(
        0,
        f"Reverse geocoding {total:,} points...",
        total=total,
        force=True,
    )

    geocoder = ctx.services.geocoder
    rate = RateTracker()
    processed = success = errors = skipped = 0
    last_id = None

    while True:
        await ctx.token.raise_if_cancelled()

        page_query = dict(query)
        if last_id is not None:
            page_query["_id"] = {"$gt": last_id}
        batch = await LocationPoint.find(page_query).sort("_id").limit(BATCH_SIZE).to_list()
        if not batch:
            break
        last_id = batch[-1].id

        candidates = [point for point in batch if needs_geocoding(point.geocode)]
        skipped += len(batch) - len(candidates)

        for start in range(0, len(candidates), CONCURRENT_REQUESTS):
            await ctx.token.raise_if_cancelled()
            chunk = candidates[start : start + CONCURRENT_REQUESTS]
            outcomes = await asyncio.gather(
                *(_geocode_point(point, geocoder) for point in chunk),
            )
            success += sum(1 for ok in outcomes if ok)
            errors += sum(1 for ok in outcomes if not ok)
            processed += len(chunk)
            rate.record(processed + skipped)

            done = processed + skipped
            await ctx.progress.update(
                min(99.0, done / total * 100),
                f"Geocoded {done:,}/{total:,} points",
                total=total,
                processed=processed,
                success=success,
                errors=errors,
                skipped=skipped,
                rate=round(rate.rate(), 2),
                eta=format_eta(rate.eta_seconds(done, total)),
            )
            await asyncio.sleep(CHUNK_DELAY_SECONDS)

    logger.info(
        "Reverse geocoding for %s finished: %d ok, %d errors, %d skipped",
        owner_id,
        success,
        errors,
        skipped,
    )
    return {
        "message": (
            f"Reverse geocoding completed: {success:,} succeeded, {errors:,} failed"
        ),
        "total": total,
        "processed": processed,
        "success": success,
        "errors": errors,
        "skipped": skipped,
    }
