"""Import a staged location-history upload into ``location_points``."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pymongo.errors import DuplicateKeyError

from config import UPLOAD_STAGING_ROOT
from core.exceptions import ResourceNotFoundError, ValidationError
from core.spatial import GeometryService
from db.models import JobPriority, JobType, LocationPoint
from imports.parsers import ParsedPoint, detect_format, parse_content
from jobs.cancellation import JobCancelled
from jobs.progress import RateTracker, format_eta

if TYPE_CHECKING:
    from jobs.context import JobContext

logger = logging.getLogger(__name__)

CANCEL_CHECK_EVERY = 100
PROGRESS_EVERY = 100


def _natural_key(owner_id: str, point: ParsedPoint) -> dict[str, Any]:
    return {
        "owner_id": owner_id,
        "location": GeometryService.point_geojson(point.lon, point.lat),
        "recorded_at": point.recorded_at,
    }


async def _upsert_point(owner_id: str, point: ParsedPoint, source: str) -> bool:
    """Insert ``point`` unless its natural key exists. Returns True if inserted."""
    key = _natural_key(owner_id, point)
    if await LocationPoint.find_one(key) is not None:
        return False
    try:
        await LocationPoint(
            **key,
            altitude=point.altitude,
            accuracy=point.accuracy,
            speed=point.speed,
            heading=point.heading,
            raw_data=point.raw_data,
            source=source,
        ).insert()
    except DuplicateKeyError:
        # A concurrent import got there first
        return False
    return True


def _remove_staged_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Failed to remove staged upload %s", path)
    else:
        logger.debug("Removed staged upload %s", path)


async def process_data_import(ctx: JobContext) -> dict[str, Any]:
    owner_id = ctx.owner_id
    payload = ctx.payload
    if not owner_id:
        msg = "Import job requires an owner"
        raise ValidationError(msg, {"job_id": ctx.job_id})
    if not payload.get("file_path"):
        msg = "Import job requires a staged file_path"
        raise ValidationError(msg, {"job_id": ctx.job_id})

    path = Path(payload["file_path"])
    if not path.is_absolute():
        path = UPLOAD_STAGING_ROOT / path
    file_name = payload.get("file_name") or path.name
    remove_file = True
    try:
        fmt = detect_format(file_name, payload.get("format"))
        if not path.is_file():
            msg = f"Staged upload not found: {file_name}"
            raise ResourceNotFoundError(msg, {"file_path": str(path)})

        await ctx.progress.update(0, f"Reading {file_name}...", force=True)
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        records = list(parse_content(content, fmt))
        total = len(records)
        await ctx.progress.update(
            5,
            f"Parsed {total:,} records from {file_name}",
            total=total,
            format=fmt,
        )

        rate = RateTracker()
        imported = skipped = errors = 0
        for index, record in enumerate(records, start=1):
            if index % CANCEL_CHECK_EVERY == 0:
                await ctx.token.raise_if_cancelled()

            if record is None:
                skipped += 1
            else:
                try:
                    if await _upsert_point(owner_id, record, fmt):
                        imported += 1
                    else:
                        skipped += 1
                except Exception:
                    logger.exception(
                        "Failed to store record %d of %s for job %s",
                        index,
                        file_name,
                        ctx.job_id,
                    )
                    errors += 1

            if index % PROGRESS_EVERY and index != total:
                continue
            rate.record(index)
            await ctx.progress.update(
                5 + index / total * 90,
                f"Importing records from {file_name}",
                total=total,
                processed=index,
                imported=imported,
                skipped=skipped,
                errors=errors,
                rate=round(rate.rate(), 2),
                eta=format_eta(rate.eta_seconds(index, total)),
            )

        geocoding_job_id = None
        if imported > 0:
            geocoding_job = await ctx.queue.create_job(
                JobType.REVERSE_GEOCODING_MISSING,
                {"source_job_id": ctx.job_id},
                JobPriority.NORMAL,
                owner_id,
            )
            geocoding_job_id = str(geocoding_job.id)

        logger.info(
            "Imported %s (%s) for %s: %d new, %d skipped, %d errors",
            file_name,
            fmt,
            owner_id,
            imported,
            skipped,
            errors,
        )
        return {
            "message": f"Imported {imported:,} points from {file_name}",
            "imported": imported,
            "skipped": skipped,
            "errors": errors,
            "file_name": file_name,
            "format": fmt,
            "geocoding_job_id": geocoding_job_id,
        }
    except (JobCancelled, ValidationError, ResourceNotFoundError):
        raise
    except (Exception, asyncio.CancelledError):
        # Keep the upload for the next attempt while retries remain
        remove_file = ctx.job.retry_count >= ctx.job.max_retries
        raise
    finally:
        if remove_file:
            _remove_staged_file(path)
