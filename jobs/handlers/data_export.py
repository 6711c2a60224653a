"""Build a zip archive of an owner's data and publish a signed download URL."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
import zipfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from core.exceptions import ValidationError
from date_utils import end_of_day, parse_date, start_of_day
from db.models import LocationPoint, PointOfInterest, Trip
from exports.serializers import (
    EXPORT_FORMATS,
    FILE_EXTENSIONS,
    normalize_value,
    serialize_place_record,
    serialize_trip_record,
)
from exports.writers import write_json_array, write_locations

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from jobs.context import JobContext

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


def _location_query(owner_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    query: dict[str, Any] = {"owner_id": owner_id}
    start = parse_date(payload.get("start_date"))
    end = parse_date(payload.get("end_date"))
    if start and end and start > end:
        msg = "start_date must not be after end_date"
        raise ValidationError(msg, {"start_date": str(start), "end_date": str(end)})
    bounds: dict[str, Any] = {}
    if start:
        bounds["$gte"] = start_of_day(start)
    if end:
        bounds["$lte"] = end_of_day(end)
    if bounds:
        query["recorded_at"] = bounds
    return query


async def _iter_locations(
    ctx: JobContext,
    query: dict[str, Any],
) -> AsyncIterator[LocationPoint]:
    """Page through points in recorded_at order without holding them all.

    Cancellation is checked and progress reported once per page.
    """
    total = await LocationPoint.find(query).count()
    skip = 0
    while True:
        await ctx.token.raise_if_cancelled()
        page = (
            await LocationPoint.find(query)
            .sort("recorded_at", "_id")
            .skip(skip)
            .limit(PAGE_SIZE)
            .to_list()
        )
        for point in page:
            yield point
        exported = skip + len(page)
        await ctx.progress.update(
            20 + (exported / total * 20 if total else 20),
            "Exporting location data...",
            total_locations=total,
            exported_locations=exported,
        )
        if len(page) < PAGE_SIZE:
            return
        skip += PAGE_SIZE


async def _iter_documents(documents: list[Any]) -> AsyncIterator[Any]:
    for document in documents:
        yield document


async def _write_places(path: Path, places: list[PointOfInterest], fmt: str) -> int:
    if fmt != "geojson":
        return await write_json_array(path, _iter_documents(places), serialize_place_record)
    features = []
    for place in places:
        record = serialize_place_record(place)
        geometry = record.pop("location", None)
        features.append({"type": "Feature", "geometry": geometry, "properties": record})
    path.write_text(
        json.dumps({"type": "FeatureCollection", "features": features}),
        encoding="utf-8",
    )
    return len(features)


def _build_zip(export_dir: Path, zip_path: Path) -> None:
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as archive:
        for file_path in sorted(export_dir.iterdir()):
            if file_path.is_file():
                archive.write(file_path, file_path.name)


async def process_data_export(ctx: JobContext) -> dict[str, Any]:
    owner_id = ctx.owner_id
    payload = ctx.payload
    if not owner_id:
        msg = "Export job requires an owner"
        raise ValidationError(msg, {"job_id": ctx.job_id})

    fmt = str(payload.get("format") or "geojson").lower()
    if fmt not in EXPORT_FORMATS:
        msg = f"Unsupported export format: {fmt}"
        raise ValidationError(msg, {"format": fmt})
    include_locations = payload.get("include_location_data", True)
    include_trips = payload.get("include_trips", False)
    include_places = payload.get("include_want_to_visit", False)
    location_query = _location_query(owner_id, payload)
    extension = FILE_EXTENSIONS[fmt]

    await ctx.progress.update(10, "Starting export process...", force=True)

    work_dir = Path(tempfile.mkdtemp(prefix=f"export_{ctx.job_id}_"))
    export_dir = work_dir / "files"
    export_dir.mkdir()
    counts: dict[str, int] = {}
    try:
        if include_locations:
            await ctx.progress.update(20, "Exporting location data...")
            path = export_dir / f"locations.{extension}"
            counts["locations"] = await write_locations(
                path,
                fmt,
                _iter_locations(ctx, location_query),
            )
            await ctx.token.raise_if_cancelled()

        if include_trips:
            await ctx.progress.update(40, "Exporting trips...")
            trips = await Trip.find({"owner_id": owner_id}).sort("start_date").to_list()
            counts["trips"] = await write_json_array(
                export_dir / "trips.json",
                _iter_documents(trips),
                serialize_trip_record,
            )
            await ctx.token.raise_if_cancelled()

        if include_places:
            await ctx.progress.update(60, "Exporting want-to-visit places...")
            places = await PointOfInterest.find({"owner_id": owner_id}).to_list()
            place_extension = "geojson" if fmt == "geojson" else "json"
            counts["want_to_visit"] = await _write_places(
                export_dir / f"want-to-visit.{place_extension}",
                places,
                fmt,
            )
            await ctx.token.raise_if_cancelled()

        await ctx.progress.update(80, "Writing manifest...")
        manifest = {
            "generated_at": datetime.now(UTC).isoformat(),
            "job_id": ctx.job_id,
            "owner_id": owner_id,
            "format": fmt,
            "filters": normalize_value(
                {
                    "start_date": payload.get("start_date"),
                    "end_date": payload.get("end_date"),
                },
            ),
            "counts": counts,
        }
        (export_dir / "manifest.json").write_text(
            json.dumps(manifest, indent=2, ensure_ascii=True),
            encoding="utf-8",
        )

        await ctx.progress.update(90, "Creating zip file...")
        file_name = f"export_{owner_id}_{int(datetime.now(UTC).timestamp())}.zip"
        zip_path = work_dir / file_name
        await asyncio.to_thread(_build_zip, export_dir, zip_path)
        await ctx.token.raise_if_cancelled()

        stored = await ctx.services.storage.upload(owner_id, file_name, zip_path)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    await ctx.progress.update(100, "Export ready", force=True)
    logger.info(
        "Export %s for %s ready (%d bytes, %s)",
        file_name,
        owner_id,
        stored.size_bytes,
        counts,
    )
    return {
        "message": "Export ready",
        "download_url": stored.url,
        "expires_at": stored.expires_at.isoformat(),
        "file_name": file_name,
        "size_bytes": stored.size_bytes,
        "format": fmt,
        "counts": counts,
    }
