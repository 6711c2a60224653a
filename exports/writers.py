from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import gpxpy
import gpxpy.gpx

from exports.serializers import (
    location_feature,
    owntracks_line,
    serialize_location_record,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path


def _dump(record: Any) -> str:
    return json.dumps(record, separators=(",", ":"), ensure_ascii=True)


async def write_json_array(
    path: Path,
    cursor: AsyncIterator[Any],
    serializer: Callable[[Any], dict[str, Any]],
) -> int:
    count = 0
    with path.open("w", encoding="utf-8") as handle:
        handle.write("[")
        async for item in cursor:
            if count:
                handle.write(",")
            handle.write(_dump(serializer(item)))
            count += 1
        handle.write("]")
    return count


async def write_geojson_points(path: Path, cursor: AsyncIterator[Any]) -> int:
    count = 0
    with path.open("w", encoding="utf-8") as handle:
        handle.write('{"type":"FeatureCollection","features":[')
        async for point in cursor:
            feature = location_feature(point)
            if feature is None:
                continue
            if count:
                handle.write(",")
            handle.write(_dump(feature))
            count += 1
        handle.write("]}")
    return count


async def write_owntracks(path: Path, cursor: AsyncIterator[Any]) -> int:
    count = 0
    with path.open("w", encoding="utf-8") as handle:
        async for point in cursor:
            line = owntracks_line(point)
            if line is None:
                continue
            handle.write(line)
            handle.write("\n")
            count += 1
    return count


async def write_gpx_points(
    path: Path,
    cursor: AsyncIterator[Any],
    *,
    track_name: str = "Location history",
) -> int:
    """Write all points as one GPX track with a single segment."""
    gpx = gpxpy.gpx.GPX()
    gpx.creator = "Wayfarer"
    segment = gpxpy.gpx.GPXTrackSegment()

    count = 0
    async for point in cursor:
        record = serialize_location_record(point)
        if record["lat"] is None or record["lon"] is None:
            continue
        gpx_point = gpxpy.gpx.GPXTrackPoint(
            record["lat"],
            record["lon"],
            elevation=record["altitude"],
            time=getattr(point, "recorded_at", None),
        )
        segment.points.append(gpx_point)
        count += 1

    track = gpxpy.gpx.GPXTrack(name=track_name)
    track.segments.append(segment)
    gpx.tracks.append(track)
    path.write_text(gpx.to_xml(), encoding="utf-8")
    return count


async def write_locations(path: Path, fmt: str, cursor: AsyncIterator[Any]) -> int:
    if fmt == "geojson":
        return await write_geojson_points(path, cursor)
    if fmt == "gpx":
        return await write_gpx_points(path, cursor)
    if fmt == "owntracks":
        return await write_owntracks(path, cursor)
    return await write_json_array(path, cursor, serialize_location_record)
