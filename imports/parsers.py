"""
Location history parsers for uploaded files.

Each parser yields one entry per source record: a ``ParsedPoint`` when the
record is usable, ``None`` when it is malformed (so callers can count it
as skipped without aborting the file). A file that cannot be read at all
raises ``ValidationError``.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any

import gpxpy
import gpxpy.gpx

from core.exceptions import ValidationError
from core.spatial import GeometryService
from date_utils import parse_timestamp

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("geojson", "gpx", "owntracks")

_EXTENSION_FORMATS = {
    ".geojson": "geojson",
    ".json": "geojson",
    ".gpx": "gpx",
    ".rec": "owntracks",
    ".csv": "owntracks",
    ".txt": "owntracks",
}


@dataclass
class ParsedPoint:
    lat: float
    lon: float
    recorded_at: datetime
    altitude: float | None = None
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


def detect_format(file_name: str | None, declared: str | None = None) -> str:
    if declared:
        fmt = declared.strip().lower()
        if fmt in SUPPORTED_FORMATS:
            return fmt
        msg = f"Unsupported import format: {declared}"
        raise ValidationError(msg, {"format": declared})
    suffix = PurePath(file_name or "").suffix.lower()
    if suffix in _EXTENSION_FORMATS:
        return _EXTENSION_FORMATS[suffix]
    msg = f"Cannot determine import format for {file_name!r}"
    raise ValidationError(msg, {"file_name": file_name})


def _number(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _timestamp(value: Any) -> datetime | None:
    """Epoch seconds, epoch milliseconds or ISO strings."""
    number = _number(value) if not isinstance(value, str) or value.isdigit() else None
    if number is not None:
        # Values this large are milliseconds
        if number > 10_000_000_000:
            number /= 1000
        return parse_timestamp(number)
    return parse_timestamp(value) if isinstance(value, str) else None


def _point(lat: Any, lon: Any, recorded_at: datetime | None, **extra: Any) -> ParsedPoint | None:
    valid, pair = GeometryService.validate_coordinate_pair([lon, lat])
    if not valid or pair is None or recorded_at is None:
        return None
    return ParsedPoint(lat=pair[1], lon=pair[0], recorded_at=recorded_at, **extra)


# ---------------------------------------------------------------------------
# GeoJSON
# ---------------------------------------------------------------------------


def parse_geojson(content: str) -> Iterator[ParsedPoint | None]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        msg = f"Invalid GeoJSON: {exc.msg}"
        raise ValidationError(msg, {"line": exc.lineno}) from exc

    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        features = data.get("features") or []
    elif isinstance(data, dict) and data.get("type") == "Feature":
        features = [data]
    elif isinstance(data, list):
        features = data
    else:
        msg = "GeoJSON must be a FeatureCollection or a list of features"
        raise ValidationError(msg)

    for feature in features:
        geometry = (feature or {}).get("geometry") if isinstance(feature, dict) else None
        if not isinstance(geometry, dict) or geometry.get("type") != "Point":
            yield None
            continue
        coords = geometry.get("coordinates") or []
        if len(coords) < 2:
            yield None
            continue
        props = feature.get("properties") or {}
        recorded_at = None
        for key in ("timestamp", "recorded_at", "time", "date"):
            if props.get(key) is not None:
                recorded_at = _timestamp(props[key])
                break
        altitude = _number(coords[2]) if len(coords) > 2 else None
        raw_data: dict[str, Any] = {
            "import_source": "geojson",
            "properties": props,
        }
        if isinstance(props.get("geocode"), dict):
            raw_data["geocode"] = props["geocode"]
        yield _point(
            coords[1],
            coords[0],
            recorded_at,
            altitude=altitude
            if altitude is not None
            else _number(props.get("altitude", props.get("elevation"))),
            accuracy=_number(props.get("accuracy")),
            speed=_number(props.get("speed", props.get("velocity"))),
            heading=_number(props.get("heading", props.get("course"))),
            raw_data=raw_data,
        )


# ---------------------------------------------------------------------------
# GPX
# ---------------------------------------------------------------------------


def _gpx_point(point: gpxpy.gpx.GPXTrackPoint | gpxpy.gpx.GPXWaypoint, kind: str) -> ParsedPoint | None:
    return _point(
        point.latitude,
        point.longitude,
        parse_timestamp(point.time) if point.time else None,
        altitude=_number(point.elevation),
        speed=_number(getattr(point, "speed", None)),
        raw_data={
            "import_source": "gpx",
            "data_type": kind,
            "name": getattr(point, "name", None),
        },
    )


def parse_gpx(content: str) -> Iterator[ParsedPoint | None]:
    try:
        gpx = gpxpy.parse(content)
    except gpxpy.gpx.GPXException as exc:
        msg = f"Invalid GPX: {exc}"
        raise ValidationError(msg) from exc

    for track in gpx.tracks:
        for segment in track.segments:
            for point in segment.points:
                yield _gpx_point(point, "track_point")
    for route in gpx.routes:
        for point in route.points:
            yield _gpx_point(point, "route_point")
    for waypoint in gpx.waypoints:
        yield _gpx_point(waypoint, "waypoint")


# ---------------------------------------------------------------------------
# OwnTracks
# ---------------------------------------------------------------------------

# Column layout of the comma separated export:
# ts,lat,lon,alt,acc,vacc,speed,heading,event
OWNTRACKS_COLUMNS = ("ts", "lat", "lon", "alt", "acc", "vacc", "speed", "heading", "event")


def _parse_owntracks_json(payload: str) -> ParsedPoint | None:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or data.get("_type", "location") != "location":
        return None
    return _point(
        data.get("lat"),
        data.get("lon"),
        _timestamp(data.get("tst")),
        altitude=_number(data.get("alt")),
        accuracy=_number(data.get("acc")),
        speed=_number(data.get("vel")),
        heading=_number(data.get("cog")),
        raw_data={
            "import_source": "owntracks",
            "data_type": "location_point",
            "battery": data.get("batt"),
            "trigger": data.get("t"),
        },
    )


def _parse_owntracks_csv(line: str) -> ParsedPoint | None:
    parts = [part.strip() for part in line.split(",")]
    if len(parts) < 3:
        return None
    row = dict(zip(OWNTRACKS_COLUMNS, parts, strict=False))
    return _point(
        row.get("lat"),
        row.get("lon"),
        _timestamp(row.get("ts")),
        altitude=_number(row.get("alt")),
        accuracy=_number(row.get("acc")),
        speed=_number(row.get("speed")),
        heading=_number(row.get("heading")),
        raw_data={
            "import_source": "owntracks",
            "data_type": "location_point",
            "event": row.get("event") or None,
            "vertical_accuracy": _number(row.get("vacc")),
        },
    )


def parse_owntracks(content: str) -> Iterator[ParsedPoint | None]:
    """Parse comma separated lines or native ``.rec`` lines.

    Native recorder lines look like ``2024-05-01T20:00:00Z\\t*  \\t{json}``.
    """
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        brace = line.find("{")
        if brace >= 0:
            yield _parse_owntracks_json(line[brace:])
        else:
            yield _parse_owntracks_csv(line)


PARSERS: dict[str, Callable[[str], Iterator[ParsedPoint | None]]] = {
    "geojson": parse_geojson,
    "gpx": parse_gpx,
    "owntracks": parse_owntracks,
}


def parse_content(content: str, fmt: str) -> Iterator[ParsedPoint | None]:
    try:
        parser = PARSERS[fmt]
    except KeyError as exc:
        msg = f"Unsupported import format: {fmt}"
        raise ValidationError(msg, {"format": fmt}) from exc
    return parser(content)
