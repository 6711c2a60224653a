from __future__ import annotations

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from bson import ObjectId

EXPORT_FORMATS = ("geojson", "gpx", "owntracks", "json")

FILE_EXTENSIONS = {
    "geojson": "geojson",
    "gpx": "gpx",
    "owntracks": "rec",
    "json": "json",
}


def normalize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (ObjectId, PydanticObjectId)):
        return str(value)
    if isinstance(value, dict):
        return {key: normalize_value(val) for key, val in value.items()}
    if isinstance(value, list):
        return [normalize_value(item) for item in value]
    return value


def _get_value(source: Any, key: str) -> Any:
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


def _coordinates(point: Any) -> tuple[float, float] | None:
    location = _get_value(point, "location") or {}
    coords = location.get("coordinates") if isinstance(location, dict) else None
    if not coords or len(coords) < 2:
        return None
    return float(coords[0]), float(coords[1])


def serialize_location_record(point: Any) -> dict[str, Any]:
    coords = _coordinates(point)
    return {
        "id": normalize_value(_get_value(point, "id")),
        "lat": coords[1] if coords else None,
        "lon": coords[0] if coords else None,
        "recorded_at": normalize_value(_get_value(point, "recorded_at")),
        "altitude": _get_value(point, "altitude"),
        "accuracy": _get_value(point, "accuracy"),
        "speed": _get_value(point, "speed"),
        "heading": _get_value(point, "heading"),
        "source": _get_value(point, "source"),
        "geocode": normalize_value(_get_value(point, "geocode")),
    }


def location_feature(point: Any) -> dict[str, Any] | None:
    coords = _coordinates(point)
    if coords is None:
        return None
    record = serialize_location_record(point)
    properties = {
        key: value
        for key, value in record.items()
        if key not in {"lat", "lon"} and value is not None
    }
    # Importer reads timestamps from "timestamp"
    properties["timestamp"] = record["recorded_at"]
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [coords[0], coords[1]]},
        "properties": properties,
    }


def owntracks_line(point: Any) -> str | None:
    """``ts,lat,lon,alt,acc,vacc,speed,heading,event`` row for one point."""
    coords = _coordinates(point)
    recorded_at = _get_value(point, "recorded_at")
    if coords is None or not isinstance(recorded_at, datetime):
        return None
    raw_data = _get_value(point, "raw_data") or {}

    def cell(value: Any) -> str:
        return "" if value is None else str(value)

    return ",".join(
        [
            str(int(recorded_at.timestamp())),
            cell(coords[1]),
            cell(coords[0]),
            cell(_get_value(point, "altitude")),
            cell(_get_value(point, "accuracy")),
            cell(raw_data.get("vertical_accuracy")),
            cell(_get_value(point, "speed")),
            cell(_get_value(point, "heading")),
            cell(raw_data.get("event")),
        ],
    )


def serialize_trip_record(trip: Any) -> dict[str, Any]:
    return {
        "id": normalize_value(_get_value(trip, "id")),
        "title": _get_value(trip, "title"),
        "description": _get_value(trip, "description"),
        "start_date": _get_value(trip, "start_date"),
        "end_date": _get_value(trip, "end_date"),
        "status": _get_value(trip, "status"),
        "labels": list(_get_value(trip, "labels") or []),
        "metadata": normalize_value(_get_value(trip, "metadata") or {}),
        "created_at": normalize_value(_get_value(trip, "created_at")),
    }


def serialize_place_record(place: Any) -> dict[str, Any]:
    return {
        "id": normalize_value(_get_value(place, "id")),
        "name": _get_value(place, "name"),
        "address": _get_value(place, "address"),
        "category": _get_value(place, "category"),
        "location": normalize_value(_get_value(place, "location")),
        "created_at": normalize_value(_get_value(place, "created_at")),
    }
