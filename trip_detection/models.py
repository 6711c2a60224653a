"""Configuration and value types for sleep-pattern trip detection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError
from core.spatial import GeometryService
from db.models import SuggestedTrip, SuggestedTripStatus

HOME_PLACE_FIELDS = ("city", "town", "village", "municipality")


class DetectionConfig(BaseModel):
    min_trip_duration_hours: float = Field(default=12, ge=0)
    max_distance_from_home_km: float = Field(default=50, ge=0)
    min_data_points_per_day: int = Field(default=3, ge=1)
    overnight_hours_start: int = Field(default=20, ge=0, le=23)
    overnight_hours_end: int = Field(default=8, ge=0, le=23)
    min_overnight_hours: float = Field(default=6, ge=0)
    # Fixed radius for the distance fallback of home classification
    home_radius_km: float = Field(default=10, gt=0)
    clustering_radius_meters: float = Field(default=1000, gt=0)
    min_confidence_score: float = Field(default=0.7, ge=0, le=1)
    max_gap_days: int = Field(default=3, ge=0)

    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def build(cls, **values: Any) -> DetectionConfig:
        try:
            return cls(**{k: v for k, v in values.items() if v is not None})
        except PydanticValidationError as exc:
            msg = "Invalid trip detection configuration"
            raise ValidationError(msg, {"errors": exc.errors()}) from exc


class HomeReference(BaseModel):
    """Where the owner lives: address text and, optionally, coordinates."""

    display_name: str | None = None
    lat: float | None = None
    lon: float | None = None
    address: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_home_address(cls, home_address: dict[str, Any] | None) -> HomeReference | None:
        """Build from the stored ``home_address`` shape (coordinates use ``lng``)."""
        if not home_address:
            return None
        coords = home_address.get("coordinates") or {}
        lat = coords.get("lat")
        lon = coords.get("lng", coords.get("lon"))
        valid, pair = GeometryService.validate_coordinate_pair([lon, lat])
        return cls(
            display_name=home_address.get("display_name"),
            lat=pair[1] if valid and pair else None,
            lon=pair[0] if valid and pair else None,
            address=home_address.get("address") or {},
        )

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def place_name(self) -> str | None:
        """First available of city, town, village, municipality."""
        for key in HOME_PLACE_FIELDS:
            value = self.address.get(key)
            if value:
                return str(value)
        return None

    def distance_km(self, lat: float, lon: float) -> float | None:
        if not self.has_coordinates:
            return None
        return GeometryService.haversine_distance(
            self.lon,
            self.lat,
            lon,
            lat,
            unit="km",
        )


@dataclass(frozen=True)
class TrackPoint:
    lat: float
    lon: float
    recorded_at: datetime
    geocode: dict[str, Any] | None = None


@dataclass
class OvernightStay:
    date: date
    lat: float
    lon: float
    city_name: str
    start: datetime
    end: datetime
    data_point_count: int
    confidence: float
    duration_hours: float = 24.0

    @property
    def location(self) -> dict[str, Any]:
        return GeometryService.point_geojson(self.lon, self.lat)


@dataclass
class DayClassification:
    date: date
    at_home: bool
    reason: str
    city_name: str
    data_point_count: int
    stay: OvernightStay | None = None


@dataclass
class TripCandidate:
    start_date: date
    end_date: date
    title: str
    description: str
    location: dict[str, Any]
    city_name: str
    confidence: float
    data_points: int
    overnight_stays: int
    distance_from_home: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def visited_cities(self) -> list[str]:
        return list(self.metadata.get("visited_cities") or [self.city_name])

    def to_document(self, owner_id: str) -> SuggestedTrip:
        return SuggestedTrip(
            owner_id=owner_id,
            start_date=self.start_date.isoformat(),
            end_date=self.end_date.isoformat(),
            title=self.title,
            description=self.description,
            location=self.location,
            city_name=self.city_name,
            confidence=self.confidence,
            data_points=self.data_points,
            overnight_stays=self.overnight_stays,
            distance_from_home=self.distance_from_home,
            status=SuggestedTripStatus.PENDING,
            metadata=self.metadata,
        )
