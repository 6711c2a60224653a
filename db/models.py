"""Beanie ODM document models for MongoDB collections.

Usage:
    from db.models import Job, LocationPoint

    job = await Job.get(job_id)
    points = await LocationPoint.find({"owner_id": owner_id}).to_list()

Calendar dates on trips and suggestions are stored as ``YYYY-MM-DD``
strings so that range comparisons sort lexicographically.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from beanie import Document, Indexed
from pydantic import BaseModel, Field, field_validator
from pymongo import ASCENDING, DESCENDING, IndexModel

from date_utils import parse_timestamp


def _now() -> datetime:
    return datetime.now(UTC)


def _coerce_datetime(v: Any) -> datetime | None:
    if v is None:
        return None
    return parse_timestamp(v)


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------


class JobType(str, Enum):
    """Closed set of background work kinds."""

    REVERSE_GEOCODING_MISSING = "reverse_geocoding_missing"
    DATA_IMPORT = "data_import"
    DATA_EXPORT = "data_export"
    TRIP_GENERATION = "trip_generation"
    POI_DETECTION = "poi_detection"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
)


class JobPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANKS[self]


PRIORITY_RANKS: dict[JobPriority, int] = {
    JobPriority.LOW: 0,
    JobPriority.NORMAL: 1,
    JobPriority.HIGH: 2,
    JobPriority.URGENT: 3,
}


class WorkerStatus(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


class Job(Document):
    """Durable unit of background work."""

    job_type: JobType
    status: JobStatus = JobStatus.QUEUED
    priority: JobPriority = JobPriority.NORMAL
    # Mirrors ``priority`` as an int so the claim query can sort on it
    priority_rank: int = PRIORITY_RANKS[JobPriority.NORMAL]
    payload: dict[str, Any] = Field(default_factory=dict)
    progress: float = 0.0
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    retry_count: int = 0
    max_retries: int = 3
    worker_id: str | None = None
    owner_id: str | None = None

    created_at: datetime = Field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
    available_at: datetime | None = None

    @field_validator(
        "created_at",
        "started_at",
        "completed_at",
        "updated_at",
        "available_at",
        mode="before",
    )
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _coerce_datetime(v)

    class Settings:
        name = "jobs"
        indexes = [
            IndexModel(
                [
                    ("status", ASCENDING),
                    ("priority_rank", DESCENDING),
                    ("created_at", ASCENDING),
                ],
                name="jobs_claim_order_idx",
            ),
            IndexModel(
                [("owner_id", ASCENDING), ("created_at", DESCENDING)],
                name="jobs_owner_created_idx",
            ),
            IndexModel([("worker_id", ASCENDING)], name="jobs_worker_idx"),
        ]


class WorkerRecord(Document):
    """Liveness record for one polling worker."""

    worker_id: Indexed(str, unique=True)
    status: WorkerStatus = WorkerStatus.IDLE
    current_job: str | None = None
    last_heartbeat: datetime = Field(default_factory=_now)
    started_at: datetime = Field(default_factory=_now)
    hostname: str | None = None
    pid: int | None = None

    @field_validator("last_heartbeat", "started_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _coerce_datetime(v)

    class Settings:
        name = "job_workers"
        indexes = [
            IndexModel(
                [("last_heartbeat", DESCENDING)],
                name="job_workers_heartbeat_idx",
            ),
        ]


# ---------------------------------------------------------------------------
# Location history
# ---------------------------------------------------------------------------


class LocationPoint(Document):
    """One recorded GPS fix."""

    owner_id: str
    location: dict[str, Any]
    recorded_at: datetime
    altitude: float | None = None
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    geocode: dict[str, Any] | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime | None = None

    @field_validator("recorded_at", "created_at", "updated_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _coerce_datetime(v)

    @property
    def lon(self) -> float:
        return float(self.location["coordinates"][0])

    @property
    def lat(self) -> float:
        return float(self.location["coordinates"][1])

    class Settings:
        name = "location_points"
        indexes = [
            IndexModel(
                [
                    ("owner_id", ASCENDING),
                    ("location", ASCENDING),
                    ("recorded_at", ASCENDING),
                ],
                name="location_points_natural_key_idx",
                unique=True,
            ),
            IndexModel(
                [("owner_id", ASCENDING), ("recorded_at", ASCENDING)],
                name="location_points_owner_time_idx",
            ),
        ]


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------


class SuggestedTripStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CREATED = "created"


class Trip(Document):
    """A confirmed (or explicitly rejected) trip."""

    owner_id: str
    title: str
    description: str | None = None
    start_date: str
    end_date: str
    status: str = "planned"
    labels: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _coerce_datetime(v)

    class Settings:
        name = "trips"
        indexes = [
            IndexModel(
                [
                    ("owner_id", ASCENDING),
                    ("start_date", ASCENDING),
                    ("end_date", ASCENDING),
                ],
                name="trips_owner_dates_idx",
            ),
        ]


class SuggestedTrip(Document):
    """Candidate trip produced by sleep-pattern detection."""

    owner_id: str
    start_date: str
    end_date: str
    title: str
    description: str | None = None
    location: dict[str, Any] | None = None
    city_name: str | None = None
    confidence: float = 0.0
    data_points: int = 0
    overnight_stays: int = 0
    distance_from_home: float = 0.0
    status: SuggestedTripStatus = SuggestedTripStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _coerce_datetime(v)

    class Settings:
        name = "suggested_trips"
        indexes = [
            IndexModel(
                [("owner_id", ASCENDING), ("status", ASCENDING)],
                name="suggested_trips_owner_status_idx",
            ),
            IndexModel(
                [
                    ("owner_id", ASCENDING),
                    ("start_date", ASCENDING),
                    ("end_date", ASCENDING),
                ],
                name="suggested_trips_owner_dates_idx",
            ),
        ]


# ---------------------------------------------------------------------------
# User settings
# ---------------------------------------------------------------------------


class TripExclusion(BaseModel):
    type: str = "city"
    value: str


class UserProfile(Document):
    """Holds the stored home address used as the trip-detection reference.

    ``home_address`` shape::

        {
            "display_name": "...",
            "coordinates": {"lat": 52.37, "lng": 4.89},
            "address": {"city": "...", "town": "...", ...},
        }
    """

    owner_id: Indexed(str, unique=True)
    home_address: dict[str, Any] | None = None
    updated_at: datetime | None = None

    class Settings:
        name = "user_profiles"


class UserPreferences(Document):
    owner_id: Indexed(str, unique=True)
    trip_exclusions: list[TripExclusion] = Field(default_factory=list)
    updated_at: datetime | None = None

    class Settings:
        name = "user_preferences"


# ---------------------------------------------------------------------------
# Points of interest
# ---------------------------------------------------------------------------


class PointOfInterest(Document):
    owner_id: str
    name: str
    location: dict[str, Any] | None = None
    address: str | None = None
    category: str | None = None
    created_at: datetime = Field(default_factory=_now)

    class Settings:
        name = "points_of_interest"
        indexes = [
            IndexModel([("owner_id", ASCENDING)], name="poi_owner_idx"),
        ]


class PoiVisit(Document):
    owner_id: str
    poi_id: str
    visit_start: datetime
    visit_end: datetime
    duration_minutes: int
    location: dict[str, Any] | None = None
    address: str | None = None
    confidence_score: float = 0.0
    visit_type: str = "detected"
    notes: str | None = None
    created_at: datetime = Field(default_factory=_now)

    @field_validator("visit_start", "visit_end", "created_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        return _coerce_datetime(v)

    class Settings:
        name = "poi_visits"
        indexes = [
            IndexModel(
                [
                    ("owner_id", ASCENDING),
                    ("poi_id", ASCENDING),
                    ("visit_start", ASCENDING),
                ],
                name="poi_visits_natural_key_idx",
                unique=True,
            ),
        ]


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


class ServerLog(Document):
    """Server log document for MongoDB logging handler."""

    timestamp: Indexed(datetime, index_type=DESCENDING) | None = None
    level: str | None = None
    logger_name: str | None = None
    message: str | None = None
    pathname: str | None = None
    lineno: int | None = None
    funcName: str | None = None
    exc_info: str | None = None

    class Settings:
        name = "server_logs"
        indexes = [
            IndexModel([("level", ASCENDING)], name="server_logs_level_idx"),
            IndexModel(
                [("timestamp", ASCENDING)],
                name="server_logs_ttl_idx",
                expireAfterSeconds=30 * 24 * 60 * 60,
            ),
        ]


# List of all document models for Beanie initialization
ALL_DOCUMENT_MODELS = [
    Job,
    WorkerRecord,
    LocationPoint,
    Trip,
    SuggestedTrip,
    UserProfile,
    UserPreferences,
    PointOfInterest,
    PoiVisit,
    ServerLog,
]
