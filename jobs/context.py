"""Per-execution context handed to job handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from db.models import Job
    from exports.storage import ArchiveStorage
    from jobs.cancellation import CancellationToken
    from jobs.progress import ProgressReporter
    from jobs.queue import JobQueueService


class Geocoder(Protocol):
    async def reverse(self, lat: float, lon: float) -> dict[str, Any] | None: ...

    async def geocode_address(self, address: str) -> dict[str, Any] | None: ...


def _default_geocoder() -> Geocoder:
    from core.http.nominatim import NominatimClient

    return NominatimClient()


def _default_storage() -> ArchiveStorage:
    from exports.storage import ArchiveStorage

    return ArchiveStorage()


@dataclass
class JobServices:
    """External collaborators shared by all handlers of a registry."""

    geocoder: Geocoder = field(default_factory=_default_geocoder)
    storage: ArchiveStorage = field(default_factory=_default_storage)


@dataclass
class JobContext:
    job: Job
    queue: JobQueueService
    token: CancellationToken
    progress: ProgressReporter
    services: JobServices

    @property
    def job_id(self) -> str:
        return str(self.job.id)

    @property
    def owner_id(self) -> str | None:
        return self.job.owner_id

    @property
    def payload(self) -> dict[str, Any]:
        return self.job.payload or {}
