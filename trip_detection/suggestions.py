"""Persisting suggestions and the approve/reject review workflow."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from beanie import PydanticObjectId
from bson.errors import InvalidId

from core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from db.models import SuggestedTrip, SuggestedTripStatus, Trip
from trip_detection.models import TripCandidate

logger = logging.getLogger(__name__)

_ACTIVE_SUGGESTION_STATUSES = [
    SuggestedTripStatus.PENDING.value,
    SuggestedTripStatus.APPROVED.value,
]


def _overlaps(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a in b or b in a


def is_duplicate(candidate: TripCandidate, existing: Sequence[SuggestedTrip]) -> bool:
    """Same dates plus the same title or an overlapping city name."""
    start = candidate.start_date.isoformat()
    end = candidate.end_date.isoformat()
    for suggestion in existing:
        if suggestion.start_date != start or suggestion.end_date != end:
            continue
        if suggestion.title == candidate.title:
            return True
        if suggestion.city_name and any(
            _overlaps(suggestion.city_name, city) for city in candidate.visited_cities
        ):
            return True
    return False


async def save_suggestions(
    owner_id: str,
    candidates: Sequence[TripCandidate],
) -> list[SuggestedTrip]:
    saved: list[SuggestedTrip] = []
    for candidate in candidates:
        existing = await SuggestedTrip.find(
            {
                "owner_id": owner_id,
                "start_date": candidate.start_date.isoformat(),
                "end_date": candidate.end_date.isoformat(),
                "status": {"$in": _ACTIVE_SUGGESTION_STATUSES},
            },
        ).to_list()
        if is_duplicate(candidate, existing):
            logger.info(
                "Skipping duplicate suggestion %s (%s - %s)",
                candidate.title,
                candidate.start_date,
                candidate.end_date,
            )
            continue
        document = candidate.to_document(owner_id)
        await document.insert()
        saved.append(document)
    return saved


async def _get_suggestion(suggestion_id: str | PydanticObjectId) -> SuggestedTrip:
    try:
        oid = PydanticObjectId(str(suggestion_id))
    except (InvalidId, TypeError) as exc:
        msg = f"Invalid suggestion id: {suggestion_id}"
        raise ValidationError(msg) from exc
    suggestion = await SuggestedTrip.get(oid)
    if suggestion is None:
        msg = f"Suggested trip {suggestion_id} not found"
        raise ResourceNotFoundError(msg, {"suggestion_id": str(suggestion_id)})
    return suggestion


async def approve_suggestion(suggestion_id: str | PydanticObjectId) -> Trip:
    suggestion = await _get_suggestion(suggestion_id)
    if suggestion.status not in (
        SuggestedTripStatus.PENDING,
        SuggestedTripStatus.APPROVED,
    ):
        msg = f"Suggestion is already {suggestion.status.value}"
        raise ConflictError(msg, {"suggestion_id": str(suggestion.id)})

    trip = Trip(
        owner_id=suggestion.owner_id,
        title=suggestion.title,
        description=suggestion.description,
        start_date=suggestion.start_date,
        end_date=suggestion.end_date,
        status="planned",
        labels=["auto-generated", "suggested"],
        metadata={
            **suggestion.metadata,
            "suggested_trip_id": str(suggestion.id),
            "confidence": suggestion.confidence,
            "distance_from_home": suggestion.distance_from_home,
        },
    )
    await trip.insert()

    suggestion.status = SuggestedTripStatus.CREATED
    suggestion.updated_at = datetime.now(UTC)
    await suggestion.save()
    logger.info("Suggestion %s approved as trip %s", suggestion.id, trip.id)
    return trip


async def reject_suggestion(suggestion_id: str | PydanticObjectId) -> Trip:
    """Reject and keep the date range as a rejected trip so it is not re-suggested."""
    suggestion = await _get_suggestion(suggestion_id)
    if suggestion.status != SuggestedTripStatus.PENDING:
        msg = f"Suggestion is already {suggestion.status.value}"
        raise ConflictError(msg, {"suggestion_id": str(suggestion.id)})

    trip = Trip(
        owner_id=suggestion.owner_id,
        title=f"Rejected: {suggestion.title}",
        description=(
            f"Date range rejected by user: {suggestion.start_date} "
            f"to {suggestion.end_date}"
        ),
        start_date=suggestion.start_date,
        end_date=suggestion.end_date,
        status="rejected",
        labels=["rejected-suggestion"],
        metadata={
            "original_suggested_trip_id": str(suggestion.id),
            "rejection_reason": "user_rejected",
            "original_confidence": suggestion.confidence,
            "original_city_name": suggestion.city_name,
        },
    )
    await trip.insert()

    suggestion.status = SuggestedTripStatus.REJECTED
    suggestion.updated_at = datetime.now(UTC)
    await suggestion.save()
    logger.info("Suggestion %s rejected", suggestion.id)
    return trip
