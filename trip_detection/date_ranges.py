"""Which calendar ranges still need trip detection."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from date_utils import iter_days, parse_date
from db.models import LocationPoint, SuggestedTrip, SuggestedTripStatus, Trip


def find_available_date_ranges(
    start: date,
    end: date,
    excluded: Iterable[date],
) -> list[tuple[date, date]]:
    """Split ``start..end`` into maximal runs of dates not in ``excluded``."""
    blocked = set(excluded)
    ranges: list[tuple[date, date]] = []
    run_start: date | None = None
    previous: date | None = None
    for day in iter_days(start, end):
        if day in blocked:
            if run_start is not None and previous is not None:
                ranges.append((run_start, previous))
            run_start = None
        elif run_start is None:
            run_start = day
        previous = day
    if run_start is not None and previous is not None:
        ranges.append((run_start, previous))
    return ranges


def _covered_dates(records: Iterable[Trip | SuggestedTrip]) -> set[date]:
    covered: set[date] = set()
    for record in records:
        first = parse_date(record.start_date)
        last = parse_date(record.end_date)
        if first and last:
            covered.update(iter_days(first, last))
    return covered


async def load_excluded_dates(owner_id: str) -> set[date]:
    """Dates already covered by a trip (any status) or a pending suggestion."""
    trips = await Trip.find({"owner_id": owner_id}).to_list()
    pending = await SuggestedTrip.find(
        {"owner_id": owner_id, "status": SuggestedTripStatus.PENDING.value},
    ).to_list()
    return _covered_dates(trips) | _covered_dates(pending)


async def load_data_bounds(owner_id: str) -> tuple[date, date] | None:
    """UTC dates of the owner's earliest and latest points."""
    first = (
        await LocationPoint.find({"owner_id": owner_id})
        .sort("recorded_at")
        .first_or_none()
    )
    if first is None:
        return None
    last = (
        await LocationPoint.find({"owner_id": owner_id})
        .sort("-recorded_at")
        .first_or_none()
    )
    return first.recorded_at.date(), last.recorded_at.date()
