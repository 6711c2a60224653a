"""Sleep-pattern trip detection."""

from trip_detection.date_ranges import find_available_date_ranges
from trip_detection.engine import TripDetectionEngine
from trip_detection.models import DetectionConfig, HomeReference, TripCandidate
from trip_detection.suggestions import (
    approve_suggestion,
    reject_suggestion,
    save_suggestions,
)

__all__ = [
    "DetectionConfig",
    "HomeReference",
    "TripCandidate",
    "TripDetectionEngine",
    "approve_suggestion",
    "find_available_date_ranges",
    "reject_suggestion",
    "save_suggestions",
]
