from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from core.exceptions import ValidationError
from db.models import TripExclusion
from trip_detection.classification import classify_day, textual_home_match
from trip_detection.clustering import (
    UNKNOWN_CITY,
    find_mode_location,
    group_points_by_day,
    most_common,
    resolve_city_name,
)
from trip_detection.date_ranges import find_available_date_ranges
from trip_detection.engine import TripDetectionEngine, is_overnight
from trip_detection.models import (
    DayClassification,
    DetectionConfig,
    HomeReference,
    OvernightStay,
    TrackPoint,
)
from trip_detection.patterns import (
    assemble_trip_runs,
    build_trip_candidate,
    calculate_confidence,
    trip_title,
)

HOME_LAT, HOME_LON = 40.0, -100.0
AWAY_LAT, AWAY_LON = 45.0, -90.0
NIGHT_TIMES = ((20, 0), (20, 30), (21, 0), (22, 0), (23, 0))


def _home(**overrides) -> HomeReference:
    values = {
        "display_name": "12 Main St, Ashford",
        "lat": HOME_LAT,
        "lon": HOME_LON,
        "address": {"city": "Ashford"},
    }
    values.update(overrides)
    return HomeReference(**values)


def _night(
    day: date,
    city: str | None,
    lat: float,
    lon: float,
    *,
    count: int = len(NIGHT_TIMES),
) -> list[TrackPoint]:
    geocode = {"address": {"city": city}} if city else None
    return [
        TrackPoint(
            lat=lat + index * 0.0001,
            lon=lon,
            recorded_at=datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC),
            geocode=geocode,
        )
        for index, (hour, minute) in enumerate(NIGHT_TIMES[:count])
    ]


def _away_day(day: date, city: str = "Bexley", points: int = 5) -> DayClassification:
    stay = OvernightStay(
        date=day,
        lat=AWAY_LAT,
        lon=AWAY_LON,
        city_name=city,
        start=datetime(day.year, day.month, day.day, tzinfo=UTC),
        end=datetime(day.year, day.month, day.day, 23, 59, 59, tzinfo=UTC),
        data_point_count=points,
        confidence=calculate_confidence(points, 24),
    )
    return DayClassification(
        date=day,
        at_home=False,
        reason="city_mismatch",
        city_name=city,
        data_point_count=points,
        stay=stay,
    )


def _home_day(day: date) -> DayClassification:
    return DayClassification(
        date=day,
        at_home=True,
        reason="city_match",
        city_name="Ashford",
        data_point_count=5,
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_detection_config_defaults() -> None:
    config = DetectionConfig()
    assert config.min_trip_duration_hours == 12
    assert config.max_distance_from_home_km == 50
    assert config.min_data_points_per_day == 3
    assert (config.overnight_hours_start, config.overnight_hours_end) == (20, 8)
    assert config.min_overnight_hours == 6
    assert config.clustering_radius_meters == 1000
    assert config.min_confidence_score == 0.7
    assert config.max_gap_days == 3


def test_detection_config_build_validates() -> None:
    with pytest.raises(ValidationError):
        DetectionConfig.build(overnight_hours_start=30)
    assert DetectionConfig.build(min_confidence_score=None).min_confidence_score == 0.7


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(19, False), (20, True), (23, True), (0, True), (7, True), (8, False), (12, False)],
)
def test_overnight_window_wraps_midnight(hour: int, expected: bool) -> None:
    recorded_at = datetime(2024, 3, 1, hour, 15, tzinfo=UTC)
    assert is_overnight(recorded_at, DetectionConfig()) is expected


def test_overnight_window_without_wrap() -> None:
    config = DetectionConfig(overnight_hours_start=1, overnight_hours_end=5)
    assert is_overnight(datetime(2024, 3, 1, 1, tzinfo=UTC), config)
    assert not is_overnight(datetime(2024, 3, 1, 5, tzinfo=UTC), config)


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------


def test_group_points_by_day_sorts_dates() -> None:
    points = _night(date(2024, 3, 2), "Ashford", HOME_LAT, HOME_LON, count=2)
    points += _night(date(2024, 3, 1), "Ashford", HOME_LAT, HOME_LON, count=1)

    groups = group_points_by_day(points)

    assert list(groups) == [date(2024, 3, 1), date(2024, 3, 2)]
    assert len(groups[date(2024, 3, 2)]) == 2


def test_find_mode_location_prefers_densest_cluster() -> None:
    day = datetime(2024, 3, 1, 21, tzinfo=UTC)
    outlier = TrackPoint(lat=41.0, lon=-100.0, recorded_at=day)
    cluster = [
        TrackPoint(lat=40.0, lon=-100.0, recorded_at=day + timedelta(minutes=10)),
        TrackPoint(lat=40.001, lon=-100.0, recorded_at=day + timedelta(minutes=20)),
        TrackPoint(lat=40.002, lon=-100.0, recorded_at=day + timedelta(minutes=30)),
    ]

    point, count = find_mode_location([outlier, *cluster], radius_meters=1000)

    assert point in cluster
    assert count == 3


def test_find_mode_location_empty() -> None:
    assert find_mode_location([], radius_meters=1000) is None


def test_most_common_first_to_top_count_wins() -> None:
    assert most_common(["Bexley", "Ashford"]) == "Bexley"
    assert most_common(["Bexley", "Ashford", "Ashford", "Bexley"]) == "Ashford"
    assert most_common([]) is None


def test_resolve_city_name_falls_back_to_unknown() -> None:
    points = _night(date(2024, 3, 1), None, AWAY_LAT, AWAY_LON)
    assert resolve_city_name(points) == UNKNOWN_CITY

    town_points = [
        TrackPoint(
            lat=AWAY_LAT,
            lon=AWAY_LON,
            recorded_at=datetime(2024, 3, 1, 22, tzinfo=UTC),
            geocode={"address": {"town": "Little Bexley"}},
        ),
    ]
    assert resolve_city_name(town_points) == "Little Bexley"


# ---------------------------------------------------------------------------
# Home classification
# ---------------------------------------------------------------------------


def test_textual_match_is_bidirectional_substring() -> None:
    home = _home(address={"city": "Ashford"})
    assert textual_home_match("Ashford Town", home) is True
    assert textual_home_match("ashford", home) is True
    assert textual_home_match("Bexley", home) is False
    assert textual_home_match(UNKNOWN_CITY, home) is None
    assert textual_home_match("Ashford", _home(address={})) is None


def test_textual_match_overrides_distance() -> None:
    day = date(2024, 3, 1)
    # More than 1000 km from the stored coordinates, but the same city name
    points = _night(day, "Ashford", 52.0, 0.9)
    home = _home()
    assert home.distance_km(52.0, 0.9) > 1000

    result = classify_day(day, points, home, [], DetectionConfig())

    assert result.at_home is True
    assert result.reason == "city_match"
    assert result.stay is None


def test_city_mismatch_is_away_even_when_near() -> None:
    day = date(2024, 3, 1)
    points = _night(day, "Bexley", HOME_LAT, HOME_LON)

    result = classify_day(day, points, _home(), [], DetectionConfig())

    assert result.at_home is False
    assert result.reason == "city_mismatch"
    assert result.stay is not None
    assert result.stay.city_name == "Bexley"
    assert result.stay.confidence == pytest.approx(0.75)


def test_distance_fallback_without_place_names() -> None:
    day = date(2024, 3, 1)
    home = _home(address={})
    config = DetectionConfig()

    near = classify_day(day, _night(day, None, HOME_LAT + 0.02, HOME_LON), home, [], config)
    far = classify_day(day, _night(day, None, HOME_LAT + 1.0, HOME_LON), home, [], config)

    assert (near.at_home, near.reason) == (True, "within_home_radius")
    assert (far.at_home, far.reason) == (False, "outside_home_radius")
    assert far.city_name == UNKNOWN_CITY


def test_no_home_reference_means_away() -> None:
    day = date(2024, 3, 1)
    result = classify_day(day, _night(day, "Bexley", AWAY_LAT, AWAY_LON), None, [], DetectionConfig())

    assert result.at_home is False
    assert result.reason == "no_home_reference"


def test_exclusions_count_as_home() -> None:
    day = date(2024, 3, 1)
    exclusions = [TripExclusion(type="city", value="bexley")]

    result = classify_day(
        day,
        _night(day, "Bexley", AWAY_LAT, AWAY_LON),
        _home(),
        exclusions,
        DetectionConfig(),
    )

    assert result.at_home is True
    assert result.reason == "excluded"


def test_sparse_day_is_skipped() -> None:
    day = date(2024, 3, 1)
    points = _night(day, "Bexley", AWAY_LAT, AWAY_LON, count=2)
    assert classify_day(day, points, _home(), [], DetectionConfig()) is None


# ---------------------------------------------------------------------------
# Runs and candidates
# ---------------------------------------------------------------------------


def test_calculate_confidence() -> None:
    assert calculate_confidence(10, 24) == 1.0
    assert calculate_confidence(5, 24) == pytest.approx(0.75)
    assert calculate_confidence(3, 24) == pytest.approx(0.65)
    assert calculate_confidence(20, 4) == pytest.approx(0.75)


def test_trip_title() -> None:
    assert trip_title(["Bexley"]) == "Trip to Bexley"
    assert trip_title(["Bexley", "Crayford"]) == "Multi-city trip: Bexley → Crayford"
    assert trip_title(["Bexley", "Crayford", "Dartford"]) == (
        "Multi-city trip: Bexley → Crayford..."
    )


def test_two_day_gap_merges_into_one_run() -> None:
    start = date(2024, 3, 1)
    days = [
        _home_day(start),
        _away_day(date(2024, 3, 2)),
        _away_day(date(2024, 3, 4)),
        _home_day(date(2024, 3, 5)),
    ]

    runs = assemble_trip_runs(days, start, max_gap_days=3)

    assert [[stay.date for stay in run] for run in runs] == [
        [date(2024, 3, 2), date(2024, 3, 4)],
    ]


def test_four_day_gap_splits_runs() -> None:
    start = date(2024, 3, 1)
    days = [
        _home_day(start),
        _away_day(date(2024, 3, 2)),
        _away_day(date(2024, 3, 6)),
        _away_day(date(2024, 3, 7)),
    ]

    runs = assemble_trip_runs(days, start, max_gap_days=3)

    assert [[stay.date for stay in run] for run in runs] == [
        [date(2024, 3, 2)],
        [date(2024, 3, 6), date(2024, 3, 7)],
    ]


def test_home_day_closes_run() -> None:
    start = date(2024, 3, 1)
    days = [
        _away_day(date(2024, 3, 2)),
        _home_day(date(2024, 3, 3)),
        _away_day(date(2024, 3, 4)),
    ]

    runs = assemble_trip_runs(days, start, max_gap_days=3)

    assert len(runs) == 2


def test_run_needs_recent_home_boundary() -> None:
    start = date(2024, 3, 1)
    days = [_away_day(date(2024, 3, 6)), _away_day(date(2024, 3, 7))]

    assert assemble_trip_runs(days, start, max_gap_days=3) == []


def test_build_candidate_metadata() -> None:
    stays = [
        _away_day(date(2024, 3, 3), city="Crayford").stay,
        _away_day(date(2024, 3, 2), city="Bexley").stay,
    ]

    candidate = build_trip_candidate(stays, _home(), DetectionConfig())

    assert candidate.start_date == date(2024, 3, 2)
    assert candidate.end_date == date(2024, 3, 3)
    assert candidate.title == "Multi-city trip: Bexley → Crayford"
    assert candidate.city_name == "Bexley"
    assert candidate.overnight_stays == 2
    assert candidate.data_points == 10
    assert candidate.distance_from_home > 500
    assert candidate.metadata["visited_cities"] == ["Bexley", "Crayford"]
    assert candidate.metadata["is_sleep_based_trip"] is True
    assert [d["date"] for d in candidate.metadata["sleep_details"]] == [
        "2024-03-02",
        "2024-03-03",
    ]
    assert candidate.location == {"type": "Point", "coordinates": [AWAY_LON, AWAY_LAT]}


def test_build_candidate_applies_thresholds() -> None:
    short = [_away_day(date(2024, 3, 2)).stay]
    assert build_trip_candidate(short, _home(), DetectionConfig(min_trip_duration_hours=48)) is None

    weak = [_away_day(date(2024, 3, 2), points=3).stay]
    assert build_trip_candidate(weak, _home(), DetectionConfig()) is None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _fortnight(away_points: int = 5) -> list[TrackPoint]:
    points: list[TrackPoint] = []
    for offset in range(14):
        day = date(2024, 3, 1) + timedelta(days=offset)
        if 5 <= offset <= 8:
            points += _night(day, "Bexley", AWAY_LAT, AWAY_LON, count=away_points)
        else:
            points += _night(day, "Ashford", HOME_LAT, HOME_LON)
        # Daytime points are ignored
        points.append(
            TrackPoint(
                lat=AWAY_LAT,
                lon=AWAY_LON,
                recorded_at=datetime(day.year, day.month, day.day, 12, tzinfo=UTC),
                geocode={"address": {"city": "Bexley"}},
            ),
        )
    return points


def test_engine_detects_single_trip_in_fortnight() -> None:
    engine = TripDetectionEngine()

    candidates = engine.detect_from_points(_fortnight(), date(2024, 3, 1), _home())

    assert len(candidates) == 1
    trip = candidates[0]
    assert trip.start_date == date(2024, 3, 6)
    assert trip.end_date == date(2024, 3, 9)
    assert trip.city_name == "Bexley"
    assert trip.title == "Trip to Bexley"
    assert trip.overnight_stays == 4
    assert trip.confidence == pytest.approx(0.75)


def test_engine_drops_low_confidence_trips() -> None:
    engine = TripDetectionEngine()

    candidates = engine.detect_from_points(_fortnight(away_points=3), date(2024, 3, 1), _home())

    assert candidates == []


def test_engine_respects_exclusions() -> None:
    engine = TripDetectionEngine()
    exclusions = [TripExclusion(type="city", value="Bexley")]

    assert engine.detect_from_points(_fortnight(), date(2024, 3, 1), _home(), exclusions) == []


def test_engine_orders_by_confidence() -> None:
    points: list[TrackPoint] = []
    points += _night(date(2024, 3, 1), "Ashford", HOME_LAT, HOME_LON)
    points += _night(date(2024, 3, 2), "Bexley", AWAY_LAT, AWAY_LON, count=4)
    points += _night(date(2024, 3, 3), "Ashford", HOME_LAT, HOME_LON)
    points += _night(date(2024, 3, 4), "Crayford", AWAY_LAT, AWAY_LON + 2)
    engine = TripDetectionEngine(DetectionConfig(min_confidence_score=0.6))

    candidates = engine.detect_from_points(points, date(2024, 3, 1), _home())

    assert [c.city_name for c in candidates] == ["Crayford", "Bexley"]


# ---------------------------------------------------------------------------
# Date ranges
# ---------------------------------------------------------------------------


def test_find_available_date_ranges() -> None:
    excluded = {date(2024, 3, 3), date(2024, 3, 4), date(2024, 3, 8)}

    ranges = find_available_date_ranges(date(2024, 3, 1), date(2024, 3, 10), excluded)

    assert ranges == [
        (date(2024, 3, 1), date(2024, 3, 2)),
        (date(2024, 3, 5), date(2024, 3, 7)),
        (date(2024, 3, 9), date(2024, 3, 10)),
    ]


def test_find_available_date_ranges_fully_covered() -> None:
    excluded = {date(2024, 3, 1), date(2024, 3, 2)}
    assert find_available_date_ranges(date(2024, 3, 1), date(2024, 3, 2), excluded) == []
    assert find_available_date_ranges(date(2024, 3, 2), date(2024, 3, 1), set()) == []


def test_home_reference_from_stored_address() -> None:
    home = HomeReference.from_home_address(
        {
            "display_name": "12 Main St, Ashford",
            "coordinates": {"lat": HOME_LAT, "lng": HOME_LON},
            "address": {"town": "Ashford", "village": "Nether Ashford"},
        },
    )

    assert home.has_coordinates
    assert (home.lat, home.lon) == (HOME_LAT, HOME_LON)
    assert home.place_name() == "Ashford"
    assert HomeReference.from_home_address(None) is None

    no_coords = HomeReference.from_home_address({"display_name": "Somewhere"})
    assert not no_coords.has_coordinates
    assert no_coords.distance_km(0, 0) is None
