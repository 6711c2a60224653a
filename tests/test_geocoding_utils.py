import pytest

from core.geocoding import (
    build_error_geocode,
    classify_error_message,
    extract_place_name,
    is_retryable_error,
    needs_geocoding,
)


@pytest.mark.parametrize(
    ("geocode", "expected"),
    [
        (None, True),
        ({}, True),
        ({"address": {"city": "Waco"}}, False),
        ({"error": True, "retryable": True, "error_message": "anything"}, True),
        ({"error": True, "permanent": True, "error_message": "timeout"}, False),
        ({"error": True, "error_message": "Request timeout after 30s"}, True),
        ({"error": True, "error_message": "No results found"}, False),
        ({"error": True, "error_message": "something odd"}, False),
    ],
)
def test_needs_geocoding(geocode, expected) -> None:
    assert needs_geocoding(geocode) is expected


def test_retryable_patterns_win_over_permanent_ones() -> None:
    assert classify_error_message("Connection reset; unable to geocode")
    assert not classify_error_message("Invalid coordinates")
    assert not is_retryable_error({"address": {}})


def test_build_error_geocode_flags() -> None:
    transient = build_error_geocode("Service Unavailable")
    permanent = build_error_geocode("No results found")
    forced = build_error_geocode("No results found", retryable=True)

    assert transient["error"] is True
    assert transient["retryable"] is True
    assert "permanent" not in transient
    assert permanent["permanent"] is True
    assert "retryable" not in permanent
    assert forced["retryable"] is True
    assert "failed_at" in permanent


@pytest.mark.parametrize(
    ("geocode", "expected"),
    [
        ({"address": {"town": "Crayford", "suburb": "Slade Green"}}, "Crayford"),
        ({"address": {"village": "Hever", "municipality": "Sevenoaks"}}, "Hever"),
        ({"city": "Waco"}, "Waco"),
        ({"name": "Lighthouse", "address": "not a dict"}, "Lighthouse"),
        ({"error": True, "city": "Waco"}, None),
        ({}, None),
        ("Waco", None),
    ],
)
def test_extract_place_name(geocode, expected) -> None:
    assert extract_place_name(geocode) == expected
