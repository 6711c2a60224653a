"""Shared numeric constants."""

from typing import Final

# HTTP client
HTTP_CONNECTION_LIMIT: Final[int] = 10
HTTP_TIMEOUT_CONNECT: Final[float] = 10.0
HTTP_TIMEOUT_SOCK_READ: Final[float] = 60.0
HTTP_TIMEOUT_TOTAL: Final[float] = 300.0

# Geometry
EARTH_RADIUS_M: Final[float] = 6371000.0
METERS_PER_MILE: Final[float] = 1609.344

# Batch processing
LOCATION_PAGE_SIZE: Final[int] = 1000
