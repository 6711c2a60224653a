"""
Nominatim HTTP client.

Forward and reverse geocoding used by the bulk reverse-geocoding job and
by trip generation when a custom home address has to be resolved.
"""

from __future__ import annotations

import logging
from typing import Any

from aiolimiter import AsyncLimiter

from config import (
    get_nominatim_rate_limit,
    get_nominatim_reverse_url,
    get_nominatim_search_url,
    get_nominatim_user_agent,
)
from core.exceptions import ExternalServiceException
from core.http.circuit_breaker import nominatim_breaker, with_circuit_breaker
from core.http.request import request_json
from core.http.retry import retry_async
from core.http.session import get_session

logger = logging.getLogger(__name__)


def _build_limiter() -> AsyncLimiter:
    rate = get_nominatim_rate_limit()
    if rate >= 1:
        return AsyncLimiter(rate, 1)
    # Sub-1/s rates: one request per 1/rate seconds
    return AsyncLimiter(1, 1 / rate if rate > 0 else 1)


class NominatimClient:
    def __init__(self, *, limiter: AsyncLimiter | None = None) -> None:
        self._search_url = get_nominatim_search_url()
        self._reverse_url = get_nominatim_reverse_url()
        self._user_agent = get_nominatim_user_agent()
        self._limiter = limiter or _build_limiter()

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._user_agent}

    @with_circuit_breaker(nominatim_breaker)
    @retry_async()
    async def search(
        self,
        query: str,
        *,
        limit: int = 1,
        country_codes: str | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "q": query,
            "format": "jsonv2",
            "limit": limit,
            "addressdetails": 1,
        }
        if country_codes:
            params["countrycodes"] = country_codes

        session = await get_session()
        async with self._limiter:
            results = await request_json(
                "GET",
                self._search_url,
                session=session,
                params=params,
                headers=self._headers(),
                service_name="Nominatim search",
            )
        if not isinstance(results, list):
            msg = "Nominatim search error: unexpected response"
            raise ExternalServiceException(msg, {"url": self._search_url})

        normalized: list[dict[str, Any]] = []
        for result in results:
            try:
                lat = float(result["lat"])
                lon = float(result["lon"])
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping Nominatim result without coordinates")
                continue
            normalized.append(
                {
                    "display_name": result.get("display_name", ""),
                    "lat": lat,
                    "lon": lon,
                    "type": result.get("type"),
                    "class": result.get("category") or result.get("class"),
                    "name": result.get("name", ""),
                    "address": result.get("address") or {},
                    "importance": result.get("importance", 0),
                    "source": "nominatim",
                },
            )
        return normalized

    async def geocode_address(self, address: str) -> dict[str, Any] | None:
        """Forward-geocode a free-text address to its best match."""
        if not address or not address.strip():
            return None
        results = await self.search(address.strip(), limit=1)
        return results[0] if results else None

    @with_circuit_breaker(nominatim_breaker)
    @retry_async(max_retries=3, retry_delay=2.0)
    async def reverse(
        self,
        lat: float,
        lon: float,
        *,
        zoom: int = 18,
    ) -> dict[str, Any] | None:
        params = {
            "format": "jsonv2",
            "lat": lat,
            "lon": lon,
            "zoom": zoom,
            "addressdetails": 1,
        }
        session = await get_session()
        async with self._limiter:
            data = await request_json(
                "GET",
                self._reverse_url,
                session=session,
                params=params,
                headers=self._headers(),
                service_name="Nominatim reverse",
                none_on=(404,),
            )
        if data is None:
            return None
        if not isinstance(data, dict):
            msg = "Nominatim reverse error: unexpected response"
            raise ExternalServiceException(msg, {"url": self._reverse_url})
        if data.get("error"):
            # Nominatim reports "Unable to geocode" as a 200 with an error body
            return None
        return data
