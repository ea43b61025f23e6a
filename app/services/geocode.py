"""
Reverse geocoding through the Google Maps Geocoding API.

Used at upload time to label an image with the locality and country it
was taken in.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import GeocodeError

logger = logging.getLogger(__name__)

ADMIN_LEVEL_PREFIX = "administrative_area_level_"

_async_http: httpx.AsyncClient | None = None


def get_async_http_client() -> httpx.AsyncClient:
    """Get or create the async HTTP client singleton."""
    global _async_http
    if _async_http is None:
        _async_http = httpx.AsyncClient(timeout=httpx.Timeout(settings.geocode_timeout_seconds))
    return _async_http


async def close_async_http_client() -> None:
    """Close the async HTTP client (for graceful shutdown)."""
    global _async_http
    if _async_http is not None:
        await _async_http.aclose()
        _async_http = None


@dataclass(frozen=True)
class Location:
    locality: str
    country: str


def _admin_level(component_type: str) -> int:
    """Level N of an ``administrative_area_level_N`` type, 0 for anything else."""
    if not component_type.startswith(ADMIN_LEVEL_PREFIX):
        return 0
    level = component_type[len(ADMIN_LEVEL_PREFIX) :]
    if len(level) != 1 or not level.isdigit():
        return 0
    return int(level)


def locality_and_country(results: list[dict[str, Any]]) -> Location:
    """
    Pick the locality and country out of geocoding results.

    The ``country`` component gives the country. The ``locality`` component
    gives the locality; when there is none, the deepest administrative area
    (levels 1-9) stands in for it, being the closest thing to a locality.

    Args:
        results: The ``results`` list of a Geocoding API response

    Returns:
        Location with both fields set

    Raises:
        GeocodeError: If the locality, the country or both are missing. The
            partial result is in ``details``.
    """
    locality, country = "", ""
    locality_found, country_found = False, False
    settled_admin_level = 0

    for result in results:
        for component in result.get("address_components", []):
            if locality_found and country_found:
                break

            types = component.get("types", [])
            name = component.get("long_name", "")

            if "country" in types:
                country = name
                country_found = True
                continue

            if "locality" in types:
                locality = name
                locality_found = True
                continue

            if not locality_found:
                for component_type in types:
                    level = _admin_level(component_type)
                    if 0 < level <= 9 and level > settled_admin_level:
                        locality = name
                        settled_admin_level = level

    details = {"locality": locality, "country": country}
    if not locality and not country:
        raise GeocodeError("Could not get locality or country from geocoding results", details)
    if not locality:
        raise GeocodeError(f"Found country ({country}) but no locality", details)
    if not country:
        raise GeocodeError(f"Found locality ({locality}) but no country", details)

    return Location(locality=locality, country=country)


class GeocodeClient:
    """
    Async client for the Google Maps reverse geocoding endpoint.

    Usage:
        client = GeocodeClient(api_key=settings.google_maps_api_key)
        location = await client.lookup(lat, lng)
    """

    def __init__(
        self,
        api_key: str,
        *,
        url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.url = url or settings.geocode_url
        self._http = http_client

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http or get_async_http_client()

    async def reverse_geocode(self, lat: float, lng: float) -> list[dict[str, Any]]:
        """
        Reverse geocode a coordinate pair.

        Returns:
            The ``results`` list of the response (empty for ZERO_RESULTS)

        Raises:
            GeocodeError: On transport failure or a non-OK API status
        """
        params = {"latlng": f"{lat},{lng}", "key": self.api_key}
        try:
            response = await self.http.get(self.url, params=params)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Geocoding request failed: {e}")
            raise GeocodeError(
                "Geocoding request failed", details={"error": type(e).__name__}
            ) from e
        except ValueError as e:
            raise GeocodeError("Geocoding response is not valid JSON") from e

        status = body.get("status", "")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise GeocodeError(
                "Geocoding API returned an error",
                details={"status": status, "error_message": body.get("error_message", "")},
            )
        return body.get("results", [])

    async def lookup(self, lat: float, lng: float) -> Location:
        """Reverse geocode and reduce the results to a Location."""
        results = await self.reverse_geocode(lat, lng)
        return locality_and_country(results)
