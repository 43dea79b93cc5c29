"""Coordinates, distances and pluggable geocoding for location strings."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from geopy.distance import great_circle
from geopy.exc import GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable
from geopy.geocoders import Nominatim

from .config import settings

logger = logging.getLogger(__name__)

_EMBEDDED_COORDS = re.compile(r"\((-?\d+\.\d+),(-?\d+\.\d+)\)$")


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in kilometres."""
    return great_circle((a.latitude, a.longitude), (b.latitude, b.longitude)).km


def parse_embedded_coordinates(location: str | None) -> Coordinates | None:
    """Read a trailing ``(lat,lng)`` suffix such as ``"Cluj (46.77,23.59)"``."""
    if not location:
        return None
    match = _EMBEDDED_COORDS.search(location.strip())
    if not match:
        return None
    return Coordinates(latitude=float(match.group(1)), longitude=float(match.group(2)))


class Geocoder(Protocol):
    def geocode(self, location: str | None) -> Coordinates | None: ...


class EmbeddedCoordinateGeocoder:
    def geocode(self, location: str | None) -> Coordinates | None:
        return parse_embedded_coordinates(location)


class NominatimGeocoder:
    """OpenStreetMap lookup with the embedded suffix as a fast path.

    Lookups are cached per process and never raise; a failed lookup is
    treated as "no coordinates".
    """

    def __init__(self, user_agent: str, timeout: int = 5):
        self.geolocator = Nominatim(user_agent=user_agent, timeout=timeout)
        self._lookup = lru_cache(maxsize=1024)(self._lookup_uncached)

    def geocode(self, location: str | None) -> Coordinates | None:
        embedded = parse_embedded_coordinates(location)
        if embedded or not location or not location.strip():
            return embedded
        return self._lookup(location.strip())

    def _lookup_uncached(self, address: str) -> Coordinates | None:
        try:
            found = self.geolocator.geocode(address)
        except (GeocoderTimedOut, GeocoderUnavailable, GeocoderServiceError) as exc:
            logger.warning("geocode_failed", extra={"address": address, "error": str(exc)})
            return None
        if found is None:
            return None
        return Coordinates(latitude=found.latitude, longitude=found.longitude)


_geocoder: Geocoder | None = None


def get_geocoder() -> Geocoder:
    global _geocoder
    if _geocoder is None:
        if settings.geocoder_backend == "nominatim":
            _geocoder = NominatimGeocoder(
                user_agent=settings.geocoder_user_agent,
                timeout=settings.geocoder_timeout_seconds,
            )
        else:
            _geocoder = EmbeddedCoordinateGeocoder()
    return _geocoder
