"""
Location Resolver
=================
Turns a free-text place (village / city / state / country, any subset) or raw
coordinates into a canonical (latitude, longitude, display name).

Text lookups go to the Open-Meteo geocoder with a tiered candidate list,
because compound administrative names often fail where a simpler subset
succeeds:
  1. "village, city, state, country" (blank parts omitted)
  2. the most specific part alone
  3. "most specific, least specific" (only when >= 2 parts)
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import requests

from config import config
from errors import GeocoderUnavailable, InvalidCoordinates, InvalidLocationQuery, LocationNotFound
from soil_models import LocationQuery, ResolvedLocation
from utils import safe_float

logger = logging.getLogger("soil-geocoding")


def build_candidates(parts: List[str]) -> List[str]:
    """Ordered, de-duplicated geocoder candidates, most specific first."""
    candidates: List[str] = []

    def _add(c: str):
        if c and c not in candidates:
            candidates.append(c)

    if not parts:
        return candidates
    _add(", ".join(parts))
    _add(parts[0])
    if len(parts) >= 2:
        _add(f"{parts[0]}, {parts[-1]}")
    return candidates


def format_display_name(result: Dict[str, Any]) -> str:
    parts = [result.get("name"), result.get("admin1"), result.get("country")]
    return ", ".join(str(p).strip() for p in parts if p and str(p).strip())


def validate_coordinates(lat: Any, lon: Any) -> ResolvedLocation:
    lat_f = safe_float(lat)
    lon_f = safe_float(lon)
    if lat_f is None or lon_f is None:
        raise InvalidCoordinates(
            "lat and lon must be finite numbers", {"lat": str(lat), "lon": str(lon)}
        )
    if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lon_f <= 180.0):
        raise InvalidCoordinates(
            "lat must be within [-90, 90] and lon within [-180, 180]", {"lat": lat_f, "lon": lon_f}
        )
    return ResolvedLocation(latitude=lat_f, longitude=lon_f, display_name=f"{lat_f}, {lon_f}")


class LocationResolver:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        url: str = config.GEOCODING_URL,
        language: str = config.GEOCODING_LANGUAGE,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        cache_size: int = config.GEOCODE_CACHE_SIZE,
    ):
        self.session = session or requests.Session()
        self.url = url
        self.language = language
        self.timeout = timeout
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, ResolvedLocation]" = OrderedDict()
        self._lock = threading.Lock()

    def resolve(self, query: LocationQuery) -> ResolvedLocation:
        parts = query.place_parts()
        if parts:
            return self._resolve_text(parts)
        if query.lat is not None or query.lon is not None:
            return validate_coordinates(query.lat, query.lon)
        raise InvalidLocationQuery("Provide either country/state/city/village or lat/lon")

    # ---------- text lookup ----------
    def _resolve_text(self, parts: List[str]) -> ResolvedLocation:
        raw_query = ", ".join(parts)
        cached = self._cache_get(raw_query)
        if cached is not None:
            logger.debug(f"Geocode cache hit: {raw_query}")
            return cached

        candidates = build_candidates(parts)
        failures = 0
        for name in candidates:
            try:
                results = self._lookup(name)
            except (requests.RequestException, ValueError) as e:
                failures += 1
                logger.warning(f"⚠️ Geocoder call failed for '{name}': {e}")
                continue

            location = self._first_valid(results)
            if location is not None:
                logger.info(f"📍 Resolved '{raw_query}' via candidate '{name}' -> {location.display_name}")
                self._cache_put(raw_query, location)
                return location
            logger.debug(f"No geocoder match for candidate '{name}'")

        if failures == len(candidates):
            raise GeocoderUnavailable(f"Geocoding service unavailable for: {raw_query}", {"query": raw_query})
        raise LocationNotFound(raw_query)

    def _lookup(self, name: str) -> List[Dict[str, Any]]:
        resp = self.session.get(
            self.url,
            params={"name": name, "count": 1, "language": self.language, "format": "json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json() or {}
        return data.get("results") or []

    @staticmethod
    def _first_valid(results: List[Dict[str, Any]]) -> Optional[ResolvedLocation]:
        for r in results:
            lat = safe_float(r.get("latitude"))
            lon = safe_float(r.get("longitude"))
            if lat is None or lon is None:
                continue
            display = format_display_name(r) or f"{lat}, {lon}"
            return ResolvedLocation(latitude=lat, longitude=lon, display_name=display)
        return None

    # ---------- cache ----------
    def _cache_get(self, key: str) -> Optional[ResolvedLocation]:
        if self.cache_size <= 0:
            return None
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None:
                self._cache.move_to_end(key)
            return hit

    def _cache_put(self, key: str, value: ResolvedLocation):
        if self.cache_size <= 0:
            return
        with self._lock:
            self._cache[key] = value
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
