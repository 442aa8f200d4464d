"""
Terrain and rainfall context from Open-Meteo.

Elevation comes from the elevation API (90 m DEM). Slope is estimated from
the centre point and four neighbours one DEM cell away. Rainfall sums cover
the last 30 and 90 days of daily precipitation.
"""

import logging
import math
from typing import Optional

import numpy as np
import requests

from config import config
from soil_models import Terrain, WeatherSummary
from utils import safe_float

logger = logging.getLogger("soil-weather")

DEM_STEP_M = 90.0
METERS_PER_DEG_LAT = 111_320.0

# Upstream bodies with the wrong shape surface as one of these
PAYLOAD_ERRORS = (requests.RequestException, ValueError, TypeError, AttributeError)


class TerrainWeatherSource:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        elevation_url: str = config.OPEN_METEO_ELEVATION_URL,
        forecast_url: str = config.OPEN_METEO_FORECAST_URL,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ):
        self.session = session or requests.Session()
        self.elevation_url = elevation_url
        self.forecast_url = forecast_url
        self.timeout = timeout

    def fetch_terrain(self, lat: float, lon: float) -> Terrain:
        dlat = DEM_STEP_M / METERS_PER_DEG_LAT
        dlon = DEM_STEP_M / (METERS_PER_DEG_LAT * max(math.cos(math.radians(lat)), 0.01))
        # centre, north, south, east, west
        lats = [lat, lat + dlat, lat - dlat, lat, lat]
        lons = [lon, lon, lon, lon + dlon, lon - dlon]
        try:
            resp = self.session.get(
                self.elevation_url,
                params={
                    "latitude": ",".join(f"{v:.6f}" for v in lats),
                    "longitude": ",".join(f"{v:.6f}" for v in lons),
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            values = [safe_float(v) for v in (resp.json() or {}).get("elevation") or []]
        except PAYLOAD_ERRORS as e:
            logger.warning(f"⚠️ Elevation fetch failed at ({lat},{lon}): {e}")
            return Terrain()

        if not values or values[0] is None:
            return Terrain()

        slope = None
        if len(values) == 5 and all(v is not None for v in values):
            _, north, south, east, west = values
            dz_dy = (north - south) / (2 * DEM_STEP_M)
            dz_dx = (east - west) / (2 * DEM_STEP_M)
            slope = round(math.degrees(math.atan(math.hypot(dz_dx, dz_dy))), 2)

        return Terrain(elevation=round(values[0], 1), slope=slope)

    def fetch_weather(self, lat: float, lon: float) -> WeatherSummary:
        try:
            resp = self.session.get(
                self.forecast_url,
                params={
                    "latitude": lat,
                    "longitude": lon,
                    "daily": "precipitation_sum",
                    "past_days": 92,
                    "forecast_days": 1,
                    "timezone": "auto",
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            daily = (resp.json() or {}).get("daily") or {}
            precip = [safe_float(v) for v in daily.get("precipitation_sum") or []]
        except PAYLOAD_ERRORS as e:
            logger.warning(f"⚠️ Rainfall fetch failed at ({lat},{lon}): {e}")
            return WeatherSummary()

        # drop today's forecast day
        history = np.array([v if v is not None else np.nan for v in precip[:-1]], dtype=float)
        if history.size == 0 or np.all(np.isnan(history)):
            return WeatherSummary()

        return WeatherSummary(
            rainfall_30d=round(float(np.nansum(history[-30:])), 1),
            rainfall_90d=round(float(np.nansum(history[-90:])), 1),
        )
