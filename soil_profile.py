"""
Soil temperature and moisture profile from Open-Meteo hourly data.

Temperature is read at 0/6/18/54 cm and volumetric moisture over the
0-1/1-3/3-9/9-27/27-81 cm layers (converted to %). The profile carries the
current reading per depth with a crop-aware status, daily means for the
coming days and the recent history, and a coarse health overview.
"""

import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import requests

from config import config
from soil_models import (
    DailySeries,
    DepthReading,
    LevelBreakdown,
    ProfileSeries,
    SoilProfile,
)
from utils import safe_float, utc_now
from weather_source import PAYLOAD_ERRORS

logger = logging.getLogger("soil-profile")

# (depth in cm, Open-Meteo hourly variable)
TEMPERATURE_LAYERS: List[Tuple[int, str]] = [
    (0, "soil_temperature_0cm"),
    (6, "soil_temperature_6cm"),
    (18, "soil_temperature_18cm"),
    (54, "soil_temperature_54cm"),
]
# moisture layers are reported at a representative depth inside the layer
MOISTURE_LAYERS: List[Tuple[int, str]] = [
    (0, "soil_moisture_0_to_1cm"),
    (2, "soil_moisture_1_to_3cm"),
    (6, "soil_moisture_3_to_9cm"),
    (18, "soil_moisture_9_to_27cm"),
    (48, "soil_moisture_27_to_81cm"),
]

# Soil temperature window per crop (°C)
CROP_RANGES: Dict[str, Tuple[float, float, str]] = {
    "wheat": (18.0, 22.0, "Wheat (Rabi)"),
    "rice": (25.0, 30.0, "Rice (Kharif)"),
}
TEMPERATURE_MARGIN = 3.0

# Volumetric moisture bands (%)
MOISTURE_CRITICAL_DRY = 10.0
MOISTURE_DRY = 20.0
MOISTURE_SATURATED = 50.0

_STATUS_SEVERITY = {"Critical": 0, "Monitor": 1, "Optimal": 2}

# Overview factors per nutrient relative to the moisture/temperature score
OVERVIEW_FACTORS = {"nitrogen": 1.0, "phosphorus": 0.9, "potassium": 1.1, "zinc": 0.8}


# ======================
# Classification
# ======================
def crop_key(crop_type: Optional[str]) -> str:
    key = (crop_type or "").strip().lower()
    if key in CROP_RANGES:
        return key
    return config.SOIL_PROFILE_DEFAULT_CROP if config.SOIL_PROFILE_DEFAULT_CROP in CROP_RANGES else "rice"


def classify_soil_temperature(temp: Optional[float], crop_type: Optional[str] = None) -> Tuple[str, str]:
    """(status, advisory) with status Optimal / Monitor / Critical."""
    t_min, t_max, name = CROP_RANGES[crop_key(crop_type)]
    if temp is None:
        return "Monitor", f"Temperature data unavailable for {name}."
    if t_min <= temp <= t_max:
        return "Optimal", f"Ideal for {name} growth."
    if t_max < temp <= t_max + TEMPERATURE_MARGIN:
        return "Monitor", "Borderline warm. Monitor irrigation."
    if t_min - TEMPERATURE_MARGIN <= temp < t_min:
        return "Monitor", "Borderline cool. Growth may slow."
    if temp > t_max:
        return "Critical", f"Too hot for {name}. Risk of root damage."
    return "Critical", f"Too cold for {name}. Risk of germination failure."


def classify_soil_moisture(moisture_pct: Optional[float]) -> Tuple[Optional[str], str]:
    """(status, advisory) with status Critical Dry / Dry / Optimal / Saturated; None without data."""
    if moisture_pct is None:
        return None, "Moisture data not available; monitor in-field sensors."
    if moisture_pct < MOISTURE_CRITICAL_DRY:
        return "Critical Dry", "Severe drought stress. Immediate irrigation required."
    if moisture_pct < MOISTURE_DRY:
        return "Dry", "Moisture low. Plan light irrigation."
    if moisture_pct > MOISTURE_SATURATED:
        return "Saturated", "Soil saturated. Check drainage, pause irrigation."
    return "Optimal", "Moisture levels are ideal."


def worst_temperature_status(temps: Sequence[Optional[float]], crop_type: Optional[str] = None) -> str:
    if not temps:
        return "Monitor"
    statuses = [classify_soil_temperature(t, crop_type)[0] for t in temps]
    return min(statuses, key=_STATUS_SEVERITY.__getitem__)


def health_overview(
    temperature: List[DepthReading], moisture: List[DepthReading]
) -> Dict[str, LevelBreakdown]:
    """
    Coarse low/medium/high split per nutrient from root-zone moisture and
    surface temperature. A display aid, not a nutrient estimate.
    """
    surface = next((r.value for r in temperature if r.depth_cm == 0), None)
    surface = 25.0 if surface is None else surface
    root = next((r.value for r in moisture if r.depth_cm == 18), None)
    if root is None:
        root = next((r.value for r in reversed(moisture) if r.value is not None), 60.0)

    moisture_score = min(100.0, max(0.0, root))
    temp_score = min(100.0, max(0.0, (30.0 - abs(surface - 25.0)) * 4))
    base = (moisture_score * 0.6 + temp_score * 0.4) / 100.0

    overview = {}
    for nutrient, factor in OVERVIEW_FACTORS.items():
        score = max(0.0, min(1.0, base * factor))
        if score < 0.33:
            level = "low"
        elif score < 0.66:
            level = "medium"
        else:
            level = "high"
        high = round(score * 40 + 20)
        medium = round(60 - high / 2)
        overview[nutrient] = LevelBreakdown(low=100 - high - medium, medium=medium, high=high, current_level=level)
    return overview


# ======================
# Series helpers
# ======================
def _as_array(values: Any, scale: float = 1.0) -> np.ndarray:
    out = []
    for v in values or []:
        f = safe_float(v)
        out.append(np.nan if f is None else f * scale)
    return np.array(out, dtype=float)


def _align(values: np.ndarray, size: int) -> np.ndarray:
    """Pad with NaN or truncate so the series lines up with the time axis."""
    out = np.full(size, np.nan)
    k = min(size, values.size)
    out[:k] = values[:k]
    return out


def daily_means(times: List[str], series: Dict[str, np.ndarray], dates: List[str]) -> DailySeries:
    """Mean of the hourly values per calendar day (local time), rounded to 2 places."""
    day_of = np.array([t[:10] for t in times])
    result: Dict[str, List[Optional[float]]] = {key: [] for key in series}
    for day in dates:
        mask = day_of == day
        for key, values in series.items():
            picked = values[mask]
            if picked.size == 0 or np.all(np.isnan(picked)):
                result[key].append(None)
            else:
                result[key].append(round(float(np.nanmean(picked)), 2))
    return DailySeries(dates=list(dates), series=result)


def current_index(times: List[str], utc_offset_seconds: int, now: Optional[datetime.datetime] = None) -> int:
    """Index of the latest hourly slot at or before `now` in the location's local time."""
    now = now or utc_now()
    local = now.astimezone(datetime.timezone.utc) + datetime.timedelta(seconds=utc_offset_seconds)
    stamp = local.strftime("%Y-%m-%dT%H:%M")
    idx = 0
    for i, t in enumerate(times):
        if t <= stamp:
            idx = i
        else:
            break
    return idx


# ======================
# Source
# ======================
class SoilProfileSource:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        url: str = config.OPEN_METEO_FORECAST_URL,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        forecast_days: int = config.SOIL_PROFILE_FORECAST_DAYS,
        history_days: int = config.SOIL_PROFILE_HISTORY_DAYS,
    ):
        self.session = session or requests.Session()
        self.url = url
        self.timeout = timeout
        self.forecast_days = forecast_days
        self.history_days = history_days

    def fetch_profile(
        self,
        lat: float,
        lon: float,
        crop_type: Optional[str] = None,
        location_name: Optional[str] = None,
        now: Optional[datetime.datetime] = None,
    ) -> SoilProfile:
        """Never raises on upstream trouble; an unavailable profile is returned instead."""
        crop = crop_key(crop_type)
        empty = SoilProfile(
            latitude=lat, longitude=lon, location=location_name, crop=crop, timestamp=utc_now()
        )
        variables = [v for _, v in TEMPERATURE_LAYERS] + [v for _, v in MOISTURE_LAYERS]
        try:
            resp = self.session.get(
                self.url,
                params={
                    "latitude": lat,
                    "longitude": lon,
                    "hourly": ",".join(variables),
                    "timezone": "auto",
                    "past_days": self.history_days,
                    "forecast_days": self.forecast_days,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json() or {}
            hourly = data.get("hourly") or {}
            times = [str(t) for t in hourly.get("time") or []]
            temperature = {depth: _as_array(hourly.get(var)) for depth, var in TEMPERATURE_LAYERS}
            moisture = {depth: _as_array(hourly.get(var), scale=100.0) for depth, var in MOISTURE_LAYERS}
            offset = int(data.get("utc_offset_seconds") or 0)
            timezone = data.get("timezone")
            timezone = timezone if isinstance(timezone, str) else None
        except PAYLOAD_ERRORS as e:
            logger.warning(f"⚠️ Soil profile fetch failed at ({lat},{lon}): {e}")
            return empty

        if not times:
            logger.warning(f"⚠️ Soil profile at ({lat},{lon}) has no hourly data")
            return empty

        temperature = {d: _align(v, len(times)) for d, v in temperature.items()}
        moisture = {d: _align(v, len(times)) for d, v in moisture.items()}
        idx = current_index(times, offset, now)

        def at(values: np.ndarray) -> Optional[float]:
            if np.isnan(values[idx]):
                return None
            return round(float(values[idx]), 2)

        temperature_now = []
        for depth, values in temperature.items():
            value = at(values)
            status, advisory = classify_soil_temperature(value, crop)
            temperature_now.append(DepthReading(depth_cm=depth, value=value, status=status, advisory=advisory))
        moisture_now = []
        for depth, values in moisture.items():
            value = at(values)
            status, advisory = classify_soil_moisture(value)
            moisture_now.append(DepthReading(depth_cm=depth, value=value, status=status, advisory=advisory))

        # calendar days in order; today opens the forecast
        days = list(dict.fromkeys(t[:10] for t in times))
        today = times[idx][:10]
        split = days.index(today)
        forecast_dates = days[split:split + self.forecast_days]
        history_dates = days[max(0, split - self.history_days):split]

        temp_keys = {f"{d}cm": v for d, v in temperature.items()}
        moist_keys = {f"{d}cm": v for d, v in moisture.items()}

        logger.info(f"🌡️ Soil profile ({lat:.4f},{lon:.4f}) crop={crop} days={len(days)} now={times[idx]}")
        return SoilProfile(
            available=True,
            latitude=lat,
            longitude=lon,
            location=location_name,
            timezone=timezone,
            crop=crop,
            temperature_by_depth=temperature_now,
            moisture_by_depth=moisture_now,
            temperature_status=worst_temperature_status([r.value for r in temperature_now], crop),
            health_overview=health_overview(temperature_now, moisture_now),
            forecast_7d=ProfileSeries(
                temperature=daily_means(times, temp_keys, forecast_dates),
                moisture=daily_means(times, moist_keys, forecast_dates),
            ),
            history_30d=ProfileSeries(
                temperature=daily_means(times, temp_keys, history_dates),
                moisture=daily_means(times, moist_keys, history_dates),
            ),
            timestamp=utc_now(),
        )
