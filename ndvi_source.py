"""
Vegetation Index Source
=======================
Summarises Sentinel-2 NDVI / NDRE / bare-soil index over an area for a time
window (default: the last INDEX_LOOKBACK_DAYS days).

Two upstream modes produce the same IndexSummary:
  - INDEX_SUMMARY_URL set: a pre-aggregated summary service is POSTed
    {geometry, timeRange} and returns the summary fields directly.
  - otherwise the Sentinel Hub Statistical API is queried per interval
    (INDEX_INTERVAL) and the interval statistics are reduced here.

Any failure yields IndexSummary.empty().
"""

import datetime
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import requests

from config import config
from geometry import as_area_geojson
from soil_models import IndexSummary
from utils import safe_float, utc_now

logger = logging.getLogger("soil-indices")

DateRange = Tuple[datetime.datetime, datetime.datetime]

EVALSCRIPT = """
//VERSION=3
function setup() {
  return {
    input: [{ bands: ["B02", "B04", "B05", "B08", "B11", "CLM", "dataMask"] }],
    output: [
      { id: "ndvi", bands: 1, sampleType: "FLOAT32" },
      { id: "ndre", bands: 1, sampleType: "FLOAT32" },
      { id: "bsi", bands: 1, sampleType: "FLOAT32" },
      { id: "dataMask", bands: 1 }
    ]
  };
}
function evaluatePixel(s) {
  var ndvi = (s.B08 - s.B04) / (s.B08 + s.B04);
  var ndre = (s.B08 - s.B05) / (s.B08 + s.B05);
  var bsi = ((s.B11 + s.B04) - (s.B08 + s.B02)) / ((s.B11 + s.B04) + (s.B08 + s.B02));
  return {
    ndvi: [ndvi],
    ndre: [ndre],
    bsi: [bsi],
    dataMask: [s.dataMask * (1 - s.CLM)]
  };
}
"""

# summary service keys -> IndexSummary field
_SUMMARY_KEYS = {
    "ndvi_mean": ["ndvi_mean", "ndviMean"],
    "ndvi_std": ["ndvi_std", "ndviStd"],
    "ndvi_trend_30d": ["ndvi_trend_30d", "ndviTrend30d"],
    "ndre_mean": ["ndre_mean", "ndreMean"],
    "bare_soil_index_mean": ["bsi_mean", "bare_soil_index_mean", "bsiMean", "bareSoilIndexMean"],
    "valid_observation_count": ["valid_obs_count", "valid_observation_count", "validObsCount", "validObservationCount"],
    "cloud_coverage_pct": ["cloud_coverage_pct", "cloud_pct", "cloudCoveragePct", "cloudPct"],
}


def default_date_range(lookback_days: int = config.INDEX_LOOKBACK_DAYS) -> DateRange:
    end = utc_now()
    return end - datetime.timedelta(days=lookback_days), end


def _iso(ts: datetime.datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_ts(value: Any) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


# ======================
# Interval reduction
# ======================
def parse_statistics(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten a Statistical API response into per-interval rows."""
    rows = []
    for entry in (payload or {}).get("data") or []:
        if entry.get("error"):
            continue
        outputs = entry.get("outputs") or {}

        def band_stats(output_id: str) -> Dict[str, Any]:
            bands = (outputs.get(output_id) or {}).get("bands") or {}
            first = next(iter(bands.values()), {}) if bands else {}
            return first.get("stats") or {}

        ndvi_stats = band_stats("ndvi")
        samples = safe_float(ndvi_stats.get("sampleCount"))
        no_data = safe_float(ndvi_stats.get("noDataCount")) or 0.0
        cloud_pct = None
        if samples:
            cloud_pct = 100.0 * no_data / samples

        rows.append({
            "date": _parse_ts((entry.get("interval") or {}).get("from")),
            "ndvi": safe_float(ndvi_stats.get("mean")),
            "ndre": safe_float(band_stats("ndre").get("mean")),
            "bsi": safe_float(band_stats("bsi").get("mean")),
            "cloud_pct": cloud_pct,
            "valid": bool(samples) and samples > no_data,
        })
    return rows


def _nanmean(values: List[Optional[float]]) -> Optional[float]:
    arr = np.array([v for v in values if v is not None], dtype=float)
    if arr.size == 0:
        return None
    return float(np.mean(arr))


def reduce_intervals(rows: List[Dict[str, Any]]) -> IndexSummary:
    """
    mean / temporal std of NDVI over valid intervals, least-squares NDVI
    slope scaled to 30 days, NDRE and BSI means, cloud cover mean.
    """
    valid = [r for r in rows if r.get("valid") and r.get("ndvi") is not None]
    cloud = _nanmean([r.get("cloud_pct") for r in rows])
    if not valid:
        return IndexSummary(
            cloud_coverage_pct=round(cloud, 2) if cloud is not None else None,
        )

    ndvi = np.array([r["ndvi"] for r in valid], dtype=float)
    ndvi_mean = float(np.mean(ndvi))
    ndvi_std = float(np.std(ndvi)) if ndvi.size > 1 else 0.0

    trend = None
    dated = [r for r in valid if r.get("date") is not None]
    if len(dated) >= 2:
        t0 = dated[0]["date"]
        days = np.array([(r["date"] - t0).total_seconds() / 86400.0 for r in dated])
        if np.ptp(days) > 0:
            slope = np.polyfit(days, np.array([r["ndvi"] for r in dated]), 1)[0]
            trend = float(slope) * 30.0

    ndre = _nanmean([r.get("ndre") for r in valid])
    bsi = _nanmean([r.get("bsi") for r in valid])

    return IndexSummary(
        ndvi_mean=round(ndvi_mean, 4),
        ndvi_std=round(ndvi_std, 4),
        ndvi_trend_30d=round(trend, 4) if trend is not None else None,
        ndre_mean=round(ndre, 4) if ndre is not None else None,
        bare_soil_index_mean=round(bsi, 4) if bsi is not None else None,
        valid_observation_count=len(valid),
        cloud_coverage_pct=round(cloud, 2) if cloud is not None else None,
    )


def summary_from_service(payload: Dict[str, Any]) -> IndexSummary:
    body = (payload or {}).get("summary", payload) or {}
    values: Dict[str, Any] = {}
    for field, keys in _SUMMARY_KEYS.items():
        for k in keys:
            if k in body:
                values[field] = body[k]
                break
    floats = {k: safe_float(v) for k, v in values.items() if k != "valid_observation_count"}
    count = safe_float(values.get("valid_observation_count"))
    return IndexSummary(**floats, valid_observation_count=int(count) if count else 0)


# ======================
# Source
# ======================
class VegetationIndexSource:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        stats_url: str = config.SENTINELHUB_STATS_URL,
        token_url: str = config.SENTINELHUB_TOKEN_URL,
        token: str = config.SENTINELHUB_TOKEN,
        client_id: str = config.SENTINELHUB_CLIENT_ID,
        client_secret: str = config.SENTINELHUB_CLIENT_SECRET,
        summary_url: str = config.INDEX_SUMMARY_URL,
        interval: str = config.INDEX_INTERVAL,
        buffer_m: float = config.POINT_BUFFER_M,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ):
        self.session = session or requests.Session()
        self.stats_url = stats_url
        self.token_url = token_url
        self.static_token = token
        self.client_id = client_id
        self.client_secret = client_secret
        self.summary_url = summary_url
        self.interval = interval
        self.buffer_m = buffer_m
        self.timeout = timeout
        self._token: Optional[str] = None
        self._token_expiry = 0.0
        self._lock = threading.Lock()

    def fetch_indices(self, geometry: Dict[str, Any], date_range: Optional[DateRange] = None) -> IndexSummary:
        start, end = date_range or default_date_range()
        try:
            area = as_area_geojson(geometry, self.buffer_m)
            if self.summary_url:
                summary = self._fetch_summary(area, start, end)
            else:
                summary = self._fetch_statistics(area, start, end)
        except Exception as e:
            logger.warning(f"⚠️ Vegetation index fetch failed: {e}")
            return IndexSummary.empty()

        logger.info(
            f"🛰️ Indices: ndvi={summary.ndvi_mean} ndre={summary.ndre_mean} "
            f"valid={summary.valid_observation_count} cloud={summary.cloud_coverage_pct}"
        )
        return summary

    # ---------- pre-aggregated summary ----------
    def _fetch_summary(self, area: Dict[str, Any], start, end) -> IndexSummary:
        resp = self.session.post(
            self.summary_url,
            json={"geometry": area, "timeRange": {"from": _iso(start), "to": _iso(end)}},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return summary_from_service(resp.json())

    # ---------- Sentinel Hub Statistical API ----------
    def _fetch_statistics(self, area: Dict[str, Any], start, end) -> IndexSummary:
        token = self._access_token()
        if not token:
            raise RuntimeError("Sentinel Hub credentials not configured")

        body = {
            "input": {
                "bounds": {
                    "geometry": area,
                    "properties": {"crs": "http://www.opengis.net/def/crs/EPSG/0/4326"},
                },
                "data": [{"type": "sentinel-2-l2a", "dataFilter": {"mosaickingOrder": "leastCC"}}],
            },
            "aggregation": {
                "timeRange": {"from": _iso(start), "to": _iso(end)},
                "aggregationInterval": {"of": self.interval},
                "evalscript": EVALSCRIPT,
                "resx": 0.0001,
                "resy": 0.0001,
            },
            "calculations": {"default": {}},
        }
        resp = self.session.post(
            self.stats_url,
            json=body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        rows = parse_statistics(resp.json())
        logger.debug(f"Statistical API returned {len(rows)} intervals")
        return reduce_intervals(rows)

    def _access_token(self) -> Optional[str]:
        if self.static_token:
            return self.static_token
        if not (self.client_id and self.client_secret):
            return None
        with self._lock:
            if self._token and time.time() < self._token_expiry:
                return self._token
            resp = self.session.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            self._token = data["access_token"]
            # refresh a minute early
            self._token_expiry = time.time() + float(data.get("expires_in", 3600)) - 60
            return self._token
