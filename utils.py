import math
import datetime
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter, Retry


USER_AGENT = "KisanShakti-SoilAssessment/1.0"


def create_http_session(total_retries: int = 3, backoff_factor: float = 1.0) -> requests.Session:
    """Session with retry logic for idempotent upstream reads"""
    session = requests.Session()
    retries = Retry(
        total=total_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def safe_float(v: Any, decimals: Optional[int] = None) -> Optional[float]:
    """Safely convert value to a finite float with optional rounding"""
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return round(f, decimals) if decimals is not None else f


def clamp(v: Optional[float], lo: float, hi: float, digits: int = 3) -> Optional[float]:
    """Clamp value to realistic range"""
    if v is None:
        return None
    return round(max(lo, min(hi, v)), digits)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()
