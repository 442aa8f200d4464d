"""
SoilGrids baseline source.

Queries the ISRIC SoilGrids REST point endpoint for pH, SOC and texture and
reduces the returned depth layers to one value per property. Two response
shapes are understood:

  layered (ISRIC v2):  properties.layers[].depths[].values.mean, scaled by
                       unit_measure.d_factor
  flat:                properties.<name>.values[{value, depth}], already in
                       conventional units

Failures never propagate; the caller gets a baseline with null fields.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import requests

from config import config
from soil_models import OrganicCarbonReading, PhReading, SoilBaseline
from utils import clamp, safe_float

logger = logging.getLogger("soil-soilgrids")

PROPERTIES = ["phh2o", "soc", "clay", "silt", "sand"]

# physical ranges after unit conversion
RANGES = {
    "phh2o": (3.5, 9.5),
    "soc": (0.0, 15.0),
    "clay": (0.0, 100.0),
    "silt": (0.0, 100.0),
    "sand": (0.0, 100.0),
}

_DEPTH_LABEL = re.compile(r"^\s*(\d+)\s*-\s*(\d+)")

# (top_cm, bottom_cm, value)
Layer = Tuple[Optional[int], Optional[int], float]


# ======================
# Unit conversion
# ======================
def to_conventional_units(raw: float, prop: str, d_factor: Optional[float]) -> float:
    """Apply d_factor; SOC then goes from g/kg to %."""
    factor = d_factor if d_factor else 1.0
    value = raw / factor
    if prop == "soc":
        value = value / 10.0
    return value


def parse_depth_label(label: Any) -> Tuple[Optional[int], Optional[int]]:
    """'0-5cm' -> (0, 5); a bare number is treated as the top depth."""
    if label is None:
        return None, None
    n = safe_float(label)
    if n is not None:
        return int(n), None
    m = _DEPTH_LABEL.match(str(label))
    if not m:
        return None, None
    return int(m.group(1)), int(m.group(2))


# ======================
# Response shapes
# ======================
def _layered_values(props: Dict[str, Any]) -> Dict[str, List[Layer]]:
    out: Dict[str, List[Layer]] = {}
    for layer in props.get("layers") or []:
        name = layer.get("name")
        if name not in PROPERTIES:
            continue
        d_factor = safe_float((layer.get("unit_measure") or {}).get("d_factor"))
        rows: List[Layer] = []
        for depth in layer.get("depths") or []:
            raw = safe_float((depth.get("values") or {}).get("mean"))
            if raw is None:
                continue
            rng = depth.get("range") or {}
            top = safe_float(rng.get("top_depth"))
            bottom = safe_float(rng.get("bottom_depth"))
            if top is None:
                top, bottom = parse_depth_label(depth.get("label"))
            rows.append((
                int(top) if top is not None else None,
                int(bottom) if bottom is not None else None,
                to_conventional_units(raw, name, d_factor),
            ))
        out[name] = rows
    return out


def _flat_values(props: Dict[str, Any]) -> Dict[str, List[Layer]]:
    out: Dict[str, List[Layer]] = {}
    for name in PROPERTIES:
        entry = props.get(name)
        if not isinstance(entry, dict):
            continue
        rows: List[Layer] = []
        for v in entry.get("values") or []:
            value = safe_float(v.get("value"))
            if value is None:
                continue
            top, bottom = parse_depth_label(v.get("depth"))
            rows.append((top, bottom, value))
        out[name] = rows
    return out


def extract_layers(payload: Dict[str, Any]) -> Dict[str, List[Layer]]:
    props = (payload or {}).get("properties") or {}
    if isinstance(props.get("layers"), list):
        return _layered_values(props)
    return _flat_values(props)


def reduce_layers(rows: List[Layer], depth_cm: Optional[int] = None) -> Tuple[Optional[float], Optional[int]]:
    """
    Flat mean across the depth layers (no depth weighting).
    With depth_cm only layers starting above that depth are used.
    Returns (mean, deepest bottom depth used).
    """
    if depth_cm is not None:
        rows = [r for r in rows if r[0] is None or r[0] < depth_cm]
    if not rows:
        return None, None
    values = [r[2] for r in rows]
    bottoms = [r[1] for r in rows if r[1] is not None]
    return sum(values) / len(values), (max(bottoms) if bottoms else None)


def parse_soilgrids_response(payload: Dict[str, Any], depth_cm: Optional[int] = None) -> SoilBaseline:
    layers = extract_layers(payload)
    reduced: Dict[str, Optional[float]] = {}
    ph_depth: Optional[int] = None
    for prop in PROPERTIES:
        mean, bottom = reduce_layers(layers.get(prop, []), depth_cm)
        lo, hi = RANGES[prop]
        reduced[prop] = clamp(mean, lo, hi, 2 if prop != "soc" else 3)
        if prop == "phh2o":
            ph_depth = bottom

    return SoilBaseline(
        ph=PhReading(value=reduced["phh2o"], depth_cm=ph_depth),
        organic_carbon=OrganicCarbonReading(value=reduced["soc"]),
        clay_pct=reduced["clay"],
        silt_pct=reduced["silt"],
        sand_pct=reduced["sand"],
    )


# ======================
# Source
# ======================
class SoilBaselineSource:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        url: str = config.SOILGRIDS_URL,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ):
        self.session = session or requests.Session()
        self.url = url
        self.timeout = timeout

    def fetch_baseline(self, lat: float, lon: float, depth_cm: Optional[int] = None) -> SoilBaseline:
        params = [("lon", lon), ("lat", lat)]
        params += [("property", p) for p in PROPERTIES]
        params.append(("value", "mean"))
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            baseline = parse_soilgrids_response(resp.json(), depth_cm)
        except (requests.RequestException, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"⚠️ SoilGrids fetch failed at ({lat},{lon}): {e}")
            return SoilBaseline()

        logger.info(
            f"🌱 SoilGrids ({lat:.4f},{lon:.4f}): pH={baseline.ph.value} "
            f"OC={baseline.organic_carbon.value} clay={baseline.clay_pct}"
        )
        return baseline
