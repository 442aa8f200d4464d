"""
Nutrient estimation: feature assembly, model call with heuristic fallback,
confidence scoring and recommendation text.
"""

import logging
import math
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from config import config
from soil_models import (
    NUTRIENT_CODES,
    ConfidenceReport,
    FeatureVector,
    IndexSummary,
    NutrientEstimate,
    SoilBaseline,
    Terrain,
    WeatherSummary,
    normalize_nutrient_code,
)
from utils import safe_float

logger = logging.getLogger("soil-nutrients")

UNITS = {
    "N": "kg/ha",
    "P": "kg/ha",
    "K": "kg/ha",
    "B": "mg/kg",
    "Zn": "mg/kg",
    "Fe": "mg/kg",
    "Mn": "mg/kg",
    "Cu": "mg/kg",
    "S": "mg/kg",
    "OC": "%",
    "pH": "pH",
    "EC": "dS/m",
}

# optimal / max levels per nutrient
STATUS_THRESHOLDS = {
    "N": (280, 400),
    "P": (15, 30),
    "K": (250, 400),
    "Zn": (1, 2),
    "S": (10, 20),
    "Fe": (5, 10),
    "Cu": (1, 3),
    "B": (0.5, 1.5),
    "Mn": (3, 8),
}

MISSING_CONFIDENCE = 0.4
LAB_CONFIRMATION_THRESHOLD = 0.6


# ======================
# Feature assembly
# ======================
def assemble_features(
    baseline: Optional[SoilBaseline],
    indices: Optional[IndexSummary],
    terrain: Optional[Terrain] = None,
    weather: Optional[WeatherSummary] = None,
    area_ha: Optional[float] = None,
    crop_type: Optional[str] = None,
) -> FeatureVector:
    baseline = baseline or SoilBaseline()
    indices = indices or IndexSummary.empty()
    terrain = terrain or Terrain()
    weather = weather or WeatherSummary()
    return FeatureVector(
        ph_0_30=baseline.ph.value,
        soc_0_30=baseline.organic_carbon.value,
        clay=baseline.clay_pct,
        silt=baseline.silt_pct,
        sand=baseline.sand_pct,
        ndvi_mean_90d=indices.ndvi_mean,
        ndvi_std_90d=indices.ndvi_std,
        ndvi_trend_30d=indices.ndvi_trend_30d,
        ndre_mean_90d=indices.ndre_mean,
        bsi_mean_90d=indices.bare_soil_index_mean,
        valid_obs_count=indices.valid_observation_count or 0,
        cloud_pct=indices.cloud_coverage_pct,
        area_ha=area_ha,
        crop_type=crop_type,
        elevation=terrain.elevation,
        rainfall_30d=weather.rainfall_30d,
    )


# ======================
# Status
# ======================
def classify_nutrient_status(code: str, value: Optional[float]) -> Optional[str]:
    """Deficient / Good / Monitor / Excess against fixed thresholds; None where no thresholds exist."""
    thresholds = STATUS_THRESHOLDS.get(code)
    if thresholds is None:
        return None
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "Monitor"
    optimal, maximum = thresholds
    if value < optimal * 0.7:
        return "Deficient"
    if value > maximum:
        return "Excess"
    if value <= optimal * 1.3:
        return "Good"
    return "Monitor"


def _estimate(code: str, value: float, confidence: float, derived: bool = True) -> NutrientEstimate:
    # constant defaults are not derived from any feature and carry no status
    return NutrientEstimate(
        value=value,
        unit=UNITS[code],
        confidence=confidence,
        method="heuristic",
        status=classify_nutrient_status(code, value) if derived else None,
    )


# ======================
# Heuristics
# ======================
def run_heuristics(features: FeatureVector) -> Dict[str, NutrientEstimate]:
    """
    Conservative rule-based estimates for all 12 nutrients.
    Total and deterministic: every code gets a value, never above 0.75 confidence.
    """
    soc = features.soc_0_30 or 0.0
    ndvi = features.ndvi_mean_90d or 0.0
    ph = features.ph_0_30
    clay = features.clay

    out: Dict[str, NutrientEstimate] = {}

    # Nitrogen tracks organic matter and canopy vigour
    if soc < 0.6 and ndvi < 0.35:
        out["N"] = _estimate("N", 120.0, 0.45)
    else:
        out["N"] = _estimate("N", 200.0, 0.6)

    # Phosphorus locks up outside the near-neutral band
    if ph is not None and (ph < 5.5 or ph > 8.0):
        p_value = 10.0
    elif ph is not None and 6.0 <= ph <= 7.5 and soc > 1.5:
        p_value = 25.0
    else:
        p_value = 15.0
    out["P"] = _estimate("P", p_value, 0.4)

    # Potassium follows clay content
    if clay is not None and clay > 50:
        k_value = 250.0
    elif clay is not None and clay < 20:
        k_value = 120.0
    else:
        k_value = 180.0
    out["K"] = _estimate("K", k_value, 0.45)

    out["OC"] = _estimate("OC", soc if soc else 0.8, 0.7 if soc else 0.4)
    out["pH"] = _estimate("pH", ph if ph is not None else 6.5, 0.75 if ph is not None else 0.4)
    out["EC"] = _estimate("EC", 0.5, 0.5, derived=False)
    out["S"] = _estimate("S", 12.0, 0.45, derived=False)
    out["Fe"] = _estimate("Fe", 35.0, 0.6, derived=False)
    out["Zn"] = _estimate("Zn", 1.5, 0.5, derived=False)
    out["Cu"] = _estimate("Cu", 0.8, 0.5, derived=False)
    out["B"] = _estimate("B", 0.5, 0.45, derived=False)
    out["Mn"] = _estimate("Mn", 40.0, 0.6, derived=False)
    return {c: out[c] for c in NUTRIENT_CODES}


# ======================
# Model path
# ======================
def _normalize_method(raw: Any) -> str:
    tag = str(raw).strip().lower() if raw is not None else ""
    return "heuristic" if tag == "heuristic" else "model"


def parse_model_predictions(predictions: Dict[str, Any]) -> Dict[str, NutrientEstimate]:
    """Canonicalise codes and validate entries; unknown codes and malformed entries are dropped."""
    parsed: Dict[str, NutrientEstimate] = {}
    for raw_code, entry in predictions.items():
        code = normalize_nutrient_code(raw_code)
        if code is None:
            logger.warning(f"⚠️ Dropping unknown nutrient code from model: {raw_code}")
            continue
        if not isinstance(entry, dict):
            logger.warning(f"⚠️ Malformed model entry for {code}: {entry!r}")
            continue
        value = safe_float(entry.get("value"))
        if value is None:
            logger.warning(f"⚠️ Model entry for {code} has no usable value")
            continue
        std = safe_float(entry.get("standard_deviation", entry.get("standardDeviation")))
        try:
            parsed[code] = NutrientEstimate(
                value=value,
                unit=entry.get("unit") or UNITS[code],
                confidence=entry.get("confidence"),
                method=_normalize_method(entry.get("method")),
                standard_deviation=std,
                status=classify_nutrient_status(code, value),
            )
        except ValidationError as e:
            logger.warning(f"⚠️ Invalid model entry for {code}: {e}")
    return parsed


class PredictionEngine:
    """
    Calls the nutrient model service once (no retries) and falls back to
    heuristics on any failure. Always returns all 12 codes.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        url: str = config.ML_SERVICE_URL,
        timeout: float = config.MODEL_TIMEOUT_SECONDS,
    ):
        self.session = session or requests.Session()
        self.url = url
        self.timeout = timeout

    def predict(self, features: FeatureVector) -> Dict[str, NutrientEstimate]:
        fallback = run_heuristics(features)
        try:
            resp = self.session.post(self.url, json=features.to_payload(), timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except Exception as e:
            logger.warning(f"⚠️ Model call failed, using heuristics: {e}")
            return fallback

        predictions = data.get("predictions") if isinstance(data, dict) else None
        if not (isinstance(data, dict) and data.get("success") is True
                and isinstance(predictions, dict) and predictions):
            logger.warning("⚠️ Model returned an invalid or unsuccessful response, using heuristics")
            return fallback

        try:
            parsed = parse_model_predictions(predictions)
        except Exception as e:
            logger.warning(f"⚠️ Could not parse model predictions, using heuristics: {e}")
            return fallback

        missing = [c for c in NUTRIENT_CODES if c not in parsed]
        if missing:
            logger.info(f"Filling {len(missing)} nutrients from heuristics: {', '.join(missing)}")
        return {c: parsed.get(c) or fallback[c] for c in NUTRIENT_CODES}


# ======================
# Confidence & recommendation
# ======================
def confidence_label(score: Optional[float]) -> str:
    c = MISSING_CONFIDENCE if score is None else score
    if c >= 0.7:
        return "high"
    if c >= 0.5:
        return "medium"
    return "low"


def average_confidence(estimates: Dict[str, NutrientEstimate]) -> float:
    if not estimates:
        return 0.0
    scores = [
        e.confidence if e.confidence is not None else MISSING_CONFIDENCE
        for e in estimates.values()
    ]
    return sum(scores) / len(scores)


def score_confidence(estimates: Dict[str, NutrientEstimate]) -> ConfidenceReport:
    overall = average_confidence(estimates)
    return ConfidenceReport(
        overall=confidence_label(overall) if estimates else "low",
        overall_score=round(overall, 3),
        per_nutrient={code: confidence_label(e.confidence) for code, e in estimates.items()},
    )


def synthesize_recommendation(estimates: Dict[str, NutrientEstimate], overall_confidence: float) -> str:
    if overall_confidence < LAB_CONFIRMATION_THRESHOLD:
        text = "Provisional estimates — recommend laboratory confirmation."
    else:
        text = "Provisional recommendations based on model."

    npk = [estimates.get(c) for c in ("N", "P", "K")]
    if all(e is not None and e.value is not None for e in npk):
        n, p, k = (round(e.value) for e in npk)
        text += f" Estimated N:{n} kg/ha, P:{p} kg/ha, K:{k} kg/ha."
    return text
