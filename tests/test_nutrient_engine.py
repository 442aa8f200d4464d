import pytest
import requests

from nutrient_engine import (
    PredictionEngine,
    assemble_features,
    average_confidence,
    classify_nutrient_status,
    confidence_label,
    run_heuristics,
    score_confidence,
    synthesize_recommendation,
)
from soil_models import (
    NUTRIENT_CODES,
    FeatureVector,
    IndexSummary,
    NutrientEstimate,
    OrganicCarbonReading,
    PhReading,
    SoilBaseline,
    normalize_nutrient_code,
)

from conftest import MODEL, FakeResponse, FakeSession


def engine(response):
    return PredictionEngine(session=FakeSession({MODEL: response}), url=MODEL)


# ---------- features ----------
def test_feature_vector_keeps_full_schema_with_nulls():
    payload = assemble_features(None, None).to_payload()
    assert list(payload) == [
        "pH_0_30", "soc_0_30", "clay", "silt", "sand",
        "ndvi_mean_90d", "ndvi_std_90d", "ndvi_trend_30d", "ndre_mean_90d", "bsi_mean_90d",
        "valid_obs_count", "cloud_pct", "area_ha", "cropType", "elevation", "rainfall_30d",
    ]
    assert payload["valid_obs_count"] == 0
    assert payload["pH_0_30"] is None


def test_feature_vector_maps_upstream_fields():
    baseline = SoilBaseline(ph=PhReading(value=6.8), organic_carbon=OrganicCarbonReading(value=0.9), clay_pct=30)
    indices = IndexSummary(ndvi_mean=0.4, bare_soil_index_mean=0.1, valid_observation_count=5)
    f = assemble_features(baseline, indices, area_ha=2.0, crop_type="wheat")
    assert (f.ph_0_30, f.soc_0_30, f.clay) == (6.8, 0.9, 30)
    assert (f.ndvi_mean_90d, f.bsi_mean_90d, f.valid_obs_count) == (0.4, 0.1, 5)
    assert f.to_payload()["cropType"] == "wheat"


# ---------- heuristics ----------
def test_heuristics_are_total_for_empty_features():
    out = run_heuristics(FeatureVector())
    assert set(out) == set(NUTRIENT_CODES)
    for est in out.values():
        assert est.value is not None
        assert est.unit
        assert est.method == "heuristic"
        assert est.confidence <= 0.75


def test_heuristics_nitrogen_branch():
    low = run_heuristics(FeatureVector(soc_0_30=0.4, ndvi_mean_90d=0.2))
    high = run_heuristics(FeatureVector(soc_0_30=1.2, ndvi_mean_90d=0.2))
    assert low["N"].value == 120
    assert high["N"].value == 200


def test_heuristics_echo_baseline():
    out = run_heuristics(FeatureVector(ph_0_30=6.8, soc_0_30=1.1))
    assert out["pH"].value == 6.8
    assert out["OC"].value == 1.1


@pytest.mark.parametrize("ph,soc,expected", [(5.0, 2.0, 10), (6.8, 2.0, 25), (6.8, 0.5, 15), (None, 2.0, 15)])
def test_heuristics_phosphorus(ph, soc, expected):
    assert run_heuristics(FeatureVector(ph_0_30=ph, soc_0_30=soc))["P"].value == expected


@pytest.mark.parametrize("clay,expected", [(60, 250), (10, 120), (35, 180), (None, 180)])
def test_heuristics_potassium(clay, expected):
    assert run_heuristics(FeatureVector(clay=clay))["K"].value == expected


def test_heuristics_deterministic():
    f = FeatureVector(ph_0_30=7.1, soc_0_30=0.5, clay=25)
    assert run_heuristics(f) == run_heuristics(f)


def test_heuristics_follow_canonical_code_order():
    assert list(run_heuristics(FeatureVector())) == NUTRIENT_CODES


def test_constant_defaults_carry_no_status():
    out = run_heuristics(FeatureVector(ph_0_30=6.8, soc_0_30=0.9, clay=30))
    for code in ("EC", "S", "Fe", "Zn", "Cu", "B", "Mn"):
        assert out[code].status is None
    # feature-driven rules keep their status
    assert out["N"].status == "Good"
    assert out["P"].status == "Good"
    assert out["K"].status == "Good"


# ---------- model path ----------
def test_model_predictions_are_normalised_and_completed():
    resp = FakeResponse({"success": True, "predictions": {
        "n": {"value": 310, "unit": "kg/ha", "confidence": 0.82, "method": "ml"},
        "ZN": {"value": 0.9, "confidence": 0.71},
        "PH": {"value": 7.2, "confidence": 1.4},
        "Unobtainium": {"value": 1},
        "K": {"value": None},
    }})
    out = engine(resp).predict(FeatureVector())
    heuristics = run_heuristics(FeatureVector())

    assert set(out) == set(NUTRIENT_CODES)
    assert out["N"].method == "model"
    assert out["N"].value == 310
    assert out["Zn"].unit == "mg/kg"
    assert out["pH"].confidence == 1.0
    assert out["K"] == heuristics["K"]
    assert out["Fe"] == heuristics["Fe"]
    assert list(out) == list(heuristics) == NUTRIENT_CODES


@pytest.mark.parametrize("response", [
    requests.Timeout("model timed out"),
    requests.ConnectionError("refused"),
    FakeResponse({"success": False, "predictions": {"N": {"value": 1}}}),
    FakeResponse({"success": True, "predictions": {}}),
    FakeResponse({"success": True}),
    FakeResponse(ValueError("not json")),
    FakeResponse({"success": True, "predictions": {"N": {"value": 1}}}, status_code=500),
    FakeResponse(["not", "a", "mapping"]),
])
def test_fallback_equals_heuristics(response):
    features = FeatureVector(ph_0_30=6.2, soc_0_30=0.7, clay=18)
    assert engine(response).predict(features) == run_heuristics(features)


def test_model_called_once_with_wire_keys():
    session = FakeSession({MODEL: requests.Timeout("slow")})
    PredictionEngine(session=session, url=MODEL, timeout=3).predict(FeatureVector(ph_0_30=6.5))
    assert len(session.calls) == 1
    _, _, kwargs = session.calls[0]
    assert kwargs["timeout"] == 3
    assert kwargs["json"]["pH_0_30"] == 6.5


# ---------- confidence ----------
@pytest.mark.parametrize("score,label", [(0.9, "high"), (0.7, "high"), (0.6, "medium"), (0.5, "medium"), (0.3, "low"), (None, "low")])
def test_confidence_label(score, label):
    assert confidence_label(score) == label


def test_missing_confidence_counts_as_point_four():
    estimates = {
        "N": NutrientEstimate(value=1, unit="kg/ha", confidence=None, method="model"),
        "P": NutrientEstimate(value=1, unit="kg/ha", confidence=0.8, method="model"),
    }
    assert average_confidence(estimates) == pytest.approx(0.6)
    report = score_confidence(estimates)
    assert report.per_nutrient == {"N": "low", "P": "high"}
    assert report.overall == "medium"


def test_nan_confidence_is_treated_as_missing():
    est = NutrientEstimate(value=1, unit="kg/ha", confidence=float("nan"), method="model")
    assert est.confidence is None


# ---------- recommendation ----------
def test_recommendation_low_confidence_mentions_lab():
    out = run_heuristics(FeatureVector())
    text = synthesize_recommendation(out, 0.45)
    assert "laboratory confirmation" in text
    assert "Estimated N:120 kg/ha, P:15 kg/ha, K:180 kg/ha." in text


def test_recommendation_high_confidence():
    text = synthesize_recommendation({}, 0.8)
    assert text == "Provisional recommendations based on model."


# ---------- status & codes ----------
@pytest.mark.parametrize("code,value,status", [
    ("N", 150, "Deficient"),
    ("N", 300, "Good"),
    ("N", 390, "Monitor"),
    ("N", 450, "Excess"),
    ("OC", 0.8, None),
    ("pH", 6.5, None),
])
def test_nutrient_status(code, value, status):
    assert classify_nutrient_status(code, value) == status


@pytest.mark.parametrize("raw,code", [("ZN", "Zn"), ("fe", "Fe"), ("PH", "pH"), ("nitrogen", "N"), ("soc", "OC"), ("xx", None)])
def test_normalize_nutrient_code(raw, code):
    assert normalize_nutrient_code(raw) == code
