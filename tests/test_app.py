import pytest
import requests
from fastapi.testclient import TestClient

from app import app, get_job_manager, get_pipeline
from assessment_worker import AssessmentJobManager, InMemoryJobStore

from conftest import GEOCODER, MODEL, PROFILE, SOILGRIDS, STATS, FakeResponse, layered_soilgrids, square

PH_ONLY = {"properties": {"phh2o": {"values": [{"value": 6.8, "depth": "0-5cm"}]}}}

OFFLINE = {
    SOILGRIDS: FakeResponse(PH_ONLY),
    STATS: requests.ConnectionError("sentinel unreachable"),
    MODEL: requests.ConnectionError("model unreachable"),
}


@pytest.fixture
def client_for(make_pipeline):
    created = []

    def _build(routes):
        pipeline, session = make_pipeline(routes)
        manager = AssessmentJobManager(pipeline, InMemoryJobStore(), mode="sync")
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        app.dependency_overrides[get_job_manager] = lambda: manager
        created.append(pipeline)
        return TestClient(app), session

    yield _build
    app.dependency_overrides.clear()
    for pipeline in created:
        pipeline.shutdown()


def test_point_assessment_with_upstreams_down(client_for):
    client, _ = client_for(OFFLINE)

    resp = client.get("/soil", params={"lat": 18.52, "lon": 73.86})

    assert resp.status_code == 200
    body = resp.json()
    estimates = body["nutrientEstimates"]
    assert len(estimates) == 12
    assert all(e["method"] == "heuristic" for e in estimates.values())
    assert estimates["pH"]["value"] == 6.8
    assert body["soilBaseline"]["pH"]["value"] == 6.8
    assert body["indexSummary"]["validObservationCount"] == 0
    assert body["confidenceReport"]["overall"] != "high"
    assert body["confidenceReport"]["overallScore"] < 0.6
    assert "laboratory confirmation" in body["recommendation"]
    assert body["centroid"] == {"lon": 73.86, "lat": 18.52}


def test_point_assessment_uses_model_when_available(client_for):
    predictions = {code: {"value": 1.0, "confidence": 0.9, "method": "ml"} for code in ["N", "P", "K", "OC", "pH", "EC"]}
    routes = {
        SOILGRIDS: FakeResponse(layered_soilgrids()),
        STATS: requests.ConnectionError("down"),
        MODEL: FakeResponse({"success": True, "predictions": predictions}),
    }
    client, _ = client_for(routes)

    body = client.get("/soil", params={"lat": 18.52, "lon": 73.86, "cropType": "wheat"}).json()

    assert body["nutrientEstimates"]["N"]["method"] == "model"
    assert body["nutrientEstimates"]["Zn"]["method"] == "heuristic"
    assert body["confidenceReport"]["perNutrient"]["N"] == "high"


def test_place_text_is_geocoded(client_for):
    routes = dict(OFFLINE)
    routes[GEOCODER] = FakeResponse({"results": [
        {"name": "Pune", "admin1": "Maharashtra", "country": "India", "latitude": 18.52, "longitude": 73.86},
    ]})
    client, _ = client_for(routes)

    body = client.get("/soil", params={"city": "Pune", "country": "India"}).json()

    assert body["location"] == "Pune, Maharashtra, India"


def test_unknown_place_is_404(client_for):
    routes = dict(OFFLINE)
    routes[GEOCODER] = FakeResponse({"results": []})
    client, _ = client_for(routes)

    resp = client.get("/soil", params={"village": "Nowhere"})

    assert resp.status_code == 404
    assert resp.json()["error"] == "location_not_found"


def test_geocoder_outage_is_503(client_for):
    routes = dict(OFFLINE)
    routes[GEOCODER] = requests.ConnectionError("down")
    client, _ = client_for(routes)

    assert client.get("/soil", params={"city": "Pune"}).status_code == 503


@pytest.mark.parametrize("params", [{}, {"lat": 95, "lon": 10}, {"lat": 10}])
def test_bad_point_query_is_400(client_for, params):
    client, _ = client_for(OFFLINE)
    resp = client.get("/soil", params=params)
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_area_endpoint_reports_centroid_and_area(client_for):
    client, _ = client_for(OFFLINE)

    resp = client.post("/soil/area", json={"polygon": square(77.0, 12.9), "cropType": "rice"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["areaHectares"] == pytest.approx(2.3, rel=0.02)
    assert body["centroid"]["lon"] == pytest.approx(77.0)
    assert body["centroid"]["lat"] == pytest.approx(12.9)


def test_area_endpoint_rejects_bad_geometry(client_for):
    client, _ = client_for(OFFLINE)
    resp = client.post("/soil/area", json={"polygon": {"type": "Polygon", "coordinates": []}})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_geometry"


def test_area_endpoint_rejects_non_object_feature(client_for):
    client, _ = client_for(OFFLINE)
    resp = client.post("/soil/area", json={"polygon": {"type": "FeatureCollection", "features": ["oops"]}})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_geometry"


def test_assessment_job_lifecycle(client_for):
    client, _ = client_for(OFFLINE)

    resp = client.post("/soil/assess", json={"area": square(77.0, 12.9), "requestedDepthCm": 30})
    assert resp.status_code == 202
    job_id = resp.json()["jobId"]

    job = client.get(f"/soil/assess/{job_id}").json()
    assert job["status"] == "completed"
    assert job["result"]["areaHectares"] == pytest.approx(2.3, rel=0.02)
    assert len(job["result"]["nutrientEstimates"]) == 12


def test_assessment_job_with_bad_area_fails(client_for):
    client, _ = client_for(OFFLINE)
    job_id = client.post("/soil/assess", json={"area": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}}).json()["jobId"]

    job = client.get(f"/soil/assess/{job_id}").json()

    assert job["status"] == "failed"
    assert job["error"]


def test_unknown_job_is_404(client_for):
    client, _ = client_for(OFFLINE)
    resp = client.get("/soil/assess/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404
    assert resp.json()["error"] == "job_not_found"


def test_invalid_depth_is_422(client_for):
    client, _ = client_for(OFFLINE)
    resp = client.post("/soil/assess", json={"area": square(77.0, 12.9), "requestedDepthCm": 0})
    assert resp.status_code == 422


def test_health_and_unknown_route(client_for):
    client, _ = client_for(OFFLINE)
    assert client.get("/health").json()["status"] == "ok"
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.json()["success"] is False


def test_soil_profile_endpoint(client_for):
    routes = dict(OFFLINE)
    routes[PROFILE] = FakeResponse({
        "timezone": "GMT",
        "utc_offset_seconds": 0,
        "hourly": {
            "time": ["2020-01-01T00:00", "2020-01-01T01:00"],
            "soil_temperature_0cm": [19.0, 21.0],
            "soil_moisture_9_to_27cm": [0.25, 0.25],
        },
    })
    client, _ = client_for(routes)

    resp = client.get("/soil/profile", params={"lat": 18.52, "lon": 73.86, "cropType": "wheat"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["available"] is True
    assert body["crop"] == "wheat"
    assert body["temperatureByDepth"][0] == {
        "depthCm": 0, "value": 21.0, "status": "Optimal", "advisory": "Ideal for Wheat (Rabi) growth.",
    }
    assert body["moistureByDepth"][3]["value"] == 25.0
    assert body["forecast7d"]["temperature"]["series"]["0cm"] == [20.0]
    assert body["history30d"]["temperature"]["dates"] == []


def test_soil_profile_degrades_when_upstream_is_down(client_for):
    client, _ = client_for(OFFLINE)
    resp = client.get("/soil/profile", params={"lat": 18.52, "lon": 73.86})
    assert resp.status_code == 200
    assert resp.json()["available"] is False
    assert resp.json()["crop"] == "rice"


def test_soil_profile_needs_a_location(client_for):
    client, _ = client_for(OFFLINE)
    assert client.get("/soil/profile").status_code == 400


def test_day_suffixed_fields_keep_their_wire_names(client_for):
    client, _ = client_for(OFFLINE)
    body = client.get("/soil", params={"lat": 18.52, "lon": 73.86}).json()
    assert "ndviTrend30d" in body["indexSummary"]
