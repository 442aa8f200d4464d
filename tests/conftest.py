import pytest
import requests

from geocoding import LocationResolver
from ndvi_source import VegetationIndexSource
from nutrient_engine import PredictionEngine
from soil_pipeline import SoilAssessmentPipeline
from soil_profile import SoilProfileSource
from soilgrid_source import SoilBaselineSource
from weather_source import TerrainWeatherSource


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """
    Minimal requests.Session stand-in. `routes` maps a URL prefix to a
    FakeResponse, an exception instance, or a callable(url, kwargs).
    """

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def _dispatch(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        for prefix, handler in self.routes.items():
            if url.startswith(prefix):
                if callable(handler) and not isinstance(handler, FakeResponse):
                    handler = handler(url, kwargs)
                if isinstance(handler, Exception):
                    raise handler
                return handler
        raise requests.ConnectionError(f"no route for {url}")

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, kwargs)


GEOCODER = "http://geo.test/search"
SOILGRIDS = "http://soil.test/query"
STATS = "http://sh.test/statistics"
MODEL = "http://model.test/predict"
ELEVATION = "http://meteo.test/elevation"
FORECAST = "http://meteo.test/forecast"
PROFILE = "http://meteo.test/soil-profile"


def layered_soilgrids(ph_raw=68, soc_raw=85, clay_raw=320, silt_raw=280, sand_raw=400):
    """ISRIC v2 style payload with two depth layers per property."""

    def layer(name, d_factor, raw):
        return {
            "name": name,
            "unit_measure": {"d_factor": d_factor},
            "depths": [
                {"label": "0-5cm", "range": {"top_depth": 0, "bottom_depth": 5}, "values": {"mean": raw}},
                {"label": "5-15cm", "range": {"top_depth": 5, "bottom_depth": 15}, "values": {"mean": raw}},
            ],
        }

    return {
        "type": "Feature",
        "properties": {
            "layers": [
                layer("phh2o", 10, ph_raw),
                layer("soc", 10, soc_raw),
                layer("clay", 10, clay_raw),
                layer("silt", 10, silt_raw),
                layer("sand", 10, sand_raw),
            ]
        },
    }


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_pipeline():
    """Pipeline over a single fake session; terrain/weather only when asked for."""

    def _build(routes, with_context=False):
        session = FakeSession(routes)
        terrain_weather = None
        if with_context:
            terrain_weather = TerrainWeatherSource(session=session, elevation_url=ELEVATION, forecast_url=FORECAST)
        pipeline = SoilAssessmentPipeline(
            resolver=LocationResolver(session=session, url=GEOCODER, cache_size=16),
            baseline_source=SoilBaselineSource(session=session, url=SOILGRIDS),
            index_source=VegetationIndexSource(
                session=session, stats_url=STATS, token="test-token", summary_url=""
            ),
            prediction_engine=PredictionEngine(session=session, url=MODEL),
            terrain_weather=terrain_weather,
            profile_source=SoilProfileSource(session=session, url=PROFILE),
            workers=2,
        )
        return pipeline, session

    return _build


# side lengths of a ~151.7 m square at latitude 12.9 (about 2.3 ha)
SIDE_LAT = 0.0013716
SIDE_LON = 0.0013977


def square(lon, lat, side_lon=SIDE_LON, side_lat=SIDE_LAT):
    w, e = lon - side_lon / 2, lon + side_lon / 2
    s, n = lat - side_lat / 2, lat + side_lat / 2
    return {"type": "Polygon", "coordinates": [[[w, s], [e, s], [e, n], [w, n], [w, s]]]}
