"""
Soil assessment pipeline.

location -> (baseline | indices | terrain | weather, fetched concurrently)
         -> feature vector -> nutrient estimates -> confidence -> recommendation
"""

import datetime
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Tuple

import requests

from config import config
from errors import SoilProfileUnavailable
from geocoding import LocationResolver, validate_coordinates
from geometry import centroid_and_area
from ndvi_source import DateRange, VegetationIndexSource
from nutrient_engine import (
    PredictionEngine,
    assemble_features,
    average_confidence,
    score_confidence,
    synthesize_recommendation,
)
from soil_models import (
    AssessmentOptions,
    AssessmentResult,
    Centroid,
    LocationQuery,
    SoilProfile,
    Terrain,
    WeatherSummary,
)
from soil_profile import SoilProfileSource
from soilgrid_source import SoilBaselineSource
from utils import create_http_session, utc_now
from weather_source import TerrainWeatherSource

logger = logging.getLogger("soil-pipeline")


def resolve_date_range(options: AssessmentOptions, lookback_days: int = config.INDEX_LOOKBACK_DAYS) -> Optional[DateRange]:
    """Fill whichever end of the window the caller left open."""
    start, end = options.from_date, options.to_date
    if start is None and end is None:
        return None
    if end is None:
        end = utc_now()
    if start is None:
        start = end - datetime.timedelta(days=lookback_days)
    return start, end


class SoilAssessmentPipeline:
    def __init__(
        self,
        resolver: LocationResolver,
        baseline_source: SoilBaselineSource,
        index_source: VegetationIndexSource,
        prediction_engine: PredictionEngine,
        terrain_weather: Optional[TerrainWeatherSource] = None,
        profile_source: Optional[SoilProfileSource] = None,
        workers: int = config.SOURCE_WORKERS,
    ):
        self.resolver = resolver
        self.baseline_source = baseline_source
        self.index_source = index_source
        self.prediction_engine = prediction_engine
        self.terrain_weather = terrain_weather
        self.profile_source = profile_source
        self.executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="soil-source")

    # ---------- entry points ----------
    def assess_location(self, query: LocationQuery, crop_type: Optional[str] = None) -> AssessmentResult:
        location = self.resolver.resolve(query)
        return self.assess_point(
            location.latitude,
            location.longitude,
            crop_type=crop_type,
            location_name=location.display_name,
        )

    def assess_area(self, area: Dict[str, Any], options: Optional[AssessmentOptions] = None) -> AssessmentResult:
        options = options or AssessmentOptions()
        lon, lat, area_ha = centroid_and_area(area)
        logger.info(f"📐 Area centroid=({lon:.5f},{lat:.5f}) area={area_ha} ha")
        return self.assess_point(
            lat,
            lon,
            area_hectares=area_ha,
            geometry=area,
            crop_type=options.crop_type,
            depth_cm=options.requested_depth_cm,
            date_range=resolve_date_range(options),
        )

    def assess_point(
        self,
        lat: float,
        lon: float,
        area_hectares: float = 0.0,
        geometry: Optional[Dict[str, Any]] = None,
        crop_type: Optional[str] = None,
        depth_cm: Optional[int] = None,
        date_range: Optional[DateRange] = None,
        location_name: Optional[str] = None,
    ) -> AssessmentResult:
        point = validate_coordinates(lat, lon)
        lat, lon = point.latitude, point.longitude
        geometry = geometry or {"type": "Point", "coordinates": [lon, lat]}

        baseline_f = self.executor.submit(self.baseline_source.fetch_baseline, lat, lon, depth_cm)
        indices_f = self.executor.submit(self.index_source.fetch_indices, geometry, date_range)
        terrain, weather = self._fetch_context(lat, lon)

        baseline = baseline_f.result()
        indices = indices_f.result()

        features = assemble_features(
            baseline,
            indices,
            terrain,
            weather,
            area_ha=area_hectares,
            crop_type=crop_type,
        )
        estimates = self.prediction_engine.predict(features)
        report = score_confidence(estimates)
        recommendation = synthesize_recommendation(estimates, average_confidence(estimates))

        logger.info(
            f"✅ Assessment ({lat:.4f},{lon:.4f}) confidence={report.overall} "
            f"({report.overall_score}) methods={sorted({e.method for e in estimates.values()})}"
        )
        return AssessmentResult(
            centroid=Centroid(lon=lon, lat=lat),
            area_hectares=area_hectares,
            location=location_name,
            soil_baseline=baseline,
            index_summary=indices,
            terrain=terrain,
            weather=weather,
            nutrient_estimates=estimates,
            confidence_report=report,
            recommendation=recommendation,
            timestamp=utc_now(),
        )

    def profile_location(self, query: LocationQuery, crop_type: Optional[str] = None) -> SoilProfile:
        """Soil temperature and moisture by depth for a resolved place or point."""
        location = self.resolver.resolve(query)
        if self.profile_source is None:
            raise SoilProfileUnavailable("Soil profile source is not configured")
        return self.profile_source.fetch_profile(
            location.latitude,
            location.longitude,
            crop_type=crop_type,
            location_name=location.display_name,
        )

    def _fetch_context(self, lat: float, lon: float) -> Tuple[Optional[Terrain], Optional[WeatherSummary]]:
        if self.terrain_weather is None:
            return None, None
        terrain_f = self.executor.submit(self.terrain_weather.fetch_terrain, lat, lon)
        weather_f = self.executor.submit(self.terrain_weather.fetch_weather, lat, lon)
        return terrain_f.result(), weather_f.result()

    def shutdown(self):
        self.executor.shutdown(wait=True)


def build_default_pipeline() -> SoilAssessmentPipeline:
    """Pipeline wired to the configured upstream services."""
    http = create_http_session()
    return SoilAssessmentPipeline(
        resolver=LocationResolver(session=http),
        baseline_source=SoilBaselineSource(session=http),
        index_source=VegetationIndexSource(session=http),
        # model calls are single-attempt
        prediction_engine=PredictionEngine(session=requests.Session()),
        terrain_weather=TerrainWeatherSource(session=http) if config.FETCH_WEATHER else None,
        profile_source=SoilProfileSource(session=http),
    )
