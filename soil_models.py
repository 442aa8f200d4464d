"""
Data contracts for the soil assessment pipeline.

Upstream payloads are coerced into these models at the boundary so the rest
of the pipeline never handles loosely-typed dicts. Wire format is camelCase.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Nutrient codes
# =============================================================================
class NutrientCode(str, Enum):
    N = "N"
    P = "P"
    K = "K"
    B = "B"
    ZN = "Zn"
    FE = "Fe"
    MN = "Mn"
    CU = "Cu"
    S = "S"
    OC = "OC"
    PH = "pH"
    EC = "EC"


NUTRIENT_CODES: List[str] = [c.value for c in NutrientCode]
_CODE_LOOKUP = {c.value.upper(): c.value for c in NutrientCode}
_CODE_ALIASES = {
    "NITROGEN": "N",
    "PHOSPHORUS": "P",
    "POTASSIUM": "K",
    "BORON": "B",
    "ZINC": "Zn",
    "IRON": "Fe",
    "MANGANESE": "Mn",
    "COPPER": "Cu",
    "SULPHUR": "S",
    "SULFUR": "S",
    "ORGANIC_CARBON": "OC",
    "SOC": "OC",
}


def normalize_nutrient_code(raw: Any) -> Optional[str]:
    """Map any casing/naming variant ('ZN', 'fe', 'PH', 'nitrogen') to the canonical code."""
    if raw is None:
        return None
    key = str(raw).strip().upper().replace(" ", "_")
    if not key:
        return None
    return _CODE_LOOKUP.get(key) or _CODE_ALIASES.get(key)


# =============================================================================
# Location
# =============================================================================
class LocationQuery(CamelModel):
    village: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    def place_parts(self) -> List[str]:
        """Non-blank place parts, most specific first."""
        parts = [self.village, self.city, self.state, self.country]
        return [p.strip() for p in parts if p and p.strip()]

    def has_place_text(self) -> bool:
        return bool(self.place_parts())

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class ResolvedLocation(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    latitude: float
    longitude: float
    display_name: str


class Centroid(CamelModel):
    lon: float
    lat: float


# =============================================================================
# Upstream summaries
# =============================================================================
class PhReading(CamelModel):
    value: Optional[float] = None
    depth_cm: Optional[int] = None
    source: str = "SoilGrids"


class OrganicCarbonReading(CamelModel):
    value: Optional[float] = None
    unit: str = "%"
    source: str = "SoilGrids"


class SoilBaseline(CamelModel):
    ph: PhReading = Field(default_factory=PhReading, alias="pH")
    organic_carbon: OrganicCarbonReading = Field(default_factory=OrganicCarbonReading)
    clay_pct: Optional[float] = None
    silt_pct: Optional[float] = None
    sand_pct: Optional[float] = None


class IndexSummary(CamelModel):
    ndvi_mean: Optional[float] = None
    ndvi_std: Optional[float] = None
    ndvi_trend_30d: Optional[float] = Field(None, alias="ndviTrend30d")
    ndre_mean: Optional[float] = None
    bare_soil_index_mean: Optional[float] = None
    valid_observation_count: int = 0
    cloud_coverage_pct: Optional[float] = None

    @classmethod
    def empty(cls) -> "IndexSummary":
        return cls()

    @field_validator("valid_observation_count", mode="before")
    @classmethod
    def _count_default(cls, v):
        if v is None:
            return 0
        return max(0, int(v))


class Terrain(CamelModel):
    elevation: Optional[float] = None
    slope: Optional[float] = None


class WeatherSummary(CamelModel):
    rainfall_30d: Optional[float] = Field(None, alias="rainfall30d")
    rainfall_90d: Optional[float] = Field(None, alias="rainfall90d")


# =============================================================================
# Soil temperature / moisture profile
# =============================================================================
Level = Literal["low", "medium", "high"]


class DepthReading(CamelModel):
    depth_cm: int
    value: Optional[float] = None
    status: Optional[str] = None
    advisory: Optional[str] = None


class DailySeries(CamelModel):
    """Daily means per depth key (e.g. "0cm"), aligned with `dates`."""

    dates: List[str] = Field(default_factory=list)
    series: Dict[str, List[Optional[float]]] = Field(default_factory=dict)


class ProfileSeries(CamelModel):
    temperature: DailySeries = Field(default_factory=DailySeries)
    moisture: DailySeries = Field(default_factory=DailySeries)


class LevelBreakdown(CamelModel):
    low: int
    medium: int
    high: int
    current_level: Level


class SoilProfile(CamelModel):
    available: bool = False
    latitude: float
    longitude: float
    location: Optional[str] = None
    timezone: Optional[str] = None
    crop: str
    temperature_by_depth: List[DepthReading] = Field(default_factory=list)
    moisture_by_depth: List[DepthReading] = Field(default_factory=list)
    temperature_status: Optional[str] = None
    health_overview: Dict[str, LevelBreakdown] = Field(default_factory=dict)
    forecast_7d: ProfileSeries = Field(default_factory=ProfileSeries, alias="forecast7d")
    history_30d: ProfileSeries = Field(default_factory=ProfileSeries, alias="history30d")
    timestamp: datetime


# =============================================================================
# Feature vector (model contract, wire keys fixed)
# =============================================================================
class FeatureVector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ph_0_30: Optional[float] = Field(None, alias="pH_0_30")
    soc_0_30: Optional[float] = None
    clay: Optional[float] = None
    silt: Optional[float] = None
    sand: Optional[float] = None
    ndvi_mean_90d: Optional[float] = None
    ndvi_std_90d: Optional[float] = None
    ndvi_trend_30d: Optional[float] = None
    ndre_mean_90d: Optional[float] = None
    bsi_mean_90d: Optional[float] = None
    valid_obs_count: int = 0
    cloud_pct: Optional[float] = None
    area_ha: Optional[float] = None
    crop_type: Optional[str] = Field(None, alias="cropType")
    elevation: Optional[float] = None
    rainfall_30d: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        """Complete mapping in schema order; nulls are kept, never dropped."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Estimates & confidence
# =============================================================================
EstimateMethod = Literal["model", "heuristic"]
ConfidenceLabel = Literal["high", "medium", "low"]


class NutrientEstimate(CamelModel):
    value: Optional[float] = None
    unit: str
    confidence: Optional[float] = None
    method: EstimateMethod
    standard_deviation: Optional[float] = None
    status: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        if v is None:
            return None
        try:
            c = float(v)
        except (TypeError, ValueError):
            return None
        if math.isnan(c):
            return None
        return max(0.0, min(1.0, c))


class ConfidenceReport(CamelModel):
    overall: ConfidenceLabel
    overall_score: float
    per_nutrient: Dict[str, ConfidenceLabel]


# =============================================================================
# Assessment result & jobs
# =============================================================================
class AssessmentResult(CamelModel):
    centroid: Centroid
    area_hectares: float = 0.0
    location: Optional[str] = None
    soil_baseline: SoilBaseline
    index_summary: IndexSummary
    terrain: Optional[Terrain] = None
    weather: Optional[WeatherSummary] = None
    nutrient_estimates: Dict[str, NutrientEstimate]
    confidence_report: ConfidenceReport
    recommendation: str
    timestamp: datetime


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class AssessmentJob(CamelModel):
    id: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    result: Optional[AssessmentResult] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# =============================================================================
# API request / response bodies
# =============================================================================
class AssessmentOptions(CamelModel):
    requested_depth_cm: Optional[int] = Field(None, ge=1, le=200, description="Limit soil layers to this depth")
    crop_type: Optional[str] = Field(None, description="Crop tag passed to the model")
    from_date: Optional[datetime] = Field(None, description="Start of the vegetation index window")
    to_date: Optional[datetime] = Field(None, description="End of the vegetation index window")


class AssessmentRequest(AssessmentOptions):
    area: Dict[str, Any] = Field(..., description="GeoJSON Polygon, MultiPolygon, Point or Feature")


class AreaRequest(CamelModel):
    polygon: Dict[str, Any] = Field(..., description="GeoJSON Polygon or Feature")
    crop_type: Optional[str] = None


class JobSubmission(CamelModel):
    job_id: str
    status: JobStatus
