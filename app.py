# ============================================================
# 🌾 KisanShaktiAI - Soil Assessment API
# Version: v1.0.0
# ------------------------------------------------------------
# Notes:
# - GET  /soil                 point assessment (lat/lon or place text)
# - POST /soil/area            polygon assessment, answered inline
# - POST /soil/assess          area assessment job, 202 + jobId
# - GET  /soil/assess/{jobId}  job status / result
# - GET  /soil/profile         soil temperature / moisture by depth
# - Baseline from SoilGrids, indices from Sentinel-2, nutrients from the
#   model service with a heuristic fallback
# - Upstream degradation is absorbed; only input / not-found / geocoder
#   outages are surfaced as errors
# ============================================================

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assessment_worker import AssessmentJobManager, build_job_store
from config import config
from errors import SoilServiceError
from soil_models import (
    AreaRequest,
    AssessmentJob,
    AssessmentOptions,
    AssessmentRequest,
    AssessmentResult,
    JobSubmission,
    LocationQuery,
    SoilProfile,
)
from soil_pipeline import SoilAssessmentPipeline, build_default_pipeline
from utils import now_iso

# ======================
# Logging
# ======================
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger("soil-api")

# ======================
# Service wiring (built on first use)
# ======================
_pipeline: Optional[SoilAssessmentPipeline] = None
_job_manager: Optional[AssessmentJobManager] = None
_wiring_lock = threading.Lock()


def get_pipeline() -> SoilAssessmentPipeline:
    global _pipeline
    with _wiring_lock:
        if _pipeline is None:
            _pipeline = build_default_pipeline()
        return _pipeline


def get_job_manager(pipeline: SoilAssessmentPipeline = Depends(get_pipeline)) -> AssessmentJobManager:
    global _job_manager
    with _wiring_lock:
        if _job_manager is None:
            _job_manager = AssessmentJobManager(pipeline, build_job_store())
        return _job_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Soil Assessment API v{config.VERSION} starting (jobs: {config.ASSESSMENT_MODE}, store: {config.JOB_STORE})")
    yield
    logger.info("🛑 Soil Assessment API shutting down...")
    if _job_manager is not None:
        _job_manager.shutdown()
    if _pipeline is not None:
        _pipeline.shutdown()


app = FastAPI(
    title="KisanShakti Soil Assessment API",
    version=config.VERSION,
    description="Nutrient estimates for a point or field from soil, satellite and weather data",
    lifespan=lifespan,
)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


# ======================
# API endpoints
# ======================
@app.get("/", tags=["Health"])
def root():
    return {
        "service": "KisanShakti Soil Assessment API",
        "version": config.VERSION,
        "endpoints": ["/soil", "/soil/area", "/soil/assess", "/soil/assess/{jobId}", "/soil/profile", "/health"],
    }


@app.get("/health", tags=["Health"])
def health():
    return {
        "status": "ok",
        "version": config.VERSION,
        "assessment_mode": config.ASSESSMENT_MODE,
        "job_store": config.JOB_STORE,
        "timestamp": now_iso(),
    }


@app.get("/soil", response_model=AssessmentResult, tags=["Soil Analysis"])
def soil_for_point(
    lat: Optional[float] = Query(None, description="Latitude (WGS84)"),
    lon: Optional[float] = Query(None, description="Longitude (WGS84)"),
    village: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    crop_type: Optional[str] = Query(None, alias="cropType"),
    pipeline: SoilAssessmentPipeline = Depends(get_pipeline),
):
    """
    Point assessment. Place text takes precedence over coordinates when both
    are given.
    """
    query = LocationQuery(village=village, city=city, state=state, country=country, lat=lat, lon=lon)
    return pipeline.assess_location(query, crop_type=crop_type)


@app.get("/soil/profile", response_model=SoilProfile, tags=["Soil Analysis"])
def soil_profile_for_point(
    lat: Optional[float] = Query(None, description="Latitude (WGS84)"),
    lon: Optional[float] = Query(None, description="Longitude (WGS84)"),
    village: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    crop_type: Optional[str] = Query(None, alias="cropType", description="wheat or rice; defaults to rice"),
    pipeline: SoilAssessmentPipeline = Depends(get_pipeline),
):
    """Current soil temperature and moisture by depth, 7-day forecast and 30-day history."""
    query = LocationQuery(village=village, city=city, state=state, country=country, lat=lat, lon=lon)
    return pipeline.profile_location(query, crop_type=crop_type)


@app.post("/soil/area", response_model=AssessmentResult, tags=["Soil Analysis"])
def soil_for_area(req: AreaRequest, pipeline: SoilAssessmentPipeline = Depends(get_pipeline)):
    return pipeline.assess_area(req.polygon, AssessmentOptions(crop_type=req.crop_type))


@app.post("/soil/assess", response_model=JobSubmission, status_code=202, tags=["Assessment Jobs"])
def submit_assessment(req: AssessmentRequest, manager: AssessmentJobManager = Depends(get_job_manager)):
    job_id = manager.submit(req.area, req)
    job = manager.get(job_id)
    return JobSubmission(job_id=job_id, status=job.status)


@app.get("/soil/assess/{job_id}", response_model=AssessmentJob, tags=["Assessment Jobs"])
def get_assessment(job_id: str, manager: AssessmentJobManager = Depends(get_job_manager)):
    return manager.get(job_id)


# ======================
# Error handlers
# ======================
@app.exception_handler(SoilServiceError)
async def soil_error_handler(request: Request, exc: SoilServiceError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc),
        },
    )


# ======================
# Runner
# ======================
if __name__ == "__main__":
    logger.info(f"Starting Soil Assessment API v{config.VERSION} on port {config.PORT}")
    uvicorn.run("app:app", host="0.0.0.0", port=config.PORT, log_level=config.LOG_LEVEL.lower())
