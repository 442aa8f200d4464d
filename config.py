# ============================================================
# KisanShaktiAI - Soil Assessment API configuration
# All settings come from the environment; defaults target the
# public upstream services.
# ============================================================

import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    VERSION = "1.0.0"

    # Upstream services
    GEOCODING_URL = os.getenv("GEOCODING_URL", "https://geocoding-api.open-meteo.com/v1/search")
    GEOCODING_LANGUAGE = os.getenv("GEOCODING_LANGUAGE", "en")
    SOILGRIDS_URL = os.getenv("SOILGRIDS_URL", "https://rest.isric.org/soilgrids/v2.0/properties/query")
    SENTINELHUB_STATS_URL = os.getenv("SENTINELHUB_STATS_URL", "https://services.sentinel-hub.com/api/v1/statistics")
    SENTINELHUB_TOKEN_URL = os.getenv(
        "SENTINELHUB_TOKEN_URL",
        "https://services.sentinel-hub.com/auth/realms/main/protocol/openid-connect/token",
    )
    SENTINELHUB_TOKEN = os.getenv("SENTINELHUB_TOKEN", "")
    SENTINELHUB_CLIENT_ID = os.getenv("SENTINELHUB_CLIENT_ID", "")
    SENTINELHUB_CLIENT_SECRET = os.getenv("SENTINELHUB_CLIENT_SECRET", "")
    INDEX_SUMMARY_URL = os.getenv("INDEX_SUMMARY_URL", "")
    OPEN_METEO_FORECAST_URL = os.getenv("OPEN_METEO_FORECAST_URL", "https://api.open-meteo.com/v1/forecast")
    OPEN_METEO_ELEVATION_URL = os.getenv("OPEN_METEO_ELEVATION_URL", "https://api.open-meteo.com/v1/elevation")
    ML_SERVICE_URL = os.getenv("ML_SERVICE_URL", "http://localhost:8000/predict")

    # Timeouts (seconds)
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
    MODEL_TIMEOUT_SECONDS = float(os.getenv("MODEL_TIMEOUT_SECONDS", "10"))

    # Vegetation indices
    INDEX_LOOKBACK_DAYS = int(os.getenv("INDEX_LOOKBACK_DAYS", "90"))
    INDEX_INTERVAL = os.getenv("INDEX_INTERVAL", "P5D")
    POINT_BUFFER_M = float(os.getenv("POINT_BUFFER_M", "150"))

    # Geocoding cache (0 disables)
    GEOCODE_CACHE_SIZE = int(os.getenv("GEOCODE_CACHE_SIZE", "512"))

    # Concurrency
    SOURCE_WORKERS = int(os.getenv("SOURCE_WORKERS", "4"))
    ASSESSMENT_MODE = os.getenv("ASSESSMENT_MODE", "queue").strip().lower()  # queue | sync
    ASSESSMENT_WORKERS = int(os.getenv("ASSESSMENT_WORKERS", "4"))

    # Job store
    JOB_STORE = os.getenv("JOB_STORE", "memory").strip().lower()  # memory | supabase
    JOB_TABLE = os.getenv("JOB_TABLE", "soil_assessment_jobs")
    JOB_TTL_SECONDS = int(os.getenv("JOB_TTL_SECONDS", "0"))  # 0 = keep forever
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SERVICE_KEY", "")

    # Fetch terrain & weather for the feature vector
    FETCH_WEATHER = _env_bool("FETCH_WEATHER", "true")

    # Soil temperature / moisture profile
    SOIL_PROFILE_FORECAST_DAYS = int(os.getenv("SOIL_PROFILE_FORECAST_DAYS", "7"))
    SOIL_PROFILE_HISTORY_DAYS = int(os.getenv("SOIL_PROFILE_HISTORY_DAYS", "30"))
    SOIL_PROFILE_DEFAULT_CROP = os.getenv("SOIL_PROFILE_DEFAULT_CROP", "rice").strip().lower()

    # Server
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", "10000"))


config = Config()
