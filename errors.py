"""
Error taxonomy for the soil assessment service.

Each error carries the HTTP status the API layer answers with. Upstream
degradation (soil baseline, vegetation indices, weather, model) is never
raised; only input, not-found and hard resolution failures are.
"""

from typing import Any, Dict, Optional


class SoilServiceError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "error": self.error,
            "detail": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            body["context"] = self.details
        return body


# ---- Input errors (400) ----

class InvalidCoordinates(SoilServiceError):
    status_code = 400
    error = "invalid_coordinates"


class InvalidLocationQuery(SoilServiceError):
    status_code = 400
    error = "invalid_location_query"


class InvalidGeometry(SoilServiceError):
    status_code = 400
    error = "invalid_geometry"


# ---- Not found (404) ----

class LocationNotFound(SoilServiceError):
    status_code = 404
    error = "location_not_found"

    def __init__(self, query: str):
        super().__init__(f"No location found for: {query}", {"query": query})
        self.query = query


class JobNotFound(SoilServiceError):
    status_code = 404
    error = "job_not_found"

    def __init__(self, job_id: str):
        super().__init__(f"Assessment job not found: {job_id}", {"job_id": job_id})
        self.job_id = job_id


# ---- Upstream hard failure (503) ----

class GeocoderUnavailable(SoilServiceError):
    status_code = 503
    error = "geocoder_unavailable"


class SoilProfileUnavailable(SoilServiceError):
    status_code = 503
    error = "soil_profile_unavailable"
