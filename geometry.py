"""
GeoJSON helpers: centroid extraction, geodesic area, point buffering.
"""

import math
from typing import Any, Dict, Tuple

from pyproj import Geod
from shapely.geometry import box, mapping, shape
from shapely.geometry.base import BaseGeometry

from errors import InvalidGeometry

M2_PER_HA = 10000.0
METERS_PER_DEG_LAT = 111_320.0

_GEOD = Geod(ellps="WGS84")


def parse_geometry(geojson: Dict[str, Any]) -> BaseGeometry:
    """Accept a bare geometry, a Feature, or a single-feature FeatureCollection."""
    if not isinstance(geojson, dict) or not geojson:
        raise InvalidGeometry("Area must be a GeoJSON object")

    geo_type = geojson.get("type")
    if geo_type == "FeatureCollection":
        features = geojson.get("features") or []
        if not isinstance(features, list) or len(features) != 1:
            raise InvalidGeometry("FeatureCollection must contain exactly one feature")
        geojson = features[0]
        if not isinstance(geojson, dict) or geojson.get("type") != "Feature":
            raise InvalidGeometry("FeatureCollection member must be a GeoJSON Feature")
        geo_type = "Feature"
    if geo_type == "Feature":
        geojson = geojson.get("geometry") or {}
        if not isinstance(geojson, dict):
            raise InvalidGeometry("Feature geometry must be a GeoJSON object")

    try:
        geom = shape(geojson)
    except Exception as e:
        raise InvalidGeometry(f"Invalid GeoJSON geometry: {e}")

    if geom.is_empty:
        raise InvalidGeometry("GeoJSON geometry is empty")
    if geom.geom_type not in ("Point", "Polygon", "MultiPolygon"):
        raise InvalidGeometry(f"Unsupported geometry type: {geom.geom_type}")
    return geom


def centroid_and_area(geojson: Dict[str, Any]) -> Tuple[float, float, float]:
    """
    Returns (lon, lat, area_ha). Points have zero area.
    Raises InvalidGeometry when no finite centroid can be computed.
    """
    geom = parse_geometry(geojson)
    c = geom.centroid
    if c.is_empty or not (math.isfinite(c.x) and math.isfinite(c.y)):
        raise InvalidGeometry("Failed to compute centroid for area")
    if not (-180.0 <= c.x <= 180.0 and -90.0 <= c.y <= 90.0):
        raise InvalidGeometry("Centroid outside WGS84 bounds; coordinates must be [lon, lat]")

    area_ha = 0.0
    if geom.geom_type != "Point":
        area_m2, _ = _GEOD.geometry_area_perimeter(geom)
        area_ha = round(abs(area_m2) / M2_PER_HA, 4)
    return c.x, c.y, area_ha


def point_buffer_geojson(lon: float, lat: float, buffer_m: float) -> Dict[str, Any]:
    """Square polygon of +/- buffer_m around a point (degrees approximated at the latitude)."""
    dlat = buffer_m / METERS_PER_DEG_LAT
    dlon = buffer_m / (METERS_PER_DEG_LAT * max(math.cos(math.radians(lat)), 0.01))
    return mapping(box(lon - dlon, lat - dlat, lon + dlon, lat + dlat))


def as_area_geojson(geojson: Dict[str, Any], buffer_m: float) -> Dict[str, Any]:
    """Polygon geometry suitable for raster statistics; points get buffered."""
    geom = parse_geometry(geojson)
    if geom.geom_type == "Point":
        return point_buffer_geojson(geom.x, geom.y, buffer_m)
    return mapping(geom)
