import pytest

from errors import InvalidGeometry
from geometry import as_area_geojson, centroid_and_area, parse_geometry

from conftest import square


def test_square_centroid_and_area():
    lon, lat, area_ha = centroid_and_area(square(77.0, 12.9))
    assert lon == pytest.approx(77.0, abs=1e-9)
    assert lat == pytest.approx(12.9, abs=1e-9)
    assert area_ha == pytest.approx(2.3, rel=0.02)


def test_feature_wrapper_is_accepted():
    feature = {"type": "Feature", "properties": {}, "geometry": square(77.0, 12.9)}
    lon, lat, _ = centroid_and_area(feature)
    assert (round(lon, 6), round(lat, 6)) == (77.0, 12.9)


def test_point_has_zero_area():
    assert centroid_and_area({"type": "Point", "coordinates": [73.86, 18.52]}) == (73.86, 18.52, 0.0)


def test_point_is_buffered_for_raster_statistics():
    area = as_area_geojson({"type": "Point", "coordinates": [73.86, 18.52]}, buffer_m=150)
    assert area["type"] == "Polygon"
    _, _, area_ha = centroid_and_area(area)
    # 300 m x 300 m
    assert area_ha == pytest.approx(9.0, rel=0.05)


@pytest.mark.parametrize("bad", [
    {},
    {"type": "Polygon", "coordinates": []},
    {"type": "Polygon", "coordinates": "nope"},
    {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
    {"type": "FeatureCollection", "features": []},
    {"type": "Feature", "geometry": None},
    {"type": "Feature", "geometry": "oops"},
    {"type": "FeatureCollection", "features": ["oops"]},
    {"type": "FeatureCollection", "features": {"type": "Feature"}},
    {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": [1, 2]}]},
])
def test_invalid_geometry(bad):
    with pytest.raises(InvalidGeometry):
        parse_geometry(bad)


def test_swapped_coordinates_out_of_range():
    with pytest.raises(InvalidGeometry):
        centroid_and_area({"type": "Point", "coordinates": [12.9, 177.0]})


def test_single_feature_collection_is_accepted():
    collection = {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": square(77.0, 12.9)}]}
    lon, lat, area_ha = centroid_and_area(collection)
    assert (round(lon, 6), round(lat, 6)) == (77.0, 12.9)
    assert area_ha > 0
