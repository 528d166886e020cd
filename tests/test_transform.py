import pytest

from roofedit.domain.geometry import CanvasSize, GeoBounds, GeoCoordinate, NormalizedPoint, PixelPoint
from roofedit.services import transform


def test_parse_polygon_wkt_reads_lng_lat_pairs_in_order():
    coords = transform.parse_polygon_wkt("POLYGON((-80.1 25.7, -80.2 25.8, -80.15 25.75))")

    assert len(coords) == 3
    assert coords[0] == GeoCoordinate(lat=25.7, lng=-80.1)
    assert coords[2] == GeoCoordinate(lat=25.75, lng=-80.15)


@pytest.mark.parametrize("text", [None, "", "POLYGON((", "not wkt at all", 42])
def test_malformed_polygon_wkt_yields_empty_list(text):
    assert transform.parse_polygon_wkt(text) == []


def test_unparseable_pairs_are_skipped():
    coords = transform.parse_polygon_wkt("POLYGON((-80.1 25.7, abc def, -80.2 25.8, 1))")
    assert coords == [GeoCoordinate(25.7, -80.1), GeoCoordinate(25.8, -80.2)]


def test_parse_line_wkt():
    coords = transform.parse_line_wkt("LINESTRING(-105.0 40.0, -105.001 40.001)")
    assert coords == [GeoCoordinate(40.0, -105.0), GeoCoordinate(40.001, -105.001)]
    assert transform.parse_line_wkt("LINESTRING()") == []


def test_wkt_serialisation_requires_enough_coordinates():
    coords = [GeoCoordinate(40.0, -105.0), GeoCoordinate(40.001, -105.0), GeoCoordinate(40.001, -105.001)]

    assert transform.to_polygon_wkt(coords) == "POLYGON((-105.0 40.0, -105.0 40.001, -105.001 40.001))"
    assert transform.to_polygon_wkt(coords[:2]) == ""
    assert transform.to_line_wkt(coords[:1]) == ""


def test_haversine_one_degree_of_latitude():
    distance = transform.haversine_distance(GeoCoordinate(0.0, 0.0), GeoCoordinate(1.0, 0.0))
    assert distance == pytest.approx(111_195, abs=1)


def test_reference_point_projects_to_canvas_centre():
    reference = GeoCoordinate(40.0, -105.0)
    pixel = transform.geo_to_canvas(reference, reference, 20, CanvasSize(640, 480))
    assert pixel == PixelPoint(320.0, 240.0)


def test_geo_canvas_round_trip_within_one_pixel():
    reference = GeoCoordinate(40.0, -105.0)
    canvas = CanvasSize(640, 480)
    coord = GeoCoordinate(40.0001, -104.9999)

    pixel = transform.geo_to_canvas(coord, reference, 20, canvas)
    back = transform.geo_to_canvas(transform.canvas_to_geo(pixel, reference, 20, canvas), reference, 20, canvas)

    assert pixel.distance_to(back) < 1.0
    # North-east of the reference: right of and above the centre
    assert pixel.x > 320 and pixel.y < 240


def test_normalized_geo_round_trip():
    reference = GeoCoordinate(40.0, -105.0)
    canvas = CanvasSize(640, 480)
    point = NormalizedPoint(0.25, 0.75)

    coord = transform.normalized_to_geo(point, reference, 20, canvas)
    back = transform.geo_to_normalized(coord, reference, 20, canvas)

    assert back.x == pytest.approx(0.25)
    assert back.y == pytest.approx(0.75)


def test_is_near_uses_any_vertex():
    reference = GeoCoordinate(40.0, -105.0)
    near = [GeoCoordinate(40.0002, -105.0), GeoCoordinate(41.0, -105.0)]
    far = [GeoCoordinate(41.0, -105.0)]

    assert transform.is_near(near, reference, 50)
    assert not transform.is_near(far, reference, 50)
    assert transform.filter_near([near, far], lambda f: f, reference) == [near]


def test_geo_bounds_ignore_distant_geometry():
    reference = GeoCoordinate(40.0, -105.0)
    nearby = [GeoCoordinate(40.0001, -105.0001), GeoCoordinate(40.0002, -104.9999), GeoCoordinate(39.9999, -105.0)]
    distant = [GeoCoordinate(41.0, -106.0), GeoCoordinate(41.1, -106.1), GeoCoordinate(41.0, -106.1)]

    bounds = transform.compute_geo_bounds(reference, polygons=[nearby, distant])

    assert bounds.max_lat == pytest.approx(40.0002)
    assert bounds.min_lng == pytest.approx(-105.0001)


def test_geo_bounds_fall_back_to_fixed_square():
    reference = GeoCoordinate(40.0, -105.0)
    distant = [GeoCoordinate(41.0, -106.0), GeoCoordinate(41.1, -106.1), GeoCoordinate(41.0, -106.1)]

    bounds = transform.compute_geo_bounds(reference, polygons=[distant])

    assert bounds == GeoBounds.around(reference, 0.001)
    assert bounds.contains(reference)


def test_bounds_fit_transformer_keeps_geometry_on_canvas():
    bounds = GeoBounds.from_coordinates([GeoCoordinate(40.0, -105.0), GeoCoordinate(40.001, -104.998)])
    fit = transform.BoundsFitTransformer(bounds, CanvasSize(400, 300))

    for coord in (GeoCoordinate(40.0, -105.0), GeoCoordinate(40.001, -104.998)):
        pixel = fit.to_canvas(coord)
        assert 0 <= pixel.x <= 400 and 0 <= pixel.y <= 300
        back = fit.to_geo(pixel)
        assert back.lat == pytest.approx(coord.lat)
        assert back.lng == pytest.approx(coord.lng)

    # North is up
    assert fit.to_canvas(GeoCoordinate(40.001, -105.0)).y < fit.to_canvas(GeoCoordinate(40.0, -105.0)).y


def test_feet_per_normalized_unit_scales_with_zoom():
    x_ft, y_ft = transform.feet_per_normalized_unit(40.0, 20, CanvasSize(640, 480))
    zoomed_x, _ = transform.feet_per_normalized_unit(40.0, 21, CanvasSize(640, 480))

    assert x_ft > y_ft > 0
    assert zoomed_x == pytest.approx(x_ft / 2)
