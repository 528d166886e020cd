import pytest

from roofedit.domain.geometry import GeoCoordinate, NormalizedPoint, PixelPoint
from roofedit.services import polygon_ops
from roofedit.services.polygon_ops import PolygonOperationError

from conftest import points

UNIT_SQUARE = points([(0, 0), (1, 0), (1, 1), (0, 1)])


def as_set(ring):
    return {(round(p.x, 9), round(p.y, 9)) for p in ring}


def test_shoelace_and_perimeter():
    assert polygon_ops.shoelace_area(UNIT_SQUARE) == pytest.approx(1.0)
    assert polygon_ops.signed_area(UNIT_SQUARE) > 0
    assert polygon_ops.signed_area(tuple(reversed(UNIT_SQUARE))) < 0
    assert polygon_ops.perimeter(UNIT_SQUARE) == pytest.approx(4.0)


def test_geodesic_area_of_small_square_at_equator():
    ring = [
        GeoCoordinate(0.0, 0.0),
        GeoCoordinate(0.0, 0.001),
        GeoCoordinate(0.001, 0.001),
        GeoCoordinate(0.001, 0.0),
    ]
    # ~110.6 m x 111.3 m
    assert polygon_ops.geodesic_area_sq_ft(ring) == pytest.approx(132_494, rel=0.01)
    assert polygon_ops.geodesic_area_sq_ft(ring[:2]) == 0.0


def test_point_in_polygon():
    assert polygon_ops.point_in_polygon(NormalizedPoint(0.5, 0.5), UNIT_SQUARE)
    assert not polygon_ops.point_in_polygon(NormalizedPoint(1.5, 0.5), UNIT_SQUARE)


def test_snap_to_edge_projects_onto_nearest_edge():
    ring = [PixelPoint(0, 0), PixelPoint(100, 0), PixelPoint(100, 100), PixelPoint(0, 100)]

    snapped = polygon_ops.snap_to_edge(PixelPoint(50, 8), [ring], tolerance=10)

    assert snapped == PixelPoint(50.0, 0.0)
    assert polygon_ops.snap_to_edge(PixelPoint(50, 50), [ring], tolerance=10) is None


def test_dedupe_and_consecutive_duplicates():
    ring = points([(0, 0), (0, 0), (1, 0), (1, 1), (0, 0)])

    assert len(polygon_ops.drop_consecutive_duplicates(ring)) == 3
    assert len(polygon_ops.dedupe_vertices(points([(0, 0), (1, 0), (0.0005, 0)]), 0.001)) == 2


def test_simplify_ring_removes_collinear_vertex():
    ring = points([(0, 0), (0.5, 0), (1, 0), (1, 1), (0, 1)])
    assert as_set(polygon_ops.simplify_ring(ring, 0.005)) == as_set(UNIT_SQUARE)


def test_is_simple_ring():
    assert polygon_ops.is_simple_ring(UNIT_SQUARE)
    assert not polygon_ops.is_simple_ring(points([(0, 0), (1, 1), (1, 0), (0, 1)]))
    assert not polygon_ops.is_simple_ring(points([(0, 0), (1, 0), (2, 0)]))


class TestSplit:
    def test_vertical_cut_halves_square(self):
        part_a, part_b = polygon_ops.split_polygon(UNIT_SQUARE, NormalizedPoint(0.5, -0.1), NormalizedPoint(0.5, 1.1))

        assert polygon_ops.shoelace_area(part_a) == pytest.approx(0.5)
        assert polygon_ops.shoelace_area(part_b) == pytest.approx(0.5)
        assert polygon_ops.is_simple_ring(part_a) and polygon_ops.is_simple_ring(part_b)
        assert as_set(part_a) | as_set(part_b) == as_set(UNIT_SQUARE) | {(0.5, 0.0), (0.5, 1.0)}

    def test_diagonal_cut_through_vertices(self):
        part_a, part_b = polygon_ops.split_polygon(UNIT_SQUARE, NormalizedPoint(-0.1, -0.1), NormalizedPoint(1.1, 1.1))

        assert len(part_a) == 3 and len(part_b) == 3
        assert polygon_ops.shoelace_area(part_a) == pytest.approx(0.5)

    def test_line_inside_facet_is_rejected(self):
        with pytest.raises(PolygonOperationError, match="exactly 2 points"):
            polygon_ops.split_polygon(UNIT_SQUARE, NormalizedPoint(0.2, 0.2), NormalizedPoint(0.8, 0.8))

    def test_line_missing_facet_is_rejected(self):
        with pytest.raises(PolygonOperationError):
            polygon_ops.split_polygon(UNIT_SQUARE, NormalizedPoint(2, 0), NormalizedPoint(2, 1))

    def test_chord_outside_concave_facet_is_rejected(self):
        # U shape: the cut joins the two prongs across the notch
        ring = points([(0, 0), (3, 0), (3, 3), (2, 3), (2, 1), (1, 1), (1, 3), (0, 3)])
        with pytest.raises(PolygonOperationError):
            polygon_ops.split_polygon(ring, NormalizedPoint(1, 2), NormalizedPoint(2, 2))


class TestMerge:
    def test_adjacent_squares_merge_into_rectangle(self):
        left = points([(0, 0), (1, 0), (1, 1), (0, 1)])
        right = points([(1, 0), (2, 0), (2, 1), (1, 1)])

        merged = polygon_ops.merge_polygons([left, right])

        assert as_set(merged) == {(0, 0), (2, 0), (2, 1), (0, 1)}
        assert polygon_ops.shoelace_area(merged) == pytest.approx(2.0)

    def test_near_duplicate_vertices_are_snapped(self):
        left = points([(0, 0), (1, 0), (1, 1), (0, 1)])
        right = points([(1.0005, 0), (2, 0), (2, 1), (1.0005, 1)])

        merged = polygon_ops.merge_polygons([left, right], epsilon=0.001)

        assert len(merged) == 4
        assert polygon_ops.is_simple_ring(merged)

    def test_result_keeps_first_ring_orientation(self):
        left = tuple(reversed(points([(0, 0), (1, 0), (1, 1), (0, 1)])))
        right = points([(1, 0), (2, 0), (2, 1), (1, 1)])

        assert polygon_ops.signed_area(polygon_ops.merge_polygons([left, right])) < 0

    def test_disjoint_facets_cannot_merge(self):
        left = points([(0, 0), (1, 0), (1, 1), (0, 1)])
        far = points([(3, 3), (4, 3), (4, 4), (3, 4)])

        with pytest.raises(PolygonOperationError, match="adjacent"):
            polygon_ops.merge_polygons([left, far])

    def test_single_ring_is_rejected(self):
        with pytest.raises(PolygonOperationError):
            polygon_ops.merge_polygons([UNIT_SQUARE])

    def test_split_then_merge_restores_vertex_set(self):
        part_a, part_b = polygon_ops.split_polygon(UNIT_SQUARE, NormalizedPoint(0.3, -1), NormalizedPoint(0.3, 2))

        assert as_set(polygon_ops.merge_polygons([part_a, part_b])) == as_set(UNIT_SQUARE)
