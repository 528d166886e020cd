from dataclasses import replace

import pytest

from roofedit.domain.geometry import CanvasSize, GeoCoordinate, NormalizedPoint
from roofedit.domain.measurement import (
    AnnotationType,
    FeatureType,
    GeoReference,
    LinearFeature,
    LinearFeatureSet,
    Measurement,
    RoofFacet,
)
from roofedit.services import polygon_ops, transform
from roofedit.services.edit_engine import EditMode, EditorSettings, EditSession

from conftest import points, square

SETTINGS = EditorSettings(canvas=CanvasSize(100, 100), hit_tolerance_px=2.0)


def vertex_set(facet):
    return {(round(p.x, 9), round(p.y, 9)) for p in facet.boundary}


@pytest.fixture
def session(two_facet_measurement):
    return EditSession(two_facet_measurement, settings=SETTINGS)


def split_left_facet(session):
    return session.split_facet(NormalizedPoint(0.25, -0.1), NormalizedPoint(0.25, 0.6))


class TestSplit:
    def test_split_produces_two_simple_facets(self, session):
        result = split_left_facet(session)

        assert result.ok and result.changed
        facets = session.measurement.facets
        assert len(facets) == 3
        halves = facets[:2]
        assert all(polygon_ops.is_simple_ring(f.boundary) for f in halves)

    def test_halves_get_their_own_shoelace_area(self, session):
        split_left_facet(session)

        halves = session.measurement.facets[:2]
        assert [f.area for f in halves] == pytest.approx([0.125, 0.125])
        assert [f.area for f in halves] == pytest.approx([polygon_ops.shoelace_area(f.boundary) for f in halves])

    def test_halves_keep_facet_attributes(self, session):
        split_left_facet(session)
        for half in session.measurement.facets[:2]:
            assert half.pitch == 6.0
            assert half.id not in ("facet-a", "facet-b")

    def test_failed_split_leaves_model_unchanged(self, session):
        before = session.measurement

        result = session.split_facet(NormalizedPoint(0.1, 0.1), NormalizedPoint(0.2, 0.2))

        assert not result.ok
        assert result.message == "Split line must intersect facet at exactly 2 points"
        assert session.measurement is before
        assert not session.history.can_undo()

    def test_split_by_clicks(self, session):
        session.set_mode(EditMode.SPLIT_FACET)
        session.click(25, 0)
        result = session.click(25, 50)

        assert result.ok
        assert len(session.measurement.facets) == 3
        assert session.draw_points == ()


class TestMerge:
    def test_merge_adjacent_facets(self, session):
        session.set_mode(EditMode.MERGE_FACETS)
        session.click(20, 20)
        session.click(80, 20)
        assert session.merge_selection == ("facet-a", "facet-b")

        result = session.commit_merge()

        assert result.ok
        (merged,) = session.measurement.facets
        assert merged.id == "facet-a"
        assert merged.area == pytest.approx(200.0)
        assert merged.vertex_count == 4
        assert polygon_ops.is_simple_ring(merged.boundary)
        assert session.merge_selection == ()

    def test_clicking_selected_facet_again_deselects_it(self, session):
        session.set_mode(EditMode.MERGE_FACETS)
        session.click(20, 20)
        session.click(20, 20)
        assert session.merge_selection == ()

    def test_merge_needs_two_facets(self, session):
        session.set_mode(EditMode.MERGE_FACETS)
        session.click(20, 20)

        result = session.commit_merge()

        assert not result.ok
        assert len(session.measurement.facets) == 2

    def test_non_adjacent_facets_are_rejected(self, two_facet_measurement):
        far = square("facet-c", 0.8, 0.8, 0.1, 10.0)
        session = EditSession(
            two_facet_measurement.evolve(facets=two_facet_measurement.facets[:1] + (far,)),
            settings=SETTINGS,
        )
        before = session.measurement
        session.set_mode(EditMode.MERGE_FACETS)
        session.click(20, 20)
        session.click(85, 85)

        result = session.commit_merge()

        assert not result.ok
        assert "adjacent" in result.message
        assert session.measurement is before

    def test_split_then_merge_restores_original_outline(self, session):
        original = session.measurement.find_facet("facet-a")
        split_left_facet(session)

        session.set_mode(EditMode.MERGE_FACETS)
        session.click(10, 20)
        session.click(40, 20)
        result = session.commit_merge()

        assert result.ok
        merged = session.measurement.facets[0]
        assert vertex_set(merged) == vertex_set(original)
        assert merged.area == pytest.approx(polygon_ops.shoelace_area(original.boundary))


class TestHistory:
    def test_undo_and_redo_restore_exact_snapshots(self, session):
        original = session.measurement
        split_left_facet(session)
        after_split = session.measurement

        assert session.undo().ok
        assert session.measurement == original
        assert session.redo().ok
        assert session.measurement == after_split

    def test_undo_with_empty_history_is_a_notice(self, session):
        result = session.undo()
        assert result.ok and not result.changed

    def test_reset_returns_to_loaded_measurement_and_is_undoable(self, session):
        original = session.measurement
        split_left_facet(session)
        after_split = session.measurement

        session.reset()
        assert session.measurement == original

        session.undo()
        assert session.measurement == after_split


class TestKeyboard:
    @pytest.mark.parametrize("key, mode", [
        ("r", EditMode.ADD_RIDGE),
        ("H", EditMode.ADD_HIP),
        ("v", EditMode.ADD_VALLEY),
        ("s", EditMode.SELECT),
    ])
    def test_mode_shortcuts(self, session, key, mode):
        session.handle_key(key)
        assert session.mode is mode

    def test_escape_returns_to_select_and_clears_input(self, session):
        session.set_mode(EditMode.ADD_FACET)
        session.click(70, 75)

        session.handle_key("Escape")

        assert session.mode is EditMode.SELECT
        assert session.draw_points == ()

    def test_ctrl_shortcuts_drive_history(self, session):
        original = session.measurement
        split_left_facet(session)

        session.handle_key("z", ctrl=True)
        assert session.measurement == original
        session.handle_key("z", ctrl=True, shift=True)
        assert len(session.measurement.facets) == 3
        session.handle_key("z", ctrl=True)
        session.handle_key("y", ctrl=True)
        assert len(session.measurement.facets) == 3

    def test_delete_key_removes_last_facet(self):
        session = EditSession(
            Measurement(id="solo", facets=(square("only", 0.2, 0.2, 0.4, 50.0),)),
            settings=SETTINGS,
        )
        session.click(40, 40)
        assert session.selection.id == "only"

        result = session.handle_key("Delete")

        assert result.ok
        assert session.measurement.facets == ()
        assert session.selection is None


class TestDrawing:
    def test_add_ridge_with_two_clicks(self, session):
        session.set_mode(EditMode.ADD_RIDGE)
        first = session.click(10, 80)
        assert first.ok and not first.changed

        result = session.click(40, 80)

        assert result.changed
        (ridge,) = session.measurement.linear_features.ridges
        assert ridge.length == pytest.approx(30.0)
        assert session.measurement.linear_features.ridge_total == pytest.approx(30.0)

    def test_add_facet_closes_near_first_vertex(self, session):
        session.set_mode(EditMode.ADD_FACET)
        for x, y in [(70, 75), (95, 75), (95, 95), (70, 95)]:
            assert not session.click(x, y).changed

        result = session.click(71, 76)

        assert result.changed
        facet = session.measurement.facets[-1]
        assert facet.vertex_count == 4
        assert facet.area == pytest.approx(0.25 * 0.2)
        assert session.draw_points == ()

    def test_delete_mode_removes_clicked_line(self, session):
        ridge = LinearFeature(
            id="r1",
            feature_type=FeatureType.RIDGE,
            start=NormalizedPoint(0.1, 0.8),
            end=NormalizedPoint(0.4, 0.8),
            length=30.0,
        )
        session = EditSession(
            session.measurement.evolve(linear_features=LinearFeatureSet.of([ridge])),
            settings=SETTINGS,
        )
        session.set_mode(EditMode.DELETE)

        result = session.click(25, 80)

        assert result.changed
        assert len(session.measurement.linear_features) == 0
        assert len(session.measurement.facets) == 2


class TestAnnotations:
    def test_note_waits_for_text(self, session):
        session.set_mode(EditMode.ADD_NOTE)
        session.click(30, 30)
        assert session.pending_annotation.annotation_type is AnnotationType.NOTE

        assert not session.confirm_annotation("  ").ok
        assert session.measurement.annotations == ()

        result = session.confirm_annotation("Cracked shingle")

        assert result.changed
        (note,) = session.measurement.annotations
        assert note.text == "Cracked shingle"
        assert note.position == NormalizedPoint(0.3, 0.3)
        assert session.pending_annotation is None

    def test_cancel_discards_pending_annotation(self, session):
        session.set_mode(EditMode.ADD_DAMAGE)
        session.click(30, 30)

        session.cancel_annotation()

        assert session.pending_annotation is None
        assert session.measurement.annotations == ()

    def test_marker_is_added_immediately(self, session):
        session.set_mode(EditMode.ADD_MARKER)
        result = session.click(30, 30)

        assert result.changed
        assert session.measurement.annotations[0].annotation_type is AnnotationType.MARKER


class TestVertexEditing:
    def test_move_vertex_keeps_area(self, session):
        result = session.move_vertex(0, 1, 45, 5)

        assert result.ok
        facet = session.measurement.facets[0]
        assert facet.boundary[1] == NormalizedPoint(0.45, 0.05)
        assert facet.area == 100.0
        assert facet.id == "facet-a"

    def test_move_vertex_rejects_self_intersection(self, session):
        before = session.measurement

        result = session.move_vertex(0, 1, 50, 90)

        assert not result.ok
        assert "self-intersect" in result.message
        assert session.measurement is before

    def test_move_vertex_requires_select_mode(self, session):
        session.set_mode(EditMode.ADD_RIDGE)
        assert not session.move_vertex(0, 1, 45, 5).ok

    def test_simplify_drops_collinear_vertex(self, two_facet_measurement):
        facet = two_facet_measurement.facets[0]
        boundary = facet.boundary[:1] + (NormalizedPoint(0.25, 0.0),) + facet.boundary[1:]
        session = EditSession(
            two_facet_measurement.evolve(facets=(replace(facet, boundary=boundary),)),
            settings=SETTINGS,
        )

        result = session.simplify_facet("facet-a")

        assert result.changed
        assert session.measurement.facets[0].vertex_count == 4
        assert session.measurement.facets[0].area == 100.0


def test_reclassify_line(session):
    ridge = LinearFeature(
        id="r1",
        feature_type=FeatureType.RIDGE,
        start=NormalizedPoint(0.1, 0.8),
        end=NormalizedPoint(0.4, 0.8),
        length=30.0,
    )
    session = EditSession(
        session.measurement.evolve(linear_features=LinearFeatureSet.of([ridge])),
        settings=SETTINGS,
    )

    result = session.reclassify_feature("r1", FeatureType.VALLEY)

    assert result.changed
    features = session.measurement.linear_features
    assert features.ridge_total == 0.0
    assert features.valley_total == 30.0


def test_state_json_reports_editor_state(session):
    session.set_mode(EditMode.ADD_FACET)
    session.click(70, 75)

    state = session.to_state_json()

    assert state["mode"] == "add-facet"
    assert state["drawPoints"] == [[0.7, 0.75]]
    assert state["canvas"] == {"width": 100, "height": 100}
    assert state["canUndo"] is False
    assert state["bounds"] is None


class TestSnapping:
    def test_click_near_a_facet_edge_snaps_onto_it(self, session):
        session.set_mode(EditMode.ADD_RIDGE)
        session.click(30, 58)
        session.click(30, 90)

        (ridge,) = session.measurement.linear_features.ridges
        assert (ridge.start.x, ridge.start.y) == pytest.approx((0.3, 0.5))
        assert (ridge.end.x, ridge.end.y) == pytest.approx((0.3, 0.9))

    def test_click_near_a_vertex_snaps_onto_it(self, session):
        session.set_mode(EditMode.ADD_VALLEY)
        session.click(47, 47)
        session.click(47, 90)

        (valley,) = session.measurement.linear_features.valleys
        assert (valley.start.x, valley.start.y) == pytest.approx((0.5, 0.5))


CENTER = GeoCoordinate(40.0, -105.0)
ZOOM = 20.0


def geo_square(facet_id, x0, y0, size, canvas=SETTINGS.canvas):
    boundary = points([(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)])
    geo = tuple(transform.normalized_to_geo(p, CENTER, ZOOM, canvas) for p in boundary)
    return RoofFacet(
        id=facet_id,
        boundary=boundary,
        area=polygon_ops.geodesic_area_sq_ft(geo),
        pitch=6.0,
        geo_boundary=geo,
    )


def feet_per_pixel():
    return transform.meters_per_pixel(CENTER.lat, ZOOM) * transform.FEET_PER_METER


@pytest.fixture
def geo_session():
    measurement = Measurement(
        id="geo-roof",
        facets=(geo_square("geo-a", 0.1, 0.1, 0.4),),
        reference=GeoReference(center=CENTER, zoom=ZOOM),
    )
    return EditSession(measurement, settings=SETTINGS)


class TestGeoAnchored:
    def test_line_length_is_haversine_feet(self, geo_session):
        geo_session.set_mode(EditMode.ADD_RIDGE)
        geo_session.click(10, 80)
        geo_session.click(40, 80)

        (ridge,) = geo_session.measurement.linear_features.ridges
        expected = transform.haversine_distance(ridge.geo_start, ridge.geo_end) * transform.FEET_PER_METER
        assert ridge.length == pytest.approx(expected)
        assert ridge.length == pytest.approx(30 * feet_per_pixel(), rel=2e-3)

    def test_new_facet_gets_geodesic_area(self, geo_session):
        geo_session.set_mode(EditMode.ADD_FACET)
        for x, y in [(75, 65), (95, 65), (95, 95), (75, 95)]:
            geo_session.click(x, y)

        result = geo_session.click(76, 66)

        assert result.changed
        facet = geo_session.measurement.facets[-1]
        assert len(facet.geo_boundary) == 4
        assert facet.area == pytest.approx(polygon_ops.geodesic_area_sq_ft(facet.geo_boundary))
        assert facet.area == pytest.approx(20 * 30 * feet_per_pixel() ** 2, rel=5e-3)

    def test_split_halves_get_geodesic_areas(self, geo_session):
        parent = geo_session.measurement.facets[0]

        result = geo_session.split_facet(NormalizedPoint(0.3, 0.0), NormalizedPoint(0.3, 0.6))

        assert result.ok
        halves = geo_session.measurement.facets
        for half in halves:
            assert half.area == pytest.approx(polygon_ops.geodesic_area_sq_ft(half.geo_boundary))
            assert half.area == pytest.approx(parent.area / 2, rel=1e-3)
        assert set(parent.geo_boundary) <= {c for half in halves for c in half.geo_boundary}

    def test_drag_keeps_geo_coordinates_of_unmoved_vertices(self):
        # Normalized geometry laid out for a 100x100 canvas, image recorded as 200x200
        facet = geo_square("geo-a", 0.1, 0.1, 0.4)
        measurement = Measurement(
            id="geo-roof",
            facets=(facet,),
            reference=GeoReference(center=CENTER, zoom=ZOOM, image_size=CanvasSize(200, 200)),
        )
        session = EditSession(measurement, settings=SETTINGS)

        result = session.move_vertex(0, 0, 22, 22)

        assert result.ok
        moved = session.measurement.facets[0]
        assert moved.geo_boundary[1:] == facet.geo_boundary[1:]
        assert moved.geo_boundary[0] == transform.normalized_to_geo(
            NormalizedPoint(0.11, 0.11), CENTER, ZOOM, CanvasSize(200, 200)
        )
        assert moved.area == facet.area

    def test_state_reports_current_bounds(self, geo_session):
        before = geo_session.to_state_json()["bounds"]
        assert before["minLat"] < before["maxLat"]

        geo_session.set_mode(EditMode.ADD_FACET)
        for x, y in [(75, 65), (95, 65), (95, 95), (75, 95), (76, 66)]:
            geo_session.click(x, y)

        after = geo_session.to_state_json()["bounds"]
        assert after["minLat"] < before["minLat"]
        assert after["maxLng"] > before["maxLng"]
