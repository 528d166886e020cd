"""
Interactive edit engine.

An ``EditSession`` owns one measurement being edited: the current mode,
the in-progress point buffer, the merge selection, a pending annotation,
the current selection and its undo/redo history. Pointer input arrives in
canvas pixels; the model is stored in normalized coordinates.

Every operation returns an ``EditResult``. User mistakes (a split line that
misses the facet, merging a single facet, ...) are reported as
``ok=False`` results and never change the model. Each committed mutation
records the previous snapshot in the history and submits the new one to
the persistence gate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from roofedit.domain.factories import (
    GeometryInvariantError,
    create_annotation,
    create_facet,
    create_linear_feature,
    palette_color,
    reclassify_feature,
)
from roofedit.domain.geometry import CanvasSize, GeoBounds, GeoCoordinate, NormalizedPoint, PixelPoint
from roofedit.domain.measurement import (
    AnnotationType,
    FeatureType,
    Measurement,
    RoofFacet,
)
from roofedit.services import polygon_ops, transform
from roofedit.services.history import DEFAULT_HISTORY_LIMIT, HistoryManager

logger = logging.getLogger(__name__)

AUTO_LABEL_SUFFIX = " sq ft"


class EditMode(str, Enum):
    SELECT = "select"
    ADD_RIDGE = "add-ridge"
    ADD_HIP = "add-hip"
    ADD_VALLEY = "add-valley"
    ADD_FACET = "add-facet"
    DELETE = "delete"
    ADD_MARKER = "add-marker"
    ADD_NOTE = "add-note"
    ADD_DAMAGE = "add-damage"
    SPLIT_FACET = "split-facet"
    MERGE_FACETS = "merge-facets"

    @property
    def feature_type(self) -> Optional[FeatureType]:
        return {
            EditMode.ADD_RIDGE: FeatureType.RIDGE,
            EditMode.ADD_HIP: FeatureType.HIP,
            EditMode.ADD_VALLEY: FeatureType.VALLEY,
        }.get(self)

    @property
    def annotation_type(self) -> Optional[AnnotationType]:
        return {
            EditMode.ADD_MARKER: AnnotationType.MARKER,
            EditMode.ADD_NOTE: AnnotationType.NOTE,
            EditMode.ADD_DAMAGE: AnnotationType.DAMAGE,
        }.get(self)


MODE_SHORTCUTS = {
    "s": EditMode.SELECT,
    "r": EditMode.ADD_RIDGE,
    "h": EditMode.ADD_HIP,
    "v": EditMode.ADD_VALLEY,
}


@dataclass(frozen=True)
class Selection:
    kind: str  # "facet" | "line" | "annotation"
    id: str

    def to_json(self) -> Dict[str, str]:
        return {"kind": self.kind, "id": self.id}


@dataclass(frozen=True)
class PendingAnnotation:
    annotation_type: AnnotationType
    position: NormalizedPoint

    def to_json(self) -> Dict[str, Any]:
        return {"type": self.annotation_type.value, "normalizedPosition": self.position.to_frontend_json()}


@dataclass(frozen=True)
class EditResult:
    ok: bool
    message: str
    measurement: Measurement
    changed: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {"ok": self.ok, "message": self.message, "changed": self.changed}


@dataclass(frozen=True)
class EditorSettings:
    canvas: CanvasSize = CanvasSize(640, 480)
    snap_tolerance_px: float = 20.0
    close_tolerance_px: float = 15.0
    hit_tolerance_px: float = 10.0
    merge_epsilon: float = 0.001
    history_limit: int = DEFAULT_HISTORY_LIMIT
    proximity_threshold_m: float = transform.DEFAULT_PROXIMITY_M

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EditorSettings":
        return cls(
            canvas=CanvasSize(int(config.get("CANVAS_WIDTH", 640)), int(config.get("CANVAS_HEIGHT", 480))),
            snap_tolerance_px=float(config.get("SNAP_TOLERANCE_PX", 20.0)),
            close_tolerance_px=float(config.get("CLOSE_TOLERANCE_PX", 15.0)),
            hit_tolerance_px=float(config.get("HIT_TOLERANCE_PX", 10.0)),
            merge_epsilon=float(config.get("MERGE_EPSILON", 0.001)),
            history_limit=int(config.get("HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT)),
            proximity_threshold_m=float(config.get("PROXIMITY_THRESHOLD_M", transform.DEFAULT_PROXIMITY_M)),
        )


class EditSession:
    """Editing state for one mounted measurement."""

    def __init__(
        self,
        measurement: Measurement,
        *,
        gate=None,
        settings: Optional[EditorSettings] = None,
        history: Optional[HistoryManager] = None,
    ) -> None:
        self._settings = settings or EditorSettings()
        self._original = measurement
        self._measurement = measurement
        self._gate = gate
        self._history = history or HistoryManager(self._settings.history_limit)
        self._mode = EditMode.SELECT
        self._draw_points: List[NormalizedPoint] = []
        self._merge_selection: List[str] = []
        self._pending_annotation: Optional[PendingAnnotation] = None
        self._selection: Optional[Selection] = None
        self.last_submit = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def measurement(self) -> Measurement:
        return self._measurement

    @property
    def original(self) -> Measurement:
        return self._original

    @property
    def mode(self) -> EditMode:
        return self._mode

    @property
    def history(self) -> HistoryManager:
        return self._history

    @property
    def gate(self):
        return self._gate

    @property
    def draw_points(self) -> Tuple[NormalizedPoint, ...]:
        return tuple(self._draw_points)

    @property
    def merge_selection(self) -> Tuple[str, ...]:
        return tuple(self._merge_selection)

    @property
    def pending_annotation(self) -> Optional[PendingAnnotation]:
        return self._pending_annotation

    @property
    def selection(self) -> Optional[Selection]:
        return self._selection

    @property
    def canvas(self) -> CanvasSize:
        reference = self._measurement.reference
        if reference is not None and reference.image_size is not None:
            return reference.image_size
        width = self._measurement.metadata.get("imageWidth")
        height = self._measurement.metadata.get("imageHeight")
        if width and height:
            return CanvasSize(int(width), int(height))
        return self._settings.canvas

    @property
    def geo_bounds(self) -> Optional[GeoBounds]:
        """Bounds of the current geometry; derived again on every access."""
        return self._measurement.geo_bounds(self._settings.proximity_threshold_m)

    def to_state_json(self) -> Dict[str, Any]:
        bounds = self.geo_bounds
        return {
            "mode": self._mode.value,
            "measurement": self._measurement.to_frontend_json(),
            "bounds": bounds.to_frontend_json() if bounds is not None else None,
            "drawPoints": [p.to_frontend_json() for p in self._draw_points],
            "mergeSelection": list(self._merge_selection),
            "pendingAnnotation": self._pending_annotation.to_json() if self._pending_annotation else None,
            "selection": self._selection.to_json() if self._selection else None,
            "canUndo": self._history.can_undo(),
            "canRedo": self._history.can_redo(),
            "canvas": {"width": self.canvas.width, "height": self.canvas.height},
        }

    # ------------------------------------------------------------------
    # Modes and keyboard
    # ------------------------------------------------------------------

    def set_mode(self, mode: EditMode) -> EditResult:
        """Switch mode unconditionally; in-progress input is discarded."""
        self._mode = EditMode(mode)
        self._clear_buffers()
        return self._noop(f"Mode: {self._mode.value}", ok=True)

    def handle_key(self, key: str, ctrl: bool = False, shift: bool = False) -> EditResult:
        key = (key or "").lower()
        if ctrl:
            if key == "z" and shift:
                return self.redo()
            if key == "z":
                return self.undo()
            if key == "y":
                return self.redo()
            return self._noop(f"Unhandled shortcut: Ctrl+{key}")
        if key in ("escape", "esc"):
            return self.set_mode(EditMode.SELECT)
        if key in ("delete", "backspace"):
            return self.delete_selection()
        if key in MODE_SHORTCUTS:
            return self.set_mode(MODE_SHORTCUTS[key])
        return self._noop(f"Unhandled key: {key}")

    # ------------------------------------------------------------------
    # Pointer input
    # ------------------------------------------------------------------

    def click(self, x: float, y: float) -> EditResult:
        pixel = PixelPoint(float(x), float(y))
        mode = self._mode
        if mode is EditMode.SELECT:
            return self._select_at(pixel)
        if mode.feature_type is not None:
            return self._add_line_point(pixel, mode.feature_type)
        if mode is EditMode.ADD_FACET:
            return self._add_facet_point(pixel)
        if mode is EditMode.DELETE:
            return self._delete_at(pixel)
        if mode.annotation_type is not None:
            return self._place_annotation(pixel, mode.annotation_type)
        if mode is EditMode.SPLIT_FACET:
            return self._add_split_point(pixel)
        if mode is EditMode.MERGE_FACETS:
            return self._toggle_merge_selection(pixel)
        return self._noop(f"Unsupported mode {mode.value}")

    def _select_at(self, pixel: PixelPoint) -> EditResult:
        self._selection = self._hit_test(pixel)
        if self._selection is None:
            return self._noop("Nothing selected", ok=True)
        return self._noop(f"Selected {self._selection.kind} {self._selection.id}", ok=True)

    def _add_line_point(self, pixel: PixelPoint, feature_type: FeatureType) -> EditResult:
        point = self._snap(pixel)
        if not self._draw_points:
            self._draw_points.append(point)
            return self._noop(f"{feature_type.value.capitalize()} start placed", ok=True)

        start = self._draw_points[0]
        self._draw_points.clear()
        geo_start = self._to_geo(start)
        geo_end = self._to_geo(point)
        try:
            feature = create_linear_feature(
                start,
                point,
                feature_type,
                self._line_length(start, point, geo_start, geo_end),
                geo_start=geo_start,
                geo_end=geo_end,
            )
        except GeometryInvariantError as exc:
            return self._noop(str(exc))
        updated = self._measurement.evolve(
            linear_features=self._measurement.linear_features.with_added(feature)
        )
        return self._commit(updated, f"Added {feature_type.value} ({feature.length:.1f} ft)")

    def _add_facet_point(self, pixel: PixelPoint) -> EditResult:
        if len(self._draw_points) >= 3:
            first = transform.normalized_to_canvas(self._draw_points[0], self.canvas)
            if first.distance_to(pixel) <= self._settings.close_tolerance_px:
                return self._close_facet()
        self._draw_points.append(self._snap(pixel))
        return self._noop(f"Facet vertex {len(self._draw_points)} placed", ok=True)

    def _close_facet(self) -> EditResult:
        points = list(self._draw_points)
        self._draw_points.clear()
        geo_boundary = self._geo_ring(points)
        try:
            facet = create_facet(
                points,
                self._ring_area(points, geo_boundary),
                color=palette_color(len(self._measurement.facets)),
                geo_boundary=geo_boundary,
            )
        except GeometryInvariantError as exc:
            return self._noop(str(exc))
        updated = self._measurement.evolve(facets=self._measurement.facets + (facet,))
        return self._commit(updated, f"Added facet ({facet.display_label()})")

    def _place_annotation(self, pixel: PixelPoint, annotation_type: AnnotationType) -> EditResult:
        position = transform.canvas_to_normalized(pixel, self.canvas).clamped()
        if annotation_type.requires_text:
            self._pending_annotation = PendingAnnotation(annotation_type, position)
            return self._noop(f"Enter text for the {annotation_type.value}", ok=True)
        annotation = create_annotation(annotation_type, position)
        updated = self._measurement.evolve(annotations=self._measurement.annotations + (annotation,))
        return self._commit(updated, "Added marker")

    def _add_split_point(self, pixel: PixelPoint) -> EditResult:
        point = transform.canvas_to_normalized(pixel, self.canvas)
        if not self._draw_points:
            self._draw_points.append(point)
            return self._noop("Split line start placed", ok=True)
        start = self._draw_points[0]
        self._draw_points.clear()
        return self.split_facet(start, point)

    def _toggle_merge_selection(self, pixel: PixelPoint) -> EditResult:
        hit = self._hit_facet(pixel)
        if hit is None:
            return self._noop("No facet under cursor")
        if hit.id in self._merge_selection:
            self._merge_selection.remove(hit.id)
        else:
            self._merge_selection.append(hit.id)
        return self._noop(f"{len(self._merge_selection)} facet(s) selected for merge", ok=True)

    def _delete_at(self, pixel: PixelPoint) -> EditResult:
        hit = self._hit_test(pixel)
        if hit is None:
            return self._noop("Nothing to delete here")
        return self._delete(hit)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def delete_selection(self) -> EditResult:
        if self._mode is not EditMode.SELECT or self._selection is None:
            return self._noop("Nothing selected")
        return self._delete(self._selection)

    def move_vertex(self, facet_index: int, vertex_index: int, x: float, y: float) -> EditResult:
        """
        Move one facet vertex to a canvas position (drag completion).

        The authoritative area is kept; only the boundary changes.
        """
        if self._mode is not EditMode.SELECT:
            return self._noop("Vertices can only be moved in select mode")
        facets = self._measurement.facets
        if not 0 <= facet_index < len(facets):
            return self._noop(f"No facet at index {facet_index}")
        facet = facets[facet_index]
        if not 0 <= vertex_index < facet.vertex_count:
            return self._noop(f"No vertex at index {vertex_index}")

        moved = transform.canvas_to_normalized(PixelPoint(float(x), float(y)), self.canvas).clamped()
        boundary = list(facet.boundary)
        boundary[vertex_index] = moved
        boundary = polygon_ops.dedupe_vertices(boundary, self._settings.merge_epsilon)
        if len(boundary) < 3 or not polygon_ops.is_simple_ring(boundary):
            return self._noop("Vertex move would make the facet self-intersect")

        try:
            updated_facet = self._rebuild_facet(facet, boundary, facet.area, facet_id=facet.id)
        except GeometryInvariantError as exc:
            return self._noop(str(exc))
        return self._commit(self._replace_facets(facet.id, [updated_facet]), "Moved vertex")

    def split_facet(self, start: NormalizedPoint, end: NormalizedPoint) -> EditResult:
        """Split the facet crossed by the line ``start``-``end`` into two facets."""
        candidates = [
            facet
            for facet in self._measurement.facets
            if len(polygon_ops.line_crossings(facet.boundary, start, end)) == 2
        ]
        if not candidates:
            return self._noop("Split line must intersect facet at exactly 2 points")
        midpoint = NormalizedPoint((start.x + end.x) / 2, (start.y + end.y) / 2)
        facet = next(
            (f for f in candidates if polygon_ops.point_in_polygon(midpoint, f.boundary)),
            candidates[0],
        )

        try:
            part_a, part_b = polygon_ops.split_polygon(facet.boundary, start, end)
        except polygon_ops.PolygonOperationError as exc:
            return self._noop(str(exc))

        try:
            halves = [self._rebuild_facet(facet, part) for part in (part_a, part_b)]
        except GeometryInvariantError as exc:
            return self._noop(str(exc))
        return self._commit(self._replace_facets(facet.id, halves), "Split facet into 2")

    def commit_merge(self) -> EditResult:
        """Merge the facets selected in merge mode into the first selected one."""
        selected = [self._measurement.find_facet(facet_id) for facet_id in self._merge_selection]
        selected = [f for f in selected if f is not None]
        if len(selected) < 2:
            return self._noop("Select at least 2 facets to merge")

        try:
            boundary = polygon_ops.merge_polygons(
                [f.boundary for f in selected], self._settings.merge_epsilon
            )
            merged = self._rebuild_facet(
                selected[0],
                boundary,
                sum(f.area for f in selected),
                facet_id=selected[0].id,
                sources=selected,
            )
        except (polygon_ops.PolygonOperationError, GeometryInvariantError) as exc:
            return self._noop(str(exc))

        removed = {f.id for f in selected[1:]}
        facets = tuple(
            merged if f.id == merged.id else f
            for f in self._measurement.facets
            if f.id not in removed
        )
        self._merge_selection.clear()
        return self._commit(self._measurement.evolve(facets=facets), f"Merged {len(selected)} facets")

    def confirm_annotation(self, text: Optional[str]) -> EditResult:
        pending = self._pending_annotation
        if pending is None:
            return self._noop("No annotation is waiting for text")
        try:
            annotation = create_annotation(pending.annotation_type, pending.position, text)
        except GeometryInvariantError as exc:
            return self._noop(str(exc))
        self._pending_annotation = None
        updated = self._measurement.evolve(annotations=self._measurement.annotations + (annotation,))
        return self._commit(updated, f"Added {annotation.annotation_type.value}")

    def cancel_annotation(self) -> EditResult:
        if self._pending_annotation is None:
            return self._noop("No annotation is waiting for text", ok=True)
        self._pending_annotation = None
        return self._noop("Annotation cancelled", ok=True)

    def reclassify_feature(self, feature_id: str, new_type: FeatureType) -> EditResult:
        feature = self._measurement.linear_features.find(feature_id)
        if feature is None:
            return self._noop(f"Line {feature_id} not found")
        new_type = FeatureType(new_type)
        if feature.feature_type is new_type:
            return self._noop(f"Line is already a {new_type.value}", ok=True)
        features = reclassify_feature(self._measurement.linear_features, feature_id, new_type)
        return self._commit(
            self._measurement.evolve(linear_features=features),
            f"Changed {feature.feature_type.value} to {new_type.value}",
        )

    def simplify_facet(self, facet_id: str, tolerance: float = 0.005) -> EditResult:
        """Drop redundant vertices of a facet; its area is kept."""
        facet = self._measurement.find_facet(facet_id)
        if facet is None:
            return self._noop(f"Facet {facet_id} not found")
        boundary = polygon_ops.simplify_ring(facet.boundary, tolerance)
        if len(boundary) == facet.vertex_count:
            return self._noop("Facet is already as simple as it gets", ok=True)
        try:
            simplified = self._rebuild_facet(facet, boundary, facet.area, facet_id=facet.id)
        except GeometryInvariantError as exc:
            return self._noop(str(exc))
        removed = facet.vertex_count - simplified.vertex_count
        return self._commit(self._replace_facets(facet.id, [simplified]), f"Removed {removed} vertices")

    def reset(self) -> EditResult:
        """Return to the measurement as loaded; undoable like any edit."""
        self._clear_buffers()
        if self._measurement == self._original:
            return self._noop("No changes to reset", ok=True)
        return self._commit(self._original, "Reset to original measurement")

    def undo(self) -> EditResult:
        previous = self._history.undo(self._measurement)
        if previous is None:
            return self._noop("Nothing to undo", ok=True)
        return self._restore(previous, "Undone")

    def redo(self) -> EditResult:
        following = self._history.redo(self._measurement)
        if following is None:
            return self._noop("Nothing to redo", ok=True)
        return self._restore(following, "Redone")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, updated: Measurement, message: str) -> EditResult:
        self._history.record(self._measurement)
        self._measurement = updated
        self._drop_stale_selection()
        self._submit()
        logger.debug("Measurement %s: %s", updated.id, message)
        return EditResult(ok=True, message=message, measurement=updated, changed=True)

    def _restore(self, snapshot: Measurement, message: str) -> EditResult:
        self._measurement = snapshot
        self._clear_buffers()
        self._drop_stale_selection()
        self._submit()
        return EditResult(ok=True, message=message, measurement=snapshot, changed=True)

    def _submit(self) -> None:
        if self._gate is not None:
            self.last_submit = self._gate.submit(self._measurement)

    def _noop(self, message: str, ok: bool = False) -> EditResult:
        return EditResult(ok=ok, message=message, measurement=self._measurement, changed=False)

    def _clear_buffers(self) -> None:
        self._draw_points.clear()
        self._merge_selection.clear()
        self._pending_annotation = None

    def _drop_stale_selection(self) -> None:
        if self._selection is not None and self._find(self._selection) is None:
            self._selection = None

    def _find(self, selection: Selection):
        if selection.kind == "facet":
            return self._measurement.find_facet(selection.id)
        if selection.kind == "line":
            return self._measurement.linear_features.find(selection.id)
        return self._measurement.find_annotation(selection.id)

    def _delete(self, target: Selection) -> EditResult:
        measurement = self._measurement
        if target.kind == "facet":
            updated = measurement.evolve(facets=tuple(f for f in measurement.facets if f.id != target.id))
        elif target.kind == "line":
            updated = measurement.evolve(linear_features=measurement.linear_features.without(target.id))
        else:
            updated = measurement.evolve(
                annotations=tuple(a for a in measurement.annotations if a.id != target.id)
            )
        if updated == measurement:
            return self._noop(f"{target.kind.capitalize()} {target.id} not found")
        return self._commit(updated, f"Deleted {target.kind}")

    def _replace_facets(self, facet_id: str, replacements: Sequence[RoofFacet]) -> Measurement:
        facets: List[RoofFacet] = []
        for facet in self._measurement.facets:
            if facet.id == facet_id:
                facets.extend(replacements)
            else:
                facets.append(facet)
        return self._measurement.evolve(facets=tuple(facets))

    def _rebuild_facet(
        self,
        source: RoofFacet,
        boundary: Sequence[NormalizedPoint],
        area: Optional[float] = None,
        facet_id: Optional[str] = None,
        sources: Sequence[RoofFacet] = (),
    ) -> RoofFacet:
        """
        New geometry with the source facet's non-geometric attributes.

        Vertices shared with ``sources`` (default: the source facet) keep
        their stored geographic coordinates. Without ``area`` the area is
        computed from the new ring.
        """
        boundary = polygon_ops.drop_consecutive_duplicates(boundary)
        geo_boundary = self._geo_ring(boundary, sources or (source,))
        if area is None:
            area = self._ring_area(boundary, geo_boundary)
        label = source.label
        if label and label.endswith(AUTO_LABEL_SUFFIX):
            label = f"{area:.1f}{AUTO_LABEL_SUFFIX}"
        return create_facet(
            boundary,
            area,
            facet_id=facet_id,
            pitch=source.pitch,
            direction=source.direction,
            label=label,
            color=source.color,
            geo_boundary=geo_boundary,
        )

    # Coordinate helpers

    def _to_geo(self, point: NormalizedPoint) -> Optional[GeoCoordinate]:
        reference = self._measurement.reference
        if reference is None:
            return None
        return transform.normalized_to_geo(point, reference.center, reference.zoom, self.canvas)

    def _geo_ring(
        self,
        points: Sequence[NormalizedPoint],
        sources: Sequence[RoofFacet] = (),
    ) -> Tuple[GeoCoordinate, ...]:
        if self._measurement.reference is None:
            return ()
        known: Dict[NormalizedPoint, GeoCoordinate] = {}
        for facet in sources:
            if len(facet.geo_boundary) == facet.vertex_count:
                known.update(zip(facet.boundary, facet.geo_boundary))
        return tuple(known[p] if p in known else self._to_geo(p) for p in points)

    def _ring_area(self, points: Sequence[NormalizedPoint], geo_boundary: Sequence[GeoCoordinate]) -> float:
        if geo_boundary:
            return polygon_ops.geodesic_area_sq_ft(geo_boundary)
        return polygon_ops.shoelace_area(points)

    def _line_length(
        self,
        start: NormalizedPoint,
        end: NormalizedPoint,
        geo_start: Optional[GeoCoordinate],
        geo_end: Optional[GeoCoordinate],
    ) -> float:
        if geo_start is not None and geo_end is not None:
            return transform.haversine_distance(geo_start, geo_end) * transform.FEET_PER_METER
        feet_per_unit = float(self._measurement.metadata.get("feetPerNormalizedUnit") or 1.0)
        return math.hypot(end.x - start.x, end.y - start.y) * feet_per_unit

    def _pixel_ring(self, points: Sequence[NormalizedPoint]) -> List[PixelPoint]:
        return [transform.normalized_to_canvas(p, self.canvas) for p in points]

    def _snap(self, pixel: PixelPoint) -> NormalizedPoint:
        """Snap to a nearby vertex, else onto a nearby facet edge, within the snap tolerance."""
        tolerance = self._settings.snap_tolerance_px
        vertices = [
            transform.normalized_to_canvas(p, self.canvas)
            for facet in self._measurement.facets
            for p in facet.boundary
        ]
        for feature in self._measurement.linear_features.all():
            vertices.append(transform.normalized_to_canvas(feature.start, self.canvas))
            vertices.append(transform.normalized_to_canvas(feature.end, self.canvas))
        nearest = min(vertices, key=pixel.distance_to, default=None)
        if nearest is not None and nearest.distance_to(pixel) <= tolerance:
            snapped = nearest
        else:
            rings = [self._pixel_ring(f.boundary) for f in self._measurement.facets]
            snapped = polygon_ops.snap_to_edge(pixel, rings, tolerance) or pixel
        return transform.canvas_to_normalized(snapped, self.canvas)

    def _hit_facet(self, pixel: PixelPoint) -> Optional[RoofFacet]:
        # Later facets are drawn on top
        for facet in reversed(self._measurement.facets):
            ring = self._pixel_ring(facet.boundary)
            if polygon_ops.point_in_polygon(pixel, ring):
                return facet
            if polygon_ops.distance_to_ring(pixel, ring) <= self._settings.hit_tolerance_px:
                return facet
        return None

    def _hit_test(self, pixel: PixelPoint) -> Optional[Selection]:
        """Annotations first, then lines, then facets."""
        tolerance = self._settings.hit_tolerance_px
        for annotation in reversed(self._measurement.annotations):
            if transform.normalized_to_canvas(annotation.position, self.canvas).distance_to(pixel) <= tolerance:
                return Selection("annotation", annotation.id)
        for feature in reversed(self._measurement.linear_features.all()):
            start = transform.normalized_to_canvas(feature.start, self.canvas)
            end = transform.normalized_to_canvas(feature.end, self.canvas)
            if polygon_ops.project_onto_segment(pixel, start, end)[1] <= tolerance:
                return Selection("line", feature.id)
        facet = self._hit_facet(pixel)
        if facet is not None:
            return Selection("facet", facet.id)
        return None
