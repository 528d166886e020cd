from __future__ import annotations

import math
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from flask import current_app

from roofedit.domain.geometry import CanvasSize, GeoBounds, GeoCoordinate, NormalizedPoint
from roofedit.domain.measurement import (
    Annotation,
    FeatureType,
    GeoReference,
    LinearFeature,
    LinearFeatureSet,
    Measurement,
    RoofFacet,
    new_id,
)
from roofedit.services import polygon_ops, transform
from roofedit.storage import LocalFileStorage, LocalMeasurementStore, MeasurementStoreError, SaveOutcome
from roofedit.storage.protocols import MeasurementStore, save_snapshot


class MeasurementError(Exception):
    """Base exception raised for measurement management issues."""


class MeasurementNotFoundError(MeasurementError):
    """Raised when a measurement is not found."""


def parse_pitch(value: Any) -> float:
    """Accept ``6``, ``"6"`` or ``"6/12"`` and return the rise per 12."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, str) and "/" in value:
        value = value.split("/", 1)[0]
    try:
        pitch = float(value)
    except (TypeError, ValueError):
        return 0.0
    return pitch if math.isfinite(pitch) else 0.0


def _point_pair(value: Any) -> Optional[NormalizedPoint]:
    try:
        return NormalizedPoint.from_storage_json(value)
    except (KeyError, IndexError, TypeError, ValueError):
        return None


def reproject_measurement(measurement: Measurement, previous: CanvasSize, canvas: CanvasSize) -> Measurement:
    """
    Re-derive the normalized geometry of a geo-anchored measurement for a new canvas.

    Facets and lines with geographic coordinates are projected from them.
    Everything else (the perimeter, annotations, facets without a matching
    geo ring) keeps the ground position it had on the ``previous`` canvas.
    """
    reference = measurement.reference
    if reference is None or previous == canvas:
        return measurement

    def project(coord: GeoCoordinate) -> NormalizedPoint:
        return transform.geo_to_normalized(coord, reference.center, reference.zoom, canvas)

    def carry(point: NormalizedPoint) -> NormalizedPoint:
        return project(transform.normalized_to_geo(point, reference.center, reference.zoom, previous))

    facets = []
    for facet in measurement.facets:
        if len(facet.geo_boundary) == facet.vertex_count:
            boundary = tuple(project(c) for c in facet.geo_boundary)
        else:
            boundary = tuple(carry(p) for p in facet.boundary)
        facets.append(replace(facet, boundary=boundary))

    def move_line(feature: LinearFeature) -> LinearFeature:
        if feature.is_geo_anchored:
            return replace(feature, start=project(feature.geo_start), end=project(feature.geo_end))
        return replace(feature, start=carry(feature.start), end=carry(feature.end))

    # Lengths do not change, so the stored totals stay as they are
    lines = measurement.linear_features
    lines = replace(
        lines,
        ridges=tuple(move_line(f) for f in lines.ridges),
        hips=tuple(move_line(f) for f in lines.hips),
        valleys=tuple(move_line(f) for f in lines.valleys),
    )

    return measurement.evolve(
        facets=tuple(facets),
        linear_features=lines,
        boundary=tuple(carry(p) for p in measurement.boundary),
        annotations=tuple(replace(a, position=carry(a.position)) for a in measurement.annotations),
    )


class UpstreamImporter:
    """
    Converts the measurement JSON produced by the roof detection pipeline.

    Facets come from ``faces[]`` (normalized ``boundary`` or geographic
    ``wkt``), lines from ``tags.ridge_lines``/``hip_lines``/``valley_lines``,
    reported line totals from ``tags["lf.ridge"]`` etc. Geographic geometry
    further than the proximity threshold from the reference point belongs
    to a neighbouring structure and is dropped. Degenerate facets and lines
    are skipped; every skip is reported in ``warnings``.
    """

    def __init__(self, canvas: CanvasSize, proximity_threshold_m: float = transform.DEFAULT_PROXIMITY_M) -> None:
        self._canvas = canvas
        self._threshold = proximity_threshold_m
        self.warnings: List[str] = []

    def convert(self, payload: Dict[str, Any]) -> Measurement:
        self.warnings = []
        reference = self._reference(payload)
        tags = payload.get("tags") or {}

        facets = []
        for index, face in enumerate(payload.get("faces") or []):
            facet = self._facet(index, face, reference)
            if facet is not None:
                facets.append(facet)

        features = []
        for feature_type in FeatureType:
            for index, line in enumerate(tags.get(f"{feature_type.value}_lines") or []):
                feature = self._line(feature_type, index, line, reference)
                if feature is not None:
                    features.append(feature)

        boundary = self._perimeter(payload, tags, reference)
        annotations = tuple(self._annotations(payload))

        metadata = dict(payload.get("metadata") or {})
        reported = {
            t.value: float(tags[f"lf.{t.value}"])
            for t in FeatureType
            if isinstance(tags.get(f"lf.{t.value}"), (int, float))
        }
        if reported:
            metadata["reportedTotals"] = reported
        if self.warnings:
            metadata["importWarnings"] = list(self.warnings)

        return Measurement(
            id=str(payload.get("id") or new_id("measurement")),
            facets=tuple(facets),
            linear_features=LinearFeatureSet.of(features),
            boundary=boundary,
            annotations=annotations,
            reference=reference,
            metadata=metadata,
        )

    def _reference(self, payload: Dict[str, Any]) -> Optional[GeoReference]:
        if payload.get("reference"):
            return GeoReference.from_storage_json(payload["reference"])
        center = payload.get("center") or {}
        lat = center.get("lat", payload.get("center_lat"))
        lng = center.get("lng", payload.get("center_lng"))
        if lat is None or lng is None:
            return None
        coordinate = GeoCoordinate(float(lat), float(lng))
        if not coordinate.is_valid():
            self.warnings.append(f"Ignoring invalid reference point {lat}, {lng}")
            return None
        width, height = payload.get("image_width"), payload.get("image_height")
        return GeoReference(
            center=coordinate,
            zoom=float(payload.get("zoom") or 20.0),
            image_size=CanvasSize(int(width), int(height)) if width and height else None,
        )

    def _canvas_for(self, reference: GeoReference) -> CanvasSize:
        return reference.image_size or self._canvas

    def _to_normalized(self, coords: Sequence[GeoCoordinate], reference: GeoReference) -> List[NormalizedPoint]:
        canvas = self._canvas_for(reference)
        return [transform.geo_to_normalized(c, reference.center, reference.zoom, canvas) for c in coords]

    def _facet(self, index: int, face: Dict[str, Any], reference: Optional[GeoReference]) -> Optional[RoofFacet]:
        geo_boundary: List[GeoCoordinate] = []
        if face.get("wkt") and reference is not None:
            geo_boundary = [c for c in transform.parse_polygon_wkt(face["wkt"]) if c.is_valid()]
            if len(geo_boundary) > 1 and geo_boundary[0] == geo_boundary[-1]:
                geo_boundary = geo_boundary[:-1]
            if geo_boundary and not transform.is_near(geo_boundary, reference.center, self._threshold):
                self.warnings.append(f"Face {index} lies away from the reference point and was dropped")
                return None

        if face.get("boundary"):
            points = [p for p in (_point_pair(v) for v in face["boundary"]) if p is not None]
        elif geo_boundary:
            points = self._to_normalized(geo_boundary, reference)
        else:
            points = []
        points = polygon_ops.drop_consecutive_duplicates(points)
        if len(points) < 3:
            self.warnings.append(f"Face {index} has fewer than 3 vertices and was skipped")
            return None

        area = face.get("area", face.get("area_sqft"))
        if area is None:
            area = (
                polygon_ops.geodesic_area_sq_ft(geo_boundary)
                if len(geo_boundary) >= 3
                else polygon_ops.shoelace_area(points)
            )
        return RoofFacet(
            id=str(face.get("id") or new_id("facet")),
            boundary=tuple(points),
            area=float(area),
            pitch=parse_pitch(face.get("pitch")),
            direction=face.get("direction"),
            label=face.get("label"),
            color=face.get("color"),
            geo_boundary=tuple(geo_boundary) if len(geo_boundary) >= 3 else (),
        )

    def _line(
        self,
        feature_type: FeatureType,
        index: int,
        line: Any,
        reference: Optional[GeoReference],
    ) -> Optional[LinearFeature]:
        name = f"{feature_type.value.capitalize()} {index}"
        geo_start = geo_end = None
        if isinstance(line, dict):
            start, end = _point_pair(line.get("start")), _point_pair(line.get("end"))
            length = line.get("length", line.get("length_ft"))
            if line.get("wkt") and reference is not None:
                coords = [c for c in transform.parse_line_wkt(line["wkt"]) if c.is_valid()]
                if len(coords) >= 2:
                    if not transform.is_near(coords, reference.center, self._threshold):
                        self.warnings.append(f"{name} lies away from the reference point and was dropped")
                        return None
                    geo_start, geo_end = coords[0], coords[-1]
                    if start is None or end is None:
                        start, end = self._to_normalized((geo_start, geo_end), reference)
        elif isinstance(line, (list, tuple)) and len(line) >= 2:
            start, end = _point_pair(line[0]), _point_pair(line[1])
            length = None
        else:
            start = end = length = None

        if start is None or end is None or start == end:
            self.warnings.append(f"{name} is degenerate and was skipped")
            return None
        if length is None:
            if geo_start is not None:
                length = transform.haversine_distance(geo_start, geo_end) * transform.FEET_PER_METER
            else:
                length = start.distance_to(end)
        return LinearFeature(
            id=str((line.get("id") if isinstance(line, dict) else None) or new_id(feature_type.value)),
            feature_type=feature_type,
            start=start,
            end=end,
            length=max(0.0, float(length)),
            geo_start=geo_start,
            geo_end=geo_end,
        )

    def _perimeter(
        self,
        payload: Dict[str, Any],
        tags: Dict[str, Any],
        reference: Optional[GeoReference],
    ) -> Tuple[NormalizedPoint, ...]:
        if payload.get("boundary"):
            return tuple(p for p in (_point_pair(v) for v in payload["boundary"]) if p is not None)
        perimeter_wkt = payload.get("perimeter_wkt") or tags.get("perimeter_wkt")
        if perimeter_wkt and reference is not None:
            coords = [c for c in transform.parse_polygon_wkt(perimeter_wkt) if c.is_valid()]
            return tuple(self._to_normalized(coords, reference))
        return ()

    def _annotations(self, payload: Dict[str, Any]) -> List[Annotation]:
        annotations = []
        for index, data in enumerate(payload.get("annotations") or []):
            try:
                annotations.append(Annotation.from_storage_json(data))
            except (KeyError, IndexError, TypeError, ValueError):
                self.warnings.append(f"Annotation {index} is malformed and was skipped")
        return annotations


class MeasurementService:
    """Load, import, list and save measurements through the configured store."""

    def __init__(
        self,
        store: MeasurementStore,
        canvas: CanvasSize = CanvasSize(640, 480),
        proximity_threshold_m: float = transform.DEFAULT_PROXIMITY_M,
    ) -> None:
        self._store = store
        self._canvas = canvas
        self._proximity_threshold_m = proximity_threshold_m

    @classmethod
    def from_app_config(cls) -> "MeasurementService":
        """Create MeasurementService from Flask app configuration."""
        config = current_app.config
        return cls(
            store=cls._build_store(),
            canvas=CanvasSize(int(config["CANVAS_WIDTH"]), int(config["CANVAS_HEIGHT"])),
            proximity_threshold_m=float(config["PROXIMITY_THRESHOLD_M"]),
        )

    @staticmethod
    def _build_store() -> MeasurementStore:
        backend = current_app.config.get("MEASUREMENT_STORE", "sql")
        if backend == "local":
            measurement_dir = Path(current_app.config["MEASUREMENT_DIR"])
            if not measurement_dir.is_absolute():
                measurement_dir = Path(current_app.instance_path) / measurement_dir
            return LocalMeasurementStore(LocalFileStorage(measurement_dir))
        if backend == "sql":
            from roofedit.storage.sql import SqlMeasurementStore

            return SqlMeasurementStore()
        raise MeasurementError(f"Unknown measurement store backend: {backend}")

    @property
    def store(self) -> MeasurementStore:
        return self._store

    def import_measurement(self, payload: Dict[str, Any]) -> Tuple[Measurement, SaveOutcome]:
        """
        Create a measurement from either the stored JSON shape (``facets``)
        or the upstream pipeline shape (``faces``/``tags``) and save it.
        """
        if not isinstance(payload, dict):
            raise MeasurementError("Measurement payload must be a JSON object.")
        try:
            if "facets" in payload:
                measurement = Measurement.from_storage_json(payload)
            else:
                importer = UpstreamImporter(self._canvas, self._proximity_threshold_m)
                measurement = importer.convert(payload)
                for warning in importer.warnings:
                    current_app.logger.warning(f"Import: {warning}")
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MeasurementError(f"Malformed measurement payload: {exc}") from exc

        outcome = self._save(measurement)
        current_app.logger.info(
            f"Imported measurement {measurement.id} with {len(measurement.facets)} facets "
            f"and {len(measurement.linear_features)} lines"
        )
        return measurement, outcome

    def load(self, measurement_id: str) -> Measurement:
        try:
            measurement = self._store.load(measurement_id)
        except MeasurementStoreError as exc:
            raise MeasurementError(str(exc)) from exc
        if measurement is None:
            raise MeasurementNotFoundError(f"Measurement {measurement_id} not found.")
        return measurement

    def list_measurements(self) -> List[Dict[str, Any]]:
        try:
            return self._store.list_summaries()
        except MeasurementStoreError as exc:
            raise MeasurementError(str(exc)) from exc

    def save_now(self, measurement_id: str, payload: Dict[str, Any]) -> Tuple[Measurement, SaveOutcome]:
        """Replace the stored measurement with ``payload`` immediately."""
        if not isinstance(payload, dict):
            raise MeasurementError("Measurement payload must be a JSON object.")
        try:
            measurement = Measurement.from_storage_json({**payload, "id": measurement_id})
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MeasurementError(f"Malformed measurement payload: {exc}") from exc
        return measurement, self._save(measurement)

    def attach_image(self, measurement_id: str, width: int, height: int) -> Measurement:
        """Record the satellite raster size the measurement is drawn on."""
        measurement = self.load(measurement_id)
        if measurement.reference is not None:
            canvas = CanvasSize(width, height)
            previous = measurement.reference.image_size or self._canvas
            measurement = reproject_measurement(measurement, previous, canvas)
            reference = GeoReference(
                center=measurement.reference.center,
                zoom=measurement.reference.zoom,
                image_size=canvas,
            )
            measurement = measurement.evolve(reference=reference)
            current_app.logger.info(
                f"Re-projected measurement {measurement_id} from "
                f"{previous.width}x{previous.height} to {width}x{height}"
            )
        else:
            metadata = {**measurement.metadata, "imageWidth": width, "imageHeight": height}
            measurement = measurement.evolve(metadata=metadata)
        self._save(measurement)
        return measurement

    def geo_bounds(self, measurement: Measurement) -> Optional[GeoBounds]:
        """Bounds of the geometry near the reference point; None without a reference."""
        return measurement.geo_bounds(self._proximity_threshold_m)

    def schematic(self, measurement: Measurement, canvas: CanvasSize) -> Dict[str, Any]:
        """Facets and lines fitted to ``canvas`` from their geographic coordinates."""
        bounds = self.geo_bounds(measurement)
        if bounds is None:
            raise MeasurementError("Measurement has no geo reference.")
        fit = transform.BoundsFitTransformer(bounds, canvas)

        def pixels(coords) -> List[List[float]]:
            return [[p.x, p.y] for p in (fit.to_canvas(c) for c in coords)]

        return {
            "bounds": bounds.to_frontend_json(),
            "facets": [
                {"id": f.id, "points": pixels(f.geo_boundary), "label": f.display_label()}
                for f in measurement.facets
                if f.is_geo_anchored
            ],
            "lines": [
                {"id": f.id, "type": f.feature_type.value, "points": pixels((f.geo_start, f.geo_end))}
                for f in measurement.linear_features.all()
                if f.is_geo_anchored
            ],
        }

    def _save(self, measurement: Measurement) -> SaveOutcome:
        try:
            return save_snapshot(self._store, measurement)
        except MeasurementStoreError as exc:
            current_app.logger.error(f"Error saving measurement {measurement.id}: {exc}", exc_info=True)
            raise MeasurementError(f"Failed to save measurement: {exc}") from exc
