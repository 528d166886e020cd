"""
Domain models for roof measurements.

This module provides the immutable aggregate (``Measurement``) and its parts
(facets, linear features, annotations) together with their storage and
frontend JSON conversions. Mutations never happen in place: every edit
builds a new ``Measurement`` through ``dataclasses.replace`` so previous
snapshots stay valid for undo/redo and for an in-flight save.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from roofedit.domain.geometry import CanvasSize, GeoBounds, GeoCoordinate, NormalizedPoint


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class FeatureType(str, Enum):
    """Linear roof feature types."""

    RIDGE = "ridge"
    HIP = "hip"
    VALLEY = "valley"


class AnnotationType(str, Enum):
    """Point annotation types."""

    MARKER = "marker"
    NOTE = "note"
    DAMAGE = "damage"

    @property
    def requires_text(self) -> bool:
        return self is not AnnotationType.MARKER


@dataclass(frozen=True)
class GeoReference:
    """
    Geo-anchoring of the satellite image the measurement is drawn on.

    ``center`` is the reference point the image is centred on; ``zoom`` is the
    Web Mercator zoom level the image was fetched at.
    """

    center: GeoCoordinate
    zoom: float = 20.0
    image_size: Optional[CanvasSize] = None

    def to_storage_json(self) -> Dict[str, Any]:
        result = {
            'centerLat': self.center.lat,
            'centerLng': self.center.lng,
            'zoom': self.zoom,
        }
        if self.image_size is not None:
            result['imageWidth'] = self.image_size.width
            result['imageHeight'] = self.image_size.height
        return result

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any]) -> 'GeoReference':
        image_size = None
        if data.get('imageWidth') and data.get('imageHeight'):
            image_size = CanvasSize(int(data['imageWidth']), int(data['imageHeight']))
        return cls(
            center=GeoCoordinate(float(data['centerLat']), float(data['centerLng'])),
            zoom=float(data.get('zoom', 20.0)),
            image_size=image_size,
        )


@dataclass(frozen=True)
class RoofFacet:
    """
    One pitched plane of the roof.

    ``area`` is the authoritative value reported by the upstream measurement
    engine (square feet). Vertex edits update ``boundary`` only; the area is
    recomputed solely for facets created, split or merged in the editor.
    """

    id: str
    boundary: Tuple[NormalizedPoint, ...]
    area: float
    pitch: float = 0.0
    direction: Optional[str] = None
    label: Optional[str] = None
    color: Optional[str] = None
    geo_boundary: Tuple[GeoCoordinate, ...] = ()

    @property
    def vertex_count(self) -> int:
        return len(self.boundary)

    @property
    def is_geo_anchored(self) -> bool:
        return len(self.geo_boundary) >= 3

    @property
    def wkt(self) -> str:
        """WKT ``POLYGON`` of the geo boundary, empty when not geo-anchored."""
        from roofedit.services.transform import to_polygon_wkt

        return to_polygon_wkt(self.geo_boundary)

    def display_label(self) -> str:
        return f"{self.area:.1f} sq ft"

    def to_storage_json(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'boundary': [p.to_storage_json() for p in self.boundary],
            'area': self.area,
            'pitch': self.pitch,
            'direction': self.direction,
            'label': self.label,
            'color': self.color,
        }
        if self.geo_boundary:
            result['geoBoundary'] = [c.to_storage_json() for c in self.geo_boundary]
            result['wkt'] = self.wkt
        return result

    def to_frontend_json(self) -> Dict[str, Any]:
        result = self.to_storage_json()
        result['displayLabel'] = self.label or self.display_label()
        return result

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any]) -> 'RoofFacet':
        return cls(
            id=data.get('id') or new_id('facet'),
            boundary=tuple(NormalizedPoint.from_storage_json(p) for p in data.get('boundary', [])),
            area=float(data.get('area', 0.0) or 0.0),
            pitch=float(data.get('pitch', 0.0) or 0.0),
            direction=data.get('direction'),
            label=data.get('label'),
            color=data.get('color'),
            geo_boundary=tuple(
                GeoCoordinate.from_storage_json(c) for c in data.get('geoBoundary', [])
            ),
        )


@dataclass(frozen=True)
class LinearFeature:
    """A ridge, hip or valley line with its length in feet."""

    id: str
    feature_type: FeatureType
    start: NormalizedPoint
    end: NormalizedPoint
    length: float
    geo_start: Optional[GeoCoordinate] = None
    geo_end: Optional[GeoCoordinate] = None

    @property
    def is_geo_anchored(self) -> bool:
        return self.geo_start is not None and self.geo_end is not None

    @property
    def wkt(self) -> str:
        """WKT ``LINESTRING`` of the geo endpoints, empty when not geo-anchored."""
        from roofedit.services.transform import to_line_wkt

        if not self.is_geo_anchored:
            return ''
        return to_line_wkt((self.geo_start, self.geo_end))

    def to_storage_json(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'type': self.feature_type.value,
            'start': self.start.to_storage_json(),
            'end': self.end.to_storage_json(),
            'length': self.length,
        }
        if self.is_geo_anchored:
            result['wkt'] = self.wkt
            result['geoStart'] = self.geo_start.to_storage_json()
            result['geoEnd'] = self.geo_end.to_storage_json()
        return result

    def to_frontend_json(self) -> Dict[str, Any]:
        return self.to_storage_json()

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any], feature_type: Optional[FeatureType] = None) -> 'LinearFeature':
        geo_start = data.get('geoStart')
        geo_end = data.get('geoEnd')
        return cls(
            id=data.get('id') or new_id('line'),
            feature_type=feature_type or FeatureType(data.get('type', 'ridge')),
            start=NormalizedPoint.from_storage_json(data['start']),
            end=NormalizedPoint.from_storage_json(data['end']),
            length=float(data.get('length', 0.0) or 0.0),
            geo_start=GeoCoordinate.from_storage_json(geo_start) if geo_start else None,
            geo_end=GeoCoordinate.from_storage_json(geo_end) if geo_end else None,
        )


@dataclass(frozen=True)
class LinearFeatureSet:
    """
    Linear features partitioned by type, with per-type aggregate lengths.

    The aggregate totals are stored rather than derived so that totals reported
    by the upstream producer can be checked for consistency by the validator.
    ``LinearFeatureSet.of`` always recomputes them.
    """

    ridges: Tuple[LinearFeature, ...] = ()
    hips: Tuple[LinearFeature, ...] = ()
    valleys: Tuple[LinearFeature, ...] = ()
    ridge_total: float = 0.0
    hip_total: float = 0.0
    valley_total: float = 0.0

    @classmethod
    def of(cls, features: Iterable[LinearFeature]) -> 'LinearFeatureSet':
        """Partition features by type and recompute every aggregate."""
        buckets: Dict[FeatureType, List[LinearFeature]] = {t: [] for t in FeatureType}
        for feature in features:
            buckets[feature.feature_type].append(feature)
        return cls(
            ridges=tuple(buckets[FeatureType.RIDGE]),
            hips=tuple(buckets[FeatureType.HIP]),
            valleys=tuple(buckets[FeatureType.VALLEY]),
            ridge_total=sum(f.length for f in buckets[FeatureType.RIDGE]),
            hip_total=sum(f.length for f in buckets[FeatureType.HIP]),
            valley_total=sum(f.length for f in buckets[FeatureType.VALLEY]),
        )

    def by_type(self, feature_type: FeatureType) -> Tuple[LinearFeature, ...]:
        return {
            FeatureType.RIDGE: self.ridges,
            FeatureType.HIP: self.hips,
            FeatureType.VALLEY: self.valleys,
        }[FeatureType(feature_type)]

    def total_length(self, feature_type: FeatureType) -> float:
        return {
            FeatureType.RIDGE: self.ridge_total,
            FeatureType.HIP: self.hip_total,
            FeatureType.VALLEY: self.valley_total,
        }[FeatureType(feature_type)]

    def all(self) -> Tuple[LinearFeature, ...]:
        return self.ridges + self.hips + self.valleys

    def find(self, feature_id: str) -> Optional[LinearFeature]:
        for feature in self.all():
            if feature.id == feature_id:
                return feature
        return None

    def with_added(self, feature: LinearFeature) -> 'LinearFeatureSet':
        return LinearFeatureSet.of(self.all() + (feature,))

    def without(self, feature_id: str) -> 'LinearFeatureSet':
        return LinearFeatureSet.of(f for f in self.all() if f.id != feature_id)

    def __len__(self) -> int:
        return len(self.ridges) + len(self.hips) + len(self.valleys)

    def to_storage_json(self) -> Dict[str, Any]:
        return {
            'ridge': [f.to_storage_json() for f in self.ridges],
            'hip': [f.to_storage_json() for f in self.hips],
            'valley': [f.to_storage_json() for f in self.valleys],
            'totals': {
                'ridge': self.ridge_total,
                'hip': self.hip_total,
                'valley': self.valley_total,
            },
        }

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any]) -> 'LinearFeatureSet':
        """
        Load a feature set, keeping the stored totals as reported.

        Missing totals are recomputed from the features.
        """
        features = {
            t: tuple(LinearFeature.from_storage_json(f, t) for f in data.get(t.value, []))
            for t in FeatureType
        }
        totals = data.get('totals') or {}
        computed = cls.of(f for group in features.values() for f in group)
        return cls(
            ridges=features[FeatureType.RIDGE],
            hips=features[FeatureType.HIP],
            valleys=features[FeatureType.VALLEY],
            ridge_total=float(totals.get('ridge', computed.ridge_total)),
            hip_total=float(totals.get('hip', computed.hip_total)),
            valley_total=float(totals.get('valley', computed.valley_total)),
        )


@dataclass(frozen=True)
class Annotation:
    """A point annotation placed on the roof (marker, note or damage)."""

    id: str
    annotation_type: AnnotationType
    position: NormalizedPoint
    text: Optional[str] = None

    def to_storage_json(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.annotation_type.value,
            'normalizedPosition': self.position.to_storage_json(),
            'text': self.text,
        }

    def to_frontend_json(self) -> Dict[str, Any]:
        return self.to_storage_json()

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any]) -> 'Annotation':
        return cls(
            id=data.get('id') or new_id('annotation'),
            annotation_type=AnnotationType(data.get('type', 'marker')),
            position=NormalizedPoint.from_storage_json(data['normalizedPosition']),
            text=data.get('text'),
        )


@dataclass(frozen=True)
class RoofTypeDetection:
    roof_type: str
    confidence: float
    complexity: int


def classify_roof(facet_count: int, ridge_count: int, hip_count: int, valley_count: int) -> RoofTypeDetection:
    """Heuristic roof-type classification from facet and line counts."""
    complexity = min(5, round(1 + facet_count * 0.2 + valley_count * 0.3 + hip_count * 0.1))

    if facet_count <= 2 and ridge_count == 0 and hip_count == 0:
        return RoofTypeDetection('Flat', 0.9, complexity)
    if 2 <= facet_count <= 4 and ridge_count >= 1 and hip_count <= 1:
        return RoofTypeDetection('Gable', 0.85, complexity)
    if facet_count >= 4 and hip_count >= 2 and ridge_count >= 1:
        return RoofTypeDetection('Dutch Hip', 0.75, complexity)
    if facet_count >= 4 and hip_count >= 2:
        return RoofTypeDetection('Hip', 0.8, complexity)
    if facet_count >= 6 and ridge_count >= 2:
        return RoofTypeDetection('Gambrel', 0.7, complexity)
    return RoofTypeDetection('Complex', 0.6, complexity)


@dataclass(frozen=True)
class MeasurementSummary:
    """Aggregate numbers reported alongside the geometry."""

    total_area: float
    facet_count: int
    ridge_length: float
    hip_length: float
    valley_length: float
    predominant_pitch: float
    annotation_count: int
    roof_type: RoofTypeDetection

    @property
    def total_linear_length(self) -> float:
        return self.ridge_length + self.hip_length + self.valley_length

    def to_storage_json(self) -> Dict[str, Any]:
        return {
            'totalArea': self.total_area,
            'facetCount': self.facet_count,
            'ridgeLength': self.ridge_length,
            'hipLength': self.hip_length,
            'valleyLength': self.valley_length,
            'totalLinearLength': self.total_linear_length,
            'predominantPitch': self.predominant_pitch,
            'annotationCount': self.annotation_count,
            'roofType': self.roof_type.roof_type,
            'roofTypeConfidence': self.roof_type.confidence,
            'complexity': self.roof_type.complexity,
        }


@dataclass(frozen=True)
class Measurement:
    """Aggregate root: everything the editor can change about one roof."""

    id: str
    facets: Tuple[RoofFacet, ...] = ()
    linear_features: LinearFeatureSet = field(default_factory=LinearFeatureSet)
    boundary: Tuple[NormalizedPoint, ...] = ()
    annotations: Tuple[Annotation, ...] = ()
    reference: Optional[GeoReference] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_geo_anchored(self) -> bool:
        return self.reference is not None

    @property
    def summary(self) -> MeasurementSummary:
        """Derived summary; recomputed from the current geometry on every access."""
        pitches = Counter(f.pitch for f in self.facets if f.pitch)
        predominant_pitch = pitches.most_common(1)[0][0] if pitches else 0.0
        features = self.linear_features
        return MeasurementSummary(
            total_area=sum(f.area for f in self.facets),
            facet_count=len(self.facets),
            ridge_length=features.ridge_total,
            hip_length=features.hip_total,
            valley_length=features.valley_total,
            predominant_pitch=predominant_pitch,
            annotation_count=len(self.annotations),
            roof_type=classify_roof(
                len(self.facets),
                len(features.ridges),
                len(features.hips),
                len(features.valleys),
            ),
        )

    def evolve(self, **changes: Any) -> 'Measurement':
        """Return a new snapshot with the given fields replaced."""
        return replace(self, **changes)

    def geo_bounds(self, threshold_m: float = 50.0) -> Optional[GeoBounds]:
        """Bounds of the geo-anchored geometry near the reference point; None without a reference."""
        if self.reference is None:
            return None
        from roofedit.services.transform import compute_geo_bounds

        return compute_geo_bounds(
            self.reference.center,
            polygons=[f.geo_boundary for f in self.facets if f.is_geo_anchored],
            lines=[(f.geo_start, f.geo_end) for f in self.linear_features.all() if f.is_geo_anchored],
            threshold_m=threshold_m,
        )

    def find_facet(self, facet_id: str) -> Optional[RoofFacet]:
        for facet in self.facets:
            if facet.id == facet_id:
                return facet
        return None

    def find_annotation(self, annotation_id: str) -> Optional[Annotation]:
        for annotation in self.annotations:
            if annotation.id == annotation_id:
                return annotation
        return None

    def to_storage_json(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'facets': [f.to_storage_json() for f in self.facets],
            'linearFeatures': self.linear_features.to_storage_json(),
            'boundary': [p.to_storage_json() for p in self.boundary],
            'annotations': [a.to_storage_json() for a in self.annotations],
            'metadata': dict(self.metadata),
            'summary': self.summary.to_storage_json(),
        }
        if self.reference is not None:
            result['reference'] = self.reference.to_storage_json()
        return result

    def to_frontend_json(self) -> Dict[str, Any]:
        result = self.to_storage_json()
        result['facets'] = [f.to_frontend_json() for f in self.facets]
        return result

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any]) -> 'Measurement':
        reference = data.get('reference')
        return cls(
            id=str(data.get('id') or new_id('measurement')),
            facets=tuple(RoofFacet.from_storage_json(f) for f in data.get('facets', [])),
            linear_features=LinearFeatureSet.from_storage_json(data.get('linearFeatures') or {}),
            boundary=tuple(NormalizedPoint.from_storage_json(p) for p in data.get('boundary', [])),
            annotations=tuple(Annotation.from_storage_json(a) for a in data.get('annotations', [])),
            reference=GeoReference.from_storage_json(reference) if reference else None,
            metadata=dict(data.get('metadata') or {}),
        )
