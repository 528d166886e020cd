"""
Measurement validation run by the persistence gate before every save.

Structural problems (degenerate or self-intersecting facets, non-positive
areas, negative lengths, inconsistent linear totals, annotations missing
required text) are errors. Shape metrics that are merely suspicious
(aspect ratio, compactness, very short edges) are warnings and lower the
reported confidence.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from roofedit.domain.geometry import GeoCoordinate, NormalizedPoint
from roofedit.domain.measurement import FeatureType, Measurement, RoofFacet
from roofedit.services.polygon_ops import is_simple_ring, perimeter, shoelace_area
from roofedit.services.transform import FEET_PER_METER, haversine_distance

TOTAL_TOLERANCE_FT = 0.01
SHORT_EDGE_FT = 1.0
MIN_ASPECT_RATIO = 0.2
MAX_ASPECT_RATIO = 5.0
MIN_COMPACTNESS = 0.3


@dataclass(frozen=True)
class ValidationReport:
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    confidence: float = 1.0

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_json(self) -> Dict[str, Any]:
        return {
            'isValid': self.is_valid,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'confidence': round(self.confidence, 3),
        }


@dataclass
class _Findings:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: float = 1.0

    def warn(self, message: str, penalty: float) -> None:
        self.warnings.append(message)
        self.confidence *= penalty

    def report(self) -> ValidationReport:
        return ValidationReport(tuple(self.errors), tuple(self.warnings), self.confidence)


def compactness(area: float, perimeter_length: float) -> float:
    """Isoperimetric quotient 4*pi*A/P^2; 1 for a circle, towards 0 for slivers."""
    if perimeter_length <= 0:
        return 0.0
    return 4 * math.pi * area / (perimeter_length ** 2)


def aspect_ratio(points: Sequence[NormalizedPoint]) -> float:
    """Bounding-box width/height of a normalized ring."""
    xs = [p.x for p in points]
    ys = [p.y for p in points]
    height = max(ys) - min(ys)
    if height == 0:
        return 1.0
    return (max(xs) - min(xs)) / height


def geo_aspect_ratio(coords: Sequence[GeoCoordinate]) -> float:
    min_lat = min(c.lat for c in coords)
    max_lat = max(c.lat for c in coords)
    min_lng = min(c.lng for c in coords)
    max_lng = max(c.lng for c in coords)
    height = haversine_distance(GeoCoordinate(min_lat, min_lng), GeoCoordinate(max_lat, min_lng))
    width = haversine_distance(GeoCoordinate(min_lat, min_lng), GeoCoordinate(min_lat, max_lng))
    if height == 0:
        return 1.0
    return width / height


def short_edge_count(coords: Sequence[GeoCoordinate], threshold_ft: float = SHORT_EDGE_FT) -> int:
    n = len(coords)
    return sum(
        1
        for i in range(n)
        if haversine_distance(coords[i], coords[(i + 1) % n]) * FEET_PER_METER < threshold_ft
    )


class MeasurementValidator:
    """Checks a measurement snapshot before it is persisted."""

    def validate(self, measurement: Measurement) -> ValidationReport:
        findings = _Findings()
        seen_ids = set()
        for index, facet in enumerate(measurement.facets):
            if facet.id in seen_ids:
                findings.errors.append(f"Duplicate facet id {facet.id}")
            seen_ids.add(facet.id)
            self._check_facet(index, facet, findings)
        self._check_linear_features(measurement, findings)
        self._check_annotations(measurement, findings)
        return findings.report()

    def _check_facet(self, index: int, facet: RoofFacet, findings: _Findings) -> None:
        name = f"Facet {index + 1}"
        if facet.vertex_count < 3:
            findings.errors.append(f"{name} must have at least 3 vertices")
            return
        if not is_simple_ring(facet.boundary):
            findings.errors.append(f"{name} appears to self-intersect")
            findings.confidence *= 0.5
        if facet.area <= 0:
            findings.errors.append(f"{name} has a non-positive area")
        if any(not p.in_unit_square() for p in facet.boundary):
            findings.warn(f"{name} extends outside the image", 0.95)

        if facet.is_geo_anchored:
            ratio = geo_aspect_ratio(facet.geo_boundary)
            short_edges = short_edge_count(facet.geo_boundary)
            if short_edges:
                findings.warn(
                    f"{name}: {short_edges} very short edge(s) detected (<1 ft)",
                    max(0.8, 1 - short_edges * 0.05),
                )
        else:
            ratio = aspect_ratio(facet.boundary)
        if ratio < MIN_ASPECT_RATIO or ratio > MAX_ASPECT_RATIO:
            findings.warn(f"{name}: unusual aspect ratio {ratio:.2f}", 0.85)

        quotient = compactness(shoelace_area(facet.boundary), perimeter(facet.boundary))
        if quotient < MIN_COMPACTNESS:
            findings.warn(f"{name}: low compactness {quotient:.2f} - shape may be irregular", 0.9)

    @staticmethod
    def _check_linear_features(measurement: Measurement, findings: _Findings) -> None:
        features = measurement.linear_features
        for feature in features.all():
            if feature.length < 0:
                findings.errors.append(f"Line {feature.id} has a negative length")
        for feature_type in FeatureType:
            computed = sum(f.length for f in features.by_type(feature_type))
            reported = features.total_length(feature_type)
            if abs(computed - reported) > TOTAL_TOLERANCE_FT:
                findings.errors.append(
                    f"{feature_type.value.capitalize()} total {reported:.2f} ft does not match "
                    f"the sum of its lines ({computed:.2f} ft)"
                )

    @staticmethod
    def _check_annotations(measurement: Measurement, findings: _Findings) -> None:
        for annotation in measurement.annotations:
            if annotation.annotation_type.requires_text and not annotation.text:
                findings.errors.append(
                    f"{annotation.annotation_type.value.capitalize()} annotation {annotation.id} has no text"
                )
