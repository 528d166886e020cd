"""
Invariant-checked constructors for measurement parts.

The dataclasses in ``roofedit.domain.measurement`` accept anything so that
upstream data can always be loaded and inspected; geometry created or
changed by the editor goes through these factories instead.
"""

from __future__ import annotations

from typing import Optional, Sequence

from roofedit.domain.geometry import GeoCoordinate, NormalizedPoint
from roofedit.domain.measurement import (
    Annotation,
    AnnotationType,
    FeatureType,
    LinearFeature,
    LinearFeatureSet,
    RoofFacet,
    new_id,
)
from roofedit.services.polygon_ops import drop_consecutive_duplicates, is_simple_ring

FACET_PALETTE = (
    '#3b82f6',
    '#10b981',
    '#f59e0b',
    '#ef4444',
    '#8b5cf6',
    '#ec4899',
    '#06b6d4',
    '#f97316',
)


class GeometryInvariantError(ValueError):
    """Raised when geometry would violate a model invariant."""


def palette_color(index: int) -> str:
    return FACET_PALETTE[index % len(FACET_PALETTE)]


def create_facet(
    points: Sequence[NormalizedPoint],
    area: float,
    *,
    facet_id: Optional[str] = None,
    pitch: float = 0.0,
    direction: Optional[str] = None,
    label: Optional[str] = None,
    color: Optional[str] = None,
    geo_boundary: Sequence[GeoCoordinate] = (),
) -> RoofFacet:
    """
    Build a facet from a ring of normalized points.

    An explicit closing vertex (first point repeated) is dropped. Raises
    ``GeometryInvariantError`` for fewer than 3 distinct vertices or a
    self-intersecting ring.
    """
    ring = drop_consecutive_duplicates(points)
    if len(ring) < 3:
        raise GeometryInvariantError(f"A facet needs at least 3 vertices, got {len(ring)}")
    if not is_simple_ring(ring):
        raise GeometryInvariantError("Facet boundary must be a simple polygon")
    if area < 0:
        raise GeometryInvariantError("Facet area cannot be negative")
    return RoofFacet(
        id=facet_id or new_id('facet'),
        boundary=tuple(ring),
        area=area,
        pitch=pitch,
        direction=direction,
        label=label,
        color=color,
        geo_boundary=tuple(geo_boundary),
    )


def create_linear_feature(
    start: NormalizedPoint,
    end: NormalizedPoint,
    feature_type: FeatureType,
    length: float,
    *,
    feature_id: Optional[str] = None,
    geo_start: Optional[GeoCoordinate] = None,
    geo_end: Optional[GeoCoordinate] = None,
) -> LinearFeature:
    if start == end or length <= 0:
        raise GeometryInvariantError("A line needs two distinct endpoints")
    return LinearFeature(
        id=feature_id or new_id(FeatureType(feature_type).value),
        feature_type=FeatureType(feature_type),
        start=start,
        end=end,
        length=length,
        geo_start=geo_start,
        geo_end=geo_end,
    )


def create_annotation(
    annotation_type: AnnotationType,
    position: NormalizedPoint,
    text: Optional[str] = None,
) -> Annotation:
    annotation_type = AnnotationType(annotation_type)
    text = text.strip() if text else None
    if annotation_type.requires_text and not text:
        raise GeometryInvariantError(f"A {annotation_type.value} annotation requires text")
    return Annotation(
        id=new_id('annotation'),
        annotation_type=annotation_type,
        position=position,
        text=text,
    )


def reclassify_feature(
    features: LinearFeatureSet,
    feature_id: str,
    new_type: FeatureType,
) -> LinearFeatureSet:
    """Move a feature to another type partition; both aggregates are recomputed."""
    feature = features.find(feature_id)
    if feature is None:
        raise GeometryInvariantError(f"Linear feature {feature_id} not found")
    moved = LinearFeature(
        id=feature.id,
        feature_type=FeatureType(new_type),
        start=feature.start,
        end=feature.end,
        length=feature.length,
        geo_start=feature.geo_start,
        geo_end=feature.geo_end,
    )
    return LinearFeatureSet.of(moved if f.id == feature_id else f for f in features.all())
