"""
Domain models package.

This package contains the roof measurement model and its value types.
"""

from roofedit.domain.geometry import (
    CanvasSize,
    GeoBounds,
    GeoCoordinate,
    NormalizedPoint,
    PixelPoint,
)
from roofedit.domain.measurement import (
    Annotation,
    AnnotationType,
    FeatureType,
    GeoReference,
    LinearFeature,
    LinearFeatureSet,
    Measurement,
    MeasurementSummary,
    RoofFacet,
)

__all__ = [
    'Annotation',
    'AnnotationType',
    'CanvasSize',
    'FeatureType',
    'GeoBounds',
    'GeoCoordinate',
    'GeoReference',
    'LinearFeature',
    'LinearFeatureSet',
    'Measurement',
    'MeasurementSummary',
    'NormalizedPoint',
    'PixelPoint',
    'RoofFacet',
]
