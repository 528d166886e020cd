"""
Value types shared by the measurement model and the transform engine.

Three coordinate spaces are in play:

- geographic (``GeoCoordinate``, WGS84 degrees),
- normalized (``NormalizedPoint``, the unit square the upstream measurement
  producer emits for the legacy, non geo-anchored representation),
- canvas pixels (``PixelPoint``) of the editor surface.

All types are frozen so that measurement snapshots can be shared between
the edit session, the history stacks and the persistence gate without
defensive copying on every read.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Union


@dataclass(frozen=True)
class GeoCoordinate:
    """A WGS84 latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float

    def is_valid(self) -> bool:
        """Check latitude/longitude ranges."""
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and abs(self.lat) <= 90
            and abs(self.lng) <= 180
        )

    def to_storage_json(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng}

    def to_frontend_json(self) -> List[float]:
        """Frontend consumers expect ``[lat, lng]`` tuples."""
        return [self.lat, self.lng]

    @classmethod
    def from_storage_json(cls, data: Union[Dict[str, Any], Sequence[float]]) -> 'GeoCoordinate':
        """Create GeoCoordinate from ``{lat, lng}`` or a ``[lat, lng]`` pair."""
        if isinstance(data, dict):
            return cls(lat=float(data['lat']), lng=float(data['lng']))
        return cls(lat=float(data[0]), lng=float(data[1]))


@dataclass(frozen=True)
class NormalizedPoint:
    """A point in the 0-1 unit square."""

    x: float
    y: float

    def in_unit_square(self) -> bool:
        return 0.0 <= self.x <= 1.0 and 0.0 <= self.y <= 1.0

    def clamped(self) -> 'NormalizedPoint':
        """Return a copy clamped into the unit square."""
        return NormalizedPoint(
            x=min(1.0, max(0.0, self.x)),
            y=min(1.0, max(0.0, self.y)),
        )

    def distance_to(self, other: 'NormalizedPoint') -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def to_storage_json(self) -> List[float]:
        return [self.x, self.y]

    def to_frontend_json(self) -> List[float]:
        return [self.x, self.y]

    @classmethod
    def from_storage_json(cls, data: Union[Dict[str, Any], Sequence[float]]) -> 'NormalizedPoint':
        """Create NormalizedPoint from ``[x, y]`` or ``{x, y}``."""
        if isinstance(data, dict):
            return cls(x=float(data['x']), y=float(data['y']))
        return cls(x=float(data[0]), y=float(data[1]))


@dataclass(frozen=True)
class PixelPoint:
    """A point on the editor canvas, in pixels."""

    x: float
    y: float

    def distance_to(self, other: 'PixelPoint') -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class CanvasSize:
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Canvas size must be positive, got {self.width}x{self.height}")


@dataclass(frozen=True)
class GeoBounds:
    """Geographic bounding box of the measurement geometry."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float
    center_lat: float
    center_lng: float

    @classmethod
    def around(cls, reference: GeoCoordinate, half_span: float = 0.001) -> 'GeoBounds':
        """Fixed square around a reference point, used when there is no geometry."""
        return cls(
            min_lat=reference.lat - half_span,
            max_lat=reference.lat + half_span,
            min_lng=reference.lng - half_span,
            max_lng=reference.lng + half_span,
            center_lat=reference.lat,
            center_lng=reference.lng,
        )

    @classmethod
    def from_coordinates(cls, coords: Iterable[GeoCoordinate]) -> 'GeoBounds':
        coords = list(coords)
        if not coords:
            raise ValueError("Cannot compute bounds of an empty coordinate set")
        min_lat = min(c.lat for c in coords)
        max_lat = max(c.lat for c in coords)
        min_lng = min(c.lng for c in coords)
        max_lng = max(c.lng for c in coords)
        return cls(
            min_lat=min_lat,
            max_lat=max_lat,
            min_lng=min_lng,
            max_lng=max_lng,
            center_lat=(min_lat + max_lat) / 2,
            center_lng=(min_lng + max_lng) / 2,
        )

    def contains(self, coord: GeoCoordinate) -> bool:
        return (
            self.min_lat <= coord.lat <= self.max_lat
            and self.min_lng <= coord.lng <= self.max_lng
        )

    def to_frontend_json(self) -> Dict[str, float]:
        return {
            'minLat': self.min_lat,
            'maxLat': self.max_lat,
            'minLng': self.min_lng,
            'maxLng': self.max_lng,
            'centerLat': self.center_lat,
            'centerLng': self.center_lng,
        }
