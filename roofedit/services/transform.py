"""
Coordinate transform engine.

Maps between geographic coordinates, the normalized unit square and canvas
pixels, and parses the WKT strings the upstream measurement producer emits.

The geo <-> canvas projection is a local equirectangular approximation of
Web Mercator at the image zoom level. It is only meant for building-scale
geometry (tens of meters around the reference point).

Every function here is pure.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Final, Iterable, List, Optional, Sequence, Tuple, TypeVar

from roofedit.domain.geometry import (
    CanvasSize,
    GeoBounds,
    GeoCoordinate,
    NormalizedPoint,
    PixelPoint,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_M: Final[float] = 6371000.0
METERS_PER_DEGREE_LAT: Final[float] = 111320.0
WEB_MERCATOR_METERS_PER_PIXEL: Final[float] = 156543.03392
FEET_PER_METER: Final[float] = 3.28084
DEFAULT_PROXIMITY_M: Final[float] = 50.0
FALLBACK_HALF_SPAN_DEG: Final[float] = 0.001

_POLYGON_RE = re.compile(r"POLYGON\s*\(\(([^)]+)\)\)", re.IGNORECASE)
_LINESTRING_RE = re.compile(r"LINESTRING\s*\(([^)]+)\)", re.IGNORECASE)

T = TypeVar("T")


# ============================================================================
# WKT
# ============================================================================

def _parse_coordinate_list(body: str) -> List[GeoCoordinate]:
    coords: List[GeoCoordinate] = []
    for pair in body.split(','):
        parts = pair.split()
        if len(parts) < 2:
            continue
        try:
            lng, lat = float(parts[0]), float(parts[1])
        except ValueError:
            continue
        if math.isnan(lat) or math.isnan(lng):
            continue
        coords.append(GeoCoordinate(lat=lat, lng=lng))
    return coords


def parse_polygon_wkt(text: Optional[str]) -> List[GeoCoordinate]:
    """
    Parse a WKT ``POLYGON((lng lat, ...))`` into coordinates, in input order.

    Malformed input yields an empty list; upstream data may be partially
    corrupt and must never crash the editor. Unparseable pairs are skipped.
    """
    if not text or not isinstance(text, str):
        return []
    match = _POLYGON_RE.search(text)
    if not match:
        logger.debug("Ignoring malformed polygon WKT: %.60s", text)
        return []
    return _parse_coordinate_list(match.group(1))


def parse_line_wkt(text: Optional[str]) -> List[GeoCoordinate]:
    """Parse a WKT ``LINESTRING(lng lat, ...)``; same contract as ``parse_polygon_wkt``."""
    if not text or not isinstance(text, str):
        return []
    match = _LINESTRING_RE.search(text)
    if not match:
        logger.debug("Ignoring malformed linestring WKT: %.60s", text)
        return []
    return _parse_coordinate_list(match.group(1))


def to_polygon_wkt(coords: Sequence[GeoCoordinate]) -> str:
    """Serialise coordinates back to ``POLYGON((...))``; empty for fewer than 3."""
    if len(coords) < 3:
        return ''
    body = ', '.join(f"{c.lng} {c.lat}" for c in coords)
    return f"POLYGON(({body}))"


def to_line_wkt(coords: Sequence[GeoCoordinate]) -> str:
    """Serialise coordinates back to ``LINESTRING(...)``; empty for fewer than 2."""
    if len(coords) < 2:
        return ''
    body = ', '.join(f"{c.lng} {c.lat}" for c in coords)
    return f"LINESTRING({body})"


# ============================================================================
# Distances and proximity
# ============================================================================

def haversine_distance(a: GeoCoordinate, b: GeoCoordinate) -> float:
    """Great-circle distance between two coordinates, in meters."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.lng - a.lng)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_near(
    coords: Iterable[GeoCoordinate],
    reference: GeoCoordinate,
    threshold_m: float = DEFAULT_PROXIMITY_M,
) -> bool:
    """True when any coordinate of a feature lies within the threshold of the reference."""
    return any(haversine_distance(reference, c) <= threshold_m for c in coords)


def filter_near(
    features: Iterable[T],
    coords_of,
    reference: GeoCoordinate,
    threshold_m: float = DEFAULT_PROXIMITY_M,
) -> List[T]:
    """
    Keep the features that lie near the reference point.

    ``coords_of`` extracts the coordinate sequence of a feature. Features from
    unrelated nearby structures are dropped from both bounds and rendering.
    """
    return [f for f in features if is_near(coords_of(f), reference, threshold_m)]


def compute_geo_bounds(
    reference: GeoCoordinate,
    polygons: Iterable[Sequence[GeoCoordinate]] = (),
    lines: Iterable[Sequence[GeoCoordinate]] = (),
    threshold_m: float = DEFAULT_PROXIMITY_M,
) -> GeoBounds:
    """
    Bounds of the geometry near the reference point.

    Falls back to a fixed +/-0.001 degree square around the reference point
    when nothing lies within ``threshold_m``.
    """
    coords: List[GeoCoordinate] = []
    for feature in list(polygons) + list(lines):
        feature = [c for c in feature if c.is_valid()]
        if feature and is_near(feature, reference, threshold_m):
            coords.extend(feature)
    if not coords:
        return GeoBounds.around(reference, FALLBACK_HALF_SPAN_DEG)
    return GeoBounds.from_coordinates(coords)


# ============================================================================
# Geo <-> canvas
# ============================================================================

def meters_per_pixel(reference_lat: float, zoom: float) -> float:
    """Ground resolution of a Web Mercator tile pixel at the given latitude and zoom."""
    return WEB_MERCATOR_METERS_PER_PIXEL * math.cos(math.radians(reference_lat)) / (2 ** zoom)


def geo_to_canvas(
    coord: GeoCoordinate,
    reference: GeoCoordinate,
    zoom: float,
    canvas: CanvasSize,
) -> PixelPoint:
    """Project a coordinate onto a canvas centred on ``reference``."""
    mpp = meters_per_pixel(reference.lat, zoom)
    mean_lat = math.radians((coord.lat + reference.lat) / 2)
    dy_m = (coord.lat - reference.lat) * METERS_PER_DEGREE_LAT
    dx_m = (coord.lng - reference.lng) * METERS_PER_DEGREE_LAT * math.cos(mean_lat)
    return PixelPoint(
        x=canvas.width / 2 + dx_m / mpp,
        y=canvas.height / 2 - dy_m / mpp,
    )


def canvas_to_geo(
    point: PixelPoint,
    reference: GeoCoordinate,
    zoom: float,
    canvas: CanvasSize,
) -> GeoCoordinate:
    """Inverse of ``geo_to_canvas``."""
    mpp = meters_per_pixel(reference.lat, zoom)
    dy_m = (canvas.height / 2 - point.y) * mpp
    dx_m = (point.x - canvas.width / 2) * mpp
    lat = reference.lat + dy_m / METERS_PER_DEGREE_LAT
    mean_lat = math.radians((lat + reference.lat) / 2)
    lng = reference.lng + dx_m / (METERS_PER_DEGREE_LAT * math.cos(mean_lat))
    return GeoCoordinate(lat=lat, lng=lng)


def normalized_to_canvas(point: NormalizedPoint, canvas: CanvasSize) -> PixelPoint:
    return PixelPoint(x=point.x * canvas.width, y=point.y * canvas.height)


def canvas_to_normalized(point: PixelPoint, canvas: CanvasSize) -> NormalizedPoint:
    return NormalizedPoint(x=point.x / canvas.width, y=point.y / canvas.height)


def normalized_to_geo(
    point: NormalizedPoint,
    reference: GeoCoordinate,
    zoom: float,
    canvas: CanvasSize,
) -> GeoCoordinate:
    return canvas_to_geo(normalized_to_canvas(point, canvas), reference, zoom, canvas)


def geo_to_normalized(
    coord: GeoCoordinate,
    reference: GeoCoordinate,
    zoom: float,
    canvas: CanvasSize,
) -> NormalizedPoint:
    return canvas_to_normalized(geo_to_canvas(coord, reference, zoom, canvas), canvas)


def feet_per_normalized_unit(reference_lat: float, zoom: float, canvas: CanvasSize) -> Tuple[float, float]:
    """Ground feet spanned by one normalized unit along x and y."""
    mpp = meters_per_pixel(reference_lat, zoom)
    return (
        canvas.width * mpp * FEET_PER_METER,
        canvas.height * mpp * FEET_PER_METER,
    )


@dataclass(frozen=True)
class BoundsFitTransformer:
    """
    Fit geographic bounds into a canvas, preserving aspect ratio.

    Used by schematic views that draw the geometry without the satellite
    image; y grows downwards on the canvas.
    """

    bounds: GeoBounds
    canvas: CanvasSize
    padding: float = 0.1

    @property
    def _lat_range(self) -> float:
        return max(self.bounds.max_lat - self.bounds.min_lat, 1e-12) * (1 + self.padding)

    @property
    def _lng_range(self) -> float:
        return max(self.bounds.max_lng - self.bounds.min_lng, 1e-12) * (1 + self.padding)

    @property
    def _padded_min_lat(self) -> float:
        return self.bounds.min_lat - (self.bounds.max_lat - self.bounds.min_lat) * self.padding / 2

    @property
    def _padded_min_lng(self) -> float:
        return self.bounds.min_lng - (self.bounds.max_lng - self.bounds.min_lng) * self.padding / 2

    @property
    def scale(self) -> float:
        return min(self.canvas.width / self._lng_range, self.canvas.height / self._lat_range)

    @property
    def offset(self) -> PixelPoint:
        return PixelPoint(
            x=(self.canvas.width - self._lng_range * self.scale) / 2,
            y=(self.canvas.height - self._lat_range * self.scale) / 2,
        )

    def to_canvas(self, coord: GeoCoordinate) -> PixelPoint:
        offset = self.offset
        return PixelPoint(
            x=offset.x + (coord.lng - self._padded_min_lng) * self.scale,
            y=offset.y + (self._padded_min_lat + self._lat_range - coord.lat) * self.scale,
        )

    def to_geo(self, point: PixelPoint) -> GeoCoordinate:
        offset = self.offset
        return GeoCoordinate(
            lat=self._padded_min_lat + self._lat_range - (point.y - offset.y) / self.scale,
            lng=self._padded_min_lng + (point.x - offset.x) / self.scale,
        )
