"""
Polygon algorithms used by the edit engine.

Points are any objects with ``x``/``y`` attributes (``NormalizedPoint`` or
``PixelPoint``); helpers that build new points keep the input type.
Geodesic area uses GeographicLib on the WGS84 ellipsoid; simplicity checks,
Douglas-Peucker simplification and the merge fallback use Shapely.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

from geographiclib.geodesic import Geodesic
from shapely.geometry import LinearRing
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.ops import unary_union

from roofedit.domain.geometry import GeoCoordinate

logger = logging.getLogger(__name__)

P = TypeVar("P")

SQ_FEET_PER_SQ_METER = 10.7639104
_EPS = 1e-12


class PolygonOperationError(ValueError):
    """Raised when a split or merge cannot produce valid polygons."""


# ============================================================================
# Measures
# ============================================================================

def signed_area(points: Sequence[P]) -> float:
    """Shoelace signed area; positive for counter-clockwise rings in x-right/y-up axes."""
    total = 0.0
    n = len(points)
    for i in range(n):
        j = (i + 1) % n
        total += points[i].x * points[j].y - points[j].x * points[i].y
    return total / 2.0


def shoelace_area(points: Sequence[P]) -> float:
    if len(points) < 3:
        return 0.0
    return abs(signed_area(points))


def perimeter(points: Sequence[P]) -> float:
    if len(points) < 2:
        return 0.0
    n = len(points)
    return sum(
        math.hypot(points[(i + 1) % n].x - points[i].x, points[(i + 1) % n].y - points[i].y)
        for i in range(n)
    )


def geodesic_area_sq_ft(coords: Sequence[GeoCoordinate]) -> float:
    """True ellipsoidal area of a geographic ring, in square feet."""
    if len(coords) < 3:
        return 0.0
    polygon = Geodesic.WGS84.Polygon()
    for coord in coords:
        polygon.AddPoint(coord.lat, coord.lng)
    _, _, area_m2 = polygon.Compute(False, True)
    return abs(area_m2) * SQ_FEET_PER_SQ_METER


def centroid(points: Sequence[P]) -> Tuple[float, float]:
    """Vertex centroid, used for label placement and hit ordering."""
    n = len(points)
    return (sum(p.x for p in points) / n, sum(p.y for p in points) / n)


# ============================================================================
# Proximity and snapping
# ============================================================================

def project_onto_segment(point: P, start: P, end: P) -> Tuple[P, float]:
    """Closest point to ``point`` on segment ``start``-``end`` and its distance."""
    dx = end.x - start.x
    dy = end.y - start.y
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return start, math.hypot(point.x - start.x, point.y - start.y)
    t = ((point.x - start.x) * dx + (point.y - start.y) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    projected = type(point)(start.x + t * dx, start.y + t * dy)
    return projected, math.hypot(point.x - projected.x, point.y - projected.y)


def nearest_edge(point: P, ring: Sequence[P], tolerance: float) -> Optional[Tuple[int, P, float]]:
    """
    Closest edge of a closed ring within ``tolerance``.

    Returns ``(edge_index, projected_point, distance)``; edge ``i`` runs from
    vertex ``i`` to vertex ``i + 1`` (wrapping).
    """
    best: Optional[Tuple[int, P, float]] = None
    n = len(ring)
    for i in range(n):
        start, end = ring[i], ring[(i + 1) % n]
        if start.x == end.x and start.y == end.y:
            continue
        projected, distance = project_onto_segment(point, start, end)
        if distance <= tolerance and (best is None or distance < best[2]):
            best = (i, projected, distance)
    return best


def snap_to_edge(point: P, rings: Sequence[Sequence[P]], tolerance: float) -> Optional[P]:
    """Snap a point onto the nearest edge among ``rings`` if one lies within ``tolerance``."""
    best: Optional[Tuple[int, P, float]] = None
    for ring in rings:
        candidate = nearest_edge(point, ring, tolerance)
        if candidate is not None and (best is None or candidate[2] < best[2]):
            best = candidate
    return best[1] if best else None


def point_in_polygon(point: P, ring: Sequence[P]) -> bool:
    """Even-odd ray casting test."""
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i].x, ring[i].y
        xj, yj = ring[j].x, ring[j].y
        if (yi > point.y) != (yj > point.y):
            x_cross = (xj - xi) * (point.y - yi) / (yj - yi) + xi
            if point.x < x_cross:
                inside = not inside
        j = i
    return inside


def distance_to_ring(point: P, ring: Sequence[P]) -> float:
    n = len(ring)
    return min(project_onto_segment(point, ring[i], ring[(i + 1) % n])[1] for i in range(n))


# ============================================================================
# Ring cleanup and validity
# ============================================================================

def _close(a: P, b: P, epsilon: float) -> bool:
    return abs(a.x - b.x) <= epsilon and abs(a.y - b.y) <= epsilon


def dedupe_vertices(points: Sequence[P], epsilon: float) -> List[P]:
    """Drop vertices within ``epsilon`` of an already kept vertex (including ring closure)."""
    kept: List[P] = []
    for point in points:
        if any(_close(point, other, epsilon) for other in kept):
            continue
        kept.append(point)
    return kept


def drop_consecutive_duplicates(points: Sequence[P], epsilon: float = 1e-9) -> List[P]:
    """Remove repeated consecutive vertices and an explicit closing vertex."""
    result: List[P] = []
    for point in points:
        if result and _close(result[-1], point, epsilon):
            continue
        result.append(point)
    while len(result) > 1 and _close(result[0], result[-1], epsilon):
        result.pop()
    return result


def _turn_angle(prev: P, curr: P, nxt: P) -> float:
    v1 = (curr.x - prev.x, curr.y - prev.y)
    v2 = (nxt.x - curr.x, nxt.y - curr.y)
    dot = v1[0] * v2[0] + v1[1] * v2[1]
    cross = v1[0] * v2[1] - v1[1] * v2[0]
    return abs(math.degrees(math.atan2(cross, dot)))


def is_collinear(prev: P, curr: P, nxt: P, angle_tolerance: float = 0.5) -> bool:
    """True when ``curr`` lies on the straight path from ``prev`` to ``nxt``."""
    return _turn_angle(prev, curr, nxt) <= angle_tolerance


def remove_collinear_points(points: Sequence[P], angle_tolerance: float = 5.0) -> List[P]:
    """Remove vertices that sit on a straight line between their neighbours."""
    if len(points) < 4:
        return list(points)
    n = len(points)
    result = [
        points[i]
        for i in range(n)
        if not is_collinear(points[i - 1], points[i], points[(i + 1) % n], angle_tolerance)
    ]
    # Keep at least a triangle
    return result if len(result) >= 3 else list(points)


def is_simple_ring(points: Sequence[P]) -> bool:
    """A ring is simple when it has >= 3 distinct vertices, non-zero area and no self-crossings."""
    ring = drop_consecutive_duplicates(points)
    if len(ring) < 3 or shoelace_area(ring) <= _EPS:
        return False
    return LinearRing([(p.x, p.y) for p in ring]).is_simple


def simplify_ring(points: Sequence[P], tolerance: float, angle_tolerance: float = 5.0) -> List[P]:
    """Douglas-Peucker simplification followed by collinear point removal."""
    if len(points) < 4:
        return list(points)
    factory = type(points[0])
    shape = ShapelyPolygon([(p.x, p.y) for p in points]).simplify(tolerance, preserve_topology=True)
    if shape.is_empty or not isinstance(shape, ShapelyPolygon):
        return list(points)
    simplified = [factory(x, y) for x, y in list(shape.exterior.coords)[:-1]]
    if len(simplified) < 3:
        return list(points)
    return remove_collinear_points(simplified, angle_tolerance)


# ============================================================================
# Split
# ============================================================================

def segment_intersection(p1: P, p2: P, q1: P, q2: P) -> Optional[Tuple[float, float]]:
    """
    Intersection parameters of segments ``p1p2`` and ``q1q2``.

    Returns ``(t, u)`` such that the crossing is ``p1 + t (p2 - p1)`` and
    ``q1 + u (q2 - q1)``, or None for parallel / non-touching segments.
    """
    rx, ry = p2.x - p1.x, p2.y - p1.y
    sx, sy = q2.x - q1.x, q2.y - q1.y
    denom = rx * sy - ry * sx
    if abs(denom) < _EPS:
        return None
    qpx, qpy = q1.x - p1.x, q1.y - p1.y
    t = (qpx * sy - qpy * sx) / denom
    u = (qpx * ry - qpy * rx) / denom
    tol = 1e-9
    if -tol <= t <= 1 + tol and -tol <= u <= 1 + tol:
        return max(0.0, min(1.0, t)), max(0.0, min(1.0, u))
    return None


@dataclass(frozen=True)
class _Crossing:
    edge: int
    t: float
    point: object

    @property
    def at_vertex(self) -> bool:
        return self.t <= 1e-9 or self.t >= 1 - 1e-9


def line_crossings(ring: Sequence[P], start: P, end: P, epsilon: float = 1e-9) -> List[_Crossing]:
    """Distinct points where segment ``start``-``end`` meets the ring boundary."""
    factory = type(ring[0])
    n = len(ring)
    crossings: List[_Crossing] = []
    for i in range(n):
        a, b = ring[i], ring[(i + 1) % n]
        hit = segment_intersection(a, b, start, end)
        if hit is None:
            continue
        t, _ = hit
        point = factory(a.x + t * (b.x - a.x), a.y + t * (b.y - a.y))
        # A crossing through a vertex is reported by both adjacent edges
        if any(_close(point, c.point, epsilon) for c in crossings):
            continue
        if t >= 1 - 1e-9:
            crossings.append(_Crossing(edge=(i + 1) % n, t=0.0, point=ring[(i + 1) % n]))
        elif t <= 1e-9:
            crossings.append(_Crossing(edge=i, t=0.0, point=a))
        else:
            crossings.append(_Crossing(edge=i, t=t, point=point))
    return crossings


def split_polygon(ring: Sequence[P], start: P, end: P) -> Tuple[List[P], List[P]]:
    """
    Split a simple ring along the segment ``start``-``end``.

    The segment must meet the boundary at exactly two points and the chord
    between them must run through the interior. Both halves keep the
    orientation of the input ring.
    """
    crossings = line_crossings(ring, start, end)
    if len(crossings) != 2:
        raise PolygonOperationError("Split line must intersect facet at exactly 2 points")

    augmented: List[P] = []
    marks: List[int] = []
    by_edge: Dict[int, List[_Crossing]] = {}
    for crossing in crossings:
        by_edge.setdefault(crossing.edge, []).append(crossing)

    for i, vertex in enumerate(ring):
        augmented.append(vertex)
        for crossing in sorted(by_edge.get(i, []), key=lambda c: c.t):
            if crossing.at_vertex:
                marks.append(len(augmented) - 1)
            else:
                augmented.append(crossing.point)
                marks.append(len(augmented) - 1)

    first, second = sorted(marks)
    part_a = augmented[first:second + 1]
    part_b = augmented[second:] + augmented[:first + 1]
    if len(part_a) < 3 or len(part_b) < 3:
        raise PolygonOperationError("Split line must cross the facet interior")

    chord_a, chord_b = augmented[first], augmented[second]
    factory = type(ring[0])
    midpoint = factory((chord_a.x + chord_b.x) / 2, (chord_a.y + chord_b.y) / 2)
    if not point_in_polygon(midpoint, ring):
        raise PolygonOperationError("Split line must cross the facet interior")

    if not (is_simple_ring(part_a) and is_simple_ring(part_b)):
        raise PolygonOperationError("Split would produce a degenerate facet")
    return part_a, part_b


# ============================================================================
# Merge
# ============================================================================

def _oriented(points: Sequence[P], counter_clockwise: bool) -> List[P]:
    ring = list(points)
    if (signed_area(ring) > 0) != counter_clockwise:
        ring.reverse()
    return ring


def _stitch(rings: Sequence[Sequence[P]], epsilon: float) -> Optional[List[P]]:
    """
    Union of rings that share whole edges, by cancelling opposite edges.

    With every ring oriented the same way, an edge shared by two rings
    appears once in each direction. Dropping those pairs leaves the outer
    boundary, which must form a single cycle. Returns None when it does not
    (rings only touch, overlap partially, or enclose a hole).
    """
    canonical: List[P] = []
    edges: List[Tuple[int, int]] = []

    def index_of(point: P) -> int:
        for i, other in enumerate(canonical):
            if _close(point, other, epsilon):
                return i
        canonical.append(point)
        return len(canonical) - 1

    for ring in rings:
        oriented = _oriented(ring, counter_clockwise=True)
        indices = [index_of(p) for p in oriented]
        for i in range(len(indices)):
            a, b = indices[i], indices[(i + 1) % len(indices)]
            if a != b:
                edges.append((a, b))

    remaining = list(edges)
    seams = set()
    for edge in edges:
        reverse = (edge[1], edge[0])
        if edge in remaining and reverse in remaining:
            remaining.remove(edge)
            remaining.remove(reverse)
            seams.update(edge)

    if not remaining:
        return None
    outgoing: Dict[int, int] = {}
    for a, b in remaining:
        if a in outgoing:
            return None
        outgoing[a] = b

    start = remaining[0][0]
    cycle = [start]
    current = outgoing.get(start)
    while current is not None and current != start:
        if len(cycle) > len(remaining):
            return None
        cycle.append(current)
        current = outgoing.get(current)
    if current is None or len(cycle) != len(remaining):
        return None

    points = [canonical[i] for i in cycle]
    # Seam endpoints that ended up on a straight run are no longer corners
    n = len(points)
    keep = [
        points[k]
        for k in range(n)
        if not (cycle[k] in seams and is_collinear(points[k - 1], points[k], points[(k + 1) % n]))
    ]
    return keep if len(keep) >= 3 else None


def _union_fallback(rings: Sequence[Sequence[P]], epsilon: float) -> Optional[List[P]]:
    factory = type(rings[0][0])
    try:
        merged = unary_union([ShapelyPolygon([(p.x, p.y) for p in ring]).buffer(0) for ring in rings])
    except (ValueError, TypeError) as exc:
        logger.warning("Shapely union failed during merge: %s", exc)
        return None
    if not isinstance(merged, ShapelyPolygon) or merged.is_empty or merged.interiors:
        return None
    points = [factory(x, y) for x, y in list(merged.exterior.coords)[:-1]]
    return remove_collinear_points(dedupe_vertices(points, epsilon), angle_tolerance=0.5)


def merge_polygons(rings: Sequence[Sequence[P]], epsilon: float = 0.001) -> List[P]:
    """
    Merge adjacent rings into one simple ring.

    Near-duplicate vertices (within ``epsilon``) are collapsed. The result
    keeps the orientation of the first ring.
    """
    if len(rings) < 2:
        raise PolygonOperationError("Select at least 2 facets to merge")

    merged = _stitch(rings, epsilon)
    if merged is None or not is_simple_ring(merged):
        merged = _union_fallback(rings, epsilon)
    if merged is None or not is_simple_ring(merged):
        raise PolygonOperationError("Selected facets must be adjacent to merge")

    merged = dedupe_vertices(merged, epsilon)
    return _oriented(merged, counter_clockwise=signed_area(rings[0]) > 0)
