"""GeoGuard — geometric predicates used as release gates.

Pure functions and immutable value types, no I/O. Two fence shapes:

    PolygonFence  ordered vertex list (>= 3), ray-casting containment
    CircleFence   center + radius in meters, haversine containment

Points are (lat, lng) in degrees. The predicates are total over their
contract: callers guarantee vertex counts and coordinate ranges (see
GeoPoint.validate, used at the creation/request boundary). Containment of a
point exactly on a polygon edge is undefined and may resolve either way.
Polygons are assumed not to self-intersect.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate in degrees."""

    lat: float
    lng: float

    def validate(self) -> None:
        """Raise ValueError if the coordinate is out of range or not finite."""
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            raise ValueError("coordinates must be finite numbers")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude {self.lat} outside [-90, 90]")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"longitude {self.lng} outside [-180, 180]")

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


def haversine_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def within_radius(point: GeoPoint, center: GeoPoint, radius_m: float) -> bool:
    """True if ``point`` lies within ``radius_m`` meters of ``center``."""
    return haversine_distance_m(point, center) <= radius_m


def point_in_polygon(point: GeoPoint, vertices: Sequence[GeoPoint]) -> bool:
    """Ray-casting containment test over an ordered vertex list."""
    x, y = point.lat, point.lng
    inside = False
    j = len(vertices) - 1
    for i in range(len(vertices)):
        xi, yi = vertices[i].lat, vertices[i].lng
        xj, yj = vertices[j].lat, vertices[j].lng
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def polygon_centroid(vertices: Sequence[GeoPoint]) -> GeoPoint:
    """Arithmetic mean of the vertices. Good enough for reporting distances."""
    n = len(vertices)
    return GeoPoint(
        lat=sum(v.lat for v in vertices) / n,
        lng=sum(v.lng for v in vertices) / n,
    )


@dataclass(frozen=True)
class GeofenceCheck:
    """Outcome of evaluating one point against one fence."""

    inside: bool
    point: GeoPoint
    measurements: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CircleFence:
    center: GeoPoint
    radius_m: float

    kind = "circle"

    def validate(self) -> None:
        self.center.validate()
        if not (math.isfinite(self.radius_m) and self.radius_m > 0):
            raise ValueError("radius_m must be a positive number")

    def contains(self, point: GeoPoint) -> bool:
        return within_radius(point, self.center, self.radius_m)

    def check(self, point: GeoPoint) -> GeofenceCheck:
        distance = haversine_distance_m(point, self.center)
        return GeofenceCheck(
            inside=distance <= self.radius_m,
            point=point,
            measurements={
                "fence": self.kind,
                "required_radius_m": self.radius_m,
                "your_distance_m": round(distance),
                "location": point.to_dict(),
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "center": self.center.to_dict(), "radius_m": self.radius_m}


@dataclass(frozen=True)
class PolygonFence:
    vertices: tuple[GeoPoint, ...]

    kind = "polygon"

    def validate(self) -> None:
        if len(self.vertices) < 3:
            raise ValueError("a polygon geofence needs at least 3 vertices")
        for vertex in self.vertices:
            vertex.validate()

    def contains(self, point: GeoPoint) -> bool:
        return point_in_polygon(point, self.vertices)

    def check(self, point: GeoPoint) -> GeofenceCheck:
        inside = point_in_polygon(point, self.vertices)
        centroid = polygon_centroid(self.vertices)
        return GeofenceCheck(
            inside=inside,
            point=point,
            measurements={
                "fence": self.kind,
                "distance_to_centroid_m": round(haversine_distance_m(point, centroid)),
                "location": point.to_dict(),
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "vertices": [v.to_dict() for v in self.vertices]}


Geofence = CircleFence | PolygonFence
