"""Common geometric helpers shared by the rasterizer and toolpath code."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

Vec3 = Tuple[float, float, float]

# zero-area threshold on the magnitude of the unnormalised face normal
epsilon = 1e-12


def to_vec3(point_like: Sequence[float]) -> Vec3:
    """Return the XYZ components of a point-like sequence as a tuple."""

    if len(point_like) < 3:
        raise ValueError("value must have at least three components")
    return float(point_like[0]), float(point_like[1]), float(point_like[2])


def add(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return a[0] + b[0], a[1] + b[1], a[2] + b[2]


def sub(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return a[0] - b[0], a[1] - b[1], a[2] - b[2]


def scale(a: Sequence[float], s: float) -> Vec3:
    return a[0] * s, a[1] * s, a[2] * s


def cross(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return (a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0])


def triangle_normal_z(v0: Vec3, v1: Vec3, v2: Vec3) -> float:
    """Return the z component of ``(v1 - v0) x (v2 - v0)``.

    Only the sign matters to callers: positive for faces wound
    counter-clockwise when seen from above, negative for faces seen from
    below, zero for vertical or degenerate faces.
    """

    return ((v1[0] - v0[0]) * (v2[1] - v0[1])
            - (v1[1] - v0[1]) * (v2[0] - v0[0]))


def triangle_area(v0: Vec3, v1: Vec3, v2: Vec3) -> float:
    """Return the area of a triangle."""

    n = cross(sub(v1, v0), sub(v2, v0))
    return 0.5 * math.sqrt(n[0] * n[0] + n[1] * n[1] + n[2] * n[2])


def triangle_is_degenerate(v0: Vec3, v1: Vec3, v2: Vec3, tol: float = epsilon) -> bool:
    """Return ``True`` if a triangle collapses under the given tolerance."""

    return triangle_area(v0, v1, v2) <= tol


@dataclass(frozen=True)
class Triangle:
    """Immutable triangle with its precomputed signed ``normal_z``."""

    v0: Vec3
    v1: Vec3
    v2: Vec3
    normal_z: float

    @classmethod
    def from_vertices(cls, v0: Sequence[float], v1: Sequence[float],
                      v2: Sequence[float]) -> "Triangle":
        a, b, c = to_vec3(v0), to_vec3(v1), to_vec3(v2)
        return cls(a, b, c, triangle_normal_z(a, b, c))

    @property
    def vertices(self) -> Tuple[Vec3, Vec3, Vec3]:
        return self.v0, self.v1, self.v2

    @property
    def is_degenerate(self) -> bool:
        return triangle_is_degenerate(self.v0, self.v1, self.v2)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box given by its minimum and maximum corners."""

    min: Vec3
    max: Vec3

    @classmethod
    def empty(cls) -> "BoundingBox":
        return cls((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))

    @property
    def width(self) -> float:
        """Extent along X."""
        return self.max[0] - self.min[0]

    @property
    def depth(self) -> float:
        """Extent along Y."""
        return self.max[1] - self.min[1]

    @property
    def height(self) -> float:
        """Extent along Z."""
        return self.max[2] - self.min[2]

    @property
    def center(self) -> Vec3:
        return scale(add(self.min, self.max), 0.5)

    def contains_xy(self, x: float, y: float) -> bool:
        return (self.min[0] <= x <= self.max[0] and
                self.min[1] <= y <= self.max[1])

    def overlaps_xy(self, other: "BoundingBox") -> bool:
        """Do the XY projections of two boxes overlap (touching counts)?"""
        return not (self.max[0] < other.min[0] or other.max[0] < self.min[0] or
                    self.max[1] < other.min[1] or other.max[1] < self.min[1])

    def as_list(self) -> list:
        return [list(self.min), list(self.max)]


def bounds_of(points: Iterable[Sequence[float]]) -> BoundingBox:
    """Return the bounding box of a collection of XYZ points."""

    lo = [math.inf, math.inf, math.inf]
    hi = [-math.inf, -math.inf, -math.inf]
    seen = False
    for p in points:
        seen = True
        for i in range(3):
            if p[i] < lo[i]:
                lo[i] = float(p[i])
            if p[i] > hi[i]:
                hi[i] = float(p[i])
    if not seen:
        return BoundingBox.empty()
    return BoundingBox(tuple(lo), tuple(hi))


__all__ = [
    'Vec3',
    'epsilon',
    'to_vec3',
    'add',
    'sub',
    'scale',
    'cross',
    'triangle_normal_z',
    'triangle_area',
    'triangle_is_degenerate',
    'Triangle',
    'BoundingBox',
    'bounds_of',
]
