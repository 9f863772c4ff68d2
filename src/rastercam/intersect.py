"""Vertical ray / triangle intersection.

Every ray starts below the mesh at ``origin_z`` and travels along ``+Z``.
With the direction fixed, the Moller-Trumbore test collapses to a 2D
barycentric solve in the XY plane: the determinant is ``-normal_z`` and the
hit height follows from the barycentric coordinates.  The scalar and the
vectorised forms below evaluate the same expressions in the same order, so
they agree bit for bit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from rastercam.geometry_utils import Triangle

# |determinant| below this means the ray runs inside the triangle's plane
PARALLEL_EPSILON = 1e-12

# hits must lie strictly ahead of the ray origin
RAY_EPSILON = 1e-7

# slack on the barycentric range so rays on shared edges are not lost
BARYCENTRIC_TOLERANCE = 1e-9

# upper bound on ray x triangle pairs evaluated in one numpy pass
MAX_PAIRS = 1 << 22


@dataclass(frozen=True)
class FaceFilter:
    """Face filter expressed as data.

    ``normal_sign`` selects the participating triangles (``+1`` keeps
    ``normal_z > 0``, ``-1`` keeps ``normal_z < 0``, ``0`` keeps all) and
    ``keep_highest`` picks the best hit per ray (maximum or minimum Z).
    """

    normal_sign: int
    keep_highest: bool

    def accepts(self, normal_z):
        """Return a bool (or bool array) telling which faces participate."""
        if self.normal_sign > 0:
            return normal_z > 0
        if self.normal_sign < 0:
            return normal_z < 0
        if isinstance(normal_z, np.ndarray):
            return np.ones(normal_z.shape, dtype=bool)
        return True

    @property
    def worst(self) -> float:
        return -np.inf if self.keep_highest else np.inf


def intersect_vertical_ray(x: float, y: float, origin_z: float,
                           tri: Triangle) -> Optional[float]:
    """Return the Z where the ray at ``(x, y)`` meets ``tri``, or ``None``."""

    (x0, y0, z0), (x1, y1, z1), (x2, y2, z2) = tri.v0, tri.v1, tri.v2
    if not (min(x0, x1, x2) <= x <= max(x0, x1, x2) and
            min(y0, y1, y2) <= y <= max(y0, y1, y2)):
        return None

    e1x, e1y, e1z = x1 - x0, y1 - y0, z1 - z0
    e2x, e2y, e2z = x2 - x0, y2 - y0, z2 - z0
    a = -(e1x * e2y - e1y * e2x)
    if abs(a) < PARALLEL_EPSILON:
        return None
    f = 1.0 / a

    sx = x - x0
    sy = y - y0
    u = f * (sy * e2x - sx * e2y)
    v = f * (sx * e1y - sy * e1x)
    if (u < -BARYCENTRIC_TOLERANCE or v < -BARYCENTRIC_TOLERANCE or
            u + v > 1.0 + BARYCENTRIC_TOLERANCE):
        return None

    z = z0 + u * e1z + v * e2z
    if z - origin_z <= RAY_EPSILON:
        return None
    return z


def intersect_vertical_rays(xs: np.ndarray, ys: np.ndarray, origin_z: float,
                            tris, indices: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Intersect every ray with every candidate triangle.

    ``xs``/``ys`` hold one ray each; ``tris`` is a ``TriangleSet`` and
    ``indices`` the candidate triangle indices.  Returns ``(hit, z)``, both
    shaped ``(len(xs), len(indices))``.
    """

    v0 = tris.v0[indices]
    e1 = tris.e1[indices]
    e2 = tris.e2[indices]
    lo = tris.xy_min[indices]
    hi = tris.xy_max[indices]

    xs = xs[:, None]
    ys = ys[:, None]

    a = -tris.normal_z[indices]
    parallel = np.abs(a) < PARALLEL_EPSILON
    f = 1.0 / np.where(parallel, 1.0, a)

    sx = xs - v0[:, 0]
    sy = ys - v0[:, 1]
    u = f * (sy * e2[:, 0] - sx * e2[:, 1])
    v = f * (sx * e1[:, 1] - sy * e1[:, 0])
    z = v0[:, 2] + u * e1[:, 2] + v * e2[:, 2]

    hit = ((xs >= lo[:, 0]) & (xs <= hi[:, 0]) &
           (ys >= lo[:, 1]) & (ys <= hi[:, 1]))
    hit &= ~parallel
    hit &= (u >= -BARYCENTRIC_TOLERANCE) & (v >= -BARYCENTRIC_TOLERANCE)
    hit &= (u + v <= 1.0 + BARYCENTRIC_TOLERANCE)
    hit &= (z - origin_z > RAY_EPSILON)
    return hit, z


def best_hits(xs: np.ndarray, ys: np.ndarray, origin_z: float, tris,
              indices: np.ndarray, face_filter: FaceFilter):
    """Return the best hit per ray among the candidate triangles.

    The result is ``(found, z, triangle_id)``: a bool mask over the rays,
    the winning Z (meaningless where ``found`` is false) and the index of
    the winning triangle (``-1`` where nothing was hit).  Ties go to the
    candidate listed first.  Candidates are expected to have passed
    ``face_filter`` already.
    """

    count = len(xs)
    found = np.zeros(count, dtype=bool)
    best = np.full(count, face_filter.worst)
    winner = np.full(count, -1, dtype=np.int64)
    indices = np.asarray(indices, dtype=np.int64)
    if count == 0 or len(indices) == 0:
        return found, best, winner

    chunk = max(1, MAX_PAIRS // len(indices))
    for start in range(0, count, chunk):
        stop = min(count, start + chunk)
        hit, z = intersect_vertical_rays(xs[start:stop], ys[start:stop],
                                         origin_z, tris, indices)
        z = np.where(hit, z, face_filter.worst)
        if face_filter.keep_highest:
            pick = np.argmax(z, axis=1)
        else:
            pick = np.argmin(z, axis=1)
        rows = np.arange(stop - start)
        found[start:stop] = hit[rows, pick]
        best[start:stop] = z[rows, pick]
        winner[start:stop] = np.where(found[start:stop], indices[pick], -1)
    return found, best, winner


__all__ = [
    'PARALLEL_EPSILON',
    'RAY_EPSILON',
    'BARYCENTRIC_TOLERANCE',
    'FaceFilter',
    'intersect_vertical_ray',
    'intersect_vertical_rays',
    'best_hits',
]
