"""Simple triangle meshes: boxes, height fields and ball-end tools.

All meshes are wound counter-clockwise seen from outside, so upward faces
have ``normal_z > 0`` and downward faces ``normal_z < 0``.
"""

from __future__ import annotations

import math
from typing import Callable, List, Sequence

import numpy as np

from rastercam.errors import InvalidInputError
from rastercam.mesh import TriangleSet


def _quad(a, b, c, d) -> List[list]:
    """Two triangles for a quad given counter-clockwise from outside."""
    return [[a, b, c], [a, c, d]]


def box(length: float = 1.0, width: float = 1.0, height: float = 1.0,
        center: Sequence[float] = (0.0, 0.0, 0.0)) -> TriangleSet:
    """Closed axis-aligned box; ``center`` is the middle of its bottom face."""
    if min(length, width, height) <= 0.0:
        raise InvalidInputError('box dimensions must be positive')
    x0, x1 = center[0] - length / 2.0, center[0] + length / 2.0
    y0, y1 = center[1] - width / 2.0, center[1] + width / 2.0
    z0, z1 = center[2], center[2] + height

    tris = []
    tris += _quad((x0, y0, z1), (x1, y0, z1), (x1, y1, z1), (x0, y1, z1))  # top
    tris += _quad((x0, y0, z0), (x0, y1, z0), (x1, y1, z0), (x1, y0, z0))  # bottom
    tris += _quad((x1, y0, z0), (x1, y1, z0), (x1, y1, z1), (x1, y0, z1))  # +x
    tris += _quad((x0, y0, z0), (x0, y0, z1), (x0, y1, z1), (x0, y1, z0))  # -x
    tris += _quad((x0, y1, z0), (x0, y1, z1), (x1, y1, z1), (x1, y1, z0))  # +y
    tris += _quad((x0, y0, z0), (x1, y0, z0), (x1, y0, z1), (x0, y0, z1))  # -y
    return TriangleSet(tris)


def heightfield(func: Callable[[float, float], float], x_range: Sequence[float],
                y_range: Sequence[float], divisions: int = 16) -> TriangleSet:
    """Open, upward-facing surface ``z = func(x, y)`` over a rectangle."""
    if divisions < 1:
        raise InvalidInputError('divisions must be at least 1')
    xs = np.linspace(x_range[0], x_range[1], divisions + 1)
    ys = np.linspace(y_range[0], y_range[1], divisions + 1)

    def vertex(i, j):
        x, y = float(xs[i]), float(ys[j])
        return (x, y, float(func(x, y)))

    tris = []
    for j in range(divisions):
        for i in range(divisions):
            tris += _quad(vertex(i, j), vertex(i + 1, j),
                          vertex(i + 1, j + 1), vertex(i, j + 1))
    return TriangleSet(tris)


def hemisphere_tool(radius: float = 5.0, rings: int = 16, sectors: int = 32) -> TriangleSet:
    """Closed ball-end tool: lower hemisphere plus a flat cap at ``z = 0``.

    The tip sits at ``(0, 0, -radius)``.  The hemisphere faces down and
    the cap faces up.
    """
    if radius <= 0.0:
        raise InvalidInputError('radius must be positive')
    if rings < 1 or sectors < 3:
        raise InvalidInputError('need at least 1 ring and 3 sectors')

    # ring 0 is the equator; rings shrink toward the pole
    ring = []
    for i in range(rings):
        phi = (math.pi / 2.0) * i / rings
        r = radius * math.cos(phi)
        z = -radius * math.sin(phi)
        ring.append([(r * math.cos(2.0 * math.pi * j / sectors),
                      r * math.sin(2.0 * math.pi * j / sectors), z)
                     for j in range(sectors)])
    pole = (0.0, 0.0, -radius)
    center = (0.0, 0.0, 0.0)

    tris = []
    for j in range(sectors):
        k = (j + 1) % sectors
        tris.append([center, ring[0][j], ring[0][k]])
        for i in range(rings - 1):
            a, b = ring[i][j], ring[i][k]
            c, d = ring[i + 1][k], ring[i + 1][j]
            tris += [[a, d, c], [a, c, b]]
        tris.append([ring[-1][j], pole, ring[-1][k]])
    return TriangleSet(tris)


__all__ = ['box', 'heightfield', 'hemisphere_tool']
