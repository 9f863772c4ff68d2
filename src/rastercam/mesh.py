"""Triangle sets: the immutable, array-backed input of the rasterizer."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Sequence

import numpy as np

from rastercam.errors import InvalidInputError
from rastercam.geometry_utils import BoundingBox, Triangle, epsilon

logger = logging.getLogger(__name__)


class TriangleSet:
    """An immutable set of triangles stored as a ``(n, 3, 3)`` float array.

    Per-triangle quantities used by the ray kernels are computed once at
    construction: the first vertex ``v0``, the edges ``e1 = v1 - v0`` and
    ``e2 = v2 - v0``, the signed ``normal_z`` of the unnormalised face
    normal, and the XY bounding box of each triangle.
    """

    def __init__(self, vertices):
        try:
            data = np.array(vertices, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f'triangle data is not numeric: {exc}') from exc
        if data.size == 0:
            data = data.reshape(0, 3, 3)
        if data.ndim == 1:
            if data.size % 9:
                raise InvalidInputError(
                    f'flat triangle data must hold a multiple of 9 values, got {data.size}')
            data = data.reshape(-1, 3, 3)
        if data.ndim != 3 or data.shape[1:] != (3, 3):
            raise InvalidInputError(
                f'triangle data must have shape (n, 3, 3), got {data.shape}')
        if not np.all(np.isfinite(data)):
            raise InvalidInputError('triangle data contains NaN or infinite values')
        data.setflags(write=False)
        self._vertices = data

        self.v0 = data[:, 0, :]
        self.e1 = data[:, 1, :] - self.v0
        self.e2 = data[:, 2, :] - self.v0
        self.normal_z = self.e1[:, 0] * self.e2[:, 1] - self.e1[:, 1] * self.e2[:, 0]
        self.xy_min = data[:, :, :2].min(axis=1)
        self.xy_max = data[:, :, :2].max(axis=1)
        normal = np.cross(self.e1, self.e2)
        self.degenerate = 0.5 * np.linalg.norm(normal, axis=1) <= epsilon
        for arr in (self.e1, self.e2, self.normal_z, self.xy_min,
                    self.xy_max, self.degenerate):
            arr.setflags(write=False)

        if len(data):
            flat = data.reshape(-1, 3)
            lo = flat.min(axis=0)
            hi = flat.max(axis=0)
            self._bounds = BoundingBox(tuple(float(c) for c in lo),
                                       tuple(float(c) for c in hi))
        else:
            self._bounds = BoundingBox.empty()

        degenerate = int(self.degenerate.sum())
        if degenerate:
            logger.debug('%d of %d triangles are degenerate and will never be hit',
                         degenerate, len(data))

    @classmethod
    def from_array(cls, values) -> "TriangleSet":
        """Build from a flat ``x0,y0,z0,x1,...`` sequence or an ``(n, 3, 3)`` array."""
        return cls(values)

    @classmethod
    def from_triangles(cls, triangles: Iterable[Triangle]) -> "TriangleSet":
        rows = [[t.v0, t.v1, t.v2] for t in triangles]
        return cls(np.array(rows, dtype=np.float64).reshape(-1, 3, 3))

    def __len__(self) -> int:
        return len(self._vertices)

    def __getitem__(self, index: int) -> Triangle:
        v = self._vertices[index]
        return Triangle(tuple(float(c) for c in v[0]),
                        tuple(float(c) for c in v[1]),
                        tuple(float(c) for c in v[2]),
                        float(self.normal_z[index]))

    def __iter__(self) -> Iterator[Triangle]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        return 'TriangleSet(count={}, bounds={})'.format(len(self), self._bounds.as_list())

    @property
    def vertices(self) -> np.ndarray:
        """Read-only ``(n, 3, 3)`` vertex array."""
        return self._vertices

    @property
    def bounds(self) -> BoundingBox:
        return self._bounds

    @property
    def degenerate_count(self) -> int:
        return int(self.degenerate.sum())

    def facing(self, face_filter) -> np.ndarray:
        """Return the indices (ascending) of triangles accepted by ``face_filter``."""
        return np.flatnonzero(face_filter.accepts(self.normal_z))

    def translated(self, offset: Sequence[float]) -> "TriangleSet":
        """Return a copy moved by ``offset``."""
        return TriangleSet(self._vertices + np.asarray(offset, dtype=np.float64)[:3])

    def concatenate(self, other: "TriangleSet") -> "TriangleSet":
        return TriangleSet(np.concatenate([self._vertices, other.vertices]))


__all__ = ['TriangleSet']
