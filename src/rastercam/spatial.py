"""2D spatial grid over XY for vertical ray casting.

Rays always travel along Z, so locality only exists in the XY plane: a ray
at ``(x, y)`` can only hit triangles whose XY bounding box contains that
point.  ``SpatialGrid`` bins triangle indices into a regular grid of cells
over XY.  Each ray then tests the triangles of one cell instead of the whole
mesh.

The cell size is the decisive tuning knob and is deliberately independent
of the ray raster: cells that are too fine fragment the per-cell lists
without cutting the per-ray cost, cells that are too coarse approach the
brute-force case.  The default aims at roughly 5 mm cells, clamped to
between 10 and 100 cells per axis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from rastercam.errors import AllocationError, InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_CELL_SIZE = 5.0
DEFAULT_MIN_CELLS = 10
DEFAULT_MAX_CELLS = 100


@dataclass(frozen=True)
class GridStats:
    """Occupancy figures used when tuning the cell size."""

    cells: int
    occupied: int
    entries: int
    max_per_cell: int

    @property
    def mean_per_cell(self) -> float:
        return self.entries / self.cells if self.cells else 0.0

    @property
    def mean_per_occupied(self) -> float:
        return self.entries / self.occupied if self.occupied else 0.0


def _axis_layout(lo: float, hi: float, cell_size: float, count: Optional[int],
                 min_cells: int, max_cells: int) -> Tuple[int, float]:
    """Return ``(cells, size)`` along one axis."""
    extent = hi - lo
    if extent <= 0.0:
        # flat along this axis: a single cell of nominal size
        return 1, 1.0
    if count is None:
        count = int(extent / cell_size) + 1
        count = min(max(count, min_cells), max_cells)
    return count, extent / count


class SpatialGrid:
    """Read-only binning of triangle indices over a regular XY grid.

    Build with :meth:`build`; the constructor is not meant to be called
    directly.  Each cell owns an ascending array of triangle indices whose
    XY bounding box overlaps the cell.
    """

    def __init__(self, origin: Tuple[float, float], cell_size: Tuple[float, float],
                 resolution: Tuple[int, int], cells: List[np.ndarray]):
        self._origin = origin
        self._cell_size = cell_size
        self._resolution = resolution
        self._cells = cells

    @classmethod
    def build(cls, triangles, indices: Optional[Sequence[int]] = None, *,
              cell_size: float = DEFAULT_CELL_SIZE,
              resolution: Optional[Tuple[int, int]] = None,
              min_cells: int = DEFAULT_MIN_CELLS,
              max_cells: int = DEFAULT_MAX_CELLS) -> "SpatialGrid":
        """Bin ``triangles`` (a ``TriangleSet``) into a new grid.

        ``indices`` restricts the grid to a subset of the triangles (the
        survivors of a face filter); the default is every triangle.  The grid
        covers the XY bounds of the full set.  Pass ``resolution=(nx, ny)``
        to fix the cell counts, otherwise they derive from ``cell_size``.
        """

        if not (cell_size > 0.0 and np.isfinite(cell_size)):
            raise InvalidInputError(f'bad cell size: {cell_size}')
        if resolution is not None:
            nx, ny = resolution
            if not (isinstance(nx, (int, np.integer)) and isinstance(ny, (int, np.integer))
                    and nx > 0 and ny > 0):
                raise InvalidInputError(f'bad grid resolution: {resolution}')
        else:
            nx = ny = None
        if min_cells < 1 or max_cells < min_cells:
            raise InvalidInputError(f'bad cell clamp range: {min_cells}..{max_cells}')

        if indices is None:
            indices = np.arange(len(triangles), dtype=np.int64)
        else:
            indices = np.asarray(indices, dtype=np.int64)

        bounds = triangles.bounds
        res_x, size_x = _axis_layout(bounds.min[0], bounds.max[0], cell_size, nx,
                                     min_cells, max_cells)
        res_y, size_y = _axis_layout(bounds.min[1], bounds.max[1], cell_size, ny,
                                     min_cells, max_cells)
        origin = (bounds.min[0], bounds.min[1])

        lo = triangles.xy_min[indices]
        hi = triangles.xy_max[indices]
        cx0 = _clamp((lo[:, 0] - origin[0]) / size_x, res_x)
        cx1 = _clamp((hi[:, 0] - origin[0]) / size_x, res_x)
        cy0 = _clamp((lo[:, 1] - origin[1]) / size_y, res_y)
        cy1 = _clamp((hi[:, 1] - origin[1]) / size_y, res_y)

        # expand every triangle into the (cell, triangle) pairs it covers
        span_x = cx1 - cx0 + 1
        span_y = cy1 - cy0 + 1
        per_tri = span_x * span_y
        total = int(per_tri.sum())
        try:
            owner = np.repeat(np.arange(len(indices)), per_tri)
            local = np.arange(total) - np.repeat(np.cumsum(per_tri) - per_tri, per_tri)
        except MemoryError as exc:
            raise AllocationError(
                f'cannot allocate {total} spatial grid entries') from exc
        sx = span_x[owner]
        cell_x = cx0[owner] + local % sx
        cell_y = cy0[owner] + local // sx
        flat = cell_y * res_x + cell_x

        # stable sort keeps triangle order inside each cell
        order = np.argsort(flat, kind='stable')
        flat = flat[order]
        members = indices[owner[order]]
        bounds_idx = np.searchsorted(flat, np.arange(res_x * res_y + 1))
        cells = [members[bounds_idx[i]:bounds_idx[i + 1]]
                 for i in range(res_x * res_y)]

        grid = cls(origin, (size_x, size_y), (res_x, res_y), cells)
        if logger.isEnabledFor(logging.DEBUG):
            stats = grid.stats()
            logger.debug('spatial grid %dx%d (%.3g x %.3g): %d triangles, '
                         '%.2f per occupied cell, max %d',
                         res_x, res_y, size_x, size_y, len(indices),
                         stats.mean_per_occupied, stats.max_per_cell)
        return grid

    def __repr__(self) -> str:
        return 'SpatialGrid(resolution={}, cell_size={}, origin={})'.format(
            self._resolution, self._cell_size, self._origin)

    @property
    def origin(self) -> Tuple[float, float]:
        return self._origin

    @property
    def cell_size(self) -> Tuple[float, float]:
        return self._cell_size

    @property
    def resolution(self) -> Tuple[int, int]:
        """Cell counts ``(nx, ny)``."""
        return self._resolution

    def cell_of(self, x: float, y: float) -> Tuple[int, int]:
        """Return the ``(cx, cy)`` cell containing ``(x, y)``, clamped to the grid."""
        cx = int(_clamp(np.array([(x - self._origin[0]) / self._cell_size[0]]),
                        self._resolution[0])[0])
        cy = int(_clamp(np.array([(y - self._origin[1]) / self._cell_size[1]]),
                        self._resolution[1])[0])
        return cx, cy

    def cells_of(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorised :meth:`cell_of` for separate X and Y coordinate arrays."""
        cx = _clamp((np.asarray(xs) - self._origin[0]) / self._cell_size[0],
                    self._resolution[0])
        cy = _clamp((np.asarray(ys) - self._origin[1]) / self._cell_size[1],
                    self._resolution[1])
        return cx, cy

    def cell_indices(self, cx: int, cy: int) -> np.ndarray:
        """Triangle indices binned into cell ``(cx, cy)``."""
        if not (0 <= cx < self._resolution[0] and 0 <= cy < self._resolution[1]):
            raise IndexError(f'cell ({cx}, {cy}) outside grid {self._resolution}')
        return self._cells[cy * self._resolution[0] + cx]

    def query(self, x: float, y: float) -> List[int]:
        """Return the ordered triangle indices relevant to a ray at ``(x, y)``."""
        cx, cy = self.cell_of(x, y)
        return self.cell_indices(cx, cy).tolist()

    def cells(self) -> Iterator[Tuple[int, int, np.ndarray]]:
        """Yield ``(cx, cy, indices)`` for every non-empty cell, row by row."""
        nx = self._resolution[0]
        for i, members in enumerate(self._cells):
            if len(members):
                yield i % nx, i // nx, members

    def stats(self) -> GridStats:
        sizes = [len(c) for c in self._cells]
        return GridStats(cells=len(sizes),
                         occupied=sum(1 for s in sizes if s),
                         entries=sum(sizes),
                         max_per_cell=max(sizes) if sizes else 0)


def _clamp(values: np.ndarray, count: int) -> np.ndarray:
    return np.clip(np.floor(values), 0, count - 1).astype(np.int64)


__all__ = [
    'DEFAULT_CELL_SIZE',
    'DEFAULT_MIN_CELLS',
    'DEFAULT_MAX_CELLS',
    'GridStats',
    'SpatialGrid',
]
