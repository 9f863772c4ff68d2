"""Rasterize a triangle set into a sparse point cloud by vertical ray casting.

One ray is cast along ``+Z`` through the centre of every raster cell.  The
face filter decides which triangles take part and which hit is kept:

* ``UPWARD_FACING`` (terrain): faces with ``normal_z > 0``, highest hit, i.e.
  the top surface;
* ``DOWNWARD_FACING`` (tool): faces with ``normal_z < 0``, lowest hit, i.e.
  the cutting surface seen from below;
* ``NONE``: every face, lowest hit.

Cells whose ray hits nothing emit no point, so the cloud is sparse.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from rastercam.errors import AllocationError, InvalidInputError
from rastercam.geometry_utils import BoundingBox
from rastercam.intersect import FaceFilter, best_hits
from rastercam.mesh import TriangleSet
from rastercam.spatial import DEFAULT_CELL_SIZE, SpatialGrid

logger = logging.getLogger(__name__)

# slack when dividing an extent by the step, so 84.4 / 0.1 counts 844 steps
_STEP_SNAP = 1e-9


class FilterMode(Enum):
    """Which faces participate in rasterization and which hit wins."""

    UPWARD_FACING = 'upward'
    DOWNWARD_FACING = 'downward'
    NONE = 'none'

    @property
    def face_filter(self) -> FaceFilter:
        return _FACE_FILTERS[self]

    @classmethod
    def coerce(cls, value) -> "FilterMode":
        """Accept a ``FilterMode`` or one of its names and common aliases."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace('-', '_')
            if key in _ALIASES:
                return _ALIASES[key]
        raise InvalidInputError(f'unknown filter mode: {value!r}')


_FACE_FILTERS = {
    FilterMode.UPWARD_FACING: FaceFilter(normal_sign=1, keep_highest=True),
    FilterMode.DOWNWARD_FACING: FaceFilter(normal_sign=-1, keep_highest=False),
    FilterMode.NONE: FaceFilter(normal_sign=0, keep_highest=False),
}

_ALIASES = {
    'upward': FilterMode.UPWARD_FACING,
    'upward_facing': FilterMode.UPWARD_FACING,
    'up': FilterMode.UPWARD_FACING,
    'terrain': FilterMode.UPWARD_FACING,
    'downward': FilterMode.DOWNWARD_FACING,
    'downward_facing': FilterMode.DOWNWARD_FACING,
    'down': FilterMode.DOWNWARD_FACING,
    'tool': FilterMode.DOWNWARD_FACING,
    'none': FilterMode.NONE,
    'all': FilterMode.NONE,
}


def check_step(step_size) -> float:
    """Return ``step_size`` as a float, or raise ``InvalidInputError``."""
    try:
        step = float(step_size)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f'step size must be a number, got {step_size!r}') from exc
    if not (step > 0.0 and math.isfinite(step)):
        raise InvalidInputError(f'step size must be positive and finite, got {step_size!r}')
    return step


@dataclass(frozen=True)
class RasterGeometry:
    """The ray raster: sample ``(col, row)`` sits at ``origin + step * (col, row)``."""

    origin: Tuple[float, float]
    step: float
    columns: int
    rows: int

    @classmethod
    def for_bounds(cls, bounds: BoundingBox, step: float) -> "RasterGeometry":
        """Cover ``bounds`` edge to edge: ``ceil(extent / step)`` steps plus the closing sample."""
        columns = int(math.floor(bounds.width / step + _STEP_SNAP)) + 1
        rows = int(math.floor(bounds.depth / step + _STEP_SNAP)) + 1
        return cls((bounds.min[0], bounds.min[1]), step, columns, rows)

    @classmethod
    def empty(cls, step: float) -> "RasterGeometry":
        return cls((0.0, 0.0), step, 0, 0)

    @property
    def shape(self) -> Tuple[int, int]:
        """``(rows, columns)``, the numpy shape of a raster-sized array."""
        return self.rows, self.columns

    @property
    def candidate_count(self) -> int:
        return self.rows * self.columns

    def xs(self) -> np.ndarray:
        return self.origin[0] + np.arange(self.columns) * self.step

    def ys(self) -> np.ndarray:
        return self.origin[1] + np.arange(self.rows) * self.step

    def position(self, col: int, row: int) -> Tuple[float, float]:
        return self.origin[0] + col * self.step, self.origin[1] + row * self.step


@dataclass(frozen=True, eq=False)
class PointCloud:
    """Sparse, read-only result of one rasterization.

    ``points`` is ``(N, 3)`` in raster scan order (rows outer, columns
    inner); ``cells`` holds the ``(row, col)`` raster index of each point
    and ``triangle_ids`` the triangle that produced it.
    """

    points: np.ndarray
    cells: np.ndarray
    triangle_ids: np.ndarray
    bounds: BoundingBox
    step: float
    raster: RasterGeometry
    filter_mode: FilterMode

    @classmethod
    def empty(cls, step: float, filter_mode: FilterMode,
              bounds: Optional[BoundingBox] = None,
              raster: Optional[RasterGeometry] = None) -> "PointCloud":
        return cls(_frozen(np.zeros((0, 3))),
                   _frozen(np.zeros((0, 2), dtype=np.int64)),
                   _frozen(np.zeros(0, dtype=np.int64)),
                   bounds or BoundingBox.empty(), step,
                   raster or RasterGeometry.empty(step), filter_mode)

    def __len__(self) -> int:
        return len(self.points)

    def __repr__(self) -> str:
        return 'PointCloud(count={}, step={}, raster={}x{}, filter={})'.format(
            self.count, self.step, self.raster.columns, self.raster.rows,
            self.filter_mode.value)

    @property
    def count(self) -> int:
        return len(self.points)

    @property
    def candidate_count(self) -> int:
        """Number of rays cast, i.e. raster positions."""
        return self.raster.candidate_count

    @property
    def is_empty(self) -> bool:
        return self.count == 0


def rasterize(triangles, step_size, filter_mode=FilterMode.UPWARD_FACING, *,
              use_index: bool = True, cell_size: float = DEFAULT_CELL_SIZE,
              resolution: Optional[Tuple[int, int]] = None,
              workers: int = 1) -> PointCloud:
    """Cast one vertical ray per raster cell and keep the best hit.

    ``triangles`` is a ``TriangleSet`` or anything ``TriangleSet`` accepts.
    With ``use_index`` (the default) rays only test the triangles binned in
    their spatial-grid cell; without it every ray tests every surviving
    triangle.  Both give identical clouds.  ``workers > 1`` spreads the
    grid cells over a thread pool.
    """

    step = check_step(step_size)
    mode = FilterMode.coerce(filter_mode)
    if workers < 1:
        raise InvalidInputError(f'workers must be at least 1, got {workers}')
    if not isinstance(triangles, TriangleSet):
        triangles = TriangleSet(triangles)

    if len(triangles) == 0:
        logger.debug('rasterize: empty triangle set')
        return PointCloud.empty(step, mode)

    started = time.perf_counter()
    bounds = triangles.bounds
    raster = RasterGeometry.for_bounds(bounds, step)
    face = mode.face_filter
    survivors = triangles.facing(face)
    origin_z = bounds.min[2] - 1.0

    try:
        best_z = np.full(raster.shape, np.nan)
        winner = np.full(raster.shape, -1, dtype=np.int64)
    except MemoryError as exc:
        raise AllocationError(
            f'cannot allocate a {raster.columns}x{raster.rows} raster') from exc

    xs = raster.xs()
    ys = raster.ys()

    if len(survivors):
        if use_index:
            grid = SpatialGrid.build(triangles, survivors, cell_size=cell_size,
                                     resolution=resolution)
            col_cell, row_cell = grid.cells_of(xs, ys)
            jobs = []
            for cx, cy, members in grid.cells():
                rows = np.flatnonzero(row_cell == cy)
                cols = np.flatnonzero(col_cell == cx)
                if len(rows) and len(cols):
                    jobs.append((rows, cols, members))
        else:
            jobs = [(np.arange(raster.rows), np.arange(raster.columns), survivors)]

        def cast(job):
            rows, cols, members = job
            gx, gy = np.meshgrid(xs[cols], ys[rows])
            found, z, tid = best_hits(gx.ravel(), gy.ravel(), origin_z,
                                      triangles, members, face)
            shape = (len(rows), len(cols))
            return (rows, cols, np.where(found, z, np.nan).reshape(shape),
                    tid.reshape(shape))

        if workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(cast, jobs))
        else:
            results = [cast(job) for job in jobs]

        for rows, cols, z, tid in results:
            block = np.ix_(rows, cols)
            best_z[block] = z
            winner[block] = tid

    rr, cc = np.nonzero(winner >= 0)
    points = np.column_stack([xs[cc], ys[rr], best_z[rr, cc]])
    cloud = PointCloud(_frozen(points),
                       _frozen(np.column_stack([rr, cc]).astype(np.int64)),
                       _frozen(winner[rr, cc]),
                       bounds, step, raster, mode)

    logger.debug('rasterized %d triangles (%d %s, %d degenerate) at step %g: '
                 '%dx%d raster, %d points in %.3fs',
                 len(triangles), len(survivors), mode.value,
                 triangles.degenerate_count, step, raster.columns, raster.rows,
                 cloud.count, time.perf_counter() - started)
    return cloud


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


__all__ = [
    'FilterMode',
    'RasterGeometry',
    'PointCloud',
    'check_step',
    'rasterize',
]
