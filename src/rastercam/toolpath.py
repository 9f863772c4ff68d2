"""Height-map toolpaths: drop a tool point cloud onto a terrain point cloud.

XY positions live on the terrain raster and are handled as integer grid
indices; only heights are continuous.  For a tool whose offsets are measured
from its tip (the minimum-Z point), the tip height at a sample position is

    max over offsets (terrain_z(x + dx, y + dy) - dz)

which is the first contact when lowering the tool from above: no offset
point ends up below the terrain and at least one touches it.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from rastercam.errors import (AllocationError, InconsistentConfigurationError,
                              InvalidInputError)
from rastercam.geometry_utils import Vec3
from rastercam.rasterize import PointCloud, check_step

logger = logging.getLogger(__name__)

# relative tolerance when comparing grid steps of different structures
STEP_TOLERANCE = 1e-9

# upper bound on (sample, tool offset) pairs gathered in one numpy pass
MAX_GATHER = 1 << 20


def same_step(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=STEP_TOLERANCE, abs_tol=0.0)


class HeightGrid:
    """Dense terrain heights over a raster, for O(1) lookup by position.

    ``z`` is a read-only ``(rows, cols)`` array with NaN where the terrain
    cloud has no point.  Lookups outside the grid, or on empty cells, return
    the floor value.
    """

    def __init__(self, z: np.ndarray, origin: Tuple[float, float], step: float,
                 out_of_bounds_z: float = 0.0):
        z = np.array(z, dtype=np.float64)
        if z.ndim != 2:
            raise InvalidInputError(f'height grid must be 2D, got shape {z.shape}')
        z.setflags(write=False)
        self._z = z
        self._origin = (float(origin[0]), float(origin[1]))
        self._step = check_step(step)
        self._oob = float(out_of_bounds_z)

    @classmethod
    def build(cls, cloud: PointCloud, out_of_bounds_z: float = 0.0) -> "HeightGrid":
        """Index a rasterized cloud using its own raster cells."""
        raster = cloud.raster
        try:
            z = np.full(raster.shape, np.nan)
        except MemoryError as exc:
            raise AllocationError(
                f'cannot allocate a {raster.columns}x{raster.rows} height grid') from exc
        if cloud.count:
            z[cloud.cells[:, 0], cloud.cells[:, 1]] = cloud.points[:, 2]
        return cls(z, raster.origin, cloud.step, out_of_bounds_z)

    @classmethod
    def from_points(cls, points, step: float, origin: Optional[Sequence[float]] = None,
                    out_of_bounds_z: float = 0.0) -> "HeightGrid":
        """Snap bare XYZ points onto a grid of spacing ``step``.

        The grid starts at ``origin`` (default: the minimum X and Y of the
        points).  Points sharing a node keep the highest Z.
        """
        step = check_step(step)
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(pts) == 0:
            raise InvalidInputError('cannot build a height grid from an empty point set')
        if origin is None:
            origin = (pts[:, 0].min(), pts[:, 1].min())
        ix = np.rint((pts[:, 0] - origin[0]) / step).astype(np.int64)
        iy = np.rint((pts[:, 1] - origin[1]) / step).astype(np.int64)
        if ix.min() < 0 or iy.min() < 0:
            raise InvalidInputError('points lie before the grid origin')
        try:
            z = np.full((int(iy.max()) + 1, int(ix.max()) + 1), -np.inf)
        except MemoryError as exc:
            raise AllocationError('cannot allocate height grid') from exc
        np.maximum.at(z, (iy, ix), pts[:, 2])
        z[np.isneginf(z)] = np.nan
        return cls(z, origin, step, out_of_bounds_z)

    def __repr__(self) -> str:
        return 'HeightGrid(shape={}, step={}, origin={}, coverage={})'.format(
            self.shape, self._step, self._origin, self.coverage)

    @property
    def z(self) -> np.ndarray:
        return self._z

    @property
    def shape(self) -> Tuple[int, int]:
        """``(rows, cols)``."""
        return self._z.shape

    @property
    def width(self) -> int:
        return self._z.shape[1]

    @property
    def height(self) -> int:
        return self._z.shape[0]

    @property
    def origin(self) -> Tuple[float, float]:
        return self._origin

    @property
    def step(self) -> float:
        return self._step

    @property
    def out_of_bounds_z(self) -> float:
        return self._oob

    @property
    def coverage(self) -> int:
        """Number of cells holding a terrain height."""
        return int(np.count_nonzero(~np.isnan(self._z)))

    def index_of(self, x: float, y: float) -> Tuple[int, int]:
        """Nearest grid node ``(ix, iy)`` to a world position (may lie outside)."""
        return (int(round((x - self._origin[0]) / self._step)),
                int(round((y - self._origin[1]) / self._step)))

    def z_at_index(self, ix: int, iy: int, default: Optional[float] = None) -> float:
        floor = self._oob if default is None else default
        if 0 <= iy < self._z.shape[0] and 0 <= ix < self._z.shape[1]:
            z = self._z[iy, ix]
            if not np.isnan(z):
                return float(z)
        return floor

    def z_at(self, x: float, y: float, default: Optional[float] = None) -> float:
        """Terrain Z nearest ``(x, y)``, or the floor value without coverage."""
        ix, iy = self.index_of(x, y)
        return self.z_at_index(ix, iy, default)

    def filled(self, floor: Optional[float] = None) -> np.ndarray:
        """Copy of ``z`` with empty cells set to the floor value."""
        floor = self._oob if floor is None else floor
        return np.where(np.isnan(self._z), floor, self._z)


@dataclass(frozen=True, eq=False)
class ToolOffsetCloud:
    """Tool points relative to the tool tip.

    ``offsets`` is ``(K, 3)`` in world units, ``grid_offsets`` the matching
    ``(dx, dy)`` in raster cells.  The tip's own offset is the zero vector
    and every ``dz`` is non-negative.
    """

    offsets: np.ndarray
    grid_offsets: np.ndarray
    reference: Vec3
    step: float

    @classmethod
    def build(cls, cloud: PointCloud, step: Optional[float] = None) -> "ToolOffsetCloud":
        """Build from a rasterized tool cloud.

        ``step`` is the grid step shared with the terrain; a cloud
        rasterized at a different step is rejected.
        """
        shared = cloud.step if step is None else check_step(step)
        if not same_step(cloud.step, shared):
            raise InconsistentConfigurationError(
                f'tool cloud was rasterized at step {cloud.step}, '
                f'but the shared grid step is {shared}')
        return cls.from_points(cloud.points, shared)

    @classmethod
    def from_points(cls, points, step: float) -> "ToolOffsetCloud":
        step = check_step(step)
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(pts) == 0:
            raise InvalidInputError('tool point cloud is empty; check the tool '
                                    'mesh and its face filter')

        tip = pts[:, 2].min()
        candidates = np.flatnonzero(pts[:, 2] == tip)
        if len(candidates) > 1:
            # flat-bottomed tool: take the tip point closest to the axis
            centroid = pts[:, :2].mean(axis=0)
            d2 = ((pts[candidates, :2] - centroid) ** 2).sum(axis=1)
            ref = candidates[int(np.argmin(d2))]
        else:
            ref = candidates[0]
        reference = pts[ref]

        offsets = pts - reference
        offsets[ref] = 0.0
        grid = np.rint(offsets[:, :2] / step).astype(np.int64)
        offsets.setflags(write=False)
        grid.setflags(write=False)
        return cls(offsets, grid,
                   (float(reference[0]), float(reference[1]), float(reference[2])),
                   step)

    def __len__(self) -> int:
        return len(self.offsets)

    @property
    def count(self) -> int:
        return len(self.offsets)

    @property
    def reach(self) -> Tuple[int, int]:
        """Largest ``|dx|`` and ``|dy|`` in grid cells."""
        return (int(np.abs(self.grid_offsets[:, 0]).max()),
                int(np.abs(self.grid_offsets[:, 1]).max()))


@dataclass(frozen=True, eq=False)
class Toolpath:
    """Tool tip heights sampled every ``x_stride``/``y_stride`` raster cells.

    ``heights[r, c]`` belongs to terrain raster cell
    ``(row=r * y_stride, col=c * x_stride)``.
    """

    heights: np.ndarray
    x_stride: int
    y_stride: int
    origin: Tuple[float, float]
    step: float
    floor_z: float

    @property
    def shape(self) -> Tuple[int, int]:
        """``(scanlines, points_per_line)``."""
        return self.heights.shape

    @property
    def sample_count(self) -> int:
        return int(self.heights.size)

    def xs(self) -> np.ndarray:
        return self.origin[0] + np.arange(self.shape[1]) * self.x_stride * self.step

    def ys(self) -> np.ndarray:
        return self.origin[1] + np.arange(self.shape[0]) * self.y_stride * self.step

    def positions(self) -> np.ndarray:
        """World XY of every sample, shaped ``(scanlines, points_per_line, 2)``."""
        gx, gy = np.meshgrid(self.xs(), self.ys())
        return np.stack([gx, gy], axis=-1)

    def as_points(self) -> np.ndarray:
        """``(N, 3)`` XYZ samples, scanline by scanline."""
        pos = self.positions().reshape(-1, 2)
        return np.column_stack([pos, self.heights.reshape(-1)])


def _check_stride(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        raise InvalidInputError(f'{name} must be a positive integer, got {value!r}')
    return int(value)


class _Scanner:
    """Per-run lookup state shared by all scanlines of one toolpath.

    Each scanline is gathered in column chunks holding at most
    ``MAX_GATHER`` (sample, offset) pairs.
    """

    def __init__(self, terrain: HeightGrid, tool: ToolOffsetCloud, floor: float,
                 cols: np.ndarray):
        self.dx = tool.grid_offsets[:, 0]
        self.dy = tool.grid_offsets[:, 1]
        self.dz = tool.offsets[:, 2]
        px, py = tool.reach
        rows, width = terrain.shape
        self.pad_y = py
        self.cols = np.asarray(cols, dtype=np.int64) + px
        self.chunk = max(1, MAX_GATHER // max(1, len(self.dz)))
        try:
            self.padded = np.full((rows + 2 * py, width + 2 * px), floor)
        except MemoryError as exc:
            raise AllocationError('cannot allocate toolpath lookup tables') from exc
        self.padded[py:py + rows, px:px + width] = terrain.filled(floor)

    def _surface(self, iy: int, lo: int, hi: int) -> np.ndarray:
        """Terrain under every offset for samples ``lo:hi``, shaped ``(hi - lo, K)``."""
        rows = (iy + self.dy + self.pad_y)[None, :]
        try:
            return self.padded[rows, self.cols[lo:hi, None] + self.dx[None, :]]
        except MemoryError as exc:
            raise AllocationError(
                f'cannot gather {hi - lo} x {len(self.dz)} terrain samples') from exc

    def scanline(self, iy: int) -> np.ndarray:
        line = np.empty(len(self.cols))
        for lo in range(0, len(self.cols), self.chunk):
            hi = min(len(self.cols), lo + self.chunk)
            line[lo:hi] = (self._surface(iy, lo, hi) - self.dz).max(axis=1)
        return line

    def gaps(self, iy: int, heights: np.ndarray) -> np.ndarray:
        line = np.empty(len(self.cols))
        for lo in range(0, len(self.cols), self.chunk):
            hi = min(len(self.cols), lo + self.chunk)
            surface = self._surface(iy, lo, hi)
            line[lo:hi] = (heights[lo:hi, None] + self.dz - surface).min(axis=1)
        return line


def generate_toolpath(terrain: HeightGrid, tool: ToolOffsetCloud, x_stride: int = 1,
                      y_stride: int = 1, floor_z: Optional[float] = None, *,
                      workers: int = 1) -> Toolpath:
    """Compute tool tip heights over the terrain raster.

    ``x_stride`` and ``y_stride`` count raster cells between samples.
    ``floor_z`` is the terrain height assumed wherever the terrain cloud has
    no coverage (default: the grid's ``out_of_bounds_z``).  Terrain and tool
    must share one grid step.
    """

    x_stride = _check_stride('x_stride', x_stride)
    y_stride = _check_stride('y_stride', y_stride)
    if workers < 1:
        raise InvalidInputError(f'workers must be at least 1, got {workers}')
    if not same_step(terrain.step, tool.step):
        raise InconsistentConfigurationError(
            f'terrain grid step {terrain.step} does not match tool step {tool.step}')
    if tool.count == 0:
        raise InvalidInputError('tool offset cloud is empty')
    rows, width = terrain.shape
    if rows == 0 or width == 0:
        raise InvalidInputError('terrain height grid is empty')
    floor = terrain.out_of_bounds_z if floor_z is None else float(floor_z)

    started = time.perf_counter()
    sample_rows = np.arange(0, rows, y_stride)
    sample_cols = np.arange(0, width, x_stride)
    scanner = _Scanner(terrain, tool, floor, sample_cols)
    try:
        heights = np.empty((len(sample_rows), len(sample_cols)))
    except MemoryError as exc:
        raise AllocationError('cannot allocate toolpath storage') from exc

    if workers > 1 and len(sample_rows) > 1:
        bands = np.array_split(np.arange(len(sample_rows)), min(workers, len(sample_rows)))

        def run_band(band):
            return band, [scanner.scanline(int(sample_rows[r])) for r in band]

        with ThreadPoolExecutor(max_workers=workers) as pool:
            for band, lines in pool.map(run_band, bands):
                for r, line in zip(band, lines):
                    heights[r] = line
    else:
        for r, iy in enumerate(sample_rows):
            heights[r] = scanner.scanline(int(iy))

    heights.setflags(write=False)
    path = Toolpath(heights, x_stride, y_stride, terrain.origin, terrain.step, floor)
    logger.debug('toolpath %dx%d (stride %d/%d) from %d tool points in %.3fs',
                 path.shape[1], path.shape[0], x_stride, y_stride, tool.count,
                 time.perf_counter() - started)
    return path


def clearance(path: Toolpath, terrain: HeightGrid, tool: ToolOffsetCloud) -> np.ndarray:
    """Smallest gap between tool and terrain at every sample.

    Returns ``min over offsets (height + dz - terrain_z)`` shaped like
    ``path.heights``: negative values mean penetration, zero means contact.
    """

    if not same_step(path.step, terrain.step) or not same_step(path.step, tool.step):
        raise InconsistentConfigurationError('toolpath, terrain and tool steps differ')
    sample_cols = np.arange(path.shape[1]) * path.x_stride
    scanner = _Scanner(terrain, tool, path.floor_z, sample_cols)
    gaps = np.empty(path.shape)
    for r in range(path.shape[0]):
        gaps[r] = scanner.gaps(r * path.y_stride, path.heights[r])
    return gaps


__all__ = [
    'STEP_TOLERANCE',
    'MAX_GATHER',
    'HeightGrid',
    'ToolOffsetCloud',
    'Toolpath',
    'generate_toolpath',
    'clearance',
]
