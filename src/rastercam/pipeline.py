"""Pipeline boundary: run-scoped handles and correlated conversion requests.

A :class:`PipelineRun` owns every structure produced during one conversion
(point clouds, height grids, tool clouds, toolpaths) and hands out opaque
:class:`Handle` objects for them.  Handles are released explicitly with
:meth:`PipelineRun.release`, and all of them when the run closes.

:class:`ConversionService` runs rasterization requests, possibly on an
executor.  Every request carries a caller-chosen ``request_id`` and
``purpose`` (``'terrain'``, ``'tool'``, ...) that come back unchanged on the
result, so results can be matched to requests in any completion order.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from rastercam.config import PipelineConfig
from rastercam.errors import HandleError, InvalidInputError
from rastercam.mesh import TriangleSet
from rastercam.rasterize import FilterMode, PointCloud, rasterize
from rastercam.toolpath import (HeightGrid, ToolOffsetCloud, Toolpath,
                                generate_toolpath)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Handle:
    """Opaque reference to a structure owned by a :class:`PipelineRun`."""

    run_id: str
    key: int
    kind: str
    purpose: Optional[str] = None


class PipelineRun:
    """Arena for one conversion run; use it as a context manager.

    Step size, strides, floor and filters come from the run's
    ``PipelineConfig`` so every stage sees the same values.
    """

    def __init__(self, config: Optional[PipelineConfig] = None, run_id: Optional[str] = None):
        self.config = config or PipelineConfig()
        self.run_id = run_id or uuid.uuid4().hex
        self._items: Dict[int, Any] = {}
        self._counter = itertools.count(1)
        self._closed = False

    def __enter__(self) -> "PipelineRun":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return 'PipelineRun(run_id={!r}, live={}, closed={})'.format(
            self.run_id, len(self._items), self._closed)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live_handles(self) -> int:
        return len(self._items)

    def _store(self, kind: str, item: Any, purpose: Optional[str]) -> Handle:
        if self._closed:
            raise HandleError(f'pipeline run {self.run_id} is closed')
        key = next(self._counter)
        self._items[key] = item
        return Handle(self.run_id, key, kind, purpose)

    def get(self, handle: Handle, kind: Optional[str] = None) -> Any:
        """Resolve ``handle``; ``kind`` additionally checks what it refers to."""
        if not isinstance(handle, Handle) or handle.run_id != self.run_id:
            raise HandleError(f'handle {handle!r} does not belong to run {self.run_id}')
        if handle.key not in self._items:
            raise HandleError(f'handle {handle.key} ({handle.kind}) has been released')
        if kind is not None and handle.kind != kind:
            raise HandleError(f'expected a {kind} handle, got {handle.kind}')
        return self._items[handle.key]

    def release(self, handle: Handle) -> None:
        self.get(handle)
        del self._items[handle.key]

    def close(self) -> None:
        """Release every live handle; the run cannot be used afterwards."""
        if self._items:
            logger.debug('run %s: releasing %d handle(s)', self.run_id, len(self._items))
        self._items.clear()
        self._closed = True

    def rasterize(self, triangles, filter_mode=None, *, purpose: Optional[str] = None) -> Handle:
        """Rasterize at the run's step.  ``filter_mode`` defaults by ``purpose``."""
        if filter_mode is None:
            filter_mode = (self.config.tool_filter if purpose == 'tool'
                           else self.config.terrain_filter)
        cloud = rasterize(triangles, self.config.step_size, filter_mode,
                          cell_size=self.config.cell_size, workers=self.config.workers)
        return self._store('point_cloud', cloud, purpose)

    def build_height_grid(self, cloud: Handle) -> Handle:
        grid = HeightGrid.build(self.get(cloud, 'point_cloud'),
                                out_of_bounds_z=self.config.floor_z)
        return self._store('height_grid', grid, cloud.purpose)

    def build_tool(self, cloud: Handle) -> Handle:
        tool = ToolOffsetCloud.build(self.get(cloud, 'point_cloud'), self.config.step_size)
        return self._store('tool', tool, cloud.purpose)

    def generate_toolpath(self, terrain: Handle, tool: Handle) -> Handle:
        path = generate_toolpath(self.get(terrain, 'height_grid'), self.get(tool, 'tool'),
                                 self.config.x_stride, self.config.y_stride,
                                 self.config.floor_z, workers=self.config.workers)
        return self._store('toolpath', path, 'toolpath')


@dataclass(frozen=True, eq=False)
class RasterizeRequest:
    """One rasterization job, tagged for correlation with its result."""

    request_id: str
    purpose: str
    triangles: Any
    step_size: float
    filter_mode: FilterMode = FilterMode.UPWARD_FACING
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class RasterizeResult:
    request_id: str
    purpose: str
    cloud: PointCloud
    elapsed: float


class ConversionService:
    """Executes :class:`RasterizeRequest` objects, synchronously or in the background.

    Pass an ``executor`` to share one, or ``max_workers`` to let the service
    own a thread pool (shut down by :meth:`shutdown` or on context exit).
    """

    def __init__(self, executor: Optional[Executor] = None, max_workers: Optional[int] = None):
        self._own_executor = executor is None
        self._executor = executor
        self._max_workers = max_workers
        self._lock = threading.Lock()

    def __enter__(self) -> "ConversionService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    @staticmethod
    def run(request: RasterizeRequest) -> RasterizeResult:
        if not request.request_id:
            raise InvalidInputError('request_id must be a non-empty string')
        started = time.perf_counter()
        cloud = rasterize(request.triangles, request.step_size, request.filter_mode,
                          **request.options)
        elapsed = time.perf_counter() - started
        logger.info('request %s (%s): %d points in %.3fs', request.request_id,
                    request.purpose, cloud.count, elapsed)
        return RasterizeResult(request.request_id, request.purpose, cloud, elapsed)

    def submit(self, request: RasterizeRequest) -> "Future[RasterizeResult]":
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers,
                                                    thread_name_prefix='rastercam')
            return self._executor.submit(self.run, request)

    def shutdown(self, wait: bool = True) -> None:
        if not self._own_executor:
            return
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)


@dataclass(frozen=True, eq=False)
class MillingResult:
    terrain: PointCloud
    tool: PointCloud
    toolpath: Toolpath
    config: PipelineConfig


def mill_meshes(terrain, tool, config: Optional[PipelineConfig] = None) -> MillingResult:
    """Rasterize a terrain and a tool mesh and drop the tool onto the terrain.

    Both meshes are rasterized at ``config.step_size`` inside one
    :class:`PipelineRun`; the results are copied out before the run closes.
    """

    config = config or PipelineConfig()
    if not isinstance(terrain, TriangleSet):
        terrain = TriangleSet(terrain)
    if not isinstance(tool, TriangleSet):
        tool = TriangleSet(tool)

    with PipelineRun(config) as run:
        terrain_cloud = run.rasterize(terrain, purpose='terrain')
        tool_cloud = run.rasterize(tool, purpose='tool')
        grid = run.build_height_grid(terrain_cloud)
        offsets = run.build_tool(tool_cloud)
        path = run.generate_toolpath(grid, offsets)
        result = MillingResult(run.get(terrain_cloud), run.get(tool_cloud),
                               run.get(path), config)
    logger.info('milled %d terrain points with %d tool points: %d samples',
                result.terrain.count, result.tool.count, result.toolpath.sample_count)
    return result


__all__ = [
    'Handle',
    'PipelineRun',
    'RasterizeRequest',
    'RasterizeResult',
    'ConversionService',
    'MillingResult',
    'mill_meshes',
]
