"""Save and load point clouds and toolpaths.

``.npz`` archives keep every field needed to rebuild the object; ``.xyz``
(point clouds) and ``.json`` (toolpaths) are plain interchange formats.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Union

import numpy as np

from rastercam.errors import InvalidInputError
from rastercam.geometry_utils import BoundingBox
from rastercam.rasterize import FilterMode, PointCloud, RasterGeometry
from rastercam.toolpath import Toolpath

PathLike = Union[str, Path]


def _suffix(path: Path, allowed) -> str:
    suffix = path.suffix.lower()
    if suffix not in allowed:
        raise InvalidInputError(
            f'unsupported file type {suffix or "(none)"!r} for {path}; '
            f'expected one of {", ".join(allowed)}')
    return suffix


def save_point_cloud(cloud: PointCloud, path: PathLike) -> Path:
    """Write ``cloud`` as ``.npz`` (lossless) or ``.xyz`` (one point per line)."""
    path = Path(path)
    suffix = _suffix(path, ('.npz', '.xyz'))
    if suffix == '.xyz':
        np.savetxt(path, cloud.points, fmt='%.6f')
        return path
    raster = cloud.raster
    np.savez_compressed(
        path,
        points=cloud.points,
        cells=cloud.cells,
        triangle_ids=cloud.triangle_ids,
        bounds=np.array([cloud.bounds.min, cloud.bounds.max]),
        step=cloud.step,
        raster_origin=np.array(raster.origin),
        raster_size=np.array([raster.columns, raster.rows]),
        filter_mode=cloud.filter_mode.value,
    )
    return path


def load_point_cloud(path: PathLike) -> PointCloud:
    """Read a cloud written by :func:`save_point_cloud` in ``.npz`` form."""
    path = Path(path)
    _suffix(path, ('.npz',))
    with np.load(path, allow_pickle=False) as data:
        step = float(data['step'])
        origin = tuple(float(c) for c in data['raster_origin'])
        columns, rows = (int(c) for c in data['raster_size'])
        bounds = data['bounds']
        arrays = [np.array(data[k]) for k in ('points', 'cells', 'triangle_ids')]
        mode = FilterMode.coerce(str(data['filter_mode']))
    for arr in arrays:
        arr.setflags(write=False)
    return PointCloud(arrays[0], arrays[1], arrays[2],
                      BoundingBox(tuple(float(c) for c in bounds[0]),
                                  tuple(float(c) for c in bounds[1])),
                      step, RasterGeometry(origin, step, columns, rows), mode)


def save_toolpath(path_obj: Toolpath, path: PathLike) -> Path:
    """Write a toolpath as ``.npz`` or as a ``.json`` document of scanlines."""
    path = Path(path)
    suffix = _suffix(path, ('.npz', '.json'))
    if suffix == '.npz':
        np.savez_compressed(
            path,
            heights=path_obj.heights,
            strides=np.array([path_obj.x_stride, path_obj.y_stride]),
            origin=np.array(path_obj.origin),
            step=path_obj.step,
            floor_z=path_obj.floor_z,
        )
        return path
    doc = {
        'origin': list(path_obj.origin),
        'step': path_obj.step,
        'xStride': path_obj.x_stride,
        'yStride': path_obj.y_stride,
        'floorZ': path_obj.floor_z,
        'numScanlines': path_obj.shape[0],
        'pointsPerLine': path_obj.shape[1],
        'scanlines': path_obj.heights.tolist(),
    }
    with path.open('w', encoding='utf-8') as fp:
        json.dump(doc, fp)
    return path


def load_toolpath(path: PathLike) -> Toolpath:
    """Read a toolpath written by :func:`save_toolpath` in ``.npz`` form."""
    path = Path(path)
    _suffix(path, ('.npz',))
    with np.load(path, allow_pickle=False) as data:
        heights = np.array(data['heights'])
        x_stride, y_stride = (int(s) for s in data['strides'])
        origin = tuple(float(c) for c in data['origin'])
        step = float(data['step'])
        floor_z = float(data['floor_z'])
    heights.setflags(write=False)
    return Toolpath(heights, x_stride, y_stride, origin, step, floor_z)


__all__ = [
    'save_point_cloud',
    'load_point_cloud',
    'save_toolpath',
    'load_toolpath',
]
