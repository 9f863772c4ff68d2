# -*- coding: utf-8 -*-
"""Vertical ray-cast rasterization of triangle meshes and height-map toolpaths."""

from importlib.metadata import PackageNotFoundError, version

from .errors import (AllocationError, HandleError, InconsistentConfigurationError,
                     InvalidInputError, RasterCamError)
from .mesh import TriangleSet
from .rasterize import FilterMode, PointCloud, rasterize
from .spatial import SpatialGrid
from .toolpath import HeightGrid, ToolOffsetCloud, Toolpath, generate_toolpath

try:
    __version__ = version("rastercam")
except PackageNotFoundError:  # pragma: no cover - handled when package not installed
    __version__ = "unknown"

__all__ = [
    'RasterCamError',
    'InvalidInputError',
    'InconsistentConfigurationError',
    'AllocationError',
    'HandleError',
    'TriangleSet',
    'FilterMode',
    'PointCloud',
    'rasterize',
    'SpatialGrid',
    'HeightGrid',
    'ToolOffsetCloud',
    'Toolpath',
    'generate_toolpath',
]
