"""I/O utilities for rastercam."""

from .stl import read_stl, write_stl
from .export import load_point_cloud, load_toolpath, save_point_cloud, save_toolpath

__all__ = [
    'read_stl',
    'write_stl',
    'save_point_cloud',
    'load_point_cloud',
    'save_toolpath',
    'load_toolpath',
]
