"""STL import and export for triangle sets."""

from __future__ import annotations

import logging
import re
import struct
from typing import Tuple

import numpy as np

from rastercam.errors import InvalidInputError
from rastercam.mesh import TriangleSet

logger = logging.getLogger(__name__)

_HEADER_SIZE = 80
_RECORD_SIZE = 50
_STRUCT_TRIANGLE = struct.Struct('<12fH')

# little-endian binary facet record: normal, three vertices, attribute word
_RECORD_DTYPE = np.dtype([
    ('normal', '<f4', (3,)),
    ('vertices', '<f4', (3, 3)),
    ('attr', '<u2'),
])

_NUMBER = r'([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)'
_VERTEX_PATTERN = re.compile(r'vertex\s+' + r'\s+'.join([_NUMBER] * 3), re.IGNORECASE)
_FACET_PATTERN = re.compile(r'facet\b(.*?)endfacet', re.IGNORECASE | re.DOTALL)


def _is_binary_stl(data: bytes) -> bool:
    """Determine if STL data is binary format.

    Binary STL has 80-byte header + 4-byte count, then 50 bytes per triangle.
    ASCII STL starts with 'solid' keyword.
    """
    if len(data) < _HEADER_SIZE + 4:
        return False

    header = data[:_HEADER_SIZE].decode('ascii', errors='ignore').strip().lower()
    if not header.startswith('solid'):
        return True
    # 'solid' may just be the start of a binary header; trust the size
    tri_count = struct.unpack('<I', data[80:84])[0]
    if len(data) == _HEADER_SIZE + 4 + tri_count * _RECORD_SIZE:
        rest = data[84:min(200, len(data))]
        return not (b'facet' in rest or b'vertex' in rest)
    return False


def _parse_binary_stl(data: bytes) -> np.ndarray:
    tri_count = struct.unpack('<I', data[80:84])[0]
    available = (len(data) - _HEADER_SIZE - 4) // _RECORD_SIZE
    if available < tri_count:
        logger.warning('binary STL declares %d triangles but holds %d; truncating',
                       tri_count, available)
        tri_count = available
    records = np.frombuffer(data, dtype=_RECORD_DTYPE, count=tri_count,
                            offset=_HEADER_SIZE + 4)
    return records['vertices'].astype(np.float64)


def _parse_ascii_stl(text: str) -> np.ndarray:
    triangles = []
    for facet in _FACET_PATTERN.finditer(text):
        verts = [tuple(float(g) for g in m.groups())
                 for m in _VERTEX_PATTERN.finditer(facet.group(1))]
        if len(verts) != 3:
            raise InvalidInputError(
                f'ASCII STL facet has {len(verts)} vertices, expected 3')
        triangles.append(verts)
    return np.array(triangles, dtype=np.float64).reshape(-1, 3, 3)


def read_stl(path_or_file) -> TriangleSet:
    """Read a binary or ASCII STL file into a ``TriangleSet``.

    ``path_or_file`` is a filesystem path or an open file object.  Stored
    facet normals are ignored: orientation is taken from vertex winding.
    """

    if hasattr(path_or_file, 'read'):
        data = path_or_file.read()
        if isinstance(data, str):
            data = data.encode('utf-8')
    else:
        with open(path_or_file, 'rb') as f:
            data = f.read()

    if _is_binary_stl(data):
        vertices = _parse_binary_stl(data)
    else:
        vertices = _parse_ascii_stl(data.decode('utf-8', errors='replace'))

    triangles = TriangleSet(vertices)
    logger.debug('read %d triangles from STL', len(triangles))
    return triangles


def _facet_normal(tri: np.ndarray) -> Tuple[float, float, float]:
    n = np.cross(tri[1] - tri[0], tri[2] - tri[0])
    length = float(np.linalg.norm(n))
    if length <= 0.0:
        return 0.0, 0.0, 0.0
    return tuple(float(c) for c in n / length)


def write_stl(triangles: TriangleSet, path_or_file, *, binary: bool = True,
              name: str = 'rastercam') -> None:
    """Write a ``TriangleSet`` to STL.

    ``path_or_file`` can be a filesystem path or an open binary/text stream.
    """

    if binary:
        _write_binary(triangles, path_or_file, name)
    else:
        _write_ascii(triangles, path_or_file, name)


def _write_binary(triangles: TriangleSet, path_or_file, name: str) -> None:
    close_when_done = False
    if hasattr(path_or_file, 'write'):
        stream = path_or_file
    else:
        stream = open(path_or_file, 'wb')
        close_when_done = True

    try:
        header = (name[:_HEADER_SIZE]).encode('ascii', errors='replace')
        header = header.ljust(_HEADER_SIZE, b' ')
        stream.write(header)
        stream.write(struct.pack('<I', len(triangles)))

        for tri in triangles.vertices:
            stream.write(_STRUCT_TRIANGLE.pack(*_facet_normal(tri), *tri.reshape(-1), 0))
    finally:
        if close_when_done:
            stream.close()


def _write_ascii(triangles: TriangleSet, path_or_file, name: str) -> None:
    close_when_done = False
    if hasattr(path_or_file, 'write'):
        stream = path_or_file
    else:
        stream = open(path_or_file, 'w', encoding='ascii')
        close_when_done = True

    try:
        print(f"solid {name}", file=stream)
        for tri in triangles.vertices:
            n = _facet_normal(tri)
            print(f"  facet normal {n[0]:.6e} {n[1]:.6e} {n[2]:.6e}", file=stream)
            print("    outer loop", file=stream)
            for v in tri:
                print(f"      vertex {v[0]:.9e} {v[1]:.9e} {v[2]:.9e}", file=stream)
            print("    endloop", file=stream)
            print("  endfacet", file=stream)
        print(f"endsolid {name}", file=stream)
    finally:
        if close_when_done:
            stream.close()


__all__ = ['read_stl', 'write_stl']
