import json

import numpy as np
import pytest

from rastercam.errors import InvalidInputError
from rastercam.io import load_point_cloud, load_toolpath, save_point_cloud, save_toolpath
from rastercam.rasterize import FilterMode, rasterize
from rastercam.shapes import box
from rastercam.toolpath import HeightGrid, ToolOffsetCloud, generate_toolpath


@pytest.fixture
def cloud():
    return rasterize(box(3, 2, 1), 0.5, FilterMode.UPWARD_FACING)


@pytest.fixture
def path(cloud):
    terrain = HeightGrid.build(cloud, out_of_bounds_z=-1.0)
    tool = ToolOffsetCloud.from_points([(0, 0, 0), (0.5, 0, 0.5)], 0.5)
    return generate_toolpath(terrain, tool, 2, 1)


def test_point_cloud_npz(tmp_path, cloud):
    out = save_point_cloud(cloud, tmp_path / 'cloud.npz')
    loaded = load_point_cloud(out)
    assert np.array_equal(loaded.points, cloud.points)
    assert np.array_equal(loaded.cells, cloud.cells)
    assert loaded.raster == cloud.raster
    assert loaded.bounds == cloud.bounds
    assert loaded.filter_mode is FilterMode.UPWARD_FACING


def test_point_cloud_xyz(tmp_path, cloud):
    out = save_point_cloud(cloud, tmp_path / 'cloud.xyz')
    data = np.loadtxt(out)
    assert data.shape == (cloud.count, 3)
    assert np.allclose(data, cloud.points)


def test_toolpath_npz(tmp_path, path):
    loaded = load_toolpath(save_toolpath(path, tmp_path / 'path.npz'))
    assert np.array_equal(loaded.heights, path.heights)
    assert (loaded.x_stride, loaded.y_stride) == (2, 1)
    assert loaded.floor_z == -1.0


def test_toolpath_json(tmp_path, path):
    out = save_toolpath(path, tmp_path / 'path.json')
    doc = json.loads(out.read_text(encoding='utf-8'))
    assert doc['numScanlines'] == path.shape[0]
    assert doc['pointsPerLine'] == path.shape[1]
    assert doc['xStride'] == 2
    assert np.allclose(doc['scanlines'], path.heights)


def test_unsupported_suffix(tmp_path, cloud, path):
    with pytest.raises(InvalidInputError):
        save_point_cloud(cloud, tmp_path / 'cloud.ply')
    with pytest.raises(InvalidInputError):
        save_toolpath(path, tmp_path / 'path.xyz')
