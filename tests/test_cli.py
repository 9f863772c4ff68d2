import json

import pytest

from rastercam.cli import main
from rastercam.io import load_point_cloud, load_toolpath, write_stl
from rastercam.shapes import box, hemisphere_tool


@pytest.fixture
def terrain_stl(tmp_path):
    path = tmp_path / 'terrain.stl'
    write_stl(box(10, 10, 5), path)
    return path


def test_info(terrain_stl, capsys):
    assert main(['info', str(terrain_stl)]) == 0
    out = capsys.readouterr().out
    assert 'triangles: 12 (2 upward, 2 downward, 0 degenerate)' in out
    assert '10 x 10 x 5' in out


def test_rasterize(terrain_stl, tmp_path, capsys):
    out = tmp_path / 'cloud.npz'
    assert main(['rasterize', str(terrain_stl), '--step', '1', '-o', str(out)]) == 0
    cloud = load_point_cloud(out)
    assert cloud.count == 121
    assert 'Exported to:' in capsys.readouterr().out


def test_rasterize_named_step(terrain_stl, tmp_path):
    out = tmp_path / 'cloud.npz'
    assert main(['rasterize', str(terrain_stl), '--step', 'coarse', '--filter', 'down',
                 '-o', str(out)]) == 0
    cloud = load_point_cloud(out)
    assert cloud.step == 0.5
    assert cloud.points[:, 2].max() == 0.0


def test_toolpath_with_ball(terrain_stl, tmp_path):
    out = tmp_path / 'path.json'
    assert main(['-v', 'toolpath', str(terrain_stl), '--ball', '1', '--step', '0.5',
                 '--x-stride', '2', '--floor', '-2', '-o', str(out)]) == 0
    doc = json.loads(out.read_text(encoding='utf-8'))
    assert doc['pointsPerLine'] == 11
    assert doc['numScanlines'] == 21
    assert doc['floorZ'] == -2.0


def test_toolpath_with_tool_mesh_and_config(terrain_stl, tmp_path):
    tool = tmp_path / 'tool.stl'
    write_stl(hemisphere_tool(1.5, rings=6, sectors=12), tool)
    config = tmp_path / 'mill.yaml'
    config.write_text('stepSize: 0.5\nyStep: 5\n', encoding='utf-8')
    out = tmp_path / 'path.npz'
    assert main(['toolpath', str(terrain_stl), str(tool), '--config', str(config),
                 '-o', str(out)]) == 0
    path = load_toolpath(out)
    assert path.y_stride == 5
    assert path.shape == (5, 21)


def test_toolpath_needs_exactly_one_tool(terrain_stl, tmp_path, capsys):
    out = tmp_path / 'path.json'
    assert main(['toolpath', str(terrain_stl), '-o', str(out)]) == 1
    assert 'Error' in capsys.readouterr().err
    assert not out.exists()


def test_errors_exit_nonzero(tmp_path, capsys):
    assert main(['info', str(tmp_path / 'missing.stl')]) == 1
    assert 'Error' in capsys.readouterr().err
    stl = tmp_path / 'mesh.stl'
    write_stl(box(), stl)
    assert main(['rasterize', str(stl), '--step', '0', '-o', str(tmp_path / 'x.npz')]) == 1


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert 'usage' in capsys.readouterr().out
