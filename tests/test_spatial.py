import numpy as np
import pytest

from rastercam.errors import AllocationError, InvalidInputError
from rastercam.mesh import TriangleSet
from rastercam.shapes import heightfield
from rastercam.spatial import SpatialGrid


def _terrain():
    return heightfield(lambda x, y: np.sin(x) * np.cos(y), (0, 40), (0, 20), divisions=24)


def test_default_resolution_is_clamped():
    tris = _terrain()
    grid = SpatialGrid.build(tris)
    # 40 x 20 mm at 5 mm cells would be 9 x 5; the minimum is 10 per axis
    assert grid.resolution == (10, 10)
    assert grid.cell_size == pytest.approx((4.0, 2.0))
    assert grid.origin == (0.0, 0.0)


def test_large_extent_hits_upper_clamp():
    tris = heightfield(lambda x, y: 0.0, (0, 1000), (0, 60), divisions=4)
    grid = SpatialGrid.build(tris)
    assert grid.resolution == (100, 13)


def test_explicit_resolution():
    grid = SpatialGrid.build(_terrain(), resolution=(4, 2))
    assert grid.resolution == (4, 2)
    assert grid.stats().cells == 8


def test_bad_parameters():
    tris = _terrain()
    with pytest.raises(InvalidInputError):
        SpatialGrid.build(tris, cell_size=0.0)
    with pytest.raises(InvalidInputError):
        SpatialGrid.build(tris, resolution=(0, 3))


def test_every_cell_holds_overlapping_triangles_in_order():
    tris = _terrain()
    grid = SpatialGrid.build(tris)
    sx, sy = grid.cell_size
    seen = set()
    for cx, cy, members in grid.cells():
        assert np.all(np.diff(members) > 0)
        lo_x = grid.origin[0] + cx * sx
        lo_y = grid.origin[1] + cy * sy
        for t in members:
            assert tris.xy_min[t, 0] <= lo_x + sx + 1e-9
            assert tris.xy_max[t, 0] >= lo_x - 1e-9
            assert tris.xy_min[t, 1] <= lo_y + sy + 1e-9
            assert tris.xy_max[t, 1] >= lo_y - 1e-9
        seen.update(members.tolist())
    assert seen == set(range(len(tris)))


def test_query_contains_every_triangle_under_the_point():
    tris = _terrain()
    grid = SpatialGrid.build(tris)
    rng = np.random.default_rng(3)
    for x, y in rng.uniform((0, 0), (40, 20), size=(100, 2)):
        under = set(np.flatnonzero((tris.xy_min[:, 0] <= x) & (tris.xy_max[:, 0] >= x) &
                                   (tris.xy_min[:, 1] <= y) & (tris.xy_max[:, 1] >= y)))
        assert under <= set(grid.query(x, y))


def test_subset_and_points_outside_clamp():
    tris = _terrain()
    subset = np.arange(0, len(tris), 2)
    grid = SpatialGrid.build(tris, subset)
    assert grid.stats().entries >= len(subset)
    assert all(t % 2 == 0 for _, _, m in grid.cells() for t in m)
    assert grid.cell_of(-100.0, -100.0) == (0, 0)
    assert grid.cell_of(1e6, 1e6) == (9, 9)
    with pytest.raises(IndexError):
        grid.cell_indices(10, 0)


def test_flat_axis_gets_one_cell():
    tris = TriangleSet([[(0, 0, 0), (5, 0, 0), (5, 0, 1)]])
    grid = SpatialGrid.build(tris)
    assert grid.resolution[1] == 1
    assert grid.query(2.0, 0.0) == [0]


def test_stats():
    grid = SpatialGrid.build(_terrain(), resolution=(2, 2))
    stats = grid.stats()
    assert stats.occupied == 4
    assert stats.max_per_cell <= stats.entries
    assert stats.mean_per_cell == pytest.approx(stats.entries / 4)


def test_allocation_failure(monkeypatch):
    tris = _terrain()

    def no_memory(*args, **kwargs):
        raise MemoryError('simulated')

    monkeypatch.setattr(np, 'repeat', no_memory)
    with pytest.raises(AllocationError) as excinfo:
        SpatialGrid.build(tris)
    assert isinstance(excinfo.value, MemoryError)
