import numpy as np
import pytest

from rastercam.geometry_utils import Triangle
from rastercam.intersect import (FaceFilter, best_hits, intersect_vertical_ray,
                                 intersect_vertical_rays)
from rastercam.mesh import TriangleSet

UP = FaceFilter(normal_sign=1, keep_highest=True)
DOWN = FaceFilter(normal_sign=-1, keep_highest=False)


def _slanted():
    return Triangle.from_vertices((0, 0, 1), (4, 0, 3), (0, 4, 5))


def test_ray_hits_plane_height():
    tri = _slanted()
    z = intersect_vertical_ray(1.0, 1.0, -10.0, tri)
    # plane through the vertices: z = 1 + x/2 + y
    assert z == pytest.approx(2.5)


def test_ray_outside_triangle_misses():
    tri = _slanted()
    assert intersect_vertical_ray(3.0, 3.0, -10.0, tri) is None
    assert intersect_vertical_ray(-0.5, 1.0, -10.0, tri) is None


def test_ray_on_shared_edge_hits():
    tri = _slanted()
    assert intersect_vertical_ray(2.0, 2.0, -10.0, tri) == pytest.approx(4.0)
    assert intersect_vertical_ray(0.0, 0.0, -10.0, tri) == pytest.approx(1.0)


def test_vertical_face_is_parallel():
    tri = Triangle.from_vertices((0, 0, 0), (1, 0, 0), (1, 0, 1))
    assert intersect_vertical_ray(0.5, 0.0, -1.0, tri) is None


def test_hit_below_origin_is_ignored():
    tri = Triangle.from_vertices((0, 0, 0), (1, 0, 0), (0, 1, 0))
    assert intersect_vertical_ray(0.2, 0.2, 0.5, tri) is None
    assert intersect_vertical_ray(0.2, 0.2, -0.5, tri) == pytest.approx(0.0)


def test_vectorised_matches_scalar():
    rng = np.random.default_rng(7)
    tris = TriangleSet(rng.uniform(-5, 5, size=(40, 3, 3)))
    xs = rng.uniform(-5, 5, size=200)
    ys = rng.uniform(-5, 5, size=200)
    indices = np.arange(len(tris))
    hit, z = intersect_vertical_rays(xs, ys, -6.0, tris, indices)
    for i in range(len(xs)):
        for j in indices:
            expected = intersect_vertical_ray(xs[i], ys[i], -6.0, tris[j])
            if expected is None:
                assert not hit[i, j]
            else:
                assert hit[i, j]
                assert z[i, j] == expected


def test_best_hits_picks_by_filter():
    lower = [(0, 0, 1), (2, 0, 1), (0, 2, 1)]
    upper = [(0, 0, 3), (2, 0, 3), (0, 2, 3)]
    tris = TriangleSet([lower, upper])
    xs = np.array([0.5, 5.0])
    ys = np.array([0.5, 5.0])
    found, z, tid = best_hits(xs, ys, 0.0, tris, np.array([0, 1]), UP)
    assert found.tolist() == [True, False]
    assert z[0] == 3.0
    assert tid.tolist() == [1, -1]


def test_best_hits_ties_go_to_first_candidate():
    tri = [(0, 0, 1), (2, 0, 1), (0, 2, 1)]
    tris = TriangleSet([tri, tri])
    every_face = FaceFilter(normal_sign=0, keep_highest=False)
    found, z, tid = best_hits(np.array([0.5]), np.array([0.5]), 0.0, tris,
                              np.array([0, 1]), every_face)
    assert found[0] and tid[0] == 0


def test_face_filter_accepts():
    normals = np.array([-1.0, 0.0, 2.0])
    assert UP.accepts(normals).tolist() == [False, False, True]
    assert DOWN.accepts(normals).tolist() == [True, False, False]
    assert FaceFilter(0, False).accepts(normals).tolist() == [True, True, True]
    assert UP.worst == -np.inf and DOWN.worst == np.inf
