import math

import pytest

from rastercam.geometry_utils import (BoundingBox, Triangle, add, bounds_of, cross,
                                      sub, to_vec3, triangle_area,
                                      triangle_is_degenerate, triangle_normal_z)


def test_vector_helpers():
    assert add((1, 2, 3), (4, 5, 6)) == (5, 7, 9)
    assert sub((4, 5, 6), (1, 2, 3)) == (3, 3, 3)
    assert cross((1, 0, 0), (0, 1, 0)) == (0, 0, 1)
    assert to_vec3([1, 2, 3, 1]) == (1.0, 2.0, 3.0)
    with pytest.raises(ValueError):
        to_vec3([1, 2])


def test_normal_z_sign_follows_winding():
    a, b, c = (0, 0, 0), (1, 0, 0), (0, 1, 0)
    assert triangle_normal_z(a, b, c) > 0
    assert triangle_normal_z(a, c, b) < 0
    # vertical face
    assert triangle_normal_z((0, 0, 0), (1, 0, 0), (1, 0, 1)) == 0


def test_area_and_degenerate():
    assert math.isclose(triangle_area((0, 0, 0), (2, 0, 0), (0, 2, 0)), 2.0)
    assert triangle_is_degenerate((0, 0, 0), (1, 1, 1), (2, 2, 2))
    assert not triangle_is_degenerate((0, 0, 0), (1, 0, 0), (0, 1, 0))


def test_triangle_from_vertices():
    tri = Triangle.from_vertices([0, 0, 1], [1, 0, 1], [0, 1, 1])
    assert tri.normal_z == 1.0
    assert tri.vertices == ((0.0, 0.0, 1.0), (1.0, 0.0, 1.0), (0.0, 1.0, 1.0))
    assert not tri.is_degenerate


def test_bounding_box():
    box = bounds_of([(0, -1, 2), (4, 3, -2), (1, 1, 1)])
    assert box.min == (0, -1, -2)
    assert box.max == (4, 3, 2)
    assert (box.width, box.depth, box.height) == (4, 4, 4)
    assert box.center == (2.0, 1.0, 0.0)
    assert box.contains_xy(4, 3)
    assert not box.contains_xy(4.5, 0)
    other = BoundingBox((4, 3, 10), (5, 5, 11))
    assert box.overlaps_xy(other)
    assert not box.overlaps_xy(BoundingBox((5, 0, 0), (6, 1, 1)))
    assert box.as_list() == [[0, -1, -2], [4, 3, 2]]
