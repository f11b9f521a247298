"""Tests for chamfer rail self-intersection handling."""
import numpy as np
import pytest

from mesh_fillet.self_intersection import (
    count_rail_self_intersections,
    find_self_intersection,
    project_to_plane,
    resolve_self_intersections,
)


def _make_crossing_rail(z=0.0):
    pts = [(0, 0), (2, 0), (2, 1), (1, -1), (3, -1)]
    return [np.array([x, y, z], dtype=float) for x, y in pts]


class TestDetection:
    """Crossing search in the rail's own plane."""

    def test_first_crossing(self):
        i, j, t, u = find_self_intersection(_make_crossing_rail())
        assert (i, j) == (0, 2)
        assert t == pytest.approx(0.75)
        assert u == pytest.approx(0.5)

    def test_count(self):
        assert count_rail_self_intersections(_make_crossing_rail()) == 1

    def test_simple_rail_has_none(self):
        rail = [np.array([x, 0.0, 0.0]) for x in range(6)]
        assert find_self_intersection(rail) is None
        assert count_rail_self_intersections(rail) == 0

    def test_projection_preserves_lengths(self):
        rail = _make_crossing_rail(z=3.0)
        coords = project_to_plane(rail)
        assert coords.shape == (5, 2)
        assert np.linalg.norm(coords[1] - coords[0]) == pytest.approx(2.0)


class TestResolve:
    """Collapsing crossings in lockstep across rails."""

    def test_collapse_all_rails_at_same_indices(self):
        rails = [_make_crossing_rail(), _make_crossing_rail(z=1.0)]
        collapsed = resolve_self_intersections(rails)
        assert collapsed == 1
        assert [len(r) for r in rails] == [4, 4]
        np.testing.assert_allclose(rails[0][1], [1.5, 0.0, 0.0])
        np.testing.assert_allclose(rails[1][1], [1.5, 0.0, 1.0])
        assert find_self_intersection(rails[0]) is None

    def test_closed_rails_untouched(self):
        rails = [_make_crossing_rail()]
        assert resolve_self_intersections(rails, closed=True) == 0
        assert len(rails[0]) == 5

    def test_mismatched_lengths_untouched(self):
        rails = [_make_crossing_rail(), _make_crossing_rail()[:4]]
        assert resolve_self_intersections(rails) == 0
