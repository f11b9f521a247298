"""Tests for fillet wedge triangulation."""
import math

import numpy as np
import pytest

from mesh_fillet.contracts import ErrorKind
from mesh_fillet.wedge import build_fillet_wedge


def _make_straight(n=3, length=10.0):
    z = np.linspace(0.0, length, n)
    lo, hi = np.full(n, 18.0), np.full(n, 20.0)
    center = np.column_stack([lo, lo, z])
    ta = np.column_stack([hi, lo, z])
    tb = np.column_stack([lo, hi, z])
    edge = np.column_stack([hi, hi, z])
    return center, ta, tb, edge


def _make_ring(steps=8):
    """Closed rim of a radius-10 disc at z=0, fillet radius 2, repeated first point."""
    angles = [2 * math.pi * k / steps for k in range(steps)] + [0.0]

    def ring(r, z):
        return np.array([[r * math.cos(a), r * math.sin(a), z] for a in angles])

    return ring(8.0, -2.0), ring(10.0, -2.0), ring(8.0, 0.0), ring(10.0, 0.0)


class TestOpenWedge:
    """Wedge along an open straight edge."""

    def test_triangles_and_faces(self):
        build = build_fillet_wedge(*_make_straight(), radius=2.0, name="f")
        assert build.error is None
        assert build.valid_triangles == 20
        assert build.skipped_triangles == 0
        assert set(build.solid.face_names()) == {
            "f_SURFACE_CA", "f_SURFACE_CB", "f_FACE_A", "f_FACE_B", "f_END_CAP_1", "f_END_CAP_2",
        }

    def test_closed_and_sized(self):
        solid = build_fillet_wedge(*_make_straight(), radius=2.0, name="f").solid
        assert solid.is_watertight
        assert solid.volume == pytest.approx(40.0, rel=1e-3)

    def test_faces_on_model_are_pushed(self):
        solid = build_fillet_wedge(*_make_straight(), radius=2.0, name="f").solid
        lo, hi = solid.bounds
        assert hi[0] > 20.0 and hi[1] > 20.0
        assert lo[2] < 0.0 and hi[2] > 10.0

    def test_outset_keeps_end_caps(self):
        solid = build_fillet_wedge(*_make_straight(), radius=2.0, side_mode="OUTSET", name="f").solid
        lo, hi = solid.bounds
        assert lo[2] == pytest.approx(0.0)
        assert hi[2] == pytest.approx(10.0)

    def test_end_cap_metadata(self):
        solid = build_fillet_wedge(*_make_straight(), radius=2.0, name="f").solid
        meta = solid.get_face_metadata("f_END_CAP_1")
        assert meta["fillet_end_cap"] is True
        assert meta["fillet_round_face"] == "f_TUBE_Outer"
        assert meta["fillet_source_area"] > 0

    def test_timings_recorded(self):
        timings = {}
        build_fillet_wedge(*_make_straight(), radius=2.0, timings=timings)
        assert "build_fillet_wedge" in timings


class TestClosedWedge:
    """Wedge around a closed loop."""

    def test_loop_faces(self):
        build = build_fillet_wedge(*_make_ring(), radius=2.0, closed_loop=True, name="r")
        assert build.error is None
        assert set(build.solid.face_names()) == {"r_WEDGE_A", "r_WEDGE_B", "r_SIDE_A", "r_SIDE_B"}
        assert build.solid.is_watertight
        assert build.solid.get_face_metadata("r_WEDGE_A")["fillet_end_cap"] is False


class TestDegenerateWedge:
    """Collapsed inputs."""

    def test_identical_points_fail(self):
        same = np.zeros((3, 3))
        build = build_fillet_wedge(same, same, same, same, radius=1.0)
        assert build.valid_triangles == 0
        assert build.error_kind is ErrorKind.WEDGE_TRIANGULATION_FAILURE
