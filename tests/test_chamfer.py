"""Tests for chamfer rails, prisms and the chamfer applier."""
import math

import numpy as np
import pytest

from mesh_fillet.chamfer import apply_chamfer, build_chamfer_prism, build_chamfer_solid
from mesh_fillet.chamfer_rails import (
    build_chamfer_rails,
    compute_rail_order,
    inflate_rails,
    shift_edge_point,
)
from mesh_fillet.contracts import ChamferConfig, Edge, ErrorKind
from mesh_fillet.primitives import make_cylinder


class TestRails:
    """Offset rails on the two faces of a box edge."""

    def test_rails_lie_on_faces(self, box_solid, box_edge):
        rails = build_chamfer_rails(box_edge, 2.0)
        assert len(rails) == 2
        n_a = box_solid.average_face_normal(box_edge.face_a)
        n_b = box_solid.average_face_normal(box_edge.face_b)
        for p, a, b in zip(rails.rail_p, rails.rail_a, rails.rail_b):
            assert np.linalg.norm(a - p) == pytest.approx(2.0)
            assert np.linalg.norm(b - p) == pytest.approx(2.0)
            assert float((a - p) @ n_a) == pytest.approx(0.0, abs=1e-12)
            assert float((b - p) @ n_b) == pytest.approx(0.0, abs=1e-12)
            assert np.all(a[:2] <= 20.0) and np.all(b[:2] <= 20.0)

    def test_outset_points_away(self, box_edge):
        rails = build_chamfer_rails(box_edge, 2.0, direction="OUTSET")
        assert max(rails.rail_a[0][0], rails.rail_a[0][1]) == pytest.approx(22.0)

    def test_resampled_when_not_snapped(self, box_edge):
        rails = build_chamfer_rails(box_edge, 1.0, sample_count=12, snap_seam_to_edge=False)
        assert len(rails) == 12

    def test_edge_without_faces_raises(self, box_solid):
        edge = Edge(points=[[0, 0, 0], [0, 0, 1]], solid=box_solid)
        with pytest.raises(ValueError):
            build_chamfer_rails(edge, 1.0)

    def test_rail_order_fixes_shuffled_points(self):
        pts = [np.array([x, 0.0, 0.0]) for x in (0, 2, 1, 3)]
        assert compute_rail_order(pts, closed=False) == [0, 2, 1, 3]

    def test_rail_order_keeps_ordered_points(self):
        pts = [np.array([x, 0.0, 0.0]) for x in range(4)]
        assert compute_rail_order(pts, closed=False) is None

    def test_shift_edge_point_offsets_both_planes(self):
        out = shift_edge_point(np.zeros(3), np.array([1.0, 0, 0]), np.array([0, 1.0, 0]), 0.1)
        np.testing.assert_allclose(out, [0.1, 0.1, 0.0])

    def test_inflate_keeps_bevel_plane(self, box_edge):
        rails = build_chamfer_rails(box_edge, 2.0)
        grown = inflate_rails(rails, 0.1)
        a, b = grown.rail_a[0], grown.rail_b[0]
        # bevel plane x + y = 38
        assert a[0] + a[1] == pytest.approx(38.0)
        assert b[0] + b[1] == pytest.approx(38.0)
        assert np.linalg.norm(b - a) > np.linalg.norm(rails.rail_b[0] - rails.rail_a[0])


class TestPrism:
    """Closed prism construction."""

    def test_open_prism_is_closed_solid(self):
        p = [np.array([20.0, 20.0, z]) for z in (0.0, 10.0)]
        a = [np.array([20.0, 18.0, z]) for z in (0.0, 10.0)]
        b = [np.array([18.0, 20.0, z]) for z in (0.0, 10.0)]
        prism = build_chamfer_prism(p, a, b, closed=False, base_name="C", push=0.0)
        assert prism.is_watertight
        assert set(prism.face_names()) == {"C_SIDE_A", "C_SIDE_B", "C_BEVEL", "C_CAP0", "C_CAP1"}
        assert prism.volume == pytest.approx(20.0)

    def test_caps_pushed_outward(self):
        p = [np.array([20.0, 20.0, z]) for z in (0.0, 10.0)]
        a = [np.array([20.0, 18.0, z]) for z in (0.0, 10.0)]
        b = [np.array([18.0, 20.0, z]) for z in (0.0, 10.0)]
        prism = build_chamfer_prism(p, a, b, closed=False, base_name="C", push=0.5)
        assert prism.volume == pytest.approx(22.0)

    def test_too_few_rails(self):
        prism = build_chamfer_prism([np.zeros(3)], [np.zeros(3)], [np.zeros(3)], False, "C")
        assert prism.is_empty

    def test_chamfer_solid(self, box_edge):
        result = build_chamfer_solid(box_edge, 2.0)
        assert result.error is None
        assert result.base_name == f"CHAMFER_{box_edge.face_a}|{box_edge.face_b}"
        assert result.prism.is_watertight

    def test_degenerate_edge_reports_samples(self, box_solid):
        edge = Edge(points=[[20, 20, 5], [20, 20, 5]], face_a="Box_PX", face_b="Box_PY", solid=box_solid)
        result = build_chamfer_solid(edge, 1.0)
        assert result.prism is None
        assert result.error_kind is ErrorKind.INSUFFICIENT_SAMPLES


class TestApplyChamfer:
    """Chamfering a box edge."""

    def test_bevel_removes_corner(self, box_solid, box_edge):
        result = apply_chamfer(box_solid, 2.0, edge_names=[box_edge.name])
        assert result.volume == pytest.approx(7960.0, abs=0.5)
        assert result.is_watertight
        assert any(name.endswith("_BEVEL") for name in result.face_names())
        assert box_solid.volume == pytest.approx(8000.0)

    def test_method_on_solid(self, box_solid, box_edge):
        result = box_solid.chamfer(2.0, edges=[box_edge])
        assert result.volume == pytest.approx(7960.0, abs=0.5)

    def test_debug_keeps_tools(self, box_solid, box_edge):
        result = apply_chamfer(box_solid, 1.0, edges=[box_edge], config=ChamferConfig(debug=True))
        assert [s.name for s in result.debug_solids] == ["CHAMFER_CHAMFER_0"]

    def test_invalid_distance(self, box_solid, box_edge):
        with pytest.raises(ValueError):
            apply_chamfer(box_solid, 0.0, edges=[box_edge])

    def test_no_edges_returns_clone(self, box_solid):
        result = apply_chamfer(box_solid, 1.0, edge_names=["missing"])
        assert result is not box_solid
        assert result.volume == pytest.approx(8000.0)


class TestCircularRim:
    """Chamfering the rim where a flat top meets a full cylindrical side."""

    # right triangle with unit legs swept around its centroid circle at radius 10 - 1/3
    RIM_REMOVED = 0.5 * 2.0 * math.pi * (10.0 - 1.0 / 3.0)

    def _make_rim(self):
        cylinder = make_cylinder(radius=10.0, height=10.0, sections=48, name="Cyl")
        return cylinder, cylinder.edges_between("Cyl_TOP", "Cyl_SIDE")[0]

    def test_rails_follow_both_faces(self):
        _, rim = self._make_rim()
        rails = build_chamfer_rails(rim, 1.0)
        assert rails.closed
        assert len(rails) == 48
        top, side = (rails.rail_a, rails.rail_b) if rim.face_a == "Cyl_TOP" else (rails.rail_b, rails.rail_a)
        top, side = np.array(top), np.array(side)
        np.testing.assert_allclose(top[:, 2], 10.0, atol=1e-9)
        np.testing.assert_allclose(np.linalg.norm(top[:, :2], axis=1), 9.0, atol=1e-9)
        np.testing.assert_allclose(side[:, 2], 9.0, atol=1e-9)

    def test_rim_chamfer_removes_ring(self):
        cylinder, rim = self._make_rim()
        result = apply_chamfer(cylinder, 1.0, edges=[rim])
        removed = cylinder.volume - result.volume
        assert 0.9 * self.RIM_REMOVED <= removed <= 1.1 * self.RIM_REMOVED
        assert result.is_watertight
        assert any(name.endswith("_BEVEL") for name in result.face_names())


class TestDistanceClamp:
    """Distances larger than the adjacent faces."""

    def test_oversized_distance_is_clamped(self, box_edge):
        result = build_chamfer_solid(box_edge, 25.0)
        assert result.error_kind is ErrorKind.RADIUS_EXCEEDS_FACE_EXTENT
        assert result.distance_clamp is not None
        assert result.distance_clamp.requested == 25.0
        assert result.distance_clamp.max_allowed == pytest.approx(20.0)
        assert result.distance_used < 20.0
        for point in result.rails.rail_a + result.rails.rail_b:
            assert np.all(point >= -1e-9) and np.all(point <= 20.0 + 1e-9)
        assert result.prism is not None and result.prism.is_watertight

    def test_fitting_distance_is_untouched(self, box_edge):
        result = build_chamfer_solid(box_edge, 2.0)
        assert result.distance_clamp is None
        assert result.distance_used == 2.0
        assert result.error_kind is None
