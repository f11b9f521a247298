"""Tests for the fillet tool builder and the fillet applier."""
import math

import numpy as np
import pytest

from mesh_fillet.contracts import Edge, ErrorKind, FilletConfig, SideMode
from mesh_fillet.fillet import (
    apply_fillet,
    build_point_inside_tester,
    extend_open_path,
    fillet_solid,
    inflate_tangents,
    inset_wedge_edge,
    merge_inset_end_caps_by_normal,
)
from mesh_fillet.primitives import make_box, make_cylinder
from mesh_fillet.solid import Solid

# material removed by a radius-2 round on a 20-long right-angle edge
ROUND_REMOVED = (4.0 - math.pi) * 20.0


class TestPolylineAdjustments:
    """Inflation, inset and extension helpers."""

    def test_inflate_tangents(self):
        center = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        tangents = np.array([[2.0, 0.0, 0.0], [0.0, 2.0, 1.0]])
        out = inflate_tangents(center, tangents, 0.5)
        np.testing.assert_allclose(out, [[2.5, 0.0, 0.0], [0.0, 2.5, 1.0]])
        np.testing.assert_allclose(tangents[0], [2.0, 0.0, 0.0])

    def test_inset_moves_away_from_center(self):
        edge = np.array([[20.0, 20.0, 0.0]])
        center = np.array([[18.0, 18.0, 0.0]])
        out = inset_wedge_edge(edge, center, 0.1, SideMode.INSET)
        assert out[0][0] > 20.0 and out[0][1] > 20.0

    def test_outset_moves_toward_center(self):
        edge = np.array([[20.0, 20.0, 0.0]])
        center = np.array([[22.0, 22.0, 0.0]])
        out = inset_wedge_edge(edge, center, 0.1, SideMode.OUTSET)
        assert np.linalg.norm(out[0] - center[0]) < np.linalg.norm(edge[0] - center[0])

    def test_tester_decides_side(self, box_solid):
        inside = build_point_inside_tester(box_solid)
        edge = np.array([[20.0, 20.0, 10.0]])
        center = np.array([[22.0, 22.0, 10.0]])
        out = inset_wedge_edge(edge, center, 0.1, SideMode.OUTSET, inside)
        assert out[0][0] < 20.0 and out[0][1] < 20.0

    def test_extend_open_path(self, straight_path):
        out = extend_open_path(straight_path, 0.1)
        assert out[0][2] == pytest.approx(-0.1)
        assert out[-1][2] == pytest.approx(10.1)
        assert out[1][2] == pytest.approx(5.0)


class TestPointInside:
    """Ray-parity containment."""

    def test_box(self, box_solid):
        inside = build_point_inside_tester(box_solid)
        assert inside(np.array([10.0, 10.0, 10.0]))
        assert inside(np.array([19.9, 0.1, 5.0]))
        assert not inside(np.array([30.0, 10.0, 10.0]))
        assert not inside(np.array([np.nan, 0.0, 0.0]))

    def test_empty_solid(self):
        assert build_point_inside_tester(Solid()) is None


class TestFilletSolid:
    """Single-edge fillet tool."""

    def test_box_edge_tool(self, box_edge):
        result = fillet_solid(box_edge, 2.0, name="F")
        assert result.error is None
        assert result.radius_used == 2.0
        assert result.final_solid is not None
        assert result.final_solid.name == "F_FINAL_FILLET"
        meta = result.tube.get_face_metadata("F_TUBE_Outer")
        assert meta["type"] == "pipe"
        assert meta["radius_override"] == 2.0
        assert meta["edge_reference"] == box_edge.name
        assert "requested_radius" not in meta
        assert len(result.centerline) == 3
        assert {"tube", "build_fillet_wedge", "wedge_minus_tube"} <= set(result.stages)

    def test_tool_volume(self, box_edge):
        tool = fillet_solid(box_edge, 2.0, inflate=0.0).final_solid
        assert tool.volume == pytest.approx(ROUND_REMOVED, rel=0.2)

    def test_clamped_radius(self, box_edge):
        result = fillet_solid(box_edge, 25.0, name="F")
        assert result.radius_clamp is not None
        assert result.radius_used < 20.0
        assert result.tube.get_face_metadata("F_TUBE_Outer")["requested_radius"] == 25.0

    def test_invalid_radius(self, box_edge):
        with pytest.raises(ValueError):
            fillet_solid(box_edge, -1.0)

    def test_degenerate_edge(self, box_solid):
        edge = Edge(points=[[20, 20, 5], [20, 20, 5]], face_a="Box_PX", face_b="Box_PY", solid=box_solid)
        result = fillet_solid(edge, 1.0)
        assert result.final_solid is None
        assert result.error_kind is ErrorKind.INSUFFICIENT_SAMPLES

    def test_tangent_overlays(self, box_edge):
        config = FilletConfig(show_tangent_overlays=True)
        result = fillet_solid(box_edge, 2.0, name="F", config=config)
        names = {a.name for a in result.tube.aux_edges}
        assert {"F_TANGENT_A_PATH", "F_TANGENT_B_PATH", "F_TUBE_PATH"} <= names


class TestApplyFillet:
    """Rounding box edges."""

    def test_round_single_edge(self, box_solid, box_edge):
        result = apply_fillet(box_solid, 2.0, edge_names=[box_edge.name])
        removed = 8000.0 - result.volume
        assert 0.8 * ROUND_REMOVED <= removed <= 1.3 * ROUND_REMOVED
        assert result.is_watertight
        names = set(result.face_names())
        assert {f"Box_{s}" for s in ("PX", "NX", "PY", "NY", "PZ", "NZ")} <= names
        assert "FILLET_FILLET_0_TUBE_Outer" in names
        assert result.name == "Box"

    def test_end_caps_folded_away(self, box_solid, box_edge):
        result = apply_fillet(box_solid, 2.0, edges=[box_edge])
        assert not any("_END_CAP_" in name for name in result.face_names())

    def test_feature_id_prefix(self, box_solid, box_edge):
        result = box_solid.fillet(2.0, edges=[box_edge], config=FilletConfig(feature_id="R1"))
        assert "R1_FILLET_0_TUBE_Outer" in result.face_names()

    def test_invalid_radius(self, box_solid, box_edge):
        with pytest.raises(ValueError):
            apply_fillet(box_solid, 0.0, edges=[box_edge])

    def test_no_edges_returns_clone(self, box_solid):
        result = apply_fillet(box_solid, 1.0)
        assert result is not box_solid
        assert result.volume == pytest.approx(8000.0)

    def test_all_failures_return_clone(self, box_solid):
        edge = Edge(points=[[20, 20, 5], [20, 20, 5]], face_a="Box_PX", face_b="Box_PY",
                    name="degenerate", solid=box_solid)
        result = apply_fillet(box_solid, 1.0, edges=[edge])
        assert result.volume == pytest.approx(8000.0)
        assert result.triangle_count == box_solid.triangle_count


class TestCapMerge:
    """Coplanar end-cap folding."""

    def test_cap_merges_into_coplanar_neighbour(self):
        box = make_box((10, 10, 10), name="B")
        labels = box.triangle_labels()
        labels[labels.index("B_PZ")] = "FILLET_FILLET_0_END_CAP_1"
        split = Solid.from_arrays(box.vertices, box.faces, labels, name="B")
        assert merge_inset_end_caps_by_normal(split, "FILLET") == 1
        assert not split.has_face("FILLET_FILLET_0_END_CAP_1")
        assert len(split.get_face("B_PZ")) == 2

    def test_other_features_untouched(self):
        box = make_box((10, 10, 10), name="B")
        labels = box.triangle_labels()
        labels[labels.index("B_PZ")] = "OTHER_FILLET_0_END_CAP_1"
        split = Solid.from_arrays(box.vertices, box.faces, labels, name="B")
        assert merge_inset_end_caps_by_normal(split, "FILLET") == 0


class TestCircularRim:
    """Rounding the closed rim of a radius-10 cylinder."""

    # spandrel area (1 - pi/4) swept around its centroid circle at radius ~9.78
    RIM_REMOVED = (1.0 - math.pi / 4.0) * 2.0 * math.pi * 9.777

    def test_rim_fillet_removes_round(self):
        cylinder = make_cylinder(radius=10.0, height=10.0, sections=48, name="Cyl")
        rim = cylinder.edges_between("Cyl_TOP", "Cyl_SIDE")[0]
        result = apply_fillet(cylinder, 1.0, edges=[rim])
        removed = cylinder.volume - result.volume
        assert 0.6 * self.RIM_REMOVED <= removed <= 1.5 * self.RIM_REMOVED
        assert result.is_watertight

    def test_rim_tool_is_closed_loop(self):
        cylinder = make_cylinder(radius=10.0, height=10.0, sections=48, name="Cyl")
        rim = cylinder.edges_between("Cyl_TOP", "Cyl_SIDE")[0]
        result = fillet_solid(rim, 1.0, name="R")
        assert result.error is None
        assert result.closed_loop
        assert result.final_solid is not None
        assert not any("_END_CAP_" in name for name in result.wedge.face_names())
