"""Tests for the labeled solid, primitives and face handles."""
import numpy as np
import pytest

from mesh_fillet.contracts import Edge
from mesh_fillet.primitives import make_box, make_cylinder
from mesh_fillet.solid import Solid


def _make_tetra(name="Tet"):
    solid = Solid(name)
    p = [np.array(v, dtype=float) for v in ([0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1])]
    solid.add_triangle("BASE", p[0], p[2], p[1])
    solid.add_triangle("SIDE", p[0], p[1], p[3])
    solid.add_triangle("SIDE", p[1], p[2], p[3])
    solid.add_triangle("SIDE", p[2], p[0], p[3])
    return solid


class TestPrimitives:
    """Box and cylinder construction."""

    def test_box_faces_and_volume(self, box_solid):
        assert len(box_solid.face_names()) == 6
        assert box_solid.triangle_count == 12
        assert box_solid.volume == pytest.approx(8000.0)
        assert box_solid.is_watertight

    def test_box_minimum_corner_at_origin(self, box_solid):
        np.testing.assert_allclose(box_solid.bounds, [[0, 0, 0], [20, 20, 20]])

    def test_box_face_normals_match_names(self, box_solid):
        np.testing.assert_allclose(box_solid.average_face_normal("Box_PX"), [1, 0, 0], atol=1e-12)
        np.testing.assert_allclose(box_solid.average_face_normal("Box_NZ"), [0, 0, -1], atol=1e-12)

    def test_box_rejects_bad_extents(self):
        with pytest.raises(ValueError):
            make_box((1.0, 0.0, 1.0))

    def test_cylinder_faces(self, cylinder_solid):
        assert set(cylinder_solid.face_names()) == {"Cyl_TOP", "Cyl_BOTTOM", "Cyl_SIDE"}
        assert cylinder_solid.is_watertight
        assert cylinder_solid.volume == pytest.approx(np.pi * 25 * 10, rel=0.01)


class TestAuthoring:
    """Adding triangles and building from arrays."""

    def test_add_triangle_shares_vertices(self):
        tet = _make_tetra()
        assert len(tet.vertices) == 4
        assert tet.triangle_count == 4
        assert tet.is_watertight
        assert tet.volume == pytest.approx(1.0 / 6.0)

    def test_degenerate_triangle_ignored(self):
        solid = Solid()
        p = np.array([1.0, 2.0, 3.0])
        assert solid.add_triangle("F", p, p, np.zeros(3)) is False
        assert solid.is_empty

    def test_from_arrays_label_mismatch(self):
        with pytest.raises(ValueError):
            Solid.from_arrays(np.eye(3), np.array([[0, 1, 2]]), ["A", "B"])

    def test_clone_is_independent(self, box_solid):
        copy = box_solid.clone()
        copy.push_face("Box_PX", 1.0)
        copy.set_face_metadata("Box_PX", {"k": 1})
        assert box_solid.volume == pytest.approx(8000.0)
        assert box_solid.get_face_metadata("Box_PX") == {}


class TestFaces:
    """Face edits: push, merge, metadata."""

    def test_push_face_moves_plane(self, box_solid):
        box_solid.push_face("Box_PX", 1.0)
        assert box_solid.volume == pytest.approx(8400.0)
        assert box_solid.bounds[1][0] == pytest.approx(21.0)

    def test_push_unknown_face_is_noop(self, box_solid):
        box_solid.push_face("Nope", 1.0)
        assert box_solid.volume == pytest.approx(8000.0)

    def test_merge_face_into_existing(self, box_solid):
        assert box_solid.merge_face_into("Box_PX", "Box_PY")
        assert not box_solid.has_face("Box_PX")
        assert len(box_solid.get_face("Box_PY")) == 4
        assert len(box_solid.face_names()) == 5

    def test_merge_face_carries_metadata(self, box_solid):
        box_solid.set_face_metadata("Box_PX", {"fillet_end_cap": True})
        box_solid.merge_face_into("Box_PX", "ROUND")
        assert box_solid.get_face_metadata("ROUND") == {"fillet_end_cap": True}

    def test_metadata_merges(self, box_solid):
        box_solid.set_face_metadata("Box_PZ", {"a": 1})
        box_solid.set_face_metadata("Box_PZ", {"b": 2})
        assert box_solid.get_face_metadata("Box_PZ") == {"a": 1, "b": 2}

    def test_face_area(self, box_solid):
        assert box_solid.face_area("Box_NY") == pytest.approx(400.0)
        assert box_solid.face_area("missing") == 0.0

    def test_project_many_onto_face(self, box_solid):
        handle = box_solid.face("Box_PX")
        out = handle.project_many([[30.0, 5.0, 5.0], [25.0, 25.0, 5.0]])
        np.testing.assert_allclose(out, [[20.0, 5.0, 5.0], [20.0, 20.0, 5.0]], atol=1e-9)

    def test_local_face_normal(self, box_solid):
        normal = box_solid.local_face_normal("Box_PX", np.array([20.0, 10.0, 10.0]))
        np.testing.assert_allclose(normal, [1.0, 0.0, 0.0], atol=1e-12)
        assert box_solid.local_face_normal("missing", np.zeros(3)) is None


class TestEdges:
    """Boundary edge extraction and resolution."""

    def test_box_has_twelve_edges(self, box_solid):
        edges = box_solid.boundary_edges()
        assert len(edges) == 12
        assert all(len(e.points) == 2 and not e.closed for e in edges)

    def test_edge_between_px_and_py(self, box_edge):
        z_values = np.sort(box_edge.points[:, 2])
        np.testing.assert_allclose(box_edge.points[:, :2], [[20, 20], [20, 20]])
        np.testing.assert_allclose(z_values, [0, 20])

    def test_cylinder_rim_is_closed(self, cylinder_solid):
        rims = cylinder_solid.edges_between("Cyl_TOP", "Cyl_SIDE")
        assert len(rims) == 1
        assert rims[0].closed

    def test_get_edge_unknown_raises(self, box_solid):
        with pytest.raises(KeyError):
            box_solid.get_edge("Box_PX|Box_PX")

    def test_resolve_edges_by_name(self, box_solid, box_edge):
        resolved = box_solid.resolve_edges(edges=[box_edge], edge_names=[box_edge.name, "missing"])
        assert len(resolved) == 1
        assert resolved[0].name == box_edge.name

    def test_resolve_edges_adopts_solid(self, box_solid):
        loose = Edge(points=[[0, 0, 0], [0, 0, 20]], face_a="Box_NX", face_b="Box_NY", name="loose")
        resolved = box_solid.resolve_edges(edges=[loose])
        assert resolved[0].solid is box_solid


class TestCleanup:
    """Welding and winding repair."""

    def test_set_epsilon_welds_near_vertices(self):
        solid = Solid()
        solid.add_triangle("F", [0, 0, 0], [1, 0, 0], [0, 1, 0])
        solid.add_triangle("F", [1, 0, 1e-9], [1, 1, 0], [0, 1, 0])
        assert len(solid.vertices) == 5
        solid.set_epsilon(1e-6)
        assert len(solid.vertices) == 4

    def test_fix_windings_orients_outward(self):
        tet = _make_tetra()
        tet._faces[0] = tet._faces[0][::-1]
        tet.fix_triangle_windings_by_adjacency()
        assert tet.volume == pytest.approx(1.0 / 6.0)
