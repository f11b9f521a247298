"""Tests for boolean combination with face-label propagation."""
import numpy as np
import pytest

from mesh_fillet import boolean_ops
from mesh_fillet.boolean_ops import combine, reassign_labels, repair_solid
from mesh_fillet.chamfer import build_chamfer_solid
from mesh_fillet.contracts import BooleanConfig, BooleanError, ErrorKind
from mesh_fillet.primitives import make_box
from mesh_fillet.solid import Solid

BAD_ENGINE = BooleanConfig(engine="no_such_engine")


def _make_pair():
    a = make_box((20, 20, 20), name="A")
    b = make_box((20, 20, 20), origin=(10, 10, 10), name="B")
    return a, b


def _drop_first_triangle(solid):
    return Solid.from_arrays(solid.vertices, solid.faces[1:], solid.triangle_labels()[1:], name=solid.name)


class TestDirect:
    """Clean inputs succeed on the first attempt."""

    def test_union(self):
        a, b = _make_pair()
        outcome = combine(a, b, "union")
        assert outcome.ok
        assert outcome.strategy == "direct"
        assert outcome.attempts == 1
        assert outcome.solid.volume == pytest.approx(15000.0, rel=1e-4)
        expected = {f"{n}_{s}" for n in "AB" for s in ("PX", "NX", "PY", "NY", "PZ", "NZ")}
        assert set(outcome.solid.face_names()) == expected

    def test_difference(self):
        a, b = _make_pair()
        outcome = combine(a, b, "difference")
        assert outcome.solid.volume == pytest.approx(7000.0, rel=1e-4)
        assert outcome.solid.name == "A"
        assert outcome.solid.is_watertight

    def test_intersection(self):
        a, b = _make_pair()
        assert a.intersect(b).volume == pytest.approx(1000.0, rel=1e-4)

    def test_metadata_and_aux_edges_carried(self):
        a, b = _make_pair()
        a.set_face_metadata("A_PX", {"k": "a"})
        b.set_face_metadata("B_NX", {"k": "b"})
        b.add_aux_edge("PATH", [[0, 0, 0], [1, 1, 1]])
        result = a.union(b)
        assert result.get_face_metadata("A_PX") == {"k": "a"}
        assert result.get_face_metadata("B_NX") == {"k": "b"}
        assert [e.name for e in result.aux_edges] == ["PATH"]

    def test_unknown_operation(self):
        a, b = _make_pair()
        with pytest.raises(ValueError):
            combine(a, b, "xor")


class TestFallbacks:
    """Escalation when the direct attempt fails."""

    def test_open_input_is_repaired(self):
        a, b = _make_pair()
        outcome = combine(_drop_first_triangle(a), b, "union")
        assert outcome.ok
        assert outcome.strategy != "direct"
        assert outcome.solid.volume == pytest.approx(15000.0, rel=1e-3)

    def test_failed_difference_passes_base_through(self):
        a, b = _make_pair()
        outcome = combine(a, b, "difference", BAD_ENGINE)
        assert not outcome.ok
        assert outcome.strategy == "pass_through"
        assert outcome.error_kind is ErrorKind.BOOLEAN_COMBINATION_FAILURE
        assert outcome.attempts == 5
        assert outcome.solid is not a
        assert outcome.solid.volume == pytest.approx(8000.0)

    def test_failed_union_merges_meshes(self):
        a, b = _make_pair()
        outcome = combine(a, b, "union", BAD_ENGINE)
        assert outcome.strategy == "mesh_merge"
        assert outcome.ok
        assert {"A_PX", "B_PX"} <= set(outcome.solid.face_names())

    def test_pass_through_can_be_disabled(self):
        a, b = _make_pair()
        config = BooleanConfig(engine="no_such_engine", allow_pass_through=False)
        with pytest.raises(BooleanError):
            combine(a, b, "difference", config)


class TestLabels:
    """Geometric label reassignment."""

    def test_identity(self, box_solid):
        labels = reassign_labels(box_solid.triangles(), [box_solid], "X")
        assert labels == box_solid.triangle_labels()

    def test_far_triangle_marked_repair(self, box_solid):
        far = np.array([[[100, 100, 100], [101, 100, 100], [100, 101, 100]]], dtype=float)
        assert reassign_labels(far, [box_solid], "X") == ["X_REPAIR_0"]

    def test_no_sources(self):
        tris = np.zeros((2, 3, 3))
        assert reassign_labels(tris, [], "X") == ["X_REPAIR_0", "X_REPAIR_1"]

    def test_repair_fills_hole(self, box_solid):
        holed = _drop_first_triangle(box_solid)
        assert not holed.is_watertight
        repaired = repair_solid(holed, 1e-5)
        assert repaired.is_watertight
        assert repaired.volume == pytest.approx(8000.0)


class TestLabelSearch:
    """Candidate search in label reassignment."""

    def test_far_from_origin_keeps_labels(self):
        box = make_box((20, 20, 20), origin=(1e5, -3e5, 7e5), name="Far")
        assert reassign_labels(box.triangles(), [box], "X") == box.triangle_labels()

    def test_concave_corner_union_is_direct(self):
        a = make_box((20, 10, 10), name="A")
        b = make_box((10, 20, 10), name="B")
        ell = a.union(b)
        edges = ell.edges_between("A_PY", "B_PX")
        assert len(edges) == 1
        built = build_chamfer_solid(edges[0], 2.0, "OUTSET", solid=ell, inflate=-0.1)
        outcome = combine(ell, built.prism, "union")
        assert outcome.strategy == "direct"
        assert outcome.solid.volume == pytest.approx(3020.0, abs=0.5)

    def test_labeling_errors_propagate(self, monkeypatch):
        def broken(*args, **kwargs):
            raise IndexError("broken label lookup")

        monkeypatch.setattr(boolean_ops, "reassign_labels", broken)
        a, b = _make_pair()
        with pytest.raises(IndexError):
            combine(a, b, "union")
