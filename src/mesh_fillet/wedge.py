"""
Fillet wedge triangulation.

The wedge spans the cross-section quad (center, tangency A, edge, tangency B)
swept along the edge. Subtracting the tube from it leaves the material a fillet
removes (INSET) or adds (OUTSET).
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from mesh_fillet.contracts import ErrorKind, SideMode, WedgeBuild
from mesh_fillet.geometry import as_points, triangle_area
from mesh_fillet.instrumentation import timed
from mesh_fillet.solid import Solid

logger = logging.getLogger(__name__)

FACE_PUSH = 1e-4


class _TriangleSink:
    """Adds triangles to a solid, rejecting non-finite or sliver ones."""

    def __init__(self, solid: Solid, min_area: float):
        self.solid = solid
        self.min_area = min_area
        self.valid = 0
        self.skipped = 0

    def add(self, face: str, p0: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> None:
        if not (np.all(np.isfinite(p0)) and np.all(np.isfinite(p1)) and np.all(np.isfinite(p2))):
            logger.warning("Skipping %s triangle with non-finite points", face)
            self.skipped += 1
            return
        if triangle_area(p0, p1, p2) <= self.min_area or not self.solid.add_triangle(face, p0, p1, p2):
            self.skipped += 1
            return
        self.valid += 1


def _mark_face(solid: Solid, face: str, round_face: str, end_cap: bool) -> None:
    area = solid.face_area(face)
    if area > 0:
        solid.set_face_metadata(face, {
            "fillet_source_area": area,
            "fillet_round_face": round_face,
            "fillet_end_cap": end_cap,
        })


@timed("build_fillet_wedge")
def build_fillet_wedge(
    centerline: Sequence,
    tangent_a: Sequence,
    tangent_b: Sequence,
    edge_points: Sequence,
    radius: float,
    closed_loop: bool = False,
    side_mode="INSET",
    name: str = "fillet",
) -> WedgeBuild:
    """Stitch the four index-aligned polylines into a closed wedge solid.

    Closed loops produce ``WEDGE_A/B`` and ``SIDE_A/B`` strips. Open edges
    produce ``SURFACE_CA/CB`` and ``FACE_A/B`` strips plus two end caps.
    Faces lying on the model are pushed out slightly afterwards.
    """
    mode = SideMode.parse(side_mode)
    c = as_points(centerline)
    ta = as_points(tangent_a)
    tb = as_points(tangent_b)
    e = as_points(edge_points)
    n = min(len(c), len(ta), len(tb), len(e))

    wedge = Solid(f"{name}_WEDGE")
    sink = _TriangleSink(wedge, radius * radius * 1e-8)

    if closed_loop:
        for i in range(n - 1):
            c1, c2, a1, a2, b1, b2, e1, e2 = c[i], c[i + 1], ta[i], ta[i + 1], tb[i], tb[i + 1], e[i], e[i + 1]
            sink.add(f"{name}_WEDGE_A", c1, a1, c2)
            sink.add(f"{name}_WEDGE_A", c2, a1, a2)
            sink.add(f"{name}_WEDGE_B", c1, c2, b1)
            sink.add(f"{name}_WEDGE_B", c2, b2, b1)
            sink.add(f"{name}_SIDE_A", e1, a1, e2)
            sink.add(f"{name}_SIDE_A", e2, a1, a2)
            sink.add(f"{name}_SIDE_B", e1, e2, b1)
            sink.add(f"{name}_SIDE_B", e2, b2, b1)
    else:
        for i in range(n - 1):
            c1, c2, a1, a2, b1, b2, e1, e2 = c[i], c[i + 1], ta[i], ta[i + 1], tb[i], tb[i + 1], e[i], e[i + 1]
            sink.add(f"{name}_SURFACE_CA", c1, c2, a1)
            sink.add(f"{name}_SURFACE_CA", c2, a2, a1)
            sink.add(f"{name}_SURFACE_CB", c1, b1, c2)
            sink.add(f"{name}_SURFACE_CB", c2, b1, b2)
            sink.add(f"{name}_FACE_A", a1, a2, e1)
            sink.add(f"{name}_FACE_A", a2, e2, e1)
            sink.add(f"{name}_FACE_B", b1, e1, b2)
            sink.add(f"{name}_FACE_B", b2, e1, e2)
        if n >= 2:
            sink.add(f"{name}_END_CAP_1", c[0], tb[0], ta[0])
            sink.add(f"{name}_END_CAP_1", ta[0], tb[0], e[0])
            last = n - 1
            sink.add(f"{name}_END_CAP_2", c[last], ta[last], tb[last])
            sink.add(f"{name}_END_CAP_2", ta[last], e[last], tb[last])

    logger.debug("Wedge %s: %d valid, %d skipped triangles", wedge.name, sink.valid, sink.skipped)
    if sink.valid == 0:
        return WedgeBuild(wedge, 0, sink.skipped,
                          error="No valid triangles could be created for wedge solid",
                          error_kind=ErrorKind.WEDGE_TRIANGULATION_FAILURE)

    wedge.fix_triangle_windings_by_adjacency()
    if not closed_loop:
        wedge.push_face(f"{name}_FACE_A", FACE_PUSH)
        wedge.push_face(f"{name}_FACE_B", FACE_PUSH)
    if mode is SideMode.INSET and not closed_loop:
        wedge.push_face(f"{name}_END_CAP_1", FACE_PUSH)
        wedge.push_face(f"{name}_END_CAP_2", FACE_PUSH)

    round_face = f"{name}_TUBE_Outer"
    if not closed_loop:
        _mark_face(wedge, f"{name}_END_CAP_1", round_face, True)
        _mark_face(wedge, f"{name}_END_CAP_2", round_face, True)
    _mark_face(wedge, f"{name}_WEDGE_A", round_face, False)
    _mark_face(wedge, f"{name}_WEDGE_B", round_face, False)
    return WedgeBuild(wedge, sink.valid, sink.skipped)
