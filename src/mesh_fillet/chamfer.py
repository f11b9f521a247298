"""
Chamfer tool construction and application.

The tool is a triangular prism swept along the edge: the edge rail P and the
two offset rails A and B. Subtracting it (INSET) bevels the edge; unioning it
(OUTSET) fills a concave corner.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from mesh_fillet.chamfer_rails import build_chamfer_rails, inflate_rails, reorder_rail_samples
from mesh_fillet.contracts import ChamferConfig, ChamferResult, Edge, ErrorKind, RadiusClamp, SideMode
from mesh_fillet.self_intersection import resolve_self_intersections
from mesh_fillet.solid import Solid

logger = logging.getLogger(__name__)

CAP_PUSH = 1e-4
CLAMP_TRIGGER = 0.999


def build_chamfer_prism(
    rail_p: Sequence[np.ndarray],
    rail_a: Sequence[np.ndarray],
    rail_b: Sequence[np.ndarray],
    closed: bool,
    base_name: str,
    push: float = CAP_PUSH,
) -> Solid:
    """Stitch the three rails into a closed prism with named faces."""
    n = min(len(rail_p), len(rail_a), len(rail_b))
    prism = Solid(base_name)
    if n < 2:
        return prism
    side_a, side_b, bevel = f"{base_name}_SIDE_A", f"{base_name}_SIDE_B", f"{base_name}_BEVEL"

    def link(face: str, a0, a1, b0, b1) -> None:
        prism.add_triangle(face, a0, b0, b1)
        prism.add_triangle(face, a0, b1, a1)

    for i in range(n - 1):
        link(side_a, rail_p[i], rail_p[i + 1], rail_a[i], rail_a[i + 1])
        link(side_b, rail_p[i], rail_p[i + 1], rail_b[i], rail_b[i + 1])
        link(bevel, rail_a[i], rail_a[i + 1], rail_b[i], rail_b[i + 1])
    if closed:
        last = n - 1
        link(side_a, rail_p[last], rail_p[0], rail_a[last], rail_a[0])
        link(side_b, rail_p[last], rail_p[0], rail_b[last], rail_b[0])
        link(bevel, rail_a[last], rail_a[0], rail_b[last], rail_b[0])
    else:
        prism.add_triangle(f"{base_name}_CAP0", rail_p[0], rail_a[0], rail_b[0])
        prism.add_triangle(f"{base_name}_CAP1", rail_p[n - 1], rail_b[n - 1], rail_a[n - 1])

    prism.fix_triangle_windings_by_adjacency()
    if not closed:
        prism.push_face(f"{base_name}_CAP0", push)
        prism.push_face(f"{base_name}_CAP1", push)
    return prism


def build_chamfer_solid(
    edge: Edge,
    distance: float,
    direction="INSET",
    config: Optional[ChamferConfig] = None,
    solid: Optional[Solid] = None,
    inflate: Optional[float] = None,
) -> ChamferResult:
    """Rails, reorder, inflate, de-cross and prism for one edge.

    ``inflate`` defaults to ``config.inflate`` as given; the applier negates
    it for OUTSET before calling here.
    """
    config = config or ChamferConfig()
    solid = solid if solid is not None else edge.solid

    def rails_at(offset: float):
        return build_chamfer_rails(edge, offset, direction, sample_count=config.sample_count,
                                   snap_seam_to_edge=config.snap_seam_to_edge, flip_side=config.flip_side,
                                   solid=solid)

    requested = float(distance)
    rails = rails_at(requested)
    base_name = f"CHAMFER_{edge.face_a}|{edge.face_b}"
    result = ChamferResult(rails=rails, base_name=base_name, distance_used=requested)
    limit = rails.max_distance
    if limit is not None and limit < CLAMP_TRIGGER * requested:
        result.distance_clamp = RadiusClamp(requested=requested, max_allowed=limit, samples=len(rails))
        result.error_kind = ErrorKind.RADIUS_EXCEEDS_FACE_EXTENT
        result.distance_used = max(limit * CLAMP_TRIGGER, 1e-9)
        logger.info("Chamfer on %s: distance clamped from %.4g to %.4g", edge.name, requested,
                    result.distance_used)
        rails = result.rails = rails_at(result.distance_used)
    if len(rails) < 2:
        result.error = f"Only {len(rails)} usable chamfer rail samples"
        result.error_kind = ErrorKind.INSUFFICIENT_SAMPLES
        logger.warning("build_chamfer_solid: %s on edge %s", result.error, edge.name)
        return result

    reorder_rail_samples(rails)
    amount = config.inflate if inflate is None else float(inflate)
    used = inflate_rails(rails, amount) if abs(amount) > 1e-12 else rails
    rail_lists: List[List[np.ndarray]] = [list(used.rail_p), list(used.rail_a), list(used.rail_b)]
    result.intersections_collapsed = resolve_self_intersections(rail_lists, rails.closed)

    result.prism = build_chamfer_prism(rail_lists[0], rail_lists[1], rail_lists[2], rails.closed,
                                       base_name, config.push_epsilon)
    if result.prism.is_empty:
        result.error = "Chamfer prism has no triangles"
        result.error_kind = ErrorKind.WEDGE_TRIANGULATION_FAILURE
    return result


def apply_chamfer(
    solid: Solid,
    distance: float,
    edges: Optional[Sequence[Edge]] = None,
    edge_names: Optional[Sequence[str]] = None,
    direction="INSET",
    config: Optional[ChamferConfig] = None,
) -> Solid:
    """Chamfer the given edges of ``solid`` and return a new solid."""
    if distance is None or not math.isfinite(float(distance)) or float(distance) <= 0:
        raise ValueError(f"Chamfer distance must be > 0, got {distance!r}")
    config = config or ChamferConfig()
    mode = SideMode.parse(direction)
    feature_id = config.feature_id or "CHAMFER"
    inflate = -config.inflate if mode is SideMode.OUTSET else config.inflate
    targets = solid.resolve_edges(edges, edge_names)
    if not targets:
        logger.warning("apply_chamfer: no edges resolved on %s; returning clone", solid.name)
        return solid.clone()

    tools: List[Solid] = []
    for i, edge in enumerate(targets):
        try:
            built = build_chamfer_solid(edge, float(distance), mode, config, solid=solid, inflate=inflate)
        except ValueError as exc:
            logger.warning("apply_chamfer: failed to build chamfer for edge %s: %s", edge.name, exc)
            continue
        if built.prism is None or built.prism.is_empty:
            logger.warning("apply_chamfer: no chamfer tool for edge %s: %s", edge.name, built.error)
            continue
        built.prism.name = f"{feature_id}_CHAMFER_{i}"
        tools.append(built.prism)

    if not tools:
        logger.error("apply_chamfer: all chamfer tools failed on %s; returning clone", solid.name)
        return solid.clone()

    operation = "union" if mode is SideMode.OUTSET else "difference"
    result = solid
    for tool in tools:
        before = result.triangle_count
        outcome = result.boolean(tool, operation)
        if not outcome.ok:
            logger.warning("apply_chamfer: %s of %s failed: %s", operation, tool.name, outcome.error)
        result = outcome.solid
        result.name = solid.name
        logger.debug("apply_chamfer: %s %s, %d -> %d triangles", operation, tool.name, before,
                     result.triangle_count)

    if config.debug:
        result.debug_solids = tools
    if result.is_empty:
        logger.error("apply_chamfer: result for %s is empty", solid.name)
    return result
