"""
Fillet tool construction and application.

``fillet_solid`` builds the tool for one edge: centerline, tube, wedge, and the
wedge minus the tube. ``apply_fillet`` runs it per edge, subtracts (INSET) or
unions (OUTSET) the tools with the model, and tidies the resulting face labels.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import trimesh

from mesh_fillet.contracts import Edge, ErrorKind, FilletConfig, FilletResult, SideMode
from mesh_fillet.fillet_solver import compute_fillet_centerline
from mesh_fillet.instrumentation import StageTimer
from mesh_fillet.solid import Solid
from mesh_fillet.tube import build_tube
from mesh_fillet.wedge import build_fillet_wedge

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION = 32
MIN_RESOLUTION = 8
CLAMP_TRIGGER = 0.999
MERGE_CANDIDATE_MARKERS = ("_END_CAP", "_CapStart", "_CapEnd", "_WEDGE_A", "_WEDGE_B")


def _resolution(value) -> int:
    try:
        res = float(value)
    except (TypeError, ValueError):
        return DEFAULT_RESOLUTION
    if not math.isfinite(res) or res <= 0:
        return DEFAULT_RESOLUTION
    return max(MIN_RESOLUTION, int(math.floor(res)))


# ─── Point containment ───────────────────────────────────────────────────────

def build_point_inside_tester(solid: Optional[Solid]) -> Optional[Callable[[np.ndarray], bool]]:
    """Ray-parity containment test against ``solid``.

    Casts one jittered ray along each axis and reports inside when at least
    two of the three rays cross the surface an odd number of times.
    """
    if solid is None or solid.is_empty:
        return None
    tris = solid.triangles()
    origin = tris[:, 0]
    e1 = tris[:, 1] - origin
    e2 = tris[:, 2] - origin
    jitter = 1e-6 * (solid.bounding_diagonal() or 1.0)
    rays = []
    for k, direction in enumerate(np.eye(3)):
        pvec = np.cross(direction, e2)
        det = np.einsum("ij,ij->i", e1, pvec)
        usable = np.abs(det) >= 1e-12
        inv = np.where(usable, 1.0 / np.where(usable, det, 1.0), 0.0)
        offset = jitter * np.array([k + 1, k + 2, k + 3], dtype=float)
        rays.append((direction, pvec, inv, usable, offset))

    def inside(point: np.ndarray) -> bool:
        p = np.asarray(point, dtype=float)
        if not np.all(np.isfinite(p)):
            return False
        votes = 0
        for direction, pvec, inv, usable, offset in rays:
            tvec = (p + offset) - origin
            u = np.einsum("ij,ij->i", tvec, pvec) * inv
            qvec = np.cross(tvec, e1)
            v = (qvec @ direction) * inv
            t = np.einsum("ij,ij->i", qvec, e2) * inv
            hits = (usable & (u >= -1e-12) & (u <= 1 + 1e-12) & (v >= -1e-12)
                    & (u + v <= 1 + 1e-12) & (t > 1e-10))
            if int(hits.sum()) % 2 == 1:
                votes += 1
        return votes >= 2

    return inside


# ─── Polyline adjustments ────────────────────────────────────────────────────

def inflate_tangents(centerline: np.ndarray, tangents: np.ndarray, inflate: float) -> np.ndarray:
    """Push each tangency point further from its circle center by ``inflate``."""
    out = np.array(tangents, dtype=float, copy=True)
    if not inflate:
        return out
    offsets = out - centerline
    lengths = np.linalg.norm(offsets, axis=1)
    movable = lengths > 1e-12
    out[movable] += offsets[movable] / lengths[movable, None] * inflate
    return out


def inset_wedge_edge(
    edge_points: np.ndarray,
    centerline: np.ndarray,
    magnitude: float,
    mode: SideMode,
    inside: Optional[Callable[[np.ndarray], bool]] = None,
) -> np.ndarray:
    """Nudge wedge edge points along the edge-to-center direction.

    With a containment tester the step goes to whichever side lands inside
    the model; otherwise INSET moves away from the centerline and OUTSET
    toward it.
    """
    out = np.array(edge_points, dtype=float, copy=True)
    if not magnitude or len(out) == 0:
        return out
    n = len(out)
    inward = np.zeros_like(out)
    for i in range(n):
        center = centerline[min(i, len(centerline) - 1)]
        delta = center - out[i]
        length = float(np.linalg.norm(delta))
        if length > 1e-12:
            inward[i] = delta / length
        else:
            logger.warning("Edge point %d is too close to the centerline; skipping wedge inset", i)

    choices: List[Optional[int]] = [None] * n
    preferred = None
    if inside is not None:
        count_in = count_out = 0
        for i in range(n):
            if not np.any(inward[i]):
                continue
            in_inside = inside(out[i] + inward[i] * magnitude)
            out_inside = inside(out[i] - inward[i] * magnitude)
            if in_inside != out_inside:
                choices[i] = 1 if in_inside else -1
                if in_inside:
                    count_in += 1
                else:
                    count_out += 1
        if count_in or count_out:
            preferred = 1 if count_in >= count_out else -1

    fallback = preferred if preferred is not None else (-1 if mode is SideMode.INSET else 1)
    for i in range(n):
        if not np.any(inward[i]):
            continue
        sign = choices[i] if choices[i] is not None else fallback
        moved = out[i] + inward[i] * (sign * magnitude)
        if np.all(np.isfinite(moved)):
            out[i] = moved
    return out


def extend_open_path(points: np.ndarray, distance: float) -> np.ndarray:
    """Move both end points outward along their end segments."""
    out = np.array(points, dtype=float, copy=True)
    if len(out) < 2 or not distance:
        return out
    start = out[0] - out[1]
    end = out[-1] - out[-2]
    if float(np.linalg.norm(start)) > 1e-12:
        out[0] = out[0] + start / np.linalg.norm(start) * distance
    if float(np.linalg.norm(end)) > 1e-12:
        out[-1] = out[-1] + end / np.linalg.norm(end) * distance
    return out


def _mark_tube(tube: Solid, name: str, radius_used: float, requested: float, edge: Edge,
               closed_loop: bool) -> None:
    round_face = f"{name}_TUBE_Outer"
    meta = {
        "type": "pipe",
        "source": "FilletFeature",
        "feature_id": name,
        "inflated_radius": radius_used,
        "pmi_radius_override": radius_used,
        "radius_override": radius_used,
    }
    if requested != radius_used:
        meta["requested_radius"] = requested
    if edge.name:
        meta["edge_reference"] = edge.name
    tube.set_face_metadata(round_face, meta)
    if closed_loop:
        return
    for cap in (f"{name}_TUBE_CapStart", f"{name}_TUBE_CapEnd"):
        area = tube.face_area(cap)
        if area > 0:
            tube.set_face_metadata(cap, {
                "fillet_source_area": area,
                "fillet_round_face": round_face,
                "fillet_end_cap": True,
            })


# ─── Single-edge tool ────────────────────────────────────────────────────────

def fillet_solid(
    edge: Edge,
    radius: float,
    side_mode="INSET",
    inflate: float = 0.1,
    resolution: int = DEFAULT_RESOLUTION,
    name: str = "fillet",
    config: Optional[FilletConfig] = None,
    solid: Optional[Solid] = None,
) -> FilletResult:
    """Build the fillet tool for ``edge``.

    Invalid arguments raise ``ValueError``. Geometric failures return a
    :class:`FilletResult` with ``error`` set and whatever intermediate
    geometry was produced; ``final_solid`` is then ``None``.
    """
    if edge is None:
        raise ValueError("fillet_solid requires an edge")
    if radius is None or not math.isfinite(float(radius)) or float(radius) <= 0:
        raise ValueError(f"Fillet radius must be positive, got {radius!r}")
    config = config or FilletConfig()
    mode = SideMode.parse(side_mode)
    segments = _resolution(resolution)
    solid = solid if solid is not None else edge.solid
    if solid is None:
        raise ValueError("Edge must be part of a solid")
    requested = float(radius)
    inflate = float(inflate) if inflate is not None and math.isfinite(float(inflate)) else 0.1

    stages: Dict[str, float] = {}
    result = FilletResult(stages=stages)

    centerline = compute_fillet_centerline(edge, requested, mode, solid=solid, timings=stages)
    radius_used = requested
    clamp = centerline.radius_clamp
    if clamp is not None and clamp.max_allowed < CLAMP_TRIGGER * requested:
        radius_used = max(clamp.max_allowed * CLAMP_TRIGGER, 1e-9)
        logger.info("Fillet %s: radius clamped from %.4g to %.4g", name, requested, radius_used)
        centerline = compute_fillet_centerline(edge, radius_used, mode, solid=solid, timings=stages)

    result.radius_used = radius_used
    result.radius_clamp = clamp
    result.closed_loop = closed_loop = centerline.closed_loop
    result.centerline = centerline.points.copy()
    result.edge = centerline.edge.copy()
    result.tangent_a_seam = centerline.tangent_a.copy()
    result.tangent_b_seam = centerline.tangent_b.copy()

    if len(centerline) < 2:
        result.error = (f"Insufficient centerline points ({len(centerline)}, "
                        f"{centerline.dropped_samples} samples dropped)")
        result.error_kind = ErrorKind.INSUFFICIENT_SAMPLES
        logger.warning("Fillet %s: %s", name, result.error)
        return result
    span = centerline.points.max(axis=0) - centerline.points.min(axis=0)
    if float(np.max(span)) <= 1e-6:
        result.error = "Degenerate centerline: all points coincide"
        result.error_kind = ErrorKind.DEGENERATE_CENTERLINE
        logger.warning("Fillet %s: %s", name, result.error)
        return result
    spacing = np.linalg.norm(np.diff(centerline.points, axis=0), axis=1)
    if len(spacing) and float(spacing.min()) < 0.01 * radius_used:
        logger.warning("Fillet %s: centerline spacing %.3g is small relative to radius %.3g",
                       name, float(spacing.min()), radius_used)

    tangent_a = inflate_tangents(centerline.points, centerline.tangent_a, inflate)
    tangent_b = inflate_tangents(centerline.points, centerline.tangent_b, inflate)
    result.tangent_a = tangent_a
    result.tangent_b = tangent_b

    if closed_loop:
        magnitude = 0.0
    elif mode is SideMode.INSET:
        magnitude = abs(inflate)
    else:
        magnitude = max(1e-4, min(0.05, abs(radius_used) * 0.05))
    inside = build_point_inside_tester(solid) if magnitude and mode is SideMode.OUTSET else None
    wedge_edge = inset_wedge_edge(centerline.edge, centerline.points, magnitude, mode, inside)

    tube_path = centerline.points.copy()
    if closed_loop:
        tube_path = np.vstack([tube_path, tube_path[:1]])
    else:
        tube_path = extend_open_path(tube_path, config.tube_end_extension)
    try:
        with StageTimer("tube", stages):
            tube_result = build_tube(tube_path, radius_used, 0.0, segments, closed=closed_loop,
                                     name=f"{name}_TUBE", strategy=config.tube_strategy)
    except ValueError as exc:
        logger.warning("Fillet %s: tube creation failed: %s", name, exc)
        result.wedge = Solid(f"{name}_FAILED_TUBE_DEBUG")
        result.error = f"Tube generation failed: {exc}"
        result.error_kind = ErrorKind.TUBE_GENERATION_FAILURE
        return result
    if tube_result.solid is None:
        result.wedge = Solid(f"{name}_FAILED_TUBE_DEBUG")
        result.error = tube_result.error
        result.error_kind = tube_result.error_kind
        return result
    tube = tube_result.solid
    _mark_tube(tube, name, radius_used, requested, edge, closed_loop)
    if config.show_tangent_overlays:
        tube.add_aux_edge(f"{name}_TANGENT_A_PATH", result.tangent_a_seam, closed_loop=closed_loop)
        tube.add_aux_edge(f"{name}_TANGENT_B_PATH", result.tangent_b_seam, closed_loop=closed_loop)
    result.tube = tube

    build = build_fillet_wedge(centerline.points, tangent_a, tangent_b, wedge_edge, radius_used,
                               closed_loop=closed_loop, side_mode=mode, name=name, timings=stages)
    result.wedge = build.solid
    if build.error is not None:
        result.error = build.error
        result.error_kind = build.error_kind
        return result

    with StageTimer("wedge_minus_tube", stages):
        outcome = build.solid.boolean(tube, "difference")
    if not outcome.ok:
        result.error = f"Boolean operation failed: {outcome.error}"
        result.error_kind = ErrorKind.BOOLEAN_COMBINATION_FAILURE
        return result
    final = outcome.solid
    final.name = f"{name}_FINAL_FILLET"
    result.final_solid = final
    return result


# ─── Post-boolean face tidying ───────────────────────────────────────────────

def _face_adjacency(solid: Solid) -> Dict[str, set]:
    adjacency: Dict[str, set] = {}
    for edge in solid.boundary_edges():
        adjacency.setdefault(edge.face_a, set()).add(edge.face_b)
        adjacency.setdefault(edge.face_b, set()).add(edge.face_a)
    return adjacency


def merge_candidate_names(tool: Solid) -> List[str]:
    names = []
    for face_name in tool.face_names():
        meta = tool.get_face_metadata(face_name)
        if meta.get("fillet_round_face") or meta.get("fillet_source_area") or meta.get("fillet_end_cap"):
            names.append(face_name)
        elif any(marker in face_name for marker in MERGE_CANDIDATE_MARKERS):
            names.append(face_name)
    return names


def round_face_name(tool: Solid, fillet_name: str) -> str:
    for face_name in tool.face_names():
        if "_TUBE_Outer" in face_name:
            return face_name
    return f"{fillet_name}_TUBE_Outer"


def merge_tiny_faces_into_round_face(result: Solid, tool: Solid, candidates: Sequence[str],
                                     round_face: str, ratio: float = 0.05) -> int:
    """Fold leftover cap slivers into the fillet's round face."""
    merged = 0
    adjacency = None
    for cap in candidates:
        meta = result.get_face_metadata(cap)
        reference = float(meta.get("fillet_source_area") or 0.0) or tool.face_area(cap)
        if reference <= 0:
            continue
        final_area = result.face_area(cap)
        if final_area <= 0 or final_area >= reference * ratio:
            continue
        if adjacency is None:
            adjacency = _face_adjacency(result)
        rounds = [f for f in adjacency.get(cap, ()) if "TUBE_Outer" in f]
        if rounds:
            target = max(rounds, key=result.face_area)
        else:
            target = meta.get("fillet_round_face") or round_face
        if not result.has_face(target):
            all_rounds = [f for f in result.face_names() if "TUBE_Outer" in f]
            if not all_rounds:
                continue
            target = max(all_rounds, key=result.face_area)
        if result.merge_face_into(cap, target):
            merged += 1
    return merged


def merge_side_faces_into_round_face(result: Solid, fillet_name: str, round_face: str) -> None:
    for suffix in ("SIDE_A", "SIDE_B", "SURFACE_CA", "SURFACE_CB"):
        result.merge_face_into(f"{fillet_name}_{suffix}", round_face)


def merge_inset_end_caps_by_normal(result: Solid, feature_id: str, dot_threshold: float = 0.999) -> int:
    """Merge surviving INSET wedge end caps into a coplanar neighbour."""
    pattern = re.compile(rf"^{re.escape(feature_id)}_FILLET_.*_END_CAP_\d+$")
    caps = [f for f in result.face_names() if pattern.match(f)]
    if not caps:
        return 0
    adjacency = _face_adjacency(result)
    normals: Dict[str, Optional[np.ndarray]] = {}

    def normal_of(face_name: str) -> Optional[np.ndarray]:
        if face_name not in normals:
            normals[face_name] = result.average_face_normal(face_name)
        return normals[face_name]

    merged = 0
    for cap in caps:
        n_cap = normal_of(cap)
        if n_cap is None:
            continue
        for neighbour in sorted(adjacency.get(cap, ())):
            n_adj = normal_of(neighbour)
            if n_adj is not None and float(n_cap @ n_adj) >= dot_threshold:
                result.merge_face_into(cap, neighbour)
                merged += 1
                break
    return merged


# ─── Corner hulls (OUTSET combine) ───────────────────────────────────────────

@dataclass
class _FilletEntry:
    name: str
    edge: Edge
    result: FilletResult
    candidates: List[str] = field(default_factory=list)
    round_face: str = ""


def _hull_solid(points: List[np.ndarray], name: str, tol: float) -> Optional[Solid]:
    if not points:
        return None
    pts = np.unique(np.round(np.asarray(points) / tol) * tol, axis=0)
    if len(pts) < 4:
        return None
    try:
        hull = trimesh.convex.convex_hull(pts)
    except (ValueError, RuntimeError) as exc:
        logger.warning("Corner hull %s failed: %s", name, exc)
        return None
    if len(hull.faces) == 0 or not hull.is_volume:
        return None
    return Solid.from_trimesh(hull, name)


def _nearest_cap(solid: Optional[Solid], names: Sequence[str], point: np.ndarray) -> Optional[str]:
    if solid is None:
        return None
    best, best_dist = None, math.inf
    for face_name in names:
        tris = solid.get_face(face_name)
        if len(tris) == 0:
            continue
        d = float(np.linalg.norm(tris.reshape(-1, 3).mean(axis=0) - point))
        if d < best_dist:
            best, best_dist = face_name, d
    return best


def combine_with_corner_hulls(entries: Sequence[_FilletEntry], feature_id: str,
                              debug_solids: List[Solid]) -> Optional[Solid]:
    """Union all wedges and all tubes with hulls over shared edge endpoints.

    Returns the combined wedge minus the combined tube, or ``None`` when the
    entries share no endpoints.
    """
    all_points = np.vstack([e.edge.points for e in entries if len(e.edge.points)])
    diag = float(np.linalg.norm(all_points.max(axis=0) - all_points.min(axis=0)))
    tol = max(1e-5, diag * 1e-6)

    groups: Dict[tuple, List[tuple]] = {}
    for entry in entries:
        pts = entry.edge.points
        if len(pts) < 2 or entry.edge.closed:
            continue
        for endpoint in (pts[0], pts[-1]):
            key = tuple(np.round(endpoint / tol).astype(np.int64))
            groups.setdefault(key, []).append((entry, endpoint))

    wedge_hulls: List[Solid] = []
    tube_hulls: List[Solid] = []
    corner = 0
    for items in groups.values():
        if len(items) < 2:
            continue
        wedge_points: List[np.ndarray] = []
        tube_points: List[np.ndarray] = []
        for entry, endpoint in items:
            res = entry.result
            wedge_cap = _nearest_cap(res.wedge, [f"{entry.name}_END_CAP_1", f"{entry.name}_END_CAP_2"], endpoint)
            tube_cap = _nearest_cap(res.tube, [f"{entry.name}_TUBE_CapStart", f"{entry.name}_TUBE_CapEnd"],
                                    endpoint)
            if wedge_cap:
                wedge_points.extend(res.wedge.get_face(wedge_cap).reshape(-1, 3))
            if tube_cap:
                tube_points.extend(res.tube.get_face(tube_cap).reshape(-1, 3))
        wedge_hull = _hull_solid(wedge_points, f"{feature_id}_CORNER_{corner}_WEDGE_HULL", tol)
        tube_hull = _hull_solid(tube_points, f"{feature_id}_CORNER_{corner}_TUBE_HULL", tol)
        corner += 1
        if wedge_hull is None or tube_hull is None:
            continue
        wedge_hulls.append(wedge_hull)
        tube_hulls.append(tube_hull)

    if not wedge_hulls:
        return None
    wedges = [e.result.wedge for e in entries if e.result.wedge is not None] + wedge_hulls
    tubes = [e.result.tube for e in entries if e.result.tube is not None] + tube_hulls
    combined_wedge = wedges[0]
    for part in wedges[1:]:
        combined_wedge = combined_wedge.union(part)
    combined_tube = tubes[0]
    for part in tubes[1:]:
        combined_tube = combined_tube.union(part)
    debug_solids.extend(wedge_hulls + tube_hulls)
    outcome = combined_wedge.boolean(combined_tube, "difference")
    if not outcome.ok:
        logger.warning("Combined fillet tool failed for %s: %s", feature_id, outcome.error)
        return None
    combined = outcome.solid
    combined.name = f"{feature_id}_FILLET_COMBINED"
    return combined


# ─── Feature applier ─────────────────────────────────────────────────────────

def apply_fillet(
    solid: Solid,
    radius: float,
    edges: Optional[Sequence[Edge]] = None,
    edge_names: Optional[Sequence[str]] = None,
    direction="INSET",
    config: Optional[FilletConfig] = None,
) -> Solid:
    """Fillet the given edges of ``solid`` and return a new solid.

    Edges whose tool cannot be built are skipped with a warning; when all of
    them fail the result is an unchanged clone.
    """
    if radius is None or not math.isfinite(float(radius)) or float(radius) <= 0:
        raise ValueError(f"Fillet radius must be > 0, got {radius!r}")
    config = config or FilletConfig()
    mode = SideMode.parse(direction)
    feature_id = config.feature_id or "FILLET"
    targets = solid.resolve_edges(edges, edge_names)
    if not targets:
        logger.warning("apply_fillet: no edges resolved on %s; returning clone", solid.name)
        return solid.clone()

    entries: List[_FilletEntry] = []
    debug_solids: List[Solid] = []
    for i, edge in enumerate(targets):
        name = f"{feature_id}_FILLET_{i}"
        res = fillet_solid(edge, float(radius), mode, inflate=config.inflate, resolution=config.resolution,
                           name=name, config=config, solid=solid)
        if config.debug or res.final_solid is None:
            debug_solids.extend(s for s in (res.tube, res.wedge) if s is not None)
        if res.final_solid is None:
            logger.warning("Fillet failed for edge %s: %s", edge.name or i, res.error)
            continue
        entries.append(_FilletEntry(name, edge, res, merge_candidate_names(res.final_solid),
                                    round_face_name(res.final_solid, name)))

    if not entries:
        logger.error("apply_fillet: all %d edge fillets failed on %s; returning clone", len(targets), solid.name)
        clone = solid.clone()
        clone.debug_solids = debug_solids
        return clone

    combined = None
    if mode is SideMode.OUTSET and config.combine_edges and len(entries) > 1:
        combined = combine_with_corner_hulls(entries, feature_id, debug_solids if config.debug else [])
    tools = [combined] if combined is not None else [e.result.final_solid for e in entries]

    operation = "union" if mode is SideMode.OUTSET else "difference"
    result = solid
    for tool in tools:
        outcome = result.boolean(tool, operation)
        if not outcome.ok:
            logger.warning("apply_fillet: %s of %s failed: %s", operation, tool.name, outcome.error)
        result = outcome.solid
    result.name = solid.name

    for entry in entries:
        tool = combined if combined is not None else entry.result.final_solid
        merge_tiny_faces_into_round_face(result, tool, entry.candidates, entry.round_face,
                                         config.end_cap_area_ratio)
        merge_side_faces_into_round_face(result, entry.name, entry.round_face)
    if mode is SideMode.INSET:
        merge_inset_end_caps_by_normal(result, feature_id, config.inset_cap_merge_dot)

    result.debug_solids = debug_solids
    if result.is_empty:
        logger.error("apply_fillet: result for %s is empty", solid.name)
    return result
