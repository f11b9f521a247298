"""
Boolean combiner with a repair/retry ladder and face-label propagation.

Booleans run through ``trimesh.boolean`` on the manifold engine, which drops
per-triangle labels. Labels are restored by matching each result triangle to
the nearest, best-aligned triangle of either operand.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import trimesh
from scipy.spatial import cKDTree

from mesh_fillet.contracts import BooleanConfig, BooleanError, BooleanOutcome, ErrorKind
from mesh_fillet.geometry import triangle_cross
from mesh_fillet.solid import Solid

logger = logging.getLogger(__name__)

OPERATIONS = ("union", "difference", "intersection")
NEIGHBOURS = 16
# what trimesh raises for unknown engines, missing backends and non-volume operands
KERNEL_ERRORS = (ValueError, KeyError, RuntimeError, ImportError)


# ─── Label propagation ───────────────────────────────────────────────────────

def _unit_normals(triangles: np.ndarray) -> np.ndarray:
    crosses = triangle_cross(triangles)
    lengths = np.linalg.norm(crosses, axis=1)
    lengths[lengths == 0] = 1.0
    return crosses / lengths[:, None]


def reassign_labels(
    triangles: np.ndarray,
    sources: Sequence[Solid],
    repair_prefix: str,
    diagonal: Optional[float] = None,
) -> List[str]:
    """One face name per triangle, copied from the best-matching source triangle.

    ``score = dist² + (1 − |n·n'|)·dist_limit``; triangles whose best score
    exceeds the limit are named ``{repair_prefix}_REPAIR_{k}``.
    """
    tris = np.asarray(triangles, dtype=float).reshape(-1, 3, 3)
    if len(tris) == 0:
        return []
    src_tris = [s.triangles() for s in sources if not s.is_empty]
    src_labels: List[str] = []
    for s in sources:
        src_labels.extend(s.triangle_labels())
    if not src_tris:
        return [f"{repair_prefix}_REPAIR_{k}" for k in range(len(tris))]
    src = np.concatenate(src_tris, axis=0)

    if diagonal is None:
        flat = np.concatenate([src.reshape(-1, 3), tris.reshape(-1, 3)], axis=0)
        diagonal = float(np.linalg.norm(flat.max(axis=0) - flat.min(axis=0)))
    dist_limit = max(1e-9, (diagonal * 5e-3) ** 2)
    score_limit = max(16.0 * dist_limit, 1e-6)

    src_centroids = src.mean(axis=1)
    src_reach = np.linalg.norm(src - src_centroids[:, None, :], axis=2).max(axis=1)
    src_normals = _unit_normals(src)
    centroids = tris.mean(axis=1)
    normals = _unit_normals(tris)
    reach_max = float(src_reach.max())
    tree = cKDTree(src_centroids)
    k = min(NEIGHBOURS, len(src))

    labels: List[str] = []
    repaired = 0
    for i, (q, n) in enumerate(zip(centroids, normals)):
        _, near = tree.query(q, k=k)
        near = np.atleast_1d(near)
        closest = trimesh.triangles.closest_point(src[near], np.tile(q, (len(near), 1)))
        d2 = ((closest - q) ** 2).sum(axis=1)
        bound = float((d2 + (1.0 - np.abs(src_normals[near] @ n)) * dist_limit).min())
        # any triangle whose bounding sphere could still beat the bound
        ball = np.asarray(tree.query_ball_point(q, math.sqrt(bound) + reach_max), dtype=np.int64)
        if len(ball):
            lower = np.maximum(np.linalg.norm(src_centroids[ball] - q, axis=1) - src_reach[ball], 0.0)
            ball = ball[lower * lower <= bound]
        cand = np.union1d(near, ball)
        closest = trimesh.triangles.closest_point(src[cand], np.tile(q, (len(cand), 1)))
        d2 = ((closest - q) ** 2).sum(axis=1)
        scores = d2 + (1.0 - np.abs(src_normals[cand] @ n)) * dist_limit
        best = int(np.argmin(scores))
        if scores[best] <= score_limit:
            labels.append(src_labels[int(cand[best])])
        else:
            labels.append(f"{repair_prefix}_REPAIR_{repaired}")
            repaired += 1
    if repaired:
        logger.debug("reassign_labels: %d unmatched triangles on %s", repaired, repair_prefix)
    return labels


def _labeled_result(mesh: trimesh.Trimesh, a: Solid, b: Solid, name: str) -> Solid:
    labels = reassign_labels(mesh.triangles, [a, b], name)
    result = Solid.from_arrays(mesh.vertices, mesh.faces, labels, name=name)
    for source in (b, a):
        for face_name in source.face_names():
            data = source.get_face_metadata(face_name)
            if data:
                result.set_face_metadata(face_name, data)
    result.aux_edges = list(a.aux_edges) + list(b.aux_edges)
    return result


# ─── Repair ──────────────────────────────────────────────────────────────────

def _merge_boundary_vertices(vertices: np.ndarray, faces: np.ndarray, tol: float) -> np.ndarray:
    """Snap open-boundary vertices closer than ``tol`` onto one another."""
    edges = np.sort(faces[:, [0, 1, 1, 2, 2, 0]].reshape(-1, 2), axis=1)
    unique, counts = np.unique(edges, axis=0, return_counts=True)
    boundary = np.unique(unique[counts == 1].reshape(-1))
    if len(boundary) < 2:
        return faces
    tree = cKDTree(vertices[boundary])
    remap = np.arange(len(vertices))
    for i, j in sorted(tree.query_pairs(tol)):
        keep, drop = boundary[i], boundary[j]
        root = remap[keep]
        remap[remap == remap[drop]] = root
    return remap[faces]


def repair_solid(solid: Solid, weld: float) -> Solid:
    """Weld, close small gaps, drop bad triangles, fill holes and reorient."""
    clone = solid.clone()
    clone.quantize_vertices(weld)
    line_eps = max(1e-5, weld)
    faces = _merge_boundary_vertices(clone.vertices, clone.faces, line_eps)

    mesh = trimesh.Trimesh(vertices=clone.vertices, faces=faces, process=False)
    mesh.update_faces(mesh.nondegenerate_faces())
    mesh.update_faces(mesh.unique_faces())
    mesh.remove_unreferenced_vertices()
    trimesh.repair.fill_holes(mesh)
    mesh.fix_normals()

    labels = reassign_labels(mesh.triangles, [solid], solid.name)
    repaired = Solid.from_arrays(mesh.vertices, mesh.faces, labels, name=solid.name)
    for face_name in solid.face_names():
        data = solid.get_face_metadata(face_name)
        if data:
            repaired.set_face_metadata(face_name, data)
    repaired.aux_edges = list(solid.aux_edges)
    repaired.epsilon = solid.epsilon
    return repaired


# ─── Attempts ────────────────────────────────────────────────────────────────

def _run_boolean(a: Solid, b: Solid, operation: str, engine: str, name: str) -> Solid:
    op = getattr(trimesh.boolean, operation)
    meshes = [a.to_trimesh(), b.to_trimesh()]
    for source, mesh in zip((a, b), meshes):
        if not mesh.is_watertight:
            raise BooleanError(f"Operand {source.name or '<unnamed>'} is not watertight")
    try:
        mesh = op(meshes, engine=engine)
    except KERNEL_ERRORS as exc:
        raise BooleanError(f"{type(exc).__name__}: {exc}") from exc
    if mesh is None or len(mesh.faces) == 0:
        if operation == "union":
            raise BooleanError("Union produced an empty mesh")
        return Solid(name)
    return _labeled_result(mesh, a, b, name)


def _mesh_merge(a: Solid, b: Solid, weld: float, name: str) -> Solid:
    offset = len(a.vertices)
    merged = Solid.from_arrays(
        np.vstack([a.vertices, b.vertices]),
        np.vstack([a.faces, b.faces + offset]),
        a.triangle_labels() + b.triangle_labels(),
        name=name,
    )
    for source in (b, a):
        for face_name in source.face_names():
            data = source.get_face_metadata(face_name)
            if data:
                merged.set_face_metadata(face_name, data)
    merged.aux_edges = list(a.aux_edges) + list(b.aux_edges)
    return repair_solid(merged, weld)


def combine(a: Solid, b: Solid, operation: str, config: Optional[BooleanConfig] = None) -> BooleanOutcome:
    """Run ``operation`` on two labeled solids, escalating through repairs.

    Strategies in order: direct, repair (welds at each scale), welded clones,
    mesh merge (unions only) and finally a pass-through of ``a`` flagged as
    a boolean failure. Never raises for kernel failures.
    """
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown boolean operation: {operation!r}")
    config = config or BooleanConfig()
    name = a.name
    attempts = 0
    last_error: Optional[str] = None

    def attempt(strategy: str, build: Callable[[], Solid]) -> Optional[BooleanOutcome]:
        nonlocal attempts, last_error
        attempts += 1
        try:
            solid = build()
        except BooleanError as exc:
            last_error = f"{strategy}: {exc}"
            logger.warning("Boolean %s (%s) failed on %s: %s", operation, strategy, name, exc)
            return None
        return BooleanOutcome(solid, operation, strategy, attempts, error=last_error)

    outcome = attempt("direct", lambda: _run_boolean(a, b, operation, config.engine, name))
    if outcome is not None:
        return outcome

    base_weld = max(config.min_weld, abs(a.epsilon) * 10)
    for scale in config.weld_scales:
        weld = base_weld * scale
        outcome = attempt("repair", lambda w=weld: _run_boolean(
            repair_solid(a, w), repair_solid(b, w), operation, config.engine, name))
        if outcome is not None:
            return outcome

    def welded() -> Solid:
        wa, wb = a.clone(), b.clone()
        wa.set_epsilon(max(1e-9, 1e-6 * a.bounding_diagonal()))
        wb.set_epsilon(max(1e-9, 1e-6 * b.bounding_diagonal()))
        return _run_boolean(wa, wb, operation, config.engine, name)

    outcome = attempt("welded", welded)
    if outcome is not None:
        return outcome

    if operation == "union" and config.allow_mesh_merge:
        outcome = attempt("mesh_merge", lambda: _mesh_merge(a, b, base_weld, name))
        if outcome is not None:
            return outcome

    if not config.allow_pass_through:
        raise BooleanError(last_error or f"Boolean {operation} failed on {name}")
    logger.warning("Boolean %s on %s failed after %d attempts; passing the base solid through",
                   operation, name, attempts)
    return BooleanOutcome(a.clone(), operation, "pass_through", attempts,
                          error=last_error or "Boolean combination failed",
                          error_kind=ErrorKind.BOOLEAN_COMBINATION_FAILURE)
