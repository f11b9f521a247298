"""
Offset-rail solver for chamfers.

Rails are the edge offset by a fixed distance along each face, with one sign
per face chosen once for the whole edge. Also holds the rail post-processing
steps: nearest-neighbour reordering and tool inflation.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from mesh_fillet.contracts import Edge, RailSet, SideMode
from mesh_fillet.face import Face
from mesh_fillet.geometry import as_points, polyline_length, resample_polyline, sign_nonzero, unit_vector
from mesh_fillet.instrumentation import timed
from mesh_fillet.solid import Solid

logger = logging.getLogger(__name__)

MIN_SAMPLE_COUNT = 8
MIN_DISTANCE = 1e-9


def _normal_at(face: Face, point: np.ndarray, fallback: Optional[np.ndarray]) -> Optional[np.ndarray]:
    normal = face.local_normal(point)
    return normal if normal is not None else fallback


def _available_extent(face: Face, point: np.ndarray, offset: np.ndarray) -> Optional[float]:
    span = face.projection_range(offset)
    if span is None:
        return None
    return span[1] - float(point @ offset)


def _chamfer_samples(edge: Edge, closed: bool, snap_seam_to_edge: bool, sample_count: int) -> np.ndarray:
    pts = as_points(edge.points)
    if snap_seam_to_edge:
        if closed and len(pts) > 2 and np.array_equal(pts[0], pts[-1]):
            pts = pts[:-1]
        return pts
    return resample_polyline(pts, max(MIN_SAMPLE_COUNT, int(sample_count)), closed)


@timed("build_chamfer_rails")
def build_chamfer_rails(
    edge: Edge,
    distance: float,
    direction="INSET",
    sample_count: int = 50,
    snap_seam_to_edge: bool = True,
    flip_side: bool = False,
    solid: Optional[Solid] = None,
) -> RailSet:
    """Offset rails on both faces of ``edge`` at ``distance``.

    The sign per face is fixed at the middle sample so that the offset points
    into the material for INSET and away from it for OUTSET.
    """
    solid = solid if solid is not None else edge.solid
    if solid is None:
        raise ValueError("Edge must be part of a solid")
    if not edge.face_a or not edge.face_b:
        raise ValueError("Chamfer edge must have two adjacent faces")
    if len(edge.points) < 2:
        raise ValueError("Chamfer edge polyline missing")
    mode = SideMode.parse(direction)
    dist = max(MIN_DISTANCE, float(distance))

    face_a = solid.face(edge.face_a)
    face_b = solid.face(edge.face_b)
    if face_a.is_empty or face_b.is_empty:
        raise ValueError(f"Faces {edge.face_a} / {edge.face_b} have no triangles")
    avg_a = face_a.average_normal()
    avg_b = face_b.average_normal()

    closed = bool(edge.closed)
    samples = _chamfer_samples(edge, closed, snap_seam_to_edge, sample_count)
    n = len(samples)

    # side signs come from the middle sample, or the nearest one with both normals
    n_a_mid = n_b_mid = None
    mid = n // 2
    for mid in sorted(range(n), key=lambda i: abs(i - n // 2)):
        n_a_mid = _normal_at(face_a, samples[mid], avg_a)
        n_b_mid = _normal_at(face_b, samples[mid], avg_b)
        if n_a_mid is not None and n_b_mid is not None:
            break
    if n_a_mid is None or n_b_mid is None:
        raise ValueError(f"Faces {edge.face_a} / {edge.face_b} have no usable normal")
    t_mid = unit_vector(samples[min(n - 1, mid + 1)] - samples[max(0, mid - 1)])
    if t_mid is None:
        t_mid = unit_vector(samples[-1] - samples[0])
    outward = unit_vector(n_a_mid + n_b_mid)
    outward = outward if outward is not None else np.zeros(3)
    want = 1 if mode is SideMode.OUTSET else -1
    flip = -1 if flip_side else 1
    sign_a = sign_b = want * flip
    if t_mid is not None:
        v_a_mid = unit_vector(np.cross(n_a_mid, t_mid))
        v_b_mid = unit_vector(np.cross(n_b_mid, t_mid))
        if v_a_mid is not None:
            sign_a = want * sign_nonzero(float(v_a_mid @ outward)) * flip
        if v_b_mid is not None:
            sign_b = want * sign_nonzero(float(v_b_mid @ outward)) * flip

    rails = RailSet([], [], [], [], [], [], closed=closed, sign_a=sign_a, sign_b=sign_b)
    for i in range(n):
        p = samples[i]
        if closed:
            prev_p, next_p = samples[(i - 1) % n], samples[(i + 1) % n]
        else:
            prev_p, next_p = samples[max(0, i - 1)], samples[min(n - 1, i + 1)]
        t = next_p - prev_p
        if float(t @ t) < 1e-14:
            continue
        t = t / np.linalg.norm(t)
        n_a = _normal_at(face_a, p, avg_a)
        n_b = _normal_at(face_b, p, avg_b)
        if n_a is None or n_b is None:
            continue
        v_a = np.cross(n_a, t)
        v_b = np.cross(n_b, t)
        if float(v_a @ v_a) < 1e-12 or float(v_b @ v_b) < 1e-12:
            continue
        v_a /= np.linalg.norm(v_a)
        v_b /= np.linalg.norm(v_b)
        rails.rail_p.append(p.copy())
        rails.rail_a.append(p + v_a * (sign_a * dist))
        rails.rail_b.append(p + v_b * (sign_b * dist))
        rails.normals_a.append(n_a)
        rails.normals_b.append(n_b)
        rails.tangents.append(t)
        if mode is SideMode.INSET:
            for offset, face in ((v_a * sign_a, face_a), (v_b * sign_b, face_b)):
                avail = _available_extent(face, p, offset)
                if avail is not None and avail > MIN_DISTANCE:
                    limit = avail if rails.max_distance is None else min(rails.max_distance, avail)
                    rails.max_distance = limit

    if len(rails) < n:
        logger.debug("build_chamfer_rails: dropped %d of %d samples", n - len(rails), n)
    return rails


def _order_length(points: List[np.ndarray], order: List[int]) -> float:
    return float(sum(np.linalg.norm(points[order[i]] - points[order[i - 1]]) for i in range(1, len(order))))


def compute_rail_order(points: List[np.ndarray], closed: bool) -> Optional[List[int]]:
    """Greedy nearest-neighbour order with fixed endpoints, if it shortens the path."""
    n = len(points)
    if closed or n < 3:
        return None
    if float(np.linalg.norm(points[0] - points[-1])) < 1e-9:
        return None
    used = [False] * n
    used[0] = used[n - 1] = True
    order = [0]
    while len(order) < n - 1:
        current = points[order[-1]]
        best, best_dist = -1, np.inf
        for i in range(1, n - 1):
            if used[i]:
                continue
            d = float(np.linalg.norm(points[i] - current))
            if d < best_dist:
                best, best_dist = i, d
        if best < 0:
            break
        order.append(best)
        used[best] = True
    order.append(n - 1)
    if len(order) != n or order == list(range(n)):
        return None
    original = polyline_length(np.array(points))
    tolerance = max(1e-6, original * 1e-4)
    if not _order_length(points, order) + tolerance < original:
        return None
    return order


def reorder_rail_samples(rails: RailSet) -> bool:
    """Apply :func:`compute_rail_order` to all six arrays in lockstep."""
    order = compute_rail_order(rails.rail_p, rails.closed)
    if order is None:
        return False
    for attr in ("rail_p", "rail_a", "rail_b", "normals_a", "normals_b", "tangents"):
        arr = getattr(rails, attr)
        setattr(rails, attr, [arr[i] for i in order])
    logger.debug("Reordered %d chamfer rail samples", len(order))
    return True


def shift_edge_point(point: np.ndarray, normal_a: np.ndarray, normal_b: np.ndarray, inflate: float) -> np.ndarray:
    """Move an edge point so it sits ``inflate`` off both face planes."""
    n_a = unit_vector(normal_a)
    n_b = unit_vector(normal_b)
    p = np.asarray(point, dtype=float)
    if n_a is None or n_b is None:
        return p.copy()
    total = n_a + n_b
    denom = 1.0 + float(n_a @ n_b)
    if abs(denom) < 1e-9 or float(total @ total) < 1e-18:
        return p.copy()
    return p + total * (inflate / denom)


def translate_point_within_plane(point: np.ndarray, face_normal: np.ndarray, plane_normal: np.ndarray,
                                 inflate: float) -> np.ndarray:
    """Slide a rail point inside the bevel plane until it sits ``inflate`` off its face."""
    n = unit_vector(face_normal)
    m = unit_vector(plane_normal)
    p = np.asarray(point, dtype=float)
    if n is None or m is None:
        return p.copy()
    direction = n - m * float(m @ n)
    length_sq = float(direction @ direction)
    if length_sq < 1e-18:
        return p.copy()
    return p + direction * (inflate / length_sq)


def inflate_rails(rails: RailSet, inflate: float) -> RailSet:
    """Oversized copy of ``rails``; normals and tangents are shared."""
    if not np.isfinite(inflate) or inflate == 0 or len(rails) < 2:
        return rails
    out_p, out_a, out_b = [], [], []
    for P, A, B, n_a, n_b, t in zip(rails.rail_p, rails.rail_a, rails.rail_b,
                                    rails.normals_a, rails.normals_b, rails.tangents):
        out_p.append(shift_edge_point(P, n_a, n_b, inflate))
        tangent = unit_vector(t, 1e-7)
        ab = B - A
        bevel = np.cross(ab, tangent) if tangent is not None and float(ab @ ab) >= 1e-18 else None
        if bevel is None or float(np.linalg.norm(bevel)) < 1e-18:
            out_a.append(A.copy())
            out_b.append(B.copy())
            continue
        bevel = bevel / np.linalg.norm(bevel)
        out_a.append(translate_point_within_plane(A, n_a, bevel, inflate))
        out_b.append(translate_point_within_plane(B, n_b, bevel, inflate))
    return RailSet(out_p, out_a, out_b, rails.normals_a, rails.normals_b, rails.tangents,
                   closed=rails.closed, sign_a=rails.sign_a, sign_b=rails.sign_b)
