"""Vector, triangle and polyline helpers shared by the solvers and builders."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
import trimesh


def unit_vector(vector: np.ndarray, tol: float = 1e-12) -> Optional[np.ndarray]:
    """Normalize ``vector``; ``None`` when its length is at or below ``tol``."""
    vec = np.asarray(vector, dtype=float)
    norm = float(np.linalg.norm(vec))
    if not math.isfinite(norm) or norm <= tol:
        return None
    return vec / norm


def sign_nonzero(value: float) -> int:
    return 1 if value >= 0 else -1


def lerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    return np.asarray(a, dtype=float) + (np.asarray(b, dtype=float) - np.asarray(a, dtype=float)) * t


# ─── Triangles ───────────────────────────────────────────────────────────────

def triangle_cross(triangles: np.ndarray) -> np.ndarray:
    """Unnormalized (2x area) normals of an (n, 3, 3) triangle array."""
    tris = np.asarray(triangles, dtype=float).reshape(-1, 3, 3)
    return np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])


def triangle_areas(triangles: np.ndarray) -> np.ndarray:
    return 0.5 * np.linalg.norm(triangle_cross(triangles), axis=1)


def triangle_area(p0: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> float:
    return 0.5 * float(np.linalg.norm(np.cross(np.asarray(p1) - p0, np.asarray(p2) - p0)))


def closest_points_on_triangles(triangles: np.ndarray, point: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Closest point on every triangle to a single query point.

    Returns (points, distances), both aligned with ``triangles``.
    """
    tris = np.asarray(triangles, dtype=float).reshape(-1, 3, 3)
    query = np.tile(np.asarray(point, dtype=float).reshape(1, 3), (len(tris), 1))
    closest = trimesh.triangles.closest_point(tris, query)
    distances = np.linalg.norm(closest - query, axis=1)
    return closest, distances


def nearest_point_on_triangles(triangles: np.ndarray, point: np.ndarray) -> Tuple[np.ndarray, int, float]:
    closest, distances = closest_points_on_triangles(triangles, point)
    idx = int(np.argmin(distances))
    return closest[idx], idx, float(distances[idx])


def solve_offset_planes(
    point: np.ndarray,
    tangent: np.ndarray,
    normal_a: np.ndarray,
    anchor_a: np.ndarray,
    sign_a: float,
    normal_b: np.ndarray,
    anchor_b: np.ndarray,
    sign_b: float,
    radius: float,
) -> Optional[np.ndarray]:
    """Intersect the two face planes offset by ``sign*radius`` with the section plane.

    Each face plane passes through its anchor (the sample projected onto the
    face). The third plane is the cross-section through ``point`` normal to
    ``tangent``.
    """
    nA = np.asarray(normal_a, dtype=float)
    nB = np.asarray(normal_b, dtype=float)
    t = np.asarray(tangent, dtype=float)
    matrix = np.vstack([nA, nB, t])
    rhs = np.array([
        float(np.dot(nA, anchor_a)) + sign_a * radius,
        float(np.dot(nB, anchor_b)) + sign_b * radius,
        float(np.dot(t, point)),
    ])
    det = float(np.linalg.det(matrix))
    if not math.isfinite(det) or abs(det) < 1e-12:
        return None
    center = np.linalg.solve(matrix, rhs)
    if not np.all(np.isfinite(center)):
        return None
    return center


# ─── Polylines ───────────────────────────────────────────────────────────────

def as_points(points: Sequence) -> np.ndarray:
    return np.asarray(points, dtype=float).reshape(-1, 3)


def polyline_length(points: Sequence) -> float:
    pts = as_points(points)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())


def point_at_arc_length(points: Sequence, distance: float) -> np.ndarray:
    pts = as_points(points)
    acc = 0.0
    for i in range(1, len(pts)):
        seg = float(np.linalg.norm(pts[i] - pts[i - 1]))
        if acc + seg >= distance and seg > 0:
            return lerp(pts[i - 1], pts[i], (distance - acc) / seg)
        acc += seg
    return pts[-1].copy()


def resample_polyline(points: Sequence, count: int, closed: bool = False) -> np.ndarray:
    """Resample to ``count`` points spaced evenly by arc length."""
    pts = as_points(points)
    if len(pts) < 2 or count < 2:
        return pts.copy()
    if closed:
        pts = np.vstack([pts, pts[:1]])
    total = polyline_length(pts)
    return np.array([point_at_arc_length(pts, total * i / (count - 1)) for i in range(count)])


def distance_to_segments(points: np.ndarray, polyline: np.ndarray) -> np.ndarray:
    """Distance from each point to the nearest segment of ``polyline``."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    poly = as_points(polyline)
    if len(poly) == 1:
        return np.linalg.norm(pts - poly[0], axis=1)
    a = poly[:-1]
    ab = poly[1:] - a
    denom = np.einsum("ij,ij->i", ab, ab)
    denom = np.where(denom > 0, denom, 1.0)
    rel = pts[:, None, :] - a[None, :, :]
    t = np.clip(np.einsum("pij,ij->pi", rel, ab) / denom, 0.0, 1.0)
    closest = a[None, :, :] + t[:, :, None] * ab[None, :, :]
    dist = np.linalg.norm(pts[:, None, :] - closest, axis=2)
    return dist.min(axis=1)


def dedupe_consecutive(points: Sequence, tol: float) -> np.ndarray:
    pts = as_points(points)
    if len(pts) == 0:
        return pts
    keep: List[np.ndarray] = [pts[0]]
    for p in pts[1:]:
        if float(np.linalg.norm(p - keep[-1])) > tol:
            keep.append(p)
    return np.array(keep)


def segment_intersection_2d(
    a1: np.ndarray,
    a2: np.ndarray,
    b1: np.ndarray,
    b2: np.ndarray,
    tol: float = 1e-12,
) -> Optional[Tuple[float, float]]:
    """Parameters (t, u) where segment a1a2 meets b1b2, or ``None``."""
    r = np.asarray(a2, dtype=float) - a1
    s = np.asarray(b2, dtype=float) - b1
    denom = r[0] * s[1] - r[1] * s[0]
    if abs(denom) < tol:
        return None
    dx, dy = np.asarray(b1, dtype=float) - a1
    t = (dx * s[1] - dy * s[0]) / denom
    u = (dx * r[1] - dy * r[0]) / denom
    if -tol <= t <= 1 + tol and -tol <= u <= 1 + tol:
        return float(t), float(u)
    return None


def rotate_about_axis(vector: np.ndarray, axis: np.ndarray, angle: float) -> np.ndarray:
    """Rodrigues rotation of ``vector`` about unit ``axis``."""
    k = np.asarray(axis, dtype=float)
    v = np.asarray(vector, dtype=float)
    c, s = math.cos(angle), math.sin(angle)
    return v * c + np.cross(k, v) * s + k * float(np.dot(k, v)) * (1.0 - c)
