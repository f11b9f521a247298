"""Detect and collapse planar self-crossings in open chamfer rails."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString

from mesh_fillet.geometry import segment_intersection_2d

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 4096


def project_to_plane(points: Sequence[np.ndarray]) -> Optional[np.ndarray]:
    """2D coordinates of ``points`` in the rail's own plane.

    The plane normal sums the consecutive segment cross products; nearly
    straight rails fall back to an arbitrary plane through the first segment.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(pts) < 2:
        return None
    origin = pts[0]
    axis_u = None
    for p in pts[1:]:
        offset = p - origin
        if float(offset @ offset) > 1e-12:
            axis_u = offset / np.linalg.norm(offset)
            break
    if axis_u is None:
        return None

    normal = np.zeros(3)
    for i in range(len(pts) - 2):
        cross = np.cross(pts[i + 1] - pts[i], pts[i + 2] - pts[i + 1])
        if float(cross @ cross) > 1e-16:
            normal += cross
    if float(normal @ normal) < 1e-16:
        fallback = np.array([1.0, 0.0, 0.0]) if abs(axis_u[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        normal = np.cross(axis_u, fallback)
        if float(normal @ normal) < 1e-16:
            normal = np.array([0.0, 0.0, 1.0])
    normal = normal / np.linalg.norm(normal)
    axis_v = np.cross(normal, axis_u)
    if float(axis_v @ axis_v) < 1e-16:
        return None
    axis_v = axis_v / np.linalg.norm(axis_v)
    rel = pts - origin
    return np.column_stack([rel @ axis_u, rel @ axis_v])


def find_self_intersection(points: Sequence[np.ndarray]) -> Optional[Tuple[int, int, float, float]]:
    """First crossing (i, j, t, u) between non-adjacent segments i and j."""
    coords = project_to_plane(points)
    if coords is None:
        return None
    n = len(coords)
    if n < 4:
        return None
    for i in range(n - 3):
        for j in range(i + 2, n - 1):
            hit = segment_intersection_2d(coords[i], coords[i + 1], coords[j], coords[j + 1])
            if hit is not None:
                t, u = hit
                return i, j, min(1.0, max(0.0, t)), min(1.0, max(0.0, u))
    return None


def count_rail_self_intersections(points: Sequence[np.ndarray]) -> int:
    """Number of crossing non-adjacent segment pairs in the rail's plane."""
    coords = project_to_plane(points)
    if coords is None or len(coords) < 4:
        return 0
    if LineString(coords).is_simple:
        return 0
    n = len(coords)
    count = 0
    for i in range(n - 3):
        for j in range(i + 2, n - 1):
            if segment_intersection_2d(coords[i], coords[i + 1], coords[j], coords[j + 1]) is not None:
                count += 1
    return count


def _collapse(rails: List[List[np.ndarray]], i: int, j: int, t: float, u: float) -> None:
    for rail in rails:
        a = rail[i] + (rail[i + 1] - rail[i]) * t
        b = rail[j] + (rail[j + 1] - rail[j]) * u
        rail[i + 1:j + 1] = [0.5 * (a + b)]


def resolve_self_intersections(rails: List[List[np.ndarray]], closed: bool = False) -> int:
    """Collapse crossings in place, at the same indices in every rail.

    Returns the number of collapses performed. Closed rails and rails with
    fewer than four points are left alone.
    """
    if closed or not rails:
        return 0
    base_len = len(rails[0])
    if base_len < 4 or any(len(rail) != base_len for rail in rails):
        return 0
    max_iterations = min(MAX_ITERATIONS, base_len * base_len * len(rails))
    collapsed = 0
    for _ in range(max_iterations):
        best = None
        for rail in rails:
            hit = find_self_intersection(rail)
            if hit is None:
                continue
            if best is None or hit[0] < best[0] or (hit[0] == best[0] and hit[1] < best[1]):
                best = hit
        if best is None:
            break
        i, j, t, u = best
        if j <= i + 1 or any(len(rail) <= j + 1 for rail in rails):
            break
        _collapse(rails, i, j, t, u)
        collapsed += 1
    if collapsed:
        logger.info("Collapsed %d chamfer rail self-intersections", collapsed)
    return collapsed
