"""
Tube builder: a capsule-like solid swept along a polyline.

Two strategies share one entry point:
  fast  - ring extrusion along parallel-transport frames, then a self-union
          whose triangle count tells whether the sweep folded over itself.
  slow  - convex hulls of consecutive sphere point clouds, unioned. Always
          well formed; used as fallback or on request.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
import trimesh

from mesh_fillet.contracts import ErrorKind, TubeResult
from mesh_fillet.geometry import as_points, distance_to_segments, rotate_about_axis, unit_vector
from mesh_fillet.instrumentation import timed
from mesh_fillet.solid import Solid

logger = logging.getLogger(__name__)

DEFAULT_SEGMENTS = 32
MIN_SEGMENTS = 8
EPS = 1e-9
CORNER_TRIM_ANGLE = math.pi / 3
BOOLEAN_ENGINE = "manifold"

STRATEGIES = ("auto", "fast", "slow")


# ─── Path preparation ────────────────────────────────────────────────────────

def closure_tolerance(points: np.ndarray, radius: float) -> float:
    scale = max(float(np.abs(points).max()) if len(points) else 0.0, max(1e-6, radius))
    return max(1e-7, radius * 1e-5, scale * 1e-6)


def _dedupe(points: np.ndarray, tol: float) -> np.ndarray:
    if len(points) == 0:
        return points
    keep = [points[0]]
    for p in points[1:]:
        if float(np.linalg.norm(p - keep[-1])) > tol:
            keep.append(p)
    return np.array(keep)


def normalize_path(points: Sequence, radius: float, closed: bool = False) -> Tuple[np.ndarray, bool]:
    """Drop non-finite and repeated points; detect and unwrap closed paths."""
    pts = as_points(points)
    pts = pts[np.all(np.isfinite(pts), axis=1)]
    tol = closure_tolerance(pts, radius)
    clean = _dedupe(pts, tol)
    if len(clean) < 2:
        return clean, False
    ends_meet = float(np.linalg.norm(clean[0] - clean[-1])) <= tol
    is_closed = bool(closed) or ends_meet
    if is_closed and ends_meet and len(clean) > 2:
        clean = clean[:-1]
    return clean, is_closed


def trim_corners(points: np.ndarray, radius: float) -> np.ndarray:
    """Cut sharp corners back so rings on either side do not interpenetrate."""
    if len(points) <= 2:
        return points.copy()
    out: List[np.ndarray] = [points[0].copy()]
    for i in range(1, len(points) - 1):
        prev, curr, nxt = points[i - 1], points[i], points[i + 1]
        v_prev = curr - prev
        v_next = nxt - curr
        if float(v_prev @ v_prev) < EPS * EPS or float(v_next @ v_next) < EPS * EPS:
            out.append(curr.copy())
            continue
        v_prev = v_prev / np.linalg.norm(v_prev)
        v_next = v_next / np.linalg.norm(v_next)
        angle = math.acos(min(1.0, abs(float(v_prev @ v_next))))
        if angle <= CORNER_TRIM_ANGLE:
            out.append(curr.copy())
            continue
        reach = radius / math.tan(0.5 * angle)
        trim_prev = min(reach * 0.8, float(np.linalg.norm(curr - prev)) * 0.6)
        trim_next = min(reach * 0.8, float(np.linalg.norm(nxt - curr)) * 0.6)
        if trim_prev > radius * 0.1 and trim_next > radius * 0.1:
            before = curr - v_prev * trim_prev
            if float(np.linalg.norm(out[-1] - before)) > 1e-6:
                out.append(before)
            out.append(curr + v_next * trim_next)
        else:
            out.append(curr.copy())
    out.append(points[-1].copy())
    return _dedupe(np.array(out), 1e-6)


def parallel_transport_frames(points: np.ndarray, closed: bool = False) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Rotation-minimizing (tangent, normal, binormal) frames along the path."""
    n = len(points)
    tangents = np.zeros((n, 3))
    for i in range(n):
        if closed:
            forward = points[(i + 1) % n] - points[i]
            backward = points[i] - points[(i - 1) % n]
        elif i == 0:
            forward = backward = points[1] - points[0]
        elif i == n - 1:
            forward = backward = points[i] - points[i - 1]
        else:
            forward = points[i + 1] - points[i]
            backward = points[i] - points[i - 1]
        f = unit_vector(forward, EPS)
        b = unit_vector(backward, EPS)
        if f is not None and b is not None:
            t = unit_vector(f + b)
            t = t if t is not None else f
        else:
            t = f if f is not None else b
        if t is None:
            t = tangents[i - 1] if i > 0 else np.array([0.0, 0.0, 1.0])
        tangents[i] = t

    seed = np.array([0.0, 0.0, 1.0])
    if abs(float(tangents[0] @ seed)) > 0.99:
        seed = np.array([1.0, 0.0, 0.0])
    normals = np.zeros((n, 3))
    binormals = np.zeros((n, 3))
    normals[0] = unit_vector(np.cross(np.cross(tangents[0], seed), tangents[0]))
    binormals[0] = unit_vector(np.cross(tangents[0], normals[0]))
    for i in range(1, n):
        normals[i] = normals[i - 1]
        binormals[i] = binormals[i - 1]
        dot = float(tangents[i - 1] @ tangents[i])
        if dot <= 1 - EPS:
            axis = unit_vector(np.cross(tangents[i - 1], tangents[i]))
            if axis is not None:
                rotated = rotate_about_axis(normals[i - 1], axis, math.acos(min(1.0, max(-1.0, dot))))
                normals[i] = unit_vector(rotated)
                binormals[i] = unit_vector(np.cross(tangents[i], normals[i]))

    if closed and n > 2:
        avg = unit_vector(normals.sum(axis=0))
        for i in range(n):
            projected = normals[i] - tangents[i] * float(tangents[i] @ normals[i])
            if float(projected @ projected) > EPS * EPS:
                normals[i] = projected / np.linalg.norm(projected)
            elif avg is not None:
                normals[i] = avg
            binormals[i] = unit_vector(np.cross(tangents[i], normals[i]))
    return tangents, normals, binormals


def build_rings(points: np.ndarray, normals: np.ndarray, binormals: np.ndarray, radius: float,
                segments: int) -> np.ndarray:
    theta = np.arange(segments) * (2.0 * math.pi / segments)
    offsets = (normals[:, None, :] * np.cos(theta)[None, :, None]
               + binormals[:, None, :] * np.sin(theta)[None, :, None])
    return points[:, None, :] + offsets * radius


def _add_oriented(solid: Solid, name: str, a, b, c, outward: np.ndarray) -> None:
    normal = np.cross(np.asarray(b) - a, np.asarray(c) - a)
    if float(normal @ outward) < 0:
        solid.add_triangle(name, a, c, b)
    else:
        solid.add_triangle(name, a, b, c)


def self_intersection_likely(pre_triangles: int, post_triangles: int) -> bool:
    """A self-union that adds triangles means the sweep intersected itself."""
    return post_triangles > pre_triangles


# ─── Fast path ───────────────────────────────────────────────────────────────

def build_fast_tube(points: np.ndarray, radius: float, inner_radius: float, segments: int,
                    closed: bool, name: str) -> Tuple[Solid, bool]:
    """Ring-extruded tube; returns (solid, self_intersection_likely)."""
    path = trim_corners(points, radius)
    if len(path) < 2:
        raise ValueError("Tube path collapsed after corner trimming")
    tol = closure_tolerance(path, radius)
    if len(path) > 2 and float(np.linalg.norm(path[0] - path[-1])) <= tol:
        closed = True
        path = path[:-1]
    tangents, normals, binormals = parallel_transport_frames(path, closed)

    solid = Solid(name)
    outer = build_rings(path, normals, binormals, radius, segments)
    inner = build_rings(path, normals, binormals, inner_radius, segments) if inner_radius > 0 else None
    ring_count = len(path) if closed else len(path) - 1
    for i in range(ring_count):
        k = (i + 1) % len(path)
        for j in range(segments):
            j1 = (j + 1) % segments
            mid = 0.25 * (outer[i, j] + outer[i, j1] + outer[k, j] + outer[k, j1])
            radial = mid - 0.5 * (path[i] + path[k])
            _add_oriented(solid, f"{name}_Outer", outer[i, j], outer[i, j1], outer[k, j1], radial)
            _add_oriented(solid, f"{name}_Outer", outer[i, j], outer[k, j1], outer[k, j], radial)
            if inner is not None:
                mid_in = 0.25 * (inner[i, j] + inner[i, j1] + inner[k, j] + inner[k, j1])
                inward = 0.5 * (path[i] + path[k]) - mid_in
                _add_oriented(solid, f"{name}_Inner", inner[i, j], inner[k, j], inner[k, j1], inward)
                _add_oriented(solid, f"{name}_Inner", inner[i, j], inner[k, j1], inner[i, j1], inward)

    if not closed:
        caps = ((f"{name}_CapStart", 0, -tangents[0]), (f"{name}_CapEnd", len(path) - 1, tangents[-1]))
        for cap_name, idx, outward in caps:
            for j in range(segments):
                j1 = (j + 1) % segments
                if inner is None:
                    _add_oriented(solid, cap_name, path[idx], outer[idx, j], outer[idx, j1], outward)
                else:
                    _add_oriented(solid, cap_name, outer[idx, j], outer[idx, j1], inner[idx, j1], outward)
                    _add_oriented(solid, cap_name, outer[idx, j], inner[idx, j1], inner[idx, j], outward)

    aux_path = np.vstack([path, path[:1]]) if closed else path
    solid.add_aux_edge(f"{name}_PATH", aux_path, closed_loop=closed)

    pre = solid.triangle_count
    outcome = solid.boolean(solid, "union")
    if not outcome.ok:
        logger.warning("Tube %s self-union failed; keeping raw geometry: %s", name, outcome.error)
        return solid, False
    post = outcome.solid.triangle_count
    unioned = outcome.solid
    unioned.name = name
    unioned.aux_edges = list(solid.aux_edges)
    logger.debug("Tube %s self-union: %d -> %d triangles", name, pre, post)
    return unioned, self_intersection_likely(pre, post)


# ─── Slow path ───────────────────────────────────────────────────────────────

def sphere_cloud(center: np.ndarray, radius: float, segments: int) -> np.ndarray:
    sphere = trimesh.creation.uv_sphere(radius=radius, count=[max(4, segments // 2), segments])
    return np.asarray(sphere.vertices) + center


def clip_cloud(cloud: np.ndarray, anchor: np.ndarray, normal: np.ndarray) -> np.ndarray:
    """Flatten the part of ``cloud`` behind the plane (anchor, normal) onto the plane."""
    depth = (cloud - anchor) @ normal
    behind = depth < 0
    clipped = cloud.copy()
    clipped[behind] -= np.outer(depth[behind], normal)
    return clipped


def _hull_chain(points: np.ndarray, radius: float, segments: int, closed: bool) -> trimesh.Trimesh:
    clouds = [sphere_cloud(p, radius, segments) for p in points]
    if not closed:
        start_normal = unit_vector(points[1] - points[0], EPS)
        end_normal = unit_vector(points[-2] - points[-1], EPS)
        for anchor, normal, order in ((points[0], start_normal, range(len(points))),
                                      (points[-1], end_normal, range(len(points) - 1, -1, -1))):
            if normal is None:
                continue
            for idx in order:
                if float(np.linalg.norm(points[idx] - anchor)) > radius:
                    break
                clouds[idx] = clip_cloud(clouds[idx], anchor, normal)

    hulls = []
    count = len(points) if closed else len(points) - 1
    for i in range(count):
        j = (i + 1) % len(points)
        if float(np.linalg.norm(points[i] - points[j])) < EPS:
            continue
        hulls.append(trimesh.convex.convex_hull(np.vstack([clouds[i], clouds[j]])))
    if not hulls:
        raise ValueError("Unable to build tube hulls from the supplied path")
    if len(hulls) == 1:
        return hulls[0]
    return trimesh.boolean.union(hulls, engine=BOOLEAN_ENGINE)


def relabel_tube_faces(triangles: np.ndarray, path: np.ndarray, radius: float, inner_radius: float,
                       closed: bool, name: str) -> List[str]:
    """Name hull-tube triangles Outer/Inner/CapStart/CapEnd from their centroids."""
    centroids = np.asarray(triangles).reshape(-1, 3, 3).mean(axis=1)
    labels = [f"{name}_Outer"] * len(centroids)
    cap_tol = max(radius * 1e-2, 1e-5)
    start_normal = end_normal = None
    if not closed:
        start_normal = unit_vector(path[1] - path[0], EPS)
        end_normal = unit_vector(path[-2] - path[-1], EPS)
    polyline = np.vstack([path, path[:1]]) if closed else path
    dist_to_path = distance_to_segments(centroids, polyline) if inner_radius > 0 else None
    threshold = 0.5 * (inner_radius + radius)

    for k, centroid in enumerate(centroids):
        if (start_normal is not None
                and abs(float((centroid - path[0]) @ start_normal)) <= cap_tol
                and float(np.linalg.norm(centroid - path[0])) <= radius + cap_tol):
            labels[k] = f"{name}_CapStart"
        elif (end_normal is not None
              and abs(float((centroid - path[-1]) @ end_normal)) <= cap_tol
              and float(np.linalg.norm(centroid - path[-1])) <= radius + cap_tol):
            labels[k] = f"{name}_CapEnd"
        elif dist_to_path is not None and dist_to_path[k] <= threshold:
            labels[k] = f"{name}_Inner"
    return labels


def build_slow_tube(points: np.ndarray, radius: float, inner_radius: float, segments: int,
                    closed: bool, name: str) -> Solid:
    mesh = _hull_chain(points, radius, segments, closed)
    if inner_radius > 0:
        inner = _hull_chain(points, inner_radius, segments, closed)
        mesh = trimesh.boolean.difference([mesh, inner], engine=BOOLEAN_ENGINE)
    labels = relabel_tube_faces(mesh.triangles, points, radius, inner_radius, closed, name)
    solid = Solid.from_arrays(mesh.vertices, mesh.faces, labels, name=name)
    solid.fix_triangle_windings_by_adjacency()
    aux_path = np.vstack([points, points[:1]]) if closed else points
    solid.add_aux_edge(f"{name}_PATH", aux_path, closed_loop=closed)
    return solid


# ─── Entry point ─────────────────────────────────────────────────────────────

@timed("build_tube")
def build_tube(
    points: Sequence,
    radius: float,
    inner_radius: float = 0.0,
    resolution: int = DEFAULT_SEGMENTS,
    closed: bool = False,
    name: str = "TUBE",
    strategy: str = "auto",
) -> TubeResult:
    """Sweep a tube of ``radius`` along ``points``.

    Invalid parameters raise ``ValueError``. Geometry failures are reported on
    the returned :class:`TubeResult`. ``strategy="auto"`` tries the fast path
    and falls back to hulls when the fast tube intersects itself or fails.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown tube strategy: {strategy!r}")
    radius = float(radius)
    inner = float(inner_radius or 0.0)
    if not radius > 0:
        raise ValueError("Tube radius must be greater than zero")
    if inner < 0:
        raise ValueError("Inside radius cannot be negative")
    if inner > 0 and inner >= radius:
        raise ValueError("Inside radius must be smaller than the outer radius")
    segments = max(MIN_SEGMENTS, int(resolution or DEFAULT_SEGMENTS))

    raw = as_points(points)
    if len(raw) >= 2 and np.array_equal(raw[0], raw[-1]):
        closed = True
    path, is_closed = normalize_path(raw, radius, closed)
    if len(path) < 2:
        raise ValueError(f"Tube requires at least two distinct path points, got {len(path)}")
    if is_closed and len(path) < 3:
        raise ValueError("Closed tubes require at least three unique points")

    flagged = False
    if strategy in ("auto", "fast"):
        try:
            solid, flagged = build_fast_tube(path, radius, inner, segments, is_closed, name)
        except (ValueError, np.linalg.LinAlgError) as exc:
            if strategy == "fast":
                return TubeResult(None, "none", error=f"Fast tube failed: {exc}",
                                  error_kind=ErrorKind.TUBE_GENERATION_FAILURE)
            logger.warning("Tube %s fast generation failed; falling back to hulls: %s", name, exc)
        else:
            if strategy == "fast" or not flagged:
                return TubeResult(solid, "fast", self_intersection_likely=flagged)
            logger.info("Tube %s likely self-intersects; rebuilding from hulls", name)

    try:
        solid = build_slow_tube(path, radius, inner, segments, is_closed, name)
    except ValueError as exc:
        logger.warning("Tube %s hull generation failed: %s", name, exc)
        return TubeResult(None, "none", self_intersection_likely=flagged,
                          error=f"Tube generation failed: {exc}",
                          error_kind=ErrorKind.TUBE_GENERATION_FAILURE)
    return TubeResult(solid, "slow", self_intersection_likely=flagged)
