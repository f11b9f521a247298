"""
Tangent-circle solver.

For every edge sample, find the center of a circle of the requested radius
tangent to both faces in the cross-section plane, and the two tangency points.
The result is the fillet centerline plus the two tangency polylines, index
aligned with the sampled edge.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from mesh_fillet.contracts import AuxEdge, CenterlineResult, Edge, EdgeSample, RadiusClamp, SideMode
from mesh_fillet.face import Face
from mesh_fillet.geometry import solve_offset_planes, unit_vector
from mesh_fillet.instrumentation import timed
from mesh_fillet.orientation import apply_winding, fix_polyline_winding
from mesh_fillet.sampler import sample_edge
from mesh_fillet.solid import Solid
from mesh_fillet.tolerances import Tolerances

logger = logging.getLogger(__name__)

REFINE_DEVIATION = 0.1     # of radius
ACUTE_SIN_HALF = 0.5       # sin(30 deg): interior angle below 60 deg
HARD_CAP_FACTOR = 6.0
EXPECT_CAP_FACTOR = 3.0
DISTANCE_PENALTY = 0.2


class _Section:
    """Cross-section frame of one sample: in-plane axes and inward normals."""

    def __init__(self, sample: EdgeSample, tol: Tolerances):
        self.ok = False
        t = sample.tangent
        v_a = np.cross(sample.normal_a, t)
        v_b = np.cross(sample.normal_b, t)
        if float(np.dot(v_a, v_a)) < tol.eps or float(np.dot(v_b, v_b)) < tol.eps:
            return
        self.v_a = v_a / np.linalg.norm(v_a)
        self.v_b = v_b / np.linalg.norm(v_b)
        self.u = self.v_a
        v = unit_vector(np.cross(t, self.u))
        if v is None:
            return
        self.v = v

        in_a = -np.cross(t, self.v_a)
        in_b = -np.cross(t, self.v_b)
        n0 = np.array([in_a @ self.u, in_a @ self.v])
        n1 = np.array([in_b @ self.u, in_b @ self.v])
        if n0 @ n0 < 1e-16 or n1 @ n1 < 1e-16:
            return
        n0 /= np.linalg.norm(n0)
        n1 /= np.linalg.norm(n1)
        self.angle = math.acos(min(1.0, max(-1.0, float(n0 @ n1))))
        self.sin_half = math.sin(0.5 * self.angle)
        if abs(self.sin_half) < tol.angle_tol:
            return
        bis = n0 + n1
        length = float(np.linalg.norm(bis))
        self.bisector_2d = bis / length if length > 1e-9 else np.zeros(2)
        self.ok = True

    def bisector_3d(self, negate: bool) -> Optional[np.ndarray]:
        if self.bisector_2d @ self.bisector_2d <= 1e-16:
            return None
        direction = self.u * self.bisector_2d[0] + self.v * self.bisector_2d[1]
        if negate:
            direction = -direction
        return unit_vector(direction)


def face_extent_limit(sample: EdgeSample, section: _Section, face_a: Face, face_b: Face,
                      outset: bool, tol: Tolerances) -> Optional[float]:
    """Largest radius whose tangency points stay inside both faces at this sample."""
    tan_half = math.tan(0.5 * section.angle)
    if not math.isfinite(tan_half) or tan_half <= tol.angle_tol:
        return None
    direction = section.bisector_3d(negate=outset)
    if direction is None:
        return None
    range_a = face_a.projection_range(section.v_a)
    range_b = face_b.projection_range(section.v_b)
    if range_a is None or range_b is None:
        return None
    p = sample.point
    p_a = float(p @ section.v_a)
    p_b = float(p @ section.v_b)
    avail_a = range_a[1] - p_a if float(section.v_a @ direction) >= 0 else p_a - range_a[0]
    avail_b = range_b[1] - p_b if float(section.v_b @ direction) >= 0 else p_b - range_b[0]
    avail = min(avail_a, avail_b)
    if not math.isfinite(avail) or avail <= tol.eps:
        return None
    limit = avail * tan_half
    return limit if math.isfinite(limit) and limit > tol.eps else None


def _score_candidate(center: Optional[np.ndarray], sign: int, sample: EdgeSample, face_a: Face,
                     face_b: Face, radius: float, expect: float, outward: Optional[np.ndarray],
                     desired_sign: int) -> float:
    if center is None:
        return math.inf
    t_a = center - sample.normal_a * (sign * radius)
    t_b = center - sample.normal_b * (sign * radius)
    residual = float(np.linalg.norm(t_a - face_a.project(t_a)) + np.linalg.norm(t_b - face_b.project(t_b)))
    side_penalty = 0.0
    if outward is not None:
        side = np.sign(float((center - sample.point) @ outward))
        if side != 0 and side != desired_sign:
            side_penalty = radius
    dist_penalty = abs(float(np.linalg.norm(center - sample.point)) - expect)
    return residual + DISTANCE_PENALTY * dist_penalty + side_penalty


def solve_sample(sample: EdgeSample, section: _Section, face_a: Face, face_b: Face,
                 radius: float, outset: bool, tol: Tolerances) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """Center and tangency points for one sample, or ``None`` if it must be dropped."""
    p = sample.point
    t = sample.tangent
    n_a = sample.normal_a
    n_b = sample.normal_b
    expect = radius / abs(section.sin_half)

    c_in = solve_offset_planes(p, t, n_a, sample.projected_a, -1, n_b, sample.projected_b, -1, radius)
    c_out = solve_offset_planes(p, t, n_a, sample.projected_a, 1, n_b, sample.projected_b, 1, radius)
    outward = unit_vector(n_a + n_b, tol.eps)
    desired = 1 if outset else -1

    inset_pick = not outset
    center = None
    if c_in is not None or c_out is not None:
        s_in = _score_candidate(c_in, -1, sample, face_a, face_b, radius, expect, outward, desired)
        s_out = _score_candidate(c_out, 1, sample, face_a, face_b, radius, expect, outward, desired)
        inset_pick = s_in <= s_out
        center = c_in if inset_pick else c_out
    sign = -1 if inset_pick else 1

    if center is None:
        direction = section.bisector_3d(negate=not inset_pick)
        if direction is not None:
            center = p + direction * expect
        else:
            avg = unit_vector(n_a + n_b, tol.eps)
            if avg is None:
                return None
            center = p + avg * (sign * expect)

    t_a = center - n_a * (sign * radius)
    t_b = center - n_b * (sign * radius)

    deviates = abs(float(np.linalg.norm(center - p)) - expect) > REFINE_DEVIATION * radius
    acute = abs(section.sin_half) < ACUTE_SIN_HALF
    passes = (2 if acute else 1) if sample.allow_refine and (deviates or acute) else 0
    for _ in range(passes):
        q_a = face_a.project(t_a)
        q_b = face_b.project(t_b)
        n_a1 = face_a.local_normal(q_a)
        n_b1 = face_b.local_normal(q_b)
        n_a1 = n_a1 if n_a1 is not None else face_a.average_normal()
        n_b1 = n_b1 if n_b1 is not None else face_b.average_normal()
        if n_a1 is None or n_b1 is None:
            break
        refined = solve_offset_planes(p, t, n_a1, q_a, sign, n_b1, q_b, sign, radius)
        if refined is None:
            break
        moved = float(np.linalg.norm(refined - center))
        center, n_a, n_b = refined, n_a1, n_b1
        t_a = center - n_a * (sign * radius)
        t_b = center - n_b * (sign * radius)
        if moved < 1e-6 * max(1.0, radius):
            break

    # snap runaway centers back onto the bisector
    expect_safe = expect
    to_a = t_a - p
    to_b = t_b - p
    len_a = float(np.linalg.norm(to_a))
    len_b = float(np.linalg.norm(to_b))
    if len_a > tol.eps and len_b > tol.eps:
        angle = math.acos(min(1.0, max(-1.0, float(to_a @ to_b) / (len_a * len_b))))
        sin_h = math.sin(0.5 * angle)
        if abs(sin_h) > tol.angle_tol:
            expect_safe = radius / abs(sin_h)
    hard_cap = HARD_CAP_FACTOR * radius
    distance = float(np.linalg.norm(center - p))
    if not math.isfinite(distance) or distance > hard_cap or distance > EXPECT_CAP_FACTOR * expect_safe:
        direction = section.bisector_3d(negate=outset)
        if direction is not None:
            center = p + direction * min(expect_safe, hard_cap)
            t_a = center - n_a * (sign * radius)
            t_b = center - n_b * (sign * radius)
    return center, t_a, t_b


@timed("compute_fillet_centerline")
def compute_fillet_centerline(
    edge: Edge,
    radius: float,
    side_mode="INSET",
    solid: Optional[Solid] = None,
) -> CenterlineResult:
    """Fillet centerline and tangency curves for ``edge``.

    Degenerate samples are dropped. Returns an empty result when nothing
    usable remains. A ``radius_clamp`` is attached when the radius would push
    tangency points past a face boundary.
    """
    if radius is None or not math.isfinite(float(radius)) or float(radius) <= 0:
        raise ValueError(f"Fillet radius must be positive, got {radius!r}")
    mode = SideMode.parse(side_mode)
    outset = mode is SideMode.OUTSET
    solid = solid if solid is not None else edge.solid
    if solid is None:
        raise ValueError("Edge has no owning solid")

    radius = float(radius)
    tol = Tolerances.for_radius(radius, solid.bounding_diagonal())
    r_eff = tol.effective_radius
    sampling = sample_edge(edge, radius, solid)

    centers: List[np.ndarray] = []
    tangents_a: List[np.ndarray] = []
    tangents_b: List[np.ndarray] = []
    edge_points: List[np.ndarray] = []
    max_allowed = math.inf
    limit_samples = 0
    dropped = sampling.dropped
    for sample in sampling.samples:
        face_a = sampling.face(sample.face_a)
        face_b = sampling.face(sample.face_b)
        section = _Section(sample, tol)
        if face_a is None or face_b is None or not section.ok:
            dropped += 1
            continue
        limit = face_extent_limit(sample, section, face_a, face_b, outset, tol)
        if limit is not None:
            max_allowed = min(max_allowed, limit)
            limit_samples += 1
        solved = solve_sample(sample, section, face_a, face_b, r_eff, outset, tol)
        if solved is None:
            dropped += 1
            continue
        center, t_a, t_b = solved
        centers.append(center)
        tangents_a.append(t_a)
        tangents_b.append(t_b)
        edge_points.append(sample.point)

    if not centers:
        logger.warning("compute_fillet_centerline: no solvable samples on edge %s", edge.name)
        result = CenterlineResult.empty(sampling.closed)
        result.dropped_samples = dropped
        return result

    if sampling.closed and len(centers) >= 2 and not np.array_equal(centers[0], centers[-1]):
        centers.append(centers[0].copy())
        tangents_a.append(tangents_a[0].copy())
        tangents_b.append(tangents_b[0].copy())
        edge_points.append(edge_points[0].copy())

    points = np.array(centers)
    arr_a = np.array(tangents_a)
    arr_b = np.array(tangents_b)
    arr_e = np.array(edge_points)
    winding = fix_polyline_winding(points, arr_a, arr_b, radius)
    points, arr_a, arr_b, arr_e = apply_winding(winding, points, arr_a, arr_b, arr_e)

    clamp = None
    if math.isfinite(max_allowed) and max_allowed < r_eff and limit_samples > 0:
        clamp = RadiusClamp(requested=radius, max_allowed=max_allowed, samples=limit_samples)
        logger.info("Fillet radius %.4g exceeds face extent; max allowed %.4g", radius, max_allowed)

    return CenterlineResult(points=points, tangent_a=arr_a, tangent_b=arr_b, edge=arr_e,
                            closed_loop=sampling.closed, radius_clamp=clamp,
                            dropped_samples=dropped, winding=winding)


def attach_fillet_centerline_aux_edge(
    solid: Solid,
    edge: Edge,
    radius: float = 1.0,
    side_mode="INSET",
    name: str = "FILLET_CENTERLINE",
    closed_loop: bool = False,
    material_key: str = "OVERLAY",
) -> Optional[AuxEdge]:
    """Compute the centerline of ``edge`` and store it on ``solid`` as an overlay polyline."""
    result = compute_fillet_centerline(edge, radius, side_mode, solid=edge.solid or solid)
    if len(result) < 2:
        return None
    return solid.add_aux_edge(name, result.points, closed_loop=closed_loop or result.closed_loop,
                              material_key=material_key)
