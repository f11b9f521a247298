"""
Tangency sampler.

Walks an edge polyline (original vertices plus segment midpoints), estimates a
tangent per sample, projects each sample onto its two faces and queries the
local face normal at the projected point.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from mesh_fillet.contracts import BlendedFacePair, Edge, EdgeSample, FacePair, SamplingResult
from mesh_fillet.face import Face
from mesh_fillet.geometry import as_points, unit_vector
from mesh_fillet.instrumentation import timed
from mesh_fillet.solid import Solid
from mesh_fillet.tolerances import Tolerances

logger = logging.getLogger(__name__)


def is_closed_edge(edge: Edge, dist_tol: float) -> bool:
    """The edge flag, or first/last points within ``dist_tol`` for 3+ points."""
    if edge.closed:
        return True
    pts = edge.points
    if len(pts) > 2:
        return float(np.linalg.norm(pts[0] - pts[-1])) <= dist_tol
    return False


def sample_positions(points: np.ndarray, closed: bool, segment_count: int) -> Tuple[np.ndarray, List[int]]:
    """Vertices interleaved with midpoints, plus the segment index of each sample."""
    src = as_points(points)
    if closed and len(src) > 2 and np.array_equal(src[0], src[-1]):
        src = src[:-1]
    seg_count = max(1, segment_count)
    out: List[np.ndarray] = []
    seg_idx: List[int] = []
    n = len(src)
    for i in range(n):
        out.append(src[i])
        if closed:
            seg_idx.append((i - 1) % seg_count)
        else:
            seg_idx.append(max(0, min(i - 1, seg_count - 1)))
        mid_idx = i % seg_count if closed else min(i, seg_count - 1)
        if closed:
            out.append(0.5 * (src[i] + src[(i + 1) % n]))
            seg_idx.append(mid_idx)
        elif i + 1 < n:
            out.append(0.5 * (src[i] + src[i + 1]))
            seg_idx.append(mid_idx)
    return np.array(out).reshape(-1, 3), seg_idx


class _FaceLookup:
    """Per-call face handles keyed by name."""

    def __init__(self, solid: Solid):
        self.solid = solid
        self.faces: Dict[str, Face] = {}

    def get(self, name: Optional[str]) -> Optional[Face]:
        if not name:
            return None
        if name not in self.faces:
            handle = self.solid.face(name)
            if handle.is_empty:
                logger.debug("Face %s has no triangles", name)
                return None
            self.faces[name] = handle
        return self.faces[name]

    def project_with_normal(self, face: Face, point: np.ndarray) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """Projected point and local normal there; the face average when local fails."""
        projected = face.project(point)
        normal = face.local_normal(projected)
        if normal is None:
            normal = face.average_normal()
        return projected, normal


def _resolve_pair(edge: Edge, seg_index: int):
    if not edge.uses_segment_pairs:
        return FacePair(edge.face_a, edge.face_b)
    pairs = edge.segment_pairs
    return pairs[seg_index] if 0 <= seg_index < len(pairs) else pairs[-1]


@timed("sample_edge")
def sample_edge(edge: Edge, radius: float, solid: Optional[Solid] = None) -> SamplingResult:
    """Build the cross-section samples of ``edge``.

    Samples whose tangent, normals or normal-tangent cross product are
    degenerate are dropped and counted, never fabricated.
    """
    solid = solid if solid is not None else edge.solid
    if solid is None:
        raise ValueError("Edge has no owning solid")
    if not edge.uses_segment_pairs and (not edge.face_a or not edge.face_b):
        raise ValueError(f"Edge {edge.name or '<unnamed>'} has no face pair")

    tol = Tolerances.for_radius(radius, solid.bounding_diagonal())
    closed = is_closed_edge(edge, tol.dist_tol)
    lookup = _FaceLookup(solid)
    if len(edge.points) < 2:
        return SamplingResult(samples=[], closed=closed, faces=lookup.faces)

    seg_count = len(edge.segment_pairs) if edge.uses_segment_pairs else (
        len(edge.points) - (0 if closed else 1))
    positions, seg_idx = sample_positions(edge.points, closed, seg_count)
    count = len(positions)

    samples: List[EdgeSample] = []
    dropped = 0
    for i in range(count):
        p = positions[i]
        if closed:
            prev_p, next_p = positions[(i - 1) % count], positions[(i + 1) % count]
        else:
            prev_p, next_p = positions[max(0, i - 1)], positions[min(count - 1, i + 1)]
        delta = next_p - prev_p
        if float(np.dot(delta, delta)) < tol.vec_length_tol:
            dropped += 1
            continue
        tangent = delta / float(np.linalg.norm(delta))

        sample = _sample_faces(lookup, _resolve_pair(edge, seg_idx[i]), p, tangent, tol)
        if sample is None:
            dropped += 1
            continue
        samples.append(sample)

    if dropped:
        logger.debug("sample_edge %s: kept %d of %d samples", edge.name, len(samples), count)
    return SamplingResult(samples=samples, closed=closed, dropped=dropped, faces=lookup.faces)


def _sample_faces(lookup: _FaceLookup, pair, p: np.ndarray, tangent: np.ndarray,
                  tol: Tolerances) -> Optional[EdgeSample]:
    allow_refine = True
    if isinstance(pair, BlendedFacePair):
        base = lookup.get(pair.base)
        side_a = lookup.get(pair.side_a)
        side_b = lookup.get(pair.side_b)
        if base is None or side_a is None or side_b is None:
            return None
        t = min(1.0, max(0.0, float(pair.t)))
        q_a, n_a = lookup.project_with_normal(base, p)
        q_side_a, n_side_a = lookup.project_with_normal(side_a, p)
        q_side_b, n_side_b = lookup.project_with_normal(side_b, p)
        if n_side_a is None or n_side_b is None:
            return None
        blended = unit_vector(n_side_a * (1.0 - t) + n_side_b * t)
        n_b = blended if blended is not None else n_side_a
        q_b = q_side_a + (q_side_b - q_side_a) * t
        face_a, face_b = pair.base, pair.side_a
        allow_refine = False
    else:
        handle_a = lookup.get(pair.face_a)
        handle_b = lookup.get(pair.face_b)
        if handle_a is None or handle_b is None:
            return None
        q_a, n_a = lookup.project_with_normal(handle_a, p)
        q_b, n_b = lookup.project_with_normal(handle_b, p)
        face_a, face_b = pair.face_a, pair.face_b

    if n_a is None or n_b is None:
        return None
    cross_a = np.cross(n_a, tangent)
    cross_b = np.cross(n_b, tangent)
    if float(np.dot(cross_a, cross_a)) < tol.eps or float(np.dot(cross_b, cross_b)) < tol.eps:
        return None
    return EdgeSample(point=p.copy(), tangent=tangent, normal_a=n_a, normal_b=n_b,
                      projected_a=q_a, projected_b=q_b, face_a=face_a, face_b=face_b,
                      allow_refine=allow_refine)
