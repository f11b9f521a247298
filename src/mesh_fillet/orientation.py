"""
Orientation corrector for index-aligned polyline groups.

Decides which of centerline / tangency A / tangency B to reverse so that index
``i`` names the same cross-section in all three. Only whole arrays are
reversed.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from mesh_fillet.contracts import WindingDecision
from mesh_fillet.geometry import as_points

logger = logging.getLogger(__name__)

# (centerline, tangent A, tangent B); no-reversal first so ties keep the input
_REVERSAL_COMBOS: Tuple[Tuple[bool, bool, bool], ...] = (
    (False, False, False),
    (False, True, False),
    (False, False, True),
    (True, False, False),
    (True, True, False),
    (True, False, True),
    (False, True, True),
    (True, True, True),
)


def fix_polyline_winding(
    centerline: Sequence,
    tangent_a: Sequence,
    tangent_b: Sequence,
    expected_radius: Optional[float] = None,
) -> WindingDecision:
    """Return which polylines to reverse; inputs are not modified."""
    center = as_points(centerline)
    ta = as_points(tangent_a)
    tb = as_points(tangent_b)
    n = min(len(center), len(ta), len(tb))
    if n < 3:
        return WindingDecision()

    if expected_radius is not None and np.isfinite(expected_radius) and expected_radius > 0:
        return _search_by_radius(center[:n], ta[:n], tb[:n], float(expected_radius))
    return _heuristic(center[:n], ta[:n], tb[:n])


def apply_winding(decision: WindingDecision, *arrays: np.ndarray) -> List[np.ndarray]:
    """Reverse (centerline, A, B[, edge]) per ``decision``; edge follows the centerline."""
    flags = [decision.centerline_reversed, decision.tangent_a_reversed, decision.tangent_b_reversed,
             decision.centerline_reversed]
    return [arr[::-1].copy() if flag else arr for arr, flag in zip(arrays, flags)]


def _sample_indices(n: int) -> List[int]:
    idxs: List[int] = []
    for t in (0.25, 0.5, 0.75):
        i = max(0, min(n - 1, int(round(t * (n - 1)))))
        if i not in idxs:
            idxs.append(i)
    return idxs


def _search_by_radius(center: np.ndarray, ta: np.ndarray, tb: np.ndarray, radius: float) -> WindingDecision:
    n = len(center)
    idxs = np.array(_sample_indices(n))
    rev = n - 1 - idxs
    best_cost = np.inf
    best = _REVERSAL_COMBOS[0]
    for combo in _REVERSAL_COMBOS:
        rc, ra, rb = combo
        c = center[rev if rc else idxs]
        a = ta[rev if ra else idxs]
        b = tb[rev if rb else idxs]
        cost = float(np.sum(np.abs(np.linalg.norm(c - a, axis=1) - radius)
                            + np.abs(np.linalg.norm(c - b, axis=1) - radius)))
        if cost < best_cost:
            best_cost = cost
            best = combo
    return WindingDecision(*best)


def _net_direction(points: np.ndarray) -> np.ndarray:
    total = (points[1:] - points[:-1]).sum(axis=0)
    norm = float(np.linalg.norm(total))
    return total / (norm if norm > 0 else 1.0)


def _heuristic(center: np.ndarray, ta: np.ndarray, tb: np.ndarray) -> WindingDecision:
    c_dir = _net_direction(center)
    rev_c = False
    rev_a = float(np.dot(c_dir, _net_direction(ta))) < 0
    rev_b = float(np.dot(c_dir, _net_direction(tb))) < 0
    if rev_a and rev_b:
        rev_c, rev_a, rev_b = True, False, False

    n = len(center)
    m = min(8, n // 3)
    indices = [int(i * (n - 2) / (m - 1)) for i in range(1, m - 1)] if m > 1 else []
    signs_ca, signs_cb, signs_ab = [], [], []
    for idx in indices:
        if idx + 1 >= n:
            continue
        seg = center[idx + 1] - center[idx]
        seg_a = ta[idx + 1] - ta[idx]
        cross_ca = np.cross(seg, ta[idx] - center[idx])[2]
        cross_cb = np.cross(seg, tb[idx] - center[idx])[2]
        cross_ab = np.cross(seg_a, tb[idx] - ta[idx])[2]
        if np.isfinite(cross_ca) and np.isfinite(cross_cb) and np.isfinite(cross_ab):
            signs_ca.append(np.sign(cross_ca))
            signs_cb.append(np.sign(cross_cb))
            signs_ab.append(np.sign(cross_ab))

    avg_ca = float(np.mean(signs_ca)) if signs_ca else 0.0
    avg_cb = float(np.mean(signs_cb)) if signs_cb else 0.0
    avg_ab = float(np.mean(signs_ab)) if signs_ab else 0.0
    flipped = rev_c or rev_a or rev_b
    same_direction = avg_ab > 0.5

    if (avg_ca > 0) != (avg_cb > 0) and not flipped:
        if same_direction:
            rev_c = True
        elif abs(avg_cb) > abs(avg_ca):
            rev_b = True
        else:
            rev_a = True
    elif same_direction and not flipped:
        rev_b = True

    decision = WindingDecision(rev_c, rev_a, rev_b)
    if decision.any:
        logger.debug("Winding heuristic reversed: %s", decision)
    return decision
