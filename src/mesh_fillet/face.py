"""Face handle: query surface over one labeled triangle group of a solid."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import trimesh

from mesh_fillet.geometry import closest_points_on_triangles, triangle_cross, unit_vector


class Face:
    """Average/local normals and point projection for a named face.

    Arrays are computed once per handle. Handles are cheap and built per
    invocation, so nothing is cached across calls.
    """

    def __init__(self, name: str, triangles: np.ndarray):
        self.name = name
        self.triangles = np.asarray(triangles, dtype=float).reshape(-1, 3, 3)
        crosses = triangle_cross(self.triangles)
        self._double_areas = np.linalg.norm(crosses, axis=1)
        safe = np.where(self._double_areas > 0, self._double_areas, 1.0)
        self._unit_normals = crosses / safe[:, None]
        self._cross_sum = crosses.sum(axis=0)
        self.vertices = np.unique(self.triangles.reshape(-1, 3), axis=0) if len(self.triangles) else np.zeros((0, 3))
        if len(self.vertices):
            span = self.vertices.max(axis=0) - self.vertices.min(axis=0)
            self._extent = float(np.linalg.norm(span))
        else:
            self._extent = 0.0

    def __len__(self) -> int:
        return int(len(self.triangles))

    @property
    def is_empty(self) -> bool:
        return len(self.triangles) == 0

    @property
    def area(self) -> float:
        return float(0.5 * self._double_areas.sum())

    def average_normal(self) -> Optional[np.ndarray]:
        """Area-weighted outward normal of the whole face."""
        return unit_vector(self._cross_sum)

    def project(self, point: np.ndarray) -> np.ndarray:
        """Nearest point on the face's triangle set."""
        if self.is_empty:
            return np.asarray(point, dtype=float).copy()
        closest, distances = closest_points_on_triangles(self.triangles, point)
        return closest[int(np.argmin(distances))]

    def project_many(self, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        if self.is_empty or len(pts) == 0:
            return pts.copy()
        count = len(self.triangles)
        tris = np.tile(self.triangles, (len(pts), 1, 1))
        query = np.repeat(pts, count, axis=0)
        closest = trimesh.triangles.closest_point(tris, query).reshape(len(pts), count, 3)
        dist = np.linalg.norm(closest - pts[:, None, :], axis=2)
        best = np.argmin(dist, axis=1)
        return closest[np.arange(len(pts)), best]

    def local_normal(self, point: Optional[np.ndarray]) -> Optional[np.ndarray]:
        """Normal near ``point``: area-weighted over the nearest triangles.

        Points on a shared facet edge average both facets, which approximates
        the smooth surface normal of a tessellated curved face.
        """
        if point is None or self.is_empty:
            return None
        _, distances = closest_points_on_triangles(self.triangles, point)
        tol = max(1e-9, 1e-6 * self._extent)
        near = (distances <= float(distances.min()) + tol) & (self._double_areas > 0)
        if not np.any(near):
            return None
        weighted = (self._unit_normals[near] * self._double_areas[near, None]).sum(axis=0)
        return unit_vector(weighted)

    def projection_range(self, direction: np.ndarray) -> Optional[Tuple[float, float]]:
        if len(self.vertices) == 0:
            return None
        dots = self.vertices @ np.asarray(direction, dtype=float)
        return float(dots.min()), float(dots.max())
