"""
Labeled triangle-mesh solid.

Triangles carry a face label (an integer id mapped to a face name). The class
covers the authoring and query surface the fillet/chamfer engine needs:
adding triangles, face lookup and metadata, pushing faces, welding, winding
repair, boundary-edge extraction and boolean combination with face-label
propagation.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import trimesh

from mesh_fillet.contracts import AuxEdge, BooleanConfig, BooleanOutcome, Edge
from mesh_fillet.face import Face
from mesh_fillet.geometry import triangle_areas, triangle_cross

logger = logging.getLogger(__name__)

_VertexKey = Tuple[float, float, float]


def _key(point: Sequence[float]) -> _VertexKey:
    return (float(point[0]), float(point[1]), float(point[2]))


class Solid:
    """Triangle soup with shared vertices and per-triangle face labels."""

    def __init__(self, name: str = "Solid"):
        self.name = name
        self._vertices: List[_VertexKey] = []
        self._vertex_index: Dict[_VertexKey, int] = {}
        self._faces: List[Tuple[int, int, int]] = []
        self._face_ids: List[int] = []
        self._id_to_name: Dict[int, str] = {}
        self._name_to_id: Dict[str, int] = {}
        self._face_metadata: Dict[str, Dict[str, Any]] = {}
        self.aux_edges: List[AuxEdge] = []
        self.epsilon: float = 0.0
        self.debug_solids: List["Solid"] = []

    # ─── Construction ────────────────────────────────────────────────────

    @classmethod
    def from_arrays(
        cls,
        vertices: np.ndarray,
        faces: np.ndarray,
        labels: Sequence[str],
        name: str = "Solid",
    ) -> "Solid":
        """Build from vertex/face arrays and one face name per triangle."""
        solid = cls(name)
        verts = np.asarray(vertices, dtype=float).reshape(-1, 3)
        tris = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        if len(tris) != len(labels):
            raise ValueError(f"Expected {len(tris)} labels, got {len(labels)}")
        if len(verts):
            unique, inverse = np.unique(verts, axis=0, return_inverse=True)
            tris = np.asarray(inverse).reshape(-1)[tris]
        else:
            unique = verts
        solid._vertices = [_key(v) for v in unique]
        solid._vertex_index = {v: i for i, v in enumerate(solid._vertices)}
        for tri, label in zip(tris, labels):
            a, b, c = (int(x) for x in tri)
            if a == b or b == c or a == c:
                continue
            solid._faces.append((a, b, c))
            solid._face_ids.append(solid._ensure_face_id(label))
        return solid

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, face_name: str, name: Optional[str] = None) -> "Solid":
        labels = [face_name] * len(mesh.faces)
        return cls.from_arrays(mesh.vertices, mesh.faces, labels, name=name or face_name)

    def clone(self) -> "Solid":
        other = Solid(self.name)
        other._vertices = list(self._vertices)
        other._vertex_index = dict(self._vertex_index)
        other._faces = list(self._faces)
        other._face_ids = list(self._face_ids)
        other._id_to_name = dict(self._id_to_name)
        other._name_to_id = dict(self._name_to_id)
        other._face_metadata = copy.deepcopy(self._face_metadata)
        other.aux_edges = list(self.aux_edges)
        other.epsilon = self.epsilon
        return other

    def _ensure_face_id(self, face_name: str) -> int:
        face_id = self._name_to_id.get(face_name)
        if face_id is None:
            face_id = max(self._id_to_name, default=-1) + 1
            self._id_to_name[face_id] = face_name
            self._name_to_id[face_name] = face_id
        return face_id

    def _vertex(self, point: Sequence[float]) -> int:
        key = _key(point)
        idx = self._vertex_index.get(key)
        if idx is None:
            idx = len(self._vertices)
            self._vertices.append(key)
            self._vertex_index[key] = idx
        return idx

    def add_triangle(self, face_name: str, p0: Sequence[float], p1: Sequence[float], p2: Sequence[float]) -> bool:
        """Append a triangle to ``face_name``; index-degenerate triangles are ignored."""
        a, b, c = self._vertex(p0), self._vertex(p1), self._vertex(p2)
        if a == b or b == c or a == c:
            return False
        self._faces.append((a, b, c))
        self._face_ids.append(self._ensure_face_id(face_name))
        return True

    def add_aux_edge(
        self,
        name: str,
        points: Sequence[Sequence[float]],
        closed_loop: bool = False,
        material_key: str = "OVERLAY",
    ) -> AuxEdge:
        aux = AuxEdge(name=name, points=np.asarray(points, dtype=float).reshape(-1, 3),
                      closed_loop=closed_loop, material_key=material_key)
        self.aux_edges.append(aux)
        return aux

    # ─── Arrays ──────────────────────────────────────────────────────────

    @property
    def vertices(self) -> np.ndarray:
        return np.array(self._vertices, dtype=float).reshape(-1, 3)

    @property
    def faces(self) -> np.ndarray:
        return np.array(self._faces, dtype=np.int64).reshape(-1, 3)

    @property
    def face_ids(self) -> np.ndarray:
        return np.array(self._face_ids, dtype=np.int64)

    @property
    def triangle_count(self) -> int:
        return len(self._faces)

    @property
    def is_empty(self) -> bool:
        return len(self._faces) == 0

    def triangles(self) -> np.ndarray:
        if self.is_empty:
            return np.zeros((0, 3, 3))
        return self.vertices[self.faces]

    def triangle_labels(self) -> List[str]:
        return [self._id_to_name[i] for i in self._face_ids]

    def _set_arrays(self, vertices: np.ndarray, faces: np.ndarray, face_ids: Sequence[int]) -> None:
        """Replace geometry, welding exactly coincident vertices."""
        verts = np.asarray(vertices, dtype=float).reshape(-1, 3)
        tris = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        ids = list(face_ids)
        if len(verts):
            unique, inverse = np.unique(verts, axis=0, return_inverse=True)
            tris = np.asarray(inverse).reshape(-1)[tris]
        else:
            unique = verts
        self._vertices = [_key(v) for v in unique]
        self._vertex_index = {v: i for i, v in enumerate(self._vertices)}
        self._faces = []
        self._face_ids = []
        for tri, face_id in zip(tris, ids):
            a, b, c = (int(x) for x in tri)
            if a == b or b == c or a == c:
                continue
            self._faces.append((a, b, c))
            self._face_ids.append(int(face_id))

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(vertices=self.vertices, faces=self.faces, process=False)

    # ─── Faces ───────────────────────────────────────────────────────────

    def face_names(self) -> List[str]:
        """Names of faces that currently own at least one triangle."""
        present = set(self._face_ids)
        return [self._id_to_name[i] for i in sorted(present)]

    def has_face(self, face_name: str) -> bool:
        face_id = self._name_to_id.get(face_name)
        return face_id is not None and face_id in set(self._face_ids)

    def face_triangle_indices(self, face_name: str) -> np.ndarray:
        face_id = self._name_to_id.get(face_name)
        if face_id is None:
            return np.zeros(0, dtype=np.int64)
        return np.flatnonzero(self.face_ids == face_id)

    def get_face(self, face_name: str) -> np.ndarray:
        """Triangles of ``face_name`` as an (n, 3, 3) array."""
        idx = self.face_triangle_indices(face_name)
        if len(idx) == 0:
            return np.zeros((0, 3, 3))
        return self.vertices[self.faces[idx]]

    def face(self, face_name: str) -> Face:
        return Face(face_name, self.get_face(face_name))

    def face_area(self, face_name: str) -> float:
        tris = self.get_face(face_name)
        return float(triangle_areas(tris).sum()) if len(tris) else 0.0

    def average_face_normal(self, face_name: str) -> Optional[np.ndarray]:
        return self.face(face_name).average_normal()

    def local_face_normal(self, face_name: str, point: np.ndarray) -> Optional[np.ndarray]:
        handle = self.face(face_name)
        return handle.local_normal(point) if not handle.is_empty else None

    def set_face_metadata(self, face_name: str, data: Dict[str, Any]) -> None:
        merged = dict(self._face_metadata.get(face_name, {}))
        merged.update(data)
        self._face_metadata[face_name] = merged

    def get_face_metadata(self, face_name: str) -> Dict[str, Any]:
        return dict(self._face_metadata.get(face_name, {}))

    def merge_face_into(self, source: str, target: str) -> bool:
        """Relabel every triangle of ``source`` as ``target``."""
        source_id = self._name_to_id.get(source)
        if source_id is None or source == target:
            return False
        target_id = self._name_to_id.get(target)
        if target_id is None:
            del self._name_to_id[source]
            self._id_to_name[source_id] = target
            self._name_to_id[target] = source_id
            if source in self._face_metadata and target not in self._face_metadata:
                self._face_metadata[target] = self._face_metadata[source]
            self._face_metadata.pop(source, None)
            return True
        replaced = 0
        for i, face_id in enumerate(self._face_ids):
            if face_id == source_id:
                self._face_ids[i] = target_id
                replaced += 1
        del self._name_to_id[source]
        del self._id_to_name[source_id]
        if source in self._face_metadata and target not in self._face_metadata:
            self._face_metadata[target] = self._face_metadata[source]
        self._face_metadata.pop(source, None)
        return replaced > 0

    def push_face(self, face_name: str, distance: float = 0.001) -> "Solid":
        """Move every vertex of a face outward by ``distance``.

        Planar faces move rigidly along the summed triangle normal; curved
        faces move each vertex along its accumulated incident normal.
        Windings must already be coherent.
        """
        dist = float(distance)
        if not np.isfinite(dist) or dist == 0.0:
            return self
        idx = self.face_triangle_indices(face_name)
        if len(idx) == 0:
            logger.warning("push_face: face %s not found on %s", face_name, self.name)
            return self

        verts = self.vertices
        faces = self.faces[idx]
        crosses = triangle_cross(verts[faces])
        lengths = np.linalg.norm(crosses, axis=1)
        total = crosses.sum(axis=0)
        total_len = float(np.linalg.norm(total))
        area_sum = float(lengths.sum())
        affected = np.unique(faces.reshape(-1))

        if total_len > 0 and area_sum > 0 and total_len / area_sum > 0.98:
            verts[affected] += total * (dist / total_len)
        else:
            vert_normals = np.zeros_like(verts)
            for corner in range(3):
                np.add.at(vert_normals, faces[:, corner], crosses)
            norms = np.linalg.norm(vert_normals[affected], axis=1)
            movable = norms > 0
            if not np.any(movable):
                logger.warning("push_face: invalid normal for face %s", face_name)
                return self
            moving = affected[movable]
            verts[moving] += vert_normals[moving] * (dist / norms[movable])[:, None]

        self._vertices = [_key(v) for v in verts]
        self._vertex_index = {}
        for i, v in enumerate(self._vertices):
            self._vertex_index.setdefault(v, i)
        return self

    # ─── Cleanup ─────────────────────────────────────────────────────────

    def quantize_vertices(self, quantum: float = 1e-6) -> int:
        """Snap vertices to a grid of size ``quantum`` and weld duplicates."""
        if quantum <= 0 or self.is_empty:
            return 0
        before = len(self._vertices)
        snapped = np.round(self.vertices / quantum) * quantum
        self._set_arrays(snapped, self.faces, self._face_ids)
        return before - len(self._vertices)

    def remove_degenerate_triangles(self, area_eps: float = 1e-12) -> int:
        if self.is_empty:
            return 0
        areas = triangle_areas(self.triangles())
        keep = areas > area_eps
        removed = int((~keep).sum())
        if removed:
            faces = self.faces[keep]
            ids = self.face_ids[keep]
            self._set_arrays(self.vertices, faces, ids)
        return removed

    def set_epsilon(self, epsilon: float) -> "Solid":
        """Weld vertices within ``epsilon`` and drop collapsed triangles."""
        self.epsilon = float(epsilon)
        if self.epsilon > 0:
            merged = self.quantize_vertices(self.epsilon)
            removed = self.remove_degenerate_triangles(self.epsilon * self.epsilon * 1e-3)
            logger.debug("set_epsilon(%g) on %s: welded %d vertices, removed %d triangles",
                         self.epsilon, self.name, merged, removed)
        return self

    def fix_triangle_windings_by_adjacency(self) -> "Solid":
        """Make windings agree across shared edges, then orient outward."""
        if self.is_empty:
            return self
        mesh = self.to_trimesh()
        trimesh.repair.fix_winding(mesh)
        faces = np.asarray(mesh.faces, dtype=np.int64)
        if mesh.is_watertight and mesh.volume < 0:
            faces = faces[:, ::-1]
        self._faces = [tuple(int(x) for x in tri) for tri in faces]
        return self

    # ─── Measures ────────────────────────────────────────────────────────

    @property
    def bounds(self) -> np.ndarray:
        verts = self.vertices
        if len(verts) == 0:
            return np.zeros((2, 3))
        return np.vstack([verts.min(axis=0), verts.max(axis=0)])

    def bounding_diagonal(self) -> float:
        lo, hi = self.bounds
        return float(np.linalg.norm(hi - lo))

    @property
    def volume(self) -> float:
        if self.is_empty:
            return 0.0
        return float(self.to_trimesh().volume)

    @property
    def is_watertight(self) -> bool:
        return (not self.is_empty) and bool(self.to_trimesh().is_watertight)

    # ─── Edges ───────────────────────────────────────────────────────────

    def boundary_edges(self) -> List[Edge]:
        """Chain the edges shared by two different face labels into polylines."""
        if self.is_empty:
            return []
        faces = self.faces
        ids = self.face_ids
        edges = np.sort(faces[:, [0, 1, 1, 2, 2, 0]].reshape(-1, 2), axis=1)
        owners = np.repeat(np.arange(len(faces)), 3)
        unique, inverse, counts = np.unique(edges, axis=0, return_inverse=True, return_counts=True)
        inverse = np.asarray(inverse).reshape(-1)

        by_edge: Dict[int, List[int]] = defaultdict(list)
        for edge_idx, owner in zip(inverse, owners):
            if counts[edge_idx] == 2:
                by_edge[int(edge_idx)].append(int(owner))

        segments: Dict[Tuple[int, int], List[Tuple[int, int]]] = defaultdict(list)
        for edge_idx, (t0, t1) in by_edge.items():
            a, b = int(ids[t0]), int(ids[t1])
            if a == b:
                continue
            pair = (min(a, b), max(a, b))
            segments[pair].append((int(unique[edge_idx][0]), int(unique[edge_idx][1])))

        verts = self.vertices
        result: List[Edge] = []
        for (id_a, id_b), segs in sorted(segments.items()):
            name_a, name_b = self._id_to_name[id_a], self._id_to_name[id_b]
            for k, (chain, closed) in enumerate(_chain_segments(segs)):
                label = f"{name_a}|{name_b}" if k == 0 else f"{name_a}|{name_b}#{k}"
                result.append(Edge(points=verts[chain], closed=closed, face_a=name_a,
                                   face_b=name_b, name=label, solid=self))
        return result

    def get_edge(self, name: str) -> Edge:
        for edge in self.boundary_edges():
            if edge.name == name:
                return edge
        raise KeyError(f"No edge named {name!r} on {self.name}")

    def edges_between(self, face_a: str, face_b: str) -> List[Edge]:
        wanted = {face_a, face_b}
        return [e for e in self.boundary_edges() if {e.face_a, e.face_b} == wanted]

    def resolve_edges(self, edges: Optional[Sequence[Edge]] = None,
                      edge_names: Optional[Sequence[str]] = None) -> List[Edge]:
        """Edge objects plus named boundary edges, deduplicated by name.

        Unknown names are logged and skipped.
        """
        resolved: List[Edge] = []
        seen = set()
        for edge in edges or []:
            if edge.solid is None:
                edge.solid = self
            key = edge.name or id(edge)
            if key not in seen:
                seen.add(key)
                resolved.append(edge)
        if edge_names:
            by_name = {e.name: e for e in self.boundary_edges()}
            for name in edge_names:
                edge = by_name.get(name)
                if edge is None:
                    logger.warning("resolve_edges: no edge named %s on %s", name, self.name)
                    continue
                if name not in seen:
                    seen.add(name)
                    resolved.append(edge)
        return resolved

    # ─── Booleans ────────────────────────────────────────────────────────

    def boolean(self, other: "Solid", operation: str, config: Optional[BooleanConfig] = None) -> BooleanOutcome:
        from mesh_fillet.boolean_ops import combine

        return combine(self, other, operation, config=config)

    def union(self, other: "Solid", config: Optional[BooleanConfig] = None) -> "Solid":
        return self.boolean(other, "union", config).solid

    def subtract(self, other: "Solid", config: Optional[BooleanConfig] = None) -> "Solid":
        return self.boolean(other, "difference", config).solid

    def intersect(self, other: "Solid", config: Optional[BooleanConfig] = None) -> "Solid":
        return self.boolean(other, "intersection", config).solid

    # ─── Features ────────────────────────────────────────────────────────

    def fillet(self, radius: float, edges=None, edge_names=None, direction="INSET", config=None) -> "Solid":
        from mesh_fillet.fillet import apply_fillet

        return apply_fillet(self, radius, edges=edges, edge_names=edge_names,
                            direction=direction, config=config)

    def chamfer(self, distance: float, edges=None, edge_names=None, direction="INSET", config=None) -> "Solid":
        from mesh_fillet.chamfer import apply_chamfer

        return apply_chamfer(self, distance, edges=edges, edge_names=edge_names,
                             direction=direction, config=config)

    def __repr__(self) -> str:
        return f"Solid(name={self.name!r}, triangles={len(self._faces)}, faces={len(self.face_names())})"


def _chain_segments(segments: List[Tuple[int, int]]) -> List[Tuple[List[int], bool]]:
    """Walk vertex-pair segments into ordered chains; returns (indices, closed)."""
    adjacency: Dict[int, List[int]] = defaultdict(list)
    for a, b in segments:
        adjacency[a].append(b)
        adjacency[b].append(a)
    used = set()

    def seg_key(a: int, b: int) -> Tuple[int, int]:
        return (a, b) if a < b else (b, a)

    chains: List[Tuple[List[int], bool]] = []
    starts = [v for v, nbrs in adjacency.items() if len(nbrs) != 2]
    starts += [v for v, nbrs in adjacency.items() if len(nbrs) == 2]
    for start in starts:
        for nxt in adjacency[start]:
            if seg_key(start, nxt) in used:
                continue
            chain = [start]
            prev, cur = start, nxt
            used.add(seg_key(prev, cur))
            closed = False
            while True:
                if cur == start:
                    closed = True
                    break
                chain.append(cur)
                candidates = [n for n in adjacency[cur] if seg_key(cur, n) not in used]
                if len(adjacency[cur]) != 2 or not candidates:
                    break
                prev, cur = cur, candidates[0]
                used.add(seg_key(prev, cur))
            chains.append((chain, closed))
    return chains
