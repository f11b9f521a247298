"""Labeled primitive solids built on trimesh.creation."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import trimesh

from mesh_fillet.solid import Solid

_AXIS_SUFFIX = ("X", "Y", "Z")


def make_box(
    extents: Sequence[float] = (10.0, 10.0, 10.0),
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    name: str = "Box",
) -> Solid:
    """Axis-aligned box with its minimum corner at ``origin``.

    Faces are named by outward direction: ``{name}_PX``, ``{name}_NX`` and so
    on for the three axes.
    """
    ext = np.asarray(extents, dtype=float)
    if ext.shape != (3,) or np.any(ext <= 0):
        raise ValueError(f"Box extents must be three positive values, got {extents!r}")
    mesh = trimesh.creation.box(extents=ext)
    mesh.apply_translation(np.asarray(origin, dtype=float) + ext / 2.0)

    labels = []
    for normal in mesh.face_normals:
        axis = int(np.argmax(np.abs(normal)))
        prefix = "P" if normal[axis] > 0 else "N"
        labels.append(f"{name}_{prefix}{_AXIS_SUFFIX[axis]}")
    solid = Solid.from_arrays(mesh.vertices, mesh.faces, labels, name=name)
    return solid.fix_triangle_windings_by_adjacency()


def make_cylinder(
    radius: float = 5.0,
    height: float = 10.0,
    sections: int = 64,
    center: Optional[Sequence[float]] = None,
    name: str = "Cylinder",
) -> Solid:
    """Z-aligned cylinder with ``{name}_TOP``, ``{name}_BOTTOM`` and ``{name}_SIDE`` faces.

    The base sits on z=0 unless ``center`` is given.
    """
    if radius <= 0 or height <= 0:
        raise ValueError("Cylinder radius and height must be positive")
    mesh = trimesh.creation.cylinder(radius=float(radius), height=float(height), sections=int(sections))
    if center is None:
        mesh.apply_translation([0.0, 0.0, height / 2.0])
    else:
        mesh.apply_translation(np.asarray(center, dtype=float))

    labels = []
    for normal in mesh.face_normals:
        if normal[2] > 0.99:
            labels.append(f"{name}_TOP")
        elif normal[2] < -0.99:
            labels.append(f"{name}_BOTTOM")
        else:
            labels.append(f"{name}_SIDE")
    solid = Solid.from_arrays(mesh.vertices, mesh.faces, labels, name=name)
    return solid.fix_triangle_windings_by_adjacency()
