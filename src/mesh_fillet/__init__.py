"""Mesh-based fillet and chamfer engine for labeled triangle solids."""

from mesh_fillet.boolean_ops import combine
from mesh_fillet.chamfer import apply_chamfer, build_chamfer_prism, build_chamfer_solid
from mesh_fillet.chamfer_rails import build_chamfer_rails
from mesh_fillet.contracts import (
    BlendedFacePair,
    BooleanConfig,
    BooleanError,
    BooleanOutcome,
    CenterlineResult,
    ChamferConfig,
    ChamferResult,
    Edge,
    ErrorKind,
    FacePair,
    FilletConfig,
    FilletResult,
    RadiusClamp,
    SideMode,
    TubeResult,
)
from mesh_fillet.fillet import apply_fillet, fillet_solid
from mesh_fillet.fillet_solver import attach_fillet_centerline_aux_edge, compute_fillet_centerline
from mesh_fillet.orientation import fix_polyline_winding
from mesh_fillet.primitives import make_box, make_cylinder
from mesh_fillet.sampler import sample_edge
from mesh_fillet.self_intersection import resolve_self_intersections
from mesh_fillet.solid import Solid
from mesh_fillet.tube import build_tube
from mesh_fillet.wedge import build_fillet_wedge

__all__ = [
    "BlendedFacePair",
    "BooleanConfig",
    "BooleanError",
    "BooleanOutcome",
    "CenterlineResult",
    "ChamferConfig",
    "ChamferResult",
    "Edge",
    "ErrorKind",
    "FacePair",
    "FilletConfig",
    "FilletResult",
    "RadiusClamp",
    "SideMode",
    "Solid",
    "TubeResult",
    "apply_chamfer",
    "apply_fillet",
    "attach_fillet_centerline_aux_edge",
    "build_chamfer_prism",
    "build_chamfer_rails",
    "build_chamfer_solid",
    "build_fillet_wedge",
    "build_tube",
    "combine",
    "compute_fillet_centerline",
    "fillet_solid",
    "fix_polyline_winding",
    "make_box",
    "make_cylinder",
    "resolve_self_intersections",
    "sample_edge",
]
