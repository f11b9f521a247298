"""Contracts for the fillet/chamfer engine: configs, edges and stage results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

import numpy as np

if TYPE_CHECKING:
    from mesh_fillet.face import Face
    from mesh_fillet.solid import Solid

Vec3 = Tuple[float, float, float]


class SideMode(Enum):
    """Which side of the edge the tool removes or adds material on."""

    INSET = "INSET"    # subtract material (round/bevel a convex edge)
    OUTSET = "OUTSET"  # add material (fill a concave edge)

    @classmethod
    def parse(cls, value: Union["SideMode", str, None]) -> "SideMode":
        if isinstance(value, SideMode):
            return value
        key = str(value or "INSET").strip().upper()
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown side mode: {value!r}") from None


class ErrorKind(Enum):
    """Degradation kinds reported on stage results."""

    DEGENERATE_CENTERLINE = "DegenerateCenterline"
    INSUFFICIENT_SAMPLES = "InsufficientSamples"
    ANGLE_UNSOLVABLE = "AngleUnsolvable"
    TUBE_GENERATION_FAILURE = "TubeGenerationFailure"
    WEDGE_TRIANGULATION_FAILURE = "WedgeTriangulationFailure"
    BOOLEAN_COMBINATION_FAILURE = "BooleanCombinationFailure"
    RADIUS_EXCEEDS_FACE_EXTENT = "RadiusExceedsFaceExtent"


class BooleanError(RuntimeError):
    """Raised by a single boolean attempt; consumed by the combiner."""


# ─── Configuration ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FilletConfig:
    """Configuration for fillet tool construction and application."""

    inflate: float = 0.1            # tangency/edge oversize of the wedge
    resolution: int = 32            # tube segments around the circumference
    tube_strategy: str = "auto"     # "auto" | "fast" | "slow"
    tube_end_extension: float = 0.1
    push_epsilon: float = 1e-4      # pushFace distance for faces on the model
    end_cap_area_ratio: float = 0.05
    inset_cap_merge_dot: float = 0.999
    combine_edges: bool = False     # OUTSET only: corner hulls between edges
    show_tangent_overlays: bool = False
    debug: bool = False             # keep tube/wedge solids on the result
    feature_id: str = "FILLET"


@dataclass(frozen=True)
class ChamferConfig:
    """Configuration for chamfer prism construction and application."""

    inflate: float = 0.1
    sample_count: int = 50
    snap_seam_to_edge: bool = True
    flip_side: bool = False
    push_epsilon: float = 1e-4
    debug: bool = False
    feature_id: str = "CHAMFER"


@dataclass(frozen=True)
class BooleanConfig:
    """Retry ladder settings for the boolean combiner."""

    engine: str = "manifold"
    weld_scales: Tuple[float, ...] = (1.0, 4.0, 16.0)
    min_weld: float = 1e-5
    allow_mesh_merge: bool = True
    allow_pass_through: bool = True


# ─── Edges and faces ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FacePair:
    """Plain per-segment face pair of a composite edge."""

    face_a: str
    face_b: str


@dataclass(frozen=True)
class BlendedFacePair:
    """Segment whose B side blends between two side faces by parameter t."""

    base: str
    side_a: str
    side_b: str
    t: float = 0.5


SegmentPair = Union[FacePair, BlendedFacePair]


@dataclass
class Edge:
    """Polyline shared by two faces (or per-segment face pairs) of a solid."""

    points: np.ndarray
    closed: bool = False
    face_a: Optional[str] = None
    face_b: Optional[str] = None
    segment_pairs: List[SegmentPair] = field(default_factory=list)
    name: str = ""
    solid: Optional["Solid"] = None

    def __post_init__(self) -> None:
        self.points = np.asarray(self.points, dtype=float).reshape(-1, 3)

    @property
    def uses_segment_pairs(self) -> bool:
        return len(self.segment_pairs) > 0

    @property
    def faces(self) -> Tuple[Optional[str], Optional[str]]:
        return self.face_a, self.face_b


@dataclass
class AuxEdge:
    """Diagnostic polyline attached to a solid (centerlines, tangent paths)."""

    name: str
    points: np.ndarray
    closed_loop: bool = False
    material_key: str = "OVERLAY"


# ─── Stage results ───────────────────────────────────────────────────────────

@dataclass
class EdgeSample:
    """One cross-section of an edge with per-face projections and normals."""

    point: np.ndarray
    tangent: np.ndarray
    normal_a: np.ndarray
    normal_b: np.ndarray
    projected_a: np.ndarray
    projected_b: np.ndarray
    face_a: str
    face_b: str
    allow_refine: bool = True


@dataclass
class SamplingResult:
    samples: List[EdgeSample]
    closed: bool
    dropped: int = 0
    faces: Dict[str, "Face"] = field(default_factory=dict)  # handles built for this call

    def face(self, name: str) -> Optional["Face"]:
        return self.faces.get(name)


@dataclass(frozen=True)
class RadiusClamp:
    """Recommendation when the requested radius overruns a face."""

    requested: float
    max_allowed: float
    samples: int


@dataclass(frozen=True)
class WindingDecision:
    centerline_reversed: bool = False
    tangent_a_reversed: bool = False
    tangent_b_reversed: bool = False

    @property
    def any(self) -> bool:
        return self.centerline_reversed or self.tangent_a_reversed or self.tangent_b_reversed


@dataclass
class CenterlineResult:
    """Fillet centerline with tangency curves and the sampled edge, index-aligned."""

    points: np.ndarray
    tangent_a: np.ndarray
    tangent_b: np.ndarray
    edge: np.ndarray
    closed_loop: bool = False
    radius_clamp: Optional[RadiusClamp] = None
    dropped_samples: int = 0
    winding: WindingDecision = field(default_factory=WindingDecision)

    @classmethod
    def empty(cls, closed_loop: bool = False) -> "CenterlineResult":
        blank = np.zeros((0, 3))
        return cls(blank, blank.copy(), blank.copy(), blank.copy(), closed_loop=closed_loop)

    def __len__(self) -> int:
        return int(len(self.points))


@dataclass
class RailSet:
    """Chamfer rails: edge samples plus offset rails on each face."""

    rail_p: List[np.ndarray]
    rail_a: List[np.ndarray]
    rail_b: List[np.ndarray]
    normals_a: List[np.ndarray]
    normals_b: List[np.ndarray]
    tangents: List[np.ndarray]
    closed: bool = False
    sign_a: int = 1
    sign_b: int = 1
    max_distance: Optional[float] = None

    def __len__(self) -> int:
        return len(self.rail_p)


@dataclass
class WedgeBuild:
    solid: "Solid"
    valid_triangles: int
    skipped_triangles: int
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class TubeResult:
    solid: Optional["Solid"]
    strategy: str                   # "fast" | "slow" | "none"
    self_intersection_likely: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class BooleanOutcome:
    solid: "Solid"
    operation: str
    strategy: str                   # direct | repair | welded | mesh_merge | pass_through
    attempts: int
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.strategy != "pass_through"


@dataclass
class FilletResult:
    """Everything produced by one fillet tool build, even when it degrades."""

    tube: Optional["Solid"] = None
    wedge: Optional["Solid"] = None
    final_solid: Optional["Solid"] = None
    centerline: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    tangent_a: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    tangent_b: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    tangent_a_seam: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    tangent_b_seam: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    edge: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    closed_loop: bool = False
    radius_used: float = 0.0
    radius_clamp: Optional[RadiusClamp] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    stages: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChamferResult:
    prism: Optional["Solid"] = None
    rails: Optional[RailSet] = None
    base_name: str = ""
    distance_used: float = 0.0
    distance_clamp: Optional[RadiusClamp] = None
    intersections_collapsed: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
