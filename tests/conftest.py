"""
Shared test fixtures for the fillet/chamfer engine tests.
"""
import sys
import warnings
from pathlib import Path

# Suppress trimesh internal RuntimeWarning for degenerate triangles
# (divide-by-zero when normalizing zero-area cross products).
warnings.filterwarnings(
    "ignore",
    message="invalid value encountered in divide",
    category=RuntimeWarning,
    module=r"trimesh\.triangles",
)

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mesh_fillet.primitives import make_box, make_cylinder


@pytest.fixture
def box_solid():
    """A 20x20x20 box with its minimum corner at the origin."""
    return make_box(extents=(20.0, 20.0, 20.0), name="Box")


@pytest.fixture
def box_edge(box_solid):
    """The vertical edge at x=20, y=20 shared by the +X and +Y faces."""
    edges = box_solid.edges_between("Box_PX", "Box_PY")
    assert len(edges) == 1
    return edges[0]


@pytest.fixture
def cylinder_solid():
    """A radius-5, height-10 cylinder standing on z=0."""
    return make_cylinder(radius=5.0, height=10.0, sections=48, name="Cyl")


@pytest.fixture
def straight_path():
    return np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 5.0], [0.0, 0.0, 10.0]])
