"""Pytest configuration and shared fixtures for meshsdf tests."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def unit_quad():
    """Two triangles covering [0, 1]² at z=0, wound towards +z."""
    from core_engine.mesh import make_mesh

    vertices = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]],
        dtype=np.float64,
    )
    indices = np.array([0, 1, 2, 0, 2, 3], dtype=np.int64)
    return make_mesh(vertices, indices)


@pytest.fixture(scope="session")
def unit_icosphere():
    """Outward-wound unit sphere, 320 triangles."""
    from data_ingestion.synthetic_mesh import icosphere

    return icosphere(radius=1.0, subdivisions=2)
