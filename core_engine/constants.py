"""Configuration dataclasses and YAML loader for SDF generation.

All tunable values (BVH build limits, intersection epsilon, grid
resolution, ray direction count, output naming) are read from a YAML
configuration file into frozen dataclasses. This module provides the
typed, validated interface to that configuration.

Defaults
--------
The built-in defaults mirror the reference behaviour of the generator:
a maximum hierarchy depth of 32, five candidate split planes per axis,
a ray/triangle determinant cutoff of 1e-8, ten sampling directions and
four fractional digits in the persisted grid.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

# Hard limit on hierarchy depth; the traversal stack is sized from it.
MAX_SUPPORTED_DEPTH: int = 60

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BVHConfig:
    """BVH construction settings.

    Attributes
    ----------
    max_depth : int
        Recursion depth at which a node is forced to become a leaf.
    num_split_tests : int
        Evenly spaced candidate split positions evaluated per axis.
    """

    max_depth: int = 32
    num_split_tests: int = 5


@dataclass(frozen=True)
class RaytracerConfig:
    """Ray intersection settings.

    Attributes
    ----------
    determinant_epsilon : float
        Rays whose ray/triangle determinant magnitude falls below this
        value are treated as parallel to the triangle plane.
    """

    determinant_epsilon: float = 1e-8


@dataclass(frozen=True)
class SDFConfig:
    """Signed distance field sampling settings.

    Attributes
    ----------
    resolution : int
        Samples per axis; the grid holds ``resolution**3`` values.
    bounds_size : float
        Edge length of the cube (centred at the origin) being sampled.
    direction_count : int
        Number of Fibonacci-sphere ray directions cast per sample.
    decimals : int
        Maximum fractional digits written to the text grid.
    """

    resolution: int = 32
    bounds_size: float = 3.0
    direction_count: int = 10
    decimals: int = 4


@dataclass(frozen=True)
class SyntheticMeshConfig:
    """Configuration for procedurally generated input meshes.

    Attributes
    ----------
    mesh_type : str
        One of 'icosphere', 'uv_sphere', 'box', 'torus'.
    radius : float
        Sphere radius, or torus major radius.
    subdivisions : int
        Icosphere subdivision level.
    segments : int
        Longitudinal segments (UV sphere, torus).
    rings : int
        Latitudinal rings (UV sphere) or tube segments (torus).
    minor_radius : float
        Torus tube radius.
    size : float
        Box edge length.
    """

    mesh_type: str = "icosphere"
    radius: float = 1.0
    subdivisions: int = 3
    segments: int = 32
    rings: int = 16
    minor_radius: float = 0.25
    size: float = 1.0


@dataclass(frozen=True)
class OutputConfig:
    """Output location settings.

    Attributes
    ----------
    directory : str
        Directory receiving the text grid and binary results.
    save_file_name : str
        Base name of the text grid (``<name>.txt``).
    """

    directory: str = "output"
    save_file_name: str = "sdf"


@dataclass(frozen=True)
class GeneratorConfig:
    """Top-level configuration loaded from YAML."""

    bvh: BVHConfig
    raytracer: RaytracerConfig
    sdf: SDFConfig
    synthetic_mesh: SyntheticMeshConfig
    output: OutputConfig


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def default_config() -> GeneratorConfig:
    """Return the built-in default configuration."""
    return GeneratorConfig(
        bvh=BVHConfig(),
        raytracer=RaytracerConfig(),
        sdf=SDFConfig(),
        synthetic_mesh=SyntheticMeshConfig(),
        output=OutputConfig(),
    )


def load_config(config_path: str | Path) -> GeneratorConfig:
    """Load and validate a generator configuration from a YAML file.

    Sections missing from the file fall back to the built-in defaults;
    keys present in a section must hold values of the right kind.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    GeneratorConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If values cannot be converted or are out of range.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    logger.info("Loading configuration from: %s", config_path)

    defaults = default_config()

    try:
        b = raw.get("bvh", {}) or {}
        bvh = BVHConfig(
            max_depth=int(b.get("max_depth", defaults.bvh.max_depth)),
            num_split_tests=int(b.get("num_split_tests", defaults.bvh.num_split_tests)),
        )

        rt = raw.get("raytracer", {}) or {}
        raytracer = RaytracerConfig(
            determinant_epsilon=float(
                rt.get("determinant_epsilon", defaults.raytracer.determinant_epsilon)
            ),
        )

        s = raw.get("sdf", {}) or {}
        sdf = SDFConfig(
            resolution=int(s.get("resolution", defaults.sdf.resolution)),
            bounds_size=float(s.get("bounds_size", defaults.sdf.bounds_size)),
            direction_count=int(s.get("direction_count", defaults.sdf.direction_count)),
            decimals=int(s.get("decimals", defaults.sdf.decimals)),
        )

        m = raw.get("synthetic_mesh", {}) or {}
        dm = defaults.synthetic_mesh
        synthetic_mesh = SyntheticMeshConfig(
            mesh_type=str(m.get("type", dm.mesh_type)),
            radius=float(m.get("radius", dm.radius)),
            subdivisions=int(m.get("subdivisions", dm.subdivisions)),
            segments=int(m.get("segments", dm.segments)),
            rings=int(m.get("rings", dm.rings)),
            minor_radius=float(m.get("minor_radius", dm.minor_radius)),
            size=float(m.get("size", dm.size)),
        )

        o = raw.get("output", {}) or {}
        output = OutputConfig(
            directory=str(o.get("directory", defaults.output.directory)),
            save_file_name=str(o.get("save_file_name", defaults.output.save_file_name)),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid configuration value in {config_path}: {e}") from e

    config = GeneratorConfig(
        bvh=bvh,
        raytracer=raytracer,
        sdf=sdf,
        synthetic_mesh=synthetic_mesh,
        output=output,
    )

    validate_config(config)
    logger.info("Configuration loaded successfully.")

    return config


def validate_config(config: GeneratorConfig) -> None:
    """Validate ranges of configuration values.

    Parameters
    ----------
    config : GeneratorConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is out of range.
    """
    if not (0 <= config.bvh.max_depth <= MAX_SUPPORTED_DEPTH):
        raise ValueError(
            f"BVH max_depth must be in [0, {MAX_SUPPORTED_DEPTH}], "
            f"got {config.bvh.max_depth}"
        )
    if config.bvh.num_split_tests < 1:
        raise ValueError("BVH num_split_tests must be at least 1.")
    if config.raytracer.determinant_epsilon <= 0:
        raise ValueError("Raytracer determinant_epsilon must be positive.")
    if config.sdf.resolution < 1:
        raise ValueError(f"SDF resolution must be >= 1, got {config.sdf.resolution}")
    if config.sdf.bounds_size <= 0:
        raise ValueError(f"SDF bounds_size must be positive, got {config.sdf.bounds_size}")
    if config.sdf.direction_count < 1:
        raise ValueError(
            f"SDF direction_count must be >= 1, got {config.sdf.direction_count}"
        )
    if not (0 <= config.sdf.decimals <= 9):
        raise ValueError(f"SDF decimals must be in [0, 9], got {config.sdf.decimals}")
    if not config.output.save_file_name:
        raise ValueError("Output save_file_name must not be empty.")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s (threads=%d)", numba.__version__, numba.get_num_threads())
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of a NumPy array for reproducibility verification.

    Parameters
    ----------
    arr : np.ndarray
        Array to hash.

    Returns
    -------
    str
        Hex digest of the SHA-256 hash.
    """
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
