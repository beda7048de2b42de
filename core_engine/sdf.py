"""Signed distance field generation by multi-directional ray casting.

Pipeline
--------
1. Place ``resolution³`` sample points at the cell centres of a cube of
   side ``bounds_size`` centred on the origin.
2. Generate ``direction_count`` Fibonacci-sphere directions.
3. For every sample point (Numba ``prange``, one independent unit of
   work per point) cast a ray along each direction through the BVH and
   keep the minimum hit distance plus backface/frontface hit counts.
4. The point is inside iff backface hits outnumber frontface hits; the
   signed distance is ``-min_distance`` inside and ``+min_distance``
   outside.

Notes
-----
Each point writes exactly one output cell and shares no mutable state
with any other point, so the result is bit-identical regardless of
thread scheduling. A point whose rays hit nothing keeps the sentinel
``FAR_DISTANCE`` (and is therefore classified outside). The majority
vote assumes a closed, consistently outward-wound mesh; near holes or
inconsistently wound regions the sign may be wrong and this is not
detected.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import numpy as np
from numba import njit, prange

from core_engine.bvh import BVH
from core_engine.raytracer import STACK_SIZE, _query_bvh
from core_engine.sphere_sampling import fibonacci_sphere_directions

logger = logging.getLogger(__name__)

# Distance left in cells whose rays hit nothing (largest float32).
FAR_DISTANCE: float = float(np.finfo(np.float32).max)


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class SDFGrid:
    """Dense grid of signed distances.

    Attributes
    ----------
    distances : np.ndarray
        Signed distances, row-major with x varying fastest, then y, then z.
        Shape: (nx * ny * nz,), dtype: float64.
    resolution : tuple[int, int, int]
        Samples per axis (nx, ny, nz).
    bounds_size : tuple[float, float, float]
        World-space edge lengths of the sampled box.
    metadata : dict
        Generation parameters and timings.
    """

    distances: np.ndarray
    resolution: tuple[int, int, int]
    bounds_size: tuple[float, float, float]
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.resolution = tuple(int(n) for n in self.resolution)
        self.bounds_size = tuple(float(b) for b in self.bounds_size)
        if len(self.resolution) != 3 or len(self.bounds_size) != 3:
            raise ValueError("resolution and bounds_size must have 3 components")
        if any(n < 1 for n in self.resolution):
            raise ValueError(f"resolution must be positive, got {self.resolution}")
        self.distances = np.asarray(self.distances, dtype=np.float64).ravel()
        expected = self.num_samples
        if self.distances.shape[0] != expected:
            raise ValueError(
                f"expected {expected} distances for resolution {self.resolution}, "
                f"got {self.distances.shape[0]}"
            )

    @property
    def num_samples(self) -> int:
        nx, ny, nz = self.resolution
        return nx * ny * nz

    @property
    def inside_fraction(self) -> float:
        return float(np.mean(self.distances < 0.0))

    def as_volume(self) -> np.ndarray:
        """Distances as a 3D array indexed ``[z, y, x]``."""
        nx, ny, nz = self.resolution
        return self.distances.reshape(nz, ny, nx)

    def sample_points(self) -> np.ndarray:
        """World-space position of every cell, same order as ``distances``."""
        return generate_sample_points(self.resolution, self.bounds_size)


# ---------------------------------------------------------------------------
# Sample points
# ---------------------------------------------------------------------------


def generate_sample_points(
    resolution: int | tuple[int, int, int],
    bounds_size: float | tuple[float, float, float],
) -> np.ndarray:
    """Cell-centre sample positions of a grid centred on the origin.

    Point ``(x, y, z)`` sits at ``((index + 1) / (n + 1) - 0.5) * bounds``
    per axis, so no sample lies on the faces of the bounding box.

    Parameters
    ----------
    resolution : int or tuple
        Samples per axis.
    bounds_size : float or tuple
        Edge length(s) of the box.

    Returns
    -------
    points : np.ndarray
        Shape: (nx * ny * nz, 3), x varying fastest.
    """
    res = np.broadcast_to(np.asarray(resolution, dtype=np.int64), (3,))
    size = np.broadcast_to(np.asarray(bounds_size, dtype=np.float64), (3,))

    axes = [
        ((np.arange(res[k], dtype=np.float64) + 1.0) / (res[k] + 1.0) - 0.5) * size[k]
        for k in range(3)
    ]
    zz, yy, xx = np.meshgrid(axes[2], axes[1], axes[0], indexing="ij")
    return np.column_stack([xx.ravel(), yy.ravel(), zz.ravel()])


# ---------------------------------------------------------------------------
# Parallel kernel
# ---------------------------------------------------------------------------


@njit(cache=True, parallel=True, fastmath=False)
def _compute_signed_distances(
    points: np.ndarray,
    directions: np.ndarray,
    bounds_min: np.ndarray,
    bounds_max: np.ndarray,
    start_index: np.ndarray,
    triangle_count: np.ndarray,
    tri_positions: np.ndarray,
    epsilon: float,
    far_distance: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Signed distance and hit count for every sample point.

    Returns
    -------
    signed : np.ndarray
        Signed distances. Shape: (num_points,).
    hit_counts : np.ndarray
        Directions that registered a hit per point. Shape: (num_points,).
    """
    num_points = points.shape[0]
    num_dirs = directions.shape[0]
    signed = np.empty(num_points, dtype=np.float64)
    hit_counts = np.zeros(num_points, dtype=np.int64)

    for i in prange(num_points):
        stack = np.empty(STACK_SIZE, dtype=np.int64)
        dst = far_distance
        num_backface = 0
        num_frontface = 0

        for d in range(num_dirs):
            tri, hit_dst, backface = _query_bvh(
                points[i], directions[d], bounds_min, bounds_max, start_index,
                triangle_count, tri_positions, epsilon, stack,
            )
            if tri >= 0:
                if backface:
                    num_backface += 1
                else:
                    num_frontface += 1
                if hit_dst < dst:
                    dst = hit_dst

        if num_backface > num_frontface:
            signed[i] = -dst
        else:
            signed[i] = dst
        hit_counts[i] = num_backface + num_frontface

    return signed, hit_counts


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def estimate_distance(
    bvh: BVH,
    point: np.ndarray,
    directions: np.ndarray,
) -> float:
    """Signed distance at a single point, using the grid sampler's rule.

    Parameters
    ----------
    bvh : BVH
        Hierarchy over a closed, outward-wound mesh.
    point : np.ndarray
        Query position. Shape: (3,).
    directions : np.ndarray
        Ray directions. Shape: (num_directions, 3).
    """
    points = np.ascontiguousarray(np.reshape(point, (1, 3)), dtype=np.float64)
    directions = np.ascontiguousarray(directions, dtype=np.float64)
    signed, _ = _compute_signed_distances(points, directions, *bvh.kernel_args(), FAR_DISTANCE)
    return float(signed[0])


def generate_field(
    bvh: BVH,
    resolution: int,
    bounds_size: float,
    direction_count: int,
) -> SDFGrid:
    """Sample a signed distance field over a cube centred on the origin.

    Parameters
    ----------
    bvh : BVH
        Hierarchy over a closed, outward-wound mesh.
    resolution : int
        Samples per axis.
    bounds_size : float
        Edge length of the sampled cube.
    direction_count : int
        Rays cast per sample.

    Returns
    -------
    SDFGrid
        ``resolution³`` signed distances with resolution and bounds metadata.

    Raises
    ------
    ValueError
        If any parameter is out of range.
    """
    if resolution < 1:
        raise ValueError(f"resolution must be ≥ 1, got {resolution}")
    if bounds_size <= 0.0:
        raise ValueError(f"bounds_size must be > 0, got {bounds_size}")
    if direction_count < 1:
        raise ValueError(f"direction_count must be ≥ 1, got {direction_count}")

    points = generate_sample_points(resolution, bounds_size)
    directions = fibonacci_sphere_directions(direction_count)

    logger.info(
        "Generating SDF: %d³ = %d samples, bounds=%.4g, %d directions "
        "(%d ray queries)...",
        resolution,
        points.shape[0],
        bounds_size,
        direction_count,
        points.shape[0] * direction_count,
    )

    t0 = time.perf_counter()
    signed, hit_counts = _compute_signed_distances(
        points, directions, *bvh.kernel_args(), FAR_DISTANCE
    )
    elapsed_ms = (time.perf_counter() - t0) * 1000.0

    no_hit = int(np.sum(hit_counts == 0))
    if no_hit > 0:
        logger.warning(
            "%d of %d sample points registered no hits (left at far distance)",
            no_hit,
            points.shape[0],
        )

    grid = SDFGrid(
        distances=signed,
        resolution=(resolution, resolution, resolution),
        bounds_size=(bounds_size, bounds_size, bounds_size),
        metadata={
            "direction_count": int(direction_count),
            "elapsed_ms": elapsed_ms,
            "no_hit_samples": no_hit,
        },
    )

    logger.info(
        "Completed SDF in %.0f ms: inside fraction=%.3f, range=[%.4g, %.4g]",
        elapsed_ms,
        grid.inside_fraction,
        float(signed.min()),
        float(signed.max()),
    )

    return grid


class SDFGenerator:
    """Orchestrates signed distance sampling against one BVH.

    Parameters
    ----------
    bvh : BVH
        Hierarchy over the input mesh.
    resolution : int
        Default samples per axis.
    bounds_size : float
        Default edge length of the sampled cube.
    direction_count : int
        Default number of rays per sample.
    """

    def __init__(
        self,
        bvh: BVH,
        resolution: int = 32,
        bounds_size: float = 3.0,
        direction_count: int = 10,
    ) -> None:
        self._bvh = bvh
        self._resolution = resolution
        self._bounds_size = bounds_size
        self._direction_count = direction_count
        self._directions = fibonacci_sphere_directions(direction_count)

        logger.info(
            "SDFGenerator initialized: %d triangles, resolution=%d, bounds=%.4g, "
            "directions=%d",
            bvh.num_triangles,
            resolution,
            bounds_size,
            direction_count,
        )

    @property
    def bvh(self) -> BVH:
        return self._bvh

    @property
    def directions(self) -> np.ndarray:
        return self._directions

    def generate(
        self,
        resolution: int | None = None,
        bounds_size: float | None = None,
        direction_count: int | None = None,
    ) -> SDFGrid:
        """Generate a field; arguments override the generator defaults."""
        return generate_field(
            self._bvh,
            self._resolution if resolution is None else resolution,
            self._bounds_size if bounds_size is None else bounds_size,
            self._direction_count if direction_count is None else direction_count,
        )

    def estimate(self, point: np.ndarray) -> float:
        """Signed distance at one point using the default directions."""
        return estimate_distance(self._bvh, point, self._directions)
