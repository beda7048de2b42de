"""Quasi-uniform ray directions on the unit sphere.

Places N directions on a golden-ratio (Fibonacci) spiral. Unlike a
latitude/longitude lattice this does not cluster points at the poles,
and unlike random sampling it is fully deterministic for a given N.

References
----------
- González, Á. (2010). "Measurement of areas on a sphere using
  Fibonacci and latitude–longitude lattices." Math. Geosci., 42, 49–64.

Algorithm
---------
    φ = (1 + √5) / 2

    For i ∈ [0, N−1]:
        t_i           = i / N
        inclination_i = arccos(1 − 2 t_i)
        azimuth_i     = 2π φ · i
        d_i = (sin inc cos az,  sin inc sin az,  cos inc)
"""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)

GOLDEN_RATIO: float = (1.0 + np.sqrt(5.0)) / 2.0


def fibonacci_sphere_directions(num_directions: int, radius: float = 1.0) -> np.ndarray:
    """Generate ``num_directions`` points on a sphere of the given radius.

    Parameters
    ----------
    num_directions : int
        Number of directions. Must be ≥ 1.
    radius : float
        Sphere radius; 1.0 yields unit direction vectors.

    Returns
    -------
    directions : np.ndarray
        Shape: (num_directions, 3), dtype: float64.

    Raises
    ------
    ValueError
        If num_directions < 1.
    """
    if num_directions < 1:
        raise ValueError(f"num_directions must be ≥ 1, got {num_directions}")

    i = np.arange(num_directions, dtype=np.float64)
    t = i / num_directions
    inclination = np.arccos(1.0 - 2.0 * t)
    azimuth = 2.0 * np.pi * GOLDEN_RATIO * i

    sin_inc = np.sin(inclination)
    directions = np.empty((num_directions, 3), dtype=np.float64)
    directions[:, 0] = sin_inc * np.cos(azimuth)
    directions[:, 1] = sin_inc * np.sin(azimuth)
    directions[:, 2] = np.cos(inclination)
    directions *= radius

    logger.debug("Generated %d Fibonacci sphere directions", num_directions)

    return directions
