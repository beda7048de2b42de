"""Nearest-hit BVH raytracer.

All inner-loop functions are compiled with Numba ``@njit(cache=True)``.
The hierarchy is read from the frozen node arrays produced by
:func:`core_engine.bvh.build_bvh`; nothing here mutates it, so any number
of threads may query the same hierarchy at once.

Design Notes
------------
- **Traversal**: explicit LIFO stack of node indices, no recursion. For an
  interior node both child boxes are intersected; the farther child is
  pushed first so the nearer one is popped first, and a child whose entry
  distance cannot beat the current best hit is never pushed. A child box
  containing the ray origin has entry distance 0, unlike the public
  ``ray_bounding_box`` which reports the exit in that case.
- **Ray/AABB**: slab method with a per-axis reciprocal direction. A zero
  direction component maps to a reciprocal of +inf.
- **Ray/triangle**: origin-centred double cross product form, equivalent
  to Möller-Trumbore. ``det = -dot(dir, (B-A) x (C-A))``. Hits with
  ``|det| < epsilon`` are rejected; ``det < 0`` flags a backface hit.
  Backfaces are reported, never culled.
- **Precision**: float64 throughout. ``fastmath=False`` keeps the
  comparison order exact so results are reproducible across runs.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
- Williams, A. et al. (2005). "An Efficient and Robust Ray-Box
  Intersection Algorithm." J. Graphics Tools, 10(1), 49-54.
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit, prange

logger = logging.getLogger(__name__)

_INF: float = np.inf
_DEFAULT_EPSILON: float = 1e-8

# Enough for any hierarchy up to core_engine.constants.MAX_SUPPORTED_DEPTH
STACK_SIZE: int = 64


# ===================================================================
# SCALAR HELPERS
# ===================================================================


@njit(cache=True, inline="always")
def _fmin(a: float, b: float) -> float:
    return a if a < b else b


@njit(cache=True, inline="always")
def _fmax(a: float, b: float) -> float:
    return a if a > b else b


@njit(cache=True, fastmath=False)
def _inverse_direction(ray_dir: np.ndarray) -> np.ndarray:
    inv_dir = np.empty(3, dtype=np.float64)
    for axis in range(3):
        if ray_dir[axis] == 0.0:
            inv_dir[axis] = _INF
        else:
            inv_dir[axis] = 1.0 / ray_dir[axis]
    return inv_dir


# ===================================================================
# RAY-TRIANGLE INTERSECTION
# ===================================================================


@njit(cache=True, fastmath=False)
def ray_triangle(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
    epsilon: float,
) -> tuple[bool, float, bool]:
    """Intersect a ray with triangle (a, b, c).

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction. Shape: (3,). Distances are in units of its length.
    a, b, c : np.ndarray
        Triangle vertices. Shape: (3,) each.
    epsilon : float
        Minimum ``|det|``; smaller values mean the ray is parallel to the
        triangle plane.

    Returns
    -------
    hit : bool
        True if the ray hits the triangle (edges inclusive) at ``dst >= 0``.
    dst : float
        Parametric distance to the triangle plane.
    backface : bool
        True if the ray approaches from the side opposite the winding
        normal ``(b - a) x (c - a)``.
    """
    ab_x = b[0] - a[0]
    ab_y = b[1] - a[1]
    ab_z = b[2] - a[2]

    ac_x = c[0] - a[0]
    ac_y = c[1] - a[1]
    ac_z = c[2] - a[2]

    ao_x = ray_origin[0] - a[0]
    ao_y = ray_origin[1] - a[1]
    ao_z = ray_origin[2] - a[2]

    # dao = ao x dir
    dao_x = ao_y * ray_dir[2] - ao_z * ray_dir[1]
    dao_y = ao_z * ray_dir[0] - ao_x * ray_dir[2]
    dao_z = ao_x * ray_dir[1] - ao_y * ray_dir[0]

    # n = ab x ac
    n_x = ab_y * ac_z - ab_z * ac_y
    n_y = ab_z * ac_x - ab_x * ac_z
    n_z = ab_x * ac_y - ab_y * ac_x

    determinant = -(ray_dir[0] * n_x + ray_dir[1] * n_y + ray_dir[2] * n_z)
    backface = determinant < 0.0

    if abs(determinant) < epsilon:
        return False, _INF, backface

    inv_det = 1.0 / determinant

    dst = (ao_x * n_x + ao_y * n_y + ao_z * n_z) * inv_det
    u = (ac_x * dao_x + ac_y * dao_y + ac_z * dao_z) * inv_det
    v = -(ab_x * dao_x + ab_y * dao_y + ab_z * dao_z) * inv_det
    w = 1.0 - u - v

    hit = dst >= 0.0 and u >= 0.0 and v >= 0.0 and w >= 0.0
    return hit, dst, backface


# ===================================================================
# RAY-AABB INTERSECTION (SLAB METHOD)
# ===================================================================


@njit(cache=True, fastmath=False)
def _slab_interval(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
) -> tuple[float, float]:
    tx1 = (box_min[0] - ray_origin[0]) * inv_dir[0]
    tx2 = (box_max[0] - ray_origin[0]) * inv_dir[0]
    t_min = _fmin(tx1, tx2)
    t_max = _fmax(tx1, tx2)

    ty1 = (box_min[1] - ray_origin[1]) * inv_dir[1]
    ty2 = (box_max[1] - ray_origin[1]) * inv_dir[1]
    t_min = _fmax(t_min, _fmin(ty1, ty2))
    t_max = _fmin(t_max, _fmax(ty1, ty2))

    tz1 = (box_min[2] - ray_origin[2]) * inv_dir[2]
    tz2 = (box_max[2] - ray_origin[2]) * inv_dir[2]
    t_min = _fmax(t_min, _fmin(tz1, tz2))
    t_max = _fmin(t_max, _fmax(tz1, tz2))
    return t_min, t_max


@njit(cache=True, fastmath=False)
def _ray_box(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
) -> tuple[bool, float]:
    t_min, t_max = _slab_interval(ray_origin, inv_dir, box_min, box_max)

    hit = t_max >= t_min and t_max > 0.0
    if not hit:
        return False, _INF

    # Origin inside the box: the entry is behind us, report the exit
    dst = t_min if t_min > 0.0 else t_max
    return True, dst


@njit(cache=True, fastmath=False)
def _ray_box_entry(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
) -> float:
    """Entry distance for traversal: 0 when the origin is inside the box."""
    t_min, t_max = _slab_interval(ray_origin, inv_dir, box_min, box_max)

    if t_max >= t_min and t_max > 0.0:
        return _fmax(t_min, 0.0)
    return _INF


@njit(cache=True, fastmath=False)
def ray_bounding_box(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
) -> tuple[bool, float]:
    """Intersect a ray with an axis-aligned box.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction. Shape: (3,).
    box_min, box_max : np.ndarray
        Box corners. Shape: (3,) each.

    Returns
    -------
    hit : bool
        True iff ``t_max >= t_min`` and ``t_max > 0``.
    dst : float
        Entry distance, or the exit distance when the origin is inside
        the box. ``inf`` on a miss.
    """
    return _ray_box(ray_origin, _inverse_direction(ray_dir), box_min, box_max)


# ===================================================================
# BVH TRAVERSAL (EXPLICIT STACK)
# ===================================================================


@njit(cache=True, fastmath=False)
def _query_bvh(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    bounds_min: np.ndarray,
    bounds_max: np.ndarray,
    start_index: np.ndarray,
    triangle_count: np.ndarray,
    tri_positions: np.ndarray,
    epsilon: float,
    stack: np.ndarray,
) -> tuple[int, float, bool]:
    """Find the nearest triangle hit along a ray.

    Returns
    -------
    tri_index : int
        Index into ``tri_positions`` of the nearest hit, -1 if none.
    min_dst : float
        Distance to the nearest hit, ``inf`` if none.
    backface : bool
        Backface flag of the nearest hit.
    """
    inv_dir = _inverse_direction(ray_dir)

    min_dst = _INF
    best_tri = -1
    best_backface = False

    stack_ptr = 0
    stack[stack_ptr] = 0  # Push root node index
    stack_ptr += 1

    while stack_ptr > 0:
        stack_ptr -= 1
        node_idx = stack[stack_ptr]
        count = triangle_count[node_idx]

        if count > 0:
            # LEAF NODE: test owned triangles, keep the strictly closer hit
            start = start_index[node_idx]
            for tri_idx in range(start, start + count):
                hit, dst, backface = ray_triangle(
                    ray_origin,
                    ray_dir,
                    tri_positions[tri_idx, 0],
                    tri_positions[tri_idx, 1],
                    tri_positions[tri_idx, 2],
                    epsilon,
                )
                if hit and dst < min_dst:
                    min_dst = dst
                    best_tri = tri_idx
                    best_backface = backface
        else:
            # INTERNAL NODE: nearer child must end up on top of the stack
            child_a = start_index[node_idx]
            child_b = child_a + 1

            dst_a = _ray_box_entry(ray_origin, inv_dir, bounds_min[child_a], bounds_max[child_a])
            dst_b = _ray_box_entry(ray_origin, inv_dir, bounds_min[child_b], bounds_max[child_b])

            if dst_a > dst_b:
                if dst_a < min_dst:
                    stack[stack_ptr] = child_a
                    stack_ptr += 1
                if dst_b < min_dst:
                    stack[stack_ptr] = child_b
                    stack_ptr += 1
            else:
                if dst_b < min_dst:
                    stack[stack_ptr] = child_b
                    stack_ptr += 1
                if dst_a < min_dst:
                    stack[stack_ptr] = child_a
                    stack_ptr += 1

    return best_tri, min_dst, best_backface


@njit(cache=True, fastmath=False)
def query_bvh(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    bounds_min: np.ndarray,
    bounds_max: np.ndarray,
    start_index: np.ndarray,
    triangle_count: np.ndarray,
    tri_positions: np.ndarray,
    epsilon: float,
) -> tuple[int, float, bool]:
    """Single nearest-hit query; see :func:`_query_bvh` for the return values."""
    stack = np.empty(STACK_SIZE, dtype=np.int64)
    return _query_bvh(
        ray_origin, ray_dir, bounds_min, bounds_max, start_index,
        triangle_count, tri_positions, epsilon, stack,
    )


@njit(cache=True, parallel=True, fastmath=False)
def query_bvh_batch(
    ray_origins: np.ndarray,
    ray_dirs: np.ndarray,
    bounds_min: np.ndarray,
    bounds_max: np.ndarray,
    start_index: np.ndarray,
    triangle_count: np.ndarray,
    tri_positions: np.ndarray,
    epsilon: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Nearest-hit queries for many rays in parallel.

    Parameters
    ----------
    ray_origins, ray_dirs : np.ndarray
        Ray origins and directions. Shape: (num_rays, 3) each.

    Returns
    -------
    tri_indices : np.ndarray
        Nearest triangle per ray, -1 on a miss. Shape: (num_rays,).
    distances : np.ndarray
        Hit distance per ray, ``inf`` on a miss. Shape: (num_rays,).
    backfaces : np.ndarray
        Backface flag per ray. Shape: (num_rays,).
    """
    num_rays = ray_origins.shape[0]
    tri_indices = np.full(num_rays, -1, dtype=np.int64)
    distances = np.full(num_rays, _INF, dtype=np.float64)
    backfaces = np.zeros(num_rays, dtype=np.bool_)

    for i in prange(num_rays):
        stack = np.empty(STACK_SIZE, dtype=np.int64)
        tri, dst, backface = _query_bvh(
            ray_origins[i], ray_dirs[i], bounds_min, bounds_max, start_index,
            triangle_count, tri_positions, epsilon, stack,
        )
        tri_indices[i] = tri
        distances[i] = dst
        backfaces[i] = backface

    return tri_indices, distances, backfaces


# ===================================================================
# BRUTE FORCE REFERENCE
# ===================================================================


@njit(cache=True, fastmath=False)
def linear_scan_query(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    tri_positions: np.ndarray,
    epsilon: float,
) -> tuple[int, float, bool]:
    """Nearest hit by testing every triangle, in array order.

    Same return values as :func:`query_bvh`. Used to verify the hierarchy.
    """
    min_dst = _INF
    best_tri = -1
    best_backface = False

    for tri_idx in range(tri_positions.shape[0]):
        hit, dst, backface = ray_triangle(
            ray_origin,
            ray_dir,
            tri_positions[tri_idx, 0],
            tri_positions[tri_idx, 1],
            tri_positions[tri_idx, 2],
            epsilon,
        )
        if hit and dst < min_dst:
            min_dst = dst
            best_tri = tri_idx
            best_backface = backface

    return best_tri, min_dst, best_backface
