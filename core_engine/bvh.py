"""Bounding volume hierarchy construction and the queryable BVH.

The build is a one-time, single-threaded Python cost (split evaluation is
vectorised with NumPy, the in-place partition is Numba-compiled). The
result is immutable: node arrays and triangle arrays are frozen, so
queries from any number of threads need no locking.

Split Heuristic
---------------
A simplified surface-area heuristic. The cost of a node is

    cost = surface_area(box) * triangle_count

For each axis, ``num_split_tests`` evenly spaced planes at
``t = i / (num_split_tests + 1)`` across the node box are scored by

    cost(left) + cost(right)

with triangles assigned by centroid (``centroid[axis] < plane`` goes
left). The best of the candidates is taken only if it is cheaper than
the unsplit node and the depth limit has not been reached; otherwise the
node becomes a leaf owning its whole triangle range. Ranges of zero or
one triangle are never split.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import NamedTuple

import numpy as np
from numba import njit

from core_engine.constants import MAX_SUPPORTED_DEPTH
from core_engine.geometry import (
    BoundingBox,
    BVHTriangles,
    Node,
    NodeArrays,
    NodeList,
    Triangle,
    surface_area,
)
from core_engine.mesh import TriangleMesh
from core_engine.raytracer import (
    _DEFAULT_EPSILON,
    linear_scan_query,
    query_bvh,
    query_bvh_batch,
)

logger = logging.getLogger(__name__)

_INT_MAX: int = 2**31 - 1
_FLOAT_MAX: float = float(np.finfo(np.float64).max)


# ---------------------------------------------------------------------------
# Build statistics
# ---------------------------------------------------------------------------


@dataclass
class BuildStats:
    """Diagnostic counters gathered while building a hierarchy.

    Attributes
    ----------
    time_ms : int
        Wall-clock build time [ms].
    triangle_count : int
        Triangles owned by leaves (equals the mesh triangle count).
    total_node_count : int
        Interior plus leaf nodes.
    leaf_node_count : int
        Number of leaves.
    leaf_depth_max, leaf_depth_min, leaf_depth_sum : int
        Leaf depth aggregates.
    leaf_max_tri_count, leaf_min_tri_count : int
        Extremes of triangles per leaf.
    """

    time_ms: int = 0
    triangle_count: int = 0
    total_node_count: int = 0
    leaf_node_count: int = 0
    leaf_depth_max: int = 0
    leaf_depth_min: int = _INT_MAX
    leaf_depth_sum: int = 0
    leaf_max_tri_count: int = 0
    leaf_min_tri_count: int = _INT_MAX

    def record_node(self, depth: int, is_leaf: bool, tri_count: int = 0) -> None:
        self.total_node_count += 1

        if is_leaf:
            self.leaf_node_count += 1
            self.leaf_depth_sum += depth
            self.leaf_depth_min = min(self.leaf_depth_min, depth)
            self.leaf_depth_max = max(self.leaf_depth_max, depth)
            self.triangle_count += tri_count

            self.leaf_max_tri_count = max(self.leaf_max_tri_count, tri_count)
            self.leaf_min_tri_count = min(self.leaf_min_tri_count, tri_count)

    @property
    def leaf_depth_mean(self) -> float:
        if self.leaf_node_count == 0:
            return 0.0
        return self.leaf_depth_sum / self.leaf_node_count

    @property
    def leaf_tri_mean(self) -> float:
        if self.leaf_node_count == 0:
            return 0.0
        return self.triangle_count / self.leaf_node_count

    def as_dict(self) -> dict:
        d = asdict(self)
        d["leaf_depth_mean"] = self.leaf_depth_mean
        d["leaf_tri_mean"] = self.leaf_tri_mean
        return d

    def summary(self) -> str:
        lines = [
            f"Time (BVH): {self.time_ms} ms",
            f"Triangles: {self.triangle_count}",
            f"Node Count: {self.total_node_count}",
            f"Leaf Count: {self.leaf_node_count}",
            "Leaf Depth:",
            f" - Min: {self.leaf_depth_min}",
            f" - Max: {self.leaf_depth_max}",
            f" - Mean: {_format_mean(self.leaf_depth_mean)}",
            "Leaf Tris:",
            f" - Min: {self.leaf_min_tri_count}",
            f" - Max: {self.leaf_max_tri_count}",
            f" - Mean: {_format_mean(self.leaf_tri_mean)}",
        ]
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()


def _format_mean(value: float) -> str:
    return f"{value:.4f}".rstrip("0").rstrip(".")


# ---------------------------------------------------------------------------
# Query result
# ---------------------------------------------------------------------------


class RayHit(NamedTuple):
    """Result of a nearest-hit query.

    ``distance`` is ``inf`` and ``triangle_index`` is -1 when nothing is hit.
    """

    hit: bool
    distance: float
    point: np.ndarray
    backface: bool
    triangle_index: int


class BatchHits(NamedTuple):
    hit: np.ndarray
    distance: np.ndarray
    point: np.ndarray
    backface: np.ndarray
    triangle_index: np.ndarray


# ---------------------------------------------------------------------------
# BVH
# ---------------------------------------------------------------------------


class BVH:
    """Immutable hierarchy over a reordered triangle array.

    Parameters
    ----------
    nodes : NodeArrays
        Frozen node arena; node 0 is the root.
    tri_positions : np.ndarray
        Triangle corners in leaf order. Shape: (N, 3, 3).
    tri_normals : np.ndarray
        Vertex normals matching ``tri_positions``. Shape: (N, 3, 3).
    source_indices : np.ndarray
        Source mesh triangle index of each reordered triangle. Shape: (N,).
    stats : BuildStats
        Build diagnostics.
    epsilon : float
        Ray/triangle determinant cutoff used by queries.
    """

    def __init__(
        self,
        nodes: NodeArrays,
        tri_positions: np.ndarray,
        tri_normals: np.ndarray,
        source_indices: np.ndarray,
        stats: BuildStats,
        epsilon: float = _DEFAULT_EPSILON,
    ) -> None:
        for arr in (tri_positions, tri_normals, source_indices):
            arr.setflags(write=False)
        self.nodes = nodes
        self.tri_positions = tri_positions
        self.tri_normals = tri_normals
        self.source_indices = source_indices
        self.stats = stats
        self.epsilon = float(epsilon)

    @property
    def num_nodes(self) -> int:
        return int(self.nodes.start_index.shape[0])

    @property
    def num_triangles(self) -> int:
        return int(self.tri_positions.shape[0])

    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        return self.nodes.bounds_min[0], self.nodes.bounds_max[0]

    def kernel_args(self) -> tuple:
        """Arguments shared by every traversal kernel call."""
        return (
            self.nodes.bounds_min,
            self.nodes.bounds_max,
            self.nodes.start_index,
            self.nodes.triangle_count,
            self.tri_positions,
            self.epsilon,
        )

    def query(self, origin: np.ndarray, direction: np.ndarray) -> RayHit:
        """Nearest triangle hit along ``origin + t * direction``, ``t >= 0``."""
        origin = np.ascontiguousarray(origin, dtype=np.float64)
        direction = np.ascontiguousarray(direction, dtype=np.float64)
        tri, dst, backface = query_bvh(origin, direction, *self.kernel_args())
        return _make_hit(origin, direction, tri, dst, backface)

    def query_brute_force(self, origin: np.ndarray, direction: np.ndarray) -> RayHit:
        """Same as :meth:`query` but scans every triangle."""
        origin = np.ascontiguousarray(origin, dtype=np.float64)
        direction = np.ascontiguousarray(direction, dtype=np.float64)
        tri, dst, backface = linear_scan_query(
            origin, direction, self.tri_positions, self.epsilon
        )
        return _make_hit(origin, direction, tri, dst, backface)

    def query_batch(self, origins: np.ndarray, directions: np.ndarray) -> BatchHits:
        """Parallel nearest-hit queries for rays given as (num_rays, 3) arrays.

        A single origin or direction of shape (3,) is broadcast.
        """
        origins = np.asarray(origins, dtype=np.float64)
        directions = np.asarray(directions, dtype=np.float64)
        origins, directions = np.broadcast_arrays(
            np.atleast_2d(origins), np.atleast_2d(directions)
        )
        origins = np.ascontiguousarray(origins)
        directions = np.ascontiguousarray(directions)

        tri, dst, backface = query_bvh_batch(origins, directions, *self.kernel_args())
        hit = tri >= 0
        point = origins + directions * np.where(hit, dst, 0.0)[:, None]
        point[~hit] = 0.0
        return BatchHits(
            hit=hit,
            distance=dst,
            point=point,
            backface=backface,
            triangle_index=tri,
        )

    def get_nodes(self) -> list[Node]:
        n = self.nodes
        return [
            Node(
                bounds_min=n.bounds_min[i].copy(),
                bounds_max=n.bounds_max[i].copy(),
                start_index=int(n.start_index[i]),
                triangle_count=int(n.triangle_count[i]),
            )
            for i in range(self.num_nodes)
        ]

    def get_triangle(self, index: int) -> Triangle:
        p = self.tri_positions[index]
        nrm = self.tri_normals[index]
        return Triangle(
            a=p[0].copy(), b=p[1].copy(), c=p[2].copy(),
            normal_a=nrm[0].copy(), normal_b=nrm[1].copy(), normal_c=nrm[2].copy(),
        )

    def get_triangles(self) -> list[Triangle]:
        return [self.get_triangle(i) for i in range(self.num_triangles)]


def _make_hit(
    origin: np.ndarray, direction: np.ndarray, tri: int, dst: float, backface: bool
) -> RayHit:
    if tri < 0:
        return RayHit(False, float(np.inf), np.zeros(3), False, -1)
    return RayHit(True, float(dst), origin + direction * dst, bool(backface), int(tri))


# ---------------------------------------------------------------------------
# BVH construction
# ---------------------------------------------------------------------------


def build_bvh(
    mesh: TriangleMesh,
    max_depth: int = 32,
    num_split_tests: int = 5,
    epsilon: float = _DEFAULT_EPSILON,
) -> BVH:
    """Build a hierarchy over a triangle mesh.

    Parameters
    ----------
    mesh : TriangleMesh
        Input mesh. Its arrays are only read; the hierarchy owns copies.
    max_depth : int
        Nodes at this depth become leaves. Default: 32.
    num_split_tests : int
        Candidate split planes per axis. Default: 5.
    epsilon : float
        Ray/triangle determinant cutoff stored on the result.

    Returns
    -------
    BVH
        Frozen hierarchy with triangles in leaf order and build stats.

    Raises
    ------
    ValueError
        If the mesh is empty or the build parameters are out of range.
    IndexError
        If a triangle index is outside the vertex or normal arrays.
    """
    if not 0 <= max_depth <= MAX_SUPPORTED_DEPTH:
        raise ValueError(
            f"max_depth must be in [0, {MAX_SUPPORTED_DEPTH}], got {max_depth}"
        )
    if num_split_tests < 1:
        raise ValueError(f"num_split_tests must be >= 1, got {num_split_tests}")

    indices = np.asarray(mesh.indices, dtype=np.int64).ravel()
    num_vertices = mesh.vertices.shape[0]
    if indices.shape[0] % 3 != 0:
        raise ValueError(f"index count must be a multiple of 3, got {indices.shape[0]}")
    if indices.shape[0] == 0:
        raise ValueError("cannot build a BVH over a mesh with no triangles")
    if indices.min() < 0 or indices.max() >= min(num_vertices, mesh.normals.shape[0]):
        raise IndexError(
            f"triangle index out of range (indices span [{indices.min()}, "
            f"{indices.max()}], {num_vertices} vertices, "
            f"{mesh.normals.shape[0]} normals)"
        )

    start_time = time.perf_counter()
    stats = BuildStats()

    tri = indices.reshape(-1, 3)
    num_triangles = tri.shape[0]
    logger.info(
        "Building BVH for %d triangles (max_depth=%d, split_tests=%d)...",
        num_triangles,
        max_depth,
        num_split_tests,
    )

    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    records = BVHTriangles.from_positions(
        vertices[tri[:, 0]], vertices[tri[:, 1]], vertices[tri[:, 2]]
    )

    bounds = BoundingBox()
    bounds.grow_to_include(records.mins, records.maxs)

    nodes = NodeList()
    nodes.add(bounds)

    def _split(parent_index: int, tri_start: int, tri_count: int, depth: int) -> None:
        parent_min, parent_max = nodes.bounds_of(parent_index)
        parent_cost = _node_cost(parent_max - parent_min, tri_count)

        split_axis, split_pos, cost = _choose_split(
            records, parent_min, parent_max, tri_start, tri_count, num_split_tests
        )

        if cost < parent_cost and depth < max_depth:
            num_left = _partition_in_place(
                records.centres, records.mins, records.maxs, records.indices,
                tri_start, tri_count, split_axis, split_pos,
            )
            left = slice(tri_start, tri_start + num_left)
            right = slice(tri_start + num_left, tri_start + tri_count)

            bounds_left = BoundingBox()
            bounds_left.grow_to_include(records.mins[left], records.maxs[left])
            bounds_right = BoundingBox()
            bounds_right.grow_to_include(records.mins[right], records.maxs[right])

            child_left = nodes.add(bounds_left, tri_start, 0)
            child_right = nodes.add(bounds_right, tri_start + num_left, 0)

            nodes.set_first_child(parent_index, child_left)
            stats.record_node(depth, False)

            _split(child_left, tri_start, num_left, depth + 1)
            _split(child_right, tri_start + num_left, tri_count - num_left, depth + 1)
        else:
            nodes.set_leaf(parent_index, tri_start, tri_count)
            stats.record_node(depth, True, tri_count)

    _split(0, 0, num_triangles, 0)

    # Materialise triangles in the order settled by partitioning
    order = tri[records.indices]
    normals = np.asarray(mesh.normals, dtype=np.float64)
    tri_positions = np.ascontiguousarray(np.stack([vertices[order[:, k]] for k in range(3)], axis=1))
    tri_normals = np.ascontiguousarray(np.stack([normals[order[:, k]] for k in range(3)], axis=1))

    stats.time_ms = int((time.perf_counter() - start_time) * 1000.0)

    bvh = BVH(
        nodes=nodes.freeze(),
        tri_positions=tri_positions,
        tri_normals=tri_normals,
        source_indices=records.indices.copy(),
        stats=stats,
        epsilon=epsilon,
    )

    logger.info(
        "BVH built: %d nodes (%d leaves), leaf depth %d-%d, %.1f MB node memory, %d ms",
        stats.total_node_count,
        stats.leaf_node_count,
        stats.leaf_depth_min,
        stats.leaf_depth_max,
        sum(a.nbytes for a in bvh.nodes) / 1e6,
        stats.time_ms,
    )
    logger.debug("BVH stats:\n%s", stats.summary())

    return bvh


def _node_cost(size: np.ndarray, num_triangles: int) -> float:
    return surface_area(size) * num_triangles


def _choose_split(
    records: BVHTriangles,
    node_min: np.ndarray,
    node_max: np.ndarray,
    start: int,
    count: int,
    num_split_tests: int,
) -> tuple[int, float, float]:
    """Pick the cheapest of the evenly spaced candidate planes.

    Returns
    -------
    axis : int
        Best split axis.
    pos : float
        Best split position.
    cost : float
        Its cost; ``inf`` for ranges of fewer than two triangles.
    """
    if count <= 1:
        return 0, 0.0, float("inf")

    rows = slice(start, start + count)
    centres = records.centres[rows]
    mins = records.mins[rows]
    maxs = records.maxs[rows]

    best_axis = 0
    best_pos = 0.0
    best_cost = _FLOAT_MAX

    for axis in range(3):
        for i in range(num_split_tests):
            split_t = (i + 1) / (num_split_tests + 1.0)
            split_pos = node_min[axis] + (node_max[axis] - node_min[axis]) * split_t
            cost = _evaluate_split(centres[:, axis] < split_pos, mins, maxs)
            if cost < best_cost:
                best_cost = cost
                best_pos = float(split_pos)
                best_axis = axis

    return best_axis, best_pos, best_cost


def _evaluate_split(on_left: np.ndarray, mins: np.ndarray, maxs: np.ndarray) -> float:
    num_left = int(np.count_nonzero(on_left))
    num_right = on_left.shape[0] - num_left

    cost = 0.0
    if num_left > 0:
        size = maxs[on_left].max(axis=0) - mins[on_left].min(axis=0)
        cost += _node_cost(size, num_left)
    if num_right > 0:
        on_right = ~on_left
        size = maxs[on_right].max(axis=0) - mins[on_right].min(axis=0)
        cost += _node_cost(size, num_right)
    return cost


@njit(cache=True)
def _partition_in_place(
    centres: np.ndarray,
    mins: np.ndarray,
    maxs: np.ndarray,
    indices: np.ndarray,
    start: int,
    count: int,
    axis: int,
    split_pos: float,
) -> int:
    """Swap records left of the plane to the front of the range.

    Single pass, not stable. Returns the number of records on the left.
    """
    num_left = 0
    for i in range(start, start + count):
        if centres[i, axis] < split_pos:
            j = start + num_left
            for d in range(3):
                centres[i, d], centres[j, d] = centres[j, d], centres[i, d]
                mins[i, d], mins[j, d] = mins[j, d], mins[i, d]
                maxs[i, d], maxs[j, d] = maxs[j, d], maxs[i, d]
            indices[i], indices[j] = indices[j], indices[i]
            num_left += 1
    return num_left
