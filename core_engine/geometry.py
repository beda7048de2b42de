"""Geometric primitives and the BVH node arena.

Notes
-----
Hierarchy nodes are stored in a single growable arena (``NodeList``) as
parallel NumPy arrays and are referenced by integer index only. A node is
either

- an *interior* node: ``triangle_count <= 0`` and ``start_index`` is the
  arena index of its first child (the second child is ``start_index + 1``);
- a *leaf*: ``triangle_count > 0`` and ``start_index`` is the offset of
  its first triangle in the reordered triangle array.

Every node carries its own axis-aligned bounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np


class BoundingBox:
    """Axis-aligned min/max accumulator.

    Starts empty. The first ``grow_to_include`` call sets the bounds and
    later calls take the component-wise union. An empty box reports a
    zero size (and so a zero surface area).
    """

    __slots__ = ("min", "max", "has_point")

    def __init__(self) -> None:
        self.min = np.zeros(3, dtype=np.float64)
        self.max = np.zeros(3, dtype=np.float64)
        self.has_point = False

    def grow_to_include(self, bmin: np.ndarray, bmax: np.ndarray) -> None:
        """Grow to include one box ``(3,)`` or a stack of boxes ``(n, 3)``."""
        bmin = np.asarray(bmin, dtype=np.float64)
        bmax = np.asarray(bmax, dtype=np.float64)
        if bmin.ndim == 2:
            if bmin.shape[0] == 0:
                return
            bmin = bmin.min(axis=0)
            bmax = bmax.max(axis=0)

        if self.has_point:
            self.min = np.minimum(self.min, bmin)
            self.max = np.maximum(self.max, bmax)
        else:
            self.has_point = True
            self.min = bmin.copy()
            self.max = bmax.copy()

    @property
    def size(self) -> np.ndarray:
        return self.max - self.min

    @property
    def centre(self) -> np.ndarray:
        return (self.min + self.max) / 2.0

    @property
    def surface_area(self) -> float:
        return surface_area(self.size)

    def __repr__(self) -> str:
        if not self.has_point:
            return "BoundingBox(empty)"
        return f"BoundingBox(min={self.min.tolist()}, max={self.max.tolist()})"


def surface_area(size: np.ndarray) -> float:
    """Surface area of a box with edge lengths ``size``."""
    return float(2.0 * (size[0] * size[1] + size[0] * size[2] + size[1] * size[2]))


@dataclass(frozen=True, eq=False)
class Triangle:
    """Three ordered vertex positions and their vertex normals."""

    a: np.ndarray
    b: np.ndarray
    c: np.ndarray
    normal_a: np.ndarray
    normal_b: np.ndarray
    normal_c: np.ndarray


@dataclass
class BVHTriangles:
    """Build-time triangle records, stored as parallel arrays.

    Row ``k`` describes one triangle: its centroid, bounds and the index of
    the triangle in the source mesh. Rows are swapped in place while the
    hierarchy is partitioned and discarded once the final triangle arrays
    are materialised.

    Attributes
    ----------
    centres : np.ndarray
        Triangle centroids. Shape: (N, 3).
    mins, maxs : np.ndarray
        Per-triangle AABB corners. Shape: (N, 3).
    indices : np.ndarray
        Source triangle index of each row. Shape: (N,), dtype: int64.
    """

    centres: np.ndarray
    mins: np.ndarray
    maxs: np.ndarray
    indices: np.ndarray

    @classmethod
    def from_positions(
        cls, a: np.ndarray, b: np.ndarray, c: np.ndarray
    ) -> "BVHTriangles":
        """Build records from the three corner arrays, each (N, 3)."""
        return cls(
            centres=(a + b + c) / 3.0,
            mins=np.minimum(np.minimum(a, b), c),
            maxs=np.maximum(np.maximum(a, b), c),
            indices=np.arange(a.shape[0], dtype=np.int64),
        )

    def __len__(self) -> int:
        return int(self.indices.shape[0])


@dataclass(frozen=True, eq=False)
class Node:
    """Read-only view of one hierarchy node."""

    bounds_min: np.ndarray
    bounds_max: np.ndarray
    start_index: int
    triangle_count: int

    @property
    def is_leaf(self) -> bool:
        return self.triangle_count > 0

    def calculate_bounds_size(self) -> np.ndarray:
        return self.bounds_max - self.bounds_min

    def calculate_bounds_centre(self) -> np.ndarray:
        return (self.bounds_min + self.bounds_max) / 2.0


class NodeArrays(NamedTuple):
    """Frozen node storage handed to the traversal kernels."""

    bounds_min: np.ndarray
    bounds_max: np.ndarray
    start_index: np.ndarray
    triangle_count: np.ndarray


class NodeList:
    """Growable arena of hierarchy nodes, addressed by index.

    Capacity doubles whenever it is exhausted. Nodes are only appended or
    updated in place during construction; ``freeze`` returns trimmed,
    read-only copies.
    """

    def __init__(self, capacity: int = 256) -> None:
        capacity = max(1, int(capacity))
        self._bounds_min = np.zeros((capacity, 3), dtype=np.float64)
        self._bounds_max = np.zeros((capacity, 3), dtype=np.float64)
        self._start_index = np.zeros(capacity, dtype=np.int64)
        self._triangle_count = np.zeros(capacity, dtype=np.int64)
        self._count = 0

    def add(
        self,
        bounds: BoundingBox,
        start_index: int = -1,
        triangle_count: int = -1,
    ) -> int:
        """Append a node and return its arena index."""
        if self._count >= self._start_index.shape[0]:
            self._grow()

        node_index = self._count
        self._bounds_min[node_index] = bounds.min
        self._bounds_max[node_index] = bounds.max
        self._start_index[node_index] = start_index
        self._triangle_count[node_index] = triangle_count
        self._count += 1
        return node_index

    def set_first_child(self, node_index: int, child_index: int) -> None:
        self._start_index[node_index] = child_index

    def set_leaf(self, node_index: int, start_index: int, triangle_count: int) -> None:
        self._start_index[node_index] = start_index
        self._triangle_count[node_index] = triangle_count

    def bounds_of(self, node_index: int) -> tuple[np.ndarray, np.ndarray]:
        return self._bounds_min[node_index], self._bounds_max[node_index]

    def get(self, node_index: int) -> Node:
        if not 0 <= node_index < self._count:
            raise IndexError(f"Node index {node_index} out of range [0, {self._count})")
        return Node(
            bounds_min=self._bounds_min[node_index].copy(),
            bounds_max=self._bounds_max[node_index].copy(),
            start_index=int(self._start_index[node_index]),
            triangle_count=int(self._triangle_count[node_index]),
        )

    @property
    def node_count(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    def freeze(self) -> NodeArrays:
        n = self._count
        arrays = NodeArrays(
            bounds_min=self._bounds_min[:n].copy(),
            bounds_max=self._bounds_max[:n].copy(),
            start_index=self._start_index[:n].copy(),
            triangle_count=self._triangle_count[:n].copy(),
        )
        for arr in arrays:
            arr.setflags(write=False)
        return arrays

    def _grow(self) -> None:
        new_capacity = self._start_index.shape[0] * 2
        self._bounds_min = _resized(self._bounds_min, new_capacity)
        self._bounds_max = _resized(self._bounds_max, new_capacity)
        self._start_index = _resized(self._start_index, new_capacity)
        self._triangle_count = _resized(self._triangle_count, new_capacity)


def _resized(arr: np.ndarray, capacity: int) -> np.ndarray:
    out = np.zeros((capacity,) + arr.shape[1:], dtype=arr.dtype)
    out[: arr.shape[0]] = arr
    return out
