"""Triangle mesh container supplied to the BVH builder.

A mesh is the triple the external mesh collaborator hands over:
vertex positions, a flat array of triangle indices (one triple per
triangle, consistent winding) and one normal per vertex.

Notes
-----
Winding convention: for a triangle (A, B, C) the geometric normal is
``(B - A) x (C - A)``. A closed mesh is *outward-wound* when this normal
points away from the enclosed volume, which is what the inside/outside
vote of the SDF sampler assumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class TriangleMesh:
    """Indexed triangle mesh.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions. Shape: (num_vertices, 3), dtype: float64.
    indices : np.ndarray
        Flat triangle vertex indices, length a multiple of 3.
        Shape: (3 * num_triangles,), dtype: int64.
    normals : np.ndarray
        Per-vertex normals. Shape: (num_vertices, 3), dtype: float64.
    metadata : dict
        Provenance information (source file, generator parameters...).
    """

    vertices: np.ndarray
    indices: np.ndarray
    normals: np.ndarray
    metadata: dict = field(default_factory=dict)

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def num_triangles(self) -> int:
        return int(self.indices.shape[0] // 3)

    @property
    def triangle_indices(self) -> np.ndarray:
        """Indices reshaped to one row per triangle, shape (num_triangles, 3)."""
        return self.indices.reshape(-1, 3)

    def triangle_corners(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return the (A, B, C) corner positions, each (num_triangles, 3)."""
        tri = self.triangle_indices
        return (
            self.vertices[tri[:, 0]],
            self.vertices[tri[:, 1]],
            self.vertices[tri[:, 2]],
        )


def make_mesh(
    vertices: np.ndarray,
    indices: np.ndarray,
    normals: np.ndarray | None = None,
    metadata: dict | None = None,
) -> TriangleMesh:
    """Build a validated working copy of caller-supplied mesh arrays.

    Parameters
    ----------
    vertices : array_like
        Vertex positions, shape (V, 3).
    indices : array_like
        Triangle indices, flat (3T,) or (T, 3).
    normals : array_like, optional
        Vertex normals, shape (V, 3). Computed from the geometry
        (area-weighted face normals) if omitted.
    metadata : dict, optional
        Provenance information stored on the mesh.

    Returns
    -------
    TriangleMesh
        Mesh owning its own copies of the arrays.

    Raises
    ------
    ValueError
        If arrays have the wrong shape or the mesh has no triangles.
    IndexError
        If an index is out of range or normals do not match the vertices.
    """
    vertices = np.array(vertices, dtype=np.float64, copy=True)
    indices = np.array(indices, dtype=np.int64, copy=True).ravel()

    if vertices.ndim != 2 or vertices.shape[1] != 3:
        raise ValueError(f"vertices must have shape (V, 3), got {vertices.shape}")

    if normals is None:
        _validate_indices(indices, vertices.shape[0])
        normals = compute_vertex_normals(vertices, indices)
    else:
        normals = np.array(normals, dtype=np.float64, copy=True)
        if normals.ndim != 2 or normals.shape[1] != 3:
            raise ValueError(f"normals must have shape (V, 3), got {normals.shape}")

    mesh = TriangleMesh(
        vertices=vertices,
        indices=indices,
        normals=normals,
        metadata=dict(metadata or {}),
    )
    validate_mesh(mesh)
    return mesh


def validate_mesh(mesh: TriangleMesh) -> None:
    """Fail fast on malformed mesh input.

    Raises
    ------
    ValueError
        If the index count is not a multiple of 3 or there are no triangles.
    IndexError
        If any index is outside the vertex or normal arrays.
    """
    if mesh.normals.shape[0] != mesh.vertices.shape[0]:
        raise IndexError(
            f"normals/vertices length mismatch: {mesh.normals.shape[0]} normals "
            f"for {mesh.vertices.shape[0]} vertices"
        )
    _validate_indices(mesh.indices, mesh.vertices.shape[0])


def _validate_indices(indices: np.ndarray, num_vertices: int) -> None:
    if indices.shape[0] % 3 != 0:
        raise ValueError(
            f"index count must be a multiple of 3, got {indices.shape[0]}"
        )
    if indices.shape[0] == 0:
        raise ValueError("mesh has no triangles")

    lo = int(indices.min())
    hi = int(indices.max())
    if lo < 0 or hi >= num_vertices:
        bad = lo if lo < 0 else hi
        raise IndexError(
            f"triangle index {bad} out of range for {num_vertices} vertices"
        )


def compute_face_properties(
    vertices: np.ndarray,
    indices: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute unit face normals and face areas.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions, shape (V, 3).
    indices : np.ndarray
        Flat triangle indices, shape (3T,).

    Returns
    -------
    normals : np.ndarray
        Unit winding normals ``(B-A) x (C-A)``, shape (T, 3). Degenerate
        triangles get a zero normal.
    areas : np.ndarray
        Triangle areas, shape (T,).
    """
    tri = indices.reshape(-1, 3)
    v0 = vertices[tri[:, 0]]
    v1 = vertices[tri[:, 1]]
    v2 = vertices[tri[:, 2]]

    cross = np.cross(v1 - v0, v2 - v0)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)

    # Avoid division by zero for degenerate triangles
    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = np.where(norms > 1e-30, cross / safe_norms, 0.0)

    return normals, 0.5 * norms.ravel()


def compute_vertex_normals(vertices: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Area-weighted vertex normals, shape (V, 3).

    Vertices not referenced by any non-degenerate triangle get ``(0, 0, 1)``.
    """
    tri = indices.reshape(-1, 3)
    v0 = vertices[tri[:, 0]]
    v1 = vertices[tri[:, 1]]
    v2 = vertices[tri[:, 2]]

    # |cross| = 2 * area, so summing raw cross products weights by area
    cross = np.cross(v1 - v0, v2 - v0)

    accum = np.zeros_like(vertices, dtype=np.float64)
    for k in range(3):
        np.add.at(accum, tri[:, k], cross)

    norms = np.linalg.norm(accum, axis=1, keepdims=True)
    normals = np.empty_like(accum)
    valid = norms.ravel() > 1e-30
    normals[valid] = accum[valid] / norms[valid]
    normals[~valid] = np.array([0.0, 0.0, 1.0])
    return normals


def describe_mesh(mesh: TriangleMesh) -> dict:
    """Summary statistics for logging and result metadata."""
    _, areas = compute_face_properties(mesh.vertices, mesh.indices)
    degenerate_count = int(np.sum(areas < 1e-20))
    if degenerate_count > 0:
        logger.warning(
            "  %d degenerate triangles detected (area < 1e-20)", degenerate_count
        )

    return {
        "num_vertices": mesh.num_vertices,
        "num_triangles": mesh.num_triangles,
        "degenerate_triangles": degenerate_count,
        "surface_area": float(areas.sum()),
        "bounds_min": mesh.vertices.min(axis=0).tolist(),
        "bounds_max": mesh.vertices.max(axis=0).tolist(),
    }
