"""Procedural closed meshes for validation runs.

Generates closed, outward-wound triangle meshes (icosphere, UV sphere,
box, torus) centred on the origin. They exercise the BVH and SDF
pipeline without an external mesh file, and their exact distance fields
are known analytically:

    sphere:  d(p) = |p| − R
    box:     d(p) = |max(|p| − h, 0)| + min(max_k(|p_k| − h), 0)
    torus:   d(p) = |(√(p_x² + p_y²) − R, p_z)| − r

Winding: every generated triangle (A, B, C) satisfies
``dot((B−A) × (C−A), n) > 0`` for the outward surface normal ``n``.
"""

from __future__ import annotations

import logging

import numpy as np

from core_engine.constants import SyntheticMeshConfig
from core_engine.mesh import TriangleMesh, make_mesh

logger = logging.getLogger(__name__)

_T: float = (1.0 + np.sqrt(5.0)) / 2.0

_ICOSAHEDRON_VERTICES = np.array(
    [
        [-1.0, _T, 0.0], [1.0, _T, 0.0], [-1.0, -_T, 0.0], [1.0, -_T, 0.0],
        [0.0, -1.0, _T], [0.0, 1.0, _T], [0.0, -1.0, -_T], [0.0, 1.0, -_T],
        [_T, 0.0, -1.0], [_T, 0.0, 1.0], [-_T, 0.0, -1.0], [-_T, 0.0, 1.0],
    ],
    dtype=np.float64,
)

_ICOSAHEDRON_FACES = np.array(
    [
        [0, 11, 5], [0, 5, 1], [0, 1, 7], [0, 7, 10], [0, 10, 11],
        [1, 5, 9], [5, 11, 4], [11, 10, 2], [10, 7, 6], [7, 1, 8],
        [3, 9, 4], [3, 4, 2], [3, 2, 6], [3, 6, 8], [3, 8, 9],
        [4, 9, 5], [2, 4, 11], [6, 2, 10], [8, 6, 7], [9, 8, 1],
    ],
    dtype=np.int64,
)


def generate_synthetic_mesh(config: SyntheticMeshConfig) -> TriangleMesh:
    """Generate a synthetic mesh from configuration.

    Parameters
    ----------
    config : SyntheticMeshConfig
        Synthetic mesh configuration loaded from YAML.

    Returns
    -------
    TriangleMesh
        Closed, outward-wound mesh.

    Raises
    ------
    ValueError
        If ``config.mesh_type`` is not recognized.
    """
    logger.info("Generating synthetic mesh: type=%s", config.mesh_type)

    generators = {
        "icosphere": lambda: icosphere(config.radius, config.subdivisions),
        "uv_sphere": lambda: uv_sphere(config.radius, config.segments, config.rings),
        "box": lambda: box(config.size),
        "torus": lambda: torus(
            config.radius, config.minor_radius, config.segments, config.rings
        ),
    }

    if config.mesh_type not in generators:
        raise ValueError(
            f"Unknown mesh type '{config.mesh_type}'. "
            f"Valid options: {list(generators.keys())}"
        )

    mesh = generators[config.mesh_type]()
    logger.info(
        "Synthetic mesh created: %d vertices, %d triangles",
        mesh.num_vertices,
        mesh.num_triangles,
    )
    return mesh


def icosphere(radius: float = 1.0, subdivisions: int = 3) -> TriangleMesh:
    """Subdivided icosahedron projected onto a sphere.

    Parameters
    ----------
    radius : float
        Sphere radius.
    subdivisions : int
        Number of 1→4 subdivision passes. ``20 * 4**subdivisions`` triangles.
    """
    if radius <= 0.0:
        raise ValueError(f"radius must be > 0, got {radius}")
    if subdivisions < 0:
        raise ValueError(f"subdivisions must be ≥ 0, got {subdivisions}")

    vertices = _ICOSAHEDRON_VERTICES / np.linalg.norm(_ICOSAHEDRON_VERTICES, axis=1, keepdims=True)
    faces = _ICOSAHEDRON_FACES.copy()

    for _ in range(subdivisions):
        vertices, faces = _subdivide(vertices, faces)
        vertices /= np.linalg.norm(vertices, axis=1, keepdims=True)

    normals = vertices.copy()
    faces = _orient_to_normals(vertices, faces, normals)
    return make_mesh(
        vertices * radius,
        faces,
        normals,
        metadata={"type": "icosphere", "radius": radius, "subdivisions": subdivisions},
    )


def _subdivide(vertices: np.ndarray, faces: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Split every triangle into four, sharing edge midpoints."""
    num_faces = faces.shape[0]
    edges = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])
    unique_edges, inverse = np.unique(np.sort(edges, axis=1), axis=0, return_inverse=True)
    inverse = inverse.ravel()

    midpoints = (vertices[unique_edges[:, 0]] + vertices[unique_edges[:, 1]]) / 2.0
    mid_idx = inverse + vertices.shape[0]
    ab = mid_idx[:num_faces]
    bc = mid_idx[num_faces:2 * num_faces]
    ca = mid_idx[2 * num_faces:]
    a, b, c = faces[:, 0], faces[:, 1], faces[:, 2]

    new_faces = np.concatenate([
        np.column_stack([a, ab, ca]),
        np.column_stack([b, bc, ab]),
        np.column_stack([c, ca, bc]),
        np.column_stack([ab, bc, ca]),
    ])
    return np.vstack([vertices, midpoints]), new_faces


def uv_sphere(radius: float = 1.0, segments: int = 32, rings: int = 16) -> TriangleMesh:
    """Latitude/longitude sphere with single pole vertices."""
    if radius <= 0.0:
        raise ValueError(f"radius must be > 0, got {radius}")
    if segments < 3 or rings < 2:
        raise ValueError(f"need segments ≥ 3 and rings ≥ 2, got {segments}, {rings}")

    theta = np.pi * np.arange(1, rings) / rings  # interior latitudes
    phi = 2.0 * np.pi * np.arange(segments) / segments
    th, ph = np.meshgrid(theta, phi, indexing="ij")
    ring_verts = np.column_stack([
        (np.sin(th) * np.cos(ph)).ravel(),
        (np.sin(th) * np.sin(ph)).ravel(),
        np.cos(th).ravel(),
    ])
    north = 0
    south = 1
    unit = np.vstack([[0.0, 0.0, 1.0], [0.0, 0.0, -1.0], ring_verts])

    def idx(r: int, s: int) -> int:
        return 2 + r * segments + (s % segments)

    faces: list[list[int]] = []
    for s in range(segments):
        faces.append([north, idx(0, s), idx(0, s + 1)])
        faces.append([south, idx(rings - 2, s + 1), idx(rings - 2, s)])
    for r in range(rings - 2):
        for s in range(segments):
            a, b = idx(r, s), idx(r, s + 1)
            c, d = idx(r + 1, s + 1), idx(r + 1, s)
            faces.append([a, d, c])
            faces.append([a, c, b])

    faces_arr = _orient_to_normals(unit, np.asarray(faces, dtype=np.int64), unit)
    return make_mesh(
        unit * radius,
        faces_arr,
        unit,
        metadata={"type": "uv_sphere", "radius": radius, "segments": segments, "rings": rings},
    )


def box(size: float = 1.0) -> TriangleMesh:
    """Axis-aligned cube of edge ``size`` with flat per-face normals."""
    if size <= 0.0:
        raise ValueError(f"size must be > 0, got {size}")

    half = size / 2.0
    eye = np.eye(3)
    # (normal, u, v) with u × v = normal
    frames = [
        (eye[0], eye[1], eye[2]),
        (-eye[0], eye[2], eye[1]),
        (eye[1], eye[2], eye[0]),
        (-eye[1], eye[0], eye[2]),
        (eye[2], eye[0], eye[1]),
        (-eye[2], eye[1], eye[0]),
    ]

    vertices = []
    normals = []
    faces = []
    for n, u, v in frames:
        c = n * half
        base = len(vertices)
        for su, sv in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
            vertices.append(c + su * half * u + sv * half * v)
            normals.append(n)
        faces.append([base, base + 1, base + 2])
        faces.append([base, base + 2, base + 3])

    return make_mesh(
        np.array(vertices),
        np.array(faces, dtype=np.int64),
        np.array(normals),
        metadata={"type": "box", "size": size},
    )


def torus(
    major_radius: float = 1.0,
    minor_radius: float = 0.25,
    segments: int = 32,
    rings: int = 16,
) -> TriangleMesh:
    """Torus around the z axis."""
    if not 0.0 < minor_radius < major_radius:
        raise ValueError(
            f"need 0 < minor_radius < major_radius, got {minor_radius}, {major_radius}"
        )
    if segments < 3 or rings < 3:
        raise ValueError(f"need segments ≥ 3 and rings ≥ 3, got {segments}, {rings}")

    u = 2.0 * np.pi * np.arange(segments) / segments
    v = 2.0 * np.pi * np.arange(rings) / rings
    uu, vv = np.meshgrid(u, v, indexing="ij")
    uu = uu.ravel()
    vv = vv.ravel()

    normals = np.column_stack([np.cos(vv) * np.cos(uu), np.cos(vv) * np.sin(uu), np.sin(vv)])
    ring_radius = major_radius + minor_radius * np.cos(vv)
    vertices = np.column_stack([
        ring_radius * np.cos(uu),
        ring_radius * np.sin(uu),
        minor_radius * np.sin(vv),
    ])

    i, j = np.meshgrid(np.arange(segments), np.arange(rings), indexing="ij")
    i = i.ravel()
    j = j.ravel()
    a = i * rings + j
    b = ((i + 1) % segments) * rings + j
    c = ((i + 1) % segments) * rings + (j + 1) % rings
    d = i * rings + (j + 1) % rings
    faces = np.concatenate([np.column_stack([a, b, c]), np.column_stack([a, c, d])])

    faces = _orient_to_normals(vertices, faces, normals)
    return make_mesh(
        vertices,
        faces,
        normals,
        metadata={
            "type": "torus",
            "major_radius": major_radius,
            "minor_radius": minor_radius,
            "segments": segments,
            "rings": rings,
        },
    )


def _orient_to_normals(
    vertices: np.ndarray, faces: np.ndarray, normals: np.ndarray
) -> np.ndarray:
    """Flip faces whose winding normal disagrees with their vertex normals."""
    v0 = vertices[faces[:, 0]]
    cross = np.cross(vertices[faces[:, 1]] - v0, vertices[faces[:, 2]] - v0)
    mean_normal = normals[faces].sum(axis=1)
    flip = np.einsum("ij,ij->i", cross, mean_normal) < 0.0
    if np.any(flip):
        faces = faces.copy()
        faces[flip] = faces[flip][:, [0, 2, 1]]
        logger.debug("  Flipped %d faces to outward winding", int(flip.sum()))
    return faces
