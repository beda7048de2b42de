"""Mesh file loader: Wavefront OBJ and STL (binary or ASCII).

Both readers produce an indexed ``TriangleMesh`` with per-vertex normals,
ready for the BVH builder.

- OBJ: ``v`` / ``vn`` / ``f`` records. Polygons are fan-triangulated,
  negative (relative) indices are resolved, and each distinct
  (position, normal) pair becomes one output vertex. Files without
  normals get area-weighted normals computed from the geometry.
- STL: triangle soup. Coincident corners are welded into shared
  vertices so vertex normals are smooth across faces; the per-facet
  normals stored in the file are ignored.

Winding is preserved as read. The sign of the distance field relies on
the file being consistently outward-wound.
"""

from __future__ import annotations

import logging
import struct
from pathlib import Path

import numpy as np

from core_engine.mesh import TriangleMesh, make_mesh

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: tuple[str, ...] = (".obj", ".stl")


def load_mesh(file_path: str | Path) -> TriangleMesh:
    """Load a triangle mesh, dispatching on the file extension.

    Parameters
    ----------
    file_path : str or Path
        Path to a ``.obj`` or ``.stl`` file.

    Returns
    -------
    TriangleMesh

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the extension is unsupported or the file is malformed.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Mesh file not found: {path}")

    suffix = path.suffix.lower()
    logger.info("Loading mesh: %s", path)

    if suffix == ".obj":
        mesh = load_obj(path)
    elif suffix == ".stl":
        mesh = load_stl(path)
    else:
        raise ValueError(
            f"Unsupported mesh format '{suffix}'. "
            f"Valid options: {list(SUPPORTED_EXTENSIONS)}"
        )

    logger.info(
        "Loaded mesh: %d vertices, %d triangles",
        mesh.num_vertices,
        mesh.num_triangles,
    )
    return mesh


# ---------------------------------------------------------------------------
# OBJ
# ---------------------------------------------------------------------------


def load_obj(file_path: str | Path) -> TriangleMesh:
    """Read a Wavefront OBJ file."""
    path = Path(file_path)
    positions: list[list[float]] = []
    normals: list[list[float]] = []
    faces: list[list[tuple[int, int]]] = []

    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line_no, line in enumerate(f, start=1):
            parts = line.split()
            if not parts or parts[0].startswith("#"):
                continue
            tag = parts[0]
            try:
                if tag in ("v", "vn") and len(parts) < 4:
                    raise ValueError(f"'{tag}' needs 3 coordinates")
                if tag == "v":
                    positions.append([float(x) for x in parts[1:4]])
                elif tag == "vn":
                    normals.append([float(x) for x in parts[1:4]])
                elif tag == "f":
                    corners = [
                        _parse_obj_corner(tok, len(positions), len(normals))
                        for tok in parts[1:]
                    ]
                    if len(corners) < 3:
                        raise ValueError("face needs at least 3 corners")
                    faces.append(corners)
            except ValueError as e:
                raise ValueError(f"{path}:{line_no}: malformed OBJ record: {e}") from e

    if not faces:
        raise ValueError(f"{path}: no faces found")

    # Fan triangulation: (c0, ci, ci+1)
    triangles = [
        (face[0], face[i], face[i + 1])
        for face in faces
        for i in range(1, len(face) - 1)
    ]
    corners = np.array(triangles, dtype=np.int64).reshape(-1, 2)

    metadata = {"source": str(path), "format": "obj"}
    vertices = np.asarray(positions, dtype=np.float64).reshape(-1, 3)

    if normals and np.all(corners[:, 1] >= 0):
        # One output vertex per distinct (position, normal) pair
        keys, inverse = np.unique(corners, axis=0, return_inverse=True)
        normal_arr = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
        return make_mesh(
            vertices[keys[:, 0]],
            inverse.ravel(),
            normal_arr[keys[:, 1]],
            metadata=metadata,
        )

    if normals:
        logger.warning("%s: some faces lack normals, recomputing all normals", path)
    return make_mesh(vertices, corners[:, 0], metadata=metadata)


def _parse_obj_corner(token: str, num_positions: int, num_normals: int) -> tuple[int, int]:
    """Parse ``v``, ``v/vt``, ``v//vn`` or ``v/vt/vn`` into 0-based (v, vn).

    A missing normal is returned as -1.
    """
    fields = token.split("/")
    v = _resolve_obj_index(int(fields[0]), num_positions)
    vn = -1
    if len(fields) >= 3 and fields[2]:
        vn = _resolve_obj_index(int(fields[2]), num_normals)
    return v, vn


def _resolve_obj_index(index: int, count: int) -> int:
    if index > 0:
        return index - 1
    if index < 0:
        # Relative to the records read so far
        if count + index < 0:
            raise ValueError(f"relative index {index} with only {count} records defined")
        return count + index
    raise ValueError("OBJ indices are 1-based, got 0")


# ---------------------------------------------------------------------------
# STL
# ---------------------------------------------------------------------------


def load_stl(file_path: str | Path) -> TriangleMesh:
    """Read a binary or ASCII STL file and weld coincident corners."""
    path = Path(file_path)
    raw = path.read_bytes()

    # Binary size invariant: 84-byte header + 50 bytes per facet. Some
    # binary writers start the header with "solid" too.
    if len(raw) >= 84:
        count = struct.unpack_from("<I", raw, 80)[0]
        if len(raw) == 84 + 50 * count:
            triangles = _binary_stl_to_triangles(raw)
            fmt = "stl-binary"
        else:
            triangles = _ascii_stl_to_triangles(raw.decode("ascii", errors="replace"))
            fmt = "stl-ascii"
    else:
        triangles = _ascii_stl_to_triangles(raw.decode("ascii", errors="replace"))
        fmt = "stl-ascii"

    if triangles.shape[0] == 0:
        raise ValueError(f"{path}: no facets found")

    corners = triangles.reshape(-1, 3)
    vertices, inverse = np.unique(corners, axis=0, return_inverse=True)
    logger.debug(
        "  Welded %d STL corners into %d vertices", corners.shape[0], vertices.shape[0]
    )
    return make_mesh(
        vertices,
        inverse.ravel(),
        metadata={"source": str(path), "format": fmt},
    )


def _binary_stl_to_triangles(raw: bytes) -> np.ndarray:
    count = struct.unpack_from("<I", raw, 80)[0]
    dtype = np.dtype([
        ("normal", "<f4", (3,)),
        ("vertices", "<f4", (3, 3)),
        ("attr", "<u2"),
    ])
    records = np.frombuffer(raw, dtype=dtype, count=count, offset=84)
    return records["vertices"].astype(np.float64)  # (F, 3, 3)


def _ascii_stl_to_triangles(text: str) -> np.ndarray:
    verts: list[list[float]] = []
    for line in text.splitlines():
        parts = line.split()
        if parts and parts[0] == "vertex":
            try:
                verts.append([float(parts[1]), float(parts[2]), float(parts[3])])
            except (IndexError, ValueError) as e:
                raise ValueError(f"malformed STL vertex line: {line.strip()!r}") from e
    if len(verts) % 3 != 0:
        raise ValueError(f"STL vertex count {len(verts)} is not a multiple of 3")
    return np.array(verts, dtype=np.float64).reshape(-1, 3, 3)
