"""Data I/O manager — persist signed distance grids.

Two layouts are supported.

Plain-text grid (consumed by volumetric-texture loaders)::

    <nx> <ny> <nz> <bx> <by> <bz> <d_0> <d_1> ... <d_(nx*ny*nz - 1)>

Space-separated, distances in row-major order with x varying fastest,
each value written with up to ``decimals`` fractional digits.

Binary results under output_dir/, for re-analysis without re-sampling:
    sdf_grid.npy        — Signed distances, shape (nx * ny * nz,)
    sample_points.npy   — Sample positions, shape (nx * ny * nz, 3)
    metadata.json       — Resolution, bounds, BVH stats, array hash
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np

from core_engine.bvh import BuildStats
from core_engine.constants import hash_array
from core_engine.sdf import SDFGrid

logger = logging.getLogger(__name__)

TEXT_SUFFIX = ".txt"


class SDFFormatError(ValueError):
    """A serialized grid could not be parsed."""


# ---------------------------------------------------------------------------
# Plain-text grid
# ---------------------------------------------------------------------------


def format_value(value: float, decimals: int = 4) -> str:
    """Format a number with up to ``decimals`` fractional digits.

    Trailing zeros and a dangling decimal point are dropped, and negative
    zero is written as ``0``.
    """
    text = f"{float(value):.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    return text


def format_sdf_grid(grid: SDFGrid, decimals: int = 4) -> str:
    """Serialize a grid to the plain-text layout."""
    header = [str(n) for n in grid.resolution]
    header += [format_value(b, decimals) for b in grid.bounds_size]
    body = [format_value(d, decimals) for d in grid.distances]
    return " ".join(header + body)


def parse_sdf_grid(text: str) -> SDFGrid:
    """Parse the plain-text layout back into a grid.

    Tokens are split on any whitespace, so leading and trailing
    whitespace and line breaks are tolerated.

    Raises
    ------
    SDFFormatError
        If the header is incomplete or non-numeric, a resolution is not a
        positive integer, a distance is non-numeric, or the number of
        distances differs from ``nx * ny * nz``.
    """
    tokens = text.split()
    if len(tokens) < 6:
        raise SDFFormatError(
            f"expected at least 6 header tokens, got {len(tokens)}"
        )

    try:
        resolution = tuple(int(tok) for tok in tokens[:3])
    except ValueError as e:
        raise SDFFormatError(f"resolution must be integers: {tokens[:3]}") from e
    if any(n < 1 for n in resolution):
        raise SDFFormatError(f"resolution must be positive, got {resolution}")

    try:
        bounds_size = tuple(float(tok) for tok in tokens[3:6])
    except ValueError as e:
        raise SDFFormatError(f"bounds must be numeric: {tokens[3:6]}") from e

    nx, ny, nz = resolution
    expected = nx * ny * nz
    values = tokens[6:]
    if len(values) != expected:
        raise SDFFormatError(
            f"expected {expected} distances for resolution {resolution}, "
            f"got {len(values)}"
        )

    try:
        distances = np.asarray(values, dtype=np.float64)
    except ValueError as e:
        raise SDFFormatError(f"non-numeric distance token: {e}") from e

    return SDFGrid(distances=distances, resolution=resolution, bounds_size=bounds_size)


def save_sdf_text(file_path: Path | str, grid: SDFGrid, decimals: int = 4) -> Path:
    """Write a grid in the plain-text layout, creating parent directories."""
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_sdf_grid(grid, decimals))
    logger.info(
        "Saved SDF text grid %s (%s, %d values)",
        path,
        "x".join(str(n) for n in grid.resolution),
        grid.num_samples,
    )
    return path


def load_sdf_text(file_path: Path | str) -> SDFGrid:
    """Read a grid written by :func:`save_sdf_text`."""
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"SDF grid file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        grid = parse_sdf_grid(f.read())
    grid.metadata["source"] = str(path)
    logger.debug("Loaded SDF text grid %s: resolution=%s", path, grid.resolution)
    return grid


# ---------------------------------------------------------------------------
# Binary results
# ---------------------------------------------------------------------------


def save_results(
    output_dir: Path | str,
    grid: SDFGrid,
    stats: BuildStats | None = None,
    metadata: dict | None = None,
) -> list[Path]:
    """Save a grid to disk as NumPy arrays + JSON.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    grid : SDFGrid
        Generated field.
    stats : BuildStats, optional
        Statistics of the BVH the field was sampled from.
    metadata : dict, optional
        Extra run metadata merged into ``metadata.json``.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    for name, arr in [
        ("sdf_grid.npy", grid.distances),
        ("sample_points.npy", grid.sample_points()),
    ]:
        path = output_dir / name
        np.save(path, arr)
        saved.append(path)
        logger.debug("Saved %s: shape=%s, dtype=%s", name, arr.shape, arr.dtype)

    meta = {
        "resolution": list(grid.resolution),
        "bounds_size": list(grid.bounds_size),
        "num_samples": grid.num_samples,
        "inside_fraction": grid.inside_fraction,
        "sdf_hash": hash_array(grid.distances),
        "grid": grid.metadata,
    }
    if stats is not None:
        meta["bvh_stats"] = stats.as_dict()
    if metadata:
        meta.update(metadata)

    meta_path = output_dir / "metadata.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(_sanitize_for_json(meta), f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info("Saved %d files to %s (grid: %s)", len(saved), output_dir, grid.resolution)

    return saved


def load_results(output_dir: Path | str) -> dict:
    """Load results written by :func:`save_results`.

    Returns
    -------
    dict
        Keys: 'grid' (SDFGrid), 'sdf_grid', 'sample_points', 'metadata'.

    Raises
    ------
    FileNotFoundError
        If the directory, ``sdf_grid.npy`` or ``metadata.json`` is missing.
    ValueError
        If the stored array hash does not match the loaded distances.
    """
    output_dir = Path(output_dir)

    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    meta_path = output_dir / "metadata.json"
    grid_path = output_dir / "sdf_grid.npy"
    for path in (meta_path, grid_path):
        if not path.exists():
            raise FileNotFoundError(f"Missing file: {path}")

    with open(meta_path, "r", encoding="utf-8") as f:
        metadata = json.load(f)

    distances = np.load(grid_path)
    expected_hash = metadata.get("sdf_hash")
    if expected_hash is not None and hash_array(distances) != expected_hash:
        raise ValueError(f"{grid_path}: distance array does not match stored hash")

    points_path = output_dir / "sample_points.npy"
    if points_path.exists():
        sample_points = np.load(points_path)
    else:
        logger.warning("Missing file: %s", points_path)
        sample_points = None

    grid = SDFGrid(
        distances=distances,
        resolution=tuple(metadata["resolution"]),
        bounds_size=tuple(metadata["bounds_size"]),
        metadata=dict(metadata.get("grid", {})),
    )

    logger.info("Loaded results from %s (grid: %s)", output_dir, grid.resolution)

    return {
        "grid": grid,
        "sdf_grid": distances,
        "sample_points": sample_points,
        "metadata": metadata,
    }


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types and other non-JSON types to Python natives."""
    if isinstance(obj, dict):
        return {k: _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    return obj
