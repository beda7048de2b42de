"""Generation runner: mesh → BVH → signed distance field → files.

Orchestrates the full pipeline:
1. Load a mesh file or generate a synthetic mesh
2. Build the BVH and log its statistics
3. Sample the signed distance field
4. Write the text grid and binary results, optionally re-reading the
   text grid to verify it
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from core_engine.bvh import BVH, BuildStats, build_bvh
from core_engine.constants import GeneratorConfig, validate_config
from core_engine.mesh import TriangleMesh, describe_mesh
from core_engine.sdf import SDFGenerator, SDFGrid
from data_ingestion.synthetic_mesh import generate_synthetic_mesh
from generation.io_manager import TEXT_SUFFIX, load_sdf_text, save_results, save_sdf_text

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class GenerationResults:
    """Container for generation output.

    Attributes
    ----------
    grid : SDFGrid
        Sampled signed distance field.
    bvh_stats : BuildStats
        Statistics of the hierarchy the field was sampled from.
    mesh_info : dict
        Vertex/triangle counts, surface area, bounds of the input mesh.
    timings : dict
        Wall-clock seconds per stage.
    saved_files : list[Path]
        Every file written by the run.
    """

    grid: SDFGrid
    bvh_stats: BuildStats
    mesh_info: dict = field(default_factory=dict)
    timings: dict = field(default_factory=dict)
    saved_files: list[Path] = field(default_factory=list)

    @property
    def text_path(self) -> Path | None:
        for path in self.saved_files:
            if path.suffix == TEXT_SUFFIX:
                return path
        return None


# ---------------------------------------------------------------------------
# Generation Runner
# ---------------------------------------------------------------------------


class SDFGenerationRunner:
    """Runs one SDF generation from configuration.

    Parameters
    ----------
    config : GeneratorConfig
        Full configuration loaded from YAML.
    resolution, bounds_size, direction_count : optional
        Overrides for the ``sdf`` section (e.g. from CLI flags).
    """

    def __init__(
        self,
        config: GeneratorConfig,
        resolution: int | None = None,
        bounds_size: float | None = None,
        direction_count: int | None = None,
    ) -> None:
        overrides = {
            key: value
            for key, value in (
                ("resolution", resolution),
                ("bounds_size", bounds_size),
                ("direction_count", direction_count),
            )
            if value is not None
        }
        if overrides:
            config = dataclasses.replace(
                config, sdf=dataclasses.replace(config.sdf, **overrides)
            )
            validate_config(config)
        self._config = config

        logger.info(
            "SDFGenerationRunner initialized: resolution=%d, bounds=%.4g, directions=%d",
            config.sdf.resolution,
            config.sdf.bounds_size,
            config.sdf.direction_count,
        )

    @property
    def config(self) -> GeneratorConfig:
        return self._config

    def build(self, mesh: TriangleMesh) -> BVH:
        """Build the hierarchy for ``mesh`` with the configured settings."""
        return build_bvh(
            mesh,
            max_depth=self._config.bvh.max_depth,
            num_split_tests=self._config.bvh.num_split_tests,
            epsilon=self._config.raytracer.determinant_epsilon,
        )

    def run(
        self,
        mesh: TriangleMesh | None = None,
        save_data: bool = True,
        output_dir: Path | str | None = None,
        name: str | None = None,
        verify: bool = False,
    ) -> GenerationResults:
        """Execute the pipeline.

        Parameters
        ----------
        mesh : TriangleMesh, optional
            Input mesh. Default: synthetic mesh from configuration.
        save_data : bool
            Write the text grid and binary results.
        output_dir : Path or str, optional
            Override output directory. Default: from config.
        name : str, optional
            Override base file name. Default: from config.
        verify : bool
            Re-read the written text grid and compare it with the field.

        Returns
        -------
        GenerationResults

        Raises
        ------
        ValueError
            If verification finds a mismatch.
        """
        sdf_cfg = self._config.sdf
        wall_start = time.perf_counter()
        timings: dict[str, float] = {}

        # Step 1: Mesh
        if mesh is not None:
            logger.info(
                "Step 1/4: Using supplied mesh (%s)...",
                mesh.metadata.get("source", mesh.metadata.get("type", "unknown")),
            )
        else:
            logger.info("Step 1/4: Generating synthetic mesh...")
            mesh = generate_synthetic_mesh(self._config.synthetic_mesh)
        mesh_info = describe_mesh(mesh)

        # Step 2: BVH
        logger.info("Step 2/4: Building BVH (%d triangles)...", mesh.num_triangles)
        t0 = time.perf_counter()
        bvh = self.build(mesh)
        timings["bvh_s"] = time.perf_counter() - t0
        for line in bvh.stats.summary().splitlines():
            logger.info("  %s", line)

        # Step 3: Field
        logger.info("Step 3/4: Sampling signed distance field...")
        t0 = time.perf_counter()
        generator = SDFGenerator(
            bvh,
            resolution=sdf_cfg.resolution,
            bounds_size=sdf_cfg.bounds_size,
            direction_count=sdf_cfg.direction_count,
        )
        grid = generator.generate()
        timings["sdf_s"] = time.perf_counter() - t0

        results = GenerationResults(
            grid=grid,
            bvh_stats=bvh.stats,
            mesh_info=mesh_info,
            timings=timings,
        )

        # Step 4: Output
        if save_data:
            logger.info("Step 4/4: Writing output...")
            out_dir = Path(output_dir if output_dir is not None else self._config.output.directory)
            base = name if name is not None else self._config.output.save_file_name

            text_path = save_sdf_text(out_dir / f"{base}{TEXT_SUFFIX}", grid, sdf_cfg.decimals)
            results.saved_files.append(text_path)
            results.saved_files.extend(
                save_results(
                    out_dir / base,
                    grid,
                    stats=bvh.stats,
                    metadata={"mesh": mesh_info, "timings": timings},
                )
            )

            if verify:
                verify_text_grid(text_path, grid, sdf_cfg.decimals)
        else:
            logger.info("Step 4/4: Skipping output (save_data=False)")

        timings["wall_time_s"] = time.perf_counter() - wall_start
        logger.info("Generation complete: %.2f seconds wall time", timings["wall_time_s"])

        return results


def verify_text_grid(path: Path | str, grid: SDFGrid, decimals: int = 4) -> None:
    """Re-read a written text grid and check it against ``grid``.

    Raises
    ------
    ValueError
        If resolution, bounds or any distance differs beyond the rounding
        of ``decimals`` fractional digits.
    """
    loaded = load_sdf_text(path)
    tolerance = 0.5 * 10.0 ** (-decimals) * (1.0 + 1e-6)

    if loaded.resolution != grid.resolution:
        raise ValueError(
            f"{path}: resolution {loaded.resolution} != {grid.resolution}"
        )
    if not np.allclose(loaded.bounds_size, grid.bounds_size, rtol=0.0, atol=tolerance):
        raise ValueError(
            f"{path}: bounds {loaded.bounds_size} != {grid.bounds_size}"
        )

    max_error = float(np.max(np.abs(loaded.distances - grid.distances)))
    if max_error > tolerance:
        raise ValueError(f"{path}: max distance error {max_error:.3g} > {tolerance:.3g}")

    logger.info("Verified %s: max round-trip error %.2g", path, max_error)
