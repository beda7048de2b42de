"""meshsdf — CLI entry point.

Builds a BVH over a triangle mesh and samples a signed distance field,
written as a plain-text grid plus NumPy results.

Usage
-----
    python main.py --synthetic icosphere --resolution 32
    python main.py --mesh model.obj --resolution 64 --bounds 2.5 --directions 16
    python main.py --mesh part.stl --output out --name part --verify
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "default_config.yaml"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="meshsdf",
        description="meshsdf — BVH ray casting signed distance field generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --synthetic icosphere\n"
            "  python main.py --synthetic torus --resolution 48 --directions 16\n"
            "  python main.py --mesh bunny.obj --bounds 2.0 --name bunny\n"
            "  python main.py --mesh part.stl --verify\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config YAML (default: config/default_config.yaml)",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--mesh",
        type=str,
        default=None,
        help="Path to an OBJ or STL mesh. Bypasses the synthetic mesh.",
    )
    source.add_argument(
        "--synthetic",
        type=str,
        default=None,
        choices=["icosphere", "uv_sphere", "box", "torus"],
        help="Synthetic mesh type (default: from config)",
    )
    parser.add_argument(
        "--resolution",
        type=int,
        default=None,
        help="Samples per axis (default: from config)",
    )
    parser.add_argument(
        "--bounds",
        type=float,
        default=None,
        help="Edge length of the sampled cube (default: from config)",
    )
    parser.add_argument(
        "--directions",
        type=int,
        default=None,
        help="Rays cast per sample (default: from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory (default: from config)",
    )
    parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Base name of the output files (default: from config)",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        default=False,
        help="Re-read the written text grid and check it against the field",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main generation entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("meshsdf")
    logger.info("=" * 60)
    logger.info("  meshsdf — Signed Distance Field Generator")
    logger.info("=" * 60)

    from core_engine.constants import default_config, load_config, log_platform_info
    from data_ingestion.mesh_loader import load_mesh
    from generation.runner import SDFGenerationRunner

    log_platform_info()

    try:
        if args.config is not None:
            logger.info("Loading config: %s", args.config)
            config = load_config(args.config)
        elif DEFAULT_CONFIG_PATH.exists():
            logger.info("Loading config: %s", DEFAULT_CONFIG_PATH)
            config = load_config(DEFAULT_CONFIG_PATH)
        else:
            logger.info("No config file found, using built-in defaults")
            config = default_config()

        if args.synthetic is not None:
            config = dataclasses.replace(
                config,
                synthetic_mesh=dataclasses.replace(
                    config.synthetic_mesh, mesh_type=args.synthetic
                ),
            )

        mesh = load_mesh(args.mesh) if args.mesh else None

        runner = SDFGenerationRunner(
            config,
            resolution=args.resolution,
            bounds_size=args.bounds,
            direction_count=args.directions,
        )
        name = args.name
        if name is None and args.mesh:
            name = Path(args.mesh).stem

        results = runner.run(
            mesh=mesh,
            save_data=True,
            output_dir=args.output,
            name=name,
            verify=args.verify,
        )
    except (FileNotFoundError, ValueError, IndexError) as e:
        logger.error("Generation failed: %s", e)
        return 1

    # Summary
    grid = results.grid
    logger.info("=" * 60)
    logger.info("  GENERATION COMPLETE")
    logger.info("=" * 60)
    logger.info(
        "  Mesh: %d vertices, %d triangles",
        results.mesh_info["num_vertices"],
        results.mesh_info["num_triangles"],
    )
    logger.info(
        "  Grid: %s, bounds=%s, inside fraction=%.3f",
        "x".join(str(n) for n in grid.resolution),
        grid.bounds_size,
        grid.inside_fraction,
    )
    logger.info("  Wall time: %.2f s", results.timings.get("wall_time_s", 0.0))
    logger.info("  Output files (%d):", len(results.saved_files))
    for p in results.saved_files:
        logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
