"""Tests for text grid serialization and binary result persistence."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from core_engine.bvh import BuildStats
from core_engine.sdf import FAR_DISTANCE, SDFGrid
from generation.io_manager import (
    SDFFormatError,
    format_sdf_grid,
    format_value,
    load_results,
    load_sdf_text,
    parse_sdf_grid,
    save_results,
    save_sdf_text,
)


@pytest.fixture
def random_grid() -> SDFGrid:
    rng = np.random.default_rng(42)
    return SDFGrid(
        distances=rng.uniform(-2.0, 2.0, size=4 * 4 * 4),
        resolution=(4, 4, 4),
        bounds_size=(3.0, 3.0, 3.0),
        metadata={"direction_count": 10},
    )


# ===================================================================
# NUMBER FORMATTING
# ===================================================================


class TestFormatValue:
    """Up to four fractional digits, no trailing zeros."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (1.0, "1"),
            (2.5, "2.5"),
            (-3.25, "-3.25"),
            (1.23456, "1.2346"),
            (-0.00001, "0"),
            (0.0, "0"),
            (-0.0, "0"),
            (100.0, "100"),
        ],
    )
    def test_values(self, value: float, expected: str) -> None:
        assert format_value(value) == expected

    def test_custom_decimals(self) -> None:
        assert format_value(1.23456, decimals=2) == "1.23"
        assert format_value(7.9, decimals=0) == "8"


# ===================================================================
# TEXT GRID
# ===================================================================


class TestTextGrid:
    """Plain-text layout writer and parser."""

    def test_format_layout(self) -> None:
        grid = SDFGrid(np.array([1.0, -0.5]), (2, 1, 1), (3.0, 3.0, 3.0))
        assert format_sdf_grid(grid) == "2 1 1 3 3 3 1 -0.5"

    def test_round_trip(self, random_grid: SDFGrid) -> None:
        parsed = parse_sdf_grid(format_sdf_grid(random_grid))

        assert parsed.resolution == random_grid.resolution
        assert parsed.bounds_size == random_grid.bounds_size
        np.testing.assert_allclose(parsed.distances, random_grid.distances, rtol=0.0, atol=0.5e-4 + 1e-12)

    def test_far_distance_survives(self) -> None:
        grid = SDFGrid(np.array([FAR_DISTANCE, -1.0]), (1, 2, 1), (2.0, 2.0, 2.0))
        parsed = parse_sdf_grid(format_sdf_grid(grid))

        assert parsed.distances[0] == FAR_DISTANCE

    def test_tolerates_whitespace(self) -> None:
        parsed = parse_sdf_grid("  2 1 1\n3 3 3\t1  -0.5 \n\n")

        assert parsed.resolution == (2, 1, 1)
        np.testing.assert_array_equal(parsed.distances, [1.0, -0.5])

    def test_non_cubic(self) -> None:
        parsed = parse_sdf_grid("1 2 3 0.5 1 1.5 " + " ".join(["0.25"] * 6))

        assert parsed.resolution == (1, 2, 3)
        assert parsed.bounds_size == (0.5, 1.0, 1.5)
        assert parsed.as_volume().shape == (3, 2, 1)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "2 2 2",
            "2 1 1 3 3 3 1",
            "2 1 1 3 3 3 1 2 3",
            "2 1 1 3 3 3 1 abc",
            "2.5 1 1 3 3 3 1 2",
            "0 1 1 3 3 3",
            "-1 1 1 3 3 3 1",
            "2 1 1 3 x 3 1 2",
        ],
    )
    def test_malformed(self, text: str) -> None:
        with pytest.raises(SDFFormatError):
            parse_sdf_grid(text)

    def test_format_error_is_value_error(self) -> None:
        assert issubclass(SDFFormatError, ValueError)

    def test_save_and_load(self, tmp_path: Path, random_grid: SDFGrid) -> None:
        path = save_sdf_text(tmp_path / "nested" / "sdf.txt", random_grid)
        loaded = load_sdf_text(path)

        assert path.exists()
        assert loaded.resolution == (4, 4, 4)
        assert loaded.metadata["source"] == str(path)
        np.testing.assert_allclose(loaded.distances, random_grid.distances, atol=0.5e-4 + 1e-12)

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_sdf_text(tmp_path / "absent.txt")

    def test_load_truncated_file(self, tmp_path: Path, random_grid: SDFGrid) -> None:
        path = tmp_path / "short.txt"
        path.write_text(format_sdf_grid(random_grid).rsplit(" ", 3)[0])

        with pytest.raises(SDFFormatError):
            load_sdf_text(path)


# ===================================================================
# BINARY RESULTS
# ===================================================================


class TestResults:
    """NumPy + JSON persistence."""

    def test_save_and_load(self, tmp_path: Path, random_grid: SDFGrid) -> None:
        stats = BuildStats(time_ms=3)
        stats.record_node(0, True, 12)

        saved = save_results(tmp_path, random_grid, stats=stats, metadata={"mesh": {"num_triangles": 12}})
        names = sorted(p.name for p in saved)
        assert names == ["metadata.json", "sample_points.npy", "sdf_grid.npy"]

        data = load_results(tmp_path)
        np.testing.assert_array_equal(data["sdf_grid"], random_grid.distances)
        np.testing.assert_array_equal(data["grid"].distances, random_grid.distances)
        assert data["grid"].resolution == (4, 4, 4)
        assert data["sample_points"].shape == (64, 3)
        assert data["metadata"]["bvh_stats"]["triangle_count"] == 12
        assert data["metadata"]["mesh"]["num_triangles"] == 12
        assert data["metadata"]["grid"]["direction_count"] == 10

    def test_metadata_is_plain_json(self, tmp_path: Path, random_grid: SDFGrid) -> None:
        random_grid.metadata["no_hit_samples"] = np.int64(3)
        save_results(tmp_path, random_grid)

        with open(tmp_path / "metadata.json", "r", encoding="utf-8") as f:
            meta = json.load(f)
        assert meta["grid"]["no_hit_samples"] == 3
        assert meta["resolution"] == [4, 4, 4]
        assert len(meta["sdf_hash"]) == 64

    def test_hash_mismatch(self, tmp_path: Path, random_grid: SDFGrid) -> None:
        save_results(tmp_path, random_grid)
        np.save(tmp_path / "sdf_grid.npy", random_grid.distances + 1.0)

        with pytest.raises(ValueError):
            load_results(tmp_path)

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_results(tmp_path / "nope")
