"""Tests for YAML configuration loading and validation."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import numpy as np
import pytest

from core_engine.constants import (
    GeneratorConfig,
    default_config,
    hash_array,
    load_config,
    validate_config,
)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    """YAML → frozen dataclasses."""

    def test_default_file_matches_builtin_defaults(self, project_root: Path) -> None:
        config = load_config(project_root / "config" / "default_config.yaml")

        assert isinstance(config, GeneratorConfig)
        assert config == default_config()

    def test_default_values(self) -> None:
        config = default_config()

        assert config.bvh.max_depth == 32
        assert config.bvh.num_split_tests == 5
        assert config.raytracer.determinant_epsilon == 1e-8
        assert config.sdf.direction_count == 10
        assert config.sdf.decimals == 4

    def test_partial_file_falls_back(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, "sdf:\n  resolution: 8\nsynthetic_mesh:\n  type: torus\n"))

        assert config.sdf.resolution == 8
        assert config.sdf.bounds_size == 3.0
        assert config.synthetic_mesh.mesh_type == "torus"
        assert config.bvh == default_config().bvh

    def test_empty_file(self, tmp_path: Path) -> None:
        assert load_config(_write(tmp_path, "")) == default_config()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_non_mapping_root(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, "- 1\n- 2\n"))

    def test_unconvertible_value(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, "sdf:\n  resolution: lots\n"))

    @pytest.mark.parametrize(
        "text",
        [
            "bvh:\n  max_depth: -1\n",
            "bvh:\n  max_depth: 61\n",
            "bvh:\n  num_split_tests: 0\n",
            "raytracer:\n  determinant_epsilon: 0.0\n",
            "sdf:\n  resolution: 0\n",
            "sdf:\n  bounds_size: -2.0\n",
            "sdf:\n  direction_count: 0\n",
            "sdf:\n  decimals: 12\n",
            "output:\n  save_file_name: ''\n",
        ],
    )
    def test_out_of_range(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, text))


class TestValidateConfig:
    """Range checks on programmatically built configs."""

    def test_defaults_pass(self) -> None:
        validate_config(default_config())

    def test_replace_then_validate(self) -> None:
        config = default_config()
        bad = dataclasses.replace(config, sdf=dataclasses.replace(config.sdf, resolution=-4))
        with pytest.raises(ValueError):
            validate_config(bad)

    def test_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            default_config().sdf.resolution = 3


class TestHashArray:
    """Reproducibility hashes."""

    def test_stable_and_sensitive(self) -> None:
        a = np.linspace(-1.0, 1.0, 11)

        assert hash_array(a) == hash_array(a.copy())
        assert hash_array(a) != hash_array(a + 1e-12)
        assert hash_array(a[::2]) == hash_array(np.ascontiguousarray(a[::2]))
