"""Tests for the ray/triangle, ray/box and brute-force query kernels."""

from __future__ import annotations

import numpy as np
import pytest

from core_engine.raytracer import linear_scan_query, ray_bounding_box, ray_triangle


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def simple_triangle() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """A triangle in the XY plane at z=0, winding normal +z."""
    a = np.array([0.0, 0.0, 0.0], dtype=np.float64)
    b = np.array([1.0, 0.0, 0.0], dtype=np.float64)
    c = np.array([0.0, 1.0, 0.0], dtype=np.float64)
    return a, b, c


@pytest.fixture
def epsilon() -> float:
    """Default determinant cutoff."""
    return 1e-8


@pytest.fixture
def unit_box() -> tuple[np.ndarray, np.ndarray]:
    return (
        np.array([-1.0, -1.0, -1.0], dtype=np.float64),
        np.array([1.0, 1.0, 1.0], dtype=np.float64),
    )


def _vec(x: float, y: float, z: float) -> np.ndarray:
    return np.array([x, y, z], dtype=np.float64)


# ===================================================================
# RAY-TRIANGLE TESTS
# ===================================================================


class TestRayTriangle:
    """Test suite for the ray/triangle intersection."""

    def test_hit_from_below_is_backface(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        """Approaching against the +z winding normal reports a backface."""
        a, b, c = simple_triangle
        hit, dst, backface = ray_triangle(_vec(0.2, 0.2, -1.0), _vec(0, 0, 1), a, b, c, epsilon)

        assert hit
        assert dst == pytest.approx(1.0, abs=1e-12)
        assert backface

    def test_hit_from_above_is_frontface(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        a, b, c = simple_triangle
        hit, dst, backface = ray_triangle(_vec(0.2, 0.2, 1.0), _vec(0, 0, -1), a, b, c, epsilon)

        assert hit
        assert dst == pytest.approx(1.0, abs=1e-12)
        assert not backface

    def test_distance_scales_with_direction_length(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        a, b, c = simple_triangle
        hit, dst, _ = ray_triangle(_vec(0.2, 0.2, 1.0), _vec(0, 0, -2), a, b, c, epsilon)

        assert hit
        assert dst == pytest.approx(0.5, abs=1e-12)

    def test_miss_outside_triangle(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        a, b, c = simple_triangle
        hit, _, _ = ray_triangle(_vec(2.0, 2.0, 1.0), _vec(0, 0, -1), a, b, c, epsilon)

        assert not hit

    def test_parallel_ray(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        """Ray parallel to the triangle plane is rejected by the determinant."""
        a, b, c = simple_triangle
        hit, dst, _ = ray_triangle(_vec(0.25, 0.25, 1.0), _vec(1, 0, 0), a, b, c, epsilon)

        assert not hit
        assert dst == np.inf

    def test_behind_ray_origin(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        """Triangle behind the ray origin (negative distance)."""
        a, b, c = simple_triangle
        hit, _, _ = ray_triangle(_vec(0.25, 0.25, -1.0), _vec(0, 0, -1), a, b, c, epsilon)

        assert not hit

    def test_degenerate_triangle(self, epsilon: float) -> None:
        """Zero-area triangle is invisible to rays."""
        a = _vec(0.0, 0.0, 0.0)
        b = _vec(1.0, 0.0, 0.0)
        c = _vec(0.5, 0.0, 0.0)  # collinear

        hit, _, _ = ray_triangle(_vec(0.25, 0.0, 1.0), _vec(0, 0, -1), a, b, c, epsilon)

        assert not hit

    def test_edge_hit_no_leakage(self, epsilon: float) -> None:
        """A ray at the shared edge of two triangles hits at least one."""
        v0 = _vec(0.0, 0.0, 0.0)
        v1 = _vec(1.0, 0.0, 0.0)
        v2a = _vec(0.5, 1.0, 0.0)
        v2b = _vec(0.5, -1.0, 0.0)

        origin = _vec(0.5, 0.0, 1.0)
        direction = _vec(0.0, 0.0, -1.0)

        hit_a, _, _ = ray_triangle(origin, direction, v0, v1, v2a, epsilon)
        hit_b, _, _ = ray_triangle(origin, direction, v1, v0, v2b, epsilon)

        assert hit_a or hit_b, "Ray at shared edge must hit at least one triangle"

    def test_origin_on_plane_hits_at_zero(
        self, simple_triangle: tuple, epsilon: float
    ) -> None:
        a, b, c = simple_triangle
        hit, dst, _ = ray_triangle(_vec(0.2, 0.2, 0.0), _vec(0, 0, 1), a, b, c, epsilon)

        assert hit
        assert dst == 0.0


# ===================================================================
# RAY-AABB TESTS
# ===================================================================


class TestRayBoundingBox:
    """Test suite for the slab ray/box intersection."""

    def test_entry_distance(self, unit_box: tuple) -> None:
        hit, dst = ray_bounding_box(_vec(0, 0, -5), _vec(0, 0, 1), *unit_box)

        assert hit
        assert dst == pytest.approx(4.0)

    def test_origin_inside_reports_exit(self, unit_box: tuple) -> None:
        hit, dst = ray_bounding_box(_vec(0, 0, 0), _vec(0, 0, 1), *unit_box)

        assert hit
        assert dst == pytest.approx(1.0)

    def test_off_centre_inside_reports_exit(self, unit_box: tuple) -> None:
        hit, dst = ray_bounding_box(_vec(0.2, -0.3, 0.5), _vec(0, 0, 1), *unit_box)

        assert hit
        assert dst == pytest.approx(0.5)

    def test_diagonal_ray(self, unit_box: tuple) -> None:
        hit, dst = ray_bounding_box(_vec(-5, -5, -5), _vec(1, 1, 1), *unit_box)

        assert hit
        assert dst == pytest.approx(4.0)

    def test_miss_beside_box(self, unit_box: tuple) -> None:
        hit, dst = ray_bounding_box(_vec(5, 5, -5), _vec(0, 0, 1), *unit_box)

        assert not hit
        assert dst == np.inf

    def test_box_behind_ray(self, unit_box: tuple) -> None:
        hit, _ = ray_bounding_box(_vec(0, 0, 5), _vec(0, 0, 1), *unit_box)

        assert not hit

    def test_negative_direction(self, unit_box: tuple) -> None:
        hit, dst = ray_bounding_box(_vec(0.5, 0.5, 3), _vec(0, 0, -1), *unit_box)

        assert hit
        assert dst == pytest.approx(2.0)


# ===================================================================
# BRUTE FORCE QUERY
# ===================================================================


class TestLinearScan:
    """The reference query used to verify the hierarchy."""

    def test_nearest_of_stacked_triangles(self, epsilon: float) -> None:
        base = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float64)
        tris = np.stack([base + [0, 0, z] for z in (3.0, 1.0, 2.0)])

        tri, dst, backface = linear_scan_query(_vec(0.2, 0.2, -1), _vec(0, 0, 1), tris, epsilon)

        assert tri == 1
        assert dst == pytest.approx(2.0)
        assert backface

    def test_no_hit(self, epsilon: float) -> None:
        base = np.array([[[0, 0, 0], [1, 0, 0], [0, 1, 0]]], dtype=np.float64)

        tri, dst, _ = linear_scan_query(_vec(5, 5, -1), _vec(0, 0, 1), base, epsilon)

        assert tri == -1
        assert dst == np.inf
