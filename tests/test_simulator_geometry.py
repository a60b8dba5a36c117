"""Tests for canopyray.simulator.common.geometry module."""
import math

import pytest
import numpy as np

from canopyray.simulator.common.geometry import (
    angle_from_nadir,
    intersect_slab,
    jitter_direction,
    normalize,
    orthonormal_basis,
    random_hemisphere_direction,
    ray_exit_box,
    specular_reflection,
)

DOWN = np.array([0.0, 0.0, -1.0])
UP = np.array([0.0, 0.0, 1.0])


class TestNormalize:
    def test_unit_length(self):
        np.testing.assert_allclose(normalize([3.0, 0.0, 4.0]), [0.6, 0.0, 0.8])

    def test_zero_vector(self):
        assert normalize([0.0, 0.0, 0.0]) is None


class TestOrthonormalBasis:
    @pytest.mark.parametrize("normal", [UP, np.array([1.0, 0.0, 0.0]), normalize([1.0, 2.0, -3.0])])
    def test_basis_is_orthonormal(self, normal):
        tangent, bitangent = orthonormal_basis(normal)
        for vector in (tangent, bitangent):
            assert np.linalg.norm(vector) == pytest.approx(1.0)
            assert np.dot(vector, normal) == pytest.approx(0.0, abs=1e-12)
        assert np.dot(tangent, bitangent) == pytest.approx(0.0, abs=1e-12)


class TestHemisphereSampling:
    def test_directions_stay_in_hemisphere(self, rng):
        for _ in range(200):
            direction = random_hemisphere_direction(DOWN, rng)
            assert np.linalg.norm(direction) == pytest.approx(1.0)
            assert direction[2] <= 0.0

    def test_cosine_weighting(self, rng):
        # E[cos(theta)] is 2/3 for a cosine-weighted hemisphere.
        cosines = [random_hemisphere_direction(UP, rng)[2] for _ in range(5000)]
        assert np.mean(cosines) == pytest.approx(2.0 / 3.0, abs=0.02)

    def test_jitter_keeps_unit_length(self, rng):
        direction = jitter_direction(DOWN, 0.01, rng)
        assert np.linalg.norm(direction) == pytest.approx(1.0)
        assert angle_from_nadir(direction) < 0.02

    def test_no_jitter(self, rng):
        np.testing.assert_allclose(jitter_direction(DOWN, 0.0, rng), DOWN)


class TestAngleFromNadir:
    def test_straight_down(self):
        assert angle_from_nadir(DOWN) == pytest.approx(0.0)

    def test_horizontal(self):
        assert angle_from_nadir(np.array([1.0, 0.0, 0.0])) == pytest.approx(math.pi / 2)


class TestIntersectSlab:
    def test_downward_ray(self):
        t_entry, t_exit = intersect_slab(np.array([0.0, 0.0, 3.0]), DOWN, 1.0, 2.0)
        assert t_entry == pytest.approx(1.0)
        assert t_exit == pytest.approx(2.0)

    def test_upward_ray(self):
        t_entry, t_exit = intersect_slab(np.array([0.0, 0.0, 0.0]), UP, 1.0, 2.0)
        assert (t_entry, t_exit) == pytest.approx((1.0, 2.0))

    def test_oblique_ray_is_longer(self):
        direction = normalize([1.0, 0.0, -1.0])
        t_entry, t_exit = intersect_slab(np.array([0.0, 0.0, 3.0]), direction, 1.0, 2.0)
        assert t_exit - t_entry == pytest.approx(math.sqrt(2.0))

    def test_horizontal_ray_misses(self):
        assert intersect_slab(np.array([0.0, 0.0, 1.5]), np.array([1.0, 0.0, 0.0]), 1.0, 2.0) is None

    def test_slab_behind_ray(self):
        assert intersect_slab(np.array([0.0, 0.0, 3.0]), UP, 1.0, 2.0) is None

    def test_origin_inside_slab(self):
        t_entry, t_exit = intersect_slab(np.array([0.0, 0.0, 1.5]), DOWN, 1.0, 2.0)
        assert t_entry == 0.0
        assert t_exit == pytest.approx(0.5)

    def test_leaving_from_top_face_misses(self):
        assert intersect_slab(np.array([0.0, 0.0, 2.0]), UP, 1.0, 2.0) is None


class TestRayExitBox:
    SIZE = np.array([10.0, 10.0, 5.0])

    def test_hits_floor(self):
        hit, inward = ray_exit_box(np.array([5.0, 5.0, 4.0]), DOWN, self.SIZE)
        np.testing.assert_allclose(hit, [5.0, 5.0, 0.0])
        np.testing.assert_allclose(inward, UP)

    def test_hits_side_wall(self):
        hit, inward = ray_exit_box(np.array([9.0, 5.0, 2.0]), np.array([1.0, 0.0, 0.0]), self.SIZE)
        np.testing.assert_allclose(hit, [10.0, 5.0, 2.0])
        np.testing.assert_allclose(inward, [-1.0, 0.0, 0.0])

    def test_nearest_face_wins(self):
        direction = normalize([1.0, 0.0, -1.0])
        hit, inward = ray_exit_box(np.array([9.5, 5.0, 4.0]), direction, self.SIZE)
        np.testing.assert_allclose(hit, [10.0, 5.0, 3.5])
        np.testing.assert_allclose(inward, [-1.0, 0.0, 0.0])

    def test_origin_outside(self):
        assert ray_exit_box(np.array([11.0, 5.0, 2.0]), DOWN, self.SIZE) is None


class TestSpecularReflection:
    def test_mirror(self):
        direction = normalize([1.0, 0.0, -1.0])
        np.testing.assert_allclose(specular_reflection(direction, UP), normalize([1.0, 0.0, 1.0]))
