"""Tests for nbody_pm.deposit: Cloud-in-Cell mass deposition."""

import numpy as np
import pytest

from nbody_pm.deposit import deposit_mass, deposit_particles
from nbody_pm.particles import ParticleSet, make_random_particles


def _single(x, z, mass=100.0):
    return np.array([[x, 0.0, z]]), np.array([mass])


class TestCIC:

    def test_four_cell_split(self):
        # world (-2.5, -1.5) on a 10x10 grid is grid coordinate (2.5, 3.5)
        pos, mass = _single(-2.5, -1.5)
        grid = deposit_mass(pos, mass, 10, 10)
        for cell in [(2, 3), (3, 3), (2, 4), (3, 4)]:
            assert grid[cell] == pytest.approx(25.0)
        assert grid.sum() == pytest.approx(100.0)
        assert np.count_nonzero(grid) == 4

    def test_bilinear_weights(self):
        # grid coordinate (4.25, 5.75) on 10x10
        pos, mass = _single(-0.75, 0.75, mass=16.0)
        grid = deposit_mass(pos, mass, 10, 10)
        assert grid[4, 5] == pytest.approx(16.0 * 0.75 * 0.25)
        assert grid[5, 5] == pytest.approx(16.0 * 0.25 * 0.25)
        assert grid[4, 6] == pytest.approx(16.0 * 0.75 * 0.75)
        assert grid[5, 6] == pytest.approx(16.0 * 0.25 * 0.75)

    def test_integer_position_single_cell(self):
        pos, mass = _single(0.0, 0.0, mass=3.0)
        grid = deposit_mass(pos, mass, 8, 8)
        assert grid[4, 4] == pytest.approx(3.0)
        assert grid.sum() == pytest.approx(3.0)

    def test_non_square_grid(self):
        pos, mass = _single(0.5, 0.5, mass=4.0)
        grid = deposit_mass(pos, mass, 16, 8)
        assert grid.shape == (16, 8)
        np.testing.assert_allclose(grid[8:10, 4:6], np.full((2, 2), 1.0))

    def test_mass_conservation_interior(self):
        ps = make_random_particles(200, 64, 64, rng=0)
        grid = deposit_particles(ps, 64, 64)
        assert grid.sum() == pytest.approx(ps.total_mass(), rel=1e-12)


class TestBoundary:

    @pytest.mark.parametrize("x, z", [
        (4.5, 0.0),    # lower index on the last row
        (-5.5, 0.0),   # negative grid coordinate
        (0.0, 4.2),    # last column
        (0.0, -5.01),
        (40.0, 0.0),
    ])
    def test_edge_particles_not_deposited(self, x, z):
        pos, mass = _single(x, z)
        grid = deposit_mass(pos, mass, 10, 10)
        assert grid.sum() == 0.0

    def test_first_cell_deposited(self):
        pos, mass = _single(-5.0, -5.0)
        grid = deposit_mass(pos, mass, 10, 10)
        assert grid[0, 0] == pytest.approx(100.0)

    def test_nan_skipped(self):
        pos = np.array([[np.nan, 0.0, 0.0], [0.0, 0.0, 0.0]])
        grid = deposit_mass(pos, np.array([5.0, 2.0]), 8, 8)
        assert grid.sum() == pytest.approx(2.0)

    def test_empty(self):
        grid = deposit_particles(ParticleSet(np.empty((0, 3)), np.empty(0)), 6, 4)
        assert grid.shape == (6, 4)
        assert not grid.any()


class TestValidation:

    def test_bad_shapes(self):
        with pytest.raises(ValueError):
            deposit_mass(np.zeros((3, 2)), np.ones(3), 8, 8)
        with pytest.raises(ValueError):
            deposit_mass(np.zeros((3, 3)), np.ones(2), 8, 8)

    def test_bad_grid(self):
        with pytest.raises(ValueError):
            deposit_mass(np.zeros((1, 3)), np.ones(1), 0, 8)
