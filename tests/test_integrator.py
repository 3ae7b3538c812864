"""Tests for nbody_pm.integrator: kick, drift and the KDK step."""

import numpy as np
import pytest

from nbody_pm.forces import ForceField
from nbody_pm.integrator import (
    FieldSolver,
    FieldState,
    drift,
    kick,
    leapfrog_step,
    run_time_evolution,
)
from nbody_pm.particles import ParticleSet


def _uniform_field(n=8, ax=1.0, az=0.0, phi=0.0):
    force = ForceField(np.full((n, n), ax), np.full((n, n), az))
    return FieldState(np.zeros((n, n)), np.full((n, n), phi), force)


def _three_body():
    return ParticleSet(
        pos=[[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0], [0.0, 0.0, 5.0]],
        mass=[30.0, 40.0, 50.0],
    )


class TestKick:

    def test_correction_factor(self):
        ps = ParticleSet(pos=[[0.0, 0.0, 0.0]], mass=1.0)
        kick(ps, _uniform_field(ax=2.0, az=-1.0), dt=1.0, correction=0.5)
        np.testing.assert_allclose(ps.vel, [[1.0, 0.0, -0.5]])

    def test_zero_field(self):
        ps = ParticleSet(pos=[[0.0, 0.0, 0.0]], mass=1.0, vel=[[1.0, 2.0, 3.0]])
        kick(ps, _uniform_field(ax=0.0), dt=1.0)
        np.testing.assert_array_equal(ps.vel, [[1.0, 2.0, 3.0]])

    def test_relativistic_scaling(self):
        ps = ParticleSet(pos=[[0.0, 0.0, 0.0]], mass=1.0)
        # |phi| / c^2 = 1 -> factor 1 + 3 = 4
        kick(ps, _uniform_field(ax=1.0, phi=-4.0), dt=1.0, correction=0.5, speed_of_light=2.0)
        np.testing.assert_allclose(ps.vel[0, 0], 2.0)

    def test_outside_particles_not_kicked(self):
        ps = ParticleSet(pos=[[3.9, 0.0, 0.0]], mass=1.0)
        kick(ps, _uniform_field(ax=1.0), dt=1.0)
        assert ps.vel[0, 0] == 0.0


class TestDrift:

    def test_free_motion(self):
        ps = ParticleSet(pos=[[1.0, 2.0, 3.0]], mass=1.0, vel=[[1.0, -1.0, 2.0]])
        drift(ps, 0.5, 32, 32)
        np.testing.assert_allclose(ps.pos, [[1.5, 2.0, 4.0]])

    def test_wraparound(self):
        ps = ParticleSet(
            pos=[[15.9, 0.0, 0.0], [-15.9, 0.0, 0.0], [0.0, 0.0, 7.9], [16.0, 0.0, 0.0]],
            mass=1.0,
            vel=[[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, 0.0, 0.0]],
        )
        drift(ps, 0.2, 32, 16)
        assert ps.pos[0, 0] == -16.0
        assert ps.pos[1, 0] == 16.0
        assert ps.pos[2, 2] == -8.0
        assert ps.pos[3, 0] == 16.0  # exactly on the boundary stays

    def test_y_not_advanced(self):
        ps = ParticleSet(pos=[[0.0, 100.0, 0.0]], mass=1.0, vel=[[0.0, 1.0, 0.0]])
        drift(ps, 1.0, 8, 8)
        assert ps.pos[0, 1] == 100.0
        assert ps.vel[0, 1] == 1.0


class TestLeapfrog:

    def test_pair_moves_together(self):
        ps = ParticleSet(pos=[[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0]], mass=[100.0, 100.0])
        solver = FieldSolver(32, 32, G=1.0)
        leapfrog_step(ps, 0.1, solver)
        assert ps.vel[0, 0] > 0 and ps.vel[1, 0] < 0
        assert ps.pos[0, 0] > -5.0 and ps.pos[1, 0] < 5.0

    def test_returns_post_step_field(self):
        ps = _three_body()
        solver = FieldSolver(32, 32)
        field = leapfrog_step(ps, 0.05, solver)
        np.testing.assert_allclose(field.density, solver.solve(ps).density)

    def test_momentum_conservation(self):
        ps = _three_body()
        p0 = ps.total_momentum()
        run_time_evolution(ps, 0.01, 100, FieldSolver(32, 32, G=1.0))
        assert np.linalg.norm(ps.total_momentum() - p0) < 1.0
        assert ps.is_finite()

    def test_run_returns_same_set(self, capsys):
        ps = _three_body()
        out = run_time_evolution(ps, 0.01, 3, FieldSolver(16, 16), verbose=True)
        assert out is ps
        assert "PM Leapfrog Integration" in capsys.readouterr().out

    def test_zero_and_negative_steps(self):
        ps = _three_body()
        before = ps.pos.copy()
        run_time_evolution(ps, 0.01, 0, FieldSolver(16, 16))
        np.testing.assert_array_equal(ps.pos, before)
        with pytest.raises(ValueError):
            run_time_evolution(ps, 0.01, -1, FieldSolver(16, 16))

    def test_empty_set(self):
        ps = ParticleSet(np.empty((0, 3)), np.empty(0))
        leapfrog_step(ps, 0.1, FieldSolver(8, 8))
        assert len(ps) == 0
