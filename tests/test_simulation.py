"""Tests for nbody_pm.simulation: the Simulation facade."""

import threading

import numpy as np
import pytest
from conftest import FailingDevice, NumpyDevice

from nbody_pm.backend.fallback import FallbackManager
from nbody_pm.backend.processor import ComputeMode, ProcessorType
from nbody_pm.backend.router import ComputeBackend
from nbody_pm.config import SimulationConfig
from nbody_pm.errors import ConfigurationError
from nbody_pm.particles import ParticleSet
from nbody_pm.simulation import Simulation

GRID = 32


@pytest.fixture()
def sim():
    s = Simulation(width=GRID, height=GRID, num_particles=5, seed=11, backend_mode="cpu")
    yield s
    s.close()


class TestConstruction:

    def test_from_config(self):
        cfg = SimulationConfig(width=16, height=8, num_particles=4, seed=0)
        with Simulation(cfg) as s:
            assert s.grid_shape == (16, 8)
            assert len(s.particles) == 4
            assert s.potential_grid.shape == (16, 8)

    @pytest.mark.parametrize("overrides", [
        {"width": 0},
        {"height": -8},
        {"num_particles": -1},
        {"gravitational_constant": float("nan")},
        {"backend_mode": "quantum"},
        {"not_a_field": 1},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            Simulation(**overrides)

    def test_bad_particles_type(self):
        with pytest.raises(ConfigurationError):
            Simulation(width=8, height=8, particles=np.zeros((2, 3)))

    def test_seeded_initial_conditions(self):
        a = Simulation(width=GRID, height=GRID, num_particles=6, seed=5)
        b = Simulation(width=GRID, height=GRID, num_particles=6, seed=5)
        np.testing.assert_array_equal(a.particles.pos, b.particles.pos)

    def test_central_mass(self):
        s = Simulation(width=GRID, height=GRID, num_particles=4, seed=1, central_mass=500.0)
        assert s.particles.mass[0] == 500.0
        np.testing.assert_array_equal(s.particles.pos[0], np.zeros(3))

    def test_zero_particles(self):
        s = Simulation(width=16, height=16, num_particles=0)
        assert s.step(0.1)
        assert not s.potential_grid.any()


class TestStepping:

    def test_step_advances(self, sim):
        before = sim.particles.pos.copy()
        assert sim.step(0.05) is True
        assert sim.step_count == 1
        assert sim.time == pytest.approx(0.05)
        assert not np.array_equal(sim.particles.pos, before)

    def test_run(self, sim):
        assert sim.run(3, 0.01) == 3
        assert sim.step_count == 3

    def test_invalid_dt(self, sim):
        with pytest.raises(ValueError):
            sim.step(float("nan"))

    def test_pause(self, sim):
        sim.pause()
        before = sim.particles.pos.copy()
        assert sim.step(0.05) is False
        np.testing.assert_array_equal(sim.particles.pos, before)
        assert sim.step_count == 0
        sim.resume()
        assert sim.step(0.05)

    def test_toggle_pause(self, sim):
        assert not sim.paused
        assert sim.toggle_pause() is True
        assert sim.paused
        assert sim.toggle_pause() is False

    def test_motion_stays_in_plane(self):
        ps = ParticleSet(pos=[[0.0, 0.0, 0.0]], mass=10.0, vel=[[0.0, 5.0, 0.0]])
        s = Simulation(width=16, height=16, particles=ps, backend_mode="cpu")
        s.run(100, 0.1)
        assert s.particles.pos[0, 1] == 0.0

    def test_start_paused(self):
        s = Simulation(width=16, height=16, num_particles=2, start_paused=True)
        assert s.paused
        assert s.run(5, 0.1) == 0

    def test_momentum(self):
        ps = ParticleSet(
            pos=[[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0], [0.0, 0.0, 5.0]],
            mass=[30.0, 40.0, 50.0],
        )
        s = Simulation(width=GRID, height=GRID, particles=ps, backend_mode="cpu")
        s.run(100, 0.01)
        assert np.linalg.norm(s.total_momentum()) < 1.0


class TestReadOuts:

    def test_read_only_views(self, sim):
        sim.step(0.01)
        with pytest.raises(ValueError):
            sim.particles.pos[0, 0] = 1.0
        with pytest.raises(ValueError):
            sim.potential_grid[0, 0] = 1.0
        with pytest.raises(ValueError):
            sim.density_grid[0, 0] = 1.0
        with pytest.raises(ValueError):
            sim.force_field.accel_x[0, 0] = 1.0

    def test_grids_follow_state(self, sim):
        sim.step(0.01)
        assert sim.density_grid.sum() == pytest.approx(sim.particles.total_mass())
        assert abs(sim.potential_grid.mean()) < 1e-10
        assert sim.force_field.accel_x.shape == (GRID, GRID)

    def test_relativistic_correction_strengthens_kicks(self):
        ps = ParticleSet(pos=[[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0]], mass=[100.0, 100.0])
        newton = Simulation(width=GRID, height=GRID, particles=ps.copy(), backend_mode="cpu")
        rel = Simulation(width=GRID, height=GRID, particles=ps.copy(), backend_mode="cpu",
                         speed_of_light=10.0)
        newton.step(0.1)
        rel.step(0.1)
        assert rel.particles.vel[0, 0] > newton.particles.vel[0, 0] > 0


class TestBackendControl:

    def test_status_keys(self, sim):
        assert sim.backend_status() == {
            'mode': ComputeMode.FORCE_CPU,
            'has_error': False,
            'is_fallback': False,
        }

    def test_set_mode(self, sim):
        sim.set_backend_mode("auto")
        assert sim.backend_status()['mode'] is ComputeMode.AUTO
        with pytest.raises(ConfigurationError):
            sim.set_backend_mode("quantum")

    def test_toggle_cycle(self, sim):
        sim.set_backend_mode("auto")
        assert sim.toggle_backend() is ComputeMode.FORCE_CPU
        assert sim.toggle_backend() is ComputeMode.FORCE_GPU
        assert sim.toggle_backend() is ComputeMode.AUTO

    def test_device_failure_never_escapes_step(self):
        failing = ComputeBackend("gpu", device_factory=FailingDevice)
        ps = ParticleSet(pos=[[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0]], mass=[100.0, 100.0])
        s = Simulation(width=GRID, height=GRID, particles=ps.copy(), backend=failing)
        ref = Simulation(width=GRID, height=GRID, particles=ps.copy(), backend_mode="cpu")
        for _ in range(3):
            assert s.step(0.05)
            ref.step(0.05)
        assert s.backend_status() == {
            'mode': ComputeMode.FORCE_CPU,
            'has_error': True,
            'is_fallback': True,
        }
        np.testing.assert_allclose(s.particles.pos, ref.particles.pos, atol=1e-12)

    def test_device_results_match_cpu(self):
        ps = ParticleSet(pos=[[-5.0, 0.0, 1.0], [5.0, 0.0, -2.0]], mass=[100.0, 60.0])
        s = Simulation(width=GRID, height=GRID, particles=ps.copy(),
                       backend=ComputeBackend("gpu", device_factory=NumpyDevice))
        ref = Simulation(width=GRID, height=GRID, particles=ps.copy(), backend_mode="cpu")
        s.run(5, 0.05)
        ref.run(5, 0.05)
        assert s.backend.last_processor is ProcessorType.GPU
        np.testing.assert_allclose(s.particles.pos, ref.particles.pos, atol=1e-9)

    def test_recovery(self):
        devices = [FailingDevice(), NumpyDevice()]
        s = Simulation(width=16, height=16, num_particles=3, seed=0,
                       backend=ComputeBackend("gpu", device_factory=lambda: devices.pop(0)))
        s.step(0.01)
        assert s.backend_status()['has_error']
        assert s.attempt_recovery()
        assert not s.backend_status()['has_error']

    def test_shared_manager(self):
        manager = FallbackManager("cpu", device_available=False)
        a = Simulation(width=16, height=16, num_particles=2, manager=manager)
        b = Simulation(width=16, height=16, num_particles=2, manager=manager)
        a.set_backend_mode("gpu")
        assert b.backend_status()['mode'] is ComputeMode.FORCE_GPU
        assert b.backend_status()['is_fallback']

    def test_calibrate_and_stats(self, sim):
        stats = sim.calibrate(repeats=2)
        assert stats.cpu.count >= 2
        assert sim.performance_stats().cpu.count >= 2
        assert 'available' in sim.gpu_info()


class TestIsolation:

    def test_parallel_simulations_match_serial(self):
        seeds = [1, 2, 3, 4]

        def make(seed):
            return Simulation(width=GRID, height=GRID, num_particles=6, seed=seed, backend_mode="cpu")

        serial = []
        for seed in seeds:
            s = make(seed)
            s.run(10, 0.02)
            serial.append(s.particles.pos.copy())

        results = {}
        errors = []

        def worker(seed):
            try:
                s = make(seed)
                s.run(10, 0.02)
                results[seed] = s.particles.pos.copy()
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(seed,)) for seed in seeds]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=120)
        assert errors == []
        for seed, expected in zip(seeds, serial):
            np.testing.assert_array_equal(results[seed], expected)

    def test_repr(self, sim):
        assert "Simulation(grid=32x32" in repr(sim)
