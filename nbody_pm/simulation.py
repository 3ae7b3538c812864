"""
nbody_pm.simulation

:class:`Simulation` ties the particle store, the field solver and the compute
backend together and exposes the control surface used by front ends
(step, pause, backend mode) plus read-only views of the current state.

Each instance owns its particles, grids, compute backend and fallback
manager; separate instances can be stepped from separate threads.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from typing import Optional

import numpy as np

from .backend import ComputeBackend, ComputeMode, FallbackManager, PerformanceStats
from .config import SimulationConfig
from .errors import ConfigurationError
from .forces import ForceField
from .integrator import FieldSolver, FieldState, leapfrog_step
from .particles import ParticleSet, make_particles_with_central_mass, make_random_particles

logger = logging.getLogger(__name__)

__all__ = ["Simulation"]

_TOGGLE_ORDER = (ComputeMode.AUTO, ComputeMode.FORCE_CPU, ComputeMode.FORCE_GPU)


def _read_only(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


class Simulation:
    """
    A 2D periodic particle-mesh gravity simulation.

    Parameters
    ----------
    config : SimulationConfig, optional
        Parameters; defaults are used when omitted.
    particles : ParticleSet, optional
        Initial particles. Generated from *config* (``num_particles``,
        ``seed``, ``central_mass``) when omitted. The simulation evolves the
        set in place.
    manager : FallbackManager, optional
        Shared fallback manager. A private one is created otherwise.
    backend : ComputeBackend, optional
        Compute backend to use instead of building one from *config*.
    **overrides
        Field overrides applied to *config*, e.g. ``Simulation(width=64)``.

    Raises
    ------
    ConfigurationError
        If any parameter is invalid.

    Examples
    --------
    >>> sim = Simulation(width=64, height=64, num_particles=3, seed=1)
    >>> sim.step(0.01)
    True
    >>> sim.backend_status()['mode']
    <ComputeMode.AUTO: 'auto'>
    """

    def __init__(self, config: Optional[SimulationConfig] = None,
                 particles: Optional[ParticleSet] = None,
                 manager: Optional[FallbackManager] = None,
                 backend: Optional[ComputeBackend] = None,
                 **overrides):
        config = config if config is not None else SimulationConfig()
        if overrides:
            try:
                config = dataclasses.replace(config, **overrides)
            except TypeError as e:
                raise ConfigurationError(str(e)) from None
        self.config = config.validate()

        if particles is None:
            particles = self._initial_particles(self.config)
        elif not isinstance(particles, ParticleSet):
            raise ConfigurationError(f"particles must be a ParticleSet, got {type(particles).__name__}")
        self._particles = particles

        if backend is None:
            backend = ComputeBackend(
                mode=self.config.backend_mode,
                manager=manager,
                precision=self.config.precision,
                cache_size=self.config.cache_size,
                device_timeout=self.config.device_timeout,
            )
        self._backend = backend
        self._solver = FieldSolver(self.config.width, self.config.height,
                                   self.config.gravitational_constant, self._backend)
        self._field: Optional[FieldState] = None
        self._paused = bool(self.config.start_paused)
        self.time = 0.0
        self.step_count = 0
        logger.debug("Created simulation: %dx%d grid, %d particles",
                     self.config.width, self.config.height, len(self._particles))

    @staticmethod
    def _initial_particles(config: SimulationConfig) -> ParticleSet:
        if config.central_mass is not None:
            return make_particles_with_central_mass(
                config.num_particles, config.width, config.height, config.central_mass, config.seed
            )
        return make_random_particles(config.num_particles, config.width, config.height, config.seed)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, dt: float) -> bool:
        """
        Advance by one KDK step of size *dt*.

        Returns False (and does nothing) while paused. Device failures are
        handled by the backend and never raised here.
        """
        if self._paused:
            return False
        if isinstance(dt, bool) or not math.isfinite(dt):
            raise ValueError(f"dt must be a finite real, got {dt!r}")
        self._field = leapfrog_step(
            self._particles, dt, self._solver,
            self.config.force_correction, self.config.speed_of_light,
        )
        self.time += dt
        self.step_count += 1
        return True

    def run(self, n_steps: int, dt: float) -> int:
        """Call :meth:`step` *n_steps* times; returns the number of steps taken."""
        return sum(1 for _ in range(n_steps) if self.step(dt))

    # ------------------------------------------------------------------
    # Read-outs
    # ------------------------------------------------------------------

    def _current_field(self) -> FieldState:
        if self._field is None:
            self._field = self._solver.solve(self._particles)
        return self._field

    @property
    def particles(self) -> ParticleSet:
        """Read-only view of the particle state."""
        return self._particles.read_only()

    @property
    def density_grid(self) -> np.ndarray:
        return _read_only(self._current_field().density)

    @property
    def potential_grid(self) -> np.ndarray:
        return _read_only(self._current_field().potential)

    @property
    def force_field(self) -> ForceField:
        return self._current_field().force_field.read_only()

    @property
    def grid_shape(self) -> tuple:
        return self.config.grid_shape

    def total_momentum(self) -> np.ndarray:
        return self._particles.total_momentum()

    # ------------------------------------------------------------------
    # Pause
    # ------------------------------------------------------------------

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def toggle_pause(self) -> bool:
        self._paused = not self._paused
        return self._paused

    # ------------------------------------------------------------------
    # Backend control
    # ------------------------------------------------------------------

    @property
    def backend(self) -> ComputeBackend:
        return self._backend

    @property
    def manager(self) -> FallbackManager:
        return self._backend.manager

    def set_backend_mode(self, mode: ComputeMode | str) -> None:
        try:
            self._backend.set_mode(mode)
        except ValueError as e:
            raise ConfigurationError(str(e)) from None

    def toggle_backend(self) -> ComputeMode:
        """Cycle AUTO -> FORCE_CPU -> FORCE_GPU -> AUTO."""
        current = self._backend.mode
        new_mode = _TOGGLE_ORDER[(_TOGGLE_ORDER.index(current) + 1) % len(_TOGGLE_ORDER)]
        self._backend.set_mode(new_mode)
        return new_mode

    def backend_status(self) -> dict:
        """``{'mode', 'has_error', 'is_fallback'}`` of the fallback manager."""
        status = self._backend.status()
        return {key: status[key] for key in ('mode', 'has_error', 'is_fallback')}

    def attempt_recovery(self) -> bool:
        return self._backend.attempt_recovery()

    def calibrate(self, repeats: int = 3) -> PerformanceStats:
        """Time both processors on this simulation's grid size."""
        return self._backend.calibrate(self.config.width, self.config.height, repeats)

    def performance_stats(self) -> PerformanceStats:
        return self.manager.get_performance_stats()

    def gpu_info(self) -> dict:
        return self.manager.get_gpu_info()

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release the device context, if one was created."""
        self._backend.close()

    def __enter__(self) -> "Simulation":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (f"Simulation(grid={self.config.width}x{self.config.height}, "
                f"particles={len(self._particles)}, time={self.time:g}, "
                f"mode={self._backend.mode})")
