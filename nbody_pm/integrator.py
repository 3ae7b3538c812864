"""
nbody_pm.integrator

Kick-Drift-Kick leapfrog on top of the particle-mesh field solve.

One step:

1. deposit -> solve -> gradient at the current positions, half kick;
2. full drift with wraparound at +/- half the domain extent;
3. deposit -> solve -> gradient at the new positions, half kick.

Every kick is multiplied by the force-correction factor (default 0.5),
which offsets a particle's attraction to its own deposited mass.
"""
from __future__ import annotations

import time as pytime
from typing import NamedTuple, Optional

import numpy as np

from .config import FORCE_CORRECTION_FACTOR, G_DEFAULT
from .deposit import deposit_particles
from .forces import ForceField, gradient, interpolate_acceleration, interpolate_potential
from .particles import ParticleSet
from .poisson import green_function, solve_poisson

__all__ = [
    "FieldState",
    "FieldSolver",
    "kick",
    "drift",
    "leapfrog_step",
    "run_time_evolution",
]


class FieldState(NamedTuple):
    """Grids produced by one deposit/solve/gradient pass."""

    density: np.ndarray
    potential: np.ndarray
    force_field: ForceField


class FieldSolver:
    """
    Deposit, Poisson solve and gradient for a fixed grid.

    Parameters
    ----------
    width, height : int
        Grid dimensions.
    G : float
        Gravitational constant.
    processor : FFTProcessor or ComputeBackend, optional
        FFT provider; CPU when omitted.
    """

    def __init__(self, width: int, height: int, G: float = G_DEFAULT, processor=None):
        self.width = int(width)
        self.height = int(height)
        self.G = float(G)
        self.processor = processor
        self._green = green_function(self.width, self.height, self.G)

    def solve(self, particles: ParticleSet) -> FieldState:
        density = deposit_particles(particles, self.width, self.height)
        potential = solve_poisson(density, self.G, self.processor, green=self._green)
        return FieldState(density, potential, gradient(potential))


def kick(particles: ParticleSet, field: FieldState, dt: float,
         correction: float = FORCE_CORRECTION_FACTOR,
         speed_of_light: Optional[float] = None) -> None:
    """
    ``v += a * dt * correction`` in place.

    With *speed_of_light* set, ``a`` is scaled per particle by
    ``1 + 3 |phi| / c^2`` using the interpolated potential.
    """
    if len(particles) == 0:
        return
    acc = interpolate_acceleration(particles.pos, field.force_field)
    if speed_of_light is not None:
        phi = interpolate_potential(particles.pos, field.potential)
        acc *= (1.0 + 3.0 * np.abs(phi) / speed_of_light ** 2)[:, None]
    particles.vel += acc * (dt * correction)


def drift(particles: ParticleSet, dt: float, width: float, height: float) -> None:
    """
    ``x += v * dt`` in place on the x and z axes, then wrap them. y is left
    untouched.

    A coordinate beyond ``+extent/2`` is set to ``-extent/2`` and one below
    ``-extent/2`` to ``+extent/2``; overshoot is not preserved.
    """
    for axis, extent in ((0, width), (2, height)):
        half = extent / 2.0
        coord = particles.pos[:, axis]
        coord += particles.vel[:, axis] * dt
        coord[coord > half] = -half
        coord[coord < -half] = half


def leapfrog_step(particles: ParticleSet, dt: float, solver: FieldSolver,
                  correction: float = FORCE_CORRECTION_FACTOR,
                  speed_of_light: Optional[float] = None) -> FieldState:
    """
    Advance *particles* by one KDK step.

    Returns
    -------
    FieldState
        Grids of the second pass, i.e. of the post-step positions.
    """
    field = solver.solve(particles)
    kick(particles, field, dt / 2, correction, speed_of_light)

    drift(particles, dt, solver.width, solver.height)

    field = solver.solve(particles)
    kick(particles, field, dt / 2, correction, speed_of_light)
    return field


def run_time_evolution(
    particles: ParticleSet,
    dt: float,
    n_steps: int,
    solver: FieldSolver,
    correction: float = FORCE_CORRECTION_FACTOR,
    speed_of_light: Optional[float] = None,
    verbose: bool = False,
) -> ParticleSet:
    """
    Run *n_steps* leapfrog steps in place.

    Parameters
    ----------
    particles : ParticleSet
        Evolved in place and returned.
    dt : float
        Time step.
    n_steps : int
        Number of steps (>= 0).
    solver : FieldSolver
        Field solver for the simulation grid.
    correction : float, optional
        Force-correction factor applied to every kick.
    speed_of_light : float, optional
        Enables the relativistic correction.
    verbose : bool, optional
        Print a progress banner.

    Returns
    -------
    ParticleSet
    """
    if n_steps < 0:
        raise ValueError(f"n_steps must be non-negative, got {n_steps}")

    if verbose:
        print("=" * 80)
        print("PM Leapfrog Integration")
        print("=" * 80)
        print(f"Particles: {len(particles):,}")
        print(f"Grid: {solver.width}x{solver.height}, G={solver.G:g}")
        print(f"Steps: {n_steps:,} (dt={dt:.3e})")
        print("=" * 80)

    t_start = pytime.perf_counter()
    for step_i in range(1, n_steps + 1):
        leapfrog_step(particles, dt, solver, correction, speed_of_light)

        if verbose and step_i % max(1, n_steps // 10) == 0:
            elapsed = pytime.perf_counter() - t_start
            rate = step_i / elapsed if elapsed > 0 else 0
            print(f"  Step {step_i:>6}/{n_steps} | {rate:.1f} steps/s")

    if verbose:
        total_time = pytime.perf_counter() - t_start
        print("=" * 80)
        print(f"Integration complete: {total_time:.2f} s")
        print("=" * 80)

    return particles
