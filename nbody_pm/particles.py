"""
nbody_pm.particles

Particle storage and initial conditions.

Particles are kept as structure-of-arrays (``pos``, ``vel``, ``mass``,
``radius``) so the deposition and interpolation kernels can consume them
directly. The set is created once and mutated in place by the integrator;
particles are never added or removed during a run.
"""
from __future__ import annotations

from typing import NamedTuple

import numpy as np
from numpy.typing import ArrayLike

from .vecmath import Vec3

__all__ = [
    "Particle",
    "ParticleSet",
    "particle_radius",
    "make_particle",
    "make_random_particles",
    "make_particles_with_central_mass",
]

# Radius of a particle of mass m is RADIUS_SCALE * (m / RADIUS_REFERENCE_MASS)**(1/3).
RADIUS_REFERENCE_MASS = 20.0
RADIUS_SCALE = 0.5

# Initial-condition ranges used by make_random_particles.
INIT_MASS_MIN = 20.0
INIT_MASS_SPAN = 30.0
INIT_EXTENT_FRACTION = 0.8


def particle_radius(mass: ArrayLike, scale: float = RADIUS_SCALE,
                    reference_mass: float = RADIUS_REFERENCE_MASS) -> np.ndarray:
    """Radius derived from mass: ``scale * (mass / reference_mass)**(1/3)``."""
    return scale * np.cbrt(np.asarray(mass, dtype=float) / reference_mass)


class Particle(NamedTuple):
    """Read-only snapshot of one particle."""

    position: Vec3
    velocity: Vec3
    mass: float
    radius: float

    def kinetic_energy(self) -> float:
        return 0.5 * self.mass * self.velocity.dot(self.velocity)


class ParticleSet:
    """
    Mutable particle state for one simulation.

    Parameters
    ----------
    pos : array_like, shape (N, 3)
        Positions. The PM solver uses the x and z components; y is carried
        along unchanged.
    vel : array_like, shape (N, 3), optional
        Velocities. Defaults to zero.
    mass : array_like, shape (N,) or scalar
        Masses, all strictly positive.
    radius : array_like, shape (N,), optional
        Display radii. Derived from mass with :func:`particle_radius` when
        omitted.
    """

    def __init__(self, pos: ArrayLike, mass: ArrayLike, vel: ArrayLike | None = None,
                 radius: ArrayLike | None = None):
        pos = np.array(pos, dtype=np.float64, order="C", ndmin=2)
        if pos.size == 0:
            pos = pos.reshape(0, 3)
        if pos.ndim != 2 or pos.shape[1] != 3:
            raise ValueError(f"pos must have shape (N, 3), got {pos.shape}")
        n = pos.shape[0]

        mass = np.asarray(mass, dtype=np.float64)
        if mass.ndim == 0:
            mass = np.full(n, float(mass))
        else:
            mass = np.array(mass, dtype=np.float64, order="C").reshape(-1)
        if mass.shape[0] != n:
            raise ValueError(f"mass must have length N={n}, got {mass.shape[0]}")
        if np.any(~(mass > 0)):
            raise ValueError("Particle masses must be strictly positive.")

        if vel is None:
            vel = np.zeros((n, 3))
        else:
            vel = np.array(vel, dtype=np.float64, order="C", ndmin=2)
            if vel.size == 0:
                vel = vel.reshape(0, 3)
            if vel.shape != (n, 3):
                raise ValueError(f"vel must have shape ({n}, 3), got {vel.shape}")

        if radius is None:
            radius = particle_radius(mass)
        else:
            radius = np.array(radius, dtype=np.float64, order="C").reshape(-1)
            if radius.shape[0] != n:
                raise ValueError(f"radius must have length N={n}, got {radius.shape[0]}")

        self.pos = pos
        self.vel = vel
        self.mass = mass
        self.radius = radius

    def __len__(self) -> int:
        return self.pos.shape[0]

    def __getitem__(self, index: int) -> Particle:
        return Particle(
            position=Vec3.from_array(self.pos[index]),
            velocity=Vec3.from_array(self.vel[index]),
            mass=float(self.mass[index]),
            radius=float(self.radius[index]),
        )

    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        return f"ParticleSet(n={len(self)}, total_mass={self.total_mass():.6g})"

    def copy(self) -> "ParticleSet":
        return ParticleSet(self.pos.copy(), self.mass.copy(), self.vel.copy(), self.radius.copy())

    def read_only(self) -> "ParticleSet":
        """A view of this set whose arrays reject writes."""
        view = ParticleSet.__new__(ParticleSet)
        for name in ("pos", "vel", "mass", "radius"):
            arr = getattr(self, name).view()
            arr.flags.writeable = False
            setattr(view, name, arr)
        return view

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def total_mass(self) -> float:
        return float(self.mass.sum())

    def total_momentum(self) -> np.ndarray:
        return (self.mass[:, None] * self.vel).sum(axis=0)

    def kinetic_energy(self) -> np.ndarray:
        """Per-particle kinetic energy, shape (N,)."""
        return 0.5 * self.mass * np.einsum("ij,ij->i", self.vel, self.vel)

    def total_kinetic_energy(self) -> float:
        return float(self.kinetic_energy().sum())

    def center_of_mass(self) -> np.ndarray:
        if len(self) == 0:
            return np.zeros(3)
        return (self.mass[:, None] * self.pos).sum(axis=0) / self.mass.sum()

    def is_finite(self) -> bool:
        """True when no position or velocity is NaN or infinite."""
        return bool(np.isfinite(self.pos).all() and np.isfinite(self.vel).all())


# ============================================================================
# INITIAL CONDITIONS
# ============================================================================

def make_particle(mass: float, position: ArrayLike = (0.0, 0.0, 0.0),
                  velocity: ArrayLike = (0.0, 0.0, 0.0)) -> ParticleSet:
    """Single-particle set; radius is ``mass**(1/3) * 0.01``."""
    return ParticleSet(
        pos=[position],
        mass=[mass],
        vel=[velocity],
        radius=particle_radius(mass, scale=0.01, reference_mass=1.0).reshape(1),
    )


def make_random_particles(
    n: int,
    width: float,
    depth: float,
    rng: np.random.Generator | int | None = None,
) -> ParticleSet:
    """
    Scatter *n* stationary particles over the central 80% of the domain.

    Masses are uniform in ``[20, 50)``, positions uniform in
    ``+/- 0.4 * extent`` along x and z, and ``y = 0``.

    Parameters
    ----------
    n : int
        Number of particles (>= 0).
    width, depth : float
        Domain extent along x and z (the grid width and height).
    rng : numpy.random.Generator or int, optional
        Random generator or seed.
    """
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    rng = np.random.default_rng(rng)

    mass = INIT_MASS_MIN + rng.random(n) * INIT_MASS_SPAN
    pos = np.zeros((n, 3))
    pos[:, 0] = (rng.random(n) - 0.5) * width * INIT_EXTENT_FRACTION
    pos[:, 2] = (rng.random(n) - 0.5) * depth * INIT_EXTENT_FRACTION
    return ParticleSet(pos, mass)


def make_particles_with_central_mass(
    n: int,
    width: float,
    depth: float,
    central_mass: float,
    rng: np.random.Generator | int | None = None,
) -> ParticleSet:
    """Like :func:`make_random_particles`, with particle 0 replaced by a
    stationary *central_mass* at the origin."""
    if n < 1:
        raise ValueError("a central mass needs at least one particle")
    if not central_mass > 0:
        raise ValueError(f"central_mass must be positive, got {central_mass}")
    particles = make_random_particles(n, width, depth, rng)
    particles.pos[0] = 0.0
    particles.vel[0] = 0.0
    particles.mass[0] = central_mass
    particles.radius[0] = particle_radius(central_mass)
    return particles
