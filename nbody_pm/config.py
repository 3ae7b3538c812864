"""
nbody_pm.config

Simulation parameters consumed by :class:`nbody_pm.simulation.Simulation`.

The engine does not load configuration (files, CLI flags); callers build a
:class:`SimulationConfig` and the simulation validates it at construction.
Invalid values raise :class:`~nbody_pm.errors.ConfigurationError` and are
never clamped.
"""
from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass

import numpy as np

from .backend.device import DEFAULT_CACHE_SIZE
from .backend.processor import ComputeMode
from .errors import ConfigurationError

__all__ = [
    "G_DEFAULT",
    "DEFAULT_GRID_SIZE",
    "DEFAULT_NUM_PARTICLES",
    "FORCE_CORRECTION_FACTOR",
    "DEFAULT_CACHE_SIZE",
    "SimulationConfig",
]

# ============================================================================
# DEFAULTS
# ============================================================================

# Grid units: one cell per length unit, G = 1.
G_DEFAULT = 1.0
DEFAULT_GRID_SIZE = 256
DEFAULT_NUM_PARTICLES = 10

# Empirical factor applied to every kick to offset a particle's attraction to
# its own deposited mass.
FORCE_CORRECTION_FACTOR = 0.5

_PRECISIONS = ("float64", "float32")


@dataclass
class SimulationConfig:
    """
    Parameters of one simulation instance.

    Attributes
    ----------
    width, height : int
        Grid dimensions in cells. Must be positive. Powers of two take the
        fast Cooley-Tukey path on the device; other sizes use the naive DFT.
    num_particles : int
        Number of randomly initialized particles (>= 0).
    gravitational_constant : float
        ``G`` in the Poisson equation ``lap(phi) = 4 pi G rho``.
    force_correction : float
        Multiplier on every kick (see :data:`FORCE_CORRECTION_FACTOR`).
    backend_mode : ComputeMode or str
        Initial backend selection policy: ``'auto'``, ``'cpu'`` or ``'gpu'``.
    precision : {'float64', 'float32'}
        Floating point type of the device kernels.
    speed_of_light : float or None
        Enables the heuristic relativistic correction ``1 + 3|phi|/c^2``
        when set. ``None`` keeps pure Newtonian kicks.
    device_timeout : float or None
        Seconds a device barrier may wait before the dispatch is declared
        failed. ``None`` blocks indefinitely.
    cache_size : int
        LRU bound of the device plan, kernel and buffer caches.
    seed : int or None
        Seed for the particle initializer.
    start_paused : bool
        Start the simulation paused.
    central_mass : float or None
        Replace particle 0 with a stationary mass at the origin.
    """

    width: int = DEFAULT_GRID_SIZE
    height: int = DEFAULT_GRID_SIZE
    num_particles: int = DEFAULT_NUM_PARTICLES
    gravitational_constant: float = G_DEFAULT
    force_correction: float = FORCE_CORRECTION_FACTOR
    backend_mode: ComputeMode | str = ComputeMode.AUTO
    precision: str = "float64"
    speed_of_light: float | None = None
    device_timeout: float | None = None
    cache_size: int = DEFAULT_CACHE_SIZE
    seed: int | None = None
    start_paused: bool = False
    central_mass: float | None = None

    def validate(self) -> "SimulationConfig":
        """
        Check every field and normalize ``backend_mode`` in place.

        A string mode is replaced by its :class:`ComputeMode` member, so the
        returned object (which is ``self``) always carries the enum.

        Raises
        ------
        ConfigurationError
            On the first invalid field.
        """
        for name in ("width", "height"):
            value = getattr(self, name)
            if not _is_int(value) or value <= 0:
                raise ConfigurationError(f"invalid grid {name}: {value!r} (must be a positive integer)")
        if not _is_int(self.num_particles) or self.num_particles < 0:
            raise ConfigurationError(f"invalid number of particles: {self.num_particles!r}")
        if not _is_finite_number(self.gravitational_constant):
            raise ConfigurationError(
                f"gravitational constant must be a finite real, got {self.gravitational_constant!r}"
            )
        if not _is_finite_number(self.force_correction):
            raise ConfigurationError(f"force correction must be a finite real, got {self.force_correction!r}")
        try:
            self.backend_mode = ComputeMode.parse(self.backend_mode)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from None
        if self.precision not in _PRECISIONS:
            raise ConfigurationError(f"precision must be one of {list(_PRECISIONS)}, got {self.precision!r}")
        if self.speed_of_light is not None and (
            not _is_finite_number(self.speed_of_light) or self.speed_of_light <= 0
        ):
            raise ConfigurationError(f"speed of light must be positive, got {self.speed_of_light!r}")
        if self.device_timeout is not None and (
            not _is_finite_number(self.device_timeout) or self.device_timeout <= 0
        ):
            raise ConfigurationError(f"device timeout must be positive, got {self.device_timeout!r}")
        if not _is_int(self.cache_size) or self.cache_size < 1:
            raise ConfigurationError(f"cache size must be a positive integer, got {self.cache_size!r}")
        if self.central_mass is not None:
            if not _is_finite_number(self.central_mass) or self.central_mass <= 0:
                raise ConfigurationError(f"central mass must be positive, got {self.central_mass!r}")
            if self.num_particles < 1:
                raise ConfigurationError("central mass requires at least one particle")
        return self

    def replace(self, **changes) -> "SimulationConfig":
        """Return a validated copy with *changes* applied."""
        return dataclasses.replace(self, **changes).validate()

    @property
    def grid_shape(self) -> tuple[int, int]:
        return (self.width, self.height)


def _is_finite_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _is_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)
