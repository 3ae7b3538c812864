"""
nbody_pm.deposit

Cloud-in-Cell (CIC) mass deposition onto the simulation grid.

Grid coordinates are world coordinates shifted by half the grid extent:
``gx = x + width/2``, ``gz = z + height/2``. A particle contributes to the
four cells enclosing ``(gx, gz)`` with bilinear weights.

Particles whose lower cell index lies on the last row or column (or outside
the grid) are not deposited at all; no periodic wraparound happens here even
though the drift step wraps positions. Mass near the domain edge therefore
leaks from the density grid.
"""
from __future__ import annotations

import numpy as np
from numba import njit

from .particles import ParticleSet

__all__ = ["deposit_mass", "deposit_particles"]


@njit(cache=True)
def _cic_deposit(pos: np.ndarray, mass: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Serial CIC scatter.

    Parameters
    ----------
    pos : np.ndarray, shape (N, 3)
        Particle positions; only x (column 0) and z (column 2) are used.
    mass : np.ndarray, shape (N,)
        Particle masses.
    width, height : int
        Grid dimensions.

    Returns
    -------
    np.ndarray, shape (width, height)
        Mass per cell.
    """
    grid = np.zeros((width, height), dtype=np.float64)
    half_w = width / 2.0
    half_h = height / 2.0

    for p in range(pos.shape[0]):
        gx = pos[p, 0] + half_w
        gz = pos[p, 2] + half_h
        fi = np.floor(gx)
        fj = np.floor(gz)

        # NaN fails every comparison and is skipped like any other outsider
        if not (fi >= 0.0 and fi < width - 1 and fj >= 0.0 and fj < height - 1):
            continue

        i = int(fi)
        j = int(fj)
        fx = gx - fi
        fz = gz - fj
        m = mass[p]

        grid[i, j] += m * (1.0 - fx) * (1.0 - fz)
        grid[i + 1, j] += m * fx * (1.0 - fz)
        grid[i, j + 1] += m * (1.0 - fx) * fz
        grid[i + 1, j + 1] += m * fx * fz

    return grid


def deposit_mass(pos: np.ndarray, mass: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Rasterize point masses onto a ``(width, height)`` density grid.

    Parameters
    ----------
    pos : array_like, shape (N, 3)
        World positions.
    mass : array_like, shape (N,)
        Masses.
    width, height : int
        Grid dimensions (positive).

    Returns
    -------
    np.ndarray, shape (width, height), float64
        Deposited mass per cell. Never raises for out-of-range particles;
        they simply contribute nothing.
    """
    width = int(width)
    height = int(height)
    if width <= 0 or height <= 0:
        raise ValueError(f"grid dimensions must be positive, got {width}x{height}")

    pos = np.ascontiguousarray(pos, dtype=np.float64)
    mass = np.ascontiguousarray(mass, dtype=np.float64).reshape(-1)
    if pos.size == 0:
        return np.zeros((width, height), dtype=np.float64)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ValueError(f"pos must have shape (N, 3), got {pos.shape}")
    if mass.shape[0] != pos.shape[0]:
        raise ValueError(f"mass must have length N={pos.shape[0]}, got {mass.shape[0]}")

    return _cic_deposit(pos, mass, width, height)


def deposit_particles(particles: ParticleSet, width: int, height: int) -> np.ndarray:
    """:func:`deposit_mass` for a :class:`ParticleSet`."""
    return deposit_mass(particles.pos, particles.mass, width, height)
