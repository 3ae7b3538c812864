"""
nbody_pm.forces

Force field from the potential grid and its interpolation back to the
particles.

``gradient`` takes periodic central differences with unit cell spacing;
``interpolate_acceleration`` samples the field bilinearly at each particle's
grid coordinate and returns zero for particles outside
``[0, width-1) x [0, height-1)``.
"""
from __future__ import annotations

from typing import NamedTuple

import numpy as np
from numba import njit

__all__ = [
    "ForceField",
    "gradient",
    "interpolate_grid",
    "interpolate_acceleration",
    "interpolate_potential",
]


class ForceField(NamedTuple):
    """Acceleration grids, each of shape (width, height)."""

    accel_x: np.ndarray
    accel_z: np.ndarray

    @property
    def width(self) -> int:
        return self.accel_x.shape[0]

    @property
    def height(self) -> int:
        return self.accel_x.shape[1]

    def read_only(self) -> "ForceField":
        ax = self.accel_x.view()
        az = self.accel_z.view()
        ax.flags.writeable = False
        az.flags.writeable = False
        return ForceField(ax, az)


def gradient(potential: np.ndarray) -> ForceField:
    """
    ``a = -grad(phi)`` by periodic central differences.

    ``ax[i, j] = -(phi[i+1, j] - phi[i-1, j]) / 2`` with indices wrapped, and
    likewise along ``j`` for ``az``.
    """
    phi = np.asarray(potential, dtype=np.float64)
    if phi.ndim != 2:
        raise ValueError(f"potential must be a 2D grid, got shape {phi.shape}")
    ax = -0.5 * (np.roll(phi, -1, axis=0) - np.roll(phi, 1, axis=0))
    az = -0.5 * (np.roll(phi, -1, axis=1) - np.roll(phi, 1, axis=1))
    return ForceField(ax, az)


# ============================================================================
# BILINEAR SAMPLING
# ============================================================================

@njit(cache=True)
def _bilinear(grid: np.ndarray, pos: np.ndarray, out: np.ndarray) -> None:
    width, height = grid.shape
    half_w = width / 2.0
    half_h = height / 2.0
    for p in range(pos.shape[0]):
        gx = pos[p, 0] + half_w
        gz = pos[p, 2] + half_h
        fi = np.floor(gx)
        fj = np.floor(gz)
        if not (fi >= 0.0 and fi < width - 1 and fj >= 0.0 and fj < height - 1):
            out[p] = 0.0
            continue
        i = int(fi)
        j = int(fj)
        fx = gx - fi
        fz = gz - fj
        out[p] = (grid[i, j] * (1.0 - fx) * (1.0 - fz)
                  + grid[i + 1, j] * fx * (1.0 - fz)
                  + grid[i, j + 1] * (1.0 - fx) * fz
                  + grid[i + 1, j + 1] * fx * fz)


def interpolate_grid(grid: np.ndarray, pos: np.ndarray) -> np.ndarray:
    """Bilinear sample of a (width, height) grid at world positions (N, 3)."""
    grid = np.ascontiguousarray(grid, dtype=np.float64)
    pos = np.ascontiguousarray(pos, dtype=np.float64)
    if grid.ndim != 2:
        raise ValueError(f"grid must be 2D, got shape {grid.shape}")
    if pos.size == 0:
        return np.zeros(0)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ValueError(f"pos must have shape (N, 3), got {pos.shape}")
    out = np.empty(pos.shape[0])
    _bilinear(grid, pos, out)
    return out


def interpolate_acceleration(pos: np.ndarray, field: ForceField) -> np.ndarray:
    """
    Per-particle acceleration from a force field.

    Returns
    -------
    np.ndarray, shape (N, 3)
        ``(ax, 0, az)`` for each particle; y is never accelerated.
    """
    pos = np.asarray(pos, dtype=np.float64)
    acc = np.zeros((pos.shape[0], 3)) if pos.ndim == 2 else np.zeros((0, 3))
    if acc.shape[0] == 0:
        return acc
    acc[:, 0] = interpolate_grid(field.accel_x, pos)
    acc[:, 2] = interpolate_grid(field.accel_z, pos)
    return acc


def interpolate_potential(pos: np.ndarray, potential: np.ndarray) -> np.ndarray:
    """Potential at each particle, shape (N,)."""
    return interpolate_grid(potential, pos)
