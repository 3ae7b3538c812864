"""
nbody_pm.poisson

Spectral solution of ``lap(phi) = 4 pi G rho`` on a periodic grid.
"""
from __future__ import annotations

import numpy as np

from .backend.cpu import CPUProcessor

__all__ = ["wavenumbers", "green_function", "solve_poisson"]

_DEFAULT_PROCESSOR = CPUProcessor()


def wavenumbers(n: int) -> np.ndarray:
    """
    Angular wavenumbers of an *n*-point periodic axis with unit spacing.

    Index ``u`` maps to ``u`` for ``u <= n/2`` and to ``u - n`` above, scaled
    by ``2 pi / n``.
    """
    u = np.arange(n, dtype=np.float64)
    u[u > n / 2] -= n
    return u * (2.0 * np.pi / n)


def green_function(width: int, height: int, G: float = 1.0) -> np.ndarray:
    """
    Fourier-space Green's function ``-4 pi G / k^2``, shape (width, height).

    The ``k = 0`` entry is 0, which removes the DC component of the
    potential.
    """
    kx = wavenumbers(width)
    kz = wavenumbers(height)
    k2 = kx[:, None] ** 2 + kz[None, :] ** 2
    green = np.zeros((width, height), dtype=np.float64)
    nonzero = k2 != 0.0
    green[nonzero] = -4.0 * np.pi * G / k2[nonzero]
    return green


def solve_poisson(density: np.ndarray, G: float = 1.0, processor=None,
                  green: np.ndarray | None = None) -> np.ndarray:
    """
    Gravitational potential of a density grid.

    Parameters
    ----------
    density : np.ndarray, shape (width, height)
        Real mass density.
    G : float
        Gravitational constant.
    processor : FFTProcessor or ComputeBackend, optional
        Anything with ``fft2d``/``ifft2d``. Defaults to the CPU processor.
    green : np.ndarray, optional
        Precomputed :func:`green_function` for this grid and ``G``.

    Returns
    -------
    np.ndarray, shape (width, height), float64
        Real part of the inverse transform. Its mean is zero.
    """
    density = np.asarray(density)
    if density.ndim != 2:
        raise ValueError(f"density must be a 2D grid, got shape {density.shape}")
    width, height = density.shape
    if green is None:
        green = green_function(width, height, G)
    elif green.shape != density.shape:
        raise ValueError(f"green has shape {green.shape}, expected {density.shape}")
    if processor is None:
        processor = _DEFAULT_PROCESSOR

    rho_k = processor.fft2d(density.astype(np.complex128))
    phi_k = rho_k * green
    return np.ascontiguousarray(processor.ifft2d(phi_k).real)
