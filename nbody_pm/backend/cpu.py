"""
nbody_pm.backend.cpu

CPU FFT processor compiled with Numba.

Power-of-two lengths use an iterative radix-2 decimation-in-time transform
(bit-reversal permutation followed by log2(n) butterfly passes). Other
lengths fall back to a direct O(n^2) DFT. 2D transforms run along rows
(axis 0, length ``width``) and then along columns (axis 1, length
``height``).

The kernels are compiled serially (no ``prange``): several simulations may
call them from different Python threads at once, which the default Numba
threading layer does not support for parallel kernels.
"""
from __future__ import annotations

import math

import numpy as np
from numba import njit

from .processor import FFTProcessor, ProcessorType, as_complex_grid, is_power_of_two

__all__ = ["CPUProcessor", "fft1d", "ifft1d", "fft2d", "ifft2d"]


# ============================================================================
# NUMBA KERNELS
# ============================================================================

@njit(cache=True)
def _bit_reverse_permute(a: np.ndarray) -> None:
    """In-place bit-reversal permutation of a power-of-two length array."""
    n = a.shape[0]
    j = 0
    for i in range(1, n):
        bit = n >> 1
        while j & bit:
            j ^= bit
            bit >>= 1
        j ^= bit
        if i < j:
            tmp = a[i]
            a[i] = a[j]
            a[j] = tmp


@njit(cache=True)
def _fft_radix2_inplace(a: np.ndarray, sign: float) -> None:
    """
    Unnormalized in-place radix-2 transform.

    ``sign = +1`` computes ``sum x_t exp(-2 pi i k t / n)``, ``sign = -1``
    the conjugate kernel. Twiddles are evaluated directly for every index
    rather than by recurrence to keep round-trip errors near 1e-15.
    """
    n = a.shape[0]
    _bit_reverse_permute(a)
    size = 2
    while size <= n:
        half = size // 2
        theta = -sign * 2.0 * math.pi / size
        for k in range(half):
            ang = theta * k
            w = math.cos(ang) + 1j * math.sin(ang)
            for start in range(0, n, size):
                even = a[start + k]
                odd = a[start + k + half] * w
                a[start + k] = even + odd
                a[start + k + half] = even - odd
        size *= 2


@njit(cache=True)
def _dft_naive(a: np.ndarray, sign: float) -> np.ndarray:
    """Unnormalized O(n^2) DFT for arbitrary lengths."""
    n = a.shape[0]
    out = np.empty(n, dtype=np.complex128)
    for k in range(n):
        acc = 0j
        for t in range(n):
            # reduce k*t mod n first so the phase stays small and exact
            ang = -sign * 2.0 * math.pi * ((k * t) % n) / n
            acc += a[t] * (math.cos(ang) + 1j * math.sin(ang))
        out[k] = acc
    return out


@njit(cache=True)
def _transform_line(line: np.ndarray, sign: float, radix2: bool) -> np.ndarray:
    if radix2:
        _fft_radix2_inplace(line, sign)
        return line
    return _dft_naive(line, sign)


@njit(cache=True)
def _transform_axis0(data: np.ndarray, sign: float, radix2: bool) -> None:
    """Transform every column vector ``data[:, j]`` (length width)."""
    height = data.shape[1]
    for j in range(height):
        line = data[:, j].copy()
        data[:, j] = _transform_line(line, sign, radix2)


@njit(cache=True)
def _transform_axis1(data: np.ndarray, sign: float, radix2: bool) -> None:
    """Transform every row vector ``data[i, :]`` (length height)."""
    width = data.shape[0]
    for i in range(width):
        line = data[i, :].copy()
        data[i, :] = _transform_line(line, sign, radix2)


# ============================================================================
# PUBLIC FUNCTIONS
# ============================================================================

def fft1d(data) -> np.ndarray:
    """Forward 1D transform (unnormalized)."""
    a = as_complex_grid(data, 1)
    return _transform_line(a, 1.0, is_power_of_two(a.shape[0]))


def ifft1d(data) -> np.ndarray:
    """Inverse 1D transform, scaled by ``1/n``."""
    a = as_complex_grid(data, 1)
    out = _transform_line(a, -1.0, is_power_of_two(a.shape[0]))
    out *= 1.0 / a.shape[0]
    return out


def fft2d(data) -> np.ndarray:
    """Forward 2D transform of a ``(width, height)`` grid (unnormalized)."""
    a = as_complex_grid(data, 2)
    width, height = a.shape
    _transform_axis0(a, 1.0, is_power_of_two(width))
    _transform_axis1(a, 1.0, is_power_of_two(height))
    return a


def ifft2d(data) -> np.ndarray:
    """Inverse 2D transform, scaled once by ``1/(width*height)``."""
    a = as_complex_grid(data, 2)
    width, height = a.shape
    _transform_axis0(a, -1.0, is_power_of_two(width))
    _transform_axis1(a, -1.0, is_power_of_two(height))
    a *= 1.0 / (width * height)
    return a


class CPUProcessor(FFTProcessor):
    """Always-available FFT processor backed by the Numba kernels."""

    processor_type = ProcessorType.CPU

    def fft1d(self, data) -> np.ndarray:
        return fft1d(data)

    def ifft1d(self, data) -> np.ndarray:
        return ifft1d(data)

    def fft2d(self, data) -> np.ndarray:
        return fft2d(data)

    def ifft2d(self, data) -> np.ndarray:
        return ifft2d(data)

    def __repr__(self) -> str:
        return "CPUProcessor()"
