"""
nbody_pm.backend.processor

The FFT processor interface shared by the two compute variants (CPU and
device), plus the enums used to select between them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

import numpy as np

__all__ = [
    "ComputeMode",
    "ProcessorType",
    "FFTProcessor",
    "is_power_of_two",
    "as_complex_grid",
]


class ComputeMode(Enum):
    """Backend selection policy of a :class:`FallbackManager`."""

    AUTO = "auto"
    FORCE_CPU = "cpu"
    FORCE_GPU = "gpu"

    def __str__(self) -> str:
        return {"auto": "Auto", "cpu": "CPU", "gpu": "GPU"}[self.value]

    @classmethod
    def parse(cls, value: "ComputeMode | str") -> "ComputeMode":
        """Accept an enum member or its string value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        key = str(value).lower()
        aliases = {"force_cpu": "cpu", "force_gpu": "gpu", "device": "gpu"}
        key = aliases.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(
                f"backend mode must be one of {[m.value for m in cls]}, got {value!r}"
            ) from None


class ProcessorType(Enum):
    CPU = "cpu"
    GPU = "gpu"


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def as_complex_grid(data, ndim: int) -> np.ndarray:
    """Return a C-contiguous complex128 copy of *data* with *ndim* dims."""
    arr = np.array(data, dtype=np.complex128, order="C", copy=True)
    if arr.ndim != ndim:
        raise ValueError(f"expected a {ndim}D array, got shape {arr.shape}")
    if arr.size == 0:
        raise ValueError(f"cannot transform an empty array of shape {arr.shape}")
    return arr


class FFTProcessor(ABC):
    """
    Closed interface over the two FFT variants.

    Forward transforms are unnormalized; inverse transforms apply ``1/N``
    exactly once, so ``ifft2d(fft2d(x)) == x``. 2D inputs have shape
    ``(width, height)``.
    """

    processor_type: ProcessorType

    @abstractmethod
    def fft1d(self, data) -> np.ndarray:
        ...

    @abstractmethod
    def ifft1d(self, data) -> np.ndarray:
        ...

    @abstractmethod
    def fft2d(self, data) -> np.ndarray:
        ...

    @abstractmethod
    def ifft2d(self, data) -> np.ndarray:
        ...

    def close(self) -> None:
        """Release any resources held by the processor."""
