"""FFT compute backends: CPU (Numba) and CUDA device (CuPy)."""

from .processor import ComputeMode, ProcessorType, FFTProcessor
from .cpu import CPUProcessor
from .device import (
    CUPY_AVAILABLE,
    DEFAULT_CACHE_SIZE,
    ComputeContext,
    DeviceProcessor,
    device_available,
    get_gpu_info,
)
from .fallback import FallbackManager, PerformanceStats, ProcessorStats
from .router import ComputeBackend

__all__ = [
    "ComputeMode",
    "ProcessorType",
    "FFTProcessor",
    "CPUProcessor",
    "DeviceProcessor",
    "ComputeContext",
    "CUPY_AVAILABLE",
    "DEFAULT_CACHE_SIZE",
    "device_available",
    "get_gpu_info",
    "FallbackManager",
    "PerformanceStats",
    "ProcessorStats",
    "ComputeBackend",
]
