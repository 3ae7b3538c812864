"""
nbody_pm.backend.router

:class:`ComputeBackend` routes each FFT call to the processor picked by its
:class:`FallbackManager`, times it, and reruns failed device calls on the
CPU so callers never see a device error.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import numpy as np

from ..errors import BackendExecutionError, BackendUnavailable
from .cpu import CPUProcessor
from .device import DEFAULT_CACHE_SIZE, DeviceProcessor
from .fallback import FallbackManager, PerformanceStats
from .processor import ComputeMode, FFTProcessor, ProcessorType

logger = logging.getLogger(__name__)

__all__ = ["ComputeBackend"]

# Device failures that are rerouted to the CPU.
_DEVICE_ERRORS = (BackendUnavailable, BackendExecutionError)


class ComputeBackend:
    """
    The FFT capability set used by the Poisson solver.

    Parameters
    ----------
    mode : ComputeMode or str
        Initial selection mode (ignored when *manager* is given).
    manager : FallbackManager, optional
        Shared manager; a private one is created otherwise.
    precision : {'float64', 'float32'}
        Device kernel precision.
    cache_size : int
        LRU bound of the device caches.
    device_timeout : float, optional
        Device barrier timeout in seconds.
    device_factory : callable, optional
        Zero-argument callable returning the device :class:`FFTProcessor`.
        Defaults to a :class:`DeviceProcessor`; the device is only created
        when first selected.
    device_available : bool, optional
        Passed to the private manager. Defaults to probing CuPy, or to
        ``True`` when a *device_factory* is supplied.
    """

    def __init__(self, mode: ComputeMode | str = ComputeMode.AUTO,
                 manager: Optional[FallbackManager] = None,
                 precision: str = 'float64',
                 cache_size: int = DEFAULT_CACHE_SIZE,
                 device_timeout: Optional[float] = None,
                 device_factory: Optional[Callable[[], FFTProcessor]] = None,
                 device_available: Optional[bool] = None):
        self.cpu = CPUProcessor()
        if device_factory is None:
            def device_factory():
                return DeviceProcessor(precision=precision, cache_size=cache_size, timeout=device_timeout)
        elif device_available is None:
            device_available = True
        self._device_factory = device_factory
        self._device: Optional[FFTProcessor] = None
        self.manager = manager if manager is not None else FallbackManager(mode, device_available)
        self.last_processor: Optional[ProcessorType] = None

    # ------------------------------------------------------------------
    # Processor selection
    # ------------------------------------------------------------------

    @property
    def device(self) -> FFTProcessor:
        """The device processor, created on first access."""
        if self._device is None:
            self._device = self._device_factory()
        return self._device

    def get_processor(self) -> FFTProcessor:
        """Processor the manager would pick for the next call."""
        if self.manager.get_processor() is ProcessorType.GPU:
            return self.device
        return self.cpu

    def _dispatch(self, op: str, data) -> np.ndarray:
        if self.manager.get_processor() is ProcessorType.GPU:
            try:
                t0 = time.perf_counter()
                out = getattr(self.device, op)(data)
                self.manager.record_performance(ProcessorType.GPU, time.perf_counter() - t0)
                self.last_processor = ProcessorType.GPU
                return out
            except _DEVICE_ERRORS as e:
                logger.warning("Device %s failed, rerunning on CPU: %s", op, e)
                self.manager.record_gpu_error(e)

        t0 = time.perf_counter()
        out = getattr(self.cpu, op)(data)
        self.manager.record_performance(ProcessorType.CPU, time.perf_counter() - t0)
        self.last_processor = ProcessorType.CPU
        return out

    def fft1d(self, data) -> np.ndarray:
        return self._dispatch("fft1d", data)

    def ifft1d(self, data) -> np.ndarray:
        return self._dispatch("ifft1d", data)

    def fft2d(self, data) -> np.ndarray:
        return self._dispatch("fft2d", data)

    def ifft2d(self, data) -> np.ndarray:
        return self._dispatch("ifft2d", data)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def mode(self) -> ComputeMode:
        return self.manager.mode

    def set_mode(self, mode: ComputeMode | str) -> None:
        self.manager.set_mode(mode)

    def status(self) -> dict:
        return self.manager.status()

    def calibrate(self, width: int = 64, height: int = 64, repeats: int = 3,
                  seed: Optional[int] = 0) -> PerformanceStats:
        """
        Time a forward/inverse round trip on both processors.

        Gives ``AUTO`` mode the history it needs to compare latencies. Device
        failures are recorded in the manager, not raised.
        """
        rng = np.random.default_rng(seed)
        grid = rng.standard_normal((width, height))

        for _ in range(repeats):
            t0 = time.perf_counter()
            self.cpu.ifft2d(self.cpu.fft2d(grid))
            self.manager.record_performance(ProcessorType.CPU, (time.perf_counter() - t0) / 2)

        if self.manager.device_available and not self.manager.has_error():
            try:
                # first call compiles kernels; keep it out of the timings
                self.device.ifft2d(self.device.fft2d(grid))
                for _ in range(repeats):
                    t0 = time.perf_counter()
                    self.device.ifft2d(self.device.fft2d(grid))
                    self.manager.record_performance(ProcessorType.GPU, (time.perf_counter() - t0) / 2)
            except _DEVICE_ERRORS as e:
                logger.warning("Device calibration failed: %s", e)
                self.manager.record_gpu_error(e)

        return self.manager.get_performance_stats()

    def _reinitialize_device(self) -> None:
        if self._device is not None:
            self._device.close()
            self._device = None
        device = self._device_factory()
        device.fft2d(np.zeros((2, 2)))
        self._device = device

    def attempt_recovery(self) -> bool:
        """Recreate the device processor and clear the error flag on success."""
        return self.manager.attempt_recovery(self._reinitialize_device)

    def close(self) -> None:
        if self._device is not None:
            self._device.close()
            self._device = None

    def __repr__(self) -> str:
        return f"ComputeBackend(mode={self.mode}, manager={self.manager!r})"
