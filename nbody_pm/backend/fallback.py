"""
nbody_pm.backend.fallback

Backend selection policy, device error capture and recovery.

A :class:`FallbackManager` decides, on every FFT call, whether the CPU or
the device processor runs it. All of its mutable state sits behind a single
reader/writer lock so one manager can be shared between threads.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import BackendExecutionError, BackendUnavailable
from .device import device_available as _probe_device
from .device import get_gpu_info as _device_gpu_info
from .processor import ComputeMode, ProcessorType

logger = logging.getLogger(__name__)

__all__ = [
    "FallbackManager",
    "ProcessorStats",
    "PerformanceStats",
    "DEFAULT_STATS_WINDOW",
]

# Number of most recent timings kept per processor type.
DEFAULT_STATS_WINDOW = 100


class _ReadWriteLock:
    """Shared/exclusive lock; waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class ProcessorStats:
    count: int = 0
    total_time: float = 0.0
    average_time: float = 0.0


@dataclass(frozen=True)
class PerformanceStats:
    """Rolling timing summary per processor type (seconds)."""

    cpu: ProcessorStats
    gpu: ProcessorStats

    def __getitem__(self, processor_type: ProcessorType) -> ProcessorStats:
        return self.cpu if processor_type is ProcessorType.CPU else self.gpu


class FallbackManager:
    """
    Chooses between the CPU and device processors.

    Parameters
    ----------
    mode : ComputeMode or str
        ``AUTO``, ``FORCE_CPU`` or ``FORCE_GPU``.
    device_available : bool, optional
        Whether a device can be used at all. Probed with CuPy when omitted.
    window : int
        Number of timings kept per processor for the AUTO comparison.

    Notes
    -----
    Selection rules:

    - ``FORCE_CPU``: always CPU.
    - ``FORCE_GPU``: device unless it is unavailable or the error flag is set.
    - ``AUTO``: device only if available, error free, and its rolling mean
      latency is strictly lower than the CPU's. Without timings for both,
      CPU.

    A device error in ``FORCE_GPU`` flips the mode to ``FORCE_CPU``. The
    flip is one-directional; only :meth:`set_mode` goes back.
    """

    def __init__(self, mode: ComputeMode | str = ComputeMode.AUTO,
                 device_available: Optional[bool] = None,
                 window: int = DEFAULT_STATS_WINDOW):
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self._lock = _ReadWriteLock()
        self._mode = ComputeMode.parse(mode)
        self._device_available = _probe_device() if device_available is None else bool(device_available)
        self._has_error = False
        self._last_error: Optional[BaseException] = None
        self._auto_fallback = False
        self._timings = {
            ProcessorType.CPU: deque(maxlen=window),
            ProcessorType.GPU: deque(maxlen=window),
        }

    # ------------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------------

    @property
    def mode(self) -> ComputeMode:
        with self._lock.read():
            return self._mode

    def set_mode(self, mode: ComputeMode | str) -> None:
        mode = ComputeMode.parse(mode)
        with self._lock.write():
            self._mode = mode
            self._auto_fallback = False
        logger.info("Compute mode set to %s", mode)

    @property
    def device_available(self) -> bool:
        with self._lock.read():
            return self._device_available

    def get_processor(self) -> ProcessorType:
        with self._lock.read():
            if self._mode is ComputeMode.FORCE_CPU:
                return ProcessorType.CPU
            usable = self._device_available and not self._has_error
            if self._mode is ComputeMode.FORCE_GPU:
                return ProcessorType.GPU if usable else ProcessorType.CPU
            if not usable:
                return ProcessorType.CPU
            cpu = self._timings[ProcessorType.CPU]
            gpu = self._timings[ProcessorType.GPU]
            if not cpu or not gpu:
                return ProcessorType.CPU
            if sum(gpu) / len(gpu) < sum(cpu) / len(cpu):
                return ProcessorType.GPU
            return ProcessorType.CPU

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def record_gpu_error(self, error: BaseException) -> None:
        """Set the error flag; in FORCE_GPU also switch to FORCE_CPU."""
        with self._lock.write():
            self._has_error = True
            self._last_error = error
            flipped = self._mode is ComputeMode.FORCE_GPU
            if flipped:
                self._mode = ComputeMode.FORCE_CPU
                self._auto_fallback = True
        logger.warning("Device error recorded: %s", error)
        if flipped:
            logger.warning("Falling back from GPU to CPU")

    def simulate_gpu_error(self, message: str = "simulated device error") -> None:
        self.record_gpu_error(BackendExecutionError(message, stage="simulated"))

    def has_error(self) -> bool:
        with self._lock.read():
            return self._has_error

    def get_last_error(self) -> Optional[BaseException]:
        with self._lock.read():
            return self._last_error

    def clear_errors(self) -> None:
        """Reset the error flag. The mode is left as it is."""
        with self._lock.write():
            self._has_error = False
            self._last_error = None

    def is_fallback(self) -> bool:
        """True when device work is being routed to the CPU because of a
        failure or a missing device."""
        with self._lock.read():
            return self._is_fallback_locked()

    def _is_fallback_locked(self) -> bool:
        # caller holds the lock
        return (
            self._has_error
            or self._auto_fallback
            or (self._mode is ComputeMode.FORCE_GPU and not self._device_available)
        )

    def attempt_recovery(self, reinitialize: Optional[Callable[[], None]] = None) -> bool:
        """
        Best-effort device reinitialization.

        Raises
        ------
        BackendUnavailable
            If no device is available at all.

        Returns
        -------
        bool
            True when *reinitialize* succeeded (or was not given) and the
            error flag was cleared. False when it raised; the flag stays set.
        """
        if not self.device_available:
            raise BackendUnavailable("no compute device available for recovery")

        if reinitialize is not None:
            try:
                reinitialize()
            except (BackendUnavailable, BackendExecutionError) as e:
                logger.warning("Device recovery failed: %s", e)
                with self._lock.write():
                    self._has_error = True
                    self._last_error = e
                return False

        with self._lock.write():
            self._has_error = False
            self._last_error = None
        logger.info("Device backend recovered")
        return True

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    def record_performance(self, processor_type: ProcessorType, elapsed: float) -> None:
        with self._lock.write():
            self._timings[processor_type].append(float(elapsed))

    def get_performance_stats(self) -> PerformanceStats:
        with self._lock.read():
            summary = {}
            for ptype, timings in self._timings.items():
                total = sum(timings)
                count = len(timings)
                summary[ptype] = ProcessorStats(count, total, total / count if count else 0.0)
        return PerformanceStats(cpu=summary[ProcessorType.CPU], gpu=summary[ProcessorType.GPU])

    def reset_performance_stats(self) -> None:
        with self._lock.write():
            for timings in self._timings.values():
                timings.clear()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict:
        with self._lock.read():
            return {
                'mode': self._mode,
                'has_error': self._has_error,
                'is_fallback': self._is_fallback_locked(),
                'device_available': self._device_available,
            }

    def get_gpu_info(self) -> dict:
        if not self.device_available:
            return {'available': False}
        return _device_gpu_info()

    def __repr__(self) -> str:
        s = self.status()
        return (f"FallbackManager(mode={s['mode']}, has_error={s['has_error']}, "
                f"is_fallback={s['is_fallback']})")
