"""
nbody_pm.backend.device

CuPy device FFT processor.

Power-of-two grids run a multi-stage Cooley-Tukey pipeline: bit reversal
over rows, ``log2(width)`` butterfly stages over rows, bit reversal over
columns, ``log2(height)`` butterfly stages over columns (plus a scale stage
for inverse transforms). Every stage reads one buffer of a ping-pong pair
and writes the other, and is followed by a full stream barrier. Other grid
sizes use a single-dispatch naive DFT. Any Cooley-Tukey failure is retried
with the naive DFT.

All CuPy calls go through a small driver object (:class:`CupyDriver`) so the
pipeline bookkeeping (plan and kernel caches, stage schedule, barrier
timeout) can be exercised with a stand-in driver on machines without a GPU.
"""
from __future__ import annotations

import hashlib
import logging
import time
import warnings
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from ..errors import BackendExecutionError, BackendUnavailable
from .cuda_kernels import kernel_source
from .processor import FFTProcessor, ProcessorType, as_complex_grid, is_power_of_two

try:
    import cupy as cp
    CUPY_AVAILABLE = True
except ImportError:
    CUPY_AVAILABLE = False
    warnings.warn(
        "CuPy not available. GPU acceleration disabled. "
        "Install with: pip install cupy-cudaxxx",
        ImportWarning
    )

logger = logging.getLogger(__name__)

__all__ = [
    "CUPY_AVAILABLE",
    "DEFAULT_CACHE_SIZE",
    "device_available",
    "get_gpu_info",
    "CupyDriver",
    "KernelCache",
    "BufferPool",
    "FFTStage",
    "FFTPlan",
    "ComputeContext",
    "DeviceProcessor",
]

# ============================================================================
# CONSTANTS
# ============================================================================

# LRU bound shared by the plan, kernel and buffer caches.
DEFAULT_CACHE_SIZE = 32

THREADS_PER_BLOCK = 256

# Poll interval of a barrier with a timeout (seconds).
_BARRIER_POLL_INTERVAL = 1e-4

COOLEY_TUKEY = "cooley_tukey"
NAIVE_DFT = "naive_dft"

_COMPLEX_DTYPES = {
    'float64': np.complex128,
    'float32': np.complex64,
}
_REAL_DTYPES = {
    'float64': np.float64,
    'float32': np.float32,
}


# ============================================================================
# DEVICE DISCOVERY
# ============================================================================

def device_available() -> bool:
    """True when CuPy is importable and at least one CUDA device is visible."""
    if not CUPY_AVAILABLE:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except Exception as e:  # CUDARuntimeError without a driver
        logger.debug("CUDA device query failed: %s", e)
        return False


def get_gpu_info() -> dict:
    """
    Get information about available GPU(s).

    Returns
    -------
    info : dict
        Dictionary containing:
        - 'available': bool, whether GPU is available
        - 'device_name': str, GPU model name
        - 'compute_capability': str, CUDA compute capability (e.g. '86')
        - 'memory_total': int, total GPU memory in bytes
        - 'memory_free': int, free GPU memory in bytes

    Examples
    --------
    >>> info = get_gpu_info()
    >>> if info['available']:
    ...     print(f"GPU: {info['device_name']}")
    ...     print(f"Memory: {info['memory_free'] / 1e9:.1f} GB free")
    """
    if not CUPY_AVAILABLE:
        return {'available': False}

    try:
        device = cp.cuda.Device()
        mem_info = cp.cuda.runtime.memGetInfo()
        name = cp.cuda.runtime.getDeviceProperties(device.id)['name']
        if isinstance(name, bytes):
            name = name.decode('utf-8')
        return {
            'available': True,
            'device_name': name,
            'compute_capability': device.compute_capability,
            'memory_total': mem_info[1],
            'memory_free': mem_info[0],
        }
    except Exception as e:
        logger.debug("GPU info query failed: %s", e)
        return {'available': False, 'error': str(e)}


# ============================================================================
# DRIVER
# ============================================================================

class CupyDriver:
    """
    The CuPy calls used by :class:`ComputeContext`.

    Owns one non-blocking stream on the current device; every launch is
    queued on it and barriers wait on it.
    """

    def __init__(self, device_id: Optional[int] = None):
        if not CUPY_AVAILABLE:
            raise BackendUnavailable("CuPy is not installed")
        try:
            self.device = cp.cuda.Device(device_id) if device_id is not None else cp.cuda.Device()
            self.device.use()
            self.stream = cp.cuda.Stream(non_blocking=True)
        except Exception as e:
            raise BackendUnavailable(f"no usable CUDA device: {e}") from e

    def compile(self, source: str, name: str):
        kernel = cp.RawKernel(source, name)
        kernel.compile()
        return kernel

    def empty(self, count: int, dtype):
        return cp.empty(count, dtype=dtype)

    def upload(self, buf, host: np.ndarray) -> None:
        buf.set(np.ascontiguousarray(host, dtype=buf.dtype).reshape(-1), stream=self.stream)

    def download(self, buf, shape) -> np.ndarray:
        return buf.get(stream=self.stream).reshape(shape)

    def launch(self, kernel, blocks: int, threads: int, args: tuple) -> None:
        with self.stream:
            kernel((blocks,), (threads,), args)

    def done(self) -> bool:
        return self.stream.done

    def synchronize(self) -> None:
        self.stream.synchronize()

    def close(self) -> None:
        self.stream.synchronize()
        cp.get_default_memory_pool().free_all_blocks()


# ============================================================================
# CACHES
# ============================================================================

class _LRUCache:
    """OrderedDict-backed map holding at most *maxsize* entries."""

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError(f"cache size must be >= 1, got {maxsize}")
        self.maxsize = maxsize
        self._data = OrderedDict()

    def get(self, key):
        try:
            value = self._data[key]
        except KeyError:
            return None
        self._data.move_to_end(key)
        return value

    def put(self, key, value) -> list:
        """Insert *key* and return the evicted ``(key, value)`` pairs."""
        self._data[key] = value
        self._data.move_to_end(key)
        evicted = []
        while len(self._data) > self.maxsize:
            evicted.append(self._data.popitem(last=False))
        return evicted

    def __contains__(self, key) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def keys(self):
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()


class KernelCache:
    """
    Compiled kernels keyed by ``(sha1(source), kernel name)``.

    Parameters
    ----------
    compiler : callable
        ``compiler(source, name) -> kernel``. Compilation errors are wrapped
        in :class:`BackendExecutionError` with ``stage='compile'``.
    maxsize : int
        LRU bound.
    """

    def __init__(self, compiler: Callable, maxsize: int = DEFAULT_CACHE_SIZE):
        self._compiler = compiler
        self._cache = _LRUCache(maxsize)
        self.compile_count = 0

    def get(self, source: str, name: str):
        key = (hashlib.sha1(source.encode('utf-8')).hexdigest(), name)
        kernel = self._cache.get(key)
        if kernel is not None:
            return kernel
        logger.debug("Compiling kernel %s", name)
        try:
            kernel = self._compiler(source, name)
        except Exception as e:
            raise BackendExecutionError(f"failed to compile kernel {name!r}: {e}", stage="compile") from e
        self.compile_count += 1
        self._cache.put(key, kernel)
        return kernel

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()


class BufferPool:
    """
    Ping-pong buffer pairs keyed by element count.

    Each pair holds two device arrays of interleaved real/imaginary values
    (a complex dtype). Pairs are reused across transforms of the same size
    and evicted least-recently-used.
    """

    def __init__(self, allocator: Callable, dtype=np.complex128, maxsize: int = DEFAULT_CACHE_SIZE):
        self._allocator = allocator
        self.dtype = np.dtype(dtype)
        self._cache = _LRUCache(maxsize)
        self.allocation_count = 0

    def acquire(self, count: int) -> tuple:
        pair = self._cache.get(count)
        if pair is not None:
            return pair
        logger.debug("Allocating ping-pong buffers for %d elements (%s)", count, self.dtype)
        try:
            pair = (self._allocator(count, self.dtype), self._allocator(count, self.dtype))
        except Exception as e:
            raise BackendExecutionError(f"failed to allocate {count} device elements: {e}", stage="alloc") from e
        self.allocation_count += 2
        evicted = self._cache.put(count, pair)
        for key, _ in evicted:
            logger.debug("Evicting ping-pong buffers for %d elements", key)
        return pair

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()


# ============================================================================
# PLANS
# ============================================================================

@dataclass(frozen=True)
class FFTStage:
    """
    One kernel dispatch of a plan.

    ``params`` are the stage-specific int32 arguments: ``(axis, log2n)`` for
    bit reversal, ``(axis, half)`` for a butterfly, ``()`` for the naive DFT.
    In-place stages (scale) do not swap the ping-pong buffers.
    """

    name: str
    kernel: object = field(compare=False, repr=False)
    params: tuple = ()
    in_place: bool = False


@dataclass
class FFTPlan:
    width: int
    height: int
    direction: int
    algorithm: str
    stages: list

    @property
    def key(self) -> tuple:
        return (self.width, self.height, self.direction, self.algorithm)

    @property
    def num_dispatches(self) -> int:
        return len(self.stages)


def _log2(n: int) -> int:
    return n.bit_length() - 1


# ============================================================================
# CONTEXT
# ============================================================================

class ComputeContext:
    """
    An initialized device backend owned by one simulation.

    Holds the driver, the plan cache keyed by ``(width, height, direction,
    algorithm)``, the kernel cache and the buffer pool. Use
    :meth:`create` to build one against the real device, and
    :meth:`release` to tear it down.

    Parameters
    ----------
    driver : object
        Provides ``compile``, ``empty``, ``upload``, ``download``,
        ``launch``, ``done``, ``synchronize`` and ``close`` (see
        :class:`CupyDriver`).
    precision : {'float64', 'float32'}
        Kernel floating point type.
    cache_size : int
        LRU bound of each cache.
    timeout : float, optional
        Seconds a barrier may wait. ``None`` blocks.
    """

    def __init__(self, driver, precision: str = 'float64', cache_size: int = DEFAULT_CACHE_SIZE,
                 timeout: Optional[float] = None):
        if precision not in _COMPLEX_DTYPES:
            raise ValueError(f"precision must be 'float32' or 'float64', got {precision!r}")
        self.driver = driver
        self.precision = precision
        self.timeout = timeout
        self.kernels = KernelCache(driver.compile, cache_size)
        self.buffers = BufferPool(driver.empty, _COMPLEX_DTYPES[precision], cache_size)
        self._plans = _LRUCache(cache_size)
        self._real_dtype = _REAL_DTYPES[precision]
        self.closed = False

    @classmethod
    def create(cls, precision: str = 'float64', cache_size: int = DEFAULT_CACHE_SIZE,
               timeout: Optional[float] = None, device_id: Optional[int] = None) -> "ComputeContext":
        """Open a context on the CUDA device; raises :class:`BackendUnavailable`."""
        driver = CupyDriver(device_id)
        ctx = cls(driver, precision, cache_size, timeout)
        logger.info("Created device compute context (%s, cache size %d)", precision, cache_size)
        return ctx

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def create_plan(self, width: int, height: int, direction: int,
                    algorithm: Optional[str] = None) -> FFTPlan:
        """
        Cached plan for a ``(width, height)`` transform.

        *algorithm* defaults to Cooley-Tukey when both dimensions are powers
        of two and the naive DFT otherwise. Requesting the same key again
        returns the cached plan without compiling anything.
        """
        self._check_open()
        if direction not in (1, -1):
            raise ValueError(f"direction must be +1 or -1, got {direction}")
        if algorithm is None:
            pow2 = is_power_of_two(width) and is_power_of_two(height)
            algorithm = COOLEY_TUKEY if pow2 else NAIVE_DFT

        key = (width, height, direction, algorithm)
        plan = self._plans.get(key)
        if plan is not None:
            return plan

        if algorithm == COOLEY_TUKEY:
            plan = self._build_cooley_tukey(width, height, direction)
        elif algorithm == NAIVE_DFT:
            plan = FFTPlan(width, height, direction, NAIVE_DFT,
                           [FFTStage("dft_naive", self._kernel("dft_naive"))])
        else:
            raise ValueError(f"unknown FFT algorithm {algorithm!r}")

        logger.debug("Created %s plan %dx%d direction %+d (%d dispatches)",
                     algorithm, width, height, direction, plan.num_dispatches)
        self._plans.put(key, plan)
        return plan

    def _build_cooley_tukey(self, width: int, height: int, direction: int) -> FFTPlan:
        if not (is_power_of_two(width) and is_power_of_two(height)):
            raise BackendExecutionError(
                f"Cooley-Tukey plan needs power-of-two dimensions, got {width}x{height}", stage="plan"
            )
        bit_reverse = self._kernel("fft_bit_reverse")
        butterfly = self._kernel("fft_butterfly")

        stages = []
        for axis, n in ((0, width), (1, height)):
            stages.append(FFTStage("fft_bit_reverse", bit_reverse, (axis, _log2(n))))
            half = 1
            while half < n:
                stages.append(FFTStage("fft_butterfly", butterfly, (axis, half)))
                half <<= 1
        if direction < 0:
            stages.append(FFTStage("fft_scale", self._kernel("fft_scale"), (), in_place=True))
        return FFTPlan(width, height, direction, COOLEY_TUKEY, stages)

    def _kernel(self, name: str):
        return self.kernels.get(kernel_source(name, self.precision), name)

    @property
    def num_plans(self) -> int:
        return len(self._plans)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, plan: FFTPlan, grid: np.ndarray) -> np.ndarray:
        """Run *plan* on the host grid and return a complex128 host result."""
        self._check_open()
        width, height = plan.width, plan.height
        total = width * height
        blocks = (total + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK

        src, dst = self.buffers.acquire(total)
        try:
            self.driver.upload(src, grid)
        except Exception as e:
            raise BackendExecutionError(f"upload of {width}x{height} grid failed: {e}", stage="upload") from e

        w32, h32, dir32 = np.int32(width), np.int32(height), np.int32(plan.direction)
        for stage in plan.stages:
            if stage.in_place:
                args = (src, np.int32(total), self._real_dtype(1.0 / total))
            else:
                args = (src, dst, w32, h32) + tuple(np.int32(p) for p in stage.params) + (dir32,)
            try:
                self.driver.launch(stage.kernel, blocks, THREADS_PER_BLOCK, args)
            except Exception as e:
                raise BackendExecutionError(f"dispatch of {stage.name} failed: {e}", stage="execute") from e
            self.barrier(stage.name)
            if not stage.in_place:
                src, dst = dst, src

        try:
            out = self.driver.download(src, (width, height))
        except Exception as e:
            raise BackendExecutionError(f"download of {width}x{height} grid failed: {e}", stage="download") from e
        return np.asarray(out, dtype=np.complex128)

    def barrier(self, stage: str = "") -> None:
        """
        Block until every queued dispatch has finished.

        With a timeout, the stream is polled and a
        :class:`BackendExecutionError` is raised once the deadline passes.
        """
        try:
            if self.timeout is not None:
                deadline = time.perf_counter() + self.timeout
                while not self.driver.done():
                    if time.perf_counter() > deadline:
                        raise BackendExecutionError(
                            f"device barrier after {stage or 'dispatch'} timed out ({self.timeout} s)",
                            stage="sync",
                        )
                    time.sleep(_BARRIER_POLL_INTERVAL)
            self.driver.synchronize()
        except BackendExecutionError:
            raise
        except Exception as e:
            raise BackendExecutionError(f"device barrier after {stage} failed: {e}", stage="sync") from e

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.closed:
            raise BackendUnavailable("compute context has been released")

    def release(self) -> None:
        """Drop every cache and close the driver. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        self._plans.clear()
        self.kernels.clear()
        self.buffers.clear()
        try:
            self.driver.close()
        except Exception as e:
            logger.warning("Error while releasing device context: %s", e)
        logger.info("Released device compute context")


# ============================================================================
# PROCESSOR
# ============================================================================

class DeviceProcessor(FFTProcessor):
    """
    FFT processor running on the CUDA device.

    The :class:`ComputeContext` is created on first use through
    *context_factory* (default :meth:`ComputeContext.create`), so building a
    ``DeviceProcessor`` never touches the device.
    """

    processor_type = ProcessorType.GPU

    def __init__(self, precision: str = 'float64', cache_size: int = DEFAULT_CACHE_SIZE,
                 timeout: Optional[float] = None,
                 context_factory: Optional[Callable[[], ComputeContext]] = None):
        self.precision = precision
        self.cache_size = cache_size
        self.timeout = timeout
        if context_factory is None:
            def context_factory():
                return ComputeContext.create(precision, cache_size, timeout)
        self._context_factory = context_factory
        self._context: Optional[ComputeContext] = None

    @property
    def context(self) -> ComputeContext:
        if self._context is None or self._context.closed:
            self._context = self._context_factory()
        return self._context

    def _transform2d(self, grid: np.ndarray, direction: int) -> np.ndarray:
        width, height = grid.shape
        ctx = self.context
        if is_power_of_two(width) and is_power_of_two(height):
            try:
                plan = ctx.create_plan(width, height, direction, COOLEY_TUKEY)
                return ctx.execute(plan, grid)
            except BackendExecutionError as e:
                logger.warning(
                    "Cooley-Tukey FFT %dx%d (direction %+d) failed, retrying with naive DFT: %s",
                    width, height, direction, e,
                )
        plan = ctx.create_plan(width, height, direction, NAIVE_DFT)
        return ctx.execute(plan, grid)

    def fft2d(self, data) -> np.ndarray:
        return self._transform2d(as_complex_grid(data, 2), 1)

    def ifft2d(self, data) -> np.ndarray:
        return self._transform2d(as_complex_grid(data, 2), -1)

    # 1D transforms run as (n, 1) grids; the length-1 axis is a copy.
    def fft1d(self, data) -> np.ndarray:
        a = as_complex_grid(data, 1)
        return self._transform2d(a.reshape(-1, 1), 1).reshape(-1)

    def ifft1d(self, data) -> np.ndarray:
        a = as_complex_grid(data, 1)
        return self._transform2d(a.reshape(-1, 1), -1).reshape(-1)

    def close(self) -> None:
        if self._context is not None:
            self._context.release()
            self._context = None

    def __repr__(self) -> str:
        return f"DeviceProcessor(precision={self.precision!r}, cache_size={self.cache_size})"
