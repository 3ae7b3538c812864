"""
nbody_pm.benchmark

FFT round-trip benchmark of the CPU and device processors.

Run as ``python -m nbody_pm.benchmark --sizes 64 128 256``.
"""
from __future__ import annotations

import argparse
import time

import numpy as np

from .backend.cpu import CPUProcessor
from .backend.device import DeviceProcessor, device_available, get_gpu_info
from .errors import BackendExecutionError, BackendUnavailable

__all__ = ["run_benchmark"]

DEFAULT_SIZES = (64, 128, 256)


def _time_round_trip(processor, grid: np.ndarray, n_warmup: int, n_bench: int) -> dict:
    for _ in range(n_warmup):
        processor.ifft2d(processor.fft2d(grid))

    times = []
    for _ in range(n_bench):
        t0 = time.perf_counter()
        spectrum = processor.fft2d(grid)
        back = processor.ifft2d(spectrum)
        times.append(time.perf_counter() - t0)

    return {
        'time': float(np.median(times)),
        'times': times,
        'max_error': float(np.max(np.abs(back - grid))),
    }


def run_benchmark(sizes=DEFAULT_SIZES, n_bench: int = 5, n_warmup: int = 1,
                  use_device: bool | None = None, seed: int = 42,
                  verbose: bool = True) -> dict:
    """
    Time forward+inverse 2D FFTs on square grids.

    Parameters
    ----------
    sizes : iterable of int
        Grid edge lengths.
    n_bench, n_warmup : int
        Timed and untimed repetitions per size.
    use_device : bool, optional
        Include the device processor. Defaults to whether a device is
        available.
    seed : int
        Seed of the random test grids.
    verbose : bool
        Print a results table.

    Returns
    -------
    dict
        ``{('cpu' | 'gpu', size): {'time', 'times', 'max_error'}}``. A device
        run that fails stores ``{'error': str}`` instead.
    """
    if n_bench < 1:
        raise ValueError(f"n_bench must be >= 1, got {n_bench}")
    if use_device is None:
        use_device = device_available()

    processors = [('cpu', CPUProcessor())]
    if use_device:
        processors.append(('gpu', DeviceProcessor()))

    if verbose:
        print("\n" + "=" * 80)
        print("PM FFT ROUND-TRIP BENCHMARK")
        print("=" * 80)
        info = get_gpu_info()
        if info['available']:
            print(f"\n✓ GPU Available: {info['device_name']}")
            print(f"  Memory: {info['memory_free']/1e9:.1f} / {info['memory_total']/1e9:.1f} GB free")
        else:
            print("\n✗ No GPU available")
        print(f"\n{'backend':<8} {'size':>10} {'median [ms]':>14} {'max error':>12}")
        print("-" * 48)

    rng = np.random.default_rng(seed)
    results = {}
    try:
        for size in sizes:
            grid = rng.standard_normal((size, size))
            for name, processor in processors:
                try:
                    res = _time_round_trip(processor, grid, n_warmup, n_bench)
                except (BackendUnavailable, BackendExecutionError) as e:
                    results[(name, size)] = {'error': str(e)}
                    if verbose:
                        print(f"{name:<8} {size:>4}x{size:<5} {'failed':>14}  {e}")
                    continue
                results[(name, size)] = res
                if verbose:
                    print(f"{name:<8} {size:>4}x{size:<5} {res['time']*1000:>14.3f} {res['max_error']:>12.2e}")
    finally:
        for _, processor in processors:
            processor.close()

    if verbose:
        print("=" * 80)
    return results


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='PM FFT CPU/GPU benchmark')
    parser.add_argument('--sizes', type=int, nargs='+', default=list(DEFAULT_SIZES),
                        help='Grid edge lengths (default: 64 128 256)')
    parser.add_argument('--n-warmup', type=int, default=1,
                        help='Number of warmup iterations (default: 1)')
    parser.add_argument('--n-bench', type=int, default=5,
                        help='Number of benchmark iterations (default: 5)')
    parser.add_argument('--cpu-only', action='store_true',
                        help='Skip the device processor')
    args = parser.parse_args(argv)

    run_benchmark(args.sizes, n_bench=args.n_bench, n_warmup=args.n_warmup,
                  use_device=False if args.cpu_only else None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
