"""Tests for nbody_pm.backend.fallback: selection policy, errors, recovery."""

import threading

import pytest

from nbody_pm.backend.fallback import FallbackManager, PerformanceStats, ProcessorStats
from nbody_pm.backend.processor import ComputeMode, ProcessorType
from nbody_pm.errors import BackendExecutionError, BackendUnavailable

CPU, GPU = ProcessorType.CPU, ProcessorType.GPU


def _manager(mode="auto", device=True, **kwargs):
    return FallbackManager(mode, device_available=device, **kwargs)


class TestSelection:

    def test_force_cpu(self):
        assert _manager("cpu").get_processor() is CPU

    def test_force_gpu(self):
        assert _manager("gpu").get_processor() is GPU

    def test_force_gpu_without_device(self):
        m = _manager("gpu", device=False)
        assert m.get_processor() is CPU
        assert m.is_fallback()
        assert m.mode is ComputeMode.FORCE_GPU

    def test_auto_without_history_prefers_cpu(self):
        m = _manager()
        assert m.get_processor() is CPU
        m.record_performance(GPU, 0.001)
        assert m.get_processor() is CPU  # still no CPU timings

    def test_auto_picks_faster(self):
        m = _manager()
        m.record_performance(CPU, 0.010)
        m.record_performance(GPU, 0.002)
        assert m.get_processor() is GPU
        m.record_performance(GPU, 0.050)
        assert m.get_processor() is CPU

    def test_auto_tie_goes_to_cpu(self):
        m = _manager()
        m.record_performance(CPU, 0.01)
        m.record_performance(GPU, 0.01)
        assert m.get_processor() is CPU

    def test_auto_without_device(self):
        m = _manager(device=False)
        m.record_performance(CPU, 1.0)
        m.record_performance(GPU, 0.001)
        assert m.get_processor() is CPU
        assert not m.is_fallback()


class TestErrors:

    def test_simulated_error_in_force_gpu(self):
        m = _manager("gpu")
        m.simulate_gpu_error()
        assert m.mode is ComputeMode.FORCE_CPU
        assert m.has_error()
        assert m.is_fallback()
        assert m.get_processor() is CPU
        assert isinstance(m.get_last_error(), BackendExecutionError)

        m.clear_errors()
        assert not m.has_error()
        assert m.get_last_error() is None
        # the flip to FORCE_CPU is not undone by clearing errors
        assert m.mode is ComputeMode.FORCE_CPU
        assert m.get_processor() is CPU

    def test_error_in_auto_keeps_mode(self):
        m = _manager()
        m.record_performance(CPU, 1.0)
        m.record_performance(GPU, 0.1)
        err = RuntimeError("boom")
        m.record_gpu_error(err)
        assert m.mode is ComputeMode.AUTO
        assert m.get_processor() is CPU
        assert m.get_last_error() is err
        m.clear_errors()
        assert m.get_processor() is GPU

    def test_set_mode_resets_fallback(self):
        m = _manager("gpu")
        m.simulate_gpu_error()
        m.clear_errors()
        assert m.is_fallback()
        m.set_mode("gpu")
        assert not m.is_fallback()
        assert m.get_processor() is GPU

    def test_status(self):
        m = _manager("gpu")
        assert m.status() == {
            'mode': ComputeMode.FORCE_GPU,
            'has_error': False,
            'is_fallback': False,
            'device_available': True,
        }

    def test_status_agrees_with_is_fallback(self):
        m = _manager("gpu")
        states = [m.status()['is_fallback'] == m.is_fallback()]
        m.simulate_gpu_error()
        states.append(m.status()['is_fallback'] == m.is_fallback())
        m.clear_errors()
        states.append(m.status()['is_fallback'] == m.is_fallback())
        m.set_mode("gpu")
        states.append(m.status()['is_fallback'] == m.is_fallback())
        assert all(states)

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            _manager().set_mode("tpu")


class TestRecovery:

    def test_no_device(self):
        with pytest.raises(BackendUnavailable):
            _manager(device=False).attempt_recovery()

    def test_success_clears_flag(self):
        m = _manager()
        m.simulate_gpu_error()
        calls = []
        assert m.attempt_recovery(lambda: calls.append(1)) is True
        assert calls == [1]
        assert not m.has_error()

    def test_failed_reinit_keeps_flag(self):
        m = _manager()

        def reinit():
            raise BackendExecutionError("still broken")

        assert m.attempt_recovery(reinit) is False
        assert m.has_error()
        assert str(m.get_last_error()) == "still broken"


class TestPerformanceStats:

    def test_rolling_stats(self):
        m = _manager(window=3)
        for t in (1.0, 2.0, 3.0, 4.0, 5.0):
            m.record_performance(CPU, t)
        stats = m.get_performance_stats()
        assert isinstance(stats, PerformanceStats)
        assert stats.cpu == ProcessorStats(count=3, total_time=12.0, average_time=4.0)
        assert stats[GPU] == ProcessorStats()

    def test_reset(self):
        m = _manager()
        m.record_performance(GPU, 1.0)
        m.reset_performance_stats()
        assert m.get_performance_stats().gpu.count == 0

    def test_window_validated(self):
        with pytest.raises(ValueError):
            _manager(window=0)


class TestThreadSafety:

    def test_concurrent_readers_and_writers(self):
        m = _manager(window=10_000)
        n_threads, n_iter = 8, 500
        barrier = threading.Barrier(n_threads)
        failures = []

        def worker(i):
            try:
                barrier.wait()
                for k in range(n_iter):
                    m.record_performance(CPU if i % 2 else GPU, 0.001)
                    m.get_processor()
                    if k % 50 == 0:
                        m.simulate_gpu_error()
                        m.status()
                        m.clear_errors()
            except Exception as e:  # pragma: no cover - reported below
                failures.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        assert not any(t.is_alive() for t in threads), "lock deadlocked"
        assert failures == []
        stats = m.get_performance_stats()
        assert stats.cpu.count + stats.gpu.count == n_threads * n_iter
