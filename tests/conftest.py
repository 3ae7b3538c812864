"""Shared stand-in device processors for the backend and simulation tests."""
from __future__ import annotations

import numpy as np
import pytest

from nbody_pm.backend.processor import FFTProcessor, ProcessorType
from nbody_pm.errors import BackendExecutionError


class NumpyDevice(FFTProcessor):
    """Device stand-in computing with numpy.fft; counts calls."""

    processor_type = ProcessorType.GPU

    def __init__(self):
        self.calls = 0
        self.closed = False

    def fft1d(self, data):
        self.calls += 1
        return np.fft.fft(np.asarray(data, dtype=complex))

    def ifft1d(self, data):
        self.calls += 1
        return np.fft.ifft(np.asarray(data, dtype=complex))

    def fft2d(self, data):
        self.calls += 1
        return np.fft.fft2(np.asarray(data, dtype=complex))

    def ifft2d(self, data):
        self.calls += 1
        return np.fft.ifft2(np.asarray(data, dtype=complex))

    def close(self):
        self.closed = True


class FailingDevice(FFTProcessor):
    """Device stand-in whose every dispatch fails."""

    processor_type = ProcessorType.GPU

    def __init__(self):
        self.calls = 0
        self.closed = False

    def _fail(self, data):
        self.calls += 1
        raise BackendExecutionError("kernel launch failed", stage="execute")

    fft1d = ifft1d = fft2d = ifft2d = _fail

    def close(self):
        self.closed = True


@pytest.fixture()
def numpy_device():
    return NumpyDevice()


@pytest.fixture()
def failing_device():
    return FailingDevice()
