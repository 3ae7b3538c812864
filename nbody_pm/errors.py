"""
nbody_pm.errors

Exception hierarchy shared by the simulation, the Poisson solver and the
compute backends.

Configuration problems fail fast at construction. Device problems are
recorded by :class:`nbody_pm.backend.fallback.FallbackManager` and never
escape ``Simulation.step``.
"""
from __future__ import annotations

__all__ = [
    "NbodyPMError",
    "ConfigurationError",
    "BackendUnavailable",
    "BackendExecutionError",
]


class NbodyPMError(RuntimeError):
    """Base class for every error raised by nbody_pm."""


class ConfigurationError(NbodyPMError, ValueError):
    """Invalid grid or particle parameters."""


class BackendUnavailable(NbodyPMError):
    """A device compute context could not be created."""


class BackendExecutionError(NbodyPMError):
    """
    A specific device dispatch failed.

    Parameters
    ----------
    message : str
        Human readable description.
    stage : str, optional
        Which part of the pipeline failed (``'alloc'``, ``'compile'``,
        ``'execute'``, ``'sync'``...).
    """

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.stage = stage
