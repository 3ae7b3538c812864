"""nbody_pm: 2D periodic particle-mesh gravity with CPU and CUDA FFT backends."""

from importlib.metadata import version as _version_lookup, PackageNotFoundError

# --- Versioning ---
try:
    # This works if the package was installed via 'pip install .'
    __version__ = _version_lookup("nbody_pm")
except PackageNotFoundError:
    __version__ = "unknown"

# --- Public API ---

# From .errors
from .errors import (
    NbodyPMError,
    ConfigurationError,
    BackendUnavailable,
    BackendExecutionError,
)

# From .config
from .config import (
    SimulationConfig,
    G_DEFAULT,
    FORCE_CORRECTION_FACTOR,
)

# From .particles
from .particles import (
    Particle,
    ParticleSet,
    make_particle,
    make_random_particles,
    make_particles_with_central_mass,
)

# From .deposit / .poisson / .forces / .integrator
from .deposit import deposit_mass, deposit_particles
from .poisson import green_function, solve_poisson
from .forces import ForceField, gradient, interpolate_acceleration
from .integrator import FieldSolver, kick, drift, leapfrog_step, run_time_evolution

# From .backend
from .backend import (
    ComputeMode,
    ProcessorType,
    CPUProcessor,
    DeviceProcessor,
    ComputeBackend,
    FallbackManager,
    get_gpu_info,
)

# From .simulation
from .simulation import Simulation

# Define what "from nbody_pm import *" does
__all__ = [
    "__version__",
    "NbodyPMError",
    "ConfigurationError",
    "BackendUnavailable",
    "BackendExecutionError",
    "SimulationConfig",
    "G_DEFAULT",
    "FORCE_CORRECTION_FACTOR",
    "Particle",
    "ParticleSet",
    "make_particle",
    "make_random_particles",
    "make_particles_with_central_mass",
    "deposit_mass",
    "deposit_particles",
    "green_function",
    "solve_poisson",
    "ForceField",
    "gradient",
    "interpolate_acceleration",
    "FieldSolver",
    "kick",
    "drift",
    "leapfrog_step",
    "run_time_evolution",
    "ComputeMode",
    "ProcessorType",
    "CPUProcessor",
    "DeviceProcessor",
    "ComputeBackend",
    "FallbackManager",
    "get_gpu_info",
    "Simulation",
]
