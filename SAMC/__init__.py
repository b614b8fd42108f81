"""
SAMC: Stochastic Approximation Monte Carlo.

Adaptive random-walk sampler that learns per-bin log-weights over an energy
partition so the chain visits each energy bin with a chosen frequency.

Usage
-----
>>> import SAMC
>>> options = SAMC.make_options(
...     partition=[-float("inf"), 1.0, float("inf")],
...     vecpi=[0.5, 0.5],
...     domain=(-3.0, 3.0),
...     niter=50000,
...     stepsize=0.5,
... )
>>> result = SAMC.run(1, lambda x, data: float(x @ x), options, seed=0)
>>> result.frequency
"""

import jax

# Enable float64 so the interpreted and compiled paths agree
jax.config.update("jax_enable_x64", True)

from SAMC.datatypes import (
    AuxData, PartitionTable, GainSchedule, SAMCState, RunOptions, RunResult, Status
)
from SAMC.energy import CompiledEnergy, InterpretedEnergy, as_energy, resolve_aux
from SAMC.errors import ConfigurationError, EvaluationError, RunFailure, SAMCError
from SAMC.gain import make_gain
from SAMC.partition import interior_partition, make_partition, uniform_partition
from SAMC.sampler import SAMCEngine, make_options, run, run_chains

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "run",
    "run_chains",
    "make_options",
    "SAMCEngine",
    # Energies
    "InterpretedEnergy",
    "CompiledEnergy",
    "as_energy",
    "resolve_aux",
    # Partition / gain
    "make_partition",
    "uniform_partition",
    "interior_partition",
    "make_gain",
    # Types
    "AuxData",
    "PartitionTable",
    "GainSchedule",
    "SAMCState",
    "RunOptions",
    "RunResult",
    "Status",
    # Errors
    "SAMCError",
    "ConfigurationError",
    "EvaluationError",
    "RunFailure",
]
