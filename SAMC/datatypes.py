"""
Description:
    Core data structures for SAMC.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1

All modules import from here to ensure type consistency and avoid indexing bugs.
"""
from enum import Enum
from typing import NamedTuple, Callable, Optional, Any, Tuple
import math
import jax
import jax.numpy as jnp
import numpy as np

from SAMC.errors import RunFailure

AUX_KINDS = ("none", "vector", "matrix", "structured")


class AuxData(NamedTuple):
    """Auxiliary payload passed unchanged to every energy call"""
    kind: str # one of AUX_KINDS
    payload: Any # None, 1-D array, 2-D array or pytree of arrays


def locate_bin(breakpoints, energy, xp=jnp):
    """
    Index of the half-open bin [b_k, b_{k+1}) containing energy.

    Energies on a breakpoint belong to the bin on their right; energies
    outside the breakpoints clamp to the first or last bin.
    """
    n_bins = breakpoints.shape[0] - 1
    idx = xp.searchsorted(breakpoints, energy, side="right") - 1
    return xp.clip(idx, 0, n_bins - 1)


class PartitionTable(NamedTuple):
    """Energy breakpoints (K+1) and target visiting probabilities (K)"""
    breakpoints: jnp.ndarray
    vecpi: jnp.ndarray

    @property
    def n_bins(self) -> int:
        return self.vecpi.shape[0]

    def bin_index_of(self, energy):
        """Works on python floats (returns int) and on jax values (returns array)"""
        if isinstance(energy, jax.Array):
            return locate_bin(self.breakpoints, energy, jnp)
        return int(locate_bin(np.asarray(self.breakpoints), energy, np))

    def target_probability(self, k: int) -> float:
        return float(self.vecpi[k])


class GainSchedule(NamedTuple):
    """gain(t) = (t0 / max(t0, t)) ** xi"""
    t0: float = 1000.0
    xi: float = 1.0

    def gain_at(self, t):
        if isinstance(t, jax.Array):
            return (self.t0 / jnp.maximum(self.t0, t)) ** self.xi
        return (self.t0 / max(self.t0, t)) ** self.xi


class Status(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SAMCState(NamedTuple):
    """Per-run mutable state, threaded through the scan as the carry"""
    x: jnp.ndarray # current position (d,)
    energy: float # cached H(x)
    bin: int # cached bin of energy
    theta: jnp.ndarray # log-weights (K,)
    counts: jnp.ndarray # visits per bin (K,)
    n_accept: int
    n_eval: int # energy calls made
    n_domain_reject: int # proposals rejected without an energy call
    n_errors: int # EvaluationErrors seen
    failed: bool
    fail_iter: int # iteration at which the error tolerance was exceeded
    err_iter: int # iteration of the most recent evaluation error (0 if none)
    err_x: jnp.ndarray # proposed point of the most recent evaluation error


class RunOptions(NamedTuple):
    """Configuration for a single SAMC run"""
    partition: PartitionTable
    domain: Any # (lo, hi) or (d, 2) box
    niter: int = 20000
    stepsize: Any = 1.0 # scalar or (d,) proposal std-dev
    tau: float = 1.0 # temperature
    gain: GainSchedule = GainSchedule()
    trange: Tuple[float, float] = (-math.inf, math.inf) # θ truncation
    x0: Optional[Any] = None # defaults to domain midpoint
    error_tolerance: float = 0.05 # fraction of niter
    boundary: str = "reject" # or "reflect"
    chunk_size: int = 1000 # scan block length, cancellation is checked between blocks
    timeout: Optional[float] = None # seconds per interpreted energy call


class RunResult(NamedTuple):
    samples: jnp.ndarray # (n, d) positions after each iteration
    frequency: jnp.ndarray # fraction of iterations spent per bin
    counts: jnp.ndarray # visits per bin
    weights: jnp.ndarray # final θ
    accept_rate: float
    energies: jnp.ndarray # (n,) energy of each recorded sample
    bins: jnp.ndarray # (n,) bin of each recorded sample
    log_weights: jnp.ndarray # (n,) θ of the current bin after each update
    status: Status
    iterations: int # iterations completed
    n_evaluations: int
    n_domain_rejections: int
    n_errors: int
    failure: Optional[RunFailure] = None

    def raise_for_status(self) -> "RunResult":
        if self.failure is not None:
            raise self.failure
        return self


# Type aliases for clarity
EnergyCallable = Callable[[jnp.ndarray, Any], float]
Box = Tuple[jnp.ndarray, jnp.ndarray]
