"""
Description:
    Energy partition construction and validation.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1
"""
import numpy as np
import jax.numpy as jnp

from SAMC.datatypes import PartitionTable
from SAMC.errors import ConfigurationError

PROB_TOL = 1e-8


def make_partition(breakpoints, vecpi=None) -> PartitionTable:
    """
    Build a validated PartitionTable.

    Args:
        breakpoints: K+1 strictly increasing energy levels. Only the outer
            two may be infinite (-inf first, +inf last).
        vecpi: K positive target probabilities summing to 1. Uniform if None.

    Returns:
        PartitionTable
    """
    b = np.asarray(breakpoints, dtype=float).ravel()
    if b.shape[0] < 2:
        raise ConfigurationError(
            f"partition needs at least 2 breakpoints, got {b.shape[0]}"
        )
    if np.any(np.isnan(b)):
        raise ConfigurationError("partition contains NaN")
    if not np.all(np.isfinite(b[1:-1])):
        raise ConfigurationError("only the outer breakpoints may be infinite")
    if b[0] == np.inf or b[-1] == -np.inf:
        raise ConfigurationError("outer breakpoints have the wrong sign of infinity")
    if not np.all(np.diff(b) > 0):
        raise ConfigurationError("partition breakpoints must be strictly increasing")

    n_bins = b.shape[0] - 1
    if vecpi is None:
        pi = np.full(n_bins, 1.0 / n_bins)
    else:
        pi = np.asarray(vecpi, dtype=float).ravel()
    if pi.shape[0] != n_bins:
        raise ConfigurationError(
            f"vecpi has {pi.shape[0]} entries for {n_bins} bins"
        )
    if not np.all(np.isfinite(pi)) or np.any(pi <= 0):
        raise ConfigurationError("vecpi entries must be finite and > 0")
    if abs(pi.sum() - 1.0) > PROB_TOL:
        raise ConfigurationError(f"vecpi sums to {pi.sum():.12g}, expected 1")

    return PartitionTable(breakpoints=jnp.asarray(b), vecpi=jnp.asarray(pi))


def uniform_partition(emin: float, emax: float, n_bins: int, vecpi=None) -> PartitionTable:
    """
    n_bins equal-width bins over [emin, emax]; the outer edges are opened
    to -inf / +inf so every energy has a bin.
    """
    if n_bins < 1:
        raise ConfigurationError("n_bins must be >= 1")
    if not (np.isfinite(emin) and np.isfinite(emax)) or emin >= emax:
        raise ConfigurationError(f"need finite emin < emax, got [{emin}, {emax}]")
    b = np.linspace(emin, emax, n_bins + 1)
    b[0] = -np.inf
    b[-1] = np.inf
    return make_partition(b, vecpi)


def interior_partition(levels, vecpi=None) -> PartitionTable:
    """
    Partition from interior split levels only: len(levels)+1 bins with
    open outer edges. [1.0] gives (-inf, 1) and [1, inf).
    """
    levels = np.asarray(levels, dtype=float).ravel()
    b = np.concatenate([[-np.inf], levels, [np.inf]])
    return make_partition(b, vecpi)
