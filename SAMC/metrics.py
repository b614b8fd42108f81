"""
Description:
    SAMC diagnostics and estimates.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1
"""
import jax.numpy as jnp
import numpy as np
from typing import Callable

from SAMC.datatypes import RunResult, PartitionTable


def kl_divergence(p, q, eps: float = 1e-12) -> float:
    """KL(p || q) for two histograms, both renormalised"""
    p = np.asarray(p, dtype=float) + eps
    q = np.asarray(q, dtype=float) + eps
    p /= p.sum()
    q /= q.sum()
    return float(np.sum(p * np.log(p / q)))


def max_relative_deviation(frequency, vecpi) -> float:
    """max_k |freq_k - pi_k| / pi_k"""
    f = np.asarray(frequency, dtype=float)
    pi = np.asarray(vecpi, dtype=float)
    return float(np.max(np.abs(f - pi) / pi))


def log_density_of_bins(result: RunResult, partition: PartitionTable) -> jnp.ndarray:
    """
    SAMC estimate of log int_{E_k} exp(-H/tau) dx, up to a common constant.

    theta_k converges to log g_k - log pi_k + c, normalised here so the
    first bin has log density 0. Bins never visited stay uninformative.
    """
    log_g = result.weights + jnp.log(partition.vecpi)
    return log_g - log_g[0]


def importance_weights(result: RunResult, burn: int = 1000) -> jnp.ndarray:
    """
    Normalised weights exp(theta_t[J(x_t)]) that turn the SAMC trace into
    draws from exp(-H/tau).

    The first burn iterations are dropped: while the gain is still large
    theta has not settled and those weights dominate the sum. The default
    matches the default gain t0.
    """
    lw = _burned(result.log_weights, burn)
    lw = lw - jnp.max(lw)
    w = jnp.exp(lw)
    return w / jnp.sum(w)


def weighted_mean(result: RunResult, fn: Callable = None, burn: int = 1000) -> jnp.ndarray:
    """E[fn(x)] under exp(-H/tau) from the re-weighted trace (fn = identity by default)"""
    w = importance_weights(result, burn)
    samples = _burned(result.samples, burn)
    values = samples if fn is None else jnp.stack([fn(x) for x in samples])
    return jnp.tensordot(w, values, axes=1)


def _burned(trace, burn: int):
    if burn < 0 or burn >= trace.shape[0]:
        raise ValueError(
            f"burn must lie in [0, {trace.shape[0]}) for a trace of that length, got {burn}"
        )
    return trace[burn:]
