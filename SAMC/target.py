"""
Description:
    Test energy generators.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1

Every generator takes xp (numpy or jax.numpy) so the same H can be handed
to the interpreted path (xp=np) and the compiled path (xp=jnp).
"""
import numpy as np
import jax.numpy as jnp

from SAMC.datatypes import EnergyCallable


def gen_quadratic(
        dim: int = 1,
        precision_matrix=None,
        xp=jnp
) -> EnergyCallable:
    """H(x) = 0.5 x^T P x, P = 2I by default so H(x) = |x|^2"""
    if precision_matrix is None:
        precision_matrix = 2.0 * np.eye(dim)
    precision_matrix = xp.asarray(precision_matrix)

    def energy(x, data=None):
        return 0.5 * xp.dot(x, precision_matrix @ x)

    return energy


def gen_abs(xp=jnp) -> EnergyCallable:
    """H(x) = sum |x_i|, equal x-volume per energy level in 1-D"""
    def energy(x, data=None):
        return xp.sum(xp.abs(x))

    return energy


def gen_double_well(
        barrier: float = 4.0,
        tilt: float = 0.0,
        xp=jnp
) -> EnergyCallable:
    """H(x) = barrier * sum (x_i^2 - 1)^2 + tilt * x_0, minima near x = +-1"""
    def energy(x, data=None):
        return barrier * xp.sum((x ** 2 - 1.0) ** 2) + tilt * x[0]

    return energy


def gen_mixture(xp=jnp) -> EnergyCallable:
    """
    Gaussian mixture energy parameterised by auxiliary data.

    data: (n_components, dim) matrix of unit-variance component means.
    H(x) = -log sum_i exp(-0.5 |x - mu_i|^2)
    """
    def energy(x, data):
        sq = xp.sum((data - x) ** 2, axis=1)
        m = xp.min(sq)
        return 0.5 * m - xp.log(xp.sum(xp.exp(-0.5 * (sq - m))))

    return energy


def gen_scaled_quadratic(xp=jnp) -> EnergyCallable:
    """
    Quadratic with a structured auxiliary record.

    data: {"center": (dim,), "scale": ()}; H(x) = scale * |x - center|^2
    """
    def energy(x, data):
        return data["scale"] * xp.sum((x - data["center"]) ** 2)

    return energy
