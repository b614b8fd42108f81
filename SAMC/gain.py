"""
Description:
    Gain (step-size) schedule for the stochastic approximation update.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1
"""
import math
import jax.numpy as jnp

from SAMC.datatypes import GainSchedule
from SAMC.errors import ConfigurationError


def make_gain(t0: float = 1000.0, xi: float = 1.0) -> GainSchedule:
    """
    gain(t) = (t0 / max(t0, t)) ** xi

    Equal to 1 for t <= t0 then decays like t^-xi. xi in (0.5, 1] keeps
    sum(gain) infinite and sum(gain^2) finite.
    """
    if not math.isfinite(t0) or t0 <= 0:
        raise ConfigurationError(f"t0 must be finite and > 0, got {t0}")
    if not (0.5 < xi <= 1.0):
        raise ConfigurationError(f"xi must lie in (0.5, 1], got {xi}")
    return GainSchedule(t0=float(t0), xi=float(xi))


def gain_sequence(schedule: GainSchedule, n: int) -> jnp.ndarray:
    """gain_at(t) for t = 1..n"""
    t = jnp.arange(1, n + 1)
    return schedule.gain_at(t)
