"""
Description:
    Energy function capability: interpreted and compiled variants.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1

Both variants honour the same contract, energy(x, data) -> float, and are
chosen once when the engine is built:
    InterpretedEnergy: any python callable, called eagerly with numpy inputs
    CompiledEnergy:    a jax-traceable callable, the whole run is compiled
"""
import logging
import math
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import NamedTuple, Optional, Union
import jax
import jax.numpy as jnp
import numpy as np

from SAMC.datatypes import AuxData, EnergyCallable
from SAMC.errors import ConfigurationError, EvaluationError

logger = logging.getLogger(__name__)


def _as_scalar(value, iteration: int, x) -> float:
    """Coerce an energy value to float, NaN and non-scalars are contract violations"""
    arr = np.asarray(value)
    if arr.size != 1:
        raise EvaluationError(
            f"energy returned shape {arr.shape}, expected a scalar", iteration, x
        )
    e = float(arr.reshape(()))
    if math.isnan(e):
        raise EvaluationError("energy returned NaN", iteration, x)
    return e


class InterpretedEnergy(NamedTuple):
    """Slow path: arbitrary python logic, evaluated once per proposal"""
    fn: EnergyCallable
    compiled = False

    def evaluate(self, x, data, iteration: int = 0) -> float:
        try:
            value = self.fn(x, data)
        except Exception as err:
            raise EvaluationError(
                f"energy raised {type(err).__name__}: {err}", iteration, x
            ) from err
        return _as_scalar(value, iteration, x)


class CompiledEnergy(NamedTuple):
    """Fast path: jax-traceable energy, fused into the scan kernel"""
    fn: EnergyCallable
    compiled = True

    def evaluate(self, x, data, iteration: int = 0) -> float:
        """Eager evaluation, used for the probe call at x0"""
        try:
            value = self.fn(jnp.asarray(x), data)
        except Exception as err:
            raise EvaluationError(
                f"energy raised {type(err).__name__}: {err}", iteration, x
            ) from err
        return _as_scalar(value, iteration, x)

    def traced(self, x: jnp.ndarray, data) -> jnp.ndarray:
        """Scalar energy inside jit / scan"""
        return jnp.reshape(jnp.asarray(self.fn(x, data), dtype=jnp.float64), ())


EnergyFunction = Union[InterpretedEnergy, CompiledEnergy]


def as_energy(fn, compiled: bool = False) -> EnergyFunction:
    """Bind a callable to an energy strategy; energies pass through unchanged"""
    if isinstance(fn, (InterpretedEnergy, CompiledEnergy)):
        return fn
    if not callable(fn):
        raise ConfigurationError(f"energy must be callable, got {type(fn).__name__}")
    if compiled:
        return CompiledEnergy(fn)
    return InterpretedEnergy(fn)


def resolve_aux(data) -> AuxData:
    """
    Resolve auxiliary data to its variant once, before the loop.

    None -> none, 1-D numeric -> vector, 2-D numeric -> matrix,
    mappings, NamedTuples and ragged sequences -> structured.
    """
    if isinstance(data, AuxData):
        return data
    if data is None:
        return AuxData("none", None)
    if isinstance(data, Mapping):
        return AuxData("structured", {k: _leaf(v) for k, v in data.items()})
    if isinstance(data, tuple) and hasattr(data, "_fields"):
        return AuxData("structured", type(data)(*[_leaf(v) for v in data]))
    try:
        arr = np.asarray(data, dtype=float)
    except (TypeError, ValueError):
        if isinstance(data, (list, tuple)):
            return AuxData("structured", tuple(_leaf(v) for v in data))
        raise ConfigurationError(
            f"unsupported auxiliary data type {type(data).__name__}"
        ) from None
    if arr.ndim == 0:
        arr = arr.reshape(1)
    if arr.ndim == 1:
        return AuxData("vector", arr)
    if arr.ndim == 2:
        return AuxData("matrix", arr)
    raise ConfigurationError(
        f"auxiliary arrays must be 1-D or 2-D, got {arr.ndim}-D"
    )


def _leaf(v):
    """Numeric leaves become arrays, anything else is kept as is"""
    if isinstance(v, (str, bytes)):
        return v
    try:
        return np.asarray(v, dtype=float)
    except (TypeError, ValueError):
        return v


def payload_for(aux: AuxData, energy: EnergyFunction):
    """Payload in the array type the energy variant consumes"""
    if aux.payload is None or not energy.compiled:
        return aux.payload
    try:
        return jax.tree_util.tree_map(jnp.asarray, aux.payload)
    except TypeError as err:
        raise ConfigurationError(
            f"{aux.kind} auxiliary data is not usable by a compiled energy: {err}"
        ) from err


class TimedEvaluator:
    """
    Calls an interpreted energy with an optional per-call timeout.

    A timed-out call cannot be interrupted; its worker thread is abandoned
    and a fresh one is started for the next call.
    """
    def __init__(self, energy: InterpretedEnergy, timeout: Optional[float] = None):
        self.energy = energy
        self.timeout = timeout
        self._executor = None

    def __call__(self, x, data, iteration: int) -> float:
        if self.timeout is None:
            return self.energy.evaluate(x, data, iteration)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="samc-energy"
            )
        future = self._executor.submit(self.energy.evaluate, x, data, iteration)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            logger.warning(
                "energy call timed out after %.3gs at iteration %d", self.timeout, iteration
            )
            raise EvaluationError(
                f"energy call timed out after {self.timeout}s", iteration, x
            ) from None

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
