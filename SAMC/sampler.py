"""
Description:
    SAMC sampler: kernel, engine and run entry points.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1

One iteration:
    1. propose x' = x + stepsize * eps
    2. out-of-box proposals are rejected without an energy call
    3. e' = H(x', data), evaluation errors count as rejections
    4. bin' from the partition, current energy and bin are cached
    5. accept with prob min(1, exp(theta[bin] - theta[bin'] + (e - e') / tau))
    6. theta += gain(t) * (1{bin == k} - pi_k), then truncated to trange
    7. record x, count the visit
"""
import logging
import math
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence, Tuple, List
import jax
import jax.numpy as jnp
import jax.random as jr
import numpy as np

from SAMC.datatypes import (
    PartitionTable, GainSchedule, SAMCState, RunOptions, RunResult, Status, locate_bin
)
from SAMC.energy import (
    as_energy, resolve_aux, payload_for, TimedEvaluator, EnergyFunction
)
from SAMC.errors import ConfigurationError, EvaluationError, RunFailure
from SAMC.gain import make_gain
from SAMC.partition import make_partition

logger = logging.getLogger(__name__)

BOUNDARY_POLICIES = ("reject", "reflect")

OPTION_NAMES = (
    "partition", "vecpi", "domain", "niter", "stepsize", "tau", "t0", "xi",
    "gain", "trange", "x0", "error_tolerance", "boundary", "chunk_size", "timeout",
)


# ============================================================================
# Options
# ============================================================================

def make_options(**kwargs) -> RunOptions:
    """
    Build RunOptions from SAMCpack-style names.

    partition may be a PartitionTable or a breakpoint sequence (paired with
    vecpi, uniform if omitted). t0 / xi configure the gain schedule.
    """
    unknown = sorted(set(kwargs) - set(OPTION_NAMES))
    if unknown:
        raise ConfigurationError(f"unknown options: {', '.join(unknown)}")
    for name in ("partition", "domain"):
        if kwargs.get(name) is None:
            raise ConfigurationError(f"option '{name}' is required")

    partition = kwargs["partition"]
    vecpi = kwargs.get("vecpi")
    if isinstance(partition, PartitionTable):
        partition = make_partition(
            partition.breakpoints, partition.vecpi if vecpi is None else vecpi
        )
    else:
        partition = make_partition(partition, vecpi)

    gain = kwargs.get("gain")
    if gain is None:
        defaults = GainSchedule()
        gain = make_gain(kwargs.get("t0", defaults.t0), kwargs.get("xi", defaults.xi))
    elif "t0" in kwargs or "xi" in kwargs:
        raise ConfigurationError("pass either gain or t0/xi, not both")

    fields = {k: v for k, v in kwargs.items() if k in RunOptions._fields}
    fields.update(partition=partition, gain=gain)
    return RunOptions(**fields)


def _positive(name: str, value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(v) or v <= 0:
        raise ConfigurationError(f"{name} must be finite and > 0, got {value}")
    return v


def _positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _float_array(name: str, value) -> np.ndarray:
    try:
        return np.asarray(value, dtype=float)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be numeric, got {value!r}") from None


def _per_dimension(name: str, value, dim: int) -> np.ndarray:
    arr = _float_array(name, value)
    if arr.ndim == 0:
        arr = np.full(dim, float(arr))
    if arr.shape != (dim,):
        raise ConfigurationError(
            f"{name} has shape {arr.shape}, expected a scalar or ({dim},)"
        )
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} must be finite")
    return arr


def _box(domain, dim: int) -> Tuple[np.ndarray, np.ndarray]:
    """(lo, hi) pair of scalars, or a (dim, 2) array of per-dimension bounds"""
    arr = _float_array("domain", domain)
    if arr.shape == (2,):
        lower, upper = np.full(dim, arr[0]), np.full(dim, arr[1])
    elif arr.shape == (dim, 2):
        lower, upper = arr[:, 0].copy(), arr[:, 1].copy()
    else:
        raise ConfigurationError(
            f"domain has shape {arr.shape}, expected (2,) or ({dim}, 2)"
        )
    if not (np.all(np.isfinite(lower)) and np.all(np.isfinite(upper))):
        raise ConfigurationError("domain bounds must be finite")
    if np.any(lower >= upper):
        raise ConfigurationError("domain needs lower < upper in every dimension")
    return lower, upper


# ============================================================================
# Kernel pieces (shared by both paths through xp = np | jnp)
# ============================================================================

def draw_randomness(key: jax.random.PRNGKey, niter: int, dim: int):
    """
    All proposal noise and acceptance uniforms for a run, drawn up front.

    Both energy paths consume the same streams, so a seed fixes the chain.
    """
    k_noise, k_u = jr.split(key)
    eps = jr.normal(k_noise, shape=(niter, dim))
    u = jr.uniform(k_u, shape=(niter,))
    return eps, u


def apply_boundary(x_prop, lower, upper, policy: str, xp=jnp):
    """
    Apply the boundary policy to a proposal.

    reject:  leave x_prop as is
    reflect: mirror once at each violated face

    Returns:
        (x_prop, inside) - inside False means reject without evaluating H
    """
    if policy == "reflect":
        x_prop = xp.where(x_prop < lower, 2 * lower - x_prop, x_prop)
        x_prop = xp.where(x_prop > upper, 2 * upper - x_prop, x_prop)
    inside = xp.all((x_prop >= lower) & (x_prop <= upper))
    return x_prop, inside


def accept_reject(log_ratio, u, xp=jnp):
    """
    Weighted Metropolis accept/reject step.

    Accept probability: min(1, exp(log_ratio)), computed without overflow.
    """
    alpha = xp.exp(xp.minimum(0.0, log_ratio))
    return u <= alpha


def update_weights(theta, current_bin, gain, vecpi, trange, xp=jnp):
    """
    Stochastic approximation step on the log-weights.

    theta[k] += gain * (1{current_bin == k} - vecpi[k]), then clipped to
    trange. The increments sum to gain * (1 - sum(vecpi)) = 0.
    """
    indicator = (xp.arange(theta.shape[0]) == current_bin).astype(theta.dtype)
    theta = theta + gain * (indicator - vecpi)
    return xp.clip(theta, trange[0], trange[1])


def gen_samc_kernel(
    energy: EnergyFunction,
    data,
    partition: PartitionTable,
    gain: GainSchedule,
    tau: float,
    trange: Tuple[float, float],
    stepsize: jnp.ndarray,
    lower: jnp.ndarray,
    upper: jnp.ndarray,
    boundary: str,
    max_errors: int
) -> Callable:
    """
    Generate the SAMC kernel for a compiled energy.

    Once the error count exceeds max_errors the state is frozen, so the
    final carry is the state at the failing iteration.

    Returns:
        SAMC kernel function for jax.lax.scan
    """
    no_energy = jnp.array(jnp.inf, dtype=jnp.float64)

    def samc_kernel(state: SAMCState, xs):
        """
        Single SAMC step.

        Args:
            state: SAMCState carry
            xs: (t, eps, u) - iteration index, proposal noise, uniform

        Returns:
            (state_out, (x, energy, bin, theta[bin])) for scan
        """
        t, eps, u = xs
        x_prop, inside = apply_boundary(
            state.x + stepsize * eps, lower, upper, boundary, jnp
        )

        # H is only evaluated for in-domain proposals
        e_prop = jax.lax.cond(
            inside,
            lambda x: energy.traced(x, data),
            lambda x: no_energy,
            x_prop,
        )
        is_error = inside & jnp.isnan(e_prop)
        feasible = inside & jnp.isfinite(e_prop)

        bin_prop = locate_bin(
            partition.breakpoints, jnp.where(feasible, e_prop, state.energy), jnp
        ).astype(jnp.int32)
        log_ratio = (
            state.theta[state.bin] - state.theta[bin_prop]
            + (state.energy - e_prop) / tau
        )
        accepted = feasible & accept_reject(log_ratio, u, jnp)

        x = jnp.where(accepted, x_prop, state.x)
        e = jnp.where(accepted, e_prop, state.energy)
        b = jnp.where(accepted, bin_prop, state.bin)
        theta = update_weights(
            state.theta, b, gain.gain_at(t), partition.vecpi, trange, jnp
        )

        n_errors = state.n_errors + is_error
        failed = n_errors > max_errors
        new_state = SAMCState(
            x=x,
            energy=e,
            bin=b,
            theta=theta,
            counts=state.counts.at[b].add(1),
            n_accept=state.n_accept + accepted,
            n_eval=state.n_eval + inside,
            n_domain_reject=state.n_domain_reject + ~inside,
            n_errors=n_errors,
            failed=failed,
            fail_iter=jnp.where(failed, t, state.fail_iter),
            err_iter=jnp.where(is_error, t, state.err_iter),
            err_x=jnp.where(is_error, x_prop, state.err_x),
        )

        active = ~state.failed
        state_out = jax.tree_util.tree_map(
            lambda new, old: jnp.where(active, new, old), new_state, state
        )
        return state_out, (state_out.x, state_out.energy, state_out.bin,
                           state_out.theta[state_out.bin])

    return samc_kernel


def init_state(x0, e0: float, bin0: int, n_bins: int) -> SAMCState:
    """Fresh carry: theta = 0, counts = 0, all counters 0"""
    x0 = jnp.asarray(x0, dtype=jnp.float64)
    zero = jnp.array(0, dtype=jnp.int32)
    return SAMCState(
        x=x0,
        energy=jnp.array(e0, dtype=jnp.float64),
        bin=jnp.array(bin0, dtype=jnp.int32),
        theta=jnp.zeros(n_bins, dtype=jnp.float64),
        counts=jnp.zeros(n_bins, dtype=jnp.int32),
        n_accept=zero,
        n_eval=zero,
        n_domain_reject=zero,
        n_errors=zero,
        failed=jnp.array(False),
        fail_iter=zero,
        err_iter=zero,
        err_x=jnp.zeros_like(x0),
    )


# ============================================================================
# Engine
# ============================================================================

class SAMCEngine:
    """
    One SAMC chain configuration.

    Construction validates the options against the dimension and probes the
    energy once at x0, so bad configurations fail before any sampling.
    Each call to run() starts a fresh chain from x0.
    """

    def __init__(
        self,
        dimension: int,
        energy,
        options: RunOptions,
        data=None,
        compiled: bool = False
    ):
        self.status = Status.INITIALIZING
        if isinstance(options, Mapping):
            options = make_options(**options)
        if not isinstance(options, RunOptions):
            raise ConfigurationError(
                f"options must be RunOptions or a mapping, got {type(options).__name__}"
            )
        self.options = options
        self.energy = as_energy(energy, compiled)
        self.aux = resolve_aux(data)
        self.data = payload_for(self.aux, self.energy)
        self._validate(dimension)
        self.e0, self.bin0 = self._probe()

    def _validate(self, dimension: int):
        opts = self.options
        self.dimension = _positive_int("dimension", dimension)
        if not isinstance(opts.partition, PartitionTable):
            raise ConfigurationError("options.partition must be a PartitionTable")
        # RunOptions may be built by hand, bypassing make_options
        self.options = opts = opts._replace(
            partition=make_partition(opts.partition.breakpoints, opts.partition.vecpi)
        )
        if not isinstance(opts.gain, GainSchedule):
            raise ConfigurationError("options.gain must be a GainSchedule")
        make_gain(opts.gain.t0, opts.gain.xi)
        _positive_int("niter", opts.niter)
        _positive_int("chunk_size", opts.chunk_size)
        self.tau = _positive("tau", opts.tau)
        self.stepsize = _per_dimension("stepsize", opts.stepsize, self.dimension)
        if np.any(self.stepsize <= 0):
            raise ConfigurationError("stepsize must be > 0")
        self.lower, self.upper = _box(opts.domain, self.dimension)

        if opts.x0 is None:
            self.x0 = 0.5 * (self.lower + self.upper)
        else:
            self.x0 = _per_dimension("x0", opts.x0, self.dimension)
            if np.any(self.x0 < self.lower) or np.any(self.x0 > self.upper):
                raise ConfigurationError(f"x0 = {self.x0} lies outside the domain")

        try:
            lo, hi = (float(v) for v in opts.trange)
        except (TypeError, ValueError):
            raise ConfigurationError(f"trange must be a (lo, hi) pair, got {opts.trange!r}") from None
        if math.isnan(lo) or math.isnan(hi) or lo >= hi:
            raise ConfigurationError(f"trange needs lo < hi, got ({lo}, {hi})")
        self.trange = (lo, hi)

        tol = float(opts.error_tolerance)
        if not (0.0 <= tol <= 1.0):
            raise ConfigurationError(f"error_tolerance must lie in [0, 1], got {tol}")
        self.max_errors = int(math.floor(tol * opts.niter))

        if opts.boundary not in BOUNDARY_POLICIES:
            raise ConfigurationError(
                f"boundary must be one of {BOUNDARY_POLICIES}, got {opts.boundary!r}"
            )
        if opts.timeout is not None:
            _positive("timeout", opts.timeout)
            if self.energy.compiled:
                logger.warning("timeout is ignored for compiled energies")

    def _probe(self) -> Tuple[float, int]:
        """Evaluate H once at x0; failures here are configuration errors"""
        try:
            e0 = self.energy.evaluate(self.x0, self.data, 0)
        except EvaluationError as err:
            raise ConfigurationError(f"energy probe at x0 failed: {err}") from err
        if not math.isfinite(e0):
            raise ConfigurationError(f"energy at x0 = {self.x0} is {e0}, expected finite")
        if self.energy.compiled:
            self._trace_check()
        return e0, self.options.partition.bin_index_of(e0)

    def _trace_check(self):
        """A compiled energy must also trace to a scalar under jit"""
        try:
            out = jax.eval_shape(
                lambda x: self.energy.fn(x, self.data), jnp.asarray(self.x0)
            )
        except Exception as err:
            raise ConfigurationError(
                f"compiled energy is not jax-traceable: {type(err).__name__}: {err}"
            ) from err
        if not isinstance(out, jax.ShapeDtypeStruct) or math.prod(out.shape) != 1:
            raise ConfigurationError(
                f"compiled energy traced to {out}, expected a scalar array"
            )

    def run(self, seed=0, cancel=None) -> RunResult:
        """
        Run the chain.

        Args:
            seed: int seed or jax PRNG key
            cancel: optional threading.Event. The interpreted path checks it
                every iteration; the compiled path checks it between scan
                blocks, so a cancel can take up to options.chunk_size
                iterations to land.

        Returns:
            RunResult, partial if the run failed or was cancelled
        """
        opts = self.options
        key = seed if isinstance(seed, jax.Array) else jr.PRNGKey(seed)
        eps, u = draw_randomness(key, opts.niter, self.dimension)

        self.status = Status.RUNNING
        logger.info(
            "SAMC run: dim=%d niter=%d bins=%d energy=%s",
            self.dimension, opts.niter, opts.partition.n_bins,
            "compiled" if self.energy.compiled else "interpreted",
        )
        try:
            if self.energy.compiled:
                result = self._run_compiled(eps, u, cancel)
            else:
                result = self._run_interpreted(np.asarray(eps), np.asarray(u), cancel)
        except Exception:
            self.status = Status.FAILED
            raise
        self.status = result.status

        if result.status is Status.FAILED:
            logger.warning("SAMC run failed: %s", result.failure)
        elif result.status is Status.CANCELLED:
            logger.warning("SAMC run cancelled after %d iterations", result.iterations)
        logger.info(
            "SAMC run %s: %d iterations, accept rate %.3f, %d evaluations, %d errors",
            result.status.value, result.iterations, result.accept_rate,
            result.n_evaluations, result.n_errors,
        )
        return result

    def _run_interpreted(self, eps: np.ndarray, u: np.ndarray, cancel) -> RunResult:
        opts = self.options
        partition = opts.partition
        breakpoints = np.asarray(partition.breakpoints)
        vecpi = np.asarray(partition.vecpi)
        n_bins = partition.n_bins
        niter, dim = eps.shape

        x, e, b = self.x0.copy(), self.e0, self.bin0
        theta = np.zeros(n_bins)
        counts = np.zeros(n_bins, dtype=np.int64)
        samples = np.empty((niter, dim))
        energies = np.empty(niter)
        bins = np.empty(niter, dtype=np.int64)
        log_weights = np.empty(niter)

        n_accept = n_eval = n_domain = n_errors = 0
        last_error = None
        failure = None
        status = Status.DONE
        n_done = niter

        with TimedEvaluator(self.energy, opts.timeout) as evaluate:
            for i in range(niter):
                if cancel is not None and cancel.is_set():
                    status, n_done = Status.CANCELLED, i
                    break
                t = i + 1
                x_prop, inside = apply_boundary(
                    x + self.stepsize * eps[i], self.lower, self.upper, opts.boundary, np
                )
                if not inside:
                    n_domain += 1
                else:
                    n_eval += 1
                    try:
                        e_prop = evaluate(x_prop, self.data, t)
                    except EvaluationError as err:
                        n_errors += 1
                        last_error = err
                        logger.debug("rejecting proposal: %s", err)
                    else:
                        # infinite energies are forbidden regions
                        if math.isfinite(e_prop):
                            b_prop = int(locate_bin(breakpoints, e_prop, np))
                            log_ratio = theta[b] - theta[b_prop] + (e - e_prop) / self.tau
                            if accept_reject(log_ratio, u[i], np):
                                x, e, b = x_prop, e_prop, b_prop
                                n_accept += 1

                theta = update_weights(theta, b, opts.gain.gain_at(t), vecpi, self.trange, np)
                counts[b] += 1
                samples[i] = x
                energies[i] = e
                bins[i] = b
                log_weights[i] = theta[b]

                if n_errors > self.max_errors:
                    status, n_done = Status.FAILED, t
                    failure = self._failure(n_errors, t, last_error)
                    break

        return self._result(
            samples[:n_done], energies[:n_done], bins[:n_done], log_weights[:n_done],
            counts, theta, status, n_done, n_accept, n_eval, n_domain, n_errors, failure,
        )

    def _run_compiled(self, eps: jnp.ndarray, u: jnp.ndarray, cancel) -> RunResult:
        opts = self.options
        partition = opts.partition
        kernel = gen_samc_kernel(
            self.energy,
            self.data,
            partition,
            opts.gain,
            self.tau,
            self.trange,
            jnp.asarray(self.stepsize),
            jnp.asarray(self.lower),
            jnp.asarray(self.upper),
            opts.boundary,
            self.max_errors,
        )
        run_block = jax.jit(lambda carry, xs: jax.lax.scan(kernel, carry, xs))

        state = init_state(self.x0, self.e0, self.bin0, partition.n_bins)
        ts = jnp.arange(1, opts.niter + 1, dtype=jnp.int32)
        blocks = []
        status = Status.DONE
        n_done = 0
        for start in range(0, opts.niter, opts.chunk_size):
            if cancel is not None and cancel.is_set():
                status = Status.CANCELLED
                break
            stop = min(start + opts.chunk_size, opts.niter)
            state, out = run_block(state, (ts[start:stop], eps[start:stop], u[start:stop]))
            blocks.append(out)
            n_done = stop
            if bool(state.failed):
                status = Status.FAILED
                n_done = int(state.fail_iter)
                break

        if blocks:
            samples, energies, bins, log_weights = (
                jnp.concatenate(parts)[:n_done] for parts in zip(*blocks)
            )
        else:
            samples = jnp.zeros((0, self.dimension))
            energies = log_weights = jnp.zeros(0)
            bins = jnp.zeros(0, dtype=jnp.int32)

        n_errors = int(state.n_errors)
        last_error = None
        if n_errors:
            last_error = EvaluationError(
                "energy returned NaN", int(state.err_iter), np.asarray(state.err_x)
            )
        failure = None
        if status is Status.FAILED:
            failure = self._failure(n_errors, n_done, last_error)

        return self._result(
            samples, energies, bins, log_weights, state.counts, state.theta,
            status, n_done, int(state.n_accept), int(state.n_eval),
            int(state.n_domain_reject), n_errors, failure,
        )

    def _failure(self, n_errors: int, iteration: int, error: Optional[EvaluationError]) -> RunFailure:
        tol = self.options.error_tolerance
        return RunFailure(
            f"{n_errors} evaluation errors exceed the tolerance of {self.max_errors} "
            f"({tol:.2%} of {self.options.niter} iterations)",
            iteration,
            None if error is None else error.point,
            error,
        )

    def _result(
        self, samples, energies, bins, log_weights, counts, theta, status,
        n_done, n_accept, n_eval, n_domain, n_errors, failure
    ) -> RunResult:
        counts = jnp.asarray(counts)
        frequency = counts / n_done if n_done else jnp.zeros(counts.shape[0])
        return RunResult(
            samples=jnp.asarray(samples),
            frequency=frequency,
            counts=counts,
            weights=jnp.asarray(theta),
            accept_rate=n_accept / n_done if n_done else 0.0,
            energies=jnp.asarray(energies),
            bins=jnp.asarray(bins),
            log_weights=jnp.asarray(log_weights),
            status=status,
            iterations=n_done,
            n_evaluations=n_eval,
            n_domain_rejections=n_domain,
            n_errors=n_errors,
            failure=failure,
        )


# ============================================================================
# Entry points
# ============================================================================

def run(
    dimension: int,
    energy,
    options,
    data=None,
    seed=0,
    cancel=None,
    compiled: bool = False
) -> RunResult:
    """
    Run a single SAMC chain.

    Args:
        dimension: dimension d of x
        energy: InterpretedEnergy, CompiledEnergy or a bare callable
            energy(x, data) -> float (bare callables are interpreted unless
            compiled=True)
        options: RunOptions or a mapping accepted by make_options
        data: auxiliary data passed unchanged to every energy call
        seed: int seed or jax PRNG key
        cancel: optional threading.Event for cooperative cancellation

    Returns:
        RunResult
    """
    engine = SAMCEngine(dimension, energy, options, data, compiled)
    return engine.run(seed, cancel)


def run_chains(
    dimension: int,
    energy,
    options,
    seeds: Sequence[int],
    data=None,
    max_workers: Optional[int] = None,
    cancel=None,
    compiled: bool = False
) -> List[RunResult]:
    """
    Independent chains, one engine per seed, run on a thread pool.

    Chains share only the immutable partition and gain schedule.
    """
    engines = [SAMCEngine(dimension, energy, options, data, compiled) for _ in seeds]
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="samc-chain") as pool:
        futures = [pool.submit(engine.run, seed, cancel) for engine, seed in zip(engines, seeds)]
        return [f.result() for f in futures]

