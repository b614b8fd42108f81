"""
Test suite for the SAMC implementation.

Checks the partition, gain schedule and weight update in isolation, then
runs full chains on small energies with known behaviour.
"""

import threading
import time

import jax
import jax.numpy as jnp
import numpy as np
import pytest

import SAMC
from SAMC.datatypes import GainSchedule, PartitionTable, RunOptions, RunResult, Status
from SAMC.energy import CompiledEnergy, InterpretedEnergy, TimedEvaluator, resolve_aux
from SAMC.errors import ConfigurationError, EvaluationError, RunFailure
from SAMC.gain import gain_sequence, make_gain
from SAMC.metrics import (
    importance_weights, kl_divergence, log_density_of_bins, max_relative_deviation,
    weighted_mean,
)
from SAMC.partition import interior_partition, make_partition, uniform_partition
from SAMC.sampler import (
    SAMCEngine, accept_reject, apply_boundary, make_options, run, run_chains,
    update_weights,
)
from SAMC.target import (
    gen_abs, gen_double_well, gen_mixture, gen_quadratic, gen_scaled_quadratic,
)

INF = float("inf")


def quadratic_options(**overrides):
    """1-D H(x) = x^2 on [-3, 3], two bins split at H = 1"""
    opts = dict(
        partition=[-INF, 1.0, INF],
        vecpi=[0.5, 0.5],
        domain=(-3.0, 3.0),
        niter=50000,
        stepsize=0.5,
    )
    opts.update(overrides)
    return make_options(**opts)


class CountingEnergy:
    """Interpreted H(x) = |x|^2 that counts its calls"""
    def __init__(self):
        self.calls = 0

    def __call__(self, x, data):
        self.calls += 1
        return float(x @ x)


# ============================================================================
# Partition
# ============================================================================

def test_bin_index_half_open_and_clamped():
    """Breakpoints belong to the bin on their right, outliers clamp"""
    partition = make_partition([-INF, 0.0, 1.0, 2.0])
    assert partition.n_bins == 3
    assert partition.bin_index_of(-5.0) == 0
    assert partition.bin_index_of(0.0) == 1
    assert partition.bin_index_of(0.5) == 1
    assert partition.bin_index_of(1.0) == 2
    assert partition.bin_index_of(50.0) == 2
    assert partition.bin_index_of(-INF) == 0

    finite = make_partition([0.0, 1.0, 2.0])
    assert finite.bin_index_of(-1.0) == 0
    assert finite.bin_index_of(3.0) == 1


def test_bin_index_monotone_and_idempotent():
    partition = uniform_partition(0.0, 9.0, 41)
    energies = np.linspace(-2.0, 12.0, 500)
    bins = [partition.bin_index_of(e) for e in energies]
    assert all(b0 <= b1 for b0, b1 in zip(bins[:-1], bins[1:]))
    assert bins == [partition.bin_index_of(e) for e in energies]
    assert min(bins) == 0 and max(bins) == 40

    # traced lookup agrees with the concrete one
    traced = jax.jit(partition.bin_index_of)(jnp.asarray(energies))
    np.testing.assert_array_equal(np.asarray(traced), np.asarray(bins))


def test_make_partition_defaults_to_uniform():
    partition = make_partition([-INF, 1.0, 2.0, INF])
    np.testing.assert_allclose(partition.vecpi, np.full(3, 1 / 3))
    assert partition.target_probability(1) == pytest.approx(1 / 3)


@pytest.mark.parametrize(
    "breakpoints, vecpi",
    [
        ([0.0, 1.0, 1.0], None),          # not strictly increasing
        ([0.0, 2.0, 1.0], None),
        ([0.0, float("nan"), 1.0], None),
        ([0.0, INF, 2.0], None),          # inner breakpoint infinite
        ([5.0], None),                    # no bins
        ([-INF, 0.0, INF], [0.5, 0.4]),   # does not sum to 1
        ([-INF, 0.0, INF], [1.5, -0.5]),  # negative probability
        ([-INF, 0.0, INF], [1.0]),        # wrong length
        ([-INF, 0.0, INF], [1.0, 0.0]),   # zero probability
    ],
)
def test_make_partition_rejects_invalid(breakpoints, vecpi):
    with pytest.raises(ConfigurationError):
        make_partition(breakpoints, vecpi)


def test_uniform_and_interior_partitions():
    partition = uniform_partition(0.0, 4.1, 41)
    assert partition.breakpoints.shape == (42,)
    assert partition.breakpoints[0] == -INF and partition.breakpoints[-1] == INF
    np.testing.assert_allclose(np.diff(partition.breakpoints[1:-1]), 0.1)

    split = interior_partition([1.0], vecpi=[0.25, 0.75])
    np.testing.assert_array_equal(split.breakpoints, [-INF, 1.0, INF])
    assert split.target_probability(1) == pytest.approx(0.75)


# ============================================================================
# Gain schedule and weight update
# ============================================================================

def test_gain_schedule_values():
    gain = make_gain(t0=10, xi=1.0)
    assert gain.gain_at(1) == 1.0
    assert gain.gain_at(10) == 1.0
    assert gain.gain_at(20) == pytest.approx(0.5)

    seq = np.asarray(gain_sequence(make_gain(t0=50, xi=0.7), 5000))
    assert np.all(seq > 0)
    assert np.all(np.diff(seq) <= 0)
    assert seq[-1] == pytest.approx((50 / 5000) ** 0.7)


@pytest.mark.parametrize("t0, xi", [(0.0, 1.0), (-5.0, 0.8), (100.0, 0.5), (100.0, 1.2)])
def test_make_gain_rejects_invalid(t0, xi):
    with pytest.raises(ConfigurationError):
        make_gain(t0, xi)


@pytest.mark.parametrize("xp", [np, jnp])
def test_weight_update_is_additive_and_conserving(xp):
    """Visited bin rises by gain*(1 - pi), the rest fall by gain*pi, total change 0"""
    vecpi = xp.asarray([0.1, 0.2, 0.3, 0.4])
    theta = xp.asarray([0.5, -1.0, 2.0, 0.0])
    new = update_weights(theta, 2, 0.25, vecpi, (-INF, INF), xp)
    delta = np.asarray(new) - np.asarray(theta)

    np.testing.assert_allclose(delta, 0.25 * (np.array([0, 0, 1, 0]) - np.asarray(vecpi)))
    assert delta.sum() == pytest.approx(0.0, abs=1e-12)


def test_weight_update_truncation():
    theta = np.array([0.95, -0.95])
    new = update_weights(theta, 0, 1.0, np.array([0.5, 0.5]), (-1.0, 1.0), np)
    np.testing.assert_array_equal(new, [1.0, -1.0])


def test_accept_reject_limits():
    assert accept_reject(800.0, 0.999999, np)
    assert not accept_reject(-800.0, 1e-300, np)
    assert bool(accept_reject(jnp.array(0.0), jnp.array(1.0), jnp))


def test_apply_boundary_policies():
    lower, upper = np.array([0.0, 0.0]), np.array([1.0, 1.0])
    x, inside = apply_boundary(np.array([1.2, 0.5]), lower, upper, "reject", np)
    assert not inside
    x, inside = apply_boundary(np.array([1.2, -0.1]), lower, upper, "reflect", np)
    assert inside
    np.testing.assert_allclose(x, [0.8, 0.1])
    _, inside = apply_boundary(np.array([3.5, 0.5]), lower, upper, "reflect", np)
    assert not inside


# ============================================================================
# Energy functions and auxiliary data
# ============================================================================

def test_interpreted_energy_contract_violations():
    def raising(x, data):
        raise RuntimeError("boom")

    with pytest.raises(EvaluationError) as err:
        InterpretedEnergy(raising).evaluate(np.array([1.5]), None, 7)
    assert err.value.iteration == 7
    np.testing.assert_array_equal(err.value.point, [1.5])
    assert isinstance(err.value.__cause__, RuntimeError)

    with pytest.raises(EvaluationError, match="NaN"):
        InterpretedEnergy(lambda x, d: float("nan")).evaluate(np.zeros(1), None)
    with pytest.raises(EvaluationError, match="scalar"):
        InterpretedEnergy(lambda x, d: np.ones(3)).evaluate(np.zeros(1), None)
    assert InterpretedEnergy(lambda x, d: -INF).evaluate(np.zeros(1), None) == -INF


def test_compiled_energy_matches_interpreted():
    x = np.array([0.3, -1.2])
    compiled = CompiledEnergy(gen_double_well(xp=jnp))
    interpreted = InterpretedEnergy(gen_double_well(xp=np))
    assert compiled.evaluate(x, None) == pytest.approx(interpreted.evaluate(x, None))
    assert float(compiled.traced(jnp.asarray(x), None)) == pytest.approx(
        interpreted.evaluate(x, None)
    )


def test_resolve_aux_variants():
    assert resolve_aux(None).kind == "none"
    assert resolve_aux([1.0, 2.0]).kind == "vector"
    assert resolve_aux(3.0).payload.shape == (1,)
    assert resolve_aux(np.eye(2)).kind == "matrix"
    record = resolve_aux({"center": [0.0, 1.0], "scale": 2, "label": "run-a"})
    assert record.kind == "structured"
    assert record.payload["label"] == "run-a"
    np.testing.assert_array_equal(record.payload["center"], [0.0, 1.0])
    assert resolve_aux([np.zeros(2), np.zeros(3)]).kind == "structured"
    with pytest.raises(ConfigurationError):
        resolve_aux(np.zeros((2, 2, 2)))


def test_timed_evaluator_times_out():
    def slow(x, data):
        time.sleep(0.5)
        return 0.0

    with TimedEvaluator(InterpretedEnergy(slow), timeout=0.05) as evaluate:
        with pytest.raises(EvaluationError, match="timed out"):
            evaluate(np.zeros(1), None, 3)


# ============================================================================
# Options and engine construction
# ============================================================================

def test_make_options_samcpack_names():
    opts = quadratic_options(t0=200, xi=0.75, tau=2.0, trange=(-50.0, 50.0))
    assert opts.gain == GainSchedule(t0=200.0, xi=0.75)
    assert opts.tau == 2.0
    assert opts.partition.n_bins == 2
    assert opts.boundary == "reject"

    with pytest.raises(ConfigurationError, match="unknown"):
        quadratic_options(temperature=2.0)
    with pytest.raises(ConfigurationError, match="domain"):
        make_options(partition=[-INF, 0.0, INF])


@pytest.mark.parametrize(
    "dimension, overrides",
    [
        (2, dict(domain=np.zeros((3, 2)))),            # dimension mismatch
        (1, dict(domain=(1.0, -1.0))),                 # empty box
        (1, dict(domain=(-INF, 1.0))),                 # non-finite box
        (2, dict(stepsize=[0.5, 0.5, 0.5])),
        (1, dict(stepsize=-0.1)),
        (1, dict(tau=0.0)),
        (1, dict(tau=float("nan"))),
        (1, dict(niter=0)),
        (1, dict(x0=[5.0])),
        (1, dict(boundary="wrap")),
        (1, dict(error_tolerance=1.5)),
        (1, dict(trange=(1.0, -1.0))),
        (0, dict()),
    ],
)
def test_engine_rejects_invalid_options(dimension, overrides):
    with pytest.raises(ConfigurationError):
        SAMCEngine(dimension, lambda x, d: float(x @ x), quadratic_options(**overrides))


def test_probe_failures_are_configuration_errors():
    def broken(x, data):
        raise ValueError("bad model")

    with pytest.raises(ConfigurationError, match="probe"):
        run(1, broken, quadratic_options(niter=10))
    with pytest.raises(ConfigurationError, match="finite"):
        run(1, lambda x, d: INF, quadratic_options(niter=10))


@pytest.mark.parametrize(
    "table",
    [
        PartitionTable(jnp.array([-INF, 2.0, 1.0, INF]), jnp.full(3, 1 / 3)),  # unsorted
        PartitionTable(jnp.array([-INF, 1.0, INF]), jnp.array([0.9, 0.3])),     # sum != 1
        PartitionTable(jnp.array([-INF, 1.0, INF]), jnp.array([1.0])),          # wrong length
    ],
)
def test_hand_built_partition_is_validated(table):
    with pytest.raises(ConfigurationError):
        quadratic_options(partition=table, vecpi=None)

    opts = RunOptions(partition=table, domain=(-3.0, 3.0), niter=10)
    with pytest.raises(ConfigurationError):
        SAMCEngine(1, lambda x, d: float(x @ x), opts)


def test_untraceable_compiled_energy_rejected_at_construction():
    # fine when called eagerly at x0, breaks under jit
    def concrete_only(x, data):
        return float(x @ x)

    with pytest.raises(ConfigurationError, match="traceable"):
        SAMCEngine(1, concrete_only, quadratic_options(niter=100), compiled=True)

    def branchy(x, data):
        return x[0] ** 2 if x[0] > 0 else -x[0]

    with pytest.raises(ConfigurationError, match="traceable"):
        run(1, branchy, quadratic_options(niter=100), compiled=True)


def test_compiled_engine_accepts_size_one_output():
    engine = SAMCEngine(1, lambda x, d: x ** 2, quadratic_options(niter=100), compiled=True)
    assert engine.e0 == 0.0
    assert engine.run(seed=0).status is Status.DONE


def test_package_namespace_runs_docstring_example():
    options = SAMC.make_options(
        partition=[-INF, 1.0, INF],
        vecpi=[0.5, 0.5],
        domain=(-3.0, 3.0),
        niter=500,
        stepsize=0.5,
    )
    result = SAMC.run(1, lambda x, data: float(x @ x), options, seed=0)
    assert result.status is SAMC.Status.DONE
    assert result.frequency.shape == (2,)
    assert float(jnp.sum(result.frequency)) == pytest.approx(1.0)


def test_module_headers_name_this_environment():
    from SAMC import datatypes, energy, errors, gain, metrics, partition, sampler, target
    for module in (datatypes, energy, errors, gain, metrics, partition, sampler, target):
        assert "USE THE CORRECT ENVIRONMENT:  SAMC" in module.__doc__, module.__name__


def test_engine_starts_at_domain_midpoint():
    engine = SAMCEngine(2, lambda x, d: float(x @ x), quadratic_options(domain=[[0.0, 2.0], [-4.0, 0.0]]))
    np.testing.assert_array_equal(engine.x0, [1.0, -2.0])
    assert engine.e0 == 5.0
    assert engine.bin0 == 1
    assert engine.status is Status.INITIALIZING


# ============================================================================
# Full runs
# ============================================================================

def test_end_to_end_quadratic_interpreted():
    """x^2 on [-3, 3], equal target mass below and above H = 1"""
    engine = SAMCEngine(1, gen_quadratic(xp=np), quadratic_options())
    result = engine.run(seed=42)

    assert engine.status is Status.DONE
    assert isinstance(result, RunResult)
    assert result.samples.shape == (50000, 1)
    assert result.iterations == 50000
    assert np.all((0.45 < result.frequency) & (result.frequency < 0.55))
    assert 0.2 < result.accept_rate < 0.9
    assert int(result.counts.sum()) == 50000
    assert float(jnp.sum(result.weights)) == pytest.approx(0.0, abs=1e-6)


def test_end_to_end_quadratic_compiled():
    result = run(1, gen_quadratic(xp=jnp), quadratic_options(), seed=42, compiled=True)

    assert result.status is Status.DONE
    assert result.samples.shape == (50000, 1)
    assert np.all((0.45 < result.frequency) & (result.frequency < 0.55))
    assert 0.2 < result.accept_rate < 0.9
    assert float(jnp.sum(result.weights)) == pytest.approx(0.0, abs=1e-6)


def test_dual_path_equivalence():
    """Same H, same seed: interpreted and compiled histograms agree"""
    opts = make_options(
        partition=uniform_partition(0.0, 4.0, 8),
        domain=(-2.0, 2.0),
        niter=5000,
        stepsize=0.4,
        t0=500,
    )
    for seed in range(3):
        slow = run(1, gen_quadratic(xp=np), opts, seed=seed)
        fast = run(1, CompiledEnergy(gen_quadratic(xp=jnp)), opts, seed=seed)
        assert kl_divergence(slow.frequency, fast.frequency) < 1e-2
        assert abs(slow.accept_rate - fast.accept_rate) < 0.05


def test_reproducible_trace():
    opts = quadratic_options(niter=3000)
    a = run(1, gen_quadratic(xp=np), opts, seed=7)
    b = run(1, gen_quadratic(xp=np), opts, seed=7)
    assert np.asarray(a.samples).tobytes() == np.asarray(b.samples).tobytes()

    c = run(1, gen_quadratic(xp=jnp), opts, seed=7, compiled=True)
    d = run(1, gen_quadratic(xp=jnp), opts, seed=7, compiled=True)
    assert np.asarray(c.samples).tobytes() == np.asarray(d.samples).tobytes()

    e = run(1, gen_quadratic(xp=np), opts, seed=8)
    assert not np.array_equal(a.samples, e.samples)


def test_domain_rejections_cost_no_evaluations():
    energy = CountingEnergy()
    engine = SAMCEngine(1, energy, quadratic_options(niter=4000, domain=(-1.0, 1.0), stepsize=2.0))
    energy.calls = 0  # drop the probe call
    result = engine.run(seed=1)

    assert result.n_domain_rejections > 0
    assert energy.calls == result.n_evaluations
    assert energy.calls + result.n_domain_rejections == 4000


def test_compiled_counts_domain_rejections():
    opts = quadratic_options(niter=4000, domain=(-1.0, 1.0), stepsize=2.0)
    slow = run(1, CountingEnergy(), opts, seed=1)
    fast = run(1, gen_quadratic(xp=jnp), opts, seed=1, compiled=True)
    assert fast.n_evaluations + fast.n_domain_rejections == 4000
    assert abs(fast.n_domain_rejections - slow.n_domain_rejections) < 80


def test_frequency_converges_41_bins():
    """|x| on [-4.1, 4.1]: 41 bins of width 0.1 in energy, uniform target"""
    partition = uniform_partition(0.0, 4.1, 41)
    opts = make_options(
        partition=partition,
        domain=(-4.1, 4.1),
        niter=200000,
        stepsize=1.0,
        t0=10000,
    )
    result = run(1, gen_abs(xp=jnp), opts, seed=0, compiled=True)

    assert result.status is Status.DONE
    assert max_relative_deviation(result.frequency, partition.vecpi) < 0.1

    # theta recovers the Boltzmann mass per bin: log g_k ~ -k * 0.1 (+ const)
    log_g = np.asarray(log_density_of_bins(result, partition))
    assert log_g[-2] < log_g[0] - 2.0


def test_reflect_boundary_keeps_chain_inside():
    opts = quadratic_options(niter=3000, domain=(0.0, 1.0), stepsize=0.3, boundary="reflect")
    reflected = run(1, gen_quadratic(xp=np), opts, seed=5)
    rejected = run(1, gen_quadratic(xp=np), opts._replace(boundary="reject"), seed=5)

    for result in (reflected, rejected):
        assert np.all((result.samples >= 0.0) & (result.samples <= 1.0))
    assert reflected.n_domain_rejections < rejected.n_domain_rejections


def test_infinite_energy_is_forbidden_not_an_error():
    def walled(x, data):
        return INF if x[0] > 1.0 else float(x @ x)

    result = run(1, walled, quadratic_options(niter=3000), seed=2)
    assert result.status is Status.DONE
    assert result.n_errors == 0
    assert np.all(result.samples <= 1.0)


# ============================================================================
# Failure handling and cancellation
# ============================================================================

def test_error_rate_above_tolerance_fails_run():
    def half_broken(x, data):
        if x[0] > 0.0:
            raise FloatingPointError("overflow")
        return float(x @ x)

    engine = SAMCEngine(1, half_broken, quadratic_options(niter=2000, domain=(-2.0, 2.0), x0=[-0.5]))
    result = engine.run(seed=3)

    assert engine.status is Status.FAILED
    assert result.status is Status.FAILED
    assert 0 < result.iterations < 2000
    assert result.samples.shape == (result.iterations, 1)
    assert result.n_errors == engine.max_errors + 1 == 101
    assert isinstance(result.failure, RunFailure)
    assert result.failure.iteration == result.iterations
    assert result.failure.point[0] > 0.0
    assert isinstance(result.failure.last_error, EvaluationError)
    assert result.failure.last_error.iteration == result.failure.iteration
    with pytest.raises(RunFailure):
        result.raise_for_status()


def test_compiled_nan_energy_fails_run():
    def half_nan(x, data):
        return jnp.where(x[0] > 0.0, jnp.nan, x[0] ** 2)

    opts = quadratic_options(niter=2000, domain=(-2.0, 2.0), x0=[-0.5], chunk_size=500)
    result = run(1, half_nan, opts, seed=3, compiled=True)

    assert result.status is Status.FAILED
    assert result.n_errors == 101
    assert result.samples.shape == (result.iterations, 1)
    assert result.failure.iteration == result.iterations
    assert "NaN" in result.failure.last_error.reason
    assert result.failure.last_error.point[0] > 0.0
    # the failing iteration is itself the most recent error
    assert result.failure.last_error.iteration == result.failure.iteration


def test_rare_errors_are_rejections():
    def edge_broken(x, data):
        if x[0] > 1.9:
            raise ValueError("edge")
        return float(x @ x)

    result = run(1, edge_broken, quadratic_options(niter=5000, domain=(-2.0, 2.0), error_tolerance=0.5), seed=4)
    assert result.status is Status.DONE
    assert result.failure is None
    assert np.all(result.samples <= 1.9)
    assert result.raise_for_status() is result


def test_timeout_counts_as_evaluation_error():
    calls = {"n": 0}

    def sometimes_slow(x, data):
        calls["n"] += 1
        if calls["n"] == 3:
            time.sleep(0.5)
        return float(x @ x)

    result = run(1, sometimes_slow, quadratic_options(niter=200, timeout=0.1), seed=0)
    assert result.status is Status.DONE
    assert result.n_errors == 1


def test_cancel_before_start():
    cancel = threading.Event()
    cancel.set()
    for compiled, energy in ((False, gen_quadratic(xp=np)), (True, gen_quadratic(xp=jnp))):
        result = run(1, energy, quadratic_options(niter=1000), cancel=cancel, compiled=compiled)
        assert result.status is Status.CANCELLED
        assert result.iterations == 0
        assert result.samples.shape == (0, 1)


def test_cancel_mid_run():
    cancel = threading.Event()
    calls = {"n": 0}

    def energy(x, data):
        calls["n"] += 1
        if calls["n"] == 200:
            cancel.set()
        return float(x @ x)

    result = run(1, energy, quadratic_options(niter=10000), cancel=cancel)
    assert result.status is Status.CANCELLED
    assert 0 < result.iterations < 10000
    assert result.samples.shape == (result.iterations, 1)
    assert int(result.counts.sum()) == result.iterations


class SetAfterChecks(threading.Event):
    """Event that reports set from its n-th is_set() call on"""
    def __init__(self, n):
        super().__init__()
        self.n = n
        self.checks = 0

    def is_set(self):
        self.checks += 1
        return self.checks > self.n or super().is_set()


def test_compiled_cancel_lands_at_block_boundary():
    assert RunOptions(partition=None, domain=None).chunk_size == 1000

    cancel = SetAfterChecks(2)
    result = run(1, gen_quadratic(xp=jnp), quadratic_options(niter=5000), cancel=cancel, compiled=True)
    assert result.status is Status.CANCELLED
    assert result.iterations == 2000
    assert result.samples.shape == (2000, 1)
    assert int(result.counts.sum()) == 2000


# ============================================================================
# Auxiliary data, multiple chains, estimates
# ============================================================================

@pytest.mark.parametrize("compiled", [False, True])
def test_matrix_aux_data(compiled):
    means = np.array([[-1.5, 0.0], [1.5, 0.0]])
    xp = jnp if compiled else np
    opts = make_options(
        partition=uniform_partition(0.0, 3.0, 4),
        domain=(-4.0, 4.0),
        niter=3000,
        stepsize=0.8,
    )
    result = run(2, gen_mixture(xp=xp), opts, data=means, seed=0, compiled=compiled)
    assert result.status is Status.DONE
    assert result.n_errors == 0
    assert result.samples.shape == (3000, 2)


@pytest.mark.parametrize("compiled", [False, True])
def test_structured_and_vector_aux_data(compiled):
    xp = jnp if compiled else np
    opts = quadratic_options(niter=2000)
    record = {"center": [0.5], "scale": 2.0}
    result = run(1, gen_scaled_quadratic(xp=xp), opts, data=record, seed=0, compiled=compiled)
    assert result.status is Status.DONE

    def linear(x, data):
        return xp.dot(data, x) ** 2

    result = run(1, linear, opts, data=[1.0], seed=0, compiled=compiled)
    assert result.status is Status.DONE


def test_run_chains_independent_and_reproducible():
    opts = quadratic_options(niter=2000)
    results = run_chains(1, gen_quadratic(xp=jnp), opts, seeds=[0, 1, 2], max_workers=3, compiled=True)

    assert len(results) == 3
    assert not np.array_equal(results[0].samples, results[1].samples)
    single = run(1, gen_quadratic(xp=jnp), opts, seed=1, compiled=True)
    np.testing.assert_array_equal(results[1].samples, single.samples)


@pytest.mark.parametrize("seed", [11, 12, 13, 14])
def test_importance_weights_recover_symmetric_mean(seed):
    result = run(1, gen_quadratic(xp=jnp), quadratic_options(niter=30000), seed=seed, compiled=True)
    w = importance_weights(result, burn=5000)
    assert w.shape == (25000,)
    assert float(jnp.sum(w)) == pytest.approx(1.0)
    assert abs(float(weighted_mean(result, burn=5000)[0])) < 0.1
    second_moment = weighted_mean(result, lambda x: x[0] ** 2, burn=5000)
    # exp(-x^2) on [-3, 3] has variance ~0.5
    assert 0.35 < float(second_moment) < 0.65


def test_importance_weights_burn_drops_early_trace():
    result = run(1, gen_quadratic(xp=jnp), quadratic_options(niter=3000), seed=0, compiled=True)
    assert importance_weights(result).shape == (2000,)
    assert importance_weights(result, burn=0).shape == (3000,)
    with pytest.raises(ValueError, match="burn"):
        importance_weights(result, burn=3000)
    with pytest.raises(ValueError, match="burn"):
        weighted_mean(result, burn=-1)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
