import threading

import numpy as np
import pytest

from pybsts.config import SamplerConfig, VariancePrior
from pybsts.exceptions import ConfigurationError, FitFailureError, SamplingCancelledError
from pybsts.samplers import mcmc
from pybsts.samplers.mcmc import MCMCSampler, Posterior
from pybsts.statespace.specification import StateSpecification


class _StopAfter(threading.Event):
    def __init__(self, num_checks: int):
        super().__init__()
        self.num_checks = num_checks
        self.calls = 0

    def is_set(self) -> bool:
        self.calls += 1
        return self.calls > self.num_checks


def _local_level_series(n: int = 80, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    level = 10. + np.cumsum(0.2 * rng.standard_normal(n))
    return (level + 0.5 * rng.standard_normal(n)).reshape(-1, 1)


def test_retained_draws_exclude_burn_in() -> None:
    y = _local_level_series()
    model = StateSpecification().add_local_linear_trend().build()
    config = SamplerConfig(num_iter=40, burn_fraction=0.25, seed=123)

    posterior = MCMCSampler(model, y, config).run()

    assert isinstance(posterior, Posterior)
    assert len(posterior) == config.num_retained == 30
    assert posterior.smoothed_state.shape == (30, 80, 2)
    assert posterior.smoothed_errors.shape == (30, 80, 3)
    assert posterior.state_error_covariance.shape == (30, 2, 2)
    assert posterior.response_error_variance.shape == (30,)
    assert posterior.regression_coefficients.shape == (30, 0)
    assert np.all(posterior.response_error_variance > 0.)
    assert np.all(np.diagonal(posterior.state_error_covariance, axis1=1, axis2=2) > 0.)


def test_draws_are_indexable_records() -> None:
    y = _local_level_series(n=40)
    model = StateSpecification().add_level().build()
    posterior = MCMCSampler(model, y, SamplerConfig(num_iter=10, burn_fraction=0., seed=9)).run()

    first = posterior[0]
    assert first.smoothed_state.shape == (40, 1)
    assert first.inclusion.dtype == bool
    assert len(posterior[2:5]) == 3
    assert sum(1 for _ in posterior) == 10
    np.testing.assert_array_equal(posterior.smoothed_state[3], posterior[3].smoothed_state)


def test_same_seed_reproduces_draws() -> None:
    rng = np.random.default_rng(1)
    n = 60
    X = rng.standard_normal((n, 2))
    y = _local_level_series(n=n, seed=1) + X[:, [0]]
    model = StateSpecification().add_level().add_regression(2).build()
    config = SamplerConfig(num_iter=30, seed=42)

    p1 = MCMCSampler(model, y, config, predictors=X).run()
    p2 = MCMCSampler(model, y, config, predictors=X).run()

    np.testing.assert_array_equal(p1.smoothed_state, p2.smoothed_state)
    np.testing.assert_array_equal(p1.regression_coefficients, p2.regression_coefficients)
    np.testing.assert_array_equal(p1.inclusion, p2.inclusion)


def test_missing_response_values() -> None:
    y = _local_level_series(n=70, seed=4)
    y[[5, 30, 31, 32]] = np.nan
    model = StateSpecification().add_level().add_dummy_seasonal(4).build()

    posterior = MCMCSampler(model, y, SamplerConfig(num_iter=30, seed=4)).run()

    assert np.all(np.isfinite(posterior.smoothed_state))
    assert np.all(np.isfinite(posterior.smoothed_prediction))
    assert np.all(np.isfinite(posterior.filtered_prediction))


def test_cancellation_returns_partial_posterior() -> None:
    y = _local_level_series(n=50)
    model = StateSpecification().add_level().build()
    config = SamplerConfig(num_iter=50, burn_fraction=0.1, seed=1)

    with pytest.raises(SamplingCancelledError) as e:
        MCMCSampler(model, y, config).run(stop_event=_StopAfter(20))

    assert e.value.num_iter_completed == 20
    assert len(e.value.posterior) == 20 - config.num_burn


def test_cancellation_before_start() -> None:
    y = _local_level_series(n=30)
    model = StateSpecification().add_level().build()
    stop = threading.Event()
    stop.set()

    with pytest.raises(SamplingCancelledError) as e:
        MCMCSampler(model, y, SamplerConfig(num_iter=10)).run(stop_event=stop)

    assert len(e.value.posterior) == 0


def test_numerical_failure_surfaces_as_fit_failure(monkeypatch) -> None:
    def _fail(**kwargs):
        raise FloatingPointError('non-finite state covariance')

    monkeypatch.setattr(mcmc, 'dks', _fail)
    y = _local_level_series(n=30)
    model = StateSpecification().add_level().build()

    with pytest.raises(FitFailureError) as e:
        MCMCSampler(model, y, SamplerConfig(num_iter=10, burn_fraction=0.5)).run()

    assert e.value.iteration == 0


def test_custom_variance_priors_by_component_name() -> None:
    y = _local_level_series(n=50)
    model = StateSpecification().add_local_linear_trend().build()
    sampler = MCMCSampler(model, y, SamplerConfig(num_iter=5),
                          state_var_priors={'Trend': VariancePrior(shape=2., scale=1e-4)})
    setup = sampler._model_setup()
    assert setup.state_var_scale_prior[1, 0] == 1e-4
    assert setup.state_var_shape_post[1, 0] == 2. + 0.5 * 50

    with pytest.raises(ConfigurationError):
        MCMCSampler(model, y, SamplerConfig(num_iter=5), state_var_priors={'Level.12': VariancePrior()})


def test_regression_requires_matching_predictors() -> None:
    y = _local_level_series(n=30)
    model = StateSpecification().add_level().add_regression(2).build()
    with pytest.raises(ConfigurationError):
        MCMCSampler(model, y, SamplerConfig(num_iter=5))
    with pytest.raises(ConfigurationError):
        MCMCSampler(model, y, SamplerConfig(num_iter=5), predictors=np.ones((29, 2)))


def test_dummy_seasonal_variance_uses_one_disturbance() -> None:
    n = 60
    rng = np.random.default_rng(12)
    t = np.arange(n)
    y = (10. + 2. * np.cos(2. * np.pi * t / 12.) + 0.3 * rng.standard_normal(n)).reshape(-1, 1)
    model = StateSpecification().add_level().add_dummy_seasonal(12).build()
    sampler = MCMCSampler(model, y, SamplerConfig(num_iter=30, seed=12))

    posterior = sampler.run()

    setup = sampler.model_setup
    np.testing.assert_allclose(setup.state_var_shape_post[:, 0], [0.01 + 0.5 * n, 0.01 + 0.5 * n])
    assert setup.gibbs_iter0_state_error_covariance.shape == (2, 2)
    assert posterior.state_error_covariance.shape == (27, 2, 2)
    assert np.all(np.isfinite(posterior.smoothed_state))


def test_trig_seasonal_variance_pools_harmonics() -> None:
    y = _local_level_series(n=48)
    model = StateSpecification().add_level().add_trig_seasonal(12, num_harmonics=2).build()
    sampler = MCMCSampler(model, y, SamplerConfig(num_iter=10, seed=4))

    posterior = sampler.run()

    setup = sampler.model_setup
    np.testing.assert_allclose(setup.state_var_shape_post[:, 0], [0.01 + 0.5 * 48, 0.01 + 0.5 * 48 * 4])
    assert posterior.state_error_covariance.shape == (9, 5, 5)
