import numpy as np
import pytest

from pybsts.exceptions import ConfigurationError
from pybsts.samplers.spike_slab import (SpikeSlabPrior, SpikeSlabSampler, conditional_mean,
                                        inclusion_probabilities)


def _sampler(X: np.ndarray, prior: SpikeSlabPrior) -> SpikeSlabSampler:
    return SpikeSlabSampler(predictors=X,
                            prior=prior,
                            response_var_shape_prior=0.01,
                            response_var_scale_prior=0.01)


def test_default_inclusion_probability_is_uniform() -> None:
    X = np.random.default_rng(0).standard_normal((50, 4))
    s = _sampler(X, SpikeSlabPrior(expected_model_size=2.))
    np.testing.assert_allclose(s.inclusion_prob, np.full(4, 0.5))
    assert s.free_index.tolist() == [0, 1, 2, 3]


def test_zero_prior_weight_with_possible_inclusion_is_rejected() -> None:
    X = np.random.default_rng(1).standard_normal((50, 2))
    with pytest.raises(ConfigurationError):
        _sampler(X, SpikeSlabPrior(prior_obs=0.))
    with pytest.raises(ConfigurationError):
        _sampler(X, SpikeSlabPrior(inclusion_prob=(1., 0.), prior_obs=0))


def test_zero_prior_weight_with_everything_excluded_is_allowed() -> None:
    X = np.random.default_rng(1).standard_normal((50, 2))
    s = _sampler(X, SpikeSlabPrior(inclusion_prob=(0., 0.), prior_obs=0.))
    assert s.forced_out.all()


def test_inclusion_probabilities_are_validated() -> None:
    X = np.random.default_rng(2).standard_normal((30, 2))
    with pytest.raises(ConfigurationError):
        _sampler(X, SpikeSlabPrior(inclusion_prob=(1.2, 0.5)))
    with pytest.raises(ConfigurationError):
        _sampler(X, SpikeSlabPrior(inclusion_prob=(0.5, 0.5, 0.5)))
    with pytest.raises(ConfigurationError):
        SpikeSlabPrior(prior_obs=-1.)


def test_precision_matrix_must_be_symmetric_positive_definite() -> None:
    X = np.random.default_rng(3).standard_normal((30, 2))
    with pytest.raises(ConfigurationError):
        _sampler(X, SpikeSlabPrior(coeff_prec_prior=np.array([[1., 0.5], [0., 1.]])))
    with pytest.raises(ConfigurationError):
        _sampler(X, SpikeSlabPrior(coeff_prec_prior=np.array([[1., 2.], [2., 1.]])))


def test_forced_indicators_are_respected() -> None:
    rng = np.random.default_rng(4)
    n = 200
    X = rng.standard_normal((n, 3))
    y = (1.5 * X[:, [0]] + 0.1 * rng.standard_normal((n, 1)))
    s = _sampler(X, SpikeSlabPrior(inclusion_prob=(1., 0., 0.5)))

    g = s.initial_inclusion()
    for _ in range(50):
        draw = s.draw(y, g)
        g = draw.inclusion
        assert g[0] and not g[1]
        assert draw.coefficients[0, 0] != 0.
        assert draw.coefficients[1, 0] == 0.
        assert draw.response_error_variance > 0.


def test_strong_signal_is_selected() -> None:
    np.random.seed(5)
    rng = np.random.default_rng(5)
    n = 200
    X = rng.standard_normal((n, 4))
    y = 2. * X[:, [1]] + 0.5 * rng.standard_normal((n, 1))
    s = _sampler(X, SpikeSlabPrior())

    g = s.initial_inclusion()
    draws = []
    for _ in range(200):
        d = s.draw(y, g)
        g = d.inclusion
        draws.append(g.copy())

    probs = inclusion_probabilities(np.array(draws))
    assert probs[1] > 0.95
    assert probs[[0, 2, 3]].max() < 0.5


def test_conditional_mean_ignores_excluded_draws() -> None:
    coefficients = np.array([[2., 0.], [0., 0.], [4., 0.]])
    inclusion = np.array([[True, False], [False, False], [True, False]])
    cm = conditional_mean(coefficients, inclusion)
    assert cm[0] == 3.
    assert np.isnan(cm[1])
    np.testing.assert_allclose(inclusion_probabilities(inclusion), [2. / 3., 0.])
