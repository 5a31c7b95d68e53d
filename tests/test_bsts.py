import threading

import numpy as np
import pandas as pd
import pytest

from pybsts.bsts import BayesianStructuralTimeSeries
from pybsts.config import ForecastConfig, SamplerConfig, VariancePrior
from pybsts.exceptions import ConfigurationError, SamplingCancelledError
from pybsts.samplers.spike_slab import SpikeSlabPrior


def _monthly_seasonal_series(n: int = 132, seed: int = 0) -> pd.Series:
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    y = 10. + 3. * np.sin(2. * np.pi * t / 12.) + 0.3 * rng.standard_normal(n)
    return pd.Series(y, index=pd.date_range('2000-01-01', periods=n, freq='MS'), name='y')


def _regression_data(n: int, seed: int):
    rng = np.random.default_rng(seed)
    X = rng.standard_normal((n, 2))
    y = 4. + 1.0 * X[:, 0] + 0.5 * rng.standard_normal(n)
    return y, X


def test_seasonal_forecast_peaks_in_historical_months() -> None:
    y = _monthly_seasonal_series()
    mod = BayesianStructuralTimeSeries(y, level=True, dummy_seasonal=(12,))
    mod.sample(SamplerConfig(num_iter=300, seed=11))

    seasonal = mod.components()['Dummy-Seasonal.12'].mean(axis=0)
    hist_months = mod.historical_time_index[-12:].month
    hist_peak, hist_trough = hist_months[np.argmax(seasonal[-12:])], hist_months[np.argmin(seasonal[-12:])]

    fc = mod.forecast(ForecastConfig(horizon=12))
    fut_months = fc.future_time_index.month
    mean = fc.mean()

    assert fut_months[np.argmax(mean)] == hist_peak
    assert fut_months[np.argmin(mean)] == hist_trough
    # sin peaks in April and bottoms out in October
    assert hist_peak == 4 and hist_trough == 10


def test_forced_inclusion_and_exclusion() -> None:
    y, X = _regression_data(80, seed=1)
    mod = BayesianStructuralTimeSeries(y, X, level=True)
    posterior = mod.sample(SamplerConfig(num_iter=100, seed=1),
                           spike_slab_prior=SpikeSlabPrior(inclusion_prob=(1., 0.)))

    coeff = posterior.regression_coefficients
    assert np.all(coeff[:, 0] != 0.)
    assert np.all(coeff[:, 1] == 0.)
    assert np.all(posterior.inclusion[:, 0])
    assert not np.any(posterior.inclusion[:, 1])


def test_prior_weight_pulls_toward_prior_mean() -> None:
    y, X = _regression_data(40, seed=2)
    X = X[:, [0]]

    def _posterior_mean(prior_obs: float) -> float:
        mod = BayesianStructuralTimeSeries(y, X, level=True, stochastic_level=False)
        prior = SpikeSlabPrior(inclusion_prob=(1.,), coeff_mean_prior=(0.6,), prior_obs=prior_obs)
        mod.sample(SamplerConfig(num_iter=300, seed=2), spike_slab_prior=prior)
        return float(np.mean(mod.posterior.regression_coefficients[:, 0]))

    strong = _posterior_mean(200.)
    weak = _posterior_mean(0.01)
    assert abs(strong - 0.6) < abs(weak - 0.6)


def test_summary_reports_conditional_coefficient_statistics() -> None:
    y, X = _regression_data(80, seed=3)
    mod = BayesianStructuralTimeSeries(y, X, level=True)
    mod.sample(SamplerConfig(num_iter=120, seed=3))

    smy = mod.summary()
    assert smy['Number of posterior samples (after burn)'] == 108
    assert 'Posterior.Mean[Level.Var]' in smy
    assert 'Posterior.InclusionProb[Coeff.x1]' in smy
    assert smy['Posterior.InclusionProb[Coeff.x1]'] > 0.9
    assert smy['Posterior.Mean[Coeff.x1]'] == pytest.approx(1.0, abs=0.3)

    assert set(mod.posterior_dict()) == {'Irregular.Var', 'Level.Var', 'Coeff.x1', 'Coeff.x2'}
    assert mod.parameters == ['Irregular.Var', 'Level.Var', 'Coeff.x1', 'Coeff.x2']


def test_components_waic_and_r_squared() -> None:
    y, X = _regression_data(60, seed=4)
    mod = BayesianStructuralTimeSeries(y, X, level=True)
    mod.sample(SamplerConfig(num_iter=50, seed=4))

    comps = mod.components()
    assert set(comps) == {'Irregular', 'Level', 'Regression'}
    assert comps['Level'].shape == (45, 60 - mod.num_first_obs_ignore)

    w = mod.waic()
    assert np.isfinite(w.waic)
    r2 = mod.r_squared()
    assert r2.shape == (45,)
    assert np.all((r2 > 0.) & (r2 < 1.))


def test_state_variance_priors_map_to_components() -> None:
    y = _monthly_seasonal_series(n=60)
    mod = BayesianStructuralTimeSeries(y.to_numpy(), level=True, trig_seasonal=((12, 2),))
    mod.sample(SamplerConfig(num_iter=10, seed=5),
               level_var_prior=VariancePrior(scale=0.1),
               trig_seasonal_var_priors=(VariancePrior(shape=1., scale=0.2),))
    setup = mod.sampler.model_setup
    assert setup.state_var_scale_prior[0, 0] == 0.1
    assert setup.state_var_scale_prior[1, 0] == 0.2

    with pytest.raises(ConfigurationError):
        mod.sample(SamplerConfig(num_iter=10), trend_var_prior=VariancePrior())


def test_constructor_validation() -> None:
    y = np.arange(20.)
    with pytest.raises(TypeError):
        BayesianStructuralTimeSeries('abc', level=True)
    with pytest.raises(ConfigurationError):
        BayesianStructuralTimeSeries(y, np.ones((19, 1)) * np.arange(19.).reshape(-1, 1), level=True)
    with pytest.raises(ConfigurationError):
        BayesianStructuralTimeSeries(y, np.ones((20, 1)), level=True)
    with pytest.raises(ConfigurationError):
        BayesianStructuralTimeSeries(y, trend=True)
    with pytest.raises(ConfigurationError):
        BayesianStructuralTimeSeries(y, level=True, dummy_seasonal=(4,), trig_seasonal=((4, 0),))
    with pytest.raises(ConfigurationError):
        BayesianStructuralTimeSeries(y, level=True, dummy_seasonal=(4, 5), stochastic_dummy_seasonal=(True,))


def test_misaligned_pandas_predictors() -> None:
    y = _monthly_seasonal_series(n=24)
    X = pd.DataFrame({'x': np.arange(24.)}, index=pd.date_range('2001-01-01', periods=24, freq='MS'))
    with pytest.raises(ConfigurationError):
        BayesianStructuralTimeSeries(y, X, level=True)


def test_short_series_warns() -> None:
    y = np.random.default_rng(6).standard_normal(30)
    with pytest.warns(UserWarning, match='quadruple'):
        BayesianStructuralTimeSeries(y, level=True, dummy_seasonal=(12,))


def test_summary_before_sampling() -> None:
    mod = BayesianStructuralTimeSeries(np.arange(10.), level=True)
    with pytest.raises(AttributeError):
        mod.summary()


def test_cancelled_before_any_retained_draw_leaves_model_unsampled() -> None:
    mod = BayesianStructuralTimeSeries(np.random.default_rng(7).standard_normal(30), level=True)
    stop = threading.Event()
    stop.set()

    with pytest.raises(SamplingCancelledError):
        mod.sample(SamplerConfig(num_iter=10, seed=7), stop_event=stop)

    assert mod.posterior is None
    with pytest.raises(AttributeError):
        mod.summary()
    with pytest.raises(AttributeError):
        mod.components()
