import numpy as np
import pandas as pd
import pytest

from pybsts.bsts import BayesianStructuralTimeSeries
from pybsts.config import ForecastConfig, SamplerConfig
from pybsts.exceptions import ForecastRequestError
from pybsts.forecast import ForecastEngine


def _regression_model(n: int = 60, seed: int = 0) -> BayesianStructuralTimeSeries:
    rng = np.random.default_rng(seed)
    X = rng.standard_normal((n, 2))
    y = 5. + np.cumsum(0.1 * rng.standard_normal(n)) + 1.5 * X[:, 0] + 0.3 * rng.standard_normal(n)
    mod = BayesianStructuralTimeSeries(y, X, level=True)
    mod.sample(SamplerConfig(num_iter=60, seed=seed + 1))
    return mod


def test_quantiles_bracket_the_mean() -> None:
    rng = np.random.default_rng(2)
    y = 20. + np.cumsum(rng.standard_normal(100))
    mod = BayesianStructuralTimeSeries(y, level=True, trend=True)
    mod.sample(SamplerConfig(num_iter=100, seed=2))

    fc = mod.forecast(ForecastConfig(horizon=8))
    lower, upper = fc.quantiles()
    mean = fc.mean()

    assert fc.response.shape == (90, 8)
    assert fc.state.shape == (90, 8, 2)
    assert np.all(lower <= mean)
    assert np.all(mean <= upper)

    lb, ub = fc.credible_interval(0.5)
    assert np.all(lower <= lb) and np.all(ub <= upper)
    np.testing.assert_array_equal(fc.future_time_index, np.arange(100, 108))


def test_summary_frame_uses_future_dates() -> None:
    rng = np.random.default_rng(3)
    index = pd.date_range('2015-01-01', periods=48, freq='MS')
    y = pd.Series(10. + rng.standard_normal(48), index=index, name='y')
    mod = BayesianStructuralTimeSeries(y, level=True)
    mod.sample(SamplerConfig(num_iter=40, seed=3))

    frame = mod.forecast(ForecastConfig(horizon=3, quantiles=(0.1, 0.5, 0.9))).summary_frame()

    assert list(frame.columns) == ['mean', 'q0.1', 'q0.5', 'q0.9']
    assert frame.index[0] == pd.Timestamp('2019-01-01')
    assert len(frame) == 3


def test_regression_forecast_uses_future_predictors() -> None:
    mod = _regression_model()
    fut = np.random.default_rng(10).standard_normal((4, 2))

    fc = mod.forecast(ForecastConfig(horizon=4), future_predictors=fut)
    assert fc.response.shape == (54, 4)
    assert np.all(np.isfinite(fc.response))


@pytest.mark.parametrize("horizon", [0, -2, 1.5])
def test_invalid_horizon(horizon) -> None:
    with pytest.raises(ForecastRequestError):
        ForecastConfig(horizon=horizon)


def test_missing_future_predictors() -> None:
    mod = _regression_model()
    with pytest.raises(ForecastRequestError):
        mod.forecast(ForecastConfig(horizon=3))


def test_future_predictor_shape_and_values() -> None:
    mod = _regression_model()
    with pytest.raises(ForecastRequestError):
        mod.forecast(ForecastConfig(horizon=3), future_predictors=np.ones((3, 3)))
    with pytest.raises(ForecastRequestError):
        mod.forecast(ForecastConfig(horizon=3), future_predictors=np.ones((2, 2)))

    fut = np.ones((3, 2))
    fut[1, 0] = np.nan
    with pytest.raises(ForecastRequestError):
        mod.forecast(ForecastConfig(horizon=3), future_predictors=fut)


def test_extra_future_rows_are_truncated() -> None:
    mod = _regression_model()
    with pytest.warns(UserWarning, match='Only the first 2 observations'):
        fc = mod.forecast(ForecastConfig(horizon=2), future_predictors=np.ones((5, 2)))
    assert fc.horizon == 2


def test_future_predictors_ignored_without_regression() -> None:
    y = 3. + np.random.default_rng(4).standard_normal(40)
    mod = BayesianStructuralTimeSeries(y, level=True)
    mod.sample(SamplerConfig(num_iter=20, seed=4))

    with pytest.warns(UserWarning, match='will be ignored'):
        fc = mod.forecast(ForecastConfig(horizon=2), future_predictors=np.ones((2, 1)))
    assert fc.response.shape[1] == 2


def test_engine_rejects_empty_posterior() -> None:
    mod = _regression_model()
    with pytest.raises(ForecastRequestError):
        ForecastEngine(mod.model, mod.posterior[:0])


def test_forecast_before_sampling() -> None:
    mod = BayesianStructuralTimeSeries(np.arange(10.), level=True)
    with pytest.raises(AttributeError):
        mod.forecast(ForecastConfig(horizon=2))
