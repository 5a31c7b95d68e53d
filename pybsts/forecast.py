import warnings
import numpy as np
import pandas as pd
from numba import njit
from typing import NamedTuple, Union
from pybsts.config import ForecastConfig
from pybsts.exceptions import ForecastRequestError
from pybsts.samplers.mcmc import Posterior
from pybsts.statespace.specification import StateSpaceModel
from pybsts.vectorized import distributions as dist


class ForecastDistribution(NamedTuple):
    """
    Posterior forecast distribution.

    response: ndarray of dimension (S, h). One simulated response path per retained draw.
    state: ndarray of dimension (S, h, m). The matching simulated state paths.
    future_time_index: DatetimeIndex or integer ndarray of length h.
    quantile_levels: quantile levels requested in the ForecastConfig.
    """
    response: np.ndarray
    state: np.ndarray
    future_time_index: Union[pd.DatetimeIndex, np.ndarray]
    quantile_levels: tuple

    @property
    def num_samp(self) -> int:
        return self.response.shape[0]

    @property
    def horizon(self) -> int:
        return self.response.shape[1]

    def mean(self) -> np.ndarray:
        return np.mean(self.response, axis=0)

    def quantiles(self, levels: Union[tuple, list, None] = None) -> np.ndarray:
        """
        :param levels: quantile levels in (0, 1). Default is the levels of the ForecastConfig.
        :return: ndarray of dimension (len(levels), h).
        """
        if levels is None:
            levels = self.quantile_levels
        levels = np.asarray(levels, dtype=np.float64)
        if levels.ndim != 1 or np.any(levels <= 0.) or np.any(levels >= 1.):
            raise ForecastRequestError('Every quantile level must be a float in the interval (0, 1).')
        return np.quantile(self.response, levels, axis=0)

    def credible_interval(self, level: float = 0.95) -> tuple:
        """
        Equal-tailed credible interval.

        :param level: coverage in (0, 1).
        :return: tuple (lower, upper) of ndarrays of dimension (h,).
        """
        if not isinstance(level, float) or not 0. < level < 1.:
            raise ForecastRequestError('The credible interval level must be a float in the interval (0, 1).')
        alpha = 1. - level
        lb, ub = self.quantiles((0.5 * alpha, 1. - 0.5 * alpha))
        return lb, ub

    def summary_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({'mean': self.mean()}, index=self.future_time_index)
        for lev, q in zip(self.quantile_levels, self.quantiles()):
            frame[f'q{lev}'] = q
        return frame


@njit(cache=True)
def _simulate_paths(last_state: np.ndarray,
                    response_error_variance: np.ndarray,
                    state_error_covariance: np.ndarray,
                    regression_coefficients: np.ndarray,
                    observation_matrix: np.ndarray,
                    state_transition_matrix: np.ndarray,
                    state_intercept_matrix: np.ndarray,
                    state_error_transformation_matrix: np.ndarray,
                    future_predictors: np.ndarray,
                    reg_idx: int):
    """
    Given posterior draws s = 1,...,S and the smoothed state vector a(s, n) at the
    last historical period, the forecast paths are

        for s = 1,...,S:
            for t = n + 1,...,n + h:
                a(s, t) = C + T.a(s, t - 1) + R.eta(s, t),   eta(s, t) ~ N(0, StateErrCovMat(s))
                y(s, t) = Z(t).a(s, t) + eps(s, t),           eps(s, t) ~ N(0, RespErrVar(s))

    If reg_idx >= 0, column reg_idx of Z(t) is X_future(t).beta(s).

    :return: ndarray of dimension (S, h) for the response and (S, h, m) for the state.
    """
    Z = observation_matrix.copy()
    T = state_transition_matrix
    c = state_intercept_matrix[:, 0].copy()
    R = state_error_transformation_matrix
    num_samp = last_state.shape[0]
    h = Z.shape[0]
    m = T.shape[0]
    q = R.shape[1]

    y_forecast = np.empty((num_samp, h), dtype=np.float64)
    state_forecast = np.empty((num_samp, h, m), dtype=np.float64)
    h_zeros = np.zeros(h)
    h_ones = np.ones(h)
    q_zeros = np.zeros(q)

    for s in range(num_samp):
        obs_error = dist.vec_norm(h_zeros, h_ones * np.sqrt(response_error_variance[s]))
        if q > 0:
            state_error_sd = np.sqrt(np.diag(state_error_covariance[s]))

        if reg_idx >= 0:
            Z[:, 0, reg_idx] = future_predictors.dot(regression_coefficients[s])

        state = last_state[s].copy()
        for t in range(h):
            if q > 0:
                state = c + T.dot(state) + R.dot(dist.vec_norm(q_zeros, state_error_sd))
            else:
                state = c + T.dot(state)
            y_forecast[s, t] = Z[t, 0].dot(state) + obs_error[t]
            state_forecast[s, t] = state

    return y_forecast, state_forecast


def future_time_index(historical_time_index: Union[pd.DatetimeIndex, np.ndarray],
                      horizon: int) -> Union[pd.DatetimeIndex, np.ndarray]:
    n = len(historical_time_index)
    if isinstance(historical_time_index, pd.DatetimeIndex) and historical_time_index.freq is not None:
        freq = historical_time_index.freq
        last_historical_date = historical_time_index[-1]
        first_future_date = last_historical_date + 1 * freq
        last_future_date = last_historical_date + horizon * freq
        return pd.date_range(first_future_date, last_future_date, freq=freq)
    else:
        return np.arange(n, n + horizon)


class ForecastEngine:
    def __init__(self,
                 model: StateSpaceModel,
                 posterior: Posterior,
                 historical_time_index: Union[pd.DatetimeIndex, np.ndarray, None] = None,
                 predictors_names: Union[list, None] = None):
        """
        :param model: StateSpaceModel the posterior was sampled from.

        :param posterior: Posterior with at least one retained draw.

        :param historical_time_index: time index of the response. If a DatetimeIndex with
        a frequency, forecasts are indexed by the dates that follow it. Otherwise, an integer
        index continuing from the number of observations is used.

        :param predictors_names: column names of the historical predictors. If given, the
        columns of a pandas future_predictors object must match them in name and order.
        """
        if len(posterior) == 0:
            raise ForecastRequestError('The posterior has no retained draws to forecast from.')

        self.model = model
        self.posterior = posterior
        num_obs = posterior[0].smoothed_state.shape[0]
        if historical_time_index is None:
            historical_time_index = np.arange(num_obs)
        self.historical_time_index = historical_time_index
        self.predictors_names = predictors_names

    def _future_predictors(self,
                           future_predictors,
                           horizon: int,
                           fut_index) -> np.ndarray:
        k = self.model.num_predictors

        if not self.model.has_regression:
            if future_predictors is not None:
                warnings.warn("The model has no predictors, but forecast() was provided some. "
                              "The future predictors passed to forecast() will be ignored.")
            return np.zeros((horizon, 0))

        if future_predictors is None:
            raise ForecastRequestError("The model has predictors, but forecast() was provided none. "
                                       "Future predictors must be passed to forecast() if the fitted "
                                       "model includes predictors.")

        if not isinstance(future_predictors, (np.ndarray, list, tuple, pd.Series, pd.DataFrame)):
            raise TypeError("The future_predictors array must be a NumPy array, list, tuple, Pandas Series, "
                            "or Pandas DataFrame.")

        if isinstance(future_predictors, (pd.Series, pd.DataFrame)):
            if isinstance(fut_index, pd.DatetimeIndex) and isinstance(future_predictors.index, pd.DatetimeIndex):
                num_check = min(horizon, future_predictors.shape[0])
                if not (future_predictors.index[:num_check] == fut_index[:num_check]).all():
                    raise ForecastRequestError('The future_predictors index must match the future time index '
                                               'implied by the last observed date for the response and the '
                                               'number of desired forecast periods.')
            if isinstance(future_predictors, pd.Series):
                future_predictors_names = [future_predictors.name]
            else:
                future_predictors_names = future_predictors.columns.values.tolist()
            if self.predictors_names is not None and future_predictors_names != list(self.predictors_names):
                raise ForecastRequestError('The order and names of the columns in predictors must match '
                                           'the order and names in future_predictors.')
            fut_pred = future_predictors.to_numpy(dtype=np.float64)
        else:
            fut_pred = np.asarray(future_predictors, dtype=np.float64)

        if fut_pred.ndim not in (1, 2):
            raise ForecastRequestError('The future_predictors array must have dimension 1 or 2.')
        elif fut_pred.ndim == 1:
            fut_pred = fut_pred.reshape(-1, 1)

        if np.isnan(fut_pred).any():
            raise ForecastRequestError('The future_predictors array cannot have null values.')
        if np.isinf(fut_pred).any():
            raise ForecastRequestError('The future_predictors array cannot have Inf and/or -Inf values.')

        if fut_pred.shape[1] != k:
            raise ForecastRequestError(f'The number of predictors used for historical estimation {k} '
                                       f'does not match the number of predictors specified for forecasting '
                                       f'{fut_pred.shape[1]}. The same set of predictors must be used.')

        if horizon > fut_pred.shape[0]:
            raise ForecastRequestError(f'The number of requested forecast periods {horizon} exceeds the '
                                       f'number of observations provided in future_predictors '
                                       f'{fut_pred.shape[0]}. The former must be no larger than the latter.')
        elif horizon < fut_pred.shape[0]:
            warnings.warn(f'The number of requested forecast periods {horizon} is less than the '
                          f'number of observations provided in future_predictors {fut_pred.shape[0]}. '
                          f'Only the first {horizon} observations will be used in future_predictors.')
            fut_pred = fut_pred[:horizon, :]

        return np.ascontiguousarray(fut_pred)

    def forecast(self,
                 config: ForecastConfig,
                 future_predictors: Union[np.ndarray, list, tuple, pd.Series, pd.DataFrame] = None
                 ) -> ForecastDistribution:
        """
        Posterior forecast distribution for the response and states.

        :param config: ForecastConfig.

        :param future_predictors: array-like of dimension (h, k). Required if and only if the
        model has a regression component.

        :return: ForecastDistribution
        """
        if not isinstance(config, ForecastConfig):
            raise TypeError('config must be a ForecastConfig.')

        model = self.model
        posterior = self.posterior
        horizon = config.horizon
        fut_index = future_time_index(self.historical_time_index, horizon)
        fut_pred = self._future_predictors(future_predictors, horizon, fut_index)

        last_state = np.ascontiguousarray(posterior.smoothed_state[:, -1, :])
        num_samp = last_state.shape[0]
        if model.has_regression:
            reg_idx = model.component('Regression').start_state_eqn_index
            reg_coeff = np.ascontiguousarray(posterior.regression_coefficients)
        else:
            reg_idx = -1
            reg_coeff = np.zeros((num_samp, 0))

        response, state = _simulate_paths(
            last_state=last_state,
            response_error_variance=posterior.response_error_variance,
            state_error_covariance=np.ascontiguousarray(posterior.state_error_covariance),
            regression_coefficients=reg_coeff,
            observation_matrix=model.observation_matrix(horizon),
            state_transition_matrix=model.state_transition_matrix,
            state_intercept_matrix=model.state_intercept_matrix,
            state_error_transformation_matrix=model.state_error_transformation_matrix,
            future_predictors=fut_pred,
            reg_idx=reg_idx
        )

        return ForecastDistribution(response, state, fut_index, config.quantiles)
