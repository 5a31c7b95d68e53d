import threading
import warnings
import numpy as np
import pandas as pd
from typing import Union
from pybsts.config import ForecastConfig, SamplerConfig, VariancePrior
from pybsts.exceptions import ConfigurationError, SamplingCancelledError
from pybsts.forecast import ForecastDistribution, ForecastEngine
from pybsts.model_assessment.performance import WAIC, r_squared, watanabe_akaike
from pybsts.samplers.mcmc import MCMCSampler, Posterior
from pybsts.samplers.spike_slab import SpikeSlabPrior, conditional_mean, inclusion_probabilities
from pybsts.statespace.specification import StateSpaceModel, StateSpecification


def _check_bool_tuple(name: str, values: tuple, periods: tuple, periods_name: str) -> tuple:
    if not isinstance(values, tuple):
        raise TypeError(f'{name} must be a tuple.')

    if len(periods) == 0:
        if len(values) > 0:
            raise ConfigurationError(f'No {periods_name} components were specified, but a non-empty '
                                     f'stochastic profile was passed in {name}.')
        return values

    if len(values) == 0:
        return (True,) * len(periods)

    if not all(isinstance(v, bool) for v in values):
        raise TypeError(f'If a non-empty tuple is passed for {name}, all elements must be of boolean type.')
    if len(values) != len(periods):
        raise ConfigurationError(f'{name} must either be an empty tuple, which defaults to True for '
                                 f'every component, or have one boolean per {periods_name} component. '
                                 f'Partial specification of the stochastic profile is not allowed.')
    return values


class BayesianStructuralTimeSeries:
    def __init__(self,
                 response: Union[np.ndarray, list, tuple, pd.Series, pd.DataFrame],
                 predictors: Union[np.ndarray, list, tuple, pd.Series, pd.DataFrame] = None,
                 level: bool = False,
                 stochastic_level: bool = True,
                 trend: bool = False,
                 stochastic_trend: bool = True,
                 dummy_seasonal: tuple = (),
                 stochastic_dummy_seasonal: tuple = (),
                 trig_seasonal: tuple = (),
                 stochastic_trig_seasonal: tuple = ()):
        """
        Bayesian structural time series model: a response decomposed into a level/trend,
        seasonal components, and a static spike-and-slab regression on predictors.

        :param response: Numpy array, list, tuple, Pandas Series, or Pandas DataFrame, float64.
        Array that represents the response variable. Missing values (NaN) are allowed.

        :param predictors: Numpy array, list, tuple, Pandas Series, or Pandas DataFrame, float64.
        Array that represents the predictors, if any, to be used for predicting the response variable.
        Default is None.

        :param level: bool. If true, a level component is added to the model. Default is false.

        :param stochastic_level: bool. If true, the level component evolves stochastically. Default is true.

        :param trend: bool. If true, a trend component is added to the model, making the level a local
        linear trend. A trend requires a level. Default is false.

        :param stochastic_trend: bool. If true, the trend component evolves stochastically. Default is true.

        :param dummy_seasonal: tuple of integers. Each integer is a distinct period of dummy
        seasonality. Default is an empty tuple, i.e., no dummy seasonality.

        :param stochastic_dummy_seasonal: tuple of bools, one per element of dummy_seasonal. Default is an
        empty tuple, which will be converted to true bools if dummy_seasonal is not empty.

        :param trig_seasonal: tuple of 2-tuples of the form ((period_1, num_harmonics_1), ...). If 0 is
        entered for the number of harmonics, the maximum number of harmonics for the period is used.

        :param stochastic_trig_seasonal: tuple of bools, one per element of trig_seasonal. Default is an
        empty tuple, which will be converted to true bools if trig_seasonal is not empty.
        """
        self.response_name = None
        self.predictors_names = None
        self.historical_time_index = None
        self.posterior = None
        self.sampler = None

        # CHECK AND PREPARE RESPONSE DATA
        if not isinstance(response, (np.ndarray, list, tuple, pd.Series, pd.DataFrame)):
            raise TypeError("The response array must be a Numpy array, list, tuple, Pandas Series, "
                            "or Pandas DataFrame.")

        if isinstance(response, (list, tuple)):
            resp = np.asarray(response, dtype=np.float64)
        else:
            resp = response.copy()

        if isinstance(resp, (pd.Series, pd.DataFrame)):
            if isinstance(resp.index, pd.DatetimeIndex):
                if not resp.index.is_monotonic_increasing:
                    warnings.warn("The DatetimeIndex for the response is not in ascending order. "
                                  "Data will be sorted.")
                    resp = resp.sort_index()

                if resp.index.freq is None:
                    warnings.warn('Frequency of DatetimeIndex is None. Frequency will be inferred '
                                  'for response.')
                    resp.index = pd.DatetimeIndex(resp.index, freq=pd.infer_freq(resp.index))

                self.historical_time_index = resp.index

            if isinstance(resp, pd.Series):
                self.response_name = [resp.name]
            else:
                self.response_name = resp.columns.values.tolist()

            resp_index = resp.index
            resp = resp.to_numpy()
        else:
            resp_index = None

        if resp.dtype != 'float64':
            raise TypeError('All values in the response array must be of type float.')

        if resp.ndim not in (1, 2):
            raise ConfigurationError('The response array must have dimension 1 or 2.')
        elif resp.ndim == 1:
            resp = resp.reshape(-1, 1)
        else:
            if all(i > 1 for i in resp.shape):
                raise ConfigurationError('The response array must have shape (1, n) or (n, 1), '
                                         'where n is the number of observations. Both the row and column '
                                         'count exceed 1.')
            else:
                resp = resp.reshape(-1, 1)

        if np.all(np.isnan(resp)):
            raise ConfigurationError('All values in the response array are null. At least one value '
                                     'must be non-null.')

        if np.any(np.isinf(resp)):
            raise ConfigurationError('The response array cannot have Inf and/or -Inf values.')

        if resp.shape[0] < 3:
            raise ConfigurationError('At least three observations are required to fit a model.')

        # CHECK AND PREPARE PREDICTORS DATA, IF APPLICABLE
        if predictors is not None:
            if not isinstance(predictors, (np.ndarray, list, tuple, pd.Series, pd.DataFrame)):
                raise TypeError("The predictors array must be a Numpy array, list, tuple, Pandas Series, "
                                "or Pandas DataFrame.")

            if isinstance(predictors, (list, tuple)):
                pred = np.asarray(predictors, dtype=np.float64)
            else:
                pred = predictors.copy()

            if resp_index is None and isinstance(pred, (pd.Series, pd.DataFrame)):
                raise TypeError('The response array provided is a NumPy array, list, or tuple, '
                                'but the predictors array is not. Object types must match.')

            if resp_index is not None and not isinstance(pred, (pd.Series, pd.DataFrame)):
                raise TypeError('The response array provided is a Pandas Series/DataFrame, but the predictors '
                                'array is not. Object types must match.')

            if isinstance(pred, (pd.Series, pd.DataFrame)):
                if isinstance(pred.index, pd.DatetimeIndex) and not pred.index.is_monotonic_increasing:
                    warnings.warn("The DatetimeIndex for predictors is not in ascending order. "
                                  "Data will be sorted.")
                    pred = pred.sort_index()

                if len(pred.index) != len(resp_index) or not (pred.index == resp_index).all():
                    raise ConfigurationError('The response and predictors indexes must match.')

                if isinstance(pred, pd.Series):
                    self.predictors_names = [pred.name]
                else:
                    self.predictors_names = pred.columns.values.tolist()

                pred = pred.to_numpy()

            if pred.dtype != 'float64':
                raise TypeError('All values in the predictors array must be of type float.')

            if pred.ndim not in (1, 2):
                raise ConfigurationError('The predictors array must have dimension 1 or 2.')
            elif pred.ndim == 1:
                pred = pred.reshape(-1, 1)

            if np.any(np.isnan(pred)):
                raise ConfigurationError('The predictors array cannot have null values.')
            if np.any(np.isinf(pred)):
                raise ConfigurationError('The predictors array cannot have Inf and/or -Inf values.')

            if pred.shape[0] != resp.shape[0]:
                raise ConfigurationError('The number of observations in the predictors array must match '
                                         'the number of observations in the response array.')

            sd_pred = np.std(pred, axis=0)
            if np.any(sd_pred <= 1e-6):
                raise ConfigurationError(
                    'The predictors array cannot have a column with a constant value. Note that '
                    'the inclusion of a constant/intercept in the predictors array will confound '
                    'with the level if specified. If a constant level without trend or seasonality '
                    'is desired, pass as arguments level=True, stochastic_level=False, trend=False, '
                    'dummy_seasonal=(), and trig_seasonal=(). This will replicate standard regression.')

            if pred.shape[1] > pred.shape[0]:
                warnings.warn('The number of predictors exceeds the number of observations. '
                              'Results will be sensitive to choice of priors.')
        else:
            pred = np.empty((resp.shape[0], 0))

        # CHECK COMPONENT ARGUMENTS
        if not isinstance(level, bool) or not isinstance(stochastic_level, bool):
            raise TypeError('level and stochastic_level must be of boolean type.')

        if not isinstance(trend, bool) or not isinstance(stochastic_trend, bool):
            raise TypeError('trend and stochastic_trend must be of boolean type.')

        if trend and not level:
            raise ConfigurationError('trend cannot be specified without a level component.')

        if not isinstance(dummy_seasonal, tuple):
            raise TypeError('dummy_seasonal must be a tuple.')

        if not isinstance(trig_seasonal, tuple):
            raise TypeError('trig_seasonal must be a tuple.')

        if not all(isinstance(v, tuple) for v in trig_seasonal):
            raise TypeError('Each element in trig_seasonal must be a tuple.')

        if not all(len(v) == 2 for v in trig_seasonal):
            raise ConfigurationError('A (period, num_harmonics) tuple must be provided for each specified '
                                     'trigonometric seasonal component.')

        trig_periodicities = tuple(v[0] for v in trig_seasonal)
        stochastic_dummy_seasonal = _check_bool_tuple('stochastic_dummy_seasonal', stochastic_dummy_seasonal,
                                                      dummy_seasonal, 'dummy seasonal')
        stochastic_trig_seasonal = _check_bool_tuple('stochastic_trig_seasonal', stochastic_trig_seasonal,
                                                     trig_seasonal, 'trigonometric seasonal')

        # BUILD THE STATE SPECIFICATION
        spec = StateSpecification()
        if trend:
            spec.add_local_linear_trend(stochastic_level=stochastic_level, stochastic_trend=stochastic_trend)
        elif level:
            spec.add_level(stochastic=stochastic_level)

        for period, stoch in zip(dummy_seasonal, stochastic_dummy_seasonal):
            spec.add_dummy_seasonal(period, stochastic=stoch)

        for (period, num_harmonics), stoch in zip(trig_seasonal, stochastic_trig_seasonal):
            spec.add_trig_seasonal(period, num_harmonics=num_harmonics, stochastic=stoch)

        if pred.shape[1] > 0:
            spec.add_regression(pred.shape[1])

        self.model: StateSpaceModel = spec.build()

        periodicities = dummy_seasonal + trig_periodicities
        if len(periodicities) > 0 and resp.shape[0] < 4 * max(periodicities):
            warnings.warn(f'It is recommended to have an observation count that is at least quadruple the '
                          f'highest periodicity specified. The max periodicity specified is '
                          f'{max(periodicities)}.')

        self.response = resp
        self.predictors = pred
        self.level = level
        self.stochastic_level = stochastic_level
        self.trend = trend
        self.stochastic_trend = stochastic_trend
        self.dummy_seasonal = dummy_seasonal
        self.stochastic_dummy_seasonal = stochastic_dummy_seasonal
        self.trig_seasonal = tuple(
            (c.period, c.num_harmonics) for c in self.model.components if c.kind == 'trig_seasonal')
        self.stochastic_trig_seasonal = stochastic_trig_seasonal

        if self.historical_time_index is None:
            self.historical_time_index = np.arange(resp.shape[0])

        if self.has_predictors and self.predictors_names is None:
            self.predictors_names = [f"x{i + 1}" for i in range(self.num_predictors)]

        if resp.shape[0] <= self.num_state_eqs:
            warnings.warn('The number of state equations implied by the model specification '
                          'is at least as large as the number of observations in the response '
                          'array. Predictions from the model may be significantly compromised.')

    @property
    def num_obs(self) -> int:
        return self.response.shape[0]

    @property
    def has_predictors(self) -> bool:
        return self.model.has_regression

    @property
    def num_predictors(self) -> int:
        return self.model.num_predictors

    @property
    def num_state_eqs(self) -> int:
        return self.model.num_state_eqs

    @property
    def num_stoch_states(self) -> int:
        return self.model.num_stoch_states

    @property
    def num_first_obs_ignore(self) -> int:
        return min(self.model.num_first_obs_ignore, self.num_obs - 1)

    @property
    def parameters(self) -> list:
        params = ['Irregular.Var']
        for c in self.model.components:
            params += c.params
        if self.has_predictors:
            params += [f"Coeff.{i}" for i in self.predictors_names]
        return params

    def _posterior_exists_check(self) -> None:
        if self.posterior is None:
            raise AttributeError("No posterior distribution was found. The sample() method must be called.")

    def sample(self,
               config: SamplerConfig,
               response_var_prior: VariancePrior = None,
               level_var_prior: VariancePrior = None,
               trend_var_prior: VariancePrior = None,
               dummy_seasonal_var_priors: tuple = (),
               trig_seasonal_var_priors: tuple = (),
               spike_slab_prior: SpikeSlabPrior = None,
               stop_event: threading.Event = None) -> Posterior:
        """
        Posterior distribution of the model by Gibbs sampling.

        :param config: SamplerConfig. Number of iterations, burn-in fraction, and seed.

        :param response_var_prior: VariancePrior for the irregular variance. Default uses shape 0.01
        and scale (0.01 * std(response))^2.

        :param level_var_prior: VariancePrior for the level variance. Default uses shape 0.01
        and scale (0.01 * std(response))^2.

        :param trend_var_prior: VariancePrior for the trend variance. Default uses shape 0.01
        and scale (0.2 * 0.01 * std(response))^2.

        :param dummy_seasonal_var_priors: tuple of VariancePrior, one per stochastic dummy seasonal
        component, in the order given by dummy_seasonal. Default is an empty tuple, i.e., default priors.

        :param trig_seasonal_var_priors: tuple of VariancePrior, one per stochastic trigonometric
        seasonal component, in the order given by trig_seasonal. Default is an empty tuple.

        :param spike_slab_prior: SpikeSlabPrior for the regression coefficients. Ignored if the
        model has no predictors.

        :param stop_event: Optional threading.Event. If set while sampling, SamplingCancelledError
        is raised and the draws retained so far are stored on the posterior attribute.

        :return: Posterior
        """
        state_var_priors = {}

        def _add(name, prior):
            if prior is None:
                return
            if not isinstance(prior, VariancePrior):
                raise TypeError(f'The prior for {name} must be a VariancePrior.')
            state_var_priors[name] = prior

        if level_var_prior is not None:
            if not (self.level and self.stochastic_level):
                raise ConfigurationError('level_var_prior was given, but the model has no stochastic level.')
            _add('Level', level_var_prior)

        if trend_var_prior is not None:
            if not (self.trend and self.stochastic_trend):
                raise ConfigurationError('trend_var_prior was given, but the model has no stochastic trend.')
            _add('Trend', trend_var_prior)

        for name, periods, stochastic, priors in (
                ('dummy_seasonal_var_priors', self.dummy_seasonal, self.stochastic_dummy_seasonal,
                 dummy_seasonal_var_priors),
                ('trig_seasonal_var_priors', [p for p, _ in self.trig_seasonal], self.stochastic_trig_seasonal,
                 trig_seasonal_var_priors)):
            if not isinstance(priors, tuple):
                raise TypeError(f'{name} must be a tuple.')
            if len(priors) == 0:
                continue
            stoch_periods = [p for p, s in zip(periods, stochastic) if s]
            if len(priors) != len(stoch_periods):
                raise ConfigurationError(f'{name} must have one VariancePrior per stochastic component '
                                         f'({len(stoch_periods)}).')
            for period, prior in zip(stoch_periods, priors):
                comp = [c for c in self.model.components if c.period == period][0]
                _add(comp.name, prior)

        self.sampler = MCMCSampler(
            model=self.model,
            response=self.response,
            config=config,
            predictors=self.predictors if self.has_predictors else None,
            response_var_prior=response_var_prior,
            state_var_priors=state_var_priors,
            spike_slab_prior=spike_slab_prior
        )

        try:
            self.posterior = self.sampler.run(stop_event=stop_event)
        except SamplingCancelledError as e:
            # Nothing retained before the stop leaves the model unsampled.
            self.posterior = e.posterior if len(e.posterior) > 0 else None
            raise

        return self.posterior

    def forecast(self,
                 config: ForecastConfig,
                 future_predictors: Union[np.ndarray, list, tuple, pd.Series, pd.DataFrame] = None
                 ) -> ForecastDistribution:
        """
        Posterior forecast distribution for the response and states.

        :param config: ForecastConfig. Horizon and quantile levels.

        :param future_predictors: array-like of dimension (h, k). Required if the model has predictors.

        :return: ForecastDistribution
        """
        self._posterior_exists_check()
        engine = ForecastEngine(model=self.model,
                                posterior=self.posterior,
                                historical_time_index=self.historical_time_index,
                                predictors_names=self.predictors_names)
        return engine.forecast(config, future_predictors=future_predictors)

    def posterior_dict(self) -> dict:
        """
        :return: dict mapping each parameter name to its draw-indexed ndarray.
        """
        self._posterior_exists_check()
        posterior = self.posterior
        state_err_cov = posterior.state_error_covariance

        post_dict = {'Irregular.Var': posterior.response_error_variance}
        for c in self.model.components:
            for p in c.params:
                idx = c.stochastic_index
                post_dict[p] = state_err_cov[:, idx, idx]

        if self.has_predictors:
            reg_coeff = posterior.regression_coefficients
            for i, name in enumerate(self.predictors_names):
                post_dict[f"Coeff.{name}"] = reg_coeff[:, i]

        return post_dict

    def summary(self, cred_int_level: float = 0.05) -> dict:
        """
        Summary of the posterior distribution for each parameter in the model.

        Regression coefficient statistics are computed over the draws in which the
        coefficient is included, and the inclusion probability is reported alongside.

        :param cred_int_level: float in (0, 1). Defines the width of the credible interval.
        E.g., a value of 0.05 will represent all values between the 2.5% and 97.5% quantiles.

        :return: A dictionary that summarizes the statistics of each of the model's parameters.
        """
        self._posterior_exists_check()

        if isinstance(cred_int_level, float) and (0 < cred_int_level < 1):
            lb = 0.5 * cred_int_level
            ub = 1. - lb
        else:
            raise ConfigurationError('cred_int_level must be a value in the interval (0, 1).')

        posterior = self.posterior
        num_samp = posterior.num_samp
        post_dict = self.posterior_dict()
        smy = {'Number of posterior samples (after burn)': num_samp}

        if self.has_predictors:
            inclusion = posterior.inclusion
            incl_prob = inclusion_probabilities(inclusion)
            cond_mean = conditional_mean(posterior.regression_coefficients, inclusion)

        for k, v in post_dict.items():
            if 'Coeff.' in k:
                i = self.predictors_names.index(k.replace('Coeff.', '', 1))
                v = v[inclusion[:, i]]
                smy[f"Posterior.InclusionProb[{k}]"] = incl_prob[i]
                if v.size == 0:
                    smy[f"Posterior.Mean[{k}]"] = np.nan
                    smy[f"Posterior.StdDev[{k}]"] = np.nan
                    smy[f"Posterior.CredInt.LB[{k}]"] = np.nan
                    smy[f"Posterior.CredInt.UB[{k}]"] = np.nan
                    smy[f"Posterior.ProbPositive[{k}]"] = np.nan
                    continue
                smy[f"Posterior.Mean[{k}]"] = cond_mean[i]
            else:
                smy[f"Posterior.Mean[{k}]"] = np.mean(v)

            smy[f"Posterior.StdDev[{k}]"] = np.std(v)
            smy[f"Posterior.CredInt.LB[{k}]"] = np.quantile(v, lb)
            smy[f"Posterior.CredInt.UB[{k}]"] = np.quantile(v, ub)

            if 'Coeff.' in k:
                smy[f"Posterior.ProbPositive[{k}]"] = np.mean(v > 0)

        return smy

    def components(self, num_first_obs_ignore: int = None) -> dict:
        """
        In-sample posterior of each time series component.

        :param num_first_obs_ignore: non-negative integer. Number of leading observations to drop,
        since the state vector is initialized diffusely. Default is the number implied by the
        model specification.

        :return: dict mapping each component name, plus 'Irregular', to an ndarray of dimension
        (S, n - num_first_obs_ignore).
        """
        self._posterior_exists_check()
        posterior = self.posterior

        if num_first_obs_ignore is None:
            num_first_obs_ignore = self.num_first_obs_ignore
        elif not isinstance(num_first_obs_ignore, int) or not 0 <= num_first_obs_ignore < self.num_obs:
            raise ConfigurationError('num_first_obs_ignore must be a non-negative integer smaller than '
                                     'the number of observations.')

        i0 = num_first_obs_ignore
        y = self.response[i0:, 0]
        state = posterior.smoothed_state[:, i0:, :]
        Z = self.model.observation_row[0, 0]

        comps = {'Irregular': y[np.newaxis] - posterior.smoothed_prediction[:, i0:]}
        for c in self.model.components:
            start_index, end_index = c.start_state_eqn_index, c.end_state_eqn_index
            if c.kind == 'trend':
                comps[c.name] = state[:, :, start_index]
            elif c.kind == 'regression':
                comps[c.name] = posterior.regression_coefficients.dot(self.predictors[i0:].T)
            else:
                comps[c.name] = (Z[np.newaxis, np.newaxis, start_index:end_index]
                                 * state[:, :, start_index:end_index]).sum(axis=2)

        return comps

    def waic(self) -> WAIC:
        self._posterior_exists_check()
        posterior = self.posterior
        i0 = self.num_first_obs_ignore

        return watanabe_akaike(
            response=self.response[i0:, 0],
            post_resp_mean=posterior.filtered_prediction[:, i0:],
            post_err_var=posterior.response_variance[:, i0:]
        )

    def r_squared(self) -> np.ndarray:
        """
        :return: ndarray of dimension (S,). Bayesian R-squared per retained draw.
        """
        self._posterior_exists_check()
        posterior = self.posterior
        i0 = self.num_first_obs_ignore

        return r_squared(posterior.smoothed_prediction[:, i0:], posterior.response_error_variance)
