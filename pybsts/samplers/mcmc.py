import threading
import warnings
import numpy as np
from numpy import dot
from numba import njit
from typing import NamedTuple, Union
from statsmodels.tsa.statespace.structural import UnobservedComponents as UC
from ..config import SamplerConfig, VariancePrior
from ..exceptions import ConfigurationError, FitFailureError, SamplingCancelledError
from ..statespace.durbin_koopman_smoother import dk_smoother as dks
from ..statespace.kalman_filter import kalman_filter as kf
from ..statespace.specification import StateSpaceModel, max_harmonics
from ..vectorized import distributions as dist
from .spike_slab import SpikeSlabPrior, SpikeSlabSampler


class PosteriorDraw(NamedTuple):
    smoothed_state: np.ndarray
    smoothed_errors: np.ndarray
    smoothed_prediction: np.ndarray
    filtered_prediction: np.ndarray
    response_variance: np.ndarray
    response_error_variance: float
    state_error_covariance: np.ndarray
    regression_coefficients: np.ndarray
    inclusion: np.ndarray


class Posterior:
    """
    Ordered, append-only collection of retained Gibbs draws. Each draw is a
    PosteriorDraw record; the stacked properties return draw-indexed arrays
    whose leading dimension is the retained draw.

    Shapes, for S draws, n observations, m state equations, q stochastic state
    equations, and k predictors:

    smoothed_state: (S, n, m)
    smoothed_errors: (S, n, 1 + q)
    smoothed_prediction, filtered_prediction, response_variance: (S, n)
    response_error_variance: (S,)
    state_error_covariance: (S, q, q)
    regression_coefficients, inclusion: (S, k)
    """

    def __init__(self, draws: list = None):
        self._draws = [] if draws is None else list(draws)

    def append(self, draw: PosteriorDraw) -> None:
        self._draws.append(draw)

    def __len__(self) -> int:
        return len(self._draws)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return Posterior(self._draws[item])
        return self._draws[item]

    def __iter__(self):
        return iter(self._draws)

    @property
    def num_samp(self) -> int:
        return len(self._draws)

    def _stack(self, field: str) -> np.ndarray:
        return np.stack([getattr(d, field) for d in self._draws])

    @property
    def smoothed_state(self) -> np.ndarray:
        return self._stack('smoothed_state')

    @property
    def smoothed_errors(self) -> np.ndarray:
        return self._stack('smoothed_errors')

    @property
    def smoothed_prediction(self) -> np.ndarray:
        return self._stack('smoothed_prediction')

    @property
    def filtered_prediction(self) -> np.ndarray:
        return self._stack('filtered_prediction')

    @property
    def response_variance(self) -> np.ndarray:
        return self._stack('response_variance')

    @property
    def response_error_variance(self) -> np.ndarray:
        return np.array([d.response_error_variance for d in self._draws])

    @property
    def state_error_covariance(self) -> np.ndarray:
        return self._stack('state_error_covariance')

    @property
    def regression_coefficients(self) -> np.ndarray:
        return self._stack('regression_coefficients')

    @property
    def inclusion(self) -> np.ndarray:
        return self._stack('inclusion')


class ModelSetup(NamedTuple):
    response_var_shape_prior: float
    response_var_scale_prior: float
    state_var_shape_post: np.ndarray
    state_var_scale_prior: np.ndarray
    gibbs_iter0_init_state: np.ndarray
    gibbs_iter0_response_error_variance: np.ndarray
    gibbs_iter0_state_error_covariance: np.ndarray
    init_state_plus_values: np.ndarray
    init_state_covariance: np.ndarray
    gibbs_iter0_reg_coeff: np.ndarray


@njit
def _set_seed(value):
    np.random.seed(value)


def _first_value(x: np.ndarray):
    index = np.flatnonzero(~np.isnan(x))
    return x.flatten()[index[0]], index[0]


def _last_value(x: np.ndarray):
    index = np.flatnonzero(~np.isnan(x))
    return x.flatten()[index[-1]], index[-1]


class MCMCSampler:
    def __init__(self,
                 model: StateSpaceModel,
                 response: np.ndarray,
                 config: SamplerConfig,
                 predictors: np.ndarray = None,
                 response_var_prior: VariancePrior = None,
                 state_var_priors: dict = None,
                 spike_slab_prior: SpikeSlabPrior = None):
        """
        Gibbs sampler for a Bayesian structural time series model.

        :param model: StateSpaceModel built from a StateSpecification.

        :param response: ndarray of dimension (n, 1). Missing values are NaN.

        :param config: SamplerConfig.

        :param predictors: ndarray of dimension (n, k). Required if and only if the model
        has a regression component.

        :param response_var_prior: VariancePrior for the irregular (response error) variance.

        :param state_var_priors: dict mapping a stochastic component name (e.g., 'Level',
        'Trend', 'Dummy-Seasonal.12') to its VariancePrior. Components not in the dict use
        default priors.

        :param spike_slab_prior: SpikeSlabPrior for the regression coefficients. Default is
        SpikeSlabPrior().
        """
        if not isinstance(model, StateSpaceModel):
            raise TypeError('model must be a StateSpaceModel. Use StateSpecification.build().')
        if not isinstance(config, SamplerConfig):
            raise TypeError('config must be a SamplerConfig.')

        response = np.asarray(response, dtype=np.float64)
        if response.ndim == 1:
            response = response.reshape(-1, 1)
        if response.ndim != 2 or response.shape[1] != 1:
            raise ConfigurationError('The response must have shape (n, 1).')
        if np.all(np.isnan(response)):
            raise ConfigurationError('The response cannot be entirely missing.')
        n = response.shape[0]

        if model.has_regression:
            if predictors is None:
                raise ConfigurationError('The state specification has a regression component, '
                                         'but no predictors were provided.')
            predictors = np.asarray(predictors, dtype=np.float64)
            if predictors.ndim != 2 or predictors.shape[1] != model.num_predictors:
                raise ConfigurationError(f'The predictors array must have shape (n, {model.num_predictors}).')
            if predictors.shape[0] != n:
                raise ConfigurationError('The number of observations in the predictors array must match '
                                         'the number of observations in the response array.')
        else:
            if predictors is not None and np.asarray(predictors).size > 0:
                raise ConfigurationError('Predictors were provided, but the state specification '
                                         'has no regression component.')
            predictors = np.empty((n, 0))

        if response_var_prior is None:
            response_var_prior = VariancePrior()
        if state_var_priors is None:
            state_var_priors = {}
        stoch_names = [c.name for c in model.components if c.stochastic]
        for k in state_var_priors:
            if k not in stoch_names:
                raise ConfigurationError(f"'{k}' is not a stochastic component of the model. "
                                         f"Valid names are {stoch_names}.")
        if spike_slab_prior is None:
            spike_slab_prior = SpikeSlabPrior()

        self.model = model
        self.response = response
        self.predictors = predictors
        self.config = config
        self.response_var_prior = response_var_prior
        self.state_var_priors = state_var_priors
        self.spike_slab_prior = spike_slab_prior
        self.observed = ~np.isnan(response[:, 0])
        self.model_setup = None
        self.spike_slab = None

    @property
    def num_obs(self) -> int:
        return self.response.shape[0]

    def _gibbs_iter0_init_trend(self) -> float:
        """
        Average slope between the first and last non-missing values of the response.
        """
        first_y, first_idx = _first_value(self.response)
        last_y, last_idx = _last_value(self.response)
        num_steps = last_idx - first_idx
        if num_steps == 0:
            return 0.
        else:
            return (last_y - first_y) / num_steps

    def _gibbs_iter0_reg_coeff(self) -> Union[np.ndarray, None]:
        """
        Initial regression coefficients from a quick maximum likelihood fit of the
        same structural model with statsmodels.
        """
        model = self.model
        level = any(c.kind == 'level' for c in model.components)
        trend = any(c.kind == 'trend' for c in model.components)
        stochastic_level = any(c.kind == 'level' and c.stochastic for c in model.components)
        stochastic_trend = any(c.kind == 'trend' and c.stochastic for c in model.components)

        uc_season_spec_args, uc_season_stoch_args = [], []
        for c in model.components:
            if c.kind == 'dummy_seasonal':
                uc_season_spec_args.append({'period': c.period, 'harmonics': max_harmonics(c.period)})
                uc_season_stoch_args.append(c.stochastic)
            elif c.kind == 'trig_seasonal':
                uc_season_spec_args.append({'period': c.period, 'harmonics': c.num_harmonics})
                uc_season_stoch_args.append(c.stochastic)

        try:
            uc_mod = UC(
                endog=self.response,
                exog=self.predictors,
                level=level,
                stochastic_level=stochastic_level,
                trend=trend,
                stochastic_trend=stochastic_trend,
                freq_seasonal=uc_season_spec_args if len(uc_season_spec_args) > 0 else None,
                stochastic_freq_seasonal=uc_season_stoch_args if len(uc_season_stoch_args) > 0 else None,
                irregular=True
            )
            with warnings.catch_warnings():
                warnings.simplefilter('ignore')
                uc_fit = uc_mod.fit(disp=False, method='powell', maxiter=10)
                uc_fit = uc_mod.fit(disp=False, start_params=uc_fit.params)
            params = np.asarray(uc_fit.params)
            beta = params[[i for i, j in enumerate(uc_fit.param_names) if j.split('.')[0] == 'beta']]
            beta = beta.reshape(-1, 1)
            if beta.shape[0] != model.num_predictors or not np.all(np.isfinite(beta)):
                raise ValueError('statsmodels returned unusable regression coefficients.')
            return beta
        except Exception as e:
            warnings.warn(f"An attempt was made to establish initial Gibbs regression coefficient "
                          f"values using statsmodels' UnobservedComponents module, but failed ({e}). "
                          f"The prior mean for the regression coefficients will be used instead.")
            return None

    def _model_setup(self) -> ModelSetup:
        model = self.model
        n = self.num_obs
        var_y = np.nanvar(self.response, ddof=1)
        if not np.isfinite(var_y) or var_y <= 0:
            var_y = 1.
        default_shape_prior = 0.01
        default_root_scale = 0.01 * np.sqrt(var_y)

        response_var_shape_prior, response_var_scale_prior = self.response_var_prior.resolve(
            default_shape_prior, default_root_scale ** 2)

        state_var_shape_post = []
        state_var_scale_prior = []
        gibbs_iter0_state_error_var = []
        gibbs_iter0_init_state = []
        init_state_variances = []

        for c in model.components:
            num_eqs = c.num_state_eqs
            if c.stochastic:
                prior = self.state_var_priors.get(c.name, VariancePrior())
                if c.kind == 'trend':
                    default_scale = (0.2 * default_root_scale) ** 2
                elif c.kind == 'trig_seasonal':
                    default_scale = default_root_scale ** 2 / num_eqs
                else:
                    default_scale = default_root_scale ** 2
                shape_prior, scale_prior = prior.resolve(default_shape_prior, default_scale)

                # Trigonometric harmonics share one variance, so the shape is
                # updated with the residuals of every harmonic equation.
                num_stoch_eqs = c.num_stoch_state_eqs
                state_var_shape_post.append(shape_prior + 0.5 * n * num_stoch_eqs)
                state_var_scale_prior.append(scale_prior)
                gibbs_iter0_state_error_var += [scale_prior] * num_stoch_eqs

            if c.kind == 'level':
                gibbs_iter0_init_state.append(_first_value(self.response)[0])
                init_state_variances.append(1e6)
            elif c.kind == 'trend':
                gibbs_iter0_init_state.append(self._gibbs_iter0_init_trend())
                init_state_variances.append(1e6)
            elif c.kind == 'regression':
                # The regression state is a constant 1 with no uncertainty.
                gibbs_iter0_init_state.append(1.)
                init_state_variances.append(0.)
            else:
                gibbs_iter0_init_state += [0.] * num_eqs
                init_state_variances += [1e6] * num_eqs

        if len(state_var_shape_post) > 0:
            state_var_shape_post = np.vstack(state_var_shape_post)
            state_var_scale_prior = np.vstack(state_var_scale_prior)
            gibbs_iter0_state_error_covariance = np.diag(gibbs_iter0_state_error_var)
        else:
            state_var_shape_post = np.empty((0, 1))
            state_var_scale_prior = np.empty((0, 1))
            gibbs_iter0_state_error_covariance = np.empty((0, 0), dtype=np.float64)

        if model.has_regression:
            self.spike_slab = SpikeSlabSampler(
                predictors=self.predictors,
                prior=self.spike_slab_prior,
                response_var_shape_prior=response_var_shape_prior,
                response_var_scale_prior=response_var_scale_prior,
                observed=self.observed
            )
            gibbs_iter0_reg_coeff = self._gibbs_iter0_reg_coeff()
            if gibbs_iter0_reg_coeff is None:
                gibbs_iter0_reg_coeff = self.spike_slab.coeff_mean_prior.copy()
            gibbs_iter0_reg_coeff[self.spike_slab.forced_out] = 0.
        else:
            gibbs_iter0_reg_coeff = np.empty((0, 1))

        self.model_setup = ModelSetup(
            response_var_shape_prior,
            response_var_scale_prior,
            state_var_shape_post,
            state_var_scale_prior,
            np.vstack(gibbs_iter0_init_state).astype(np.float64),
            np.array([[response_var_scale_prior]]),
            gibbs_iter0_state_error_covariance,
            np.zeros((model.num_state_eqs, 1)),
            np.diag(np.array(init_state_variances, dtype=np.float64)),
            gibbs_iter0_reg_coeff
        )

        return self.model_setup

    def run(self, stop_event: threading.Event = None) -> Posterior:
        """
        Runs config.num_iter Gibbs iterations and returns the draws after burn-in.

        :param stop_event: Optional threading.Event. It is checked before every
        iteration; if set, SamplingCancelledError is raised with the draws retained
        so far.

        :return: Posterior with config.num_retained draws.
        """
        config = self.config
        if config.seed is not None:
            _set_seed(config.seed)  # for Numba JIT functions
            np.random.seed(config.seed)

        model = self.model
        setup = self._model_setup()
        y = self.response
        X = self.predictors
        observed = self.observed
        n = self.num_obs
        n_obs = int(observed.sum())
        q = model.num_stoch_states
        Z = model.observation_matrix(n)
        T = model.state_transition_matrix
        C = model.state_intercept_matrix
        R = model.state_error_transformation_matrix
        H = model.state_sse_transformation_matrix
        n_ones = np.ones((n, 1))
        q_eye = np.eye(q)

        if model.has_regression:
            reg_idx = model.component('Regression').start_state_eqn_index
            reg_coeff = setup.gibbs_iter0_reg_coeff
            inclusion = self.spike_slab.initial_inclusion()
        else:
            reg_idx = None
            reg_coeff = np.empty((0, 1))
            inclusion = np.empty(0, dtype=bool)

        init_state = setup.gibbs_iter0_init_state
        init_state_plus = setup.init_state_plus_values
        init_state_covariance = setup.init_state_covariance
        response_err_var = setup.gibbs_iter0_response_error_variance
        state_err_cov = setup.gibbs_iter0_state_error_covariance
        response_var_shape_post = setup.response_var_shape_prior + 0.5 * n_obs

        posterior = Posterior()
        for s in range(config.num_iter):
            if stop_event is not None and stop_event.is_set():
                raise SamplingCancelledError(posterior, s)

            retain = s >= config.num_burn

            if model.has_regression:
                Z[:, 0, reg_idx] = X.dot(reg_coeff)[:, 0]

            try:
                if retain:
                    y_kf = kf(y=y,
                              observation_matrix=Z,
                              state_transition_matrix=T,
                              state_intercept_matrix=C,
                              state_error_transformation_matrix=R,
                              response_error_variance_matrix=response_err_var,
                              state_error_covariance_matrix=state_err_cov,
                              init_state=init_state,
                              init_state_covariance=init_state_covariance)

                dk = dks(y=y,
                         observation_matrix=Z,
                         state_transition_matrix=T,
                         state_intercept_matrix=C,
                         state_error_transformation_matrix=R,
                         response_error_variance_matrix=response_err_var,
                         state_error_covariance_matrix=state_err_cov,
                         init_state=init_state,
                         init_state_plus=init_state_plus,
                         init_state_covariance=init_state_covariance)
            except (FloatingPointError, np.linalg.LinAlgError) as e:
                raise FitFailureError(s, str(e)) from e

            _smoothed_errors = dk.simulated_smoothed_errors
            _smoothed_state = dk.simulated_smoothed_state
            _smoothed_prediction = dk.simulated_smoothed_prediction

            # Draw new state error variances
            if q > 0:
                state_resid = _smoothed_errors[:, 1:, 0]
                state_sse = dot(state_resid.T ** 2, n_ones)
                state_var_scale_post = setup.state_var_scale_prior + 0.5 * dot(H, state_sse)
                state_err_var_post = dist.vec_ig(setup.state_var_shape_post, state_var_scale_post)
                new_state_err_cov = q_eye * dot(H.T, state_err_var_post)
            else:
                new_state_err_cov = state_err_cov

            # Draw regression coefficients, inclusion indicators, and the response variance
            if model.has_regression:
                smooth_time_prediction = _smoothed_prediction - Z[:, :, reg_idx]
                y_tilde = y - smooth_time_prediction
                try:
                    ss_draw = self.spike_slab.draw(y_tilde, inclusion)
                except np.linalg.LinAlgError as e:
                    raise FitFailureError(s, str(e)) from e
                reg_coeff = ss_draw.coefficients
                inclusion = ss_draw.inclusion
                new_response_err_var = ss_draw.response_error_variance
            else:
                resp_resid = _smoothed_errors[observed, 0, 0]
                response_var_scale_post = setup.response_var_scale_prior + 0.5 * dot(resp_resid, resp_resid)
                new_response_err_var = float(dist.vec_ig(response_var_shape_post, response_var_scale_post))

            if not np.isfinite(new_response_err_var) or new_response_err_var <= 0:
                raise FitFailureError(s, 'the response error variance draw is not finite and positive')
            if q > 0 and not np.all(np.isfinite(new_state_err_cov)):
                raise FitFailureError(s, 'a state error variance draw is not finite')

            response_err_var = np.array([[new_response_err_var]])
            state_err_cov = new_state_err_cov

            if retain:
                posterior.append(PosteriorDraw(
                    smoothed_state=_smoothed_state[:n, :, 0],
                    smoothed_errors=_smoothed_errors[:, :, 0],
                    smoothed_prediction=_smoothed_prediction[:, 0],
                    filtered_prediction=y_kf.one_step_ahead_prediction[:, 0],
                    response_variance=y_kf.response_variance[:, 0, 0],
                    response_error_variance=new_response_err_var,
                    state_error_covariance=state_err_cov,
                    regression_coefficients=reg_coeff[:, 0].copy(),
                    inclusion=inclusion.copy()
                ))

        return posterior
