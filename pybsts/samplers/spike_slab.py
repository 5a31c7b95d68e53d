"""
Spike-and-slab regression for the static regression component.

Prior, for an inclusion vector g:

    g(j) ~ Bernoulli(pi(j)),                                independently
    beta(g) | sigma2, g ~ N(b(g), sigma2 * Omega(g)^-1),    beta(j) = 0 if not g(j)
    sigma2 ~ IG(shape, scale)

The slab precision defaults to a Zellner-style prior worth prior_obs
observations,

    Omega = prior_obs / n * (w * X'X + (1 - w) * diag(X'X)),

so a larger prior_obs pulls the posterior more strongly towards b.

Indicators are drawn one at a time from their full conditional with beta and
sigma2 integrated out. Variables with pi(j) in {0, 1} are never visited, so
the chain on the remaining indicators keeps its stationary distribution.
"""
import numpy as np
from dataclasses import dataclass
from typing import NamedTuple, Union
from scipy.linalg import cho_factor, cho_solve, solve_triangular
from scipy.special import expit
from ..exceptions import ConfigurationError
from ..utils import array_operations as ao
from ..vectorized import distributions as dist


@dataclass(frozen=True)
class SpikeSlabPrior:
    """Spike-and-slab prior for regression coefficients.

    Parameters
    ----------
    inclusion_prob:
        Prior inclusion probability per predictor. 1 forces a predictor in,
        0 forces it out. Default is uniform, min(1, expected_model_size / k).
    expected_model_size:
        Prior expected number of included predictors, used only when
        inclusion_prob is None.
    coeff_mean_prior:
        Prior mean of each coefficient. Default is 0.
    coeff_prec_prior:
        Optional (k, k) slab precision matrix (scaled by the residual variance).
        Overrides the Zellner-style default built from prior_obs.
    prior_obs:
        Weight of the slab prior in equivalent observations.
    diagonal_shrinkage:
        Weight w on X'X versus diag(X'X) in the default slab precision.
    """
    inclusion_prob: Union[tuple, list, np.ndarray, None] = None
    expected_model_size: Union[int, float] = 1.
    coeff_mean_prior: Union[tuple, list, np.ndarray, None] = None
    coeff_prec_prior: Union[tuple, list, np.ndarray, None] = None
    prior_obs: Union[int, float] = 1.
    diagonal_shrinkage: float = 0.5

    def __post_init__(self) -> None:
        if isinstance(self.prior_obs, bool) or not isinstance(self.prior_obs, (int, float)):
            raise TypeError('prior_obs must be a non-negative integer or float.')
        if not np.isfinite(self.prior_obs) or self.prior_obs < 0:
            raise ConfigurationError('prior_obs must be a finite, non-negative number.')
        if isinstance(self.expected_model_size, bool) or not isinstance(self.expected_model_size, (int, float)):
            raise TypeError('expected_model_size must be a strictly positive integer or float.')
        if not self.expected_model_size > 0:
            raise ConfigurationError('expected_model_size must be strictly positive.')
        if not isinstance(self.diagonal_shrinkage, (int, float)) or not 0. <= self.diagonal_shrinkage <= 1.:
            raise ConfigurationError('diagonal_shrinkage must be a value in the interval [0, 1].')


class SpikeSlabDraw(NamedTuple):
    coefficients: np.ndarray
    inclusion: np.ndarray
    response_error_variance: float


def _as_vector(name: str, x, k: int) -> np.ndarray:
    if not isinstance(x, (np.ndarray, list, tuple)):
        raise TypeError(f'{name} must be a Numpy array, list, or tuple.')
    v = np.asarray(x, dtype=np.float64)
    if v.ndim == 2 and 1 in v.shape:
        v = v.flatten()
    if v.ndim != 1 or v.size != k:
        raise ConfigurationError(f'{name} must have {k} elements, one per predictor.')
    if np.any(np.isnan(v)):
        raise ConfigurationError(f'{name} cannot have NaN values.')
    if np.any(np.isinf(v)):
        raise ConfigurationError(f'{name} cannot have Inf and/or -Inf values.')
    return v


class SpikeSlabSampler:
    def __init__(self,
                 predictors: np.ndarray,
                 prior: SpikeSlabPrior,
                 response_var_shape_prior: float,
                 response_var_scale_prior: float,
                 observed: np.ndarray = None):
        """
        :param predictors: ndarray of dimension (n, k).
        :param prior: SpikeSlabPrior.
        :param response_var_shape_prior: Inverse-Gamma shape prior for the residual variance.
        :param response_var_scale_prior: Inverse-Gamma scale prior for the residual variance.
        :param observed: Boolean ndarray of dimension (n,). Rows with a missing response
        are excluded from the regression update. Default is all rows.
        """
        if not isinstance(prior, SpikeSlabPrior):
            raise TypeError('prior must be a SpikeSlabPrior.')

        n, k = predictors.shape
        if observed is None:
            observed = np.ones(n, dtype=bool)
        X = predictors[observed]
        n_obs = X.shape[0]
        XtX = X.T @ X

        if prior.inclusion_prob is None:
            pi = np.full(k, min(1., prior.expected_model_size / k))
        else:
            pi = _as_vector('inclusion_prob', prior.inclusion_prob, k)
            if np.any(pi < 0.) or np.any(pi > 1.):
                raise ConfigurationError('Every inclusion probability must be in the interval [0, 1].')

        if prior.coeff_mean_prior is None:
            b = np.zeros((k, 1))
        else:
            b = _as_vector('coeff_mean_prior', prior.coeff_mean_prior, k).reshape(-1, 1)

        if prior.coeff_prec_prior is None:
            if prior.prior_obs == 0 and np.any(pi > 0.):
                raise ConfigurationError(
                    'prior_obs is 0, which leaves the slab prior without any weight, but some '
                    'predictors can be included (inclusion probability > 0). Forced or '
                    'possible inclusion requires a strictly positive prior weight.')
            w = prior.diagonal_shrinkage
            Omega = prior.prior_obs / n_obs * (w * XtX + (1. - w) * np.diag(np.diag(XtX)))
        else:
            Omega = np.asarray(prior.coeff_prec_prior, dtype=np.float64)
            if Omega.shape != (k, k):
                raise ConfigurationError(f'coeff_prec_prior must have shape ({k}, {k}).')
            if not ao.is_symmetric(Omega):
                raise ConfigurationError('coeff_prec_prior must be a symmetric matrix.')
            if not ao.is_positive_definite(Omega):
                raise ConfigurationError('coeff_prec_prior must be a positive definite matrix.')

        self.predictors = predictors
        self.observed = observed
        self.num_obs = n_obs
        self.num_predictors = k
        self.inclusion_prob = pi
        self.coeff_mean_prior = b
        self.coeff_prec_prior = Omega
        self.response_var_shape_prior = response_var_shape_prior
        self.response_var_scale_prior = response_var_scale_prior
        self.response_var_shape_post = response_var_shape_prior + 0.5 * n_obs
        self.forced_in = pi == 1.
        self.forced_out = pi == 0.
        self.free_index = np.flatnonzero(~self.forced_in & ~self.forced_out)
        self._XtX = XtX
        self._Omega_b = Omega @ b

        with np.errstate(divide='ignore'):
            self._log_pi = np.log(pi)
            self._log_1m_pi = np.log(1. - pi)

    def initial_inclusion(self) -> np.ndarray:
        return ~self.forced_out

    def _posterior_moments(self, g: np.ndarray, Xty: np.ndarray, yty: float):
        """
        Conditional posterior moments of beta(g) and the residual sum of squares.
        Returns (Cholesky factor of V^-1, beta mean, log det Omega(g), SS).
        """
        Omega_g = self.coeff_prec_prior[np.ix_(g, g)]
        b_g = self.coeff_mean_prior[g]
        prec_post = self._XtX[np.ix_(g, g)] + Omega_g
        chol = cho_factor(prec_post, lower=True)
        beta_mean = cho_solve(chol, Xty[g] + self._Omega_b[g])
        ss = (yty
              + (b_g.T @ Omega_g @ b_g)[0, 0]
              - (beta_mean.T @ prec_post @ beta_mean)[0, 0])
        return chol, beta_mean, Omega_g, max(ss, 0.)

    def log_marginal_likelihood(self, g: np.ndarray, Xty: np.ndarray, yty: float) -> float:
        """
        log p(y | g) up to a constant that does not depend on g, with beta and
        sigma2 integrated out.
        """
        shape_post = self.response_var_shape_post
        if not np.any(g):
            return -shape_post * np.log(self.response_var_scale_prior + 0.5 * yty)

        chol, _, Omega_g, ss = self._posterior_moments(g, Xty, yty)
        log_det_prec_post = 2. * np.sum(np.log(np.diag(chol[0])))
        log_det_omega = np.linalg.slogdet(Omega_g)[1]
        return (0.5 * log_det_omega
                - 0.5 * log_det_prec_post
                - shape_post * np.log(self.response_var_scale_prior + 0.5 * ss))

    def draw(self,
             y: np.ndarray,
             inclusion: np.ndarray) -> SpikeSlabDraw:
        """
        One Gibbs update of (g, sigma2, beta) given the response net of all other
        model components.

        :param y: ndarray of dimension (n, 1).
        :param inclusion: Boolean ndarray of dimension (k,). Current indicators.
        :return: SpikeSlabDraw
        """
        y_obs = y[self.observed]
        X = self.predictors[self.observed]
        Xty = X.T @ y_obs
        yty = (y_obs.T @ y_obs)[0, 0]

        g = inclusion.copy()
        g[self.forced_in] = True
        g[self.forced_out] = False

        for j in np.random.permutation(self.free_index):
            g[j] = True
            log_on = self.log_marginal_likelihood(g, Xty, yty) + self._log_pi[j]
            g[j] = False
            log_off = self.log_marginal_likelihood(g, Xty, yty) + self._log_1m_pi[j]
            g[j] = dist.vec_bernoulli(expit(log_on - log_off))

        beta = np.zeros((self.num_predictors, 1))
        if np.any(g):
            chol, beta_mean, _, ss = self._posterior_moments(g, Xty, yty)
        else:
            chol, beta_mean, ss = None, None, yty

        response_var_scale_post = self.response_var_scale_prior + 0.5 * ss
        sigma2 = dist.vec_ig(self.response_var_shape_post, response_var_scale_post)

        if np.any(g):
            # V = (L L')^-1, so L'^-1 z has covariance V
            z = np.random.standard_normal((beta_mean.shape[0], 1))
            beta[g] = beta_mean + np.sqrt(sigma2) * solve_triangular(chol[0], z, trans='T', lower=True)

        return SpikeSlabDraw(beta, g, float(sigma2))


def inclusion_probabilities(inclusion: np.ndarray) -> np.ndarray:
    """
    Posterior inclusion probability of each predictor.

    :param inclusion: Boolean ndarray of dimension (S, k), one row per retained draw.
    :return: ndarray of dimension (k,).
    """
    return np.mean(np.asarray(inclusion, dtype=np.float64), axis=0)


def conditional_mean(coefficients: np.ndarray, inclusion: np.ndarray) -> np.ndarray:
    """
    Posterior mean of each coefficient over the draws in which it is included.
    Averaging over all draws would dilute the estimate with the structural
    zeros of the excluded draws. NaN for a predictor that is never included.

    :param coefficients: ndarray of dimension (S, k).
    :param inclusion: Boolean ndarray of dimension (S, k).
    :return: ndarray of dimension (k,).
    """
    inc = np.asarray(inclusion, dtype=bool)
    counts = inc.sum(axis=0)
    totals = np.where(inc, coefficients, 0.).sum(axis=0)
    with np.errstate(invalid='ignore', divide='ignore'):
        return np.where(counts > 0, totals / np.maximum(counts, 1), np.nan)
