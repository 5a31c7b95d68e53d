import warnings
import numpy as np
from typing import NamedTuple
from scipy.special import logsumexp
from scipy.stats import norm


class WAIC(NamedTuple):
    waic: float
    eff_num_params: float
    post_var_lppd: np.ndarray


def pointwise_loglike_norm(response, response_mean, error_variance):
    return norm.logpdf(response, loc=response_mean, scale=np.sqrt(error_variance))


def watanabe_akaike(response: np.ndarray,
                    post_resp_mean: np.ndarray,
                    post_err_var: np.ndarray) -> WAIC:
    """
    Widely applicable information criterion, Gelman, Hwang, and Vehtari (2013),
    Section 3.4.

        lppd = SUM[log(1/S * SUM[p(y_i | theta(s)), s=1,...,S]), i=1,...,n]
        p_waic = SUM[VAR[log p(y_i | theta(s)), s=1,...,S], i=1,...,n]
        WAIC = -2 * (lppd - p_waic)

    For a state space model p(y_i | theta(s)) is the one-step-ahead predictive
    density from the Kalman filter, N(y_i; filtered prediction, F_i(s)), so
    post_err_var carries one variance per draw and observation. Missing
    observations do not contribute.

    :param response: ndarray of dimension (n,).
    :param post_resp_mean: ndarray of dimension (S, n).
    :param post_err_var: ndarray of dimension (S, n).
    :return: WAIC
    """
    response = np.asarray(response, dtype=np.float64).flatten()
    observed = ~np.isnan(response)
    response = response[observed]
    post_resp_mean = post_resp_mean[:, observed]
    post_err_var = post_err_var[:, observed]
    S, n = post_resp_mean.shape

    log_prob = pointwise_loglike_norm(response[np.newaxis], post_resp_mean, post_err_var)
    log_ppd = np.sum(logsumexp(log_prob, axis=0, b=1. / S))
    p_waic_i = np.var(log_prob, axis=0, ddof=min(1, S - 1))
    eff_num_params = np.sum(p_waic_i)
    waic = -2. * (log_ppd - eff_num_params)

    if np.any(p_waic_i > 0.4):
        num_large_p_waic = np.sum(p_waic_i > 0.4)
        pct_large_p_waic = round((num_large_p_waic / n) * 100, 3)
        warnings.warn(f"Some of the posterior variances of the log predictive density "
                      f"exceed 0.4 ({pct_large_p_waic}%, {num_large_p_waic}). This may "
                      f"indicate that WAIC is failing as an approximation to LOO-CV. "
                      f"A more robust approach, such as K-fold CV, is recommended.")

    return WAIC(waic=float(waic), eff_num_params=float(eff_num_params), post_var_lppd=p_waic_i)


def r_squared(post_pred: np.ndarray, post_err_var: np.ndarray) -> np.ndarray:
    """
    Bayesian R-squared, one value per draw: Var(fit(s)) / (Var(fit(s)) + sigma2(s)).

    :param post_pred: ndarray of dimension (S, n). In-sample fit per draw.
    :param post_err_var: ndarray of dimension (S,). Response error variance per draw.
    :return: ndarray of dimension (S,).
    """
    n = post_pred.shape[1]
    predicted_variance = np.nanvar(post_pred, axis=1, ddof=min(1, n - 1))
    return predicted_variance / (predicted_variance + np.asarray(post_err_var).flatten())
