import numpy as np
from typing import NamedTuple
from numba import njit
from .kalman_filter import kalman_filter
from ..vectorized import distributions as dist
from ..utils import array_operations as ao


class SmoothedDraw(NamedTuple):
    simulated_smoothed_errors: np.ndarray
    simulated_smoothed_state: np.ndarray
    simulated_smoothed_prediction: np.ndarray


class SimulatedPath(NamedTuple):
    response: np.ndarray
    state: np.ndarray
    errors: np.ndarray


@njit(cache=True)
def simulate_path(Z, T, R, start, resp_err_var, state_err_cov):
    """
    Unconditional draw of (y, a, w) from a zero-intercept model started at a(1) = start.
    The rows of each w(t) are eps(t) followed by the q state disturbances.
    """
    n, _, m = Z.shape
    q = R.shape[1]

    sd = np.sqrt(resp_err_var)
    if q > 0:
        sd = np.concatenate((sd, np.sqrt(ao.diag_col(state_err_cov))))

    w = np.empty((n, 1 + q, 1), dtype=np.float64)
    a = np.empty((n + 1, m, 1), dtype=np.float64)
    y = np.empty((n, 1), dtype=np.float64)
    a[0] = start
    for t in range(n):
        w[t] = dist.vec_norm(np.zeros((1 + q, 1)), sd)
        y[t] = Z[t].dot(a[t]) + w[t, 0]
        if q > 0:
            a[t + 1] = T.dot(a[t]) + R.dot(w[t, 1:])
        else:
            a[t + 1] = T.dot(a[t])

    return SimulatedPath(y, a, w)


@njit(cache=True)
def dk_smoother(y: np.ndarray,
                observation_matrix: np.ndarray,
                state_transition_matrix: np.ndarray,
                state_intercept_matrix: np.ndarray,
                state_error_transformation_matrix: np.ndarray,
                response_error_variance_matrix: np.ndarray,
                state_error_covariance_matrix: np.ndarray,
                init_state: np.ndarray,
                init_state_plus: np.ndarray,
                init_state_covariance: np.ndarray):
    """
    Simulation smoother of Durbin and Koopman (2002). One call returns a single draw of
    the disturbances and the state path from p(w, a | y).

    An unconditional path (y+, a+, w+) is simulated, the difference y - y+ is filtered
    and smoothed, and the simulated path is added back to the smoothed means. Missing
    entries of y remain missing in the difference and are skipped by the filter.

    :param y: ndarray of dimension (n, 1).

    :param observation_matrix: Z, ndarray of dimension (n, 1, m).

    :param state_transition_matrix: T, ndarray of dimension (m, m).

    :param state_intercept_matrix: C, ndarray of dimension (m, 1).

    :param state_error_transformation_matrix: R, ndarray of dimension (m, q).

    :param response_error_variance_matrix: ndarray of dimension (1, 1).

    :param state_error_covariance_matrix: ndarray of dimension (q, q).

    :param init_state: prior mean of a(1), ndarray of dimension (m, 1).

    :param init_state_plus: starting state of the simulated path, ndarray of dimension (m, 1).

    :param init_state_covariance: prior covariance of a(1), ndarray of dimension (m, m).

    :return: SmoothedDraw of errors (n, 1 + q, 1), states (n + 1, m, 1) and
    predictions Z(t).a(t) of dimension (n, 1).
    """
    Z = observation_matrix
    T = state_transition_matrix
    C = state_intercept_matrix
    R = state_error_transformation_matrix
    H = response_error_variance_matrix
    Q = state_error_covariance_matrix
    P1 = init_state_covariance

    n, _, m = Z.shape
    q = R.shape[1]

    plus = simulate_path(Z, T, R, init_state_plus, H, Q)
    a1_star = init_state - init_state_plus
    star = kalman_filter(y - plus.response, Z, T, C, R, H, Q, a1_star, P1)

    # r(t-1) = Z(t)'F(t)^-1 v(t) + L(t)'r(t), run backwards from r(n) = 0
    r = np.zeros((n + 1, m, 1), dtype=np.float64)
    for t in range(n - 1, -1, -1):
        r[t] = (Z[t].T.dot(star.inverse_response_variance[t]).dot(star.one_step_ahead_prediction_resid[t])
                + star.L[t].T.dot(r[t + 1]))

    w_hat = np.empty((n, 1 + q, 1), dtype=np.float64)
    a_hat = np.empty((n + 1, m, 1), dtype=np.float64)
    a_hat[0] = a1_star + P1.dot(r[0])
    for t in range(n):
        u = (star.inverse_response_variance[t].dot(star.one_step_ahead_prediction_resid[t])
             - star.kalman_gain[t].T.dot(r[t + 1]))
        w_hat[t, :1] = H.dot(u)
        a_hat[t + 1] = C + T.dot(a_hat[t])
        if q > 0:
            eta = Q.dot(R.T).dot(r[t + 1])
            w_hat[t, 1:] = eta
            a_hat[t + 1] += R.dot(eta)

    state = a_hat + plus.state
    prediction = np.empty((n, 1), dtype=np.float64)
    for t in range(n):
        prediction[t] = Z[t].dot(state[t])[0]

    return SmoothedDraw(w_hat + plus.errors, state, prediction)
