import numpy as np
from typing import NamedTuple
from numba import njit
from ..utils import array_operations as ao


class KF(NamedTuple):
    one_step_ahead_prediction: np.ndarray
    one_step_ahead_prediction_resid: np.ndarray
    kalman_gain: np.ndarray
    filtered_state: np.ndarray
    state_covariance: np.ndarray
    response_variance: np.ndarray
    inverse_response_variance: np.ndarray
    L: np.ndarray


@njit(cache=True)
def kalman_filter(y: np.ndarray,
                  observation_matrix: np.ndarray,
                  state_transition_matrix: np.ndarray,
                  state_intercept_matrix: np.ndarray,
                  state_error_transformation_matrix: np.ndarray,
                  response_error_variance_matrix: np.ndarray,
                  state_error_covariance_matrix: np.ndarray,
                  init_state: np.ndarray = np.array([[]]),
                  init_state_covariance: np.ndarray = np.array([[]])):
    """
    Forward Kalman filter for the univariate-response model

        y(t) = Z(t).a(t) + eps(t),          eps(t) ~ N(0, H)
        a(t+1) = C + T.a(t) + R.eta(t),     eta(t) ~ N(0, Q)

    with the gain written in the "predict-ahead" form K(t) = T.P(t).Z(t)'.F(t)^-1,
    so that a(t+1) = C + T.a(t) + K(t).v(t). All arrays are float64.

    :param y: ndarray of dimension (n, 1). NaN marks a missing observation, for which
    the measurement update is skipped and only the prediction step is applied.

    :param observation_matrix: Z, ndarray of dimension (n, 1, m), one row per period.

    :param state_transition_matrix: T, ndarray of dimension (m, m).

    :param state_intercept_matrix: C, ndarray of dimension (m, 1).

    :param state_error_transformation_matrix: R, ndarray of dimension (m, q). Columns
    select the q state equations that receive a disturbance.

    :param response_error_variance_matrix: H, ndarray of dimension (1, 1).

    :param state_error_covariance_matrix: Q, ndarray of dimension (q, q). Empty when
    no state equation is stochastic.

    :param init_state: a(1), ndarray of dimension (m, 1). Zeros if empty.

    :param init_state_covariance: P(1), ndarray of dimension (m, m). A diffuse
    1e6 * I if empty.

    :return: KF with, for t = 1,...,n,

    1. one_step_ahead_prediction: Z(t).a(t), dimension (n, 1)
    2. one_step_ahead_prediction_resid: v(t), dimension (n, 1, 1)
    3. kalman_gain: K(t), dimension (n, m, 1)
    4. filtered_state: a(t) = E[a(t) | y(1),...,y(t-1)], dimension (n + 1, m, 1)
    5. state_covariance: P(t) = Var[a(t) | y(1),...,y(t-1)], dimension (n + 1, m, m)
    6. response_variance: F(t), dimension (n, 1, 1)
    7. inverse_response_variance: F(t)^-1, dimension (n, 1, 1)
    8. L: T - K(t).Z(t), dimension (n, m, m)

    v(t), K(t) and F(t)^-1 are zero, and L(t) = T, where y(t) is missing.
    """
    T = state_transition_matrix
    C = state_intercept_matrix
    Z = observation_matrix
    R = state_error_transformation_matrix
    H = response_error_variance_matrix
    Q = state_error_covariance_matrix

    m = T.shape[0]
    q = R.shape[1]
    n = y.shape[0]

    if y.shape != (n, 1) or Z.shape != (n, 1, m):
        raise ValueError('y must have shape (n, 1) and the observation matrix shape (n, 1, m).')

    if T.shape != (m, m) or C.shape != (m, 1) or R.shape != (m, q):
        raise ValueError('The transition, intercept and error transformation matrices must have '
                         'shapes (m, m), (m, 1) and (m, q).')

    if H.shape != (1, 1) or Q.shape != (q, q):
        raise ValueError('The response error variance must be (1, 1) and the state error '
                         'covariance (q, q).')

    if not H[0, 0] > 0.:
        raise ValueError('The response error variance must be strictly positive.')

    if not np.all(np.diag(Q) >= 0.) or not ao.is_symmetric(Q):
        raise ValueError('The state error covariance must be symmetric with a non-negative diagonal.')

    y_pred = np.empty((n, 1), dtype=np.float64)
    v = np.empty((n, 1, 1), dtype=np.float64)
    K = np.empty((n, m, 1), dtype=np.float64)
    L = np.empty((n, m, m), dtype=np.float64)
    a = np.empty((n + 1, m, 1), dtype=np.float64)
    P = np.empty((n + 1, m, m), dtype=np.float64)
    F = np.empty((n, 1, 1), dtype=np.float64)
    F_inv = np.empty((n, 1, 1), dtype=np.float64)

    if init_state.size == 0:
        a[0] = np.zeros((m, 1))
    elif init_state.shape == (m, 1):
        a[0] = init_state
    else:
        raise ValueError('The initial state must have shape (m, 1).')

    if init_state_covariance.size == 0:
        P[0] = np.eye(m) * 1e6
    elif init_state_covariance.shape == (m, m):
        P[0] = init_state_covariance
    else:
        raise ValueError('The initial state covariance must have shape (m, m).')

    if q > 0:
        RQR = R.dot(Q).dot(R.T)
    else:
        RQR = np.zeros((m, m))

    y_missing = np.isnan(y)
    y_obs = ao.replace_nan(y)

    for t in range(n):
        y_pred[t] = Z[t].dot(a[t])
        F[t] = Z[t].dot(P[t]).dot(Z[t].T) + H

        if not np.isfinite(F[t, 0, 0]) or F[t, 0, 0] <= 0.:
            raise FloatingPointError('The Kalman filter produced a non-positive or non-finite '
                                     'response variance.')

        if y_missing[t, 0]:
            v[t] = 0.
            F_inv[t] = 0.
            K[t] = np.zeros((m, 1))
            L[t] = T.copy()
        else:
            v[t] = y_obs[t] - y_pred[t]
            F_inv[t] = 1. / F[t]
            K[t] = T.dot(P[t]).dot(Z[t].T).dot(F_inv[t])
            L[t] = T - K[t].dot(Z[t])

        a[t + 1] = C + T.dot(a[t]) + K[t].dot(v[t])

        # Rounding over long series can break the symmetry of P or push a
        # variance slightly below zero.
        P[t + 1] = ao.clamp_diag(ao.symmetrize(T.dot(P[t]).dot(L[t].T) + RQR))

        if not np.all(np.isfinite(P[t + 1])) or not np.all(np.isfinite(a[t + 1])):
            raise FloatingPointError('The Kalman filter produced a non-finite state mean '
                                     'or covariance.')

    return KF(y_pred, v, K, a, P, F, F_inv, L)
