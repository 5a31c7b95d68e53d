from numba import njit
import numpy as np


@njit
def diag_col(x: np.ndarray) -> np.ndarray:
    return np.diag(x).reshape(-1, 1)


@njit
def replace_nan(x: np.ndarray, value: float = 0.) -> np.ndarray:
    z = x.flatten()
    for i in range(z.size):
        if np.isnan(z[i]):
            z[i] = value
    return z.reshape(x.shape)


@njit
def symmetrize(x: np.ndarray) -> np.ndarray:
    return 0.5 * (x + x.T)


@njit
def clamp_diag(x: np.ndarray, lower: float = 0.) -> np.ndarray:
    z = x.copy()
    for i in range(z.shape[0]):
        z[i, i] = max(z[i, i], lower)
    return z


@njit
def is_symmetric(x: np.ndarray, tol: float = 1e-12) -> bool:
    return np.all(np.abs(x - x.T) <= tol)


def is_positive_definite(x: np.ndarray) -> bool:
    try:
        np.linalg.cholesky(x)
    except np.linalg.LinAlgError:
        return False
    return True
