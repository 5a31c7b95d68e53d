from dataclasses import dataclass
from typing import Union

import numpy as np

from .exceptions import ConfigurationError, ForecastRequestError


def _is_int(x) -> bool:
    return isinstance(x, (int, np.integer)) and not isinstance(x, bool)


def _check_positive_number(name: str, value) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise TypeError(f'{name} must be a strictly positive integer or float.')
    if np.isnan(value):
        raise ConfigurationError(f'{name} cannot be NaN.')
    if np.isinf(value):
        raise ConfigurationError(f'{name} cannot be Inf/-Inf.')
    if not value > 0:
        raise ConfigurationError(f'{name} must be strictly positive.')


@dataclass(frozen=True)
class SamplerConfig:
    """Configuration of the Gibbs sampler.

    Parameters
    ----------
    num_iter:
        Total number of Gibbs iterations, burn-in included.
    burn_fraction:
        Fraction of the leading iterations to discard. This is a convergence
        heuristic (10% by default); no convergence diagnostic is run.
    seed:
        Optional seed for reproducible draws.
    """
    num_iter: int
    burn_fraction: float = 0.1
    seed: Union[int, None] = None

    def __post_init__(self) -> None:
        if not _is_int(self.num_iter):
            raise TypeError('num_iter must be an integer.')
        if self.num_iter < 1:
            raise ConfigurationError('num_iter must be a strictly positive integer.')
        if isinstance(self.burn_fraction, bool) or not isinstance(self.burn_fraction, (int, float)):
            raise TypeError('burn_fraction must be a float.')
        if not 0. <= self.burn_fraction < 1.:
            raise ConfigurationError('burn_fraction must be a value in the interval [0, 1).')
        if self.seed is not None:
            if not _is_int(self.seed):
                raise TypeError('seed must be an integer.')
            if not 0 < self.seed < 2 ** 32 - 1:
                raise ConfigurationError('seed must be an integer between 0 and 2**32 - 1.')

    @property
    def num_burn(self) -> int:
        return int(self.burn_fraction * self.num_iter)

    @property
    def num_retained(self) -> int:
        return self.num_iter - self.num_burn


@dataclass(frozen=True)
class ForecastConfig:
    """Configuration of a forecast request.

    Parameters
    ----------
    horizon:
        Number of future periods to simulate.
    quantiles:
        Quantile levels reported by ForecastDistribution.quantiles() and
        summary_frame(). The default pair gives a 95% credible interval.
    """
    horizon: int
    quantiles: tuple = (0.025, 0.975)

    def __post_init__(self) -> None:
        if not _is_int(self.horizon):
            raise ForecastRequestError('horizon must be a strictly positive integer.')
        if self.horizon < 1:
            raise ForecastRequestError('horizon must be a strictly positive integer.')
        if not isinstance(self.quantiles, tuple) or len(self.quantiles) == 0:
            raise ForecastRequestError('quantiles must be a non-empty tuple of floats.')
        if not all(isinstance(v, float) and 0. < v < 1. for v in self.quantiles):
            raise ForecastRequestError('Every quantile level must be a float in the interval (0, 1).')


@dataclass(frozen=True)
class VariancePrior:
    """Inverse-Gamma(shape, scale) prior on an error variance. None means use the default."""
    shape: Union[int, float, None] = None
    scale: Union[int, float, None] = None

    def __post_init__(self) -> None:
        _check_positive_number('shape', self.shape)
        _check_positive_number('scale', self.scale)

    def resolve(self, default_shape: float, default_scale: float) -> tuple:
        shape = default_shape if self.shape is None else float(self.shape)
        scale = default_scale if self.scale is None else float(self.scale)
        return shape, scale
