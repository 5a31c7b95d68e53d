import numpy as np
from typing import NamedTuple, Union
from ..exceptions import ConfigurationError


class StateComponent(NamedTuple):
    name: str
    kind: str
    start_state_eqn_index: int
    end_state_eqn_index: int
    stochastic: bool
    stochastic_index: Union[int, None]
    period: Union[int, None] = None
    num_harmonics: Union[int, None] = None

    @property
    def num_state_eqs(self) -> int:
        return self.end_state_eqn_index - self.start_state_eqn_index

    @property
    def num_stoch_state_eqs(self) -> int:
        # Only trigonometric harmonics put a disturbance on every state equation.
        if not self.stochastic:
            return 0
        if self.kind == 'trig_seasonal':
            return self.num_state_eqs
        return 1

    @property
    def params(self) -> list:
        if self.kind == 'regression':
            return []
        if self.stochastic:
            return [f"{self.name}.Var"]
        return []


class StateSpaceModel(NamedTuple):
    components: tuple
    observation_row: np.ndarray
    state_transition_matrix: np.ndarray
    state_intercept_matrix: np.ndarray
    state_error_transformation_matrix: np.ndarray
    state_sse_transformation_matrix: np.ndarray
    num_predictors: int

    @property
    def num_state_eqs(self) -> int:
        return self.state_transition_matrix.shape[0]

    @property
    def num_stoch_states(self) -> int:
        return self.state_error_transformation_matrix.shape[1]

    @property
    def num_stoch_components(self) -> int:
        return self.state_sse_transformation_matrix.shape[0]

    @property
    def has_regression(self) -> bool:
        return self.num_predictors > 0

    @property
    def max_period(self) -> int:
        return max((0,) + tuple(c.period for c in self.components if c.period is not None))

    @property
    def num_first_obs_ignore(self) -> int:
        """
        Number of leading observations dominated by the diffuse initialization
        of the state vector.
        """
        return max(1 + self.max_period, self.num_state_eqs - self.has_regression * 1)

    def component(self, name: str) -> StateComponent:
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(f"No component named '{name}' in the state specification.")

    def observation_matrix(self, num_rows: int) -> np.ndarray:
        """
        :param num_rows: Number of rows that matches the number of observations
        of the response.
        :return: ndarray with dimension (num_rows, 1, num_state_eqs). If a regression
        component is specified, its column is 0 and must be filled with X.dot(beta).
        """
        return np.tile(self.observation_row, (num_rows, 1, 1))


def trig_transition_matrix(freq: float) -> np.ndarray:
    real_part = np.array([[np.cos(freq), np.sin(freq)]])
    imaginary_part = np.array([[-np.sin(freq), np.cos(freq)]])
    return np.concatenate((real_part, imaginary_part), axis=0)


def max_harmonics(period: int) -> int:
    if period % 2 == 0:
        return period // 2
    else:
        return (period - 1) // 2


def num_trig_state_eqs(period: int, num_harmonics: int) -> int:
    # At the Nyquist frequency the sine term vanishes, so the last harmonic
    # of an even period contributes a single state equation.
    if period % 2 == 0 and num_harmonics == period // 2:
        return 2 * num_harmonics - 1
    else:
        return 2 * num_harmonics


class StateSpecification:
    """
    Builder for the structural decomposition of a time series. Components are
    requested one at a time and composed by build() into the block-diagonal
    system matrices of a linear Gaussian state space model

        y(t) = Z(t).a(t) + eps(t)
        a(t+1) = C + T.a(t) + R.eta(t)

    Component blocks are always laid out in the same order regardless of the
    order in which they were requested: level/trend, dummy seasonals,
    trigonometric seasonals, regression.
    """

    def __init__(self):
        self._trend = None
        self._dummy_seasonal = []
        self._trig_seasonal = []
        self._num_predictors = 0
        self._model = None

    def _check_not_built(self):
        if self._model is not None:
            raise ConfigurationError('The state specification has already been built. '
                                     'Components cannot be added after build().')

    def _check_trend_free(self):
        if self._trend is not None:
            raise ConfigurationError('At most one trend component (level or local linear trend) '
                                     'can be specified.')

    @property
    def seasonal_periods(self) -> tuple:
        return (tuple(p for p, _ in self._dummy_seasonal)
                + tuple(p for p, _, _ in self._trig_seasonal))

    def _check_period(self, period):
        if isinstance(period, bool) or not isinstance(period, (int, np.integer)):
            raise TypeError('The period for a seasonal component must be an integer.')
        if period < 2:
            raise ConfigurationError('The period for a seasonal component must be an integer greater than 1.')
        if period in self.seasonal_periods:
            raise ConfigurationError(f'A seasonal component with period {period} was already specified. '
                                     f'Each seasonal period must be distinct.')

    @staticmethod
    def _check_bool(name, value):
        if not isinstance(value, bool):
            raise TypeError(f'{name} must be of boolean type.')

    def add_level(self, stochastic: bool = True) -> 'StateSpecification':
        self._check_not_built()
        self._check_bool('stochastic', stochastic)
        self._check_trend_free()
        self._trend = dict(trend=False, stochastic_level=stochastic, stochastic_trend=False)
        return self

    def add_local_linear_trend(self,
                               stochastic_level: bool = True,
                               stochastic_trend: bool = True) -> 'StateSpecification':
        self._check_not_built()
        self._check_bool('stochastic_level', stochastic_level)
        self._check_bool('stochastic_trend', stochastic_trend)
        self._check_trend_free()
        self._trend = dict(trend=True, stochastic_level=stochastic_level, stochastic_trend=stochastic_trend)
        return self

    def add_dummy_seasonal(self,
                           period: int,
                           stochastic: bool = True) -> 'StateSpecification':
        self._check_not_built()
        self._check_period(period)
        self._check_bool('stochastic', stochastic)
        self._dummy_seasonal.append((int(period), stochastic))
        return self

    def add_trig_seasonal(self,
                          period: int,
                          num_harmonics: int = 0,
                          stochastic: bool = True) -> 'StateSpecification':
        """
        :param period: integer > 1.
        :param num_harmonics: integer >= 0. A value of 0 uses the highest possible number of
        harmonics for the given period, which is period / 2 if period is even, or
        (period - 1) / 2 if period is odd.
        :param stochastic: bool. If true, all harmonics share one stochastic error variance.
        """
        self._check_not_built()
        self._check_period(period)
        self._check_bool('stochastic', stochastic)
        if isinstance(num_harmonics, bool) or not isinstance(num_harmonics, (int, np.integer)):
            raise TypeError('The number of harmonics for a trigonometric seasonal component must '
                            'be an integer.')
        if num_harmonics < 0:
            raise ConfigurationError('The number of harmonics for a trigonometric seasonal component '
                                     'must be non-negative.')
        if num_harmonics > max_harmonics(period):
            raise ConfigurationError(f'The number of harmonics for a trigonometric seasonal component '
                                     f'cannot exceed {max_harmonics(period)} when the period is {period}.')
        if num_harmonics == 0:
            num_harmonics = max_harmonics(period)
        if num_harmonics == 0:
            raise ConfigurationError(f'A trigonometric seasonal component with period {period} '
                                     f'has no harmonics.')

        self._trig_seasonal.append((int(period), int(num_harmonics), stochastic))
        return self

    def add_regression(self, num_predictors: int) -> 'StateSpecification':
        self._check_not_built()
        if isinstance(num_predictors, bool) or not isinstance(num_predictors, (int, np.integer)):
            raise TypeError('num_predictors must be an integer.')
        if num_predictors < 1:
            raise ConfigurationError('A regression component requires at least one predictor.')
        if self._num_predictors > 0:
            raise ConfigurationError('At most one regression component can be specified.')
        self._num_predictors = int(num_predictors)
        return self

    def build(self) -> StateSpaceModel:
        if self._model is not None:
            return self._model

        if self._trend is None and len(self.seasonal_periods) == 0:
            raise ConfigurationError('At least a level or seasonal component must be specified.')

        components = []
        j, s = 0, 0  # j indexes state equations, s indexes stochastic state equations
        if self._trend is not None:
            stoch = self._trend['stochastic_level']
            components.append(StateComponent('Level', 'level', j, j + 1, stoch, s if stoch else None))
            j += 1
            s += stoch * 1

            if self._trend['trend']:
                stoch = self._trend['stochastic_trend']
                components.append(StateComponent('Trend', 'trend', j, j + 1, stoch, s if stoch else None))
                j += 1
                s += stoch * 1

        for period, stoch in sorted(self._dummy_seasonal):
            components.append(StateComponent(f'Dummy-Seasonal.{period}', 'dummy_seasonal',
                                             j, j + period - 1, stoch, s if stoch else None,
                                             period=period))
            j += period - 1
            s += stoch * 1

        for period, num_harmonics, stoch in sorted(self._trig_seasonal):
            num_eqs = num_trig_state_eqs(period, num_harmonics)
            components.append(StateComponent(f'Trig-Seasonal.{period}.{num_harmonics}', 'trig_seasonal',
                                             j, j + num_eqs, stoch, s if stoch else None,
                                             period=period, num_harmonics=num_harmonics))
            j += num_eqs
            s += stoch * num_eqs

        if self._num_predictors > 0:
            components.append(StateComponent('Regression', 'regression', j, j + 1, False, None))
            j += 1

        m, q = j, s
        Z = np.zeros((1, 1, m))
        T = np.zeros((m, m))
        C = np.zeros((m, 1))
        R = np.zeros((m, q))
        pooled = []  # one row of H per stochastic component

        for c in components:
            i = c.start_state_eqn_index
            if c.kind == 'level':
                Z[0, 0, i] = 1.
                T[i, i] = 1.
            elif c.kind == 'trend':
                T[i - 1, i] = 1.
                T[i, i] = 1.
            elif c.kind == 'dummy_seasonal':
                p = c.period
                Z[0, 0, i] = 1.
                T[i, i:i + p - 1] = -1.
                for k in range(1, p - 1):
                    T[i + k, i + k - 1] = 1.
            elif c.kind == 'trig_seasonal':
                p, h = c.period, c.num_harmonics
                b = i
                for k in range(1, h + 1):
                    freq = 2. * np.pi * k / p
                    Z[0, 0, b] = 1.
                    if b + 1 < c.end_state_eqn_index:
                        T[b:b + 2, b:b + 2] = trig_transition_matrix(freq)
                        b += 2
                    else:
                        T[b, b] = np.cos(freq)
                        b += 1
            elif c.kind == 'regression':
                # Static regression: X(t).beta is placed in Z(t) and the
                # matching state is held at a constant 1.
                T[i, i] = 1.

            if c.stochastic:
                si = c.stochastic_index
                row = np.zeros(q)
                if c.kind == 'trig_seasonal':
                    for k in range(c.num_state_eqs):
                        R[i + k, si + k] = 1.
                        row[si + k] = 1.
                else:
                    R[i, si] = 1.
                    row[si] = 1.
                pooled.append(row)

        if len(pooled) > 0:
            H = np.vstack(pooled)
        else:
            H = np.zeros((0, 0))

        self._model = StateSpaceModel(
            components=tuple(components),
            observation_row=Z,
            state_transition_matrix=T,
            state_intercept_matrix=C,
            state_error_transformation_matrix=R,
            state_sse_transformation_matrix=H,
            num_predictors=self._num_predictors
        )

        return self._model
