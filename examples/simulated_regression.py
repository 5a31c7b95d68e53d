import numpy as np
import matplotlib.pyplot as plt
from pybsts.bsts import BayesianStructuralTimeSeries
from pybsts.config import ForecastConfig, SamplerConfig
from pybsts.samplers.spike_slab import SpikeSlabPrior


def rmse(actual, prediction):
    act, pred = actual.flatten(), prediction.flatten()
    return np.sqrt(np.mean((act - pred) ** 2))


# Random walk level plus a sparse regression: only x1 and x3 matter.
seed = 123
rng = np.random.default_rng(seed)
hold_out_size = 10
n = 150
k = 6
beta = np.array([3.15, 0., -10.24, 0., 0., 0.])
x = rng.normal(0., 1., size=(n, k))
level = 100. + np.cumsum(rng.normal(0., 1., size=n))
y = level + x.dot(beta) + rng.normal(0., 2., size=n)

y_train, x_train = y[:-hold_out_size], x[:-hold_out_size]
y_test, x_test = y[-hold_out_size:], x[-hold_out_size:]

if __name__ == '__main__':
    bsts = BayesianStructuralTimeSeries(response=y_train, predictors=x_train,
                                        level=True, stochastic_level=True)

    # x1 is forced in, x6 is forced out, the rest are selected by the data.
    prior = SpikeSlabPrior(inclusion_prob=(1., 0.25, 0.25, 0.25, 0.25, 0.),
                           prior_obs=1.)
    bsts.sample(SamplerConfig(num_iter=2000, seed=seed), spike_slab_prior=prior)

    smy = bsts.summary()
    for name in bsts.predictors_names:
        print(f"{name}: inclusion prob = {smy[f'Posterior.InclusionProb[Coeff.{name}]']:.3f}, "
              f"mean | included = {smy[f'Posterior.Mean[Coeff.{name}]']:.3f}")

    print(f"Bayesian R-squared (mean): {bsts.r_squared().mean():.3f}")

    fc = bsts.forecast(ForecastConfig(horizon=hold_out_size), future_predictors=x_test)
    lb, ub = fc.credible_interval(0.95)
    plt.plot(y_test)
    plt.plot(fc.mean())
    plt.fill_between(np.arange(hold_out_size), lb, ub, alpha=0.2)
    plt.title('BSTS: Forecast')
    plt.legend(['Actual', 'Mean', '95% credible interval'])
    plt.show()

    print(f"BSTS RMSE: {rmse(y_test, fc.mean())}")
