import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from statsmodels.tsa.statespace.sarimax import SARIMAX
from pybsts.bsts import BayesianStructuralTimeSeries
from pybsts.config import ForecastConfig, SamplerConfig


def rmse(actual, prediction):
    act, pred = actual.flatten(), prediction.flatten()
    return np.sqrt(np.mean((act - pred) ** 2))


# Monthly airline passengers, 1949-1960. Logs make the seasonality additive.
url = "https://raw.githubusercontent.com/devindg/pybuc/master/examples/data/airline-passengers.csv"
air = pd.read_csv(url, header=0, index_col=0)
air = np.log(air.astype(float))
air.index = pd.DatetimeIndex(pd.to_datetime(air.index), freq='MS')
hold_out_size = 12

y_train = air.iloc[:-hold_out_size]
y_test = air.iloc[-hold_out_size:]

if __name__ == '__main__':
    ''' Benchmark: SARIMA(0,1,1)(0,1,1) on log passengers '''
    sarima_res = SARIMAX(y_train, order=(0, 1, 1), seasonal_order=(0, 1, 1, 12)).fit(disp=False)
    sarima_forecast = sarima_res.get_forecast(hold_out_size).summary_frame(alpha=0.05)
    print(f"SARIMA RMSE: {rmse(y_test.to_numpy(), sarima_forecast['mean'].to_numpy())}")

    ''' Local linear trend plus a monthly dummy seasonal '''
    bsts = BayesianStructuralTimeSeries(response=y_train,
                                        level=True, stochastic_level=True,
                                        trend=True, stochastic_trend=True,
                                        dummy_seasonal=(12,))
    bsts.sample(SamplerConfig(num_iter=3000, burn_fraction=0.1, seed=123))

    for key, value in bsts.summary().items():
        print(key, ' : ', value)
    print(f"WAIC: {bsts.waic().waic}")

    # Components on the log scale
    comps = bsts.components()
    i0 = bsts.num_first_obs_ignore
    fig, ax = plt.subplots(len(comps), 1, figsize=(10, 2.5 * len(comps)), sharex=True)
    for i, (name, draws) in enumerate(comps.items()):
        ax[i].plot(y_train.index[i0:], draws.mean(axis=0))
        ax[i].set_title(name)
    fig.tight_layout()
    plt.show()

    fc = bsts.forecast(ForecastConfig(horizon=hold_out_size))
    frame = fc.summary_frame()
    plt.plot(y_test)
    plt.plot(frame['mean'])
    plt.plot(sarima_forecast['mean'])
    plt.fill_between(frame.index, frame['q0.025'], frame['q0.975'], alpha=0.2)
    plt.title('BSTS vs SARIMA: Forecast (log passengers)')
    plt.legend(['Actual', 'BSTS mean', 'SARIMA mean', 'BSTS 95% credible interval'])
    plt.show()

    print(f"BSTS RMSE: {rmse(y_test.to_numpy(), frame['mean'].to_numpy())}")
