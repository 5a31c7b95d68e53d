from numba import boolean, float64, vectorize
from numpy.random import normal, gamma, uniform


@vectorize([float64(float64, float64)])
def vec_norm(mean, sd):
    return normal(mean, sd)


@vectorize([float64(float64, float64)])
def vec_ig(shape, scale):
    ig = 1. / gamma(shape=shape, scale=1. / scale)
    return ig


@vectorize([boolean(float64)])
def vec_bernoulli(prob):
    return uniform(0., 1.) < prob
