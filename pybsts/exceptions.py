class BSTSError(Exception):
    pass


class ConfigurationError(BSTSError, ValueError):
    pass


class ForecastRequestError(BSTSError, ValueError):
    pass


class FitFailureError(BSTSError, RuntimeError):
    def __init__(self,
                 iteration: int,
                 reason: str):
        self.iteration = iteration
        self.reason = reason
        self.message = f"""Sampling failed at Gibbs iteration {iteration}: {reason}. Consider a
                       combination of the following: (1) scaling your data (e.g., scaling the
                       response by its standard deviation), (2) redefining the specification of
                       the model in terms of components and priors, and/or (3) using more
                       informative variance priors.
                       """
        super().__init__(self.message)


class SamplingCancelledError(BSTSError):
    def __init__(self,
                 posterior,
                 num_iter_completed: int):
        self.posterior = posterior
        self.num_iter_completed = num_iter_completed
        self.message = (f"Sampling was cancelled after {num_iter_completed} iterations. "
                        f"{len(posterior)} retained draws are available on the "
                        f"'posterior' attribute of this exception.")
        super().__init__(self.message)
