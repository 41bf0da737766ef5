"""
errors.py

Exception and warning types raised by countmodels.

- InvalidInput: bad counts, covariates or parameters reaching the evaluator.
- ModelSpecificationError: a declarative model description that cannot be fit.
- ConvergenceFailure: warning issued when an external optimizer or sampler
  finishes without converging.
"""


class CountModelError(Exception):
    """Base class for all countmodels errors."""


class InvalidInput(CountModelError, ValueError):
    """Negative count, non-finite value or mismatched shapes."""


class ModelSpecificationError(CountModelError, ValueError):
    """The model description is inconsistent or does not match the data."""


class ConvergenceFailure(UserWarning):
    """A fitter finished without meeting its convergence criterion."""
