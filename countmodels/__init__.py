"""
countmodels

Poisson-family count models fitted three interchangeable ways: IRLS
(statsmodels), direct minimisation of the deviance (SciPy) with a Laplace
approximation, and MCMC (PyMC).
"""

from countmodels.errors import (
    ConvergenceFailure,
    CountModelError,
    InvalidInput,
    ModelSpecificationError,
)
from countmodels.fitters import (
    FitResult,
    GLMFitter,
    MCMCFitter,
    ModelFitter,
    OptimizerFitter,
    compare_fits,
    fit_with_restarts,
)
from countmodels.likelihood import design_deviance, poisson_deviance, quadratic_design
from countmodels.observations import ObservationSet
from countmodels.specification import (
    LinearPredictor,
    ModelSpec,
    Prior,
    Term,
    occupancy_model,
    quadratic_poisson_model,
    seasonal_poisson_model,
)

__version__ = "0.1.0"
