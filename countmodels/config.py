"""
config.py

Default settings for the fitters and diagnostics.

Settings are frozen dataclasses; to change one, build a new instance with
dataclasses.replace() and pass it to the fitter explicitly.
"""

from dataclasses import dataclass

# Prior standard deviation for every regression coefficient
PRIOR_SIGMA = 10.0

# Prior standard deviation for logit-scale coefficients of occupancy models
LOGIT_PRIOR_SIGMA = 2.5

# Pearson chi^2 / df above this value is reported as over-dispersion
DISPERSION_THRESHOLD = 1.5

# Gelman-Rubin statistic above this value means the chains have not mixed
R_HAT_MAX = 1.01

# Minimum bulk effective sample size per parameter
MIN_ESS = 100

# Scaled-covariate coefficients beyond this magnitude mean the estimate is
# running off to infinity (separation, all-zero counts)
MAX_ABS_COEFFICIENT = 20.0

# Hessian condition number above which the optimum is treated as singular
MAX_CONDITION_NUMBER = 1e12


@dataclass(frozen=True)
class SamplerSettings:
    """NUTS settings passed to pymc.sample()."""

    draws: int = 2000
    tune: int = 1000
    chains: int = 4
    cores: int = 1
    target_accept: float = 0.9
    random_seed: int = 42
    progressbar: bool = False


@dataclass(frozen=True)
class OptimizerSettings:
    """Settings passed to scipy.optimize.minimize()."""

    method: str = "trust-constr"
    gtol: float = 1e-8
    xtol: float = 1e-8
    maxiter: int = 100
    random_seed: int = 0

    def options(self):
        # xtol is a trust-constr option; other methods warn on unknown options
        if self.method == "trust-constr":
            return {"gtol": self.gtol, "xtol": self.xtol, "maxiter": self.maxiter}
        return {"maxiter": self.maxiter}
