"""
diagnostics.py

Checks run after a fit: over-dispersion of a Poisson model and MCMC
convergence from an ArviZ summary table.
"""

import logging
from dataclasses import dataclass

import numpy as np

from countmodels.config import DISPERSION_THRESHOLD, MIN_ESS, R_HAT_MAX
from countmodels.errors import InvalidInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispersionReport:
    """Pearson goodness-of-fit summary for a fitted Poisson mean."""

    pearson_chi2: float
    df_resid: int
    ratio: float
    overdispersed: bool

    def as_dict(self):
        return {
            "pearson_chi2": self.pearson_chi2,
            "df_resid": self.df_resid,
            "dispersion": self.ratio,
            "overdispersed": self.overdispersed,
        }


def dispersion_report(counts, fitted_mean, n_params, threshold=DISPERSION_THRESHOLD):
    """
    Pearson χ² dispersion statistic of a Poisson fit.

    Under a correctly specified Poisson model E[(n − μ)²/μ] = 1, so
    χ² / (N − k) should be close to 1. Values well above 1 mean the counts
    vary more than Poisson allows and standard errors are too small.

    Arguments:
    - counts (array-like, shape (N,)): observed counts.
    - fitted_mean (array-like, shape (N,)): fitted λ_i, all positive.
    - n_params (int): number of estimated coefficients k.
    - threshold (float): ratio above which the fit is flagged.

    Returns:
    - DispersionReport
    """
    y = np.asarray(counts, dtype=float)
    mu = np.asarray(fitted_mean, dtype=float)
    if y.shape != mu.shape:
        raise InvalidInput(f"counts shape {y.shape} does not match fitted mean shape {mu.shape}")
    if not np.all(np.isfinite(mu)) or np.any(mu <= 0):
        raise InvalidInput("fitted means must be finite and strictly positive")

    pearson_chi2 = float(np.sum((y - mu) ** 2 / mu))
    df_resid = int(y.size - n_params)
    ratio = pearson_chi2 / df_resid if df_resid > 0 else float("nan")
    overdispersed = bool(ratio > threshold)
    if overdispersed:
        logger.warning(
            "Pearson dispersion %.2f exceeds %.2f: counts are over-dispersed "
            "relative to Poisson; consider a negative binomial model",
            ratio,
            threshold,
        )
    return DispersionReport(pearson_chi2, df_resid, ratio, overdispersed)


def mcmc_convergence(summary, r_hat_max=R_HAT_MAX, min_ess=MIN_ESS, chains=None):
    """
    Judge convergence from an ArviZ summary table.

    Returns (converged, reason). The chains are accepted when every R̂ is at
    most `r_hat_max` and every bulk effective sample size is at least
    `min_ess`. R̂ compares chains, so a single-chain run (chains < 2, or a
    summary whose r_hat column is all NaN) is judged on ESS alone.
    """
    lowest_ess = float(summary["ess_bulk"].min())
    r_hat = summary["r_hat"].to_numpy(dtype=float)
    if (chains is not None and chains < 2) or np.isnan(r_hat).all():
        reason = f"single chain: r_hat unavailable, min ess_bulk {lowest_ess:.0f}"
        if not np.isfinite(lowest_ess) or lowest_ess < min_ess:
            return False, f"{reason} below {min_ess}"
        return True, reason

    worst_r_hat = float(summary["r_hat"].max())
    if np.isnan(r_hat).any() or worst_r_hat > r_hat_max:
        return False, f"max r_hat {worst_r_hat:.3f} exceeds {r_hat_max}"
    if lowest_ess < min_ess:
        return False, f"min ess_bulk {lowest_ess:.0f} below {min_ess}"
    return True, f"max r_hat {worst_r_hat:.3f}, min ess_bulk {lowest_ess:.0f}"
