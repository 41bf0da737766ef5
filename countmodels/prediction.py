"""
prediction.py

Point predictions of new counts from a fitted Poisson log-linear model.

Coefficient uncertainty is propagated by drawing β from the fit: the
Gaussian N(β̂, Σ) of the Laplace/IRLS covariance, or the posterior draws
of an MCMC run. Three point predictions come out, one per loss function:

  1. Squared error: posterior mean of λ.
  2. Absolute error: posterior median of λ.
  3. 0-1 loss: the count k in 0..k_max with the highest posterior
     predictive probability, averaged over the draws of λ.
"""

import numpy as np
import pandas as pd
from scipy.stats import poisson

from countmodels.errors import InvalidInput


def coefficient_draws(result, draws=5000, rng=None):
    """
    Draw coefficient vectors representing the uncertainty of `result`.

    Returns an array of shape (draws, d) with columns in the order of
    result.params.
    """
    rng = np.random.default_rng(rng)
    covariance = result.diagnostics.get("covariance")
    if covariance is not None:
        return rng.multivariate_normal(
            mean=result.params.to_numpy(),
            cov=np.asarray(covariance, dtype=float),
            size=draws,
        )

    trace = result.diagnostics.get("trace")
    if trace is not None and "beta_mu" in trace.posterior:
        posterior = trace.posterior["beta_mu"].stack(sample=("chain", "draw"))
        samples = posterior.transpose("sample", ...).to_numpy()
        index = rng.choice(samples.shape[0], size=draws, replace=samples.shape[0] < draws)
        return samples[index]

    raise InvalidInput(f"{result.method} result carries neither a covariance nor posterior draws")


def predict_counts(result, design, draws=5000, k_max=10, rng=None):
    """
    Predict counts for the rows of `design` under three loss functions.

    Arguments:
    - result (FitResult): a Poisson fit from any of the fitters.
    - design (pd.DataFrame, shape (N, d)): design rows, columns named like result.params.
    - draws (int): number of coefficient draws S.
    - k_max (int): largest count considered for the 0-1 prediction.
    - rng: seed or numpy Generator.

    Returns:
    - pd.DataFrame with columns "mse_pred", "mae_pred", "mode_pred".
    """
    # 1. Line the design columns up with the coefficients
    missing = [c for c in result.params.index if c not in design.columns]
    if missing:
        raise InvalidInput(f"design is missing coefficient columns {missing}")
    if k_max < 0:
        raise InvalidInput(f"k_max must be non-negative, got {k_max}")
    X = design[list(result.params.index)].to_numpy(dtype=float)

    # 2. Sample β and compute λ for every draw and row
    beta_samples = coefficient_draws(result, draws=draws, rng=rng)  # (S, d)
    lams = np.exp(beta_samples.dot(X.T))                            # (S, N)

    # 3. Squared and absolute error: mean and median of λ
    y_pred_mse = lams.mean(axis=0)
    y_pred_mae = np.median(lams, axis=0)

    # 4. 0-1 loss: most probable k under the averaged predictive pmf
    # avg_probs[k, i] = mean over draws of P(Y_i = k | λ_i^(s))
    avg_probs = np.empty((k_max + 1, X.shape[0]))
    for k in range(k_max + 1):
        avg_probs[k] = poisson.pmf(k, mu=lams).mean(axis=0)
    y_pred_mode = np.argmax(avg_probs, axis=0)

    return pd.DataFrame(
        {"mse_pred": y_pred_mse, "mae_pred": y_pred_mae, "mode_pred": y_pred_mode},
        index=design.index,
    )
