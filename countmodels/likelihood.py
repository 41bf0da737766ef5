"""
likelihood.py

Poisson log-linear likelihood for count data.

Model:
    n_i ~ Poisson(λ_i),   log λ_i = x_i · β

For the quadratic model of a single scaled covariate the design row is
x_i = (1, x_i, x_i²), so λ_i = exp(β0 + β1·x_i + β2·x_i²).

The deviance returned here is the negative log-likelihood

    D(β) = −Σ [ n_i·log λ_i − λ_i − log(n_i!) ]

which is what scipy.optimize.minimize() expects as an objective. All terms
are evaluated in log space (n_i·log λ_i is n_i·η_i and log(n_i!) is
gammaln(n_i + 1)), so large counts never pass through a probability mass.
"""

import numpy as np
from scipy.special import gammaln

from countmodels.errors import InvalidInput
from countmodels.observations import as_counts


def _check_params(params, n_columns):
    beta = np.asarray(params, dtype=float)
    if beta.ndim != 1 or beta.shape[0] != n_columns:
        raise InvalidInput(
            f"expected {n_columns} parameters, got shape {beta.shape}"
        )
    if not np.all(np.isfinite(beta)):
        raise InvalidInput(f"parameters must be finite, got {beta}")
    return beta


def _check_design(design, counts):
    X = np.asarray(design, dtype=float)
    if X.ndim != 2:
        raise InvalidInput(f"design matrix must be 2-D, got shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise InvalidInput("design matrix contains NaN or infinite values")
    y = as_counts(counts)
    if X.shape[0] != y.shape[0]:
        raise InvalidInput(f"{X.shape[0]} design rows but {y.shape[0]} counts")
    return X, y


def quadratic_design(x):
    """
    Build the design matrix [1, x, x²] for one scaled covariate.

    Arguments:
    - x (array-like, shape (N,)): centred and scaled covariate values.

    Returns:
    - X (np.ndarray, shape (N, 3))
    """
    x = np.asarray(x, dtype=float)
    if x.ndim != 1:
        raise InvalidInput(f"covariate must be one-dimensional, got shape {x.shape}")
    return np.column_stack([np.ones_like(x), x, x**2])


def log_likelihood_terms(params, design, counts):
    """
    Per-observation Poisson log-probabilities log P(n_i | λ_i).

    Arguments:
    - params (array-like, shape (d,)): coefficient vector β.
    - design (array-like, shape (N, d)): design matrix X.
    - counts (array-like, shape (N,)): non-negative integer counts.

    Returns:
    - np.ndarray, shape (N,)
    """
    X, y = _check_design(design, counts)
    beta = _check_params(params, X.shape[1])

    # η = Xβ; log λ_i = η_i so n_i·log λ_i needs no logarithm
    eta = X.dot(beta)
    lam = np.exp(eta)
    return y * eta - lam - gammaln(y + 1.0)


def design_deviance(params, design, counts):
    """Negative Poisson log-likelihood for an arbitrary design matrix."""
    # np.sum uses pairwise summation
    return -float(np.sum(log_likelihood_terms(params, design, counts)))


def poisson_deviance(params, observations, covariate="x"):
    """
    Deviance of the quadratic log-linear Poisson model.

    Computes λ_i = exp(β0 + β1·x_i + β2·x_i²) for every observation and
    returns −Σ log P(n_i | λ_i). The covariate must already be centred and
    scaled; no scaling happens here.

    Arguments:
    - params (array-like): (β0, β1, β2).
    - observations (ObservationSet): counts and scaled covariates.
    - covariate (str): name of the covariate column (default "x").

    Returns:
    - float: the deviance, finite for finite parameters and valid counts.

    Raises:
    - InvalidInput: negative count, non-finite covariate or parameter.
    """
    X = quadratic_design(observations.covariate(covariate))
    return design_deviance(params, X, observations.counts)


def deviance_gradient(params, design, counts):
    """
    Gradient of the deviance: ∇D(β) = −Xᵀ(n − λ).
    """
    X, y = _check_design(design, counts)
    beta = _check_params(params, X.shape[1])
    lam = np.exp(X.dot(beta))
    return -X.T.dot(y - lam)


def deviance_hessian(params, design, counts):
    """
    Hessian of the deviance: ∇²D(β) = Xᵀ diag(λ) X.

    Formed as (X_scaled)ᵀ X_scaled with row i of X_scaled equal to
    sqrt(λ_i)·x_i. The matrix is positive semi-definite for any β.
    """
    X, _ = _check_design(design, counts)
    beta = _check_params(params, X.shape[1])
    lam = np.exp(X.dot(beta))
    X_scaled = X * np.sqrt(lam)[:, None]
    return X_scaled.T.dot(X_scaled)


def likelihood_profile(counts, rates):
    """
    Log-likelihood of an i.i.d. Poisson sample over a grid of candidate rates.

    ℓ(λ) = Σ n_i·log λ − N·λ − Σ log(n_i!)

    The maximum sits at λ = mean(n), the Poisson maximum-likelihood estimate.

    Arguments:
    - counts (array-like, shape (N,)): the sample.
    - rates (array-like, shape (G,)): strictly positive candidate rates.

    Returns:
    - np.ndarray, shape (G,)
    """
    y = as_counts(counts)
    lam = np.asarray(rates, dtype=float)
    if lam.ndim != 1:
        raise InvalidInput(f"rates must be one-dimensional, got shape {lam.shape}")
    if not np.all(np.isfinite(lam)) or np.any(lam <= 0):
        raise InvalidInput("rates must be finite and strictly positive")
    return y.sum() * np.log(lam) - y.size * lam - gammaln(y + 1.0).sum()
