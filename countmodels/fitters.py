"""
fitters.py

Three interchangeable ways to fit a ModelSpec to an ObservationSet:

  - GLMFitter:       iteratively reweighted least squares (statsmodels GLM).
  - OptimizerFitter: scipy.optimize.minimize() on the hand-written deviance,
                     followed by a Laplace approximation for standard errors.
  - MCMCFitter:      NUTS sampling of the PyMC model built from the ModelSpec.

Each returns an immutable FitResult. A fitter that stops without converging
still returns its result, with converged=False, and issues a
ConvergenceFailure warning so the caller cannot miss it. Restarting from
other initial values is the caller's decision; fit_with_restarts() does
that for fitters that take a random seed.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import statsmodels.api as sm
from scipy.optimize import minimize
from statsmodels.tools.sm_exceptions import ConvergenceWarning as SmConvergenceWarning

from countmodels.config import (
    MAX_ABS_COEFFICIENT,
    MAX_CONDITION_NUMBER,
    MIN_ESS,
    R_HAT_MAX,
    OptimizerSettings,
    SamplerSettings,
)
from countmodels.diagnostics import dispersion_report, mcmc_convergence
from countmodels.errors import ConvergenceFailure, ModelSpecificationError
from countmodels.likelihood import deviance_gradient, deviance_hessian, design_deviance
from countmodels.specification import to_pymc

logger = logging.getLogger(__name__)

# scipy methods that accept a gradient / a Hessian callable
_GRADIENT_FREE = {"Nelder-Mead", "Powell", "COBYLA", "COBYQA"}
_USES_HESSIAN = {"Newton-CG", "dogleg", "trust-ncg", "trust-krylov", "trust-exact", "trust-constr"}


@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Outcome of one fitting run. Never mutated after creation.

    Attributes:
    - method (str): "glm", "optimizer" or "mcmc".
    - params (pd.Series): estimates indexed by coefficient name.
    - std_errors (pd.Series or None): standard errors / posterior sd.
    - objective (float): negative log-likelihood at the estimate (nan if undefined).
    - converged (bool): whether the external routine met its stopping criterion.
    - message (str): the routine's own termination message.
    - diagnostics (Mapping): read-only extras (dispersion report, covariance,
      ArviZ summary, iteration counts...).
    """

    method: str
    params: pd.Series
    std_errors: Optional[pd.Series]
    objective: float
    converged: bool
    message: str = ""
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "diagnostics", MappingProxyType(dict(self.diagnostics)))


def _require_poisson(spec, method):
    if spec.family != "poisson":
        raise ModelSpecificationError(
            f"the {method} fitter handles the poisson family only, got {spec.family!r}"
        )


def _missing_estimate(counts):
    """Reason the Poisson maximum-likelihood estimate cannot exist, or None."""
    # With every n_i = 0 the deviance keeps falling as the intercept goes to -inf
    if counts.size == 0 or not np.any(counts > 0):
        return "all counts are zero; the maximum-likelihood estimate does not exist"
    return None


def _boundary_problem(params, precision):
    """Reason an estimate sits at the edge of the parameter space, or None."""
    worst = float(np.max(np.abs(params)))
    if worst > MAX_ABS_COEFFICIENT:
        return (
            f"largest coefficient magnitude {worst:.3g} exceeds {MAX_ABS_COEFFICIENT}; "
            f"the estimates are diverging"
        )
    condition = float(np.linalg.cond(precision))
    if not np.isfinite(condition) or condition > MAX_CONDITION_NUMBER:
        return f"Hessian at the optimum is near-singular (condition number {condition:.3g})"
    return None


def _failed_result(method, columns, message, diagnostics=None):
    """Non-converged result for a fit that produced no usable estimate."""
    missing = pd.Series(np.nan, index=list(columns))
    return FitResult(
        method=method,
        params=missing,
        std_errors=missing.copy(),
        objective=float("nan"),
        converged=False,
        message=message,
        diagnostics=diagnostics or {},
    )


def _surface(result):
    """Warn loudly when a fit did not converge; return the result unchanged."""
    if not result.converged:
        warnings.warn(
            f"{result.method} fit did not converge: {result.message}",
            ConvergenceFailure,
            stacklevel=3,
        )
    else:
        logger.info("%s fit converged: %s", result.method, result.message)
    return result


class ModelFitter(ABC):
    """Given a model description and data, return estimates and diagnostics."""

    method = "base"

    @abstractmethod
    def fit(self, spec, observations):
        """Fit `spec` to `observations` and return a FitResult."""


class GLMFitter(ModelFitter):
    """Poisson log-linear GLM fitted by IRLS (statsmodels)."""

    method = "glm"

    def __init__(self, maxiter=100, tol=1e-8):
        self.maxiter = maxiter
        self.tol = tol

    def fit(self, spec, observations):
        # 1. Check the description and build the design matrix X
        spec.validate(observations)
        _require_poisson(spec, self.method)
        X = spec.design("mu", observations)
        y = observations.counts

        # 2. Data for which no finite estimate exists never reach IRLS
        reason = _missing_estimate(y)
        if reason:
            return _surface(_failed_result(self.method, X.columns, reason))

        # 3. Run IRLS, keeping statsmodels' own convergence warnings as messages
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", SmConvergenceWarning)
            model = sm.GLM(y, X, family=sm.families.Poisson())
            try:
                res = model.fit(maxiter=self.maxiter, tol=self.tol, disp=0)
            except (ValueError, np.linalg.LinAlgError) as exc:
                res = None
                failure = f"IRLS failed: {exc}"
        if res is None:
            return _surface(_failed_result(self.method, X.columns, failure))

        sm_messages = []
        for w in caught:
            if issubclass(w.category, SmConvergenceWarning):
                sm_messages.append(str(w.message))
            else:
                warnings.warn(w.message, w.category, stacklevel=2)

        # 4. Converged means IRLS stopped on its tolerance with finite,
        #    interior estimates
        params = pd.Series(np.asarray(res.params, dtype=float), index=X.columns)
        iterations = int(res.fit_history["iteration"])
        converged = bool(getattr(res, "converged", True)) and not sm_messages
        converged = converged and bool(np.all(np.isfinite(params)))
        message = "; ".join(sm_messages) or f"IRLS finished after {iterations} iterations"
        if converged:
            boundary = _boundary_problem(params.to_numpy(), deviance_hessian(params, X, y))
            if boundary:
                converged = False
                message = boundary

        # 5. Pearson dispersion of the fitted means
        report = dispersion_report(y, np.asarray(res.mu), X.shape[1])
        return _surface(
            FitResult(
                method=self.method,
                params=params,
                std_errors=pd.Series(np.asarray(res.bse, dtype=float), index=X.columns),
                objective=float(-res.llf),
                converged=converged,
                message=message,
                diagnostics={
                    "dispersion": report,
                    "deviance": float(res.deviance),
                    "covariance": pd.DataFrame(
                        np.asarray(res.cov_params()), index=X.columns, columns=X.columns
                    ),
                    "iterations": iterations,
                },
            )
        )


class OptimizerFitter(ModelFitter):
    """
    Minimise the deviance with scipy.optimize.minimize().

    With `prior_sigma` set, a Gaussian N(0, prior_sigma²) prior is added to
    every coefficient and the estimate becomes the posterior mode (MAP). In
    both cases the standard errors come from the Laplace approximation:
    covariance = [∇²(deviance + penalty)(β̂)]⁻¹.
    """

    method = "optimizer"

    def __init__(self, settings=None, prior_sigma=None):
        self.settings = settings or OptimizerSettings()
        self.prior_sigma = prior_sigma

    def _penalty(self, beta):
        if self.prior_sigma is None:
            return 0.0, np.zeros_like(beta), np.zeros((beta.size, beta.size))
        s2 = self.prior_sigma**2
        return 0.5 * np.sum(beta**2) / s2, beta / s2, np.eye(beta.size) / s2

    def fit(self, spec, observations):
        # 1. Check the description and build the design matrix X
        spec.validate(observations)
        _require_poisson(spec, self.method)
        design = spec.design("mu", observations)
        X = design.to_numpy()
        y = observations.counts
        n = max(len(y), 1)

        # 2. Without a prior, all-zero counts have no finite optimum
        if self.prior_sigma is None:
            reason = _missing_estimate(y)
            if reason:
                return _surface(_failed_result(self.method, design.columns, reason))

        # 3. Objective, gradient and Hessian of the per-observation deviance,
        #    so that gtol does not depend on the sample size
        def objective(beta):
            return (design_deviance(beta, X, y) + self._penalty(beta)[0]) / n

        def objective_grad(beta):
            return (deviance_gradient(beta, X, y) + self._penalty(beta)[1]) / n

        def objective_hess(beta):
            return (deviance_hessian(beta, X, y) + self._penalty(beta)[2]) / n

        # 4. Random standard-normal starting point
        settings = self.settings
        rng = np.random.default_rng(settings.random_seed)
        beta0 = rng.standard_normal(X.shape[1])

        # 5. Minimise, passing derivatives only to methods that use them
        kwargs = {}
        if settings.method not in _GRADIENT_FREE:
            kwargs["jac"] = objective_grad
        if settings.method in _USES_HESSIAN:
            kwargs["hess"] = objective_hess

        res = minimize(
            fun=objective,
            x0=beta0,
            method=settings.method,
            options=settings.options(),
            **kwargs,
        )

        beta_hat = np.asarray(res.x, dtype=float)
        params = pd.Series(beta_hat, index=design.columns)
        converged = bool(res.success) and bool(np.all(np.isfinite(beta_hat)))
        message = str(res.message)
        diagnostics = {
            "initial_values": pd.Series(beta0, index=design.columns),
            "iterations": int(getattr(res, "nit", -1)),
            "covariance": None,
        }
        if not np.all(np.isfinite(beta_hat)):
            return _surface(
                FitResult(
                    method=self.method,
                    params=params,
                    std_errors=None,
                    objective=float("nan"),
                    converged=False,
                    message=message,
                    diagnostics=diagnostics,
                )
            )

        # 6. A reported success at the edge of the parameter space is not
        #    accepted
        precision = deviance_hessian(beta_hat, X, y) + self._penalty(beta_hat)[2]
        boundary = _boundary_problem(beta_hat, precision)
        if converged and boundary:
            converged = False
            message = f"{message}; {boundary}"

        # 7. Laplace covariance = inverse Hessian at the optimum
        std_errors = None
        try:
            covariance = pd.DataFrame(
                np.linalg.inv(precision), index=design.columns, columns=design.columns
            )
            diagnostics["covariance"] = covariance
            std_errors = pd.Series(np.sqrt(np.diag(covariance)), index=design.columns)
        except np.linalg.LinAlgError:
            logger.warning("Hessian at the optimum is singular; no Laplace covariance")

        # 8. Deviance and Pearson dispersion at the estimate
        objective_value = design_deviance(beta_hat, X, y)
        fitted = np.exp(X.dot(beta_hat))
        if np.all(np.isfinite(fitted)) and np.all(fitted > 0):
            diagnostics["dispersion"] = dispersion_report(y, fitted, X.shape[1])

        return _surface(
            FitResult(
                method=self.method,
                params=params,
                std_errors=std_errors,
                objective=objective_value,
                converged=converged,
                message=message,
                diagnostics=diagnostics,
            )
        )


class MCMCFitter(ModelFitter):
    """
    Sample the posterior of any ModelSpec family with PyMC's NUTS.

    Estimates are posterior means and std_errors are posterior standard
    deviations. The run counts as converged when every R̂ is at most
    `r_hat_max` and every bulk ESS at least `min_ess`. R̂ needs two or more
    chains; a single-chain run is judged on ESS alone.
    """

    method = "mcmc"

    def __init__(self, settings=None, r_hat_max=R_HAT_MAX, min_ess=MIN_ESS):
        self.settings = settings or SamplerSettings()
        self.r_hat_max = r_hat_max
        self.min_ess = min_ess

    def fit(self, spec, observations):
        # 1. Build the PyMC model from the description and sample with NUTS
        model = to_pymc(spec, observations)
        s = self.settings
        with model:
            trace = pm.sample(
                draws=s.draws,
                tune=s.tune,
                chains=s.chains,
                cores=s.cores,
                target_accept=s.target_accept,
                random_seed=s.random_seed,
                progressbar=s.progressbar,
            )

        # 2. ArviZ summary; rows follow var_names, then each variable's
        #    coefficient coordinate
        var_names = [f"beta_{p.name}" for p in spec.predictors]
        summary = az.summary(trace, var_names=var_names, round_to="none")
        summary.index = spec.coefficient_names()

        # 3. Convergence from R̂ / ESS, plus a note on divergent transitions
        converged, message = mcmc_convergence(
            summary, self.r_hat_max, self.min_ess, chains=s.chains
        )
        diverging = int(trace.sample_stats["diverging"].sum()) if "diverging" in trace.sample_stats else 0
        if diverging:
            message = f"{message}; {diverging} divergent transitions"

        params = summary["mean"].astype(float)
        diagnostics = {"summary": summary, "trace": trace, "divergences": diverging}

        # 4. Deviance and dispersion at the posterior mean (Poisson only)
        objective = float("nan")
        if spec.family == "poisson":
            X = spec.design("mu", observations).to_numpy()
            objective = design_deviance(params.to_numpy(), X, observations.counts)
            diagnostics["dispersion"] = dispersion_report(
                observations.counts, np.exp(X.dot(params.to_numpy())), X.shape[1]
            )

        return _surface(
            FitResult(
                method=self.method,
                params=params,
                std_errors=summary["sd"].astype(float),
                objective=objective,
                converged=converged,
                message=message,
                diagnostics=diagnostics,
            )
        )


def fit_with_restarts(fitter_factory, spec, observations, seeds):
    """
    Refit from several random starting points and keep the best run.

    Arguments:
    - fitter_factory (callable): seed -> ModelFitter.
    - spec (ModelSpec), observations (ObservationSet): passed to every fit.
    - seeds (iterable of int): one run per seed.

    Returns:
    - FitResult: the converged run with the lowest objective, or the best
      non-converged run when none converged (its warning has been issued).
    """
    results = [fitter_factory(seed).fit(spec, observations) for seed in seeds]
    if not results:
        raise ValueError("fit_with_restarts needs at least one seed")

    def score(r):
        return r.objective if np.isfinite(r.objective) else np.inf

    converged = [r for r in results if r.converged]
    best = min(converged or results, key=score)
    logger.info(
        "%d of %d restarts converged; best objective %.6g",
        len(converged),
        len(results),
        best.objective,
    )
    return best


def compare_fits(results):
    """
    Side-by-side estimates and standard errors of several fits.

    Returns a DataFrame indexed by coefficient with columns
    "<method>_mean" and "<method>_sd" for every result.
    """
    columns = {}
    for result in results:
        columns[f"{result.method}_mean"] = result.params
        if result.std_errors is not None:
            columns[f"{result.method}_sd"] = result.std_errors
        else:
            columns[f"{result.method}_sd"] = pd.Series(np.nan, index=result.params.index)
    return pd.DataFrame(columns)
