"""
specification.py

Count models described as data.

A ModelSpec lists the response family, one linear predictor per distribution
parameter (with its link function and covariate terms) and the prior placed
on every coefficient. Because the description is plain data it can be
checked against an ObservationSet before any sampler or optimizer runs, and
the same description drives all three fitters.

Families:
  - "poisson":                 n_i ~ Poisson(μ_i),             log μ_i = X_i·β
  - "zero_inflated_binomial":  occupancy model with the latent occupied state
                               marginalised out:
                               z_i ~ Bernoulli(ψ_i),           logit ψ_i = W_i·α
                               n_i | z_i ~ Binomial(J_i, z_i·p_i), logit p_i = V_i·γ
"""

from dataclasses import dataclass, field
from typing import Mapping, Tuple

import numpy as np
import pandas as pd
import pymc as pm

from countmodels.config import LOGIT_PRIOR_SIGMA, PRIOR_SIGMA
from countmodels.errors import ModelSpecificationError

INTERCEPT = "Intercept"

LINKS = ("log", "logit")

# family -> (predictor name, required link) pairs
FAMILIES = {
    "poisson": (("mu", "log"),),
    "zero_inflated_binomial": (("psi", "logit"), ("p", "logit")),
}

# distribution -> required parameter names
DISTRIBUTIONS = {
    "normal": ("mu", "sigma"),
    "half_normal": ("sigma",),
    "uniform": ("lower", "upper"),
}


@dataclass(frozen=True)
class Prior:
    """Prior distribution placed independently on each coefficient."""

    distribution: str = "normal"
    params: Mapping[str, float] = field(
        default_factory=lambda: {"mu": 0.0, "sigma": PRIOR_SIGMA}
    )

    @classmethod
    def normal(cls, mu=0.0, sigma=PRIOR_SIGMA):
        return cls("normal", {"mu": float(mu), "sigma": float(sigma)})

    @classmethod
    def half_normal(cls, sigma=1.0):
        return cls("half_normal", {"sigma": float(sigma)})

    @classmethod
    def uniform(cls, lower, upper):
        return cls("uniform", {"lower": float(lower), "upper": float(upper)})

    def validate(self):
        if self.distribution not in DISTRIBUTIONS:
            raise ModelSpecificationError(
                f"unknown prior distribution {self.distribution!r}; "
                f"expected one of {sorted(DISTRIBUTIONS)}"
            )
        expected = set(DISTRIBUTIONS[self.distribution])
        if set(self.params) != expected:
            raise ModelSpecificationError(
                f"{self.distribution} prior takes parameters {sorted(expected)}, "
                f"got {sorted(self.params)}"
            )
        values = np.array([self.params[k] for k in sorted(expected)], dtype=float)
        if not np.all(np.isfinite(values)):
            raise ModelSpecificationError(f"prior parameters must be finite: {dict(self.params)}")
        if "sigma" in expected and self.params["sigma"] <= 0:
            raise ModelSpecificationError("prior sigma must be positive")
        if self.distribution == "uniform" and not self.params["lower"] < self.params["upper"]:
            raise ModelSpecificationError("uniform prior needs lower < upper")


@dataclass(frozen=True)
class Term:
    """A covariate raised to a power, e.g. Term("x", 2) is x²."""

    covariate: str
    power: int = 1

    @property
    def name(self):
        return self.covariate if self.power == 1 else f"{self.covariate}^{self.power}"


@dataclass(frozen=True)
class LinearPredictor:
    """
    One linear predictor η = Xβ and the link connecting it to a parameter.

    Attributes:
    - name (str): distribution parameter it drives ("mu", "psi" or "p").
    - link (str): "log" or "logit".
    - terms (tuple of Term): covariate terms after the intercept.
    - intercept (bool): prepend a column of ones.
    - prior (Prior): prior on every coefficient of this predictor.
    """

    name: str
    link: str
    terms: Tuple[Term, ...] = ()
    intercept: bool = True
    prior: Prior = field(default_factory=Prior)

    @property
    def columns(self):
        names = [t.name for t in self.terms]
        return [INTERCEPT] + names if self.intercept else names

    def design(self, observations):
        """Design matrix as a DataFrame whose columns name the coefficients."""
        data = {}
        if self.intercept:
            data[INTERCEPT] = np.ones(len(observations))
        for term in self.terms:
            data[term.name] = observations.covariate(term.covariate) ** term.power
        return pd.DataFrame(data, columns=self.columns)


@dataclass(frozen=True)
class ModelSpec:
    """Family plus linear predictors: everything a fitter needs to know."""

    name: str
    family: str
    predictors: Tuple[LinearPredictor, ...]

    def predictor(self, name):
        for pred in self.predictors:
            if pred.name == name:
                return pred
        raise ModelSpecificationError(f"model {self.name!r} has no predictor {name!r}")

    def design(self, predictor_name, observations):
        return self.predictor(predictor_name).design(observations)

    def coefficient_names(self):
        """Flat coefficient labels; prefixed with the predictor name when there are several."""
        if len(self.predictors) == 1:
            return list(self.predictors[0].columns)
        return [f"{p.name}[{c}]" for p in self.predictors for c in p.columns]

    def validate(self, observations=None):
        """
        Check the description, and optionally that `observations` can feed it.

        Raises ModelSpecificationError on the first problem found.
        """
        if self.family not in FAMILIES:
            raise ModelSpecificationError(
                f"unknown family {self.family!r}; expected one of {sorted(FAMILIES)}"
            )
        required = dict(FAMILIES[self.family])
        names = [p.name for p in self.predictors]
        if sorted(names) != sorted(required):
            raise ModelSpecificationError(
                f"{self.family} family needs predictors {sorted(required)}, got {names}"
            )

        for pred in self.predictors:
            if pred.link not in LINKS:
                raise ModelSpecificationError(f"unknown link {pred.link!r} for {pred.name!r}")
            if pred.link != required[pred.name]:
                raise ModelSpecificationError(
                    f"{pred.name!r} must use the {required[pred.name]} link, got {pred.link!r}"
                )
            if not pred.columns:
                raise ModelSpecificationError(f"predictor {pred.name!r} has no coefficients")
            if len(set(pred.columns)) != len(pred.columns):
                raise ModelSpecificationError(f"duplicate terms in predictor {pred.name!r}")
            for term in pred.terms:
                if int(term.power) != term.power or term.power < 1:
                    raise ModelSpecificationError(f"term {term.name!r} needs a positive integer power")
            pred.prior.validate()

        if observations is not None:
            available = set(observations.covariates)
            for pred in self.predictors:
                missing = [t.covariate for t in pred.terms if t.covariate not in available]
                if missing:
                    raise ModelSpecificationError(
                        f"predictor {pred.name!r} uses covariates {missing} "
                        f"not present in the observations"
                    )
            if self.family == "zero_inflated_binomial" and observations.trials is None:
                raise ModelSpecificationError("occupancy models need the number of visits per site")
        return self


def quadratic_poisson_model(covariate="x", prior_sigma=PRIOR_SIGMA):
    """log λ = β0 + β1·x + β2·x²"""
    return ModelSpec(
        name="quadratic_poisson",
        family="poisson",
        predictors=(
            LinearPredictor(
                name="mu",
                link="log",
                terms=(Term(covariate), Term(covariate, 2)),
                prior=Prior.normal(0.0, prior_sigma),
            ),
        ),
    )


def seasonal_poisson_model(periodic=("sin", "cos"), trend=None, prior_sigma=PRIOR_SIGMA):
    """
    Poisson time-series model with a periodic covariate.

    log λ_t = β0 + β1·sin(2πt/P) + β2·cos(2πt/P) [+ β3·trend_t]

    The sin/cos columns come from preparation.periodic_features().
    """
    terms = tuple(Term(c) for c in periodic)
    if trend is not None:
        terms = terms + (Term(trend),)
    return ModelSpec(
        name="seasonal_poisson",
        family="poisson",
        predictors=(
            LinearPredictor(name="mu", link="log", terms=terms, prior=Prior.normal(0.0, prior_sigma)),
        ),
    )


def occupancy_model(occupancy_covariates=(), detection_covariates=(), prior_sigma=LOGIT_PRIOR_SIGMA):
    """Site occupancy ψ and per-visit detection p, both on the logit scale."""
    prior = Prior.normal(0.0, prior_sigma)
    return ModelSpec(
        name="occupancy",
        family="zero_inflated_binomial",
        predictors=(
            LinearPredictor(
                name="psi",
                link="logit",
                terms=tuple(Term(c) for c in occupancy_covariates),
                prior=prior,
            ),
            LinearPredictor(
                name="p",
                link="logit",
                terms=tuple(Term(c) for c in detection_covariates),
                prior=prior,
            ),
        ),
    )


def _prior_variable(name, prior, dims):
    params = prior.params
    if prior.distribution == "normal":
        return pm.Normal(name, mu=params["mu"], sigma=params["sigma"], dims=dims)
    if prior.distribution == "half_normal":
        return pm.HalfNormal(name, sigma=params["sigma"], dims=dims)
    return pm.Uniform(name, lower=params["lower"], upper=params["upper"], dims=dims)


def to_pymc(spec, observations):
    """
    Build a pymc.Model from a validated ModelSpec.

    Coefficients of predictor <name> are stored in the variable
    "beta_<name>" with dimension "<name>_coef" labelled by the design columns.

    Arguments:
    - spec (ModelSpec): model description.
    - observations (ObservationSet): data to condition on.

    Returns:
    - pymc.Model
    """
    spec.validate(observations)

    coords = {f"{p.name}_coef": p.columns for p in spec.predictors}
    with pm.Model(coords=coords) as model:
        means = {}
        for pred in spec.predictors:
            X = pred.design(observations).to_numpy()
            beta = _prior_variable(f"beta_{pred.name}", pred.prior, f"{pred.name}_coef")
            eta = pm.math.dot(X, beta)
            if pred.link == "log":
                means[pred.name] = pm.math.exp(eta)
            else:
                means[pred.name] = pm.math.invlogit(eta)

        if spec.family == "poisson":
            pm.Poisson("y_obs", mu=means["mu"], observed=observations.counts)
        else:
            pm.ZeroInflatedBinomial(
                "y_obs",
                psi=means["psi"],
                n=observations.trials,
                p=means["p"],
                observed=observations.counts,
            )
    return model
