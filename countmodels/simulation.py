"""
simulation.py

Seeded synthetic data with known parameters, used by the command-line
demonstrations and to check that the fitters recover what was simulated.
"""

import numpy as np
import pandas as pd
from scipy.special import expit


def simulate_quadratic_poisson(n, beta=(0.5, 0.3, -0.2), seed=None):
    """
    Counts from log λ = β0 + β1·x + β2·x², with x ~ N(0, 1).

    Returns a DataFrame with columns "x" and "count".
    """
    rng = np.random.default_rng(seed)
    b0, b1, b2 = beta
    x = rng.standard_normal(n)
    lam = np.exp(b0 + b1 * x + b2 * x**2)
    return pd.DataFrame({"x": x, "count": rng.poisson(lam)})


def simulate_seasonal_counts(n_steps, period=12.0, beta=(1.0, 0.6, -0.4), trend=0.0, seed=None):
    """
    Monthly-style counts with a periodic rate:

        log λ_t = β0 + β1·sin(2πt/P) + β2·cos(2πt/P) + trend·t/n_steps

    Returns a DataFrame with columns "t", "sin", "cos", "trend", "count".
    """
    rng = np.random.default_rng(seed)
    t = np.arange(n_steps, dtype=float)
    phase = 2.0 * np.pi * t / period
    frame = pd.DataFrame(
        {
            "t": t,
            "sin": np.sin(phase),
            "cos": np.cos(phase),
            "trend": t / max(n_steps, 1),
        }
    )
    b0, b1, b2 = beta
    lam = np.exp(b0 + b1 * frame["sin"] + b2 * frame["cos"] + trend * frame["trend"])
    frame["count"] = rng.poisson(lam.to_numpy())
    return frame


def simulate_occupancy(n_sites, n_visits=4, psi_beta=(0.3, 0.8), p_beta=(-0.2, 0.5), seed=None):
    """
    Detection/non-detection surveys of sites that may or may not be occupied.

    Site covariate "habitat" drives occupancy, site covariate "effort"
    drives per-visit detection:

        z_i ~ Bernoulli(expit(α0 + α1·habitat_i))
        detections_i ~ Binomial(n_visits, z_i · expit(γ0 + γ1·effort_i))

    Returns a DataFrame with columns "site", "habitat", "effort",
    "occupied", "visits", "detections".
    """
    rng = np.random.default_rng(seed)
    habitat = rng.standard_normal(n_sites)
    effort = rng.standard_normal(n_sites)
    psi = expit(psi_beta[0] + psi_beta[1] * habitat)
    p = expit(p_beta[0] + p_beta[1] * effort)
    occupied = rng.random(n_sites) < psi
    visits = np.full(n_sites, n_visits, dtype=np.int64)
    detections = rng.binomial(visits, np.where(occupied, p, 0.0))
    return pd.DataFrame(
        {
            "site": np.arange(n_sites),
            "habitat": habitat,
            "effort": effort,
            "occupied": occupied,
            "visits": visits,
            "detections": detections,
        }
    )


def simulate_overdispersed(n, beta=(1.0, 0.3, 0.0), size=1.0, seed=None):
    """
    Negative binomial counts with the quadratic log-mean of
    simulate_quadratic_poisson() and variance λ + λ²/size.

    Small `size` means strong over-dispersion; as size grows the counts
    approach Poisson.
    """
    rng = np.random.default_rng(seed)
    b0, b1, b2 = beta
    x = rng.standard_normal(n)
    lam = np.exp(b0 + b1 * x + b2 * x**2)
    counts = rng.negative_binomial(size, size / (size + lam))
    return pd.DataFrame({"x": x, "count": counts})
