"""
cli.py

Command-line demonstrations, one per analysis:

  countmodels likelihood  - log-likelihood profile of an i.i.d. Poisson sample
  countmodels regression  - quadratic log-linear Poisson regression, fitted
                            by IRLS, by direct optimisation and by MCMC
  countmodels occupancy   - Bayesian site-occupancy model
  countmodels seasonal    - Poisson time series with a periodic covariate

Each command reads a CSV when --data is given and simulates data with
known parameters otherwise. Tables are printed to stdout; with --out DIR
the figures are written there as PNG files.
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import arviz as az
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

from countmodels.config import SamplerSettings  # noqa: E402
from countmodels.fitters import GLMFitter, MCMCFitter, OptimizerFitter, compare_fits  # noqa: E402
from countmodels.likelihood import likelihood_profile  # noqa: E402
from countmodels.preparation import (  # noqa: E402
    aggregate_to_grid,
    load_counts,
    periodic_features,
    prepare_observations,
)
from countmodels.simulation import (  # noqa: E402
    simulate_occupancy,
    simulate_quadratic_poisson,
    simulate_seasonal_counts,
)
from countmodels.specification import (  # noqa: E402
    occupancy_model,
    quadratic_poisson_model,
    seasonal_poisson_model,
)

logger = logging.getLogger("countmodels")


def _sampler_settings(args):
    return replace(
        SamplerSettings(),
        draws=args.draws,
        tune=args.tune,
        chains=args.chains,
        random_seed=args.seed,
    )


def _save(fig, args, name):
    if args.out is None:
        plt.close(fig)
        return
    out = Path(args.out)
    out.mkdir(parents=True, exist_ok=True)
    path = out / name
    fig.savefig(path, bbox_inches="tight")
    plt.close(fig)
    print(f"Saved {path}")


def _save_trace(result, args, name):
    if args.out is None:
        return
    axes = az.plot_trace(result.diagnostics["trace"])
    _save(np.ravel(axes)[0].figure, args, name)


def _print_dispersion(result):
    report = result.diagnostics.get("dispersion")
    if report is None:
        return
    flag = "OVER-DISPERSED" if report.overdispersed else "consistent with Poisson"
    print(
        f"[{result.method}] Pearson chi2 = {report.pearson_chi2:.1f} on {report.df_resid} df, "
        f"dispersion = {report.ratio:.2f} ({flag})"
    )


def cmd_likelihood(args):
    if args.data:
        counts = load_counts(args.data, sep=args.sep)[args.count_column].dropna().to_numpy()
    else:
        rng = np.random.default_rng(args.seed)
        counts = rng.poisson(args.rate, size=args.n)

    upper = max(float(np.max(counts)), 1.0) * 1.5
    rates = np.linspace(upper / 500.0, upper, 500)
    profile = likelihood_profile(counts, rates)
    best = rates[np.argmax(profile)]

    print(f"Sample size: {len(counts)}, sample mean: {np.mean(counts):.4f}")
    print(f"Rate maximising the log-likelihood on the grid: {best:.4f}")

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(rates, profile)
    ax.axvline(np.mean(counts), color="k", linestyle="--", label="sample mean")
    ax.set_xlabel("λ")
    ax.set_ylabel("log-likelihood")
    ax.legend()
    _save(fig, args, "likelihood_profile.png")
    return 0


def cmd_regression(args):
    if args.data:
        raw = load_counts(args.data, sep=args.sep)
        if args.grid_cell:
            raw = aggregate_to_grid(
                raw, args.grid_cell, value_columns=[args.covariate], x=args.lon, y=args.lat
            )
            count_column = "count"
        else:
            count_column = args.count_column
        table = raw.rename(columns={args.covariate: "x"})
    else:
        table = simulate_quadratic_poisson(args.n, seed=args.seed)
        count_column = "count"

    observations, _ = prepare_observations(table, count_column, ["x"])
    spec = quadratic_poisson_model("x")

    fitters = [GLMFitter(), OptimizerFitter()]
    if not args.no_mcmc:
        fitters.append(MCMCFitter(_sampler_settings(args)))
    results = [f.fit(spec, observations) for f in fitters]

    print(compare_fits(results).round(4))
    for result in results:
        print(f"[{result.method}] converged={result.converged} objective={result.objective:.4f}")
        _print_dispersion(result)

    x = observations.covariate("x")
    order = np.argsort(x)
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.scatter(x, observations.counts, s=8, alpha=0.4, label="observed")
    design = spec.design("mu", observations).to_numpy()
    for result in results:
        ax.plot(x[order], np.exp(design.dot(result.params.to_numpy()))[order], label=result.method)
    ax.set_xlabel("x (scaled)")
    ax.set_ylabel("count")
    ax.legend()
    _save(fig, args, "regression_fit.png")
    if not args.no_mcmc:
        _save_trace(results[-1], args, "regression_trace.png")
    return 0


def cmd_occupancy(args):
    if args.data:
        table = load_counts(args.data, sep=args.sep)
    else:
        table = simulate_occupancy(args.n, n_visits=args.visits, seed=args.seed)

    observations, _ = prepare_observations(
        table,
        args.count_column if args.data else "detections",
        [args.occupancy_covariate, args.detection_covariate],
        trials_column=args.visits_column if args.data else "visits",
    )
    spec = occupancy_model([args.occupancy_covariate], [args.detection_covariate])
    result = MCMCFitter(_sampler_settings(args)).fit(spec, observations)

    print(result.diagnostics["summary"][["mean", "sd", "ess_bulk", "r_hat"]].round(3))
    print(f"converged={result.converged}: {result.message}")
    naive = np.mean(observations.counts > 0)
    print(f"Naive occupancy (sites with any detection): {naive:.3f}")
    _save_trace(result, args, "occupancy_trace.png")
    return 0


def cmd_seasonal(args):
    if args.data:
        raw = load_counts(args.data, sep=args.sep)
        features = periodic_features(raw[args.time_column], args.period)
        table = pd.concat([raw, features], axis=1)
        count_column = args.count_column
    else:
        table = simulate_seasonal_counts(args.n, period=args.period, seed=args.seed)
        count_column = "count"

    # sin/cos are bounded and centred already
    observations, _ = prepare_observations(table, count_column, ["sin", "cos"], scale=False)
    spec = seasonal_poisson_model()

    fitters = [GLMFitter(), OptimizerFitter()]
    if not args.no_mcmc:
        fitters.append(MCMCFitter(_sampler_settings(args)))
    results = [f.fit(spec, observations) for f in fitters]

    print(compare_fits(results).round(4))
    for result in results:
        _print_dispersion(result)
    b = results[0].params
    amplitude = np.hypot(b["sin"], b["cos"])
    peak = (np.arctan2(b["sin"], b["cos"]) / (2 * np.pi) * args.period) % args.period
    print(f"Seasonal amplitude (log scale): {amplitude:.3f}, peak at t = {peak:.2f} (mod {args.period})")

    design = spec.design("mu", observations).to_numpy()
    fig, ax = plt.subplots(figsize=(9, 4))
    ax.plot(observations.counts, ".", label="observed")
    ax.plot(np.exp(design.dot(results[0].params.to_numpy())), label="fitted rate")
    ax.set_xlabel("t")
    ax.set_ylabel("count")
    ax.legend()
    _save(fig, args, "seasonal_fit.png")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="countmodels", description="Poisson count model demonstrations"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log fitter progress")
    sub = parser.add_subparsers(dest="command", required=True)

    def common(p, n_default):
        p.add_argument("--data", help="CSV file; simulated data is used when omitted")
        p.add_argument("--sep", default=",", help="field delimiter of --data")
        p.add_argument("--count-column", default="count")
        p.add_argument("--n", type=int, default=n_default, help="simulated sample size")
        p.add_argument("--seed", type=int, default=42)
        p.add_argument("--out", help="directory for figures")

    def sampling(p):
        p.add_argument("--draws", type=int, default=2000)
        p.add_argument("--tune", type=int, default=1000)
        p.add_argument("--chains", type=int, default=4)

    p = sub.add_parser("likelihood", help="univariate Poisson likelihood profile")
    common(p, 50)
    p.add_argument("--rate", type=float, default=3.0, help="rate of the simulated sample")
    p.set_defaults(func=cmd_likelihood)

    p = sub.add_parser("regression", help="quadratic log-linear Poisson regression")
    common(p, 500)
    sampling(p)
    p.add_argument("--covariate", default="x")
    p.add_argument("--grid-cell", type=float, help="aggregate points into cells of this size")
    p.add_argument("--lon", default="lon")
    p.add_argument("--lat", default="lat")
    p.add_argument("--no-mcmc", action="store_true")
    p.set_defaults(func=cmd_regression)

    p = sub.add_parser("occupancy", help="Bayesian site-occupancy model")
    common(p, 200)
    sampling(p)
    p.add_argument("--visits", type=int, default=4, help="visits per simulated site")
    p.add_argument("--visits-column", default="visits")
    p.add_argument("--occupancy-covariate", default="habitat")
    p.add_argument("--detection-covariate", default="effort")
    p.set_defaults(func=cmd_occupancy)

    p = sub.add_parser("seasonal", help="Poisson time series with a periodic covariate")
    common(p, 120)
    sampling(p)
    p.add_argument("--period", type=float, default=12.0)
    p.add_argument("--time-column", default="t")
    p.add_argument("--no-mcmc", action="store_true")
    p.set_defaults(func=cmd_seasonal)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
