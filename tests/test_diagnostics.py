import logging

import numpy as np
import pandas as pd
import pytest

from countmodels.diagnostics import dispersion_report, mcmc_convergence
from countmodels.errors import InvalidInput
from countmodels.fitters import GLMFitter
from countmodels.observations import ObservationSet
from countmodels.simulation import simulate_overdispersed, simulate_quadratic_poisson
from countmodels.specification import quadratic_poisson_model


class TestDispersion:
    def test_poisson_counts_not_flagged(self):
        frame = simulate_quadratic_poisson(5000, seed=10)
        obs = ObservationSet.from_frame(frame, "count", ["x"])
        report = GLMFitter().fit(quadratic_poisson_model(), obs).diagnostics["dispersion"]
        assert report.ratio == pytest.approx(1.0, abs=0.1)
        assert not report.overdispersed

    def test_negative_binomial_counts_flagged(self, caplog):
        frame = simulate_overdispersed(5000, size=1.0, seed=11)
        obs = ObservationSet.from_frame(frame, "count", ["x"])
        with caplog.at_level(logging.WARNING, logger="countmodels.diagnostics"):
            report = GLMFitter().fit(quadratic_poisson_model(), obs).diagnostics["dispersion"]
        assert report.overdispersed
        assert report.ratio > 1.5
        assert "over-dispersed" in caplog.text

    def test_hand_computed(self):
        report = dispersion_report([0, 2, 4], [1.0, 2.0, 2.0], n_params=1)
        # (0-1)²/1 + 0 + (4-2)²/2 = 3
        assert report.pearson_chi2 == pytest.approx(3.0)
        assert report.df_resid == 2
        assert report.ratio == pytest.approx(1.5)
        assert not report.overdispersed
        assert report.as_dict()["dispersion"] == pytest.approx(1.5)

    def test_no_residual_df(self):
        report = dispersion_report([1, 2], [1.0, 2.0], n_params=2)
        assert np.isnan(report.ratio)
        assert not report.overdispersed

    def test_non_positive_mean_rejected(self):
        with pytest.raises(InvalidInput):
            dispersion_report([1, 2], [0.0, 2.0], n_params=1)


class TestMCMCConvergence:
    def test_good_chains(self):
        summary = pd.DataFrame({"r_hat": [1.0, 1.005], "ess_bulk": [900.0, 1200.0]})
        converged, reason = mcmc_convergence(summary)
        assert converged
        assert "r_hat" in reason

    def test_high_r_hat(self):
        summary = pd.DataFrame({"r_hat": [1.0, 1.2], "ess_bulk": [900.0, 1200.0]})
        converged, reason = mcmc_convergence(summary)
        assert not converged
        assert "1.200" in reason

    def test_low_ess(self):
        summary = pd.DataFrame({"r_hat": [1.0, 1.0], "ess_bulk": [30.0, 1200.0]})
        converged, _ = mcmc_convergence(summary, min_ess=100)
        assert not converged

    def test_single_chain_judged_on_ess(self):
        summary = pd.DataFrame({"r_hat": [np.nan, np.nan], "ess_bulk": [400.0, 650.0]})
        converged, reason = mcmc_convergence(summary, chains=1)
        assert converged
        assert "single chain" in reason

    def test_single_chain_low_ess_still_fails(self):
        summary = pd.DataFrame({"r_hat": [np.nan, np.nan], "ess_bulk": [40.0, 650.0]})
        converged, reason = mcmc_convergence(summary, min_ess=100, chains=1)
        assert not converged
        assert "below 100" in reason

    def test_all_nan_r_hat_without_chain_count(self):
        summary = pd.DataFrame({"r_hat": [np.nan], "ess_bulk": [500.0]})
        converged, _ = mcmc_convergence(summary)
        assert converged

    def test_partial_nan_r_hat_fails(self):
        summary = pd.DataFrame({"r_hat": [1.0, np.nan], "ess_bulk": [900.0, 1200.0]})
        converged, _ = mcmc_convergence(summary, chains=4)
        assert not converged
