import numpy as np
import pandas as pd
import pytest

from countmodels.errors import InvalidInput
from countmodels.fitters import FitResult, GLMFitter, OptimizerFitter
from countmodels.prediction import coefficient_draws, predict_counts
from countmodels.specification import quadratic_poisson_model


@pytest.fixture
def fitted(large_sample):
    return OptimizerFitter().fit(quadratic_poisson_model(), large_sample)


def test_predictions_follow_fitted_rate(fitted):
    design = pd.DataFrame({"Intercept": 1.0, "x": [-0.5, 0.0, 2.0], "x^2": [0.25, 0.0, 4.0]})
    pred = predict_counts(fitted, design, draws=4000, rng=0)
    rate = np.exp(design.to_numpy().dot(fitted.params.to_numpy()))
    np.testing.assert_allclose(pred["mse_pred"], rate, rtol=0.02)
    np.testing.assert_allclose(pred["mae_pred"], rate, rtol=0.02)
    assert pred["mode_pred"].dtype.kind == "i"
    # the mode of a Poisson(λ) is floor(λ) for non-integer λ
    np.testing.assert_array_equal(pred["mode_pred"], np.floor(rate).astype(int))


def test_glm_covariance_usable(small_sample):
    result = GLMFitter().fit(quadratic_poisson_model(), small_sample)
    draws = coefficient_draws(result, draws=2000, rng=1)
    assert draws.shape == (2000, 3)
    np.testing.assert_allclose(draws.mean(axis=0), result.params.to_numpy(), atol=0.02)


def test_missing_columns_rejected(fitted):
    with pytest.raises(InvalidInput):
        predict_counts(fitted, pd.DataFrame({"Intercept": [1.0]}))


def test_result_without_uncertainty_rejected():
    bare = FitResult(
        method="manual",
        params=pd.Series([0.0], index=["Intercept"]),
        std_errors=None,
        objective=0.0,
        converged=True,
    )
    with pytest.raises(InvalidInput):
        coefficient_draws(bare)
