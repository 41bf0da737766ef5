"""
Tests for the load → aggregate → scale → ObservationSet stages.

Run with:
    pytest tests/test_preparation.py -v
"""

import numpy as np
import pandas as pd
import pytest

from countmodels.errors import InvalidInput
from countmodels.preparation import (
    aggregate_to_grid,
    load_counts,
    periodic_features,
    prepare_observations,
    standardize,
)


def test_load_counts_strips_quotes_and_coerces(tmp_path):
    path = tmp_path / "counts.csv"
    path.write_text('"count";"x"\n"3";"0.5"\n"NA";"1.5"\n"7";"oops"\n')
    df = load_counts(path, sep=";")
    assert list(df.columns) == ["count", "x"]
    assert df["count"].isna().sum() == 1
    assert np.isnan(df.loc[2, "x"])
    assert df.loc[0, "x"] == pytest.approx(0.5)


class TestAggregateToGrid:
    @pytest.fixture
    def points(self):
        return pd.DataFrame(
            {
                "lon": [0.1, 0.4, 0.9, 1.2, 2.5, 2.6],
                "lat": [0.1, 0.2, 0.3, 0.1, 2.5, 2.9],
                "depth": [1.0, 3.0, 5.0, 7.0, 2.0, 4.0],
            }
        )

    def test_counts_per_cell(self, points):
        grid = aggregate_to_grid(points, 1.0, value_columns=["depth"])
        assert grid["count"].sum() == len(points)
        cells = grid.set_index(["cell_x", "cell_y"])
        assert cells.loc[(0, 0), "count"] == 3
        assert cells.loc[(0, 0), "depth"] == pytest.approx(3.0)
        assert cells.loc[(1, 0), "count"] == 1
        assert cells.loc[(2, 2), "count"] == 2
        assert cells.loc[(2, 2), "depth"] == pytest.approx(3.0)

    def test_cell_centres(self, points):
        grid = aggregate_to_grid(points, 1.0)
        first = grid.iloc[0]
        assert first["x_center"] == pytest.approx(0.1 + 0.5)
        assert first["y_center"] == pytest.approx(0.1 + 0.5)

    def test_input_untouched(self, points):
        before = points.copy()
        aggregate_to_grid(points, 0.5, value_columns=["depth"])
        pd.testing.assert_frame_equal(points, before)

    def test_bad_cell_size(self, points):
        with pytest.raises(InvalidInput):
            aggregate_to_grid(points, 0.0)

    def test_missing_coordinates(self, points):
        with pytest.raises(InvalidInput):
            aggregate_to_grid(points, 1.0, x="easting")

    def test_empty_points(self, points):
        with pytest.raises(InvalidInput, match="no points"):
            aggregate_to_grid(points.iloc[0:0], 1.0, value_columns=["depth"])


class TestStandardize:
    def test_zero_mean_unit_variance(self):
        frame = pd.DataFrame({"x": [1.0, 2.0, 3.0, 4.0], "n": [1, 2, 3, 4]})
        scaled, scaler = standardize(frame, ["x"])
        assert scaled["x"].mean() == pytest.approx(0.0)
        assert scaled["x"].std(ddof=0) == pytest.approx(1.0)
        # original frame is not modified
        assert frame["x"].tolist() == [1.0, 2.0, 3.0, 4.0]

    def test_reuse_scaler_for_held_out_rows(self):
        train = pd.DataFrame({"x": [0.0, 2.0]})
        test = pd.DataFrame({"x": [4.0]})
        _, scaler = standardize(train, ["x"])
        scaled_test, same = standardize(test, ["x"], scaler=scaler)
        assert same is scaler
        assert scaled_test["x"].iloc[0] == pytest.approx(3.0)

    def test_constant_column_rejected(self):
        with pytest.raises(InvalidInput, match="constant"):
            standardize(pd.DataFrame({"x": [2.0, 2.0, 2.0]}), ["x"])


def test_periodic_features():
    features = periodic_features(pd.Series([0.0, 3.0, 6.0]), period=12.0)
    np.testing.assert_allclose(features["sin"], [0.0, 1.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(features["cos"], [1.0, 0.0, -1.0], atol=1e-12)
    with pytest.raises(InvalidInput):
        periodic_features([0.0], period=0.0)


def test_prepare_observations_drops_incomplete_rows():
    frame = pd.DataFrame({"count": [1, np.nan, 3, 4], "x": [10.0, 11.0, np.nan, 14.0]})
    obs, scaler = prepare_observations(frame, "count", ["x"])
    assert len(obs) == 2
    assert obs.covariate("x").mean() == pytest.approx(0.0)
    assert scaler is not None


def test_prepare_observations_without_scaling():
    frame = pd.DataFrame({"count": [1, 2], "sin": [0.5, -0.5]})
    obs, scaler = prepare_observations(frame, "count", ["sin"], scale=False)
    assert scaler is None
    np.testing.assert_allclose(obs.covariate("sin"), [0.5, -0.5])
