import numpy as np
import pandas as pd
import pytest

from countmodels.observations import ObservationSet
from countmodels.simulation import simulate_quadratic_poisson

TRUE_BETA = (0.5, 0.3, -0.2)


@pytest.fixture
def three_observations():
    """x = -1, 0, 1 with counts 2, 5, 3."""
    return ObservationSet(
        counts=np.array([2, 5, 3]),
        covariates=pd.DataFrame({"x": [-1.0, 0.0, 1.0]}),
    )


@pytest.fixture(scope="session")
def large_sample():
    """20 000 counts simulated from TRUE_BETA, x already ~ N(0, 1)."""
    frame = simulate_quadratic_poisson(20_000, beta=TRUE_BETA, seed=2024)
    return ObservationSet.from_frame(frame, "count", ["x"])


@pytest.fixture
def small_sample():
    frame = simulate_quadratic_poisson(300, beta=TRUE_BETA, seed=7)
    return ObservationSet.from_frame(frame, "count", ["x"])
