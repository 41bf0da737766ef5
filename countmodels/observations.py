"""
observations.py

The immutable observation set every fitter consumes: non-negative integer
counts, named columns of already-scaled covariates and, for occupancy models, the
number of survey visits behind each count.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

import numpy as np
import pandas as pd

from countmodels.errors import InvalidInput


def as_counts(values, name="counts"):
    """
    Convert `values` to a 1-D int64 array of non-negative whole numbers.

    Floats such as 3.0 are accepted; fractional, negative, NaN or infinite
    entries raise InvalidInput.
    """
    arr = np.asarray(values)
    if arr.ndim != 1:
        raise InvalidInput(f"{name} must be one-dimensional, got shape {arr.shape}")
    if arr.size and not np.issubdtype(arr.dtype, np.number):
        raise InvalidInput(f"{name} must be numeric, got dtype {arr.dtype}")
    arr = arr.astype(float)
    if not np.all(np.isfinite(arr)):
        raise InvalidInput(f"{name} contain NaN or infinite values")
    if np.any(arr < 0):
        raise InvalidInput(f"{name} must be non-negative, found minimum {arr.min():g}")
    if not np.array_equal(arr, np.round(arr)):
        raise InvalidInput(f"{name} must be whole numbers")
    return arr.astype(np.int64)
@dataclass(frozen=True, eq=False)
class ObservationSet:
    """
    Counts plus scaled covariates, validated on construction.

    Attributes:
    - counts (np.ndarray, shape (N,)): non-negative integer counts n_i.
    - covariates (Mapping[str, np.ndarray]): centred and scaled covariates,
      one read-only float array of length N per name. Pass a DataFrame (or
      anything pd.DataFrame accepts) on construction; use frame() to get an
      independent DataFrame back.
    - trials (np.ndarray or None): survey visits per site, occupancy models only.

    Every array is a private read-only copy, so neither the caller's input
    nor anything handed out can change the stored observations.
    """

    counts: np.ndarray
    covariates: Mapping
    trials: Optional[np.ndarray] = None

    def __post_init__(self):
        counts = as_counts(self.counts)
        raw = dict(self.covariates) if isinstance(self.covariates, Mapping) else self.covariates
        covariates = pd.DataFrame(raw).reset_index(drop=True)
        if len(covariates.columns) and len(covariates) != len(counts):
            raise InvalidInput(
                f"{len(counts)} counts but {len(covariates)} covariate rows"
            )
        try:
            values = covariates.to_numpy(dtype=float)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"covariates must be numeric: {exc}") from exc
        if not np.all(np.isfinite(values)):
            raise InvalidInput("covariates contain NaN or infinite values")

        trials = self.trials
        if trials is not None:
            trials = as_counts(trials, name="trials")
            if len(trials) != len(counts):
                raise InvalidInput(f"{len(counts)} counts but {len(trials)} trials")
            if np.any(trials < 1):
                raise InvalidInput("every site needs at least one visit")
            if np.any(counts > trials):
                raise InvalidInput("detections cannot exceed the number of visits")
            trials.setflags(write=False)

        columns = {}
        for j, name in enumerate(covariates.columns):
            column = values[:, j].copy()
            column.setflags(write=False)
            columns[str(name)] = column

        counts.setflags(write=False)
        # frozen dataclass: assign the normalised copies through object.__setattr__
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "covariates", MappingProxyType(columns))
        object.__setattr__(self, "trials", trials)

    @classmethod
    def from_frame(cls, frame, count_column, covariate_columns, trials_column=None):
        """
        Build an ObservationSet from columns of a DataFrame.

        Arguments:
        - frame (pd.DataFrame): one row per observation.
        - count_column (str): column holding the counts.
        - covariate_columns (list of str): columns holding scaled covariates.
        - trials_column (str or None): column holding visits per site.

        Returns:
        - ObservationSet
        """
        missing = [c for c in [count_column, *covariate_columns] if c not in frame.columns]
        if trials_column is not None and trials_column not in frame.columns:
            missing.append(trials_column)
        if missing:
            raise InvalidInput(f"columns not found: {missing}")
        trials = frame[trials_column].to_numpy() if trials_column else None
        return cls(
            counts=frame[count_column].to_numpy(),
            covariates=frame[list(covariate_columns)].reset_index(drop=True),
            trials=trials,
        )

    def __len__(self):
        return len(self.counts)

    def covariate(self, name):
        """Return one covariate column as a float array."""
        if name not in self.covariates:
            raise InvalidInput(f"unknown covariate {name!r}")
        return self.covariates[name]

    def frame(self):
        """Return the covariates as a new DataFrame the caller may modify."""
        return pd.DataFrame(
            {name: col.copy() for name, col in self.covariates.items()}, index=range(len(self))
        )

    def take(self, index):
        """Return a new ObservationSet with rows reordered/selected by `index`."""
        index = np.asarray(index)
        return ObservationSet(
            counts=self.counts[index],
            covariates={name: col[index] for name, col in self.covariates.items()},
            trials=None if self.trials is None else self.trials[index],
        )
