"""
preparation.py

Data preparation stages: load → aggregate → center/scale → ObservationSet.

Every stage takes a DataFrame and returns a new one; inputs are never
modified in place, so the raw table, the gridded table and the scaled table
can all be inspected side by side.
"""

import io
import logging

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from countmodels.errors import InvalidInput
from countmodels.observations import ObservationSet

logger = logging.getLogger(__name__)


def load_counts(filepath, sep=",", numeric=True):
    """
    Read a delimited text file of observations.

    1. Read the raw file and drop every double-quote character.
    2. Parse the cleaned text with pandas.read_csv() using `sep`.
    3. With `numeric=True`, coerce every column to a number; entries that
       cannot be parsed become NaN.

    Arguments:
    - filepath (str or Path): path to the file.
    - sep (str): field delimiter, e.g. "," or ";".
    - numeric (bool): coerce all columns to numeric dtype.

    Returns:
    - df (pd.DataFrame)
    """
    with open(filepath, "r") as f:
        text = f.read().replace('"', "")

    df = pd.read_csv(io.StringIO(text), sep=sep)
    if numeric:
        df = df.apply(pd.to_numeric, errors="coerce")
    logger.info("Loaded %d rows x %d columns from %s", df.shape[0], df.shape[1], filepath)
    return df


def aggregate_to_grid(points, cell_size, value_columns=(), x="lon", y="lat"):
    """
    Count point records per square grid cell.

    Cells are cell_size wide and anchored at the minimum x / y of the
    points. The result has one row per occupied cell with integer cell
    indices `cell_x`, `cell_y`, the cell centre `x_center`, `y_center`,
    the number of points `count`, and the mean of each value column.

    Arguments:
    - points (pd.DataFrame): one row per observed point.
    - cell_size (float): side length of a cell, in the units of x and y.
    - value_columns (iterable of str): per-point values averaged per cell.
    - x, y (str): coordinate column names.

    Returns:
    - grid (pd.DataFrame)
    """
    # 1. Validate the cell size, the columns and the coordinates
    if not cell_size > 0:
        raise InvalidInput(f"cell_size must be positive, got {cell_size}")
    value_columns = list(value_columns)
    missing = [c for c in [x, y, *value_columns] if c not in points.columns]
    if missing:
        raise InvalidInput(f"columns not found: {missing}")
    if len(points) == 0:
        raise InvalidInput("no points to aggregate")

    coords = points[[x, y]].to_numpy(dtype=float)
    if not np.all(np.isfinite(coords)):
        raise InvalidInput("point coordinates contain NaN or infinite values")

    # 2. Index every point by the cell it falls in, counting from the lower-left corner
    origin = coords.min(axis=0)
    cells = np.floor((coords - origin) / cell_size).astype(np.int64)
    work = points[value_columns].copy()
    work["cell_x"] = cells[:, 0]
    work["cell_y"] = cells[:, 1]

    # 3. Count points and average the value columns per occupied cell
    grouped = work.groupby(["cell_x", "cell_y"], sort=True)
    grid = grouped.size().rename("count").to_frame()
    if value_columns:
        grid = grid.join(grouped[value_columns].mean())
    grid = grid.reset_index()

    # 4. Cell centres in the original coordinate units
    grid["x_center"] = origin[0] + (grid["cell_x"] + 0.5) * cell_size
    grid["y_center"] = origin[1] + (grid["cell_y"] + 0.5) * cell_size
    logger.info("Aggregated %d points into %d occupied cells", len(points), len(grid))
    return grid


def standardize(frame, columns, scaler=None):
    """
    Center and scale `columns` to zero mean and unit variance.

    With `scaler=None` a new StandardScaler is fitted on `frame`; pass the
    returned scaler back in to transform held-out rows with the training
    mean and variance.

    Returns:
    - (scaled, scaler): a new DataFrame and the fitted StandardScaler.
    """
    columns = list(columns)
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise InvalidInput(f"columns not found: {missing}")
    values = frame[columns].to_numpy(dtype=float)
    if not np.all(np.isfinite(values)):
        raise InvalidInput(f"columns {columns} contain NaN or infinite values")

    if scaler is None:
        scaler = StandardScaler()
        scaler.fit(values)
        constant = [c for c, s in zip(columns, scaler.var_) if s == 0]
        if constant:
            raise InvalidInput(f"cannot scale constant columns {constant}")

    scaled = frame.copy()
    scaled[columns] = scaler.transform(values)
    return scaled, scaler


def periodic_features(time, period, names=("sin", "cos")):
    """
    sin(2πt/P) and cos(2πt/P) of a time index, as a DataFrame.

    Both columns already lie in [-1, 1] with mean ≈ 0 over whole periods,
    so they are used without further scaling.
    """
    if not period > 0:
        raise InvalidInput(f"period must be positive, got {period}")
    t = np.asarray(time, dtype=float)
    if not np.all(np.isfinite(t)):
        raise InvalidInput("time values contain NaN or infinite values")
    phase = 2.0 * np.pi * t / period
    index = time.index if isinstance(time, pd.Series) else None
    return pd.DataFrame({names[0]: np.sin(phase), names[1]: np.cos(phase)}, index=index)


def prepare_observations(frame, count_column, covariate_columns, scale=True, trials_column=None):
    """
    Final stage: scale the covariates (optionally) and build an ObservationSet.

    Rows with a missing count or covariate are dropped first and the number
    dropped is logged.

    Returns:
    - (observations, scaler): scaler is None when scale=False.
    """
    # 1. Keep only rows with every needed column present
    covariate_columns = list(covariate_columns)
    needed = [count_column, *covariate_columns] + ([trials_column] if trials_column else [])
    missing = [c for c in needed if c not in frame.columns]
    if missing:
        raise InvalidInput(f"columns not found: {missing}")
    complete = frame.dropna(subset=needed)
    if len(complete) < len(frame):
        logger.info("Dropped %d rows with missing values", len(frame) - len(complete))

    # 2. Center and scale the covariates
    scaler = None
    if scale and covariate_columns:
        complete, scaler = standardize(complete, covariate_columns)

    # 3. Validate and freeze
    observations = ObservationSet.from_frame(
        complete, count_column, covariate_columns, trials_column=trials_column
    )
    return observations, scaler
