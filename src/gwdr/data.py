"""
Calibration dataset: response, predictors and coordinate dimensions.
"""

from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from gwdr.distances import DistanceProvider, as_distance_provider
from gwdr.exceptions import InvalidSpec


def _readonly(array: NDArray) -> NDArray:
    array = np.array(array, dtype=np.float64, copy=True)
    array.setflags(write=False)
    return array


class Dataset:
    """
    Samples located in a d-dimensional coordinate space.

    Parameters
    ----------
    y : array-like of shape (n_samples,)
        Response.
    X : array-like of shape (n_samples, n_predictors) or None
        Predictors, without the intercept (it is added as a leading
        constant column of ``design``). ``None`` fits an intercept-only model.
    coordinates : sequence of array-like or DistanceProvider
        One entry per dimension group. Arrays of shape (n_samples,) or
        (n_samples, n_columns) are measured with the Euclidean norm.
    predictor_names : sequence of str, optional
        Names of the predictor columns; defaults to ``x1..xp``.

    Attributes
    ----------
    design : ndarray of shape (n_samples, n_predictors + 1)
        Intercept followed by the predictors.
    dimensions : tuple of DistanceProvider
        Distance source of each dimension group.
    """

    def __init__(
        self,
        y: NDArray[np.floating],
        X: NDArray[np.floating] | None,
        coordinates: Sequence,
        predictor_names: Sequence[str] | None = None,
    ):
        y = np.asarray(y, dtype=np.float64)
        if y.ndim == 2 and y.shape[1] == 1:
            y = y[:, 0]
        if y.ndim != 1:
            raise InvalidSpec(f"y must be 1-D, got shape {y.shape}")
        n_samples = y.shape[0]
        if n_samples < 2:
            raise InvalidSpec(f"At least 2 samples are required, got {n_samples}")

        if X is None:
            X = np.empty((n_samples, 0))
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X[:, np.newaxis]
        if X.ndim != 2 or X.shape[0] != n_samples:
            raise InvalidSpec(
                f"X has shape {X.shape}, expected ({n_samples}, n_predictors)"
            )
        if not (np.all(np.isfinite(y)) and np.all(np.isfinite(X))):
            raise InvalidSpec("y and X must not contain NaN or infinite values")

        if isinstance(coordinates, (np.ndarray, DistanceProvider)):
            coordinates = [coordinates]
        dimensions = tuple(as_distance_provider(g) for g in coordinates)
        if len(dimensions) == 0:
            raise InvalidSpec("At least one coordinate group is required")
        for k, dim in enumerate(dimensions):
            if dim.n_samples != n_samples:
                raise InvalidSpec(
                    f"Coordinate group {k} has {dim.n_samples} samples, expected {n_samples}"
                )

        if predictor_names is None:
            predictor_names = [f"x{j + 1}" for j in range(X.shape[1])]
        predictor_names = [str(name) for name in predictor_names]
        if len(predictor_names) != X.shape[1]:
            raise InvalidSpec(
                f"Got {len(predictor_names)} predictor names for {X.shape[1]} predictors"
            )
        if "Intercept" in predictor_names or len(set(predictor_names)) != len(predictor_names):
            raise InvalidSpec("Predictor names must be unique and not 'Intercept'")

        self.y = _readonly(y)
        self.X = _readonly(X)
        self.design = _readonly(np.column_stack([np.ones(n_samples), X]))
        self.dimensions = dimensions
        self.predictor_names = tuple(predictor_names)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        response: str,
        predictors: Sequence[str],
        coordinate_groups: Sequence[str | Sequence[str]],
    ) -> "Dataset":
        """
        Build a dataset from columns of a data frame.

        Parameters
        ----------
        frame : DataFrame
            One row per sample
        response : str
            Response column
        predictors : sequence of str
            Predictor columns
        coordinate_groups : sequence of str or sequence of str
            Coordinate columns of each dimension group, e.g.
            ``[["u", "v"], "t"]`` for a space-time model

        Returns
        -------
        Dataset
        """
        missing = {response, *predictors}
        groups = []
        for group in coordinate_groups:
            columns = [group] if isinstance(group, str) else list(group)
            missing.update(columns)
            groups.append(columns)
        missing -= set(frame.columns)
        if missing:
            raise InvalidSpec(f"Columns not found in frame: {sorted(missing)}")

        return cls(
            y=frame[response].to_numpy(dtype=np.float64),
            X=frame[list(predictors)].to_numpy(dtype=np.float64),
            coordinates=[frame[columns].to_numpy(dtype=np.float64) for columns in groups],
            predictor_names=list(predictors),
        )

    @property
    def n_samples(self) -> int:
        return self.y.shape[0]

    @property
    def n_predictors(self) -> int:
        return self.X.shape[1]

    @property
    def n_dimensions(self) -> int:
        return len(self.dimensions)

    @property
    def coefficient_names(self) -> list[str]:
        return ["Intercept", *self.predictor_names]

    def distance_matrices(self) -> tuple[NDArray[np.floating], ...]:
        """Pairwise distance matrix of every dimension, in group order."""
        return tuple(dim.pairwise() for dim in self.dimensions)

    def __repr__(self) -> str:
        return (
            f"Dataset(n_samples={self.n_samples}, n_predictors={self.n_predictors}, "
            f"n_dimensions={self.n_dimensions})"
        )
