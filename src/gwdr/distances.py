"""
Per-dimension pairwise distance sources.

A dimension is either a set of coordinate columns measured with the
Euclidean norm, or a precomputed distance matrix for spaces without a
natural coordinate difference (e.g. origin-destination flows).
"""

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.distance import cdist

from gwdr.exceptions import InvalidSpec


class DistanceProvider:
    """
    Base class for the distance source of one coordinate dimension.

    Attributes
    ----------
    n_samples : int
        Number of samples the distances refer to.
    coordinates : ndarray of shape (n_samples, n_columns) or None
        Coordinates when the dimension has them; used for local
        polynomial offsets and out-of-sample prediction.
    """

    coordinates: NDArray[np.floating] | None = None

    def __init__(self):
        self._pairwise: NDArray[np.floating] | None = None

    @property
    def n_samples(self) -> int:
        raise NotImplementedError

    def _compute_pairwise(self) -> NDArray[np.floating]:
        raise NotImplementedError

    def pairwise(self) -> NDArray[np.floating]:
        """Symmetric (n_samples, n_samples) distance matrix, computed once."""
        if self._pairwise is None:
            matrix = np.ascontiguousarray(self._compute_pairwise(), dtype=np.float64)
            matrix.setflags(write=False)
            self._pairwise = matrix
        return self._pairwise

    @property
    def max_distance(self) -> float:
        """Largest pairwise distance along this dimension."""
        return float(np.max(self.pairwise()))

    def between(self, targets: NDArray[np.floating]) -> NDArray[np.floating]:
        """Distances from new target locations to every sample."""
        raise InvalidSpec(
            f"{type(self).__name__} cannot measure distances to new locations"
        )


class EuclideanDistance(DistanceProvider):
    """
    Euclidean distance over a group of coordinate columns.

    Parameters
    ----------
    coordinates : array-like of shape (n_samples,) or (n_samples, n_columns)
        Coordinates of one dimension group, e.g. a 2-D position treated
        as a single dimension.
    """

    def __init__(self, coordinates: NDArray[np.floating]):
        super().__init__()
        coordinates = np.asarray(coordinates, dtype=np.float64)
        if coordinates.ndim == 1:
            coordinates = coordinates[:, np.newaxis]
        if coordinates.ndim != 2 or coordinates.shape[1] == 0:
            raise InvalidSpec(
                f"coordinates must be 1-D or 2-D, got shape {coordinates.shape}"
            )
        if not np.all(np.isfinite(coordinates)):
            raise InvalidSpec("coordinates contain NaN or infinite values")
        coordinates = coordinates.copy()
        coordinates.setflags(write=False)
        self.coordinates = coordinates

    @property
    def n_samples(self) -> int:
        return self.coordinates.shape[0]

    @property
    def n_columns(self) -> int:
        return self.coordinates.shape[1]

    def _compute_pairwise(self) -> NDArray[np.floating]:
        return cdist(self.coordinates, self.coordinates, metric="euclidean")

    def between(self, targets: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Distances from target locations to the samples.

        Parameters
        ----------
        targets : array-like of shape (n_targets, n_columns)
            Target coordinates in the same columns as the samples

        Returns
        -------
        ndarray of shape (n_targets, n_samples)
        """
        targets = np.asarray(targets, dtype=np.float64)
        if targets.ndim == 1:
            targets = targets.reshape(-1, self.n_columns)
        if targets.shape[1] != self.n_columns:
            raise InvalidSpec(
                f"targets have {targets.shape[1]} coordinate columns, "
                f"expected {self.n_columns}"
            )
        return cdist(targets, self.coordinates, metric="euclidean")

    def __repr__(self) -> str:
        return f"EuclideanDistance(n_samples={self.n_samples}, n_columns={self.n_columns})"


class PrecomputedDistance(DistanceProvider):
    """
    Caller-supplied distance matrix.

    Parameters
    ----------
    matrix : array-like of shape (n_samples, n_samples)
        Symmetric, zero-diagonal, nonnegative distances.
    atol : float, default=1e-8
        Absolute tolerance for the symmetry and diagonal checks.
    """

    def __init__(self, matrix: NDArray[np.floating], atol: float = 1e-8):
        super().__init__()
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise InvalidSpec(f"distance matrix must be square, got shape {matrix.shape}")
        if not np.all(np.isfinite(matrix)):
            raise InvalidSpec("distance matrix contains NaN or infinite values")
        if np.any(matrix < 0):
            raise InvalidSpec("distance matrix contains negative entries")
        if not np.allclose(np.diag(matrix), 0.0, atol=atol):
            raise InvalidSpec("distance matrix must have a zero diagonal")
        if not np.allclose(matrix, matrix.T, atol=atol):
            raise InvalidSpec("distance matrix must be symmetric")

        # Remove tolerance-level asymmetry so both directions agree exactly
        matrix = 0.5 * (matrix + matrix.T)
        np.fill_diagonal(matrix, 0.0)
        matrix.setflags(write=False)
        self._matrix = matrix

    @property
    def n_samples(self) -> int:
        return self._matrix.shape[0]

    def _compute_pairwise(self) -> NDArray[np.floating]:
        return self._matrix

    def __repr__(self) -> str:
        return f"PrecomputedDistance(n_samples={self.n_samples})"


def as_distance_provider(group) -> DistanceProvider:
    """Coerce a coordinate array to a EuclideanDistance."""
    if isinstance(group, DistanceProvider):
        return group
    return EuclideanDistance(group)
