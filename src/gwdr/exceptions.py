"""
Exceptions and warnings raised by the calibration engine.

Malformed inputs (`InvalidSpec`) are raised before any numerical
work starts. Per-point estimation failures (`SingularNeighborhood`) are
caught by the calibrator and recorded, never propagated to the caller.
"""

import numpy as np
from sklearn.exceptions import ConvergenceWarning


class GWDRError(Exception):
    """Base class for all errors raised by gwdr."""


class InvalidSpec(GWDRError, ValueError):
    """Malformed dataset, kernel specification, solver options or distance matrix."""


class SingularNeighborhood(GWDRError, np.linalg.LinAlgError):
    """
    The weighted design at a target point is not invertible.

    Attributes
    ----------
    index : int or None
        Target sample index, when known.
    rank : int or None
        Numerical rank of the weighted design.
    n_params : int or None
        Number of columns of the weighted design.
    """

    def __init__(
        self,
        message: str,
        index: int | None = None,
        rank: int | None = None,
        n_params: int | None = None,
    ):
        super().__init__(message)
        self.index = index
        self.rank = rank
        self.n_params = n_params


class OptimizationCancelled(GWDRError):
    """Raised inside the simplex search to unwind on cancellation or deadline."""


class OptimizerDivergence(ConvergenceWarning):
    """Bandwidth search exhausted its iteration budget without converging."""
