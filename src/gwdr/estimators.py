"""
Sklearn-compatible geographically weighted density regression.

Wraps calibration and bandwidth optimisation behind fit/predict so the
model can be cloned, scored and used with scikit-learn tooling.
"""

import logging
from typing import Any, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.utils.validation import check_is_fitted, validate_data

from gwdr.bandwidth import BandwidthOptimizer
from gwdr.calibration import ModelCalibrator
from gwdr.data import Dataset
from gwdr.exceptions import InvalidSpec, SingularNeighborhood
from gwdr.specs import (
    GOLDEN_RATIO_FRACTION,
    KernelSpec,
    LocalPolynomialOptions,
    Solver,
    as_criterion,
    as_kernel_spec,
    as_solver,
)
from gwdr.weights import compose_weights

logger = logging.getLogger(__name__)


class GWDRRegressor(RegressorMixin, BaseEstimator):
    """
    Geographically weighted density regression.

    Local linear regression whose coefficients vary over an arbitrary
    multidimensional coordinate space. The columns of ``X`` hold both the
    coordinates and the predictors: ``coordinate_columns`` selects the
    coordinate groups and all remaining columns are predictors.

    Parameters
    ----------
    coordinate_columns : sequence of int or sequence of sequence of int, default=((0, 1),)
        Column indices of each coordinate dimension group, e.g.
        ``[[0, 1], [2]]`` for a 2-D position plus time.

    kernels : sequence of KernelSpec or dict, optional
        One kernel spec per coordinate group. Defaults to an adaptive
        bisquare kernel with the golden-ratio neighbor fraction for every
        group.

    solver : str, default="kernel.smooth"
        "kernel.smooth" or "local.poly".

    degree : int, default=1
        Polynomial degree of the "local.poly" solver.

    bandwidth : str, default="AICc"
        - "fixed": use the kernel bandwidths as given
        - "AICc" or "CV": optimise the bandwidths from the given seed

    max_iter : int, default=200
        Iteration cap of the bandwidth search.

    n_jobs : int, optional
        joblib workers for the per-sample loop.

    Attributes
    ----------
    kernel_specs_ : tuple of KernelSpec
        Kernel specs used for the final calibration

    result_ : CalibrationResult
        Final calibration

    coefficients_ : ndarray of shape (n_samples, n_predictors + 1)
        Local coefficients at the training samples

    diagnostics_ : Diagnostics
        RSS, ENP, AICc and CV of the final calibration

    optimization_ : OptimizationResult or None
        Bandwidth search outcome

    Examples
    --------
    >>> import numpy as np
    >>> from gwdr import GWDRRegressor
    >>> rng = np.random.RandomState(0)
    >>> coords = rng.uniform(0, 1, (100, 2))
    >>> x = rng.randn(100)
    >>> y = 1 + (1 + coords[:, 0]) * x + 0.1 * rng.randn(100)
    >>> model = GWDRRegressor(coordinate_columns=[[0, 1]], bandwidth="fixed")
    >>> model.fit(np.column_stack([coords, x]), y)
    >>> model.coefficients_.shape
    (100, 2)
    """

    def __init__(
        self,
        coordinate_columns: Sequence = ((0, 1),),
        kernels: Sequence[KernelSpec | Mapping[str, Any]] | None = None,
        solver: str = "kernel.smooth",
        degree: int = 1,
        bandwidth: str = "AICc",
        max_iter: int = 200,
        n_jobs: int | None = None,
    ):
        self.coordinate_columns = coordinate_columns
        self.kernels = kernels
        self.solver = solver
        self.degree = degree
        self.bandwidth = bandwidth
        self.max_iter = max_iter
        self.n_jobs = n_jobs

    def _coordinate_groups(self, n_features: int) -> list[list[int]]:
        groups = []
        for group in self.coordinate_columns:
            columns = [int(group)] if np.ndim(group) == 0 else [int(c) for c in group]
            if not columns:
                raise InvalidSpec("Coordinate groups must not be empty")
            for c in columns:
                if not 0 <= c < n_features:
                    raise InvalidSpec(
                        f"Coordinate column {c} out of range for {n_features} features"
                    )
            groups.append(columns)
        if not groups:
            raise InvalidSpec("At least one coordinate group is required")
        flat = [c for g in groups for c in g]
        if len(set(flat)) != len(flat):
            raise InvalidSpec("Coordinate columns must not repeat across groups")
        return groups

    def _split(
        self, X: NDArray[np.floating]
    ) -> tuple[list[NDArray[np.floating]], NDArray[np.floating]]:
        """Split validated X into coordinate groups and predictors."""
        coordinates = [X[:, group] for group in self.groups_]
        return coordinates, X[:, self.predictor_columns_]

    def _solver_options(self):
        if as_solver(self.solver) is Solver.LOCAL_POLY:
            return LocalPolynomialOptions(degree=self.degree)
        return None

    def fit(self, X: NDArray, y: NDArray) -> "GWDRRegressor":
        """
        Calibrate the model, optimising the bandwidths unless fixed.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Coordinate and predictor columns
        y : array-like of shape (n_samples,)
            Response

        Returns
        -------
        self
            Fitted estimator
        """
        X, y = validate_data(self, X, y, y_numeric=True, dtype=np.float64)
        y = y.astype(np.float64)

        self.groups_ = self._coordinate_groups(X.shape[1])
        used = {c for g in self.groups_ for c in g}
        self.predictor_columns_ = [c for c in range(X.shape[1]) if c not in used]

        if self.kernels is None:
            kernels = [KernelSpec(GOLDEN_RATIO_FRACTION) for _ in self.groups_]
        else:
            kernels = [as_kernel_spec(k) for k in self.kernels]

        coordinates, predictors = self._split(X)
        dataset = Dataset(y, predictors, coordinates)
        solver = as_solver(self.solver)
        options = self._solver_options()

        if str(self.bandwidth).lower() == "fixed":
            self.optimization_ = None
        else:
            optimizer = BandwidthOptimizer(
                criterion=as_criterion(self.bandwidth),
                solver=solver,
                options=options,
                max_iter=self.max_iter,
                n_jobs=self.n_jobs,
            )
            self.optimization_ = optimizer.optimize(dataset, kernels)
            kernels = list(self.optimization_.kernel_specs)

        calibrator = ModelCalibrator(solver=solver, options=options, n_jobs=self.n_jobs)
        self.result_ = calibrator.calibrate(dataset, kernels)
        self.kernel_specs_ = self.result_.kernel_specs
        self.coefficients_ = self.result_.coefficients
        self.diagnostics_ = self.result_.diagnostics
        self.dataset_ = dataset
        self.estimator_ = calibrator.estimator
        return self

    def local_coefficients(self, X: NDArray) -> NDArray[np.floating]:
        """
        Estimate the local coefficients at new locations.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Same column layout as in ``fit``; only coordinate columns are
            used, predictors may hold any value

        Returns
        -------
        ndarray of shape (n_samples, n_predictors + 1)
            NaN rows where the neighborhood is singular
        """
        check_is_fitted(self)
        X = validate_data(self, X, dtype=np.float64, reset=False)
        coordinates, predictors = self._split(X)
        design = np.column_stack([np.ones(len(X)), predictors])

        distances = [
            dim.between(target) for dim, target in zip(self.dataset_.dimensions, coordinates)
        ]
        weights = compose_weights(distances, self.kernel_specs_)

        coefficients = np.full((len(X), design.shape[1]), np.nan)
        for i in range(len(X)):
            location = [target[i] for target in coordinates]
            try:
                estimate = self.estimator_.estimate_at(
                    self.dataset_, design[i], location, weights[i]
                )
            except SingularNeighborhood as exc:
                logger.debug("Singular neighborhood at prediction point %d: %s", i, exc)
                continue
            coefficients[i] = estimate.coefficients
        return coefficients

    def predict(self, X: NDArray) -> NDArray[np.floating]:
        """
        Predict at new locations from locally estimated coefficients.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Coordinate and predictor columns

        Returns
        -------
        y_pred : ndarray of shape (n_samples,)
            NaN where the neighborhood is singular
        """
        coefficients = self.local_coefficients(X)
        X = np.asarray(X, dtype=np.float64)
        design = np.column_stack([np.ones(len(X)), X[:, self.predictor_columns_]])
        return np.sum(design * coefficients, axis=1)
