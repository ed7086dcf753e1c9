"""
Model calibration: one local regression per sample plus global diagnostics.

For every target i the composite weights are computed, the selected local
estimator is run, and the coefficients, fitted value, hat value and
residual are collected. Targets are independent, so the loop is split
into chunks that run through joblib and are merged back by index.
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from numpy.typing import NDArray

from gwdr.data import Dataset
from gwdr.exceptions import InvalidSpec, SingularNeighborhood
from gwdr.solvers import LocalEstimator, resolve_solver
from gwdr.specs import KernelSpec, Solver, SolverOptions
from gwdr.weights import WeightComposer, check_kernel_specs

logger = logging.getLogger(__name__)


def corrected_aic(rss: float, enp: float, n_samples: int) -> float:
    """
    Bias-corrected Akaike Information Criterion of a local regression.

    AICc = n ln(RSS/n) + n ln(2 pi) + n (n + ENP) / (n - 2 - ENP)

    Args:
        rss: Residual sum of squares.
        enp: Effective number of parameters (trace of the hat matrix).
        n_samples: Number of samples.

    Returns:
        AICc; +inf when n - 2 - ENP <= 0, -inf for an exact fit.
    """
    n = float(n_samples)
    denominator = n - 2.0 - enp
    if denominator <= 0:
        return float("inf")
    if rss <= 0:
        return float("-inf")
    return float(
        n * np.log(rss / n) + n * np.log(2 * np.pi) + n * (n + enp) / denominator
    )


@dataclass(frozen=True)
class Diagnostics:
    """
    Summary of one calibration run.

    Attributes
    ----------
    rss : float
        Residual sum of squares over successfully estimated samples.
    enp : float
        Effective number of parameters, the sum of hat values.
    aicc : float
        Corrected AIC.
    cv : float
        Leave-one-out cross-validation score, sum of squared leave-one-out
        errors (NaN when not computed).
    n_samples : int
        Samples entering the diagnostics.
    n_failed : int
        Samples whose local design was singular.
    n_cv_failed : int
        Samples whose leave-one-out design was singular.
    """

    rss: float
    enp: float
    aicc: float
    cv: float
    n_samples: int
    n_failed: int = 0
    n_cv_failed: int = 0

    def as_dict(self) -> dict[str, float]:
        return {"RSS": self.rss, "ENP": self.enp, "AICc": self.aicc, "CV": self.cv}

    def __str__(self) -> str:
        return (
            f"Diagnostics\n"
            f"  RSS:  {self.rss:.6f}\n"
            f"  ENP:  {self.enp:.4f}\n"
            f"  AICc: {self.aicc:.4f}\n"
            f"  CV:   {self.cv:.6f}\n"
            f"  Failed points: {self.n_failed}"
        )


@dataclass(frozen=True, eq=False)
class CalibrationResult:
    """
    Output of a calibration.

    Attributes
    ----------
    coefficients : ndarray of shape (n_samples, n_predictors + 1)
        Local coefficients, NaN rows where the neighborhood was singular.
    fitted, residuals, hat_values : ndarray of shape (n_samples,)
        Per-sample fitted value, residual and leverage.
    failed : ndarray of bool, shape (n_samples,)
        SingularNeighborhood flag.
    loo_fitted : ndarray of shape (n_samples,)
        Leave-one-out predictions (NaN when not computed or singular).
    degrees : ndarray of int, shape (n_samples,)
        Polynomial degree used at each sample.
    diagnostics : Diagnostics
    kernel_specs : tuple of KernelSpec
    solver : Solver
    coefficient_names : list of str
    k_min : int
        Lower clamp of the adaptive neighbor counts used for the weights.
    """

    coefficients: NDArray[np.floating]
    fitted: NDArray[np.floating]
    residuals: NDArray[np.floating]
    hat_values: NDArray[np.floating]
    failed: NDArray[np.bool_]
    loo_fitted: NDArray[np.floating]
    degrees: NDArray[np.intp]
    diagnostics: Diagnostics
    kernel_specs: tuple[KernelSpec, ...]
    solver: Solver
    coefficient_names: list[str]
    dataset: Dataset = field(repr=False, compare=False)
    k_min: int = 1

    def to_frame(self) -> pd.DataFrame:
        """
        One row per sample with the coefficients and per-sample statistics.

        Columns: Intercept, predictors..., fitted, residual, hatValue, failed.
        """
        frame = pd.DataFrame(self.coefficients, columns=self.coefficient_names)
        frame["fitted"] = self.fitted
        frame["residual"] = self.residuals
        frame["hatValue"] = self.hat_values
        frame["failed"] = self.failed
        return frame

    def coefficient_frame(self) -> pd.DataFrame:
        """Coefficient table only."""
        return pd.DataFrame(self.coefficients, columns=self.coefficient_names)


def _calibrate_chunk(
    estimator: LocalEstimator,
    dataset: Dataset,
    composer: WeightComposer,
    indices: NDArray[np.intp],
    compute_cv: bool,
) -> tuple[NDArray, ...]:
    """Estimate a block of targets; failures become NaN rows."""
    n_coef = dataset.design.shape[1]
    coefficients = np.full((len(indices), n_coef), np.nan)
    fitted = np.full(len(indices), np.nan)
    hat = np.full(len(indices), np.nan)
    loo_fitted = np.full(len(indices), np.nan)
    degrees = np.zeros(len(indices), dtype=np.intp)

    for row, i in enumerate(indices):
        weights = composer.row(i)
        try:
            estimate = estimator.estimate(dataset, i, weights)
        except SingularNeighborhood as exc:
            logger.debug("Singular neighborhood at sample %d: %s", i, exc)
        else:
            coefficients[row] = estimate.coefficients
            fitted[row] = estimate.fitted
            hat[row] = estimate.hat
            degrees[row] = estimate.degree

        if compute_cv:
            weights[i] = 0.0
            try:
                loo_fitted[row] = estimator.estimate(dataset, i, weights).fitted
            except SingularNeighborhood as exc:
                logger.debug("Singular leave-one-out neighborhood at sample %d: %s", i, exc)

    return coefficients, fitted, hat, loo_fitted, degrees


class ModelCalibrator:
    """
    Calibrate local coefficients at every sample.

    The calibrator holds configuration only; ``calibrate`` is a pure
    function of its arguments.

    Parameters
    ----------
    solver : Solver or str, default="kernel.smooth"
        Local estimator.
    options : KernelSmoothOptions or LocalPolynomialOptions, optional
        Solver options; defaults of the solver when omitted.
    n_jobs : int, optional
        joblib workers for the per-target loop; None runs sequentially.
    compute_cv : bool, default=True
        Also run the leave-one-out pass needed for the CV diagnostic.
    k_min : int, default=1
        Lower clamp of adaptive neighbor counts.

    Example:
        >>> calibrator = ModelCalibrator(solver="local.poly")
        >>> result = calibrator.calibrate(dataset, [KernelSpec(0.618, "gaussian")])
        >>> result.diagnostics.aicc
    """

    def __init__(
        self,
        solver: Solver | str = Solver.KERNEL_SMOOTH,
        options: SolverOptions | None = None,
        n_jobs: int | None = None,
        compute_cv: bool = True,
        k_min: int = 1,
    ):
        self.estimator = resolve_solver(solver, options)
        self.solver = self.estimator.solver
        self.n_jobs = n_jobs
        self.compute_cv = compute_cv
        if int(k_min) < 1:
            raise InvalidSpec(f"k_min must be at least 1, got {k_min}")
        self.k_min = int(k_min)

    def calibrate(
        self,
        dataset: Dataset,
        kernel_specs: Sequence[KernelSpec],
        distances: Sequence[NDArray[np.floating]] | None = None,
    ) -> CalibrationResult:
        """
        Calibrate the model for one set of kernel specs.

        Parameters
        ----------
        dataset : Dataset
            Calibration data
        kernel_specs : sequence of KernelSpec
            One spec per coordinate group
        distances : sequence of ndarray, optional
            Pairwise distance matrices of the dimensions, when already
            available; computed from the dataset otherwise

        Returns
        -------
        CalibrationResult

        Raises
        ------
        InvalidSpec
            If the kernel specs do not fit the dataset
        """
        specs = check_kernel_specs(dataset, kernel_specs)
        if distances is None:
            distances = dataset.distance_matrices()
        elif len(distances) != dataset.n_dimensions:
            raise InvalidSpec(
                f"Got {len(distances)} distance matrices for {dataset.n_dimensions} dimensions"
            )

        composer = WeightComposer(distances, specs, k_min=self.k_min)
        n_samples = dataset.n_samples
        chunks = self._chunks(n_samples)

        if self.n_jobs is None or self.n_jobs == 1 or len(chunks) == 1:
            parts = [
                _calibrate_chunk(self.estimator, dataset, composer, idx, self.compute_cv)
                for idx in chunks
            ]
        else:
            parts = Parallel(n_jobs=self.n_jobs)(
                delayed(_calibrate_chunk)(
                    self.estimator, dataset, composer, idx, self.compute_cv
                )
                for idx in chunks
            )

        coefficients, fitted, hat, loo_fitted, degrees = (
            np.concatenate(arrays) for arrays in zip(*parts)
        )
        failed = np.isnan(fitted)
        residuals = dataset.y - fitted

        diagnostics = self._diagnostics(dataset.y, residuals, hat, loo_fitted, failed)
        if diagnostics.n_failed:
            logger.warning(
                "%d of %d samples have singular neighborhoods and were left as NaN",
                diagnostics.n_failed,
                n_samples,
            )
        logger.info(
            "Calibrated %d samples (%s, %s): RSS=%.6g ENP=%.4g AICc=%.6g CV=%.6g",
            n_samples,
            self.solver.value,
            ", ".join(str(s) for s in specs),
            diagnostics.rss,
            diagnostics.enp,
            diagnostics.aicc,
            diagnostics.cv,
        )

        for array in (coefficients, fitted, residuals, hat, failed, loo_fitted, degrees):
            array.setflags(write=False)

        return CalibrationResult(
            coefficients=coefficients,
            fitted=fitted,
            residuals=residuals,
            hat_values=hat,
            failed=failed,
            loo_fitted=loo_fitted,
            degrees=degrees,
            diagnostics=diagnostics,
            kernel_specs=specs,
            solver=self.solver,
            coefficient_names=dataset.coefficient_names,
            k_min=self.k_min,
            dataset=dataset,
        )

    def _chunks(self, n_samples: int) -> list[NDArray[np.intp]]:
        indices = np.arange(n_samples)
        if self.n_jobs is None or self.n_jobs == 1:
            return [indices]
        n_chunks = min(n_samples, 4 * (self.n_jobs if self.n_jobs > 0 else 8))
        return [c for c in np.array_split(indices, n_chunks) if len(c)]

    def _diagnostics(
        self,
        y: NDArray[np.floating],
        residuals: NDArray[np.floating],
        hat: NDArray[np.floating],
        loo_fitted: NDArray[np.floating],
        failed: NDArray[np.bool_],
    ) -> Diagnostics:
        valid = ~failed
        n_valid = int(np.count_nonzero(valid))
        n_failed = int(failed.size - n_valid)

        if self.compute_cv:
            loo_valid = ~np.isnan(loo_fitted)
            n_cv_failed = int(loo_valid.size - np.count_nonzero(loo_valid))
            cv = float(np.sum((y[loo_valid] - loo_fitted[loo_valid]) ** 2))
            if n_cv_failed == loo_valid.size:
                cv = float("nan")
        else:
            n_cv_failed = 0
            cv = float("nan")

        if n_valid == 0:
            nan = float("nan")
            return Diagnostics(nan, nan, nan, cv, 0, n_failed, n_cv_failed)

        rss = float(np.sum(residuals[valid] ** 2))
        enp = float(np.sum(hat[valid]))
        return Diagnostics(
            rss=rss,
            enp=enp,
            aicc=corrected_aic(rss, enp, n_valid),
            cv=cv,
            n_samples=n_valid,
            n_failed=n_failed,
            n_cv_failed=n_cv_failed,
        )


def calibrate(
    dataset: Dataset,
    kernel_specs: Sequence[KernelSpec],
    solver: Solver | str = Solver.KERNEL_SMOOTH,
    options: SolverOptions | None = None,
    **kwargs,
) -> CalibrationResult:
    """
    Calibrate a model in one call.

    Keyword arguments are passed to :class:`ModelCalibrator`.
    """
    return ModelCalibrator(solver=solver, options=options, **kwargs).calibrate(
        dataset, kernel_specs
    )
