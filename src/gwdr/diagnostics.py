"""
Goodness of fit diagnostics for calibrated models.

Includes global fit statistics, residual analysis, local R² and
comparison of coefficient tables against a reference (ground truth or
a baseline model's estimates).
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats

from gwdr.calibration import CalibrationResult, corrected_aic
from gwdr.exceptions import InvalidSpec
from gwdr.weights import WeightComposer


@dataclass
class ResidualDiagnosticsResult:
    """Result of residual diagnostics."""

    residuals: NDArray[np.floating]
    standardized_residuals: NDArray[np.floating]
    mean: float
    std: float
    skewness: float
    kurtosis: float
    normality_statistic: float
    normality_p_value: float
    is_normal: bool

    def __str__(self) -> str:
        return (
            f"Residual Diagnostics\n"
            f"  Mean: {self.mean:.6f}\n"
            f"  Std: {self.std:.6f}\n"
            f"  Skewness: {self.skewness:.4f}\n"
            f"  Kurtosis: {self.kurtosis:.4f}\n"
            f"  Normality test p-value: {self.normality_p_value:.4f}\n"
            f"  Normal residuals: {self.is_normal}"
        )


def residual_diagnostics(
    result: CalibrationResult,
    alpha: float = 0.05,
) -> ResidualDiagnosticsResult:
    """
    Compute residual diagnostics for a calibration.

    Samples with singular neighborhoods are excluded.

    Parameters
    ----------
    result : CalibrationResult
        Calibrated model
    alpha : float, default=0.05
        Significance level for normality test

    Returns
    -------
    ResidualDiagnosticsResult
        Comprehensive residual diagnostics
    """
    residuals = np.asarray(result.residuals)[~result.failed]
    if residuals.size < 3:
        raise InvalidSpec(
            f"Residual diagnostics need at least 3 estimated samples, got {residuals.size}"
        )

    std = np.std(residuals, ddof=1)
    standardized = residuals / (std if std > 0 else 1.0)

    # Shapiro-Wilk for n < 5000, else D'Agostino-Pearson
    if residuals.size < 5000:
        norm_stat, norm_p = stats.shapiro(residuals)
    elif std > 0:
        norm_stat, norm_p = stats.normaltest(residuals)
    else:
        norm_stat, norm_p = 0.0, 1.0

    return ResidualDiagnosticsResult(
        residuals=residuals,
        standardized_residuals=standardized,
        mean=float(np.mean(residuals)),
        std=float(std),
        skewness=float(stats.skew(residuals)) if std > 0 else 0.0,
        kurtosis=float(stats.kurtosis(residuals)) if std > 0 else 0.0,
        normality_statistic=float(norm_stat),
        normality_p_value=float(norm_p),
        is_normal=bool(norm_p >= alpha),
    )


def local_r_squared(result: CalibrationResult) -> NDArray[np.floating]:
    """
    Geographically weighted R² at every sample.

    R²_i = 1 - sum_j w_ij e_j² / sum_j w_ij (y_j - ybar_i)²

    where ybar_i is the weighted mean response around sample i and e_j
    are the calibration residuals.

    Args:
        result: Calibrated model.

    Returns:
        Array of shape (n_samples,); NaN where the sample failed or its
        neighborhood has no response variation.
    """
    dataset = result.dataset
    composer = WeightComposer(
        dataset.distance_matrices(), result.kernel_specs, k_min=result.k_min
    )
    valid = ~result.failed
    y = dataset.y
    residuals_sq = np.where(valid, result.residuals, 0.0) ** 2

    local = np.full(dataset.n_samples, np.nan)
    for i in np.flatnonzero(valid):
        w = composer.row(i) * valid
        total = np.sum(w)
        if total <= 0:
            continue
        y_bar = np.sum(w * y) / total
        tss = np.sum(w * (y - y_bar) ** 2)
        if tss > 0:
            local[i] = 1.0 - np.sum(w * residuals_sq) / tss
    return local


def compare_coefficients(
    estimates: pd.DataFrame | NDArray[np.floating],
    reference: pd.DataFrame | NDArray[np.floating],
) -> pd.Series:
    """
    Root mean squared difference between two coefficient tables.

    Used to compare recovered coefficients with a ground truth or with a
    baseline model's estimates in the same tabular shape.

    Parameters
    ----------
    estimates : DataFrame or ndarray of shape (n_samples, n_coefficients)
        Coefficient table, e.g. ``CalibrationResult.coefficient_frame()``
    reference : DataFrame or ndarray of shape (n_samples, n_coefficients)
        Reference table; data frames are aligned by column name

    Returns
    -------
    Series
        RMSE per coefficient column, computed over rows where both tables
        are finite
    """
    if isinstance(estimates, pd.DataFrame) and isinstance(reference, pd.DataFrame):
        missing = set(estimates.columns) - set(reference.columns)
        if missing:
            raise InvalidSpec(f"Reference table lacks columns {sorted(missing)}")
        reference = reference[list(estimates.columns)]
    estimates = pd.DataFrame(estimates)
    reference = pd.DataFrame(np.asarray(reference, dtype=np.float64), columns=estimates.columns)
    if estimates.shape != reference.shape:
        raise InvalidSpec(
            f"Coefficient tables differ in shape: {estimates.shape} vs {reference.shape}"
        )

    est = estimates.to_numpy(dtype=np.float64)
    ref = reference.to_numpy(dtype=np.float64)
    both = np.isfinite(est) & np.isfinite(ref)
    squared = np.where(both, (est - ref) ** 2, 0.0)
    counts = both.sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        rmse = np.sqrt(squared.sum(axis=0) / counts)
    return pd.Series(rmse, index=estimates.columns, name="rmse")


class GoodnessOfFit:
    """
    Global goodness of fit of a calibration.

    Parameters
    ----------
    result : CalibrationResult
        Calibrated model

    Attributes
    ----------
    r_squared : float
        Coefficient of determination
    adjusted_r_squared : float
        R² adjusted with the effective number of parameters
    rmse : float
        Root mean squared error
    mae : float
        Mean absolute error
    aic : float
        Akaike Information Criterion
    aicc : float
        Corrected AIC
    bic : float
        Bayesian Information Criterion
    enp : float
        Effective number of parameters (trace of hat matrix)
    residual_diagnostics : ResidualDiagnosticsResult
        Detailed residual analysis
    """

    def __init__(self, result: CalibrationResult):
        self.result = result
        self._compute_metrics()

    def _compute_metrics(self) -> None:
        valid = ~self.result.failed
        y = self.result.dataset.y[valid]
        residuals = np.asarray(self.result.residuals)[valid]
        n = len(y)

        rss = float(np.sum(residuals**2))
        tss = float(np.sum((y - np.mean(y)) ** 2)) if n else 0.0
        self.enp = float(self.result.diagnostics.enp)

        self.r_squared = 1 - rss / tss if tss > 0 else 0.0
        df_residual = n - self.enp
        if df_residual > 0 and n > 1 and tss > 0:
            self.adjusted_r_squared = 1 - (rss / df_residual) / (tss / (n - 1))
        else:
            self.adjusted_r_squared = self.r_squared
        self.rmse = float(np.sqrt(rss / n)) if n else np.nan
        self.mae = float(np.mean(np.abs(residuals))) if n else np.nan

        if n and rss > 0:
            base = n * np.log(rss / n) + n * np.log(2 * np.pi) + n
            self.aic = float(base + 2 * self.enp)
            self.bic = float(base + np.log(n) * self.enp)
        else:
            self.aic = np.nan
            self.bic = np.nan
        self.aicc = corrected_aic(rss, self.enp, n) if n else np.nan

        self.residual_diagnostics = residual_diagnostics(self.result)

    def summary(self) -> str:
        """Generate summary report."""
        diagnostics = self.result.diagnostics
        lines = [
            "=" * 60,
            "GWDR Goodness of Fit Summary",
            "=" * 60,
            f"Solver:             {self.result.solver.value}",
            f"Kernels:            {', '.join(str(s) for s in self.result.kernel_specs)}",
            f"Samples:            {diagnostics.n_samples} ({diagnostics.n_failed} failed)",
            "",
            f"R²:                 {self.r_squared:.6f}",
            f"Adjusted R²:        {self.adjusted_r_squared:.6f}",
            f"RMSE:               {self.rmse:.6f}",
            f"MAE:                {self.mae:.6f}",
            f"ENP:                {self.enp:.2f}",
            f"RSS:                {diagnostics.rss:.6f}",
            f"AIC:                {self.aic:.2f}",
            f"AICc:               {self.aicc:.2f}",
            f"BIC:                {self.bic:.2f}",
            f"CV:                 {diagnostics.cv:.6f}",
            "",
            "-" * 60,
            "Residual Diagnostics",
            "-" * 60,
            f"Mean:               {self.residual_diagnostics.mean:.6f}",
            f"Std:                {self.residual_diagnostics.std:.6f}",
            f"Skewness:           {self.residual_diagnostics.skewness:.4f}",
            f"Kurtosis:           {self.residual_diagnostics.kurtosis:.4f}",
            f"Normality p-value:  {self.residual_diagnostics.normality_p_value:.4f}",
            f"Normal residuals:   {self.residual_diagnostics.is_normal}",
            "=" * 60,
        ]
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()
