"""Tests for goodness of fit diagnostics."""

import numpy as np
import pandas as pd
import pytest

from gwdr.calibration import ModelCalibrator, calibrate
from gwdr.data import Dataset
from gwdr.diagnostics import (
    GoodnessOfFit,
    ResidualDiagnosticsResult,
    compare_coefficients,
    local_r_squared,
    residual_diagnostics,
)
from gwdr.exceptions import InvalidSpec
from gwdr.specs import KernelSpec


@pytest.fixture
def fitted_result(spatial_data):
    dataset, _ = spatial_data
    return calibrate(dataset, [KernelSpec(0.3, "gaussian")])


@pytest.fixture
def partly_failed_result(random_state):
    """One sample has no neighbors besides itself."""
    u = np.append(random_state.uniform(0, 1, 20), 10.0)
    X = random_state.randn(21, 1)
    y = 1.0 + X[:, 0] + 0.1 * random_state.randn(21)
    return calibrate(Dataset(y, X, [u]), [KernelSpec(2.0, "boxcar", adaptive=False)])


class TestResidualDiagnostics:
    """Tests for residual diagnostics."""

    def test_returns_result(self, fitted_result):
        result = residual_diagnostics(fitted_result)
        assert isinstance(result, ResidualDiagnosticsResult)
        assert result.residuals.shape == (200,)

    def test_standardized_residuals(self, fitted_result):
        result = residual_diagnostics(fitted_result)
        std = np.std(result.standardized_residuals, ddof=1)
        np.testing.assert_almost_equal(std, 1.0)

    def test_normality_test(self, fitted_result):
        result = residual_diagnostics(fitted_result)
        assert 0 <= result.normality_p_value <= 1
        assert result.is_normal in (True, False)
        assert np.isfinite(result.skewness)
        assert np.isfinite(result.kurtosis)

    def test_alpha_affects_conclusion_only(self, fitted_result):
        strict = residual_diagnostics(fitted_result, alpha=0.01)
        loose = residual_diagnostics(fitted_result, alpha=0.99)
        assert strict.normality_p_value == loose.normality_p_value

    def test_failed_samples_excluded(self, partly_failed_result):
        result = residual_diagnostics(partly_failed_result)
        assert result.residuals.shape == (20,)
        assert np.all(np.isfinite(result.residuals))

    def test_result_str(self, fitted_result):
        text = str(residual_diagnostics(fitted_result))
        assert "Mean" in text
        assert "Skewness" in text


class TestLocalRSquared:
    """Tests for geographically weighted R²."""

    def test_shape_and_range(self, fitted_result):
        local = local_r_squared(fitted_result)
        assert local.shape == (200,)
        assert np.all(np.isfinite(local))
        assert np.all(local <= 1.0)

    def test_good_fit_is_high(self, fitted_result):
        assert np.median(local_r_squared(fitted_result)) > 0.5

    def test_uses_calibration_neighbor_minimum(self, spatial_data):
        """Weights are rebuilt with the k_min the model was calibrated with."""
        dataset, _ = spatial_data
        result = ModelCalibrator(k_min=5).calibrate(dataset, [KernelSpec(1, "gaussian")])
        assert result.k_min == 5
        # a lone neighbor would leave no response variation
        local = local_r_squared(result)
        assert not np.all(result.failed)
        assert np.all(np.isfinite(local[~result.failed]))

    def test_failed_sample_is_nan(self, partly_failed_result):
        local = local_r_squared(partly_failed_result)
        assert np.isnan(local[20])
        assert np.all(np.isfinite(local[:20]))


class TestCompareCoefficients:
    """Tests for coefficient table comparison."""

    def test_identical_tables(self, fitted_result):
        frame = fitted_result.coefficient_frame()
        rmse = compare_coefficients(frame, frame)
        np.testing.assert_array_equal(rmse.to_numpy(), 0.0)
        assert list(rmse.index) == fitted_result.coefficient_names

    def test_constant_offset(self):
        reference = np.zeros((5, 2))
        rmse = compare_coefficients(reference + 0.1, reference)
        np.testing.assert_allclose(rmse.to_numpy(), [0.1, 0.1])

    def test_aligns_by_column_name(self):
        estimates = pd.DataFrame({"Intercept": [1.0, 1.0], "x1": [2.0, 2.0]})
        reference = pd.DataFrame({"x1": [2.0, 2.0], "Intercept": [0.0, 0.0]})
        rmse = compare_coefficients(estimates, reference)
        assert rmse["Intercept"] == pytest.approx(1.0)
        assert rmse["x1"] == pytest.approx(0.0)

    def test_missing_rows_ignored(self):
        estimates = np.array([[1.0], [np.nan], [3.0]])
        reference = np.array([[1.0], [5.0], [2.0]])
        rmse = compare_coefficients(estimates, reference)
        assert rmse.iloc[0] == pytest.approx(np.sqrt(0.5))

    def test_shape_mismatch(self):
        with pytest.raises(InvalidSpec):
            compare_coefficients(np.zeros((5, 2)), np.zeros((4, 2)))

    def test_missing_reference_column(self):
        estimates = pd.DataFrame({"Intercept": [1.0], "x1": [2.0]})
        with pytest.raises(InvalidSpec, match="lacks columns"):
            compare_coefficients(estimates, pd.DataFrame({"Intercept": [1.0]}))


class TestGoodnessOfFit:
    """Tests for GoodnessOfFit class."""

    def test_basic_metrics(self, fitted_result):
        gof = GoodnessOfFit(fitted_result)
        for name in ("r_squared", "adjusted_r_squared", "rmse", "mae", "aic", "aicc", "bic"):
            assert np.isfinite(getattr(gof, name))

    def test_r_squared_range(self, fitted_result):
        gof = GoodnessOfFit(fitted_result)
        assert 0.5 < gof.r_squared <= 1.0
        assert gof.adjusted_r_squared <= gof.r_squared

    def test_consistent_with_calibration(self, fitted_result):
        gof = GoodnessOfFit(fitted_result)
        diagnostics = fitted_result.diagnostics
        assert gof.enp == pytest.approx(diagnostics.enp)
        assert gof.aicc == pytest.approx(diagnostics.aicc)
        assert gof.rmse == pytest.approx(np.sqrt(diagnostics.rss / 200))

    def test_information_criteria_order(self, fitted_result):
        """With n = 200 the BIC penalty exceeds the AIC penalty."""
        gof = GoodnessOfFit(fitted_result)
        assert gof.bic > gof.aic

    def test_residual_diagnostics(self, fitted_result):
        gof = GoodnessOfFit(fitted_result)
        assert isinstance(gof.residual_diagnostics, ResidualDiagnosticsResult)

    def test_partly_failed(self, partly_failed_result):
        gof = GoodnessOfFit(partly_failed_result)
        assert np.isfinite(gof.r_squared)
        assert "1 failed" in gof.summary()

    def test_summary(self, fitted_result):
        gof = GoodnessOfFit(fitted_result)
        summary = gof.summary()
        assert isinstance(summary, str)
        assert "R²" in summary
        assert "RMSE" in summary
        assert "AICc" in summary
        assert "gaussian(adaptive" in summary

    def test_str(self, fitted_result):
        gof = GoodnessOfFit(fitted_result)
        assert str(gof) == gof.summary()

    def test_bandwidth_comparison(self, spatial_data):
        """Different bandwidths give different information criteria."""
        dataset, _ = spatial_data
        narrow = GoodnessOfFit(calibrate(dataset, [KernelSpec(0.1, "gaussian")]))
        wide = GoodnessOfFit(calibrate(dataset, [KernelSpec(0.9, "gaussian")]))
        assert narrow.aicc != wide.aicc
        assert narrow.enp > wide.enp
