"""
GWDR: Geographically Weighted Density Regression

Local regression whose coefficients vary over an arbitrary
multidimensional coordinate space (spatial, spatio-temporal,
origin-destination flows), generalising geographically weighted
regression with product kernels.

Features:
- Per-dimension kernels (gaussian, bisquare, boxcar, exponential, tricube)
  with fixed or adaptive bandwidths, composed by product
- Euclidean coordinate groups or precomputed distance matrices
- Kernel smoothing ("kernel.smooth") and local polynomial ("local.poly")
  local estimators with boundary bias correction
- RSS, ENP, AICc and leave-one-out CV diagnostics
- Nelder-Mead bandwidth optimisation with cancellation and deadlines
- Parallel per-sample calibration through joblib
- Sklearn-compatible estimator
"""

import logging

from gwdr.bandwidth import (
    BandwidthOptimizer,
    CancellationToken,
    OptimizationResult,
    get_criterion,
    optimize_bandwidths,
)
from gwdr.calibration import (
    CalibrationResult,
    Diagnostics,
    ModelCalibrator,
    calibrate,
    corrected_aic,
)
from gwdr.data import Dataset
from gwdr.diagnostics import (
    GoodnessOfFit,
    compare_coefficients,
    local_r_squared,
    residual_diagnostics,
)
from gwdr.distances import DistanceProvider, EuclideanDistance, PrecomputedDistance
from gwdr.estimators import GWDRRegressor
from gwdr.exceptions import (
    GWDRError,
    InvalidSpec,
    OptimizerDivergence,
    SingularNeighborhood,
)
from gwdr.kernels import (
    bisquare_kernel,
    boxcar_kernel,
    exponential_kernel,
    gaussian_kernel,
    tricube_kernel,
)
from gwdr.solvers import KernelSmoothEstimator, LocalEstimate, LocalPolynomialEstimator
from gwdr.specs import (
    BandwidthUnit,
    Criterion,
    KernelName,
    KernelSmoothOptions,
    KernelSpec,
    LocalPolynomialOptions,
    Solver,
)
from gwdr.weights import WeightComposer

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Data and specs
    "Dataset",
    "KernelSpec",
    "KernelName",
    "BandwidthUnit",
    "Solver",
    "Criterion",
    "KernelSmoothOptions",
    "LocalPolynomialOptions",
    # Kernels
    "gaussian_kernel",
    "bisquare_kernel",
    "boxcar_kernel",
    "exponential_kernel",
    "tricube_kernel",
    # Distances and weights
    "DistanceProvider",
    "EuclideanDistance",
    "PrecomputedDistance",
    "WeightComposer",
    # Estimation
    "KernelSmoothEstimator",
    "LocalPolynomialEstimator",
    "LocalEstimate",
    "ModelCalibrator",
    "CalibrationResult",
    "Diagnostics",
    "calibrate",
    "corrected_aic",
    # Bandwidth
    "BandwidthOptimizer",
    "CancellationToken",
    "OptimizationResult",
    "get_criterion",
    "optimize_bandwidths",
    # Estimator
    "GWDRRegressor",
    # Diagnostics
    "GoodnessOfFit",
    "residual_diagnostics",
    "local_r_squared",
    "compare_coefficients",
    # Errors
    "GWDRError",
    "InvalidSpec",
    "SingularNeighborhood",
    "OptimizerDivergence",
]
