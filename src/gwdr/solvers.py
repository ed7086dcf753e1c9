"""
Local estimators producing coefficients at one target point.

Two solvers are available:
- KernelSmoothEstimator ("kernel.smooth"): weighted least squares assuming
  the coefficients are locally constant.
- LocalPolynomialEstimator ("local.poly"): augments the design with
  polynomial terms in the coordinate offsets so the coefficients may
  trend locally, which reduces boundary bias.

Both solve the weighted normal equations through a thin SVD of the
column-equilibrated weighted design instead of forming (X'WX)^-1.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from gwdr.data import Dataset
from gwdr.exceptions import InvalidSpec, SingularNeighborhood
from gwdr.specs import (
    KernelSmoothOptions,
    LocalPolynomialOptions,
    Solver,
    SolverOptions,
    as_solver,
)


@dataclass(frozen=True)
class LocalEstimate:
    """
    Estimate at one target point.

    Attributes
    ----------
    coefficients : ndarray of shape (n_predictors + 1,)
        Local intercept and slopes.
    fitted : float
        x0' beta at the target.
    hat : float
        Diagonal entry of the influence matrix for the target; 0 for
        out-of-sample targets and leave-one-out fits.
    degree : int
        Polynomial degree actually used (0 for kernel.smooth).
    """

    coefficients: NDArray[np.floating]
    fitted: float
    hat: float
    degree: int = 0


@dataclass(frozen=True)
class _WeightedFit:
    beta: NDArray[np.floating]
    Vt: NDArray[np.floating]
    s: NDArray[np.floating]
    scale: NDArray[np.floating]

    def quadratic_form(self, x0: NDArray[np.floating]) -> float:
        """x0' (Z'WZ)^-1 x0 from the SVD factors."""
        v = self.Vt @ (x0 / self.scale)
        return float(np.sum((v / self.s) ** 2))


def weighted_least_squares(
    design: NDArray[np.floating],
    y: NDArray[np.floating],
    weights: NDArray[np.floating],
    rcond: float = 1e-10,
) -> _WeightedFit:
    """
    Solve min_beta sum_j w_j (y_j - z_j' beta)^2.

    Only rows with positive weight take part. Columns are equilibrated to
    unit norm before the SVD so the rank test is insensitive to units.

    Args:
        design: Design matrix of shape (n_samples, n_params).
        y: Response of shape (n_samples,).
        weights: Nonnegative weights of shape (n_samples,).
        rcond: Relative singular value cutoff.

    Returns:
        The coefficients together with the SVD factors needed for
        leverage computations.

    Raises:
        SingularNeighborhood: If the weighted design has rank below n_params.
    """
    n_params = design.shape[1]
    support = weights > 0
    n_support = int(np.count_nonzero(support))
    if n_support < n_params:
        raise SingularNeighborhood(
            f"{n_support} weighted samples for {n_params} parameters",
            rank=n_support,
            n_params=n_params,
        )

    sqrt_w = np.sqrt(weights[support])
    Z = design[support] * sqrt_w[:, np.newaxis]
    r = y[support] * sqrt_w

    scale = np.linalg.norm(Z, axis=0)
    if np.any(scale == 0):
        raise SingularNeighborhood(
            "weighted design has an all-zero column",
            rank=int(np.count_nonzero(scale)),
            n_params=n_params,
        )
    Z = Z / scale

    try:
        U, s, Vt = linalg.svd(Z, full_matrices=False, check_finite=False)
    except linalg.LinAlgError as exc:
        raise SingularNeighborhood(f"SVD did not converge: {exc}", n_params=n_params) from exc

    rank = int(np.count_nonzero(s > rcond * s[0])) if s[0] > 0 else 0
    if rank < n_params:
        raise SingularNeighborhood(
            f"weighted design has rank {rank} < {n_params}",
            rank=rank,
            n_params=n_params,
        )

    beta = (Vt.T @ ((U.T @ r) / s)) / scale
    return _WeightedFit(beta=beta, Vt=Vt, s=s, scale=scale)


class LocalEstimator:
    """
    Base class for local estimators.

    Subclasses define the expanded design through ``_expanded_designs``;
    the first ``n_predictors + 1`` columns of every expanded design are
    the original design, whose coefficients are reported.
    """

    solver: Solver

    def __init__(self, options: SolverOptions):
        self.options = options

    def _expanded_designs(self, design, offsets):
        """Yield (degree, expanded design) candidates, preferred first."""
        raise NotImplementedError

    def _fit(
        self,
        design: NDArray[np.floating],
        y: NDArray[np.floating],
        weights: NDArray[np.floating],
        offsets: NDArray[np.floating],
        x0: NDArray[np.floating],
        self_weight: float,
    ) -> LocalEstimate:
        n_coef = design.shape[1]
        failure = None
        for degree, expanded in self._expanded_designs(design, offsets):
            try:
                fit = weighted_least_squares(expanded, y, weights, self.options.rcond)
            except SingularNeighborhood as exc:
                failure = exc
                continue
            x0_expanded = np.zeros(expanded.shape[1])
            x0_expanded[:n_coef] = x0
            coefficients = fit.beta[:n_coef]
            hat = self_weight * fit.quadratic_form(x0_expanded) if self_weight > 0 else 0.0
            return LocalEstimate(
                coefficients=coefficients,
                fitted=float(x0 @ coefficients),
                hat=float(hat),
                degree=degree,
            )
        raise failure

    def estimate(
        self,
        dataset: Dataset,
        index: int,
        weights: NDArray[np.floating],
    ) -> LocalEstimate:
        """
        Estimate the local coefficients at sample ``index``.

        Parameters
        ----------
        dataset : Dataset
            Calibration data
        index : int
            Target sample
        weights : ndarray of shape (n_samples,)
            Composite weights of the target; a zero self weight gives
            the leave-one-out estimate

        Returns
        -------
        LocalEstimate

        Raises
        ------
        SingularNeighborhood
            If the weighted design is not invertible
        """
        offsets = local_offsets(dataset, dataset_targets(dataset, index))
        try:
            return self._fit(
                dataset.design,
                dataset.y,
                weights,
                offsets,
                dataset.design[index],
                float(weights[index]),
            )
        except SingularNeighborhood as exc:
            exc.index = index
            raise

    def estimate_at(
        self,
        dataset: Dataset,
        x0: NDArray[np.floating],
        location: list[NDArray[np.floating] | None],
        weights: NDArray[np.floating],
    ) -> LocalEstimate:
        """
        Estimate the local coefficients at a location outside the sample.

        Parameters
        ----------
        dataset : Dataset
            Calibration data
        x0 : ndarray of shape (n_predictors + 1,)
            Design row (leading 1) at the location
        location : list
            Coordinates of the location for each dimension group (None
            for groups without coordinates)
        weights : ndarray of shape (n_samples,)
            Composite weights of the samples relative to the location

        Returns
        -------
        LocalEstimate
            With ``hat`` equal to 0
        """
        offsets = local_offsets(dataset, location)
        return self._fit(dataset.design, dataset.y, weights, offsets, x0, 0.0)


class KernelSmoothEstimator(LocalEstimator):
    """
    Locally constant coefficients: beta_i = (X'WX)^-1 X'Wy.

    Parameters
    ----------
    options : KernelSmoothOptions, optional
        Solver options
    """

    solver = Solver.KERNEL_SMOOTH

    def __init__(self, options: KernelSmoothOptions | None = None):
        super().__init__(options or KernelSmoothOptions())

    def _expanded_designs(self, design, offsets):
        yield 0, design


class LocalPolynomialEstimator(LocalEstimator):
    """
    Locally polynomial coefficients.

    The design is expanded to [X, X * d_c, X * d_c^2, ...] for every
    coordinate column offset d_c = u_c - u_c(target), up to
    ``options.degree``. Only the block multiplying X alone is reported;
    the higher-order blocks model the local trend of the coefficient
    surface and are discarded. When the expanded design is rank
    deficient the degree is lowered one step at a time, down to the
    locally constant design, before giving up.

    Parameters
    ----------
    options : LocalPolynomialOptions, optional
        Solver options
    """

    solver = Solver.LOCAL_POLY

    def __init__(self, options: LocalPolynomialOptions | None = None):
        super().__init__(options or LocalPolynomialOptions())

    def _expanded_designs(self, design, offsets):
        max_degree = self.options.degree if offsets.shape[1] > 0 else 0
        for degree in range(max_degree, -1, -1):
            yield degree, polynomial_design(design, offsets, degree)


def polynomial_design(
    design: NDArray[np.floating],
    offsets: NDArray[np.floating],
    degree: int,
) -> NDArray[np.floating]:
    """
    Expand a design with polynomial terms in coordinate offsets.

    For a design X with columns [1, x1] and one offset column d, degree 2
    gives [1, x1, d, x1*d, d^2, x1*d^2].

    Args:
        design: Design matrix of shape (n_samples, n_coef).
        offsets: Coordinate offsets of shape (n_samples, n_columns).
        degree: Highest power of the offsets.

    Returns:
        Design matrix of shape (n_samples, n_coef * (1 + degree * n_columns)).
    """
    blocks = [design]
    for power in range(1, degree + 1):
        for c in range(offsets.shape[1]):
            blocks.append(design * (offsets[:, c] ** power)[:, np.newaxis])
    return np.hstack(blocks)


def dataset_targets(dataset: Dataset, index: int) -> list[NDArray[np.floating] | None]:
    """Coordinates of sample ``index`` in every dimension group."""
    return [
        None if dim.coordinates is None else dim.coordinates[index]
        for dim in dataset.dimensions
    ]


def local_offsets(
    dataset: Dataset,
    location: list[NDArray[np.floating] | None],
) -> NDArray[np.floating]:
    """
    Offsets u_j - u(location) over all coordinate columns.

    Groups without coordinates (precomputed distances) contribute no columns.
    """
    columns = [
        dim.coordinates - np.asarray(target, dtype=np.float64)
        for dim, target in zip(dataset.dimensions, location)
        if dim.coordinates is not None
    ]
    if not columns:
        return np.empty((dataset.n_samples, 0))
    return np.hstack(columns)


def resolve_solver(
    solver: Solver | str = Solver.KERNEL_SMOOTH,
    options: SolverOptions | None = None,
) -> LocalEstimator:
    """
    Instantiate the estimator for a solver name.

    Parameters
    ----------
    solver : Solver or str
        "kernel.smooth" or "local.poly"
    options : KernelSmoothOptions or LocalPolynomialOptions, optional
        Must match the solver

    Returns
    -------
    LocalEstimator
    """
    solver = as_solver(solver)
    if solver is Solver.KERNEL_SMOOTH:
        if options is not None and not isinstance(options, KernelSmoothOptions):
            raise InvalidSpec(
                f"kernel.smooth expects KernelSmoothOptions, got {type(options).__name__}"
            )
        return KernelSmoothEstimator(options)
    if solver is Solver.LOCAL_POLY:
        if options is not None and not isinstance(options, LocalPolynomialOptions):
            raise InvalidSpec(
                f"local.poly expects LocalPolynomialOptions, got {type(options).__name__}"
            )
        return LocalPolynomialEstimator(options)
    raise InvalidSpec(f"Unhandled solver {solver}")
