"""
Bandwidth optimisation by a derivative-free simplex search.

The bandwidths of all dimensions form one real vector which is searched
with scipy's Nelder-Mead, every evaluation re-running the full
calibration. Adaptive entries are represented as neighbor fractions
count / n and rounded half-up before each evaluation; fixed entries are
distances. The search runs in coordinates normalised by each entry's
upper bound so that fractions and distances share one tolerance.
"""

import logging
import threading
import time
import warnings
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.optimize import minimize

from gwdr.calibration import Diagnostics, ModelCalibrator
from gwdr.data import Dataset
from gwdr.exceptions import InvalidSpec, OptimizationCancelled, OptimizerDivergence
from gwdr.specs import (
    BandwidthUnit,
    Criterion,
    KernelSpec,
    Solver,
    SolverOptions,
    as_criterion,
    round_half_up,
)
from gwdr.weights import check_kernel_specs

logger = logging.getLogger(__name__)


class CriterionStrategy:
    """Objective extracted from calibration diagnostics; lower is better."""

    criterion: Criterion
    requires_cv: bool = False

    @property
    def name(self) -> str:
        return self.criterion.value

    def score(self, diagnostics: Diagnostics) -> float:
        raise NotImplementedError


class CVCriterion(CriterionStrategy):
    """Leave-one-out cross-validation score."""

    criterion = Criterion.CV
    requires_cv = True

    def score(self, diagnostics: Diagnostics) -> float:
        if diagnostics.n_failed or diagnostics.n_cv_failed or not np.isfinite(diagnostics.cv):
            return float("inf")
        return float(diagnostics.cv)


class AICcCriterion(CriterionStrategy):
    """Corrected Akaike Information Criterion."""

    criterion = Criterion.AICC

    def score(self, diagnostics: Diagnostics) -> float:
        if diagnostics.n_failed or np.isnan(diagnostics.aicc):
            return float("inf")
        return float(diagnostics.aicc)


CRITERIA: dict[Criterion, CriterionStrategy] = {
    Criterion.CV: CVCriterion(),
    Criterion.AICC: AICcCriterion(),
}


def get_criterion(criterion: Criterion | str) -> CriterionStrategy:
    """Resolve a criterion name to its strategy."""
    return CRITERIA[as_criterion(criterion)]


class CancellationToken:
    """
    Thread-safe flag a caller sets to stop a running optimisation.

    The optimiser checks it between simplex iterations and between
    evaluations, then returns the best bandwidths found so far.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True, eq=False)
class OptimizationResult:
    """
    Outcome of a bandwidth search.

    Attributes
    ----------
    kernel_specs : tuple of KernelSpec
        Best specs found; searched adaptive bandwidths are neighbor
        fractions with ``unit="fraction"``.
    score : float
        Criterion value of ``kernel_specs`` (NaN if nothing was evaluated).
    criterion : Criterion
    converged : bool
        False when the iteration budget ran out or the search was cancelled.
    cancelled : bool
        True when stopped by a cancellation token or deadline.
    n_iterations : int
        Simplex iterations completed.
    n_evaluations : int
        Calibrations actually run (infeasible and repeated candidates
        are not calibrated).
    history : DataFrame
        One row per objective call: bandwidth of each dimension, score,
        and whether the candidate was feasible.
    message : str
    """

    kernel_specs: tuple[KernelSpec, ...]
    score: float
    criterion: Criterion
    converged: bool
    cancelled: bool
    n_iterations: int
    n_evaluations: int
    history: pd.DataFrame
    message: str


class BandwidthOptimizer:
    """
    Simplex search over the bandwidth vector.

    Parameters
    ----------
    criterion : Criterion or str, default="AICc"
        Objective, "CV" or "AICc".
    solver : Solver or str, default="kernel.smooth"
        Local estimator used by every calibration.
    options : KernelSmoothOptions or LocalPolynomialOptions, optional
        Solver options.
    max_iter : int, default=200
        Simplex iteration cap.
    xatol : float, default=1e-3
        Convergence tolerance on the normalised bandwidth vector.
    fatol : float, default=1e-6
        Convergence tolerance on the criterion.
    simplex_step : float, default=0.1
        Relative size of the initial simplex around the seed.
    min_neighbors : int, optional
        Smallest adaptive neighbor count; defaults to the number of
        design columns.
    n_jobs : int, optional
        joblib workers for each calibration.

    Example:
        >>> optimizer = BandwidthOptimizer(criterion="CV", solver="local.poly")
        >>> result = optimizer.optimize(dataset, [KernelSpec(0.618, "gaussian")])
        >>> result.kernel_specs, result.converged
    """

    def __init__(
        self,
        criterion: Criterion | str = Criterion.AICC,
        solver: Solver | str = Solver.KERNEL_SMOOTH,
        options: SolverOptions | None = None,
        max_iter: int = 200,
        xatol: float = 1e-3,
        fatol: float = 1e-6,
        simplex_step: float = 0.1,
        min_neighbors: int | None = None,
        n_jobs: int | None = None,
    ):
        self.strategy = get_criterion(criterion)
        if max_iter < 1:
            raise InvalidSpec(f"max_iter must be positive, got {max_iter}")
        if not 0 < simplex_step < 1:
            raise InvalidSpec(f"simplex_step must be in (0, 1), got {simplex_step}")
        if min_neighbors is not None and min_neighbors < 1:
            raise InvalidSpec(f"min_neighbors must be at least 1, got {min_neighbors}")
        self.solver = solver
        self.options = options
        self.max_iter = int(max_iter)
        self.xatol = xatol
        self.fatol = fatol
        self.simplex_step = simplex_step
        self.min_neighbors = min_neighbors
        self.n_jobs = n_jobs

    def _bounds(
        self, dataset: Dataset, specs: Sequence[KernelSpec], k_min: int
    ) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Lower and upper bound of every entry of the bandwidth vector."""
        n_samples = dataset.n_samples
        lower = np.empty(len(specs))
        upper = np.empty(len(specs))
        for k, (spec, dim) in enumerate(zip(specs, dataset.dimensions)):
            if spec.adaptive:
                lower[k] = k_min / n_samples
                upper[k] = 1.0
            else:
                lower[k] = 0.0
                upper[k] = dim.max_distance
        return lower, upper

    def _initial_simplex(self, z0: NDArray[np.floating]) -> NDArray[np.floating]:
        """Seed plus one vertex per entry, stepped towards the interior."""
        simplex = np.tile(z0, (len(z0) + 1, 1))
        for k in range(len(z0)):
            step = self.simplex_step * z0[k]
            simplex[k + 1, k] = z0[k] + step if z0[k] + step <= 1.0 else z0[k] - step
        return simplex

    @staticmethod
    def _decode(
        x: NDArray[np.floating],
        templates: Sequence[KernelSpec],
        n_samples: int,
        k_min: int,
    ) -> tuple[KernelSpec, ...]:
        specs = []
        for value, template in zip(x, templates):
            if template.adaptive:
                count = min(max(round_half_up(value * n_samples), k_min), n_samples)
                specs.append(
                    template.with_bandwidth(count / n_samples, BandwidthUnit.FRACTION)
                )
            else:
                specs.append(template.with_bandwidth(float(value)))
        return tuple(specs)

    def optimize(
        self,
        dataset: Dataset,
        initial_specs: Sequence[KernelSpec],
        cancel_token: CancellationToken | None = None,
        deadline: float | None = None,
    ) -> OptimizationResult:
        """
        Search the bandwidths minimising the criterion.

        Parameters
        ----------
        dataset : Dataset
            Calibration data
        initial_specs : sequence of KernelSpec
            Seed of the search; kernels and adaptive flags are kept fixed
        cancel_token : CancellationToken, optional
            Stops the search when cancelled
        deadline : float, optional
            Wall-clock budget in seconds

        Returns
        -------
        OptimizationResult
            Best specs found; never raises on non-convergence or
            cancellation
        """
        specs = check_kernel_specs(dataset, initial_specs)
        n_samples = dataset.n_samples
        k_min = self.min_neighbors or dataset.design.shape[1]
        k_min = min(k_min, n_samples)

        calibrator = ModelCalibrator(
            solver=self.solver,
            options=self.options,
            n_jobs=self.n_jobs,
            compute_cv=self.strategy.requires_cv,
            k_min=k_min,
        )
        distances = dataset.distance_matrices()
        lower, upper = self._bounds(dataset, specs, k_min)

        x0 = np.array(
            [s.fraction(n_samples) if s.adaptive else s.bandwidth for s in specs]
        )
        clipped = np.clip(x0, lower, upper)
        if not np.allclose(clipped, x0):
            logger.warning(
                "Initial bandwidths %s moved inside the feasible region: %s", x0, clipped
            )
        z0 = clipped / upper

        started = time.monotonic()
        cache: dict[tuple, float] = {}
        history: list[dict] = []
        best = {"score": float("inf"), "specs": None}
        state = {"iterations": 0, "evaluations": 0}

        def check_cancel() -> None:
            if cancel_token is not None and cancel_token.cancelled:
                raise OptimizationCancelled("optimisation cancelled")
            if deadline is not None and time.monotonic() - started > deadline:
                raise OptimizationCancelled(f"deadline of {deadline:g}s exceeded")

        def objective(z: NDArray[np.floating]) -> float:
            check_cancel()
            x = z * upper
            record = {f"bandwidth_{k}": value for k, value in enumerate(x)}
            feasible = bool(np.all(x >= lower) and np.all(x <= upper) and np.all(x > 0))
            if not feasible:
                history.append({**record, "score": float("inf"), "feasible": False})
                return float("inf")

            candidate = self._decode(x, specs, n_samples, k_min)
            key = tuple((s.kernel, s.adaptive, s.bandwidth) for s in candidate)
            if key not in cache:
                result = calibrator.calibrate(dataset, candidate, distances=distances)
                cache[key] = self.strategy.score(result.diagnostics)
                state["evaluations"] += 1
                logger.debug(
                    "%s=%.6g for %s",
                    self.strategy.name,
                    cache[key],
                    ", ".join(str(s) for s in candidate),
                )
            score = cache[key]
            history.append({**record, "score": score, "feasible": True})
            if score < best["score"] or best["specs"] is None:
                best["score"] = score
                best["specs"] = candidate
            return score

        def callback(zk: NDArray[np.floating]) -> None:
            state["iterations"] += 1
            check_cancel()

        cancelled = False
        converged = False
        try:
            check_cancel()
            res = minimize(
                objective,
                z0,
                method="Nelder-Mead",
                callback=callback,
                options={
                    "maxiter": self.max_iter,
                    "xatol": self.xatol,
                    "fatol": self.fatol,
                    "initial_simplex": self._initial_simplex(z0),
                },
            )
            converged = bool(res.success)
            message = str(res.message)
        except OptimizationCancelled as exc:
            cancelled = True
            message = str(exc)
            logger.info("Bandwidth search stopped: %s", message)

        if best["specs"] is None:
            best_specs = self._decode(clipped, specs, n_samples, k_min)
            best_score = float("nan")
        else:
            best_specs = best["specs"]
            best_score = best["score"]

        if not converged and not cancelled:
            warnings.warn(
                f"Bandwidth search did not converge after {state['iterations']} "
                f"iterations ({message}); returning the best bandwidths found",
                OptimizerDivergence,
                stacklevel=2,
            )

        logger.info(
            "Bandwidth search (%s) finished after %d iterations, %d calibrations: "
            "%s=%.6g, %s",
            self.strategy.name,
            state["iterations"],
            state["evaluations"],
            self.strategy.name,
            best_score,
            ", ".join(str(s) for s in best_specs),
        )

        return OptimizationResult(
            kernel_specs=best_specs,
            score=best_score,
            criterion=self.strategy.criterion,
            converged=converged and not cancelled,
            cancelled=cancelled,
            n_iterations=state["iterations"],
            n_evaluations=state["evaluations"],
            history=pd.DataFrame(history),
            message=message,
        )


def optimize_bandwidths(
    dataset: Dataset,
    initial_specs: Sequence[KernelSpec],
    criterion: Criterion | str = Criterion.AICC,
    solver: Solver | str = Solver.KERNEL_SMOOTH,
    options: SolverOptions | None = None,
    **kwargs,
) -> OptimizationResult:
    """
    Optimise bandwidths in one call.

    Keyword arguments other than ``cancel_token`` and ``deadline`` are
    passed to :class:`BandwidthOptimizer`.
    """
    cancel_token = kwargs.pop("cancel_token", None)
    deadline = kwargs.pop("deadline", None)
    optimizer = BandwidthOptimizer(criterion=criterion, solver=solver, options=options, **kwargs)
    return optimizer.optimize(
        dataset, initial_specs, cancel_token=cancel_token, deadline=deadline
    )
