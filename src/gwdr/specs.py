"""
Kernel specifications, solver selection and optimisation criteria.

Everything a caller configures is a small frozen record, validated once
when it is built and again against the dataset before calibration.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Sequence

from gwdr.exceptions import InvalidSpec

GOLDEN_RATIO_FRACTION = 0.618


class KernelName(str, Enum):
    """Supported per-dimension kernels."""

    GAUSSIAN = "gaussian"
    BISQUARE = "bisquare"
    BOXCAR = "boxcar"
    EXPONENTIAL = "exponential"
    TRICUBE = "tricube"


class BandwidthUnit(str, Enum):
    """How an adaptive bandwidth is read."""

    FRACTION = "fraction"
    COUNT = "count"


class Solver(str, Enum):
    """Local estimators."""

    KERNEL_SMOOTH = "kernel.smooth"
    LOCAL_POLY = "local.poly"


class Criterion(str, Enum):
    """Objectives minimised by the bandwidth search."""

    CV = "CV"
    AICC = "AICc"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero for positive values."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class KernelSpec:
    """
    Kernel and bandwidth for one coordinate dimension.

    Parameters
    ----------
    bandwidth : float
        Fixed mode: an absolute distance. Adaptive mode: a neighbor count,
        or a fraction of the sample size when ``unit`` is "fraction".
    kernel : KernelName or str, default="bisquare"
        Kernel name.
    adaptive : bool, default=True
        Whether the bandwidth is a neighbor count resolved per target.
    unit : BandwidthUnit or str, optional
        Unit of an adaptive bandwidth. When omitted, values below 1 are
        fractions and values of 1 or more are counts, so ``KernelSpec(1)``
        is a single neighbor and the whole sample is
        ``KernelSpec(1, unit="fraction")``. Must be omitted for fixed specs.
    """

    bandwidth: float = GOLDEN_RATIO_FRACTION
    kernel: KernelName = KernelName.BISQUARE
    adaptive: bool = True
    unit: BandwidthUnit | None = None

    def __post_init__(self):
        try:
            kernel = KernelName(getattr(self.kernel, "value", self.kernel))
        except ValueError:
            valid = ", ".join(k.value for k in KernelName)
            raise InvalidSpec(
                f"Unknown kernel '{self.kernel}'. Valid options: {valid}"
            ) from None
        object.__setattr__(self, "kernel", kernel)

        try:
            bandwidth = float(self.bandwidth)
        except (TypeError, ValueError):
            raise InvalidSpec(f"bandwidth must be a number, got {self.bandwidth!r}") from None
        if not math.isfinite(bandwidth) or bandwidth <= 0:
            raise InvalidSpec(f"bandwidth must be positive and finite, got {bandwidth}")
        object.__setattr__(self, "bandwidth", bandwidth)
        object.__setattr__(self, "adaptive", bool(self.adaptive))
        object.__setattr__(self, "unit", self._resolve_unit(bandwidth))

    def _resolve_unit(self, bandwidth: float) -> BandwidthUnit | None:
        if not self.adaptive:
            if self.unit is not None:
                raise InvalidSpec("unit only applies to adaptive bandwidths")
            return None
        if self.unit is None:
            return BandwidthUnit.FRACTION if bandwidth < 1.0 else BandwidthUnit.COUNT
        try:
            unit = BandwidthUnit(getattr(self.unit, "value", self.unit))
        except ValueError:
            valid = ", ".join(u.value for u in BandwidthUnit)
            raise InvalidSpec(
                f"Unknown bandwidth unit '{self.unit}'. Valid options: {valid}"
            ) from None
        if unit is BandwidthUnit.FRACTION and bandwidth > 1.0:
            raise InvalidSpec(f"A bandwidth fraction must be in (0, 1], got {bandwidth}")
        return unit

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "KernelSpec":
        """Build a spec from ``{"bandwidth", "kernel", "adaptive", "unit"}``."""
        unknown = set(values) - {"bandwidth", "kernel", "adaptive", "unit"}
        if unknown:
            raise InvalidSpec(f"Unknown kernel spec fields: {sorted(unknown)}")
        return cls(**values)

    def with_bandwidth(
        self, bandwidth: float, unit: BandwidthUnit | str | None = None
    ) -> "KernelSpec":
        """Return a copy with a different bandwidth, read as the constructor would."""
        return replace(self, bandwidth=bandwidth, unit=unit)

    def requested_neighbors(self, n_samples: int) -> float:
        """Unrounded neighbor count of an adaptive spec."""
        if self.unit is BandwidthUnit.FRACTION:
            return self.bandwidth * n_samples
        return self.bandwidth

    def neighbors(self, n_samples: int, k_min: int = 1) -> int:
        """
        Integer neighbor count of an adaptive spec.

        Round-half-up of the requested count, clamped to [k_min, n_samples].
        """
        if not self.adaptive:
            raise InvalidSpec("neighbors() is only defined for adaptive specs")
        count = round_half_up(self.requested_neighbors(n_samples))
        return int(min(max(count, k_min), n_samples))

    def fraction(self, n_samples: int) -> float:
        """Adaptive bandwidth as a fraction of the sample size."""
        return self.requested_neighbors(n_samples) / n_samples

    def __str__(self) -> str:
        if not self.adaptive:
            return f"{self.kernel.value}(fixed, bw={self.bandwidth:g})"
        if self.unit is BandwidthUnit.COUNT:
            return f"{self.kernel.value}(adaptive, bw={self.bandwidth:g} neighbors)"
        return f"{self.kernel.value}(adaptive, bw={self.bandwidth:g})"


def as_kernel_spec(spec: KernelSpec | Mapping[str, Any]) -> KernelSpec:
    """Coerce a mapping to a KernelSpec."""
    if isinstance(spec, KernelSpec):
        return spec
    if isinstance(spec, Mapping):
        return KernelSpec.from_dict(spec)
    raise InvalidSpec(f"Expected KernelSpec or mapping, got {type(spec).__name__}")


def validate_kernel_specs(
    specs: Sequence[KernelSpec | Mapping[str, Any]],
    n_dimensions: int,
) -> tuple[KernelSpec, ...]:
    """
    Check the kernel spec list against the number of coordinate groups.

    Returns
    -------
    tuple of KernelSpec
        Coerced specs, one per dimension
    """
    if isinstance(specs, (KernelSpec, Mapping)):
        specs = [specs]
    specs = tuple(as_kernel_spec(s) for s in specs)
    if len(specs) == 0:
        raise InvalidSpec("At least one kernel spec is required")
    if len(specs) != n_dimensions:
        raise InvalidSpec(
            f"Got {len(specs)} kernel specs for {n_dimensions} coordinate groups"
        )
    return specs


@dataclass(frozen=True)
class KernelSmoothOptions:
    """
    Options for the local constant ("kernel.smooth") solver.

    Parameters
    ----------
    rcond : float, default=1e-10
        Relative singular value cutoff below which the weighted design is
        considered rank deficient.
    """

    rcond: float = 1e-10

    def __post_init__(self):
        if not 0 < self.rcond < 1:
            raise InvalidSpec(f"rcond must be in (0, 1), got {self.rcond}")


@dataclass(frozen=True)
class LocalPolynomialOptions:
    """
    Options for the local polynomial ("local.poly") solver.

    Parameters
    ----------
    degree : int, default=1
        Highest power of the coordinate offsets.
    rcond : float, default=1e-10
        Relative singular value cutoff for rank deficiency.
    """

    degree: int = 1
    rcond: float = 1e-10

    def __post_init__(self):
        if int(self.degree) != self.degree or self.degree < 0:
            raise InvalidSpec(f"degree must be a nonnegative integer, got {self.degree}")
        object.__setattr__(self, "degree", int(self.degree))
        if not 0 < self.rcond < 1:
            raise InvalidSpec(f"rcond must be in (0, 1), got {self.rcond}")


SolverOptions = KernelSmoothOptions | LocalPolynomialOptions


def as_solver(solver: Solver | str) -> Solver:
    """Coerce a solver name."""
    try:
        return Solver(getattr(solver, "value", solver))
    except ValueError:
        valid = ", ".join(s.value for s in Solver)
        raise InvalidSpec(f"Unknown solver '{solver}'. Valid options: {valid}") from None


def as_criterion(criterion: Criterion | str) -> Criterion:
    """Coerce a criterion name (case-insensitive)."""
    if isinstance(criterion, Criterion):
        return criterion
    for member in Criterion:
        if str(criterion).lower() == member.value.lower():
            return member
    valid = ", ".join(c.value for c in Criterion)
    raise InvalidSpec(f"Unknown criterion '{criterion}'. Valid options: {valid}")
