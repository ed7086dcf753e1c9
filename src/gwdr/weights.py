"""
Composite multidimensional weights.

Each dimension attenuates influence independently through its own kernel;
the composite weight of a sample pair is the product over dimensions:

    w(i, j) = prod_k K_k(d_k(i, j) / b_k(i))

A compact-support kernel that returns zero along any single axis zeroes
the composite weight regardless of the other axes.
"""

from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from gwdr.data import Dataset
from gwdr.exceptions import InvalidSpec
from gwdr.kernels import get_kernel, kernel_weights
from gwdr.specs import KernelSpec, validate_kernel_specs


def check_kernel_specs(
    dataset: Dataset,
    specs: Sequence[KernelSpec],
) -> tuple[KernelSpec, ...]:
    """
    Validate a kernel spec list against a dataset.

    Checks the list length against the coordinate groups, that adaptive
    neighbor counts do not exceed the sample size and that fixed
    bandwidths do not exceed the dimension's largest pairwise distance.

    Raises
    ------
    InvalidSpec
        On any violation; nothing has been computed yet.
    """
    specs = validate_kernel_specs(specs, dataset.n_dimensions)
    n_samples = dataset.n_samples
    for k, (spec, dim) in enumerate(zip(specs, dataset.dimensions)):
        if spec.adaptive:
            requested = spec.requested_neighbors(n_samples)
            if requested > n_samples:
                raise InvalidSpec(
                    f"Dimension {k}: adaptive bandwidth of {requested:g} neighbors "
                    f"exceeds the {n_samples} samples"
                )
        else:
            max_distance = dim.max_distance
            if spec.bandwidth > max_distance * (1 + 1e-12):
                raise InvalidSpec(
                    f"Dimension {k}: fixed bandwidth {spec.bandwidth:g} exceeds the "
                    f"maximum pairwise distance {max_distance:g}"
                )
    return specs


def resolve_bandwidths(
    distances: NDArray[np.floating],
    spec: KernelSpec,
    n_samples: int | None = None,
    k_min: int = 1,
) -> NDArray[np.floating] | float:
    """
    Bandwidth of every target row along one dimension.

    Parameters
    ----------
    distances : ndarray of shape (n_targets, n_samples)
        Distances from each target to every sample
    spec : KernelSpec
        Kernel spec of the dimension
    n_samples : int, optional
        Sample size the adaptive fraction refers to; defaults to the
        number of columns of ``distances``
    k_min : int, default=1
        Lower clamp of the adaptive neighbor count

    Returns
    -------
    float or ndarray of shape (n_targets,)
        The fixed bandwidth, or for adaptive specs the distance of each
        row's b-th nearest sample (the sample itself counts, at distance 0)
    """
    if not spec.adaptive:
        return spec.bandwidth
    n_samples = distances.shape[1] if n_samples is None else n_samples
    count = spec.neighbors(n_samples, k_min)
    return np.partition(distances, count - 1, axis=1)[:, count - 1]


def compose_weights(
    distances: Sequence[NDArray[np.floating]],
    specs: Sequence[KernelSpec],
    k_min: int = 1,
) -> NDArray[np.floating]:
    """
    Product-kernel weights for a block of targets.

    Parameters
    ----------
    distances : sequence of ndarray of shape (n_targets, n_samples)
        One distance block per dimension
    specs : sequence of KernelSpec
        One spec per dimension
    k_min : int, default=1
        Lower clamp of adaptive neighbor counts

    Returns
    -------
    ndarray of shape (n_targets, n_samples)
    """
    if len(distances) != len(specs):
        raise InvalidSpec(f"Got {len(specs)} kernel specs for {len(distances)} dimensions")
    weights = None
    for dist, spec in zip(distances, specs):
        dist = np.atleast_2d(dist)
        bandwidth = resolve_bandwidths(dist, spec, k_min=k_min)
        w = kernel_weights(dist, bandwidth, get_kernel(spec.kernel))
        weights = w if weights is None else weights * w
    return weights


class WeightComposer:
    """
    Composite weights between the samples of one calibration.

    Bandwidths are resolved once at construction (per row for adaptive
    specs); rows are then evaluated on demand.

    Parameters
    ----------
    distances : sequence of ndarray of shape (n_samples, n_samples)
        Pairwise distance matrix of each dimension
    specs : sequence of KernelSpec
        Kernel spec of each dimension, in the same order
    k_min : int, default=1
        Lower clamp of adaptive neighbor counts

    Example:
        >>> composer = WeightComposer(dataset.distance_matrices(), specs)
        >>> w = composer.row(0)
        >>> w_loo = composer.row(0, leave_one_out=True)
    """

    def __init__(
        self,
        distances: Sequence[NDArray[np.floating]],
        specs: Sequence[KernelSpec],
        k_min: int = 1,
    ):
        if len(distances) != len(specs):
            raise InvalidSpec(
                f"Got {len(specs)} kernel specs for {len(distances)} dimensions"
            )
        self.distances = tuple(distances)
        self.specs = tuple(specs)
        self.n_samples = self.distances[0].shape[0]
        self.bandwidths_ = [
            resolve_bandwidths(dist, spec, k_min=k_min)
            for dist, spec in zip(self.distances, self.specs)
        ]
        self._kernels = [get_kernel(spec.kernel) for spec in self.specs]

    def row(self, i: int, leave_one_out: bool = False) -> NDArray[np.floating]:
        """
        Composite weights of every sample relative to target ``i``.

        Parameters
        ----------
        i : int
            Target sample index
        leave_one_out : bool, default=False
            Force the self weight w(i, i) to zero

        Returns
        -------
        ndarray of shape (n_samples,)
        """
        weights = np.ones(self.n_samples)
        for dist, bandwidth, kernel in zip(self.distances, self.bandwidths_, self._kernels):
            b = bandwidth if np.ndim(bandwidth) == 0 else bandwidth[i]
            weights = weights * kernel_weights(dist[i], b, kernel)
        if leave_one_out:
            weights[i] = 0.0
        return weights

    def matrix(self, leave_one_out: bool = False) -> NDArray[np.floating]:
        """Full (n_samples, n_samples) weight matrix, row i for target i."""
        weights = np.ones((self.n_samples, self.n_samples))
        for dist, bandwidth, kernel in zip(self.distances, self.bandwidths_, self._kernels):
            weights = weights * kernel_weights(dist, bandwidth, kernel)
        if leave_one_out:
            np.fill_diagonal(weights, 0.0)
        return weights
