"""
Kernel functions converting distances to weights.

Kernels take scaled distances u = d / b and return weights in [0, 1]
with K(0) = 1. They are not normalized: only relative weights matter
to a weighted least squares fit.
"""

from typing import Callable

import numpy as np
from numpy.typing import NDArray

KernelFunction = Callable[[NDArray[np.floating]], NDArray[np.floating]]


def gaussian_kernel(u: NDArray[np.floating]) -> NDArray[np.floating]:
    """
    Gaussian kernel.

    K(u) = exp(-0.5 * u^2), never exactly zero for finite u.

    Parameters
    ----------
    u : ndarray
        Scaled distances d / b

    Returns
    -------
    ndarray
        Kernel weights
    """
    return np.exp(-0.5 * u**2)


def bisquare_kernel(u: NDArray[np.floating]) -> NDArray[np.floating]:
    """
    Bisquare kernel.

    K(u) = (1 - u^2)^2 for |u| < 1, else 0

    Parameters
    ----------
    u : ndarray
        Scaled distances d / b

    Returns
    -------
    ndarray
        Kernel weights
    """
    with np.errstate(invalid="ignore"):
        weights = (1 - u**2) ** 2
    return np.where(np.abs(u) < 1, weights, 0.0)


def boxcar_kernel(u: NDArray[np.floating]) -> NDArray[np.floating]:
    """
    Boxcar kernel.

    K(u) = 1 for |u| <= 1, else 0
    """
    return np.where(np.abs(u) <= 1, 1.0, 0.0)


def exponential_kernel(u: NDArray[np.floating]) -> NDArray[np.floating]:
    """
    Exponential kernel.

    K(u) = exp(-|u|)
    """
    return np.exp(-np.abs(u))


def tricube_kernel(u: NDArray[np.floating]) -> NDArray[np.floating]:
    """
    Tricube kernel (used in LOESS).

    K(u) = (1 - |u|^3)^3 for |u| < 1, else 0

    Parameters
    ----------
    u : ndarray
        Scaled distances d / b

    Returns
    -------
    ndarray
        Kernel weights
    """
    abs_u = np.abs(u)
    with np.errstate(invalid="ignore"):
        weights = (1 - abs_u**3) ** 3
    return np.where(abs_u < 1, weights, 0.0)


KERNEL_FUNCTIONS: dict[str, KernelFunction] = {
    "gaussian": gaussian_kernel,
    "bisquare": bisquare_kernel,
    "boxcar": boxcar_kernel,
    "exponential": exponential_kernel,
    "tricube": tricube_kernel,
}


def get_kernel(kernel: str) -> KernelFunction:
    """
    Get kernel function by name.

    Parameters
    ----------
    kernel : str
        Kernel name, one of ``KERNEL_FUNCTIONS``

    Returns
    -------
    callable
        Kernel function of scaled distances
    """
    name = str(getattr(kernel, "value", kernel))
    if name not in KERNEL_FUNCTIONS:
        valid = ", ".join(KERNEL_FUNCTIONS.keys())
        raise ValueError(f"Unknown kernel '{name}'. Valid options: {valid}")
    return KERNEL_FUNCTIONS[name]


def kernel_weights(
    distances: NDArray[np.floating],
    bandwidth: NDArray[np.floating] | float,
    kernel: str | KernelFunction,
) -> NDArray[np.floating]:
    """
    Evaluate a kernel on a block of distances.

    Parameters
    ----------
    distances : ndarray of shape (n_targets, n_samples) or (n_samples,)
        Nonnegative distances
    bandwidth : float or ndarray of shape (n_targets,)
        One bandwidth for every row (fixed) or one per row (adaptive)
    kernel : str or callable
        Kernel name or kernel function of scaled distances

    Returns
    -------
    ndarray
        Weights with the shape of ``distances``

    Notes
    -----
    A zero bandwidth is the limit b -> 0 of every kernel: weight 1 at
    distance 0 and weight 0 elsewhere.
    """
    kernel_func = kernel if callable(kernel) else get_kernel(kernel)
    distances = np.asarray(distances, dtype=np.float64)
    bandwidth = np.asarray(bandwidth, dtype=np.float64)
    if bandwidth.ndim == 1 and distances.ndim == 2:
        bandwidth = bandwidth[:, np.newaxis]

    positive = bandwidth > 0
    safe_bandwidth = np.where(positive, bandwidth, 1.0)
    scaled = np.where(
        positive,
        distances / safe_bandwidth,
        np.where(distances == 0, 0.0, np.inf),
    )
    return kernel_func(scaled)
