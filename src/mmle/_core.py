"""Core utility functions with no internal dependencies.

This module provides fundamental numeric helpers that are used throughout
the codebase but have no dependencies on other mmle modules, avoiding
circular import issues.
"""

import numpy as np
from numpy.typing import NDArray


def sigmoid(x: NDArray[np.floating] | float) -> NDArray[np.floating] | float:
    """Compute sigmoid function with numerical stability.

    Uses the identity sigmoid(-x) = 1 - sigmoid(x) to avoid overflow
    for large negative values.

    Parameters
    ----------
    x : array_like or float
        Input values.

    Returns
    -------
    array_like or float
        Sigmoid of input, same shape as input.
    """
    x = np.asarray(x, dtype=np.float64)
    z = np.exp(-np.abs(x))
    result = np.where(x >= 0, 1.0 / (1.0 + z), z / (1.0 + z))
    return float(result) if result.ndim == 0 else result


def softmax_rows(z: NDArray[np.float64]) -> NDArray[np.float64]:
    """Row-wise softmax of a 2D array of category logits."""
    z = z - z.max(axis=1, keepdims=True)
    ez = np.exp(z)
    return ez / ez.sum(axis=1, keepdims=True)


def as_theta_1d(theta: NDArray[np.float64] | float) -> NDArray[np.float64]:
    """Return theta as a contiguous 1D float array."""
    return np.atleast_1d(np.asarray(theta, dtype=np.float64)).ravel()
