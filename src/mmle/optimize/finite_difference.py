"""Finite-difference derivative estimates scaled to the objective's noise."""

from collections.abc import Callable

import numpy as np
from numpy.typing import NDArray


def _steps(
    x: NDArray[np.float64],
    sx: NDArray[np.float64],
    factor: float,
) -> NDArray[np.float64]:
    return factor * np.maximum(np.abs(x), 1.0 / sx)


def forward_gradient(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    fx: float,
    sx: NDArray[np.float64],
    rnoise: float,
) -> NDArray[np.float64]:
    """Forward-difference gradient with step ``sqrt(rnoise) * max(|x|, 1/sx)``."""
    steps = _steps(x, sx, np.sqrt(rnoise))
    grad = np.empty_like(x)
    xt = x.copy()
    for j, h in enumerate(steps):
        xt[j] = x[j] + h
        h = xt[j] - x[j]
        grad[j] = (fun(xt) - fx) / h
        xt[j] = x[j]
    return grad


def central_gradient(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    sx: NDArray[np.float64],
    rnoise: float,
) -> NDArray[np.float64]:
    """Central-difference gradient with step ``rnoise**(1/3) * max(|x|, 1/sx)``."""
    steps = _steps(x, sx, rnoise ** (1.0 / 3.0))
    grad = np.empty_like(x)
    xt = x.copy()
    for j, h in enumerate(steps):
        xt[j] = x[j] + h
        fplus = fun(xt)
        xt[j] = x[j] - h
        fminus = fun(xt)
        xt[j] = x[j]
        grad[j] = (fplus - fminus) / (2.0 * h)
    return grad


def hessian_from_gradient(
    grad: Callable[[NDArray[np.float64]], NDArray[np.float64]],
    x: NDArray[np.float64],
    gx: NDArray[np.float64],
    sx: NDArray[np.float64],
    rnoise: float,
) -> NDArray[np.float64]:
    """Hessian by forward differences of the gradient, symmetrized."""
    n = x.size
    steps = _steps(x, sx, np.sqrt(rnoise))
    hess = np.empty((n, n))
    xt = x.copy()
    for j, h in enumerate(steps):
        xt[j] = x[j] + h
        h = xt[j] - x[j]
        hess[:, j] = (grad(xt) - gx) / h
        xt[j] = x[j]
    return 0.5 * (hess + hess.T)


def hessian_from_values(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    fx: float,
    sx: NDArray[np.float64],
    rnoise: float,
) -> NDArray[np.float64]:
    """Hessian by second differences of function values."""
    n = x.size
    steps = _steps(x, sx, rnoise ** (1.0 / 3.0))
    fstep = np.empty(n)
    xt = x.copy()
    for i, h in enumerate(steps):
        xt[i] = x[i] + h
        steps[i] = xt[i] - x[i]
        fstep[i] = fun(xt)
        xt[i] = x[i]

    hess = np.empty((n, n))
    for i in range(n):
        xt[i] = x[i] + 2.0 * steps[i]
        hess[i, i] = ((fx - fstep[i]) + (fun(xt) - fstep[i])) / (steps[i] * steps[i])
        xt[i] = x[i] + steps[i]
        for j in range(i + 1, n):
            xt[j] = x[j] + steps[j]
            hess[j, i] = ((fx - fstep[i]) + (fun(xt) - fstep[j])) / (
                steps[i] * steps[j]
            )
            hess[i, j] = hess[j, i]
            xt[j] = x[j]
        xt[i] = x[i]
    return hess
