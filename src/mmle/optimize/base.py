"""Objective contract, result container and enumerations for the optimizer."""

from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np
from numpy.typing import NDArray


class TerminationCode(IntEnum):
    """Reason a minimization stopped."""

    OPTIMAL = 0
    GRADIENT_SMALL = 1
    STEP_SMALL = 2
    NO_LOWER_POINT = 3
    ITERATION_LIMIT = 4
    MAX_STEPS = 5

    @property
    def message(self) -> str:
        return _TERMINATION_MESSAGES[self]

    @property
    def is_clean(self) -> bool:
        """True when the final point is a probable local minimum."""
        return self <= TerminationCode.STEP_SMALL


_TERMINATION_MESSAGES = {
    TerminationCode.OPTIMAL: "Optimal solution found",
    TerminationCode.GRADIENT_SMALL: (
        "Relative gradient close to zero at the initial point, which is "
        "probably an approximate local minimum"
    ),
    TerminationCode.STEP_SMALL: (
        "Successive iterates within tolerance, current point is probably "
        "an approximate local minimum"
    ),
    TerminationCode.NO_LOWER_POINT: (
        "Last global step failed to locate a point lower than the current point"
    ),
    TerminationCode.ITERATION_LIMIT: "Iteration limit exceeded",
    TerminationCode.MAX_STEPS: (
        "Five consecutive steps of maximum length were taken, the function "
        "may be unbounded below or asymptotic"
    ),
}


class GlobalStrategy(IntEnum):
    """Step globalization method."""

    LINE_SEARCH = 1
    DOUBLE_DOGLEG = 2
    MORE_HEBDON = 3

    @classmethod
    def from_name(cls, name: "str | GlobalStrategy") -> "GlobalStrategy":
        if isinstance(name, GlobalStrategy):
            return name
        aliases = {
            "line_search": cls.LINE_SEARCH,
            "dogleg": cls.DOUBLE_DOGLEG,
            "hook": cls.MORE_HEBDON,
        }
        try:
            return aliases[name]
        except KeyError:
            valid = ", ".join(aliases)
            raise ValueError(f"Unknown method '{name}'. Valid: {valid}") from None


class ObjectiveFunction:
    """Smooth function to be minimized.

    Subclasses must implement :meth:`value`. :meth:`gradient` and
    :meth:`hessian` are only called when the optimizer is told that
    analytic derivatives are available.
    """

    def value(self, x: NDArray[np.float64]) -> float:
        raise NotImplementedError

    def gradient(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        raise NotImplementedError(
            f"{type(self).__name__} does not provide an analytic gradient"
        )

    def hessian(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        raise NotImplementedError(
            f"{type(self).__name__} does not provide an analytic Hessian"
        )


class FunctionObjective(ObjectiveFunction):
    """Adapt plain callables to :class:`ObjectiveFunction`.

    Parameters
    ----------
    fun : callable
        ``fun(x) -> float``.
    jac : callable, optional
        ``jac(x) -> ndarray of shape (n,)``.
    hess : callable, optional
        ``hess(x) -> ndarray of shape (n, n)``.

    Examples
    --------
    >>> obj = FunctionObjective(lambda x: float(x @ x), jac=lambda x: 2 * x)
    >>> obj.value(np.array([1.0, 2.0]))
    5.0
    """

    def __init__(
        self,
        fun: Callable[[NDArray[np.float64]], float],
        jac: Optional[Callable[[NDArray[np.float64]], NDArray[np.float64]]] = None,
        hess: Optional[Callable[[NDArray[np.float64]], NDArray[np.float64]]] = None,
    ) -> None:
        self._fun = fun
        self._jac = jac
        self._hess = hess

    @property
    def has_gradient(self) -> bool:
        return self._jac is not None

    @property
    def has_hessian(self) -> bool:
        return self._hess is not None

    def value(self, x: NDArray[np.float64]) -> float:
        return float(self._fun(x))

    def gradient(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        if self._jac is None:
            return super().gradient(x)
        return np.asarray(self._jac(x), dtype=np.float64)

    def hessian(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        if self._hess is None:
            return super().hessian(x)
        return np.asarray(self._hess(x), dtype=np.float64)


@dataclass
class OptimizationResult:
    """Outcome of a single :meth:`UncminOptimizer.minimize` call.

    Attributes
    ----------
    x : ndarray of shape (n,)
        Final point.
    fun : float
        Objective value at ``x``.
    jac : ndarray of shape (n,)
        Gradient at ``x``.
    hessian : ndarray of shape (n, n)
        Last model Hessian: recomputed, secant-updated, or rebuilt from the
        secant-updated Cholesky factor.
    termination : TerminationCode
        Why the iteration stopped.
    n_iterations : int
        Number of iterations performed.
    """

    x: NDArray[np.float64]
    fun: float
    jac: NDArray[np.float64]
    hessian: NDArray[np.float64]
    termination: TerminationCode
    n_iterations: int

    @property
    def success(self) -> bool:
        return self.termination.is_clean

    @property
    def message(self) -> str:
        return self.termination.message

    def __repr__(self) -> str:
        return (
            f"OptimizationResult(fun={self.fun:.6g}, "
            f"termination={self.termination.name}, "
            f"n_iterations={self.n_iterations})"
        )
