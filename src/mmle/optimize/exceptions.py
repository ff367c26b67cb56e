"""Errors raised by the unconstrained optimizer.

These signal defects in the caller's objective (an analytic derivative
that disagrees with its finite-difference estimate) or invalid optimizer
input. Soft outcomes such as hitting the iteration limit are reported via
:class:`~mmle.optimize.base.TerminationCode` and never raised.
"""


class OptimizerError(Exception):
    """Base class for hard optimizer failures."""


class InvalidInputError(OptimizerError, ValueError):
    """Raised when the dimension, tolerances or limits are invalid."""


class GradientCheckError(OptimizerError):
    """Raised when an analytic gradient disagrees with finite differences.

    Attributes
    ----------
    analytic : ndarray
        Gradient returned by the objective.
    estimate : ndarray
        Forward-difference estimate at the same point.
    """

    def __init__(self, message: str, analytic=None, estimate=None) -> None:
        super().__init__(message)
        self.analytic = analytic
        self.estimate = estimate


class HessianCheckError(OptimizerError):
    """Raised when an analytic Hessian disagrees with finite differences."""

    def __init__(self, message: str, analytic=None, estimate=None) -> None:
        super().__init__(message)
        self.analytic = analytic
        self.estimate = estimate
