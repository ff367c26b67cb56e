"""Unconstrained quasi-Newton optimization."""

from mmle.optimize.base import (
    FunctionObjective,
    GlobalStrategy,
    ObjectiveFunction,
    OptimizationResult,
    TerminationCode,
)
from mmle.optimize.exceptions import (
    GradientCheckError,
    HessianCheckError,
    InvalidInputError,
    OptimizerError,
)
from mmle.optimize.uncmin import UncminOptimizer

__all__ = [
    "FunctionObjective",
    "GlobalStrategy",
    "GradientCheckError",
    "HessianCheckError",
    "InvalidInputError",
    "ObjectiveFunction",
    "OptimizationResult",
    "OptimizerError",
    "TerminationCode",
    "UncminOptimizer",
]
