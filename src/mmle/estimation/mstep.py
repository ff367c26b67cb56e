"""Parallel M-step: per-item optimization against the E-step counts."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

import numpy as np

from mmle.constants import (
    GUESSING_BOUNDS,
    MSTEP_THRESHOLD,
    OPTIMIZER_MAX_ITER,
    OPTIMIZER_MAX_STEP,
    PROB_EPSILON,
    SLIPPING_BOUNDS,
)
from mmle.estimation.accumulator import EStepAccumulator
from mmle.estimation.objective import ItemLogLikelihood
from mmle.estimation.parallel import ForkJoinPool
from mmle.estimation.quadrature import QuadratureRule
from mmle.models.base import ItemResponseModel
from mmle.optimize import TerminationCode, UncminOptimizer
from mmle.typing import GlobalStrategyType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticCounts:
    """Soft problems seen during one M-step.

    Attributes
    ----------
    bad_termination : int
        Items whose optimizer stopped without a probable minimum.
    negative_discrimination : int
        Items whose discrimination estimate was negative.
    negative_guessing : int
        Items whose guessing estimate was negative (then clamped).
    slipping_above_one : int
        Items whose slipping estimate exceeded one (then clamped).
    """

    bad_termination: int = 0
    negative_discrimination: int = 0
    negative_guessing: int = 0
    slipping_above_one: int = 0

    def __add__(self, other: "DiagnosticCounts") -> "DiagnosticCounts":
        return DiagnosticCounts(
            self.bad_termination + other.bad_termination,
            self.negative_discrimination + other.negative_discrimination,
            self.negative_guessing + other.negative_guessing,
            self.slipping_above_one + other.slipping_above_one,
        )

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (
            self.bad_termination,
            self.negative_discrimination,
            self.negative_guessing,
            self.slipping_above_one,
        )

    def __str__(self) -> str:
        return "[" + " ".join(str(c) for c in self.as_tuple()) + "]"


@dataclass(frozen=True)
class MStepResult:
    """Diagnostics and optimizer outcomes from one M-step."""

    diagnostics: DiagnosticCounts
    terminations: dict[int, TerminationCode]

    def merge(self, other: "MStepResult") -> "MStepResult":
        return MStepResult(
            self.diagnostics + other.diagnostics,
            {**self.terminations, **other.terminations},
        )


class MStep:
    """Maximize each item's expected log-likelihood given an accumulator.

    Items are independent given the E-step counts. Partitions of at most
    ``threshold`` items are optimized sequentially with a single reusable
    optimizer; longer ones fork their right half. Each optimized (and
    repaired) parameter vector is written to the item's proposal slot.

    Parameters
    ----------
    items : sequence of ItemResponseModel
        Item models.
    quadrature : QuadratureRule
        Quadrature used in the E-step.
    accumulator : EStepAccumulator
        Expected counts from the E-step.
    pool : ForkJoinPool, optional
        Pool for forked partitions.
    threshold : int, default=100
        Largest partition optimized without a further split.
    method : str, default='line_search'
        Optimizer globalization strategy.
    max_iter : int, default=150
        Optimizer iteration limit per item.
    max_step : float, default=2.0
        Optimizer maximum step length.
    check_gradient : bool, default=False
        Cross-check analytic item gradients against finite differences.
    prob_epsilon : float, default=1e-10
        Probability clipping used by the objective.
    """

    def __init__(
        self,
        items: Sequence[ItemResponseModel],
        quadrature: QuadratureRule,
        accumulator: EStepAccumulator,
        pool: Optional[ForkJoinPool] = None,
        threshold: int = MSTEP_THRESHOLD,
        method: GlobalStrategyType = "line_search",
        max_iter: int = OPTIMIZER_MAX_ITER,
        max_step: float = OPTIMIZER_MAX_STEP,
        check_gradient: bool = False,
        prob_epsilon: float = PROB_EPSILON,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if accumulator.n_items != len(items):
            raise ValueError(
                f"accumulator has {accumulator.n_items} items, expected {len(items)}"
            )
        self.items = list(items)
        self.points = quadrature.points
        self.accumulator = accumulator
        self.pool = pool or ForkJoinPool(1)
        self.threshold = threshold
        self.method = method
        self.max_iter = max_iter
        self.max_step = max_step
        self.check_gradient = check_gradient
        self.prob_epsilon = prob_epsilon

    def compute(self) -> MStepResult:
        return self.pool.invoke(self._compute, 0, len(self.items))

    def _compute(self, start: int, length: int) -> MStepResult:
        if length <= self.threshold or length < 2:
            return self.compute_directly(start, start + length)

        split = length // 2
        right = self.pool.fork(self._compute, start + split, length - split)
        left = self._compute(start, split)
        return left.merge(right.join())

    def objective(self, j: int) -> ItemLogLikelihood:
        return ItemLogLikelihood(
            self.items[j],
            self.points,
            self.accumulator.category_counts[j],
            prob_epsilon=self.prob_epsilon,
        )

    def compute_directly(self, start: int, stop: int) -> MStepResult:
        """Optimize items ``start:stop`` one after another."""
        optimizer = UncminOptimizer(
            method=self.method, expensive=True, check_gradient=self.check_gradient
        )
        diagnostics = DiagnosticCounts()
        terminations: dict[int, TerminationCode] = {}

        for j in range(start, stop):
            item = self.items[j]
            if item.fixed:
                continue

            objective = self.objective(j)
            x0 = item.nearest_supported(item.get_item_parameter_array())
            result = optimizer.minimize(
                objective,
                x0,
                analytic_gradient=objective.has_gradient,
                analytic_hessian=False,
                max_iter=self.max_iter,
                max_step=self.max_step,
            )
            terminations[j] = result.termination
            if not result.success:
                logger.debug(
                    "Item %s: optimizer stopped with %s", item.name, result.termination.name
                )

            values, counts = repair_parameters(item, result.x)
            counts = counts + DiagnosticCounts(bad_termination=int(not result.success))
            diagnostics = diagnostics + counts
            item.set_proposal(values)

        return MStepResult(diagnostics, terminations)


def repair_parameters(
    item: ItemResponseModel,
    values: np.ndarray,
) -> tuple[np.ndarray, DiagnosticCounts]:
    """Apply parameter-specific domain repairs.

    Negative discrimination is only counted. Guessing is clamped to
    [0.001, 1.0] and slipping to [0.60, 0.999]; negative guessing and
    slipping above one are counted.
    """
    values = np.array(values, dtype=np.float64)
    names = item.parameter_names
    negative_disc = negative_guess = slip_above = 0

    if "discrimination" in names and values[names.index("discrimination")] < 0:
        negative_disc = 1
    if "guessing" in names:
        i = names.index("guessing")
        if values[i] < 0:
            negative_guess = 1
        values[i] = np.clip(values[i], *GUESSING_BOUNDS)
    if "slipping" in names:
        i = names.index("slipping")
        if values[i] > 1:
            slip_above = 1
        values[i] = np.clip(values[i], *SLIPPING_BOUNDS)

    return values, DiagnosticCounts(0, negative_disc, negative_guess, slip_above)
