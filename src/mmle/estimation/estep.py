"""Parallel E-step: expected counts over the quadrature."""

from collections.abc import Sequence
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.special import logsumexp

from mmle.constants import ESTEP_THRESHOLD
from mmle.estimation.accumulator import EStepAccumulator
from mmle.estimation.parallel import ForkJoinPool
from mmle.estimation.quadrature import QuadratureRule
from mmle.models.base import ItemResponseModel
from mmle.utils.collapse import ResponseVectors


class EStep:
    """Compute the expected sufficient statistics for one EM iteration.

    Item probabilities at the quadrature points are tabulated once from
    the items' active parameters when the object is built. The response
    vectors are then reduced by recursive halving: partitions shorter than
    ``threshold`` are computed directly, longer ones fork their right half
    and merge the two partial accumulators.

    Parameters
    ----------
    items : sequence of ItemResponseModel
        Item models; only their active parameters are read.
    quadrature : QuadratureRule
        Latent distribution approximation.
    data : ResponseVectors
        Collapsed response patterns.
    pool : ForkJoinPool, optional
        Pool for forked partitions. Without one everything runs in the
        calling thread.
    threshold : int, default=250
        Partition length below which no further split happens.
    """

    def __init__(
        self,
        items: Sequence[ItemResponseModel],
        quadrature: QuadratureRule,
        data: ResponseVectors,
        pool: Optional[ForkJoinPool] = None,
        threshold: int = ESTEP_THRESHOLD,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.data = data
        self.pool = pool or ForkJoinPool(1)
        self.threshold = threshold
        self.n_categories = [item.n_categories for item in items]

        points = quadrature.points
        with np.errstate(divide="ignore"):
            self._log_density = np.log(quadrature.densities)
            # (n_points, n_categories) per item
            self._log_probs = [
                np.log(item.category_probabilities(points)) for item in items
            ]
        self.n_points = points.size

    def compute(self) -> EStepAccumulator:
        """Run the E-step over all response vectors."""
        return self.pool.invoke(self._compute, 0, len(self.data))

    def _compute(self, start: int, length: int) -> EStepAccumulator:
        if length < self.threshold or length < 2:
            return self.compute_directly(start, start + length)

        split = length // 2
        right = self.pool.fork(self._compute, start + split, length - split)
        left = self._compute(start, split)
        return left.merge(right.join())

    def compute_directly(self, start: int, stop: int) -> EStepAccumulator:
        """Sequential E-step over response vectors ``start:stop``."""
        patterns = self.data.patterns[start:stop]
        freq = self.data.frequencies[start:stop]
        n = patterns.shape[0]
        if n == 0:
            return EStepAccumulator.empty(self.n_categories, self.n_points)

        log_joint = self._log_joint(patterns)
        log_marginal = logsumexp(log_joint, axis=1)
        posterior = np.exp(log_joint - log_marginal[:, None]) * freq[:, None]

        counts = []
        for j, n_cat in enumerate(self.n_categories):
            onehot = _one_hot(patterns[:, j], n_cat)
            counts.append(onehot.T @ posterior)

        return EStepAccumulator(
            category_counts=tuple(counts),
            expected_count=posterior.sum(axis=0),
            log_likelihood=float(freq @ log_marginal),
        )

    def _log_joint(self, patterns: NDArray[np.int_]) -> NDArray[np.float64]:
        # log of the conditional likelihood at each point: sum over items
        log_cond = np.zeros((patterns.shape[0], self.n_points))
        for j, log_probs in enumerate(self._log_probs):
            resp = patterns[:, j]
            valid = resp >= 0
            log_cond[valid] += log_probs[:, resp[valid]].T
        return log_cond + self._log_density

    def posterior(self, start: int = 0, stop: Optional[int] = None) -> NDArray[np.float64]:
        """Normalized posterior over the quadrature points.

        Returns
        -------
        ndarray of shape (stop - start, n_points)
            One row per response pattern; rows sum to one.
        """
        patterns = self.data.patterns[start:stop]
        log_joint = self._log_joint(patterns)
        log_marginal = logsumexp(log_joint, axis=1, keepdims=True)
        return np.exp(log_joint - log_marginal)


def _one_hot(responses: NDArray[np.int_], n_categories: int) -> NDArray[np.float64]:
    """Indicator matrix of shape (n, n_categories); missing rows are zero."""
    onehot = np.zeros((responses.size, n_categories))
    valid = responses >= 0
    onehot[np.flatnonzero(valid), responses[valid]] = 1.0
    return onehot
