"""Expected sufficient statistics produced by the E-step."""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class EStepAccumulator:
    """Immutable expected counts over the quadrature.

    Two accumulators of the same shape combine with :meth:`merge` (or
    ``+``), an element-wise sum. Merging is associative and commutative up
    to floating-point reassociation, so partial results from any
    partitioning of the response vectors can be combined in any order.

    Attributes
    ----------
    category_counts : tuple of ndarray
        ``category_counts[j][c, k]`` is the expected number of examinees at
        quadrature point ``k`` who answered item ``j`` in category ``c``.
    expected_count : ndarray of shape (n_points,)
        Expected number of examinees at each quadrature point.
    log_likelihood : float
        Frequency-weighted sum of log marginal likelihoods.
    """

    category_counts: tuple[NDArray[np.float64], ...]
    expected_count: NDArray[np.float64]
    log_likelihood: float

    def __post_init__(self) -> None:
        for arr in self.category_counts:
            arr.setflags(write=False)
        self.expected_count.setflags(write=False)

    @classmethod
    def empty(
        cls,
        n_categories: Sequence[int],
        n_points: int,
    ) -> "EStepAccumulator":
        """Identity element of :meth:`merge`."""
        return cls(
            category_counts=tuple(np.zeros((m, n_points)) for m in n_categories),
            expected_count=np.zeros(n_points),
            log_likelihood=0.0,
        )

    @property
    def n_items(self) -> int:
        return len(self.category_counts)

    @property
    def n_points(self) -> int:
        return self.expected_count.size

    @property
    def total_count(self) -> float:
        return float(self.expected_count.sum())

    def expected_correct(self, item: int) -> NDArray[np.float64]:
        """Score-weighted expected count of item ``item`` at each point.

        For a dichotomous item this is the expected number correct.
        """
        counts = self.category_counts[item]
        scores = np.arange(counts.shape[0], dtype=np.float64)
        return scores @ counts

    def expected_correct_matrix(self) -> NDArray[np.float64]:
        """Stack of :meth:`expected_correct` for every item, shape (n_items, n_points)."""
        return np.vstack([self.expected_correct(j) for j in range(self.n_items)])

    def merge(self, other: "EStepAccumulator") -> "EStepAccumulator":
        if self.n_items != other.n_items or self.n_points != other.n_points:
            raise ValueError("cannot merge accumulators of different shapes")
        return EStepAccumulator(
            category_counts=tuple(
                a + b for a, b in zip(self.category_counts, other.category_counts)
            ),
            expected_count=self.expected_count + other.expected_count,
            log_likelihood=self.log_likelihood + other.log_likelihood,
        )

    __add__ = merge

    def allclose(self, other: "EStepAccumulator", rtol: float = 1e-8) -> bool:
        """Compare with another accumulator up to a relative tolerance."""
        if self.n_items != other.n_items or self.n_points != other.n_points:
            return False
        return (
            np.allclose(self.expected_count, other.expected_count, rtol=rtol, atol=0.0)
            and np.isclose(self.log_likelihood, other.log_likelihood, rtol=rtol, atol=0.0)
            and all(
                np.allclose(a, b, rtol=rtol, atol=1e-12)
                for a, b in zip(self.category_counts, other.category_counts)
            )
        )

    def __repr__(self) -> str:
        return (
            f"EStepAccumulator(n_items={self.n_items}, n_points={self.n_points}, "
            f"total_count={self.total_count:.4f}, "
            f"log_likelihood={self.log_likelihood:.4f})"
        )
