"""Response pattern collapsing for efficient IRT estimation.

Identical response patterns contribute identical terms to the E-step, so
the estimator works on unique patterns with aggregated frequencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class ItemResponseVector:
    """One response pattern and its frequency weight.

    Attributes
    ----------
    responses : ndarray of shape (n_items,)
        Category codes, -1 for missing.
    frequency : float
        Number of examinees (or summed sampling weight) with this pattern.
    """

    responses: NDArray[np.int_]
    frequency: float

    def __len__(self) -> int:
        return self.responses.size

    def __getitem__(self, j: int) -> int:
        return int(self.responses[j])


@dataclass(frozen=True)
class ResponseVectors:
    """Container for collapsed response data.

    Arrays are read-only so the same object can be shared by concurrent
    E-step partitions.

    Attributes
    ----------
    patterns : ndarray of shape (n_patterns, n_items)
        Unique response patterns.
    frequencies : ndarray of shape (n_patterns,)
        Frequency (or total weight) for each pattern.
    indices : ndarray of shape (n_persons,)
        Index mapping each original person to their pattern.
    n_persons : int
        Original number of persons.
    """

    patterns: NDArray[np.int_]
    frequencies: NDArray[np.float64]
    indices: NDArray[np.int_]
    n_persons: int

    def __post_init__(self) -> None:
        for arr in (self.patterns, self.frequencies, self.indices):
            arr.setflags(write=False)

    @property
    def n_patterns(self) -> int:
        return self.patterns.shape[0]

    @property
    def n_items(self) -> int:
        return self.patterns.shape[1]

    @property
    def total_frequency(self) -> float:
        return float(self.frequencies.sum())

    @property
    def compression_ratio(self) -> float:
        """Ratio of patterns to persons (lower = more compression)."""
        return self.n_patterns / self.n_persons

    def __len__(self) -> int:
        return self.n_patterns

    def __getitem__(self, i: int) -> ItemResponseVector:
        return ItemResponseVector(self.patterns[i], float(self.frequencies[i]))

    def __iter__(self) -> Iterator[ItemResponseVector]:
        for i in range(self.n_patterns):
            yield self[i]

    def expand_scores(self, pattern_scores: NDArray[np.float64]) -> NDArray[np.float64]:
        """Expand pattern-level values back to person level."""
        return pattern_scores[self.indices]


def collapse_patterns(
    responses: NDArray[np.int_],
    weights: Optional[NDArray[np.float64]] = None,
    missing_code: int = -1,
) -> ResponseVectors:
    """Collapse identical response patterns for efficient computation.

    Parameters
    ----------
    responses : ndarray of shape (n_persons, n_items)
        Response matrix with missing data coded as ``missing_code``.
    weights : ndarray of shape (n_persons,), optional
        Sampling weight of each person; defaults to one.
    missing_code : int
        Value used for missing responses; recoded to -1.

    Returns
    -------
    ResponseVectors
        Unique patterns, frequencies, and index mapping.

    Examples
    --------
    >>> import numpy as np
    >>> from mmle.utils.collapse import collapse_patterns
    >>> data = np.array([[1, 0, 1], [0, 1, 0], [1, 0, 1], [1, 0, 1]])
    >>> collapsed = collapse_patterns(data)
    >>> print(f"Compressed {collapsed.n_persons} to {collapsed.n_patterns} patterns")
    Compressed 4 to 2 patterns
    >>> print(collapsed.frequencies)
    [1. 3.]
    """
    responses = np.ascontiguousarray(responses, dtype=np.int_)
    if responses.ndim != 2:
        raise ValueError(f"responses must be 2D, got {responses.ndim}D")
    n_persons, n_items = responses.shape
    if missing_code != -1:
        responses = np.where(responses == missing_code, -1, responses)
    if np.any(responses < -1):
        raise ValueError("responses must be category codes >= 0 or missing")

    if weights is None:
        weights = np.ones(n_persons)
    else:
        weights = np.asarray(weights, dtype=np.float64).ravel()
        if weights.size != n_persons:
            raise ValueError(
                f"weights has {weights.size} entries, expected {n_persons}"
            )
        if np.any(weights < 0):
            raise ValueError("weights must be non-negative")

    patterns_view = responses.view(dtype=f"S{responses.itemsize * n_items}")
    patterns_flat = patterns_view.ravel()

    unique_patterns, first, indices = np.unique(
        patterns_flat,
        return_index=True,
        return_inverse=True,
    )
    indices = indices.ravel()

    patterns = responses[first]
    frequencies = np.bincount(indices, weights=weights, minlength=len(unique_patterns))

    return ResponseVectors(
        patterns=patterns,
        frequencies=frequencies,
        indices=indices,
        n_persons=n_persons,
    )
