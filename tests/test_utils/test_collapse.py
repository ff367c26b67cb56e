"""Tests for response pattern collapsing."""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from mmle.utils.collapse import ItemResponseVector, collapse_patterns


class TestCollapsePatterns:
    def test_basic(self):
        data = np.array([[1, 0, 1], [0, 1, 0], [1, 0, 1], [1, 0, 1]])
        collapsed = collapse_patterns(data)
        assert collapsed.n_persons == 4
        assert collapsed.n_patterns == 2
        assert collapsed.n_items == 3
        assert_allclose(collapsed.total_frequency, 4.0)
        assert_allclose(collapsed.compression_ratio, 0.5)

    def test_indices_reconstruct_data(self, rng):
        data = rng.integers(0, 2, size=(200, 4))
        collapsed = collapse_patterns(data)
        assert_array_equal(collapsed.patterns[collapsed.indices], data)
        assert_allclose(
            collapsed.frequencies, np.bincount(collapsed.indices).astype(float)
        )

    def test_weights_summed(self):
        data = np.array([[1, 0], [1, 0], [0, 0]])
        collapsed = collapse_patterns(data, weights=np.array([0.5, 1.5, 2.0]))
        assert_allclose(collapsed.frequencies, [2.0, 2.0])
        assert_allclose(collapsed.total_frequency, 4.0)

    def test_missing_code_recoded(self):
        data = np.array([[9, 1], [0, 9]])
        collapsed = collapse_patterns(data, missing_code=9)
        assert collapsed.patterns.min() == -1
        assert_array_equal(collapsed.patterns[collapsed.indices], [[-1, 1], [0, -1]])

    def test_read_only(self):
        collapsed = collapse_patterns(np.array([[0, 1], [1, 1]]))
        with pytest.raises(ValueError):
            collapsed.frequencies[0] = 5.0
        with pytest.raises(ValueError):
            collapsed.patterns[0, 0] = 1

    def test_expand_scores(self):
        data = np.array([[1, 1], [0, 0], [1, 1]])
        collapsed = collapse_patterns(data)
        scores = collapsed.patterns.sum(axis=1).astype(float)
        assert_allclose(collapsed.expand_scores(scores), [2.0, 0.0, 2.0])

    def test_getitem(self):
        collapsed = collapse_patterns(np.array([[0, 1, 1]]))
        vector = collapsed[0]
        assert isinstance(vector, ItemResponseVector)
        assert len(vector) == 3
        assert vector[2] == 1
        assert vector.frequency == 1.0

    def test_invalid_input(self):
        with pytest.raises(ValueError, match="responses must be 2D"):
            collapse_patterns(np.array([0, 1, 1]))
        with pytest.raises(ValueError, match="category codes"):
            collapse_patterns(np.array([[0, -3]]))
        with pytest.raises(ValueError, match="weights has 1 entries, expected 2"):
            collapse_patterns(np.array([[0], [1]]), weights=np.array([1.0]))
        with pytest.raises(ValueError, match="weights must be non-negative"):
            collapse_patterns(np.array([[0], [1]]), weights=np.array([1.0, -1.0]))
