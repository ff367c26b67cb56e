"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from mmle.estimation.quadrature import NormalQuadrature
from mmle.models.dichotomous import TwoParameterLogistic
from mmle.utils.collapse import collapse_patterns
from mmle.utils.simulation import simulate_responses


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def true_2pl_parameters():
    """Generating parameters for a 10-item 2PL test."""
    discrimination = np.array([0.6, 1.0, 1.4, 1.9, 0.8, 1.2, 1.6, 0.5, 1.8, 1.1])
    difficulty = np.array([-1.5, -1.0, -0.5, 0.0, 0.3, 0.6, 1.0, 1.4, -0.2, 0.8])
    return discrimination, difficulty


@pytest.fixture
def two_pl_responses(rng, true_2pl_parameters):
    """2PL responses of 3000 standard normal examinees."""
    discrimination, difficulty = true_2pl_parameters
    items = [
        TwoParameterLogistic(a, b, name=f"Item_{j}")
        for j, (a, b) in enumerate(zip(discrimination, difficulty))
    ]
    theta = rng.standard_normal(3000)
    return simulate_responses(items, theta, rng=rng)


@pytest.fixture
def small_dataset(rng):
    """Collapsed 2PL data for 5 items and 400 examinees."""
    items = [
        TwoParameterLogistic(a, b)
        for a, b in zip([1.0, 1.3, 0.8, 1.6, 1.1], [-1.0, -0.3, 0.0, 0.4, 1.2])
    ]
    theta = rng.standard_normal(400)
    responses = simulate_responses(items, theta, rng=rng)
    return collapse_patterns(responses)


@pytest.fixture
def quadrature():
    """Standard normal quadrature with 41 points on [-4, 4]."""
    return NormalQuadrature(41, -4.0, 4.0)


@pytest.fixture
def starting_items():
    """Factory for fresh 2PL items at common starting values."""

    def make(n_items, discrimination=1.0, difficulty=0.0):
        return [
            TwoParameterLogistic(discrimination, difficulty, name=f"Item_{j}")
            for j in range(n_items)
        ]

    return make
