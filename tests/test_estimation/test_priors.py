"""Tests for item parameter priors."""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from mmle.estimation.priors import BetaPrior, LogNormalPrior, NormalPrior


def numeric_derivative(prior, x, h=1e-6):
    return (prior.log_density(x + h) - prior.log_density(x - h)) / (2 * h)


class TestNormalPrior:
    def test_default_parameters(self):
        prior = NormalPrior()
        assert prior.mu == 0.0
        assert prior.sigma == 1.0

    def test_invalid_sigma(self):
        with pytest.raises(ValueError, match="sigma must be positive"):
            NormalPrior(sigma=0)
        with pytest.raises(ValueError, match="sigma must be positive"):
            NormalPrior(sigma=-1)

    def test_log_density_values(self):
        prior = NormalPrior(mu=2.0, sigma=0.5)
        for x in (1.5, 2.0, 2.5):
            assert_allclose(prior.log_density(x), stats.norm(2.0, 0.5).logpdf(x))

    def test_derivative(self):
        prior = NormalPrior(mu=1.0, sigma=2.0)
        for x in (-1.0, 0.3, 4.0):
            assert_allclose(prior.log_density_deriv1(x), numeric_derivative(prior, x), rtol=1e-6)

    def test_support_unbounded(self):
        prior = NormalPrior()
        assert not prior.zero_density(-100.0)
        assert prior.nearest_nonzero(-100.0) == -100.0

    def test_repr(self):
        assert repr(NormalPrior(mu=1.0, sigma=2.0)) == "NormalPrior(mu=1.0, sigma=2.0)"


class TestLogNormalPrior:
    def test_log_density_values(self):
        prior = LogNormalPrior(mu=0.0, sigma=0.5)
        expected = stats.lognorm(s=0.5, scale=1.0).logpdf(1.3)
        assert_allclose(prior.log_density(1.3), expected)

    def test_zero_density(self):
        prior = LogNormalPrior()
        assert prior.zero_density(0.0)
        assert prior.zero_density(-1.0)
        assert prior.log_density(-1.0) == -np.inf
        assert prior.density(-1.0) == 0.0

    def test_nearest_nonzero(self):
        prior = LogNormalPrior()
        assert_allclose(prior.nearest_nonzero(-0.5), 0.001)
        assert prior.nearest_nonzero(1.5) == 1.5

    def test_derivative(self):
        prior = LogNormalPrior(mu=0.2, sigma=0.4)
        for x in (0.5, 1.0, 2.5):
            assert_allclose(prior.log_density_deriv1(x), numeric_derivative(prior, x), rtol=1e-6)

    def test_invalid_sigma(self):
        with pytest.raises(ValueError, match="sigma must be positive"):
            LogNormalPrior(sigma=0)


class TestBetaPrior:
    def test_invalid_shape(self):
        with pytest.raises(ValueError, match="alpha and beta must be positive"):
            BetaPrior(alpha=0, beta=1)

    def test_invalid_bounds(self):
        with pytest.raises(ValueError, match="upper must be greater than lower"):
            BetaPrior(lower=1.0, upper=0.5)

    def test_log_density_values(self):
        prior = BetaPrior(alpha=3, beta=7)
        assert_allclose(prior.log_density(0.2), stats.beta(3, 7).logpdf(0.2))

    def test_four_parameter(self):
        prior = BetaPrior(alpha=2, beta=2, lower=0.5, upper=1.0)
        assert prior.zero_density(0.4)
        assert_allclose(
            prior.log_density(0.8), stats.beta(2, 2, loc=0.5, scale=0.5).logpdf(0.8)
        )

    def test_derivative(self):
        prior = BetaPrior(alpha=3, beta=7)
        for x in (0.1, 0.3, 0.6):
            assert_allclose(prior.log_density_deriv1(x), numeric_derivative(prior, x), rtol=1e-5)

    def test_nearest_nonzero(self):
        prior = BetaPrior(alpha=2, beta=5)
        assert_allclose(prior.nearest_nonzero(0.0), 0.001)
        assert_allclose(prior.nearest_nonzero(1.2), 0.999)
        assert prior.nearest_nonzero(0.3) == 0.3

    def test_repr(self):
        assert repr(BetaPrior(alpha=3, beta=7)) == "BetaPrior(alpha=3, beta=7)"
