"""Tests for the EM driver and the estimator front end."""

import logging
import re
import warnings

import numpy as np
import pytest
from numpy.testing import assert_allclose

from mmle.estimation.em import (
    ConvergenceWarning,
    EMEstimator,
    EMStatusEvent,
    LatentDensityEstimation,
    MarginalMaximumLikelihood,
)
from mmle.estimation.parallel import ForkJoinPool
from mmle.estimation.priors import BetaPrior, LogNormalPrior
from mmle.estimation.quadrature import NormalQuadrature
from mmle.models import GradedResponseModel, ThreeParameterLogistic, TwoParameterLogistic
from mmle.results.fit_result import FitResult
from mmle.utils.collapse import collapse_patterns
from mmle.utils.simulation import make_items, simulate_responses


class TestRecovery:
    def test_2pl_parameter_recovery(self, two_pl_responses, true_2pl_parameters, starting_items):
        discrimination, difficulty = true_2pl_parameters
        items = starting_items(10)
        data = collapse_patterns(two_pl_responses)
        mml = MarginalMaximumLikelihood(items, data, NormalQuadrature(41, -4.0, 4.0))

        summary = mml.estimate_parameters(tol=1e-4, max_iter=200)

        estimates = np.array(mml.item_parameters)
        assert np.corrcoef(estimates[:, 0], discrimination)[0, 1] > 0.95
        assert np.corrcoef(estimates[:, 1], difficulty)[0, 1] > 0.95

        history = np.array(mml.log_likelihood_history)
        assert history.size == summary.n_iterations
        assert np.all(np.diff(history) >= -1e-6 * np.abs(history[1:]))
        assert_allclose(summary.marginal_log_likelihood, history[-1])
        assert_allclose(summary.log_likelihood, summary.marginal_log_likelihood)

    def test_standard_errors(self, two_pl_responses, starting_items):
        items = starting_items(10)
        mml = MarginalMaximumLikelihood(
            items, collapse_patterns(two_pl_responses), NormalQuadrature(41)
        )
        mml.estimate_parameters(tol=1e-3, max_iter=200)
        ses = mml.compute_item_standard_errors()
        assert len(ses) == 10
        for item, se in zip(items, ses):
            assert np.all(np.isfinite(se))
            assert np.all((se > 0) & (se < 0.5))
            assert_allclose(item.standard_errors, se)


class TestIterationControl:
    def test_status_events(self, small_dataset, quadrature, starting_items):
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quadrature)
        events: list[EMStatusEvent] = []
        mml.add_status_listener(events.append)
        summary = mml.estimate_parameters(tol=1e-3, max_iter=100)

        assert [e.iteration for e in events] == list(range(1, summary.n_iterations + 1))
        assert all(re.fullmatch(r"\[\d+ \d+ \d+ \d+\]", e.code_summary) for e in events)
        assert events[-1].delta == summary.delta
        assert events[-1].log_likelihood == summary.log_likelihood

    def test_remove_listener(self, small_dataset, quadrature, starting_items):
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quadrature)
        events = []
        mml.add_status_listener(events.append)
        mml.remove_status_listener(events.append)
        mml.estimate_parameters(tol=1e-2, max_iter=3)
        assert events == []

    def test_convergence_warning(self, small_dataset, quadrature, starting_items, caplog):
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quadrature)
        with caplog.at_level(logging.WARNING, logger="mmle"):
            with pytest.warns(ConvergenceWarning, match="did not converge in 2 iterations"):
                summary = mml.estimate_parameters(tol=1e-6, max_iter=2)
        assert not summary.converged
        assert summary.n_iterations == 2
        assert "did not converge" in caplog.text

    def test_complete_data_log_likelihood(self, small_dataset, quadrature, starting_items):
        items = starting_items(5)
        for item in items:
            item.set_prior("discrimination", LogNormalPrior(0.0, 0.5))
        mml = MarginalMaximumLikelihood(items, small_dataset, quadrature)
        with pytest.raises(RuntimeError, match="has not been run"):
            mml.complete_data_log_likelihood()
        events: list[EMStatusEvent] = []
        mml.add_status_listener(events.append)
        summary = mml.estimate_parameters(tol=1e-3, max_iter=50)
        expected = mml.accumulator.log_likelihood + sum(item.log_prior() for item in items)
        assert_allclose(mml.complete_data_log_likelihood(), expected)
        assert_allclose(summary.log_likelihood, expected)
        assert_allclose(events[-1].log_likelihood, expected)
        assert_allclose(summary.marginal_log_likelihood, mml.accumulator.log_likelihood)
        assert summary.log_likelihood != summary.marginal_log_likelihood

    def test_fixed_item_unchanged(self, small_dataset, quadrature, starting_items):
        items = starting_items(5)
        items[0] = TwoParameterLogistic(1.0, -1.0, fixed=True)
        mml = MarginalMaximumLikelihood(items, small_dataset, quadrature)
        mml.estimate_parameters(tol=1e-3, max_iter=50)
        assert_allclose(items[0].get_item_parameter_array(), [1.0, -1.0])

    def test_caller_owned_pool(self, small_dataset, quadrature, starting_items):
        with ForkJoinPool(3) as pool:
            mml = MarginalMaximumLikelihood(
                starting_items(5), small_dataset, quadrature, pool=pool,
                estep_threshold=4, mstep_threshold=1,
            )
            mml.estimate_parameters(tol=1e-3, max_iter=50)
            assert pool.fork(sum, [1, 2]).join() == 3

    def test_parallel_matches_sequential(self, small_dataset, starting_items):
        sequential = MarginalMaximumLikelihood(
            starting_items(5), small_dataset, NormalQuadrature(41), n_workers=1
        )
        sequential.estimate_parameters(tol=1e-4, max_iter=100)
        parallel = MarginalMaximumLikelihood(
            starting_items(5), small_dataset, NormalQuadrature(41), n_workers=4,
            estep_threshold=2, mstep_threshold=1,
        )
        parallel.estimate_parameters(tol=1e-4, max_iter=100)
        for a, b in zip(sequential.item_parameters, parallel.item_parameters):
            assert_allclose(a, b, atol=1e-3)

    def test_invalid_arguments(self, small_dataset, quadrature, starting_items):
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quadrature)
        with pytest.raises(ValueError, match="max_iter must be at least 1"):
            mml.estimate_parameters(max_iter=0)

    def test_negative_tol_runs_all_iterations(self, small_dataset, quadrature, starting_items):
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quadrature)
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            summary = mml.estimate_parameters(tol=-1.0, max_iter=4)
        assert summary.n_iterations == 4
        assert not summary.converged

    def test_history_reset_between_runs(self, small_dataset, quadrature, starting_items):
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quadrature)
        mml.estimate_parameters(tol=-1.0, max_iter=3)
        summary = mml.estimate_parameters(tol=-1.0, max_iter=2)
        history = mml.log_likelihood_history
        assert len(history) == 2
        assert_allclose(history[-1], summary.marginal_log_likelihood)


class TestDataValidation:
    def test_no_usable_data(self, quadrature, starting_items):
        data = collapse_patterns(np.full((20, 3), -1))
        with pytest.raises(ValueError, match="no usable data"):
            MarginalMaximumLikelihood(starting_items(3), data, quadrature)

    def test_zero_weights(self, quadrature, starting_items):
        data = collapse_patterns(np.ones((5, 3), dtype=int), weights=np.zeros(5))
        with pytest.raises(ValueError, match="no usable data"):
            MarginalMaximumLikelihood(starting_items(3), data, quadrature)

    def test_category_out_of_range(self, quadrature, starting_items):
        data = collapse_patterns(np.array([[0, 1, 2], [1, 1, 0]]))
        with pytest.raises(ValueError, match="response codes outside 0..1"):
            MarginalMaximumLikelihood(starting_items(3), data, quadrature)

    def test_item_count_mismatch(self, small_dataset, quadrature, starting_items):
        with pytest.raises(ValueError, match="expected 4"):
            MarginalMaximumLikelihood(starting_items(4), small_dataset, quadrature)


class TestLatentDensity:
    def test_coerce(self):
        assert LatentDensityEstimation.coerce(False) is LatentDensityEstimation.FIXED
        assert LatentDensityEstimation.coerce(True) is LatentDensityEstimation.EMPIRICAL_HISTOGRAM
        assert (
            LatentDensityEstimation.coerce("empirical_standardized")
            is LatentDensityEstimation.EMPIRICAL_HISTOGRAM_STANDARDIZED
        )
        with pytest.raises(ValueError, match="Unknown latent density"):
            LatentDensityEstimation.coerce("davidian")

    def test_fixed_density_unchanged(self, small_dataset, starting_items):
        quad = NormalQuadrature(41)
        before = quad.densities
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quad)
        mml.estimate_parameters(tol=1e-3, max_iter=20)
        assert_allclose(mml.latent_distribution.densities, before)

    def test_empirical_histogram(self, small_dataset, starting_items):
        quad = NormalQuadrature(41)
        before = quad.densities
        mml = MarginalMaximumLikelihood(starting_items(5), small_dataset, quad)
        mml.estimate_parameters(tol=1e-3, max_iter=20, latent_density=True)
        after = mml.latent_distribution.densities
        assert_allclose(after.sum(), 1.0)
        assert not np.allclose(after, before)
        assert_allclose(after, mml.accumulator.expected_count / mml.accumulator.total_count)

    def test_empirical_histogram_standardized(self, two_pl_responses, starting_items):
        quad = NormalQuadrature(41)
        mml = MarginalMaximumLikelihood(
            starting_items(10), collapse_patterns(two_pl_responses), quad
        )
        mml.estimate_parameters(
            tol=1e-3,
            max_iter=30,
            latent_density=LatentDensityEstimation.EMPIRICAL_HISTOGRAM_STANDARDIZED,
        )
        assert_allclose(quad.mean(), 0.0, atol=0.05)
        assert_allclose(quad.std(), 1.0, atol=0.05)


class TestOtherModels:
    def test_3pl_with_priors(self, rng, quadrature):
        truth = [ThreeParameterLogistic(1.5, b, 0.2) for b in np.linspace(-1, 1.5, 6)]
        responses = simulate_responses(truth, rng.standard_normal(1500), rng=rng)
        items = []
        for j in range(6):
            item = ThreeParameterLogistic(1.0, 0.0, 0.2, name=f"Item_{j}")
            item.set_prior("discrimination", LogNormalPrior(0.0, 0.5))
            item.set_prior("guessing", BetaPrior(5, 17))
            items.append(item)
        mml = MarginalMaximumLikelihood(items, collapse_patterns(responses), quadrature)
        mml.estimate_parameters(tol=1e-3, max_iter=100)
        for item in items:
            assert 0.001 <= item.parameters["guessing"] <= 1.0
            assert item.parameters["discrimination"] > 0

    @pytest.mark.parametrize("method", ["dogleg", "hook"])
    def test_3pl_trust_region_methods(self, rng, quadrature, method):
        truth = make_items("3PL", n_items=8, rng=rng)
        responses = simulate_responses(truth, rng.standard_normal(800), rng=rng)
        items = [ThreeParameterLogistic(1.0, 0.0, 0.2) for _ in range(8)]
        mml = MarginalMaximumLikelihood(
            items, collapse_patterns(responses), quadrature, method=method
        )
        summary = mml.estimate_parameters(tol=-1.0, max_iter=15)
        assert summary.n_iterations == 15
        assert np.isfinite(summary.log_likelihood)
        for item in items:
            assert np.all(np.isfinite(item.get_item_parameter_array()))
            assert 0.001 <= item.parameters["guessing"] <= 1.0

    def test_graded_response(self, rng, quadrature):
        truth = [GradedResponseModel(1.3, [-1.0, 0.0, 1.0]) for _ in range(5)]
        responses = simulate_responses(truth, rng.standard_normal(1000), rng=rng)
        items = [GradedResponseModel(1.0, [-0.5, 0.0, 0.5]) for _ in range(5)]
        mml = MarginalMaximumLikelihood(items, collapse_patterns(responses), quadrature)
        summary = mml.estimate_parameters(tol=1e-3, max_iter=200)
        assert summary.converged
        for item in items:
            assert np.all(np.diff(item.locations) > 0)
            assert_allclose(item.locations, [-1.0, 0.0, 1.0], atol=0.35)


class TestEMEstimator:
    def test_fit_returns_result(self, two_pl_responses, starting_items):
        items = starting_items(10)
        estimator = EMEstimator(n_quadpts=41, tol=1e-3, max_iter=200)
        result = estimator.fit(items, two_pl_responses)

        assert isinstance(result, FitResult)
        assert result.converged
        assert result.n_parameters == 20
        assert result.n_observations == 3000
        assert_allclose(result.aic, -2 * result.log_likelihood + 40)
        assert_allclose(
            result.bic, -2 * result.log_likelihood + 20 * np.log(3000)
        )
        assert len(estimator.convergence_history) == result.n_iterations

        coef = result.coef()
        assert coef.shape == (10, 2)
        assert list(coef.columns) == ["discrimination", "difficulty"]
        assert coef.index.name == "item"
        assert "difficulty_se" in result.coef_with_se().columns

        summary = result.summary()
        assert "Item_0" in summary
        assert "Log-Likelihood" in summary
        stats = result.fit_statistics()
        assert stats["n_iterations"] == result.n_iterations

    def test_verbose_logs(self, starting_items, caplog, rng):
        responses = simulate_responses(
            [TwoParameterLogistic(1.0, b) for b in (-1.0, 0.0, 1.0)],
            rng.standard_normal(200),
            rng=rng,
        )
        estimator = EMEstimator(verbose=True, max_iter=3, compute_standard_errors=False)
        with caplog.at_level(logging.INFO, logger="mmle"):
            with pytest.warns(ConvergenceWarning):
                result = estimator.fit(starting_items(3), responses)
        assert "Iteration    1: LL =" in caplog.text
        assert np.all(np.isnan(result.standard_errors[0]))

    def test_weights(self, rng, starting_items):
        responses = simulate_responses(
            [TwoParameterLogistic(1.0, b) for b in (-1.0, 0.0, 1.0)],
            rng.standard_normal(300),
            rng=rng,
        )
        result = EMEstimator(tol=1e-3, compute_standard_errors=False).fit(
            starting_items(3), responses, weights=np.full(300, 2.0)
        )
        assert result.n_observations == 300

    def test_invalid_settings(self):
        with pytest.raises(ValueError, match="n_quadpts should be at least 5"):
            EMEstimator(n_quadpts=3)
        with pytest.raises(ValueError, match="max_iter must be at least 1"):
            EMEstimator(max_iter=0)
        with pytest.raises(ValueError, match="Unknown latent density"):
            EMEstimator(latent_density="mixture")
        with pytest.raises(ValueError, match="theta_range must be increasing"):
            EMEstimator(theta_range=(2.0, -2.0))

    def test_response_shape(self, starting_items):
        with pytest.raises(ValueError, match="responses has 2 items, expected 3"):
            EMEstimator().fit(starting_items(3), np.zeros((10, 2), dtype=int))

    def test_repr(self):
        assert repr(EMEstimator(max_iter=10, tol=0.01)) == "EMEstimator(max_iter=10, tol=0.01)"
