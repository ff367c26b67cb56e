"""Tests for the quasi-Newton optimizer."""

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from mmle.optimize import (
    FunctionObjective,
    GlobalStrategy,
    GradientCheckError,
    HessianCheckError,
    InvalidInputError,
    OptimizerError,
    TerminationCode,
    UncminOptimizer,
)
from mmle.optimize.finite_difference import (
    central_gradient,
    forward_gradient,
    hessian_from_gradient,
    hessian_from_values,
)
from mmle.optimize.linalg import cholesky_solve, perturbed_cholesky

METHODS = ["line_search", "dogleg", "hook"]

A = np.array([[4.0, 1.0, 0.0], [1.0, 3.0, 0.5], [0.0, 0.5, 2.0]])
CENTER = np.array([1.0, -2.0, 0.5])


def quadratic():
    return FunctionObjective(
        lambda x: float((x - CENTER) @ A @ (x - CENTER)),
        jac=lambda x: 2.0 * A @ (x - CENTER),
        hess=lambda x: 2.0 * A,
    )


def rosenbrock():
    def fun(x):
        return float(100.0 * (x[1] - x[0] ** 2) ** 2 + (1.0 - x[0]) ** 2)

    def jac(x):
        return np.array(
            [
                -400.0 * x[0] * (x[1] - x[0] ** 2) - 2.0 * (1.0 - x[0]),
                200.0 * (x[1] - x[0] ** 2),
            ]
        )

    return FunctionObjective(fun, jac=jac)


class TestQuadratic:
    @pytest.mark.parametrize("method", METHODS)
    def test_newton_converges_optimal(self, method):
        optimizer = UncminOptimizer(method=method, expensive=False)
        result = optimizer.minimize(
            quadratic(), np.zeros(3), analytic_gradient=True, analytic_hessian=True
        )
        assert result.termination == TerminationCode.OPTIMAL
        assert result.success
        assert_allclose(result.x, CENTER, atol=1e-6)

    @pytest.mark.parametrize("method", METHODS)
    def test_secant_converges(self, method):
        optimizer = UncminOptimizer(method=method, expensive=True)
        result = optimizer.minimize(quadratic(), np.zeros(3), analytic_gradient=True)
        assert result.success
        assert_allclose(result.x, CENTER, atol=1e-4)
        assert result.fun < 1e-8

    @pytest.mark.parametrize("method", METHODS)
    def test_finite_difference_gradient(self, method):
        objective = FunctionObjective(lambda x: float((x - CENTER) @ A @ (x - CENTER)))
        result = UncminOptimizer(method=method).minimize(objective, np.zeros(3))
        assert result.success
        assert_allclose(result.x, CENTER, atol=1e-4)

    def test_start_at_minimum(self):
        result = UncminOptimizer().minimize(
            quadratic(), CENTER.copy(), analytic_gradient=True
        )
        assert result.termination == TerminationCode.GRADIENT_SMALL
        assert result.n_iterations == 0
        assert_allclose(result.x, CENTER)

    def test_x0_not_modified(self):
        x0 = np.zeros(3)
        UncminOptimizer().minimize(quadratic(), x0, analytic_gradient=True)
        assert_allclose(x0, 0.0)

    def test_optimizer_reusable(self):
        optimizer = UncminOptimizer()
        first = optimizer.minimize(quadratic(), np.zeros(3), analytic_gradient=True)
        second = optimizer.minimize(quadratic(), np.ones(3), analytic_gradient=True)
        assert_allclose(first.x, second.x, atol=1e-4)


class TestRosenbrock:
    @pytest.mark.parametrize("method", METHODS)
    def test_solved(self, method):
        optimizer = UncminOptimizer(method=method)
        result = optimizer.minimize(
            rosenbrock(), np.array([-1.2, 1.0]), analytic_gradient=True, max_iter=500
        )
        assert result.success
        assert_allclose(result.x, [1.0, 1.0], atol=1e-3)

    def test_iteration_limit(self):
        result = UncminOptimizer().minimize(
            rosenbrock(), np.array([-1.2, 1.0]), analytic_gradient=True, max_iter=1
        )
        assert result.termination == TerminationCode.ITERATION_LIMIT
        assert not result.success
        assert result.n_iterations == 1


def double_well():
    def fun(x):
        return float((x[0] ** 2 - 1.0) ** 2 + 3.0 * (x[1] - 0.5) ** 2)

    def jac(x):
        return np.array([4.0 * x[0] * (x[0] ** 2 - 1.0), 6.0 * (x[1] - 0.5)])

    def hess(x):
        return np.array([[12.0 * x[0] ** 2 - 4.0, 0.0], [0.0, 6.0]])

    return FunctionObjective(fun, jac=jac, hess=hess)


class TestTerminationPaths:
    @pytest.mark.parametrize("method", METHODS)
    def test_unbounded_linear_takes_max_steps(self, method):
        objective = FunctionObjective(
            lambda x: float(-x[0] - x[1]), jac=lambda x: np.array([-1.0, -1.0])
        )
        result = UncminOptimizer(method=method).minimize(
            objective, np.zeros(2), analytic_gradient=True, max_step=1.0
        )
        assert result.termination == TerminationCode.MAX_STEPS
        assert result.n_iterations == 5
        assert np.all(np.isfinite(result.hessian))
        assert np.all(result.x > 0)

    @pytest.mark.parametrize("method", METHODS)
    def test_ascent_gradient_finds_no_lower_point(self, method):
        objective = FunctionObjective(lambda x: float(x @ x), jac=lambda x: -2.0 * x)
        optimizer = UncminOptimizer(method=method, check_gradient=False)
        result = optimizer.minimize(objective, np.ones(2), analytic_gradient=True)
        assert result.termination == TerminationCode.NO_LOWER_POINT
        assert not result.success
        assert result.n_iterations == 1
        assert_allclose(result.x, [1.0, 1.0])
        assert_allclose(result.fun, 2.0)

    @pytest.mark.parametrize("method", METHODS)
    @pytest.mark.parametrize("expensive", [True, False])
    def test_double_well_from_saddle_region(self, method, expensive):
        optimizer = UncminOptimizer(method=method, expensive=expensive)
        result = optimizer.minimize(
            double_well(), np.array([0.01, 3.0]), analytic_gradient=True, max_iter=500
        )
        assert result.success
        assert_allclose(np.abs(result.x[0]), 1.0, atol=1e-4)
        assert_allclose(result.x[1], 0.5, atol=1e-4)

    @pytest.mark.parametrize("method", METHODS)
    def test_indefinite_starting_hessian(self, method):
        optimizer = UncminOptimizer(method=method, expensive=False)
        objective = double_well()
        x0 = np.array([0.2, -1.0])
        assert np.linalg.eigvalsh(objective.hessian(x0)).min() < 0
        result = optimizer.minimize(
            objective, x0, analytic_gradient=True, analytic_hessian=True
        )
        assert result.success
        assert_allclose(np.abs(result.x[0]), 1.0, atol=1e-5)
        assert_allclose(result.x[1], 0.5, atol=1e-5)

    def test_switches_to_central_differences(self, caplog):
        objective = FunctionObjective(lambda x: float((x[0] - 1.0) ** 2))
        optimizer = UncminOptimizer(n_digits=2)
        with caplog.at_level(logging.DEBUG, logger="mmle.optimize.uncmin"):
            result = optimizer.minimize(objective, np.array([0.97]))
        assert "switching to central differences" in caplog.text
        assert result.success
        assert_allclose(result.x, [1.0], atol=1e-6)


class TestDerivativeChecks:
    def test_wrong_gradient_raises(self):
        objective = FunctionObjective(
            lambda x: float((x - CENTER) @ A @ (x - CENTER)),
            jac=lambda x: 3.0 * A @ (x - CENTER) + 1.0,
        )
        with pytest.raises(GradientCheckError, match="analytic gradient") as exc_info:
            UncminOptimizer().minimize(objective, np.zeros(3), analytic_gradient=True)
        assert exc_info.value.analytic is not None
        assert exc_info.value.estimate is not None

    def test_wrong_gradient_unchecked(self):
        objective = FunctionObjective(
            lambda x: float(x @ x),
            jac=lambda x: 3.0 * x,
        )
        optimizer = UncminOptimizer(check_gradient=False)
        result = optimizer.minimize(objective, np.ones(2), analytic_gradient=True)
        assert isinstance(result.termination, TerminationCode)

    def test_wrong_hessian_raises(self):
        objective = FunctionObjective(
            lambda x: float((x - CENTER) @ A @ (x - CENTER)),
            jac=lambda x: 2.0 * A @ (x - CENTER),
            hess=lambda x: 5.0 * A,
        )
        optimizer = UncminOptimizer(expensive=False)
        with pytest.raises(HessianCheckError):
            optimizer.minimize(
                objective, np.zeros(3), analytic_gradient=True, analytic_hessian=True
            )

    def test_errors_share_base(self):
        assert issubclass(GradientCheckError, OptimizerError)
        assert issubclass(HessianCheckError, OptimizerError)
        assert issubclass(InvalidInputError, ValueError)


class TestInvalidInput:
    def test_empty_x0(self):
        with pytest.raises(InvalidInputError, match="Illegal dimension"):
            UncminOptimizer().minimize(quadratic(), np.array([]))

    def test_negative_iteration_limit(self):
        with pytest.raises(InvalidInputError, match="iteration limit"):
            UncminOptimizer().minimize(quadratic(), np.zeros(3), max_iter=-1)

    def test_zero_digits(self):
        with pytest.raises(InvalidInputError, match="n_digits"):
            UncminOptimizer(n_digits=0).minimize(quadratic(), np.zeros(3))

    def test_negative_tolerance(self):
        with pytest.raises(InvalidInputError, match="gradient_tolerance"):
            UncminOptimizer(gradient_tolerance=-1.0).minimize(quadratic(), np.zeros(3))

    def test_missing_gradient(self):
        objective = FunctionObjective(lambda x: float(x @ x))
        with pytest.raises(InvalidInputError, match="no gradient"):
            UncminOptimizer().minimize(objective, np.ones(2), analytic_gradient=True)

    def test_missing_hessian(self):
        objective = FunctionObjective(lambda x: float(x @ x), jac=lambda x: 2 * x)
        with pytest.raises(InvalidInputError, match="no Hessian"):
            UncminOptimizer(expensive=False).minimize(
                objective, np.ones(2), analytic_gradient=True, analytic_hessian=True
            )

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown method"):
            UncminOptimizer(method="newton")


class TestEnums:
    def test_clean_codes(self):
        clean = [code for code in TerminationCode if code.is_clean]
        assert clean == [
            TerminationCode.OPTIMAL,
            TerminationCode.GRADIENT_SMALL,
            TerminationCode.STEP_SMALL,
        ]

    def test_messages(self):
        assert TerminationCode.ITERATION_LIMIT.message == "Iteration limit exceeded"

    def test_strategy_names(self):
        assert GlobalStrategy.from_name("line_search") is GlobalStrategy.LINE_SEARCH
        assert GlobalStrategy.from_name("dogleg") is GlobalStrategy.DOUBLE_DOGLEG
        assert GlobalStrategy.from_name("hook") is GlobalStrategy.MORE_HEBDON


class TestKernels:
    def test_perturbed_cholesky_positive_definite(self):
        hessian = np.array([[1.0, 2.0], [2.0, 1.0]])
        factor, perturbed, shift = perturbed_cholesky(hessian, np.ones(2))
        assert shift > 0
        assert_allclose(factor @ factor.T, perturbed, atol=1e-10)
        assert np.all(np.linalg.eigvalsh(perturbed) > 0)

    def test_perturbed_cholesky_no_shift(self):
        factor, perturbed, shift = perturbed_cholesky(A, np.ones(3))
        assert shift == 0.0
        assert_allclose(perturbed, A)
        assert_allclose(factor @ factor.T, A, atol=1e-12)

    def test_cholesky_solve(self):
        factor = np.linalg.cholesky(A)
        b = np.array([1.0, 2.0, 3.0])
        assert_allclose(cholesky_solve(factor, b), np.linalg.solve(A, b))

    def test_finite_difference_gradients(self):
        objective = quadratic()
        x = np.array([0.3, -0.7, 1.1])
        fx = objective.value(x)
        eps = np.finfo(np.float64).eps
        exact = objective.gradient(x)
        assert_allclose(forward_gradient(objective.value, x, fx, np.ones(3), eps), exact, rtol=1e-5, atol=1e-6)
        assert_allclose(central_gradient(objective.value, x, np.ones(3), eps), exact, rtol=1e-8, atol=1e-8)

    def test_finite_difference_hessians(self):
        objective = quadratic()
        x = np.array([0.3, -0.7, 1.1])
        eps = np.finfo(np.float64).eps
        from_gradient = hessian_from_gradient(
            objective.gradient, x, objective.gradient(x), np.ones(3), eps
        )
        from_values = hessian_from_values(
            objective.value, x, objective.value(x), np.ones(3), eps
        )
        assert_allclose(from_gradient, 2.0 * A, atol=1e-5)
        assert_allclose(from_values, 2.0 * A, atol=1e-3)
