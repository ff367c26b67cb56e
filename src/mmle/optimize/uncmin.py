"""Unconstrained minimization by quasi-Newton iteration.

Implements the modular driver of Dennis and Schnabel's UNCMIN: a model
Hessian (analytic, finite-difference or BFGS secant), a perturbed
Cholesky factorization that keeps the model convex, and one of three
globalization strategies (line search, double dogleg, More-Hebdon hook).

References
----------
Dennis, J. E. and Schnabel, R. B. (1983). Numerical Methods for
Unconstrained Optimization and Nonlinear Equations. Prentice-Hall.
"""

import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from mmle.constants import OPTIMIZER_MAX_ITER
from mmle.optimize.base import (
    GlobalStrategy,
    ObjectiveFunction,
    OptimizationResult,
    TerminationCode,
)
from mmle.optimize.exceptions import (
    GradientCheckError,
    HessianCheckError,
    InvalidInputError,
)
from mmle.optimize.finite_difference import (
    central_gradient,
    forward_gradient,
    hessian_from_gradient,
    hessian_from_values,
)
from mmle.optimize.globalization import TrustRegion, dogleg, hook, line_search
from mmle.optimize.linalg import (
    EPSILON,
    cholesky_solve,
    perturbed_cholesky,
    secant_update_factored,
    secant_update_unfactored,
)

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_MAX_STEPS = 5
"""Consecutive maximum-length steps tolerated before declaring divergence."""

_ANALYTIC, _FORWARD, _CENTRAL = "analytic", "forward", "central"


class UncminOptimizer:
    """Quasi-Newton minimizer for smooth functions of a few variables.

    The optimizer object only holds settings. Each call to
    :meth:`minimize` has its own state, so one instance may be reused for
    any number of (sequential) minimizations.

    Parameters
    ----------
    method : {'line_search', 'dogleg', 'hook'} or GlobalStrategy, default='line_search'
        Step globalization strategy.
    expensive : bool, default=True
        If True the Hessian is approximated by BFGS secant updates instead
        of being recomputed (analytically or by finite differences) at
        every iterate.
    typical_size : ndarray, optional
        Typical magnitude of each parameter. Defaults to ones.
    function_scale : float, default=1.0
        Typical magnitude of the objective near the minimum.
    gradient_tolerance : float, optional
        Relative gradient stopping tolerance. Defaults to ``eps**(1/3)``.
    step_tolerance : float, optional
        Relative step stopping tolerance. Defaults to ``sqrt(eps)``.
    n_digits : int, default=-1
        Number of good digits in the objective; -1 means full precision.
    trust_radius : float, default=-1.0
        Initial trust radius; -1 derives it from the first Cauchy step.
    check_gradient : bool, default=True
        Compare an analytic gradient with finite differences at the start.
    check_hessian : bool, default=True
        Compare an analytic Hessian with finite differences at the start.

    Examples
    --------
    >>> from mmle.optimize import FunctionObjective
    >>> obj = FunctionObjective(lambda x: float((x - 3) @ (x - 3)),
    ...                         jac=lambda x: 2 * (x - 3))
    >>> result = UncminOptimizer().minimize(obj, np.zeros(2), analytic_gradient=True)
    >>> np.round(result.x, 6)
    array([3., 3.])
    """

    def __init__(
        self,
        method: "str | GlobalStrategy" = "line_search",
        expensive: bool = True,
        typical_size: Optional[NDArray[np.float64]] = None,
        function_scale: float = 1.0,
        gradient_tolerance: Optional[float] = None,
        step_tolerance: Optional[float] = None,
        n_digits: int = -1,
        trust_radius: float = -1.0,
        check_gradient: bool = True,
        check_hessian: bool = True,
    ) -> None:
        self.method = GlobalStrategy.from_name(method)
        self.expensive = expensive
        self.typical_size = typical_size
        self.function_scale = function_scale
        self.gradient_tolerance = (
            EPSILON ** (1.0 / 3.0) if gradient_tolerance is None else gradient_tolerance
        )
        self.step_tolerance = (
            np.sqrt(EPSILON) if step_tolerance is None else step_tolerance
        )
        self.n_digits = n_digits
        self.trust_radius = trust_radius
        self.check_gradient = check_gradient
        self.check_hessian = check_hessian

    def minimize(
        self,
        objective: ObjectiveFunction,
        x0: NDArray[np.float64],
        analytic_gradient: bool = False,
        analytic_hessian: bool = False,
        max_iter: int = OPTIMIZER_MAX_ITER,
        max_step: float = -1.0,
    ) -> OptimizationResult:
        """Minimize ``objective`` starting from ``x0``.

        Parameters
        ----------
        objective : ObjectiveFunction
            Function to minimize.
        x0 : ndarray of shape (n,)
            Starting point. Not modified.
        analytic_gradient : bool, default=False
            Use ``objective.gradient``; otherwise finite differences.
        analytic_hessian : bool, default=False
            Use ``objective.hessian`` when the Hessian is recomputed
            (``expensive=False``).
        max_iter : int, default=150
            Iteration limit.
        max_step : float, default=-1.0
            Maximum scaled step length. Non-positive values select
            ``max(1000 * ||sx * x0||, 1000)``.

        Returns
        -------
        OptimizationResult

        Raises
        ------
        InvalidInputError
            If the inputs are inconsistent.
        GradientCheckError
            If the analytic gradient disagrees with finite differences.
        HessianCheckError
            If the analytic Hessian disagrees with finite differences.
        """
        x = np.array(x0, dtype=np.float64).ravel()
        run = _Run(self, objective, x, analytic_gradient, analytic_hessian, max_iter, max_step)
        return run.execute()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"method={self.method.name.lower()}, "
            f"expensive={self.expensive})"
        )


class _Run:
    """State of one minimization."""

    def __init__(
        self,
        settings: UncminOptimizer,
        objective: ObjectiveFunction,
        x: NDArray[np.float64],
        analytic_gradient: bool,
        analytic_hessian: bool,
        max_iter: int,
        max_step: float,
    ) -> None:
        n = x.size
        if n <= 0:
            raise InvalidInputError(f"Illegal dimension, n = {n}")
        if max_iter < 0:
            raise InvalidInputError(f"Illegal iteration limit, max_iter = {max_iter}")
        if settings.gradient_tolerance < 0:
            raise InvalidInputError("gradient_tolerance must be non-negative")
        if settings.step_tolerance < 0:
            raise InvalidInputError("step_tolerance must be non-negative")
        if settings.n_digits == 0:
            raise InvalidInputError("n_digits must be nonzero")
        if analytic_gradient and not getattr(objective, "has_gradient", True):
            raise InvalidInputError("analytic_gradient requested but objective has no gradient")
        if analytic_hessian and not getattr(objective, "has_hessian", True):
            raise InvalidInputError("analytic_hessian requested but objective has no Hessian")

        typsiz = (
            np.ones(n)
            if settings.typical_size is None
            else np.abs(np.asarray(settings.typical_size, dtype=np.float64).ravel())
        )
        if typsiz.size != n:
            raise InvalidInputError(
                f"typical_size has {typsiz.size} elements, expected {n}"
            )
        typsiz[typsiz == 0.0] = 1.0

        self.objective = objective
        self.method = settings.method
        self.expensive = settings.expensive
        self.x = x
        self.n = n
        self.typsiz = typsiz
        self.sx = 1.0 / typsiz
        self.fscale = abs(settings.function_scale) or 1.0
        self.gradtl = settings.gradient_tolerance
        self.steptl = settings.step_tolerance
        self.itnlim = max_iter
        self.check_gradient = settings.check_gradient
        self.check_hessian = settings.check_hessian
        self.analytic_hessian = analytic_hessian
        self.grad_mode = _ANALYTIC if analytic_gradient else _FORWARD

        if max_step <= 0.0:
            stpsiz = float(np.linalg.norm(self.sx * x))
            max_step = max(1000.0 * stpsiz, 1000.0)
        self.stepmx = max_step

        ndigit = settings.n_digits
        if ndigit < 0:
            ndigit = int(-np.log10(EPSILON))
        self.rnf = max(10.0 ** (-ndigit), EPSILON)
        self.analtl = max(1e-2, np.sqrt(self.rnf))

        radius = settings.trust_radius
        if radius <= 0.0:
            radius = -1.0
        elif radius > self.stepmx:
            radius = self.stepmx
        self.region = TrustRegion(radius=radius)
        self.consecutive_max_steps = 0

    def _value(self, x: NDArray[np.float64]) -> float:
        fx = float(self.objective.value(x))
        return fx if not np.isnan(fx) else np.inf

    def _gradient(self, x: NDArray[np.float64], fx: float) -> NDArray[np.float64]:
        if self.grad_mode == _ANALYTIC:
            return np.asarray(self.objective.gradient(x), dtype=np.float64).ravel()
        if self.grad_mode == _CENTRAL:
            return central_gradient(self._value, x, self.sx, self.rnf)
        return forward_gradient(self._value, x, fx, self.sx, self.rnf)

    def _model_hessian(self, x: NDArray[np.float64], fx: float, gx: NDArray[np.float64]):
        if self.analytic_hessian:
            return np.asarray(self.objective.hessian(x), dtype=np.float64)
        if self.grad_mode == _ANALYTIC:
            return hessian_from_gradient(
                lambda xt: self._gradient(xt, 0.0), x, gx, self.sx, self.rnf
            )
        return hessian_from_values(self._value, x, fx, self.sx, self.rnf)

    def _verify_gradient(self, x: NDArray[np.float64], fx: float, gx: NDArray[np.float64]) -> None:
        estimate = forward_gradient(self._value, x, fx, self.sx, self.rnf)
        gs = max(abs(fx), self.fscale) / np.maximum(np.abs(x), self.typsiz)
        bad = np.abs(gx - estimate) > np.maximum(np.abs(gx), gs) * self.analtl
        if np.any(bad):
            rows = ", ".join(
                f"[{i}] analytic={gx[i]:.6g} estimate={estimate[i]:.6g}"
                for i in np.flatnonzero(bad)
            )
            raise GradientCheckError(
                f"Probable coding error in analytic gradient: {rows}",
                analytic=gx,
                estimate=estimate,
            )

    def _verify_hessian(
        self,
        x: NDArray[np.float64],
        fx: float,
        gx: NDArray[np.float64],
        analytic: NDArray[np.float64],
    ) -> None:
        if self.grad_mode == _ANALYTIC:
            estimate = hessian_from_gradient(
                lambda xt: self._gradient(xt, 0.0), x, gx, self.sx, self.rnf
            )
        else:
            estimate = hessian_from_values(self._value, x, fx, self.sx, self.rnf)

        hs = np.maximum(np.abs(gx), 1.0) / np.maximum(np.abs(x), self.typsiz)
        lower = np.tril(np.ones((self.n, self.n), dtype=bool), -1)
        diag_bad = np.abs(np.diag(analytic) - np.diag(estimate)) > (
            np.maximum(np.abs(np.diag(estimate)), hs) * self.analtl
        )
        off_bad = lower & (
            np.abs(analytic - estimate)
            > np.maximum(np.abs(analytic), hs[None, :]) * self.analtl
        )
        if np.any(diag_bad) or np.any(off_bad):
            raise HessianCheckError(
                "Probable coding error in analytic Hessian",
                analytic=analytic,
                estimate=estimate,
            )

    def _stop(
        self,
        xpls: NDArray[np.float64],
        fpls: float,
        gpls: NDArray[np.float64],
        x: NDArray[np.float64],
        iteration: int,
        step_status: int,
        max_taken: bool,
    ) -> Optional[TerminationCode]:
        if step_status == 1:
            return TerminationCode.NO_LOWER_POINT

        d = max(abs(fpls), self.fscale)
        rgx = float(np.max(np.abs(gpls) * np.maximum(np.abs(xpls), 1.0 / self.sx) / d))
        if rgx <= self.gradtl:
            if iteration == 0:
                return TerminationCode.GRADIENT_SMALL
            return TerminationCode.OPTIMAL

        if iteration == 0:
            return None

        rsx = float(
            np.max(np.abs(xpls - x) / np.maximum(np.abs(xpls), 1.0 / self.sx))
        )
        if rsx <= self.steptl:
            return TerminationCode.STEP_SMALL
        if iteration >= self.itnlim:
            return TerminationCode.ITERATION_LIMIT

        if not max_taken:
            self.consecutive_max_steps = 0
            return None
        self.consecutive_max_steps += 1
        if self.consecutive_max_steps >= MAX_CONSECUTIVE_MAX_STEPS:
            return TerminationCode.MAX_STEPS
        return None

    def _globalize(self, x, f, g, factor, hessian, p, iteration):
        if self.method == GlobalStrategy.LINE_SEARCH:
            return line_search(
                self._value, x, f, g, p, self.sx, self.stepmx, self.steptl
            )
        if self.method == GlobalStrategy.DOUBLE_DOGLEG:
            return dogleg(
                self._value, x, f, g, factor, p, self.sx,
                self.stepmx, self.steptl, self.region,
            )
        return hook(
            self._value, x, f, g, hessian, factor, p, self.sx,
            self.stepmx, self.steptl, self.region, iteration,
        )

    def execute(self) -> OptimizationResult:
        x = self.x
        f = self._value(x)
        g = self._gradient(x, f)

        if self.grad_mode == _ANALYTIC and self.check_gradient:
            self._verify_gradient(x, f, g)

        code = self._stop(x, f, g, x, 0, -1, False)
        if code is not None:
            hessian = np.diag(self.sx * self.sx)
            return OptimizationResult(x, f, g, hessian, code, 0)

        # hessian is the unperturbed model Hessian, factor the Cholesky factor
        # of its perturbed form
        if self.expensive:
            hessian = np.diag(self.sx * self.sx)
            factor = np.diag(self.sx)
        else:
            hessian = self._model_hessian(x, f, g)
            if self.analytic_hessian and self.check_hessian:
                self._verify_hessian(x, f, g, hessian)
            factor = None
        first_update = True

        iteration = 0
        while True:
            iteration += 1

            if not self.expensive or self.method == GlobalStrategy.MORE_HEBDON:
                factor, _, shift = perturbed_cholesky(hessian, self.sx)
                if shift > 0.0:
                    logger.debug("Iteration %d: Hessian perturbed by %.3g", iteration, shift)

            p = cholesky_solve(factor, -g)
            saved = self.region.save()
            step = self._globalize(x, f, g, factor, hessian, p, iteration)

            if step.status == 1 and self.grad_mode == _FORWARD:
                logger.debug(
                    "Iteration %d: step failed, switching to central differences",
                    iteration,
                )
                self.grad_mode = _CENTRAL
                g = self._gradient(x, f)
                self.region.restore(saved)
                p = cholesky_solve(factor, -g)
                step = self._globalize(x, f, g, factor, hessian, p, iteration)

            xpls, fpls = step.xpls, step.fpls
            gpls = self._gradient(xpls, fpls)

            code = self._stop(
                xpls, fpls, gpls, x, iteration, step.status, step.max_step_taken
            )
            logger.debug(
                "Iteration %d: f = %.10g, |g| = %.3g", iteration, fpls, np.max(np.abs(gpls))
            )
            if code is not None:
                if code == TerminationCode.NO_LOWER_POINT:
                    xpls, fpls, gpls = x, f, g
                if factor is not None and self.method != GlobalStrategy.MORE_HEBDON and self.expensive:
                    hessian = factor @ factor.T
                return OptimizationResult(xpls, fpls, gpls, hessian, code, iteration)

            if self.expensive:
                s = xpls - x
                y = gpls - g
                analytic = self.grad_mode == _ANALYTIC
                if self.method == GlobalStrategy.MORE_HEBDON:
                    hessian, first_update = secant_update_unfactored(
                        hessian, s, y, g, gpls, self.rnf, analytic, first_update
                    )
                else:
                    factor, first_update = secant_update_factored(
                        factor, s, y, g, gpls, self.rnf, analytic, first_update
                    )
            else:
                hessian = self._model_hessian(xpls, fpls, gpls)

            x, f, g = xpls, fpls, gpls
