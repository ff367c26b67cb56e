"""Marginal maximum likelihood estimation of item parameters via EM."""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Sequence
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

import numpy as np
from numpy.typing import NDArray

from mmle.constants import (
    ESTEP_THRESHOLD,
    MSTEP_THRESHOLD,
    OPTIMIZER_MAX_ITER,
    OPTIMIZER_MAX_STEP,
)
from mmle.estimation.accumulator import EStepAccumulator
from mmle.estimation.base import BaseEstimator
from mmle.estimation.estep import EStep
from mmle.estimation.mstep import DiagnosticCounts, MStep
from mmle.estimation.objective import ItemLogLikelihood
from mmle.estimation.parallel import ForkJoinPool
from mmle.estimation.quadrature import NormalQuadrature, QuadratureRule
from mmle.models.base import ItemResponseModel
from mmle.typing import GlobalStrategyType, LatentDensityType
from mmle.utils.collapse import ResponseVectors, collapse_patterns

if TYPE_CHECKING:
    from mmle.results.fit_result import FitResult
    from mmle.results.score_result import ScoreResult

logger = logging.getLogger(__name__)


class ConvergenceWarning(UserWarning):
    """EM stopped at the iteration limit before the change fell below tol."""


class LatentDensityEstimation(Enum):
    """How the quadrature densities are treated between EM iterations."""

    FIXED = "fixed"
    EMPIRICAL_HISTOGRAM = "empirical"
    EMPIRICAL_HISTOGRAM_STANDARDIZED = "empirical_standardized"

    @classmethod
    def coerce(
        cls, value: Union[bool, str, "LatentDensityEstimation"]
    ) -> "LatentDensityEstimation":
        """Accept an enum member, its string value, or a bool.

        ``False`` means fixed and ``True`` means an unstandardized
        empirical histogram.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.EMPIRICAL_HISTOGRAM if value else cls.FIXED
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(
                f"Unknown latent density '{value}'. Valid: {valid}"
            ) from None


@dataclass(frozen=True)
class EMStatusEvent:
    """Progress of one EM iteration, sent to status listeners.

    Attributes
    ----------
    iteration : int
        1-based iteration number.
    delta : float
        Largest parameter change accepted in this iteration.
    log_likelihood : float
        Complete-data log-likelihood: this iteration's E-step marginal
        log-likelihood plus the item log priors at the accepted values.
    code_summary : str
        M-step diagnostic counts formatted as ``"[a b c d]"``.
    """

    iteration: int
    delta: float
    log_likelihood: float
    code_summary: str

    def __str__(self) -> str:
        return (
            f"Iteration {self.iteration:4d}: LL = {self.log_likelihood:.4f}, "
            f"delta = {self.delta:.6g} {self.code_summary}"
        )


@dataclass(frozen=True)
class EMSummary:
    """Outcome of :meth:`MarginalMaximumLikelihood.estimate_parameters`.

    ``log_likelihood`` includes the item priors; ``marginal_log_likelihood``
    is the last E-step value alone and is the one used for AIC and BIC.
    """

    n_iterations: int
    delta: float
    log_likelihood: float
    converged: bool
    marginal_log_likelihood: float


StatusListener = Callable[[EMStatusEvent], None]


class MarginalMaximumLikelihood:
    """EM driver for item parameter estimation.

    Each iteration runs the E-step on the items' active parameters, the
    M-step which stages new values in every item's proposal, then accepts
    all proposals. Optionally the latent density is re-estimated from the
    expected counts.

    Parameters
    ----------
    items : sequence of ItemResponseModel
        Item models, in the column order of ``data``. Their parameters are
        updated in place.
    data : ResponseVectors
        Collapsed response patterns (see :func:`collapse_patterns`).
    quadrature : QuadratureRule
        Latent distribution approximation. It is modified in place when
        the latent density is estimated.
    pool : ForkJoinPool, optional
        Caller-owned pool. When omitted a pool with ``n_workers`` threads
        is created for each :meth:`estimate_parameters` call.
    n_workers : int, optional
        Worker count of the internally created pool.
    estep_threshold : int, default=250
        Response-vector partition size below which the E-step stops
        splitting.
    mstep_threshold : int, default=100
        Item partition size at or below which the M-step stops splitting.
    method : {'line_search', 'dogleg', 'hook'}, default='line_search'
        Globalization strategy of the item optimizer.
    optimizer_max_iter : int, default=150
        Iteration limit per item optimization.
    max_step : float, default=2.0
        Maximum step of the item optimizer.

    Raises
    ------
    ValueError
        If ``data`` does not match the items, contains a category code an
        item cannot produce, or holds no usable data.

    Examples
    --------
    >>> data = collapse_patterns(responses)
    >>> mml = MarginalMaximumLikelihood(items, data, NormalQuadrature(41))
    >>> summary = mml.estimate_parameters(tol=1e-4, max_iter=200)
    """

    def __init__(
        self,
        items: Sequence[ItemResponseModel],
        data: ResponseVectors,
        quadrature: QuadratureRule,
        pool: Optional[ForkJoinPool] = None,
        n_workers: Optional[int] = None,
        estep_threshold: int = ESTEP_THRESHOLD,
        mstep_threshold: int = MSTEP_THRESHOLD,
        method: GlobalStrategyType = "line_search",
        optimizer_max_iter: int = OPTIMIZER_MAX_ITER,
        max_step: float = OPTIMIZER_MAX_STEP,
    ) -> None:
        items = list(items)
        if not items:
            raise ValueError("at least one item is required")
        if data.n_items != len(items):
            raise ValueError(
                f"responses has {data.n_items} items, expected {len(items)}"
            )
        for j, item in enumerate(items):
            if data.patterns.shape[0] and data.patterns[:, j].max() >= item.n_categories:
                raise ValueError(
                    f"item {j} ({item.name}) has response codes outside "
                    f"0..{item.n_categories - 1}"
                )
        answered = np.any(data.patterns >= 0, axis=1)
        if data.total_frequency <= 0 or not np.any(data.frequencies[answered] > 0):
            raise ValueError("no usable data")
        if estep_threshold < 1 or mstep_threshold < 1:
            raise ValueError("thresholds must be at least 1")

        self.items = items
        self.data = data
        self.quadrature = quadrature
        self.n_workers = n_workers
        self.estep_threshold = estep_threshold
        self.mstep_threshold = mstep_threshold
        self.method = method
        self.optimizer_max_iter = optimizer_max_iter
        self.max_step = max_step

        self._pool = pool
        self._listeners: list[StatusListener] = []
        self._accumulator: Optional[EStepAccumulator] = None
        self._diagnostics = DiagnosticCounts()
        self._log_likelihood_history: list[float] = []

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        self._listeners.remove(listener)

    @property
    def item_parameters(self) -> list[NDArray[np.float64]]:
        return [item.get_item_parameter_array() for item in self.items]

    @property
    def latent_distribution(self) -> QuadratureRule:
        return self.quadrature

    @property
    def diagnostic_code_counts(self) -> DiagnosticCounts:
        """Diagnostic counts of the most recent M-step."""
        return self._diagnostics

    @property
    def log_likelihood_history(self) -> list[float]:
        """Marginal log-likelihood of each E-step in the most recent run."""
        return self._log_likelihood_history.copy()

    @property
    def accumulator(self) -> Optional[EStepAccumulator]:
        """Accumulator of the most recent E-step."""
        return self._accumulator

    def complete_data_log_likelihood(self) -> float:
        """Last E-step log-likelihood plus the item priors at the accepted values."""
        if self._accumulator is None:
            raise RuntimeError("estimate_parameters has not been run")
        return self._accumulator.log_likelihood + sum(
            item.log_prior() for item in self.items
        )

    def _pool_scope(self):
        if self._pool is not None:
            return nullcontext(self._pool)
        return ForkJoinPool(self.n_workers)

    def run_estep(self, pool: Optional[ForkJoinPool] = None) -> EStepAccumulator:
        """Compute the expected counts at the current active parameters."""
        estep = EStep(
            self.items,
            self.quadrature,
            self.data,
            pool=pool,
            threshold=self.estep_threshold,
        )
        self._accumulator = estep.compute()
        return self._accumulator

    def estimate_parameters(
        self,
        tol: float = 1e-4,
        max_iter: int = 150,
        latent_density: Union[bool, LatentDensityType, LatentDensityEstimation] = (
            LatentDensityEstimation.FIXED
        ),
    ) -> EMSummary:
        """Run EM until the largest parameter change is at most ``tol``.

        Parameters
        ----------
        tol : float, default=1e-4
            Convergence criterion on the largest accepted change. A negative
            value disables the test so that exactly ``max_iter`` iterations
            run, without a convergence warning.
        max_iter : int, default=150
            Maximum number of EM iterations.
        latent_density : LatentDensityEstimation, str or bool
            Treatment of the quadrature densities.

        Returns
        -------
        EMSummary
        """
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        density_mode = LatentDensityEstimation.coerce(latent_density)

        delta = np.inf
        iteration = 0
        log_likelihood = marginal = -np.inf
        self._log_likelihood_history = []

        with self._pool_scope() as pool:
            while delta > tol and iteration < max_iter:
                iteration += 1
                accumulator = self.run_estep(pool)
                marginal = accumulator.log_likelihood
                self._log_likelihood_history.append(marginal)

                mstep = MStep(
                    self.items,
                    self.quadrature,
                    accumulator,
                    pool=pool,
                    threshold=self.mstep_threshold,
                    method=self.method,
                    max_iter=self.optimizer_max_iter,
                    max_step=self.max_step,
                )
                self._diagnostics = mstep.compute().diagnostics

                delta = max(item.accept_all_proposal_values() for item in self.items)
                self._update_density(accumulator, density_mode)
                log_likelihood = self.complete_data_log_likelihood()

                event = EMStatusEvent(
                    iteration, delta, log_likelihood, str(self._diagnostics)
                )
                logger.debug("%s", event)
                for listener in list(self._listeners):
                    listener(event)

        converged = delta <= tol
        if not converged and tol >= 0:
            message = (
                f"EM did not converge in {max_iter} iterations "
                f"(largest change {delta:.6g} > tol {tol:g})"
            )
            logger.warning(message)
            warnings.warn(message, ConvergenceWarning, stacklevel=2)

        return EMSummary(iteration, delta, log_likelihood, converged, marginal)

    def _update_density(
        self,
        accumulator: EStepAccumulator,
        mode: LatentDensityEstimation,
    ) -> None:
        if mode is LatentDensityEstimation.FIXED:
            return
        self.quadrature.set_densities(accumulator.expected_count)
        if mode is LatentDensityEstimation.EMPIRICAL_HISTOGRAM_STANDARDIZED:
            intercept, slope = self.quadrature.standardize(keep_points=True)
            for item in self.items:
                item.scale(intercept, slope)

    def compute_item_standard_errors(self) -> list[NDArray[np.float64]]:
        """Standard errors of every item at the accepted parameters.

        Runs one E-step at the current values, then inverts each item's
        objective Hessian. Results are also stored on
        ``item.standard_errors``; fixed items get NaN.
        """
        with self._pool_scope() as pool:
            accumulator = self.run_estep(pool)

        points = self.quadrature.points
        result = []
        for j, item in enumerate(self.items):
            if item.fixed:
                se = np.full(item.n_parameters, np.nan)
            else:
                objective = ItemLogLikelihood(
                    item, points, accumulator.category_counts[j]
                )
                se = objective.standard_errors()
            item.standard_errors = se
            result.append(se)
        return result

    def eap_scores(self) -> ScoreResult:
        """EAP scores of every person under the calibrated latent distribution."""
        from mmle.scoring.eap import EAPScorer

        return EAPScorer(self.quadrature).score(self.items, self.data)


class EMEstimator(BaseEstimator):
    """Convenience front end: collapse, estimate and summarize.

    Parameters
    ----------
    n_quadpts : int, default=41
        Number of evenly spaced normal quadrature points.
    theta_range : tuple of float, default=(-4, 4)
        Range of the quadrature points.
    max_iter : int, default=500
        Maximum number of EM iterations.
    tol : float, default=1e-4
        Convergence tolerance on the largest parameter change.
    verbose : bool, default=False
        Log each iteration at INFO level.
    n_workers : int, optional
        Worker threads for the E- and M-steps.
    latent_density : {'fixed', 'empirical', 'empirical_standardized'}
        Treatment of the latent density.
    compute_standard_errors : bool, default=True
        Compute item standard errors after estimation.
    """

    def __init__(
        self,
        n_quadpts: int = 41,
        theta_range: tuple[float, float] = (-4.0, 4.0),
        max_iter: int = 500,
        tol: float = 1e-4,
        verbose: bool = False,
        n_workers: Optional[int] = None,
        latent_density: Union[bool, LatentDensityType, LatentDensityEstimation] = "fixed",
        compute_standard_errors: bool = True,
    ) -> None:
        super().__init__(max_iter, tol, verbose)

        if n_quadpts < 5:
            raise ValueError("n_quadpts should be at least 5")
        if theta_range[0] >= theta_range[1]:
            raise ValueError("theta_range must be increasing")

        self.n_quadpts = n_quadpts
        self.theta_range = theta_range
        self.n_workers = n_workers
        self.latent_density = LatentDensityEstimation.coerce(latent_density)
        self.compute_standard_errors = compute_standard_errors
        self.quadrature_: Optional[QuadratureRule] = None

    def fit(
        self,
        items: Sequence[ItemResponseModel],
        responses: NDArray[np.int_],
        weights: Optional[NDArray[np.float64]] = None,
    ) -> FitResult:
        from mmle.results.fit_result import FitResult

        items = list(items)
        responses = self._validate_responses(responses, len(items))
        data = collapse_patterns(responses, weights=weights)
        self.quadrature_ = NormalQuadrature(
            self.n_quadpts, self.theta_range[0], self.theta_range[1]
        )

        mml = MarginalMaximumLikelihood(
            items, data, self.quadrature_, n_workers=self.n_workers
        )
        self._convergence_history = []

        def on_status(event: EMStatusEvent) -> None:
            self._convergence_history.append(event.log_likelihood)
            self._log_iteration(
                event.iteration,
                event.log_likelihood,
                delta=event.delta,
            )

        mml.add_status_listener(on_status)
        summary = mml.estimate_parameters(
            tol=self.tol,
            max_iter=self.max_iter,
            latent_density=self.latent_density,
        )

        if self.compute_standard_errors:
            standard_errors = mml.compute_item_standard_errors()
        else:
            standard_errors = [np.full(item.n_parameters, np.nan) for item in items]

        n_params = sum(item.n_parameters for item in items if not item.fixed)
        if self.latent_density is LatentDensityEstimation.EMPIRICAL_HISTOGRAM:
            n_params += self.quadrature_.n_points - 1
        elif self.latent_density is LatentDensityEstimation.EMPIRICAL_HISTOGRAM_STANDARDIZED:
            n_params += self.quadrature_.n_points - 3

        log_likelihood = summary.marginal_log_likelihood
        n_obs = int(round(data.total_frequency))

        return FitResult(
            items=items,
            log_likelihood=log_likelihood,
            n_iterations=summary.n_iterations,
            converged=summary.converged,
            standard_errors=standard_errors,
            aic=self._compute_aic(log_likelihood, n_params),
            bic=self._compute_bic(log_likelihood, n_params, max(n_obs, 1)),
            n_observations=data.n_persons,
            n_parameters=n_params,
            quadrature=self.quadrature_,
            diagnostics=mml.diagnostic_code_counts,
            convergence_delta=summary.delta,
        )
