"""Base class for parameter estimation front ends."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Optional

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from mmle.models.base import ItemResponseModel
    from mmle.results.fit_result import FitResult

logger = logging.getLogger(__name__)


class BaseEstimator(ABC):
    """Abstract base class for IRT parameter estimators.

    Parameters
    ----------
    max_iter : int, default=500
        Maximum number of iterations.
    tol : float, default=1e-4
        Convergence tolerance.
    verbose : bool, default=False
        Whether to log progress at INFO level.

    Attributes
    ----------
    convergence_history : list of float
        Log-likelihood values at each iteration.
    """

    def __init__(
        self,
        max_iter: int = 500,
        tol: float = 1e-4,
        verbose: bool = False,
    ) -> None:
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        if tol <= 0:
            raise ValueError("tol must be positive")

        self.max_iter = max_iter
        self.tol = tol
        self.verbose = verbose
        self._convergence_history: list[float] = []

    @abstractmethod
    def fit(
        self,
        items: Sequence["ItemResponseModel"],
        responses: NDArray[np.int_],
        weights: Optional[NDArray[np.float64]] = None,
    ) -> "FitResult":
        """Estimate item parameters from response data.

        Parameters
        ----------
        items : sequence of ItemResponseModel
            One model per response column. Parameters are updated in place.
        responses : ndarray of shape (n_persons, n_items)
            Response matrix. Missing values should be coded as -1.
        weights : ndarray of shape (n_persons,), optional
            Sampling weight of each person.

        Returns
        -------
        FitResult
        """
        ...

    @property
    def convergence_history(self) -> list[float]:
        """Return log-likelihood history across iterations."""
        return self._convergence_history.copy()

    def _validate_responses(
        self,
        responses: NDArray[np.int_],
        n_items: int,
    ) -> NDArray[np.int_]:
        responses = np.asarray(responses)

        if responses.ndim != 2:
            raise ValueError(f"responses must be 2D, got {responses.ndim}D")

        if responses.shape[1] != n_items:
            raise ValueError(
                f"responses has {responses.shape[1]} items, expected {n_items}"
            )

        return responses

    def _log_iteration(
        self,
        iteration: int,
        log_likelihood: float,
        **kwargs: float,
    ) -> None:
        """Log iteration progress if verbose mode is on."""
        if self.verbose:
            extras = ", ".join(f"{k}={v:.6g}" for k, v in kwargs.items())
            msg = f"Iteration {iteration:4d}: LL = {log_likelihood:.4f}"
            if extras:
                msg += f", {extras}"
            logger.info(msg)

    def _compute_aic(
        self,
        log_likelihood: float,
        n_parameters: int,
    ) -> float:
        """Compute Akaike Information Criterion.

        AIC = -2 × LL + 2 × k
        """
        return -2 * log_likelihood + 2 * n_parameters

    def _compute_bic(
        self,
        log_likelihood: float,
        n_parameters: int,
        n_observations: int,
    ) -> float:
        """Compute Bayesian Information Criterion.

        BIC = -2 × LL + k × log(n)
        """
        return -2 * log_likelihood + n_parameters * np.log(n_observations)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"max_iter={self.max_iter}, "
            f"tol={self.tol})"
        )
