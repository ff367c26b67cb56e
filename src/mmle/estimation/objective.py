"""Per-item objective for the M-step."""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from mmle.constants import PROB_EPSILON
from mmle.models.base import ItemResponseModel
from mmle.optimize.base import ObjectiveFunction
from mmle.optimize.finite_difference import central_gradient


class ItemLogLikelihood(ObjectiveFunction):
    """Negative expected complete-data log-likelihood of one item.

    value(x) = -( Σ_k Σ_c r[c, k] log P_c(θ_k; x) + Σ log prior(x) )

    where ``r`` are the item's expected category counts from the E-step.
    Trial points are passed to the model explicitly, so evaluating the
    objective never changes the model's active or proposal parameters.

    Parameters
    ----------
    item : ItemResponseModel
        Item whose parameters are being estimated.
    points : ndarray of shape (n_points,)
        Quadrature points.
    category_counts : ndarray of shape (n_categories, n_points)
        Expected counts for this item.
    prob_epsilon : float, default=1e-10
        Probabilities are clipped to ``[eps, 1 - eps]`` before taking logs.
    """

    def __init__(
        self,
        item: ItemResponseModel,
        points: NDArray[np.float64],
        category_counts: NDArray[np.float64],
        prob_epsilon: float = PROB_EPSILON,
    ) -> None:
        if category_counts.shape != (item.n_categories, points.size):
            raise ValueError(
                f"category_counts has shape {category_counts.shape}, expected "
                f"{(item.n_categories, points.size)}"
            )
        self.item = item
        self.points = points
        self.counts = category_counts.T  # (n_points, n_categories)
        self.prob_epsilon = prob_epsilon

    @property
    def has_gradient(self) -> bool:
        return self.item.has_analytic_gradient

    @property
    def has_hessian(self) -> bool:
        return False

    def _probs(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        probs = self.item.category_probabilities(self.points, x)
        return np.clip(probs, self.prob_epsilon, 1.0 - self.prob_epsilon)

    def value(self, x: NDArray[np.float64]) -> float:
        ll = float(np.sum(self.counts * np.log(self._probs(x))))
        return -(ll + self.item.log_prior(x))

    def gradient(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        raw = self.item.category_probabilities(self.points, x)
        eps = self.prob_epsilon
        probs = np.clip(raw, eps, 1.0 - eps)
        # the clipped log-likelihood is flat where the clip is active
        weights = np.where((raw > eps) & (raw < 1.0 - eps), self.counts / probs, 0.0)
        dprobs = self.item.probability_gradient(self.points, x)
        score = np.einsum("kc,kcp->p", weights, dprobs)
        return -score - self.item.log_prior_gradient(x)

    def hessian_estimate(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Symmetric Hessian by central differences of the gradient."""
        x = np.asarray(x, dtype=np.float64)
        n = x.size
        h = np.cbrt(np.finfo(np.float64).eps) * np.maximum(np.abs(x), 1.0)
        hess = np.empty((n, n))
        for j in range(n):
            step = np.zeros(n)
            step[j] = h[j]
            if self.has_gradient:
                hess[:, j] = (self.gradient(x + step) - self.gradient(x - step)) / (2 * h[j])
            else:
                sx = np.ones(n)
                rnoise = np.finfo(np.float64).eps
                hess[:, j] = (
                    central_gradient(self.value, x + step, sx, rnoise)
                    - central_gradient(self.value, x - step, sx, rnoise)
                ) / (2 * h[j])
        return 0.5 * (hess + hess.T)

    def standard_errors(self, x: Optional[NDArray[np.float64]] = None) -> NDArray[np.float64]:
        """Standard errors from the inverse of the observed information.

        Returns NaN for every parameter when the Hessian is singular or any
        variance is not positive.
        """
        x = self.item.get_item_parameter_array() if x is None else x
        hess = self.hessian_estimate(x)
        try:
            cov = np.linalg.inv(hess)
        except np.linalg.LinAlgError:
            return np.full(x.size, np.nan)
        var = np.diag(cov)
        if np.any(~np.isfinite(var)) or np.any(var <= 0):
            return np.full(x.size, np.nan)
        return np.sqrt(var)
