"""Polytomous IRT models: GRM, GPCM, PCM."""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from mmle._core import as_theta_1d, sigmoid, softmax_rows
from mmle.models.base import PolytomousItemModel


class GradedResponseModel(PolytomousItemModel):
    """Graded Response Model (GRM) - Samejima (1969).

    The GRM is a cumulative logit model for ordered polytomous responses.
    It models the probability of responding in category k or higher:

    P*(X ≥ k|θ) = 1 / (1 + exp(-D a (θ - b_k)))

    The probability of responding in exactly category k is:

    P(X = k|θ) = P*(X ≥ k|θ) - P*(X ≥ k+1|θ)

    Parameters
    ----------
    discrimination : float, default=1.0
        Item discrimination (slope).
    thresholds : array_like
        Increasing category boundaries b_1 < ... < b_{K-1}.
    name : str, optional
        Item name.
    scaling_constant : float, default=1.0
        The constant D.
    fixed : bool, default=False
        If True the item is never re-estimated.

    Examples
    --------
    >>> item = GradedResponseModel(1.3, thresholds=[-1.0, 0.0, 1.2])
    >>> item.n_categories
    4
    """

    model_name = "GRM"
    location_label = "threshold"

    def __init__(
        self,
        discrimination: float = 1.0,
        thresholds: NDArray[np.float64] = (-1.0, 1.0),
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        super().__init__(
            discrimination,
            thresholds,
            free_discrimination=True,
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )

    def _cumulative(self, theta, params):
        a, b = self._unpack(params)
        D = self.scaling_constant
        n = theta.size
        pstar = np.ones((n, self.n_categories + 1))
        pstar[:, -1] = 0.0
        pstar[:, 1:-1] = sigmoid(D * a * (theta[:, None] - b[None, :]))
        return a, b, pstar

    def category_probabilities(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        theta = as_theta_1d(theta)
        _, _, pstar = self._cumulative(theta, params)
        return pstar[:, :-1] - pstar[:, 1:]

    def probability_gradient(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        theta = as_theta_1d(theta)
        a, b, pstar = self._cumulative(theta, params)
        D = self.scaling_constant
        n = theta.size
        n_cat = self.n_categories
        m = n_cat - 1

        w = pstar[:, 1:-1] * (1.0 - pstar[:, 1:-1])
        # derivatives of P*_1..P*_m
        dstar_da = w * D * (theta[:, None] - b[None, :])
        dstar_db = -w * D * a

        # P_k = P*_k - P*_{k+1}; pad so that P*_0 and P*_K have zero derivative
        pad_da = np.zeros((n, n_cat + 1))
        pad_da[:, 1:-1] = dstar_da
        d_disc = pad_da[:, :-1] - pad_da[:, 1:]

        d_loc = np.zeros((n, n_cat, m))
        idx = np.arange(m)
        d_loc[:, idx + 1, idx] += dstar_db
        d_loc[:, idx, idx] -= dstar_db
        return self._assemble_gradient(d_disc, d_loc)


class GeneralizedPartialCredit(PolytomousItemModel):
    """Generalized Partial Credit Model (GPCM) - Muraki (1992).

    P(X = k|θ) = exp(Σ_{v≤k} D a (θ - b_v)) / Σ_c exp(Σ_{v≤c} D a (θ - b_v))

    with the empty sum for k = 0 equal to zero.

    Parameters
    ----------
    discrimination : float, default=1.0
        Item discrimination (slope).
    steps : array_like
        Step parameters b_1, ..., b_{K-1}.
    name : str, optional
        Item name.
    scaling_constant : float, default=1.0
        The constant D.
    fixed : bool, default=False
        If True the item is never re-estimated.
    """

    model_name = "GPCM"
    location_label = "step"
    _free_discrimination_default = True

    def __init__(
        self,
        discrimination: float = 1.0,
        steps: NDArray[np.float64] = (-1.0, 1.0),
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        super().__init__(
            discrimination,
            steps,
            free_discrimination=self._free_discrimination_default,
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )

    def _probs(self, theta, params):
        a, b = self._unpack(params)
        D = self.scaling_constant
        n = theta.size
        cum = np.zeros((n, self.n_categories))
        cum[:, 1:] = np.cumsum(D * (theta[:, None] - b[None, :]), axis=1)
        return a, cum, softmax_rows(a * cum)

    def category_probabilities(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        theta = as_theta_1d(theta)
        return self._probs(theta, params)[2]

    def probability_gradient(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        theta = as_theta_1d(theta)
        a, cum, probs = self._probs(theta, params)
        D = self.scaling_constant
        n_cat = self.n_categories

        mean_cum = np.sum(probs * cum, axis=1, keepdims=True)
        d_disc = probs * (cum - mean_cum)

        # P(X >= v) for v = 1..K-1
        tail = np.cumsum(probs[:, ::-1], axis=1)[:, ::-1][:, 1:]
        indicator = (np.arange(n_cat)[:, None] >= np.arange(1, n_cat)[None, :]).astype(
            np.float64
        )
        d_loc = D * a * probs[:, :, None] * (tail[:, None, :] - indicator[None, :, :])
        return self._assemble_gradient(d_disc, d_loc)


class PartialCreditModel(GeneralizedPartialCredit):
    """Partial Credit Model (PCM) - Masters (1982).

    The GPCM with the discrimination held at a constant (default 1).
    """

    model_name = "PCM"
    _free_discrimination_default = False
