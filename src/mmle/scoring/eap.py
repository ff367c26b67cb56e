"""Expected A Posteriori (EAP) scoring."""

from collections.abc import Sequence
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray

from mmle.estimation.estep import EStep
from mmle.estimation.quadrature import NormalQuadrature, QuadratureRule
from mmle.models.base import ItemResponseModel
from mmle.results.score_result import ScoreResult
from mmle.typing import ResponseMatrix
from mmle.utils.collapse import ResponseVectors, collapse_patterns


class EAPScorer:
    """Expected A Posteriori (EAP) ability estimation.

    EAP scoring computes the posterior mean of theta given the response
    pattern over a fixed quadrature:

    θ_EAP = Σ_k θ_k L(x|θ_k) w_k / Σ_k L(x|θ_k) w_k

    The posterior standard deviation (PSD) is returned as the standard
    error. Posteriors are evaluated once per unique response pattern and
    then expanded to persons.

    Parameters
    ----------
    quadrature : QuadratureRule, optional
        Latent distribution, usually the one left by calibration so that
        an estimated histogram is used as the prior. Defaults to a
        standard normal rule with ``n_quadpts`` points on [-4, 4].
    n_quadpts : int, default=49
        Number of points of the default rule.

    Examples
    --------
    >>> scorer = EAPScorer(mml.latent_distribution)
    >>> result = scorer.score(mml.items, responses)
    >>> result.theta
    """

    def __init__(
        self,
        quadrature: Optional[QuadratureRule] = None,
        n_quadpts: int = 49,
    ) -> None:
        if quadrature is None:
            if n_quadpts < 5:
                raise ValueError("n_quadpts should be at least 5")
            quadrature = NormalQuadrature(n_quadpts, -4.0, 4.0)
        self.quadrature = quadrature

    def score(
        self,
        items: Sequence[ItemResponseModel],
        responses: Union[ResponseMatrix, ResponseVectors],
        person_ids: Optional[list] = None,
    ) -> ScoreResult:
        """Compute EAP scores for all persons.

        Parameters
        ----------
        items : sequence of ItemResponseModel
            Calibrated items; their active parameters are used.
        responses : ndarray of shape (n_persons, n_items) or ResponseVectors
            Category codes with -1 for missing, or already collapsed data.
        person_ids : list, optional
            Identifiers attached to the result.

        Returns
        -------
        ScoreResult
            Posterior means with posterior standard deviations.
        """
        if isinstance(responses, ResponseVectors):
            data = responses
        else:
            data = collapse_patterns(responses)
        if data.n_items != len(items):
            raise ValueError(
                f"responses have {data.n_items} items but {len(items)} models were given"
            )

        points = self.quadrature.points
        posterior = EStep(items, self.quadrature, data).posterior()
        theta = posterior @ points
        variance = np.sum(posterior * (points - theta[:, None]) ** 2, axis=1)

        return ScoreResult(
            theta=data.expand_scores(theta),
            standard_error=data.expand_scores(np.sqrt(variance)),
            method="EAP",
            person_ids=person_ids,
        )

    def __repr__(self) -> str:
        return (
            f"EAPScorer(quadrature={type(self.quadrature).__name__}, "
            f"n_points={self.quadrature.points.size})"
        )


def marginal_reliability(
    theta: NDArray[np.float64], standard_error: NDArray[np.float64]
) -> float:
    """Marginal reliability of a set of ability estimates.

    ρ = (Var(θ̂) - mean(SE²)) / Var(θ̂)

    with the unbiased sample variance of the estimates.

    Parameters
    ----------
    theta : ndarray of shape (n_persons,)
        Ability estimates.
    standard_error : ndarray of shape (n_persons,)
        Their standard errors.

    Returns
    -------
    float
        Reliability coefficient; NaN when the estimates have no variance.
    """
    theta = np.asarray(theta, dtype=np.float64).ravel()
    standard_error = np.asarray(standard_error, dtype=np.float64).ravel()
    if theta.size != standard_error.size:
        raise ValueError("theta and standard_error must have the same length")
    if theta.size < 2:
        raise ValueError("marginal reliability needs at least two scores")

    variance = float(np.var(theta, ddof=1))
    if variance == 0.0:
        return float("nan")
    return (variance - float(np.mean(standard_error**2))) / variance
