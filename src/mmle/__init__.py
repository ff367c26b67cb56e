"""Marginal maximum likelihood estimation of IRT item parameters.

Item parameters are estimated by EM over a quadrature approximation of the
latent trait distribution. The E-step and the per-item M-step run on a
fork-join thread pool, and each item is optimized with a quasi-Newton
solver (:mod:`mmle.optimize`).

Examples
--------
>>> from mmle import EMEstimator, TwoParameterLogistic, simdata
>>> responses = simdata(model="2PL", n_persons=1000, n_items=10, seed=1)
>>> items = [TwoParameterLogistic(1.0, 0.0) for _ in range(10)]
>>> result = EMEstimator().fit(items, responses)
>>> result.coef()
"""

from mmle._version import __version__
from mmle.estimation.em import (
    ConvergenceWarning,
    EMEstimator,
    EMStatusEvent,
    EMSummary,
    LatentDensityEstimation,
    MarginalMaximumLikelihood,
)
from mmle.estimation.parallel import ForkJoinPool
from mmle.estimation.priors import BetaPrior, LogNormalPrior, NormalPrior
from mmle.estimation.quadrature import (
    GaussHermiteQuadrature,
    NormalQuadrature,
    UniformQuadrature,
    UserSuppliedQuadrature,
)
from mmle.models.base import ItemResponseModel
from mmle.models.dichotomous import (
    FourParameterLogistic,
    OneParameterLogistic,
    ThreeParameterLogistic,
    TwoParameterLogistic,
)
from mmle.models.polytomous import (
    GeneralizedPartialCredit,
    GradedResponseModel,
    PartialCreditModel,
)
from mmle.optimize import UncminOptimizer
from mmle.results.fit_result import FitResult
from mmle.results.score_result import ScoreResult
from mmle.scoring import EAPScorer, marginal_reliability
from mmle.utils.collapse import collapse_patterns
from mmle.utils.simulation import simdata, simulate_responses

__all__ = [
    "__version__",
    # Estimation
    "EMEstimator",
    "MarginalMaximumLikelihood",
    "EMStatusEvent",
    "EMSummary",
    "LatentDensityEstimation",
    "ConvergenceWarning",
    "ForkJoinPool",
    "FitResult",
    # Scoring
    "EAPScorer",
    "ScoreResult",
    "marginal_reliability",
    # Models
    "ItemResponseModel",
    "OneParameterLogistic",
    "TwoParameterLogistic",
    "ThreeParameterLogistic",
    "FourParameterLogistic",
    "GradedResponseModel",
    "GeneralizedPartialCredit",
    "PartialCreditModel",
    # Priors
    "NormalPrior",
    "LogNormalPrior",
    "BetaPrior",
    # Quadrature
    "NormalQuadrature",
    "UniformQuadrature",
    "UserSuppliedQuadrature",
    "GaussHermiteQuadrature",
    # Optimizer
    "UncminOptimizer",
    # Data
    "collapse_patterns",
    "simdata",
    "simulate_responses",
]
