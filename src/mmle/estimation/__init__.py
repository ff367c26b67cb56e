from mmle.estimation.accumulator import EStepAccumulator
from mmle.estimation.base import BaseEstimator
from mmle.estimation.em import (
    ConvergenceWarning,
    EMEstimator,
    EMStatusEvent,
    EMSummary,
    LatentDensityEstimation,
    MarginalMaximumLikelihood,
)
from mmle.estimation.estep import EStep
from mmle.estimation.mstep import DiagnosticCounts, MStep, MStepResult
from mmle.estimation.objective import ItemLogLikelihood
from mmle.estimation.parallel import ForkedTask, ForkJoinPool
from mmle.estimation.priors import (
    BetaPrior,
    ItemParameterPrior,
    LogNormalPrior,
    NormalPrior,
)
from mmle.estimation.quadrature import (
    GaussHermiteQuadrature,
    NormalQuadrature,
    QuadratureRule,
    UniformQuadrature,
    UserSuppliedQuadrature,
    create_quadrature,
)

__all__ = [
    # Estimators
    "BaseEstimator",
    "EMEstimator",
    "MarginalMaximumLikelihood",
    "EMStatusEvent",
    "EMSummary",
    "LatentDensityEstimation",
    "ConvergenceWarning",
    # EM phases
    "EStep",
    "EStepAccumulator",
    "MStep",
    "MStepResult",
    "DiagnosticCounts",
    "ItemLogLikelihood",
    "ForkJoinPool",
    "ForkedTask",
    # Priors
    "ItemParameterPrior",
    "NormalPrior",
    "LogNormalPrior",
    "BetaPrior",
    # Quadrature
    "QuadratureRule",
    "NormalQuadrature",
    "UniformQuadrature",
    "UserSuppliedQuadrature",
    "GaussHermiteQuadrature",
    "create_quadrature",
]
