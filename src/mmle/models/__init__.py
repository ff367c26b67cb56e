from mmle.models.base import (
    DichotomousItemModel,
    ItemResponseModel,
    PolytomousItemModel,
)
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

__all__ = [
    "ItemResponseModel",
    "DichotomousItemModel",
    "PolytomousItemModel",
    "OneParameterLogistic",
    "TwoParameterLogistic",
    "ThreeParameterLogistic",
    "FourParameterLogistic",
    "GradedResponseModel",
    "GeneralizedPartialCredit",
    "PartialCreditModel",
]
