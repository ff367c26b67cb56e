"""Dichotomous IRT models: 1PL, 2PL, 3PL, 4PL."""

from typing import Optional

from mmle.models.base import DichotomousItemModel


class OneParameterLogistic(DichotomousItemModel):
    """One-Parameter Logistic (1PL) IRT Model.

    P(X=1|θ) = 1 / (1 + exp(-D a (θ - b)))

    Only the difficulty is estimated; the discrimination is a constant
    (1 gives the Rasch model).

    Parameters
    ----------
    difficulty : float, default=0.0
        Item difficulty (location).
    discrimination : float, default=1.0
        Common discrimination, held fixed.
    name : str, optional
        Item name.
    scaling_constant : float, default=1.0
        The constant D. Use 1.7 to approximate the normal ogive metric.
    fixed : bool, default=False
        If True the item is never re-estimated.
    """

    model_name = "1PL"

    def __init__(
        self,
        difficulty: float = 0.0,
        discrimination: float = 1.0,
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        super().__init__(
            ("difficulty",),
            {"difficulty": difficulty, "discrimination": discrimination},
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )


class TwoParameterLogistic(DichotomousItemModel):
    """Two-Parameter Logistic (2PL) IRT Model.

    The 2PL model includes discrimination (a) and difficulty (b) parameters:

    P(X=1|θ) = 1 / (1 + exp(-D a (θ - b)))

    Parameters
    ----------
    discrimination : float, default=1.0
        Item discrimination (slope).
    difficulty : float, default=0.0
        Item difficulty (location).
    name : str, optional
        Item name.
    scaling_constant : float, default=1.0
        The constant D.
    fixed : bool, default=False
        If True the item is never re-estimated.

    Examples
    --------
    >>> import numpy as np
    >>> item = TwoParameterLogistic(discrimination=1.2, difficulty=-0.5)
    >>> theta = np.linspace(-3, 3, 100)
    >>> probs = item.category_probabilities(theta)
    >>> print(probs.shape)
    (100, 2)
    """

    model_name = "2PL"

    def __init__(
        self,
        discrimination: float = 1.0,
        difficulty: float = 0.0,
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        super().__init__(
            ("discrimination", "difficulty"),
            {"discrimination": discrimination, "difficulty": difficulty},
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )


class ThreeParameterLogistic(DichotomousItemModel):
    """Three-Parameter Logistic (3PL) IRT Model.

    P(X=1|θ) = c + (1 - c) / (1 + exp(-D a (θ - b)))

    The lower asymptote ``c`` (guessing) is usually given a
    :class:`~mmle.estimation.priors.BetaPrior` to stabilize estimation.
    """

    model_name = "3PL"

    def __init__(
        self,
        discrimination: float = 1.0,
        difficulty: float = 0.0,
        guessing: float = 0.2,
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        super().__init__(
            ("discrimination", "difficulty", "guessing"),
            {
                "discrimination": discrimination,
                "difficulty": difficulty,
                "guessing": guessing,
            },
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )


class FourParameterLogistic(DichotomousItemModel):
    """Four-Parameter Logistic (4PL) IRT Model.

    P(X=1|θ) = c + (d - c) / (1 + exp(-D a (θ - b)))

    where ``d`` is the upper asymptote (slipping).
    """

    model_name = "4PL"

    def __init__(
        self,
        discrimination: float = 1.0,
        difficulty: float = 0.0,
        guessing: float = 0.2,
        slipping: float = 0.95,
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        super().__init__(
            ("discrimination", "difficulty", "guessing", "slipping"),
            {
                "discrimination": discrimination,
                "difficulty": difficulty,
                "guessing": guessing,
                "slipping": slipping,
            },
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )
