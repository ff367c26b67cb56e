"""Data simulation utilities for IRT models."""

from collections.abc import Sequence
from typing import Optional

import numpy as np
from numpy.typing import NDArray

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
from mmle.typing import ModelType, ResponseMatrix, ThetaArray


def simulate_responses(
    items: Sequence[ItemResponseModel],
    theta: ThetaArray,
    rng: Optional[np.random.Generator] = None,
    missing_rate: float = 0.0,
) -> ResponseMatrix:
    """Draw responses to ``items`` for examinees at ``theta``.

    Parameters
    ----------
    items : sequence of ItemResponseModel
        Generating item models (their active parameters are used).
    theta : ndarray of shape (n_persons,)
        Latent trait values.
    rng : numpy.random.Generator, optional
        Random number generator.
    missing_rate : float, default=0.0
        Probability that any single response is set to missing (-1).

    Returns
    -------
    ndarray of shape (n_persons, n_items)
        Simulated category codes.
    """
    if not 0.0 <= missing_rate < 1.0:
        raise ValueError("missing_rate must be in [0, 1)")
    rng = np.random.default_rng() if rng is None else rng
    theta = np.asarray(theta, dtype=np.float64).ravel()
    n_persons = theta.size

    responses = np.empty((n_persons, len(items)), dtype=np.int_)
    for j, item in enumerate(items):
        cdf = np.cumsum(item.category_probabilities(theta), axis=1)
        u = rng.random(n_persons)
        responses[:, j] = np.minimum(
            (u[:, None] > cdf).sum(axis=1), item.n_categories - 1
        )

    if missing_rate > 0:
        responses[rng.random(responses.shape) < missing_rate] = -1
    return responses


def make_items(
    model: ModelType = "2PL",
    n_items: int = 20,
    n_categories: int = 2,
    discrimination: Optional[NDArray[np.float64]] = None,
    difficulty: Optional[NDArray[np.float64]] = None,
    guessing: Optional[NDArray[np.float64]] = None,
    upper: Optional[NDArray[np.float64]] = None,
    rng: Optional[np.random.Generator] = None,
) -> list[ItemResponseModel]:
    """Create item models with given or randomly drawn parameters.

    Discrimination defaults to LogN(0, 0.25) draws and difficulty to N(0, 1)
    draws. Polytomous items get evenly spaced locations around the difficulty.
    """
    rng = np.random.default_rng() if rng is None else rng

    if discrimination is None:
        discrimination = rng.lognormal(0, 0.25, size=n_items)
    if difficulty is None:
        difficulty = rng.normal(0, 1, size=n_items)
    discrimination = np.asarray(discrimination, dtype=np.float64)
    difficulty = np.asarray(difficulty, dtype=np.float64)
    guessing = np.full(n_items, 0.2) if guessing is None else np.asarray(guessing)
    upper = np.full(n_items, 0.95) if upper is None else np.asarray(upper)

    items: list[ItemResponseModel] = []
    for j in range(n_items):
        name = f"Item_{j}"
        a, b = float(discrimination[j]), float(difficulty[j])
        if model == "1PL":
            items.append(OneParameterLogistic(b, name=name))
        elif model == "2PL":
            items.append(TwoParameterLogistic(a, b, name=name))
        elif model == "3PL":
            items.append(ThreeParameterLogistic(a, b, float(guessing[j]), name=name))
        elif model == "4PL":
            items.append(
                FourParameterLogistic(a, b, float(guessing[j]), float(upper[j]), name=name)
            )
        elif model in ("GRM", "GPCM", "PCM"):
            if n_categories < 3:
                raise ValueError(f"{model} requires n_categories >= 3")
            locations = b + np.linspace(-1.0, 1.0, n_categories - 1)
            if model == "GRM":
                items.append(GradedResponseModel(a, locations, name=name))
            elif model == "GPCM":
                items.append(GeneralizedPartialCredit(a, locations, name=name))
            else:
                items.append(PartialCreditModel(1.0, locations, name=name))
        else:
            raise ValueError(f"Unknown model: {model}")
    return items


def simdata(
    model: ModelType = "2PL",
    n_persons: int = 500,
    n_items: int = 20,
    n_categories: int = 2,
    theta: Optional[NDArray[np.float64]] = None,
    discrimination: Optional[NDArray[np.float64]] = None,
    difficulty: Optional[NDArray[np.float64]] = None,
    guessing: Optional[NDArray[np.float64]] = None,
    upper: Optional[NDArray[np.float64]] = None,
    seed: Optional[int] = None,
) -> NDArray[np.int_]:
    """Simulate response data from IRT models.

    Parameters
    ----------
    model : {'1PL', '2PL', '3PL', '4PL', 'GRM', 'GPCM', 'PCM'}, default='2PL'
        IRT model to use for simulation.
    n_persons : int, default=500
        Number of persons to simulate.
    n_items : int, default=20
        Number of items.
    n_categories : int, default=2
        Number of response categories (polytomous models need at least 3).
    theta : ndarray, optional
        Person ability values. If None, sampled from N(0, 1).
    discrimination, difficulty, guessing, upper : ndarray, optional
        Item parameters; see :func:`make_items`.
    seed : int, optional
        Random seed for reproducibility.

    Returns
    -------
    ndarray of shape (n_persons, n_items)
        Simulated response matrix.

    Examples
    --------
    >>> responses = simdata(model='2PL', n_persons=500, n_items=20, seed=1)
    >>> print(responses.shape)
    (500, 20)
    """
    rng = np.random.default_rng(seed)

    if theta is None:
        theta = rng.standard_normal(n_persons)

    items = make_items(
        model=model,
        n_items=n_items,
        n_categories=n_categories,
        discrimination=discrimination,
        difficulty=difficulty,
        guessing=guessing,
        upper=upper,
        rng=rng,
    )
    return simulate_responses(items, theta, rng=rng)
