"""Prior densities for individual item parameters.

Priors enter the M-step objective additively through :meth:`log_density`
and its derivative. Densities come from :mod:`scipy.stats`; derivatives
are written out in closed form.
"""

from abc import ABC, abstractmethod

import numpy as np
from scipy import stats

from mmle.constants import NEARBY_OFFSET


class ItemParameterPrior(ABC):
    """Abstract prior for a single scalar item parameter."""

    name: str = "prior"

    @abstractmethod
    def log_density(self, x: float) -> float:
        """Log prior density at ``x``."""
        ...

    @abstractmethod
    def log_density_deriv1(self, x: float) -> float:
        """First derivative of :meth:`log_density` at ``x``."""
        ...

    def density(self, x: float) -> float:
        if self.zero_density(x):
            return 0.0
        return float(np.exp(self.log_density(x)))

    def zero_density(self, x: float) -> bool:
        """Whether ``x`` lies outside the support."""
        return False

    def nearest_nonzero(self, x: float) -> float:
        """Closest value to ``x`` with positive density."""
        return x


class NormalPrior(ItemParameterPrior):
    """Normal prior N(mu, sigma²), usually placed on difficulty.

    Parameters
    ----------
    mu : float, default=0.0
        Mean.
    sigma : float, default=1.0
        Standard deviation.
    """

    name = "normal"

    def __init__(self, mu: float = 0.0, sigma: float = 1.0) -> None:
        if sigma <= 0:
            raise ValueError("sigma must be positive")
        self.mu = mu
        self.sigma = sigma
        self._dist = stats.norm(loc=mu, scale=sigma)

    def log_density(self, x: float) -> float:
        return float(self._dist.logpdf(x))

    def log_density_deriv1(self, x: float) -> float:
        return -(x - self.mu) / (self.sigma**2)

    def __repr__(self) -> str:
        return f"NormalPrior(mu={self.mu}, sigma={self.sigma})"


class LogNormalPrior(ItemParameterPrior):
    """Log-normal prior, usually placed on discrimination.

    ``log(x) ~ N(mu, sigma²)``; the density is zero for ``x <= 0``.
    """

    name = "lognormal"

    def __init__(self, mu: float = 0.0, sigma: float = 1.0) -> None:
        if sigma <= 0:
            raise ValueError("sigma must be positive")
        self.mu = mu
        self.sigma = sigma
        self._dist = stats.lognorm(s=sigma, scale=np.exp(mu))

    def log_density(self, x: float) -> float:
        if x <= 0:
            return -np.inf
        return float(self._dist.logpdf(x))

    def log_density_deriv1(self, x: float) -> float:
        if x <= 0:
            return 0.0
        s2 = self.sigma**2
        return -(np.log(x) - self.mu + s2) / (s2 * x)

    def zero_density(self, x: float) -> bool:
        return x <= 0

    def nearest_nonzero(self, x: float) -> float:
        return NEARBY_OFFSET if x <= 0 else x

    def __repr__(self) -> str:
        return f"LogNormalPrior(mu={self.mu}, sigma={self.sigma})"


class BetaPrior(ItemParameterPrior):
    """Four-parameter beta prior on ``[lower, upper]``.

    With the default bounds this is the usual Beta(alpha, beta) prior on
    the guessing (or slipping) asymptote.

    Parameters
    ----------
    alpha, beta : float
        Shape parameters.
    lower, upper : float, default=(0, 1)
        Support of the distribution.
    """

    name = "beta"

    def __init__(
        self,
        alpha: float = 1.0,
        beta: float = 1.0,
        lower: float = 0.0,
        upper: float = 1.0,
    ) -> None:
        if alpha <= 0 or beta <= 0:
            raise ValueError("alpha and beta must be positive")
        if upper <= lower:
            raise ValueError("upper must be greater than lower")
        self.alpha = alpha
        self.beta = beta
        self.lower = lower
        self.upper = upper
        self._dist = stats.beta(alpha, beta, loc=lower, scale=upper - lower)

    def log_density(self, x: float) -> float:
        if self.zero_density(x):
            return -np.inf
        return float(self._dist.logpdf(x))

    def log_density_deriv1(self, x: float) -> float:
        if self.zero_density(x):
            return 0.0
        return (self.alpha - 1.0) / (x - self.lower) - (self.beta - 1.0) / (
            self.upper - x
        )

    def zero_density(self, x: float) -> bool:
        return x <= self.lower or x >= self.upper

    def nearest_nonzero(self, x: float) -> float:
        if x <= self.lower:
            return self.lower + NEARBY_OFFSET
        if x >= self.upper:
            return self.upper - NEARBY_OFFSET
        return x

    def __repr__(self) -> str:
        if self.lower == 0.0 and self.upper == 1.0:
            return f"BetaPrior(alpha={self.alpha}, beta={self.beta})"
        return (
            f"BetaPrior(alpha={self.alpha}, beta={self.beta}, "
            f"lower={self.lower}, upper={self.upper})"
        )
