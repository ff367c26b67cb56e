"""Discrete approximations of the latent trait distribution.

A quadrature rule is an ordered set of points with densities that sum to
one. The E-step integrates over the rule, and the empirical-histogram
option of the EM driver rewrites its densities between iterations.
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.special import roots_hermite
from scipy.stats import norm


class QuadratureRule:
    """Points and normalized densities on the latent trait scale.

    Parameters
    ----------
    points : ndarray of shape (n_points,)
        Strictly increasing quadrature points.
    densities : ndarray of shape (n_points,)
        Non-negative weights; normalized to sum to one.
    """

    def __init__(
        self,
        points: NDArray[np.float64],
        densities: NDArray[np.float64],
    ) -> None:
        points = np.asarray(points, dtype=np.float64).ravel()
        densities = np.asarray(densities, dtype=np.float64).ravel()
        if points.size < 1:
            raise ValueError("n_points must be at least 1")
        if points.shape != densities.shape:
            raise ValueError(
                f"points and densities differ in length: {points.size} != {densities.size}"
            )
        if np.any(densities < 0):
            raise ValueError("densities must be non-negative")
        if np.any(np.diff(points) <= 0):
            raise ValueError("points must be strictly increasing")
        total = densities.sum()
        if total <= 0:
            raise ValueError("densities must not all be zero")

        self._points = points
        self._densities = densities / total

    @property
    def n_points(self) -> int:
        return self._points.size

    @property
    def points(self) -> NDArray[np.float64]:
        """Quadrature points."""
        return self._points.copy()

    @property
    def densities(self) -> NDArray[np.float64]:
        """Quadrature densities (sum to one)."""
        return self._densities.copy()

    def get_number_of_points(self) -> int:
        return self.n_points

    def get_point_at(self, k: int) -> float:
        return float(self._points[k])

    def get_density_at(self, k: int) -> float:
        return float(self._densities[k])

    def set_density_at(self, k: int, value: float) -> None:
        """Overwrite one density without renormalizing."""
        if value < 0:
            raise ValueError("density must be non-negative")
        densities = self._densities.copy()
        densities[k] = value
        self._densities = densities

    def set_densities(self, densities: NDArray[np.float64]) -> None:
        """Replace all densities, normalizing them to sum to one."""
        densities = np.asarray(densities, dtype=np.float64).ravel()
        if densities.shape != self._points.shape:
            raise ValueError("densities must match the number of points")
        self._densities = densities / densities.sum()

    def mean(self) -> float:
        return float(self._points @ self._densities)

    def variance(self) -> float:
        m = self.mean()
        return float(((self._points - m) ** 2) @ self._densities)

    def std(self) -> float:
        return float(np.sqrt(self.variance()))

    def standardize(self, keep_points: bool = True) -> tuple[float, float]:
        """Rescale the distribution to mean zero and unit variance.

        Parameters
        ----------
        keep_points : bool, default=True
            If True the points stay where they are and the densities are
            redistributed by linearly interpolating the cumulative
            distribution of the standardized points. If False the points
            themselves are moved.

        Returns
        -------
        intercept, slope : float
            Coefficients of ``theta* = intercept + slope * theta``, which
            map the old scale onto the standardized one.
        """
        m = self.mean()
        sd = self.std()
        if sd <= 0:
            raise ValueError("cannot standardize a degenerate distribution")
        slope = 1.0 / sd
        intercept = -m / sd
        moved = intercept + slope * self._points

        if not keep_points:
            self._points = moved
            return intercept, slope

        cdf = np.cumsum(self._densities)
        new_cdf = np.interp(self._points, moved, cdf, left=0.0, right=1.0)
        new_cdf[-1] = 1.0
        densities = np.diff(new_cdf, prepend=0.0)
        densities = np.clip(densities, 0.0, None)
        self._densities = densities / densities.sum()
        return intercept, slope

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_points={self.n_points}, "
            f"mean={self.mean():.4f}, sd={self.std():.4f})"
        )


class NormalQuadrature(QuadratureRule):
    """Evenly spaced points weighted by the normal density.

    Parameters
    ----------
    n_points : int, default=41
        Number of points.
    min_point, max_point : float, default=(-4.0, 4.0)
        Range of the points.
    mean, sd : float, default=(0.0, 1.0)
        Parameters of the normal density evaluated at the points.

    Examples
    --------
    >>> quad = NormalQuadrature(n_points=41)
    >>> round(quad.mean(), 10)
    0.0
    """

    def __init__(
        self,
        n_points: int = 41,
        min_point: float = -4.0,
        max_point: float = 4.0,
        mean: float = 0.0,
        sd: float = 1.0,
    ) -> None:
        if n_points < 2:
            raise ValueError("n_points must be at least 2")
        if max_point <= min_point:
            raise ValueError("max_point must be greater than min_point")
        if sd <= 0:
            raise ValueError("sd must be positive")
        points = np.linspace(min_point, max_point, n_points)
        super().__init__(points, norm.pdf(points, loc=mean, scale=sd))


class UniformQuadrature(QuadratureRule):
    """Evenly spaced points with equal densities."""

    def __init__(
        self,
        n_points: int = 41,
        min_point: float = -4.0,
        max_point: float = 4.0,
    ) -> None:
        if n_points < 2:
            raise ValueError("n_points must be at least 2")
        if max_point <= min_point:
            raise ValueError("max_point must be greater than min_point")
        points = np.linspace(min_point, max_point, n_points)
        super().__init__(points, np.ones(n_points))


class UserSuppliedQuadrature(QuadratureRule):
    """Points and densities given by the caller (for example, from a prior calibration)."""


class GaussHermiteQuadrature(QuadratureRule):
    """Gauss-Hermite quadrature for integrating over normal distributions.

    This class provides nodes (quadrature points) and weights for
    numerically approximating integrals of the form:

        ∫ f(x) × φ(x) dx

    where φ(x) is the normal density. The approximation is:

        ∫ f(x) × φ(x) dx ≈ Σ w_i × f(x_i)

    Parameters
    ----------
    n_points : int, default=21
        Number of quadrature points.
    mean : float, default=0.0
        Mean of the normal distribution.
    sd : float, default=1.0
        Standard deviation of the normal distribution.

    Examples
    --------
    >>> quad = GaussHermiteQuadrature(n_points=21)
    >>> # Approximate E[X²] where X ~ N(0,1) - should be 1
    >>> round(float(np.sum(quad.densities * quad.points**2)), 10)
    1.0
    """

    def __init__(
        self,
        n_points: int = 21,
        mean: float = 0.0,
        sd: float = 1.0,
    ) -> None:
        if n_points < 1:
            raise ValueError("n_points must be at least 1")
        if sd <= 0:
            raise ValueError("sd must be positive")

        # Get 1D Gauss-Hermite nodes and weights
        # scipy's roots_hermite returns physicist's Hermite polynomials
        nodes, weights = roots_hermite(n_points)

        # Transform to probabilist's convention (standard normal)
        # Physicist: ∫ f(x) exp(-x²) dx
        # Probabilist: ∫ f(x) (1/√(2π)) exp(-x²/2) dx
        nodes = nodes * np.sqrt(2) * sd + mean
        weights = weights / np.sqrt(np.pi)
        super().__init__(nodes, weights)


def create_quadrature(
    n_points: int = 41,
    theta_range: tuple[float, float] = (-4.0, 4.0),
    kind: str = "normal",
    points: Optional[NDArray[np.float64]] = None,
    densities: Optional[NDArray[np.float64]] = None,
) -> QuadratureRule:
    """Build a quadrature rule by name.

    Parameters
    ----------
    n_points : int, default=41
        Number of points.
    theta_range : tuple of float, default=(-4, 4)
        Range (min, max) for evenly spaced rules.
    kind : {'normal', 'uniform', 'gauss_hermite', 'user'}, default='normal'
        Type of rule.
    points, densities : ndarray, optional
        Required when ``kind='user'``.

    Returns
    -------
    QuadratureRule
    """
    if kind == "normal":
        return NormalQuadrature(n_points, theta_range[0], theta_range[1])
    if kind == "uniform":
        return UniformQuadrature(n_points, theta_range[0], theta_range[1])
    if kind == "gauss_hermite":
        return GaussHermiteQuadrature(n_points)
    if kind == "user":
        if points is None or densities is None:
            raise ValueError("points and densities are required for kind='user'")
        return UserSuppliedQuadrature(points, densities)
    raise ValueError(
        f"Unknown quadrature '{kind}'. Valid: normal, uniform, gauss_hermite, user"
    )
