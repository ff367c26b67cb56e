import copy
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Self

import numpy as np
from numpy.typing import NDArray

from mmle._core import as_theta_1d, sigmoid

if TYPE_CHECKING:
    from mmle.estimation.priors import ItemParameterPrior


class ItemResponseModel(ABC):
    """Response model for a single item.

    Every variant exposes the same capabilities: category probabilities
    and their parameter gradients at a set of theta values, an active
    parameter vector with a staged proposal of the same shape, and
    optional per-parameter priors. Probability and gradient methods take
    an optional ``params`` vector so that trial values can be evaluated
    without touching the shared active parameters.
    """

    model_name: str = "BaseModel"
    has_analytic_gradient: bool = True

    def __init__(
        self,
        parameter_names: tuple[str, ...],
        values: NDArray[np.float64],
        n_categories: int,
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        if n_categories < 2:
            raise ValueError(f"n_categories must be at least 2, got {n_categories}")
        if scaling_constant <= 0:
            raise ValueError("scaling_constant must be positive")

        values = np.asarray(values, dtype=np.float64).ravel()
        if values.size != len(parameter_names):
            raise ValueError(
                f"{self.model_name} expects {len(parameter_names)} parameters, "
                f"got {values.size}"
            )

        self.parameter_names = tuple(parameter_names)
        self.n_categories = n_categories
        self.name = name or self.model_name
        self.scaling_constant = scaling_constant
        self.fixed = fixed
        self._parameters = values.copy()
        self._proposal = values.copy()
        self._priors: dict[str, "ItemParameterPrior"] = {}
        self.standard_errors = np.full(values.size, np.nan)

    @property
    def n_parameters(self) -> int:
        return len(self.parameter_names)

    @property
    def parameters(self) -> dict[str, float]:
        return {k: float(v) for k, v in zip(self.parameter_names, self._parameters)}

    def set_parameters(self, **params: float) -> Self:
        for name, value in params.items():
            if name not in self.parameter_names:
                valid_params = ", ".join(self.parameter_names)
                raise ValueError(f"Unknown parameter '{name}'. Valid: {valid_params}")
            idx = self.parameter_names.index(name)
            self._parameters[idx] = value
            self._proposal[idx] = value
        return self

    def get_item_parameter_array(self) -> NDArray[np.float64]:
        return self._parameters.copy()

    @property
    def proposal(self) -> NDArray[np.float64]:
        return self._proposal.copy()

    def set_proposal(self, values: NDArray[np.float64]) -> None:
        """Stage new values; the active parameters are left untouched."""
        if self.fixed:
            return
        values = np.array(values, dtype=np.float64).ravel()
        if values.shape != self._parameters.shape:
            raise ValueError(
                f"proposal shape {values.shape} != {self._parameters.shape}"
            )
        self._proposal = values

    def accept_all_proposal_values(self) -> float:
        """Copy the proposal into the active slot.

        Returns
        -------
        float
            Largest change over the parameters. The change is relative to
            the new value when that value is at least 1, otherwise absolute.
            Fixed items always report 0.
        """
        if self.fixed:
            return 0.0
        change = np.abs(self._parameters - self._proposal)
        big = self._proposal >= 1.0
        change[big] /= self._proposal[big]
        self._parameters = self._proposal.copy()
        return float(change.max(initial=0.0))

    def set_prior(self, name: str, prior: Optional["ItemParameterPrior"]) -> Self:
        if name not in self.parameter_names:
            valid_params = ", ".join(self.parameter_names)
            raise ValueError(f"Unknown parameter '{name}'. Valid: {valid_params}")
        if prior is None:
            self._priors.pop(name, None)
        else:
            self._priors[name] = prior
        return self

    def get_prior(self, name: str) -> Optional["ItemParameterPrior"]:
        return self._priors.get(name)

    @property
    def priors(self) -> dict[str, "ItemParameterPrior"]:
        return dict(self._priors)

    def log_prior(self, params: Optional[NDArray[np.float64]] = None) -> float:
        """Sum of the prior log-densities at ``params`` (active values by default)."""
        params = self._resolve(params)
        total = 0.0
        for name, prior in self._priors.items():
            total += prior.log_density(params[self.parameter_names.index(name)])
        return total

    def log_prior_gradient(
        self, params: Optional[NDArray[np.float64]] = None
    ) -> NDArray[np.float64]:
        params = self._resolve(params)
        grad = np.zeros(self.n_parameters)
        for name, prior in self._priors.items():
            idx = self.parameter_names.index(name)
            grad[idx] = prior.log_density_deriv1(params[idx])
        return grad

    def nearest_supported(self, params: NDArray[np.float64]) -> NDArray[np.float64]:
        """Move values with zero prior density just inside the support."""
        params = np.array(params, dtype=np.float64)
        for name, prior in self._priors.items():
            idx = self.parameter_names.index(name)
            params[idx] = prior.nearest_nonzero(params[idx])
        return params

    def _resolve(self, params: Optional[NDArray[np.float64]]) -> NDArray[np.float64]:
        if params is None:
            return self._parameters
        return np.asarray(params, dtype=np.float64)

    @abstractmethod
    def category_probabilities(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        """Probabilities of every category, shape (n_theta, n_categories)."""
        ...

    @abstractmethod
    def probability_gradient(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        """Parameter derivatives of every category probability.

        Returns
        -------
        ndarray of shape (n_theta, n_categories, n_parameters)
        """
        ...

    @abstractmethod
    def scale(self, intercept: float, slope: float) -> None:
        """Re-express the item on the metric ``theta* = intercept + slope * theta``."""
        ...

    def probability(
        self,
        theta: NDArray[np.float64] | float,
        category: int,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64] | float:
        probs = self.category_probabilities(theta, params)[:, category]
        return float(probs[0]) if np.ndim(theta) == 0 else probs

    def gradient(
        self,
        theta: NDArray[np.float64] | float,
        category: int,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        grad = self.probability_gradient(theta, params)[:, category, :]
        return grad[0] if np.ndim(theta) == 0 else grad

    def expected_value(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        probs = self.category_probabilities(theta, params)
        return probs @ np.arange(self.n_categories, dtype=np.float64)

    def _transform_values(self, transform) -> None:
        """Apply ``transform(values, ses) -> (values, ses)`` to active and proposal."""
        self._parameters, self.standard_errors = transform(
            self._parameters.copy(), self.standard_errors.copy()
        )
        self._proposal, _ = transform(self._proposal.copy(), self.standard_errors.copy())

    def copy(self) -> Self:
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        values = ", ".join(f"{k}={v:.4f}" for k, v in self.parameters.items())
        return f"{self.__class__.__name__}({values})"


class DichotomousItemModel(ItemResponseModel):
    """Logistic family with lower and upper asymptotes.

    P(X=1|θ) = c + (d - c) / (1 + exp(-D a (θ - b)))

    Subclasses choose which of discrimination (a), difficulty (b),
    guessing (c) and slipping (d) are free; the rest are held at the
    constants passed in.
    """

    _DEFAULTS = {
        "discrimination": 1.0,
        "difficulty": 0.0,
        "guessing": 0.0,
        "slipping": 1.0,
    }

    def __init__(
        self,
        parameter_names: tuple[str, ...],
        values: dict[str, float],
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        merged = {**self._DEFAULTS, **values}
        self._constants = {
            k: float(v) for k, v in merged.items() if k not in parameter_names
        }
        super().__init__(
            parameter_names,
            np.array([merged[k] for k in parameter_names]),
            n_categories=2,
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )

    def _unpack(
        self, params: Optional[NDArray[np.float64]]
    ) -> tuple[float, float, float, float]:
        values = dict(self._constants)
        values.update(zip(self.parameter_names, self._resolve(params)))
        return (
            values["discrimination"],
            values["difficulty"],
            values["guessing"],
            values["slipping"],
        )

    def category_probabilities(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        theta = as_theta_1d(theta)
        a, b, c, d = self._unpack(params)
        pstar = sigmoid(self.scaling_constant * a * (theta - b))
        p = c + (d - c) * pstar
        return np.column_stack([1.0 - p, p])

    def probability_gradient(
        self,
        theta: NDArray[np.float64] | float,
        params: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        theta = as_theta_1d(theta)
        a, b, c, d = self._unpack(params)
        D = self.scaling_constant
        pstar = sigmoid(D * a * (theta - b))
        common = (d - c) * pstar * (1.0 - pstar)
        derivs = {
            "discrimination": common * D * (theta - b),
            "difficulty": -common * D * a,
            "guessing": 1.0 - pstar,
            "slipping": pstar,
        }
        dp = np.column_stack([derivs[k] for k in self.parameter_names])
        return np.stack([-dp, dp], axis=1)

    def scale(self, intercept: float, slope: float) -> None:
        names = self.parameter_names

        def transform(values, ses):
            if "difficulty" in names:
                i = names.index("difficulty")
                values[i] = intercept + slope * values[i]
                ses[i] = slope * ses[i]
            if "discrimination" in names:
                i = names.index("discrimination")
                values[i] = values[i] / slope
                ses[i] = ses[i] / slope
            return values, ses

        self._transform_values(transform)
        if "discrimination" in self._constants:
            self._constants["discrimination"] /= slope


class PolytomousItemModel(ItemResponseModel):
    """Ordered polytomous model with a discrimination and K-1 location parameters.

    Locations are named ``{location_label}_1 ... {location_label}_{K-1}``.
    """

    location_label: str = "step"

    def __init__(
        self,
        discrimination: float,
        locations: NDArray[np.float64],
        free_discrimination: bool = True,
        name: Optional[str] = None,
        scaling_constant: float = 1.0,
        fixed: bool = False,
    ) -> None:
        locations = np.asarray(locations, dtype=np.float64).ravel()
        if locations.size < 1:
            raise ValueError(f"{self.model_name} needs at least one {self.location_label}")
        location_names = tuple(
            f"{self.location_label}_{k + 1}" for k in range(locations.size)
        )
        self._free_discrimination = free_discrimination
        self._discrimination = float(discrimination)
        if free_discrimination:
            names = ("discrimination",) + location_names
            values = np.concatenate([[discrimination], locations])
        else:
            names = location_names
            values = locations
        super().__init__(
            names,
            values,
            n_categories=locations.size + 1,
            name=name,
            scaling_constant=scaling_constant,
            fixed=fixed,
        )

    def _unpack(
        self, params: Optional[NDArray[np.float64]]
    ) -> tuple[float, NDArray[np.float64]]:
        params = self._resolve(params)
        if self._free_discrimination:
            return float(params[0]), params[1:]
        return self._discrimination, params

    @property
    def discrimination(self) -> float:
        return self._unpack(None)[0]

    @property
    def locations(self) -> NDArray[np.float64]:
        return self._unpack(None)[1].copy()

    def _assemble_gradient(
        self,
        d_discrimination: NDArray[np.float64],
        d_locations: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        if self._free_discrimination:
            return np.concatenate([d_discrimination[:, :, None], d_locations], axis=2)
        return d_locations

    def scale(self, intercept: float, slope: float) -> None:
        offset = 1 if self._free_discrimination else 0

        def transform(values, ses):
            values[offset:] = intercept + slope * values[offset:]
            ses[offset:] = slope * ses[offset:]
            if offset:
                values[0] = values[0] / slope
                ses[0] = ses[0] / slope
            return values, ses

        self._transform_values(transform)
        if not self._free_discrimination:
            self._discrimination /= slope
