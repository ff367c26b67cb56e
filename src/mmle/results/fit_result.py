"""Result container for model fitting."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    import pandas as pd
    from mmle.estimation.mstep import DiagnosticCounts
    from mmle.estimation.quadrature import QuadratureRule
    from mmle.models.base import ItemResponseModel


@dataclass
class FitResult:
    """Container for IRT item calibration results.

    Parameters
    ----------
    items : list of ItemResponseModel
        The fitted item models.
    log_likelihood : float
        Marginal log-likelihood of the last EM iteration.
    n_iterations : int
        Number of EM iterations run.
    converged : bool
        Whether the largest parameter change fell below the tolerance.
    standard_errors : list of ndarray
        Standard errors for each item's parameters (NaN when unavailable).
    aic : float
        Akaike Information Criterion.
    bic : float
        Bayesian Information Criterion.
    n_observations : int, optional
        Number of persons.
    n_parameters : int, optional
        Number of free parameters.
    quadrature : QuadratureRule, optional
        Final latent distribution.
    diagnostics : DiagnosticCounts, optional
        M-step diagnostic counts of the last iteration.
    convergence_delta : float, optional
        Largest parameter change in the last iteration.

    Examples
    --------
    >>> result = EMEstimator().fit(items, responses)
    >>> print(result.summary())
    >>> params = result.coef()
    """

    items: list["ItemResponseModel"]
    log_likelihood: float
    n_iterations: int
    converged: bool
    standard_errors: list[NDArray[np.float64]]
    aic: float
    bic: float
    n_observations: int = 0
    n_parameters: int = 0
    quadrature: Optional["QuadratureRule"] = None
    diagnostics: Optional["DiagnosticCounts"] = None
    convergence_delta: float = np.nan

    @property
    def n_items(self) -> int:
        return len(self.items)

    @property
    def item_names(self) -> list[str]:
        return _unique_names(self.items)

    def summary(self, alpha: float = 0.05) -> str:
        """Generate a formatted summary of the results.

        Parameters
        ----------
        alpha : float, default=0.05
            Significance level for confidence intervals.

        Returns
        -------
        str
            Formatted summary string.
        """
        from scipy import stats

        lines = []
        width = 80
        models = sorted({item.model_name for item in self.items})

        lines.append("=" * width)
        lines.append(f"{'IRT Item Calibration (MMLE/EM)':^{width}}")
        lines.append("=" * width)

        lines.append(
            f"Models:             {', '.join(models):<20} "
            f"Log-Likelihood:    {self.log_likelihood:>12.4f}"
        )
        lines.append(
            f"No. Items:          {self.n_items:<20} "
            f"AIC:               {self.aic:>12.4f}"
        )
        lines.append(
            f"No. Persons:        {self.n_observations:<20} "
            f"BIC:               {self.bic:>12.4f}"
        )
        lines.append(
            f"Converged:          {str(self.converged):<20} "
            f"Iterations:        {self.n_iterations:>12}"
        )
        if self.diagnostics is not None:
            lines.append(
                f"Diagnostics:        {str(self.diagnostics):<20} "
                f"No. Parameters:    {self.n_parameters:>12}"
            )
        lines.append("-" * width)

        z_crit = stats.norm.ppf(1 - alpha / 2)
        ci_label = f"[{(1-alpha)*100:.0f}%"

        for name, item, se in zip(self.item_names, self.items, self.standard_errors):
            lines.append(f"\n{name} ({item.model_name}):")
            lines.append(
                f"{'Parameter':<15} {'Estimate':>10} {'Std.Err':>10} "
                f"{'z-value':>10} {'P>|z|':>10} "
                f"{ci_label:>8} {'CI]':>8}"
            )
            lines.append("-" * width)

            for i, (param_name, est) in enumerate(item.parameters.items()):
                err = se[i] if i < len(se) else np.nan

                if err > 0 and not np.isnan(err):
                    z = est / err
                    p = 2 * (1 - stats.norm.cdf(abs(z)))
                    ci_low = est - z_crit * err
                    ci_high = est + z_crit * err
                else:
                    z = p = ci_low = ci_high = np.nan

                lines.append(
                    f"{param_name:<15} {est:>10.4f} {err:>10.4f} "
                    f"{z:>10.3f} {p:>10.4f} "
                    f"{ci_low:>8.4f} {ci_high:>8.4f}"
                )

        lines.append("=" * width)
        return "\n".join(lines)

    def coef(self) -> "pd.DataFrame":
        """Return item parameters as a DataFrame.

        Returns
        -------
        pandas.DataFrame
            One row per item, one column per parameter name. Parameters an
            item does not have are NaN.
        """
        import pandas as pd

        rows = [item.parameters for item in self.items]
        df = pd.DataFrame(rows, index=self.item_names)
        df.index.name = "item"
        return df

    def coef_with_se(self) -> "pd.DataFrame":
        """Return item parameters with standard errors as a DataFrame."""
        import pandas as pd

        rows: list[dict[str, Any]] = []
        for item, se in zip(self.items, self.standard_errors):
            row: dict[str, Any] = {}
            for i, (param_name, value) in enumerate(item.parameters.items()):
                row[param_name] = value
                row[f"{param_name}_se"] = se[i] if i < len(se) else np.nan
            rows.append(row)

        df = pd.DataFrame(rows, index=self.item_names)
        df.index.name = "item"
        return df

    def fit_statistics(self) -> dict[str, float]:
        """Return fit statistics as a dictionary."""
        return {
            "log_likelihood": self.log_likelihood,
            "aic": self.aic,
            "bic": self.bic,
            "n_parameters": self.n_parameters,
            "n_observations": self.n_observations,
            "converged": self.converged,
            "n_iterations": self.n_iterations,
        }

    def __repr__(self) -> str:
        return (
            f"FitResult(n_items={self.n_items}, "
            f"LL={self.log_likelihood:.2f}, "
            f"converged={self.converged})"
        )


def _unique_names(items: list["ItemResponseModel"]) -> list[str]:
    """Item names, falling back to ``Item_<j>`` where names repeat."""
    names = [item.name for item in items]
    if len(set(names)) == len(names):
        return names
    return [
        name if names.count(name) == 1 else f"Item_{j}" for j, name in enumerate(names)
    ]
