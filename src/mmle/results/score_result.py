"""Result container for person scoring."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    import pandas as pd


@dataclass
class ScoreResult:
    """Container for person ability (theta) estimates.

    Parameters
    ----------
    theta : ndarray of shape (n_persons,)
        Estimated ability values.
    standard_error : ndarray of shape (n_persons,)
        Standard errors of the theta estimates.
    method : str
        Scoring method used.
    person_ids : list, optional
        Identifiers for each person.

    Examples
    --------
    >>> scores = EAPScorer().score(items, responses)
    >>> scores.marginal_reliability
    >>> scores.to_dataframe()
    """

    theta: NDArray[np.float64]
    standard_error: NDArray[np.float64]
    method: str
    person_ids: Optional[list] = None

    @property
    def n_persons(self) -> int:
        """Number of persons scored."""
        return self.theta.shape[0]

    @property
    def marginal_reliability(self) -> float:
        """Marginal reliability of the scores (see :func:`marginal_reliability`)."""
        from mmle.scoring.eap import marginal_reliability

        return marginal_reliability(self.theta, self.standard_error)

    def to_dataframe(self) -> "pd.DataFrame":
        """Convert results to a pandas DataFrame with ``theta`` and ``se`` columns."""
        import pandas as pd

        df = pd.DataFrame({"theta": self.theta, "se": self.standard_error})
        if self.person_ids is not None:
            df.index = self.person_ids
            df.index.name = "person"
        return df

    def to_array(self, include_se: bool = False) -> NDArray[np.float64]:
        """Return theta values, optionally stacked with their standard errors."""
        if not include_se:
            return self.theta.copy()
        return np.column_stack([self.theta, self.standard_error])

    def __repr__(self) -> str:
        return f"ScoreResult(n_persons={self.n_persons}, method='{self.method}')"
