"""Type definitions for the mmle package."""

from typing import Literal, Union

import numpy as np
from numpy.typing import NDArray

# Array types
ResponseMatrix = NDArray[np.int_]  # Shape: (n_persons, n_items)
ThetaArray = NDArray[np.float64]  # Shape: (n_points,)
ParameterArray = NDArray[np.float64]  # Shape: (n_parameters,)
WeightArray = NDArray[np.float64]  # Shape: (n_points,)

# Model type literals
DichotomousModelType = Literal["1PL", "2PL", "3PL", "4PL"]
PolytomousModelType = Literal["GRM", "GPCM", "PCM"]
ModelType = Union[DichotomousModelType, PolytomousModelType]

# Latent density handling during EM
LatentDensityType = Literal["fixed", "empirical", "empirical_standardized"]

# Optimizer globalization strategies
GlobalStrategyType = Literal["line_search", "dogleg", "hook"]
