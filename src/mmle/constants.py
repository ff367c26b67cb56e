"""Constants for numerical stability and estimation defaults.

These are true constants that should not be user-configurable.
For configurable values, use function arguments with defaults.
"""

PROB_EPSILON: float = 1e-10
"""Small value to keep item probabilities strictly inside (0, 1) in the M-step objective."""

ESTEP_THRESHOLD: int = 250
"""Response-vector partitions shorter than this are computed directly in the E-step."""

MSTEP_THRESHOLD: int = 100
"""Item partitions of at most this length are optimized sequentially in the M-step."""

GUESSING_BOUNDS: tuple[float, float] = (0.001, 1.0)
"""Interval the lower asymptote is clamped to after each M-step."""

SLIPPING_BOUNDS: tuple[float, float] = (0.60, 0.999)
"""Interval the upper asymptote is clamped to after each M-step."""

OPTIMIZER_MAX_ITER: int = 150
"""Iteration limit for each per-item optimization."""

OPTIMIZER_MAX_STEP: float = 2.0
"""Maximum scaled step length for each per-item optimization."""

NEARBY_OFFSET: float = 0.001
"""Offset used to move a value away from a zero-density boundary of a prior."""
