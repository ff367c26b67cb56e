"""Person scoring from calibrated item parameters."""

from mmle.scoring.eap import EAPScorer, marginal_reliability

__all__ = [
    "EAPScorer",
    "marginal_reliability",
]
