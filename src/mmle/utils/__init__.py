from mmle.utils.collapse import ItemResponseVector, ResponseVectors, collapse_patterns
from mmle.utils.simulation import make_items, simdata, simulate_responses

__all__ = [
    "ItemResponseVector",
    "ResponseVectors",
    "collapse_patterns",
    "make_items",
    "simdata",
    "simulate_responses",
]
