from .shared_state import SharedStateEntry
from .opportunity import SeoOpportunity

__all__ = [
    "SharedStateEntry",
    "SeoOpportunity",
]
