from .shared_weight import SharedWeight
from .coordinator import SharedWeightCoordinator

__all__ = [
    "SharedWeight",
    "SharedWeightCoordinator"
]
