from .base_optimizer import BaseOptimizer

from .adam import Adam
from .momentum_adam import MomentumAdam
from .rmsprop import RMSProp

__all__ = [
    "BaseOptimizer",
    "Adam",
    "MomentumAdam",
    "RMSProp"
]
