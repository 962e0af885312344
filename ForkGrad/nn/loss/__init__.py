from .losses import LossOperation
from .losses import MeanSquaredError
from .losses import BinaryCrossEntropy
from .losses import Huber
from .losses import LOSSES
from .losses import create_loss

__all__ = [
    "LossOperation",
    "MeanSquaredError",
    "BinaryCrossEntropy",
    "Huber",
    "LOSSES",
    "create_loss"
]
