from .stateful import Stateful

from . import loss
from . import optim

__all__ = [
    "Stateful",
    "loss",
    "optim"
]
