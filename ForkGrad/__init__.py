from .core import Tensor
from .core import BroadcastMapping
from .core import OpNode
from .core import GradientMode
from .core import Result
from .core import BranchStack
from .core import BranchTracker
from .core import SharedWeight
from .core import SharedWeightCoordinator

from . import core
from . import nn
from . import train
from . import utils

__all__ = [
    "Tensor",
    "BroadcastMapping",
    "OpNode",
    "GradientMode",
    "Result",
    "BranchStack",
    "BranchTracker",
    "SharedWeight",
    "SharedWeightCoordinator",
    "core",
    "nn",
    "train",
    "utils"
]
