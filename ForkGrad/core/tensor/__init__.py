from .tensor import Tensor
from .broadcast import BroadcastMapping

from .utils import ensure_tensor
from .utils import unbroadcast
from .utils import trace_graph

__all__ = [
    "Tensor",
    "BroadcastMapping",
    "ensure_tensor",
    "unbroadcast",
    "trace_graph"
]
