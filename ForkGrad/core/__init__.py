from .tensor.tensor import Tensor
from .tensor.broadcast import BroadcastMapping
from .graph import OpNode, GradientMode, Result, BranchStack, BranchTracker
from .graph import ops
from .shared import SharedWeight, SharedWeightCoordinator

from .backend.backend import gpu_available
from .backend.backend import is_gpu
from .backend.backend import device_name
from .backend.backend import get_device
from .backend.backend import synchronize
from .backend.backend import use_gpu
from .backend.backend import use_cpu
from .backend.backend import set_seed
from .backend.backend import set_dtype
from .backend.backend import set_clip_value
from .backend.backend import set_branch_max_iterations

__all__ = [
    "Tensor",
    "BroadcastMapping",
    "OpNode",
    "GradientMode",
    "Result",
    "BranchStack",
    "BranchTracker",
    "ops",
    "SharedWeight",
    "SharedWeightCoordinator",
    "gpu_available",
    "is_gpu",
    "device_name",
    "get_device",
    "synchronize",
    "use_gpu",
    "use_cpu",
    "set_seed",
    "set_dtype",
    "set_clip_value",
    "set_branch_max_iterations"
]
