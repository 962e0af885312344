from .ops import Operation
from .ops import OPERATIONS
from .ops import create_operation
from .ops import register_operation
from .node import OpNode
from .node import GradientMode
from .result import Result
from .branch_stack import BranchStack
from .branch_tracker import BranchTracker

__all__ = [
    "Operation",
    "OPERATIONS",
    "create_operation",
    "register_operation",
    "OpNode",
    "GradientMode",
    "Result",
    "BranchStack",
    "BranchTracker"
]
