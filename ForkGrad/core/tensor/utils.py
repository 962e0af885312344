import ForkGrad.core.backend.backend as backend
from .tensor import Tensor

xp = backend.xp


def ensure_tensor(obj, dtype=None):
    """
    Ensure the input is a Tensor.
    Scalars, lists, numpy/cupy arrays get wrapped automatically; graph
    objects (OpNode, Result) give their current value.
    """
    if isinstance(obj, Tensor):
        return obj
    value = getattr(obj, "value", None)
    if isinstance(value, Tensor):
        return value
    return Tensor(obj, dtype=dtype)


def unbroadcast(grad, shape):
    """
    Reduce `grad` back to `shape` (the original tensor shape before broadcasting).

    Args:
        grad (Tensor): Gradient in the broadcast result shape.
        shape (tuple): Original operand shape.

    Returns:
        Tensor: Gradient summed over the broadcast axes.
    """
    from .broadcast import BroadcastMapping

    grad = ensure_tensor(grad)
    mapping = BroadcastMapping(shape, grad.shape)
    if mapping.result_shape != grad.shape:
        raise ValueError(f"Shape {tuple(shape)} does not broadcast to gradient shape {grad.shape}")
    return Tensor(mapping.reduce_a(grad.data), dtype=grad.dtype)


def trace_graph(node, depth=0, visited=None):
    """
    Print a node's chain, its operand nodes and the branches forked from it.

    Args:
        node (OpNode): Node to start from.
    """
    if visited is None:
        visited = set()
    prefix = "  " * depth
    if id(node) in visited:
        print(f"{prefix}{node!r} (already visited)")
        return
    visited.add(id(node))
    print(f"{prefix}{node!r} [engine={str(node.engine_id)[:8]}]")
    for step in node.steps:
        grads = "pending" if step.result.gradients is None else "done"
        print(f"{prefix}  -> {step.operation.name} {step.result.shape} ({grads})")
        for operand, _, _ in step.operands[1:]:
            if operand is not None:
                trace_graph(operand, depth + 2, visited)
    for branch in node.branch_tracker.visited_branches:
        print(f"{prefix}  branch:")
        trace_graph(branch, depth + 2, visited)
