import ForkGrad.core.backend.backend as backend
from ForkGrad.core.tensor import Tensor, BroadcastMapping

xp = backend.xp

# ============================================================================
# Operation capability
# ============================================================================

class Operation:
    """
    One differentiable operation.

    `forward(*inputs)` computes the output value and keeps whatever the
    backward pass needs; `backward(upstream)` returns one gradient per
    input, in input order. An instance is used for exactly one forward
    call.
    """
    name = "operation"
    arity = 1

    def forward(self, *inputs) -> Tensor:
        raise NotImplementedError

    def backward(self, upstream: Tensor) -> list:
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class UnaryOperation(Operation):
    """
    Elementwise unary op. Subclasses define `_forward(x)` and
    `_derivative(x, y)` (dy/dx evaluated on input x and output y).
    """
    arity = 1

    def forward(self, a):
        self.x = a.data
        self.y = self._forward(self.x)
        return Tensor(self.y, dtype=a.dtype)

    def backward(self, upstream):
        return [Tensor(upstream.data * self._derivative(self.x, self.y), dtype=upstream.dtype)]

    def _forward(self, x):
        raise NotImplementedError

    def _derivative(self, x, y):
        raise NotImplementedError


class BroadcastOperation(Operation):
    """
    Elementwise binary op over operands of possibly different shapes.

    Forward expands both operands through a BroadcastMapping; backward
    computes result-shaped partials and reduces them back per operand.
    """
    arity = 2

    def forward(self, a, b):
        self.mapping = BroadcastMapping(a.shape, b.shape)
        self.a = self.mapping.gather_a(a.data)
        self.b = self.mapping.gather_b(b.data)
        self.out = self._forward(self.a, self.b)
        return Tensor(self.out, dtype=a.dtype)

    def backward(self, upstream):
        grad_a, grad_b = self._partials(upstream.data)
        return [
            Tensor(self.mapping.reduce_a(grad_a), dtype=upstream.dtype),
            Tensor(self.mapping.reduce_b(grad_b), dtype=upstream.dtype),
        ]

    def _forward(self, a, b):
        raise NotImplementedError

    def _partials(self, g):
        raise NotImplementedError

# ============================================================================
# Arithmetic
# ============================================================================

class AddOperation(BroadcastOperation):
    name = "add"
    def _forward(self, a, b): return a + b
    def _partials(self, g): return g, g


class SubOperation(BroadcastOperation):
    name = "sub"
    def _forward(self, a, b): return a - b
    def _partials(self, g): return g, -g


class MulOperation(BroadcastOperation):
    name = "mul"
    def _forward(self, a, b): return a * b
    def _partials(self, g): return g * self.b, g * self.a


class DivOperation(BroadcastOperation):
    name = "div"
    def _forward(self, a, b): return a / b
    def _partials(self, g): return g / self.b, -g * self.a / (self.b * self.b)


class MinimumOperation(BroadcastOperation):
    """Elementwise minimum; ties route the gradient to the left operand."""
    name = "minimum"
    def _forward(self, a, b): return xp.minimum(a, b)
    def _partials(self, g):
        mask = self.a <= self.b
        return g * mask, g * ~mask


class MaximumOperation(BroadcastOperation):
    """Elementwise maximum; ties route the gradient to the left operand."""
    name = "maximum"
    def _forward(self, a, b): return xp.maximum(a, b)
    def _partials(self, g):
        mask = self.a >= self.b
        return g * mask, g * ~mask

# ============================================================================
# Unary elementwise
# ============================================================================

class NegOperation(UnaryOperation):
    name = "neg"
    def _forward(self, x): return -x
    def _derivative(self, x, y): return -xp.ones_like(x)


class SquareOperation(UnaryOperation):
    name = "square"
    def _forward(self, x): return x * x
    def _derivative(self, x, y): return 2 * x


class SqrtOperation(UnaryOperation):
    name = "sqrt"
    def _forward(self, x): return xp.sqrt(x)
    def _derivative(self, x, y): return 0.5 / y


class AbsOperation(UnaryOperation):
    name = "abs"
    def _forward(self, x): return xp.abs(x)
    def _derivative(self, x, y): return xp.sign(x)


class ExpOperation(UnaryOperation):
    name = "exp"
    def _forward(self, x): return xp.exp(x)
    def _derivative(self, x, y): return y


class LogOperation(UnaryOperation):
    name = "log"
    def _forward(self, x): return xp.log(x)
    def _derivative(self, x, y): return 1.0 / x


class SinOperation(UnaryOperation):
    name = "sin"
    def _forward(self, x): return xp.sin(x)
    def _derivative(self, x, y): return xp.cos(x)


class CosOperation(UnaryOperation):
    name = "cos"
    def _forward(self, x): return xp.cos(x)
    def _derivative(self, x, y): return -xp.sin(x)


class TanhOperation(UnaryOperation):
    name = "tanh"
    def _forward(self, x): return xp.tanh(x)
    def _derivative(self, x, y): return 1 - y * y


class SigmoidOperation(UnaryOperation):
    name = "sigmoid"
    def _forward(self, x): return 1.0 / (1.0 + xp.exp(-x))
    def _derivative(self, x, y): return y * (1 - y)


class ReLUOperation(UnaryOperation):
    name = "relu"
    def _forward(self, x): return xp.maximum(x, 0)
    def _derivative(self, x, y): return (x > 0).astype(x.dtype)


class LeakyReLUOperation(UnaryOperation):
    name = "leaky_relu"

    def __init__(self, alpha=0.01):
        self.alpha = alpha

    def _forward(self, x): return xp.where(x > 0, x, self.alpha * x)
    def _derivative(self, x, y): return xp.where(x > 0, 1.0, self.alpha).astype(x.dtype)

# ============================================================================
# Linear algebra / shape / reductions
# ============================================================================

class MatMulOperation(Operation):
    """Matrix product over the last two axes (batched when ndim > 2)."""
    name = "matmul"
    arity = 2

    def forward(self, a, b):
        if a.ndim < 2 or b.ndim < 2:
            raise ValueError(f"matmul needs operands with at least 2 dims, got {a.shape} and {b.shape}")
        self.a = a.data
        self.b = b.data
        return Tensor(xp.matmul(self.a, self.b), dtype=a.dtype)

    def backward(self, upstream):
        g = upstream.data
        grad_a = xp.matmul(g, xp.swapaxes(self.b, -1, -2))
        grad_b = xp.matmul(xp.swapaxes(self.a, -1, -2), g)
        # Batched operands that were broadcast collapse back to their shape
        grad_a = _sum_to_shape(grad_a, self.a.shape)
        grad_b = _sum_to_shape(grad_b, self.b.shape)
        return [Tensor(grad_a, dtype=upstream.dtype), Tensor(grad_b, dtype=upstream.dtype)]


class SumOperation(Operation):
    name = "sum"

    def __init__(self, axis=None, keepdims=False):
        self.axis = axis
        self.keepdims = keepdims

    def forward(self, a):
        self.shape = a.shape
        return Tensor(xp.sum(a.data, axis=self.axis, keepdims=self.keepdims), dtype=a.dtype)

    def backward(self, upstream):
        g = _expand_reduced(upstream.data, self.shape, self.axis, self.keepdims)
        return [Tensor(xp.broadcast_to(g, self.shape).copy(), dtype=upstream.dtype)]


class MeanOperation(SumOperation):
    name = "mean"

    def forward(self, a):
        self.shape = a.shape
        return Tensor(xp.mean(a.data, axis=self.axis, keepdims=self.keepdims), dtype=a.dtype)

    def backward(self, upstream):
        count = _reduced_count(self.shape, self.axis)
        g = _expand_reduced(upstream.data, self.shape, self.axis, self.keepdims) / count
        return [Tensor(xp.broadcast_to(g, self.shape).copy(), dtype=upstream.dtype)]


class ReshapeOperation(Operation):
    name = "reshape"

    def __init__(self, shape):
        self.new_shape = tuple(shape)

    def forward(self, a):
        self.shape = a.shape
        return Tensor(a.data.reshape(self.new_shape), dtype=a.dtype)

    def backward(self, upstream):
        return [Tensor(upstream.data.reshape(self.shape), dtype=upstream.dtype)]


class TransposeOperation(Operation):
    name = "transpose"

    def __init__(self, axes=None):
        self.axes = tuple(axes) if axes is not None else None

    def forward(self, a):
        self.ndim = a.ndim
        return Tensor(xp.transpose(a.data, self.axes), dtype=a.dtype)

    def backward(self, upstream):
        axes = self.axes if self.axes is not None else tuple(reversed(range(self.ndim)))
        inverse = tuple(int(i) for i in xp.argsort(xp.array(axes)))
        return [Tensor(xp.transpose(upstream.data, inverse), dtype=upstream.dtype)]

# ============================================================================
# Helpers
# ============================================================================

def _normalize_axes(axis, ndim):
    if axis is None:
        return tuple(range(ndim))
    if isinstance(axis, int):
        axis = (axis,)
    return tuple(a % ndim for a in axis)


def _reduced_count(shape, axis):
    count = 1
    for a in _normalize_axes(axis, len(shape)):
        count *= shape[a]
    return count


def _expand_reduced(g, shape, axis, keepdims):
    if keepdims:
        return g
    for a in sorted(_normalize_axes(axis, len(shape))):
        g = xp.expand_dims(g, a)
    return g


def _sum_to_shape(grad, shape):
    while grad.ndim > len(shape):
        grad = grad.sum(axis=0)
    for i, dim in enumerate(shape):
        if dim == 1 and grad.shape[i] != 1:
            grad = grad.sum(axis=i, keepdims=True)
    return grad

# ============================================================================
# Dispatch table
# ============================================================================

OPERATIONS = {
    "add": AddOperation,
    "sub": SubOperation,
    "mul": MulOperation,
    "div": DivOperation,
    "minimum": MinimumOperation,
    "maximum": MaximumOperation,
    "neg": NegOperation,
    "square": SquareOperation,
    "sqrt": SqrtOperation,
    "abs": AbsOperation,
    "exp": ExpOperation,
    "log": LogOperation,
    "sin": SinOperation,
    "cos": CosOperation,
    "tanh": TanhOperation,
    "sigmoid": SigmoidOperation,
    "relu": ReLUOperation,
    "leaky_relu": LeakyReLUOperation,
    "matmul": MatMulOperation,
    "sum": SumOperation,
    "mean": MeanOperation,
    "reshape": ReshapeOperation,
    "transpose": TransposeOperation,
}


def register_operation(tag, constructor, table=None):
    """
    Add a constructor to a dispatch table.

    Args:
        tag (str): Operation tag.
        constructor (callable): Returns a fresh Operation instance.
        table (dict, optional): Table to extend. Defaults to OPERATIONS.

    Raises:
        ValueError: If `tag` is already registered.
    """
    table = OPERATIONS if table is None else table
    if tag in table:
        raise ValueError(f"Operation '{tag}' is already registered")
    table[tag] = constructor
    return constructor


def create_operation(tag, table=None, **kwargs) -> Operation:
    """
    Build a fresh Operation for `tag`.

    Raises:
        KeyError: If `tag` is not in the table.
    """
    table = OPERATIONS if table is None else table
    try:
        constructor = table[tag]
    except KeyError:
        raise KeyError(f"Unknown operation '{tag}'. Known operations: {sorted(table)}") from None
    return constructor(**kwargs)
