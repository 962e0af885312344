import numpy as np

import ForkGrad.core.backend.backend as backend

xp = backend.xp


class BroadcastMapping:
    """
    Index/reduction plan reconciling two operand shapes for a binary op.

    Forward, every element of the result reads one element of each operand
    (`source_indices_a` / `source_indices_b`, flat row-major indices).
    Backward, a result-shaped gradient is summed over `reduction_indices_a`
    / `reduction_indices_b` and reshaped to the operand's original shape.

    Args:
        shape_a (tuple): Shape of the left operand.
        shape_b (tuple): Shape of the right operand.

    Raises:
        ValueError: If the shapes cannot be broadcast together.

    Example:
        >>> m = BroadcastMapping((2, 3), (3,))
        >>> m.result_shape
        (2, 3)
        >>> m.reduction_indices_b
        (0,)
    """
    def __init__(self, shape_a, shape_b):
        self.shape_a = tuple(int(d) for d in shape_a)
        self.shape_b = tuple(int(d) for d in shape_b)
        try:
            self.result_shape = tuple(np.broadcast_shapes(self.shape_a, self.shape_b))
        except ValueError:
            raise ValueError(
                f"Shapes {self.shape_a} and {self.shape_b} cannot be broadcast together"
            ) from None

        self.source_indices_a = self._source_indices(self.shape_a)
        self.source_indices_b = self._source_indices(self.shape_b)
        self.reduction_indices_a = self._reduction_indices(self.shape_a)
        self.reduction_indices_b = self._reduction_indices(self.shape_b)

    def __repr__(self):
        return (f"BroadcastMapping(a={self.shape_a}, b={self.shape_b}, result={self.result_shape}, "
                f"reduce_a={self.reduction_indices_a}, reduce_b={self.reduction_indices_b})")

    # ------------------------------------------------------------------
    # Plan construction
    # ------------------------------------------------------------------
    def _source_indices(self, shape):
        size = int(np.prod(shape, dtype=np.int64))
        flat = xp.arange(size, dtype=xp.int64).reshape(shape)
        return xp.broadcast_to(flat, self.result_shape).reshape(-1).copy()

    def _reduction_indices(self, shape):
        ndim = len(self.result_shape)
        padded = (1,) * (ndim - len(shape)) + shape
        return tuple(
            axis for axis, (dim, res) in enumerate(zip(padded, self.result_shape))
            if dim == 1 and res > 1
        )

    # ------------------------------------------------------------------
    # Forward: expand operands to the result shape
    # ------------------------------------------------------------------
    def gather_a(self, data):
        """Expand left-operand data to `result_shape`."""
        return data.reshape(-1)[self.source_indices_a].reshape(self.result_shape)

    def gather_b(self, data):
        """Expand right-operand data to `result_shape`."""
        return data.reshape(-1)[self.source_indices_b].reshape(self.result_shape)

    # ------------------------------------------------------------------
    # Backward: reduce a result-shaped gradient back to each operand
    # ------------------------------------------------------------------
    def reduce_a(self, grad):
        """Sum a result-shaped gradient back to `shape_a`."""
        return self._reduce(grad, self.reduction_indices_a, self.shape_a)

    def reduce_b(self, grad):
        """Sum a result-shaped gradient back to `shape_b`."""
        return self._reduce(grad, self.reduction_indices_b, self.shape_b)

    @staticmethod
    def _reduce(grad, axes, shape):
        if axes:
            grad = grad.sum(axis=axes, keepdims=True)
        return grad.reshape(shape)
