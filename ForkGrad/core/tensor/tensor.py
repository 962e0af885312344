import numpy as np

import ForkGrad.core.backend.backend as backend
from .broadcast import BroadcastMapping

xp = backend.xp


class Tensor:
    # ======================================================
    # Core initialization
    # ======================================================
    def __init__(self, data, shape=None, dtype=None):
        """
        Tensor(data, shape=None, dtype=None)

        Dense n-dimensional numeric buffer for ForkGrad. Leaf data type:
        it knows nothing about the graph.

        Args:
            data: array-like, numpy.ndarray, cupy.ndarray, scalar or Tensor.
                When `shape` is given, `data` is either a flat buffer of
                `prod(shape)` values or a scalar fill value.
            shape (tuple, optional): target shape.
            dtype (str or np.dtype, optional): data type to cast input to.

        Raises:
            ValueError: If a flat buffer does not hold `prod(shape)` values.
        """
        dtype = dtype or backend.DTYPE
        if isinstance(data, Tensor):
            data = data.data
        if xp.isscalar(data) or isinstance(data, (int, float)):
            data = xp.array(data, dtype=dtype)
        elif isinstance(data, (np.ndarray, xp.ndarray)):
            data = xp.array(data, dtype=dtype)
        else:
            data = xp.array(np.array(data), dtype=dtype)

        if shape is not None:
            shape = tuple(int(d) for d in shape)
            if any(d < 1 for d in shape):
                raise ValueError(f"Tensor dimensions must be positive, got {shape}")
            expected = int(np.prod(shape, dtype=np.int64))
            if data.size == 1 and expected != 1:
                data = xp.full(shape, data.reshape(-1)[0], dtype=dtype)
            elif data.size != expected:
                raise ValueError(
                    f"Buffer of length {data.size} does not match shape {shape} ({expected} elements)"
                )
            else:
                data = data.reshape(shape)

        self.data = data
        self.dtype = self.data.dtype

    # ======================================================
    # Display / Python integration
    # ======================================================
    def __repr__(self):
        def truncate(arr):
            if arr.ndim == 0:
                return str(arr.item())
            if arr.ndim == 1:
                s = arr[:3]
                return f"{s.tolist()}..." if arr.size > 3 else f"{s.tolist()}"
            s = arr[:3]
            rows = [truncate(row) for row in s]
            return "[" + ",\n ".join(rows) + ("..." if arr.shape[0] > 3 else "") + "]"

        data_str = truncate(backend.to_numpy(self.data))
        return f"Tensor(shape={self.shape}, dtype={self.dtype}, data={data_str})"

    def print_code(self, indent=0):
        """
        Debug text dump that can be pasted back as a constructor call.

        Args:
            indent (int): Number of spaces prefixed to every line.

        Returns:
            str: `Tensor([...], shape=(...))` spread over two lines.
        """
        pad = " " * indent
        values = ", ".join(repr(float(v)) for v in backend.to_numpy(self.data).reshape(-1))
        return f"{pad}Tensor(\n{pad}    [{values}],\n{pad}    shape={self.shape})"

    def __len__(self):
        """Return length of first dimension. Raises TypeError for scalars."""
        if self.ndim == 0:
            raise TypeError("Scalar tensor has no length")
        return self.data.shape[0]

    def __getitem__(self, idx):
        return Tensor(self.data[idx], dtype=self.dtype)

    # ======================================================
    # Elementwise algebra
    # ======================================================
    def _binary(self, other, fn):
        other = _wrap(other, self.dtype)
        if self.shape == other.shape:
            return Tensor(fn(self.data, other.data), dtype=self.dtype)
        mapping = BroadcastMapping(self.shape, other.shape)
        return Tensor(fn(mapping.gather_a(self.data), mapping.gather_b(other.data)), dtype=self.dtype)

    def elementwise_add(self, other):
        """Elementwise addition, broadcasting through BroadcastMapping."""
        return self._binary(other, xp.add)

    def elementwise_sub(self, other):
        """Elementwise subtraction."""
        return self._binary(other, xp.subtract)

    def elementwise_multiply(self, other):
        """Elementwise (Hadamard) product."""
        return self._binary(other, xp.multiply)

    def elementwise_divide(self, other):
        """Elementwise division. Division by zero follows IEEE semantics."""
        with np.errstate(divide="ignore", invalid="ignore"):
            return self._binary(other, xp.divide)

    def min(self, other):
        """Elementwise minimum against another tensor or scalar."""
        return self._binary(other, xp.minimum)

    def max(self, other):
        """Elementwise maximum against another tensor or scalar."""
        return self._binary(other, xp.maximum)

    def elementwise_negate(self):
        return Tensor(-self.data, dtype=self.dtype)

    def abs(self):
        return Tensor(xp.abs(self.data), dtype=self.dtype)

    def elementwise_square(self):
        return Tensor(self.data * self.data, dtype=self.dtype)

    def elementwise_square_root(self):
        return Tensor(xp.sqrt(self.data), dtype=self.dtype)

    def __add__(self, other): return self.elementwise_add(other)
    def __radd__(self, other): return _wrap(other, self.dtype).elementwise_add(self)
    def __sub__(self, other): return self.elementwise_sub(other)
    def __rsub__(self, other): return _wrap(other, self.dtype).elementwise_sub(self)
    def __mul__(self, other): return self.elementwise_multiply(other)
    def __rmul__(self, other): return _wrap(other, self.dtype).elementwise_multiply(self)
    def __truediv__(self, other): return self.elementwise_divide(other)
    def __rtruediv__(self, other): return _wrap(other, self.dtype).elementwise_divide(self)
    def __neg__(self): return self.elementwise_negate()
    def __abs__(self): return self.abs()

    # ======================================================
    # Reductions / stats
    # ======================================================
    def average(self):
        """Population mean over all elements (Python float)."""
        return float(xp.mean(self.data))

    def variance(self):
        """Population variance over all elements (Python float)."""
        mean = xp.mean(self.data)
        return float(xp.mean((self.data - mean) ** 2))

    def sum(self, axis=None, keepdims=False):
        return Tensor(xp.sum(self.data, axis=axis, keepdims=keepdims), dtype=self.dtype)

    # ======================================================
    # Shape / storage
    # ======================================================
    def reshape(self, *shape):
        shape = shape[0] if len(shape) == 1 and not isinstance(shape[0], int) else shape
        return Tensor(self.data.reshape(shape), dtype=self.dtype)

    def transpose(self, axes=None):
        return Tensor(xp.transpose(self.data, axes), dtype=self.dtype)

    @property
    def T(self):
        return self.transpose()

    def replace_data(self, buffer):
        """
        Replace the tensor's storage in place.

        Args:
            buffer: flat or shaped buffer with exactly `size` elements.

        Raises:
            ValueError: If the buffer length differs from `size`.
        """
        if isinstance(buffer, Tensor):
            buffer = buffer.data
        buffer = xp.asarray(buffer, dtype=self.dtype)
        if buffer.size != self.size:
            raise ValueError(
                f"Replacement buffer has {buffer.size} elements, tensor of shape {self.shape} needs {self.size}"
            )
        self.data[...] = buffer.reshape(self.shape)
        return self

    def copy(self):
        return Tensor(self.data.copy(), dtype=self.dtype)

    def item(self):
        """Return Python scalar from a single-element Tensor."""
        if self.size != 1:
            raise ValueError("Can only convert scalar tensor to Python number")
        return self.data.item()

    def numpy(self):
        """Return NumPy array (copy if GPU backend)."""
        return backend.to_numpy(self.data)

    def allclose(self, other, rtol=1e-7, atol=1e-9):
        other = _wrap(other, self.dtype)
        return self.shape == other.shape and bool(xp.allclose(self.data, other.data, rtol=rtol, atol=atol))

    # ======================================================
    # Properties
    # ======================================================
    @property
    def shape(self):
        """Tensor shape as tuple."""
        return tuple(self.data.shape)

    @property
    def ndim(self):
        return len(self.data.shape)

    @property
    def size(self):
        """Number of elements."""
        return int(self.data.size)

    # ======================================================
    # Constructors
    # ======================================================
    @classmethod
    def zeros(cls, shape, dtype=None):
        """Return Tensor filled with zeros."""
        return cls(xp.zeros(shape, dtype=(dtype or backend.DTYPE)), dtype=dtype)

    @classmethod
    def ones(cls, shape, dtype=None):
        """Return Tensor filled with ones."""
        return cls(xp.ones(shape, dtype=(dtype or backend.DTYPE)), dtype=dtype)

    @classmethod
    def full(cls, shape, fill_value, dtype=None):
        """Return Tensor filled with a scalar value."""
        return cls(xp.full(shape, fill_value, dtype=(dtype or backend.DTYPE)), dtype=dtype)

    @classmethod
    def randn(cls, shape, dtype=None):
        """Return Tensor with values from N(0,1)."""
        return cls(xp.random.randn(*shape), dtype=dtype)

    @classmethod
    def zeros_like(cls, other):
        return cls.zeros(other.shape, dtype=other.dtype)


def _wrap(obj, dtype=None):
    if isinstance(obj, Tensor):
        return obj
    return Tensor(obj, dtype=dtype)
