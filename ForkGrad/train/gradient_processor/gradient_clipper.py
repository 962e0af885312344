import ForkGrad.core.backend.backend as backend
from ForkGrad.core.tensor import Tensor, ensure_tensor

xp = backend.xp


class GradientClipper:
    """
    Adaptive elementwise gradient clipping.

    Each element gets its own bound `min(clip_value, 1 + |z|)`, where `z` is
    the element's standardized value (mean 0, population std 1 over the
    whole tensor). Elements near the center are held close to +-1 while
    outliers keep more of their magnitude, up to `clip_value`.

    A tensor with zero variance has every standardized value defined as 0,
    so every element is clipped to [-1, 1].

    Args:
        clip_value (float, optional): Upper bound on the per-element limit.
            Defaults to `backend.CLIP_VALUE` (config key `clip_value`, 4).
    """
    def __init__(self, clip_value=None):
        self.clip_value = float(backend.CLIP_VALUE if clip_value is None else clip_value)
        if self.clip_value <= 0:
            raise ValueError(f"clip_value must be positive, got {self.clip_value}")

    def __repr__(self):
        return f"GradientClipper(clip_value={self.clip_value})"

    def standardized_tensor(self, tensor):
        """Return `(tensor - mean) / std`, or zeros when the std is 0."""
        tensor = ensure_tensor(tensor)
        mean = tensor.average()
        std = tensor.variance() ** 0.5
        if std == 0.0:
            return Tensor.zeros(tensor.shape, dtype=tensor.dtype)
        return (tensor - mean) / std

    def clip_gradients(self, tensor):
        """Return a clipped copy of `tensor`; the input is not modified."""
        tensor = ensure_tensor(tensor)
        standardized = self.standardized_tensor(tensor)
        dynamic_clip = (standardized.abs() + 1.0).min(Tensor.full(tensor.shape, self.clip_value, dtype=tensor.dtype))
        return tensor.min(dynamic_clip).max(-dynamic_clip)
