import ForkGrad.core.backend.backend as backend
from ForkGrad.core.tensor import Tensor
from ForkGrad.core.graph.ops import Operation

xp = backend.xp


class LossOperation(Operation):
    """
    Loss as a two-input operation: (predictions, targets) -> scalar mean.

    Subclasses define `_loss(p, t)` (per-element loss) and
    `_partials(p, t)` (per-element d/dp and d/dt). Targets must have the
    prediction's shape.
    """
    arity = 2

    def forward(self, predictions, targets):
        if predictions.shape != targets.shape:
            raise ValueError(f"{self.name} loss needs matching shapes, got {predictions.shape} and {targets.shape}")
        self.p = predictions.data
        self.t = targets.data
        return Tensor(xp.mean(self._loss(self.p, self.t)), dtype=predictions.dtype)

    def backward(self, upstream):
        scale = upstream.data / self.p.size
        grad_p, grad_t = self._partials(self.p, self.t)
        return [Tensor(grad_p * scale, dtype=upstream.dtype), Tensor(grad_t * scale, dtype=upstream.dtype)]

    def _loss(self, p, t):
        raise NotImplementedError

    def _partials(self, p, t):
        raise NotImplementedError


class MeanSquaredError(LossOperation):
    """Mean of (p - t)^2."""
    name = "mse"

    def _loss(self, p, t):
        d = p - t
        return d * d

    def _partials(self, p, t):
        d = 2 * (p - t)
        return d, -d


class BinaryCrossEntropy(LossOperation):
    """
    Mean of -(t * log(p) + (1 - t) * log(1 - p)) on probabilities p.

    Args:
        epsilon (float, optional): Predictions are clipped to
            [epsilon, 1 - epsilon]. Default is 1e-7.
    """
    name = "bce"

    def __init__(self, epsilon=1e-7):
        self.epsilon = float(epsilon)

    def _clipped(self, p):
        return xp.clip(p, self.epsilon, 1 - self.epsilon)

    def _loss(self, p, t):
        p = self._clipped(p)
        return -(t * xp.log(p) + (1 - t) * xp.log(1 - p))

    def _partials(self, p, t):
        p = self._clipped(p)
        grad_p = (p - t) / (p * (1 - p))
        grad_t = xp.log(1 - p) - xp.log(p)
        return grad_p, grad_t


class Huber(LossOperation):
    """
    Huber loss: quadratic for |p - t| <= delta, linear beyond.

    Args:
        delta (float, optional): Switch point. Default is 1.0.
    """
    name = "huber"

    def __init__(self, delta=1.0):
        self.delta = float(delta)

    def _loss(self, p, t):
        d = p - t
        a = xp.abs(d)
        return xp.where(a <= self.delta, 0.5 * d * d, self.delta * (a - 0.5 * self.delta))

    def _partials(self, p, t):
        d = p - t
        grad = xp.where(xp.abs(d) <= self.delta, d, self.delta * xp.sign(d))
        return grad, -grad


LOSSES = {
    "mse": MeanSquaredError,
    "bce": BinaryCrossEntropy,
    "huber": Huber,
}


def create_loss(kind, **kwargs):
    """
    Build a fresh loss operation for `kind`.

    Raises:
        KeyError: If `kind` is not registered in LOSSES.
    """
    try:
        constructor = LOSSES[kind]
    except KeyError:
        raise KeyError(f"Unknown loss '{kind}'. Known losses: {sorted(LOSSES)}") from None
    return constructor(**kwargs)
