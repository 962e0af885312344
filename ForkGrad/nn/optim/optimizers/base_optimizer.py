import copy

import ForkGrad.core.backend.backend as backend
from ForkGrad.nn.stateful import Stateful
from ForkGrad.core.tensor import Tensor, ensure_tensor

xp = backend.xp


class BaseOptimizer(Stateful):
    """
    Per-parameter update rule.

    One optimizer instance owns the state of one weight tensor:
    `initialize(parameter)` allocates zeroed state arrays (named in
    `state_names`) shaped like the parameter, and `update_weights` mutates
    the weight tensor's storage in place.

    Subclasses implement `_update(weights, gradient)` on raw arrays and
    return the new weight values.
    """
    config_keys = ("learning_rate",)
    state_names = ()

    def __init__(self, learning_rate):
        self.learning_rate = float(learning_rate)
        self.shape = None
        self.state = None
        self.t = 0

    def __repr__(self):
        return f"{self.__class__.__name__}({self.get_config()})"

    @property
    def is_initialized(self):
        return self.state is not None

    def initialize(self, parameter):
        """Allocate zeroed state sized to `parameter` and reset the step counter."""
        parameter = ensure_tensor(parameter)
        self.shape = parameter.shape
        self.state = {name: xp.zeros(parameter.shape, dtype=parameter.dtype) for name in self.state_names}
        self.t = 0
        return self

    def update_weights(self, weights, gradient):
        """
        Apply one update to `weights` in place.

        Raises:
            RuntimeError: If `initialize` was not called first.
            TypeError: If `weights` is not a Tensor.
            ValueError: If the weights or gradient shape differs from the
                initialized parameter shape.
        """
        if not self.is_initialized:
            raise RuntimeError(f"{self.__class__.__name__} used before initialize()")
        if not isinstance(weights, Tensor):
            raise TypeError(f"weights must be a Tensor updated in place, got {type(weights).__name__}")
        gradient = ensure_tensor(gradient)
        if weights.shape != self.shape or gradient.shape != self.shape:
            raise ValueError(
                f"Expected weights and gradient of shape {self.shape}, got {weights.shape} and {gradient.shape}"
            )
        weights.replace_data(self._update(weights.data, gradient.data.astype(weights.dtype, copy=False)))
        return weights

    def _update(self, weights, gradient):
        raise NotImplementedError

    def step(self, shared_weight, clipper=None):
        """
        Update a SharedWeight from its accumulated gradient.

        Initializes on first use and clips the gradient first when a
        clipper is given.
        """
        gradient = shared_weight.gradient
        if gradient is None:
            raise RuntimeError(f"{shared_weight} has no gradient; run backpropagate_all() first")
        if clipper is not None:
            gradient = clipper.clip_gradients(gradient)
        weights = shared_weight.get_tensor()
        if not self.is_initialized:
            self.initialize(weights)
        return self.update_weights(weights, gradient)

    def state_dict(self):
        out = {
            "learning_rate": self.learning_rate,
            "t": self.t,
        }
        if self.state is not None:
            out["shape"] = self.shape
            out["state"] = copy.deepcopy(self.state)
        return out

    def load_state_dict(self, state):
        if "learning_rate" in state:
            self.learning_rate = float(state["learning_rate"])
        if "t" in state:
            self.t = int(state["t"])
        if "state" in state:
            missing = [name for name in self.state_names if name not in state["state"]]
            if missing:
                raise KeyError(f"Optimizer state is missing {missing}")
            self.state = copy.deepcopy(state["state"])
            self.shape = tuple(state.get("shape", next(iter(self.state.values())).shape))
