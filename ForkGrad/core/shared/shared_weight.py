import uuid

from ForkGrad.core.tensor import ensure_tensor
from ForkGrad.core.graph import OpNode, GradientMode


class _Usage:
    """Endpoint result paired with the base context it was built under."""
    __slots__ = ("endpoint", "engine_id")

    def __init__(self, endpoint, engine_id):
        self.endpoint = endpoint
        self.engine_id = engine_id


class SharedWeight:
    """
    One weight tensor driven through several forward passes.

    Every usage runs the same base node under its own execution context;
    gradients from all usages accumulate onto the single weight.

    Usages must be built one at a time: `use_op_at_index` switches the base
    node's active context, so finish the forward pass of one usage (and
    register its endpoint) before requesting the next.

    Args:
        tensor (Tensor): The weight. It is owned by this object and mutated
            in place by optimizers.
        recorder (GradientRecorder, optional): Passed to the base node.

    Example:
        >>> W = SharedWeight(Tensor.randn((3, 3)))
        >>> for t, x in enumerate(inputs):
        ...     w = W.use_op_at_index(t)
        ...     W.register_endpoint(OpNode(x).matmul(w))
        >>> W.backpropagate_all(upstream_gradients)
        >>> W.gradient
    """
    def __init__(self, tensor, recorder=None, name="shared_weight"):
        self.weight_tensor = ensure_tensor(tensor)
        self.base_op = OpNode(self.weight_tensor, gradient_mode=GradientMode.ACCUMULATE,
                              recorder=recorder, name=name)
        self.engine_ids = [self.base_op.engine_id]
        self._usages = []

    def __repr__(self):
        return (f"SharedWeight(shape={self.weight_tensor.shape}, usages={len(self.engine_ids)}, "
                f"endpoints={len(self._usages)})")

    @property
    def shared_op(self):
        return self.base_op

    @property
    def endpoints(self):
        return [usage.endpoint for usage in self._usages]

    @property
    def gradient(self):
        """Gradient accumulated onto the weight by the last backpropagate_all."""
        return self.base_op.gradient

    @gradient.setter
    def gradient(self, value):
        value = ensure_tensor(value)
        if value.shape != self.weight_tensor.shape:
            raise ValueError(f"Gradient shape {value.shape} does not match weight shape {self.weight_tensor.shape}")
        self.base_op.gradient = value

    def use_op_at_index(self, index):
        """
        Return the base node set up for usage `index`.

        Index 0 continues the currently active context. Any other index opens
        a new context on the same node; the returned node starts again from
        the weight tensor.
        """
        if index < 0:
            raise ValueError(f"Usage index must be non-negative, got {index}")
        if index == 0:
            return self.base_op

        engine_id = uuid.uuid4()
        self.engine_ids.append(engine_id)
        self.base_op.engine_id = engine_id
        return self.base_op

    def register_endpoint(self, endpoint):
        """Register a Result built under the currently active usage."""
        self._usages.append(_Usage(endpoint, self.base_op.engine_id))
        return endpoint

    def _validate(self, gradients):
        gradients = [ensure_tensor(g) for g in gradients]
        if len(gradients) != len(self._usages):
            raise ValueError(
                f"Number of gradients ({len(gradients)}) must match number of registered endpoints "
                f"({len(self._usages)})"
            )
        for usage, grad in zip(self._usages, gradients):
            if grad.shape != usage.endpoint.shape:
                raise ValueError(
                    f"Gradient shape {grad.shape} does not match endpoint shape {usage.endpoint.shape}"
                )
        return gradients

    def _activate(self, index):
        self.base_op.engine_id = self._usages[index].engine_id

    def _flush(self):
        # Propagate whatever the base node received, in every context that got some.
        active = self.base_op.engine_id
        for engine_id in self.base_op.pending_engine_ids():
            self.base_op.engine_id = engine_id
            self.base_op.back()
        self.base_op.engine_id = active

    def backpropagate_all(self, gradients):
        """
        Backpropagate every registered endpoint and accumulate onto the weight.

        Args:
            gradients (list[Tensor]): One upstream gradient per endpoint, in
                registration order.

        Raises:
            ValueError: If the count or a shape does not match the endpoints.
                Nothing is mutated in that case.
        """
        gradients = self._validate(gradients)

        self.base_op.reset_gradient()
        for i, grad in enumerate(gradients):
            self._activate(i)
            self._usages[i].endpoint.back(grad)
            self._flush()
        return self.gradient

    def reset(self):
        """Prepare for the next iteration: keep the weight values, drop usages and gradients."""
        self.base_op.reset()
        self.engine_ids = [self.base_op.engine_id]
        self._usages.clear()

    def get_tensor(self):
        """Current value of the shared weight tensor."""
        return self.weight_tensor
