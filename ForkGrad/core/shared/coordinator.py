class SharedWeightCoordinator:
    """
    Registry fanning results out to several shared weights.

    One computed value may depend on several distinct shared parameters;
    `register_result` makes it an endpoint of every registered weight.
    `backpropagate_all` performs a single backward sweep per endpoint and
    then lets every weight collect what it received, so each endpoint is
    backpropagated exactly once however many weights depend on it.
    """
    def __init__(self):
        self.shared_weights = []

    def __len__(self):
        return len(self.shared_weights)

    def __repr__(self):
        return f"SharedWeightCoordinator(weights={len(self.shared_weights)})"

    def register_shared_weight(self, shared_weight):
        self.shared_weights.append(shared_weight)
        return shared_weight

    def register_result(self, result):
        """Attach `result` as an endpoint of every registered shared weight."""
        for weight in self.shared_weights:
            weight.register_endpoint(result)
        return result

    def backpropagate_all(self, gradients):
        """
        Backpropagate the shared endpoints and accumulate onto every weight.

        Args:
            gradients (list[Tensor]): One upstream gradient per endpoint.

        Returns:
            list[Tensor]: Accumulated gradient of each weight, in
            registration order.

        Raises:
            RuntimeError: If no shared weight is registered.
            ValueError: If counts or shapes do not match, or the weights do
                not share the same endpoints. Nothing is mutated then.
        """
        if not self.shared_weights:
            raise RuntimeError("No shared weights registered")

        primary = self.shared_weights[0]
        validated = [weight._validate(gradients) for weight in self.shared_weights]
        for weight in self.shared_weights[1:]:
            if any(a is not b for a, b in zip(weight.endpoints, primary.endpoints)):
                raise ValueError(f"{weight} does not share its endpoints with {primary}; "
                                 "register results through the coordinator")
        gradients = validated[0]

        for weight in self.shared_weights:
            weight.base_op.reset_gradient()

        for i, grad in enumerate(gradients):
            for weight in self.shared_weights:
                weight._activate(i)
            primary.endpoints[i].back(grad)
            for weight in self.shared_weights:
                weight._flush()

        return [weight.gradient for weight in self.shared_weights]

    def reset(self):
        for weight in self.shared_weights:
            weight.reset()
