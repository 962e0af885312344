import ForkGrad.core.backend.backend as backend
from ForkGrad.nn.optim.optimizers.base_optimizer import BaseOptimizer

xp = backend.xp


class RMSProp(BaseOptimizer):
    """
    RMSProp: s = beta * s + (1 - beta) * g^2, w = w - lr * g / (sqrt(s) + epsilon).
    """
    config_keys = ("learning_rate", "beta", "epsilon")
    state_names = ("s",)

    def __init__(self, learning_rate=0.001, beta=0.9, epsilon=1e-8):
        super().__init__(learning_rate)
        self.beta = float(beta)
        self.epsilon = float(epsilon)

    def _update(self, weights, gradient):
        self.t += 1
        state = self.state
        state["s"] = self.beta * state["s"] + (1 - self.beta) * (gradient * gradient)
        return weights - self.learning_rate * gradient / (xp.sqrt(state["s"]) + self.epsilon)
