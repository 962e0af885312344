import ForkGrad.core.backend.backend as backend
from ForkGrad.nn.optim.optimizers.base_optimizer import BaseOptimizer

xp = backend.xp


class Adam(BaseOptimizer):
    """
    Adam optimizer.

    Combines momentum and per-element adaptive learning rates, with bias
    correction of both moment estimates.

    Args:
        learning_rate (float, optional):
            Step size. Default is 0.001.
        beta1 (float, optional):
            Exponential decay rate for the first moment estimates. Default is 0.9.
        beta2 (float, optional):
            Exponential decay rate for the second moment estimates. Default is 0.999.
        epsilon (float, optional):
            Small constant to avoid division by zero. Default is 1e-8.

    Attributes:
        state (dict):
            First ("m") and second ("v") moment estimates.
        t (int):
            Update counter, used for bias correction.
    """
    config_keys = ("learning_rate", "beta1", "beta2", "epsilon")
    state_names = ("m", "v")

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999, epsilon=1e-8):
        super().__init__(learning_rate)
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.epsilon = float(epsilon)

    def _moments(self, gradient):
        self.t += 1
        state = self.state
        state["m"] = self.beta1 * state["m"] + (1 - self.beta1) * gradient
        state["v"] = self.beta2 * state["v"] + (1 - self.beta2) * (gradient * gradient)

        m_hat = state["m"] / (1 - self.beta1 ** self.t)
        v_hat = state["v"] / (1 - self.beta2 ** self.t)
        return m_hat, v_hat

    def _update(self, weights, gradient):
        m_hat, v_hat = self._moments(gradient)
        return weights - self.learning_rate * m_hat / (xp.sqrt(v_hat) + self.epsilon)
