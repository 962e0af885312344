import ForkGrad.core.backend.backend as backend
from ForkGrad.nn.optim.optimizers.adam import Adam

xp = backend.xp


class MomentumAdam(Adam):
    """
    Adam with an extra push along persistent update directions.

    For every element the optimizer counts consecutive updates of the same
    sign (positive runs count up, negative runs count down, a sign change
    restarts the run from zero). Once a run is at least `min_run` long, an
    extra step `update * n * decay**n` is applied, with `n = min(|run|,
    max_run)`, but only where that extra step is smaller in magnitude than
    the learning rate.

    Args:
        learning_rate, beta1, beta2, epsilon: As for Adam.
        decay (float, optional): Per-run-step decay of the extra step. Default is 0.999.
        min_run (int, optional): Run length that enables the extra step. Default is 2.
        max_run (int, optional): Cap on the run length used. Default is 75.
    """
    config_keys = ("learning_rate", "beta1", "beta2", "epsilon", "decay", "min_run", "max_run")
    state_names = ("m", "v", "runs")

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999, epsilon=1e-8,
                 decay=0.999, min_run=2, max_run=75):
        super().__init__(learning_rate, beta1, beta2, epsilon)
        self.decay = float(decay)
        self.min_run = int(min_run)
        self.max_run = int(max_run)

    def _update(self, weights, gradient):
        m_hat, v_hat = self._moments(gradient)
        update = self.learning_rate * m_hat / (xp.sqrt(v_hat) + self.epsilon)

        runs = self.state["runs"]
        runs = xp.where(update > 0, xp.maximum(runs + 1, 0), runs)
        runs = xp.where(update < 0, xp.minimum(runs - 1, 0), runs)
        self.state["runs"] = runs

        n = xp.minimum(xp.abs(runs), self.max_run)
        extra = update * n * self.decay ** n
        apply = (xp.abs(runs) >= self.min_run) & (xp.abs(extra) < self.learning_rate)
        return weights - update - xp.where(apply, extra, 0.0)
