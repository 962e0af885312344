import math

import ForkGrad.core.backend.backend as backend
from ForkGrad.core.tensor import Tensor
from .gradient_clipper import GradientClipper

xp = backend.xp


class GradientProcessor:
    """
    Gradient preprocessing for shared weights, run between
    `backpropagate_all` and the optimizer step:
    - NaN/Inf detection and handling
    - Adaptive clipping (GradientClipper)
    - EMA tracking of gradient norms

    Options:
        nan_inf_policy (str): "skip" | "zero" | "warn". Default "skip".
        clip (bool): Clip every gradient. Default True.
        clip_value (float): Passed to the clipper. Default from config.
        grad_ema_decay (float): Decay of the norm EMA. Default 0.9.
        log_every (int): Print norm stats every N calls, 0 disables. Default 0.
    """
    def __init__(self, options=None, clipper=None):
        self.options = dict(options or {})
        self.nan_inf_policy = self.options.get("nan_inf_policy", "skip")  # skip | zero | warn
        if self.nan_inf_policy not in ("skip", "zero", "warn"):
            raise ValueError(f"Unknown nan_inf_policy '{self.nan_inf_policy}'; use skip, zero or warn")
        self.clipper = clipper
        if self.clipper is None and self.options.get("clip", True):
            self.clipper = GradientClipper(self.options.get("clip_value"))
        self.ema_decay = self.options.get("grad_ema_decay", 0.9)
        self.log_every = int(self.options.get("log_every", 0))
        self.steps = 0
        self.grad_norm_ema = None
        self.grad_norm_var = 0.0

    def reset(self):
        self.steps = 0
        self.grad_norm_ema = None
        self.grad_norm_var = 0.0

    # ---------------------------------------------------------------------
    # --- Gradient stability checks ---
    # ---------------------------------------------------------------------
    @staticmethod
    def _gradients(shared_weights):
        return [w for w in shared_weights if w.gradient is not None]

    def _detect_invalid(self, shared_weights):
        """Detect NaN/Inf gradients."""
        for w in self._gradients(shared_weights):
            if not bool(xp.all(xp.isfinite(w.gradient.data))):
                return True
        return False

    def _handle_invalid(self, shared_weights):
        """Handle invalid gradients according to policy."""
        policy = self.nan_inf_policy
        if policy == "zero":
            for w in self._gradients(shared_weights):
                data = w.gradient.data
                w.gradient = Tensor(xp.where(xp.isfinite(data), data, 0.0), dtype=w.gradient.dtype)
            print("[ForkGrad] Invalid gradients zeroed.")
        elif policy == "skip":
            print("[ForkGrad] NaN/Inf gradients detected, skipping optimizer step.")
        elif policy == "warn":
            print("[ForkGrad] Warning: NaN/Inf gradients detected.")

    # ---------------------------------------------------------------------
    # --- Gradient norm tracking (EMA) ---
    # ---------------------------------------------------------------------
    def _update_grad_norm_stats(self, shared_weights):
        """Track the average gradient norm with an EMA for diagnostics."""
        norms = [float(xp.sqrt(xp.sum(w.gradient.data ** 2))) for w in self._gradients(shared_weights)]
        if not norms:
            return

        avg_norm = sum(norms) / len(norms)
        if self.grad_norm_ema is None:
            self.grad_norm_ema = avg_norm
            self.grad_norm_var = 0.0
        else:
            diff = avg_norm - self.grad_norm_ema
            self.grad_norm_ema = self.ema_decay * self.grad_norm_ema + (1 - self.ema_decay) * avg_norm
            self.grad_norm_var = self.ema_decay * self.grad_norm_var + (1 - self.ema_decay) * (diff ** 2)

        if self.log_every and self.steps % self.log_every == 0:
            std = math.sqrt(self.grad_norm_var)
            print(f"[GradStats] EMA norm: {self.grad_norm_ema:.6f} ± {std:.6f}")

    # ---------------------------------------------------------------------
    # --- Core processing logic ---
    # ---------------------------------------------------------------------
    def process(self, shared_weights):
        """
        Preprocess the gradients of `shared_weights` in place.

        Args:
            shared_weights (SharedWeight or list[SharedWeight]).

        Returns:
            bool: Whether the gradients are valid for an optimizer step.
        """
        if not isinstance(shared_weights, (list, tuple)):
            shared_weights = [shared_weights]
        self.steps += 1

        # --- 1. Detect NaN/Inf gradients ---
        if self._detect_invalid(shared_weights):
            self._handle_invalid(shared_weights)
            if self.nan_inf_policy == "skip":
                return False

        # --- 2. Adaptive clipping ---
        if self.clipper is not None:
            for w in self._gradients(shared_weights):
                w.gradient = self.clipper.clip_gradients(w.gradient)

        # --- 3. Track gradient statistics ---
        self._update_grad_norm_stats(shared_weights)

        return True
