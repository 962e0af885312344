"""
Backend runtime selector for ForkGrad.

- Single import point for array backend (`xp`) and core runtime flags.
- Toggle CPU (NumPy) / GPU (CuPy).
- Centralized dtype and seed handling.
- Global-access pattern:
    >>> import ForkGrad.core.backend.backend as backend
    >>> xp = backend.xp
    >>> DTYPE = backend.DTYPE
"""

from __future__ import annotations

import numpy as _np
from ForkGrad.core.backend.config import CONFIG


# ---------------------------
# Optional GPU backend (CuPy)
# ---------------------------
try:
    import cupy as _cp
    _CUPY_AVAILABLE = True
except Exception:
    _cp = None
    _CUPY_AVAILABLE = False


# ---------------------------
# Public runtime state (globals)
# ---------------------------
xp = _np                       # current array module (NumPy or CuPy)
USING = "cpu"                  # "cpu" | "gpu"
SEED = CONFIG.get("seed", 997)

DTYPE = _np.float64

CLIP_VALUE = float(CONFIG.get("clip_value", 4.0))
BRANCH_MAX_ITERATIONS = int(CONFIG.get("branch_max_iterations", 10000))
RECORD_GRADIENTS = bool(CONFIG.get("record_gradients", False))


# ===========================
# Introspection / utilities
# ===========================
def gpu_available() -> bool:
    """Return True if CuPy is importable."""
    return _CUPY_AVAILABLE


def is_gpu() -> bool:
    """Return True if current backend is GPU (CuPy)."""
    return USING == "gpu"


def device_name() -> str:
    """Human-readable device name."""
    if is_gpu() and _cp is not None:
        try:
            dev_id = _cp.cuda.Device().id
            props = _cp.cuda.runtime.getDeviceProperties(dev_id)
            name = props.get("name", b"GPU").decode(errors="ignore")
            return f"GPU:{dev_id} ({name})"
        except Exception:
            return "GPU (CuPy)"
    return "CPU (NumPy)"


def get_device() -> str:
    """Return current device string: 'cpu' or 'gpu'."""
    return USING


def synchronize():
    """Block until all queued ops on the current device are complete."""
    if is_gpu() and _cp is not None:
        _cp.cuda.Stream.null.synchronize()


def to_numpy(data):
    """Return a NumPy view/copy of a backend array."""
    if _cp is not None and isinstance(data, _cp.ndarray):
        return _cp.asnumpy(data)
    return _np.asarray(data)


# ===========================
# Backend switching
# ===========================
def _set_globals_for_numpy():
    global xp, USING, DTYPE
    xp = _np
    USING = "cpu"
    DTYPE = _np.dtype(DTYPE).type


def _set_globals_for_cupy():
    global xp, USING, DTYPE
    xp = _cp
    USING = "gpu"
    DTYPE = _cp.float32 if _np.dtype(DTYPE) == _np.float32 else _cp.float64


def _set_default_dtype():
    global DTYPE
    dtype_str = CONFIG.get("dtype", "float64")
    dtype_map = {"float32": _np.float32, "float64": _np.float64}
    if dtype_str not in dtype_map:
        raise ValueError(f"Unsupported dtype '{dtype_str}'. Use one of: {list(dtype_map.keys())}")
    DTYPE = dtype_map[dtype_str]


def use_gpu():
    """
    Switch backend to GPU (CuPy).
    Raises ImportError if CuPy is not available.

    Modules capture `xp` at import time, so switch before importing the
    rest of ForkGrad.
    """
    if not _CUPY_AVAILABLE:
        raise ImportError("CuPy is not installed. Run `pip install cupy` to use GPU.")
    _set_globals_for_cupy()
    _cp.random.seed(SEED)
    print(f"[ForkGrad] Using {device_name()}")


def use_cpu():
    """Switch backend to CPU (NumPy)."""
    _set_globals_for_numpy()
    _np.random.seed(SEED)
    print(f"[ForkGrad] Using {device_name()}")


# Initialize to CPU by default
_set_default_dtype()
_set_globals_for_numpy()
_np.random.seed(SEED)

if CONFIG.get("device", "cpu").lower() == "gpu" and _CUPY_AVAILABLE:
    use_gpu()


# ===========================
# Runtime configuration
# ===========================
def set_seed(seed: int):
    """Set RNG seed for both NumPy and CuPy (if present)."""
    global SEED
    SEED = int(seed)
    _np.random.seed(SEED)
    if _CUPY_AVAILABLE:
        _cp.random.seed(SEED)


def set_dtype(dtype: str = "float64"):
    """
    Set master DTYPE to float32 or float64.
    """
    global DTYPE
    if dtype not in ("float32", "float64"):
        raise ValueError("dtype must be 'float32' or 'float64'")
    if is_gpu() and _cp is not None:
        DTYPE = _cp.float32 if dtype == "float32" else _cp.float64
    else:
        DTYPE = _np.float32 if dtype == "float32" else _np.float64


def set_clip_value(value: float = 4.0):
    """Set the default clip value used by GradientClipper."""
    global CLIP_VALUE
    CLIP_VALUE = float(value)


def set_branch_max_iterations(limit: int = 10000):
    """Set the iteration bound of branch trackers created afterwards."""
    global BRANCH_MAX_ITERATIONS
    if int(limit) < 1:
        raise ValueError("branch_max_iterations must be positive")
    BRANCH_MAX_ITERATIONS = int(limit)
