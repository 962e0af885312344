class precision_scope:
    """
    Temporarily change the master floating-point precision inside a `with` block.

    Affects tensors created inside the block (`Tensor(...)`, `Tensor.zeros`, ...).

    Args:
        dtype (str or dtype): Precision to use ("float32", "float64", xp.float32, etc.)
    """
    def __init__(self, dtype="float64"):
        import ForkGrad.core.backend.backend as backend
        # Support both string and actual dtype
        if isinstance(dtype, str):
            dtype_map = {
                "float32": backend.xp.float32,
                "float64": backend.xp.float64,
            }
            if dtype not in dtype_map:
                raise ValueError(f"Unsupported dtype '{dtype}'. Use one of: {list(dtype_map.keys())}")
            self.new_dtype = dtype_map[dtype]
        else:
            self.new_dtype = dtype

    def __enter__(self):
        import ForkGrad.core.backend.backend as backend
        self.prev_dtype = backend.DTYPE
        backend.DTYPE = self.new_dtype
        return backend.DTYPE

    def __exit__(self, exc_type, exc_value, tb):
        import ForkGrad.core.backend.backend as backend
        backend.DTYPE = self.prev_dtype


class recording:
    """
    Enable a GradientRecorder for the duration of a block.

    The recorder keeps its entries after the block exits; only the
    enabled flag is restored.

    Example:
        >>> recorder = GradientRecorder()
        >>> node = OpNode(x, recorder=recorder)
        >>> with recording(recorder):
        ...     node.square().back(g)
        >>> recorder.snapshot()
    """
    def __init__(self, recorder, clear=False):
        self.recorder = recorder
        self.clear = clear

    def __enter__(self):
        self.prev_enabled = self.recorder.enabled
        if self.clear:
            self.recorder.clear()
        self.recorder.enabled = True
        return self.recorder

    def __exit__(self, exc_type, exc_value, tb):
        self.recorder.enabled = self.prev_enabled
