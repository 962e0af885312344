class Result:
    """
    Output of one operation applied to an OpNode.

    Attributes:
        value (Tensor): Forward value.
        gradients (list[Tensor] or None): One gradient per operation input,
            filled when the producing node backpropagates through this step.
        node (OpNode): Producing node.
        position (int): Chain position of this value inside its execution
            context (number of steps applied so far).
        branches (list[OpNode]): Branch nodes forked from this value.
        split_branches (list[OpNode]): Branch nodes forked from slices of
            this value by `OpNode.split`.
    """
    def __init__(self, value, node, position, name, context=None):
        self.value = value
        self.node = node
        self.position = position
        self.name = name
        self.gradients = None
        self.branches = []
        self.split_branches = []
        self._context = context

    def __repr__(self):
        return f"Result(op={self.name}, shape={self.shape}, position={self.position})"

    @property
    def shape(self):
        return self.value.shape

    @property
    def engine_id(self):
        """Execution context the result was produced under."""
        return self._context.engine_id if self._context is not None else None

    @property
    def is_latest(self):
        """True while no further step was applied after this one in its context."""
        return self._context is not None and self.position == len(self._context.steps)

    def back(self, gradient=None):
        """Backpropagate the producing node from its current end."""
        return self.node.back(gradient)

    def branch(self):
        """Fork this value into a new branch node."""
        return self.node._fork(self._context, self.position)

    def branch_stack(self, count):
        """Fork `count` branches from this value and stack them."""
        from .branch_stack import BranchStack
        return BranchStack([self.branch() for _ in range(count)])

    def split(self, sections, axis=0):
        """Fork slices of this value as split branches."""
        return self.node._split(self._context, self.position, sections, axis)

    def then(self, tag, *operands, **kwargs):
        """Apply another operation to the producing node, continuing from this value."""
        if not self.is_latest:
            raise RuntimeError(
                f"{self} is not the end of its chain; call branch() to reuse an earlier value"
            )
        return self.node.apply(tag, *operands, **kwargs)
