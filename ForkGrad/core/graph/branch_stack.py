class BranchStack:
    """
    LIFO view over sibling branches forked at one point.

    Args:
        branches (iterable[OpNode]): Branches in creation order.

    Example:
        >>> stack = node.branch_stack(3)
        >>> b3 = stack.pop()          # last created first
        >>> ...                       # use b3, maybe pop more
        >>> stack.cleanup()           # unused branches contribute zeros
    """
    def __init__(self, branches):
        self._branches = list(branches)

    def __len__(self):
        return len(self._branches)

    def __repr__(self):
        return f"BranchStack(count={self.count})"

    @property
    def count(self):
        """Number of branches not yet popped."""
        return len(self._branches)

    def pop(self):
        """
        Return the most recently created branch still on the stack.

        Raises:
            IndexError: If the stack is exhausted.
        """
        if not self._branches:
            raise IndexError("pop from an exhausted branch stack")
        return self._branches.pop()

    def cleanup(self):
        """Take back every branch still on the stack, then empty it."""
        while self._branches:
            self._branches.pop().take_back()
