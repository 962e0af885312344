import uuid

import ForkGrad.core.backend.backend as backend


class BranchTracker:
    """
    Backward scheduler over the sibling branches forked from one node.

    Branches are built and consumed eagerly, so there is no global ready
    queue. Before a branch (or the parent at a fork point) may proceed,
    every sibling that already holds an upstream gradient but has not run
    yet is backpropagated first, so the parent's sum is complete.

    Args:
        max_iterations (int, optional): Upper bound on backward calls per
            `run_branches_for`. Defaults to `backend.BRANCH_MAX_ITERATIONS`.
    """
    def __init__(self, max_iterations=None):
        self.id = uuid.uuid4()
        if max_iterations is None:
            max_iterations = backend.BRANCH_MAX_ITERATIONS
        max_iterations = int(max_iterations)
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        self.max_iterations = max_iterations
        self.visited_branches = []

    def __len__(self):
        return len(self.visited_branches)

    def __repr__(self):
        return f"BranchTracker(branches={len(self.visited_branches)}, max_iterations={self.max_iterations})"

    def add(self, branch):
        if branch not in self.visited_branches:
            self.visited_branches.append(branch)
        return branch

    @staticmethod
    def _runnable(branch):
        return not branch.is_started and not branch.is_finished and branch.has_upstream_gradient

    def runnable_branches(self, exclude=None):
        return [b for b in self.visited_branches if b is not exclude and self._runnable(b)]

    def run_branches_for(self, branch):
        """
        Run siblings until `branch` holds an upstream gradient.

        Loops while `branch` has no upstream gradient and some other tracked
        branch is not started, not finished and already holds one. A sibling
        is marked started before it propagates, so each one runs at most once.

        Returns:
            int: Number of sibling backward passes that were run.

        Raises:
            RuntimeError: If the iteration bound is exceeded.
        """
        iterations = 0
        while not branch.has_upstream_gradient:
            runnable = self.runnable_branches(exclude=branch)
            if not runnable:
                break
            if iterations >= self.max_iterations:
                raise RuntimeError(
                    f"Branch tracker exceeded {self.max_iterations} iterations while waiting on {branch}"
                )
            sibling = runnable[0]
            sibling.back()
            iterations += 1
        return iterations

    def resolve(self, branches):
        """
        Make sure every branch in `branches` has contributed to its parent.

        Called by the parent when its backward pass reaches the fork point.

        Raises:
            RuntimeError: If some branch never received a gradient and was
                never taken back (see `BranchStack.cleanup`).
        """
        for branch in branches:
            if branch.is_finished:
                continue
            self.run_branches_for(branch)
            if self._runnable(branch):
                branch.back()

        unresolved = [b for b in branches if not b.is_finished]
        if unresolved:
            raise RuntimeError(
                f"{len(unresolved)} branch(es) never contributed a gradient: {unresolved}. "
                "Backpropagate them or call take_back()/BranchStack.cleanup() first."
            )
