import uuid
from enum import Enum

import ForkGrad.core.backend.backend as backend
from ForkGrad.core.tensor import Tensor, ensure_tensor
from .ops import OPERATIONS, create_operation
from .result import Result
from .branch_tracker import BranchTracker
from .branch_stack import BranchStack

xp = backend.xp


class GradientMode(Enum):
    """How repeated gradient seeding at a node combines with the stored value."""
    REPLACE = "replace"
    ACCUMULATE = "accumulate"


def _apply_mode(mode, current, incoming):
    if mode is GradientMode.ACCUMULATE and current is not None:
        return current + incoming
    return incoming.copy()


class _Step:
    __slots__ = ("operation", "result", "operands")

    def __init__(self, operation, result, operands):
        self.operation = operation
        self.result = result
        # (node, engine_id, position) per operation input; all None for
        # constants and for the chain's own value at input 0.
        self.operands = operands


_CONSTANT = (None, None, None)


class _Contribution:
    """Gradient a branch has sent to its fork point (total and not-yet-merged part)."""
    __slots__ = ("total", "unmerged")

    def __init__(self):
        self.total = None
        self.unmerged = None

    def add(self, grad):
        self.total = grad.copy() if self.total is None else self.total + grad
        self.unmerged = grad.copy() if self.unmerged is None else self.unmerged + grad


class _Context:
    """Per-execution-context state of a node: its chain and lifecycle flags."""
    def __init__(self, engine_id, seed):
        self.engine_id = engine_id
        self.value = seed
        self.steps = []
        self.received = {}        # position -> gradient delivered so far
        self.pending = {}         # position -> gradient not propagated yet
        self.is_started = False
        self.is_finished = False
        self.consumers = 0
        self.forks = {}           # position -> [branch, ...]
        self.contributions = {}   # id(branch) -> _Contribution

    @property
    def upstream_gradient(self):
        return self.received.get(len(self.steps))

    def value_at(self, position, seed):
        if position == 0:
            return seed
        return self.steps[position - 1].result.value

    def clear_gradients(self):
        self.received.clear()
        self.pending.clear()
        self.is_started = False
        self.is_finished = False
        self.contributions.clear()


class _ForkLink:
    """Where a branch sends its seed gradient: a parent context at a chain position."""
    def __init__(self, parent, context, position, region=None):
        self.parent = parent
        self.context = context
        self.position = position
        self.region = region   # (axis, start, stop) for split branches

    def deliver(self, branch, grad):
        if self.region is not None:
            axis, start, stop = self.region
            full = xp.zeros(self.context.value_at(self.position, self.parent.seed).shape, dtype=grad.dtype)
            index = [slice(None)] * full.ndim
            index[axis] = slice(start, stop)
            full[tuple(index)] = grad.data
            grad = Tensor(full, dtype=grad.dtype)
        slot = self.context.contributions.get(id(branch))
        if slot is None:
            slot = self.context.contributions[id(branch)] = _Contribution()
        slot.add(grad)


class OpNode:
    """
    A node of the dynamic graph: a seed tensor plus the chain of operations
    applied to it, with reverse-mode backpropagation.

    Each node runs under an execution context (`engine_id`). A context owns
    its own chain, current value, upstream gradient and started/finished
    flags; the node attributes of the same names refer to the active
    context. Switching `engine_id` to a new id starts a fresh chain from the
    seed, which lets one node serve several independent forward passes
    (see SharedWeight). The gradient with respect to the seed is kept in
    `gradient`, combined across contexts according to `gradient_mode`.

    Args:
        seed (Tensor or array-like): Starting value.
        gradient_mode (GradientMode): REPLACE overwrites on re-seeding,
            ACCUMULATE sums. Use ACCUMULATE whenever the node has more than
            one consumer.
        recorder (GradientRecorder, optional): Receives `(op name, input
            gradients)` for every backward step when enabled.
        operations (dict, optional): Operation dispatch table. Defaults to
            `ops.OPERATIONS`.
        name (str, optional): Label used in reprs and graph traces.

    Example:
        >>> x = OpNode(Tensor([1.0, 2.0]))
        >>> y = x.square()
        >>> y.back(Tensor([1.0, 1.0]))
        >>> x.gradient
        Tensor(shape=(2,), dtype=float64, data=[2.0, 4.0])
    """
    def __init__(self, seed, gradient_mode=GradientMode.REPLACE, recorder=None, operations=None, name=None):
        self.seed = ensure_tensor(seed)
        self.gradient_mode = GradientMode(gradient_mode)
        self.recorder = recorder
        self.operations = OPERATIONS if operations is None else operations
        self.name = name
        self.gradient = None
        self.parent = None
        self._link = None
        self.branch_tracker = BranchTracker()
        self._engine_id = uuid.uuid4()
        self._contexts = {self._engine_id: _Context(self._engine_id, self.seed)}

    def __repr__(self):
        label = f"'{self.name}', " if self.name else ""
        return (f"OpNode({label}shape={self.value.shape}, steps={len(self._ctx.steps)}, "
                f"mode={self.gradient_mode.value}, started={self.is_started}, finished={self.is_finished})")

    # ======================================================
    # Execution context
    # ======================================================
    @property
    def _ctx(self):
        return self._contexts[self._engine_id]

    @property
    def engine_id(self):
        """Active execution context id."""
        return self._engine_id

    @engine_id.setter
    def engine_id(self, engine_id):
        if engine_id not in self._contexts:
            self._contexts[engine_id] = _Context(engine_id, self.seed)
        self._engine_id = engine_id

    @property
    def engine_ids(self):
        return list(self._contexts)

    def _context_for(self, engine_id):
        if engine_id is None:
            return self._ctx
        try:
            return self._contexts[engine_id]
        except KeyError:
            raise RuntimeError(f"{self} has no execution context {engine_id}; was it reset?") from None

    @property
    def value(self):
        """Current value of the active context's chain."""
        return self._ctx.value

    @property
    def upstream_gradient(self):
        """Gradient delivered so far for the current value of the active context."""
        return self._ctx.upstream_gradient

    @property
    def has_upstream_gradient(self):
        """True if the active context received gradient at any chain position."""
        return bool(self._ctx.received)

    @property
    def is_started(self):
        return self._ctx.is_started

    @property
    def is_finished(self):
        return self._ctx.is_finished

    @property
    def has_pending_gradient(self):
        """True if the active context received gradient that was not propagated yet."""
        return bool(self._ctx.pending)

    def pending_engine_ids(self):
        """Contexts holding gradient that was received but not propagated yet."""
        return [eid for eid, ctx in self._contexts.items() if ctx.pending]

    @property
    def steps(self):
        return tuple(self._ctx.steps)

    @property
    def results(self):
        return [step.result for step in self._ctx.steps]

    @property
    def last_result(self):
        steps = self._ctx.steps
        return steps[-1].result if steps else None

    @property
    def is_branch(self):
        return self._link is not None

    # ======================================================
    # Forward: building the chain
    # ======================================================
    def _operand(self, operand):
        if isinstance(operand, OpNode):
            return operand.value, (operand, operand.engine_id, len(operand._ctx.steps))
        if isinstance(operand, Result):
            if operand.engine_id is None:
                raise ValueError(f"{operand} is not attached to an execution context")
            return operand.value, (operand.node, operand.engine_id, operand.position)
        return ensure_tensor(operand), _CONSTANT

    def apply(self, tag, *operands, **kwargs):
        """
        Apply the operation registered under `tag` to the current value.

        The node's current value is the operation's first input; `operands`
        supply the remaining inputs. OpNode and Result operands receive their
        gradient during backward, under the context and at the chain
        position they had when they were used, so extending an operand's
        chain afterwards does not route this gradient through the new
        steps. Tensors and array-likes are constants.

        Returns:
            Result: The operation's output, now the end of this chain.
        """
        ctx = self._ctx
        if ctx.is_started:
            raise RuntimeError(f"{self} already ran backward in this context; call reset() before extending it")

        operation = create_operation(tag, table=self.operations, **kwargs)
        if operation.arity != 1 + len(operands):
            raise ValueError(f"Operation '{tag}' takes {operation.arity} input(s), got {1 + len(operands)}")

        inputs = [ctx.value]
        links = [_CONSTANT]
        for operand in operands:
            value, link = self._operand(operand)
            inputs.append(value)
            links.append(link)
            if link[0] is not None:
                link[0]._add_consumer(link[1])

        out = operation.forward(*inputs)
        result = Result(out, self, len(ctx.steps) + 1, operation.name, context=ctx)
        ctx.steps.append(_Step(operation, result, links))
        ctx.value = out
        return result

    def _add_consumer(self, engine_id):
        ctx = self._context_for(engine_id)
        ctx.consumers += 1
        if ctx.consumers > 1 and self.gradient_mode is GradientMode.REPLACE:
            print(f"[ForkGrad] Warning: {self} has {ctx.consumers} consumers in REPLACE mode; "
                  "only the last gradient delivered will be kept.")

    def add(self, other): return self.apply("add", other)
    def sub(self, other): return self.apply("sub", other)
    def mul(self, other): return self.apply("mul", other)
    def div(self, other): return self.apply("div", other)
    def minimum(self, other): return self.apply("minimum", other)
    def maximum(self, other): return self.apply("maximum", other)
    def matmul(self, other): return self.apply("matmul", other)

    def neg(self): return self.apply("neg")
    def square(self): return self.apply("square")
    def sqrt(self): return self.apply("sqrt")
    def abs(self): return self.apply("abs")
    def exp(self): return self.apply("exp")
    def log(self): return self.apply("log")
    def sin(self): return self.apply("sin")
    def cos(self): return self.apply("cos")
    def tanh(self): return self.apply("tanh")
    def sigmoid(self): return self.apply("sigmoid")
    def relu(self): return self.apply("relu")
    def leaky_relu(self, alpha=0.01): return self.apply("leaky_relu", alpha=alpha)

    def sum(self, axis=None, keepdims=False): return self.apply("sum", axis=axis, keepdims=keepdims)
    def mean(self, axis=None, keepdims=False): return self.apply("mean", axis=axis, keepdims=keepdims)
    def reshape(self, shape): return self.apply("reshape", shape=shape)
    def transpose(self, axes=None): return self.apply("transpose", axes=axes)

    def loss(self, kind, target, **kwargs):
        """Apply the loss registered under `kind` against `target`."""
        from ForkGrad.nn.loss import create_loss
        ctx = self._ctx
        if ctx.is_started:
            raise RuntimeError(f"{self} already ran backward in this context; call reset() before extending it")
        operation = create_loss(kind, **kwargs)
        value, link = self._operand(target)
        if link[0] is not None:
            link[0]._add_consumer(link[1])
        out = operation.forward(ctx.value, value)
        result = Result(out, self, len(ctx.steps) + 1, operation.name, context=ctx)
        ctx.steps.append(_Step(operation, result, [_CONSTANT, link]))
        ctx.value = out
        return result

    # ======================================================
    # Branching
    # ======================================================
    def _fork(self, ctx, position, value=None, region=None):
        if ctx.is_started:
            raise RuntimeError(f"{self} already ran backward in this context; cannot fork it")
        if value is None:
            value = ctx.value_at(position, self.seed)
        branch = OpNode(value, gradient_mode=GradientMode.ACCUMULATE, recorder=self.recorder,
                        operations=self.operations)
        branch.parent = self
        branch._link = _ForkLink(self, ctx, position, region)
        ctx.forks.setdefault(position, []).append(branch)
        self.branch_tracker.add(branch)

        if position > 0:
            result = ctx.steps[position - 1].result
            if region is None:
                result.branches.append(branch)
            else:
                result.split_branches.append(branch)
        return branch

    def branch(self):
        """
        Fork the current value into a new branch node.

        The branch runs its own chain; its gradient with respect to the
        forked value is summed into this node when backward reaches the
        fork point.
        """
        ctx = self._ctx
        return self._fork(ctx, len(ctx.steps))

    def branch_stack(self, count):
        """Fork `count` branches from the current value and return them as a BranchStack."""
        return BranchStack([self.branch() for _ in range(count)])

    def split(self, sections, axis=0):
        """
        Fork slices of the current value as split branches.

        Args:
            sections (int or list[int]): Number of (near) equal parts, or
                split indices, as for `numpy.array_split`.
            axis (int): Axis to split along.

        Returns:
            list[OpNode]: One branch per slice; each contributes its
            gradient back into its own slice of this node.
        """
        ctx = self._ctx
        return self._split(ctx, len(ctx.steps), sections, axis)

    def split_stack(self, sections, axis=0):
        return BranchStack(self.split(sections, axis))

    def _split(self, ctx, position, sections, axis):
        value = ctx.value_at(position, self.seed)
        axis = axis % value.ndim
        parts = xp.array_split(value.data, sections, axis=axis)
        branches = []
        start = 0
        for part in parts:
            stop = start + part.shape[axis]
            branches.append(self._fork(ctx, position, Tensor(part, dtype=value.dtype), (axis, start, stop)))
            start = stop
        return branches

    # ======================================================
    # Backward
    # ======================================================
    def receive(self, gradient, engine_id=None, position=None):
        """
        Deliver a gradient for one of this node's values without running it.

        Args:
            gradient (Tensor): Gradient w.r.t. the value at `position`.
            engine_id (uuid.UUID, optional): Context to deliver into.
                Defaults to the active one.
            position (int, optional): Chain position the gradient belongs
                to. Defaults to the current end of the chain.

        The gradient mode decides whether it replaces or adds to what the
        context already holds at that position.
        """
        ctx = self._context_for(engine_id)
        if position is None:
            position = len(ctx.steps)
        if not 0 <= position <= len(ctx.steps):
            raise ValueError(f"Position {position} is outside the chain of {self} (0..{len(ctx.steps)})")
        gradient = ensure_tensor(gradient)
        expected = ctx.value_at(position, self.seed).shape
        if gradient.shape != expected:
            raise ValueError(f"Gradient shape {gradient.shape} does not match value shape {expected}")
        ctx.received[position] = _apply_mode(self.gradient_mode, ctx.received.get(position), gradient)
        ctx.pending[position] = _apply_mode(self.gradient_mode, ctx.pending.get(position), gradient)

    def back(self, gradient=None):
        """
        Seed (optionally) and backpropagate the active context.

        Propagates the gradient received since the last backward pass
        through the chain in reverse, hands operand gradients to operand
        nodes, merges branch contributions at fork points, stores the seed
        gradient in `gradient` and, for a branch, sends it to the parent.

        With REPLACE, `back(g1); back(g2)` leaves the same state as
        `back(g2)`. With ACCUMULATE it leaves the same state as
        `back(g1 + g2)`; the second call only propagates `g2`.

        Returns:
            Tensor or None: Gradient w.r.t. the seed produced by this call.

        Raises:
            RuntimeError: If there is nothing to propagate.
        """
        ctx = self._ctx
        if gradient is not None:
            self.receive(gradient)

        if not ctx.pending:
            if ctx.is_finished:
                return None
            if not ctx.forks:
                raise RuntimeError(f"{self} has no upstream gradient to propagate")

        only_new = ctx.is_finished and self.gradient_mode is GradientMode.ACCUMULATE
        ctx.is_started = True
        grad = Tensor.zeros(ctx.value.shape, dtype=ctx.value.dtype)

        for position in range(len(ctx.steps), 0, -1):
            grad = self._merge_received(ctx, position, grad, only_new)
            grad = self._merge_forks(ctx, position, grad, only_new)
            step = ctx.steps[position - 1]
            input_grads = step.operation.backward(grad)
            step.result.gradients = input_grads
            if self.recorder is not None:
                self.recorder.record(step.operation.name, input_grads)
            for (node, engine_id, at), input_grad in zip(step.operands[1:], input_grads[1:]):
                if node is not None:
                    node.receive(input_grad, engine_id, at)
            grad = input_grads[0]
        # A step may have used this same context as an operand; its share
        # lands at a lower position before the loop gets there.
        grad = self._merge_received(ctx, 0, grad, only_new)
        grad = self._merge_forks(ctx, 0, grad, only_new)

        self.gradient = _apply_mode(self.gradient_mode, self.gradient, grad)
        if self._link is not None:
            self._link.deliver(self, grad)
        ctx.is_finished = True
        return grad

    @staticmethod
    def _merge_received(ctx, position, grad, only_new):
        part = (ctx.pending if only_new else ctx.received).get(position)
        ctx.pending.pop(position, None)
        if part is None:
            return grad
        return grad + part

    def _merge_forks(self, ctx, position, grad, only_new):
        branches = ctx.forks.get(position)
        if not branches:
            return grad
        self.branch_tracker.resolve(branches)
        for branch in branches:
            slot = ctx.contributions.get(id(branch))
            if slot is None:
                continue
            part = slot.unmerged if only_new else slot.total
            if part is not None:
                grad = grad + part
            slot.unmerged = None
        return grad

    def take_back(self):
        """
        Synchronise this branch with its parent.

        Runs the branch if it holds an upstream gradient it has not
        propagated; otherwise sends a zero contribution so the parent does
        not wait on it. No-op once the branch has finished.
        """
        if self._link is None:
            raise RuntimeError(f"{self} is not a branch")
        ctx = self._ctx
        if ctx.is_finished:
            return None
        if ctx.pending or ctx.forks:
            return self.back()
        zero = Tensor.zeros(self.seed.shape, dtype=self.seed.dtype)
        ctx.is_started = True
        self.gradient = _apply_mode(self.gradient_mode, self.gradient, zero)
        self._link.deliver(self, zero)
        ctx.is_finished = True
        return zero

    # ======================================================
    # Reset
    # ======================================================
    def reset_gradient(self):
        """Zero the accumulated gradient and forget received upstream gradients."""
        self.gradient = Tensor.zeros(self.seed.shape, dtype=self.seed.dtype)
        for ctx in self._contexts.values():
            ctx.clear_gradients()

    def reset(self):
        """
        Drop every context's chain, branches and gradients.

        The active engine id and the seed tensor (with its current values)
        are kept.
        """
        self._contexts = {self._engine_id: _Context(self._engine_id, self.seed)}
        self.gradient = None
        self.branch_tracker = BranchTracker(self.branch_tracker.max_iterations)
