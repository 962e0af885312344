import uuid

import numpy as np
import pytest

from ForkGrad.core import Tensor, OpNode, GradientMode


def test_back_returns_and_stores_seed_gradient():
    x = OpNode(Tensor([1.0, 2.0]))
    grad = x.square().back(Tensor([1.0, 1.0]))
    assert np.allclose(grad.numpy(), [2.0, 4.0])
    assert np.allclose(x.gradient.numpy(), [2.0, 4.0])
    assert x.is_started and x.is_finished


def test_replace_mode_keeps_last_seed_only():
    x = OpNode(Tensor([1.0, 2.0]), gradient_mode=GradientMode.REPLACE)
    y = x.square()
    y.back(Tensor([1.0, 1.0]))
    y.back(Tensor([2.0, 2.0]))

    fresh = OpNode(Tensor([1.0, 2.0]))
    fresh.square().back(Tensor([2.0, 2.0]))
    assert np.allclose(x.gradient.numpy(), fresh.gradient.numpy())
    assert np.allclose(x.upstream_gradient.numpy(), [2.0, 2.0])


def test_accumulate_mode_sums_seeds():
    x = OpNode(Tensor([1.0, 2.0]), gradient_mode=GradientMode.ACCUMULATE)
    y = x.square()
    y.back(Tensor([1.0, 1.0]))
    increment = y.back(Tensor([2.0, 2.0]))

    fresh = OpNode(Tensor([1.0, 2.0]), gradient_mode=GradientMode.ACCUMULATE)
    fresh.square().back(Tensor([3.0, 3.0]))
    assert np.allclose(x.gradient.numpy(), fresh.gradient.numpy())
    assert np.allclose(x.upstream_gradient.numpy(), [3.0, 3.0])
    assert np.allclose(increment.numpy(), [4.0, 8.0])


def test_back_without_gradient_raises():
    x = OpNode(Tensor([1.0]))
    x.exp()
    with pytest.raises(RuntimeError):
        x.back()


def test_gradient_shape_mismatch_raises():
    x = OpNode(Tensor([1.0, 2.0]))
    with pytest.raises(ValueError):
        x.square().back(Tensor([1.0, 2.0, 3.0]))


def test_operand_nodes_receive_without_running():
    a = OpNode(Tensor([2.0, 3.0]))
    b = OpNode(Tensor([4.0, 5.0]))
    a.mul(b).back(Tensor([1.0, 1.0]))
    assert np.allclose(a.gradient.numpy(), [4.0, 5.0])
    assert b.has_pending_gradient
    assert not b.is_started
    assert b.gradient is None
    assert np.allclose(b.back().numpy(), [2.0, 3.0])
    assert not b.has_pending_gradient


def test_operand_chain_propagates_through_operand_steps():
    a = OpNode(Tensor([1.0, 2.0]))
    a.square()
    b = OpNode(Tensor([3.0, 3.0]))
    b.add(a).back(Tensor([1.0, 1.0]))
    a.back()
    assert np.allclose(a.gradient.numpy(), [2.0, 4.0])


def test_node_used_as_its_own_operand():
    # d/dx (x * x) = 2x
    x = OpNode(Tensor([3.0]))
    x.mul(x).back(Tensor([1.0]))
    assert np.allclose(x.gradient.numpy(), [6.0])
    assert not x.has_pending_gradient


def test_self_operand_after_earlier_steps():
    # y = x**2, z = y * y = x**4, dz/dx = 4x**3
    x = OpNode(Tensor([1.0, 2.0]))
    x.square()
    x.mul(x).back(Tensor([1.0, 1.0]))
    assert np.allclose(x.gradient.numpy(), [4.0, 32.0])


def test_operand_extended_after_use_keeps_its_gradient_path():
    a = OpNode(Tensor([2.0]))
    out = OpNode(Tensor([5.0])).mul(a)
    a.square()
    out.back(Tensor([1.0]))
    assert a.upstream_gradient is None
    assert a.has_upstream_gradient
    a.back()
    assert np.allclose(a.gradient.numpy(), [5.0])


def test_operand_used_before_and_after_extension():
    # f = c1 * a + c2 * a**2, df/da = c1 + 2 * c2 * a
    a = OpNode(Tensor([2.0]))
    first = OpNode(Tensor([3.0])).mul(a)
    a.square()
    second = OpNode(Tensor([4.0])).mul(a)
    first.back(Tensor([1.0]))
    second.back(Tensor([1.0]))
    a.back()
    assert np.allclose(a.gradient.numpy(), [3.0 + 2 * 4.0 * 2.0])


def test_receive_checks_position():
    x = OpNode(Tensor([1.0, 2.0]))
    x.sum()
    with pytest.raises(ValueError):
        x.receive(Tensor([1.0]), position=2)
    with pytest.raises(ValueError):
        x.receive(Tensor([1.0]), position=0)
    x.receive(Tensor([1.0, 1.0]), position=0)
    assert x.has_pending_gradient


def test_apply_after_backward_raises():
    x = OpNode(Tensor([1.0]))
    x.square().back(Tensor([1.0]))
    with pytest.raises(RuntimeError):
        x.exp()


def test_stale_result_cannot_continue_the_chain():
    x = OpNode(Tensor([1.0, 2.0]))
    y = x.square()
    x.exp()
    assert not y.is_latest
    with pytest.raises(RuntimeError):
        y.then("neg")


def test_earlier_result_as_operand_receives_at_its_position():
    # d/dx of sum(c * x**2) with exp(x**2) applied afterwards and unused
    x = OpNode(Tensor([1.0, 2.0]))
    y = x.square()
    x.exp()
    OpNode(Tensor([3.0, 4.0])).mul(y).back(Tensor([1.0, 1.0]))
    x.back()
    assert np.allclose(x.gradient.numpy(), [6.0, 16.0])


def test_result_then_continues_chain():
    x = OpNode(Tensor([3.0]))
    z = x.square().then("neg")
    assert np.allclose(z.value.numpy(), [-9.0])
    assert z.position == 2
    assert x.last_result is z


def test_engine_id_switch_opens_fresh_context():
    x = OpNode(Tensor([1.0, 2.0]))
    first = x.engine_id
    x.square()
    second = uuid.uuid4()
    x.engine_id = second
    assert x.steps == ()
    assert np.allclose(x.value.numpy(), [1.0, 2.0])
    x.exp()
    x.engine_id = first
    assert np.allclose(x.value.numpy(), [1.0, 4.0])
    assert set(x.engine_ids) == {first, second}


def test_operand_remembers_engine_id_at_use():
    w = OpNode(Tensor([2.0]), gradient_mode=GradientMode.ACCUMULATE)
    first = w.engine_id
    y = OpNode(Tensor([3.0]))
    y.mul(w)
    w.engine_id = uuid.uuid4()
    y.back(Tensor([1.0]))
    assert w.pending_engine_ids() == [first]


def test_reset_keeps_engine_id_and_seed():
    x = OpNode(Tensor([1.0, 2.0]))
    engine_id = x.engine_id
    x.square().back(Tensor([1.0, 1.0]))
    x.reset()
    assert x.engine_id == engine_id
    assert x.gradient is None
    assert x.steps == ()
    assert not x.is_started and not x.is_finished
    x.exp()


def test_reset_gradient_zeroes_buffer_and_upstream():
    x = OpNode(Tensor([1.0, 2.0]), gradient_mode=GradientMode.ACCUMULATE)
    x.square().back(Tensor([1.0, 1.0]))
    x.reset_gradient()
    assert np.allclose(x.gradient.numpy(), 0.0)
    assert x.upstream_gradient is None
    assert len(x.steps) == 1


def test_replace_mode_with_two_consumers_warns(capsys):
    shared = OpNode(Tensor([1.0]))
    OpNode(Tensor([2.0])).add(shared)
    OpNode(Tensor([3.0])).add(shared)
    assert "consumers" in capsys.readouterr().out


def test_recorder_receives_every_backward_step(recorder):
    x = OpNode(Tensor([1.0, 2.0]), recorder=recorder)
    x.square()
    x.mul(Tensor([3.0, 3.0]))
    x.back(Tensor([1.0, 1.0]))
    assert [entry["operation"] for entry in recorder.records] == ["mul", "square"]


def test_trace_graph_prints_steps_operands_and_branches(capsys):
    from ForkGrad.core.tensor import trace_graph

    other = OpNode(Tensor([1.0]), name="other")
    x = OpNode(Tensor([2.0]), name="x")
    x.mul(other)
    x.branch()
    trace_graph(x)
    out = capsys.readouterr().out
    assert "'x'" in out
    assert "-> mul" in out
    assert "'other'" in out
    assert "branch:" in out
