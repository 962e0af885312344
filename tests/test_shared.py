import numpy as np
import pytest

from ForkGrad.core import Tensor, OpNode, SharedWeight, SharedWeightCoordinator


def build_usages(shared, inputs, transform=None):
    for t, x in enumerate(inputs):
        w = shared.use_op_at_index(t)
        if transform is not None:
            transform(w)
        node = OpNode(Tensor(x))
        shared.register_endpoint(node.matmul(w))


def test_gradients_accumulate_across_usages(rng):
    weight = rng.normal(size=(2, 3))
    inputs = [rng.normal(size=(1, 2)) for _ in range(3)]
    grads = [rng.normal(size=(1, 3)) for _ in range(3)]

    shared = SharedWeight(Tensor(weight))
    build_usages(shared, inputs)
    assert len(shared.engine_ids) == 3
    assert len(shared.endpoints) == 3

    result = shared.backpropagate_all([Tensor(g) for g in grads])
    expected = sum(x.T @ g for x, g in zip(inputs, grads))
    assert np.allclose(result.numpy(), expected)
    assert np.allclose(shared.gradient.numpy(), expected)


def test_each_usage_runs_its_own_chain(rng):
    weight = rng.normal(size=(2, 2))
    inputs = [rng.normal(size=(1, 2)) for _ in range(2)]
    grads = [rng.normal(size=(1, 2)) for _ in range(2)]

    shared = SharedWeight(Tensor(weight))
    build_usages(shared, inputs, transform=lambda w: w.tanh())
    shared.backpropagate_all([Tensor(g) for g in grads])

    expected = sum(x.T @ g for x, g in zip(inputs, grads)) * (1 - np.tanh(weight) ** 2)
    assert np.allclose(shared.gradient.numpy(), expected)


def test_usage_extended_after_consumption_skips_later_steps(rng):
    weight = rng.normal(size=(2, 2))
    inputs = [rng.normal(size=(1, 2)) for _ in range(2)]
    grads = [rng.normal(size=(1, 2)) for _ in range(2)]

    shared = SharedWeight(Tensor(weight))
    for t, x in enumerate(inputs):
        w = shared.use_op_at_index(t)
        shared.register_endpoint(OpNode(Tensor(x)).matmul(w))
        w.tanh()
    shared.backpropagate_all([Tensor(g) for g in grads])

    expected = sum(x.T @ g for x, g in zip(inputs, grads))
    assert np.allclose(shared.gradient.numpy(), expected)


def test_usage_consumed_before_and_after_extension(rng):
    # f = c * w + tanh(w)
    weight = rng.normal(size=(2, 2))
    c = rng.normal(size=(2, 2))
    g = rng.normal(size=(2, 2))

    shared = SharedWeight(Tensor(weight))
    w = shared.use_op_at_index(0)
    node = OpNode(Tensor(c))
    node.mul(w)
    w.tanh()
    shared.register_endpoint(node.add(w))
    shared.backpropagate_all([Tensor(g)])

    expected = c * g + g * (1 - np.tanh(weight) ** 2)
    assert np.allclose(shared.gradient.numpy(), expected)


def test_backpropagate_all_count_mismatch_leaves_state_untouched():
    shared = SharedWeight(Tensor(np.ones((2, 2))))
    build_usages(shared, [np.ones((1, 2)), np.ones((1, 2))])
    with pytest.raises(ValueError):
        shared.backpropagate_all([Tensor(np.ones((1, 2)))])
    assert shared.gradient is None
    assert not shared.base_op.is_started


def test_backpropagate_all_shape_mismatch():
    shared = SharedWeight(Tensor(np.ones((2, 2))))
    build_usages(shared, [np.ones((1, 2))])
    with pytest.raises(ValueError):
        shared.backpropagate_all([Tensor(np.ones((2, 2)))])


def test_reset_then_next_iteration():
    shared = SharedWeight(Tensor(np.ones((2, 2))))
    x = np.array([[1.0, 2.0]])
    build_usages(shared, [x, x])
    shared.backpropagate_all([Tensor(np.ones((1, 2)))] * 2)

    shared.reset()
    assert shared.gradient is None
    assert shared.endpoints == []
    assert len(shared.engine_ids) == 1

    build_usages(shared, [x])
    shared.backpropagate_all([Tensor(np.ones((1, 2)))])
    assert np.allclose(shared.gradient.numpy(), x.T @ np.ones((1, 2)))


def test_get_tensor_is_the_owned_weight():
    weight = Tensor(np.ones((2, 2)))
    shared = SharedWeight(weight)
    assert shared.get_tensor() is weight
    assert shared.shared_op is shared.base_op


def test_negative_usage_index_raises():
    with pytest.raises(ValueError):
        SharedWeight(Tensor([1.0])).use_op_at_index(-1)


def test_gradient_setter_checks_shape():
    shared = SharedWeight(Tensor(np.ones((2, 2))))
    shared.gradient = Tensor(np.full((2, 2), 3.0))
    assert np.allclose(shared.gradient.numpy(), 3.0)
    with pytest.raises(ValueError):
        shared.gradient = Tensor([1.0])


def test_coordinator_sweeps_each_endpoint_once(rng):
    w_data = rng.normal(size=(2, 3))
    b_data = rng.normal(size=(1, 3))
    inputs = [rng.normal(size=(1, 2)) for _ in range(2)]
    grads = [rng.normal(size=(1, 3)) for _ in range(2)]

    weight = SharedWeight(Tensor(w_data), name="weight")
    bias = SharedWeight(Tensor(b_data), name="bias")
    coordinator = SharedWeightCoordinator()
    coordinator.register_shared_weight(weight)
    coordinator.register_shared_weight(bias)

    for t, x in enumerate(inputs):
        w = weight.use_op_at_index(t)
        b = bias.use_op_at_index(t)
        node = OpNode(Tensor(x))
        node.matmul(w)
        coordinator.register_result(node.add(b))

    w_grad, b_grad = coordinator.backpropagate_all([Tensor(g) for g in grads])
    assert np.allclose(w_grad.numpy(), sum(x.T @ g for x, g in zip(inputs, grads)))
    assert np.allclose(b_grad.numpy(), sum(grads))
    assert len(coordinator) == 2


def test_coordinator_requires_shared_endpoints():
    first = SharedWeight(Tensor(np.ones((2, 2))))
    second = SharedWeight(Tensor(np.ones((2, 2))))
    coordinator = SharedWeightCoordinator()
    coordinator.register_shared_weight(first)
    coordinator.register_shared_weight(second)

    x = OpNode(Tensor(np.ones((1, 2))))
    first.register_endpoint(x.matmul(first.use_op_at_index(0)))
    y = OpNode(Tensor(np.ones((1, 2))))
    second.register_endpoint(y.matmul(second.use_op_at_index(0)))

    with pytest.raises(ValueError):
        coordinator.backpropagate_all([Tensor(np.ones((1, 2)))])
    assert first.gradient is None


def test_coordinator_without_weights_raises():
    with pytest.raises(RuntimeError):
        SharedWeightCoordinator().backpropagate_all([])
