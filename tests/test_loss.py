import numpy as np
import pytest

from ForkGrad.core import Tensor, OpNode
from ForkGrad.nn.loss import LOSSES, create_loss


def test_mse_value_and_gradient():
    predictions = OpNode(Tensor([0.5, 2.0]))
    loss = predictions.loss("mse", Tensor([1.0, 1.0]))
    assert loss.value.item() == pytest.approx(0.625)
    loss.back(Tensor(1.0))
    assert np.allclose(predictions.gradient.numpy(), [-0.5, 1.0])


def test_huber_switches_to_linear():
    predictions = OpNode(Tensor([0.0, 3.0]))
    loss = predictions.loss("huber", Tensor([0.5, 0.0]), delta=1.0)
    assert loss.value.item() == pytest.approx((0.125 + 2.5) / 2)
    loss.back(Tensor(1.0))
    assert np.allclose(predictions.gradient.numpy(), [-0.25, 0.5])


def test_bce_gradient():
    p = np.array([0.2, 0.9])
    t = np.array([0.0, 1.0])
    predictions = OpNode(Tensor(p))
    loss = predictions.loss("bce", Tensor(t))
    expected = -np.mean(t * np.log(p) + (1 - t) * np.log(1 - p))
    assert loss.value.item() == pytest.approx(expected)
    loss.back(Tensor(1.0))
    assert np.allclose(predictions.gradient.numpy(), (p - t) / (p * (1 - p)) / 2)


def test_loss_target_node_receives_gradient():
    predictions = OpNode(Tensor([2.0]))
    target = OpNode(Tensor([1.0]))
    predictions.loss("mse", target).back(Tensor(1.0))
    assert np.allclose(target.back().numpy(), [-2.0])


def test_loss_shape_mismatch_raises():
    with pytest.raises(ValueError):
        OpNode(Tensor([1.0, 2.0])).loss("mse", Tensor([1.0]))


def test_unknown_loss_raises():
    assert sorted(LOSSES) == ["bce", "huber", "mse"]
    with pytest.raises(KeyError):
        create_loss("hinge")
