import numpy as np
import pytest

from ForkGrad.core import Tensor, OpNode, SharedWeight
from ForkGrad.train import GradientClipper, GradientProcessor


def test_clip_bound_and_sign(rng):
    data = rng.normal(scale=5.0, size=(8, 8))
    data[0, 0] = 80.0
    tensor = Tensor(data)
    clipper = GradientClipper(clip_value=4)

    clipped = clipper.clip_gradients(tensor).numpy()
    z = (data - data.mean()) / data.std()
    bound = np.minimum(4.0, 1.0 + np.abs(z))
    assert np.all(np.abs(clipped) <= bound + 1e-12)
    nonzero = data != 0
    assert np.all(np.sign(clipped[nonzero]) == np.sign(data[nonzero]))
    assert np.allclose(tensor.numpy(), data)


def test_outlier_gets_looser_bound():
    clipped = GradientClipper(clip_value=4).clip_gradients(Tensor([0.0, 0.0, 0.0, 100.0])).numpy()
    assert clipped[3] == pytest.approx(1.0 + np.sqrt(3.0))
    assert np.allclose(clipped[:3], 0.0)


def test_standardized_tensor():
    z = GradientClipper().standardized_tensor(Tensor([1.0, 3.0])).numpy()
    assert np.allclose(z, [-1.0, 1.0])


def test_zero_variance_clips_to_unit():
    clipper = GradientClipper()
    assert np.allclose(clipper.standardized_tensor(Tensor.full((3,), 7.0)).numpy(), 0.0)
    assert np.allclose(clipper.clip_gradients(Tensor.full((3,), 7.0)).numpy(), 1.0)
    assert np.allclose(clipper.clip_gradients(Tensor.full((3,), -7.0)).numpy(), -1.0)


def test_default_clip_value_from_config():
    assert GradientClipper().clip_value == pytest.approx(4.0)
    with pytest.raises(ValueError):
        GradientClipper(clip_value=0)


def _shared_with_gradient(values):
    shared = SharedWeight(Tensor(np.zeros(len(values))))
    shared.gradient = Tensor(values)
    return shared


def test_processor_clips_gradients():
    shared = _shared_with_gradient([0.0, 0.0, 0.0, 100.0])
    processor = GradientProcessor({"clip_value": 4})
    assert processor.process(shared)
    assert shared.gradient.numpy()[3] == pytest.approx(1.0 + np.sqrt(3.0))
    assert processor.grad_norm_ema == pytest.approx(1.0 + np.sqrt(3.0))


def test_processor_skips_invalid_gradients(capsys):
    shared = _shared_with_gradient([1.0, np.nan])
    assert not GradientProcessor({"nan_inf_policy": "skip"}).process([shared])
    assert "skipping" in capsys.readouterr().out


def test_processor_zeroes_invalid_gradients():
    shared = _shared_with_gradient([0.5, np.inf, np.nan])
    assert GradientProcessor({"nan_inf_policy": "zero", "clip": False}).process(shared)
    assert np.allclose(shared.gradient.numpy(), [0.5, 0.0, 0.0])


def test_processor_rejects_unknown_policy():
    with pytest.raises(ValueError):
        GradientProcessor({"nan_inf_policy": "ignore"})


def test_processor_on_backpropagated_weight():
    shared = SharedWeight(Tensor(np.ones((2, 2))))
    node = OpNode(Tensor(np.array([[3.0, 4.0]])))
    shared.register_endpoint(node.matmul(shared.use_op_at_index(0)))
    shared.backpropagate_all([Tensor(np.ones((1, 2)))])
    assert GradientProcessor().process([shared])
    assert np.all(np.abs(shared.gradient.numpy()) <= 4.0)
