import numpy as np
import pytest

import ForkGrad.core.backend.backend as backend
from ForkGrad.core import Tensor
from ForkGrad.utils import GradientRecorder


@pytest.fixture(autouse=True)
def _seeded():
    backend.set_seed(997)
    yield


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def recorder():
    return GradientRecorder(enabled=True)


@pytest.fixture
def ones():
    def make(*shape):
        return Tensor.ones(shape)
    return make
