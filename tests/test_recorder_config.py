import csv
import json

import numpy as np

from ForkGrad.core import Tensor, OpNode
from ForkGrad.core.backend import config
from ForkGrad.core.backend.context import recording
from ForkGrad.utils import GradientRecorder


def _run(recorder):
    x = OpNode(Tensor([1.0, 2.0]), recorder=recorder)
    x.square()
    x.exp()
    x.back(Tensor([1.0, 1.0]))


def test_disabled_recorder_stores_nothing():
    recorder = GradientRecorder(enabled=False)
    _run(recorder)
    assert len(recorder) == 0


def test_recording_block_enables_temporarily():
    recorder = GradientRecorder(enabled=False)
    with recording(recorder):
        _run(recorder)
    assert not recorder.enabled
    assert [entry["operation"] for entry in recorder.snapshot()] == ["exp", "square"]
    assert "Tensor(" in recorder.records[0]["gradients"]


def test_recording_block_can_clear(recorder):
    _run(recorder)
    with recording(recorder, clear=True):
        pass
    assert len(recorder) == 0


def test_snapshot_is_a_copy(recorder):
    _run(recorder)
    snap = recorder.snapshot()
    recorder.clear()
    assert len(snap) == 2
    assert len(recorder) == 0


def test_export_json_and_csv(recorder, tmp_path):
    _run(recorder)
    json_path = tmp_path / "grads.json"
    csv_path = tmp_path / "grads.csv"
    recorder.to_json(json_path)
    recorder.to_csv(csv_path)

    with open(json_path) as f:
        entries = json.load(f)
    assert [e["step"] for e in entries] == [0, 1]
    with open(csv_path, newline="") as f:
        rows = list(csv.DictReader(f))
    assert [row["operation"] for row in rows] == ["exp", "square"]


def test_cli_overrides_are_parsed():
    cli = config.parse_cli_args(["--forkgrad-seed", "5", "--forkgrad-record-gradients", "true", "-q"])
    assert cli == {"seed": 5, "record_gradients": True}


def test_yaml_then_cli_precedence(tmp_path):
    path = tmp_path / "forkgrad_config.yaml"
    path.write_text("clip_value: 2.5\ndtype: float64\nbranch_max_iterations: 50\n")
    cfg = config.load_config(["--forkgrad-config", str(path), "--forkgrad-dtype", "float32"])
    assert cfg["clip_value"] == 2.5
    assert cfg["branch_max_iterations"] == 50
    assert cfg["dtype"] == "float32"
    assert cfg["device"] == config.DEFAULTS["device"]


def test_missing_yaml_gives_empty_config(tmp_path):
    assert config.load_yaml_config(str(tmp_path / "absent.yaml")) == {}


def test_recorded_values_match_gradients(recorder):
    x = OpNode(Tensor([3.0]), recorder=recorder)
    x.square()
    x.back(Tensor([1.0]))
    assert "6.0" in recorder.records[0]["gradients"]
    assert np.allclose(x.gradient.numpy(), [6.0])
